"""Builders for new and edited records.

Every record is created here with a fresh id and, where it has one, a
creation timestamp, before an ADD instruction is issued. Edits produce
a whole new record (copy + changes), never a partial patch.
"""
from __future__ import annotations

import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Mapping

from .types import CREW_ROLES, RACE_STATUSES
from .validation import InputSanitizer

WEATHER_FIELDS = ("windSpeed", "windDirection", "temperature", "rain", "humidity")


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def utc_now_iso(now: datetime | None = None) -> str:
    """ISO-8601 UTC instant with millisecond precision, e.g. 2025-03-01T14:00:00.000Z"""
    moment = _now(now).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_iso(value: Any) -> datetime | None:
    """Parse an ISO instant; naive values are taken as UTC. None if unparseable."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id(prefix: str, now: datetime | None = None) -> str:
    """Generate a record id such as ``race_1719870000000_3f2a9c``."""
    moment = _now(now)
    millis = int(moment.timestamp()) * 1000 + moment.microsecond // 1000
    return f"{prefix}_{millis}_{uuid.uuid4().hex[:6]}"


def format_elapsed_time(milliseconds: float) -> str:
    """Format elapsed milliseconds as HH:MM:SS.t (tenths)."""
    if not isinstance(milliseconds, (int, float)) or not math.isfinite(milliseconds):
        return "00:00:00.0"
    if milliseconds < 0:
        return "00:00:00.0"
    millis = int(milliseconds)
    total_seconds = millis // 1000
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    tenths = (millis % 1000) // 100
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{tenths}"


def _required(value: Any, label: str) -> str:
    text = InputSanitizer.sanitize_name(value) if value is not None else ""
    if not text:
        raise ValueError(f"{label} is required")
    return text


def _optional(value: Any) -> str | None:
    if value is None:
        return None
    text = InputSanitizer.sanitize_string(value, 1000)
    return text or None


def build_settings(
    championship_title: str,
    location: str,
    *,
    dates: str | None = None,
    organizer: str | None = None,
    description: str | None = None,
    now: datetime | None = None,
) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "id": new_id("settings", now),
        "type": "settings",
        "championshipTitle": _required(championship_title, "championshipTitle"),
        "location": _required(location, "location"),
        "timestamp": utc_now_iso(now),
    }
    for key, value in (("dates", dates), ("organizer", organizer), ("description", description)):
        cleaned = _optional(value)
        if cleaned is not None:
            record[key] = cleaned
    return record


def edited_settings(
    current: Mapping[str, Any], changes: Mapping[str, Any], now: datetime | None = None
) -> Dict[str, Any]:
    """Whole-record replacement for the current settings, restamped."""
    record = {**current, **changes}
    record["id"] = current.get("id")
    record["type"] = "settings"
    record["timestamp"] = utc_now_iso(now)
    return record


def build_category(name: str, description: str | None = None, *, now: datetime | None = None) -> Dict[str, Any]:
    return {
        "id": new_id("cat", now),
        "type": "category",
        "name": _required(name, "name"),
        "description": _optional(description) or "",
    }


def _normalize_crew(crew: Iterable[Mapping[str, Any]] | None) -> list[Dict[str, str]]:
    """Drop crew rows with a blank name; accepts 'funcao' as the role key."""
    normalized: list[Dict[str, str]] = []
    for member in crew or []:
        if not isinstance(member, Mapping):
            continue
        name = InputSanitizer.sanitize_name(member.get("name") or "")
        if not name:
            continue
        role = str(member.get("role") or member.get("funcao") or "Apoio")
        if role not in CREW_ROLES:
            raise ValueError(f"role must be one of {CREW_ROLES}, got {role}")
        normalized.append({"name": name, "role": role})
    return normalized


def build_team(
    name: str,
    cidade: str,
    category_id: str,
    skipper: str,
    crew: Iterable[Mapping[str, Any]] | None = None,
    *,
    now: datetime | None = None,
) -> Dict[str, Any]:
    return {
        "id": new_id("team", now),
        "type": "team",
        "name": _required(name, "name"),
        "cidade": _required(cidade, "cidade"),
        "categoryId": _required(category_id, "categoryId"),
        "skipper": _required(skipper, "skipper"),
        "crew": _normalize_crew(crew),
    }


def edited_team(team: Mapping[str, Any], changes: Mapping[str, Any]) -> Dict[str, Any]:
    record = {**team, **changes}
    record["id"] = team.get("id")
    record["type"] = "team"
    if "crew" in changes:
        record["crew"] = _normalize_crew(changes.get("crew"))
    return record


def build_race(
    name: str,
    category_id: str,
    date: str | datetime,
    *,
    weather: Mapping[str, Any] | None = None,
    obs_visible: bool = True,
    now: datetime | None = None,
) -> Dict[str, Any]:
    """New scheduled race. Weather fields are copied from a forecast when given."""
    when = parse_iso(date)
    if when is None:
        raise ValueError("date is required")
    record: Dict[str, Any] = {
        "id": new_id("race", now),
        "type": "race",
        "name": _required(name, "name"),
        "categoryId": _required(category_id, "categoryId"),
        "date": utc_now_iso(when),
        "status": "scheduled",
        "obsVisible": bool(obs_visible),
        "timestamp": utc_now_iso(now),
    }
    if weather:
        for key in WEATHER_FIELDS:
            if weather.get(key) is not None:
                record[key] = weather[key]
    return record


def with_race_status(
    race: Mapping[str, Any], status: str, now: datetime | None = None
) -> Dict[str, Any]:
    """Copy of ``race`` with a new status; startTime is set on first activation."""
    if status not in RACE_STATUSES:
        raise ValueError(f"status must be one of {RACE_STATUSES}, got {status}")
    record = dict(race)
    record["status"] = status
    if status == "active" and not race.get("startTime"):
        record["startTime"] = utc_now_iso(now)
    return record


def toggle_obs_visibility(race: Mapping[str, Any]) -> Dict[str, Any]:
    record = dict(race)
    record["obsVisible"] = not bool(race.get("obsVisible"))
    return record


def _elapsed_fields(race: Mapping[str, Any] | None, now: datetime | None) -> Dict[str, Any]:
    if not race or race.get("status") != "active":
        return {}
    start = parse_iso(race.get("startTime"))
    if start is None:
        return {}
    elapsed_ms = (_now(now) - start) // timedelta(milliseconds=1)
    return {"elapsedTimeMs": elapsed_ms, "finishTime": format_elapsed_time(elapsed_ms)}


def build_result(
    race: Mapping[str, Any],
    team_id: str,
    position: int,
    *,
    notes: str | None = None,
    now: datetime | None = None,
) -> Dict[str, Any]:
    """New result for ``race``; finish time is measured from startTime while the race is active."""
    if isinstance(position, bool) or not isinstance(position, int):
        raise ValueError("position must be an integer")
    record: Dict[str, Any] = {
        "id": new_id("result", now),
        "type": "result",
        "raceId": _required(race.get("id"), "raceId"),
        "teamId": _required(team_id, "teamId"),
        "position": position,
        "timestamp": utc_now_iso(now),
    }
    record.update(_elapsed_fields(race, now))
    cleaned = _optional(notes)
    if cleaned is not None:
        record["notes"] = cleaned
    return record


def edited_result(
    result: Mapping[str, Any],
    changes: Mapping[str, Any],
    race: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> Dict[str, Any]:
    """Whole-record replacement; re-measures the finish time if the race is active."""
    record = {**result, **changes}
    record["id"] = result.get("id")
    record["type"] = "result"
    record.update(_elapsed_fields(race, now))
    return record
