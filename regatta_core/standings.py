"""Regatta standings engine.

Single source of truth for standings across admin/TV/export:
- Rank by best single placement (smaller position is better); no points.
- Tie-break 1: more races completed ranks higher.
- Tie-break 2: team name, alphabetical.
- Teams without any result are left out.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .types import Document

EPOCH_FLOOR = "1970-01-01T00:00:00.000Z"


@dataclass(frozen=True)
class Standing:
    team_id: str
    team_name: str
    skipper: str
    crew: tuple[Mapping[str, Any], ...]
    best_position: int | None
    races_count: int
    latest_race_time: str | None = None


@dataclass
class _Tally:
    team: Mapping[str, Any]
    best_position: int | None = None
    races_count: int = 0
    latest_timestamp: str = EPOCH_FLOOR
    latest_race_time: str | None = None


def _standing_sort_key(tally: _Tally) -> tuple:
    name = str(tally.team.get("name") or "")
    return (
        tally.best_position is None,
        tally.best_position if tally.best_position is not None else 0,
        -tally.races_count,
        name.lower(),
        name,
        str(tally.team.get("id") or ""),
    )


def _to_standing(tally: _Tally) -> Standing:
    team = tally.team
    return Standing(
        team_id=str(team.get("id") or ""),
        team_name=str(team.get("name") or ""),
        skipper=str(team.get("skipper") or ""),
        crew=tuple(team.get("crew") or ()),
        best_position=tally.best_position,
        races_count=tally.races_count,
        latest_race_time=tally.latest_race_time,
    )


def compute_standings(
    results: Sequence[Mapping[str, Any]],
    teams: Sequence[Mapping[str, Any]],
) -> list[Standing]:
    """
    Compute ordered standings for one category.

    Args:
      results: results to consider; those for unknown teams are ignored.
      teams: teams eligible for ranking (already filtered to one category).

    A team keeps only its best position and the finish time of its most
    recent result (by timestamp), never an aggregate.
    """
    tallies: dict[str, _Tally] = {}
    for team in teams:
        tallies[team.get("id")] = _Tally(team=team)

    for result in results:
        tally = tallies.get(result.get("teamId"))
        if tally is None:
            continue
        tally.races_count += 1
        position = result.get("position")
        if isinstance(position, (int, float)) and not isinstance(position, bool):
            if tally.best_position is None or position < tally.best_position:
                tally.best_position = position
        timestamp = result.get("timestamp")
        if isinstance(timestamp, str) and timestamp > tally.latest_timestamp:
            tally.latest_timestamp = timestamp
            tally.latest_race_time = result.get("finishTime")

    ranked = [tally for tally in tallies.values() if tally.races_count > 0]
    ranked.sort(key=_standing_sort_key)
    return [_to_standing(tally) for tally in ranked]


def standings_by_category(document: Document) -> list[tuple[Mapping[str, Any], list[Standing]]]:
    """Standings for every category that has at least one team.

    Teams are matched by categoryId; a dangling categoryId simply matches
    no category.
    """
    teams = document.get("teams") or []
    results = document.get("results") or []
    out: list[tuple[Mapping[str, Any], list[Standing]]] = []
    for category in document.get("categories") or []:
        category_teams = [t for t in teams if t.get("categoryId") == category.get("id")]
        if not category_teams:
            continue
        team_ids = {t.get("id") for t in category_teams}
        category_results = [r for r in results if r.get("teamId") in team_ids]
        out.append((category, compute_standings(category_results, category_teams)))
    return out
