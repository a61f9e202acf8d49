"""Caller-layer checks run before an instruction is issued.

The interpreter removes and replaces records unconditionally and only
checks that required fields are present. Referential rules (no orphaning
deletes, one active race, results only for teams of the race's category)
and domain values such as crew roles and race status are checked here.
Each check returns a GuardError describing the rejection, or None when the
change may proceed.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

from .document import get_record
from .types import Document
from .validation import InputSanitizer


@dataclass
class GuardError:
    """Represents a rejected change (pure, never raised)."""

    kind: str
    message: str | None = None


def _any(items: List[Dict[str, Any]] | None, key: str, value: Any) -> bool:
    return any(item.get(key) == value for item in items or [])


def check_delete(document: Document, entity_type: str, record_id: str) -> GuardError | None:
    """Reject deletes that would leave dependent records dangling."""
    if entity_type == "category":
        if _any(document.get("teams"), "categoryId", record_id) or _any(
            document.get("races"), "categoryId", record_id
        ):
            return GuardError(
                kind="category_in_use",
                message="Category is used by teams or races",
            )
    elif entity_type == "race":
        if _any(document.get("results"), "raceId", record_id):
            return GuardError(kind="race_has_results", message="Race has recorded results")
    elif entity_type == "team":
        if _any(document.get("results"), "teamId", record_id):
            return GuardError(kind="team_has_results", message="Team has recorded results")
    return None


def check_record(entity_type: str, record: Mapping[str, Any]) -> GuardError | None:
    """Full schema check, including crew roles, race status and name lengths.

    The interpreter only checks that required fields are present, so forms
    run this before issuing an ADD or UPDATE.
    """
    try:
        InputSanitizer.validate_record(entity_type, dict(record))
    except ValueError as e:
        return GuardError(kind="invalid_record", message=str(e))
    return None


def check_race_activation(document: Document, race_id: str) -> GuardError | None:
    """Only one race may be active at a time."""
    for race in document.get("races") or []:
        if race.get("id") != race_id and race.get("status") == "active":
            return GuardError(
                kind="race_already_active",
                message=f"Race '{race.get('name')}' is already active; finish it first",
            )
    return None


def _check_category(document: Document, record: Mapping[str, Any]) -> GuardError | None:
    category_id = record.get("categoryId")
    if not category_id or get_record(document, "category", category_id) is None:
        return GuardError(kind="unknown_category", message=f"Unknown category {category_id!r}")
    return None


def check_team_reference(document: Document, team: Mapping[str, Any]) -> GuardError | None:
    return _check_category(document, team)


def check_race_reference(document: Document, race: Mapping[str, Any]) -> GuardError | None:
    return _check_category(document, race)


def check_result(document: Document, result: Mapping[str, Any]) -> GuardError | None:
    """Validate a result before it is added or updated.

    An update of an existing result (same id) does not count as a duplicate
    of itself.
    """
    race = get_record(document, "race", result.get("raceId"))
    if race is None:
        return GuardError(kind="unknown_race", message=f"Unknown race {result.get('raceId')!r}")
    team = get_record(document, "team", result.get("teamId"))
    if team is None:
        return GuardError(kind="unknown_team", message=f"Unknown team {result.get('teamId')!r}")
    if team.get("categoryId") != race.get("categoryId"):
        return GuardError(
            kind="team_not_in_race_category",
            message="Team does not belong to the race's category",
        )
    position = result.get("position")
    if not isinstance(position, int) or isinstance(position, bool) or position <= 0:
        return GuardError(kind="invalid_position", message="Position must be a positive integer")
    for other in document.get("results") or []:
        if (
            other.get("id") != result.get("id")
            and other.get("raceId") == race.get("id")
            and other.get("teamId") == team.get("id")
        ):
            return GuardError(
                kind="duplicate_team_result",
                message="Team already has a result for this race",
            )
    return None


def eligible_teams(document: Document, race_id: str) -> List[Dict[str, Any]]:
    """Teams of the race's category that have no result for it yet."""
    race = get_record(document, "race", race_id)
    if race is None:
        return []
    finished = {
        r.get("teamId") for r in document.get("results") or [] if r.get("raceId") == race_id
    }
    return [
        t
        for t in document.get("teams") or []
        if t.get("categoryId") == race.get("categoryId") and t.get("id") not in finished
    ]
