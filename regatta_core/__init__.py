from .commands import (
    ChangeInstruction,
    CommandOutcome,
    apply_instruction,
    interpret,
)
from .document import (
    current_settings,
    empty_document,
    get_record,
    normalize_document,
    remove_record,
    upsert_record,
)
from .guards import (
    GuardError,
    check_delete,
    check_record,
    check_race_activation,
    check_race_reference,
    check_result,
    check_team_reference,
    eligible_teams,
)
from .standings import Standing, compute_standings, standings_by_category
from .storage import JsonFileStorage, MemoryStorage, Storage
from .sync import (
    ConfirmationError,
    HttpAuthority,
    LocalAuthority,
    RemoteAuthority,
    SyncController,
    SyncFailure,
    SyncOutcome,
    optimistic_from,
)
from .types import Category, Document, Race, Result, Settings, Team
from .validation import InputSanitizer, ValidatedInstruction
from .wire import coerce_instruction, format_instruction, parse_instruction

__all__ = [
    "ChangeInstruction",
    "CommandOutcome",
    "apply_instruction",
    "interpret",
    "current_settings",
    "empty_document",
    "get_record",
    "normalize_document",
    "remove_record",
    "upsert_record",
    "GuardError",
    "check_delete",
    "check_record",
    "check_race_activation",
    "check_race_reference",
    "check_result",
    "check_team_reference",
    "eligible_teams",
    "Standing",
    "compute_standings",
    "standings_by_category",
    "JsonFileStorage",
    "MemoryStorage",
    "Storage",
    "ConfirmationError",
    "HttpAuthority",
    "LocalAuthority",
    "RemoteAuthority",
    "SyncController",
    "SyncFailure",
    "SyncOutcome",
    "optimistic_from",
    "Category",
    "Document",
    "Race",
    "Result",
    "Settings",
    "Team",
    "InputSanitizer",
    "ValidatedInstruction",
    "coerce_instruction",
    "format_instruction",
    "parse_instruction",
]
