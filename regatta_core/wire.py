"""Text form of change instructions, used only at the network boundary.

Rendered shapes:
    Add the following new item of type 'race' to the data: {...}
    Update the following item of type 'race' in the data: {...}
    Delete the item with type 'race' and id 'race_1' from the data.

The parser also accepts terse variants ("add new item of type race: {...}",
"delete item with type race and id race_1"). Anything it cannot make sense
of yields None; it never raises.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any

from .commands import ChangeInstruction

logger = logging.getLogger(__name__)

_ADD_RE = re.compile(r"\badd\b.*?\bitem\b", re.IGNORECASE | re.DOTALL)
_UPDATE_RE = re.compile(r"\bupdate\b.*?\bitem\b", re.IGNORECASE | re.DOTALL)
_DELETE_RE = re.compile(r"\bdelete\b.*?\bitem\b", re.IGNORECASE | re.DOTALL)
_TYPE_RE = re.compile(r"""\btype\s+(?:'([^']*)'|"([^"]*)"|([A-Za-z_]+))""", re.IGNORECASE)
_ID_RE = re.compile(
    r"""\bid\s+(?:'((?:[^'\\]|\\.)*)'|"((?:[^"\\]|\\.)*)"|([^\s'"]+))""",
    re.IGNORECASE | re.DOTALL,
)
_ESCAPED_RE = re.compile(r"\\(.)", re.DOTALL)


def _quote(value: str) -> str:
    """Backslash-escape quotes so ids like O'Brien survive the round trip."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def format_instruction(instruction: ChangeInstruction) -> str:
    """Render an instruction in its text form."""
    entity_type = instruction.entity_type
    if instruction.operation == "DELETE":
        return (
            f"Delete the item with type '{entity_type}' and id "
            f"'{_quote(instruction.record_id or '')}' from the data."
        )
    body = json.dumps(instruction.payload, ensure_ascii=False)
    if instruction.operation == "ADD":
        return f"Add the following new item of type '{entity_type}' to the data: {body}"
    return f"Update the following item of type '{entity_type}' in the data: {body}"


def _first_group(match: re.Match[str] | None) -> str | None:
    if match is None:
        return None
    for value in match.groups():
        if value is not None:
            return value.strip()
    return None


def _extract_payload(text: str) -> dict | None:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    try:
        payload = json.loads(text[start : end + 1])
    except ValueError:
        logger.warning("Instruction payload is not valid JSON")
        return None
    return payload if isinstance(payload, dict) else None


def parse_instruction(text: str) -> ChangeInstruction | None:
    """Parse the text form of an instruction.

    The verb and type are looked up only in the text before the JSON payload,
    so words inside the payload (team notes etc.) cannot change the verb.
    """
    if not isinstance(text, str) or not text.strip():
        return None
    brace = text.find("{")
    prefix = text if brace == -1 else text[:brace]
    entity_type = _first_group(_TYPE_RE.search(prefix))

    if _ADD_RE.search(prefix) or _UPDATE_RE.search(prefix):
        operation = "ADD" if _ADD_RE.search(prefix) else "UPDATE"
        payload = _extract_payload(text)
        if payload is None:
            logger.warning(f"Unparseable {operation} instruction: {text[:80]!r}")
            return None
        if not entity_type:
            tag = payload.get("type")
            entity_type = tag if isinstance(tag, str) else None
        if not entity_type:
            logger.warning(f"{operation} instruction without entity type: {text[:80]!r}")
            return None
        return ChangeInstruction(operation=operation, entity_type=entity_type.lower(), payload=payload)

    delete_match = _DELETE_RE.search(prefix)
    if delete_match:
        # DELETE has no payload, so the id may itself contain braces
        tail = text[delete_match.start() :]
        entity_type = _first_group(_TYPE_RE.search(tail))
        id_match = _ID_RE.search(tail)
        record_id = _first_group(id_match)
        if record_id and id_match.group(3) is not None:
            # unquoted id at the end of a sentence
            record_id = record_id.rstrip(".,;:")
        elif record_id:
            record_id = _ESCAPED_RE.sub(r"\1", record_id)
        if not entity_type or not record_id:
            logger.warning(f"Unparseable DELETE instruction: {text[:80]!r}")
            return None
        return ChangeInstruction.delete(entity_type.lower(), record_id)

    logger.warning(f"Unrecognized instruction: {text[:80]!r}")
    return None


def coerce_instruction(value: Any) -> ChangeInstruction | None:
    """Accept an instruction object, its structured dict form, or its text form."""
    if isinstance(value, ChangeInstruction):
        return value
    if isinstance(value, dict):
        try:
            return ChangeInstruction.from_dict(value)
        except ValueError:
            return None
    if isinstance(value, str):
        return parse_instruction(value)
    logger.warning(f"Unsupported instruction value: {type(value).__name__}")
    return None
