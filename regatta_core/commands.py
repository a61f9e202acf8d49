"""Change-instruction interpreter (pure, no network/storage).

This module turns one change instruction into one mutation of the event
document. It is a mechanical router: no referential checks, no uniqueness
checks. Those belong to the calling layer (see guards.py).

Architecture:
- The document is a plain dict with five collections (settings, categories,
  teams, races, results) plus the activeSettingsId pointer
- A ChangeInstruction is a tagged union: operation (ADD/UPDATE/DELETE),
  entity_type (settings/category/team/race/result) and a payload
- apply_instruction() takes (document, instruction) and returns a
  CommandOutcome with the new document
- Mutations are performed on a deepcopy; the caller's document is never touched

Routing:
- ADD: payload is a full record; appended, or replaced in place if the id exists
- UPDATE: payload is a full record; replaces the record sharing its id
- DELETE: payload is {id}; removes that record

Malformed instructions (unknown operation/entity type, missing id, a type tag
that disagrees with the entity type, ADD payload missing required fields)
are logged and treated as no-ops: the input document is returned unchanged.
"""
from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict

from .document import remove_record, replace_record, upsert_record
from .types import ENTITY_TYPES, OPERATIONS, Document, InstructionDict
from .validation import InputSanitizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeInstruction:
    """A single add/update/delete against one entity type."""

    operation: str
    entity_type: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def add(cls, entity_type: str, record: Dict[str, Any]) -> "ChangeInstruction":
        return cls(operation="ADD", entity_type=entity_type, payload=dict(record))

    @classmethod
    def update(cls, entity_type: str, record: Dict[str, Any]) -> "ChangeInstruction":
        return cls(operation="UPDATE", entity_type=entity_type, payload=dict(record))

    @classmethod
    def delete(cls, entity_type: str, record_id: str) -> "ChangeInstruction":
        return cls(operation="DELETE", entity_type=entity_type, payload={"id": record_id})

    @property
    def record_id(self) -> str | None:
        record_id = self.payload.get("id") if isinstance(self.payload, dict) else None
        return record_id if isinstance(record_id, str) else None

    def to_dict(self) -> InstructionDict:
        return {
            "operation": self.operation,
            "entityType": self.entity_type,
            "payload": deepcopy(self.payload),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeInstruction":
        """Build an instruction from its structured wire form.

        Raises:
            ValueError: If operation/entityType are unknown or payload.id is missing
        """
        validated = InputSanitizer.validate_instruction(data)
        return cls(
            operation=validated.operation,
            entity_type=validated.entityType,
            payload=validated.payload,
        )


@dataclass
class CommandOutcome:
    """Result of interpreting one instruction."""

    document: Document
    instruction: ChangeInstruction
    applied: bool
    reason: str | None = None


def _malformed_reason(instruction: ChangeInstruction) -> str | None:
    """Return why an instruction cannot be routed, or None if it can."""
    if instruction.operation not in OPERATIONS:
        return f"unknown operation {instruction.operation!r}"
    if instruction.entity_type not in ENTITY_TYPES:
        return f"unknown entity type {instruction.entity_type!r}"
    payload = instruction.payload
    if not isinstance(payload, dict):
        return "payload must be an object"
    record_id = payload.get("id")
    if not isinstance(record_id, str) or not record_id.strip():
        return f"{instruction.operation} requires payload.id"
    type_tag = payload.get("type")
    if type_tag is not None and type_tag != instruction.entity_type:
        return f"payload type {type_tag!r} does not match {instruction.entity_type!r}"
    if instruction.operation == "ADD":
        try:
            InputSanitizer.validate_record(instruction.entity_type, payload, structural=True)
        except ValueError as e:
            return str(e)
    return None


def _apply_transition(document: Document, instruction: ChangeInstruction) -> CommandOutcome:
    """Route an instruction to the matching document mutation.

    Works on a deepcopy of ``document``; on a no-op the original object is
    returned as-is.
    """
    reason = _malformed_reason(instruction)
    if reason is not None:
        logger.warning(
            f"Ignoring malformed {instruction.operation} {instruction.entity_type}: {reason}"
        )
        return CommandOutcome(document=document, instruction=instruction, applied=False, reason=reason)

    op = instruction.operation
    entity_type = instruction.entity_type
    record_id = instruction.payload["id"]

    new_document: Document = deepcopy(document)
    if op == "ADD":
        upsert_record(new_document, entity_type, deepcopy(instruction.payload))
        applied = True
    elif op == "UPDATE":
        applied = replace_record(new_document, entity_type, deepcopy(instruction.payload))
    else:
        applied = remove_record(new_document, entity_type, record_id)

    if not applied:
        # Unknown id on UPDATE/DELETE: nothing to change
        logger.debug(f"{op} {entity_type} {record_id}: no record with that id")
        return CommandOutcome(
            document=document, instruction=instruction, applied=False, reason="unknown_id"
        )

    logger.debug(f"{op} {entity_type} {record_id} applied")
    return CommandOutcome(document=new_document, instruction=instruction, applied=True)


def apply_instruction(document: Document, instruction: ChangeInstruction) -> CommandOutcome:
    """Apply a change instruction to a document without mutating it.

    Args:
        document: Current event document (not mutated)
        instruction: The change to apply

    Returns:
        CommandOutcome with the new document, the instruction, and whether
        anything changed. ``reason`` explains a no-op.
    """
    return _apply_transition(document, instruction)


def interpret(document: Document, instruction: ChangeInstruction) -> Document:
    """Pure ``(document, instruction) -> document'`` form of apply_instruction."""
    return _apply_transition(document, instruction).document
