"""Event document model: five ordered collections keyed by record id.

The helpers here mutate the document they are given. Callers that need
purity (the command interpreter) copy first. Absence is never an error:
lookups return None and removals of unknown ids do nothing.
"""
from __future__ import annotations

from typing import Any, Dict, List

from .types import COLLECTIONS, Document


def empty_document() -> Document:
    """Create an event document with no records."""
    return {
        "settings": [],
        "categories": [],
        "teams": [],
        "races": [],
        "results": [],
        "activeSettingsId": None,
    }


def collection_for(entity_type: str) -> str:
    """Return the document key holding records of ``entity_type``.

    Raises:
        KeyError: for an unknown entity type
    """
    return COLLECTIONS[entity_type]


def normalize_document(raw: Any) -> Document:
    """Coerce loaded or remotely returned JSON into a document shape.

    Missing or non-list collections become empty lists and non-dict
    records are dropped. The active settings pointer is kept only when it
    still names an existing settings record.
    """
    doc = empty_document()
    if not isinstance(raw, dict):
        return doc
    for key in COLLECTIONS.values():
        items = raw.get(key)
        if isinstance(items, list):
            doc[key] = [item for item in items if isinstance(item, dict)]
    active_id = raw.get("activeSettingsId")
    if isinstance(active_id, str) and any(
        s.get("id") == active_id for s in doc["settings"]
    ):
        doc["activeSettingsId"] = active_id
    return doc


def _records(document: Document, entity_type: str) -> List[Dict[str, Any]]:
    key = collection_for(entity_type)
    items = document.get(key)
    if not isinstance(items, list):
        items = []
        document[key] = items
    return items


def _index_of(items: List[Dict[str, Any]], record_id: str) -> int | None:
    for i, item in enumerate(items):
        if isinstance(item, dict) and item.get("id") == record_id:
            return i
    return None


def get_record(document: Document, entity_type: str, record_id: str) -> Dict[str, Any] | None:
    items = document.get(collection_for(entity_type)) or []
    idx = _index_of(items, record_id)
    return items[idx] if idx is not None else None


def upsert_record(document: Document, entity_type: str, record: Dict[str, Any]) -> None:
    """Append ``record`` when its id is new, otherwise replace it in place.

    Appending a settings record makes it the active settings.
    """
    items = _records(document, entity_type)
    idx = _index_of(items, record.get("id"))
    if idx is None:
        items.append(record)
        if entity_type == "settings":
            document["activeSettingsId"] = record.get("id")
    else:
        items[idx] = record


def replace_record(document: Document, entity_type: str, record: Dict[str, Any]) -> bool:
    """Replace the record sharing ``record['id']``; returns False if absent."""
    items = _records(document, entity_type)
    idx = _index_of(items, record.get("id"))
    if idx is None:
        return False
    items[idx] = record
    return True


def remove_record(document: Document, entity_type: str, record_id: str) -> bool:
    """Remove a record by id; returns False (and does nothing) if absent."""
    items = _records(document, entity_type)
    idx = _index_of(items, record_id)
    if idx is None:
        return False
    del items[idx]
    if entity_type == "settings" and document.get("activeSettingsId") == record_id:
        document["activeSettingsId"] = items[-1].get("id") if items else None
    return True


def current_settings(document: Document) -> Dict[str, Any] | None:
    """Return the active settings record.

    Documents written before the pointer existed fall back to the last
    settings record.
    """
    settings = document.get("settings") or []
    active_id = document.get("activeSettingsId")
    if active_id:
        idx = _index_of(settings, active_id)
        if idx is not None:
            return settings[idx]
    return settings[-1] if settings else None
