"""Persistence collaborators for the event document.

The controller calls ``save`` only after a confirmed change and ``load``
once at startup. ``load`` returning None means first run, not failure.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from copy import deepcopy
from pathlib import Path
from typing import Protocol

from .document import normalize_document
from .types import Document

logger = logging.getLogger(__name__)


class Storage(Protocol):
    def save(self, document: Document) -> None:
        ...

    def load(self) -> Document | None:
        ...

    def clear(self) -> None:
        ...


class MemoryStorage:
    """Keeps the last saved document in process memory."""

    def __init__(self, document: Document | None = None) -> None:
        self._document = deepcopy(document) if document is not None else None
        self.save_count = 0

    def save(self, document: Document) -> None:
        self._document = deepcopy(document)
        self.save_count += 1

    def load(self) -> Document | None:
        if self._document is None:
            return None
        return deepcopy(self._document)

    def clear(self) -> None:
        self._document = None


class JsonFileStorage:
    """Stores the document as one JSON file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash mid-write leaves the previous file intact.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def save(self, document: Document) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved event document to {self.path}")

    def load(self) -> Document | None:
        """Read the stored document.

        Raises:
            ValueError: if the file exists but is not valid JSON
        """
        if not self.path.exists():
            return None
        with self.path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
        return normalize_document(raw)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
