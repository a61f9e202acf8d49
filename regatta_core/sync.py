"""Optimistic-then-confirm synchronization of the event document.

Flow per instruction (SyncController.submit):
1. Remember the visible document as ``previous``
2. If an optimistic function is given, publish ``optimistic(previous)`` at once
3. Await ``authority.confirm(instruction, previous)``
4. Success: publish the authority's document (authoritative, may differ from
   the optimistic guess) and save it to storage
5. Failure: publish ``previous`` again, record a SyncFailure, save nothing

The controller is the only writer of the visible document. It does not
queue, retry, time out or cancel: callers serialize their instructions and
resubmit after a failure. Storage is written only after a confirmation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Protocol

import httpx

from .commands import ChangeInstruction, interpret
from .document import empty_document, normalize_document
from .storage import Storage
from .types import Document
from .wire import coerce_instruction, format_instruction

logger = logging.getLogger(__name__)

Listener = Callable[[Document], None]
OptimisticUpdate = Callable[[Document], Document]


class ConfirmationError(Exception):
    """The remote authority could not confirm an instruction."""


@dataclass
class SyncFailure:
    """Represents a failed step at the controller boundary."""

    kind: str  # 'confirmation_failed' | 'persistence_failed' | 'load_failed'
    message: str | None = None


@dataclass
class SyncOutcome:
    """Result of submitting one instruction."""

    ok: bool
    document: Document
    persisted: bool
    failure: SyncFailure | None = None


class RemoteAuthority(Protocol):
    async def confirm(self, instruction: Any, document: Document) -> Document:
        ...


class LocalAuthority:
    """In-process authority that applies instructions deterministically.

    Accepts the instruction as an object, its structured dict, or its text
    form. An instruction it cannot parse leaves the document unchanged.
    """

    async def confirm(self, instruction: Any, document: Document) -> Document:
        parsed = coerce_instruction(instruction)
        if parsed is None:
            logger.warning("Local authority ignored an unparseable instruction")
            return document
        return interpret(document, parsed)


def _instruction_text(instruction: Any) -> str:
    if isinstance(instruction, str):
        return instruction
    parsed = coerce_instruction(instruction)
    if parsed is None:
        raise ConfirmationError("instruction cannot be serialized")
    return format_instruction(parsed)


class HttpAuthority:
    """Authority reached over HTTP.

    POSTs ``{"instruction": <text form>, "document": <document>}`` and expects
    the confirmed document back, either bare or under a "document" key.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        headers: Dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}
        self._client = client

    async def _post(self, body: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.url, json=body, headers=self.headers)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, json=body, headers=self.headers)

    async def confirm(self, instruction: Any, document: Document) -> Document:
        body = {"instruction": _instruction_text(instruction), "document": document}
        try:
            response = await self._post(body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ConfirmationError(f"authority request failed: {e}") from e
        except ValueError as e:
            raise ConfirmationError("authority returned invalid JSON") from e

        if isinstance(data, dict) and isinstance(data.get("document"), dict):
            data = data["document"]
        if not isinstance(data, dict):
            raise ConfirmationError("authority returned no document")
        return normalize_document(data)


def optimistic_from(instruction: Any) -> OptimisticUpdate:
    """Optimistic function that applies ``instruction`` locally."""
    parsed = coerce_instruction(instruction)

    def _apply(document: Document) -> Document:
        if parsed is None:
            return document
        return interpret(document, parsed)

    return _apply


class SyncController:
    """Owns the visible event document and reconciles it with an authority.

    After a failed load the controller refuses instructions until
    ``initialize()`` succeeds or ``clear()`` is called, so the unreadable
    stored document is never overwritten.
    """

    def __init__(
        self,
        authority: RemoteAuthority,
        storage: Storage | None = None,
        document: Document | None = None,
    ) -> None:
        self._authority = authority
        self._storage = storage
        self._document: Document = document if document is not None else empty_document()
        self._listeners: List[Listener] = []
        self._in_flight = 0
        self._load_failed = False
        self.last_error: SyncFailure | None = None

    @property
    def document(self) -> Document:
        return self._document

    @property
    def authority(self) -> RemoteAuthority:
        return self._authority

    @property
    def is_processing(self) -> bool:
        """True while any confirmation is outstanding."""
        return self._in_flight > 0

    @property
    def is_writable(self) -> bool:
        return not self._load_failed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener for every published document; returns an unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, document: Document) -> None:
        self._document = document
        for listener in list(self._listeners):
            try:
                listener(document)
            except Exception:
                logger.exception("Document listener failed")

    def initialize(self) -> Document:
        """Load the stored document, or start empty on first run."""
        self.last_error = None
        self._load_failed = False
        loaded: Document | None = None
        if self._storage is not None:
            try:
                loaded = self._storage.load()
            except Exception as e:
                logger.exception("Failed to load stored event document")
                self.last_error = SyncFailure(kind="load_failed", message=str(e))
                self._load_failed = True
        self._publish(loaded if loaded is not None else empty_document())
        return self._document

    def clear(self) -> Document:
        """Drop all stored data and start from an empty document."""
        if self._storage is not None:
            self._storage.clear()
        self.last_error = None
        self._load_failed = False
        self._publish(empty_document())
        return self._document

    def _persist(self, document: Document) -> SyncFailure | None:
        if self._storage is None:
            return None
        try:
            self._storage.save(document)
        except Exception as e:
            logger.exception("Confirmed document could not be saved")
            return SyncFailure(kind="persistence_failed", message=str(e))
        return None

    async def submit(
        self,
        instruction: ChangeInstruction | Dict[str, Any] | str,
        optimistic: OptimisticUpdate | None = None,
    ) -> SyncOutcome:
        """Apply one instruction optimistically, then reconcile with the authority.

        Never raises: a confirmation failure restores the previous document
        and is reported in the returned outcome (and ``last_error``).
        """
        if self._load_failed:
            logger.warning("Stored document failed to load; instruction refused")
            failure = SyncFailure(
                kind="load_failed", message="stored document could not be loaded"
            )
            return SyncOutcome(ok=False, document=self._document, persisted=False, failure=failure)

        previous = self._document
        self._in_flight += 1
        self.last_error = None
        try:
            if optimistic is not None:
                try:
                    self._publish(optimistic(previous))
                except Exception:
                    logger.exception("Optimistic update failed; waiting for confirmation")

            try:
                confirmed = await self._authority.confirm(instruction, previous)
                if not isinstance(confirmed, dict):
                    raise ConfirmationError("authority returned no document")
            except Exception as e:
                logger.warning(f"Confirmation failed, rolling back: {e}")
                failure = SyncFailure(kind="confirmation_failed", message=str(e))
                self.last_error = failure
                self._publish(previous)
                return SyncOutcome(ok=False, document=previous, persisted=False, failure=failure)

            self._publish(confirmed)
            failure = self._persist(confirmed)
            if failure is not None:
                self.last_error = failure
                return SyncOutcome(ok=True, document=confirmed, persisted=False, failure=failure)
            return SyncOutcome(
                ok=True, document=confirmed, persisted=self._storage is not None
            )
        finally:
            self._in_flight -= 1
