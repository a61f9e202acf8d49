"""Synchronization controller: optimistic publish, reconcile, rollback."""

import asyncio
import json

import httpx
import pytest

from regatta_core import (
    ChangeInstruction,
    ConfirmationError,
    HttpAuthority,
    JsonFileStorage,
    LocalAuthority,
    MemoryStorage,
    SyncController,
    empty_document,
    format_instruction,
    optimistic_from,
)


def _category(cid="cat_1", name="Laser"):
    return {"id": cid, "type": "category", "name": name}


class _FixedAuthority:
    def __init__(self, document):
        self.document = document
        self.calls = []

    async def confirm(self, instruction, document):
        self.calls.append((instruction, document))
        return self.document


class _FailingAuthority:
    async def confirm(self, instruction, document):
        raise ConfirmationError("network down")


class _GatedAuthority:
    """Suspends until released so the optimistic state can be observed."""

    def __init__(self):
        self.release = asyncio.Event()

    async def confirm(self, instruction, document):
        await self.release.wait()
        return await LocalAuthority().confirm(instruction, document)


class _StepAuthority:
    """Holds every confirmation until the test resolves it."""

    def __init__(self):
        self.calls = []

    async def confirm(self, instruction, document):
        pending = asyncio.get_running_loop().create_future()
        self.calls.append((instruction, document, pending))
        return await pending


class _BrokenStorage(MemoryStorage):
    def save(self, document):
        raise OSError("disk full")


@pytest.mark.asyncio
async def test_success_publishes_authority_document_not_optimistic_guess():
    remote = empty_document()
    remote["categories"].append(_category("cat_server", "Server Assigned"))
    authority = _FixedAuthority(remote)
    storage = MemoryStorage()
    controller = SyncController(authority, storage)

    instruction = ChangeInstruction.add("category", _category())
    outcome = await controller.submit(instruction, optimistic_from(instruction))

    assert outcome.ok is True
    assert outcome.persisted is True
    assert controller.document == remote
    assert storage.load() == remote
    assert authority.calls[0][1] == empty_document()


@pytest.mark.asyncio
async def test_failure_restores_previous_document_and_does_not_persist():
    start = empty_document()
    start["categories"].append(_category())
    storage = MemoryStorage()
    controller = SyncController(_FailingAuthority(), storage, document=start)
    published = []
    controller.subscribe(published.append)

    instruction = ChangeInstruction.delete("category", "cat_1")
    outcome = await controller.submit(instruction, optimistic_from(instruction))

    assert outcome.ok is False
    assert outcome.failure.kind == "confirmation_failed"
    assert "network down" in outcome.failure.message
    assert controller.document is start
    assert controller.last_error == outcome.failure
    assert storage.load() is None
    assert storage.save_count == 0
    # optimistic removal was visible, then rolled back
    assert published[0]["categories"] == []
    assert published[-1] is start


@pytest.mark.asyncio
async def test_optimistic_document_is_visible_while_confirmation_is_pending():
    authority = _GatedAuthority()
    storage = MemoryStorage()
    controller = SyncController(authority, storage)
    instruction = ChangeInstruction.add("category", _category())

    task = asyncio.create_task(controller.submit(instruction, optimistic_from(instruction)))
    await asyncio.sleep(0)
    assert controller.is_processing is True
    assert [c["id"] for c in controller.document["categories"]] == ["cat_1"]
    assert storage.save_count == 0

    authority.release.set()
    outcome = await task
    assert outcome.ok is True
    assert controller.is_processing is False
    assert storage.save_count == 1


@pytest.mark.asyncio
async def test_without_optimistic_function_document_changes_only_after_confirmation():
    authority = _GatedAuthority()
    controller = SyncController(authority, MemoryStorage())
    task = asyncio.create_task(controller.submit(ChangeInstruction.add("category", _category())))
    await asyncio.sleep(0)
    assert controller.document["categories"] == []
    authority.release.set()
    await task
    assert controller.document["categories"] == [_category()]


@pytest.mark.asyncio
async def test_persistence_failure_keeps_reconciled_document():
    controller = SyncController(LocalAuthority(), _BrokenStorage())
    outcome = await controller.submit(ChangeInstruction.add("category", _category()))
    assert outcome.ok is True
    assert outcome.persisted is False
    assert outcome.failure.kind == "persistence_failed"
    assert controller.document["categories"] == [_category()]


@pytest.mark.asyncio
async def test_non_document_reply_is_treated_as_failure():
    start = empty_document()
    controller = SyncController(_FixedAuthority(None), MemoryStorage(), document=start)
    outcome = await controller.submit(ChangeInstruction.add("category", _category()))
    assert outcome.ok is False
    assert controller.document is start


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_submit():
    controller = SyncController(LocalAuthority(), MemoryStorage())

    def _boom(document):
        raise RuntimeError("render failed")

    controller.subscribe(_boom)
    outcome = await controller.submit(ChangeInstruction.add("category", _category()))
    assert outcome.ok is True


@pytest.mark.asyncio
async def test_unsubscribe_stops_notifications():
    controller = SyncController(LocalAuthority())
    seen = []
    unsubscribe = controller.subscribe(seen.append)
    await controller.submit(ChangeInstruction.add("category", _category()))
    unsubscribe()
    await controller.submit(ChangeInstruction.add("category", _category("cat_2")))
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_local_authority_accepts_text_instructions():
    controller = SyncController(LocalAuthority(), MemoryStorage())
    text = format_instruction(ChangeInstruction.add("category", _category()))
    outcome = await controller.submit(text, optimistic_from(text))
    assert outcome.ok is True
    assert controller.document["categories"] == [_category()]


@pytest.mark.asyncio
async def test_local_authority_ignores_garbage_text():
    start = empty_document()
    controller = SyncController(LocalAuthority(), MemoryStorage(), document=start)
    outcome = await controller.submit("Add the following new item of type 'team': {not json}")
    assert outcome.ok is True
    assert controller.document == start


@pytest.mark.asyncio
async def test_add_with_fresh_ids_duplicates_but_update_is_idempotent():
    controller = SyncController(LocalAuthority())
    await controller.submit(ChangeInstruction.add("category", _category("cat_1")))
    await controller.submit(ChangeInstruction.add("category", _category("cat_2", "Laser")))
    assert len(controller.document["categories"]) == 2

    update = ChangeInstruction.update("category", _category("cat_1", "Optimist"))
    await controller.submit(update)
    first = controller.document
    await controller.submit(update)
    assert controller.document == first


def test_initialize_loads_from_storage_or_starts_empty():
    stored = empty_document()
    stored["categories"].append(_category())
    controller = SyncController(LocalAuthority(), MemoryStorage(stored))
    assert controller.initialize() == stored

    fresh = SyncController(LocalAuthority(), MemoryStorage())
    assert fresh.initialize() == empty_document()
    assert fresh.last_error is None


def test_initialize_records_load_failure():
    class _Corrupt(MemoryStorage):
        def load(self):
            raise ValueError("bad json")

    controller = SyncController(LocalAuthority(), _Corrupt())
    assert controller.initialize() == empty_document()
    assert controller.last_error.kind == "load_failed"


@pytest.mark.asyncio
async def test_overlapping_submit_starts_from_visible_optimistic_document():
    authority = _StepAuthority()
    storage = MemoryStorage()
    controller = SyncController(authority, storage)
    first = ChangeInstruction.add("category", _category("cat_1"))
    second = ChangeInstruction.add("category", _category("cat_2", "Optimist"))

    first_task = asyncio.create_task(controller.submit(first, optimistic_from(first)))
    await asyncio.sleep(0)
    first_optimistic = controller.document
    second_task = asyncio.create_task(controller.submit(second, optimistic_from(second)))
    await asyncio.sleep(0)

    assert authority.calls[0][1] == empty_document()
    assert authority.calls[1][1] is first_optimistic
    assert [c["id"] for c in controller.document["categories"]] == ["cat_1", "cat_2"]

    # first confirms, second fails: the second rollback lands on the first's optimistic document
    authority.calls[0][2].set_result(await LocalAuthority().confirm(first, empty_document()))
    assert (await first_task).ok is True
    assert controller.is_processing is True
    authority.calls[1][2].set_exception(ConfirmationError("timeout"))
    second_outcome = await second_task

    assert second_outcome.ok is False
    assert controller.document is first_optimistic
    assert [c["id"] for c in controller.document["categories"]] == ["cat_1"]
    assert [c["id"] for c in storage.load()["categories"]] == ["cat_1"]
    assert controller.is_processing is False


@pytest.mark.asyncio
async def test_overlapping_submit_first_fails_second_confirms():
    authority = _StepAuthority()
    storage = MemoryStorage()
    controller = SyncController(authority, storage)
    first = ChangeInstruction.add("category", _category("cat_1"))
    second = ChangeInstruction.add("category", _category("cat_2", "Optimist"))

    first_task = asyncio.create_task(controller.submit(first, optimistic_from(first)))
    await asyncio.sleep(0)
    second_task = asyncio.create_task(controller.submit(second, optimistic_from(second)))
    await asyncio.sleep(0)
    second_previous = authority.calls[1][1]

    authority.calls[0][2].set_exception(ConfirmationError("rejected"))
    assert (await first_task).ok is False
    assert controller.document == empty_document()
    assert controller.is_processing is True

    # the second confirmation was computed from the first's optimistic document
    confirmed = await LocalAuthority().confirm(second, second_previous)
    authority.calls[1][2].set_result(confirmed)
    assert (await second_task).ok is True
    assert controller.document is confirmed
    assert [c["id"] for c in controller.document["categories"]] == ["cat_1", "cat_2"]
    assert storage.load() == confirmed
    assert controller.is_processing is False


@pytest.mark.asyncio
async def test_failed_load_never_overwrites_the_stored_file(tmp_path):
    path = tmp_path / "regatta.json"
    categories = [_category(f"cat_{i}", f"Classe {i}") for i in range(50)]
    truncated = json.dumps({"categories": categories})[:-20]
    path.write_text(truncated, encoding="utf-8")
    authority = _FixedAuthority(empty_document())
    controller = SyncController(authority, JsonFileStorage(path))

    controller.initialize()
    assert controller.last_error.kind == "load_failed"
    assert controller.is_writable is False

    outcome = await controller.submit(ChangeInstruction.add("category", _category("cat_new")))
    assert outcome.ok is False
    assert outcome.failure.kind == "load_failed"
    assert authority.calls == []
    assert path.read_text(encoding="utf-8") == truncated

    controller.clear()
    assert controller.is_writable is True
    assert (await controller.submit(ChangeInstruction.add("category", _category("cat_new")))).ok is True
    assert path.exists()


def test_clear_empties_storage_and_document():
    stored = empty_document()
    stored["categories"].append(_category())
    storage = MemoryStorage(stored)
    controller = SyncController(LocalAuthority(), storage)
    controller.initialize()
    controller.clear()
    assert controller.document == empty_document()
    assert storage.load() is None


@pytest.mark.asyncio
async def test_http_authority_posts_text_instruction_and_returns_document():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        doc = empty_document()
        doc["categories"].append(_category("cat_9"))
        return httpx.Response(200, json={"document": doc})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    authority = HttpAuthority("https://authority.test/confirm", client=client)
    controller = SyncController(authority, MemoryStorage())

    outcome = await controller.submit(ChangeInstruction.delete("category", "cat_1"))
    await client.aclose()

    assert outcome.ok is True
    assert seen["instruction"] == "Delete the item with type 'category' and id 'cat_1' from the data."
    assert seen["document"] == empty_document()
    assert [c["id"] for c in controller.document["categories"]] == ["cat_9"]


@pytest.mark.asyncio
async def test_http_authority_error_status_rolls_back():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"detail": "unavailable"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    authority = HttpAuthority("https://authority.test/confirm", client=client)
    start = empty_document()
    controller = SyncController(authority, MemoryStorage(), document=start)

    instruction = ChangeInstruction.add("category", _category())
    outcome = await controller.submit(instruction, optimistic_from(instruction))
    await client.aclose()

    assert outcome.ok is False
    assert outcome.failure.kind == "confirmation_failed"
    assert controller.document is start


@pytest.mark.asyncio
async def test_http_authority_raises_confirmation_error_on_bad_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not json")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    authority = HttpAuthority("https://authority.test/confirm", client=client)
    with pytest.raises(ConfirmationError):
        await authority.confirm(ChangeInstruction.delete("team", "t1"), empty_document())
    await client.aclose()
