import asyncio
import logging
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))
from kistenlager import vocabulary  # noqa: E402
from kistenlager.document_store import (  # noqa: E402
    InMemoryDocumentStore,
    PollingSubscription,
    make_document,
)
from kistenlager.seed import initial_snapshot  # noqa: E402
from kistenlager.sync import (  # noqa: E402
    BootstrapError,
    EngineNotReadyError,
    EngineState,
    SyncEngine,
)

DEBOUNCE = 0.05
GUARD = 0.02


def _engine(store, **kwargs):
    kwargs.setdefault("debounce", DEBOUNCE)
    kwargs.setdefault("echo_guard", GUARD)
    kwargs.setdefault("total_boxes", 5)
    return SyncEngine(store, **kwargs)


def _stored_store(data=None):
    data = data or initial_snapshot(total_boxes=5)
    return InMemoryDocumentStore(document=make_document(1, data, "2024-05-01T00:00:00+00:00"))


def test_start_adopts_existing_document():
    async def main():
        existing = vocabulary.add_variety(initial_snapshot(total_boxes=5), "Belana")
        store = _stored_store(existing)
        engine = _engine(store)

        snapshot = await engine.start()

        assert snapshot == existing
        assert engine.state is EngineState.READY
        assert engine.updated_at == "2024-05-01T00:00:00+00:00"
        assert store.inserts == []
        assert store.replacements == []
        await engine.close()

    asyncio.run(main())


def test_start_seeds_missing_document():
    async def main():
        store = InMemoryDocumentStore()
        engine = _engine(store)

        snapshot = await engine.start()

        assert snapshot == initial_snapshot(total_boxes=5)
        assert len(store.inserts) == 1
        assert store.document["data"] == snapshot
        await engine.close()

    asyncio.run(main())


def test_start_fills_row_without_data():
    async def main():
        store = InMemoryDocumentStore(document={"id": 1, "data": None, "updated_at": None})
        engine = _engine(store)

        await engine.start()

        assert store.inserts == []
        assert len(store.replacements) == 1
        assert store.document["data"] == initial_snapshot(total_boxes=5)
        await engine.close()

    asyncio.run(main())


def test_read_failure_is_final(caplog):
    async def main():
        store = InMemoryDocumentStore()
        store.fail_reads = True
        engine = _engine(store)

        with caplog.at_level(logging.ERROR):
            with pytest.raises(BootstrapError, match="Database error: read failed"):
                await engine.start()
        assert engine.state is EngineState.FAILED
        assert not engine.ready

        store.fail_reads = False
        with pytest.raises(BootstrapError):
            await engine.start()
        assert store.reads == 1
        with pytest.raises(EngineNotReadyError):
            engine.apply(vocabulary.add_variety, "Belana")

    asyncio.run(main())
    assert "Initialization of document 1 failed" in caplog.text


def test_seed_failure_marks_engine_failed():
    async def main():
        store = InMemoryDocumentStore()
        store.fail_writes = True
        engine = _engine(store)

        with pytest.raises(BootstrapError, match="insert failed"):
            await engine.start()
        assert engine.state is EngineState.FAILED
        assert store.document is None

    asyncio.run(main())


def test_invalid_stored_document_fails_bootstrap():
    async def main():
        store = InMemoryDocumentStore(document=make_document(1, {"boxes": []}))
        engine = _engine(store)
        with pytest.raises(BootstrapError, match="valid snapshot"):
            await engine.start()
        assert engine.state is EngineState.FAILED

    asyncio.run(main())


def test_concurrent_starts_seed_once():
    async def main():
        store = InMemoryDocumentStore()
        engine = _engine(store)

        first, second = await asyncio.gather(engine.start(), engine.start())

        assert first is second
        assert len(store.inserts) == 1
        assert store.reads == 1
        await engine.close()

    asyncio.run(main())


def test_two_clients_racing_to_seed_share_one_document():
    async def main():
        store = InMemoryDocumentStore()
        a = _engine(store)
        b = _engine(store)

        await asyncio.gather(a.start(), b.start())

        assert len(store.inserts) == 1
        assert a.snapshot == b.snapshot == store.document["data"]
        await a.close()
        await b.close()

    asyncio.run(main())


def test_edits_before_start_are_rejected():
    engine = _engine(InMemoryDocumentStore())
    with pytest.raises(EngineNotReadyError):
        engine.apply(vocabulary.add_variety, "Belana")
    with pytest.raises(EngineNotReadyError):
        engine.snapshot


def test_debounced_save_writes_latest_snapshot_once():
    async def main():
        store = _stored_store()
        engine = _engine(store)
        await engine.start()

        engine.apply(vocabulary.add_variety, "Belana")
        engine.apply(vocabulary.add_sorting, "Speise")
        engine.apply(vocabulary.save_box, 1, {"varieties": ["Belana"], "sorting": "Speise"})
        assert engine.persist_pending
        assert store.replacements == []

        await asyncio.sleep(DEBOUNCE * 4)

        assert not engine.persist_pending
        assert len(store.replacements) == 1
        assert store.document["data"] == engine.snapshot
        assert engine.snapshot["boxes"][0] == {"id": 1, "varieties": ["Belana"], "sorting": "Speise"}
        assert engine.updated_at == store.document["updated_at"]
        await engine.close()

    asyncio.run(main())


def test_noop_mutation_schedules_no_save():
    async def main():
        store = _stored_store()
        engine = _engine(store)
        await engine.start()

        before = engine.snapshot
        assert engine.apply(vocabulary.add_variety, "laura") is before
        assert not engine.persist_pending
        await engine.close()
        assert store.replacements == []

    asyncio.run(main())


def test_first_notification_after_load_is_ignored():
    async def main():
        store = _stored_store()
        engine = _engine(store, echo_guard=5)
        original = await engine.start()

        first = vocabulary.add_variety(original, "Belana")
        await store.replace(make_document(1, first))
        await asyncio.sleep(0.01)
        assert engine.snapshot == original

        second = vocabulary.add_variety(original, "Annabelle")
        await store.replace(make_document(1, second))
        await asyncio.sleep(0.01)
        assert engine.snapshot == second
        await engine.close()

    asyncio.run(main())


def test_first_notification_after_seeding_is_ignored():
    async def main():
        store = InMemoryDocumentStore()
        engine = _engine(store, echo_guard=5)
        seeded = await engine.start()
        assert len(store.inserts) == 1

        first = vocabulary.add_variety(seeded, "Belana")
        await store.replace(make_document(1, first))
        await asyncio.sleep(0.01)
        assert engine.snapshot == seeded

        second = vocabulary.add_variety(seeded, "Annabelle")
        await store.replace(make_document(1, second))
        await asyncio.sleep(0.01)
        assert engine.snapshot == second
        await engine.close()

    asyncio.run(main())


def test_echo_guard_expires():
    async def main():
        store = _stored_store()
        engine = _engine(store)
        original = await engine.start()
        await asyncio.sleep(GUARD * 3)

        changed = vocabulary.add_variety(original, "Belana")
        await store.replace(make_document(1, changed))
        await asyncio.sleep(0.01)
        assert engine.snapshot == changed
        await engine.close()

    asyncio.run(main())


def test_remote_change_overwrites_unsaved_local_edit():
    async def main():
        store = _stored_store()
        engine = _engine(store, debounce=0.2)
        original = await engine.start()
        await asyncio.sleep(GUARD * 3)

        engine.apply(vocabulary.add_variety, "Lokal")
        remote = vocabulary.add_variety(original, "Entfernt")
        await store.replace(make_document(1, remote))
        await asyncio.sleep(0.01)

        assert engine.snapshot == remote
        # the pending save now writes the remote state back
        await engine.flush()
        assert store.document["data"] == remote
        assert "Lokal" not in store.document["data"]["varieties"]
        await engine.close()

    asyncio.run(main())


def test_echo_of_own_save_keeps_newer_local_edit():
    async def main():
        store = _stored_store()
        engine = _engine(store)
        await engine.start()
        await asyncio.sleep(GUARD * 3)

        engine.apply(vocabulary.add_variety, "Belana")
        await engine.flush()
        latest = engine.apply(vocabulary.add_variety, "Annabelle")
        await asyncio.sleep(0.01)

        assert engine.snapshot is latest
        assert "Annabelle" in engine.snapshot["varieties"]
        await engine.close()

    asyncio.run(main())


class SlowPollStore(InMemoryDocumentStore):
    """Polled store that can hold back a read of a chosen state."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.hold_variety = None
        self.held = asyncio.Event()
        self.release = asyncio.Event()

    def subscribe(self, on_update, since=None):
        return PollingSubscription(self, on_update, since=since, interval=0.01)

    async def get(self):
        document = await super().get()
        if self.hold_variety and document and self.hold_variety in document["data"]["varieties"]:
            self.hold_variety = None
            self.held.set()
            await self.release.wait()
        return document


def test_late_echo_of_older_save_does_not_roll_back():
    async def main():
        store = SlowPollStore(
            document=make_document(1, initial_snapshot(total_boxes=5), "2024-05-01T00:00:00+00:00")
        )
        engine = _engine(store)
        await engine.start()
        await asyncio.sleep(GUARD * 3)

        store.hold_variety = "Erste"
        engine.apply(vocabulary.add_variety, "Erste")
        await engine.flush()
        # a poll has read the first save but not reported it yet
        await asyncio.wait_for(store.held.wait(), 1)

        engine.apply(vocabulary.add_variety, "Zweite")
        await engine.flush()
        store.release.set()
        await asyncio.sleep(0.05)

        assert "Zweite" in engine.snapshot["varieties"]
        assert engine.snapshot == store.document["data"]
        await engine.close()

    asyncio.run(main())


def test_changes_from_other_client_reach_engine():
    async def main():
        store = InMemoryDocumentStore()
        a = _engine(store)
        b = _engine(store)
        await a.start()
        await b.start()
        await asyncio.sleep(GUARD * 3)

        b.apply(vocabulary.add_variety, "Belana")
        await b.flush()
        await asyncio.sleep(0.01)

        assert "Belana" in a.snapshot["varieties"]
        assert a.snapshot == b.snapshot
        await a.close()
        await b.close()

    asyncio.run(main())


def test_failed_save_keeps_local_state(caplog):
    async def main():
        store = _stored_store()
        engine = _engine(store)
        await engine.start()
        store.fail_writes = True

        updated = engine.apply(vocabulary.add_variety, "Belana")
        with caplog.at_level(logging.ERROR):
            await engine.flush()

        assert engine.last_persist_error is not None
        assert engine.snapshot is updated
        assert store.replacements == []
        await asyncio.sleep(DEBOUNCE * 3)
        # no retry
        assert store.replacements == []
        assert not engine.persist_pending

    asyncio.run(main())
    assert "Error saving document 1: replace failed" in caplog.text


def test_saved_snapshot_reloads_identically():
    async def main():
        store = InMemoryDocumentStore()
        engine = _engine(store)
        await engine.start()
        engine.apply(vocabulary.add_trait, "Lager")
        engine.apply(vocabulary.add_trait_option, "Lager", "Halle 1")
        engine.apply(vocabulary.save_box, 2, {"customTraits": {"Lager": "Halle 1"}, "fillLevel": "50%"})
        await engine.close()

        reloaded = _engine(store)
        assert await reloaded.start() == engine.snapshot
        await reloaded.close()

    asyncio.run(main())


def test_listeners_receive_every_snapshot():
    async def main():
        store = _stored_store()
        engine = _engine(store)
        seen = []
        engine.add_listener(seen.append)

        await engine.start()
        engine.apply(vocabulary.add_variety, "Belana")
        engine.remove_listener(seen.append)
        engine.apply(vocabulary.add_variety, "Annabelle")

        assert len(seen) == 2
        assert "Belana" in seen[1]["varieties"]
        await engine.close(flush=False)

    asyncio.run(main())


def test_close_saves_pending_edit_and_stops_updates():
    async def main():
        store = _stored_store()
        engine = _engine(store, debounce=10)
        await engine.start()

        updated = engine.apply(vocabulary.add_variety, "Belana")
        await engine.close()

        assert store.document["data"] == updated
        assert not engine.ready
        await store.replace(make_document(1, initial_snapshot(total_boxes=5)))
        await asyncio.sleep(0.01)
        assert engine.snapshot is updated
        with pytest.raises(EngineNotReadyError):
            engine.apply(vocabulary.add_variety, "Annabelle")

    asyncio.run(main())


def test_close_without_flush_drops_pending_edit():
    async def main():
        store = _stored_store()
        engine = _engine(store, debounce=10)
        await engine.start()
        engine.apply(vocabulary.add_variety, "Belana")
        await engine.close(flush=False)
        assert store.replacements == []

    asyncio.run(main())


def test_replace_snapshot_validates_shape():
    async def main():
        store = _stored_store()
        engine = _engine(store)
        await engine.start()
        with pytest.raises(ValueError):
            engine.replace_snapshot({"boxes": []})
        fresh = initial_snapshot(total_boxes=3)
        assert engine.replace_snapshot(fresh) is fresh
        await engine.close()
        assert store.document["data"] == fresh

    asyncio.run(main())
