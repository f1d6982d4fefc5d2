"""Tests for the sync coordinator: ordering, durability and catch-up."""

import asyncio

import pytest

from cospace.exceptions import Forbidden, InvalidOperation, SequenceConflict, Timeout
from cospace.models import Operation, OperationType
from cospace.schemas.operation import OperationDraft
from cospace.services.content_store import ContentStore
from cospace.services.operation_log import OperationLog
from cospace.services.sync_coordinator import SyncCoordinator
from cospace.services.transform import Edit, replay


def insert(position, text):
    return OperationDraft(type=OperationType.INSERT, position=position, text=text)


def delete(position, length):
    return OperationDraft(type=OperationType.DELETE, position=position, length=length)


def broadcast_types(broadcaster):
    return [call.args[1]["type"] for call in broadcaster.broadcast_to_room.await_args_list]


async def wait_until(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


@pytest.mark.asyncio
class TestSubmitOperation:
    """Tests for the edit path."""

    async def test_example_scenario(self, sync, test_content, editor_id, viewer_id):
        """Insert, rejected viewer edit, append, then catch-up reproduces the text."""
        first = await sync.submit_operation(test_content.id, editor_id, insert(0, "Hi"))
        assert first.applied_sequence == 1

        with pytest.raises(Forbidden):
            await sync.submit_operation(test_content.id, viewer_id, insert(2, "?"))

        second = await sync.submit_operation(test_content.id, editor_id, insert(2, "!"))
        assert second.applied_sequence == 2

        state = await sync.get_state(test_content.id, viewer_id)
        assert state.payload == "Hi!"
        assert state.sequence == 2

        page = await sync.catch_up(test_content.id, viewer_id, 0)
        assert [op.applied_sequence for op in page.operations] == [1, 2]
        assert replay("", (Edit.from_operation(op) for op in page.operations)) == "Hi!"

    async def test_operation_broadcast_excludes_sender(
        self, sync, broadcaster, test_content, editor_id
    ):
        await sync.submit_operation(
            test_content.id, editor_id, insert(0, "x"), connection_id="conn-1"
        )

        broadcaster.broadcast_to_room.assert_awaited_once()
        room_id, message = broadcaster.broadcast_to_room.await_args.args
        assert room_id == f"content:{test_content.id}"
        assert message["type"] == "operation"
        assert message["op"]["appliedSequence"] == 1
        assert message["op"]["type"] == "insert"
        assert broadcaster.broadcast_to_room.await_args.kwargs["exclude_connection_id"] == "conn-1"

    async def test_concurrent_submissions_are_totally_ordered(
        self, sync, test_content, editor_id, owner_id
    ):
        drafts = [insert(0, str(i % 10)) for i in range(20)]
        results = await asyncio.gather(*[
            sync.submit_operation(test_content.id, editor_id if i % 2 else owner_id, draft)
            for i, draft in enumerate(drafts)
        ])

        sequences = sorted(op.applied_sequence for op in results)
        assert sequences == list(range(1, 21))

        state = await sync.get_state(test_content.id, owner_id)
        assert len(state.payload) == 20
        assert state.sequence == 20

    async def test_invalid_operation_does_not_advance_sequence(
        self, sync, session_maker, test_content, editor_id
    ):
        await sync.submit_operation(test_content.id, editor_id, insert(0, "Hi"))

        with pytest.raises(InvalidOperation):
            await sync.submit_operation(test_content.id, editor_id, delete(1, 10))

        async with session_maker() as db:
            assert await OperationLog(db).last_sequence(test_content.id) == 1
        next_op = await sync.submit_operation(test_content.id, editor_id, insert(2, "!"))
        assert next_op.applied_sequence == 2

    async def test_cursor_allowed_for_viewer_and_not_logged(
        self, sync, broadcaster, presence, session_maker, test_content, viewer_id
    ):
        await presence.register(test_content.id, viewer_id, "conn-v")
        await presence.announce("conn-v", display_name="Vera")
        broadcaster.broadcast_to_room.reset_mock()

        operation = await sync.submit_operation(
            test_content.id,
            viewer_id,
            OperationDraft(type=OperationType.CURSOR, position=0),
            connection_id="conn-v",
        )

        assert operation.applied_sequence is None
        assert broadcast_types(broadcaster)[0] == "cursor_update"
        assert presence.get_session("conn-v").cursor_position == 0
        async with session_maker() as db:
            assert await OperationLog(db).last_sequence(test_content.id) == 0

    async def test_selection_updates_presence(
        self, sync, presence, test_content, editor_id
    ):
        await sync.submit_operation(test_content.id, editor_id, insert(0, "Hello"))
        await presence.register(test_content.id, editor_id, "conn-e")
        await presence.announce("conn-e")

        await sync.submit_operation(
            test_content.id,
            editor_id,
            OperationDraft(type=OperationType.SELECTION, position=1, length=3),
            connection_id="conn-e",
        )
        assert presence.get_session("conn-e").selection == {"start": 1, "end": 4}

    async def test_lock_timeout(self, session_maker, broadcaster, presence, test_content, editor_id):
        sync = SyncCoordinator(
            session_maker=session_maker,
            broadcaster=broadcaster,
            presence=presence,
            lock_timeout=0.05,
        )
        state = sync._state(test_content.id)
        await state.lock.acquire()
        try:
            with pytest.raises(Timeout) as exc_info:
                await sync.submit_operation(test_content.id, editor_id, insert(0, "x"))
            assert exc_info.value.retryable
        finally:
            state.lock.release()

    async def test_other_content_not_blocked(
        self, session_maker, broadcaster, presence, test_content, other_content, editor_id
    ):
        sync = SyncCoordinator(
            session_maker=session_maker,
            broadcaster=broadcaster,
            presence=presence,
            lock_timeout=0.2,
        )
        state = sync._state(test_content.id)
        await state.lock.acquire()
        try:
            operation = await sync.submit_operation(other_content.id, editor_id, insert(0, "free"))
        finally:
            state.lock.release()

        assert operation.applied_sequence == 1

    async def test_second_writer_detected(
        self, sync, session_maker, test_content, editor_id, owner_id
    ):
        await sync.submit_operation(test_content.id, editor_id, insert(0, "a"))

        # Another worker appends behind this coordinator's back
        async with session_maker() as db:
            await OperationLog(db).append(
                test_content.id,
                Operation(
                    user_id=owner_id,
                    op_type=OperationType.INSERT.value,
                    position=0,
                    text="b",
                    version=1,
                ),
                2,
            )
            await db.commit()

        with pytest.raises(SequenceConflict):
            await sync.submit_operation(test_content.id, editor_id, insert(0, "c"))

        # State is reloaded from the store on the next write
        retried = await sync.submit_operation(test_content.id, editor_id, insert(0, "c"))
        assert retried.applied_sequence == 3
        state = await sync.get_state(test_content.id, owner_id)
        assert state.payload == "cba"


@pytest.mark.asyncio
class TestCheckpoints:
    """Tests for snapshot policy."""

    async def test_checkpoint_every_interval(
        self, session_maker, broadcaster, presence, test_content, editor_id
    ):
        sync = SyncCoordinator(
            session_maker=session_maker,
            broadcaster=broadcaster,
            presence=presence,
            checkpoint_interval=3,
        )
        for i in range(7):
            await sync.submit_operation(test_content.id, editor_id, insert(i, "x"))

        async with session_maker() as db:
            versions = await ContentStore(db).list_versions(test_content.id)
        assert [(v.version_number, v.sequence) for v in versions] == [(3, 6), (2, 3), (1, 0)]
        async with session_maker() as db:
            snapshot = await ContentStore(db).get_content(test_content.id, at_version=3)
        assert snapshot.payload == "xxxxxx"

    async def test_save_creates_version(self, sync, test_content, editor_id, viewer_id):
        await sync.submit_operation(test_content.id, editor_id, insert(0, "Draft"))
        version = await sync.save(test_content.id, editor_id)

        assert version.version_number == 2
        assert version.sequence == 1
        saved = await sync.get_content(test_content.id, viewer_id, at_version=2)
        assert saved.payload == "Draft"

    async def test_save_without_changes_returns_latest(self, sync, test_content, editor_id):
        await sync.submit_operation(test_content.id, editor_id, insert(0, "Draft"))
        first = await sync.save(test_content.id, editor_id)
        again = await sync.save(test_content.id, editor_id)
        assert again.version_number == first.version_number

    async def test_save_requires_edit(self, sync, test_content, viewer_id):
        with pytest.raises(Forbidden):
            await sync.save(test_content.id, viewer_id)

    async def test_versions_do_not_change_replay(self, sync, test_content, editor_id, viewer_id):
        await sync.submit_operation(test_content.id, editor_id, insert(0, "one"))
        await sync.save(test_content.id, editor_id)
        await sync.submit_operation(test_content.id, editor_id, insert(3, " two"))

        sync.unload(test_content.id)
        state = await sync.get_state(test_content.id, viewer_id)
        assert state.payload == "one two"
        assert state.version_number == 2
        assert state.sequence == 2


@pytest.mark.asyncio
class TestRestore:
    """Tests for restoring earlier versions."""

    async def test_restore_is_logged_and_checkpointed(self, sync, test_content, editor_id, viewer_id):
        await sync.submit_operation(test_content.id, editor_id, insert(0, "first"))
        saved = await sync.save(test_content.id, editor_id)
        await sync.submit_operation(test_content.id, editor_id, delete(0, 5))
        await sync.submit_operation(test_content.id, editor_id, insert(0, "second"))

        operations = await sync.restore_version(test_content.id, editor_id, saved.version_number)
        assert [op.op_type for op in operations] == ["delete", "insert"]

        state = await sync.get_state(test_content.id, viewer_id)
        assert state.payload == "first"
        assert state.version_number == saved.version_number + 1

        page = await sync.catch_up(test_content.id, viewer_id, 0)
        assert replay("", (Edit.from_operation(op) for op in page.operations)) == "first"

    async def test_restore_requires_edit(self, sync, test_content, viewer_id):
        with pytest.raises(Forbidden):
            await sync.restore_version(test_content.id, viewer_id, 1)


@pytest.mark.asyncio
class TestCatchUp:
    """Tests for reconnect catch-up."""

    async def test_catch_up_is_idempotent(self, sync, test_content, editor_id, viewer_id):
        for i, text in enumerate("abc"):
            await sync.submit_operation(test_content.id, editor_id, insert(i, text))

        first = await sync.catch_up(test_content.id, viewer_id, 1)
        second = await sync.catch_up(test_content.id, viewer_id, 1)
        assert [op.id for op in first.operations] == [op.id for op in second.operations]
        assert first.last_sequence == 3

    async def test_catch_up_pages(self, sync, test_content, editor_id, viewer_id):
        for i in range(5):
            await sync.submit_operation(test_content.id, editor_id, insert(i, "x"))

        page = await sync.catch_up(test_content.id, viewer_id, 0, limit=2)
        assert [op.applied_sequence for op in page.operations] == [1, 2]
        assert page.has_more
        assert page.last_sequence == 2

    async def test_catch_up_when_current(self, sync, test_content, editor_id, viewer_id):
        await sync.submit_operation(test_content.id, editor_id, insert(0, "x"))
        page = await sync.catch_up(test_content.id, viewer_id, 1)
        assert page.operations == []
        assert page.last_sequence == 1
        assert not page.has_more


@pytest.mark.asyncio
class TestTitleAndArchive:
    """Tests for title updates and archiving."""

    async def test_title_update_broadcast(self, sync, broadcaster, test_content, editor_id):
        content = await sync.update_title(test_content.id, editor_id, "Renamed")
        assert content.title == "Renamed"
        assert broadcast_types(broadcaster) == ["title_update"]

    async def test_archive_requires_owner(self, sync, test_content, editor_id):
        with pytest.raises(Forbidden):
            await sync.archive(test_content.id, editor_id)

    async def test_archive_drops_state(self, sync, test_content, owner_id, editor_id):
        await sync.submit_operation(test_content.id, editor_id, insert(0, "x"))
        assert sync.loaded_contents == 1

        await sync.archive(test_content.id, owner_id)
        assert sync.loaded_contents == 0


@pytest.mark.asyncio
class TestStateRegistry:
    """Tests for unloading and evicting cached content state."""

    async def test_unload_keeps_state_with_queued_writer(self, sync, test_content, editor_id):
        state = sync._state(test_content.id)
        await state.lock.acquire()
        writer = asyncio.create_task(
            sync.submit_operation(test_content.id, editor_id, insert(0, "queued"))
        )
        await wait_until(lambda: state.in_flight == 1)

        # The lock is free but the writer has not resumed yet
        state.lock.release()
        assert sync.unload(test_content.id) is False

        operation = await writer
        assert operation.applied_sequence == 1
        assert sync._state(test_content.id) is state
        assert sync.unload(test_content.id) is True

    async def test_idle_states_evicted_beyond_limit(
        self, session_maker, broadcaster, presence, test_content, other_content, editor_id
    ):
        sync = SyncCoordinator(
            session_maker=session_maker,
            broadcaster=broadcaster,
            presence=presence,
            max_loaded_contents=1,
        )
        await sync.submit_operation(test_content.id, editor_id, insert(0, "a"))
        await sync.submit_operation(other_content.id, editor_id, insert(0, "b"))
        assert sync.loaded_contents == 1

        state = await sync.get_state(test_content.id, editor_id)
        assert state.payload == "a"
        assert state.sequence == 1

    async def test_busy_state_not_evicted(
        self, session_maker, broadcaster, presence, test_content, other_content, editor_id
    ):
        sync = SyncCoordinator(
            session_maker=session_maker,
            broadcaster=broadcaster,
            presence=presence,
            max_loaded_contents=1,
        )
        busy = sync._state(test_content.id)
        await busy.lock.acquire()
        try:
            await sync.submit_operation(other_content.id, editor_id, insert(0, "b"))
            assert sync._state(test_content.id) is busy
        finally:
            busy.lock.release()
        assert sync.loaded_contents == 2
