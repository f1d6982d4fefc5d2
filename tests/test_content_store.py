"""Tests for the content store: spaces, content items and snapshots."""

from uuid import uuid4

import pytest

from cospace.exceptions import InvalidSpace, NotFound, SequenceConflict
from cospace.models import ContentRole, Operation, OperationType
from cospace.services.content_store import ContentStore, apply_diff, compute_diff
from cospace.services.operation_log import OperationLog
from cospace.services.permission_service import PermissionService


class TestDiff:
    """Tests for snapshot diffs."""

    def test_diff_round_trip(self):
        previous = "The quick brown fox"
        current = "The slow brown fox jumps"
        assert apply_diff(previous, compute_diff(previous, current)) == current

    def test_diff_of_identical_payloads(self):
        assert apply_diff("same", compute_diff("same", "same")) == "same"


@pytest.mark.asyncio
class TestCreateContent:
    """Tests for content creation."""

    async def test_create_content_at_version_one(self, db_session, test_space, owner_id):
        store = ContentStore(db_session)
        content = await store.create_content(
            space_id=test_space.id,
            content_type="code",
            creator=owner_id,
            initial_payload="print('hi')",
            metadata={"language": "python"},
        )
        await db_session.commit()

        assert content.current_version == 1
        assert content.last_sequence == 0
        snapshot = await store.get_content(content.id)
        assert snapshot.payload == "print('hi')"
        assert snapshot.version_number == 1
        assert snapshot.sequence == 0

    async def test_creator_becomes_owner(self, db_session, test_space, owner_id):
        content = await ContentStore(db_session).create_content(
            space_id=test_space.id,
            content_type="text",
            creator=owner_id,
        )
        await db_session.commit()

        role = await PermissionService(db_session).get_role(content.id, owner_id)
        assert role == ContentRole.OWNER.value

    async def test_default_payload_by_type(self, db_session, test_space, owner_id):
        store = ContentStore(db_session)
        content = await store.create_content(
            space_id=test_space.id,
            content_type="whiteboard",
            creator=owner_id,
        )
        await db_session.commit()
        assert (await store.get_content(content.id)).payload == "[]"

    async def test_unknown_space_rejected(self, db_session, owner_id):
        with pytest.raises(InvalidSpace):
            await ContentStore(db_session).create_content(
                space_id=uuid4(),
                content_type="text",
                creator=owner_id,
            )

    async def test_unknown_content_not_found(self, db_session):
        with pytest.raises(NotFound):
            await ContentStore(db_session).get_content(uuid4())


@pytest.mark.asyncio
class TestSnapshots:
    """Tests for checkpoints and rehydration."""

    async def test_current_payload_replays_log(self, db_session, test_content, owner_id):
        log = OperationLog(db_session)
        await log.append(
            test_content.id,
            Operation(user_id=owner_id, op_type=OperationType.INSERT.value, position=0, text="Hi", version=1),
            1,
        )
        await log.append(
            test_content.id,
            Operation(user_id=owner_id, op_type=OperationType.INSERT.value, position=2, text="!", version=1),
            2,
        )
        await db_session.commit()

        snapshot = await ContentStore(db_session).get_content(test_content.id)
        assert snapshot.payload == "Hi!"
        assert snapshot.sequence == 2
        assert snapshot.version_number == 1

    async def test_checkpoint_and_read_version(self, db_session, test_content, owner_id):
        store = ContentStore(db_session)
        version = await store.checkpoint(test_content.id, "Hello", 2, 5, owner_id)
        await db_session.commit()

        assert version.version_number == 2
        assert version.sequence == 5
        assert apply_diff("", version.diff) == "Hello"
        assert version.content_data is None

        old = await store.get_content(test_content.id, at_version=1)
        assert old.payload == ""
        new = await store.get_content(test_content.id, at_version=2)
        assert new.payload == "Hello"

    async def test_checkpoint_is_idempotent(self, db_session, test_content, owner_id):
        store = ContentStore(db_session)
        first = await store.checkpoint(test_content.id, "Hello", 2, 5, owner_id)
        again = await store.checkpoint(test_content.id, "Other", 2, 6, owner_id)
        await db_session.commit()

        assert again.id == first.id
        snapshot = await store.get_content(test_content.id, at_version=2)
        assert snapshot.payload == "Hello"

    async def test_full_snapshot_every_interval(self, db_session, test_content, owner_id):
        store = ContentStore(db_session, full_snapshot_interval=2)
        for number, payload in enumerate(["a", "ab", "b", "bc!"], start=2):
            await store.checkpoint(test_content.id, payload, number, number - 1, owner_id)
        await db_session.commit()

        versions = await store.list_versions(test_content.id)
        assert [v.content_data for v in versions] == ["bc!", None, "ab", None, ""]

        payloads = [
            (await store.get_content(test_content.id, at_version=number)).payload
            for number in range(1, 6)
        ]
        assert payloads == ["", "a", "ab", "b", "bc!"]

    async def test_current_payload_from_diff_version(self, db_session, test_content, owner_id):
        store = ContentStore(db_session, full_snapshot_interval=10)
        log = OperationLog(db_session)
        await log.append(
            test_content.id,
            Operation(user_id=owner_id, op_type=OperationType.INSERT.value, position=0, text="Hello", version=1),
            1,
        )
        await store.checkpoint(test_content.id, "Hello", 2, 1, owner_id)
        await log.append(
            test_content.id,
            Operation(user_id=owner_id, op_type=OperationType.INSERT.value, position=5, text="!", version=2),
            2,
        )
        await db_session.commit()

        snapshot = await store.get_content(test_content.id)
        assert snapshot.payload == "Hello!"
        assert snapshot.version_number == 2

    async def test_checkpoint_gap_rejected(self, db_session, test_content, owner_id):
        with pytest.raises(SequenceConflict):
            await ContentStore(db_session).checkpoint(test_content.id, "Hello", 3, 5, owner_id)

    async def test_unknown_version_not_found(self, db_session, test_content):
        with pytest.raises(NotFound):
            await ContentStore(db_session).get_content(test_content.id, at_version=9)

    async def test_list_versions_newest_first(self, db_session, test_content, owner_id):
        store = ContentStore(db_session)
        await store.checkpoint(test_content.id, "a", 2, 1, owner_id)
        await store.checkpoint(test_content.id, "ab", 3, 2, owner_id)
        await db_session.commit()

        versions = await store.list_versions(test_content.id)
        assert [v.version_number for v in versions] == [3, 2, 1]


@pytest.mark.asyncio
class TestArchive:
    """Tests for soft delete."""

    async def test_archived_content_hidden(self, db_session, test_content):
        store = ContentStore(db_session)
        await store.archive_content(test_content.id)
        await db_session.commit()

        with pytest.raises(NotFound):
            await store.get_item(test_content.id)
        item = await store.get_item(test_content.id, include_archived=True)
        assert item.is_archived
