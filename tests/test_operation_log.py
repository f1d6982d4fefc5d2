"""Tests for the append-only operation log."""

from uuid import uuid4

import pytest

from cospace.exceptions import SequenceConflict
from cospace.models import Operation, OperationType
from cospace.services.operation_log import OperationLog


def make_operation(user_id, text="x", position=0):
    return Operation(
        user_id=user_id,
        op_type=OperationType.INSERT.value,
        position=position,
        text=text,
        version=1,
    )


@pytest.mark.asyncio
class TestOperationLog:
    """Tests for append, since and between."""

    async def test_append_assigns_sequence(self, db_session, test_content, owner_id):
        log = OperationLog(db_session)
        assert await log.append(test_content.id, make_operation(owner_id), 1) == 1
        assert await log.append(test_content.id, make_operation(owner_id), 2) == 2
        await db_session.commit()

        assert await log.last_sequence(test_content.id) == 2

    async def test_append_gap_rejected(self, db_session, test_content, owner_id):
        log = OperationLog(db_session)
        with pytest.raises(SequenceConflict):
            await log.append(test_content.id, make_operation(owner_id), 2)
        await db_session.rollback()

    async def test_append_duplicate_rejected(self, db_session, test_content, owner_id):
        log = OperationLog(db_session)
        await log.append(test_content.id, make_operation(owner_id), 1)
        await db_session.commit()

        with pytest.raises(SequenceConflict):
            await log.append(test_content.id, make_operation(owner_id), 1)
        await db_session.rollback()

        assert await log.last_sequence(test_content.id) == 1

    async def test_since_is_ordered_and_repeatable(self, db_session, test_content, owner_id):
        log = OperationLog(db_session)
        for sequence in range(1, 6):
            await log.append(test_content.id, make_operation(owner_id, text=str(sequence)), sequence)
        await db_session.commit()

        first = await log.since(test_content.id, 2)
        second = await log.since(test_content.id, 2)
        assert [op.applied_sequence for op in first] == [3, 4, 5]
        assert [op.id for op in first] == [op.id for op in second]

    async def test_since_with_limit(self, db_session, test_content, owner_id):
        log = OperationLog(db_session)
        for sequence in range(1, 4):
            await log.append(test_content.id, make_operation(owner_id), sequence)
        await db_session.commit()

        page = await log.since(test_content.id, 0, limit=2)
        assert [op.applied_sequence for op in page] == [1, 2]

    async def test_between(self, db_session, test_content, owner_id):
        log = OperationLog(db_session)
        for sequence in range(1, 6):
            await log.append(test_content.id, make_operation(owner_id), sequence)
        await db_session.commit()

        window = await log.between(test_content.id, 1, 3)
        assert [op.applied_sequence for op in window] == [2, 3]

    async def test_last_sequence_unknown_content(self, db_session):
        assert await OperationLog(db_session).last_sequence(uuid4()) == 0
