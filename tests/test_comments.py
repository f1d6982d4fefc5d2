"""Tests for anchored, threaded comments."""

from uuid import uuid4

import pytest
import pytest_asyncio

from cospace.exceptions import Forbidden, InvalidOperation, NotFound
from cospace.models import OperationType
from cospace.schemas.comment import CommentAnchorIn, CommentCreate, CommentUpdate
from cospace.schemas.operation import OperationDraft
from cospace.services import comment_service


def insert(position, text):
    return OperationDraft(type=OperationType.INSERT, position=position, text=text)


def delete(position, length):
    return OperationDraft(type=OperationType.DELETE, position=position, length=length)


@pytest_asyncio.fixture
async def hello_world(sync, test_content, editor_id):
    """Content reading "Hello world" at sequence 1."""
    await sync.submit_operation(test_content.id, editor_id, insert(0, "Hello world"))
    return test_content


async def add_comment(session_maker, content_id, author_id, body, position=None, parent_id=None):
    async with session_maker() as db:
        comment = await comment_service.create_comment(
            db,
            content_id,
            author_id,
            CommentCreate(body=body, position=position, parent_id=parent_id),
        )
        await db.commit()
        return comment


async def anchor_of(session_maker, comment):
    async with session_maker() as db:
        return await comment_service.resolve_anchor(db, comment)


@pytest.mark.asyncio
class TestCreateComment:
    """Tests for creating comments."""

    async def test_commenter_can_comment(self, session_maker, hello_world, commenter_id):
        comment = await add_comment(
            session_maker,
            hello_world.id,
            commenter_id,
            "Typo?",
            CommentAnchorIn(offset=6, length=5),
        )

        assert comment.position == {"version": 1, "sequence": 1, "offset": 6, "length": 5}
        anchor = await anchor_of(session_maker, comment)
        assert anchor == {"offset": 6, "length": 5, "sequence": 1, "status": "anchored"}

    async def test_viewer_cannot_comment(self, session_maker, hello_world, viewer_id):
        with pytest.raises(Forbidden):
            await add_comment(session_maker, hello_world.id, viewer_id, "Nope")

    async def test_anchor_outside_text_rejected(self, session_maker, hello_world, commenter_id):
        with pytest.raises(InvalidOperation):
            await add_comment(
                session_maker,
                hello_world.id,
                commenter_id,
                "Too far",
                CommentAnchorIn(offset=8, length=10),
            )

    async def test_anchor_from_the_future_rejected(self, session_maker, hello_world, commenter_id):
        with pytest.raises(InvalidOperation):
            await add_comment(
                session_maker,
                hello_world.id,
                commenter_id,
                "Early",
                CommentAnchorIn(offset=0, length=1, sequence=5),
            )

    async def test_reply_to_unknown_parent_rejected(self, session_maker, hello_world, commenter_id):
        with pytest.raises(InvalidOperation):
            await add_comment(
                session_maker, hello_world.id, commenter_id, "Re:", parent_id=uuid4()
            )


@pytest.mark.asyncio
class TestAnchors:
    """Tests for anchors following later edits."""

    async def test_anchor_shifts_after_insert(self, sync, session_maker, hello_world, commenter_id, editor_id):
        comment = await add_comment(
            session_maker,
            hello_world.id,
            commenter_id,
            "world?",
            CommentAnchorIn(offset=6, length=5),
        )
        await sync.submit_operation(hello_world.id, editor_id, insert(0, ">> "))

        anchor = await anchor_of(session_maker, comment)
        assert anchor["offset"] == 9
        assert anchor["length"] == 5
        assert anchor["sequence"] == 2
        assert anchor["status"] == "anchored"

    async def test_anchor_orphaned_when_text_deleted(
        self, sync, session_maker, hello_world, commenter_id, editor_id
    ):
        comment = await add_comment(
            session_maker,
            hello_world.id,
            commenter_id,
            "world?",
            CommentAnchorIn(offset=6, length=5),
        )
        await sync.submit_operation(hello_world.id, editor_id, delete(5, 6))

        anchor = await anchor_of(session_maker, comment)
        assert anchor["status"] == "orphaned"
        assert anchor["offset"] is None

    async def test_partial_delete_shrinks_anchor(
        self, sync, session_maker, hello_world, commenter_id, editor_id
    ):
        comment = await add_comment(
            session_maker,
            hello_world.id,
            commenter_id,
            "Greeting",
            CommentAnchorIn(offset=0, length=5),
        )
        await sync.submit_operation(hello_world.id, editor_id, delete(3, 4))

        anchor = await anchor_of(session_maker, comment)
        assert (anchor["offset"], anchor["length"]) == (0, 3)

    async def test_unanchored_comment(self, session_maker, hello_world, commenter_id):
        comment = await add_comment(session_maker, hello_world.id, commenter_id, "General")
        assert await anchor_of(session_maker, comment) is None


@pytest.mark.asyncio
class TestCommentThreads:
    """Tests for listing, editing and resolving."""

    async def test_list_nests_replies(self, session_maker, hello_world, commenter_id, editor_id, viewer_id):
        root = await add_comment(session_maker, hello_world.id, commenter_id, "Question")
        await add_comment(session_maker, hello_world.id, editor_id, "Answer", parent_id=root.id)

        async with session_maker() as db:
            threads = await comment_service.list_comments(db, hello_world.id, viewer_id)

        assert len(threads) == 1
        assert threads[0]["body"] == "Question"
        assert [reply["body"] for reply in threads[0]["replies"]] == ["Answer"]

    async def test_resolved_threads_filtered(self, session_maker, hello_world, commenter_id, editor_id):
        done = await add_comment(session_maker, hello_world.id, commenter_id, "Fixed")
        await add_comment(session_maker, hello_world.id, commenter_id, "Open")

        async with session_maker() as db:
            await comment_service.set_resolved(db, hello_world.id, done.id, editor_id, True)
            await db.commit()

            open_threads = await comment_service.list_comments(
                db, hello_world.id, editor_id, include_resolved=False
            )
            all_threads = await comment_service.list_comments(db, hello_world.id, editor_id)

        assert [t["body"] for t in open_threads] == ["Open"]
        assert len(all_threads) == 2

    async def test_only_author_or_owner_edits(
        self, session_maker, hello_world, commenter_id, editor_id, owner_id
    ):
        comment = await add_comment(session_maker, hello_world.id, commenter_id, "Draft")

        async with session_maker() as db:
            with pytest.raises(Forbidden):
                await comment_service.update_comment(
                    db, hello_world.id, comment.id, editor_id, CommentUpdate(body="Hijacked")
                )
            updated = await comment_service.update_comment(
                db, hello_world.id, comment.id, owner_id, CommentUpdate(body="Moderated")
            )
            assert updated.body == "Moderated"

    async def test_viewer_cannot_resolve_others(self, session_maker, hello_world, commenter_id, viewer_id):
        comment = await add_comment(session_maker, hello_world.id, commenter_id, "Hmm")

        async with session_maker() as db:
            with pytest.raises(Forbidden):
                await comment_service.set_resolved(db, hello_world.id, comment.id, viewer_id, True)

    async def test_delete_removes_replies(self, session_maker, hello_world, commenter_id, editor_id):
        root = await add_comment(session_maker, hello_world.id, commenter_id, "Root")
        reply = await add_comment(
            session_maker, hello_world.id, editor_id, "Reply", parent_id=root.id
        )

        async with session_maker() as db:
            await comment_service.delete_comment(db, hello_world.id, root.id, commenter_id)
            await db.commit()

        async with session_maker() as db:
            with pytest.raises(NotFound):
                await comment_service.get_comment(db, hello_world.id, reply.id)
