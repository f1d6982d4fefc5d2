"""Text edit semantics and position transforms.

Provides:
- Validation and application of insert/delete edits to a text payload
- Remapping of a position or range across an accepted edit (comment
  anchors, cursors)
- Rebasing of a pending edit over a concurrent one, for clients that keep
  optimistic local edits (the server itself never rebases: it applies
  operations in arrival order)
"""

from dataclasses import dataclass, replace
from typing import Any, Iterable, Optional

from ..exceptions import InvalidOperation
from ..models.operation import OperationType


@dataclass(frozen=True)
class Edit:
    """A typed edit, independent of persistence."""

    op_type: OperationType
    position: Optional[int] = None
    length: int = 0
    text: str = ""
    user_id: Optional[str] = None
    meta: Optional[dict[str, Any]] = None

    @classmethod
    def from_operation(cls, op) -> "Edit":
        """Build an Edit from an Operation row or an operation schema."""
        return cls(
            op_type=OperationType(op.op_type),
            position=op.position,
            length=op.length or 0,
            text=op.text or "",
            user_id=str(op.user_id) if getattr(op, "user_id", None) else None,
            meta=op.meta,
        )

    @classmethod
    def from_draft(cls, draft, user_id=None) -> "Edit":
        """Build an Edit from a client-submitted OperationDraft."""
        return cls(
            op_type=OperationType(draft.type),
            position=draft.position,
            length=draft.length or 0,
            text=draft.text or "",
            user_id=str(user_id) if user_id else None,
            meta=draft.meta,
        )


def validate_edit(payload: str, edit: Edit) -> None:
    """
    Check an edit against the current payload.

    Raises:
        InvalidOperation: on negative offsets, out of range positions, or
            inserts/deletes that would not change anything
    """
    size = len(payload)

    if edit.length < 0:
        raise InvalidOperation(f"Length must not be negative (got {edit.length})")

    if edit.op_type.is_ephemeral:
        if edit.position is not None and not 0 <= edit.position <= size:
            raise InvalidOperation(
                f"Cursor position {edit.position} outside content of length {size}"
            )
        return

    if edit.position is None:
        raise InvalidOperation(f"{edit.op_type.value} requires a position")
    if edit.position < 0:
        raise InvalidOperation(f"Position must not be negative (got {edit.position})")

    if edit.op_type == OperationType.INSERT:
        if edit.position > size:
            raise InvalidOperation(
                f"Insert position {edit.position} outside content of length {size}"
            )
        if not edit.text:
            raise InvalidOperation("Insert requires non-empty text")
    elif edit.op_type == OperationType.DELETE:
        if edit.length == 0:
            raise InvalidOperation("Delete requires a positive length")
        if edit.position + edit.length > size:
            raise InvalidOperation(
                f"Delete range {edit.position}+{edit.length} outside content of length {size}"
            )
    elif edit.op_type == OperationType.FORMAT:
        if edit.position + edit.length > size:
            raise InvalidOperation(
                f"Format range {edit.position}+{edit.length} outside content of length {size}"
            )


def apply_edit(payload: str, edit: Edit) -> str:
    """
    Apply a validated edit and return the new payload.

    Format, cursor and selection edits carry metadata only and leave the
    text untouched.
    """
    validate_edit(payload, edit)

    if edit.op_type == OperationType.INSERT:
        return payload[:edit.position] + edit.text + payload[edit.position:]
    if edit.op_type == OperationType.DELETE:
        return payload[:edit.position] + payload[edit.position + edit.length:]
    return payload


def replay(payload: str, edits: Iterable[Edit]) -> str:
    """Apply edits in order to a starting payload."""
    for edit in edits:
        payload = apply_edit(payload, edit)
    return payload


def transform_position(position: int, edit: Edit) -> int:
    """
    Map a caret position through an accepted edit.

    Inserts at or before the caret push it right; deletes before it pull it
    left, and a delete spanning the caret collapses it to the delete start.
    """
    if edit.op_type == OperationType.INSERT:
        if edit.position <= position:
            return position + len(edit.text)
        return position

    if edit.op_type == OperationType.DELETE:
        if edit.position < position:
            delete_end = edit.position + edit.length
            if delete_end <= position:
                return position - edit.length
            return edit.position
        return position

    return position


def transform_range(offset: int, length: int, edit: Edit) -> Optional[tuple[int, int]]:
    """
    Map a text range (comment anchor, selection) through an accepted edit.

    Returns:
        The new (offset, length), or None when the whole range was deleted
    """
    end = offset + length

    if edit.op_type == OperationType.INSERT:
        if edit.position <= offset:
            return offset + len(edit.text), length
        if edit.position < end:
            return offset, length + len(edit.text)
        return offset, length

    if edit.op_type == OperationType.DELETE:
        delete_end = edit.position + edit.length
        if delete_end <= offset:
            return offset - edit.length, length
        if edit.position >= end:
            return offset, length
        # Overlap: keep whatever survives
        kept_before = max(0, edit.position - offset)
        kept_after = max(0, end - delete_end)
        remaining = kept_before + kept_after
        if remaining == 0 and length > 0:
            return None
        return min(offset, edit.position), remaining

    return offset, length


def rebase(pending: Edit, accepted: Edit) -> Edit:
    """
    Transform a pending local edit so it applies after ``accepted``.

    Ties between concurrent inserts at the same position are broken by
    user id so every replica picks the same order.
    """
    if pending.user_id is not None and pending.user_id == accepted.user_id:
        return pending
    if not accepted.op_type.mutates_payload:
        return pending
    if not pending.op_type.mutates_payload:
        if pending.position is None:
            return pending
        mapped = transform_range(pending.position, pending.length, accepted)
        if mapped is None:
            return replace(pending, position=accepted.position, length=0)
        return replace(pending, position=mapped[0], length=mapped[1])

    if pending.op_type == OperationType.INSERT:
        if accepted.op_type == OperationType.INSERT:
            if accepted.position < pending.position or (
                accepted.position == pending.position
                and (accepted.user_id or "") < (pending.user_id or "")
            ):
                return replace(pending, position=pending.position + len(accepted.text))
            return pending
        # Insert against delete
        delete_end = accepted.position + accepted.length
        if pending.position >= delete_end:
            return replace(pending, position=pending.position - accepted.length)
        if pending.position > accepted.position:
            return replace(pending, position=accepted.position)
        return pending

    # Pending delete
    start, end = pending.position, pending.position + pending.length
    if accepted.op_type == OperationType.INSERT:
        if accepted.position <= start:
            return replace(pending, position=start + len(accepted.text))
        if accepted.position < end:
            return replace(pending, length=pending.length + len(accepted.text))
        return pending

    other_start, other_end = accepted.position, accepted.position + accepted.length
    if other_end <= start:
        return replace(pending, position=start - accepted.length)
    if other_start >= end:
        return pending
    if other_start <= start and other_end >= end:
        return replace(pending, position=other_start, length=0)
    if other_start <= start:
        return replace(pending, position=other_start, length=end - other_end)
    if other_end >= end:
        return replace(pending, length=other_start - start)
    return replace(pending, length=pending.length - accepted.length)
