"""
Sequence (RGA-style) text CRDT.

The document is an ordered list of ``Char`` entries, each named by a
globally unique op id of the form ``"<counter>@<replica_id>"``. Inserts say
which entry they follow (their *anchor*); deletes only set a tombstone flag,
so every id ever inserted stays addressable as an anchor. The list starts
with the tombstoned root entry ``"start"``.

Placement of an insert:

1. Find the anchor.
2. Walk forward over the following entries while they outrank the new id.
   Those are concurrent siblings ordered before it, plus their descendants.
3. Insert at the first entry that does not outrank it (or at the end).

Ids rank by ``(counter, replica_id)``. Authors take their counter from one
more than the highest counter their replica has seen, so an entry always
outranks the entry it was anchored to. With that, the position of every
entry depends only on the anchor graph, and two replicas that hold the same
set of inserts hold them in the same order whatever the arrival order.

Operations whose anchor or target has not arrived yet are kept in
``SequenceState.deferred`` and retried after each successful apply.
"""

from __future__ import annotations

import logging
import string
from dataclasses import dataclass, replace
from typing import Any, Union

import numpy as np

from .errors import InvariantViolation, OperationRejected
from .variant import Variant, VariantKind

LOGGER = logging.getLogger(__name__)

START_ID = "start"


def make_op_id(counter: int, replica_id: str) -> str:
    """Build the op id for the *counter*-th operation seen by *replica_id*."""
    return f"{counter}@{replica_id}"


def parse_op_id(op_id: str) -> tuple[int, str]:
    """Split an op id into its ``(counter, replica_id)`` rank.

    The root id ranks below every real id.

    Raises:
        OperationRejected: If *op_id* is not of the form ``counter@replica``.
    """
    if op_id == START_ID:
        return (0, "")
    counter, sep, replica_id = op_id.partition("@")
    if not sep or not counter.isdigit() or not replica_id:
        raise OperationRejected(op_id, "malformed op id")
    return (int(counter), replica_id)


@dataclass(frozen=True)
class Char:
    """One entry of the document, visible or tombstoned."""

    op_id: str
    after_id: str
    character: str
    deleted: bool = False


@dataclass(frozen=True)
class InsertChar:
    op_id: str
    after_id: str
    character: str


@dataclass(frozen=True)
class DeleteChar:
    op_id: str
    remove_id: str


@dataclass(frozen=True)
class MoveCursor:
    """Local-only cursor navigation; applied by the author, never broadcast."""

    target_id: str


SequenceOperation = Union[InsertChar, DeleteChar, MoveCursor]


@dataclass(frozen=True)
class SequenceState:
    """State of one replica's copy of the document.

    Attributes:
        owner: Replica holding this copy. Only its own operations move the cursor.
        chars: All entries in document order, tombstones included.
        cursor: Id of the entry the cursor sits after.
        clock: Highest op counter seen so far.
        deferred: Received operations waiting for their anchor or target.
    """

    owner: str
    chars: tuple[Char, ...] = (Char(op_id=START_ID, after_id=START_ID, character="", deleted=True),)
    cursor: str = START_ID
    clock: int = 0
    deferred: tuple[Union[InsertChar, DeleteChar], ...] = ()

    @property
    def text(self) -> str:
        """The visible document."""
        return "".join(char.character for char in self.chars if not char.deleted)

    def index_of(self, op_id: str) -> int | None:
        for index, char in enumerate(self.chars):
            if char.op_id == op_id:
                return index
        return None

    def get(self, op_id: str) -> Char | None:
        index = self.index_of(op_id)
        return None if index is None else self.chars[index]

    def next_op_id(self) -> str:
        return make_op_id(self.clock + 1, self.owner)

    def __repr__(self) -> str:
        pending = f", deferred={len(self.deferred)}" if self.deferred else ""
        return f"SequenceState({self.owner}, {self.text!r}, cursor={self.cursor}{pending})"


class SequenceTextVariant(Variant):
    """RGA-style collaborative text with tombstones and causal deferral."""

    kind = VariantKind.SEQUENCE_TEXT

    def initial_state(self, replica_id: str) -> SequenceState:
        return SequenceState(owner=replica_id)

    def is_local_only(self, operation: Any) -> bool:
        return isinstance(operation, MoveCursor)

    def view(self, state: SequenceState) -> tuple[tuple[str, str], ...]:
        return tuple((char.op_id, char.character) for char in state.chars if not char.deleted)

    # -- apply -------------------------------------------------------------

    def apply(self, operation: Any, state: SequenceState) -> SequenceState:
        if isinstance(operation, MoveCursor):
            if state.index_of(operation.target_id) is None:
                raise OperationRejected(operation, "cursor target does not exist")
            return replace(state, cursor=operation.target_id)

        if not isinstance(operation, (InsertChar, DeleteChar)):
            raise OperationRejected(operation, "not a sequence operation")

        integrated = self._integrate(operation, state)
        if integrated is None:
            LOGGER.info(
                "Replica %s deferred %r until its dependency arrives",
                state.owner,
                operation,
            )
            return replace(state, deferred=state.deferred + (operation,))
        return self._retry_deferred(integrated)

    def _integrate(
        self, operation: InsertChar | DeleteChar, state: SequenceState
    ) -> SequenceState | None:
        """Apply one operation, or return None if its dependency is missing."""
        if isinstance(operation, InsertChar):
            return self._integrate_insert(operation, state)
        return self._integrate_delete(operation, state)

    def _integrate_insert(self, op: InsertChar, state: SequenceState) -> SequenceState | None:
        rank = parse_op_id(op.op_id)
        if len(op.character) != 1:
            raise OperationRejected(op, "insert must carry exactly one character")
        if state.index_of(op.op_id) is not None:
            raise InvariantViolation(f"Duplicate op id {op.op_id!r} in replica {state.owner}")

        anchor = state.index_of(op.after_id)
        if anchor is None:
            return None

        chars = list(state.chars)
        position = anchor + 1
        while position < len(chars) and parse_op_id(chars[position].op_id) > rank:
            position += 1
        chars.insert(position, Char(op_id=op.op_id, after_id=op.after_id, character=op.character))

        authored = rank[1] == state.owner
        return replace(
            state,
            chars=tuple(chars),
            cursor=op.op_id if authored else state.cursor,
            clock=max(state.clock, rank[0]),
        )

    def _integrate_delete(self, op: DeleteChar, state: SequenceState) -> SequenceState | None:
        counter, author = parse_op_id(op.op_id)
        target = state.index_of(op.remove_id)
        if target is None:
            return None
        if target == 0:
            raise OperationRejected(op, "the root entry cannot be deleted")

        chars = list(state.chars)
        if not chars[target].deleted:
            chars[target] = replace(chars[target], deleted=True)

        cursor = state.cursor
        if author == state.owner:
            cursor = _visible_before(chars, target)
        return replace(state, chars=tuple(chars), cursor=cursor, clock=max(state.clock, counter))

    def _retry_deferred(self, state: SequenceState) -> SequenceState:
        progressed = True
        while progressed and state.deferred:
            progressed = False
            waiting = []
            for operation in state.deferred:
                integrated = self._integrate(operation, state)
                if integrated is None:
                    waiting.append(operation)
                else:
                    state = integrated
                    progressed = True
            state = replace(state, deferred=tuple(waiting))
        return state

    # -- authoring ---------------------------------------------------------

    def insert(self, state: SequenceState, character: str) -> InsertChar:
        """Type *character* after the cursor."""
        return InsertChar(op_id=state.next_op_id(), after_id=state.cursor, character=character)

    def backspace(self, state: SequenceState) -> DeleteChar | None:
        """Delete the character under the cursor; None if there is nothing to delete."""
        char = state.get(state.cursor)
        if char is None or char.deleted:
            return None
        return DeleteChar(op_id=state.next_op_id(), remove_id=char.op_id)

    def move_left(self, state: SequenceState) -> MoveCursor | None:
        index = state.index_of(state.cursor)
        if index is None or index == 0:
            return None
        return MoveCursor(target_id=_visible_before(state.chars, index))

    def move_right(self, state: SequenceState) -> MoveCursor | None:
        index = state.index_of(state.cursor)
        if index is None:
            return None
        for char in state.chars[index + 1 :]:
            if not char.deleted:
                return MoveCursor(target_id=char.op_id)
        return None

    def author_random_operations(
        self, state: SequenceState, replica_id: str, rng: np.random.Generator
    ) -> list[Any]:
        roll = rng.random()
        if roll < 0.15:
            operation = self.move_left(state)
        elif roll < 0.25:
            operation = self.move_right(state)
        elif roll < 0.4:
            operation = self.backspace(state)
        else:
            operation = self.insert(state, string.ascii_lowercase[int(rng.integers(26))])
        return [] if operation is None else [operation]


def _visible_before(chars: list[Char] | tuple[Char, ...], index: int) -> str:
    """Id of the nearest visible entry before *index*, or the root id."""
    for char in reversed(chars[:index]):
        if not char.deleted:
            return char.op_id
    return START_ID
