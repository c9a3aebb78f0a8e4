"""
Naive position-indexed text variant.

Local edits are turned into ``InsertText``/``DeleteText`` operations by a
longest-common-prefix diff and applied by slicing at raw indices. A received
operation's position is interpreted against the receiver's *current* text,
which may already contain concurrent edits, so interleaved typing corrupts
or shifts unrelated text. Message delivery always completes; convergence is
not guaranteed.
"""

import string
from dataclasses import dataclass
from typing import Any

import numpy as np

from .errors import OperationRejected
from .variant import Variant, VariantKind

TextOperation = Any  # InsertText | DeleteText


@dataclass(frozen=True)
class InsertText:
    """Insert one character so that it ends up at index *position*."""

    position: int
    character: str


@dataclass(frozen=True)
class DeleteText:
    """Remove *length* characters starting at index *position*."""

    position: int
    length: int


def common_prefix_length(a: str, b: str) -> int:
    """Length of the longest common prefix of *a* and *b*."""
    i = 0
    limit = min(len(a), len(b))
    while i < limit and a[i] == b[i]:
        i += 1
    return i


def diff_strings(old: str, new: str) -> list[TextOperation]:
    """Edit operations for a change from *old* to *new*.

    Each pass finds the longest common prefix. Where both strings go on,
    it deletes the rest of *old* and inserts the next character of *new*;
    where only one goes on, it emits just the insert or just the delete.
    The pass then repeats on what follows that character in each string.

    Positions of later passes are relative to the shortened strings, not
    to the document, and a replaced character drops the rest of the line,
    so only plain appends and truncations reproduce *new* exactly.

    Args:
        old: Previous content.
        new: Edited content.

    Returns:
        List of edit operations; empty if the strings are equal.
    """
    operations: list[TextOperation] = []

    while True:
        prefix = common_prefix_length(old, new)
        if prefix == len(old) and prefix == len(new):
            return operations

        if prefix == len(old):
            operations.append(InsertText(position=prefix, character=new[prefix]))
            old, new = "", new[prefix + 1 :]
        elif prefix == len(new):
            operations.append(DeleteText(position=prefix, length=len(old) - prefix))
            old, new = old[prefix + 1 :], ""
        else:
            operations.append(DeleteText(position=prefix, length=len(old) - prefix))
            operations.append(InsertText(position=prefix, character=new[prefix]))
            old, new = old[prefix + 1 :], new[prefix + 1 :]


class NaiveTextVariant(Variant):
    """Flat string state with index-based edits."""

    kind = VariantKind.NAIVE_TEXT

    def initial_state(self, replica_id: str) -> str:
        return ""

    def apply(self, operation: Any, state: str) -> str:
        if isinstance(operation, InsertText):
            if operation.position < 0 or len(operation.character) != 1:
                raise OperationRejected(operation, "malformed insert")
            return state[: operation.position] + operation.character + state[operation.position :]

        if isinstance(operation, DeleteText):
            if operation.position < 0 or operation.length < 0:
                raise OperationRejected(operation, "malformed delete")
            return state[: operation.position] + state[operation.position + operation.length :]

        raise OperationRejected(operation, "not a text operation")

    def edit(self, state: str, new_content: str) -> list[TextOperation]:
        """Operations for a local edit that replaced *state* with *new_content*."""
        return diff_strings(state, new_content)

    def author_random_operations(
        self, state: str, replica_id: str, rng: np.random.Generator
    ) -> list[Any]:
        # Type a letter somewhere, or backspace a character if there is one
        if state and rng.random() < 0.3:
            position = int(rng.integers(len(state)))
            edited = state[:position] + state[position + 1 :]
        else:
            position = int(rng.integers(len(state) + 1))
            letter = string.ascii_lowercase[int(rng.integers(26))]
            edited = state[:position] + letter + state[position:]
        return self.edit(state, edited)
