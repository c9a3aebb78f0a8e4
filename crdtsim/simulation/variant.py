"""
Variant abstraction for the CRDT replica simulator.

A variant bundles everything that differs between the demos: the initial
state of a replica, the ``apply`` merge function, local authoring guards,
and the view used to decide whether replicas agree. The simulator engine
is identical across variants and only talks to this interface.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import numpy as np


class VariantKind(Enum):
    """The conflict-resolution strategies the simulator can run."""

    COUNTER = "counter"  # Op-based counter, converges
    GUARDED_COUNTER = "guarded_counter"  # Locally guarded decrement, diverges
    GRID = "grid"  # Last-applied-wins pixel grid
    NAIVE_TEXT = "naive_text"  # Absolute-position text edits
    SEQUENCE_TEXT = "sequence_text"  # RGA-style sequence CRDT


class Variant(ABC):
    """Abstract base class for replicated data type variants.

    Subclasses define the operation alphabet and state type. ``apply`` must
    be a pure function of ``(operation, state)``: it may not read anything
    but its arguments and must return the new state rather than relying on
    in-place mutation of the old one.
    """

    kind: VariantKind

    @abstractmethod
    def initial_state(self, replica_id: str) -> Any:
        """Build the starting state for a replica.

        Args:
            replica_id: Owner of the state. Most variants ignore it; the
                sequence-text variant records it to tell local operations
                from received ones.

        Returns:
            A fresh state object.
        """

    @abstractmethod
    def apply(self, operation: Any, state: Any) -> Any:
        """Fold one operation into a state.

        Args:
            operation: Operation produced by this or another replica.
            state: Current replica state.

        Returns:
            The new state.

        Raises:
            OperationRejected: If the operation can never apply to this
                variant (wrong type, out of bounds, malformed).
        """

    @abstractmethod
    def author_random_operations(
        self, state: Any, replica_id: str, rng: np.random.Generator
    ) -> list[Any]:
        """Produce the operations for one random user edit.

        Used by experiment workloads in place of a human at the keyboard.

        Args:
            state: The authoring replica's current state.
            replica_id: The authoring replica.
            rng: NumPy random number generator for reproducibility.

        Returns:
            Operations to submit, in order (possibly empty).
        """

    def permits(self, operation: Any, state: Any) -> bool:
        """Local authoring guard checked before a submission is applied.

        Receivers never re-check it. Default: everything is allowed.
        """
        return True

    def is_local_only(self, operation: Any) -> bool:
        """Whether an operation changes only the author's view and is never broadcast."""
        return False

    def view(self, state: Any) -> Any:
        """Comparable projection of a state used for convergence checks."""
        return state

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
