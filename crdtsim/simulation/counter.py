"""
Counter variants.

``CounterVariant`` is a correct operation-based CRDT: increments and
decrements commute, so every delivery order reaches the same total.

``GuardedCounterVariant`` adds a local "never below zero" precondition on
decrement. The guard is only checked by the author; receivers apply every
decrement unconditionally, so replicas that started from different values
(or raced past the guard) end up with different totals. That divergence is
the point of the variant and must not be clamped away.
"""

import logging
from enum import Enum
from typing import Any

import numpy as np

from .errors import OperationRejected
from .variant import Variant, VariantKind

LOGGER = logging.getLogger(__name__)


class CounterOperation(Enum):
    """Operations accepted by the counter variants."""

    INCREMENT = "increment"
    DECREMENT = "decrement"


class CounterVariant(Variant):
    """Integer counter; state is a plain ``int``."""

    kind = VariantKind.COUNTER

    def initial_state(self, replica_id: str) -> int:
        return 0

    def apply(self, operation: Any, state: int) -> int:
        if operation is CounterOperation.INCREMENT:
            return state + 1
        if operation is CounterOperation.DECREMENT:
            return state - 1
        raise OperationRejected(operation, "not a counter operation")

    def author_random_operations(
        self, state: int, replica_id: str, rng: np.random.Generator
    ) -> list[Any]:
        if rng.random() < 0.5:
            return [CounterOperation.INCREMENT]
        return [CounterOperation.DECREMENT]


class GuardedCounterVariant(CounterVariant):
    """Counter whose author refuses to decrement at or below zero.

    ``apply`` is inherited unchanged: a received decrement always subtracts.
    """

    kind = VariantKind.GUARDED_COUNTER

    def permits(self, operation: Any, state: int) -> bool:
        if operation is CounterOperation.DECREMENT and state <= 0:
            LOGGER.debug("Guard refused decrement at state %d", state)
            return False
        return True
