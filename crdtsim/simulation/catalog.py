"""
Variant catalog: maps a ``VariantKind`` to a configured ``Variant``.
"""

from .counter import CounterVariant, GuardedCounterVariant
from .grid import GRID_SIZE, GridVariant
from .sequence import SequenceTextVariant
from .text import NaiveTextVariant
from .variant import Variant, VariantKind


def make_variant(kind: VariantKind | str, grid_size: int = GRID_SIZE) -> Variant:
    """Instantiate the variant selected at startup.

    Args:
        kind: Variant kind, or its string value (e.g. ``"sequence_text"``).
        grid_size: Width/height of the grid variant; ignored by the others.

    Returns:
        A fresh variant instance.

    Raises:
        ValueError: If *kind* names no known variant.
    """
    kind = VariantKind(kind)

    if kind == VariantKind.COUNTER:
        return CounterVariant()
    if kind == VariantKind.GUARDED_COUNTER:
        return GuardedCounterVariant()
    if kind == VariantKind.GRID:
        return GridVariant(size=grid_size)
    if kind == VariantKind.NAIVE_TEXT:
        return NaiveTextVariant()
    return SequenceTextVariant()
