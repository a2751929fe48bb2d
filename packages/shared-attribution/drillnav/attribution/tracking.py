"""Tracking key codec: canonical string keys for approximate cross-store joins."""

from __future__ import annotations

from collections.abc import Sequence
from typing import AbstractSet

from drillnav.attribution.exceptions import AttributionInternalError
from drillnav.attribution.schema import TRACKING_FIELDS, TrackingField

KEY_SEPARATOR = "::"

# The conversion store writes the literal string "null" for missing ids
NULL_TRACKING_LITERAL = "null"


def normalize_tracking_value(value: str | None) -> str:
    """Treat NULL and the literal "null" as empty; anything else is kept as-is."""
    if value is None or value == NULL_TRACKING_LITERAL:
        return ""
    return str(value)


def build_key(
    tracking: Sequence[str | None],
    exclude: AbstractSet[TrackingField] = frozenset(),
) -> str:
    """Build the canonical tracking key for a tuple.

    Excluded fields are dropped entirely rather than replaced, so both sides
    of a join must pass the same exclusion set.

    Args:
        tracking: Values in TRACKING_FIELDS order.
        exclude: Fields to leave out of the key.

    Returns:
        Field values joined with KEY_SEPARATOR.

    Raises:
        AttributionInternalError: If the tuple does not match TRACKING_FIELDS.
    """
    if len(tracking) != len(TRACKING_FIELDS):
        raise AttributionInternalError(
            f"Tracking tuple has {len(tracking)} fields, expected {len(TRACKING_FIELDS)}"
        )
    return KEY_SEPARATOR.join(
        normalize_tracking_value(value)
        for tracking_field, value in zip(TRACKING_FIELDS, tracking, strict=True)
        if tracking_field not in exclude
    )
