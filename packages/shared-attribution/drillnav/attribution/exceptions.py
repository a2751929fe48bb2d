"""Custom exceptions for the attribution engine."""

from __future__ import annotations

from drillnav.stores.exceptions import StoreQueryError


class AttributionError(Exception):
    """Base exception for attribution errors."""

    pass


class ValidationError(AttributionError):
    """Raised when a drill-down request is rejected before any query runs."""

    pass


class AttributionInternalError(AttributionError):
    """Raised when a codec or matcher invariant is violated.

    This is a programming error: it is logged and surfaced as an opaque
    failure, never retried.
    """

    pass


__all__ = [
    "AttributionError",
    "ValidationError",
    "AttributionInternalError",
    "StoreQueryError",
]
