"""Custom exceptions for store clients."""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for store errors."""

    pass


class StoreConfigurationError(StoreError):
    """Raised when a store client is missing required configuration."""

    pass


class StoreQueryError(StoreError):
    """Raised when a store query fails or times out.

    The message is client-safe: it never contains query text or bound
    parameter values.
    """

    def __init__(self, store: str, stage: str, message: str):
        self.store = store
        self.stage = stage
        super().__init__(f"{store} query failed during {stage}: {message}")
