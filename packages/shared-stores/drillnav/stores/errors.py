"""
Store error classification.

Both store clients need the same treatment when a query fails: work out
what kind of failure it was, log it with the store name and stage, and
hand the caller a message that is safe to surface. Classification checks
vendor exception classes, network patterns, vendor error codes and finally
falls back to a generic message.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field

from google.api_core import exceptions as google_exceptions

from drillnav.stores.exceptions import StoreQueryError

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Database query failed - please try again"
TIMEOUT_MESSAGE = "Database query timeout - please try again"


@dataclass(frozen=True)
class ErrorClassifierConfig:
    """Per-store classification rules."""

    store_label: str
    code_map: dict[int, str] = field(default_factory=dict)
    exception_map: tuple[tuple[type[BaseException], str], ...] = ()


# Network patterns shared by both stores
NETWORK_PATTERNS: list[tuple[tuple[str, ...], str]] = [
    (("etimedout", "timeout", "timed out"), TIMEOUT_MESSAGE),
    (
        ("econnrefused", "connection refused"),
        "Unable to connect to database - please check your network connection",
    ),
    (
        ("enotfound", "getaddrinfo", "name or service not known"),
        "Database host not found - please check your network connection",
    ),
    (("econnreset", "connection reset"), "Database connection was reset - please try again"),
]


BIGQUERY_ERROR_CONFIG = ErrorClassifierConfig(
    store_label="BigQuery",
    exception_map=(
        (concurrent.futures.TimeoutError, TIMEOUT_MESSAGE),
        (google_exceptions.DeadlineExceeded, TIMEOUT_MESSAGE),
        (google_exceptions.Unauthorized, "Database authentication failed"),
        (google_exceptions.Forbidden, "Database access denied"),
        (google_exceptions.NotFound, "Database table not found"),
        (google_exceptions.TooManyRequests, "Database is rate limiting requests - please try again shortly"),
        (google_exceptions.ServiceUnavailable, "Database is currently unavailable - please try again shortly"),
        (google_exceptions.BadRequest, "Database query error - please try again"),
    ),
)

SNOWFLAKE_ERROR_CONFIG = ErrorClassifierConfig(
    store_label="Snowflake",
    exception_map=((TimeoutError, TIMEOUT_MESSAGE),),
    code_map={
        604: "Database query was cancelled",
        630: TIMEOUT_MESSAGE,
        904: "Database column not found",
        1003: "Database query error - please try again",
        2003: "Database table not found",
        250001: "Unable to connect to database - please check your network connection",
        390100: "Database authentication failed",
        390144: "Database authentication failed",
    },
)


def classify_store_error(
    error: BaseException,
    stage: str,
    config: ErrorClassifierConfig,
) -> StoreQueryError:
    """Classify a raw store exception into a client-safe StoreQueryError.

    Args:
        error: The exception raised by the store driver.
        stage: Which query of the request failed (e.g. "visit_aggregate").
        config: Store-specific classification rules.

    Returns:
        StoreQueryError whose message exposes no query text or parameters.
    """
    error_message = str(error).lower()
    error_code = getattr(error, "errno", None)

    logger.error(
        f"{config.store_label} query error during {stage}",
        extra={
            "store": config.store_label,
            "stage": stage,
            "error_type": type(error).__name__,
            "error_code": error_code,
        },
    )

    # 1. Vendor exception classes
    for exc_type, message in config.exception_map:
        if isinstance(error, exc_type):
            return StoreQueryError(config.store_label, stage, message)

    # 2. Network patterns
    for needles, message in NETWORK_PATTERNS:
        if any(needle in error_message for needle in needles):
            return StoreQueryError(config.store_label, stage, message)

    # 3. Vendor error codes
    if error_code is not None and error_code in config.code_map:
        return StoreQueryError(config.store_label, stage, config.code_map[error_code])

    return StoreQueryError(config.store_label, stage, GENERIC_MESSAGE)


def result_limit_error(store_label: str, stage: str, limit: int) -> StoreQueryError:
    """Error for a result set larger than the client's row limit.

    A truncated aggregate would silently skew attribution shares, so the
    caller gets a failure instead of partial rows.
    """
    logger.error(
        f"{store_label} result exceeded {limit} rows during {stage}",
        extra={"store": store_label, "stage": stage, "row_limit": limit},
    )
    return StoreQueryError(
        store_label,
        stage,
        f"Result exceeded {limit} rows - narrow the date range or filters",
    )
