"""Query result container shared by both store clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class QueryResult:
    """Result of a store query."""

    rows: list[dict[str, Any]]
    total_rows: int
    bytes_processed: int = 0
    cache_hit: bool = False
