"""
QueryValidator - read-only guard applied to every SQL text before it
reaches either store.

Attribution queries are single SELECT aggregates built from a static
dimension table, so anything else (writes, DDL, privilege changes or a
second statement) is rejected.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class ValidationSeverity(str, Enum):
    """Severity level for validation issues."""

    ERROR = "error"  # Query blocked
    WARNING = "warning"  # Query allowed with warning


@dataclass
class ValidationResult:
    """Result of query validation."""

    is_valid: bool
    severity: ValidationSeverity | None = None
    message: str | None = None


BLOCKED_KEYWORDS = (
    "DROP",
    "DELETE",
    "TRUNCATE",
    "UPDATE",
    "INSERT",
    "MERGE",
    "CREATE",
    "ALTER",
    "GRANT",
    "REVOKE",
)

_BLOCKED = re.compile(rf"\b({'|'.join(BLOCKED_KEYWORDS)})\s+", re.IGNORECASE)
_SELECT_STAR = re.compile(r"SELECT\s+(DISTINCT\s+)?\*", re.IGNORECASE)
_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_-]*(\.[a-zA-Z_][a-zA-Z0-9_-]*)*$")


class QueryValidator:
    """Validates SQL before execution and identifiers before interpolation."""

    @classmethod
    def validate(cls, sql: str) -> ValidationResult:
        """
        Validate a SQL query for safety.

        Args:
            sql: SQL query string

        Returns:
            ValidationResult; a warning for SELECT *

        Raises:
            ValueError: If the query writes, changes schema or stacks statements
        """
        match = _BLOCKED.search(sql)
        if match:
            raise ValueError(
                f"Query validation failed: {match.group(1).upper()} statements are not allowed"
            )
        if ";" in sql.strip().rstrip(";"):
            raise ValueError("Query validation failed: multiple statements are not allowed")

        if _SELECT_STAR.search(sql):
            return ValidationResult(
                is_valid=True,
                severity=ValidationSeverity.WARNING,
                message="Consider specifying columns instead of SELECT *",
            )
        return ValidationResult(is_valid=True)

    @classmethod
    def sanitize_identifier(cls, identifier: str) -> str:
        """
        Check a table, dataset or schema name before it is interpolated.

        Raises:
            ValueError: If identifier contains invalid characters
        """
        if not _IDENTIFIER.match(identifier):
            raise ValueError(f"Invalid identifier: {identifier}")
        return identifier
