"""
Value normalization shared by the query builders and the matchers.

The "Unknown" bucket has to mean the same thing in three places: the SQL
projection that folds empty values together, the SQL predicate used when a
user drills into "Unknown", and the in-memory keys the matchers join on.
All three are derived from the constants in this module.
"""

from __future__ import annotations

from typing import Any

UNKNOWN_SENTINEL = "Unknown"
UNKNOWN_KEY = "unknown"

# Compared against the lower-cased text form of a value
NULL_LITERALS: tuple[str, ...] = ("", "null", "unknown")

# Canonical source -> every spelling seen in either store
SOURCE_VARIANTS: dict[str, tuple[str, ...]] = {
    "google": ("google", "adwords"),
    "facebook": ("facebook", "meta"),
}


def is_null_like(value: Any) -> bool:
    """Return True if value belongs in the Unknown bucket."""
    return value is None or str(value).lower() in NULL_LITERALS


def normalize_dimension_value(value: Any) -> str:
    """Normalize a dimension value into the key used for in-memory joins."""
    if is_null_like(value):
        return UNKNOWN_KEY
    return str(value).lower()


def display_value(value: Any) -> str:
    """Value shown to users: the Unknown sentinel for empty values."""
    if is_null_like(value):
        return UNKNOWN_SENTINEL
    return str(value)


def canonical_source(value: str) -> str:
    """Map a source spelling onto its canonical name."""
    lowered = value.lower()
    for canonical, variants in SOURCE_VARIANTS.items():
        if lowered in variants:
            return canonical
    return lowered


def source_variants(value: str) -> tuple[str, ...]:
    """All spellings that should match a filter on the given source."""
    return SOURCE_VARIANTS.get(canonical_source(value), (value.lower(),))


def sql_string_list(values: tuple[str, ...]) -> str:
    """Render code-defined constants as a SQL string list."""
    return ", ".join(f"'{value}'" for value in values)


def normalized_source_sql(column: str) -> str:
    """SQL expression mapping a raw source column onto canonical names.

    Only SOURCE_VARIANTS constants are rendered inline; the expression is
    valid in both BigQuery and Snowflake.
    """
    branches = " ".join(
        f"WHEN LOWER({column}) IN ({sql_string_list(variants)}) THEN '{canonical}'"
        for canonical, variants in SOURCE_VARIANTS.items()
    )
    return f"CASE {branches} ELSE LOWER(COALESCE({column}, '')) END"
