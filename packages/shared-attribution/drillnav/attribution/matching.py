"""
Attribution matchers.

Two deliberately different rules, chosen per dimension by the classifier:

- Proportional: conversions sharing a tracking key are split across the
  dimension values under that key in proportion to their visits.
- Visitor-based: each visitor's conversions are split evenly across the
  distinct dimension values that visitor touched.

Results stay fractional; rounding happens only when rows are serialized.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from typing import AbstractSet

from drillnav.attribution.normalization import normalize_dimension_value
from drillnav.attribution.schema import (
    AttributedCounts,
    AttributionResult,
    ConversionAggregate,
    TrackingField,
    VisitAggregate,
    VisitorConversion,
    VisitorVisit,
)
from drillnav.attribution.tracking import build_key

logger = logging.getLogger(__name__)


def index_conversions(
    conversions: Iterable[ConversionAggregate],
    exclude: AbstractSet[TrackingField],
) -> dict[str, AttributedCounts]:
    """Sum conversion totals per tracking key.

    Several rows can collapse onto one key once fields are excluded or
    NULL and "null" are folded together.
    """
    index: dict[str, AttributedCounts] = defaultdict(AttributedCounts)
    for row in conversions:
        index[build_key(row.tracking, exclude)].add(row.trials, row.approved)
    return dict(index)


def match_proportional(
    conversions: Iterable[ConversionAggregate],
    visits: Iterable[VisitAggregate],
    exclude: AbstractSet[TrackingField] = frozenset(),
) -> AttributionResult:
    """Distribute conversions across dimension values by visit share.

    Args:
        conversions: Conversion totals per tracking tuple.
        visits: Visit counts per (dimension value, tracking tuple).
        exclude: Tracking fields left out of the key on both sides.

    Returns:
        Normalized dimension value -> fractional trials/approved.
    """
    conversion_index = index_conversions(conversions, exclude)

    keyed_visits: list[tuple[str, VisitAggregate]] = []
    combo_totals: dict[str, float] = defaultdict(float)
    for row in visits:
        key = build_key(row.tracking, exclude)
        keyed_visits.append((key, row))
        combo_totals[key] += row.visit_count

    result: AttributionResult = {}
    for key, row in keyed_visits:
        dimension_key = normalize_dimension_value(row.dimension_value)
        counts = result.setdefault(dimension_key, AttributedCounts())

        conversion = conversion_index.get(key)
        if conversion is None:
            continue
        combo_total = combo_totals[key]
        if combo_total <= 0:
            # No visits under this key: nothing to split, nothing to fabricate
            continue

        proportion = row.visit_count / combo_total
        counts.add(conversion.trials * proportion, conversion.approved * proportion)

    unmatched = set(conversion_index) - set(combo_totals)
    if unmatched:
        logger.debug(f"Dropped conversions for {len(unmatched)} tracking keys with no visits")
    return result


def match_visitor_based(
    conversions: Iterable[VisitorConversion],
    visits: Iterable[VisitorVisit],
) -> AttributionResult:
    """Split each visitor's conversions evenly across the values they touched.

    Repeat visits to one value count once. Conversions from visitors that
    never appear in the visit set are dropped.
    """
    touched: dict[str, set[str]] = defaultdict(set)
    for row in visits:
        touched[row.visitor_id].add(normalize_dimension_value(row.dimension_value))

    result: AttributionResult = {
        dimension_key: AttributedCounts()
        for dimension_keys in touched.values()
        for dimension_key in dimension_keys
    }

    dropped = 0
    for conversion in conversions:
        dimension_keys = touched.get(conversion.visitor_id)
        if not dimension_keys:
            dropped += 1
            continue
        share = 1.0 / len(dimension_keys)
        for dimension_key in dimension_keys:
            result[dimension_key].add(conversion.trials * share, conversion.approved * share)

    if dropped:
        logger.debug(f"Dropped {dropped} visitor conversions with no matching visits")
    return result
