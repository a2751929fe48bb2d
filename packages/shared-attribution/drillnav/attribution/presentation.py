"""
Drill-down rows - merge visit metrics with attributed conversions.

Attributed counts stay fractional on the row; integers and the 4dp
conversion rate only appear in to_dict().
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from drillnav.attribution.normalization import display_value, normalize_dimension_value
from drillnav.attribution.schema import (
    AttributedCounts,
    AttributionResult,
    DrilldownRequest,
    SortDirection,
    SortMetric,
)
from drillnav.attribution.tracking import KEY_SEPARATOR


def round_half_up(value: float, places: int = 0) -> float:
    """Round half away from zero, unlike Python's banker's rounding."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


@dataclass
class DrilldownRow:
    """One row of a drill-down level."""

    key: str
    attribute: str
    depth: int
    has_children: bool
    page_views: int
    unique_visitors: int
    trials: float = 0.0
    approved: float = 0.0

    @property
    def conversion_rate(self) -> float:
        """Rounded trials per unique visitor, 0 when there are no visitors."""
        if self.unique_visitors <= 0:
            return 0.0
        return round_half_up(round_half_up(self.trials) / self.unique_visitors, 4)

    def sort_value(self, metric: SortMetric) -> float:
        if metric is SortMetric.CONVERSION_RATE:
            return self.conversion_rate
        return float(getattr(self, metric.value))

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "attribute": self.attribute,
            "depth": self.depth,
            "has_children": self.has_children,
            "metrics": {
                "page_views": self.page_views,
                "unique_visitors": self.unique_visitors,
                "trials": int(round_half_up(self.trials)),
                "approved": int(round_half_up(self.approved)),
                "conversion_rate": self.conversion_rate,
            },
        }


def build_rows(
    request: DrilldownRequest,
    visit_rows: list[dict[str, Any]],
    attribution: AttributionResult,
) -> list[DrilldownRow]:
    """Merge visit metric rows with the attribution for the current dimension.

    The key is every level's display value joined in dimension order, so a
    child's key always starts with its parent's key.
    """
    rows = []
    for visit_row in visit_rows:
        value = visit_row.get("dimension_value")
        path = [display_value(visit_row.get(f"level_{i}")) for i in range(request.depth)]
        path.append(display_value(value))

        counts = attribution.get(normalize_dimension_value(value), AttributedCounts())
        rows.append(
            DrilldownRow(
                key=KEY_SEPARATOR.join(path),
                attribute=display_value(value),
                depth=request.depth,
                has_children=request.has_children,
                page_views=int(visit_row.get("page_views") or 0),
                unique_visitors=int(visit_row.get("unique_visitors") or 0),
                trials=counts.trials,
                approved=counts.approved,
            )
        )
    return rows


def sort_rows(
    rows: list[DrilldownRow],
    request: DrilldownRequest,
    is_date: bool = False,
) -> list[DrilldownRow]:
    """Re-sort by a conversion metric and apply the limit.

    Visit-metric requests and date dimensions were already ordered by the
    visit query, so only the limit is applied to them.
    """
    if request.sort_by.is_conversion_metric and not is_date:
        rows = sorted(
            rows,
            key=lambda row: row.sort_value(request.sort_by),
            reverse=request.sort_direction is SortDirection.DESC,
        )
    return rows[: request.limit]
