"""
Request and aggregate types for drill-down attribution.

Everything here is ephemeral: built per request from two live query
results and discarded once the response is serialized.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any

from drillnav.attribution.exceptions import ValidationError


class TrackingField(str, Enum):
    """Best-effort correlation fields present in both stores.

    Declaration order is the order of every TrackingTuple.
    """

    SOURCE = "source"
    CAMPAIGN_ID = "campaign_id"
    ADSET_ID = "adset_id"
    AD_ID = "ad_id"


TRACKING_FIELDS: tuple[TrackingField, ...] = tuple(TrackingField)

# Values in TRACKING_FIELDS order; None marks a NULL from the store
TrackingTuple = tuple[str | None, ...]


class SortMetric(str, Enum):
    """Metrics a drill-down can be sorted by."""

    PAGE_VIEWS = "page_views"
    UNIQUE_VISITORS = "unique_visitors"
    TRIALS = "trials"
    APPROVED = "approved"
    CONVERSION_RATE = "conversion_rate"

    @property
    def is_conversion_metric(self) -> bool:
        """True for metrics that only exist after attribution."""
        return self in (SortMetric.TRIALS, SortMetric.APPROVED, SortMetric.CONVERSION_RATE)


class SortDirection(str, Enum):
    """Sort direction."""

    ASC = "ASC"
    DESC = "DESC"


def _parse_date(value: Any, name: str) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError as e:
            raise ValidationError(f"Invalid {name} date: {value}") from e
    raise ValidationError(f"Missing or invalid {name} date")


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range; each store renders the boundaries its own way."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValidationError(
                f"Date range start {self.start} is after end {self.end}"
            )

    @classmethod
    def parse(cls, start: Any, end: Any) -> DateRange:
        """Build from ISO strings or date objects."""
        return cls(start=_parse_date(start, "start"), end=_parse_date(end, "end"))


@dataclass(frozen=True)
class DrilldownRequest:
    """A single drill-down level request.

    Example:
        request = DrilldownRequest(
            date_range=DateRange.parse("2026-02-04", "2026-02-06"),
            dimensions=["country", "url_path"],
            depth=1,
            parent_filters={"country": "US"},
        )
    """

    date_range: DateRange
    dimensions: tuple[str, ...]
    depth: int
    parent_filters: dict[str, str] = field(default_factory=dict)
    sort_by: SortMetric = SortMetric.PAGE_VIEWS
    sort_direction: SortDirection = SortDirection.DESC
    limit: int = 1000

    def __post_init__(self) -> None:
        if not self.dimensions:
            raise ValidationError("dimensions must not be empty")
        if len(set(self.dimensions)) != len(self.dimensions):
            raise ValidationError("dimensions must not repeat")
        if isinstance(self.depth, bool) or not isinstance(self.depth, int):
            raise ValidationError("depth must be an integer")
        if self.depth < 0 or self.depth >= len(self.dimensions):
            raise ValidationError(
                f"Depth {self.depth} is out of bounds for {len(self.dimensions)} dimensions"
            )
        outside = set(self.parent_filters) - set(self.ancestors)
        if outside:
            raise ValidationError(
                f"Parent filters must target ancestor dimensions, got: {sorted(outside)}"
            )
        missing = [d for d in self.ancestors if d not in self.parent_filters]
        if missing:
            raise ValidationError(
                f"Parent filters must fix every ancestor dimension, missing: {missing}"
            )

    @property
    def current_dimension(self) -> str:
        """Dimension being grouped at this depth."""
        return self.dimensions[self.depth]

    @property
    def ancestors(self) -> tuple[str, ...]:
        """Dimensions above the current depth, in drill-down order."""
        return self.dimensions[: self.depth]

    @property
    def levels(self) -> tuple[str, ...]:
        """Dimensions grouped at this depth: every ancestor plus the current one."""
        return self.dimensions[: self.depth + 1]

    @property
    def has_children(self) -> bool:
        """True if another dimension exists below this depth."""
        return self.depth < len(self.dimensions) - 1

    def ordered_parent_filters(self) -> list[tuple[str, str]]:
        """Parent filters in drill-down order."""
        return [
            (dimension_id, self.parent_filters[dimension_id])
            for dimension_id in self.ancestors
        ]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DrilldownRequest:
        """Create a request from a decoded JSON body.

        Raises:
            ValidationError: If the body is malformed.
        """
        date_range = data.get("date_range") or {}
        dimensions = data.get("dimensions")
        if not isinstance(dimensions, list) or not all(isinstance(d, str) for d in dimensions):
            raise ValidationError("dimensions must be a list of dimension ids")

        parent_filters = data.get("parent_filters") or {}
        if not isinstance(parent_filters, dict):
            raise ValidationError("parent_filters must be a mapping")

        try:
            sort_by = SortMetric(data.get("sort_by", SortMetric.PAGE_VIEWS.value))
        except ValueError as e:
            raise ValidationError(f"Unknown sort metric: {data.get('sort_by')}") from e
        try:
            sort_direction = SortDirection(
                str(data.get("sort_direction", SortDirection.DESC.value)).upper()
            )
        except ValueError as e:
            raise ValidationError(
                f"Unknown sort direction: {data.get('sort_direction')}"
            ) from e

        try:
            limit = int(data.get("limit", 1000))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid limit: {data.get('limit')}") from e

        return cls(
            date_range=DateRange.parse(date_range.get("start"), date_range.get("end")),
            dimensions=tuple(dimensions),
            depth=data.get("depth"),
            parent_filters={str(k): str(v) for k, v in parent_filters.items()},
            sort_by=sort_by,
            sort_direction=sort_direction,
            limit=limit,
        )


@dataclass
class ConversionAggregate:
    """Conversion-side totals for one tracking tuple."""

    tracking: TrackingTuple
    trials: float
    approved: float

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ConversionAggregate:
        return cls(
            tracking=tuple(row.get(f.value) for f in TRACKING_FIELDS),
            trials=float(row.get("trials") or 0),
            approved=float(row.get("approved") or 0),
        )


@dataclass
class VisitAggregate:
    """Visit-side count for one (dimension value, tracking tuple) pair."""

    dimension_value: str | None
    tracking: TrackingTuple
    visit_count: float

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> VisitAggregate:
        return cls(
            dimension_value=row.get("dimension_value"),
            tracking=tuple(row.get(f.value) for f in TRACKING_FIELDS),
            visit_count=float(row.get("unique_visitors") or 0),
        )


@dataclass
class VisitorConversion:
    """Conversion-side totals for one visitor id."""

    visitor_id: str
    trials: float
    approved: float

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> VisitorConversion:
        return cls(
            visitor_id=str(row["visitor_id"]),
            trials=float(row.get("trials") or 0),
            approved=float(row.get("approved") or 0),
        )


@dataclass
class VisitorVisit:
    """One (dimension value, visitor id) membership from the visit store."""

    dimension_value: str | None
    visitor_id: str

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> VisitorVisit:
        return cls(
            dimension_value=row.get("dimension_value"),
            visitor_id=str(row["visitor_id"]),
        )


@dataclass
class AttributedCounts:
    """Fractional conversion counts attributed to one dimension value."""

    trials: float = 0.0
    approved: float = 0.0

    def add(self, trials: float, approved: float) -> None:
        self.trials += trials
        self.approved += approved


# Normalized dimension value -> attributed counts
AttributionResult = dict[str, AttributedCounts]
