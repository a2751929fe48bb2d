"""
Hierarchical query builders for the visit and conversion stores.

Both builders expose the same three queries so callers never branch on
the store:

- aggregate(): rows grouped by every level down to the requested depth
- tracking_combos(): totals per tracking tuple (visits also per dimension value)
- visitor_map(): per-visitor rows for visitor-based attribution

Column expressions come from the static dimension table; every value that
originates from a request is a bound parameter.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

from drillnav.attribution.dimensions import (
    CONVERSION_APPROVED_COLUMN,
    CONVERSION_TIMESTAMP_COLUMN,
    CONVERSION_TRACKING_EXPRESSIONS,
    CONVERSION_VISITOR_COLUMN,
    DIMENSIONS,
    VISIT_TIMESTAMP_COLUMN,
    VISIT_TRACKING_EXPRESSIONS,
    VISIT_VISITOR_COLUMN,
    DimensionConfig,
)
from drillnav.attribution.exceptions import AttributionInternalError, ValidationError
from drillnav.attribution.normalization import (
    NULL_LITERALS,
    UNKNOWN_SENTINEL,
    canonical_source,
    is_null_like,
    source_variants,
    sql_string_list,
)
from drillnav.attribution.schema import (
    TRACKING_FIELDS,
    DrilldownRequest,
    SortDirection,
    SortMetric,
)

logger = logging.getLogger(__name__)


@dataclass
class BuiltQuery:
    """A parameterized query ready for a store client."""

    sql: str
    params: dict[str, Any] | list[Any]
    stage: str


class ParamBinder(ABC):
    """Collects bound parameters and hands out placeholders."""

    @abstractmethod
    def bind(self, value: Any) -> str:
        """Register a value and return its placeholder."""

    @property
    @abstractmethod
    def params(self) -> dict[str, Any] | list[Any]:
        """Parameters in the form the store client expects."""


class NamedParamBinder(ParamBinder):
    """BigQuery-style @name placeholders."""

    def __init__(self) -> None:
        self._params: dict[str, Any] = {}

    def bind(self, value: Any) -> str:
        name = f"p{len(self._params)}"
        self._params[name] = value
        return f"@{name}"

    @property
    def params(self) -> dict[str, Any]:
        return self._params


class PositionalParamBinder(ParamBinder):
    """Snowflake pyformat %s placeholders."""

    def __init__(self) -> None:
        self._params: list[Any] = []

    def bind(self, value: Any) -> str:
        self._params.append(value)
        return "%s"

    @property
    def params(self) -> list[Any]:
        return self._params


class HierarchicalQueryBuilder(ABC):
    """Shared drill-down query assembly; subclasses supply the store dialect."""

    store_label: str

    def __init__(
        self,
        table: str,
        dimensions: Mapping[str, DimensionConfig] = DIMENSIONS,
    ):
        self.table = table
        self.dimensions = dimensions

    # -- dialect hooks -------------------------------------------------

    @abstractmethod
    def new_binder(self) -> ParamBinder:
        """Create a binder for this store's placeholder style."""

    @abstractmethod
    def text(self, expression: str) -> str:
        """Cast an expression to text."""

    @abstractmethod
    def date_range_predicate(self, request: DrilldownRequest, binder: ParamBinder) -> str:
        """Predicate restricting rows to the request's date range."""

    @abstractmethod
    def dimension_expression(self, dimension: DimensionConfig) -> str | None:
        """Expression grouping this store by the dimension, if it has one."""

    @abstractmethod
    def parent_predicate(
        self, dimension: DimensionConfig, value: str, binder: ParamBinder
    ) -> str:
        """Equality predicate for a fixed parent value."""

    # -- shared assembly -----------------------------------------------

    def unknown_bucket(self, expression: str) -> str:
        """Project an expression, folding empty values into the Unknown sentinel."""
        text = self.text(expression)
        return (
            f"CASE WHEN {expression} IS NULL OR LOWER({text}) IN ({sql_string_list(NULL_LITERALS)}) "
            f"THEN '{UNKNOWN_SENTINEL}' ELSE {text} END"
        )

    def unknown_predicate(self, expression: str) -> str:
        """Match every row the Unknown bucket projection would fold together."""
        return (
            f"({expression} IS NULL OR LOWER({self.text(expression)}) "
            f"IN ({sql_string_list(NULL_LITERALS)}))"
        )

    def get_dimension(self, dimension_id: str) -> DimensionConfig:
        try:
            return self.dimensions[dimension_id]
        except KeyError:
            raise ValidationError(f"Unknown dimension: {dimension_id}") from None

    def level_projections(self, request: DrilldownRequest) -> list[str]:
        """SELECT items for every level down to the requested depth.

        Depth d groups by dimensions[0..d], so a child request strictly
        refines its parent's grouping. The last level is dimension_value.
        """
        projections = []
        for index, dimension_id in enumerate(request.levels):
            expression = self._required_expression(self.get_dimension(dimension_id))
            alias = "dimension_value" if index == request.depth else f"level_{index}"
            projections.append(f"{self.unknown_bucket(expression)} AS {alias}")
        return projections

    def current_projection(self, request: DrilldownRequest) -> str:
        """SELECT item for the requested dimension only."""
        dimension = self.get_dimension(request.current_dimension)
        return f"{self.unknown_bucket(self._required_expression(dimension))} AS dimension_value"

    def where_clause(self, request: DrilldownRequest, binder: ParamBinder) -> list[str]:
        """Date range plus one predicate per parent filter this store can express.

        A parent fixed to the Unknown sentinel gets a null/empty predicate
        and binds no parameter.
        """
        conditions = [self.date_range_predicate(request, binder)]
        for dimension_id, value in request.ordered_parent_filters():
            dimension = self.get_dimension(dimension_id)
            if self.dimension_expression(dimension) is None:
                logger.debug(f"{self.store_label}: no column for parent {dimension_id}")
                continue
            if is_null_like(value):
                conditions.append(self.unknown_predicate(self._filter_expression(dimension)))
            else:
                conditions.append(self.parent_predicate(dimension, value, binder))
        return conditions

    def _filter_expression(self, dimension: DimensionConfig) -> str:
        return self._required_expression(dimension)

    def _required_expression(self, dimension: DimensionConfig) -> str:
        expression = self.dimension_expression(dimension)
        if expression is None:
            raise AttributionInternalError(
                f"{self.store_label} has no column for dimension {dimension.id}"
            )
        return expression

    @staticmethod
    def group_by_ordinals(count: int) -> str:
        # Ordinals avoid Snowflake resolving an alias to a same-named column
        return ", ".join(str(position) for position in range(1, count + 1))

    @staticmethod
    def _bind_filter_value(dimension: DimensionConfig, value: str) -> str:
        if dimension.is_country:
            return value.upper()
        if dimension.is_source:
            return canonical_source(value)
        return value


class VisitQueryBuilder(HierarchicalQueryBuilder):
    """Queries over the BigQuery page-view table."""

    store_label = "visit_store"

    def new_binder(self) -> ParamBinder:
        return NamedParamBinder()

    def text(self, expression: str) -> str:
        return f"CAST({expression} AS STRING)"

    def date_range_predicate(self, request: DrilldownRequest, binder: ParamBinder) -> str:
        start: date = request.date_range.start
        end: date = request.date_range.end
        return (
            f"DATE({VISIT_TIMESTAMP_COLUMN}) BETWEEN {binder.bind(start)} AND {binder.bind(end)}"
        )

    def dimension_expression(self, dimension: DimensionConfig) -> str | None:
        return dimension.visit_expression

    def parent_predicate(
        self, dimension: DimensionConfig, value: str, binder: ParamBinder
    ) -> str:
        placeholder = binder.bind(self._bind_filter_value(dimension, value))
        return f"{self.text(dimension.visit_expression)} = {placeholder}"

    def aggregate(self, request: DrilldownRequest) -> BuiltQuery:
        """Visit metrics grouped down to the requested depth."""
        binder = self.new_binder()
        projections = self.level_projections(request)
        conditions = self.where_clause(request, binder)

        order_column, direction, push_limit = self._ordering(request)
        sql = f"""
            SELECT
              {", ".join(projections)},
              COUNT(*) AS page_views,
              COUNT(DISTINCT {VISIT_VISITOR_COLUMN}) AS unique_visitors
            FROM {self.table}
            WHERE {" AND ".join(conditions)}
            GROUP BY {self.group_by_ordinals(len(projections))}
            ORDER BY {order_column} {direction.value}
        """
        if push_limit:
            sql += f"LIMIT {int(request.limit)}\n"
        return BuiltQuery(sql=sql, params=binder.params, stage="visit_aggregate")

    def tracking_combos(self, request: DrilldownRequest) -> BuiltQuery:
        """Unique visitors per (dimension value, tracking tuple)."""
        binder = self.new_binder()
        conditions = self.where_clause(request, binder)
        tracking = [
            f"COALESCE({self.text(VISIT_TRACKING_EXPRESSIONS[f])}, '') AS {f.value}"
            for f in TRACKING_FIELDS
        ]
        sql = f"""
            SELECT
              {self.current_projection(request)},
              {", ".join(tracking)},
              COUNT(DISTINCT {VISIT_VISITOR_COLUMN}) AS unique_visitors
            FROM {self.table}
            WHERE {" AND ".join(conditions)}
            GROUP BY {self.group_by_ordinals(1 + len(tracking))}
        """
        return BuiltQuery(sql=sql, params=binder.params, stage="visit_tracking_combos")

    def visitor_map(self, request: DrilldownRequest) -> BuiltQuery:
        """Distinct (dimension value, visitor id) pairs."""
        binder = self.new_binder()
        conditions = self.where_clause(request, binder)
        conditions.append(f"{VISIT_VISITOR_COLUMN} IS NOT NULL")
        sql = f"""
            SELECT DISTINCT
              {self.current_projection(request)},
              {self.text(VISIT_VISITOR_COLUMN)} AS visitor_id
            FROM {self.table}
            WHERE {" AND ".join(conditions)}
        """
        return BuiltQuery(sql=sql, params=binder.params, stage="visit_visitor_map")

    def _ordering(self, request: DrilldownRequest) -> tuple[str, SortDirection, bool]:
        """ORDER BY column, direction, and whether LIMIT can be pushed down.

        Conversion metrics only exist after matching, so those requests are
        ordered by page views here and limited after the in-memory re-sort.
        """
        if self.get_dimension(request.current_dimension).is_date:
            return "dimension_value", SortDirection.DESC, True
        if request.sort_by.is_conversion_metric:
            return SortMetric.PAGE_VIEWS.value, SortDirection.DESC, False
        return request.sort_by.value, request.sort_direction, True


class ConversionQueryBuilder(HierarchicalQueryBuilder):
    """Queries over the Snowflake CRM subscription table."""

    store_label = "conversion_store"

    def new_binder(self) -> ParamBinder:
        return PositionalParamBinder()

    def text(self, expression: str) -> str:
        return f"TO_VARCHAR({expression})"

    def date_range_predicate(self, request: DrilldownRequest, binder: ParamBinder) -> str:
        # Timestamp-bounded: the whole of the end day is included
        start = f"{request.date_range.start.isoformat()} 00:00:00"
        end = f"{request.date_range.end.isoformat()} 23:59:59"
        return (
            f"{CONVERSION_TIMESTAMP_COLUMN} BETWEEN {binder.bind(start)} AND {binder.bind(end)}"
        )

    def dimension_expression(self, dimension: DimensionConfig) -> str | None:
        return dimension.native_column

    def _filter_expression(self, dimension: DimensionConfig) -> str:
        if dimension.filter_column is None:
            return self._required_expression(dimension)
        return dimension.filter_column

    def parent_predicate(
        self, dimension: DimensionConfig, value: str, binder: ParamBinder
    ) -> str:
        column = self._filter_expression(dimension)
        if dimension.is_source:
            placeholders = ", ".join(binder.bind(variant) for variant in source_variants(value))
            return f"LOWER({column}) IN ({placeholders})"
        return f"{self.text(column)} = {binder.bind(self._bind_filter_value(dimension, value))}"

    def aggregate(self, request: DrilldownRequest) -> BuiltQuery:
        """Trials and approvals grouped by native columns down to the requested depth."""
        binder = self.new_binder()
        projections = self.level_projections(request)
        conditions = self.where_clause(request, binder)
        sql = f"""
            SELECT
              {", ".join(projections)},
              COUNT(*) AS trials,
              SUM({CONVERSION_APPROVED_COLUMN}) AS approved
            FROM {self.table}
            WHERE {" AND ".join(conditions)}
            GROUP BY {self.group_by_ordinals(len(projections))}
        """
        return BuiltQuery(sql=sql, params=binder.params, stage="conversion_direct")

    def tracking_combos(self, request: DrilldownRequest) -> BuiltQuery:
        """Trials and approvals per tracking tuple."""
        binder = self.new_binder()
        conditions = self.where_clause(request, binder)
        tracking = [
            f"COALESCE({self.text(CONVERSION_TRACKING_EXPRESSIONS[f])}, '') AS {f.value}"
            for f in TRACKING_FIELDS
        ]
        sql = f"""
            SELECT
              {", ".join(tracking)},
              COUNT(*) AS trials,
              SUM({CONVERSION_APPROVED_COLUMN}) AS approved
            FROM {self.table}
            WHERE {" AND ".join(conditions)}
            GROUP BY {self.group_by_ordinals(len(tracking))}
        """
        return BuiltQuery(sql=sql, params=binder.params, stage="conversion_tracking_combos")

    def visitor_map(self, request: DrilldownRequest) -> BuiltQuery:
        """Trials and approvals per visitor id."""
        binder = self.new_binder()
        conditions = self.where_clause(request, binder)
        conditions.append(f"{CONVERSION_VISITOR_COLUMN} IS NOT NULL")
        sql = f"""
            SELECT
              {self.text(CONVERSION_VISITOR_COLUMN)} AS visitor_id,
              COUNT(*) AS trials,
              SUM({CONVERSION_APPROVED_COLUMN}) AS approved
            FROM {self.table}
            WHERE {" AND ".join(conditions)}
            GROUP BY 1
        """
        return BuiltQuery(sql=sql, params=binder.params, stage="conversion_visitor_map")


__all__ = [
    "BuiltQuery",
    "ConversionQueryBuilder",
    "HierarchicalQueryBuilder",
    "NamedParamBinder",
    "ParamBinder",
    "PositionalParamBinder",
    "VisitQueryBuilder",
]
