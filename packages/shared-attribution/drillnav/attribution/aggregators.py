"""
Aggregators - run the builders' queries against the store clients and
turn raw rows into typed aggregates.

Each aggregator pairs one store client with the builder for that store,
so the engine asks for "visits by tracking key" without knowing which
placeholder style or date convention the store uses.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Protocol

from drillnav.attribution.normalization import normalize_dimension_value
from drillnav.attribution.query_builder import (
    BuiltQuery,
    ConversionQueryBuilder,
    VisitQueryBuilder,
)
from drillnav.attribution.schema import (
    AttributedCounts,
    AttributionResult,
    ConversionAggregate,
    DrilldownRequest,
    VisitAggregate,
    VisitorConversion,
    VisitorVisit,
)
from drillnav.stores.result import QueryResult

logger = logging.getLogger(__name__)


class StoreClient(Protocol):
    """What the aggregators need from a store client."""

    store_name: str

    def table_reference(self, table: str) -> str: ...

    async def query_async(
        self,
        sql: str,
        params: Any = None,
        stage: str = "query",
        max_results: int | None = None,
    ) -> QueryResult: ...


async def _run(client: StoreClient, built: BuiltQuery) -> list[dict[str, Any]]:
    result = await client.query_async(built.sql, built.params, stage=built.stage)
    logger.debug(f"{client.store_name} {built.stage}: {len(result.rows)} rows")
    return result.rows


class VisitAggregator:
    """Visit-side aggregates from the page-view store."""

    def __init__(self, client: StoreClient, table: str):
        self.client = client
        self.builder = VisitQueryBuilder(client.table_reference(table))

    async def metrics(self, request: DrilldownRequest) -> list[dict[str, Any]]:
        """Page views and unique visitors per drill-down row."""
        return await _run(self.client, self.builder.aggregate(request))

    async def by_tracking(self, request: DrilldownRequest) -> list[VisitAggregate]:
        """Unique visitors per (dimension value, tracking tuple)."""
        rows = await _run(self.client, self.builder.tracking_combos(request))
        return [VisitAggregate.from_row(row) for row in rows]

    async def by_visitor(self, request: DrilldownRequest) -> list[VisitorVisit]:
        """Distinct (dimension value, visitor id) memberships."""
        rows = await _run(self.client, self.builder.visitor_map(request))
        return [VisitorVisit.from_row(row) for row in rows]


class ConversionAggregator:
    """Conversion-side aggregates from the CRM store."""

    def __init__(self, client: StoreClient, table: str):
        self.client = client
        self.builder = ConversionQueryBuilder(client.table_reference(table))

    async def by_dimension(self, request: DrilldownRequest) -> AttributionResult:
        """Trials/approved per normalized native-column value."""
        rows = await _run(self.client, self.builder.aggregate(request))
        totals: AttributionResult = defaultdict(AttributedCounts)
        for row in rows:
            totals[normalize_dimension_value(row.get("dimension_value"))].add(
                float(row.get("trials") or 0),
                float(row.get("approved") or 0),
            )
        return dict(totals)

    async def by_tracking(self, request: DrilldownRequest) -> list[ConversionAggregate]:
        """Trials/approved per tracking tuple."""
        rows = await _run(self.client, self.builder.tracking_combos(request))
        return [ConversionAggregate.from_row(row) for row in rows]

    async def by_visitor(self, request: DrilldownRequest) -> list[VisitorConversion]:
        """Trials/approved per visitor id."""
        rows = await _run(self.client, self.builder.visitor_map(request))
        return [VisitorConversion.from_row(row) for row in rows]
