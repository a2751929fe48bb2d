"""
Drill-down attribution engine - one request in, attributed rows out.

Per request:
1. Validate and classify the current dimension once
2. Issue the independent store queries concurrently
3. Attribute conversions with the rule the classification selected
4. Merge into rows, re-sort on conversion metrics, apply the limit

A failing store query fails the whole request and cancels its siblings;
proportional shares need a complete denominator.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any

from drillnav.attribution.aggregators import (
    ConversionAggregator,
    StoreClient,
    VisitAggregator,
)
from drillnav.attribution.config import AttributionConfig
from drillnav.attribution.dimensions import (
    AttributionMode,
    Classification,
    DimensionClassifier,
)
from drillnav.attribution.exceptions import AttributionInternalError
from drillnav.attribution.matching import match_proportional, match_visitor_based
from drillnav.attribution.presentation import DrilldownRow, build_rows, sort_rows
from drillnav.attribution.schema import AttributionResult, DrilldownRequest

logger = logging.getLogger(__name__)


async def gather_or_cancel(**awaitables: Awaitable[Any]) -> dict[str, Any]:
    """Await named awaitables concurrently.

    The first failure cancels the rest and is re-raised unwrapped.
    """
    try:
        async with asyncio.TaskGroup() as tg:
            tasks = {name: tg.create_task(aw) for name, aw in awaitables.items()}
    except ExceptionGroup as eg:
        raise eg.exceptions[0] from eg
    return {name: task.result() for name, task in tasks.items()}


@dataclass
class DrilldownResult:
    """Attributed rows for one drill-down level."""

    request: DrilldownRequest
    mode: AttributionMode
    rows: list[DrilldownRow] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dimension": self.request.current_dimension,
            "depth": self.request.depth,
            "attribution_mode": self.mode.value,
            "rows": [row.to_dict() for row in self.rows],
        }


class DrilldownAttributionEngine:
    """Answers drill-down requests with conversions attributed to each row.

    Example:
        engine = DrilldownAttributionEngine.from_clients(
            VisitStoreClient(BigQueryConfig.from_env()),
            ConversionStoreClient(SnowflakeConfig.from_env()),
        )
        result = await engine.run(DrilldownRequest.from_dict(body))
        result.to_dict()
    """

    def __init__(
        self,
        visits: VisitAggregator,
        conversions: ConversionAggregator,
        classifier: DimensionClassifier | None = None,
        config: AttributionConfig | None = None,
    ):
        self.config = config or AttributionConfig()
        self.visits = visits
        self.conversions = conversions
        self.classifier = classifier or DimensionClassifier(
            visitor_ids_enabled=self.config.visitor_ids_enabled
        )

    @classmethod
    def from_clients(
        cls,
        visit_client: StoreClient,
        conversion_client: StoreClient,
        config: AttributionConfig | None = None,
    ) -> DrilldownAttributionEngine:
        """Wire aggregators for the configured tables onto two store clients."""
        config = config or AttributionConfig()
        return cls(
            visits=VisitAggregator(visit_client, config.visit_table),
            conversions=ConversionAggregator(conversion_client, config.conversion_table),
            config=config,
        )

    def prepare(self, request: DrilldownRequest) -> tuple[DrilldownRequest, Classification]:
        """Validate dimension ids, clamp the limit and classify.

        Raises:
            ValidationError: If any dimension id is unknown.
        """
        for dimension_id in request.dimensions:
            self.classifier.get(dimension_id)
        request = dataclasses.replace(request, limit=self.config.clamp_limit(request.limit))
        classification = self.classifier.classify(
            request.current_dimension, dict(request.ordered_parent_filters())
        )
        return request, classification

    async def run(self, request: DrilldownRequest) -> DrilldownResult:
        """Answer one drill-down request.

        Raises:
            ValidationError: If the request is rejected before any query runs.
            StoreQueryError: If either store fails; no partial result is returned.
            AttributionInternalError: If a matcher invariant is violated.
        """
        request, classification = self.prepare(request)
        started = time.monotonic()

        try:
            visit_rows, attribution = await self._fetch_and_attribute(request, classification)
        except AttributionInternalError:
            logger.exception(
                "Attribution invariant violated",
                extra={
                    "dimension": request.current_dimension,
                    "mode": classification.mode.value,
                },
            )
            raise AttributionInternalError("Internal attribution error") from None

        rows = build_rows(request, visit_rows, attribution)
        rows = sort_rows(rows, request, is_date=classification.dimension.is_date)

        logger.info(
            f"Drill-down {request.current_dimension} at depth {request.depth}: {len(rows)} rows",
            extra={
                "dimension": request.current_dimension,
                "depth": request.depth,
                "mode": classification.mode.value,
                "row_count": len(rows),
                "duration_ms": round((time.monotonic() - started) * 1000),
            },
        )
        return DrilldownResult(request=request, mode=classification.mode, rows=rows)

    async def _fetch_and_attribute(
        self,
        request: DrilldownRequest,
        classification: Classification,
    ) -> tuple[list[dict[str, Any]], AttributionResult]:
        mode = classification.mode

        if mode is AttributionMode.DIRECT:
            results = await gather_or_cancel(
                metrics=self.visits.metrics(request),
                conversions=self.conversions.by_dimension(request),
            )
            return results["metrics"], results["conversions"]

        if mode is AttributionMode.PROPORTIONAL:
            results = await gather_or_cancel(
                metrics=self.visits.metrics(request),
                visits=self.visits.by_tracking(request),
                conversions=self.conversions.by_tracking(request),
            )
            attribution = match_proportional(
                results["conversions"],
                results["visits"],
                exclude=classification.excluded_fields,
            )
            return results["metrics"], attribution

        if mode is AttributionMode.VISITOR_BASED:
            results = await gather_or_cancel(
                metrics=self.visits.metrics(request),
                visits=self.visits.by_visitor(request),
                conversions=self.conversions.by_visitor(request),
            )
            return results["metrics"], match_visitor_based(
                results["conversions"], results["visits"]
            )

        # Unsupported: no conversion equivalent, rows keep zero attribution
        return await self.visits.metrics(request), {}
