"""
Drillnav Attribution - attribute CRM conversions to drill-down rows of
page-view analytics.

Usage:
    from drillnav.attribution import DrilldownAttributionEngine, DrilldownRequest
    from drillnav.stores import ConversionStoreClient, VisitStoreClient

    engine = DrilldownAttributionEngine.from_clients(
        VisitStoreClient(), ConversionStoreClient()
    )
    request = DrilldownRequest.from_dict({
        "date_range": {"start": "2026-02-04", "end": "2026-02-06"},
        "dimensions": ["utm_source", "device_type"],
        "depth": 1,
        "parent_filters": {"utm_source": "google"},
        "sort_by": "trials",
    })
    result = await engine.run(request)
"""

from drillnav.attribution.aggregators import ConversionAggregator, VisitAggregator
from drillnav.attribution.config import AttributionConfig
from drillnav.attribution.dimensions import (
    DIMENSIONS,
    AttributionMode,
    Classification,
    DimensionClassifier,
    DimensionConfig,
)
from drillnav.attribution.engine import DrilldownAttributionEngine, DrilldownResult
from drillnav.attribution.exceptions import (
    AttributionError,
    AttributionInternalError,
    StoreQueryError,
    ValidationError,
)
from drillnav.attribution.matching import match_proportional, match_visitor_based
from drillnav.attribution.presentation import DrilldownRow, round_half_up
from drillnav.attribution.query_builder import ConversionQueryBuilder, VisitQueryBuilder
from drillnav.attribution.schema import (
    AttributedCounts,
    ConversionAggregate,
    DateRange,
    DrilldownRequest,
    SortDirection,
    SortMetric,
    TrackingField,
    VisitAggregate,
    VisitorConversion,
    VisitorVisit,
)
from drillnav.attribution.tracking import KEY_SEPARATOR, build_key

__all__ = [
    # Engine
    "DrilldownAttributionEngine",
    "DrilldownResult",
    "AttributionConfig",
    # Request
    "DrilldownRequest",
    "DateRange",
    "SortMetric",
    "SortDirection",
    # Classification
    "DIMENSIONS",
    "AttributionMode",
    "Classification",
    "DimensionClassifier",
    "DimensionConfig",
    # Tracking keys
    "TrackingField",
    "KEY_SEPARATOR",
    "build_key",
    # Aggregation and matching
    "VisitAggregator",
    "ConversionAggregator",
    "VisitQueryBuilder",
    "ConversionQueryBuilder",
    "ConversionAggregate",
    "VisitAggregate",
    "VisitorConversion",
    "VisitorVisit",
    "AttributedCounts",
    "match_proportional",
    "match_visitor_based",
    # Presentation
    "DrilldownRow",
    "round_half_up",
    # Errors
    "AttributionError",
    "ValidationError",
    "AttributionInternalError",
    "StoreQueryError",
]
