"""
Dimension table and classifier.

The table documents, per dimension, the visit-store expression, the native
conversion-store column (if any), and which tracking field the dimension
is. The classifier turns that into one attribution mode per request:

- DIRECT: native column lookup, no tracking key involved
- PROPORTIONAL: tracking-key join split by visit share
- VISITOR_BASED: even split across the values a visitor touched
- UNSUPPORTED: no conversion equivalent; attribution stays at zero
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from drillnav.attribution.exceptions import ValidationError
from drillnav.attribution.normalization import normalized_source_sql
from drillnav.attribution.schema import TrackingField

logger = logging.getLogger(__name__)


class AttributionMode(str, Enum):
    """How conversions are attributed for a dimension."""

    DIRECT = "direct"
    PROPORTIONAL = "proportional"
    VISITOR_BASED = "visitor_based"
    UNSUPPORTED = "unsupported"


class ConversionStrategy(str, Enum):
    """Fallback strategy when a dimension cannot be matched directly."""

    TRACKING = "tracking"
    VISITOR = "visitor"
    NONE = "none"


@dataclass(frozen=True)
class DimensionConfig:
    """Static description of one drill-down dimension."""

    id: str
    visit_expression: str  # BigQuery expression over the page-view table
    native_column: str | None = None  # Snowflake expression over the CRM table
    native_filter: str | None = None  # Column filtered on; defaults to native_column
    tracking_field: TrackingField | None = None
    is_source: bool = False
    is_country: bool = False
    is_date: bool = False
    strategy: ConversionStrategy = ConversionStrategy.TRACKING

    @property
    def filter_column(self) -> str | None:
        """Conversion-side column used for parent-filter predicates."""
        return self.native_filter or self.native_column


# Visit-side tracking expressions, in TRACKING_FIELDS order
VISIT_TRACKING_EXPRESSIONS: dict[TrackingField, str] = {
    TrackingField.SOURCE: normalized_source_sql("utm_source"),
    TrackingField.CAMPAIGN_ID: "utm_campaign",
    TrackingField.ADSET_ID: "utm_content",
    TrackingField.AD_ID: "utm_medium",
}

# Conversion-side tracking expressions, in TRACKING_FIELDS order
CONVERSION_TRACKING_EXPRESSIONS: dict[TrackingField, str] = {
    TrackingField.SOURCE: normalized_source_sql("source"),
    TrackingField.CAMPAIGN_ID: "tracking_id_4",
    TrackingField.ADSET_ID: "tracking_id_2",
    TrackingField.AD_ID: "tracking_id",
}

VISIT_VISITOR_COLUMN = "ff_visitor_id"
VISIT_TIMESTAMP_COLUMN = "created_at"
CONVERSION_VISITOR_COLUMN = "ff_vid"
CONVERSION_TIMESTAMP_COLUMN = "date_create"
CONVERSION_APPROVED_COLUMN = "is_approved"


DIMENSIONS: dict[str, DimensionConfig] = {
    config.id: config
    for config in (
        DimensionConfig(
            id="utm_source",
            visit_expression=VISIT_TRACKING_EXPRESSIONS[TrackingField.SOURCE],
            native_column=CONVERSION_TRACKING_EXPRESSIONS[TrackingField.SOURCE],
            native_filter="source",
            tracking_field=TrackingField.SOURCE,
            is_source=True,
        ),
        DimensionConfig(
            id="campaign",
            visit_expression="utm_campaign",
            native_column="tracking_id_4",
            tracking_field=TrackingField.CAMPAIGN_ID,
        ),
        DimensionConfig(
            id="adset",
            visit_expression="utm_content",
            native_column="tracking_id_2",
            tracking_field=TrackingField.ADSET_ID,
        ),
        DimensionConfig(
            id="ad",
            visit_expression="utm_medium",
            native_column="tracking_id",
            tracking_field=TrackingField.AD_ID,
        ),
        DimensionConfig(
            id="country",
            visit_expression="UPPER(country_code)",
            native_column="country_normalized",
            is_country=True,
        ),
        DimensionConfig(
            id="date",
            visit_expression=f"DATE({VISIT_TIMESTAMP_COLUMN})",
            native_column=f"TO_CHAR({CONVERSION_TIMESTAMP_COLUMN}, 'YYYY-MM-DD')",
            is_date=True,
        ),
        DimensionConfig(
            id="url_path",
            visit_expression="url_path",
            strategy=ConversionStrategy.VISITOR,
        ),
        DimensionConfig(
            id="page_type",
            visit_expression="page_type",
            strategy=ConversionStrategy.VISITOR,
        ),
        DimensionConfig(id="device_type", visit_expression="device_type"),
        DimensionConfig(id="os_name", visit_expression="os_name"),
        DimensionConfig(id="browser_name", visit_expression="browser_name"),
        DimensionConfig(id="timezone", visit_expression="timezone"),
        DimensionConfig(
            id="visit_number",
            visit_expression="visit_number",
            strategy=ConversionStrategy.NONE,
        ),
        DimensionConfig(
            id="local_hour",
            visit_expression="local_hour_of_day",
            strategy=ConversionStrategy.NONE,
        ),
    )
}


@dataclass(frozen=True)
class Classification:
    """Attribution decision for one dimension within one request."""

    mode: AttributionMode
    dimension: DimensionConfig
    excluded_fields: frozenset[TrackingField]

    @property
    def native_column(self) -> str | None:
        """Native conversion column, set only for DIRECT attribution."""
        if self.mode is AttributionMode.DIRECT:
            return self.dimension.native_column
        return None


class DimensionClassifier:
    """Resolves the attribution mode for a dimension once per request.

    Example:
        classifier = DimensionClassifier()
        classification = classifier.classify("device_type", {"utm_source": "google"})
        classification.mode  # AttributionMode.PROPORTIONAL
        classification.excluded_fields  # frozenset({TrackingField.SOURCE})
    """

    def __init__(
        self,
        dimensions: Mapping[str, DimensionConfig] = DIMENSIONS,
        visitor_ids_enabled: bool = True,
    ):
        self.dimensions = dimensions
        self.visitor_ids_enabled = visitor_ids_enabled

    def get(self, dimension_id: str) -> DimensionConfig:
        """Look up a dimension.

        Raises:
            ValidationError: If the dimension id is unknown.
        """
        try:
            return self.dimensions[dimension_id]
        except KeyError:
            raise ValidationError(f"Unknown dimension: {dimension_id}") from None

    def classify(
        self,
        dimension_id: str,
        parent_filters: Mapping[str, str] | None = None,
    ) -> Classification:
        """Classify a dimension for a request with the given parent filters."""
        dimension = self.get(dimension_id)
        parent_filters = parent_filters or {}
        parents = [self.get(parent_id) for parent_id in parent_filters]

        # A conversion query can only be scoped to parents it has columns for
        parents_filterable = all(parent.filter_column for parent in parents)

        if dimension.native_column and parents_filterable:
            mode = AttributionMode.DIRECT
        elif dimension.strategy is ConversionStrategy.NONE:
            mode = AttributionMode.UNSUPPORTED
        elif dimension.strategy is ConversionStrategy.VISITOR and self.visitor_ids_enabled:
            mode = AttributionMode.VISITOR_BASED
        else:
            mode = AttributionMode.PROPORTIONAL

        excluded = self.excluded_fields(dimension, parents)
        logger.debug(
            f"Classified {dimension_id} as {mode.value}",
            extra={
                "dimension": dimension_id,
                "mode": mode.value,
                "excluded_fields": sorted(f.value for f in excluded),
            },
        )
        return Classification(mode=mode, dimension=dimension, excluded_fields=excluded)

    def excluded_fields(
        self,
        dimension: DimensionConfig,
        parents: list[DimensionConfig],
    ) -> frozenset[TrackingField]:
        """Tracking fields fixed by the grouping dimension or a parent filter.

        Keeping such a field in the key would make every row match itself on
        that field and drown out the remaining fields.
        """
        return frozenset(
            config.tracking_field
            for config in (dimension, *parents)
            if config.tracking_field is not None
        )
