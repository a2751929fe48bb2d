"""Tests for the hierarchical query builders."""

from datetime import date

import pytest

from drillnav.attribution.exceptions import AttributionInternalError
from drillnav.attribution.query_builder import (
    ConversionQueryBuilder,
    NamedParamBinder,
    PositionalParamBinder,
    VisitQueryBuilder,
)
from drillnav.attribution.schema import DateRange, DrilldownRequest, SortDirection, SortMetric

START = date(2026, 2, 4)
END = date(2026, 2, 6)


def make_request(dimensions, depth=0, parent_filters=None, **kwargs) -> DrilldownRequest:
    return DrilldownRequest(
        date_range=DateRange(START, END),
        dimensions=tuple(dimensions),
        depth=depth,
        parent_filters=parent_filters or {},
        **kwargs,
    )


@pytest.fixture
def visit_builder():
    return VisitQueryBuilder("`p.analytics.page_views`")


@pytest.fixture
def conversion_builder():
    return ConversionQueryBuilder("CRM.PUBLIC.crm_subscription_enriched")


class TestParamBinders:
    """Tests for placeholder binders."""

    def test_named_binder(self):
        """Test named placeholders are numbered in bind order."""
        binder = NamedParamBinder()
        assert binder.bind("a") == "@p0"
        assert binder.bind("b") == "@p1"
        assert binder.params == {"p0": "a", "p1": "b"}

    def test_positional_binder(self):
        """Test positional placeholders keep bind order."""
        binder = PositionalParamBinder()
        assert binder.bind("a") == "%s"
        assert binder.bind("b") == "%s"
        assert binder.params == ["a", "b"]


class TestVisitAggregate:
    """Tests for VisitQueryBuilder.aggregate."""

    def test_depth_zero(self, visit_builder):
        """Test a root request groups by one level and binds the date range."""
        built = visit_builder.aggregate(make_request(["device_type"]))

        assert "AS dimension_value" in built.sql
        assert "level_0" not in built.sql
        assert "DATE(created_at) BETWEEN @p0 AND @p1" in built.sql
        assert "GROUP BY 1\n" in built.sql
        assert built.params == {"p0": START, "p1": END}
        assert built.stage == "visit_aggregate"

    def test_child_groups_by_every_ancestor(self, visit_builder):
        """Test depth d groups by dimensions 0..d."""
        built = visit_builder.aggregate(
            make_request(
                ["country", "utm_source", "device_type"],
                depth=2,
                parent_filters={"country": "US", "utm_source": "google"},
            )
        )

        assert "AS level_0" in built.sql
        assert "AS level_1" in built.sql
        assert "GROUP BY 1, 2, 3" in built.sql

    def test_parent_filter_binds_exactly_one_value(self, visit_builder):
        """Test a concrete parent value adds one bound parameter."""
        built = visit_builder.aggregate(
            make_request(["country", "device_type"], depth=1, parent_filters={"country": "US"})
        )

        assert built.params == {"p0": START, "p1": END, "p2": "US"}
        assert "CAST(UPPER(country_code) AS STRING) = @p2" in built.sql
        assert "'US'" not in built.sql

    def test_country_value_is_upper_cased(self, visit_builder):
        """Test country filters are bound upper-case."""
        built = visit_builder.aggregate(
            make_request(["country", "device_type"], depth=1, parent_filters={"country": "us"})
        )
        assert built.params["p2"] == "US"

    def test_unknown_parent_binds_nothing(self, visit_builder):
        """Test the Unknown sentinel becomes a null/empty predicate."""
        built = visit_builder.aggregate(
            make_request(["country", "device_type"], depth=1, parent_filters={"country": "Unknown"})
        )

        assert built.params == {"p0": START, "p1": END}
        assert (
            "(UPPER(country_code) IS NULL OR LOWER(CAST(UPPER(country_code) AS STRING)) "
            "IN ('', 'null', 'unknown'))"
        ) in built.sql

    def test_source_filter_uses_canonical_value(self, visit_builder):
        """Test source filters are bound as the canonical name."""
        built = visit_builder.aggregate(
            make_request(["utm_source", "device_type"], depth=1, parent_filters={"utm_source": "AdWords"})
        )
        assert built.params["p2"] == "google"

    def test_unknown_bucket_projection(self, visit_builder):
        """Test empty values are folded into the Unknown bucket in SQL."""
        built = visit_builder.aggregate(make_request(["device_type"]))
        assert (
            "CASE WHEN device_type IS NULL OR LOWER(CAST(device_type AS STRING)) "
            "IN ('', 'null', 'unknown') THEN 'Unknown' ELSE CAST(device_type AS STRING) END"
        ) in built.sql

    def test_visit_metric_sort_pushes_limit(self, visit_builder):
        """Test visit metrics are ordered and limited in the query."""
        built = visit_builder.aggregate(
            make_request(
                ["device_type"],
                sort_by=SortMetric.UNIQUE_VISITORS,
                sort_direction=SortDirection.ASC,
                limit=50,
            )
        )
        assert "ORDER BY unique_visitors ASC" in built.sql
        assert "LIMIT 50" in built.sql

    def test_conversion_metric_sort_has_no_limit(self, visit_builder):
        """Test conversion metrics cannot be limited before attribution."""
        built = visit_builder.aggregate(
            make_request(["device_type"], sort_by=SortMetric.TRIALS, limit=50)
        )
        assert "ORDER BY page_views DESC" in built.sql
        assert "LIMIT" not in built.sql

    def test_date_dimension_sorts_by_value(self, visit_builder):
        """Test the date dimension is always newest first."""
        built = visit_builder.aggregate(
            make_request(["date"], sort_by=SortMetric.PAGE_VIEWS, sort_direction=SortDirection.ASC)
        )
        assert "ORDER BY dimension_value DESC" in built.sql


class TestVisitTrackingAndVisitorQueries:
    """Tests for the visit-side matching queries."""

    def test_tracking_combos(self, visit_builder):
        """Test tracking combos group by value plus every tracking field."""
        built = visit_builder.tracking_combos(
            make_request(["utm_source", "device_type"], depth=1, parent_filters={"utm_source": "google"})
        )

        for alias in ("source", "campaign_id", "adset_id", "ad_id"):
            assert f"AS {alias}" in built.sql
        assert "COUNT(DISTINCT ff_visitor_id) AS unique_visitors" in built.sql
        assert "GROUP BY 1, 2, 3, 4, 5" in built.sql
        assert "level_0" not in built.sql
        assert built.params == {"p0": START, "p1": END, "p2": "google"}
        assert built.stage == "visit_tracking_combos"

    def test_visitor_map(self, visit_builder):
        """Test visitor map selects distinct value/visitor pairs."""
        built = visit_builder.visitor_map(make_request(["url_path"]))

        assert "SELECT DISTINCT" in built.sql
        assert "AS visitor_id" in built.sql
        assert "ff_visitor_id IS NOT NULL" in built.sql
        assert built.stage == "visit_visitor_map"


class TestConversionQueries:
    """Tests for ConversionQueryBuilder."""

    def test_date_range_is_timestamp_bounded(self, conversion_builder):
        """Test the conversion date range covers the whole end day."""
        built = conversion_builder.tracking_combos(make_request(["device_type"]))

        assert "date_create BETWEEN %s AND %s" in built.sql
        assert built.params == ["2026-02-04 00:00:00", "2026-02-06 23:59:59"]
        assert built.stage == "conversion_tracking_combos"

    def test_direct_aggregate(self, conversion_builder):
        """Test direct aggregates group by native columns."""
        built = conversion_builder.aggregate(
            make_request(["country", "campaign"], depth=1, parent_filters={"country": "US"})
        )

        assert "country_normalized" in built.sql
        assert "tracking_id_4" in built.sql
        assert "COUNT(*) AS trials" in built.sql
        assert "SUM(is_approved) AS approved" in built.sql
        assert "GROUP BY 1, 2" in built.sql
        assert "TO_VARCHAR(country_normalized) = %s" in built.sql
        assert built.params[2:] == ["US"]
        assert built.stage == "conversion_direct"

    def test_source_filter_expands_variants(self, conversion_builder):
        """Test a source parent filter matches every known spelling."""
        built = conversion_builder.tracking_combos(
            make_request(["utm_source", "device_type"], depth=1, parent_filters={"utm_source": "google"})
        )

        assert "LOWER(source) IN (%s, %s)" in built.sql
        assert built.params[2:] == ["google", "adwords"]

    def test_unknown_source_filter(self, conversion_builder):
        """Test Unknown source checks the raw column and binds nothing."""
        built = conversion_builder.tracking_combos(
            make_request(["utm_source", "device_type"], depth=1, parent_filters={"utm_source": "Unknown"})
        )

        assert "(source IS NULL OR LOWER(TO_VARCHAR(source)) IN ('', 'null', 'unknown'))" in built.sql
        assert len(built.params) == 2

    def test_visit_only_parent_is_skipped(self, conversion_builder):
        """Test parents without a CRM column add no predicate."""
        built = conversion_builder.tracking_combos(
            make_request(["device_type", "os_name"], depth=1, parent_filters={"device_type": "mobile"})
        )

        assert "device_type" not in built.sql
        assert len(built.params) == 2

    def test_tracking_combos_use_canonical_source(self, conversion_builder):
        """Test the key's source field is canonicalized on the CRM side."""
        built = conversion_builder.tracking_combos(make_request(["device_type"]))
        assert "WHEN LOWER(source) IN ('google', 'adwords') THEN 'google'" in built.sql
        assert "GROUP BY 1, 2, 3, 4\n" in built.sql

    def test_visitor_map(self, conversion_builder):
        """Test visitor conversions are grouped by visitor id."""
        built = conversion_builder.visitor_map(make_request(["url_path"]))

        assert "TO_VARCHAR(ff_vid) AS visitor_id" in built.sql
        assert "ff_vid IS NOT NULL" in built.sql
        assert "GROUP BY 1" in built.sql
        assert built.stage == "conversion_visitor_map"

    def test_aggregate_without_native_column_raises(self, conversion_builder):
        """Test asking the CRM store to group by a visit-only dimension is an internal error."""
        with pytest.raises(AttributionInternalError):
            conversion_builder.aggregate(make_request(["device_type"]))
