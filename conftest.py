"""Shared pytest fixtures for Drillnav packages."""

import pytest
from unittest.mock import MagicMock, patch


@pytest.fixture
def mock_bigquery_client():
    """Mock google.cloud.bigquery.Client for testing."""
    with patch("google.cloud.bigquery.Client") as mock:
        client = MagicMock()
        mock.return_value = client
        yield client


@pytest.fixture
def mock_snowflake_connection():
    """Mock snowflake.connector.connect for testing."""
    mock_snowflake = MagicMock()
    connection = MagicMock()
    mock_snowflake.connector.connect.return_value = connection
    with patch.dict(
        "sys.modules",
        {"snowflake": mock_snowflake, "snowflake.connector": mock_snowflake.connector},
    ):
        yield connection


@pytest.fixture
def sample_drilldown_body():
    """Sample drill-down request body for testing."""
    return {
        "date_range": {"start": "2026-02-04", "end": "2026-02-06"},
        "dimensions": ["utm_source", "campaign", "device_type"],
        "depth": 2,
        "parent_filters": {"utm_source": "google", "campaign": "c1"},
        "sort_by": "trials",
        "sort_direction": "desc",
        "limit": 100,
    }

