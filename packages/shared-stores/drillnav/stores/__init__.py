"""
Drillnav Stores - clients for the two stores the attribution engine reads.

Usage:
    from drillnav.stores import VisitStoreClient, ConversionStoreClient

    # Page-view events (BigQuery, @name parameters)
    visits = VisitStoreClient()
    result = visits.query("SELECT ... WHERE country_code = @p0", {"p0": "US"})

    # CRM subscriptions (Snowflake, %s parameters)
    conversions = ConversionStoreClient()
    result = conversions.query("SELECT ... WHERE date_create BETWEEN %s AND %s", [start, end])
"""

from drillnav.stores.conversions import ConversionStoreClient, SnowflakeConfig
from drillnav.stores.exceptions import (
    StoreConfigurationError,
    StoreError,
    StoreQueryError,
)
from drillnav.stores.result import QueryResult
from drillnav.stores.validation import QueryValidator
from drillnav.stores.visits import BigQueryConfig, VisitStoreClient

__all__ = [
    "VisitStoreClient",
    "ConversionStoreClient",
    "BigQueryConfig",
    "SnowflakeConfig",
    "QueryResult",
    "QueryValidator",
    "StoreError",
    "StoreQueryError",
    "StoreConfigurationError",
]
