"""
VisitStoreClient - BigQuery client for the page-view event store.

Provides:
- Named-parameter query execution (@name placeholders)
- Query validation to prevent destructive operations
- Async execution that cancels the BigQuery job when the caller is cancelled
- Client-safe error classification
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import os
from typing import Any

from google.cloud import bigquery
from pydantic import BaseModel

from drillnav.stores.errors import (
    BIGQUERY_ERROR_CONFIG,
    classify_store_error,
    result_limit_error,
)
from drillnav.stores.result import QueryResult
from drillnav.stores.validation import QueryValidator

logger = logging.getLogger(__name__)

_PARAMETER_TYPES: tuple[tuple[type, str], ...] = (
    (bool, "BOOL"),
    (int, "INT64"),
    (float, "FLOAT64"),
    (dt.datetime, "TIMESTAMP"),
    (dt.date, "DATE"),
)


class BigQueryConfig(BaseModel):
    """Configuration for the visit store client."""

    project_id: str | None = None
    credentials_path: str | None = None
    location: str = "US"
    dataset: str = "analytics"
    max_results: int = 100_000
    timeout: int = 300  # 5 minutes

    @classmethod
    def from_env(cls) -> BigQueryConfig:
        """Load configuration from environment variables."""
        return cls(
            project_id=os.getenv("GCP_PROJECT_ID") or os.getenv("DRILLNAV_PROJECT_ID"),
            credentials_path=os.getenv("GOOGLE_APPLICATION_CREDENTIALS"),
            location=os.getenv("DRILLNAV_BQ_LOCATION", "US"),
            dataset=os.getenv("DRILLNAV_VISIT_DATASET", "analytics"),
        )


class VisitStoreClient:
    """
    BigQuery client for visit aggregates.

    Example:
        client = VisitStoreClient()
        result = client.query(
            "SELECT url_path, COUNT(*) AS page_views FROM ... WHERE country_code = @p0",
            params={"p0": "US"},
        )
    """

    store_name = "visit_store"

    def __init__(self, config: BigQueryConfig | None = None):
        self.config = config or BigQueryConfig.from_env()
        self._client: bigquery.Client | None = None

    @property
    def client(self) -> bigquery.Client:
        """Lazy initialization of BigQuery client."""
        if self._client is None:
            self._client = bigquery.Client(
                project=self.config.project_id,
                location=self.config.location,
            )
        return self._client

    def table_reference(self, table: str) -> str:
        """Fully qualified, backtick-quoted reference to a table in the visit dataset."""
        QueryValidator.sanitize_identifier(table)
        QueryValidator.sanitize_identifier(self.config.dataset)
        if self.config.project_id:
            return f"`{self.config.project_id}.{self.config.dataset}.{table}`"
        return f"`{self.config.dataset}.{table}`"

    def query(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        stage: str = "query",
        max_results: int | None = None,
    ) -> QueryResult:
        """
        Execute a parameterized query.

        Args:
            sql: SQL query string with @name placeholders
            params: Query parameters keyed by placeholder name
            stage: Label of the request stage, used in logs and errors
            max_results: Maximum rows to return

        Returns:
            QueryResult with rows and metadata

        Raises:
            StoreQueryError: If the query fails, times out or matches more
                than max_results rows
        """
        limit = max_results or self.config.max_results
        query_job = self._submit(sql, params, stage)
        try:
            result = query_job.result(max_results=limit, timeout=self.config.timeout)
        except Exception as e:
            raise classify_store_error(e, stage, BIGQUERY_ERROR_CONFIG) from e
        return self._collect(query_job, result, stage, limit)

    async def query_async(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        stage: str = "query",
        max_results: int | None = None,
    ) -> QueryResult:
        """Async query execution; cancelling the awaiting task cancels the job."""
        limit = max_results or self.config.max_results
        query_job = await asyncio.to_thread(self._submit, sql, params, stage)
        try:
            result = await asyncio.to_thread(
                query_job.result, max_results=limit, timeout=self.config.timeout
            )
        except asyncio.CancelledError:
            logger.info(f"Cancelling BigQuery job {query_job.job_id} ({stage})")
            await asyncio.to_thread(query_job.cancel)
            raise
        except Exception as e:
            raise classify_store_error(e, stage, BIGQUERY_ERROR_CONFIG) from e
        # Iterating the result may fetch further pages
        return await asyncio.to_thread(self._collect, query_job, result, stage, limit)

    def _submit(
        self,
        sql: str,
        params: dict[str, Any] | None,
        stage: str,
    ) -> bigquery.QueryJob:
        """Validate and start a query job."""
        QueryValidator.validate(sql)

        job_config = bigquery.QueryJobConfig()
        if params:
            job_config.query_parameters = [
                self._build_parameter(name, value) for name, value in params.items()
            ]

        logger.debug(f"Executing BigQuery query ({stage}): {sql}")
        try:
            return self.client.query(sql, job_config=job_config)
        except Exception as e:
            raise classify_store_error(e, stage, BIGQUERY_ERROR_CONFIG) from e

    def _collect(
        self, query_job: bigquery.QueryJob, result: Any, stage: str, limit: int
    ) -> QueryResult:
        """Materialize rows; a result matching more rows than the limit fails."""
        rows = [dict(row.items()) for row in result]
        if result.total_rows and result.total_rows > len(rows):
            raise result_limit_error(BIGQUERY_ERROR_CONFIG.store_label, stage, limit)
        return QueryResult(
            rows=rows,
            total_rows=len(rows),
            bytes_processed=query_job.total_bytes_processed or 0,
            cache_hit=query_job.cache_hit or False,
        )

    def _build_parameter(
        self, name: str, value: Any
    ) -> bigquery.ScalarQueryParameter | bigquery.ArrayQueryParameter:
        if isinstance(value, (list, tuple)):
            element_type = self._infer_type(value[0]) if value else "STRING"
            return bigquery.ArrayQueryParameter(name, element_type, list(value))
        return bigquery.ScalarQueryParameter(name, self._infer_type(value), value)

    def _infer_type(self, value: Any) -> str:
        # bool before int and datetime before date: each is a subclass of the next
        for python_type, bigquery_type in _PARAMETER_TYPES:
            if isinstance(value, python_type):
                return bigquery_type
        return "STRING"
