"""
ConversionStoreClient - Snowflake client for the CRM conversion store.

Provides:
- Positional-parameter query execution (%s placeholders)
- Query validation to prevent destructive operations
- Async execution via execute_async; the query is aborted server-side
  when the awaiting task is cancelled or times out
- Client-safe error classification
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from pydantic import BaseModel, Field

from drillnav.stores.errors import (
    SNOWFLAKE_ERROR_CONFIG,
    classify_store_error,
    result_limit_error,
)
from drillnav.stores.exceptions import StoreConfigurationError, StoreQueryError
from drillnav.stores.result import QueryResult
from drillnav.stores.validation import QueryValidator

logger = logging.getLogger(__name__)


class SnowflakeConfig(BaseModel):
    """Configuration for the conversion store client."""

    account: str | None = None
    user: str | None = None
    password: str | None = Field(default=None, repr=False)
    warehouse: str | None = None
    database: str | None = None
    schema_name: str = "PUBLIC"
    role: str | None = None
    max_results: int = 100_000
    timeout: int = 300  # 5 minutes
    poll_interval: float = 0.5

    @classmethod
    def from_env(cls) -> SnowflakeConfig:
        """Load configuration from DRILLNAV_SNOWFLAKE_* environment variables."""
        return cls(
            account=os.getenv("DRILLNAV_SNOWFLAKE_ACCOUNT"),
            user=os.getenv("DRILLNAV_SNOWFLAKE_USER"),
            password=os.getenv("DRILLNAV_SNOWFLAKE_PASSWORD"),
            warehouse=os.getenv("DRILLNAV_SNOWFLAKE_WAREHOUSE"),
            database=os.getenv("DRILLNAV_SNOWFLAKE_DATABASE"),
            schema_name=os.getenv("DRILLNAV_SNOWFLAKE_SCHEMA", "PUBLIC"),
            role=os.getenv("DRILLNAV_SNOWFLAKE_ROLE"),
        )


class ConversionStoreClient:
    """Snowflake client for conversion aggregates.

    Can be used as a context manager:
        with ConversionStoreClient() as client:
            result = client.query("SELECT ... WHERE date_create BETWEEN %s AND %s", [start, end])
    """

    store_name = "conversion_store"

    def __init__(self, config: SnowflakeConfig | None = None):
        self.config = config or SnowflakeConfig.from_env()
        self._connection: Any = None

    def __enter__(self) -> ConversionStoreClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @property
    def connection(self) -> Any:
        """Lazily open the Snowflake connection.

        Raises:
            StoreConfigurationError: If the account is not configured.
            ImportError: If snowflake-connector-python is not installed.
        """
        if self._connection is None:
            if not self.config.account:
                raise StoreConfigurationError("Snowflake account is not configured")
            try:
                import snowflake.connector
            except ImportError as e:
                raise ImportError(
                    "snowflake-connector-python is required. "
                    "Install with: pip install snowflake-connector-python"
                ) from e

            self._connection = snowflake.connector.connect(
                account=self.config.account,
                user=self.config.user,
                password=self.config.password,
                warehouse=self.config.warehouse,
                database=self.config.database,
                schema=self.config.schema_name,
                role=self.config.role,
            )
            logger.info(f"Connected to Snowflake: {self.config.account}")
        return self._connection

    def table_reference(self, table: str) -> str:
        """Reference to a table in the configured database and schema."""
        QueryValidator.sanitize_identifier(table)
        if self.config.database:
            QueryValidator.sanitize_identifier(self.config.database)
            QueryValidator.sanitize_identifier(self.config.schema_name)
            return f"{self.config.database}.{self.config.schema_name}.{table}"
        return table

    def query(
        self,
        sql: str,
        params: list[Any] | None = None,
        stage: str = "query",
        max_results: int | None = None,
    ) -> QueryResult:
        """
        Execute a parameterized query.

        Args:
            sql: SQL query string with %s placeholders
            params: Positional query parameters
            stage: Label of the request stage, used in logs and errors
            max_results: Maximum rows to return

        Returns:
            QueryResult with rows

        Raises:
            StoreQueryError: If the query fails or returns more than max_results rows
        """
        QueryValidator.validate(sql)
        logger.debug(f"Executing Snowflake query ({stage}): {sql}")

        cursor = self.connection.cursor()
        try:
            cursor.execute(sql, params or None, timeout=self.config.timeout)
            return self._collect(cursor, stage, max_results)
        except StoreQueryError:
            raise
        except Exception as e:
            raise classify_store_error(e, stage, SNOWFLAKE_ERROR_CONFIG) from e
        finally:
            cursor.close()

    async def query_async(
        self,
        sql: str,
        params: list[Any] | None = None,
        stage: str = "query",
        max_results: int | None = None,
    ) -> QueryResult:
        """Async query execution; cancelling the awaiting task aborts the query.

        Every driver call, including opening the connection, runs in a worker
        thread so concurrent queries on the same loop keep making progress.
        """
        QueryValidator.validate(sql)
        logger.debug(f"Submitting async Snowflake query ({stage}): {sql}")

        try:
            connection = await asyncio.to_thread(lambda: self.connection)
            cursor = await asyncio.to_thread(connection.cursor)
        except (StoreConfigurationError, ImportError):
            raise
        except Exception as e:
            raise classify_store_error(e, stage, SNOWFLAKE_ERROR_CONFIG) from e

        query_id: str | None = None
        try:
            await asyncio.to_thread(cursor.execute_async, sql, params or None)
            query_id = cursor.sfqid
            await self._wait_for_completion(connection, cursor, query_id, stage)
            await asyncio.to_thread(cursor.get_results_from_sfqid, query_id)
            return await asyncio.to_thread(self._collect, cursor, stage, max_results)
        except asyncio.CancelledError:
            if query_id:
                logger.info(f"Aborting Snowflake query {query_id} ({stage})")
                await asyncio.to_thread(cursor.abort_query, query_id)
            raise
        except StoreQueryError:
            raise
        except Exception as e:
            raise classify_store_error(e, stage, SNOWFLAKE_ERROR_CONFIG) from e
        finally:
            cursor.close()

    async def _wait_for_completion(
        self, connection: Any, cursor: Any, query_id: str, stage: str
    ) -> None:
        """Poll query status until it finishes, aborting it past the timeout."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.timeout

        while True:
            status = await asyncio.to_thread(
                connection.get_query_status_throw_if_error, query_id
            )
            if not connection.is_still_running(status):
                return
            if loop.time() >= deadline:
                await asyncio.to_thread(cursor.abort_query, query_id)
                raise classify_store_error(
                    TimeoutError(f"Query exceeded {self.config.timeout}s timeout"),
                    stage,
                    SNOWFLAKE_ERROR_CONFIG,
                )
            await asyncio.sleep(self.config.poll_interval)

    def _collect(self, cursor: Any, stage: str, max_results: int | None) -> QueryResult:
        """Fetch up to the row limit; one row beyond it fails the query."""
        limit = max_results or self.config.max_results
        # Unquoted Snowflake aliases come back upper-cased
        columns = [desc[0].lower() for desc in cursor.description]
        raw_rows = cursor.fetchmany(limit)
        if len(raw_rows) == limit and cursor.fetchone() is not None:
            raise result_limit_error(SNOWFLAKE_ERROR_CONFIG.store_label, stage, limit)
        rows = [dict(zip(columns, row, strict=True)) for row in raw_rows]
        return QueryResult(rows=rows, total_rows=len(rows))

    def close(self) -> None:
        """Close the Snowflake connection."""
        if self._connection is not None:
            try:
                self._connection.close()
            except Exception as e:
                logger.warning(f"Error closing Snowflake connection: {e}")
            finally:
                self._connection = None
