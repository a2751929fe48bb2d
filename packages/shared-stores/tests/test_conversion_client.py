"""Tests for ConversionStoreClient."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import MagicMock, patch

import pytest

from drillnav.stores.conversions import ConversionStoreClient, SnowflakeConfig
from drillnav.stores.exceptions import StoreConfigurationError, StoreQueryError


class SnowflakeProgrammingError(Exception):
    """Stand-in for snowflake.connector.errors.ProgrammingError."""

    def __init__(self, msg: str, errno: int):
        super().__init__(msg)
        self.errno = errno


@pytest.fixture
def snowflake_config() -> SnowflakeConfig:
    """Create a Snowflake store configuration."""
    return SnowflakeConfig(
        account="test.snowflakecomputing.com",
        user="test_user",
        password="test_pass",
        warehouse="TEST_WH",
        database="CRM",
        schema_name="PUBLIC",
        poll_interval=0,
    )


@pytest.fixture
def mock_cursor() -> MagicMock:
    cursor = MagicMock()
    cursor.description = [("SOURCE",), ("TRIALS",), ("APPROVED",)]
    cursor.fetchmany.return_value = [("google", 10, 7), ("facebook", 3, 1)]
    cursor.sfqid = "01b2-query"
    return cursor


@pytest.fixture
def mock_connection(mock_cursor) -> MagicMock:
    connection = MagicMock()
    connection.cursor.return_value = mock_cursor
    connection.is_still_running.return_value = False
    return connection


@pytest.fixture
def client(snowflake_config, mock_connection) -> ConversionStoreClient:
    client = ConversionStoreClient(snowflake_config)
    client._connection = mock_connection
    return client


class TestSnowflakeConfig:
    """Tests for SnowflakeConfig."""

    def test_from_env(self, monkeypatch) -> None:
        """Test from_env reads DRILLNAV_SNOWFLAKE_* variables."""
        monkeypatch.setenv("DRILLNAV_SNOWFLAKE_ACCOUNT", "acct")
        monkeypatch.setenv("DRILLNAV_SNOWFLAKE_USER", "reader")
        monkeypatch.setenv("DRILLNAV_SNOWFLAKE_DATABASE", "CRM")
        monkeypatch.delenv("DRILLNAV_SNOWFLAKE_SCHEMA", raising=False)

        config = SnowflakeConfig.from_env()
        assert config.account == "acct"
        assert config.user == "reader"
        assert config.database == "CRM"
        assert config.schema_name == "PUBLIC"

    def test_password_hidden_from_repr(self) -> None:
        """Test the password never appears in the config repr."""
        config = SnowflakeConfig(account="a", password="hunter2")
        assert "hunter2" not in repr(config)


class TestConversionStoreConnection:
    """Tests for connection handling."""

    def test_missing_account_raises(self) -> None:
        """Test a missing account fails before importing the connector."""
        client = ConversionStoreClient(SnowflakeConfig())
        with pytest.raises(StoreConfigurationError, match="account"):
            _ = client.connection

    def test_connect_uses_config(self, snowflake_config) -> None:
        """Test the connector receives the configured credentials."""
        mock_snowflake = MagicMock()
        mock_connector = MagicMock()
        mock_snowflake.connector = mock_connector
        with patch.dict("sys.modules", {"snowflake": mock_snowflake, "snowflake.connector": mock_connector}):
            client = ConversionStoreClient(snowflake_config)
            _ = client.connection
            _ = client.connection

        mock_connector.connect.assert_called_once_with(
            account="test.snowflakecomputing.com",
            user="test_user",
            password="test_pass",
            warehouse="TEST_WH",
            database="CRM",
            schema="PUBLIC",
            role=None,
        )

    def test_connection_is_reused(self, snowflake_config, mock_snowflake_connection) -> None:
        """Test queries share the lazily opened connection."""
        mock_snowflake_connection.cursor.return_value.description = [("N",)]
        mock_snowflake_connection.cursor.return_value.fetchmany.return_value = [(1,)]
        client = ConversionStoreClient(snowflake_config)

        client.query("SELECT 1 AS n")
        client.query("SELECT 2 AS n")

        assert client.connection is mock_snowflake_connection
        assert mock_snowflake_connection.cursor.call_count == 2

    def test_context_manager_closes_connection(self, client, mock_connection) -> None:
        """Test leaving the context closes the connection."""
        with client:
            pass
        mock_connection.close.assert_called_once()
        assert client._connection is None

    def test_table_reference(self, client) -> None:
        """Test table_reference is database.schema.table."""
        assert client.table_reference("crm_subscription_enriched") == "CRM.PUBLIC.crm_subscription_enriched"


class TestConversionStoreQuery:
    """Tests for synchronous queries."""

    def test_query_lowercases_columns(self, client, mock_cursor) -> None:
        """Test rows are keyed by lower-cased column names."""
        result = client.query("SELECT source FROM t WHERE x = %s", ["a"])

        assert result.rows == [
            {"source": "google", "trials": 10, "approved": 7},
            {"source": "facebook", "trials": 3, "approved": 1},
        ]
        assert result.total_rows == 2
        mock_cursor.execute.assert_called_once_with(
            "SELECT source FROM t WHERE x = %s", ["a"], timeout=300
        )
        mock_cursor.close.assert_called_once()

    def test_query_over_limit_raises(self, snowflake_config, mock_connection, mock_cursor) -> None:
        """Test a row beyond max_results fails the query instead of truncating."""
        snowflake_config.max_results = 2
        mock_cursor.fetchone.return_value = ("tiktok", 1, 0)
        client = ConversionStoreClient(snowflake_config)
        client._connection = mock_connection

        with pytest.raises(StoreQueryError, match="exceeded 2 rows") as exc_info:
            client.query("SELECT source FROM t", stage="conversion_aggregate")

        assert exc_info.value.stage == "conversion_aggregate"
        mock_cursor.fetchmany.assert_called_once_with(2)
        mock_cursor.close.assert_called_once()

    def test_query_at_limit_succeeds(self, client, mock_cursor) -> None:
        """Test a result exactly at max_results is returned whole."""
        mock_cursor.fetchone.return_value = None

        result = client.query("SELECT source FROM t", max_results=2)

        assert result.total_rows == 2
        mock_cursor.fetchone.assert_called_once_with()

    def test_query_error_is_classified(self, client, mock_cursor) -> None:
        """Test Snowflake error codes map to client-safe messages."""
        mock_cursor.execute.side_effect = SnowflakeProgrammingError(
            "SQL compilation error: Object 'CRM.PUBLIC.SECRET' does not exist", errno=2003
        )

        with pytest.raises(StoreQueryError) as exc_info:
            client.query("SELECT 1 FROM t", stage="conversion_direct")

        assert "table not found" in str(exc_info.value)
        assert "SECRET" not in str(exc_info.value)
        assert exc_info.value.stage == "conversion_direct"
        mock_cursor.close.assert_called_once()


class TestConversionStoreAsync:
    """Tests for async queries."""

    @pytest.mark.asyncio
    async def test_query_async_polls_then_fetches(self, client, mock_cursor, mock_connection) -> None:
        """Test execute_async, status polling and result retrieval."""
        mock_connection.is_still_running.side_effect = [True, False]

        result = await client.query_async("SELECT 1 FROM t WHERE a = %s", ["x"], stage="conversion_tracking_combos")

        mock_cursor.execute_async.assert_called_once_with("SELECT 1 FROM t WHERE a = %s", ["x"])
        assert mock_connection.get_query_status_throw_if_error.call_count == 2
        mock_cursor.get_results_from_sfqid.assert_called_once_with("01b2-query")
        assert result.rows[0] == {"source": "google", "trials": 10, "approved": 7}

    @pytest.mark.asyncio
    async def test_query_async_timeout_aborts(self, snowflake_config, mock_connection, mock_cursor) -> None:
        """Test a query past its timeout is aborted and reported as a timeout."""
        snowflake_config.timeout = 0
        mock_connection.is_still_running.return_value = True
        client = ConversionStoreClient(snowflake_config)
        client._connection = mock_connection

        with pytest.raises(StoreQueryError, match="timeout"):
            await client.query_async("SELECT 1 FROM t")

        mock_cursor.abort_query.assert_called_once_with("01b2-query")
        mock_connection.cursor.assert_called_once_with()
        mock_cursor.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_query_async_failed_status_is_classified(self, client, mock_connection) -> None:
        """Test a failed query status surfaces as StoreQueryError."""
        mock_connection.get_query_status_throw_if_error.side_effect = SnowflakeProgrammingError(
            "Statement reached its statement or warehouse timeout", errno=630
        )

        with pytest.raises(StoreQueryError, match="timeout"):
            await client.query_async("SELECT 1 FROM t")

    @pytest.mark.asyncio
    async def test_cancellation_aborts_query(self, client, mock_cursor, mock_connection) -> None:
        """Test cancelling the awaiting task aborts the running query."""
        mock_connection.is_still_running.return_value = True
        client.config.poll_interval = 0.01

        task = asyncio.create_task(client.query_async("SELECT 1 FROM t"))
        while not mock_connection.get_query_status_throw_if_error.called:
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        mock_cursor.abort_query.assert_called_once_with("01b2-query")
        mock_cursor.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_query_async_over_limit_raises(self, client, mock_cursor) -> None:
        """Test the async path rejects a result larger than max_results."""
        mock_cursor.fetchone.return_value = ("tiktok", 1, 0)

        with pytest.raises(StoreQueryError, match="exceeded 2 rows"):
            await client.query_async("SELECT 1 FROM t", max_results=2)

        mock_cursor.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_runs_off_the_event_loop(self, snowflake_config, mock_connection) -> None:
        """Test a slow connect does not stall other coroutines on the loop."""
        release = threading.Event()

        def slow_connect(**kwargs):
            if not release.wait(5):
                raise AssertionError("event loop was blocked during connect")
            return mock_connection

        async def unblock():
            await asyncio.sleep(0.01)
            release.set()

        mock_snowflake = MagicMock()
        mock_connector = MagicMock()
        mock_connector.connect.side_effect = slow_connect
        mock_snowflake.connector = mock_connector
        with patch.dict("sys.modules", {"snowflake": mock_snowflake, "snowflake.connector": mock_connector}):
            client = ConversionStoreClient(snowflake_config)
            result, _ = await asyncio.gather(client.query_async("SELECT 1 FROM t"), unblock())

        assert len(result.rows) == 2
        assert client._connection is mock_connection
