"""
数据库连接器测试
"""
import asyncio
import time

import pytest

from sqlchat.services.database_connector import DatabaseConnector
from sqlchat.services.dto import ConnectionDetails
from sqlchat.services.exceptions import (
    ConfigError,
    ConnectionTestFailed,
    NotConnected,
    QueryExecutionError,
    QueryTimeout,
    UnsafeQueryRejected,
)


@pytest.fixture
def connector():
    return DatabaseConnector(query_timeout=5, max_rows=100)


class TestDatabaseConnector:
    """测试连接生命周期和查询执行"""

    @pytest.mark.asyncio
    async def test_execute_before_connect(self, connector, patients_details):
        with pytest.raises(NotConnected):
            await connector.execute_query("SELECT 1", patients_details)

    @pytest.mark.asyncio
    async def test_not_connected_checked_before_guard(self, connector, patients_details):
        with pytest.raises(NotConnected):
            await connector.execute_query("DELETE FROM patients", patients_details)

    @pytest.mark.asyncio
    async def test_connect_execute_disconnect(self, connector, patients_details):
        await connector.connect(patients_details)
        assert connector.is_connected(patients_details.id)

        result = await connector.execute_query("SELECT COUNT(*) AS total_count FROM patients;", patients_details)
        assert result.headers == ["total_count"]
        assert result.rows == [[4]]

        await connector.disconnect(patients_details.id)
        assert not connector.is_connected(patients_details.id)
        with pytest.raises(NotConnected):
            await connector.execute_query("SELECT 1", patients_details)

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, connector, patients_details):
        await connector.disconnect(patients_details.id)
        await connector.connect(patients_details)
        await connector.disconnect(patients_details.id)
        await connector.disconnect(patients_details.id)
        assert connector.handles == {}

    @pytest.mark.asyncio
    async def test_reconnect_replaces_handle(self, connector, patients_details):
        await connector.connect(patients_details)
        first = connector.handles[patients_details.id]
        await connector.connect(patients_details)
        assert connector.handles[patients_details.id] is not first
        assert len(connector.handles) == 1
        await connector.close_all_connections()

    @pytest.mark.asyncio
    async def test_write_statements_rejected(self, connector, patients_details):
        async with connector.session(patients_details):
            with pytest.raises(UnsafeQueryRejected):
                await connector.execute_query("UPDATE patients SET gender = 'x'", patients_details)

    @pytest.mark.asyncio
    async def test_database_error(self, connector, patients_details):
        async with connector.session(patients_details):
            with pytest.raises(QueryExecutionError, match="no such table"):
                await connector.execute_query("SELECT * FROM missing_table", patients_details)

    @pytest.mark.asyncio
    async def test_group_by_order(self, connector, patients_details):
        sql = (
            "SELECT gender, COUNT(*) AS gender_count FROM patients "
            "GROUP BY gender ORDER BY gender_count DESC, MIN(id) ASC;"
        )
        async with connector.session(patients_details):
            result = await connector.execute_query(sql, patients_details)
        assert result.headers == ["gender", "gender_count"]
        assert result.rows == [["Male", 2], ["Female", 2]]

    @pytest.mark.asyncio
    async def test_max_rows(self, patients_details):
        connector = DatabaseConnector(query_timeout=5, max_rows=2)
        async with connector.session(patients_details):
            result = await connector.execute_query("SELECT id FROM patients ORDER BY id", patients_details)
        assert result.rows == [[1], [2]]

    @pytest.mark.asyncio
    async def test_session_closes_on_error(self, connector, patients_details):
        with pytest.raises(RuntimeError):
            async with connector.session(patients_details):
                raise RuntimeError("boom")
        assert not connector.is_connected(patients_details.id)

    @pytest.mark.asyncio
    async def test_sessions_for_same_connection_are_serialized(self, connector, patients_details):
        active = []
        overlaps = []

        async def use():
            async with connector.session(patients_details):
                active.append(1)
                overlaps.append(len(active))
                await asyncio.sleep(0.01)
                active.pop()

        await asyncio.gather(use(), use(), use())
        assert max(overlaps) == 1
        assert connector.handles == {}
        assert connector._session_locks == {}

    @pytest.mark.asyncio
    async def test_query_timeout(self, patients_details):
        connector = DatabaseConnector(query_timeout=0.05)
        with pytest.raises(QueryTimeout):
            await connector._run(lambda: time.sleep(0.5), "Query")

    @pytest.mark.asyncio
    async def test_get_schema_without_connecting(self, connector, patients_details):
        tables = await connector.get_schema(patients_details)
        assert [t.table_name for t in tables] == ["appointments", "patients"]
        assert connector.handles == {}

    @pytest.mark.asyncio
    async def test_schema_reads_without_id_leave_no_locks(self, connector, patients_db):
        details = ConnectionDetails(type="SQLite", file_path=patients_db)
        for _ in range(3):
            await connector.get_schema(details)
        assert connector._session_locks == {}
        assert connector._session_users == {}

    @pytest.mark.asyncio
    async def test_connect_requires_id(self, connector, patients_db):
        with pytest.raises(ConfigError):
            await connector.connect(ConnectionDetails(type="SQLite", file_path=patients_db))

    @pytest.mark.asyncio
    async def test_connect_invalid_file(self, connector, tmp_path):
        bogus = tmp_path / "bogus.db"
        bogus.write_bytes(b"this is not a sqlite database file at all" * 10)
        details = ConnectionDetails(id="bogus", type="SQLite", file_path=str(bogus))
        with pytest.raises(ConfigError):
            await connector.connect(details)
        assert not connector.is_connected("bogus")

    @pytest.mark.asyncio
    async def test_test_connection(self, connector, patients_details):
        assert await connector.test_connection(patients_details) == ["clinic.db"]

    @pytest.mark.asyncio
    async def test_test_connection_failure(self, connector):
        with pytest.raises(ConnectionTestFailed) as exc_info:
            await connector.test_connection(ConnectionDetails(type="SQLite"))
        assert "No SQLite file provided" in str(exc_info.value)
