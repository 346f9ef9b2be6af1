"""
数据库连接器
管理每个连接的句柄，执行查询并把结果统一为 headers + rows

每个连接ID同一时间最多绑定一个句柄；聊天流程通过 session() 在一次查询前后打开和关闭句柄
"""
import asyncio
import os
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List, Optional, TypeVar

from sqlalchemy.exc import DBAPIError

from ..utils.logger import get_logger, log_database_connection_error, log_sql_error
from .database_adapters import ConnectionHandle, DatabaseAdapterFactory
from .database_adapters.common import error_text
from .dto import ConnectionDetails, QueryResult, TableSchema
from .exceptions import (
    ConfigError,
    ConnectionTestFailed,
    NotConnected,
    QueryExecutionError,
    QueryTimeout,
    SQLChatError,
)
from .sql_guard import ensure_executable

logger = get_logger(__name__)

T = TypeVar("T")


class DatabaseConnector:
    """数据库连接器类"""

    def __init__(self, query_timeout: Optional[float] = None, max_rows: Optional[int] = None):
        """
        初始化数据库连接器

        Args:
            query_timeout: 连接和查询的超时时间（秒），默认读取QUERY_TIMEOUT
            max_rows: 单次查询最多返回的行数，默认读取MAX_RESULT_ROWS
        """
        self.query_timeout = query_timeout or float(os.getenv("QUERY_TIMEOUT", "30"))
        self.max_rows = max_rows or int(os.getenv("MAX_RESULT_ROWS", "1000"))
        self.handles: Dict[str, ConnectionHandle] = {}
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._session_users: Dict[str, int] = {}

    async def _run(self, func: Callable[[], T], operation: str) -> T:
        """在线程池中执行阻塞的驱动调用，超时抛出 QueryTimeout"""
        try:
            return await asyncio.wait_for(asyncio.to_thread(func), timeout=self.query_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{operation}超时: timeout={self.query_timeout}s")
            raise QueryTimeout(operation, self.query_timeout)

    @staticmethod
    def _require_id(details: ConnectionDetails) -> str:
        if not details.id:
            raise ConfigError("Connection id is required")
        return details.id

    def is_connected(self, connection_id: str) -> bool:
        """是否已有打开的句柄"""
        return connection_id in self.handles

    async def connect(self, details: ConnectionDetails) -> None:
        """
        为连接打开一个句柄

        已存在的句柄会先关闭再替换

        Args:
            details: 连接信息（已解密）

        Raises:
            ConfigError: 连接信息不完整或驱动不可用
            AuthenticationError: 认证失败
            NetworkError: 主机不可达
            QueryTimeout: 连接超时
        """
        connection_id = self._require_id(details)
        adapter = DatabaseAdapterFactory.get_adapter(details.type)

        await self.disconnect(connection_id)

        try:
            handle = adapter.open(details, int(self.query_timeout))
        except SQLChatError:
            raise
        except Exception as e:
            log_database_connection_error(logger, details.model_dump(), e)
            raise ConfigError("Unable to initialise database driver", detail=str(e)) from e

        try:
            await self._run(handle.ping, "Connect")
        except SQLChatError:
            handle.close()
            raise
        except Exception as e:
            handle.close()
            log_database_connection_error(logger, details.model_dump(), e)
            raise adapter.classify_error(e) from e

        self.handles[connection_id] = handle
        logger.info(f"数据库连接成功: {details.name or connection_id} ({adapter.get_db_type()})")

    async def disconnect(self, connection_id: str) -> None:
        """
        关闭连接的句柄，未连接时什么都不做

        Args:
            connection_id: 连接ID
        """
        handle = self.handles.pop(connection_id, None)
        if handle is None:
            return

        try:
            handle.close()
        except Exception as e:
            logger.warning(f"关闭数据库句柄失败: connection_id={connection_id}, error={e}")
        logger.info(f"关闭数据库连接: {connection_id}")

    async def close_all_connections(self):
        """关闭所有数据库连接"""
        for connection_id in list(self.handles.keys()):
            await self.disconnect(connection_id)
        logger.info("关闭所有数据库连接")

    async def execute_query(self, sql: str, details: ConnectionDetails) -> QueryResult:
        """
        执行SQL查询并返回结果

        Args:
            sql: SQL语句（只允许 SELECT）
            details: 连接信息，必须已经 connect

        Returns:
            QueryResult，列顺序与数据库返回一致

        Raises:
            NotConnected: 没有先调用 connect
            UnsafeQueryRejected: 非 SELECT 语句
            QueryExecutionError: 数据库返回错误
            QueryTimeout: 查询超时
        """
        connection_id = self._require_id(details)
        handle = self.handles.get(connection_id)
        if handle is None:
            raise NotConnected(connection_id)

        statement = ensure_executable(sql)

        logger.debug(
            f"准备执行SQL查询:\n"
            f"  数据库: {details.name} ({details.type})\n"
            f"  连接ID: {connection_id}\n"
            f"  SQL: {statement[:200]}{'...' if len(statement) > 200 else ''}"
        )

        try:
            result = await self._run(lambda: handle.execute(statement, self.max_rows), "Query")
        except SQLChatError:
            raise
        except DBAPIError as e:
            log_sql_error(logger, statement, connection_id, e, details.type)
            if e.connection_invalidated:
                adapter = DatabaseAdapterFactory.get_adapter(details.type)
                raise adapter.classify_error(e) from e
            raise QueryExecutionError("Query failed", detail=error_text(e)) from e
        except Exception as e:
            log_sql_error(logger, statement, connection_id, e, details.type)
            raise QueryExecutionError("Query failed", detail=error_text(e)) from e

        logger.info(
            f"SQL查询成功: connection_id={connection_id}, "
            f"rows={len(result.rows)}, columns={len(result.headers)}"
        )
        return result

    @asynccontextmanager
    async def session(self, details: ConnectionDetails) -> AsyncIterator["DatabaseConnector"]:
        """
        connect → 使用 → disconnect

        同一连接的 session 串行执行；无论成功、失败还是取消都会关闭句柄

        Example:
            async with connector.session(details):
                result = await connector.execute_query(sql, details)
        """
        connection_id = self._require_id(details)
        lock = self._session_locks.setdefault(connection_id, asyncio.Lock())
        self._session_users[connection_id] = self._session_users.get(connection_id, 0) + 1
        try:
            async with lock:
                await self.connect(details)
                try:
                    yield self
                finally:
                    await self.disconnect(connection_id)
        finally:
            # 没有其他等待者时移除锁
            self._session_users[connection_id] -= 1
            if not self._session_users[connection_id]:
                del self._session_users[connection_id]
                self._session_locks.pop(connection_id, None)

    async def get_schema(self, details: ConnectionDetails) -> List[TableSchema]:
        """
        获取数据库schema信息（表名、列名、类型）

        已连接时复用句柄，否则临时打开一个

        Args:
            details: 连接信息

        Returns:
            按表名和列序号排序的 TableSchema 列表
        """
        if not details.id:
            details = details.model_copy(update={"id": f"schema-{uuid.uuid4()}"})

        handle = self.handles.get(details.id)
        if handle is not None:
            return await self._fetch_schema(handle, details)

        async with self.session(details):
            return await self._fetch_schema(self.handles[details.id], details)

    async def _fetch_schema(self, handle: ConnectionHandle, details: ConnectionDetails) -> List[TableSchema]:
        try:
            tables = await self._run(handle.get_schema, "Schema")
        except SQLChatError:
            raise
        except Exception as e:
            log_database_connection_error(logger, details.model_dump(), e)
            raise QueryExecutionError("Failed to read database schema", detail=error_text(e)) from e

        logger.info(f"获取Schema信息成功: connection_id={details.id}, tables={len(tables)}")
        return tables

    async def test_connection(self, details: ConnectionDetails) -> List[str]:
        """
        测试数据库连接

        Args:
            details: 连接信息（可以没有ID）

        Returns:
            服务器上可见的数据库名；SQLite 返回文件名

        Raises:
            ConnectionTestFailed: 连接失败，detail 为具体原因
        """
        try:
            adapter = DatabaseAdapterFactory.get_adapter(details.type)
            databases = await self._run(
                lambda: adapter.list_databases(details, int(self.query_timeout)),
                "Connection test",
            )
        except SQLChatError as e:
            logger.error(f"数据库连接测试失败: {details.name} ({details.type}): {e}")
            raise ConnectionTestFailed("Failed to connect to the database.", detail=str(e)) from e
        except Exception as e:
            log_database_connection_error(logger, details.model_dump(), e)
            classified = adapter.classify_error(e)
            raise ConnectionTestFailed("Failed to connect to the database.", detail=str(classified)) from e

        logger.info(f"数据库连接测试成功: {details.name}, databases={databases}")
        return databases


# 全局数据库连接器实例
_db_connector = None


def get_database_connector() -> DatabaseConnector:
    """获取全局数据库连接器实例"""
    global _db_connector
    if _db_connector is None:
        _db_connector = DatabaseConnector()
    return _db_connector
