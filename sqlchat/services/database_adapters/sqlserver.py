"""
SQL Server数据库适配器
使用 pyodbc 驱动和 SQLAlchemy 连接池，ODBC 驱动名可通过 MSSQL_ODBC_DRIVER 配置
"""
import os
from typing import List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine
from sqlalchemy.pool import QueuePool

from ..dto import ConnectionDetails, QueryResult, TableSchema
from ..exceptions import AuthenticationError, ConfigError, NetworkError, SQLChatError
from . import common

SCHEMA_SQL = """
SELECT TABLE_NAME, COLUMN_NAME, DATA_TYPE
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_SCHEMA = SCHEMA_NAME()
ORDER BY TABLE_NAME, ORDINAL_POSITION
"""

LIST_DATABASES_SQL = "SELECT name FROM sys.databases ORDER BY name"

# ODBC SQLSTATE
_AUTH_STATES = ("28000",)
_NETWORK_STATES = ("08001", "08S01", "HYT00")


class SQLServerHandle:
    """SQL Server连接池句柄"""

    def __init__(self, engine: Engine):
        self.engine = engine

    def execute(self, sql: str, max_rows: Optional[int] = None) -> QueryResult:
        return common.run_query(self.engine, sql, max_rows)

    def get_schema(self) -> List[TableSchema]:
        return common.introspect(self.engine, SCHEMA_SQL)

    def ping(self) -> None:
        common.ping(self.engine)

    def close(self) -> None:
        self.engine.dispose()


class SQLServerAdapter:
    """SQL Server数据库适配器"""

    default_port = 1433

    def get_db_type(self) -> str:
        return "SQLServer"

    def validate(self, details: ConnectionDetails) -> None:
        if not details.host or not details.user:
            raise ConfigError("Incomplete connection details. Host and user are required.")

    def _build_url(self, details: ConnectionDetails, with_database: bool = True) -> URL:
        return URL.create(
            "mssql+pyodbc",
            username=details.user,
            password=details.password or None,
            host=details.host,
            port=details.port or self.default_port,
            database=details.database if with_database else None,
            query={
                "driver": os.getenv("MSSQL_ODBC_DRIVER", "ODBC Driver 18 for SQL Server"),
                "Encrypt": "no",
                "TrustServerCertificate": "yes",
            },
        )

    def _create_engine(self, url: URL, timeout: int, pooled: bool = True) -> Engine:
        options = {"connect_args": {"timeout": timeout}}
        if pooled:
            options.update(
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_timeout=timeout,
                pool_pre_ping=True,
            )
        return create_engine(url, **options)

    def open(self, details: ConnectionDetails, timeout: int) -> SQLServerHandle:
        self.validate(details)
        return SQLServerHandle(self._create_engine(self._build_url(details), timeout))

    def list_databases(self, details: ConnectionDetails, timeout: int) -> List[str]:
        self.validate(details)
        # 不指定数据库连接，才能列出服务器上的所有数据库
        engine = self._create_engine(self._build_url(details, with_database=False), timeout, pooled=False)
        try:
            return common.fetch_first_column(engine, LIST_DATABASES_SQL)
        finally:
            engine.dispose()

    def format_identifier(self, name: str) -> str:
        """SQL Server使用方括号格式化标识符"""
        return "[{}]".format(name.replace("]", "]]"))

    def select_top(self, columns: List[str], table: str, limit: int) -> str:
        return f"SELECT TOP {limit} {', '.join(columns)} FROM {table};"

    def classify_error(self, error: Exception) -> SQLChatError:
        message = common.error_text(error)
        state = str(common.driver_error_code(error) or "")
        if state in _AUTH_STATES or "login failed" in message.lower():
            return AuthenticationError("Invalid credentials", detail=message)
        if state in _NETWORK_STATES:
            return NetworkError("Database server is unreachable", detail=message)
        return NetworkError("Failed to connect to the database", detail=message)
