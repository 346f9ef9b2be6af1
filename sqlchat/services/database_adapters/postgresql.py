"""
PostgreSQL数据库适配器
使用 psycopg2 驱动和 SQLAlchemy 连接池
"""
from typing import List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine
from sqlalchemy.pool import QueuePool

from ..dto import ConnectionDetails, QueryResult, TableSchema
from ..exceptions import AuthenticationError, ConfigError, NetworkError, SQLChatError
from . import common

SCHEMA_SQL = """
SELECT table_name, column_name, data_type
FROM information_schema.columns
WHERE table_schema = current_schema()
ORDER BY table_name, ordinal_position
"""

LIST_DATABASES_SQL = "SELECT datname FROM pg_database WHERE datistemplate = false ORDER BY datname"

_AUTH_MARKERS = ("password authentication failed", "no password supplied", "authentication failed")
_NETWORK_MARKERS = ("could not connect", "could not translate host name", "connection refused", "timeout expired", "server closed the connection")


class PostgreSQLHandle:
    """PostgreSQL连接池句柄"""

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


class PostgreSQLAdapter:
    """PostgreSQL数据库适配器"""

    default_port = 5432

    def get_db_type(self) -> str:
        return "PostgreSQL"

    def validate(self, details: ConnectionDetails) -> None:
        if not details.host or not details.user:
            raise ConfigError("Incomplete connection details. Host and user are required.")

    def _build_url(self, details: ConnectionDetails) -> URL:
        return URL.create(
            "postgresql+psycopg2",
            username=details.user,
            password=details.password or None,
            host=details.host,
            port=details.port or self.default_port,
            database=details.database or "postgres",
        )

    def _create_engine(self, url: URL, timeout: int, pooled: bool = True) -> Engine:
        options = {"connect_args": {"connect_timeout": timeout}}
        if pooled:
            options.update(
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_timeout=timeout,
                pool_pre_ping=True,
            )
        return create_engine(url, **options)

    def open(self, details: ConnectionDetails, timeout: int) -> PostgreSQLHandle:
        self.validate(details)
        return PostgreSQLHandle(self._create_engine(self._build_url(details), timeout))

    def list_databases(self, details: ConnectionDetails, timeout: int) -> List[str]:
        self.validate(details)
        engine = self._create_engine(self._build_url(details), timeout, pooled=False)
        try:
            return common.fetch_first_column(engine, LIST_DATABASES_SQL)
        finally:
            engine.dispose()

    def format_identifier(self, name: str) -> str:
        """PostgreSQL使用双引号格式化标识符"""
        return '"{}"'.format(name.replace('"', '""'))

    def select_top(self, columns: List[str], table: str, limit: int) -> str:
        return f"SELECT {', '.join(columns)} FROM {table} LIMIT {limit};"

    def classify_error(self, error: Exception) -> SQLChatError:
        message = common.error_text(error)
        lowered = message.lower()
        if any(marker in lowered for marker in _AUTH_MARKERS) or ('role "' in lowered and "does not exist" in lowered):
            return AuthenticationError("Invalid credentials", detail=message)
        if 'database "' in lowered and "does not exist" in lowered:
            return ConfigError("Database does not exist", detail=message)
        if any(marker in lowered for marker in _NETWORK_MARKERS):
            return NetworkError("Database server is unreachable", detail=message)
        return NetworkError("Failed to connect to the database", detail=message)
