"""
MySQL数据库适配器
使用 PyMySQL 驱动，每个连接只保留一个底层连接
"""
from typing import List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine
from sqlalchemy.pool import QueuePool

from ..dto import ConnectionDetails, QueryResult, TableSchema
from ..exceptions import AuthenticationError, ConfigError, NetworkError, SQLChatError
from . import common

SCHEMA_SQL = """
SELECT table_name, column_name, column_type
FROM information_schema.columns
WHERE table_schema = DATABASE()
ORDER BY table_name, ordinal_position
"""

LIST_DATABASES_SQL = "SHOW DATABASES"

# PyMySQL错误码
_AUTH_CODES = {1044, 1045, 1698}
_UNKNOWN_DATABASE = 1049
_NETWORK_CODES = {2002, 2003, 2005, 2006, 2013}


class MySQLHandle:
    """MySQL单连接句柄"""

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


class MySQLAdapter:
    """MySQL数据库适配器"""

    default_port = 3306

    def get_db_type(self) -> str:
        return "MySQL"

    def validate(self, details: ConnectionDetails) -> None:
        if not details.host or not details.user:
            raise ConfigError("Incomplete connection details. Host and user are required.")

    def _build_url(self, details: ConnectionDetails, with_database: bool = True) -> URL:
        return URL.create(
            "mysql+pymysql",
            username=details.user,
            password=details.password or None,
            host=details.host,
            port=details.port or self.default_port,
            database=details.database if with_database else None,
            query={"charset": "utf8mb4"},
        )

    def _create_engine(self, url: URL, timeout: int) -> Engine:
        return create_engine(
            url,
            poolclass=QueuePool,
            pool_size=1,
            max_overflow=0,
            pool_timeout=timeout,
            pool_recycle=3600,
            pool_pre_ping=True,
            connect_args={"connect_timeout": timeout, "read_timeout": timeout},
        )

    def open(self, details: ConnectionDetails, timeout: int) -> MySQLHandle:
        self.validate(details)
        return MySQLHandle(self._create_engine(self._build_url(details), timeout))

    def list_databases(self, details: ConnectionDetails, timeout: int) -> List[str]:
        self.validate(details)
        engine = self._create_engine(self._build_url(details, with_database=False), timeout)
        try:
            return common.fetch_first_column(engine, LIST_DATABASES_SQL)
        finally:
            engine.dispose()

    def format_identifier(self, name: str) -> str:
        """MySQL使用反引号格式化标识符"""
        return "`{}`".format(name.replace("`", "``"))

    def select_top(self, columns: List[str], table: str, limit: int) -> str:
        return f"SELECT {', '.join(columns)} FROM {table} LIMIT {limit};"

    def classify_error(self, error: Exception) -> SQLChatError:
        message = common.error_text(error)
        code = common.driver_error_code(error)
        if code in _AUTH_CODES:
            return AuthenticationError("Invalid credentials", detail=message)
        if code == _UNKNOWN_DATABASE:
            return ConfigError("Database does not exist", detail=message)
        if code in _NETWORK_CODES:
            return NetworkError("Database server is unreachable", detail=message)
        return NetworkError("Failed to connect to the database", detail=message)
