"""
SQLite数据库适配器
支持本地文件路径或上传的文件内容（base64），以只读方式打开
"""
import base64
import binascii
import os
import tempfile
from typing import List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from ..dto import ConnectionDetails, QueryResult, TableSchema
from ..exceptions import ConfigError, SQLChatError
from . import common

SCHEMA_SQL = """
SELECT m.name, p.name, p.type
FROM sqlite_master AS m
JOIN pragma_table_info(m.name) AS p
WHERE m.type = 'table' AND m.name NOT LIKE 'sqlite_%'
ORDER BY m.name, p.cid
"""


class SQLiteHandle:
    """SQLite文件句柄，关闭时删除上传内容生成的临时文件"""

    def __init__(
        self,
        engine: Engine,
        temp_path: Optional[str] = None,
        declared_schema: Optional[List[TableSchema]] = None,
    ):
        self.engine = engine
        self.temp_path = temp_path
        self.declared_schema = declared_schema

    def execute(self, sql: str, max_rows: Optional[int] = None) -> QueryResult:
        return common.run_query(self.engine, sql, max_rows)

    def get_schema(self) -> List[TableSchema]:
        if self.declared_schema:
            return list(self.declared_schema)
        return common.introspect(self.engine, SCHEMA_SQL)

    def ping(self) -> None:
        # SELECT 1 不读取文件，读 sqlite_master 才能发现无效文件
        common.fetch_first_column(self.engine, "SELECT count(*) FROM sqlite_master")

    def close(self) -> None:
        self.engine.dispose()
        if self.temp_path and os.path.exists(self.temp_path):
            os.remove(self.temp_path)
            self.temp_path = None


class SQLiteAdapter:
    """SQLite数据库适配器"""

    def get_db_type(self) -> str:
        return "SQLite"

    def validate(self, details: ConnectionDetails) -> None:
        if not details.file_content and not details.file_path:
            raise ConfigError("No SQLite file provided.")
        if not details.file_content and not os.path.isfile(details.file_path):
            raise ConfigError("SQLite file not found", detail=details.file_path)

    def _materialize(self, file_content: str) -> str:
        """把上传的 base64 内容写入私有临时文件"""
        try:
            data = base64.b64decode(file_content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigError("SQLite file content is not valid base64", detail=str(e))

        fd, path = tempfile.mkstemp(prefix="sqlchat_", suffix=".db")
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return path

    def open(self, details: ConnectionDetails, timeout: int) -> SQLiteHandle:
        self.validate(details)

        temp_path = None
        if details.file_content:
            temp_path = self._materialize(details.file_content)
            path = temp_path
        else:
            path = os.path.abspath(details.file_path)

        engine = create_engine(
            f"sqlite:///file:{path}?mode=ro&uri=true",
            poolclass=NullPool,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
        return SQLiteHandle(engine, temp_path=temp_path, declared_schema=details.table_schemas)

    def list_databases(self, details: ConnectionDetails, timeout: int) -> List[str]:
        handle = self.open(details, timeout)
        try:
            handle.ping()
        finally:
            handle.close()
        return [os.path.basename(details.file_path) if details.file_path else "database.db"]

    def format_identifier(self, name: str) -> str:
        """SQLite使用双引号格式化标识符"""
        return '"{}"'.format(name.replace('"', '""'))

    def select_top(self, columns: List[str], table: str, limit: int) -> str:
        return f"SELECT {', '.join(columns)} FROM {table} LIMIT {limit};"

    def classify_error(self, error: Exception) -> SQLChatError:
        if isinstance(error, SQLChatError):
            return error
        message = common.error_text(error)
        return ConfigError("Invalid SQLite database file", detail=message)
