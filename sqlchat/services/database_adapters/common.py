"""
适配器共用的辅助函数（组合使用，不作为父类）
"""
import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from ..dto import QueryResult, TableSchema
from ..schema_utils import group_columns

_PLAIN_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def normalize_value(value: Any) -> Any:
    """把驱动返回的值转换为可JSON序列化的标量"""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, memoryview):
        value = bytes(value)
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return bytes(value).hex()
    return str(value)


def run_query(engine: Engine, sql: str, max_rows: Optional[int] = None) -> QueryResult:
    """
    在引擎上执行单条查询

    列顺序与数据库返回一致；不返回行的语句得到空的 headers 和 rows

    Args:
        engine: SQLAlchemy引擎
        sql: SQL语句
        max_rows: 最多读取的行数，None表示全部

    Returns:
        QueryResult
    """
    with engine.connect() as connection:
        result = connection.execute(text(sql))
        if not result.returns_rows:
            return QueryResult(headers=[], rows=[])

        headers = list(result.keys())
        rows = result.fetchmany(max_rows) if max_rows else result.fetchall()
        return QueryResult(
            headers=headers,
            rows=[[normalize_value(value) for value in row] for row in rows],
        )


def fetch_first_column(engine: Engine, sql: str) -> List[Any]:
    """执行查询并返回第一列的值"""
    with engine.connect() as connection:
        return [row[0] for row in connection.execute(text(sql))]


def introspect(engine: Engine, sql: str) -> List[TableSchema]:
    """执行 (表名, 列名, 类型) 查询并按表分组"""
    with engine.connect() as connection:
        rows = connection.execute(text(sql)).fetchall()
    return group_columns(rows)


def ping(engine: Engine) -> None:
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def needs_quoting(name: str) -> bool:
    """小写字母、数字、下划线组成的标识符不需要加引号"""
    return not _PLAIN_IDENTIFIER.match(name)


def error_text(error: Exception) -> str:
    """取出驱动原始异常的文本（SQLAlchemy 会包装在 orig 中）"""
    original = getattr(error, "orig", None) or error
    return str(original)


def driver_error_code(error: Exception) -> Any:
    """驱动异常的第一个参数通常是错误码（PyMySQL、pyodbc）"""
    original = getattr(error, "orig", None) or error
    args = getattr(original, "args", ())
    return args[0] if args else None
