"""
SQL 安全检查
只允许 SELECT 查询，合成阶段和执行阶段都会调用
"""
import re

from .exceptions import UnsafeQueryRejected

# 执行前拒绝的写操作关键字
EXECUTION_FORBIDDEN = ("insert", "update", "delete")

# 合成结果中不能出现的关键字
SYNTHESIS_FORBIDDEN = (
    "insert", "update", "delete", "drop", "alter", "create", "truncate",
    "merge", "grant", "revoke", "exec", "execute",
)

_WORD_PATTERN = re.compile(r"[a-z_]+")


def _tokens(sql: str) -> set:
    return set(_WORD_PATTERN.findall(sql.lower()))


def find_forbidden_keyword(sql: str, keywords=SYNTHESIS_FORBIDDEN):
    """返回 SQL 中出现的第一个禁用关键字（整词匹配），没有则返回 None"""
    tokens = _tokens(sql)
    for keyword in keywords:
        if keyword in tokens:
            return keyword
    return None


def ensure_select_only(sql: str, keywords=SYNTHESIS_FORBIDDEN) -> str:
    """
    校验 SQL 只包含 SELECT

    Args:
        sql: SQL 文本
        keywords: 禁止出现的关键字

    Returns:
        去除首尾空白后的 SQL

    Raises:
        UnsafeQueryRejected: 不是以 select 开头或包含禁用关键字
    """
    statement = sql.strip()
    if not statement.lower().startswith("select"):
        raise UnsafeQueryRejected(
            "Only SELECT queries are allowed",
            detail=statement[:100],
        )

    keyword = find_forbidden_keyword(statement, keywords)
    if keyword:
        raise UnsafeQueryRejected(
            f"Query contains forbidden keyword '{keyword.upper()}'",
            detail=statement[:100],
        )
    return statement


def ensure_executable(sql: str) -> str:
    """执行前的检查：select 开头，且不包含 insert/update/delete"""
    return ensure_select_only(sql, EXECUTION_FORBIDDEN)
