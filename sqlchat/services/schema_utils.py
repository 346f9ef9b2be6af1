"""
Schema 辅助函数
"""
from typing import Any, Dict, Iterable, List, Sequence

from .dto import ColumnSchema, TableSchema


def group_columns(rows: Iterable[Sequence[Any]]) -> List[TableSchema]:
    """
    将 (表名, 列名, 类型) 行按表分组

    行已按表名和列序号排序，分组时保持原有顺序

    Args:
        rows: introspection 查询返回的行

    Returns:
        TableSchema 列表
    """
    tables: Dict[str, List[ColumnSchema]] = {}
    for table_name, column_name, column_type in rows:
        tables.setdefault(table_name, []).append(
            ColumnSchema(name=column_name, type=str(column_type))
        )
    return [
        TableSchema(table_name=name, columns=columns)
        for name, columns in tables.items()
    ]


def serialize_schema(tables: List[TableSchema]) -> str:
    """
    把 schema 渲染成提示词文本

    Example:
        Table "patients" has columns: id (INTEGER), gender (TEXT)
    """
    lines = []
    for table in tables:
        columns = ", ".join(f"{col.name} ({col.type})" for col in table.columns)
        lines.append(f'Table "{table.table_name}" has columns: {columns}')
    return "\n".join(lines)


def table_names(tables: List[TableSchema]) -> List[str]:
    """返回所有表名"""
    return [table.table_name for table in tables]


def schema_to_json(tables: List[TableSchema]) -> List[Dict[str, Any]]:
    """转换为可存储的 JSON 结构（camelCase）"""
    return [table.model_dump(by_alias=True) for table in tables]


def schema_from_json(data: List[Dict[str, Any]]) -> List[TableSchema]:
    """从存储的 JSON 结构恢复"""
    return [TableSchema.model_validate(item) for item in data or []]

