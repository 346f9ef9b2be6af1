"""
基于规则的SQL合成器
没有 API Key 时使用，只识别几种固定的问法：分组统计、分布、计数和预览
"""
import re
from typing import List, Optional

from ...utils.logger import get_logger
from ..database_adapters import DatabaseAdapterFactory
from ..database_adapters.common import needs_quoting
from ..dto import ChartSuggestion, ChatMessage, ColumnSchema, SynthesisResult, TableSchema
from ..schema_utils import table_names
from .base import BaseSynthesizer

logger = get_logger(__name__)

GROUP_MARKERS = (" by ", " per ")
DISTRIBUTION_MARKERS = ("breakdown", "distribution")
COUNT_MARKERS = ("how many", "count")

# 可作为分类列的类型片段
CATEGORICAL_TYPES = ("char", "text", "string", "clob", "bool", "bit", "enum")

PREVIEW_LIMIT = 10
PREVIEW_COLUMNS = 5

NO_TABLE_SQL = "-- No matching table found"


def _normalize(text: str) -> str:
    """小写，下划线和标点都视为空格"""
    return re.sub(r"[^a-z0-9]+", " ", text.lower()).strip()


def is_categorical(column: ColumnSchema) -> bool:
    """文本或布尔类型，且不是 id / *_id / *name* 列"""
    name = column.name.lower()
    if name == "id" or name.endswith("_id") or "name" in name:
        return False
    column_type = column.type.lower()
    return any(fragment in column_type for fragment in CATEGORICAL_TYPES)


class RuleBasedSynthesizer(BaseSynthesizer):
    """关键字匹配的SQL合成器"""

    name = "rule_based"

    async def _generate(
        self,
        prompt: str,
        schema: List[TableSchema],
        history: List[ChatMessage],
        dialect: str,
    ) -> SynthesisResult:
        adapter = DatabaseAdapterFactory.get_adapter(dialect)
        text = f" {_normalize(prompt)} "

        table = self.match_table(text, schema)
        if table is None:
            return self._clarify(schema)

        grouping = self._find_marker(text, GROUP_MARKERS)
        if grouping is not None:
            tail = text[grouping:]
            column = self.match_column(tail, table) or self.first_categorical(table)
            if column is not None:
                return self._group_count(adapter, table, column, "bar")

        if self._has_word(text, DISTRIBUTION_MARKERS):
            column = self.first_categorical(table)
            if column is not None:
                return self._group_count(adapter, table, column, "pie")

        if self._has_word(text, COUNT_MARKERS):
            sql = f"SELECT COUNT(*) AS total_count FROM {self._quote(adapter, table.table_name)};"
            return SynthesisResult(text=f"Counting the rows in {table.table_name}.", sql=sql)

        return self._preview(adapter, table)

    @staticmethod
    def match_table(text: str, schema: List[TableSchema]) -> Optional[TableSchema]:
        """按表名长度从长到短匹配，下划线视为空格"""
        candidates = sorted(schema, key=lambda t: len(t.table_name), reverse=True)
        for table in candidates:
            if _normalize(table.table_name) in text:
                return table
        return None

    @staticmethod
    def match_column(text: str, table: TableSchema) -> Optional[ColumnSchema]:
        """在分组关键字之后的文本里按整词找列名"""
        candidates = sorted(table.columns, key=lambda c: len(c.name), reverse=True)
        for column in candidates:
            if f" {_normalize(column.name)} " in text:
                return column
        return None

    @staticmethod
    def first_categorical(table: TableSchema) -> Optional[ColumnSchema]:
        for column in table.columns:
            if is_categorical(column):
                return column
        return None

    @staticmethod
    def _has_word(text: str, markers) -> bool:
        """整词匹配，text 两端已补空格"""
        return any(f" {marker} " in text for marker in markers)

    @staticmethod
    def _find_marker(text: str, markers) -> Optional[int]:
        positions = [text.find(marker) for marker in markers if marker in text]
        if not positions:
            return None
        return min(positions)

    @staticmethod
    def _quote(adapter, name: str) -> str:
        if needs_quoting(name):
            return adapter.format_identifier(name)
        return name

    def _group_count(self, adapter, table: TableSchema, column: ColumnSchema, chart_type: str) -> SynthesisResult:
        table_sql = self._quote(adapter, table.table_name)
        column_sql = self._quote(adapter, column.name)
        alias = re.sub(r"\W+", "_", column.name.lower()) + "_count"

        # 计数相同时按首次出现的顺序，没有 id 列时按值排序
        id_column = next((c for c in table.columns if c.name.lower() == "id"), None)
        if id_column is not None:
            tie_break = f"MIN({self._quote(adapter, id_column.name)}) ASC"
        else:
            tie_break = f"{column_sql} ASC"

        sql = (
            f"SELECT {column_sql}, COUNT(*) AS {alias} FROM {table_sql} "
            f"GROUP BY {column_sql} ORDER BY {alias} DESC, {tie_break};"
        )
        if chart_type == "pie":
            text = f"Here is the distribution of {table.table_name} by {column.name}."
        else:
            text = f"Here is the number of {table.table_name} grouped by {column.name}."

        return SynthesisResult(
            text=text,
            sql=sql,
            chart_suggestion=ChartSuggestion(
                chart_type=chart_type,
                labels_column=column.name,
                data_column=alias,
            ),
        )

    def _preview(self, adapter, table: TableSchema) -> SynthesisResult:
        columns = [self._quote(adapter, c.name) for c in table.columns[:PREVIEW_COLUMNS]] or ["*"]
        sql = adapter.select_top(columns, self._quote(adapter, table.table_name), PREVIEW_LIMIT)
        return SynthesisResult(
            text=f"Here are the first {PREVIEW_LIMIT} rows from {table.table_name}.",
            sql=sql,
        )

    @staticmethod
    def _clarify(schema: List[TableSchema]) -> SynthesisResult:
        names = table_names(schema)
        if names:
            text = (
                "I couldn't find a table matching your question. "
                f"Available tables: {', '.join(names)}. Please mention one of them."
            )
        else:
            text = "The selected database has no tables to query."
        logger.info("规则合成未匹配到表")
        return SynthesisResult(text=text, sql=NO_TABLE_SQL)
