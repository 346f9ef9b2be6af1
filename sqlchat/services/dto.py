"""
数据传输对象 (Data Transfer Objects)
对外使用 camelCase 字段名（tableName、chartSuggestion 等），内部使用 snake_case
"""
from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """支持按字段名或别名填充的基类"""
    model_config = ConfigDict(populate_by_name=True)


class ColumnSchema(CamelModel):
    """列信息"""
    name: str
    type: str


class TableSchema(CamelModel):
    """表结构快照"""
    table_name: str = Field(..., alias="tableName")
    columns: List[ColumnSchema] = Field(default_factory=list)


class ChartSuggestion(CamelModel):
    """图表建议"""
    chart_type: Literal["bar", "pie"] = Field(..., alias="chartType")
    labels_column: str = Field(..., alias="labelsColumn")
    data_column: str = Field(..., alias="dataColumn")


class QueryResult(CamelModel):
    """统一的表格结果"""
    headers: List[str] = Field(default_factory=list)
    rows: List[List[Any]] = Field(default_factory=list)


class ChatMessageContent(CamelModel):
    """聊天消息内容"""
    text: Optional[str] = None
    sql: Optional[str] = None
    results: Optional[QueryResult] = None
    error: Optional[str] = None
    error_kind: Optional[str] = Field(None, alias="errorKind")
    chart_suggestion: Optional[ChartSuggestion] = Field(None, alias="chartSuggestion")


class ChatMessage(CamelModel):
    """聊天消息"""
    id: str
    sender: Literal["user", "ai"]
    content: ChatMessageContent
    timestamp: datetime


class GovernanceRule(CamelModel):
    """治理规则"""
    id: str
    rule: str
    is_active: bool = Field(True, alias="isActive")
    created_at: Optional[datetime] = Field(None, alias="createdAt")


class GovernanceDecision(BaseModel):
    """治理检查结果"""
    allowed: bool
    rule: Optional[GovernanceRule] = None
    keywords: List[str] = Field(default_factory=list)


class ConnectionDetails(CamelModel):
    """
    数据库连接信息（已解密）

    SQLite 使用 file_path 或 file_content（base64），其余类型使用 host/port/database/user/password
    """
    id: Optional[str] = None
    name: Optional[str] = None
    type: str
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    file_path: Optional[str] = Field(None, alias="filePath")
    file_content: Optional[str] = Field(None, alias="fileContent")
    table_schemas: Optional[List[TableSchema]] = Field(None, alias="schema")


class SynthesisResult(CamelModel):
    """SQL合成结果"""
    text: str
    sql: str
    chart_suggestion: Optional[ChartSuggestion] = Field(None, alias="chartSuggestion")

    @property
    def is_placeholder(self) -> bool:
        """以 -- 开头的 SQL 表示不执行"""
        return self.sql.startswith("--")


class Credential(BaseModel):
    """LLM 调用凭证"""
    api_key: str
    model: Optional[str] = None
    key_id: Optional[str] = None
