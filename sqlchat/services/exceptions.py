"""
错误类型定义
所有业务异常都继承自 SQLChatError，kind 字段用于聊天消息和API响应
"""
from typing import Optional


class SQLChatError(Exception):
    """业务异常基类"""

    kind = "Error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class ConfigError(SQLChatError):
    """连接配置不完整或格式错误，不重试"""

    kind = "ConfigError"


class AuthenticationError(SQLChatError):
    """数据库认证失败"""

    kind = "AuthenticationError"


class NetworkError(SQLChatError):
    """数据库主机不可达"""

    kind = "NetworkError"


class NotConnected(SQLChatError):
    """在 connect 之前调用了 execute"""

    kind = "NotConnected"

    def __init__(self, connection_id: str):
        super().__init__(f"Not connected to database: {connection_id}")
        self.connection_id = connection_id


class UnsafeQueryRejected(SQLChatError):
    """非 SELECT 语句被拒绝"""

    kind = "UnsafeQueryRejected"


class GovernanceViolation(SQLChatError):
    """请求违反了治理规则"""

    kind = "GovernanceViolation"

    def __init__(self, rule_text: str):
        super().__init__(
            f'Request blocked by governance rule: "{rule_text}"'
        )
        self.rule_text = rule_text


class UpstreamError(SQLChatError):
    """LLM 调用失败或返回无法解析"""

    kind = "UpstreamError"


class NoActiveCredential(SQLChatError):
    """没有可用的 API Key"""

    kind = "NoActiveCredential"

    def __init__(self):
        super().__init__(
            "No active API key found. Please add and activate an API key in the settings."
        )


class QueryTimeout(SQLChatError):
    """合成或执行超时"""

    kind = "Timeout"

    def __init__(self, operation: str, seconds: float):
        super().__init__(f"{operation} timed out after {seconds:g}s")
        self.operation = operation
        self.seconds = seconds


class ConnectionTestFailed(SQLChatError):
    """连接测试失败"""

    kind = "ConnectionTestFailed"


class QueryExecutionError(SQLChatError):
    """SQL 在数据库端执行失败"""

    kind = "QueryExecutionError"


class ConversationBusy(SQLChatError):
    """同一会话已有请求在处理中"""

    kind = "ConversationBusy"

    def __init__(self, conversation_id: str):
        super().__init__(
            f"Conversation {conversation_id} is still processing the previous message"
        )
        self.conversation_id = conversation_id
