"""
服务层包
"""
from typing import Optional

from ..database import get_database
from .api_key_service import ApiKeyService
from .chat_orchestrator import ChatOrchestrator, Conversation, ConversationManager, TurnState
from .connection_service import ConnectionService
from .conversation_store import ConversationStore
from .database_connector import DatabaseConnector, get_database_connector
from .dto import (
    ChartSuggestion,
    ChatMessage,
    ChatMessageContent,
    ColumnSchema,
    ConnectionDetails,
    GovernanceRule,
    QueryResult,
    SynthesisResult,
    TableSchema,
)
from .encryption_service import EncryptionService, get_encryption_service
from .governance_service import GovernanceEngine, GovernanceService
from .synthesizers import build_synthesizer

# 全局服务实例
_governance_service: Optional[GovernanceService] = None
_api_key_service: Optional[ApiKeyService] = None
_connection_service: Optional[ConnectionService] = None
_conversation_manager: Optional[ConversationManager] = None


def get_governance_service() -> GovernanceService:
    global _governance_service
    if _governance_service is None:
        _governance_service = GovernanceService(get_database())
    return _governance_service


def get_api_key_service() -> ApiKeyService:
    global _api_key_service
    if _api_key_service is None:
        _api_key_service = ApiKeyService(get_database())
    return _api_key_service


def get_connection_service() -> ConnectionService:
    global _connection_service
    if _connection_service is None:
        _connection_service = ConnectionService(get_database(), get_database_connector())
    return _connection_service


def get_conversation_manager() -> ConversationManager:
    """获取全局会话管理器，合成器由 SYNTHESIZER_MODE 决定"""
    global _conversation_manager
    if _conversation_manager is None:
        store = ConversationStore(get_database())
        orchestrator = ChatOrchestrator(
            connector=get_database_connector(),
            synthesizer=build_synthesizer(credential_provider=get_api_key_service()),
            governance_service=get_governance_service(),
            store=store,
        )
        _conversation_manager = ConversationManager(orchestrator, get_connection_service(), store)
    return _conversation_manager


def reset_services():
    """丢弃所有全局服务实例（切换配置数据库后调用）"""
    global _governance_service, _api_key_service, _connection_service, _conversation_manager
    _governance_service = None
    _api_key_service = None
    _connection_service = None
    _conversation_manager = None


__all__ = [
    "ApiKeyService",
    "ChartSuggestion",
    "ChatMessage",
    "ChatMessageContent",
    "ChatOrchestrator",
    "ColumnSchema",
    "ConnectionDetails",
    "ConnectionService",
    "Conversation",
    "ConversationManager",
    "ConversationStore",
    "DatabaseConnector",
    "EncryptionService",
    "GovernanceEngine",
    "GovernanceRule",
    "GovernanceService",
    "QueryResult",
    "SynthesisResult",
    "TableSchema",
    "TurnState",
    "build_synthesizer",
    "get_api_key_service",
    "get_connection_service",
    "get_conversation_manager",
    "get_database_connector",
    "get_encryption_service",
    "get_governance_service",
    "reset_services",
]
