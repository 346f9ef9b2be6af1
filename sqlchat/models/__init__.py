"""
数据库模型包
"""
from .base import Base
from .database_connection import DatabaseConnection
from .governance_rule import GovernanceRule
from .api_key import ApiKey
from .conversation import Conversation, ChatMessageRecord

__all__ = [
    "Base",
    "DatabaseConnection",
    "GovernanceRule",
    "ApiKey",
    "Conversation",
    "ChatMessageRecord",
]
