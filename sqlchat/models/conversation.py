"""
会话模型
"""
from sqlalchemy import Column, String, Text, ForeignKey, DateTime, Integer
from datetime import datetime
from .base import Base, TimestampMixin


class Conversation(Base, TimestampMixin):
    """会话表"""
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True)
    connection_id = Column(String(36), ForeignKey("database_connections.id"), nullable=False)

    def __repr__(self):
        return f"<Conversation(id={self.id}, connection_id={self.connection_id})>"


class ChatMessageRecord(Base):
    """会话消息表（只追加）"""
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # 会话内顺序
    sender = Column(String(10), nullable=False)  # user or ai
    content = Column(Text, nullable=False)  # JSON: ChatMessageContent
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ChatMessageRecord(id={self.id}, conversation_id={self.conversation_id}, sender={self.sender})>"
