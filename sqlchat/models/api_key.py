"""
API Key模型
"""
from sqlalchemy import Column, String, Text, Boolean, Integer, DateTime
from .base import Base, TimestampMixin


class ApiKey(Base, TimestampMixin):
    """LLM API Key表"""
    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    encrypted_key = Column(Text, nullable=False)
    masked_key = Column(String(32), nullable=False)
    model = Column(String(255), nullable=True)  # 为空时使用DEFAULT_MODEL
    is_active = Column(Boolean, nullable=False, default=False)
    usage_count = Column(Integer, nullable=False, default=0)
    last_used = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<ApiKey(id={self.id}, name={self.name}, is_active={self.is_active})>"
