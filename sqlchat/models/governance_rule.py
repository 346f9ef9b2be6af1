"""
治理规则模型
"""
from sqlalchemy import Column, String, Text, Boolean
from .base import Base, TimestampMixin


class GovernanceRule(Base, TimestampMixin):
    """治理规则表"""
    __tablename__ = "governance_rules"

    id = Column(String(36), primary_key=True)
    rule = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<GovernanceRule(id={self.id}, is_active={self.is_active})>"
