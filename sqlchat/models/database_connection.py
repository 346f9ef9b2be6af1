"""
数据库连接模型
"""
from sqlalchemy import Column, String, Text, Integer
from .base import Base, TimestampMixin


class DatabaseConnection(Base, TimestampMixin):
    """数据库连接表"""
    __tablename__ = "database_connections"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False)  # PostgreSQL, MySQL, SQLServer, SQLite
    host = Column(String(255), nullable=True)
    port = Column(Integer, nullable=True)
    database = Column(String(255), nullable=True)
    username = Column(String(255), nullable=True)
    encrypted_password = Column(Text, nullable=True)
    file_path = Column(Text, nullable=True)  # 仅SQLite
    encrypted_file_content = Column(Text, nullable=True)  # 仅SQLite，base64文件内容
    status = Column(String(20), nullable=False, default="disconnected")  # connected, disconnected, error, connecting
    schema_snapshot = Column(Text, nullable=True)  # JSON: TableSchema[]

    def __repr__(self):
        return f"<DatabaseConnection(id={self.id}, name={self.name}, type={self.type}, status={self.status})>"
