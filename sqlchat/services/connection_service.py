"""
数据库连接配置服务
保存连接信息（密码和上传文件加密存储），创建和更新时测试连接并缓存 schema 快照
"""
import json
import uuid
from typing import Any, Dict, List, Optional

from ..database import Database
from ..models.database_connection import DatabaseConnection
from ..utils.logger import get_logger
from .database_adapters import DatabaseAdapterFactory
from .database_connector import DatabaseConnector
from .dto import ConnectionDetails, TableSchema
from .encryption_service import EncryptionService, get_encryption_service
from .exceptions import ConfigError, SQLChatError
from .schema_utils import schema_from_json, schema_to_json

logger = get_logger(__name__)

STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"
STATUS_ERROR = "error"


class ConnectionService:
    """数据库连接的增删改查"""

    def __init__(
        self,
        database: Database,
        connector: DatabaseConnector,
        encryption_service: Optional[EncryptionService] = None,
    ):
        self.database = database
        self.connector = connector
        self.encryption_service = encryption_service or get_encryption_service()

    def list_connections(self) -> List[DatabaseConnection]:
        with self.database.get_session() as session:
            return session.query(DatabaseConnection).order_by(DatabaseConnection.created_at.asc()).all()

    def get_connection(self, connection_id: str) -> Optional[DatabaseConnection]:
        with self.database.get_session() as session:
            return session.query(DatabaseConnection).filter_by(id=connection_id).first()

    def _decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        plaintext = self.encryption_service.try_decrypt(ciphertext)
        if plaintext is None:
            raise ConfigError("Stored credentials cannot be decrypted", detail="ENCRYPTION_KEY may have changed")
        return plaintext or None

    def to_details(self, record: DatabaseConnection) -> ConnectionDetails:
        """
        把存储记录转换为解密后的连接信息

        Raises:
            ConfigError: 密码或文件内容无法解密
        """
        return ConnectionDetails(
            id=record.id,
            name=record.name,
            type=record.type,
            host=record.host,
            port=record.port,
            database=record.database,
            user=record.username,
            password=self._decrypt(record.encrypted_password),
            file_path=record.file_path,
            file_content=self._decrypt(record.encrypted_file_content),
        )

    @staticmethod
    def get_schema_snapshot(record: DatabaseConnection) -> List[TableSchema]:
        if not record.schema_snapshot:
            return []
        return schema_from_json(json.loads(record.schema_snapshot))

    async def _probe(self, details: ConnectionDetails) -> Optional[List[TableSchema]]:
        """连接并读取 schema，失败返回 None"""
        try:
            return await self.connector.get_schema(details)
        except SQLChatError as e:
            logger.warning(f"连接检查失败: {details.name} ({details.type}): {e}")
            return None

    async def create_connection(self, data: Dict[str, Any], schema: Optional[List[TableSchema]] = None) -> DatabaseConnection:
        """
        保存新连接，并测试是否可用

        Args:
            data: name/type/host/port/database/user/password/file_path/file_content
            schema: 调用方提供的 schema，优先于数据库读取的结果

        Raises:
            ConfigError: 数据库类型不支持
        """
        db_type = DatabaseAdapterFactory.canonical_type(data["type"])
        record = DatabaseConnection(
            id=str(uuid.uuid4()),
            name=data["name"],
            type=db_type,
            host=data.get("host"),
            port=data.get("port"),
            database=data.get("database"),
            username=data.get("user"),
            encrypted_password=self.encryption_service.encrypt(data.get("password")) or None,
            file_path=data.get("file_path"),
            encrypted_file_content=self.encryption_service.encrypt(data.get("file_content")) or None,
            status=STATUS_DISCONNECTED,
        )

        await self._apply_probe(record, schema)

        with self.database.get_session() as session:
            session.add(record)

        logger.info(f"数据库连接创建成功: id={record.id}, name={record.name}, status={record.status}")
        return record

    async def update_connection(
        self,
        connection_id: str,
        data: Dict[str, Any],
        schema: Optional[List[TableSchema]] = None,
    ) -> Optional[DatabaseConnection]:
        """
        更新连接信息并重新测试

        密码和文件内容为 None 时保留原值
        """
        record = self.get_connection(connection_id)
        if record is None:
            return None

        if data.get("type"):
            record.type = DatabaseAdapterFactory.canonical_type(data["type"])
        for field in ("name", "host", "port", "database", "file_path"):
            if data.get(field) is not None:
                setattr(record, field, data[field])
        if data.get("user") is not None:
            record.username = data["user"]
        if data.get("password") is not None:
            record.encrypted_password = self.encryption_service.encrypt(data["password"]) or None
        if data.get("file_content") is not None:
            record.encrypted_file_content = self.encryption_service.encrypt(data["file_content"]) or None

        await self.connector.disconnect(connection_id)
        await self._apply_probe(record, schema)

        with self.database.get_session() as session:
            session.merge(record)

        logger.info(f"数据库连接更新成功: id={connection_id}, status={record.status}")
        return record

    async def _apply_probe(self, record: DatabaseConnection, schema: Optional[List[TableSchema]]):
        details = self.to_details(record)
        if schema:
            details.table_schemas = schema

        tables = await self._probe(details)
        if tables is None:
            record.status = STATUS_DISCONNECTED
            if schema:
                record.schema_snapshot = json.dumps(schema_to_json(schema))
            return

        record.status = STATUS_CONNECTED
        record.schema_snapshot = json.dumps(schema_to_json(tables))

    async def delete_connection(self, connection_id: str) -> bool:
        """删除连接，同时关闭已打开的句柄"""
        await self.connector.disconnect(connection_id)
        with self.database.get_session() as session:
            deleted = session.query(DatabaseConnection).filter_by(id=connection_id).delete()
        logger.info(f"数据库连接删除: id={connection_id}, deleted={bool(deleted)}")
        return bool(deleted)

    async def refresh_status(self, connection_id: str) -> Optional[str]:
        """重新检查连接状态"""
        record = self.get_connection(connection_id)
        if record is None:
            return None

        try:
            await self.connector.test_connection(self.to_details(record))
            status = STATUS_CONNECTED
        except SQLChatError as e:
            logger.warning(f"连接状态检查失败: id={connection_id}: {e}")
            status = STATUS_ERROR

        self._save_fields(connection_id, status=status)
        return status

    async def refresh_schema(self, connection_id: str) -> Optional[List[TableSchema]]:
        """
        重新读取 schema 快照

        Raises:
            SQLChatError: 连接或读取失败
        """
        record = self.get_connection(connection_id)
        if record is None:
            return None

        tables = await self.connector.get_schema(self.to_details(record))
        self._save_fields(
            connection_id,
            status=STATUS_CONNECTED,
            schema_snapshot=json.dumps(schema_to_json(tables)),
        )
        logger.info(f"Schema刷新成功: id={connection_id}, tables={len(tables)}")
        return tables

    def _save_fields(self, connection_id: str, **fields):
        with self.database.get_session() as session:
            record = session.query(DatabaseConnection).filter_by(id=connection_id).first()
            if record:
                for key, value in fields.items():
                    setattr(record, key, value)
