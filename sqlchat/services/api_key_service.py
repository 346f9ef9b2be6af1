"""
API Key 服务
保存加密的 LLM API Key，并为 SQL 合成提供当前启用的凭证
"""
import os
import uuid
from datetime import datetime
from typing import List, Optional

from ..database import Database
from ..models.api_key import ApiKey
from ..utils.logger import get_logger
from .dto import Credential
from .encryption_service import EncryptionService, get_encryption_service

logger = get_logger(__name__)


def mask_key(key: str) -> str:
    """sk-abcd...wxyz"""
    if len(key) <= 9:
        return "*" * len(key)
    return f"{key[:5]}...{key[-4:]}"


class ApiKeyService:
    """API Key 管理和凭证解析"""

    def __init__(self, database: Database, encryption_service: Optional[EncryptionService] = None):
        self.database = database
        self.encryption_service = encryption_service or get_encryption_service()

    def list_keys(self) -> List[ApiKey]:
        with self.database.get_session() as session:
            return session.query(ApiKey).order_by(ApiKey.created_at.asc()).all()

    def add_key(self, name: str, key: str, model: Optional[str] = None) -> ApiKey:
        """
        新增 API Key，第一个 Key 自动启用

        Raises:
            ValueError: Key 为空或已存在
        """
        key = key.strip()
        if not key:
            raise ValueError("API key must not be empty")

        with self.database.get_session() as session:
            existing = session.query(ApiKey).all()
            for record in existing:
                if self.encryption_service.try_decrypt(record.encrypted_key) == key:
                    raise ValueError("This API key has already been added.")

            record = ApiKey(
                id=str(uuid.uuid4()),
                name=name,
                encrypted_key=self.encryption_service.encrypt(key),
                masked_key=mask_key(key),
                model=model,
                is_active=not existing,
                usage_count=0,
            )
            session.add(record)

        logger.info(f"API Key创建成功: id={record.id}, active={record.is_active}")
        return record

    def activate_key(self, key_id: str) -> Optional[ApiKey]:
        """启用指定 Key，同时停用其他 Key"""
        with self.database.get_session() as session:
            target = session.query(ApiKey).filter_by(id=key_id).first()
            if not target:
                return None
            for record in session.query(ApiKey).all():
                record.is_active = record.id == key_id

        logger.info(f"API Key已启用: id={key_id}")
        return target

    def delete_key(self, key_id: str) -> bool:
        with self.database.get_session() as session:
            deleted = session.query(ApiKey).filter_by(id=key_id).delete()
        logger.info(f"API Key删除: id={key_id}, deleted={bool(deleted)}")
        return bool(deleted)

    def get_active_credential(self) -> Optional[Credential]:
        """
        返回当前启用的凭证

        优先使用已启用的 Key，其次是环境变量 LLM_API_KEY，都没有返回 None
        """
        with self.database.get_session() as session:
            record = session.query(ApiKey).filter(ApiKey.is_active.is_(True)).first()
            api_key = self.encryption_service.try_decrypt(record.encrypted_key) if record else None
            if api_key:
                return Credential(
                    api_key=api_key,
                    model=record.model,
                    key_id=record.id,
                )

        env_key = os.getenv("LLM_API_KEY")
        if env_key:
            return Credential(api_key=env_key)
        return None

    def record_usage(self, key_id: Optional[str]) -> None:
        """成功调用后更新使用次数"""
        if not key_id:
            return
        with self.database.get_session() as session:
            record = session.query(ApiKey).filter_by(id=key_id).first()
            if record:
                record.usage_count = (record.usage_count or 0) + 1
                record.last_used = datetime.utcnow()
