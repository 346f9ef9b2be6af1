"""
会话存储 - 把会话和消息保存到配置数据库
"""
import json
import uuid
from datetime import datetime
from typing import List, Optional

from ..database import Database
from ..models.conversation import ChatMessageRecord, Conversation as ConversationModel
from ..utils.logger import get_logger
from .dto import ChatMessage, ChatMessageContent

logger = get_logger(__name__)


class ConversationStore:
    """会话存储类"""

    def __init__(self, database: Database):
        self.db = database

    def create(self, connection_id: str, conversation_id: Optional[str] = None) -> str:
        """
        创建会话记录

        Returns:
            会话ID
        """
        conversation_id = conversation_id or str(uuid.uuid4())
        with self.db.get_session() as session:
            session.add(ConversationModel(id=conversation_id, connection_id=connection_id))

        logger.info(f"创建新会话: conversation_id={conversation_id}, connection_id={connection_id}")
        return conversation_id

    def get_connection_id(self, conversation_id: str) -> Optional[str]:
        with self.db.get_session() as session:
            record = session.query(ConversationModel).filter_by(id=conversation_id).first()
            return record.connection_id if record else None

    def load_messages(self, conversation_id: str) -> List[ChatMessage]:
        """按顺序读取会话消息"""
        with self.db.get_session() as session:
            records = (
                session.query(ChatMessageRecord)
                .filter_by(conversation_id=conversation_id)
                .order_by(ChatMessageRecord.position.asc())
                .all()
            )
            return [
                ChatMessage(
                    id=record.id,
                    sender=record.sender,
                    content=ChatMessageContent.model_validate(json.loads(record.content)),
                    timestamp=record.timestamp,
                )
                for record in records
            ]

    def append(self, conversation_id: str, message: ChatMessage, position: int) -> None:
        """追加一条消息"""
        content = message.content.model_dump(by_alias=True, exclude_none=True)
        with self.db.get_session() as session:
            session.add(ChatMessageRecord(
                id=message.id,
                conversation_id=conversation_id,
                position=position,
                sender=message.sender,
                content=json.dumps(content, default=str),
                timestamp=message.timestamp,
            ))
            conversation = session.query(ConversationModel).filter_by(id=conversation_id).first()
            if conversation:
                conversation.updated_at = datetime.utcnow()

    def delete(self, conversation_id: str) -> bool:
        with self.db.get_session() as session:
            session.query(ChatMessageRecord).filter_by(conversation_id=conversation_id).delete()
            deleted = session.query(ConversationModel).filter_by(id=conversation_id).delete()
        logger.info(f"删除会话: conversation_id={conversation_id}, deleted={bool(deleted)}")
        return bool(deleted)

    def delete_for_connection(self, connection_id: str) -> int:
        """删除某个连接下的所有会话"""
        with self.db.get_session() as session:
            ids = [
                row.id for row in
                session.query(ConversationModel.id).filter_by(connection_id=connection_id).all()
            ]
            if ids:
                session.query(ChatMessageRecord).filter(
                    ChatMessageRecord.conversation_id.in_(ids)
                ).delete(synchronize_session=False)
                session.query(ConversationModel).filter(
                    ConversationModel.id.in_(ids)
                ).delete(synchronize_session=False)
        return len(ids)
