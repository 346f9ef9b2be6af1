"""
聊天编排器
一轮对话：治理检查 → SQL合成 → 执行 → 生成一条AI消息

每轮只追加一条用户消息和一条AI消息，任何错误都转换为一条带 errorKind 的AI消息
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from ..utils.logger import get_logger
from .connection_service import ConnectionService
from .conversation_store import ConversationStore
from .database_connector import DatabaseConnector
from .dto import (
    ChartSuggestion,
    ChatMessage,
    ChatMessageContent,
    ConnectionDetails,
    QueryResult,
    TableSchema,
)
from .exceptions import ConversationBusy, GovernanceViolation, SQLChatError
from .governance_service import GovernanceService

logger = get_logger(__name__)

GREETING = "Connected to **{name}**. What would you like to know about your data?"


class TurnState(str, Enum):
    """会话当前所处的阶段"""
    IDLE = "idle"
    AWAITING_GOVERNANCE = "awaiting_governance"
    AWAITING_SYNTHESIS = "awaiting_synthesis"
    AWAITING_EXECUTION = "awaiting_execution"
    BLOCKED = "blocked"
    ERRORED = "errored"


class Conversation:
    """一个数据库连接上的会话，消息只追加"""

    def __init__(
        self,
        conversation_id: str,
        connection: ConnectionDetails,
        schema: List[TableSchema],
        messages: Optional[List[ChatMessage]] = None,
    ):
        self.id = conversation_id
        self.connection = connection
        self.schema = schema
        self.messages: List[ChatMessage] = list(messages or [])
        self.state = TurnState.IDLE
        self.busy = False


def new_message(sender: str, content: ChatMessageContent) -> ChatMessage:
    return ChatMessage(
        id=str(uuid.uuid4()),
        sender=sender,
        content=content,
        timestamp=datetime.utcnow(),
    )


def chart_applies(chart: Optional[ChartSuggestion], result: QueryResult) -> bool:
    """有数据且两列都在结果中时才展示图表"""
    if chart is None or not result.rows:
        return False
    return chart.labels_column in result.headers and chart.data_column in result.headers


class ChatOrchestrator:
    """聊天编排器类"""

    def __init__(
        self,
        connector: DatabaseConnector,
        synthesizer,
        governance_service: GovernanceService,
        store: Optional[ConversationStore] = None,
    ):
        """
        Args:
            connector: 数据库连接器
            synthesizer: SQL合成器（提供 async synthesize）
            governance_service: 治理规则服务
            store: 会话存储，为None时只保存在内存中
        """
        self.connector = connector
        self.synthesizer = synthesizer
        self.governance_service = governance_service
        self.store = store

    def append(self, conversation: Conversation, message: ChatMessage) -> None:
        conversation.messages.append(message)
        if self.store:
            self.store.append(conversation.id, message, len(conversation.messages) - 1)

    async def send(self, conversation: Conversation, text: str) -> ChatMessage:
        """
        处理一条用户消息

        Args:
            conversation: 会话
            text: 用户输入

        Returns:
            本轮生成的AI消息

        Raises:
            ConversationBusy: 上一条消息还在处理中（不会追加任何消息）
        """
        if conversation.busy:
            raise ConversationBusy(conversation.id)
        conversation.busy = True

        try:
            history = list(conversation.messages)
            self.append(conversation, new_message("user", ChatMessageContent(text=text)))

            try:
                content = await self._run_turn(conversation, text, history)
            except SQLChatError as e:
                if isinstance(e, GovernanceViolation):
                    conversation.state = TurnState.BLOCKED
                else:
                    conversation.state = TurnState.ERRORED
                logger.warning(f"会话处理失败: conversation_id={conversation.id}, kind={e.kind}, error={e}")
                content = ChatMessageContent(error=str(e), error_kind=e.kind)
            except Exception as e:
                conversation.state = TurnState.ERRORED
                logger.error(f"会话处理出现未知错误: conversation_id={conversation.id}: {e}", exc_info=True)
                content = ChatMessageContent(
                    error=f"An unexpected error occurred: {e}",
                    error_kind=SQLChatError.kind,
                )

            reply = new_message("ai", content)
            self.append(conversation, reply)
            return reply
        finally:
            conversation.state = TurnState.IDLE
            conversation.busy = False

    async def _run_turn(self, conversation: Conversation, text: str, history: List[ChatMessage]) -> ChatMessageContent:
        conversation.state = TurnState.AWAITING_GOVERNANCE
        self.governance_service.check(text)

        conversation.state = TurnState.AWAITING_SYNTHESIS
        synthesis = await self.synthesizer.synthesize(
            text,
            conversation.schema,
            history,
            conversation.connection.type,
        )

        if synthesis.is_placeholder:
            logger.info(f"合成结果无需执行: conversation_id={conversation.id}")
            return ChatMessageContent(text=synthesis.text, sql=synthesis.sql)

        conversation.state = TurnState.AWAITING_EXECUTION
        async with self.connector.session(conversation.connection):
            result = await self.connector.execute_query(synthesis.sql, conversation.connection)

        chart = synthesis.chart_suggestion if chart_applies(synthesis.chart_suggestion, result) else None
        return ChatMessageContent(
            text=synthesis.text,
            sql=synthesis.sql,
            results=result,
            chart_suggestion=chart,
        )


class ConversationManager:
    """
    会话管理器

    内存中缓存活跃会话，缓存未命中时从存储中恢复
    """

    def __init__(
        self,
        orchestrator: ChatOrchestrator,
        connection_service: ConnectionService,
        store: ConversationStore,
    ):
        self.orchestrator = orchestrator
        self.connection_service = connection_service
        self.store = store
        self._conversations: Dict[str, Conversation] = {}

    async def _resolve_connection(self, connection_id: str):
        record = self.connection_service.get_connection(connection_id)
        if record is None:
            return None, []

        schema = self.connection_service.get_schema_snapshot(record)
        if not schema:
            try:
                schema = await self.connection_service.refresh_schema(connection_id) or []
            except SQLChatError as e:
                logger.warning(f"读取Schema失败，使用空Schema: connection_id={connection_id}: {e}")
        return record, schema

    async def create(self, connection_id: str) -> Optional[Conversation]:
        """
        为连接创建会话并追加欢迎消息

        Returns:
            新会话；连接不存在时返回None
        """
        record, schema = await self._resolve_connection(connection_id)
        if record is None:
            return None

        conversation_id = self.store.create(connection_id)
        conversation = Conversation(
            conversation_id,
            self.connection_service.to_details(record),
            schema,
        )
        self.orchestrator.append(
            conversation,
            new_message("ai", ChatMessageContent(text=GREETING.format(name=record.name))),
        )
        self._conversations[conversation_id] = conversation
        return conversation

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        if conversation is not None:
            return conversation

        connection_id = self.store.get_connection_id(conversation_id)
        if connection_id is None:
            return None

        record, schema = await self._resolve_connection(connection_id)
        if record is None:
            return None

        # 等待期间可能已有其他请求恢复了同一会话，保留先恢复的实例
        cached = self._conversations.get(conversation_id)
        if cached is not None:
            return cached

        conversation = Conversation(
            conversation_id,
            self.connection_service.to_details(record),
            schema,
            self.store.load_messages(conversation_id),
        )
        self._conversations[conversation_id] = conversation
        logger.info(f"从存储恢复会话: conversation_id={conversation_id}, messages={len(conversation.messages)}")
        return conversation

    async def send(self, conversation_id: str, text: str) -> Optional[ChatMessage]:
        conversation = await self.get(conversation_id)
        if conversation is None:
            return None
        return await self.orchestrator.send(conversation, text)

    def delete(self, conversation_id: str) -> bool:
        conversation = self._conversations.get(conversation_id)
        if conversation is not None and conversation.busy:
            raise ConversationBusy(conversation_id)
        self._conversations.pop(conversation_id, None)
        return self.store.delete(conversation_id)

    def forget_connection(self, connection_id: str) -> None:
        """连接被删除或修改后丢弃缓存的会话，正在处理消息的会话保留"""
        for conversation_id, conversation in list(self._conversations.items()):
            if conversation.connection.id == connection_id and not conversation.busy:
                self._conversations.pop(conversation_id, None)
