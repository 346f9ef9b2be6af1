"""
会话API路由
"""
from typing import List
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ..services import get_conversation_manager
from ..services.chat_orchestrator import Conversation
from ..services.dto import ChatMessage
from ..services.exceptions import SQLChatError
from ..utils.logger import get_logger
from .errors import not_found, to_http_exception

logger = get_logger(__name__)
router = APIRouter(prefix="/api/conversations", tags=["conversations"])


# ============ Request/Response Models ============

class CreateConversationRequest(BaseModel):
    """创建会话请求"""
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(..., alias="connectionId", description="数据库连接ID")


class SendMessageRequest(BaseModel):
    """发送消息请求"""
    text: str = Field(..., description="用户输入")


class ConversationResponse(BaseModel):
    """会话响应"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    connection_id: str = Field(..., alias="connectionId")
    state: str
    messages: List[ChatMessage]


def _to_response(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        connection_id=conversation.connection.id,
        state=conversation.state.value,
        messages=conversation.messages,
    )


# ============ API Endpoints ============

@router.post(
    "",
    response_model=ConversationResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(request: CreateConversationRequest):
    """
    为数据库连接创建会话，返回包含欢迎消息的会话
    """
    logger.info(f"收到创建会话请求: connection_id={request.connection_id}")
    try:
        conversation = await get_conversation_manager().create(request.connection_id)
    except SQLChatError as e:
        logger.warning(f"创建会话失败: connection_id={request.connection_id}: {e}")
        raise to_http_exception(e)

    if conversation is None:
        raise not_found("Connection", request.connection_id)
    return _to_response(conversation)


@router.get(
    "/{conversation_id}",
    response_model=ConversationResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def get_conversation(conversation_id: str):
    try:
        conversation = await get_conversation_manager().get(conversation_id)
    except SQLChatError as e:
        raise to_http_exception(e)

    if conversation is None:
        raise not_found("Conversation", conversation_id)
    return _to_response(conversation)


@router.post(
    "/{conversation_id}/messages",
    response_model=ChatMessage,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def send_message(conversation_id: str, request: SendMessageRequest):
    """
    发送一条消息，返回本轮的AI消息

    处理失败时AI消息带有 error 和 errorKind；上一条消息还在处理中时返回409
    """
    if not request.text.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="text must not be empty")

    try:
        reply = await get_conversation_manager().send(conversation_id, request.text)
    except SQLChatError as e:
        logger.warning(f"发送消息失败: conversation_id={conversation_id}: {e}")
        raise to_http_exception(e)

    if reply is None:
        raise not_found("Conversation", conversation_id)
    return reply


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(conversation_id: str):
    try:
        deleted = get_conversation_manager().delete(conversation_id)
    except SQLChatError as e:
        raise to_http_exception(e)

    if not deleted:
        raise not_found("Conversation", conversation_id)
    return None
