"""
API Key 管理路由
"""
from typing import List, Optional
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ..models.api_key import ApiKey
from ..services import get_api_key_service
from ..utils.logger import get_logger
from ..utils.datetime_helper import to_iso_string
from .errors import not_found

logger = get_logger(__name__)
router = APIRouter(prefix="/api/api-keys", tags=["api-keys"])


# ============ Request/Response Models ============

class CreateApiKeyRequest(BaseModel):
    """添加 API Key 请求"""
    name: str = Field(..., description="显示名称")
    key: str = Field(..., description="API Key 明文")
    model: Optional[str] = Field(None, description="LiteLLM 模型名，例如 gemini/gemini-2.0-flash")


class ApiKeyResponse(BaseModel):
    """API Key 响应，只返回掩码"""
    id: str
    name: str
    maskedKey: str
    model: Optional[str]
    isActive: bool
    usageCount: int
    lastUsed: Optional[str]
    createdAt: Optional[str]


def _to_response(record: ApiKey) -> ApiKeyResponse:
    return ApiKeyResponse(
        id=record.id,
        name=record.name,
        maskedKey=record.masked_key,
        model=record.model,
        isActive=bool(record.is_active),
        usageCount=record.usage_count or 0,
        lastUsed=to_iso_string(record.last_used),
        createdAt=to_iso_string(record.created_at),
    )


# ============ API Endpoints ============

@router.get("", response_model=List[ApiKeyResponse])
async def list_api_keys():
    return [_to_response(record) for record in get_api_key_service().list_keys()]


@router.post("", response_model=ApiKeyResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(request: CreateApiKeyRequest):
    """
    添加 API Key，第一个 Key 自动启用
    """
    try:
        record = get_api_key_service().add_key(request.name, request.key, request.model)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _to_response(record)


@router.post("/{key_id}/activate", response_model=ApiKeyResponse)
async def activate_api_key(key_id: str):
    record = get_api_key_service().activate_key(key_id)
    if record is None:
        raise not_found("API key", key_id)
    return _to_response(record)


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_api_key(key_id: str):
    if not get_api_key_service().delete_key(key_id):
        raise not_found("API key", key_id)
    return None
