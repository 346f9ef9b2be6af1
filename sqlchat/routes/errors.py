"""
业务异常到HTTP状态码的转换
"""
from fastapi import HTTPException, status

from ..services.exceptions import SQLChatError

STATUS_BY_KIND = {
    "ConfigError": status.HTTP_400_BAD_REQUEST,
    "UnsafeQueryRejected": status.HTTP_400_BAD_REQUEST,
    "QueryExecutionError": status.HTTP_400_BAD_REQUEST,
    "NoActiveCredential": status.HTTP_400_BAD_REQUEST,
    "AuthenticationError": status.HTTP_401_UNAUTHORIZED,
    "GovernanceViolation": status.HTTP_403_FORBIDDEN,
    "NotConnected": status.HTTP_409_CONFLICT,
    "ConversationBusy": status.HTTP_409_CONFLICT,
    "NetworkError": status.HTTP_502_BAD_GATEWAY,
    "UpstreamError": status.HTTP_502_BAD_GATEWAY,
    "ConnectionTestFailed": status.HTTP_502_BAD_GATEWAY,
    "Timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


def to_http_exception(error: SQLChatError) -> HTTPException:
    """按 kind 选择状态码，detail 带上错误类型方便前端展示"""
    return HTTPException(
        status_code=STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"error": str(error), "errorKind": error.kind},
    )


def not_found(what: str, item_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{what} not found: {item_id}",
    )
