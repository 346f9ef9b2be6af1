"""
数据库连接API路由
"""
from typing import List, Optional
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ..models.database_connection import DatabaseConnection
from ..services import get_connection_service, get_conversation_manager, get_database_connector
from ..services.dto import ConnectionDetails, TableSchema
from ..services.exceptions import SQLChatError
from ..utils.logger import get_logger
from ..utils.datetime_helper import to_iso_string
from .errors import not_found, to_http_exception

logger = get_logger(__name__)
router = APIRouter(prefix="/api/databases", tags=["databases"])


# ============ Request/Response Models ============

class ConnectionRequest(BaseModel):
    """创建/更新数据库连接请求"""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, description="连接名称")
    type: Optional[str] = Field(None, description="数据库类型（PostgreSQL, MySQL, SQLServer, SQLite）")
    host: Optional[str] = Field(None, description="主机")
    port: Optional[int] = Field(None, description="端口")
    database: Optional[str] = Field(None, description="数据库名")
    user: Optional[str] = Field(None, description="用户名")
    password: Optional[str] = Field(None, description="密码")
    file_path: Optional[str] = Field(None, alias="filePath", description="SQLite文件路径")
    file_content: Optional[str] = Field(None, alias="fileContent", description="SQLite文件内容（base64）")
    table_schemas: Optional[List[TableSchema]] = Field(None, alias="schema", description="手动提供的schema")

    def to_data(self) -> dict:
        return self.model_dump(exclude={"table_schemas"})


class DatabaseResponse(BaseModel):
    """数据库连接响应（不包含密码）"""
    id: str
    name: str
    type: str
    host: Optional[str]
    port: Optional[int]
    database: Optional[str]
    user: Optional[str]
    filePath: Optional[str]
    status: str
    schema_: List[TableSchema] = Field(default_factory=list, alias="schema")
    createdAt: Optional[str]
    updatedAt: Optional[str]

    model_config = ConfigDict(populate_by_name=True)


class ConnectionTestResponse(BaseModel):
    """连接测试响应"""
    success: bool
    message: str
    databases: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class StatusResponse(BaseModel):
    id: str
    status: str


def _to_response(record: DatabaseConnection) -> DatabaseResponse:
    return DatabaseResponse(
        id=record.id,
        name=record.name,
        type=record.type,
        host=record.host,
        port=record.port,
        database=record.database,
        user=record.username,
        filePath=record.file_path,
        status=record.status,
        schema_=get_connection_service().get_schema_snapshot(record),
        createdAt=to_iso_string(record.created_at),
        updatedAt=to_iso_string(record.updated_at),
    )


async def _run_test(details: ConnectionDetails) -> ConnectionTestResponse:
    try:
        databases = await get_database_connector().test_connection(details)
    except SQLChatError as e:
        return ConnectionTestResponse(success=False, message="Failed to connect to the database.", error=str(e))
    return ConnectionTestResponse(success=True, message="Connection successful.", databases=databases)


# ============ API Endpoints ============

@router.post("", response_model=DatabaseResponse, response_model_by_alias=True, status_code=status.HTTP_201_CREATED)
async def create_database_connection(request: ConnectionRequest):
    """
    创建数据库连接，保存前测试连接并读取schema
    """
    if not request.name or not request.type:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name and type are required")

    try:
        logger.info(f"收到创建数据库连接请求: name={request.name}, type={request.type}")
        record = await get_connection_service().create_connection(request.to_data(), request.table_schemas)
        return _to_response(record)
    except SQLChatError as e:
        logger.warning(f"创建数据库连接失败: {e}")
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"创建数据库连接失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to create connection: {str(e)}"
        )


@router.get("", response_model=List[DatabaseResponse], response_model_by_alias=True)
async def list_database_connections():
    """
    获取所有数据库连接
    """
    records = get_connection_service().list_connections()
    logger.info(f"返回数据库连接列表: count={len(records)}")
    return [_to_response(record) for record in records]


@router.post("/test", response_model=ConnectionTestResponse)
async def test_connection_details(request: ConnectionRequest):
    """
    测试未保存的连接信息，返回服务器上的数据库列表
    """
    if not request.type:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="type is required")

    details = ConnectionDetails(**request.to_data())
    logger.info(f"收到测试数据库连接请求: type={request.type}, host={request.host}")
    return await _run_test(details)


@router.get("/{connection_id}", response_model=DatabaseResponse, response_model_by_alias=True)
async def get_database_connection(connection_id: str):
    record = get_connection_service().get_connection(connection_id)
    if not record:
        raise not_found("Connection", connection_id)
    return _to_response(record)


@router.put("/{connection_id}", response_model=DatabaseResponse, response_model_by_alias=True)
async def update_database_connection(connection_id: str, request: ConnectionRequest):
    """
    更新数据库连接并重新测试
    """
    try:
        logger.info(f"收到更新数据库连接请求: id={connection_id}")
        record = await get_connection_service().update_connection(
            connection_id, request.to_data(), request.table_schemas
        )
    except SQLChatError as e:
        logger.warning(f"更新数据库连接失败: {e}")
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"更新数据库连接失败: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update connection: {str(e)}"
        )

    if not record:
        raise not_found("Connection", connection_id)
    get_conversation_manager().forget_connection(connection_id)
    return _to_response(record)


@router.delete("/{connection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_database_connection(connection_id: str):
    """
    删除数据库连接及其会话
    """
    manager = get_conversation_manager()
    manager.forget_connection(connection_id)
    manager.store.delete_for_connection(connection_id)

    if not await get_connection_service().delete_connection(connection_id):
        raise not_found("Connection", connection_id)
    return None


@router.post("/{connection_id}/test", response_model=ConnectionTestResponse)
async def test_database_connection(connection_id: str):
    """
    测试已保存的数据库连接
    """
    service = get_connection_service()
    record = service.get_connection(connection_id)
    if not record:
        raise not_found("Connection", connection_id)

    try:
        details = service.to_details(record)
    except SQLChatError as e:
        logger.warning(f"读取连接信息失败: id={connection_id}: {e}")
        return ConnectionTestResponse(success=False, message="Failed to connect to the database.", error=str(e))

    result = await _run_test(details)
    logger.info(f"数据库连接测试完成: id={connection_id}, success={result.success}")
    return result


@router.get("/{connection_id}/status", response_model=StatusResponse)
async def get_connection_status(connection_id: str):
    """
    重新检查并返回连接状态
    """
    new_status = await get_connection_service().refresh_status(connection_id)
    if new_status is None:
        raise not_found("Connection", connection_id)
    return StatusResponse(id=connection_id, status=new_status)


@router.get("/{connection_id}/schema", response_model=List[TableSchema], response_model_by_alias=True)
async def get_connection_schema(connection_id: str):
    """
    返回缓存的schema快照
    """
    service = get_connection_service()
    record = service.get_connection(connection_id)
    if not record:
        raise not_found("Connection", connection_id)
    return service.get_schema_snapshot(record)


@router.post("/{connection_id}/schema/refresh", response_model=List[TableSchema], response_model_by_alias=True)
async def refresh_connection_schema(connection_id: str):
    """
    重新读取数据库schema
    """
    try:
        tables = await get_connection_service().refresh_schema(connection_id)
    except SQLChatError as e:
        logger.warning(f"刷新Schema失败: id={connection_id}: {e}")
        raise to_http_exception(e)

    if tables is None:
        raise not_found("Connection", connection_id)
    get_conversation_manager().forget_connection(connection_id)
    return tables
