"""
数据库适配器接口
每种数据库一个独立的适配器，适配器之间不共享父类，只需满足下面的协议
"""
from typing import List, Optional, Protocol, runtime_checkable

from ..dto import ConnectionDetails, QueryResult, TableSchema
from ..exceptions import SQLChatError


@runtime_checkable
class ConnectionHandle(Protocol):
    """一个已打开的数据库句柄（连接池、单连接或文件句柄）"""

    def execute(self, sql: str, max_rows: Optional[int] = None) -> QueryResult:
        """执行查询并返回统一的表格结果"""
        ...

    def get_schema(self) -> List[TableSchema]:
        """查询系统目录获取表结构"""
        ...

    def ping(self) -> None:
        """验证句柄可用（SELECT 1）"""
        ...

    def close(self) -> None:
        """释放句柄，可重复调用"""
        ...


@runtime_checkable
class DatabaseAdapter(Protocol):
    """数据库适配器协议"""

    def get_db_type(self) -> str:
        """返回规范的类型名，如 'PostgreSQL'"""
        ...

    def validate(self, details: ConnectionDetails) -> None:
        """
        检查必填字段

        Raises:
            ConfigError: 缺少必要的连接信息
        """
        ...

    def open(self, details: ConnectionDetails, timeout: int) -> ConnectionHandle:
        """打开一个新句柄，不做连通性校验"""
        ...

    def list_databases(self, details: ConnectionDetails, timeout: int) -> List[str]:
        """列出服务器上可见的数据库名（SQLite 返回文件名）"""
        ...

    def format_identifier(self, name: str) -> str:
        """按方言加引号"""
        ...

    def select_top(self, columns: List[str], table: str, limit: int) -> str:
        """生成取前N行的查询（LIMIT 或 TOP）"""
        ...

    def classify_error(self, error: Exception) -> SQLChatError:
        """把驱动异常映射为 AuthenticationError / NetworkError / ConfigError"""
        ...
