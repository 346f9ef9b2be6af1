"""
数据库适配器工厂
根据连接的 type 标签选择适配器
"""
from typing import Callable, Dict, List

from ..exceptions import ConfigError
from .base import DatabaseAdapter
from .mysql import MySQLAdapter
from .postgresql import PostgreSQLAdapter
from .sqlite import SQLiteAdapter
from .sqlserver import SQLServerAdapter


class DatabaseAdapterFactory:
    """数据库适配器工厂类"""

    # 注册的适配器映射（键为小写类型名）
    _adapters: Dict[str, Callable[[], DatabaseAdapter]] = {
        "postgresql": PostgreSQLAdapter,
        "mysql": MySQLAdapter,
        "sqlserver": SQLServerAdapter,
        "sqlite": SQLiteAdapter,
    }

    # 常见别名
    _aliases: Dict[str, str] = {
        "postgres": "postgresql",
        "mssql": "sqlserver",
        "sql server": "sqlserver",
    }

    @classmethod
    def _normalize(cls, db_type: str) -> str:
        key = (db_type or "").strip().lower()
        return cls._aliases.get(key, key)

    @classmethod
    def get_adapter(cls, db_type: str) -> DatabaseAdapter:
        """
        根据数据库类型获取对应的适配器实例

        Args:
            db_type: 数据库类型，如 'PostgreSQL', 'MySQL', 'SQLServer', 'SQLite'

        Returns:
            数据库适配器实例

        Raises:
            ConfigError: 如果数据库类型不支持
        """
        adapter_class = cls._adapters.get(cls._normalize(db_type))

        if not adapter_class:
            raise ConfigError(
                f"Unsupported database type: {db_type}",
                detail=f"supported types: {', '.join(cls.get_supported_types())}",
            )

        return adapter_class()

    @classmethod
    def register_adapter(cls, db_type: str, adapter_class: Callable[[], DatabaseAdapter]):
        """
        注册新的数据库适配器

        Args:
            db_type: 数据库类型名称
            adapter_class: 适配器类
        """
        cls._adapters[db_type.lower()] = adapter_class

    @classmethod
    def get_supported_types(cls) -> List[str]:
        """获取所有支持的数据库类型"""
        return list(cls._adapters.keys())

    @classmethod
    def is_supported(cls, db_type: str) -> bool:
        """检查是否支持指定的数据库类型"""
        return cls._normalize(db_type) in cls._adapters

    @classmethod
    def canonical_type(cls, db_type: str) -> str:
        """返回规范的类型名，如 'postgres' -> 'PostgreSQL'"""
        return cls.get_adapter(db_type).get_db_type()
