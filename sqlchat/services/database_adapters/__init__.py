"""
数据库适配器模块
每种数据库一个适配器，提供统一的连接、查询和 schema 获取接口
"""
from .base import ConnectionHandle, DatabaseAdapter
from .factory import DatabaseAdapterFactory
from .mysql import MySQLAdapter
from .postgresql import PostgreSQLAdapter
from .sqlite import SQLiteAdapter
from .sqlserver import SQLServerAdapter

__all__ = [
    'ConnectionHandle',
    'DatabaseAdapter',
    'DatabaseAdapterFactory',
    'MySQLAdapter',
    'PostgreSQLAdapter',
    'SQLiteAdapter',
    'SQLServerAdapter',
]
