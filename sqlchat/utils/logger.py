"""
日志配置模块
控制台和文件两路输出；SQL、LLM、数据库连接错误带上下文记录，密码等字段脱敏
"""
import logging
import os
import sys
import traceback
from typing import Optional, Dict, Any
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# 记录日志前需要脱敏的字段
SECRET_FIELDS = ("password", "encrypted_password", "file_content", "encrypted_file_content", "api_key")


class DetailedFormatter(logging.Formatter):
    """在日志行后追加 extra_context"""

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        if getattr(record, "extra_context", None):
            formatted += f"\n上下文信息: {record.extra_context}"
        return formatted


def setup_logger(
    name: str = "sqlchat",
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    设置日志记录器

    Args:
        name: 日志记录器名称
        log_level: 日志级别，默认读取 LOG_LEVEL
        log_file: 日志文件路径，默认读取 LOG_FILE；为空字符串时不写文件
        console_output: 是否输出到控制台

    Returns:
        配置好的日志记录器
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")
    if log_file is None:
        log_file = os.getenv("LOG_FILE", "./logs/app.log")

    level = getattr(logging, log_level.upper())
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # 清除已有的处理器（避免重复添加）
    logger.handlers.clear()
    formatter = DetailedFormatter(LOG_FORMAT, DATE_FORMAT)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str = "sqlchat") -> logging.Logger:
    """获取日志记录器，没有处理器时先初始化"""
    logger = logging.getLogger(name)
    if not logger.handlers:
        setup_logger(name)
    return logger


def mask_secrets(data: Dict[str, Any]) -> Dict[str, Any]:
    """返回副本，非空的敏感字段替换为 ***"""
    return {
        key: "***" if key in SECRET_FIELDS and value else value
        for key, value in data.items()
    }


def _log_with_context(logger: logging.Logger, message: str, error: Exception, context: Dict[str, Any]):
    trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    logger.error(
        f"{message}: {type(error).__name__}: {error}\n{trace}",
        extra={"extra_context": context}
    )


def log_sql_error(
    logger: logging.Logger,
    sql: str,
    connection_id: str,
    error: Exception,
    dialect: Optional[str] = None
):
    """记录SQL执行错误"""
    _log_with_context(logger, "SQL执行失败", error, {
        "sql": sql,
        "connection_id": connection_id,
        "dialect": dialect,
    })


def log_llm_error(logger: logging.Logger, model: str, prompt: str, error: Exception):
    """
    记录LLM服务调用错误

    Args:
        logger: 日志记录器
        model: 模型名称
        prompt: 用户输入，只记录前500个字符
        error: 异常对象
    """
    _log_with_context(logger, "LLM服务调用失败", error, {
        "model": model,
        "prompt": prompt[:500] if prompt else None,
    })


def log_database_connection_error(logger: logging.Logger, db_config: Dict[str, Any], error: Exception):
    """记录数据库连接错误，连接信息先脱敏"""
    _log_with_context(logger, "数据库连接失败", error, {"db_config": mask_secrets(db_config)})
