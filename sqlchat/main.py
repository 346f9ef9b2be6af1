"""
SQL Chat - 后端主入口
"""
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from .database import init_database
from .services import get_database_connector
from .utils.logger import setup_logger
from .routes import (
    databases_router,
    governance_rules_router,
    api_keys_router,
    conversations_router,
)

# 加载环境变量
load_dotenv()

# 初始化日志
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    worker_id = os.getpid()
    logger.info(f"Worker {worker_id} 正在启动...")

    try:
        init_database()
        logger.info(f"Worker {worker_id} 配置数据库初始化成功")
    except Exception as e:
        logger.error(f"Worker {worker_id} 配置数据库初始化失败: {e}", exc_info=True)
        raise

    logger.info(f"Worker {worker_id} 启动完成")

    yield

    logger.info(f"Worker {worker_id} 正在关闭...")
    await get_database_connector().close_all_connections()


app = FastAPI(
    title="SQL Chat API",
    description="用自然语言查询数据库：治理规则检查、SQL合成与只读执行",
    version="1.0.0",
    lifespan=lifespan
)

# 注册路由
app.include_router(databases_router)
app.include_router(governance_rules_router)
app.include_router(api_keys_router)
app.include_router(conversations_router)

# CORS配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {"message": "SQL Chat API", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    host = os.getenv("BACKEND_HOST", "0.0.0.0")
    port = int(os.getenv("BACKEND_PORT", 8000))
    log_level = os.getenv("LOG_LEVEL", "info").lower()

    logger.info(f"启动服务器: {host}:{port}, log_level={log_level}")

    uvicorn.run(
        "sqlchat.main:app",
        host=host,
        port=port,
        log_level=log_level,
        access_log=log_level == "debug",
    )
