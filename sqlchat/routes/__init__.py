"""
API路由模块
"""
from .databases import router as databases_router
from .governance_rules import router as governance_rules_router
from .api_keys import router as api_keys_router
from .conversations import router as conversations_router

__all__ = [
    "databases_router",
    "governance_rules_router",
    "api_keys_router",
    "conversations_router",
]
