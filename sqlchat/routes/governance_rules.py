"""
治理规则API路由
"""
from typing import List, Optional
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ..services import get_governance_service
from ..services.dto import GovernanceRule
from ..utils.logger import get_logger
from .errors import not_found

logger = get_logger(__name__)
router = APIRouter(prefix="/api/governance-rules", tags=["governance-rules"])


# ============ Request/Response Models ============

class CreateRuleRequest(BaseModel):
    """创建治理规则请求"""
    model_config = ConfigDict(populate_by_name=True)

    rule: str = Field(..., description="规则文本，例如 Block queries on the appointments table")
    is_active: bool = Field(True, alias="isActive")


class UpdateRuleRequest(BaseModel):
    """更新治理规则请求"""
    model_config = ConfigDict(populate_by_name=True)

    rule: Optional[str] = None
    is_active: Optional[bool] = Field(None, alias="isActive")


class RuleResponse(GovernanceRule):
    """治理规则响应，附带提取出的关键字"""
    keywords: List[str] = Field(default_factory=list)


def _to_response(rule: GovernanceRule) -> RuleResponse:
    keywords = get_governance_service().engine.extract_keywords(rule.rule)
    return RuleResponse(**rule.model_dump(), keywords=keywords)


# ============ API Endpoints ============

@router.get("", response_model=List[RuleResponse], response_model_by_alias=True)
async def list_governance_rules():
    rules = get_governance_service().list_rules()
    return [_to_response(rule) for rule in rules]


@router.post("", response_model=RuleResponse, response_model_by_alias=True, status_code=status.HTTP_201_CREATED)
async def create_governance_rule(request: CreateRuleRequest):
    """
    创建治理规则
    """
    if not request.rule.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="rule must not be empty")

    logger.info(f"收到创建治理规则请求: rule={request.rule}")
    rule = get_governance_service().add_rule(request.rule, request.is_active)
    return _to_response(rule)


@router.put("/{rule_id}", response_model=RuleResponse, response_model_by_alias=True)
async def update_governance_rule(rule_id: str, request: UpdateRuleRequest):
    """
    更新规则文本或启用状态
    """
    if request.rule is not None and not request.rule.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="rule must not be empty")

    rule = get_governance_service().update_rule(rule_id, request.rule, request.is_active)
    if rule is None:
        raise not_found("Governance rule", rule_id)
    return _to_response(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_governance_rule(rule_id: str):
    if not get_governance_service().delete_rule(rule_id):
        raise not_found("Governance rule", rule_id)
    return None
