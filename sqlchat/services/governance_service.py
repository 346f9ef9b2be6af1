"""
治理规则服务
规则是自由文本，例如 "Block queries on the appointments table"。
去掉停用词后得到关键字集合，只有当所有关键字都出现在用户输入中时才拦截请求。
"""
import re
import uuid
from typing import List, Optional

from ..database import Database
from ..models.governance_rule import GovernanceRule as GovernanceRuleModel
from ..utils.logger import get_logger
from .dto import GovernanceDecision, GovernanceRule
from .exceptions import GovernanceViolation

logger = get_logger(__name__)

STOP_WORDS = frozenset({
    # 冠词、代词、连词
    "a", "an", "the", "this", "that", "these", "those", "any", "all", "some",
    "and", "or", "but", "not", "no", "nor", "it", "its", "their", "them",
    "they", "we", "our", "you", "your", "i", "me", "my", "anyone", "everyone",
    "is", "are", "be", "been", "being", "was", "were", "should", "must",
    "can", "cannot", "may", "might", "will", "would", "shall", "do", "does",
    "don", "t",
    # 介词
    "on", "in", "of", "to", "for", "from", "with", "without", "about", "at",
    "by", "into", "onto", "over", "under", "within", "against", "regarding",
    "related", "containing", "involving", "per",
    # 泛化动词
    "block", "blocks", "blocked", "deny", "denied", "prevent", "prohibit",
    "disallow", "forbid", "restrict", "allow", "allowed", "show", "shows",
    "showing", "display", "list", "get", "give", "see", "view", "access",
    "accessing", "read", "reading", "select", "selecting", "return", "fetch",
    "retrieve", "query", "queries", "querying", "ask", "asking", "request",
    "requests", "use", "using", "reveal", "expose", "find",
    # 泛化名词
    "table", "tables", "data", "database", "databases", "record", "records",
    "row", "rows", "column", "columns", "field", "fields", "information",
    "info", "details", "value", "values",
})

_TOKEN_PATTERN = re.compile(r"[a-z0-9_]+")


class GovernanceEngine:
    """基于关键字包含的规则匹配"""

    def __init__(self, stop_words=STOP_WORDS):
        self.stop_words = stop_words

    def extract_keywords(self, rule_text: str) -> List[str]:
        """
        提取规则中的关键字（小写、去停用词、按首次出现去重）

        Args:
            rule_text: 规则文本

        Returns:
            关键字列表
        """
        keywords = []
        for token in _TOKEN_PATTERN.findall(rule_text.lower()):
            if token in self.stop_words or token in keywords:
                continue
            keywords.append(token)
        return keywords

    def evaluate(self, prompt: str, rules: List[GovernanceRule]) -> GovernanceDecision:
        """
        检查用户输入是否违反任何启用的规则

        规则按传入顺序检查，返回第一条被违反的规则

        Args:
            prompt: 用户输入
            rules: 规则列表

        Returns:
            GovernanceDecision，allowed=False 时 rule 为被违反的规则
        """
        lowered = prompt.lower()
        for rule in rules:
            if not rule.is_active:
                continue

            keywords = self.extract_keywords(rule.rule)
            if not keywords:
                continue

            if all(keyword in lowered for keyword in keywords):
                logger.info(f"请求被治理规则拦截: rule_id={rule.id}, keywords={keywords}")
                return GovernanceDecision(allowed=False, rule=rule, keywords=keywords)

        return GovernanceDecision(allowed=True)

    def enforce(self, prompt: str, rules: List[GovernanceRule]) -> None:
        """
        检查并在违反规则时抛出异常

        Raises:
            GovernanceViolation: 请求违反了规则
        """
        decision = self.evaluate(prompt, rules)
        if not decision.allowed:
            raise GovernanceViolation(decision.rule.rule)


class GovernanceService:
    """治理规则的增删改查"""

    def __init__(self, database: Database, engine: Optional[GovernanceEngine] = None):
        """
        Args:
            database: 配置数据库实例
            engine: 规则匹配引擎
        """
        self.database = database
        self.engine = engine or GovernanceEngine()

    @staticmethod
    def _to_dto(record: GovernanceRuleModel) -> GovernanceRule:
        return GovernanceRule(
            id=record.id,
            rule=record.rule,
            is_active=bool(record.is_active),
            created_at=record.created_at,
        )

    def list_rules(self, active_only: bool = False) -> List[GovernanceRule]:
        """按创建时间顺序返回规则"""
        with self.database.get_session() as session:
            query = session.query(GovernanceRuleModel)
            if active_only:
                query = query.filter(GovernanceRuleModel.is_active.is_(True))
            records = query.order_by(GovernanceRuleModel.created_at.asc()).all()
            return [self._to_dto(record) for record in records]

    def get_rule(self, rule_id: str) -> Optional[GovernanceRule]:
        with self.database.get_session() as session:
            record = session.query(GovernanceRuleModel).filter_by(id=rule_id).first()
            return self._to_dto(record) if record else None

    def add_rule(self, rule_text: str, is_active: bool = True) -> GovernanceRule:
        """新增规则，默认启用"""
        record = GovernanceRuleModel(
            id=str(uuid.uuid4()),
            rule=rule_text.strip(),
            is_active=is_active,
        )
        with self.database.get_session() as session:
            session.add(record)
            session.flush()
            rule = self._to_dto(record)

        logger.info(f"治理规则创建成功: id={rule.id}, keywords={self.engine.extract_keywords(rule.rule)}")
        return rule

    def update_rule(
        self,
        rule_id: str,
        rule_text: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Optional[GovernanceRule]:
        """更新规则文本或启用状态，规则不存在时返回None"""
        with self.database.get_session() as session:
            record = session.query(GovernanceRuleModel).filter_by(id=rule_id).first()
            if not record:
                return None

            if rule_text is not None:
                record.rule = rule_text.strip()
            if is_active is not None:
                record.is_active = is_active
            session.flush()
            rule = self._to_dto(record)

        logger.info(f"治理规则更新成功: id={rule_id}, is_active={rule.is_active}")
        return rule

    def delete_rule(self, rule_id: str) -> bool:
        """删除规则，返回是否存在"""
        with self.database.get_session() as session:
            deleted = session.query(GovernanceRuleModel).filter_by(id=rule_id).delete()

        logger.info(f"治理规则删除: id={rule_id}, deleted={bool(deleted)}")
        return bool(deleted)

    def check(self, prompt: str) -> None:
        """
        用当前启用的规则检查用户输入

        Raises:
            GovernanceViolation: 请求违反了规则
        """
        self.engine.enforce(prompt, self.list_rules(active_only=True))
