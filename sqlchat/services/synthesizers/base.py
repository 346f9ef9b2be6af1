"""
SQL合成器基类
"""
import os
from typing import List, Optional

from ...utils.logger import get_logger
from ..dto import ChatMessage, GovernanceRule, SynthesisResult, TableSchema
from ..governance_service import GovernanceEngine
from ..sql_guard import ensure_select_only

logger = get_logger(__name__)


class BaseSynthesizer:
    """SQL合成器基类"""

    name = "base"

    def __init__(self, history_window: Optional[int] = None):
        """
        Args:
            history_window: 传给合成器的最近消息条数，默认读取HISTORY_WINDOW
        """
        self.history_window = history_window or int(os.getenv("HISTORY_WINDOW", "20"))
        self.governance = GovernanceEngine()

    async def synthesize(
        self,
        prompt: str,
        schema: List[TableSchema],
        history: List[ChatMessage],
        dialect: str,
        rules: Optional[List[GovernanceRule]] = None,
    ) -> SynthesisResult:
        """
        根据自然语言生成SQL

        Args:
            prompt: 用户输入
            schema: 目标数据库的表结构
            history: 本轮之前的聊天记录
            dialect: 数据库类型
            rules: 可选的治理规则，传入时先检查

        Returns:
            SynthesisResult，sql 以 -- 开头表示不执行

        Raises:
            GovernanceViolation: 违反治理规则
            NoActiveCredential / UpstreamError / QueryTimeout: 由具体实现抛出
            UnsafeQueryRejected: 生成了非 SELECT 语句
        """
        if rules:
            self.governance.enforce(prompt, rules)

        result = await self._generate(prompt, schema, self.recent_history(history), dialect)

        if not result.is_placeholder:
            result.sql = ensure_select_only(result.sql)

        logger.info(f"SQL合成完成: synthesizer={self.name}, placeholder={result.is_placeholder}")
        return result

    async def _generate(
        self,
        prompt: str,
        schema: List[TableSchema],
        history: List[ChatMessage],
        dialect: str,
    ) -> SynthesisResult:
        raise NotImplementedError("子类必须实现 _generate 方法")

    def recent_history(self, history: List[ChatMessage]) -> List[ChatMessage]:
        """只保留最近 history_window 条消息"""
        if len(history) <= self.history_window:
            return list(history)
        return list(history[-self.history_window:])
