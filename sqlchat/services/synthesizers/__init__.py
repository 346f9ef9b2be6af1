"""
SQL合成器模块 - 使用策略模式在 LLM 和规则合成之间切换
"""
import os
from typing import List, Optional

from ..dto import ChatMessage, GovernanceRule, SynthesisResult, TableSchema
from .base import BaseSynthesizer
from .llm import LLMSynthesizer
from .rule_based import RuleBasedSynthesizer


class AutoSynthesizer:
    """有可用凭证时使用 LLM，否则使用规则合成"""

    name = "auto"

    def __init__(self, llm: LLMSynthesizer, fallback: RuleBasedSynthesizer):
        self.llm = llm
        self.fallback = fallback

    def select(self) -> BaseSynthesizer:
        if self.llm.credential_provider.get_active_credential() is None:
            return self.fallback
        return self.llm

    async def synthesize(
        self,
        prompt: str,
        schema: List[TableSchema],
        history: List[ChatMessage],
        dialect: str,
        rules: Optional[List[GovernanceRule]] = None,
    ) -> SynthesisResult:
        return await self.select().synthesize(prompt, schema, history, dialect, rules)


def build_synthesizer(mode: Optional[str] = None, credential_provider=None):
    """
    根据 SYNTHESIZER_MODE 创建合成器

    Args:
        mode: auto | llm | rule_based
        credential_provider: LLM 凭证来源（ApiKeyService）

    Raises:
        ValueError: 未知模式，或 llm/auto 模式缺少凭证来源
    """
    mode = (mode or os.getenv("SYNTHESIZER_MODE", "auto")).strip().lower()

    if mode == "rule_based":
        return RuleBasedSynthesizer()

    if credential_provider is None:
        raise ValueError(f"Synthesizer mode '{mode}' requires a credential provider")

    if mode == "llm":
        return LLMSynthesizer(credential_provider)
    if mode == "auto":
        return AutoSynthesizer(LLMSynthesizer(credential_provider), RuleBasedSynthesizer())

    raise ValueError(f"Unknown synthesizer mode: {mode}")


__all__ = [
    'AutoSynthesizer',
    'BaseSynthesizer',
    'LLMSynthesizer',
    'RuleBasedSynthesizer',
    'build_synthesizer',
]
