"""
LLM SQL合成器
通过 LiteLLM 调用模型，把自然语言问题翻译成一条 SELECT 语句
"""
import asyncio
import json
import os
from typing import Any, Dict, List, Optional

import litellm
from litellm import acompletion
from pydantic import ValidationError

from ...utils.logger import get_logger, log_llm_error
from ..database_adapters import DatabaseAdapterFactory
from ..dto import ChartSuggestion, ChatMessage, SynthesisResult, TableSchema
from ..exceptions import NoActiveCredential, QueryTimeout, UpstreamError
from ..schema_utils import serialize_schema
from .base import BaseSynthesizer

logger = get_logger(__name__)


def format_history(history: List[ChatMessage]) -> str:
    """把聊天记录渲染成提示词文本"""
    lines = []
    for message in history:
        content = message.content
        if message.sender == "user":
            lines.append(f"User: {content.text or ''}")
            continue
        if content.error:
            lines.append(f"Assistant (error): {content.error}")
            continue
        lines.append(f"Assistant: {content.text or ''}")
        if content.sql:
            lines.append(f"SQL: {content.sql}")
    return "\n".join(lines)


class LLMSynthesizer(BaseSynthesizer):
    """LLM SQL合成器"""

    name = "llm"

    def __init__(
        self,
        credential_provider,
        default_model: Optional[str] = None,
        timeout: Optional[float] = None,
        history_window: Optional[int] = None,
    ):
        """
        Args:
            credential_provider: 提供 get_active_credential() 和 record_usage() 的对象
            default_model: 凭证没有指定模型时使用，默认读取DEFAULT_MODEL
            timeout: 单次调用超时（秒），默认读取SYNTHESIS_TIMEOUT
        """
        super().__init__(history_window)
        self.credential_provider = credential_provider
        self.default_model = default_model or os.getenv("DEFAULT_MODEL", "gemini/gemini-2.0-flash")
        self.timeout = timeout or float(os.getenv("SYNTHESIS_TIMEOUT", "60"))

        litellm.set_verbose = os.getenv("LITELLM_VERBOSE", "False").lower() == "true"

    async def _generate(
        self,
        prompt: str,
        schema: List[TableSchema],
        history: List[ChatMessage],
        dialect: str,
    ) -> SynthesisResult:
        credential = self.credential_provider.get_active_credential()
        if credential is None:
            raise NoActiveCredential()

        model = credential.model or self.default_model
        messages = [
            {"role": "system", "content": self.build_system_prompt(schema, history, dialect)},
            {"role": "user", "content": prompt},
        ]

        logger.info(f"LLM请求: model={model}, 历史消息数={len(history)}, 表数={len(schema)}")

        try:
            response = await asyncio.wait_for(
                acompletion(
                    model=model,
                    messages=messages,
                    api_key=credential.api_key,
                    temperature=0.1,
                    response_format={"type": "json_object"},
                ),
                timeout=self.timeout,
            )
            content = response.choices[0].message.content
        except asyncio.TimeoutError:
            logger.warning(f"LLM调用超时: model={model}, timeout={self.timeout}s")
            raise QueryTimeout("Synthesis", self.timeout)
        except Exception as e:
            log_llm_error(logger, model, prompt, e)
            raise UpstreamError("The AI service request failed", detail=str(e)) from e

        logger.debug(f"LLM响应:\n{'=' * 60}\n{content}\n{'=' * 60}")

        result = self.parse_response(content)
        self.credential_provider.record_usage(credential.key_id)
        return result

    def build_system_prompt(self, schema: List[TableSchema], history: List[ChatMessage], dialect: str) -> str:
        adapter = DatabaseAdapterFactory.get_adapter(dialect)
        db_type = adapter.get_db_type()
        limit_example = adapter.select_top(["*"], "orders", 10)
        conversation = format_history(history) or "(no previous messages)"

        return f"""You are an expert SQL analyst. Translate the user's question into a single {db_type} SQL query.

Database schema:
{serialize_schema(schema)}

Conversation so far:
{conversation}

Rules:
- Generate exactly one read-only SELECT statement. Never generate INSERT, UPDATE, DELETE, DROP, ALTER, CREATE or any other statement that changes data or schema.
- Use only the tables and columns listed in the schema.
- Use {db_type} syntax. To limit rows write it like: {limit_example}
- Give every aggregate column an alias, for example COUNT(*) AS total_count.
- If the question cannot be answered from the schema, set "sql" to a SQL comment starting with "--" and explain why in "text".

Respond with ONLY a JSON object, without markdown or any other text, using these keys in this order:
{{"sql": "...", "text": "...", "chartSuggestion": {{"chartType": "bar" or "pie", "labelsColumn": "...", "dataColumn": "..."}}}}

"text" is a short explanation of the result for the user.
"chartSuggestion" is optional. Include it only when the result suits a chart: labelsColumn must be a categorical column of the result and dataColumn a numeric column of the result."""

    def parse_response(self, content: Optional[str]) -> SynthesisResult:
        """
        解析模型返回的 JSON

        Raises:
            UpstreamError: 不是合法 JSON 或缺少 sql/text
        """
        try:
            data = json.loads(content or "")
        except json.JSONDecodeError as e:
            logger.error(f"解析LLM响应失败: {e}", exc_info=True)
            raise UpstreamError("Could not parse the AI response", detail=str(e)) from e

        if not isinstance(data, dict):
            raise UpstreamError("Could not parse the AI response", detail="expected a JSON object")

        sql = data.get("sql")
        text = data.get("text")
        if not isinstance(sql, str) or not isinstance(text, str):
            raise UpstreamError("Could not parse the AI response", detail="missing 'sql' or 'text'")

        return SynthesisResult(
            text=text,
            sql=sql.strip(),
            chart_suggestion=self._parse_chart(data.get("chartSuggestion")),
        )

    @staticmethod
    def _parse_chart(raw: Any) -> Optional[ChartSuggestion]:
        if not raw:
            return None
        try:
            return ChartSuggestion.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"忽略无效的图表建议: {raw}, error={e.error_count()}个错误")
            return None
