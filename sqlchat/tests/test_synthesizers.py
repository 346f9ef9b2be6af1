"""
SQL合成器测试
"""
import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest

from sqlchat.services.dto import (
    ChatMessage,
    ChatMessageContent,
    ColumnSchema,
    Credential,
    GovernanceRule,
    TableSchema,
)
from sqlchat.services.exceptions import (
    GovernanceViolation,
    NoActiveCredential,
    QueryTimeout,
    UnsafeQueryRejected,
    UpstreamError,
)
from sqlchat.services.synthesizers import (
    AutoSynthesizer,
    LLMSynthesizer,
    RuleBasedSynthesizer,
    build_synthesizer,
)
from sqlchat.services.sql_guard import find_forbidden_keyword
from sqlchat.services.synthesizers.rule_based import NO_TABLE_SQL, is_categorical


def _llm_response(payload):
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _history(count):
    return [
        ChatMessage(
            id=str(i),
            sender="user" if i % 2 == 0 else "ai",
            content=ChatMessageContent(text=f"message {i}"),
            timestamp="2024-01-01T00:00:00",
        )
        for i in range(count)
    ]


class TestRuleBasedSynthesizer:
    """测试规则合成"""

    @pytest.mark.asyncio
    async def test_count_question(self, patients_schema):
        result = await RuleBasedSynthesizer().synthesize("how many patients are there", patients_schema, [], "SQLite")
        assert result.sql == "SELECT COUNT(*) AS total_count FROM patients;"
        assert result.chart_suggestion is None

    @pytest.mark.asyncio
    async def test_group_by_named_column(self, patients_schema):
        result = await RuleBasedSynthesizer().synthesize("patients by gender", patients_schema, [], "SQLite")
        assert result.sql == (
            "SELECT gender, COUNT(*) AS gender_count FROM patients "
            "GROUP BY gender ORDER BY gender_count DESC, MIN(id) ASC;"
        )
        chart = result.chart_suggestion
        assert chart.chart_type == "bar"
        assert chart.labels_column == "gender"
        assert chart.data_column == "gender_count"

    @pytest.mark.asyncio
    async def test_distribution_uses_pie(self, patients_schema):
        result = await RuleBasedSynthesizer().synthesize("show the distribution of patients", patients_schema, [], "SQLite")
        assert result.chart_suggestion.chart_type == "pie"
        assert "GROUP BY gender" in result.sql

    @pytest.mark.asyncio
    async def test_group_without_id_orders_by_value(self):
        schema = [TableSchema(table_name="visits", columns=[
            ColumnSchema(name="clinic", type="varchar(50)"),
            ColumnSchema(name="visit_date", type="date"),
        ])]
        result = await RuleBasedSynthesizer().synthesize("visits per clinic", schema, [], "PostgreSQL")
        assert result.sql.endswith("ORDER BY clinic_count DESC, clinic ASC;")

    @pytest.mark.asyncio
    async def test_preview_uses_dialect_limit(self, patients_schema):
        result = await RuleBasedSynthesizer().synthesize("show me patients", patients_schema, [], "SQLServer")
        assert result.sql == "SELECT TOP 10 id, first_name, last_name, date_of_birth, gender FROM patients;"

    @pytest.mark.asyncio
    async def test_quotes_identifiers_that_need_it(self):
        schema = [TableSchema(table_name="Order Items", columns=[ColumnSchema(name="Status", type="TEXT")])]
        result = await RuleBasedSynthesizer().synthesize("how many order items", schema, [], "MySQL")
        assert result.sql == "SELECT COUNT(*) AS total_count FROM `Order Items`;"

    @pytest.mark.asyncio
    async def test_longest_table_name_wins(self):
        schema = [
            TableSchema(table_name="patient", columns=[ColumnSchema(name="id", type="INTEGER")]),
            TableSchema(table_name="patient_visits", columns=[ColumnSchema(name="id", type="INTEGER")]),
        ]
        result = await RuleBasedSynthesizer().synthesize("count patient visits", schema, [], "SQLite")
        assert result.sql == "SELECT COUNT(*) AS total_count FROM patient_visits;"

    @pytest.mark.asyncio
    async def test_no_matching_table_returns_placeholder(self, patients_schema):
        result = await RuleBasedSynthesizer().synthesize("what is the weather", patients_schema, [], "SQLite")
        assert result.sql == NO_TABLE_SQL
        assert result.is_placeholder
        assert "patients" in result.text

    @pytest.mark.asyncio
    async def test_rules_checked_when_given(self, patients_schema):
        rules = [GovernanceRule(id="r1", rule="Block patients")]
        with pytest.raises(GovernanceViolation):
            await RuleBasedSynthesizer().synthesize("how many patients", patients_schema, [], "SQLite", rules)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prompt", [
        "show patients with discounts",
        "list all patients and their accounts",
        "patients recounted last week",
    ])
    async def test_count_needs_whole_word(self, patients_schema, prompt):
        result = await RuleBasedSynthesizer().synthesize(prompt, patients_schema, [], "SQLite")
        assert "COUNT(*)" not in result.sql
        assert result.sql.endswith("FROM patients LIMIT 10;")

    @pytest.mark.asyncio
    async def test_count_word_still_matches(self, patients_schema):
        result = await RuleBasedSynthesizer().synthesize("count the patients!", patients_schema, [], "SQLite")
        assert result.sql == "SELECT COUNT(*) AS total_count FROM patients;"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("prompt", [
        "",
        "?!...;--",
        "delete all patients",
        "drop table patients",
        "update patients set gender = 'X'",
        "insert a new patient; DROP TABLE patients",
        "patients by gender " * 200,
    ])
    async def test_output_is_select_or_placeholder(self, patients_schema, prompt):
        """任意输入都只产生 SELECT 或占位注释"""
        result = await RuleBasedSynthesizer().synthesize(prompt, patients_schema, [], "SQLite")
        if result.is_placeholder:
            assert result.sql.startswith("--")
        else:
            assert result.sql.upper().startswith("SELECT ")
            assert find_forbidden_keyword(result.sql) is None

    def test_categorical_columns(self):
        assert is_categorical(ColumnSchema(name="gender", type="TEXT"))
        assert is_categorical(ColumnSchema(name="active", type="boolean"))
        assert not is_categorical(ColumnSchema(name="first_name", type="TEXT"))
        assert not is_categorical(ColumnSchema(name="patient_id", type="varchar(36)"))
        assert not is_categorical(ColumnSchema(name="age", type="INTEGER"))


class TestLLMSynthesizer:
    """测试LLM合成（模拟LiteLLM）"""

    def _provider(self, credential=None):
        provider = Mock()
        provider.get_active_credential = Mock(return_value=credential)
        provider.record_usage = Mock()
        return provider

    @pytest.mark.asyncio
    async def test_parses_json_and_records_usage(self, patients_schema):
        provider = self._provider(Credential(api_key="sk-test", model="openai/gpt-4o-mini", key_id="k1"))
        payload = {
            "sql": "SELECT gender, COUNT(*) AS gender_count FROM patients GROUP BY gender;",
            "text": "Patients grouped by gender.",
            "chartSuggestion": {"chartType": "bar", "labelsColumn": "gender", "dataColumn": "gender_count"},
        }
        with patch("sqlchat.services.synthesizers.llm.acompletion", new=AsyncMock(return_value=_llm_response(payload))) as mocked:
            result = await LLMSynthesizer(provider).synthesize("patients by gender", patients_schema, [], "SQLite")

        assert result.sql.startswith("SELECT gender")
        assert result.chart_suggestion.data_column == "gender_count"
        provider.record_usage.assert_called_once_with("k1")

        kwargs = mocked.call_args.kwargs
        assert kwargs["model"] == "openai/gpt-4o-mini"
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert 'Table "patients" has columns: id (INTEGER)' in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_no_credential(self, patients_schema):
        with pytest.raises(NoActiveCredential):
            await LLMSynthesizer(self._provider()).synthesize("x", patients_schema, [], "SQLite")

    @pytest.mark.asyncio
    async def test_invalid_json_is_upstream_error(self, patients_schema):
        provider = self._provider(Credential(api_key="sk-test"))
        with patch("sqlchat.services.synthesizers.llm.acompletion", new=AsyncMock(return_value=_llm_response("```json {}```"))):
            with pytest.raises(UpstreamError):
                await LLMSynthesizer(provider).synthesize("x", patients_schema, [], "SQLite")
        provider.record_usage.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_error_is_upstream_error(self, patients_schema):
        provider = self._provider(Credential(api_key="sk-test"))
        with patch("sqlchat.services.synthesizers.llm.acompletion", new=AsyncMock(side_effect=RuntimeError("boom"))):
            with pytest.raises(UpstreamError, match="boom"):
                await LLMSynthesizer(provider).synthesize("x", patients_schema, [], "SQLite")

    @pytest.mark.asyncio
    async def test_empty_choices_is_upstream_error(self, patients_schema):
        provider = self._provider(Credential(api_key="sk-test"))
        empty = SimpleNamespace(choices=[])
        with patch("sqlchat.services.synthesizers.llm.acompletion", new=AsyncMock(return_value=empty)):
            with pytest.raises(UpstreamError):
                await LLMSynthesizer(provider).synthesize("x", patients_schema, [], "SQLite")
        provider.record_usage.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout(self, patients_schema):
        async def slow(**kwargs):
            await asyncio.sleep(5)

        provider = self._provider(Credential(api_key="sk-test"))
        with patch("sqlchat.services.synthesizers.llm.acompletion", new=slow):
            with pytest.raises(QueryTimeout):
                await LLMSynthesizer(provider, timeout=0.05).synthesize("x", patients_schema, [], "SQLite")

    @pytest.mark.asyncio
    async def test_unsafe_sql_rejected(self, patients_schema):
        provider = self._provider(Credential(api_key="sk-test"))
        payload = {"sql": "DELETE FROM patients", "text": "done"}
        with patch("sqlchat.services.synthesizers.llm.acompletion", new=AsyncMock(return_value=_llm_response(payload))):
            with pytest.raises(UnsafeQueryRejected):
                await LLMSynthesizer(provider).synthesize("remove everyone", patients_schema, [], "SQLite")

    @pytest.mark.asyncio
    async def test_invalid_chart_dropped_and_placeholder_kept(self, patients_schema):
        provider = self._provider(Credential(api_key="sk-test"))
        payload = {
            "sql": "-- cannot answer",
            "text": "There is no billing data.",
            "chartSuggestion": {"chartType": "line", "labelsColumn": "a", "dataColumn": "b"},
        }
        with patch("sqlchat.services.synthesizers.llm.acompletion", new=AsyncMock(return_value=_llm_response(payload))):
            result = await LLMSynthesizer(provider).synthesize("billing totals", patients_schema, [], "SQLite")
        assert result.is_placeholder
        assert result.chart_suggestion is None

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, patients_schema):
        provider = self._provider(Credential(api_key="sk-test"))
        payload = {"sql": "SELECT 1;", "text": "ok"}
        with patch("sqlchat.services.synthesizers.llm.acompletion", new=AsyncMock(return_value=_llm_response(payload))) as mocked:
            await LLMSynthesizer(provider, history_window=3).synthesize("x", patients_schema, _history(10), "SQLite")

        system_prompt = mocked.call_args.kwargs["messages"][0]["content"]
        assert "message 9" in system_prompt
        assert "message 7" in system_prompt
        assert "message 6" not in system_prompt


class TestBuildSynthesizer:

    def test_modes(self):
        provider = Mock()
        assert isinstance(build_synthesizer("rule_based"), RuleBasedSynthesizer)
        assert isinstance(build_synthesizer("llm", provider), LLMSynthesizer)
        assert isinstance(build_synthesizer("auto", provider), AutoSynthesizer)
        with pytest.raises(ValueError):
            build_synthesizer("magic", provider)

    def test_auto_falls_back_without_credential(self):
        provider = Mock()
        provider.get_active_credential = Mock(return_value=None)
        auto = build_synthesizer("auto", provider)
        assert isinstance(auto.select(), RuleBasedSynthesizer)

        provider.get_active_credential = Mock(return_value=Credential(api_key="sk-test"))
        assert isinstance(auto.select(), LLMSynthesizer)
