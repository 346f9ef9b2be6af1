"""
聊天编排器测试（端到端场景使用SQLite测试库和规则合成）
"""
import asyncio
import sqlite3
from unittest.mock import AsyncMock, Mock

import pytest

from sqlchat.services.chat_orchestrator import (
    ChatOrchestrator,
    Conversation,
    ConversationManager,
    TurnState,
    chart_applies,
)
from sqlchat.services.connection_service import ConnectionService
from sqlchat.services.conversation_store import ConversationStore
from sqlchat.services.database_connector import DatabaseConnector
from sqlchat.services.dto import ChartSuggestion, QueryResult, SynthesisResult
from sqlchat.services.exceptions import ConversationBusy, UpstreamError
from sqlchat.services.governance_service import GovernanceService
from sqlchat.services.synthesizers import RuleBasedSynthesizer


@pytest.fixture
def connector():
    return DatabaseConnector(query_timeout=5)


@pytest.fixture
def governance(config_db):
    return GovernanceService(config_db)


@pytest.fixture
def orchestrator(connector, governance):
    return ChatOrchestrator(connector, RuleBasedSynthesizer(), governance)


@pytest.fixture
def conversation(patients_details, patients_schema):
    return Conversation("conv-1", patients_details, patients_schema)


class TestChatOrchestrator:
    """测试一轮对话的完整流程"""

    @pytest.mark.asyncio
    async def test_count_scenario(self, orchestrator, conversation, connector):
        reply = await orchestrator.send(conversation, "how many patients are there")

        assert reply.sender == "ai"
        assert reply.content.sql == "SELECT COUNT(*) AS total_count FROM patients;"
        assert reply.content.results == QueryResult(headers=["total_count"], rows=[[4]])
        assert reply.content.error is None
        assert [m.sender for m in conversation.messages] == ["user", "ai"]
        assert conversation.state == TurnState.IDLE
        assert connector.handles == {}

    @pytest.mark.asyncio
    async def test_governance_scenario(self, orchestrator, conversation, governance):
        governance.add_rule("Block queries on the appointments table")
        orchestrator.synthesizer = Mock()
        orchestrator.synthesizer.synthesize = AsyncMock()
        orchestrator.connector = Mock()

        reply = await orchestrator.send(conversation, "list upcoming appointments")

        assert reply.content.error_kind == "GovernanceViolation"
        assert reply.content.error == 'Request blocked by governance rule: "Block queries on the appointments table"'
        assert reply.content.sql is None
        orchestrator.synthesizer.synthesize.assert_not_called()
        orchestrator.connector.session.assert_not_called()
        assert len(conversation.messages) == 2

    @pytest.mark.asyncio
    async def test_group_by_scenario(self, orchestrator, conversation):
        reply = await orchestrator.send(conversation, "patients by gender")

        assert "GROUP BY gender" in reply.content.sql
        assert reply.content.results.rows == [["Male", 2], ["Female", 2]]
        assert reply.content.chart_suggestion == ChartSuggestion(
            chart_type="bar", labels_column="gender", data_column="gender_count"
        )

    @pytest.mark.asyncio
    async def test_placeholder_sql_not_executed(self, orchestrator, conversation):
        orchestrator.connector = Mock()
        reply = await orchestrator.send(conversation, "what is the weather like")

        assert reply.content.sql.startswith("--")
        assert reply.content.results is None
        assert reply.content.error is None
        orchestrator.connector.session.assert_not_called()

    @pytest.mark.asyncio
    async def test_synthesis_error_becomes_error_message(self, orchestrator, conversation):
        orchestrator.synthesizer = Mock()
        orchestrator.synthesizer.synthesize = AsyncMock(side_effect=UpstreamError("The AI service request failed"))

        reply = await orchestrator.send(conversation, "how many patients")

        assert reply.content.error_kind == "UpstreamError"
        assert [m.sender for m in conversation.messages] == ["user", "ai"]
        assert conversation.state == TurnState.IDLE
        assert conversation.busy is False

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_error_message(self, orchestrator, conversation):
        orchestrator.synthesizer = Mock()
        orchestrator.synthesizer.synthesize = AsyncMock(side_effect=KeyError("x"))

        reply = await orchestrator.send(conversation, "how many patients")

        assert reply.content.error_kind == "Error"
        assert len(conversation.messages) == 2

    @pytest.mark.asyncio
    async def test_execution_error(self, orchestrator, conversation):
        orchestrator.synthesizer = Mock()
        orchestrator.synthesizer.synthesize = AsyncMock(
            return_value=SynthesisResult(text="x", sql="SELECT * FROM missing_table;")
        )

        reply = await orchestrator.send(conversation, "anything")

        assert reply.content.error_kind == "QueryExecutionError"
        assert orchestrator.connector.handles == {}

    @pytest.mark.asyncio
    async def test_chart_dropped_when_no_rows(self, orchestrator, conversation):
        orchestrator.synthesizer = Mock()
        orchestrator.synthesizer.synthesize = AsyncMock(return_value=SynthesisResult(
            text="none",
            sql="SELECT gender, COUNT(*) AS gender_count FROM patients WHERE id > 100 GROUP BY gender;",
            chart_suggestion=ChartSuggestion(chart_type="pie", labels_column="gender", data_column="gender_count"),
        ))

        reply = await orchestrator.send(conversation, "anything")

        assert reply.content.results.rows == []
        assert reply.content.chart_suggestion is None

    @pytest.mark.asyncio
    async def test_history_excludes_current_turn(self, orchestrator, conversation):
        orchestrator.synthesizer = Mock()
        orchestrator.synthesizer.synthesize = AsyncMock(return_value=SynthesisResult(text="x", sql="-- nothing"))

        await orchestrator.send(conversation, "first")
        await orchestrator.send(conversation, "second")

        history = orchestrator.synthesizer.synthesize.call_args_list[1].args[2]
        assert [m.content.text for m in history] == ["first", "x"]

    @pytest.mark.asyncio
    async def test_busy_conversation_rejected(self, orchestrator, conversation):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_synthesize(*args, **kwargs):
            started.set()
            await release.wait()
            return SynthesisResult(text="x", sql="-- nothing")

        orchestrator.synthesizer = Mock()
        orchestrator.synthesizer.synthesize = slow_synthesize

        first = asyncio.create_task(orchestrator.send(conversation, "first"))
        await started.wait()

        with pytest.raises(ConversationBusy):
            await orchestrator.send(conversation, "second")
        assert len(conversation.messages) == 1

        release.set()
        await first
        assert len(conversation.messages) == 2
        assert conversation.busy is False

    @pytest.mark.asyncio
    async def test_independent_conversations_run_concurrently(self, orchestrator, patients_details, patients_schema):
        a = Conversation("a", patients_details, patients_schema)
        b = Conversation("b", patients_details, patients_schema)

        replies = await asyncio.gather(
            orchestrator.send(a, "how many patients"),
            orchestrator.send(b, "patients by gender"),
        )

        assert replies[0].content.results.rows == [[4]]
        assert replies[1].content.results.rows == [["Male", 2], ["Female", 2]]

    def test_chart_applies(self):
        chart = ChartSuggestion(chart_type="bar", labels_column="gender", data_column="gender_count")
        assert chart_applies(chart, QueryResult(headers=["gender", "gender_count"], rows=[["Male", 2]]))
        assert not chart_applies(chart, QueryResult(headers=["gender", "total"], rows=[["Male", 2]]))
        assert not chart_applies(chart, QueryResult(headers=["gender", "gender_count"], rows=[]))
        assert not chart_applies(None, QueryResult(headers=["a"], rows=[[1]]))


class TestConversationManager:
    """测试会话创建、持久化和恢复"""

    @pytest.fixture
    def services(self, config_db, encryption, connector, governance):
        connection_service = ConnectionService(config_db, connector, encryption)
        store = ConversationStore(config_db)
        orchestrator = ChatOrchestrator(connector, RuleBasedSynthesizer(), governance, store)
        manager = ConversationManager(orchestrator, connection_service, store)
        return connection_service, store, manager

    @pytest.mark.asyncio
    async def test_create_send_and_reload(self, services, patients_db):
        connection_service, store, manager = services
        record = await connection_service.create_connection(
            {"name": "Clinic", "type": "sqlite", "file_path": patients_db}
        )

        conversation = await manager.create(record.id)
        assert conversation.messages[0].content.text == "Connected to **Clinic**. What would you like to know about your data?"

        reply = await manager.send(conversation.id, "patients by gender")
        assert reply.content.results.rows == [["Male", 2], ["Female", 2]]

        messages = store.load_messages(conversation.id)
        assert [m.sender for m in messages] == ["ai", "user", "ai"]
        assert messages[2].content.chart_suggestion.data_column == "gender_count"

        manager._conversations.clear()
        restored = await manager.get(conversation.id)
        assert len(restored.messages) == 3
        assert restored.schema[0].table_name == "appointments"

    @pytest.mark.asyncio
    async def test_unknown_ids(self, services):
        _, _, manager = services
        assert await manager.create("missing") is None
        assert await manager.get("missing") is None
        assert await manager.send("missing", "hello") is None

    @pytest.mark.asyncio
    async def test_delete(self, services, patients_db):
        connection_service, store, manager = services
        record = await connection_service.create_connection(
            {"name": "Clinic", "type": "SQLite", "file_path": patients_db}
        )
        conversation = await manager.create(record.id)

        assert manager.delete(conversation.id) is True
        assert store.load_messages(conversation.id) == []
        assert await manager.get(conversation.id) is None

    @pytest.mark.asyncio
    async def test_concurrent_sends_after_restore_are_serialized(self, services, tmp_path):
        """缓存未命中时并发发送只恢复一个会话实例，第二条消息被拒绝"""
        connection_service, store, manager = services
        empty_db = tmp_path / "empty.db"
        conn = sqlite3.connect(str(empty_db))
        conn.execute("PRAGMA user_version = 1")
        conn.commit()
        conn.close()

        record = await connection_service.create_connection(
            {"name": "Empty", "type": "SQLite", "file_path": str(empty_db)}
        )
        conversation = await manager.create(record.id)

        async def slow_synthesize(*args, **kwargs):
            await asyncio.sleep(0.05)
            return SynthesisResult(text="Nothing to query.", sql="-- nothing")

        manager.orchestrator.synthesizer = Mock()
        manager.orchestrator.synthesizer.synthesize = slow_synthesize
        manager._conversations.clear()

        results = await asyncio.gather(
            manager.send(conversation.id, "hello one"),
            manager.send(conversation.id, "hello two"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConversationBusy) for r in results) == 1
        assert [m.sender for m in store.load_messages(conversation.id)] == ["ai", "user", "ai"]

    @pytest.mark.asyncio
    async def test_forget_connection_keeps_busy_conversation(self, services, patients_db):
        connection_service, _, manager = services
        record = await connection_service.create_connection(
            {"name": "Clinic", "type": "SQLite", "file_path": patients_db}
        )
        busy = await manager.create(record.id)
        idle = await manager.create(record.id)
        busy.busy = True

        manager.forget_connection(record.id)

        assert busy.id in manager._conversations
        assert idle.id not in manager._conversations
