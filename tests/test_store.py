"""
Tests for execution/case_copilot/store.py and execution/case_copilot/models.py

Covers: InMemoryCaseStore (case material, norm references, messages,
        finalized-message guard, sessions), side-channel calls, ToolCall
        status transitions, ChatMessage serialization and ContextSnapshot
        immutability.
"""

from datetime import timedelta

import pytest


def _message(message_id="msg:1", session_id="session:1", status=None):
    from execution.case_copilot.models import ChatMessage, ChatMode, MessageRole, MessageStatus
    return ChatMessage(
        id=message_id,
        session_id=session_id,
        role=MessageRole.ASSISTANT,
        content="",
        mode=ChatMode.GENERAL,
        status=status or MessageStatus.PENDING,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_create_id(self):
        from execution.case_copilot.models import create_id
        first, second = create_id("tool"), create_id("tool")
        assert first.startswith("tool:")
        assert len(first) == len("tool:") + 12
        assert first != second

    @pytest.mark.parametrize("text,tokens", [("", 0), ("abc", 1), ("a" * 7, 2), ("a" * 8, 3)])
    def test_estimate_tokens(self, text, tokens):
        from execution.case_copilot.models import estimate_tokens
        assert estimate_tokens(text) == tokens


# ---------------------------------------------------------------------------
# Case material
# ---------------------------------------------------------------------------

class TestCaseMaterial:
    """Tests for the read side of InMemoryCaseStore."""

    def test_case_and_material(self, case_store):
        from execution.case_copilot.store import InMemoryCaseStore
        assert case_store.get_case("case:mueller").client_name == "Anna Müller"
        assert len(case_store.get_chunks("case:mueller")) == 4
        assert len(case_store.get_documents("case:mueller")) == 4
        assert len(case_store.get_findings("case:mueller")) == 2
        assert len(case_store.get_deadlines("case:mueller")) == 4
        assert len(case_store.get_case_law_hits("case:mueller")) == 3
        assert isinstance(case_store, InMemoryCaseStore)

    def test_unknown_case(self, case_store):
        assert case_store.get_case("case:unknown") is None
        assert case_store.get_chunks("case:unknown") == []
        assert case_store.get_norm_references("case:unknown") == []

    def test_returned_lists_are_copies(self, case_store):
        case_store.get_chunks("case:mueller").clear()
        assert len(case_store.get_chunks("case:mueller")) == 4

    def test_norm_references_merge_indexed_documents(self, case_store):
        assert case_store.get_norm_references("case:mueller") == ["§ 823 BGB", "§ 7 StVG", "§ 253 BGB"]

    def test_norm_references_skip_unindexed_documents(self):
        from execution.case_copilot.models import CaseRecord, DocumentMeta, IndexStatus
        from execution.case_copilot.store import InMemoryCaseStore
        store = InMemoryCaseStore()
        store.add_case(
            CaseRecord(id="case:1", title="Akte"),
            documents=[DocumentMeta("d1", "Scan", IndexStatus.PENDING, paragraph_references=("§ 1 GG",))],
        )
        assert store.get_norm_references("case:1") == []


# ---------------------------------------------------------------------------
# Messages and sessions
# ---------------------------------------------------------------------------

class TestMessages:
    """Tests for message persistence."""

    def test_append_and_list_in_order(self):
        from execution.case_copilot.store import InMemoryCaseStore
        store = InMemoryCaseStore()
        store.append_message(_message("msg:1"))
        store.append_message(_message("msg:2"))
        store.append_message(_message("msg:other", session_id="session:2"))
        assert [m.id for m in store.get_chat_messages("session:1")] == ["msg:1", "msg:2"]
        assert store.get_chat_messages("session:unknown") == []

    def test_update_message(self):
        from execution.case_copilot.models import MessageStatus
        from execution.case_copilot.store import InMemoryCaseStore
        store = InMemoryCaseStore()
        original = store.append_message(_message())
        updated = store.update_message("msg:1", {"content": "Antwort", "status": MessageStatus.COMPLETE})
        assert updated.content == "Antwort"
        assert store.get_message("msg:1") is updated
        assert updated.updated_at >= original.updated_at

    def test_complete_message_is_immutable(self):
        from execution.case_copilot.errors import MessageFinalizedError
        from execution.case_copilot.models import MessageStatus
        from execution.case_copilot.store import InMemoryCaseStore
        store = InMemoryCaseStore()
        store.append_message(_message(status=MessageStatus.COMPLETE))
        with pytest.raises(MessageFinalizedError):
            store.update_message("msg:1", {"content": "Überschrieben"})
        assert store.get_message("msg:1").content == ""

    def test_update_unknown_message(self):
        from execution.case_copilot.store import InMemoryCaseStore
        with pytest.raises(KeyError):
            InMemoryCaseStore().update_message("msg:missing", {"content": "x"})


class TestSessions:
    def test_save_and_get(self):
        from execution.case_copilot.models import ChatSession
        from execution.case_copilot.store import InMemoryCaseStore
        store = InMemoryCaseStore()
        session = store.save_session(ChatSession("session:1", "case:1", "ws:1"))
        assert store.get_session("session:1") is session
        assert store.get_session("session:2") is None

    def test_list_sessions_newest_first(self):
        from execution.case_copilot.models import ChatSession, utc_now
        from execution.case_copilot.store import InMemoryCaseStore
        store = InMemoryCaseStore()
        now = utc_now()
        store.save_session(ChatSession("session:old", "case:1", "ws:1", updated_at=now - timedelta(hours=1)))
        store.save_session(ChatSession("session:new", "case:1", "ws:1", updated_at=now))
        store.save_session(ChatSession("session:other", "case:2", "ws:1", updated_at=now))
        assert [s.id for s in store.list_sessions("case:1")] == ["session:new", "session:old"]
        assert len(store.list_sessions()) == 3

    def test_bump_session(self):
        from execution.case_copilot.models import ChatSession
        from execution.case_copilot.store import InMemoryCaseStore
        store = InMemoryCaseStore()
        store.save_session(ChatSession("session:1", "case:1", "ws:1"))
        session = store.bump_session("session:1", 2, 40, "Welche Fristen?")
        assert session.message_count == 2
        assert session.total_tokens == 40
        assert session.last_message_preview == "Welche Fristen?"

    def test_bump_unknown_session(self):
        from execution.case_copilot.store import InMemoryCaseStore
        assert InMemoryCaseStore().bump_session("session:missing", 2, 10, "x") is None

    def test_concurrent_bumps_are_not_lost(self):
        import threading
        from execution.case_copilot.models import ChatSession
        from execution.case_copilot.store import InMemoryCaseStore
        store = InMemoryCaseStore()
        store.save_session(ChatSession("session:1", "case:1", "ws:1"))
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            for _ in range(250):
                store.bump_session("session:1", 2, 3, "x")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        session = store.get_session("session:1")
        assert session.message_count == 8 * 250 * 2
        assert session.total_tokens == 8 * 250 * 3


# ---------------------------------------------------------------------------
# Side channels
# ---------------------------------------------------------------------------

class TestSideChannel:
    def test_contribution(self):
        from execution.case_copilot.store import call_side_channel
        result = call_side_channel("gaps", lambda: ["gap"])
        assert result.contributed is True
        assert result.contribution == ["gap"]
        assert result.error is None

    def test_nothing_to_add(self):
        from execution.case_copilot.store import call_side_channel
        result = call_side_channel("collective", lambda: None)
        assert result.contributed is False
        assert result.error is None

    def test_failure_is_contained(self):
        from execution.case_copilot.store import call_side_channel

        def explode():
            raise RuntimeError("index offline")

        result = call_side_channel("norm_lookup", explode)
        assert result.contributed is False
        assert result.error == "index offline"


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------

class TestToolCall:
    """Tests for ToolCall status transitions."""

    def _approval_request(self):
        from execution.case_copilot.models import ApprovalRequest
        return ApprovalRequest("Freigabe", "Bitte prüfen", "medium", [])

    def test_start(self):
        from execution.case_copilot.models import ToolCall, ToolCallName, ToolCallStatus
        tc = ToolCall.start(ToolCallName.CREDIT_CHECK, "Credits prüfen", "1 Credit")
        assert tc.id.startswith("tool:")
        assert tc.status == ToolCallStatus.RUNNING
        assert tc.input_summary == "1 Credit"
        assert tc.is_terminal is False

    def test_complete(self):
        from execution.case_copilot.models import ToolCall, ToolCallDetailLine, ToolCallName, ToolCallStatus
        tc = ToolCall.start(ToolCallName.BUILD_CONTEXT, "Fallkontext aufbauen")
        tc.complete("4 Chunks", [ToolCallDetailLine("📄", "Klageschrift")])
        assert tc.status == ToolCallStatus.COMPLETE
        assert tc.output_summary == "4 Chunks"
        assert tc.detail_lines[0].label == "Klageschrift"
        assert tc.finished_at is not None
        assert tc.duration_ms >= 0
        assert tc.is_terminal is True

    def test_terminal_status_is_final(self):
        from execution.case_copilot.errors import ToolCallStateError
        from execution.case_copilot.models import ToolCall, ToolCallName
        tc = ToolCall.start(ToolCallName.GENERATE, "Antwort generieren").fail("timeout")
        with pytest.raises(ToolCallStateError):
            tc.complete("ok")
        with pytest.raises(ToolCallStateError):
            tc.cancel("abgebrochen")

    def test_approval_then_resume(self):
        from execution.case_copilot.models import ToolCall, ToolCallName, ToolCallStatus
        tc = ToolCall.start(ToolCallName.APPROVAL_GATE, "Freigabe einholen")
        tc.await_approval(self._approval_request(), "Warte auf Freigabe")
        assert tc.status == ToolCallStatus.AWAITING_APPROVAL
        assert tc.approval_request is not None
        assert tc.is_terminal is False

        tc.resume().complete("Freigegeben")
        assert tc.status == ToolCallStatus.COMPLETE
        assert tc.approval_request is None

    def test_approval_then_cancel(self):
        from execution.case_copilot.models import ToolCall, ToolCallName, ToolCallStatus
        tc = ToolCall.start(ToolCallName.APPROVAL_GATE, "Freigabe einholen")
        tc.await_approval(self._approval_request(), "Warte auf Freigabe")
        tc.cancel("Vom Nutzer abgebrochen")
        assert tc.status == ToolCallStatus.CANCELLED
        assert tc.output_summary == "Vom Nutzer abgebrochen"

    def test_cannot_complete_while_awaiting_approval(self):
        from execution.case_copilot.errors import ToolCallStateError
        from execution.case_copilot.models import ToolCall, ToolCallName
        tc = ToolCall.start(ToolCallName.APPROVAL_GATE, "Freigabe einholen")
        tc.await_approval(self._approval_request(), "Warte auf Freigabe")
        with pytest.raises(ToolCallStateError):
            tc.complete("ok")

    def test_cannot_resume_running(self):
        from execution.case_copilot.errors import ToolCallStateError
        from execution.case_copilot.models import ToolCall, ToolCallName
        with pytest.raises(ToolCallStateError):
            ToolCall.start(ToolCallName.GENERATE, "Antwort generieren").resume()


# ---------------------------------------------------------------------------
# Messages and snapshots
# ---------------------------------------------------------------------------

class TestChatMessage:
    def test_pending_approval(self):
        from execution.case_copilot.models import ApprovalRequest, ToolCall, ToolCallName
        message = _message()
        assert message.pending_approval is None
        gate = ToolCall.start(ToolCallName.APPROVAL_GATE, "Freigabe einholen")
        gate.await_approval(ApprovalRequest("t", "d", "high", []), "Warte")
        message.tool_calls = [ToolCall.start(ToolCallName.CREDIT_CHECK, "Credits").complete("ok"), gate]
        assert message.pending_approval is gate

    def test_to_dict_is_json_friendly(self):
        from execution.case_copilot.models import SourceCitation, ToolCall, ToolCallName
        message = _message()
        message.tool_calls = [ToolCall.start(ToolCallName.GENERATE, "Antwort generieren").complete("ok")]
        message.source_citations = [SourceCitation("d1", "Klageschrift", "Zitat", "klageschrift", 0.8)]
        data = message.to_dict()
        assert data["role"] == "assistant"
        assert data["status"] == "pending"
        assert data["tool_calls"][0]["name"] == "generate"
        assert data["tool_calls"][0]["status"] == "complete"
        assert isinstance(data["created_at"], str)
        assert data["source_citations"][0]["document_id"] == "d1"


class TestContextSnapshot:
    def test_frozen(self, make_snapshot):
        import dataclasses
        snapshot = make_snapshot()
        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.system_prompt = "changed"

    def test_with_memory_block(self, make_snapshot):
        snapshot = make_snapshot()
        assert snapshot.with_memory_block("") is snapshot

        extended = snapshot.with_memory_block("\nMEMORY")
        assert extended is not snapshot
        assert extended.system_prompt == "SYSTEM\nMEMORY"
        assert extended.memory_block == "\nMEMORY"
        assert snapshot.system_prompt == "SYSTEM"

    def test_source_document_ids(self, make_snapshot):
        snapshot = make_snapshot(relevant_chunks=(
            make_snapshot.chunk("c1", "d1", "A", "x"),
            make_snapshot.chunk("c2", "d1", "A", "y"),
            make_snapshot.chunk("c3", "d2", "B", "z"),
        ))
        assert snapshot.source_document_ids == {"d1", "d2"}

    def test_to_json_stable(self, make_snapshot):
        import json
        snapshot = make_snapshot(relevant_chunks=(make_snapshot.chunk("c1", "d1", "Klageschrift", "Text"),))
        assert snapshot.to_json() == make_snapshot(relevant_chunks=snapshot.relevant_chunks).to_json()
        assert json.loads(snapshot.to_json())["mode"] == "general"
