"""
Collaborator Interfaces and In-Memory Case Store

The copilot core never owns persistence. It talks to a CaseStore and to a
handful of best-effort side channels (norm lookup, evidence gaps,
collective knowledge, opponent profiles) through the protocols below.

InMemoryCaseStore is a thread-safe reference implementation used by the
HTTP surface and the tests.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Generic, Optional, Protocol, Sequence, TypeVar

from .errors import MessageFinalizedError
from .models import (
    CaseLawHit,
    CaseRecord,
    ChatMessage,
    ChatSession,
    CollectiveContext,
    Deadline,
    DocumentMeta,
    EvidenceGap,
    Finding,
    IndexStatus,
    MessageStatus,
    NormMatch,
    OpponentSnapshot,
    OpposingParty,
    TextChunk,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Protocols
# =============================================================================

class CaseStore(Protocol):
    """Read access to case material plus chat message persistence."""

    def get_case(self, case_id: str) -> Optional[CaseRecord]: ...
    def get_chunks(self, case_id: str) -> list[TextChunk]: ...
    def get_documents(self, case_id: str) -> list[DocumentMeta]: ...
    def get_findings(self, case_id: str) -> list[Finding]: ...
    def get_norm_references(self, case_id: str) -> list[str]: ...
    def get_deadlines(self, case_id: str) -> list[Deadline]: ...
    def get_case_law_hits(self, case_id: str) -> list[CaseLawHit]: ...

    def get_chat_messages(self, session_id: str) -> list[ChatMessage]: ...
    def get_message(self, message_id: str) -> Optional[ChatMessage]: ...
    def append_message(self, message: ChatMessage) -> ChatMessage: ...
    def update_message(self, message_id: str, patch: dict[str, Any]) -> ChatMessage: ...

    def get_session(self, session_id: str) -> Optional[ChatSession]: ...
    def save_session(self, session: ChatSession) -> ChatSession: ...
    def bump_session(
        self, session_id: str, messages: int, tokens: int, preview: str,
    ) -> Optional[ChatSession]: ...


class NormLookup(Protocol):
    def search(self, query: str, jurisdictions: Sequence[str]) -> list[NormMatch]: ...


class EvidenceGapAnalyzer(Protocol):
    def analyze_gaps(self, case_id: str) -> list[EvidenceGap]: ...


class CollectiveKnowledgeMatcher(Protocol):
    def build_context(self, query: str, active_norms: Sequence[str]) -> Optional[CollectiveContext]: ...
    def to_prompt(self, context: CollectiveContext) -> str: ...


class OpponentProfileMatcher(Protocol):
    def build_snapshot(
        self, opposing_parties: Sequence[OpposingParty], court: Optional[str]
    ) -> Optional[OpponentSnapshot]: ...
    def to_prompt(self, snapshot: OpponentSnapshot) -> str: ...


# =============================================================================
# Side-channel results
# =============================================================================

@dataclass(frozen=True)
class SideChannelResult(Generic[T]):
    """
    Outcome of one best-effort collaborator call.

    ``contribution`` is None when the collaborator is absent, had nothing
    to add, or failed; ``error`` is set only in the last case.
    """
    contribution: Optional[T] = None
    prompt_block: str = ""
    error: Optional[str] = None

    @property
    def contributed(self) -> bool:
        return self.contribution is not None


def call_side_channel(name: str, fn: Callable[[], Optional[T]]) -> SideChannelResult[T]:
    """Run a collaborator call, converting any failure into an empty result."""
    try:
        return SideChannelResult(contribution=fn())
    except Exception as e:
        logger.warning(f"Side channel '{name}' failed: {e}")
        return SideChannelResult(error=str(e))


# =============================================================================
# In-memory reference store
# =============================================================================

class InMemoryCaseStore:
    """
    Thread-safe in-memory CaseStore.

    Complete chat messages are immutable: ``update_message`` on a message
    whose status is already ``complete`` raises MessageFinalizedError.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._cases: dict[str, CaseRecord] = {}
        self._chunks: dict[str, list[TextChunk]] = {}
        self._documents: dict[str, list[DocumentMeta]] = {}
        self._findings: dict[str, list[Finding]] = {}
        self._norms: dict[str, list[str]] = {}
        self._deadlines: dict[str, list[Deadline]] = {}
        self._case_law: dict[str, list[CaseLawHit]] = {}
        self._messages: dict[str, ChatMessage] = {}
        self._session_messages: dict[str, list[str]] = {}
        self._sessions: dict[str, ChatSession] = {}

    # ----- Case material -----

    def add_case(
        self,
        case: CaseRecord,
        chunks: Sequence[TextChunk] = (),
        documents: Sequence[DocumentMeta] = (),
        findings: Sequence[Finding] = (),
        norms: Sequence[str] = (),
        deadlines: Sequence[Deadline] = (),
        case_law: Sequence[CaseLawHit] = (),
    ) -> None:
        with self._lock:
            self._cases[case.id] = case
            self._chunks[case.id] = list(chunks)
            self._documents[case.id] = list(documents)
            self._findings[case.id] = list(findings)
            self._norms[case.id] = list(norms)
            self._deadlines[case.id] = list(deadlines)
            self._case_law[case.id] = list(case_law)

    def get_case(self, case_id: str) -> Optional[CaseRecord]:
        return self._cases.get(case_id)

    def get_chunks(self, case_id: str) -> list[TextChunk]:
        return list(self._chunks.get(case_id, []))

    def get_documents(self, case_id: str) -> list[DocumentMeta]:
        return list(self._documents.get(case_id, []))

    def get_findings(self, case_id: str) -> list[Finding]:
        return list(self._findings.get(case_id, []))

    def get_norm_references(self, case_id: str) -> list[str]:
        """Explicit case norms followed by paragraph references of indexed documents."""
        norms = dict.fromkeys(self._norms.get(case_id, []))
        for doc in self._documents.get(case_id, []):
            if doc.index_status == IndexStatus.INDEXED:
                norms.update(dict.fromkeys(doc.paragraph_references))
        return list(norms)

    def get_deadlines(self, case_id: str) -> list[Deadline]:
        return list(self._deadlines.get(case_id, []))

    def get_case_law_hits(self, case_id: str) -> list[CaseLawHit]:
        return list(self._case_law.get(case_id, []))

    # ----- Messages -----

    def get_chat_messages(self, session_id: str) -> list[ChatMessage]:
        with self._lock:
            return [self._messages[mid] for mid in self._session_messages.get(session_id, [])]

    def get_message(self, message_id: str) -> Optional[ChatMessage]:
        return self._messages.get(message_id)

    def append_message(self, message: ChatMessage) -> ChatMessage:
        with self._lock:
            self._messages[message.id] = message
            self._session_messages.setdefault(message.session_id, []).append(message.id)
            return message

    def update_message(self, message_id: str, patch: dict[str, Any]) -> ChatMessage:
        """
        Apply a field patch to a stored message.

        Raises:
            KeyError: Unknown message id
            MessageFinalizedError: The message is already complete
        """
        with self._lock:
            current = self._messages[message_id]
            if current.status == MessageStatus.COMPLETE:
                raise MessageFinalizedError(message_id)
            updated = replace(current, **patch, updated_at=utc_now())
            self._messages[message_id] = updated
            return updated

    # ----- Sessions -----

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    def save_session(self, session: ChatSession) -> ChatSession:
        with self._lock:
            self._sessions[session.id] = session
            return session

    def bump_session(
        self, session_id: str, messages: int, tokens: int, preview: str,
    ) -> Optional[ChatSession]:
        """Add message and token counts to a session in one locked step."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.message_count += messages
            session.total_tokens += tokens
            session.last_message_preview = preview
            session.updated_at = utc_now()
            return session

    def list_sessions(self, case_id: Optional[str] = None) -> list[ChatSession]:
        sessions = list(self._sessions.values())
        if case_id:
            sessions = [s for s in sessions if s.case_id == case_id]
        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)
