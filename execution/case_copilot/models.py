"""
Data Model for the Case Copilot

Chunks and documents come from the (external) ingestion pipeline and are
immutable here. ContextSnapshot is frozen once assembled; ToolCall and
ChatMessage are mutated in place by the orchestrator until the message
is complete.
"""

import json
import math
import uuid
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .errors import ToolCallStateError


def create_id(prefix: str) -> str:
    """Create a prefixed unique identifier (e.g. ``tool:3f9a...``)."""
    return f"{prefix}:{uuid.uuid4().hex[:12]}"


def estimate_tokens(text: str) -> int:
    """Rough token estimate used for session bookkeeping (~3.5 chars/token)."""
    return math.ceil(len(text) / 3.5)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enumerations
# =============================================================================

class ChatMode(str, Enum):
    GENERAL = "general"
    STRATEGIE = "strategie"
    SUBSUMTION = "subsumtion"
    GEGNER = "gegner"
    RICHTER = "richter"
    BEWEISLAGE = "beweislage"
    FRISTEN = "fristen"
    NORMEN = "normen"


class IndexStatus(str, Enum):
    INDEXED = "indexed"
    PENDING = "pending"
    FAILED = "failed"
    NEEDS_REVIEW = "needs_review"


class Jurisdiction(str, Enum):
    DE = "DE"
    AT = "AT"
    CH = "CH"
    EU = "EU"
    ECHR = "ECHR"


class ToolCallName(str, Enum):
    CLARIFY_REQUEST = "clarify_request"
    CREDIT_CHECK = "credit_check"
    BUILD_CONTEXT = "build_context"
    SEARCH_CHUNKS = "search_chunks"
    COLLECTIVE_INTELLIGENCE = "collective_intelligence"
    MEMORY_LOOKUP = "memory_lookup"
    APPROVAL_GATE = "approval_gate"
    GENERATE = "generate"
    REASONING_CHAIN = "reasoning_chain"
    CONFIDENCE_SCORE = "confidence_score"


class ToolCallStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"
    AWAITING_APPROVAL = "awaiting_approval"
    CANCELLED = "cancelled"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"


class ApprovalDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


# =============================================================================
# Case material (owned by the external store)
# =============================================================================

@dataclass(frozen=True)
class ExtractedEntities:
    """Entities recognized in a chunk during ingestion."""
    persons: tuple[str, ...] = ()
    organizations: tuple[str, ...] = ()
    legal_refs: tuple[str, ...] = ()


@dataclass(frozen=True)
class TextChunk:
    """A retrievable fragment of case material."""
    id: str
    document_id: str
    text: str
    category: str
    keywords: frozenset[str] = frozenset()
    extracted_entities: Optional[ExtractedEntities] = None
    quality_score: float = 0.5


@dataclass(frozen=True)
class DocumentMeta:
    """Per-document processing status and quality."""
    id: str
    title: str
    index_status: IndexStatus = IndexStatus.INDEXED
    quality_score: Optional[float] = None
    detected_jurisdiction: Optional[Jurisdiction] = None
    paragraph_references: tuple[str, ...] = ()


@dataclass(frozen=True)
class Finding:
    id: str
    title: str
    description: str
    type: str
    severity: str


@dataclass(frozen=True)
class Deadline:
    id: str
    title: str
    due_at: datetime
    status: str = "open"


@dataclass(frozen=True)
class OpposingParty:
    display_name: str
    kind: str
    legal_representative: Optional[str] = None


@dataclass(frozen=True)
class CaseRecord:
    """Case header data used for the prompt."""
    id: str
    title: str
    client_name: Optional[str] = None
    matter_title: Optional[str] = None
    file_reference: Optional[str] = None
    court: Optional[str] = None
    opposing_parties: tuple[OpposingParty, ...] = ()


@dataclass(frozen=True)
class CaseLawHit:
    """An external case-law suggestion for the case."""
    decision_id: str
    citation: str
    relevance_score: float
    authority_level: str = "reference"  # binding | persuasive | reference
    temporal_applicability: str = "unknown"  # current | historical | unknown


# =============================================================================
# Side-channel contributions
# =============================================================================

@dataclass(frozen=True)
class CollectiveContext:
    """Anonymized cross-case knowledge matched to the query."""
    matched_entries: tuple[str, ...]
    summary: str = ""


@dataclass(frozen=True)
class OpponentSnapshot:
    """Known profile of the opposing firm and/or the adjudicator."""
    firm_profile: Optional[str] = None
    judge_profile: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.firm_profile or self.judge_profile)


@dataclass(frozen=True)
class NormMatch:
    norm_id: str
    law: str
    title: str
    match_score: float


@dataclass(frozen=True)
class EvidenceGap:
    topic: str
    description: str


# =============================================================================
# Context snapshot
# =============================================================================

@dataclass(frozen=True)
class ScoredChunk:
    """A ranked chunk as it appears in the context snapshot."""
    chunk_id: str
    document_id: str
    document_title: str
    excerpt: str
    category: str
    relevance_score: float


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (frozenset, set)):
        return sorted(value)
    raise TypeError(f"Not serializable: {type(value).__name__}")


@dataclass(frozen=True)
class ContextSnapshot:
    """The assembled, immutable input to one generation."""
    case_id: str
    workspace_id: str
    mode: ChatMode
    relevant_chunks: tuple[ScoredChunk, ...]
    active_norms: tuple[str, ...]
    findings_summary: str
    deadline_warnings: tuple[str, ...]
    contradiction_highlights: tuple[str, ...]
    evidence_gaps: tuple[str, ...]
    opposing_party_context: str
    case_law_context: tuple[CaseLawHit, ...]
    source_reliability_warnings: tuple[str, ...]
    system_prompt: str
    collective_context: Optional[CollectiveContext] = None
    opponent_snapshot: Optional[OpponentSnapshot] = None
    memory_block: str = ""
    generated_at: str = ""

    def with_memory_block(self, block: str) -> "ContextSnapshot":
        """Return a new snapshot whose prompt carries the memory block."""
        if not block:
            return self
        return replace(self, system_prompt=self.system_prompt + block, memory_block=block)

    @property
    def source_document_ids(self) -> set[str]:
        return {c.document_id for c in self.relevant_chunks}

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, default=_jsonable, ensure_ascii=False)


# =============================================================================
# Tool calls
# =============================================================================

@dataclass
class ToolCallDetailLine:
    icon: str
    label: str
    meta: Optional[str] = None
    added: Optional[int] = None


@dataclass
class ApprovalField:
    """One editable parameter of an approval request."""
    key: str
    label: str
    value: str
    required: bool = False
    placeholder: str = ""


@dataclass
class ApprovalRequest:
    title: str
    description: str
    risk_level: str
    fields: list[ApprovalField]
    confirm_label: str = "Approve"
    cancel_label: str = "Cancel"

    def field_map(self) -> dict[str, ApprovalField]:
        return {f.key: f for f in self.fields}


@dataclass
class ToolCall:
    """
    Audit record of one pipeline stage.

    Starts RUNNING and transitions exactly once to a terminal status, or to
    AWAITING_APPROVAL from which it may resume (RUNNING) or be cancelled.
    """
    id: str
    name: ToolCallName
    label: str
    status: ToolCallStatus = ToolCallStatus.RUNNING
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    input_summary: Optional[str] = None
    output_summary: Optional[str] = None
    approval_request: Optional[ApprovalRequest] = None
    detail_lines: list[ToolCallDetailLine] = field(default_factory=list)

    @classmethod
    def start(cls, name: ToolCallName, label: str, input_summary: Optional[str] = None) -> "ToolCall":
        return cls(id=create_id("tool"), name=name, label=label, input_summary=input_summary)

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            ToolCallStatus.COMPLETE, ToolCallStatus.ERROR, ToolCallStatus.CANCELLED,
        )

    def _require(self, *allowed: ToolCallStatus) -> None:
        if self.status not in allowed:
            raise ToolCallStateError(
                f"Tool call {self.id} ({self.name.value}) cannot leave status {self.status.value}"
            )

    def _finish(self, status: ToolCallStatus, output_summary: Optional[str]) -> "ToolCall":
        now = utc_now()
        self.status = status
        self.output_summary = output_summary
        self.finished_at = now
        self.duration_ms = int((now - self.started_at).total_seconds() * 1000)
        return self

    def complete(
        self,
        output_summary: Optional[str] = None,
        detail_lines: Optional[list[ToolCallDetailLine]] = None,
    ) -> "ToolCall":
        self._require(ToolCallStatus.RUNNING)
        if detail_lines is not None:
            self.detail_lines = detail_lines
        return self._finish(ToolCallStatus.COMPLETE, output_summary)

    def fail(self, error: str) -> "ToolCall":
        self._require(ToolCallStatus.RUNNING)
        return self._finish(ToolCallStatus.ERROR, error)

    def await_approval(self, request: ApprovalRequest, output_summary: str) -> "ToolCall":
        self._require(ToolCallStatus.RUNNING)
        self.status = ToolCallStatus.AWAITING_APPROVAL
        self.approval_request = request
        self.output_summary = output_summary
        return self

    def resume(self) -> "ToolCall":
        self._require(ToolCallStatus.AWAITING_APPROVAL)
        self.status = ToolCallStatus.RUNNING
        self.approval_request = None
        return self

    def cancel(self, output_summary: str) -> "ToolCall":
        self._require(ToolCallStatus.AWAITING_APPROVAL, ToolCallStatus.RUNNING)
        return self._finish(ToolCallStatus.CANCELLED, output_summary)


# =============================================================================
# Citations & confidence
# =============================================================================

@dataclass(frozen=True)
class SourceCitation:
    document_id: str
    document_title: str
    quote: str
    category: str
    relevance_score: float


@dataclass(frozen=True)
class NormCitation:
    norm_id: str
    law: str
    paragraph: str
    title: str
    relevance: str


@dataclass(frozen=True)
class FindingRef:
    finding_id: str
    title: str
    type: str
    severity: str


@dataclass(frozen=True)
class ConfidenceFactor:
    name: str
    weight: float
    score: float
    description: str


@dataclass(frozen=True)
class AnswerConfidence:
    score: float
    level: str
    factors: tuple[ConfidenceFactor, ...]
    supporting_sources: int
    contradicting_sources: int
    has_unverified_claims: bool
    warnings: tuple[str, ...] = ()


# =============================================================================
# Messages, sessions, models
# =============================================================================

@dataclass(frozen=True)
class LlmModelOption:
    id: str
    provider_id: str
    label: str
    cost_tier: str = "medium"  # low | medium | high | premium
    credit_multiplier: Optional[float] = None
    context_window: int = 128000


@dataclass
class ChatMessage:
    id: str
    session_id: str
    role: MessageRole
    content: str
    mode: ChatMode
    status: MessageStatus = MessageStatus.PENDING
    tool_calls: list[ToolCall] = field(default_factory=list)
    source_citations: list[SourceCitation] = field(default_factory=list)
    norm_citations: list[NormCitation] = field(default_factory=list)
    finding_refs: list[FindingRef] = field(default_factory=list)
    confidence: Optional[AnswerConfidence] = None
    model_id: Optional[str] = None
    token_estimate: int = 0
    duration_ms: Optional[int] = None
    used_memory_ids: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def pending_approval(self) -> Optional[ToolCall]:
        for tc in self.tool_calls:
            if tc.status == ToolCallStatus.AWAITING_APPROVAL:
                return tc
        return None

    def to_dict(self) -> dict:
        return json.loads(json.dumps(asdict(self), default=_jsonable))


@dataclass
class ChatSession:
    id: str
    case_id: str
    workspace_id: str
    mode: ChatMode = ChatMode.GENERAL
    model_id: Optional[str] = None
    message_count: int = 0
    total_tokens: int = 0
    last_message_preview: str = ""
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class PendingRun:
    """Everything needed to resume a run suspended at the approval gate."""
    tool_call_id: str
    assistant_message_id: str
    session_id: str
    case_id: str
    workspace_id: str
    account_id: str
    mode: ChatMode
    model: LlmModelOption
    context: Optional[ContextSnapshot]
    history: tuple[ChatMessage, ...]
    tool_calls: list[ToolCall]
    start_time: float
    original_content: str
    user_token_estimate: int
    credit_cost: int
    reservation: Optional[object] = None
