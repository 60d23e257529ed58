"""
Copilot Memory

Long-lived notes the copilot carries across messages. Users add them with
"merke dir: ..." / "remember: ..." (or ``/merke``) and remove them with
"vergiss ..." / "forget ...". For every other message the most relevant
active memories are rendered into a prompt block; instructions and
preferences are always boosted.
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from .language_patterns import (
    MEMORY_CATEGORY_PATTERNS,
    MEMORY_FORGET_PATTERNS,
    MEMORY_LABELS,
    MEMORY_REMEMBER_PATTERNS,
    MEMORY_WORKSPACE_SCOPE_PATTERN,
    PIPELINE_LABELS,
    get_labels,
)
from .models import create_id, utc_now

logger = logging.getLogger(__name__)


SCOPE_BOOST = {"session": 3.0, "case": 2.0, "workspace": 1.0}
ALWAYS_RELEVANT_CATEGORIES = frozenset({"instruction", "preference"})
MIN_MEMORY_SCORE = 0.5
MAX_MEMORIES = 15
TITLE_LENGTH = 80
RESPONSE_PREVIEW = 100

# Block sections in render order: (label key, categories, show title)
BLOCK_SECTIONS = (
    ("section_instructions", ("instruction", "preference"), False),
    ("section_facts", ("fact", "entity"), True),
    ("section_strategies", ("strategy", "rule"), True),
    ("section_deadlines", ("deadline",), True),
    ("section_cross_checks", ("contradiction",), True),
)

_NON_WORD = re.compile(r"[^a-zäöüß0-9§\s-]")


def memory_tokens(text: str) -> list[str]:
    return [w for w in _NON_WORD.sub(" ", text.lower()).split() if len(w) > 2]


def infer_category(content: str) -> str:
    lower = content.lower()
    for category, pattern in MEMORY_CATEGORY_PATTERNS:
        if pattern.search(lower):
            return category
    return "instruction"


def infer_scope(content: str, case_id: Optional[str]) -> str:
    if MEMORY_WORKSPACE_SCOPE_PATTERN.search(content.lower()):
        return "workspace"
    return "case" if case_id else "workspace"


def parse_memory_instruction(message: str) -> tuple[Optional[str], str]:
    """
    Classify a message as a memory instruction.

    Returns:
        ("remember" | "forget" | None, instruction content)
    """
    text = message.strip()
    if text.lower().startswith("/merke "):
        return "remember", text[len("/merke "):].strip()

    for pattern in MEMORY_REMEMBER_PATTERNS:
        match = pattern.match(text)
        if match and match.group(1).strip():
            return "remember", match.group(1).strip()
    for pattern in MEMORY_FORGET_PATTERNS:
        match = pattern.match(text)
        if match and match.group(match.lastindex).strip():
            return "forget", match.group(match.lastindex).strip()
    return None, ""


@dataclass
class CopilotMemory:
    id: str
    workspace_id: str
    scope: str  # session | case | workspace
    category: str
    title: str
    content: str
    case_id: Optional[str] = None
    session_id: Optional[str] = None
    confidence: float = 1.0
    usage_count: int = 0
    keywords: tuple[str, ...] = ()
    status: str = "active"  # active | deleted
    created_at: datetime = field(default_factory=utc_now)
    last_used_at: Optional[datetime] = None


@dataclass
class MemoryInstructionResult:
    handled: bool
    response: Optional[str] = None
    memory_id: Optional[str] = None


@dataclass
class MemoryContext:
    block: str = ""
    used_memory_ids: list[str] = field(default_factory=list)


class MemoryProvider(Protocol):
    def handle_instruction(
        self, workspace_id: str, case_id: Optional[str], session_id: Optional[str], message: str,
    ) -> MemoryInstructionResult: ...

    def build_context_block(
        self, workspace_id: str, case_id: Optional[str], session_id: Optional[str], query: str,
    ) -> MemoryContext: ...


class InMemoryMemoryProvider:
    """
    Thread-safe memory store with instruction handling and relevance ranking.

    Usage:
        memory = InMemoryMemoryProvider()
        memory.handle_instruction("ws:1", "case:1", None, "Merke dir: Mandant bevorzugt formelle Ansprache")
        context = memory.build_context_block("ws:1", "case:1", None, "Schriftsatz an den Mandanten")
    """

    def __init__(self, language: str = "de"):
        self.language = language
        self._lock = threading.Lock()
        self._memories: dict[str, CopilotMemory] = {}

    def add(self, memory: CopilotMemory) -> CopilotMemory:
        with self._lock:
            self._memories[memory.id] = memory
        return memory

    def active(self, workspace_id: str) -> list[CopilotMemory]:
        with self._lock:
            return [
                m for m in self._memories.values()
                if m.status == "active" and m.workspace_id == workspace_id
            ]

    def _visible(
        self, workspace_id: str, case_id: Optional[str], session_id: Optional[str],
    ) -> list[CopilotMemory]:
        visible = []
        for m in self.active(workspace_id):
            if m.scope == "workspace":
                visible.append(m)
            elif m.scope == "case" and case_id and m.case_id == case_id:
                visible.append(m)
            elif m.scope == "session" and session_id and m.session_id == session_id:
                visible.append(m)
        return visible

    # ----- Instructions -----

    def handle_instruction(
        self,
        workspace_id: str,
        case_id: Optional[str],
        session_id: Optional[str],
        message: str,
    ) -> MemoryInstructionResult:
        kind, content = parse_memory_instruction(message)
        if kind is None:
            return MemoryInstructionResult(handled=False)

        labels = get_labels(PIPELINE_LABELS, self.language)
        memory_labels = get_labels(MEMORY_LABELS, self.language)

        if kind == "remember":
            category = infer_category(content)
            scope = infer_scope(content, case_id)
            memory = self.add(CopilotMemory(
                id=create_id("mem"),
                workspace_id=workspace_id,
                scope=scope,
                category=category,
                title=content[:TITLE_LENGTH],
                content=content,
                case_id=case_id,
                session_id=session_id,
            ))
            logger.info(f"Stored {scope}/{category} memory {memory.id}")
            return MemoryInstructionResult(
                handled=True,
                response=labels["memory_saved"].format(
                    scope=memory_labels["scopes"][scope],
                    category=memory_labels["categories"][category],
                    content=content[:RESPONSE_PREVIEW],
                ),
                memory_id=memory.id,
            )

        query_tokens = set(memory_tokens(content))
        matches = [
            m for m in self.active(workspace_id)
            if query_tokens.intersection(memory_tokens(f"{m.content} {m.title}"))
        ]
        if not matches:
            return MemoryInstructionResult(
                handled=True, response=labels["memory_not_found"].format(content=content),
            )
        with self._lock:
            for m in matches:
                m.status = "deleted"
        logger.info(f"Deleted {len(matches)} memories in {workspace_id}")
        return MemoryInstructionResult(
            handled=True, response=labels["memory_deleted"].format(count=len(matches)),
        )

    # ----- Retrieval -----

    def score(self, memory: CopilotMemory, query_tokens: list[str]) -> float:
        tokens = {
            *memory_tokens(memory.content),
            *memory_tokens(memory.title),
            *(k.lower() for k in memory.keywords),
        }
        score = 0.0
        for qt in query_tokens:
            if qt in tokens:
                score += 2
            for mt in tokens:
                if mt in qt or qt in mt:
                    score += 0.5
        score *= 1 + SCOPE_BOOST.get(memory.scope, 0.0) * 0.2
        score *= memory.confidence
        score += min(memory.usage_count * 0.1, 1.0)
        if memory.category in ALWAYS_RELEVANT_CATEGORIES:
            score += 3
        return score

    def find_relevant(
        self,
        workspace_id: str,
        case_id: Optional[str],
        session_id: Optional[str],
        query: str,
        max_results: int = MAX_MEMORIES,
    ) -> list[CopilotMemory]:
        candidates = self._visible(workspace_id, case_id, session_id)
        query_tokens = memory_tokens(query)
        if not query_tokens:
            return candidates[:max_results]

        scored = [(m, self.score(m, query_tokens)) for m in candidates]
        scored = sorted(scored, key=lambda item: -item[1])
        return [m for m, s in scored if s > MIN_MEMORY_SCORE][:max_results]

    def build_context_block(
        self,
        workspace_id: str,
        case_id: Optional[str],
        session_id: Optional[str],
        query: str,
    ) -> MemoryContext:
        relevant = self.find_relevant(workspace_id, case_id, session_id, query)
        if not relevant:
            return MemoryContext()

        now = utc_now()
        with self._lock:
            for m in relevant:
                m.usage_count += 1
                m.last_used_at = now

        labels = get_labels(MEMORY_LABELS, self.language)
        lines = [labels["block_header"]]
        for label_key, categories, with_title in BLOCK_SECTIONS:
            section = [m for m in relevant if m.category in categories]
            if not section:
                continue
            lines.append(labels[label_key])
            for m in section:
                if with_title:
                    lines.append(f"- {m.title}: {m.content}")
                else:
                    lines.append(f"- [{labels['scopes'][m.scope]}] {m.content}")

        return MemoryContext(block="\n".join(lines), used_memory_ids=[m.id for m in relevant])
