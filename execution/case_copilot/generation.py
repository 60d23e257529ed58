"""
Answer Generation with Local Fallback

Calls the configured LLM backend with the snapshot's system prompt, recent
history and the user content. Any BackendUnavailableError switches to a
deterministic fallback answer assembled from the snapshot itself, clearly
marked with a fallback banner.

Finished backend answers are republished in growing slices through an
optional callback so polling consumers see the text build up.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .config import CopilotConfig
from .errors import BackendUnavailableError
from .language_patterns import CONTEXT_LABELS, FALLBACK_LABELS, MODE_LABELS, get_labels
from .llm_backend import LlmBackend
from .models import ChatMessage, ContextSnapshot, LlmModelOption, MessageRole

logger = logging.getLogger(__name__)


MAX_HISTORY_CONTENT = 3000
MIN_STREAM_SLICE = 50
FALLBACK_CHUNKS = 5
FALLBACK_EXCERPT = 300
FALLBACK_QUERY_PREVIEW = 80


@dataclass
class GenerationResult:
    text: str
    used_external_backend: bool
    error: Optional[str] = None


def history_messages(history: Sequence[ChatMessage], turns: int = 10) -> list[dict]:
    """Last ``turns`` user/assistant messages as chat-API dicts."""
    relevant = [
        m for m in history
        if m.role in (MessageRole.USER, MessageRole.ASSISTANT) and m.content
    ]
    return [
        {"role": m.role.value, "content": m.content[:MAX_HISTORY_CONTENT]}
        for m in relevant[-turns:]
    ] if turns > 0 else []


def stream_slices(text: str, slices: int = 8) -> list[str]:
    """Growing prefixes of ``text`` (each ending in an ellipsis) for live republishing."""
    size = max(MIN_STREAM_SLICE, len(text) // max(1, slices))
    return [text[:i] + "…" for i in range(size, len(text), size)]


def build_fallback_answer(query: str, snapshot: ContextSnapshot, language: str = "de") -> str:
    """Deterministic answer assembled from the snapshot when no backend is reachable."""
    labels = get_labels(FALLBACK_LABELS, language)
    no_findings = get_labels(CONTEXT_LABELS, language)["no_findings"]

    parts = [f"## {get_labels(MODE_LABELS, language)[snapshot.mode.value]}\n", labels["banner"]]
    baseline = len(parts)

    if snapshot.relevant_chunks:
        parts.append(labels["chunks"])
        for chunk in snapshot.relevant_chunks[:FALLBACK_CHUNKS]:
            parts.append(f"**{chunk.document_title}** *({chunk.category})*:")
            parts.append(f"> {chunk.excerpt[:FALLBACK_EXCERPT]}…\n")

    if snapshot.active_norms:
        parts.append(labels["norms"])
        parts.append(", ".join(snapshot.active_norms) + "\n")

    if snapshot.findings_summary and snapshot.findings_summary != no_findings:
        parts.append(labels["findings"])
        parts.append(snapshot.findings_summary + "\n")

    for key, lines in (
        ("deadlines", snapshot.deadline_warnings),
        ("contradictions", snapshot.contradiction_highlights),
        ("evidence_gaps", snapshot.evidence_gaps),
    ):
        if lines:
            parts.append(labels[key])
            parts.extend(f"- {line}" for line in lines)
            parts.append("")

    if len(parts) == baseline:
        parts.append(labels["nothing_found"].format(query=query[:FALLBACK_QUERY_PREVIEW]))
        parts.append(labels["ensure_indexed"])

    parts.append(labels["footer"])
    return "\n".join(parts)


class Generator:
    """
    Backend call with fallback.

    Usage:
        generator = Generator(build_backend(config), config)
        result = generator.generate(content, snapshot, history, model)
        if result.used_external_backend:
            quota_gate.commit(reservation)
    """

    def __init__(self, backend: Optional[LlmBackend], config: Optional[CopilotConfig] = None):
        self.backend = backend
        self.config = config or CopilotConfig()

    def generate(
        self,
        content: str,
        snapshot: ContextSnapshot,
        history: Sequence[ChatMessage],
        model: LlmModelOption,
        on_partial: Optional[Callable[[str], None]] = None,
    ) -> GenerationResult:
        """
        Generate an answer for ``content`` grounded on ``snapshot``.

        Args:
            content: User message (after any approval merge)
            snapshot: Frozen context for this run
            history: Prior session messages
            model: Selected model
            on_partial: Called with each growing prefix of a backend answer

        Returns:
            GenerationResult; used_external_backend is False for fallbacks
        """
        language = self.config.language.language
        if self.backend is None:
            return GenerationResult(
                build_fallback_answer(content, snapshot, language), False, "No LLM backend configured",
            )

        messages = history_messages(history, self.config.history_turns)
        messages.append({"role": MessageRole.USER.value, "content": content})

        try:
            text = self.backend.chat(snapshot.system_prompt, messages, model)
        except BackendUnavailableError as e:
            logger.warning(f"LLM backend unavailable ({model.id}), using fallback answer: {e}")
            return GenerationResult(build_fallback_answer(content, snapshot, language), False, str(e))
        except Exception as e:
            logger.error(f"LLM backend failed ({model.id}): {type(e).__name__}: {e}")
            return GenerationResult(build_fallback_answer(content, snapshot, language), False, str(e))

        if on_partial is not None:
            for partial in stream_slices(text, self.config.stream_slices):
                on_partial(partial)

        logger.info(f"Generated {len(text)} chars with {model.id}")
        return GenerationResult(text, True)
