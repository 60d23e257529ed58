"""
Context Assembler for Case Chat

Builds the immutable ContextSnapshot for one user message: ranked chunks,
active norms, findings and deadline summaries, contradictions, evidence
gaps, authority-weighted case law, source reliability warnings and the
composed system prompt.

Side channels (evidence gaps, collective knowledge, opponent profiles) are
best-effort: a failure omits that block and never aborts assembly.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional, Sequence

from .config import CopilotConfig
from .language_patterns import (
    CLOSING_INSTRUCTIONS,
    CONTEXT_LABELS,
    MODE_PROMPTS,
    PROMPT_SECTIONS,
    get_labels,
)
from .models import (
    CaseLawHit,
    CaseRecord,
    ChatMessage,
    ChatMode,
    ContextSnapshot,
    Deadline,
    DocumentMeta,
    Finding,
    IndexStatus,
    ScoredChunk,
    utc_now,
)
from .retriever import RelevanceRetriever, effective_documents
from .store import (
    CaseStore,
    CollectiveKnowledgeMatcher,
    EvidenceGapAnalyzer,
    OpponentProfileMatcher,
    SideChannelResult,
    call_side_channel,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Case-law weighting
# ============================================================================

AUTHORITY_WEIGHTS = {"binding": 3.0, "persuasive": 1.5, "reference": 0.4}
TEMPORAL_WEIGHTS = {"current": 2.0, "unknown": 0.6, "historical": -3.0}
MAX_CASE_LAW_HITS = 8
MAX_CONTRADICTIONS = 5
MAX_RELIABILITY_WARNINGS = 6
VERY_LOW_QUALITY = 0.3
REDUCED_QUALITY = 0.45


def rank_case_law(hits: Sequence[CaseLawHit], limit: int = MAX_CASE_LAW_HITS) -> list[CaseLawHit]:
    """Order case-law hits by relevance plus authority and temporal weight."""
    def weight(hit: CaseLawHit) -> float:
        return (
            hit.relevance_score
            + AUTHORITY_WEIGHTS.get(hit.authority_level, 0.0)
            + TEMPORAL_WEIGHTS.get(hit.temporal_applicability, 0.0)
        )

    return sorted(hits, key=weight, reverse=True)[:limit]


# ============================================================================
# Summaries
# ============================================================================

def summarize_findings(findings: Sequence[Finding], language: str = "de") -> str:
    labels = get_labels(CONTEXT_LABELS, language)
    if not findings:
        return labels["no_findings"]

    critical = [f.title for f in findings if f.severity == "critical"]
    high = [f.title for f in findings if f.severity == "high"]
    lines = [labels["findings_total"].format(count=len(findings))]
    if critical:
        lines.append(labels["findings_critical"].format(count=len(critical), titles=", ".join(critical)))
    if high:
        lines.append(labels["findings_high"].format(count=len(high), titles=", ".join(high)))
    return "\n".join(lines)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken as UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def deadline_warnings(
    deadlines: Sequence[Deadline],
    now: datetime,
    language: str = "de",
) -> list[str]:
    """
    Classify open deadlines relative to ``now``.

    Overdue (days < 0), due within 7 days, or upcoming within 30 days.
    Completed and expired deadlines are skipped.
    """
    labels = get_labels(CONTEXT_LABELS, language)
    now = _as_utc(now)
    warnings = []
    for deadline in deadlines:
        if deadline.status in ("completed", "expired"):
            continue
        days = math.ceil((_as_utc(deadline.due_at) - now).total_seconds() / 86400)
        date = deadline.due_at.date().isoformat()
        if days < 0:
            warnings.append(labels["deadline_overdue"].format(title=deadline.title, days=abs(days)))
        elif days <= 7:
            warnings.append(labels["deadline_due"].format(title=deadline.title, days=days, date=date))
        elif days <= 30:
            warnings.append(labels["deadline_upcoming"].format(title=deadline.title, days=days, date=date))
    return warnings


def contradiction_highlights(findings: Sequence[Finding]) -> list[str]:
    contradictions = [f for f in findings if f.type == "contradiction"][:MAX_CONTRADICTIONS]
    return [f"{f.title}: {f.description[:200]}" for f in contradictions]


def opposing_party_summary(case: Optional[CaseRecord], language: str = "de") -> str:
    labels = get_labels(CONTEXT_LABELS, language)
    if case is None or not case.opposing_parties:
        return labels["no_opponents"]
    parts = []
    for party in case.opposing_parties:
        text = f"{party.display_name} ({party.kind})"
        if party.legal_representative:
            text += labels["opponent_representative"].format(name=party.legal_representative)
        parts.append(text)
    return "; ".join(parts)


def reliability_warnings(
    case_law: Sequence[CaseLawHit],
    effective_docs: Sequence[DocumentMeta],
    all_docs: Sequence[DocumentMeta],
    language: str = "de",
) -> list[str]:
    """Warnings about stale case law and weak or unavailable source documents."""
    labels = get_labels(CONTEXT_LABELS, language)
    warnings = []

    historical = sum(1 for h in case_law if h.temporal_applicability == "historical")
    if historical:
        warnings.append(labels["warn_historical"].format(count=historical))

    unknown = sum(1 for h in case_law if h.temporal_applicability == "unknown")
    if unknown:
        warnings.append(labels["warn_unknown_temporal"].format(count=unknown))

    very_low = [
        d for d in effective_docs
        if d.quality_score is not None and d.quality_score < VERY_LOW_QUALITY
    ]
    reduced = [
        d for d in effective_docs
        if d not in very_low and (
            d.index_status == IndexStatus.NEEDS_REVIEW
            or (d.quality_score is not None and d.quality_score < REDUCED_QUALITY)
        )
    ]
    if very_low:
        titles = ", ".join(d.title for d in very_low[:3])
        warnings.append(labels["warn_very_low_quality"].format(count=len(very_low), titles=titles))
    if reduced:
        warnings.append(labels["warn_low_quality"].format(count=len(reduced)))

    pending = sum(1 for d in all_docs if d.index_status == IndexStatus.PENDING)
    if pending:
        warnings.append(labels["warn_pending"].format(count=pending))

    return warnings[:MAX_RELIABILITY_WARNINGS]


# ============================================================================
# Assembler
# ============================================================================

class ContextAssembler:
    """
    Builds ContextSnapshots from the case store.

    Usage:
        assembler = ContextAssembler(store, config=CopilotConfig())
        snapshot = assembler.build("case:1", "ws:1", "Welche Ansprüche bestehen?", [], ChatMode.GENERAL)
    """

    def __init__(
        self,
        store: CaseStore,
        retriever: Optional[RelevanceRetriever] = None,
        config: Optional[CopilotConfig] = None,
        evidence_gaps: Optional[EvidenceGapAnalyzer] = None,
        collective: Optional[CollectiveKnowledgeMatcher] = None,
        opponent_profiles: Optional[OpponentProfileMatcher] = None,
    ):
        self.store = store
        self.retriever = retriever or RelevanceRetriever()
        self.config = config or CopilotConfig()
        self.evidence_gaps = evidence_gaps
        self.collective = collective
        self.opponent_profiles = opponent_profiles

    @property
    def language(self) -> str:
        return self.config.language.language

    def build(
        self,
        case_id: str,
        workspace_id: str,
        query: str,
        history: Sequence[ChatMessage],
        mode: ChatMode,
        now: Optional[datetime] = None,
    ) -> ContextSnapshot:
        """
        Assemble the snapshot for one message.

        Args:
            case_id: Case identifier
            workspace_id: Workspace (tenant) identifier
            query: User message content
            history: Prior session messages (kept for prompt-building collaborators)
            mode: Chat mode
            now: Reference time for deadline classification

        Returns:
            Frozen ContextSnapshot
        """
        now = now or utc_now()
        lang = self.language
        jurisdiction = self.config.language.jurisdiction

        case = self.store.get_case(case_id)
        chunks = self.store.get_chunks(case_id)
        all_docs = self.store.get_documents(case_id)
        findings = self.store.get_findings(case_id)
        active_norms = tuple(dict.fromkeys(self.store.get_norm_references(case_id)))
        deadlines = self.store.get_deadlines(case_id)
        case_law = tuple(rank_case_law(self.store.get_case_law_hits(case_id)))

        effective_docs = effective_documents(all_docs, jurisdiction)
        relevant_chunks = tuple(self.retriever.rank(
            query,
            chunks,
            all_docs,
            mode=mode,
            max_results=self.config.max_context_chunks,
            jurisdiction=jurisdiction,
        ))

        warnings = tuple(reliability_warnings(case_law, effective_docs, all_docs, lang))
        findings_summary = summarize_findings(findings, lang)
        deadline_lines = tuple(deadline_warnings(deadlines, now, lang))
        contradictions = tuple(contradiction_highlights(findings))
        gaps = tuple(self._evidence_gaps(case_id))
        opposing = opposing_party_summary(case, lang)

        collective = self._collective(query, active_norms)
        opponent = self._opponent(case)

        system_prompt = self.compose_prompt(
            mode=mode,
            case=case,
            relevant_chunks=relevant_chunks,
            active_norms=active_norms,
            findings_summary=findings_summary,
            deadline_lines=deadline_lines,
            contradictions=contradictions,
            evidence_gaps=gaps,
            opposing=opposing,
            case_law=case_law,
            warnings=warnings,
            collective_block=collective.prompt_block,
            opponent_block=opponent.prompt_block,
        )

        logger.info(
            f"Context for {case_id}: {len(relevant_chunks)} chunks, {len(active_norms)} norms, "
            f"{len(deadline_lines)} deadlines, {len(case_law)} case-law hits"
        )

        return ContextSnapshot(
            case_id=case_id,
            workspace_id=workspace_id,
            mode=mode,
            relevant_chunks=relevant_chunks,
            active_norms=active_norms,
            findings_summary=findings_summary,
            deadline_warnings=deadline_lines,
            contradiction_highlights=contradictions,
            evidence_gaps=gaps,
            opposing_party_context=opposing,
            case_law_context=case_law,
            source_reliability_warnings=warnings,
            system_prompt=system_prompt,
            collective_context=collective.contribution,
            opponent_snapshot=opponent.contribution,
            generated_at=now.isoformat(),
        )

    # ------------------------------------------------------------------
    # Side channels
    # ------------------------------------------------------------------

    def _evidence_gaps(self, case_id: str) -> list[str]:
        if self.evidence_gaps is None:
            return []
        result = call_side_channel(
            "evidence_gaps", lambda: self.evidence_gaps.analyze_gaps(case_id) or None
        )
        if not result.contributed:
            return []
        return [f"{gap.topic}: {gap.description}" for gap in result.contribution]

    def _collective(self, query: str, active_norms: Sequence[str]) -> SideChannelResult:
        if self.collective is None or not self.config.collective_enabled:
            return SideChannelResult()

        def run():
            context = self.collective.build_context(query, list(active_norms))
            if context is None:
                return None
            return context, self.collective.to_prompt(context)

        result = call_side_channel("collective_knowledge", run)
        if not result.contributed:
            return SideChannelResult(error=result.error)
        context, block = result.contribution
        return SideChannelResult(contribution=context, prompt_block=block)

    def _opponent(self, case: Optional[CaseRecord]) -> SideChannelResult:
        if self.opponent_profiles is None or case is None:
            return SideChannelResult()

        def run():
            snapshot = self.opponent_profiles.build_snapshot(case.opposing_parties, case.court)
            if snapshot is None or snapshot.is_empty:
                return None
            return snapshot, self.opponent_profiles.to_prompt(snapshot)

        result = call_side_channel("opponent_profile", run)
        if not result.contributed:
            return SideChannelResult(error=result.error)
        snapshot, block = result.contribution
        return SideChannelResult(contribution=snapshot, prompt_block=block)

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------

    def compose_prompt(
        self,
        mode: ChatMode,
        case: Optional[CaseRecord],
        relevant_chunks: Sequence[ScoredChunk],
        active_norms: Sequence[str],
        findings_summary: str,
        deadline_lines: Sequence[str],
        contradictions: Sequence[str],
        evidence_gaps: Sequence[str],
        opposing: str,
        case_law: Sequence[CaseLawHit],
        warnings: Sequence[str],
        collective_block: str = "",
        opponent_block: str = "",
    ) -> str:
        """Concatenate the prompt sections in their fixed order."""
        lang = self.language
        sections = get_labels(PROMPT_SECTIONS, lang)
        context_labels = get_labels(CONTEXT_LABELS, lang)
        parts = [get_labels(MODE_PROMPTS, lang)[mode.value]]

        parts.append(f"\n{sections['case_header']}")
        parts.append(f"{sections['case']}: {case.title if case else context_labels['unknown_case']}")
        if case is not None:
            if case.client_name:
                parts.append(f"{sections['client']}: {case.client_name}")
            if case.matter_title:
                parts.append(f"{sections['matter']}: {case.matter_title}")
            if case.file_reference:
                parts.append(f"{sections['file_reference']}: {case.file_reference}")
            if case.court:
                parts.append(f"{sections['court']}: {case.court}")
        parts.append(f"{sections['opponents']}: {opposing}")

        if active_norms:
            parts.append(f"\n{sections['norms']}")
            parts.append(", ".join(active_norms))

        if findings_summary:
            parts.append(f"\n{sections['findings']}")
            parts.append(findings_summary)

        if deadline_lines:
            parts.append(f"\n{sections['deadlines']}")
            parts.append("\n".join(deadline_lines))

        if contradictions:
            parts.append(f"\n{sections['contradictions']}")
            parts.append("\n".join(contradictions))

        if evidence_gaps:
            parts.append(f"\n{sections['evidence_gaps']}")
            parts.append("\n".join(evidence_gaps))

        if case_law:
            parts.append(f"\n{sections['case_law']}")
            for hit in case_law:
                parts.append(
                    f"- {hit.citation} | authority={hit.authority_level} | "
                    f"temporal={hit.temporal_applicability} | relevance={hit.relevance_score:.2f}"
                )

        if warnings:
            parts.append(f"\n{sections['reliability']}")
            parts.append("\n".join(f"- {w}" for w in warnings))

        if relevant_chunks:
            parts.append(f"\n{sections['chunks']}")
            for chunk in relevant_chunks:
                parts.append(f"--- [{chunk.document_title}] ({chunk.category}) ---")
                parts.append(chunk.excerpt)

        if collective_block:
            parts.append(collective_block)
        if opponent_block:
            parts.append(opponent_block)

        parts.append(f"\n{sections['instructions']}")
        for line in get_labels(CLOSING_INSTRUCTIONS, lang):
            parts.append("- " + line.format(response_language=self.config.language.response_language))

        return "\n".join(parts)
