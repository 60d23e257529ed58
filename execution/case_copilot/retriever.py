"""
Lexical Relevance Retriever for Case Material

Ranks the chunks of one case against a user query with an additive score
built from Jaccard overlap, TF-IDF cosine similarity, literal keyword hits,
legal-reference and entity matches, a mode-specific category bonus and
source quality weighting.

Ranking is deterministic: equal scores keep corpus order (stable sort), so
``rank(..., max_results=k)`` is always a prefix of a larger ``max_results``.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .lexical import (
    expand_query_tokens,
    idf_weights,
    jaccard,
    term_frequencies,
    tfidf_cosine,
    tokenize,
)
from .language_patterns import QUERY_LEGAL_REF_PATTERN
from .models import (
    ChatMode,
    DocumentMeta,
    IndexStatus,
    Jurisdiction,
    ScoredChunk,
    TextChunk,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Mode-specific category preferences
# ============================================================================

MODE_PREFERRED_CATEGORIES: dict[ChatMode, frozenset[str]] = {
    ChatMode.STRATEGIE: frozenset({
        "rechtsausfuehrung", "antrag", "urteil", "begruendung", "klageschrift", "berufung",
    }),
    ChatMode.SUBSUMTION: frozenset({
        "sachverhalt", "rechtsausfuehrung", "begruendung", "anklageschrift", "klageschrift",
    }),
    ChatMode.GEGNER: frozenset({
        "korrespondenz", "antrag", "rechtsausfuehrung", "klageschrift", "mahnung",
    }),
    ChatMode.BEWEISLAGE: frozenset({
        "beweis", "zeuge", "gutachten", "sachverhalt", "protokoll",
    }),
    ChatMode.FRISTEN: frozenset({"frist", "bescheid", "urteil", "mahnung"}),
    ChatMode.NORMEN: frozenset({
        "rechtsausfuehrung", "urteil", "begruendung", "anklageschrift", "strafanzeige",
    }),
}

# Jurisdictions whose hint filters sources; supranational sources never conflict
STRICT_JURISDICTIONS = frozenset({Jurisdiction.DE, Jurisdiction.AT})
SUPRANATIONAL_JURISDICTIONS = frozenset({Jurisdiction.EU, Jurisdiction.ECHR})

USABLE_INDEX_STATUSES = frozenset({IndexStatus.INDEXED, IndexStatus.NEEDS_REVIEW})


def preferred_categories(mode: ChatMode) -> frozenset[str]:
    return MODE_PREFERRED_CATEGORIES.get(mode, frozenset())


@dataclass
class RetrievalConfig:
    """Weights and thresholds for lexical chunk ranking."""
    # Similarity weights
    token_jaccard_weight: float = 8.0
    keyword_jaccard_weight: float = 6.0
    tfidf_weight: float = 10.0

    # Literal hit bonuses
    substring_hit_bonus: float = 0.4
    keyword_hit_bonus: float = 0.6
    legal_ref_bonus: float = 5.0
    entity_bonus: float = 4.0
    entity_min_token_length: int = 4
    category_bonus: float = 3.0

    # Source quality
    chunk_quality_weight: float = 3.5
    doc_quality_weight: float = 1.8
    default_doc_quality: float = 0.6
    needs_review_penalty: float = 1.2
    very_low_quality_threshold: float = 0.3
    very_low_quality_penalty: float = 2.5

    # Filtering and output
    min_chunk_quality: float = 0.12
    noise_floor: float = 1.8
    # Empirically chosen: maps raw additive scores into [0, 1]
    normalization_constant: float = 18.0
    excerpt_length: int = 1500
    max_results: int = 20


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _conflicts(doc: DocumentMeta, jurisdiction: Jurisdiction) -> bool:
    detected = doc.detected_jurisdiction
    return (
        detected is not None
        and detected != jurisdiction
        and detected not in SUPRANATIONAL_JURISDICTIONS
    )


def filter_by_jurisdiction(
    chunks: Sequence[TextChunk],
    docs: dict[str, DocumentMeta],
    jurisdiction: Optional[Jurisdiction],
) -> list[TextChunk]:
    """
    Drop chunks whose document jurisdiction conflicts with the active hint.

    Only DE/AT hints filter, and only when at least one candidate document
    carries jurisdiction metadata. If filtering would remove every
    candidate, the filter is skipped and all chunks stay eligible.
    """
    chunks = list(chunks)
    if jurisdiction not in STRICT_JURISDICTIONS or not chunks:
        return chunks

    candidate_docs = {c.document_id for c in chunks}
    if not any(docs[d].detected_jurisdiction for d in candidate_docs if d in docs):
        return chunks

    filtered = [c for c in chunks if not _conflicts(docs[c.document_id], jurisdiction)]
    if not filtered:
        logger.info(
            f"Jurisdiction filter ({jurisdiction.value}) would drop all {len(chunks)} candidates; skipping it"
        )
        return chunks
    return filtered


def effective_documents(
    docs: Sequence[DocumentMeta],
    jurisdiction: Optional[Jurisdiction],
) -> list[DocumentMeta]:
    """Usable documents after the jurisdiction filter, with the same empty-set fallback."""
    usable = [d for d in docs if d.index_status in USABLE_INDEX_STATUSES]
    if jurisdiction not in STRICT_JURISDICTIONS:
        return usable
    if not any(d.detected_jurisdiction for d in usable):
        return usable
    filtered = [d for d in usable if not _conflicts(d, jurisdiction)]
    return filtered or usable


class RelevanceRetriever:
    """
    Deterministic lexical ranking of case chunks.

    Usage:
        retriever = RelevanceRetriever()
        ranked = retriever.rank("Haftung nach § 823 BGB", chunks, docs, ChatMode.NORMEN)
    """

    def __init__(self, config: Optional[RetrievalConfig] = None):
        self.config = config or RetrievalConfig()

    def candidates(
        self,
        chunks: Sequence[TextChunk],
        docs: Sequence[DocumentMeta],
        jurisdiction: Optional[Jurisdiction] = None,
    ) -> list[TextChunk]:
        """Pre-scoring filter: usable documents, minimum chunk quality, jurisdiction."""
        doc_map = {d.id: d for d in docs}
        usable = []
        for chunk in chunks:
            doc = doc_map.get(chunk.document_id)
            if doc is None or doc.index_status not in USABLE_INDEX_STATUSES:
                continue
            if chunk.quality_score < self.config.min_chunk_quality:
                continue
            usable.append(chunk)
        return filter_by_jurisdiction(usable, doc_map, jurisdiction)

    def rank(
        self,
        query: str,
        chunks: Sequence[TextChunk],
        docs: Sequence[DocumentMeta],
        mode: ChatMode = ChatMode.GENERAL,
        max_results: Optional[int] = None,
        jurisdiction: Optional[Jurisdiction] = None,
    ) -> list[ScoredChunk]:
        """
        Rank chunks for a query.

        Args:
            query: User query
            chunks: All chunks of the case, in corpus order
            docs: Document metadata for the chunks
            mode: Chat mode (selects preferred categories)
            max_results: Result cap (defaults to config.max_results)
            jurisdiction: Active jurisdiction hint

        Returns:
            ScoredChunk list sorted descending by relevance
        """
        cfg = self.config
        limit = cfg.max_results if max_results is None else max_results
        if limit <= 0:
            return []

        doc_map = {d.id: d for d in docs}
        candidates = self.candidates(chunks, docs, jurisdiction)
        if not candidates:
            return []

        query_lower = query.lower()
        expanded = sorted(expand_query_tokens(tokenize(query_lower)))
        expanded_set = set(expanded)
        query_refs = [m.strip().lower() for m in QUERY_LEGAL_REF_PATTERN.findall(query)]
        preferred = preferred_categories(mode)

        query_tf = term_frequencies(query_lower)
        chunk_tfs = [term_frequencies(c.text) for c in candidates]
        idf = idf_weights([query_tf, *chunk_tfs])

        scored = []
        for chunk, chunk_tf in zip(candidates, chunk_tfs):
            doc = doc_map[chunk.document_id]
            score = self._score(
                chunk, doc, expanded, expanded_set, query_refs, preferred, query_tf, chunk_tf, idf,
            )
            if score > cfg.noise_floor:
                scored.append((chunk, score))

        # sorted() is stable: ties keep corpus order
        scored = sorted(scored, key=lambda item: -item[1])[:limit]

        results = [
            ScoredChunk(
                chunk_id=chunk.id,
                document_id=chunk.document_id,
                document_title=doc_map[chunk.document_id].title,
                excerpt=chunk.text[:cfg.excerpt_length],
                category=chunk.category,
                relevance_score=min(1.0, score / cfg.normalization_constant),
            )
            for chunk, score in scored
        ]
        logger.debug(f"Ranked {len(candidates)} candidates -> {len(results)} results (mode={mode.value})")
        return results

    def _score(
        self,
        chunk: TextChunk,
        doc: DocumentMeta,
        expanded: list[str],
        expanded_set: set[str],
        query_refs: list[str],
        preferred: frozenset[str],
        query_tf,
        chunk_tf,
        idf,
    ) -> float:
        cfg = self.config
        text = chunk.text.lower()
        keywords = sorted(k.lower() for k in chunk.keywords)

        score = jaccard(expanded_set, tokenize(text)) * cfg.token_jaccard_weight
        score += jaccard(expanded_set, tokenize(keywords)) * cfg.keyword_jaccard_weight
        score += tfidf_cosine(query_tf, chunk_tf, idf) * cfg.tfidf_weight

        for token in expanded:
            if token in text:
                score += cfg.substring_hit_bonus

        for keyword in keywords:
            for token in expanded:
                if token in keyword:
                    score += cfg.keyword_hit_bonus

        entities = chunk.extracted_entities
        if entities is not None:
            for query_ref in query_refs:
                for chunk_ref in entities.legal_refs:
                    if query_ref in chunk_ref.lower():
                        score += cfg.legal_ref_bonus

            for entity in (*entities.persons, *entities.organizations):
                entity_lower = entity.lower()
                for token in expanded:
                    if len(token) >= cfg.entity_min_token_length and token in entity_lower:
                        score += cfg.entity_bonus

        if chunk.category in preferred:
            score += cfg.category_bonus

        chunk_quality = _clamp(chunk.quality_score)
        doc_quality = _clamp(
            doc.quality_score if doc.quality_score is not None else cfg.default_doc_quality
        )
        score += chunk_quality * cfg.chunk_quality_weight
        score += doc_quality * cfg.doc_quality_weight

        if doc.index_status == IndexStatus.NEEDS_REVIEW:
            score -= cfg.needs_review_penalty
        if doc_quality < cfg.very_low_quality_threshold:
            score -= cfg.very_low_quality_penalty

        return score


def rank(
    query: str,
    chunks: Sequence[TextChunk],
    docs: Sequence[DocumentMeta],
    mode: ChatMode = ChatMode.GENERAL,
    max_results: int = 20,
    jurisdiction: Optional[Jurisdiction] = None,
) -> list[ScoredChunk]:
    """Rank with the default retrieval configuration."""
    return RelevanceRetriever().rank(query, chunks, docs, mode, max_results, jurisdiction)
