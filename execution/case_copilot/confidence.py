"""
Answer Confidence Scoring

Weighted combination of named factors describing how well an answer is
grounded: source coverage, source diversity, relevance quality, legal
backing, freedom from contradictions and context depth.
"""

import logging
from dataclasses import dataclass

from .language_patterns import CONFIDENCE_LABELS, get_labels
from .models import AnswerConfidence, ConfidenceFactor

logger = logging.getLogger(__name__)


LEVEL_THRESHOLDS = (
    (0.85, "very_high"),
    (0.7, "high"),
    (0.5, "medium"),
    (0.3, "low"),
)

FACTOR_WEIGHTS = {
    "coverage": 0.25,
    "diversity": 0.10,
    "quality": 0.15,
    "legal": 0.20,
    "contradictions": 0.15,
    "richness": 0.15,
}

# Distinct source documents for full diversity score
DIVERSITY_TARGET = 3
LOW_QUALITY_THRESHOLD = 0.4


def confidence_level(score: float) -> str:
    for threshold, level in LEVEL_THRESHOLDS:
        if score >= threshold:
            return level
    return "very_low"


@dataclass
class ConfidenceInput:
    """Counts gathered from the snapshot and the extracted citations."""
    relevant_chunk_count: int
    source_doc_count: int
    relevance_scores: list[float]
    norm_citation_count: int
    case_law_count: int
    contradiction_count: int
    source_citation_count: int
    finding_count: int = 0
    memory_count: int = 0
    has_collective_context: bool = False


def compute_confidence(data: ConfidenceInput, language: str = "de") -> AnswerConfidence:
    """
    Score how well an answer is grounded.

    Args:
        data: Grounding counts for the answer
        language: Language for factor names and warnings

    Returns:
        AnswerConfidence with score in [0, 1], level, factors and warnings
    """
    labels = get_labels(CONFIDENCE_LABELS, language)
    chunks = data.relevant_chunk_count

    coverage = min(1.0, chunks / max(5.0, (chunks + 10) * 0.1))
    diversity = min(1.0, data.source_doc_count / DIVERSITY_TARGET)
    scores = [s for s in data.relevance_scores if s > 0]
    avg_quality = sum(scores) / len(scores) if scores else 0.5
    legal = min(1.0, data.norm_citation_count * 0.3 + data.case_law_count * 0.4)
    contradictions = max(0.0, 1 - data.contradiction_count * 0.2)
    richness = min(
        1.0,
        data.memory_count * 0.15
        + (0.3 if data.has_collective_context else 0.0)
        + data.finding_count * 0.1,
    )

    factors = (
        ConfidenceFactor(
            labels["coverage"], FACTOR_WEIGHTS["coverage"], coverage,
            labels["coverage_desc"].format(chunks=chunks, docs=data.source_doc_count),
        ),
        ConfidenceFactor(
            labels["diversity"], FACTOR_WEIGHTS["diversity"], diversity,
            labels["diversity_desc"].format(docs=data.source_doc_count),
        ),
        ConfidenceFactor(
            labels["quality"], FACTOR_WEIGHTS["quality"], avg_quality,
            labels["quality_desc"].format(percent=round(avg_quality * 100)),
        ),
        ConfidenceFactor(
            labels["legal"], FACTOR_WEIGHTS["legal"], legal,
            labels["legal_desc"].format(norms=data.norm_citation_count, case_law=data.case_law_count),
        ),
        ConfidenceFactor(
            labels["contradictions"], FACTOR_WEIGHTS["contradictions"], contradictions,
            labels["contradictions_desc"].format(count=data.contradiction_count)
            if data.contradiction_count else labels["contradictions_none"],
        ),
        ConfidenceFactor(
            labels["richness"], FACTOR_WEIGHTS["richness"], richness,
            labels["richness_desc"].format(
                memories=data.memory_count,
                findings=data.finding_count,
                collective=labels["richness_collective"] if data.has_collective_context else "",
            ),
        ),
    )

    total_weight = sum(f.weight for f in factors)
    score = sum(f.score * f.weight for f in factors) / total_weight
    score = round(max(0.0, min(1.0, score)), 2)

    warnings = []
    if chunks == 0:
        warnings.append(labels["warn_no_chunks"])
    if data.source_citation_count == 0:
        warnings.append(labels["warn_no_citations"])
    if data.contradiction_count > 2:
        warnings.append(labels["warn_contradictions"])
    if avg_quality < LOW_QUALITY_THRESHOLD:
        warnings.append(labels["warn_low_quality"])
    if data.norm_citation_count == 0 and data.case_law_count == 0:
        warnings.append(labels["warn_no_legal"])

    level = confidence_level(score)
    logger.debug(f"Answer confidence {score:.2f} ({level}), {len(warnings)} warnings")

    return AnswerConfidence(
        score=score,
        level=level,
        factors=factors,
        supporting_sources=chunks,
        contradicting_sources=data.contradiction_count,
        has_unverified_claims=chunks == 0,
        warnings=tuple(warnings),
    )
