"""
Citation Extraction for Generated Answers

After generation the answer text is matched back against the context it
was grounded on:

- Source citations: retrieved chunks whose document title, token overlap
  or own relevance ties them to the answer.
- Norm citations: "§ <number> <law>" references found in the answer,
  resolved against a norm lookup when one is available.
- Finding references: case findings whose significant title words appear
  in the answer.

It also builds the "source & validity notice" appended to backend answers.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .lexical import jaccard, tokenize
from .language_patterns import NORM_CITATION_PATTERN, SOURCE_NOTICE_LABELS, get_labels
from .models import (
    ContextSnapshot,
    Finding,
    FindingRef,
    Jurisdiction,
    NormCitation,
    SourceCitation,
)
from .store import NormLookup, call_side_channel

logger = logging.getLogger(__name__)


HIGH_RELEVANCE_THRESHOLD = 0.84
MIN_TOKEN_OVERLAP = 0.065
QUOTE_LENGTH = 200
DEDUPE_PREFIX_LENGTH = 72
MAX_SOURCE_CITATIONS = 10
MAX_NORM_CITATIONS = 15
MAX_FINDING_REFS = 10
MAX_CONTEXT_WARNINGS_IN_NOTICE = 2


def _significant_words(title: str) -> list[str]:
    return [w for w in title.lower().split() if len(w) > 3]


@dataclass
class ExtractedCitations:
    sources: list[SourceCitation]
    norms: list[NormCitation]
    findings: list[FindingRef]


class CitationExtractor:
    """
    Matches an answer back to the snapshot it was generated from.

    Usage:
        extractor = CitationExtractor(norm_lookup, language="de")
        citations = extractor.extract(answer, snapshot, findings)
        answer += extractor.source_notice(snapshot, citations.sources) or ""
    """

    def __init__(
        self,
        norm_lookup: Optional[NormLookup] = None,
        language: str = "de",
        jurisdiction: Optional[Jurisdiction] = Jurisdiction.DE,
    ):
        self.norm_lookup = norm_lookup
        self.language = language
        self.jurisdiction = jurisdiction

    def extract(
        self,
        response: str,
        snapshot: ContextSnapshot,
        findings: Sequence[Finding] = (),
    ) -> ExtractedCitations:
        return ExtractedCitations(
            sources=self.source_citations(response, snapshot),
            norms=self.norm_citations(response),
            findings=self.finding_refs(response, findings),
        )

    def source_citations(self, response: str, snapshot: ContextSnapshot) -> list[SourceCitation]:
        """
        Chunks that support the answer, best first.

        A chunk qualifies on a title-word hit, a token overlap of at least
        MIN_TOKEN_OVERLAP, or its own relevance reaching
        HIGH_RELEVANCE_THRESHOLD. Results are deduplicated by document and
        quote prefix.
        """
        response_lower = response.lower()
        response_tokens = tokenize(response_lower)

        candidates = []
        for chunk in snapshot.relevant_chunks:
            title_match = any(w in response_lower for w in _significant_words(chunk.document_title))
            overlap = jaccard(response_tokens, tokenize(chunk.excerpt))
            high_relevance = chunk.relevance_score >= HIGH_RELEVANCE_THRESHOLD
            if not (title_match or overlap >= MIN_TOKEN_OVERLAP or high_relevance):
                continue

            confidence = chunk.relevance_score
            if title_match:
                confidence += 0.25
            confidence += min(0.25, overlap * 2.5)

            candidates.append((confidence, SourceCitation(
                document_id=chunk.document_id,
                document_title=chunk.document_title,
                quote=chunk.excerpt[:QUOTE_LENGTH],
                category=chunk.category,
                relevance_score=chunk.relevance_score,
            )))

        seen = set()
        citations = []
        for _, citation in sorted(candidates, key=lambda item: -item[0]):
            key = (citation.document_id, citation.quote[:DEDUPE_PREFIX_LENGTH])
            if key in seen:
                continue
            seen.add(key)
            citations.append(citation)
            if len(citations) >= MAX_SOURCE_CITATIONS:
                break
        return citations

    def norm_citations(self, response: str) -> list[NormCitation]:
        labels = get_labels(SOURCE_NOTICE_LABELS, self.language)
        jurisdictions = [j.value for j in (self.jurisdiction, Jurisdiction.EU, Jurisdiction.ECHR) if j]

        citations = []
        seen = set()
        for match in NORM_CITATION_PATTERN.finditer(response):
            paragraph, law = match.group(1), match.group(2)
            key = f"{paragraph}-{law}"
            if key in seen:
                continue
            seen.add(key)

            norm = self._lookup(f"§ {paragraph} {law}", jurisdictions)
            citations.append(NormCitation(
                norm_id=norm.norm_id if norm else key,
                law=norm.law if norm else law,
                paragraph=f"§ {paragraph}",
                title=norm.title if norm else f"§ {paragraph} {law}",
                relevance=(
                    labels["norm_score"].format(percent=round(norm.match_score * 100))
                    if norm else labels["norm_referenced"]
                ),
            ))
            if len(citations) >= MAX_NORM_CITATIONS:
                break
        return citations

    def _lookup(self, query: str, jurisdictions: list[str]):
        if self.norm_lookup is None:
            return None
        result = call_side_channel(
            "norm_lookup", lambda: (self.norm_lookup.search(query, jurisdictions) or [None])[0]
        )
        return result.contribution

    def finding_refs(self, response: str, findings: Sequence[Finding]) -> list[FindingRef]:
        response_lower = response.lower()
        refs = []
        for finding in findings:
            if any(w in response_lower for w in _significant_words(finding.title)):
                refs.append(FindingRef(
                    finding_id=finding.id,
                    title=finding.title,
                    type=finding.type,
                    severity=finding.severity,
                ))
                if len(refs) >= MAX_FINDING_REFS:
                    break
        return refs

    def source_notice(
        self,
        snapshot: ContextSnapshot,
        sources: Sequence[SourceCitation],
    ) -> Optional[str]:
        """Markdown notice on citation coverage and case-law validity, or None."""
        labels = get_labels(SOURCE_NOTICE_LABELS, self.language)
        temporal = [hit.temporal_applicability for hit in snapshot.case_law_context]

        notes = []
        if not sources:
            notes.append(labels["no_citations"])
        if "historical" in temporal and "current" not in temporal:
            notes.append(labels["only_historical"])
        if "unknown" in temporal:
            notes.append(labels["unknown_validity"])
        notes.extend(snapshot.source_reliability_warnings[:MAX_CONTEXT_WARNINGS_IN_NOTICE])

        if not notes:
            return None
        unique = list(dict.fromkeys(notes))
        return f"\n\n{labels['heading']}\n" + "\n".join(f"- {note}" for note in unique)

    def append_source_notice(
        self,
        response: str,
        snapshot: ContextSnapshot,
        sources: Sequence[SourceCitation],
    ) -> str:
        """Append the notice unless the answer already carries one."""
        heading = get_labels(SOURCE_NOTICE_LABELS, self.language)["heading"]
        notice = self.source_notice(snapshot, sources)
        if notice and heading not in response:
            return response + notice
        return response
