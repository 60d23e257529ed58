"""
Lexical Utilities for Case Retrieval

Tokenization, domain synonym expansion, Jaccard overlap and TF-IDF cosine
similarity. Everything here is pure and deterministic; the retriever and
the citation extractor build on these primitives.
"""

import math
import re
from collections import Counter
from typing import Iterable, Mapping, Union

import numpy as np


STOP_WORDS = frozenset({
    "der", "die", "das", "und", "oder", "mit", "ohne", "von", "vom", "zum", "zur",
    "ein", "eine", "einer", "eines", "den", "dem", "des", "ist", "sind", "war", "waren",
    "for", "the", "and", "with", "without", "from", "this", "that",
})

# Domain synonym table: expansion only ever adds tokens
LEGAL_SYNONYMS: dict[str, tuple[str, ...]] = {
    "anspruch": ("forderung", "rechtsanspruch", "begehren"),
    "haftung": ("amtshaftung", "verantwortung", "schadenersatz"),
    "widerspruch": ("inkonsistenz", "konflikt", "abweichung"),
    "frist": ("fristlauf", "verjaehrung", "deadline", "termin"),
    "beweis": ("beweismittel", "nachweis", "indiz"),
    "urteil": ("entscheidung", "beschluss", "erkenntnis"),
    "norm": ("paragraph", "gesetz", "vorschrift"),
    "klage": ("klageschrift", "begehren", "antrag"),
    "berufung": ("revision", "rechtsmittel"),
}

_NON_TOKEN_CHARS = re.compile(r"[^a-z0-9äöüß§]")

TermVector = Mapping[str, float]


def normalize_token(raw: str) -> str:
    """Lowercase and strip everything except letters, digits, umlauts and §."""
    return _NON_TOKEN_CHARS.sub("", raw.lower())


def tokenize(text: Union[str, Iterable[str]], min_length: int = 3) -> set[str]:
    """
    Split text on whitespace into a set of normalized tokens.

    Stop words are removed. Tokens shorter than ``min_length`` are dropped
    unless they start with ``§`` so that bare paragraph markers survive.

    Args:
        text: A string, or an iterable of strings joined by spaces
        min_length: Minimum token length

    Returns:
        Set of normalized tokens
    """
    source = text if isinstance(text, str) else " ".join(text)
    tokens = set()
    for raw in source.split():
        token = normalize_token(raw)
        if not token or token in STOP_WORDS:
            continue
        if len(token) < min_length and not token.startswith("§"):
            continue
        tokens.add(token)
    return tokens


def expand_query_tokens(tokens: set[str]) -> set[str]:
    """Add domain synonyms for every token that has an entry in the table."""
    expanded = set(tokens)
    for token in tokens:
        expanded.update(LEGAL_SYNONYMS.get(token, ()))
    return expanded


def jaccard(a: set[str], b: set[str]) -> float:
    """Jaccard similarity; 0.0 when either set is empty."""
    if not a or not b:
        return 0.0
    overlap = len(a & b)
    union = len(a) + len(b) - overlap
    return overlap / union if union > 0 else 0.0


def term_frequencies(text: str, min_length: int = 3) -> Counter:
    """Term-frequency vector over normalized, non-stop-word tokens."""
    tf: Counter = Counter()
    for raw in text.split():
        token = normalize_token(raw)
        if not token or len(token) < min_length or token in STOP_WORDS:
            continue
        tf[token] += 1
    return tf


def idf_weights(corpus: list[TermVector]) -> dict[str, float]:
    """Smoothed IDF: ``log((n + 1) / (df + 1)) + 1`` for every term seen."""
    doc_freq: Counter = Counter()
    for tf in corpus:
        doc_freq.update(tf.keys())
    n = len(corpus)
    return {term: math.log((n + 1) / (df + 1)) + 1 for term, df in doc_freq.items()}


def tfidf_cosine(query_tf: TermVector, doc_tf: TermVector, idf: Mapping[str, float]) -> float:
    """
    IDF-weighted cosine similarity between two TF vectors.

    Terms missing from ``idf`` get weight 1.
    """
    if not query_tf or not doc_tf:
        return 0.0

    query_terms = list(query_tf)
    q = np.array([query_tf[t] * idf.get(t, 1.0) for t in query_terms], dtype=float)
    shared = np.array(
        [doc_tf.get(t, 0) * idf.get(t, 1.0) for t in query_terms], dtype=float
    )
    d = np.array([freq * idf.get(t, 1.0) for t, freq in doc_tf.items()], dtype=float)

    norm_q = np.linalg.norm(q)
    norm_d = np.linalg.norm(d)
    if norm_q == 0 or norm_d == 0:
        return 0.0
    return float(np.dot(q, shared) / (norm_q * norm_d))
