"""
Stdlib token matching for reference-point recall.

Reference points are short human phrases ("auth handshake timeout fix").
Recall compares them by token overlap after normalization:

- **normalize**: lowercase, strip punctuation, collapse whitespace.
- **tokenize**: split, drop English stop words, naive suffix stemming.
- **overlap**: fraction of query tokens present in the stored phrase.

Deterministic and dependency-free, so the same query always ranks the same
Frames in the same order.
"""

from __future__ import annotations

import re
import string
from typing import Iterable, List, Sequence

# Minimum overlap score for a stored phrase to count as a match
DEFAULT_MATCH_THRESHOLD = 0.5

# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

# Precompiled translation table: punctuation becomes whitespace
_PUNCT_TABLE = str.maketrans(string.punctuation, " " * len(string.punctuation))

# Collapse runs of whitespace
_WS_RE = re.compile(r"\s+")

STOP_WORDS = frozenset({
    "the", "a", "an", "in", "on", "at", "to", "for", "of", "with",
    "by", "from", "is", "are", "was", "were", "be", "been", "being",
    "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "can", "shall",
    "it", "its", "this", "that", "these", "those",
    "i", "me", "my", "we", "our", "you", "your", "he", "him", "his",
    "she", "her", "they", "them", "their",
    "not", "no", "nor", "so", "but", "or", "and", "if", "then",
    "about", "up", "out", "into", "over", "after", "before",
})

_MIN_STEM = 3


def normalize(text: str) -> str:
    """Normalize text for token comparison.

    Steps:
      1. Lowercase
      2. Replace punctuation with spaces
      3. Collapse whitespace
      4. Strip leading/trailing whitespace

    Returns empty string for empty/whitespace-only input.
    """
    text = text.lower()
    text = text.translate(_PUNCT_TABLE)
    text = _WS_RE.sub(" ", text)
    return text.strip()


def stem(word: str) -> str:
    """Strip one common English suffix, keeping at least three characters.

    Examples:
        >>> stem("policies")
        'policy'
        >>> stem("parsing")
        'pars'
        >>> stem("boxes")
        'box'
        >>> stem("class")
        'class'
    """
    if word.endswith("ies") and len(word) - 3 + 1 >= _MIN_STEM:
        return word[:-3] + "y"
    if word.endswith("ing") and len(word) - 3 >= _MIN_STEM:
        return word[:-3]
    if word.endswith("ed") and len(word) - 2 >= _MIN_STEM:
        return word[:-2]
    if word.endswith("es") and len(word) - 2 >= _MIN_STEM:
        base = word[:-2]
        if base.endswith(("sh", "ch", "x", "z", "ss")):
            return base
    if word.endswith("s") and not word.endswith("ss") and len(word) - 1 >= _MIN_STEM:
        return word[:-1]
    return word


def tokenize(text: str) -> List[str]:
    """Normalized, stemmed, de-duplicated tokens of *text*.

    Stop words are dropped unless the text consists only of stop words,
    in which case they are kept so the phrase still has an identity.
    Order of first occurrence is preserved. Returns empty list for empty input.
    """
    words = normalize(text).split()
    if not words:
        return []
    kept = [w for w in words if w not in STOP_WORDS] or words
    seen: set = set()
    tokens: List[str] = []
    for w in kept:
        s = stem(w)
        if s not in seen:
            seen.add(s)
            tokens.append(s)
    return tokens


# ---------------------------------------------------------------------------
# Similarity measures
# ---------------------------------------------------------------------------


def overlap(query_tokens: Sequence[str], doc_tokens: Iterable[str]) -> float:
    """Fraction of query tokens found in the document.

    O(Q, D) = |Q ∩ D| / |Q|

    Returns 0.0 for an empty query.
    """
    q = set(query_tokens)
    if not q:
        return 0.0
    return len(q & set(doc_tokens)) / len(q)
