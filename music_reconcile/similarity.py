from __future__ import annotations

import math
import re
import unicodedata
from typing import Iterable, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from .models import AUTO_APPROVE, MANUAL, REVIEW

AUTO_APPROVE_THRESHOLD = 90
REVIEW_THRESHOLD = 70

_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")
# Combining marks are dropped only after Latin base letters so that kana
# voicing marks survive NFKD decomposition.
_LATIN_LIMIT = "\u0250"


def normalize_match_text(value: Optional[str]) -> str:
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value)
    kept: list[str] = []
    for ch in decomposed:
        if unicodedata.combining(ch) and kept and kept[-1] < _LATIN_LIMIT:
            continue
        kept.append(ch)
    cleaned = unicodedata.normalize("NFC", "".join(kept)).casefold()
    cleaned = _PUNCTUATION.sub("", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned)
    return cleaned.strip()


def similarity(a: Optional[str], b: Optional[str]) -> int:
    """Edit-distance similarity on a 0-100 scale; both inputs are normalized first."""
    norm_a = normalize_match_text(a)
    norm_b = normalize_match_text(b)
    longest = max(len(norm_a), len(norm_b))
    if longest == 0:
        return 100
    distance = Levenshtein.distance(norm_a, norm_b)
    return round_half_up(100 * (longest - distance) / longest)


def field_similarity(source: Optional[str], candidate: Optional[str]) -> int:
    # A field the source record does not carry scores 0 rather than being skipped.
    if not source or not normalize_match_text(source):
        return 0
    return similarity(source, candidate)


def composite_confidence(pairs: Iterable[Tuple[Optional[str], Optional[str]]]) -> int:
    scores = [field_similarity(source, candidate) for source, candidate in pairs]
    if not scores:
        return 0
    return round_half_up(sum(scores) / len(scores))


def categorize(
    confidence: int,
    auto_approve: int = AUTO_APPROVE_THRESHOLD,
    review: int = REVIEW_THRESHOLD,
) -> str:
    if confidence >= auto_approve:
        return AUTO_APPROVE
    if confidence >= review:
        return REVIEW
    return MANUAL


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))
