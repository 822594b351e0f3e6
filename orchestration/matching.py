# file: orchestration/matching.py
"""
Free-text failure matching for Pick Your Poison.

Resolution order (input and candidate names are trimmed + lowercased):
1) exact name equality          -> first candidate wins
2) input is a substring of name -> first candidate wins
3) Dice coefficient over character bigram sets,
       score = 2 * |A & B| / (|A| + |B|)
   strictly-highest score wins (ties keep the earlier candidate) and it must
   reach FUZZY_THRESHOLD. Inputs shorter than two characters have no bigrams
   and never match here.

Pure functions; candidate order is the caller's stable catalogue order.
"""
from __future__ import annotations

from typing import Optional, Sequence, Set

from catalogue.models import ResolvedFailure

FUZZY_THRESHOLD = 0.35


def _normalize(text: str) -> str:
    return text.strip().lower()


def bigrams(text: str) -> Set[str]:
    return {text[i:i + 2] for i in range(len(text) - 1)}


def dice_coefficient(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return 2.0 * len(a & b) / (len(a) + len(b))


def fuzzy_match(
    text: str,
    pool: Sequence[ResolvedFailure],
    threshold: float = FUZZY_THRESHOLD,
) -> Optional[ResolvedFailure]:
    if not pool:
        return None
    needle = _normalize(text)
    if not needle:
        return None

    names = [_normalize(f.name) for f in pool]

    for failure, name in zip(pool, names):
        if name == needle:
            return failure

    for failure, name in zip(pool, names):
        if needle in name:
            return failure

    needle_bigrams = bigrams(needle)
    if not needle_bigrams:
        return None

    best: Optional[ResolvedFailure] = None
    best_score = 0.0
    for failure, name in zip(pool, names):
        score = dice_coefficient(needle_bigrams, bigrams(name))
        if score > best_score:
            best, best_score = failure, score

    return best if best_score >= threshold else None
