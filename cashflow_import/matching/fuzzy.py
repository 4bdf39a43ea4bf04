from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from rapidfuzz.distance import Levenshtein

"""Levenshtein-based similarity for free-text references.

Used to resolve names typed by people (or proposed by the model) against
known records: a receivable's project name against existing contracts,
an incoming contract against one already stored. Scores are in [0, 1];
matching is never used for identity, only for suggestions and duplicate
detection above a threshold.
"""

__all__ = [
    "DEFAULT_THRESHOLD",
    "Match",
    "normalize",
    "fuzzy_match",
    "find_all_matches",
    "find_best_match",
]

DEFAULT_THRESHOLD = 0.6

_WHITESPACE = re.compile(r"\s+")

T = TypeVar("T")


def normalize(text: Any) -> str:
    if text is None:
        return ""
    return _WHITESPACE.sub(" ", str(text)).strip().lower()


def fuzzy_match(a: Any, b: Any) -> float:
    """Similarity of two strings.

    - equal after normalization: 1.0
    - one contains the other: ``0.8 + len(shorter) / len(longer) * 0.2``
    - otherwise ``1 - levenshtein / max_len`` (never below 0)

    Equality is checked first, so identical inputs always score 1.0 (even
    whitespace-only ones); otherwise an empty side never matches.
    """
    left, right = normalize(a), normalize(b)
    if left == right:
        return 1.0
    if not left or not right:
        return 0.0

    needle, haystack = (left, right) if len(left) <= len(right) else (right, left)
    if needle in haystack:
        return 0.8 + (len(needle) / len(haystack)) * 0.2

    distance = Levenshtein.distance(left, right)
    return max(0.0, 1.0 - distance / max(len(left), len(right)))


@dataclass(frozen=True)
class Match(Generic[T]):
    item: T
    score: float
    index: int


def find_all_matches(
    needle: Any,
    candidates: Iterable[T],
    *,
    key: Callable[[T], Any] | None = None,
    threshold: float = DEFAULT_THRESHOLD,
) -> list[Match[T]]:
    """All candidates scoring at least ``threshold``, best first.

    The sort is stable, so equal scores keep input order.
    """
    matches: list[Match[T]] = []
    for index, item in enumerate(candidates):
        text = key(item) if key is not None else item
        score = fuzzy_match(needle, text)
        if score >= threshold:
            matches.append(Match(item=item, score=score, index=index))
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches


def find_best_match(
    needle: Any,
    candidates: Iterable[T],
    *,
    key: Callable[[T], Any] | None = None,
    threshold: float = DEFAULT_THRESHOLD,
) -> Match[T] | None:
    matches = find_all_matches(needle, candidates, key=key, threshold=threshold)
    return matches[0] if matches else None
