"""Utility helpers for ETL layer."""

from collections import Counter
from typing import Iterable, Optional


def most_common(values: Iterable[Optional[str]]) -> Optional[str]:
    """Most frequent non-empty value; ties go to the lexicographically smallest.

    Independent of input order, so recomputing from shuffled rows is stable.
    """
    counts = Counter(v for v in values if v)
    if not counts:
        return None
    return min(counts.items(), key=lambda item: (-item[1], item[0]))[0]


__all__ = ["most_common"]
