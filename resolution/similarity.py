"""Similarity scoring and the cheap gates that must pass before a score is trusted.

Gates
-----
* **First name** – first token of each display name, lower-cased and cut to
  three characters, must be identical.
* **Gender** – both known and different means never the same runner.
* **Time plausibility** – finish times more than 40% apart (relative to the
  faster one) are treated as different people, or at least as something a
  human has to look at.
"""

from typing import Optional

from rapidfuzz.distance import Levenshtein

from .normalize import fold_accents, normalize

TIME_VARIANCE_THRESHOLD = 0.40


def similarity(name_a: str, name_b: str) -> float:
    """Return ``1 - levenshtein / max_len`` over the normalised names (0.0 – 1.0)."""
    norm_a = normalize(name_a)
    norm_b = normalize(name_b)
    if norm_a == norm_b:
        return 1.0

    # Plain insert / delete / substitute, each cost 1 (no transpositions)
    distance = Levenshtein.distance(norm_a, norm_b)
    return 1 - distance / max(len(norm_a), len(norm_b))


def first_name_key(name: str) -> str:
    tokens = fold_accents(name or "").split()
    return tokens[0][:3].lower() if tokens else ""


def first_name_matches(name_a: str, name_b: str) -> bool:
    return first_name_key(name_a) == first_name_key(name_b)


def genders_compatible(gender_a: Optional[str], gender_b: Optional[str]) -> bool:
    """False only when both genders are known and differ."""
    return not (gender_a and gender_b and gender_a != gender_b)


def time_to_seconds(value: Optional[str]) -> Optional[int]:
    """Parse ``H:MM:SS`` or ``MM:SS`` (``.`` and ``,`` accepted as separators).

    Returns ``None`` for blanks and anything unparseable.
    """
    if not value:
        return None
    cleaned = str(value).strip().replace(",", ":").replace(".", ":")
    try:
        parts = [int(p) for p in cleaned.split(":")]
    except ValueError:
        return None
    if len(parts) == 2:
        return parts[0] * 60 + parts[1]
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    return None


def is_reasonable_time_variance(time_a: Optional[str], time_b: Optional[str],
                                threshold: float = TIME_VARIANCE_THRESHOLD) -> bool:
    """True unless both times parse and differ by more than *threshold*.

    A missing (or zero) time on either side never rejects a match.
    """
    secs_a = time_to_seconds(time_a)
    secs_b = time_to_seconds(time_b)
    if not secs_a or not secs_b:
        return True
    variance = abs(secs_a - secs_b) / min(secs_a, secs_b)
    return variance <= threshold


__all__ = [
    "similarity",
    "first_name_key",
    "first_name_matches",
    "genders_compatible",
    "time_to_seconds",
    "is_reasonable_time_variance",
    "TIME_VARIANCE_THRESHOLD",
]
