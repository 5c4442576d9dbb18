"""Name normalisation shared by similarity scoring and id minting.

Every comparison in the resolver goes through :func:`normalize` so that two
components can never disagree on what "the same name" means.
"""

import re
import unicodedata

# Curly / low-9 single quotes all collapse to a plain apostrophe
_QUOTES = str.maketrans({"\u2018": "'", "\u2019": "'", "\u201a": "'", "\u201b": "'"})

_WHITESPACE_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()]")
_SLUG_DROP_RE = re.compile(r"[^a-z0-9\s]")


def fold_accents(text: str) -> str:
    """Map accented Latin letters to their plain ASCII base and unify quotes."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.translate(_QUOTES)


def normalize(name: str) -> str:
    """Return the comparison key for a display name.

    Lower-cased, accent-folded, with all whitespace and a fixed punctuation
    set removed. Apostrophes are kept, so ``O'Neill`` and ``ONeill`` differ by
    one edit. ``None`` and blank input give ``""``.
    """
    if not name:
        return ""
    key = fold_accents(name).lower().strip()
    key = _WHITESPACE_RE.sub("", key)
    return _PUNCT_RE.sub("", key)


def slugify(text: str) -> str:
    """Hyphenated ``[a-z0-9-]`` slug used for runner ids."""
    if not text:
        return ""
    cleaned = _SLUG_DROP_RE.sub("", fold_accents(text).lower().strip())
    return "-".join(cleaned.split())


__all__ = ["fold_accents", "normalize", "slugify"]
