"""Runner id minting.

Ids are human-edited, so readable forms are tried before counters:
``name`` -> ``name-club`` -> ``name-2``, ``name-3`` ...
"""

from typing import Optional, Set

from .normalize import slugify

UNKNOWN_PREFIX = "unknown-runner"


def _club_token(club: Optional[str]) -> str:
    # First word of the club only: "Omagh Harriers" -> "omagh"
    slug = slugify(club or "")
    return slug.split("-")[0] if slug else ""


def mint(name: str, existing_ids: Set[str], club: Optional[str] = None) -> str:
    """Return a new runner id unique within *existing_ids* and add it to the set."""
    base = slugify(name)

    if not base:
        counter = 1
        while f"{UNKNOWN_PREFIX}-{counter}" in existing_ids:
            counter += 1
        new_id = f"{UNKNOWN_PREFIX}-{counter}"
    elif base not in existing_ids:
        new_id = base
    else:
        new_id = None
        token = _club_token(club)
        if token and f"{base}-{token}" not in existing_ids:
            new_id = f"{base}-{token}"
        if new_id is None:
            counter = 2
            while f"{base}-{counter}" in existing_ids:
                counter += 1
            new_id = f"{base}-{counter}"

    existing_ids.add(new_id)
    return new_id


__all__ = ["mint", "UNKNOWN_PREFIX"]
