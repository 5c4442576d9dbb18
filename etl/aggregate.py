"""Aggregation recompute: fold resolved results into the runner database.

Pure function of its input rows. Rows are ordered by ``(year, position)``
before folding and frequency ties are broken lexicographically, so any
permutation of the same rows produces the same database.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from archive.results import ResultEntry
from .utils import most_common

logger = logging.getLogger(__name__)

MANUAL = "manual"
AUTOMATIC = "automatic"


def _group_by_runner(entries: List[ResultEntry]) -> Dict[str, List[ResultEntry]]:
    groups: Dict[str, List[ResultEntry]] = defaultdict(list)
    for entry in entries:
        if entry.runner_id:
            groups[entry.runner_id].append(entry)
    return groups


def build_runner(runner_id: str, results: List[ResultEntry]) -> Dict:
    """Derive one runner record from every result carrying *runner_id*."""
    results = sorted(results, key=lambda r: (r.year, r.position))

    name_marker = next((r for r in results if r.canonical_name), None)
    canonical_name = name_marker.name if name_marker else most_common(r.name for r in results)

    club_marker = next((r for r in results if r.canonical_club), None)
    club = club_marker.club if club_marker else most_common(r.club for r in results)

    years = sorted({r.year for r in results})
    return {
        "runner_id": runner_id,
        "canonical_name": canonical_name or "Unknown",
        "canonical_name_source": MANUAL if name_marker else AUTOMATIC,
        "gender": most_common(r.gender for r in results),
        "most_common_club": club or "",
        "most_common_club_source": MANUAL if club_marker else AUTOMATIC,
        "years": years,
        # One race per year, so a year with two rows for one id still counts once
        "total_races": len(years),
    }


def build_runner_database(entries: Iterable[ResultEntry], years: Optional[Iterable[int]] = None) -> Dict:
    """Return ``{"runners": {...}, "metadata": {...}}`` for all *entries*.

    *years* lists the year files that were read (some may be empty); by
    default it is taken from the entries themselves.
    """
    entries = sorted(entries, key=lambda e: (e.year, e.position))
    groups = _group_by_runner(entries)

    runners = {rid: build_runner(rid, groups[rid]) for rid in sorted(groups)}
    assigned = sum(len(g) for g in groups.values())

    logger.info("Processed %d unique runners from %d results", len(runners), len(entries))
    return {
        "runners": runners,
        "metadata": {
            "years_included": sorted(set(years) if years is not None else {e.year for e in entries}),
            "total_runners": len(runners),
            "total_participations": len(entries),
            "participations_with_id": assigned,
            "unassigned_results": len(entries) - assigned,
        },
    }


def find_integrity_warnings(entries: Iterable[ResultEntry], runners: Dict[str, Dict]) -> Dict[str, List[Dict]]:
    """Problems worth a human look; none of them stop the database being built."""
    entries = sorted(entries, key=lambda e: (e.year, e.position))
    warnings: Dict[str, List[Dict]] = {
        "unassigned_results": [],
        "multiple_canonical_markers": [],
        "suspicious_patterns": [],
        "duplicate_ids_in_year": [],
    }

    for entry in entries:
        if not entry.runner_id:
            warnings["unassigned_results"].append({
                "year": entry.year,
                "position": entry.position,
                "name": entry.name,
                "category": entry.category.code,
                "club": entry.club,
            })

    groups = _group_by_runner(entries)
    for runner_id in sorted(groups):
        results = groups[runner_id]
        for flag, label in (("canonical_name", "canonical_name"), ("canonical_club", "canonical_club")):
            marked = [r for r in results if getattr(r, flag)]
            if len(marked) > 1:
                logger.warning("%s has %d results marked %s", runner_id, len(marked), label)
                warnings["multiple_canonical_markers"].append({
                    "runner_id": runner_id,
                    "issue": f"Multiple results marked as {label}",
                    "results": [{"year": r.year, "position": r.position} for r in marked],
                })

        if len({r.gender for r in results if r.gender}) > 1:
            warnings["suspicious_patterns"].append({
                "runner_id": runner_id,
                "name": runners.get(runner_id, {}).get("canonical_name", results[0].name),
                "issue": "Gender change detected",
                "details": "Categories: " + ", ".join(r.category.code for r in results),
            })

        by_year: Dict[int, List[int]] = defaultdict(list)
        for r in results:
            by_year[r.year].append(r.position)
        for year, positions in sorted(by_year.items()):
            if len(positions) > 1:
                warnings["duplicate_ids_in_year"].append(
                    {"year": year, "runner_id": runner_id, "positions": positions}
                )

    return warnings


__all__ = ["build_runner", "build_runner_database", "find_integrity_warnings"]
