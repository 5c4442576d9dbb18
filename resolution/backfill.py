"""Whole-archive runner id assignment.

Used when many years arrive without ids at once (the first import of the
archive, or a batch of recovered old results). Results that already carry a
``runner_id`` seed the runner groups; the rest are taken in (year, position)
order:

1. fuzzy match against the groups with the same gates as the new-year matcher.
   Auto-assigned results join their group straight away, so later years match
   against them too. A runner is never given two results in one year.
2. results with no candidate are clustered with each other (auto threshold,
   same gates, no two results from one year) and each cluster gets one id.
3. every runner created here is compared with every other runner; confusable
   pairs go to the merge review instead of being merged.

Results that only reached the warning band stay unassigned.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from archive.results import ResultEntry
from .index import IdentityIndex, IndexedRunner
from .matcher import (
    AUTO_ASSIGN_THRESHOLD,
    DUPLICATE_THRESHOLD,
    KNOWN_NAME_CHANGE,
    WARNING_THRESHOLD,
    UncertainMatch,
    find_best_match,
)
from .minting import mint
from .normalize import normalize
from .similarity import (
    first_name_matches,
    genders_compatible,
    is_reasonable_time_variance,
    similarity,
)

logger = logging.getLogger(__name__)

SIMILAR_RUNNERS = "Similar names with matching first name and gender"


def participation(entry: ResultEntry) -> Dict:
    return {
        "year": entry.year,
        "position": entry.position,
        "name": entry.name,
        "category": entry.category.code,
        "club": entry.club,
        "time": entry.finish_time or "",
    }


@dataclass
class RunnerPair:
    """Two runner ids that may belong to one person."""

    runner_ids: Tuple[str, str]
    names: Tuple[str, str]
    similarity: float
    reason: str = SIMILAR_RUNNERS
    participations: Tuple[List[Dict], List[Dict]] = field(default=((), ()), compare=False)

    def to_dict(self) -> Dict:
        return {
            "runner_ids": list(self.runner_ids),
            "names": list(self.names),
            "participations": [list(p) for p in self.participations],
            "similarity": self.similarity,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RunnerPair":
        first, second = data["runner_ids"]
        name_a, name_b = data.get("names") or ["", ""]
        history = data.get("participations") or [[], []]
        return cls(
            runner_ids=(first, second),
            names=(name_a, name_b),
            similarity=data.get("similarity", 0.0),
            reason=data.get("reason", SIMILAR_RUNNERS),
            participations=(list(history[0]), list(history[1])),
        )


@dataclass
class BackfillReport:
    already_assigned: int = 0
    auto_assigned: int = 0
    name_change_matches: int = 0
    new_runners: List[Tuple[str, str]] = field(default_factory=list)
    uncertain_matches: List[UncertainMatch] = field(default_factory=list)
    potential_duplicates: List[RunnerPair] = field(default_factory=list)
    changed_years: Set[int] = field(default_factory=set)

    def summary(self) -> Dict[str, int]:
        return {
            "already_assigned": self.already_assigned,
            "auto_assigned": self.auto_assigned,
            "name_change_matches": self.name_change_matches,
            "new_runners": len(self.new_runners),
            "needs_review": len(self.uncertain_matches),
            "potential_duplicates": len(self.potential_duplicates),
        }

    def to_warnings(self) -> Dict:
        """Document read back by the merge review."""
        return {
            "potential_duplicates": [p.to_dict() for p in self.potential_duplicates],
            "uncertain_assignments": [u.to_dict() for u in self.uncertain_matches],
            "summary": self.summary(),
        }


def _joins(entry: ResultEntry, cluster: List[ResultEntry], threshold: float) -> bool:
    head = cluster[0]
    if not normalize(head.name):
        return False
    if not first_name_matches(entry.name, head.name):
        return False
    if not genders_compatible(entry.gender, head.gender):
        return False
    if similarity(entry.name, head.name) < threshold:
        return False
    if any(member.year == entry.year for member in cluster):
        return False
    return all(is_reasonable_time_variance(member.finish_time, entry.finish_time) for member in cluster)


def cluster_unmatched(entries: List[ResultEntry], threshold: float = AUTO_ASSIGN_THRESHOLD) -> List[List[ResultEntry]]:
    """Group unmatched results that look like one new runner; blank names stay alone."""
    clusters: List[List[ResultEntry]] = []
    for entry in entries:
        if normalize(entry.name):
            home = next((c for c in clusters if _joins(entry, c, threshold)), None)
            if home is not None:
                home.append(entry)
                continue
        clusters.append([entry])
    return clusters


def find_similar_runners(index: IdentityIndex, trusted_ids: Set[str],
                         threshold: float = DUPLICATE_THRESHOLD) -> List[RunnerPair]:
    """Confusable runner pairs where at least one id is not in *trusted_ids*.

    Runners sharing a year are never paired: one person runs the race once.
    """
    runners: List[IndexedRunner] = sorted(index, key=lambda r: r.runner_id)
    pairs: List[RunnerPair] = []
    for i, first in enumerate(runners):
        for second in runners[i + 1:]:
            if first.runner_id in trusted_ids and second.runner_id in trusted_ids:
                continue
            name_a, name_b = first.names[0], second.names[0]
            if not normalize(name_a) or not normalize(name_b):
                continue
            score = similarity(name_a, name_b)
            if not threshold <= score < 1.0:
                continue
            if not first_name_matches(name_a, name_b):
                continue
            if not genders_compatible(first.gender, second.gender):
                continue
            if first.years & second.years:
                continue
            pairs.append(RunnerPair(
                runner_ids=(first.runner_id, second.runner_id),
                names=(name_a, name_b),
                similarity=score,
                participations=(
                    [participation(r) for r in first.results],
                    [participation(r) for r in second.results],
                ),
            ))
    return pairs


def backfill(entries_by_year: Dict[int, List[ResultEntry]],
             name_changes: Optional[Dict[str, List[str]]] = None,
             auto_threshold: float = AUTO_ASSIGN_THRESHOLD,
             warning_threshold: float = WARNING_THRESHOLD) -> BackfillReport:
    """Assign ids to every unassigned result in *entries_by_year* (in place)."""
    entries = sorted(
        (e for year_entries in entries_by_year.values() for e in year_entries),
        key=lambda e: (e.year, e.position),
    )
    index = IdentityIndex.build(entries)
    trusted_ids = index.runner_ids()
    existing_ids = set(trusted_ids)
    ids_by_year: Dict[int, Set[str]] = defaultdict(set)
    for entry in entries:
        if entry.runner_id:
            ids_by_year[entry.year].add(entry.runner_id)

    report = BackfillReport(already_assigned=sum(1 for e in entries if e.runner_id))
    pending = [e for e in entries if not e.runner_id]
    logger.info("Backfilling %d unassigned results against %d runners", len(pending), len(index))

    unmatched: List[ResultEntry] = []
    for entry in pending:
        match = find_best_match(
            entry, index, entry.year, name_changes, warning_threshold,
            exclude_ids=ids_by_year[entry.year],
        )
        if match and match.confidence >= auto_threshold:
            entry.runner_id = match.runner_id
            index.add(entry)
            ids_by_year[entry.year].add(entry.runner_id)
            report.changed_years.add(entry.year)
            report.auto_assigned += 1
            if match.reason == KNOWN_NAME_CHANGE:
                report.name_change_matches += 1
            logger.debug("  %s (%d) -> %s (%.1f%%)", entry.name, entry.year, match.runner_id, match.confidence * 100)
        elif match:
            report.uncertain_matches.append(UncertainMatch(
                entry.year, entry.position, entry.name, match.runner_id, match.confidence,
            ))
        else:
            unmatched.append(entry)

    for cluster in cluster_unmatched(unmatched, auto_threshold):
        head = cluster[0]
        runner_id = mint(head.name, existing_ids, head.club)
        for entry in cluster:
            entry.runner_id = runner_id
            index.add(entry)
            report.changed_years.add(entry.year)
        report.new_runners.append((runner_id, head.name))
        if len(cluster) > 1:
            logger.info("  + %s (%d results)", runner_id, len(cluster))

    report.potential_duplicates = find_similar_runners(index, trusted_ids)
    logger.info(
        "Backfill: auto-assigned %d, new runners %d, uncertain %d, potential duplicates %d",
        report.auto_assigned, len(report.new_runners), len(report.uncertain_matches),
        len(report.potential_duplicates),
    )
    return report


__all__ = [
    "BackfillReport",
    "RunnerPair",
    "backfill",
    "cluster_unmatched",
    "find_similar_runners",
    "participation",
]
