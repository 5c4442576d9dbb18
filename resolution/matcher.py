"""Matcher: assigns ``runner_id`` to a new year's results.

Order of evaluation for every result without an id
---------------------------------------------------
1. **Ledger replay** – a recorded human ruling for ``(position, name)`` wins outright.
2. **Known name change** – exact (normalised) alias hit counts as confidence 1.0,
   still subject to the gender and time gates.
3. **Fuzzy match** against the identity index, best score over every name the
   runner has used. ``>= auto threshold`` assigns, ``>= 0.85`` only warns.
4. **Intra-year duplicates** – remaining results are compared pairwise; anything
   in a similar-name pair is left for a human.
5. **Minting** – whatever is left with no candidate gets a fresh id. A blank
   name never matches or pairs with anything, so it always lands here.

Nothing here raises for ambiguous data; uncertainty always ends up in the
returned :class:`MatchReport`.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from archive.ledger import Ledger
from archive.results import ResultEntry
from .index import IdentityIndex, IndexedRunner
from .minting import mint
from .normalize import normalize
from .similarity import (
    first_name_matches,
    genders_compatible,
    is_reasonable_time_variance,
    similarity,
)

logger = logging.getLogger(__name__)

# Operator-tunable via env; --confidence on the CLI overrides per run
AUTO_ASSIGN_THRESHOLD = float(os.getenv("RR_AUTO_THRESHOLD", "0.92"))
WARNING_THRESHOLD = 0.85
DUPLICATE_THRESHOLD = 0.80

KNOWN_NAME_CHANGE = "known_name_change"
NAME_SIMILARITY = "name_similarity"


@dataclass(frozen=True)
class Match:
    runner_id: str
    confidence: float
    reason: str = NAME_SIMILARITY


@dataclass(frozen=True)
class UncertainMatch:
    year: int
    position: int
    name: str
    suggested_id: str
    confidence: float

    def to_dict(self) -> Dict:
        return {
            "result": {"year": self.year, "position": self.position, "name": self.name},
            "suggested_id": self.suggested_id,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class DuplicatePair:
    positions: Tuple[int, int]
    names: Tuple[str, str]
    similarity: float
    reason: str

    def to_dict(self) -> Dict:
        return {
            "positions": list(self.positions),
            "names": list(self.names),
            "similarity": self.similarity,
            "reason": self.reason,
        }


@dataclass
class MatchReport:
    target_year: int
    already_assigned: int = 0
    auto_assigned: int = 0
    name_change_matches: int = 0
    disambiguated: int = 0
    stale_decisions: int = 0
    new_runners: List[Tuple[str, str]] = field(default_factory=list)
    uncertain_matches: List[UncertainMatch] = field(default_factory=list)
    duplicates: List[DuplicatePair] = field(default_factory=list)

    @property
    def duplicate_positions(self) -> Set[int]:
        return {p for pair in self.duplicates for p in pair.positions}

    @property
    def needs_review(self) -> int:
        return len({u.position for u in self.uncertain_matches} | self.duplicate_positions)

    def summary(self) -> Dict[str, int]:
        return {
            "already_assigned": self.already_assigned,
            "auto_assigned": self.auto_assigned,
            "name_change_matches": self.name_change_matches,
            "disambiguated": self.disambiguated,
            "stale_decisions": self.stale_decisions,
            "new_runners_created": len(self.new_runners),
            "needs_review": self.needs_review,
        }

    def to_warnings(self) -> Dict:
        """Warnings document consumed by the review workflow."""
        return {
            "target_year": self.target_year,
            "uncertain_matches": [u.to_dict() for u in self.uncertain_matches],
            "duplicates_in_new_year": [d.to_dict() for d in self.duplicates],
            "summary": self.summary(),
        }


def _time_consistent(entry: ResultEntry, runner: IndexedRunner, target_year: int) -> bool:
    if not entry.finish_time:
        return True
    return all(
        is_reasonable_time_variance(past.finish_time, entry.finish_time)
        for past in runner.recent_results(target_year)
    )


def _best_name_score(name: str, runner: IndexedRunner) -> float:
    """Best similarity over the runner's historical names that pass the first-name gate."""
    best = 0.0
    for historical in runner.names:
        if not first_name_matches(name, historical):
            continue
        best = max(best, similarity(name, historical))
    return best


def find_best_match(entry: ResultEntry, index: IdentityIndex, target_year: int,
                    name_changes: Optional[Dict[str, List[str]]] = None,
                    warning_threshold: float = WARNING_THRESHOLD,
                    exclude_ids: Optional[Set[str]] = None) -> Optional[Match]:
    """Best gated candidate for *entry* at or above *warning_threshold*, or None.

    A blank name never matches anyone; runners in *exclude_ids* are skipped.
    """
    name_changes = name_changes or {}
    key = normalize(entry.name)
    if not key:
        return None
    best: Optional[Match] = None

    for runner in index:
        if exclude_ids and runner.runner_id in exclude_ids:
            continue
        if not genders_compatible(entry.gender, runner.gender):
            continue

        aliases = name_changes.get(runner.runner_id, [])
        if any(normalize(alias) == key for alias in aliases):
            if _time_consistent(entry, runner, target_year):
                return Match(runner.runner_id, 1.0, KNOWN_NAME_CHANGE)
            logger.debug("Alias hit %s -> %s rejected on time", entry.name, runner.runner_id)

        score = _best_name_score(entry.name, runner)
        if score < warning_threshold:
            continue
        if not _time_consistent(entry, runner, target_year):
            continue
        if best is None or score > best.confidence:
            best = Match(runner.runner_id, score)

    return best


def find_duplicates(entries: List[ResultEntry], year: int,
                    threshold: float = DUPLICATE_THRESHOLD) -> List[DuplicatePair]:
    """Pairs of same-year results with confusably similar names (blank names excluded)."""
    pairs: List[DuplicatePair] = []
    named = [e for e in entries if normalize(e.name)]
    for i, first in enumerate(named):
        for second in named[i + 1:]:
            if not first_name_matches(first.name, second.name):
                continue
            if not genders_compatible(first.gender, second.gender):
                continue
            score = similarity(first.name, second.name)
            if score >= threshold:
                pairs.append(DuplicatePair(
                    positions=(first.position, second.position),
                    names=(first.name, second.name),
                    similarity=score,
                    reason=f"Similar names within {year} - manual review required",
                ))
    return pairs


def resolve_year(entries: List[ResultEntry], index: IdentityIndex, target_year: int,
                 ledger: Optional[Ledger] = None,
                 name_changes: Optional[Dict[str, List[str]]] = None,
                 existing_ids: Optional[Set[str]] = None,
                 auto_threshold: float = AUTO_ASSIGN_THRESHOLD,
                 warning_threshold: float = WARNING_THRESHOLD) -> MatchReport:
    """Assign runner ids to *entries* in place and report what needs review.

    *existing_ids* is extended with every id minted here; when omitted it is
    seeded from the index, the ids already present in *entries* and the ledger.
    """
    ledger = ledger or Ledger(target_year)
    report = MatchReport(target_year)

    if existing_ids is None:
        existing_ids = index.runner_ids()
        existing_ids.update(e.runner_id for e in entries if e.runner_id)
        existing_ids.update(d.runner_id for d in ledger.decisions)

    for decision in ledger.stale(entries):
        logger.warning(
            "Stale disambiguation: position %d was %r when decided, skipping",
            decision.position, decision.name,
        )
        report.stale_decisions += 1

    pending: List[ResultEntry] = []
    for entry in entries:
        ruling = ledger.lookup(entry.position, entry.name)
        if ruling:
            if entry.runner_id and entry.runner_id != ruling:
                logger.info("Ledger overrides %s -> %s at position %d", entry.runner_id, ruling, entry.position)
            entry.runner_id = ruling
            report.disambiguated += 1
            logger.debug("  %s -> %s (disambiguation)", entry.name, ruling)
        elif entry.runner_id:
            report.already_assigned += 1
        else:
            pending.append(entry)

    logger.info("Matching %d unassigned results against %d runners", len(pending), len(index))

    unmatched: List[ResultEntry] = []
    warned: List[ResultEntry] = []
    for entry in pending:
        match = find_best_match(entry, index, target_year, name_changes, warning_threshold)

        if match and match.confidence >= auto_threshold:
            entry.runner_id = match.runner_id
            report.auto_assigned += 1
            if match.reason == KNOWN_NAME_CHANGE:
                report.name_change_matches += 1
            logger.debug("  %s -> %s (%.1f%%, %s)", entry.name, match.runner_id, match.confidence * 100, match.reason)
        elif match:
            report.uncertain_matches.append(UncertainMatch(
                target_year, entry.position, entry.name, match.runner_id, match.confidence,
            ))
            warned.append(entry)
        else:
            unmatched.append(entry)

    logger.info(
        "Auto-assigned %d (%d via name changes), %d uncertain, %d without candidate",
        report.auto_assigned, report.name_change_matches, len(warned), len(unmatched),
    )

    still_unassigned = sorted(warned + unmatched, key=lambda e: e.position)
    report.duplicates = find_duplicates(still_unassigned, target_year)
    held = report.duplicate_positions
    if report.duplicates:
        logger.info("Found %d similar-name pairs within %d (%d results held)", len(report.duplicates), target_year, len(held))

    for entry in unmatched:
        if entry.position in held:
            continue
        entry.runner_id = mint(entry.name, existing_ids, entry.club)
        report.new_runners.append((entry.runner_id, entry.name))
        logger.debug("  + %s (%s)", entry.runner_id, entry.name)

    logger.info("Created %d new runner ids", len(report.new_runners))
    return report


__all__ = [
    "AUTO_ASSIGN_THRESHOLD",
    "DUPLICATE_THRESHOLD",
    "WARNING_THRESHOLD",
    "DuplicatePair",
    "Match",
    "MatchReport",
    "UncertainMatch",
    "find_best_match",
    "find_duplicates",
    "resolve_year",
]
