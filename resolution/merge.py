"""Merging and splitting runners across every year file.

A runner is only the set of results carrying its id. Merging rewrites one id
to the other everywhere; splitting moves chosen results to another id. Both
refuse to leave one id on two results of the same year.

:class:`MergeSession` walks the similar-runner pairs reported by backfill in
the same resumable way :class:`~resolution.review.ReviewSession` walks
new-year warnings: each answer is applied and handed to *persist* straight
away, and pairs already settled are not offered again.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from archive.results import ResultEntry
from .backfill import RunnerPair
from .minting import mint

logger = logging.getLogger(__name__)

EntriesByYear = Dict[int, List[ResultEntry]]


class MergeConflictError(ValueError):
    """The requested merge or split would corrupt the archive; nothing was changed."""


def runner_results(entries_by_year: EntriesByYear, runner_id: str) -> List[ResultEntry]:
    return [
        e for year in sorted(entries_by_year)
        for e in entries_by_year[year] if e.runner_id == runner_id
    ]


def _years(entries_by_year: EntriesByYear, runner_id: str) -> Set[int]:
    return {e.year for e in runner_results(entries_by_year, runner_id)}


def _ensure_disjoint(entries_by_year: EntriesByYear, runner_ids: Iterable[str]) -> None:
    seen: Dict[int, str] = {}
    for runner_id in runner_ids:
        for year in sorted(_years(entries_by_year, runner_id)):
            if year in seen and seen[year] != runner_id:
                raise MergeConflictError(f"{seen[year]} and {runner_id} both ran in {year}")
            seen[year] = runner_id


def merge_runners(entries_by_year: EntriesByYear, source_id: str, target_id: str) -> Set[int]:
    """Rewrite every *source_id* result to *target_id*; returns the years touched."""
    if source_id == target_id:
        raise MergeConflictError(f"cannot merge {source_id} into itself")
    if not runner_results(entries_by_year, source_id):
        raise MergeConflictError(f"no results carry runner_id {source_id}")
    _ensure_disjoint(entries_by_year, [source_id, target_id])

    changed: Set[int] = set()
    for year, entries in entries_by_year.items():
        for entry in entries:
            if entry.runner_id == source_id:
                entry.runner_id = target_id
                changed.add(year)
    logger.info("Merged %s into %s (%d year files)", source_id, target_id, len(changed))
    return changed


def split_runner(entries_by_year: EntriesByYear, runner_id: str, results: Iterable[Tuple[int, int]],
                 new_id: Optional[str] = None) -> str:
    """Move the ``(year, position)`` *results* of *runner_id* to *new_id* (minted when omitted)."""
    wanted = set(results)
    if not wanted:
        raise MergeConflictError("nothing to split")
    moving = [e for e in runner_results(entries_by_year, runner_id) if (e.year, e.position) in wanted]
    found = {(e.year, e.position) for e in moving}
    missing = sorted(wanted - found)
    if missing:
        raise MergeConflictError(f"{runner_id} has no result at {', '.join(f'{y}:{p}' for y, p in missing)}")

    if new_id is None:
        existing_ids = {e.runner_id for es in entries_by_year.values() for e in es if e.runner_id}
        new_id = mint(moving[0].name, existing_ids, moving[0].club)
    else:
        new_id = new_id.strip().lower()
        if new_id == runner_id:
            raise MergeConflictError(f"{new_id} is the runner being split")
        clash = sorted(_years(entries_by_year, new_id) & {e.year for e in moving})
        if clash:
            raise MergeConflictError(f"{new_id} already has results in {', '.join(map(str, clash))}")

    for entry in moving:
        entry.runner_id = new_id
    logger.info("Split %d result(s) from %s to %s", len(moving), runner_id, new_id)
    return new_id


def mark_canonical(entries_by_year: EntriesByYear, runner_id: str, year: int, position: int) -> Set[int]:
    """Make one result the runner's canonical name and club, clearing any other marker."""
    results = runner_results(entries_by_year, runner_id)
    if not any(e.year == year and e.position == position for e in results):
        raise MergeConflictError(f"{runner_id} has no result at {year}:{position}")
    changed: Set[int] = set()
    for entry in results:
        chosen = entry.year == year and entry.position == position
        if entry.canonical_name != chosen or entry.canonical_club != chosen:
            entry.canonical_name = entry.canonical_club = chosen
            changed.add(entry.year)
    return changed


class MergeSession:
    def __init__(self, pairs: List[RunnerPair], entries_by_year: EntriesByYear,
                 persist: Optional[Callable[["MergeSession", Set[int]], None]] = None):
        self.pairs = pairs
        self.entries_by_year = entries_by_year
        self.persist = persist
        self.settled: Set[Tuple[str, str]] = set()
        self.deferred: List[RunnerPair] = []
        self.merged = 0
        self.kept_apart = 0
        self.stopped = False

    def results_for(self, runner_id: str) -> List[ResultEntry]:
        return runner_results(self.entries_by_year, runner_id)

    def __iter__(self) -> Iterator[Tuple[int, RunnerPair]]:
        return self.pending()

    def pending(self) -> Iterator[Tuple[int, RunnerPair]]:
        for number, pair in enumerate(self.pairs, start=1):
            if self.stopped:
                return
            if pair.runner_ids in self.settled:
                continue
            gone = [r for r in pair.runner_ids if not self.results_for(r)]
            if gone:
                # An earlier merge in this session already absorbed one side
                logger.info("Skipping %s / %s: %s no longer in the archive", *pair.runner_ids, gone[0])
                self.settled.add(pair.runner_ids)
                continue
            yield number, pair

    def merge(self, pair: RunnerPair, runner_id: str,
              canonical: Optional[Tuple[int, int]] = None) -> Set[int]:
        """Give both runners' results *runner_id* (either side's id or a new one)."""
        runner_id = runner_id.strip().lower()
        if not runner_id:
            raise ValueError("runner_id must not be empty")
        sources = [r for r in pair.runner_ids if r != runner_id]
        _ensure_disjoint(self.entries_by_year, [runner_id] + sources)

        changed: Set[int] = set()
        for source in sources:
            changed |= merge_runners(self.entries_by_year, source, runner_id)
        if canonical is not None:
            changed |= mark_canonical(self.entries_by_year, runner_id, *canonical)
        self.merged += 1
        self._settle(pair, changed)
        return changed

    def keep_apart(self, pair: RunnerPair) -> None:
        logger.info("%s and %s kept as different runners", *pair.runner_ids)
        self.kept_apart += 1
        self._settle(pair, set())

    def defer(self, pair: RunnerPair) -> None:
        self.deferred.append(pair)

    def skip_remaining(self) -> None:
        self.stopped = True

    def remaining(self) -> List[RunnerPair]:
        """Pairs nobody has ruled on yet, deferred ones included."""
        return [p for p in self.pairs if p.runner_ids not in self.settled]

    def _settle(self, pair: RunnerPair, changed: Set[int]) -> None:
        self.settled.add(pair.runner_ids)
        if self.persist is not None:
            self.persist(self, changed)


__all__ = [
    "MergeConflictError",
    "MergeSession",
    "mark_canonical",
    "merge_runners",
    "runner_results",
    "split_runner",
]
