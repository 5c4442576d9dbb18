"""Identity index: historical results grouped by ``runner_id``.

Built once per run from the years before the target year. The new-year
matcher never mutates it; whole-archive backfill grows it with :meth:`add` as
results are attached to runners. The corpus is a few thousand rows, so
lookups are plain iteration over the grouped runners.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set

from archive.results import ResultEntry
from etl.utils import most_common

logger = logging.getLogger(__name__)

RECENT_YEARS = 5
RECENT_APPEARANCES = 5


@dataclass
class IndexedRunner:
    runner_id: str
    results: List[ResultEntry] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        """Every distinct name this runner has been recorded under, first use first."""
        return list(dict.fromkeys(r.name for r in self.results))

    @property
    def years(self) -> Set[int]:
        return {r.year for r in self.results}

    @property
    def gender(self) -> Optional[str]:
        return most_common(r.gender for r in self.results)

    def recent_results(self, target_year: int, years: int = RECENT_YEARS,
                       limit: int = RECENT_APPEARANCES) -> List[ResultEntry]:
        """Last *limit* appearances within *years* of *target_year*.

        Falls back to the full history when the runner has not raced recently.
        """
        recent = [r for r in self.results if abs(target_year - r.year) <= years][-limit:]
        return recent or list(self.results)


class IdentityIndex:
    def __init__(self, runners: Dict[str, IndexedRunner]):
        self._runners = runners

    @classmethod
    def build(cls, entries: Iterable[ResultEntry], before_year: Optional[int] = None) -> "IdentityIndex":
        """Group resolved *entries* (optionally only ``year < before_year``) by runner."""
        runners: Dict[str, IndexedRunner] = {}
        ordered = sorted(entries, key=lambda e: (e.year, e.position))
        for entry in ordered:
            if not entry.runner_id:
                continue
            if before_year is not None and entry.year >= before_year:
                continue
            runners.setdefault(entry.runner_id, IndexedRunner(entry.runner_id)).results.append(entry)

        logger.info(
            "Identity index: %d runners from %d historical results",
            len(runners), sum(len(r.results) for r in runners.values()),
        )
        return cls(runners)

    def add(self, entry: ResultEntry) -> IndexedRunner:
        """Attach a resolved *entry* to its runner, keeping history in (year, position) order."""
        runner = self._runners.setdefault(entry.runner_id, IndexedRunner(entry.runner_id))
        runner.results.append(entry)
        runner.results.sort(key=lambda e: (e.year, e.position))
        return runner

    def __len__(self) -> int:
        return len(self._runners)

    def __iter__(self) -> Iterator[IndexedRunner]:
        return iter(self._runners.values())

    def __contains__(self, runner_id: str) -> bool:
        return runner_id in self._runners

    def get(self, runner_id: str) -> Optional[IndexedRunner]:
        return self._runners.get(runner_id)

    def runner_ids(self) -> Set[str]:
        return set(self._runners)


__all__ = ["IdentityIndex", "IndexedRunner", "RECENT_YEARS", "RECENT_APPEARANCES"]
