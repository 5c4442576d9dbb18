"""Resumable review of matcher warnings.

The session walks uncertain matches first, then each member of every
similar-name pair, yielding one :class:`ReviewItem` at a time. Whoever drives
it (the terminal prompt in ``main.py``, or a test) answers each item with
``accept`` / ``assign`` / ``mint_new`` / ``defer``, or stops with
``skip_remaining``. Every decision goes into the ledger and *persist* is
called straight away, so an interrupted session loses at most the item on
screen. Items the ledger already covers are never yielded again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Set

from archive.ledger import Ledger
from archive.results import ResultEntry
from .minting import mint

logger = logging.getLogger(__name__)

UNCERTAIN = "uncertain"
DUPLICATE = "duplicate"


@dataclass
class ReviewItem:
    kind: str
    entry: ResultEntry
    number: int
    total: int
    suggested_id: Optional[str] = None
    confidence: Optional[float] = None
    similarity: Optional[float] = None
    partners: List[ResultEntry] = field(default_factory=list)


class ReviewSession:
    def __init__(self, warnings: Dict, entries: List[ResultEntry], ledger: Ledger,
                 existing_ids: Optional[Set[str]] = None,
                 persist: Optional[Callable[[Ledger], None]] = None):
        self.warnings = warnings
        self.entries = entries
        self.ledger = ledger
        self.persist = persist
        self.by_position: Dict[int, ResultEntry] = {e.position: e for e in entries}
        self.existing_ids: Set[str] = existing_ids if existing_ids is not None else set()
        self.new_decisions = 0
        self.deferred: List[ReviewItem] = []
        self.stopped = False

        # Replay earlier rulings so resumed sessions start where they left off
        for entry in entries:
            ruling = ledger.lookup(entry.position, entry.name)
            if ruling:
                entry.runner_id = ruling
            if entry.runner_id:
                self.existing_ids.add(entry.runner_id)

    # ------------------------------------------------------------------
    # Iteration
    # ------------------------------------------------------------------

    def _live_entry(self, position: int, name: str) -> Optional[ResultEntry]:
        entry = self.by_position.get(position)
        if entry is None:
            logger.warning("Position %s not found in results, skipping", position)
            return None
        if entry.name != name:
            logger.warning("Position %s is now %r (warning was for %r), skipping", position, entry.name, name)
            return None
        return entry

    def _is_settled(self, entry: ResultEntry) -> bool:
        return bool(entry.runner_id) or self.ledger.is_decided(entry)

    def __iter__(self) -> Iterator[ReviewItem]:
        return self.pending()

    def pending(self) -> Iterator[ReviewItem]:
        uncertain = self.warnings.get("uncertain_matches", [])
        for number, warning in enumerate(uncertain, start=1):
            if self.stopped:
                return
            result = warning["result"]
            entry = self._live_entry(result["position"], result["name"])
            if entry is None or self._is_settled(entry):
                continue
            yield ReviewItem(
                kind=UNCERTAIN, entry=entry, number=number, total=len(uncertain),
                suggested_id=warning.get("suggested_id"), confidence=warning.get("confidence"),
            )

        duplicates = self.warnings.get("duplicates_in_new_year", [])
        for number, pair in enumerate(duplicates, start=1):
            members = [self._live_entry(p, n) for p, n in zip(pair["positions"], pair["names"])]
            for entry in members:
                if self.stopped:
                    return
                if entry is None or self._is_settled(entry):
                    continue
                yield ReviewItem(
                    kind=DUPLICATE, entry=entry, number=number, total=len(duplicates),
                    similarity=pair.get("similarity"),
                    partners=[m for m in members if m is not None and m is not entry],
                )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _decide(self, item: ReviewItem, runner_id: str) -> str:
        entry = item.entry
        entry.runner_id = runner_id
        self.existing_ids.add(runner_id)
        self.ledger.record(entry.position, entry.name, runner_id)
        self.new_decisions += 1
        logger.info("Position %d %s -> %s", entry.position, entry.name, runner_id)
        if self.persist is not None:
            self.persist(self.ledger)
        return runner_id

    def accept(self, item: ReviewItem) -> str:
        if not item.suggested_id:
            raise ValueError(f"No suggested runner_id for position {item.entry.position}")
        return self._decide(item, item.suggested_id)

    def assign(self, item: ReviewItem, runner_id: str) -> str:
        runner_id = runner_id.strip().lower()
        if not runner_id:
            raise ValueError("runner_id must not be empty")
        return self._decide(item, runner_id)

    def mint_new(self, item: ReviewItem) -> str:
        return self._decide(item, mint(item.entry.name, self.existing_ids, item.entry.club))

    def defer(self, item: ReviewItem) -> None:
        self.deferred.append(item)

    def skip_remaining(self) -> None:
        """Stop yielding; everything not yet decided stays unassigned."""
        self.stopped = True


__all__ = ["ReviewItem", "ReviewSession", "UNCERTAIN", "DUPLICATE"]
