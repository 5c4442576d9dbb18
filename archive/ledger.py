"""Disambiguation ledger: durable record of human identity rulings for one year.

File layout (``data/<YEAR>-disambiguation.json``)::

    {"year": 2025, "decisions": [{"position": 5, "name": "Sean Murphy", "runner_id": "..."}]}

Decisions are keyed by ``(position, name)``. The name is a snapshot taken when
the ruling was made; if the row at that position has since been renamed the
decision is stale and is not replayed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .results import ResultEntry
from .store import ArchiveFileError, read_json, write_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisambiguationDecision:
    position: int
    name: str
    runner_id: str


def ledger_path(data_dir: Union[str, Path], year: int) -> Path:
    return Path(data_dir) / f"{year}-disambiguation.json"


def load(year: int, data_dir: Union[str, Path]) -> List[DisambiguationDecision]:
    """Return the recorded decisions for *year* ([] if there is no ledger yet)."""
    path = ledger_path(data_dir, year)
    data = read_json(path)
    if data is None:
        logger.info("No disambiguation file for %d", year)
        return []
    if not isinstance(data, dict) or not isinstance(data.get("decisions", []), list):
        raise ArchiveFileError(path, "expected {year, decisions: [...]}")
    if data.get("year") != year:
        logger.warning("Disambiguation file %s is for year %s, not %d – ignoring", path, data.get("year"), year)
        return []

    decisions: List[DisambiguationDecision] = []
    for raw in data.get("decisions", []):
        try:
            decisions.append(DisambiguationDecision(int(raw["position"]), raw["name"], raw["runner_id"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ArchiveFileError(path, f"bad decision {raw!r}") from exc
    logger.info("Loaded %d disambiguation decision(s) for %d", len(decisions), year)
    return decisions


def save(year: int, decisions: Iterable[DisambiguationDecision], data_dir: Union[str, Path]) -> Path:
    path = ledger_path(data_dir, year)
    write_json(path, {"year": year, "decisions": [asdict(d) for d in decisions]})
    return path


class Ledger:
    """Append-or-update view over one year's decisions."""

    def __init__(self, year: int, decisions: Optional[Iterable[DisambiguationDecision]] = None):
        self.year = year
        self._decisions: Dict[Tuple[int, str], DisambiguationDecision] = {}
        for decision in decisions or []:
            self._decisions[(decision.position, decision.name)] = decision

    @classmethod
    def open(cls, year: int, data_dir: Union[str, Path]) -> "Ledger":
        return cls(year, load(year, data_dir))

    def __len__(self) -> int:
        return len(self._decisions)

    @property
    def decisions(self) -> List[DisambiguationDecision]:
        return list(self._decisions.values())

    def lookup(self, position: int, name: str) -> Optional[str]:
        decision = self._decisions.get((position, name))
        return decision.runner_id if decision else None

    def is_decided(self, entry: ResultEntry) -> bool:
        return (entry.position, entry.name) in self._decisions

    def record(self, position: int, name: str, runner_id: str) -> DisambiguationDecision:
        decision = DisambiguationDecision(position, name, runner_id)
        self._decisions[(position, name)] = decision
        return decision

    def stale(self, entries: Iterable[ResultEntry]) -> List[DisambiguationDecision]:
        """Decisions whose position no longer carries the recorded name."""
        live = {(e.position, e.name) for e in entries}
        return [d for key, d in self._decisions.items() if key not in live]

    def save(self, data_dir: Union[str, Path]) -> Path:
        return save(self.year, self.decisions, data_dir)


__all__ = ["DisambiguationDecision", "Ledger", "ledger_path", "load", "save"]
