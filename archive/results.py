"""Per-year result files and the in-memory ``ResultEntry`` view of a row.

A year file is a JSON array of row objects keyed the way the results pages
expect (``Position``, ``Name``, ``Category``, ``Club``, ``Chip Time`` ...).
Rows are parsed into :class:`ResultEntry` once on load; the original row is
kept alongside so unknown columns and their order survive a rewrite.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .store import read_json, write_json, ArchiveFileError

logger = logging.getLogger(__name__)


class MalformedResultsError(ValueError):
    """A year file cannot be used; the run must stop before writing anything."""

    def __init__(self, path: Union[str, Path], message: str, row: Optional[int] = None):
        self.path = Path(path)
        self.row = row
        where = f"{self.path} row {row}" if row is not None else str(self.path)
        super().__init__(f"{where}: {message}")


@dataclass(frozen=True)
class Category:
    """Category code split into gender and age band (``M40`` -> ``M`` / ``40``)."""

    code: str
    gender: Optional[str]
    age_band: str

    @classmethod
    def parse(cls, code: Optional[str]) -> "Category":
        code = (code or "").strip()
        head = code[:1].upper()
        if head in ("M", "F"):
            return cls(code, head, code[1:])
        return cls(code, None, code)


@dataclass
class ResultEntry:
    year: int
    position: int
    name: str
    category: Category
    club: str = ""
    chip_time: Optional[str] = None
    gun_time: Optional[str] = None
    runner_id: Optional[str] = None
    canonical_name: bool = False
    canonical_club: bool = False
    raw: Dict = field(default_factory=dict, repr=False, compare=False)

    @property
    def gender(self) -> Optional[str]:
        return self.category.gender

    @property
    def finish_time(self) -> Optional[str]:
        """Chip time when recorded, otherwise gun time."""
        return self.chip_time or self.gun_time

    @classmethod
    def from_row(cls, year: int, row: Dict) -> "ResultEntry":
        return cls(
            year=year,
            position=row["Position"],
            name=(row.get("Name") or "").strip(),
            category=Category.parse(row.get("Category")),
            club=(row.get("Club") or "").strip(),
            chip_time=row.get("Chip Time") or None,
            gun_time=row.get("Gun Time") or None,
            runner_id=row.get("runner_id") or None,
            canonical_name=row.get("canonical_name") is True,
            canonical_club=row.get("canonical_club") is True,
            raw=row,
        )

    def to_row(self) -> Dict:
        """Original row with the current ``runner_id`` and canonical markers written back."""
        row = dict(self.raw)
        if self.runner_id:
            row["runner_id"] = self.runner_id
        else:
            row.pop("runner_id", None)
        for marker in ("canonical_name", "canonical_club"):
            if getattr(self, marker):
                row[marker] = True
            else:
                row.pop(marker, None)
        return row


def year_path(results_dir: Union[str, Path], year: int) -> Path:
    return Path(results_dir) / f"{year}.json"


def list_years(results_dir: Union[str, Path]) -> List[int]:
    """Sorted years that have a ``<YEAR>.json`` file in *results_dir*."""
    results_dir = Path(results_dir)
    if not results_dir.is_dir():
        return []
    return sorted(int(p.stem) for p in results_dir.glob("*.json") if p.stem.isdigit())


# Columns parsed as strings; a number here means ingestion went wrong
TEXT_COLUMNS = ("Name", "Category", "Club", "Chip Time", "Gun Time", "runner_id")


def _parse_position(value, path: Path, index: int) -> int:
    if isinstance(value, bool):
        raise MalformedResultsError(path, f"invalid Position {value!r}", index)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise MalformedResultsError(path, f"missing or invalid Position {value!r}", index)


def load_year(results_dir: Union[str, Path], year: int) -> List[ResultEntry]:
    """Load and validate one year file.

    Raises
    ------
    MalformedResultsError
        File missing, not valid JSON, not an array, or a row without a usable
        ``Position`` (or one repeating an earlier row's position), or a
        non-text value in one of the ``TEXT_COLUMNS``.
    """
    path = year_path(results_dir, year)
    if not path.exists():
        raise MalformedResultsError(path, "file not found")
    try:
        rows = read_json(path)
    except ArchiveFileError as exc:
        raise MalformedResultsError(path, str(exc)) from exc
    if not isinstance(rows, list):
        raise MalformedResultsError(path, "expected a JSON array of results")

    entries: List[ResultEntry] = []
    seen_positions: Dict[int, int] = {}
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise MalformedResultsError(path, "result is not an object", index)
        position = _parse_position(row.get("Position"), path, index)
        if position in seen_positions:
            raise MalformedResultsError(
                path, f"Position {position} already used by row {seen_positions[position]}", index
            )
        seen_positions[position] = index
        for column in TEXT_COLUMNS:
            value = row.get(column)
            if value is not None and not isinstance(value, str):
                raise MalformedResultsError(path, f"{column} must be text, got {value!r}", index)
        row["Position"] = position
        entries.append(ResultEntry.from_row(year, row))

    logger.debug("Loaded %d results from %s", len(entries), path)
    return entries


def save_year(results_dir: Union[str, Path], year: int, entries: Iterable[ResultEntry]) -> Path:
    path = year_path(results_dir, year)
    write_json(path, [e.to_row() for e in entries])
    return path


def load_years(results_dir: Union[str, Path], years: Optional[Iterable[int]] = None) -> Dict[int, List[ResultEntry]]:
    """Load every year file (or only *years*), keyed by year in ascending order."""
    wanted = sorted(years) if years is not None else list_years(results_dir)
    return {year: load_year(results_dir, year) for year in wanted}


__all__ = [
    "Category",
    "MalformedResultsError",
    "ResultEntry",
    "list_years",
    "load_year",
    "load_years",
    "save_year",
    "year_path",
]
