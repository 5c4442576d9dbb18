"""Known name changes: ``{runner_id: [alternate name, ...]}``.

Lets an operator pre-register a variant (a married surname, a preferred
spelling) so the resolver links it without fuzzy scoring.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Union

from .store import ArchiveFileError, read_json, write_json

logger = logging.getLogger(__name__)

NAME_CHANGES_FILENAME = "name-changes.json"


def load_name_changes(data_dir: Union[str, Path]) -> Dict[str, List[str]]:
    path = Path(data_dir) / NAME_CHANGES_FILENAME
    table = read_json(path)
    if table is None:
        logger.info("No %s found (optional)", NAME_CHANGES_FILENAME)
        return {}
    if not isinstance(table, dict) or not all(isinstance(v, list) for v in table.values()):
        raise ArchiveFileError(path, "expected {runner_id: [names...]}")
    logger.info("Loaded name changes for %d runner(s)", len(table))
    return table


def record_name_change(table: Dict[str, List[str]], runner_id: str, name: str) -> bool:
    """Add *name* as an alias of *runner_id*. Returns False if it was already listed."""
    name = name.strip()
    known = table.setdefault(runner_id, [])
    if name in known:
        return False
    known.append(name)
    return True


def save_name_changes(data_dir: Union[str, Path], table: Dict[str, List[str]]) -> Path:
    path = Path(data_dir) / NAME_CHANGES_FILENAME
    write_json(path, table)
    return path


__all__ = ["load_name_changes", "record_name_change", "save_name_changes", "NAME_CHANGES_FILENAME"]
