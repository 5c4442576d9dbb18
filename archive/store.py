"""JSON persistence helpers for the results archive.

Files are always replaced whole: the payload is written to a sibling temp file
and renamed over the target, so a crash leaves the previous version intact.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union


class ArchiveFileError(ValueError):
    """A state file exists but cannot be parsed."""

    def __init__(self, path: Union[str, Path], message: str):
        self.path = Path(path)
        super().__init__(f"{self.path}: {message}")


def read_json(path: Union[str, Path], default: Any = None) -> Any:
    """Return the parsed contents of *path*, or *default* if it does not exist.

    An existing file that is not valid JSON raises :class:`ArchiveFileError`.
    """
    path = Path(path)
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ArchiveFileError(path, f"invalid JSON ({exc})") from exc


def write_json(path: Union[str, Path], payload: Any) -> None:
    """Atomically write *payload* to *path* (pretty-printed, trailing newline)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False, indent=2)
            fh.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


__all__ = ["ArchiveFileError", "read_json", "write_json"]
