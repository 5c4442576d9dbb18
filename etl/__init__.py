from .aggregate import build_runner_database, find_integrity_warnings
from .report import write_markdown_report

__all__ = [
    "build_runner_database",
    "find_integrity_warnings",
    "write_markdown_report",
]
