from .results import Category, MalformedResultsError, ResultEntry, load_year, load_years, save_year
from .store import ArchiveFileError
from .ledger import DisambiguationDecision, Ledger

__all__ = [
    "ArchiveFileError",
    "Category",
    "DisambiguationDecision",
    "Ledger",
    "MalformedResultsError",
    "ResultEntry",
    "load_year",
    "load_years",
    "save_year",
]
