from .index import IdentityIndex
from .minting import mint
from .matcher import MatchReport, resolve_year
from .review import ReviewSession
from .backfill import BackfillReport, RunnerPair
from .merge import MergeConflictError, MergeSession, merge_runners, split_runner

__all__ = [
    "BackfillReport",
    "IdentityIndex",
    "MatchReport",
    "MergeConflictError",
    "MergeSession",
    "ReviewSession",
    "RunnerPair",
    "merge_runners",
    "mint",
    "resolve_year",
    "split_runner",
]
