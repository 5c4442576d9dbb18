"""Main orchestrator script.

Run after each season's results file lands in ``assets/results/<YEAR>.json``:

    python main.py assign 2025 --dry-run      # preview matches
    python main.py assign 2025                # write runner ids + warnings
    python main.py review 2025                # settle warnings interactively
    python main.py assign 2025                # replay decisions, mint the rest
    python main.py build-db                   # regenerate the runner database

Whole-archive tools, for years imported in bulk:

    python main.py backfill                   # assign ids across every year
    python main.py review-duplicates          # merge or keep apart similar runners
    python main.py merge OLD_ID NEW_ID        # rewrite one id to another everywhere
    python main.py split ID 2019:12 2020:8    # move results to a new id

``assign``/``review`` only ever rewrite the target year's file; earlier years
are read-only reference for matching. The whole-archive tools rewrite every
year file they change.
"""

import os, sys, logging, argparse
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from archive.ledger import Ledger
from archive.name_changes import load_name_changes, record_name_change, save_name_changes
from archive.results import MalformedResultsError, list_years, load_year, load_years, save_year
from archive.store import ArchiveFileError, read_json, write_json
from etl import aggregate, report
from resolution import backfill, matcher
from resolution.index import IdentityIndex
from resolution.merge import MergeConflictError, MergeSession, merge_runners, split_runner
from resolution.review import UNCERTAIN, ReviewItem, ReviewSession
from dotenv import load_dotenv

# Load environment variables from .env if present (safe-no-op if file missing)
load_dotenv()

# ---------------------------------------------------------------------------
# Logging setup (controlled by RR_LOGLEVEL, default INFO)
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=os.getenv("RR_LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)

ASSETS_DIR = Path(os.getenv("RR_ASSETS_DIR", "assets"))
DATA_DIR = Path(os.getenv("RR_DATA_DIR", "data"))

RESULTS_DIR = ASSETS_DIR / "results"
RUNNER_DATABASE_FILE = ASSETS_DIR / "runner-database.json"
WARNINGS_FILE = ASSETS_DIR / "runner-database-warnings.json"
DUPLICATES_FILE = ASSETS_DIR / "runner-duplicates.json"
# build-db integrity problems go to a scratch area, not the published assets
INTEGRITY_FILE = Path(os.getenv("RR_TEMP_DIR", "temp")) / "runner-database-warnings.json"
REPORT_FILE = Path("report.md")


def _load_runners() -> Dict[str, Dict]:
    database = read_json(RUNNER_DATABASE_FILE, default={}) or {}
    return database.get("runners", {})


def _all_runner_ids(skip_year: Optional[int] = None) -> Set[str]:
    """Every runner_id written into any year file (optionally except one year)."""
    ids: Set[str] = set()
    for year in list_years(RESULTS_DIR):
        if year == skip_year:
            continue
        ids.update(e.runner_id for e in load_year(RESULTS_DIR, year) if e.runner_id)
    return ids


# ---------------------------------------------------------------------------
# assign
# ---------------------------------------------------------------------------

def assign_year(year: int, dry_run: bool = False, confidence: Optional[float] = None) -> matcher.MatchReport:
    """Resolve runner ids for *year* against every earlier year."""
    if confidence is None:
        confidence = float(os.getenv("RR_AUTO_THRESHOLD", matcher.AUTO_ASSIGN_THRESHOLD))
    logger.info(
        "Assigning runner ids to %d (auto %.2f, warn %.2f, dry run %s)",
        year, confidence, matcher.WARNING_THRESHOLD, dry_run,
    )

    # Read everything first: a malformed file must abort before any write
    name_changes = load_name_changes(DATA_DIR)
    ledger = Ledger.open(year, DATA_DIR)
    history = [e for y in list_years(RESULTS_DIR) if y < year for e in load_year(RESULTS_DIR, y)]
    index = IdentityIndex.build(history, before_year=year)
    entries = load_year(RESULTS_DIR, year)

    existing_ids = _all_runner_ids(skip_year=year)
    existing_ids.update(e.runner_id for e in entries if e.runner_id)
    existing_ids.update(d.runner_id for d in ledger.decisions)

    logger.info(
        "%d: %d results (%d already assigned)",
        year, len(entries), sum(1 for e in entries if e.runner_id),
    )

    result = matcher.resolve_year(
        entries, index, year,
        ledger=ledger,
        name_changes=name_changes,
        existing_ids=existing_ids,
        auto_threshold=confidence,
    )
    warnings = result.to_warnings()

    if dry_run:
        preview = WARNINGS_FILE.with_name(WARNINGS_FILE.name + ".preview")
        write_json(preview, warnings)
        logger.info("DRY RUN - results not written; warnings preview at %s", preview)
    else:
        path = save_year(RESULTS_DIR, year, entries)
        write_json(WARNINGS_FILE, warnings)
        report.write_markdown_report(warnings, REPORT_FILE, _load_runners())
        logger.info("Written %s, %s and %s", path, WARNINGS_FILE, REPORT_FILE)

    summary = result.summary()
    logger.info(
        "Summary for %d: already assigned %d, disambiguated %d, auto-assigned %d "
        "(%d via name changes), new runners %d, uncertain %d, similar-name pairs %d, "
        "needing review %d, stale decisions %d",
        year, summary["already_assigned"], summary["disambiguated"], summary["auto_assigned"],
        summary["name_change_matches"], summary["new_runners_created"],
        len(result.uncertain_matches), len(result.duplicates), summary["needs_review"],
        summary["stale_decisions"],
    )
    return result


# ---------------------------------------------------------------------------
# review
# ---------------------------------------------------------------------------

def _describe_runner(runner_id: str, runners: Dict[str, Dict]) -> str:
    known = runners.get(runner_id)
    if not known:
        return f"  Runner ID: {runner_id} (not in database yet)"
    return "\n".join([
        f"  Runner ID: {runner_id}",
        f"  Name: {known.get('canonical_name')}",
        f"  Gender: {known.get('gender') or 'Unknown'}",
        f"  Club: {known.get('most_common_club') or 'None'}",
        f"  Races: {known.get('total_races')}",
        f"  Years: {', '.join(str(y) for y in known.get('years', []))}",
    ])


def _describe_item(item: ReviewItem, runners: Dict[str, Dict]) -> str:
    entry = item.entry
    lines = [""]
    if item.kind == UNCERTAIN:
        lines.append(f"[{item.number}/{item.total}] Uncertain match")
    else:
        lines.append(f"[{item.number}/{item.total}] Potential duplicate ({(item.similarity or 0) * 100:.1f}% similar)")
    lines.append(f"Position: {entry.position}")
    lines.append(f"Name: {entry.name}")
    lines.append(f"Category: {entry.category.code}")
    lines.append(f"Club: {entry.club or '(none)'}")
    lines.append(f"Time: {entry.finish_time or '(unknown)'}")
    for partner in item.partners:
        lines.append(f"  similar to #{partner.position} {partner.name} ({partner.category.code}, "
                     f"{partner.club or 'no club'}, {partner.finish_time or 'no time'})"
                     + (f" -> {partner.runner_id}" if partner.runner_id else ""))
    if item.kind == UNCERTAIN:
        lines.append(f"Suggested match ({(item.confidence or 0) * 100:.1f}% confidence):")
        lines.append(_describe_runner(item.suggested_id, runners))
        lines.append("Options: y = accept, <id> = other runner_id, new = new runner_id, s = skip remaining, "
                     "blank = leave for later")
    else:
        lines.append("Options: <id> = runner_id, new = new runner_id, s = skip remaining, blank = leave for later")
    return "\n".join(lines)


def drive_review(session: ReviewSession, runners: Dict[str, Dict],
                 prompt: Callable[[str], str] = input) -> None:
    """Terminal loop over *session*; each answer is persisted before the next prompt."""
    for item in session:
        print(_describe_item(item, runners))
        answer = prompt("Action: ").strip()
        lowered = answer.lower()

        if lowered == "s":
            session.skip_remaining()
            logger.warning("Skipping remaining warnings")
        elif lowered == "y":
            if item.kind == UNCERTAIN:
                session.accept(item)
            else:
                print("Similar names have no suggested runner_id - enter one, or new")
                session.defer(item)
        elif lowered == "new":
            session.mint_new(item)
        elif answer:
            print(_describe_runner(lowered, runners))
            question = "Use this runner? (y/n): " if lowered in runners else "Not in database, use anyway? (y/n): "
            if prompt(question).strip().lower() == "y":
                session.assign(item, lowered)
            else:
                session.defer(item)
        else:
            session.defer(item)


def review_year(year: int, prompt: Callable[[str], str] = input) -> ReviewSession:
    """Interactively settle the warnings left by ``assign`` for *year*."""
    warnings = read_json(WARNINGS_FILE)
    if warnings is None:
        raise ArchiveFileError(WARNINGS_FILE, "not found - run assign first")
    if warnings.get("target_year") != year:
        raise ArchiveFileError(WARNINGS_FILE, f"is for year {warnings.get('target_year')}, not {year}")

    entries = load_year(RESULTS_DIR, year)
    runners = _load_runners()
    ledger = Ledger.open(year, DATA_DIR)
    existing_ids = set(runners) | _all_runner_ids(skip_year=year)

    session = ReviewSession(
        warnings, entries, ledger, existing_ids,
        persist=lambda current: current.save(DATA_DIR),
    )
    try:
        drive_review(session, runners, prompt)
    except (EOFError, KeyboardInterrupt):
        logger.warning("Review interrupted - keeping decisions made so far")
        session.skip_remaining()
    finally:
        if len(ledger):
            save_year(RESULTS_DIR, year, entries)
            ledger.save(DATA_DIR)

    logger.info(
        "Review of %d: %d new decision(s), %d total in ledger, %d left for later%s",
        year, session.new_decisions, len(ledger), len(session.deferred),
        " (skipped remaining)" if session.stopped else "",
    )
    return session


# ---------------------------------------------------------------------------
# backfill / review-duplicates / merge / split
# ---------------------------------------------------------------------------

def _save_years(by_year: Dict[int, List], years) -> None:
    for year in sorted(years):
        save_year(RESULTS_DIR, year, by_year[year])


def backfill_archive(dry_run: bool = False, confidence: Optional[float] = None) -> backfill.BackfillReport:
    """Assign ids to unassigned results in every year file at once."""
    if confidence is None:
        confidence = float(os.getenv("RR_AUTO_THRESHOLD", matcher.AUTO_ASSIGN_THRESHOLD))
    logger.info("Backfilling runner ids (auto %.2f, warn %.2f, dry run %s)",
                confidence, matcher.WARNING_THRESHOLD, dry_run)

    name_changes = load_name_changes(DATA_DIR)
    by_year = load_years(RESULTS_DIR)
    for year, entries in by_year.items():
        logger.info("  %d: %d results", year, len(entries))

    result = backfill.backfill(by_year, name_changes=name_changes, auto_threshold=confidence)
    warnings = result.to_warnings()

    if dry_run:
        preview = DUPLICATES_FILE.with_name(DUPLICATES_FILE.name + ".preview")
        write_json(preview, warnings)
        logger.info("DRY RUN - results not written; preview at %s", preview)
    else:
        _save_years(by_year, result.changed_years)
        write_json(DUPLICATES_FILE, warnings)
        logger.info("Rewrote %d year file(s); potential duplicates in %s",
                    len(result.changed_years), DUPLICATES_FILE)

    summary = result.summary()
    logger.info(
        "Backfill summary: already assigned %d, auto-assigned %d (%d via name changes), "
        "new runners %d, needing review %d, potential duplicates %d",
        summary["already_assigned"], summary["auto_assigned"], summary["name_change_matches"],
        summary["new_runners"], summary["needs_review"], summary["potential_duplicates"],
    )
    return result


def _describe_results(results) -> List[str]:
    return [
        f"    {n}. {r.year}: Position {r.position}, {r.category.code or '-'}, \"{r.name}\", {r.club or 'No club'}"
        for n, r in enumerate(results, start=1)
    ]


def drive_merge_review(session: MergeSession, prompt: Callable[[str], str] = input) -> None:
    for number, pair in session:
        combined = []
        print("")
        print(f"[{number}/{len(session.pairs)}] {pair.reason} ({pair.similarity * 100:.1f}% similar)")
        for side, runner_id in enumerate(pair.runner_ids, start=1):
            results = session.results_for(runner_id)
            combined.extend(results)
            print(f"  {side}. {runner_id} ({len({r.year for r in results})} races)")
            print("\n".join(_describe_results(results)))

        answer = prompt("Same person? (y/n, s = skip remaining, blank = later): ").strip().lower()
        if answer == "s":
            session.skip_remaining()
            logger.warning("Skipping remaining duplicates")
            continue
        if answer == "n":
            session.keep_apart(pair)
            continue
        if answer != "y":
            session.defer(pair)
            continue

        choice = prompt(f"Keep which id? (1 = {pair.runner_ids[0]}, 2 = {pair.runner_ids[1]}, or type one): ").strip()
        runner_id = {"1": pair.runner_ids[0], "2": pair.runner_ids[1]}.get(choice, choice)
        if not runner_id:
            session.defer(pair)
            continue

        combined.sort(key=lambda r: (r.year, r.position))
        print("\n".join(_describe_results(combined)))
        marker = prompt("Canonical result for name/club (number, blank = most common): ").strip()
        canonical = None
        if marker.isdigit() and 1 <= int(marker) <= len(combined):
            chosen = combined[int(marker) - 1]
            canonical = (chosen.year, chosen.position)
        try:
            session.merge(pair, runner_id, canonical)
        except MergeConflictError as exc:
            print(f"Cannot merge: {exc}")
            session.defer(pair)


def review_duplicates(prompt: Callable[[str], str] = input) -> MergeSession:
    """Interactively merge or keep apart the runner pairs left by ``backfill``."""
    document = read_json(DUPLICATES_FILE)
    if document is None:
        raise ArchiveFileError(DUPLICATES_FILE, "not found - run backfill first")
    pairs = [backfill.RunnerPair.from_dict(p) for p in document.get("potential_duplicates", [])]
    by_year = load_years(RESULTS_DIR)

    def persist(current: MergeSession, changed) -> None:
        _save_years(by_year, changed)
        write_json(DUPLICATES_FILE, dict(document, potential_duplicates=[p.to_dict() for p in current.remaining()]))

    session = MergeSession(pairs, by_year, persist=persist)
    try:
        drive_merge_review(session, prompt)
    except (EOFError, KeyboardInterrupt):
        logger.warning("Review interrupted - keeping decisions made so far")
        session.skip_remaining()

    logger.info(
        "Duplicate review: %d merged, %d kept apart, %d left for later%s",
        session.merged, session.kept_apart, len(session.remaining()),
        " (skipped remaining)" if session.stopped else "",
    )
    return session


def merge_ids(source_id: str, target_id: str) -> None:
    by_year = load_years(RESULTS_DIR)
    _save_years(by_year, merge_runners(by_year, source_id, target_id.strip().lower()))


def parse_result_refs(refs: List[str]) -> List:
    """``["2019:12", "2020:8"]`` -> ``[(2019, 12), (2020, 8)]``."""
    parsed = []
    for ref in refs:
        year, sep, position = ref.partition(":")
        if not sep or not year.strip().isdigit() or not position.strip().isdigit():
            raise MergeConflictError(f"expected YEAR:POSITION, got {ref!r}")
        parsed.append((int(year), int(position)))
    return parsed


def split_id(runner_id: str, refs: List[str], new_id: Optional[str] = None) -> str:
    results = parse_result_refs(refs)
    by_year = load_years(RESULTS_DIR)
    new_id = split_runner(by_year, runner_id, results, new_id)
    _save_years(by_year, {year for year, _ in results})
    logger.info("Moved %d result(s) from %s to %s", len(results), runner_id, new_id)
    return new_id


# ---------------------------------------------------------------------------
# build-db / check-ids / name-change
# ---------------------------------------------------------------------------

def parse_years(value: Optional[str]) -> Optional[List[int]]:
    """``2010-2015`` or ``2010,2012`` -> list of years; None means all years."""
    if not value:
        return None
    if "-" in value:
        start, end = (int(p) for p in value.split("-", 1))
        return list(range(start, end + 1))
    return [int(p.strip()) for p in value.split(",") if p.strip()]


def build_database(years: Optional[List[int]] = None, dry_run: bool = False) -> Dict:
    selected = [y for y in list_years(RESULTS_DIR) if years is None or y in years]
    by_year = load_years(RESULTS_DIR, selected)
    entries = [e for year_entries in by_year.values() for e in year_entries]

    database = aggregate.build_runner_database(entries, years=selected)
    integrity = aggregate.find_integrity_warnings(entries, database["runners"])

    if dry_run:
        logger.info("DRY RUN - no files written")
    else:
        write_json(RUNNER_DATABASE_FILE, database)
        write_json(INTEGRITY_FILE, integrity)
        logger.info("Written %s and %s", RUNNER_DATABASE_FILE, INTEGRITY_FILE)

    meta = database["metadata"]
    logger.info(
        "%d runners, %d participations (%d without runner_id); %d canonical marker and %d gender warnings",
        meta["total_runners"], meta["total_participations"], meta["unassigned_results"],
        len(integrity["multiple_canonical_markers"]), len(integrity["suspicious_patterns"]),
    )
    return database


def check_ids() -> int:
    entries = [e for es in load_years(RESULTS_DIR).values() for e in es]
    integrity = aggregate.find_integrity_warnings(entries, {})
    for item in integrity["unassigned_results"]:
        logger.warning("%d: position %d (%s) has no runner_id", item["year"], item["position"], item["name"])
    for dup in integrity["duplicate_ids_in_year"]:
        logger.error("%d: runner_id %s appears at positions %s", dup["year"], dup["runner_id"], dup["positions"])
    if integrity["duplicate_ids_in_year"]:
        return 1
    logger.info("No duplicate runner_ids found")
    return 0


def add_name_change(runner_id: str, name: str) -> bool:
    runners = _load_runners()
    if runners and runner_id not in runners:
        logger.warning("runner_id %s not found in runner database", runner_id)
    table = load_name_changes(DATA_DIR)
    if not record_name_change(table, runner_id, name):
        logger.warning("%r is already recorded for %s", name, runner_id)
        return False
    save_name_changes(DATA_DIR, table)
    logger.info("Known names for %s: %s", runner_id, ", ".join(table[runner_id]))
    return True


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Race archive runner identity tools")
    parser.add_argument("--verbose", action="store_true", help="Verbose (DEBUG) logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_assign = sub.add_parser("assign", help="Assign runner ids to a new year's results")
    p_assign.add_argument("year", type=int)
    p_assign.add_argument("--dry-run", action="store_true")
    p_assign.add_argument("--confidence", type=float, default=None,
                          help="Auto-assign threshold (default RR_AUTO_THRESHOLD or 0.92)")

    p_review = sub.add_parser("review", help="Review uncertain matches and similar names")
    p_review.add_argument("year", type=int)

    p_db = sub.add_parser("build-db", help="Regenerate the runner database")
    p_db.add_argument("--years", default=None, help="e.g. 2010-2015 or 2010,2012")
    p_db.add_argument("--dry-run", action="store_true")

    sub.add_parser("check-ids", help="Report runner ids used twice within a year")

    p_name = sub.add_parser("name-change", help="Record a known alternate name for a runner")
    p_name.add_argument("runner_id")
    p_name.add_argument("name")

    p_backfill = sub.add_parser("backfill", help="Assign runner ids across every year file")
    p_backfill.add_argument("--dry-run", action="store_true")
    p_backfill.add_argument("--confidence", type=float, default=None,
                            help="Auto-assign threshold (default RR_AUTO_THRESHOLD or 0.92)")

    sub.add_parser("review-duplicates", help="Merge or keep apart similar runners found by backfill")

    p_merge = sub.add_parser("merge", help="Rewrite one runner id to another in every year")
    p_merge.add_argument("source_id")
    p_merge.add_argument("target_id")

    p_split = sub.add_parser("split", help="Move some of a runner's results to another id")
    p_split.add_argument("runner_id")
    p_split.add_argument("results", nargs="+", metavar="YEAR:POSITION")
    p_split.add_argument("--new-id", default=None, help="Target id (minted from the name when omitted)")

    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        if args.command == "assign":
            assign_year(args.year, dry_run=args.dry_run, confidence=args.confidence)
        elif args.command == "review":
            review_year(args.year)
        elif args.command == "build-db":
            build_database(parse_years(args.years), dry_run=args.dry_run)
        elif args.command == "check-ids":
            return check_ids()
        elif args.command == "name-change":
            add_name_change(args.runner_id, args.name)
        elif args.command == "backfill":
            backfill_archive(dry_run=args.dry_run, confidence=args.confidence)
        elif args.command == "review-duplicates":
            review_duplicates()
        elif args.command == "merge":
            merge_ids(args.source_id, args.target_id)
        elif args.command == "split":
            split_id(args.runner_id, args.results, args.new_id)
    except (MalformedResultsError, ArchiveFileError, MergeConflictError) as exc:
        logger.error("Aborted, nothing written: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
