import copy

from archive.ledger import Ledger
from archive.results import ResultEntry
from resolution import matcher
from resolution.index import IdentityIndex
from resolution.similarity import similarity


def entry(year, position, name, category="M40", time=None, runner_id=None, club=""):
    row = {"Position": position, "Name": name, "Category": category, "Club": club}
    if time:
        row["Chip Time"] = time
    if runner_id:
        row["runner_id"] = runner_id
    return ResultEntry.from_row(year, row)


def smith_history():
    return IdentityIndex.build(
        [entry(2023, 10, "Jonathan Smith", "M40", "0:25:00", "jonathan-smith")], before_year=2024
    )


def test_close_variant_auto_assigns():
    new = [entry(2024, 7, "Jonathan Smyth", "M40", "0:25:30")]
    report = matcher.resolve_year(new, smith_history(), 2024)

    assert new[0].runner_id == "jonathan-smith"
    assert report.auto_assigned == 1
    assert report.uncertain_matches == []


def test_first_name_gate_blocks_jon_john():
    index = IdentityIndex.build([entry(2023, 1, "John Smith", "M40", "0:25:00", "john-smith")])
    new = [entry(2024, 3, "Jon Smith", "M40", "0:25:30")]
    report = matcher.resolve_year(new, index, 2024)

    assert new[0].runner_id == "jon-smith"
    assert report.new_runners == [("jon-smith", "Jon Smith")]


def test_implausible_time_is_never_merged():
    new = [entry(2024, 7, "Jonathan Smyth", "M40", "0:45:00")]
    report = matcher.resolve_year(new, smith_history(), 2024)

    assert new[0].runner_id != "jonathan-smith"
    assert report.auto_assigned == 0
    assert all(u.suggested_id != "jonathan-smith" for u in report.uncertain_matches)


def test_gender_mismatch_is_never_matched():
    index = IdentityIndex.build([entry(2023, 4, "Alex Taylor", "F35", "0:30:00", "alex-taylor")])
    new = [entry(2024, 9, "Alex Taylor", "M35", "0:30:00")]
    report = matcher.resolve_year(new, index, 2024)

    assert new[0].runner_id == "alex-taylor-2"
    assert report.uncertain_matches == []


def test_threshold_boundaries():
    score = similarity("Jonathan Smith", "Jonathan Smyth")

    at_auto = [entry(2024, 7, "Jonathan Smyth", "M40", "0:25:30")]
    matcher.resolve_year(at_auto, smith_history(), 2024, auto_threshold=score)
    assert at_auto[0].runner_id == "jonathan-smith"

    below_auto = [entry(2024, 7, "Jonathan Smyth", "M40", "0:25:30")]
    report = matcher.resolve_year(below_auto, smith_history(), 2024, auto_threshold=score + 1e-9)
    assert below_auto[0].runner_id is None
    assert [(u.position, u.suggested_id) for u in report.uncertain_matches] == [(7, "jonathan-smith")]
    assert report.new_runners == []

    below_warn = [entry(2024, 7, "Jonathan Smyth", "M40", "0:25:30")]
    report = matcher.resolve_year(
        below_warn, smith_history(), 2024, auto_threshold=0.99, warning_threshold=score + 1e-9
    )
    assert below_warn[0].runner_id == "jonathan-smyth"
    assert report.uncertain_matches == []


def test_similar_names_in_same_year_are_held_for_review():
    new = [
        entry(2024, 5, "Sean Murphy", "M35", "0:31:00"),
        entry(2024, 12, "Sean Murphey", "M35", "0:33:00"),
        entry(2024, 20, "Orla Walsh", "F", "0:29:00"),
    ]
    report = matcher.resolve_year(new, IdentityIndex({}), 2024)

    assert [d.positions for d in report.duplicates] == [(5, 12)]
    assert report.duplicates[0].names == ("Sean Murphy", "Sean Murphey")
    assert new[0].runner_id is None and new[1].runner_id is None
    assert new[2].runner_id == "orla-walsh"
    assert report.needs_review == 2


def test_sean_shaun_fail_the_first_name_gate():
    new = [entry(2024, 5, "Sean Murphy", "M35"), entry(2024, 12, "Shaun Murphy", "M35")]
    report = matcher.resolve_year(new, IdentityIndex({}), 2024)

    assert report.duplicates == []
    assert [e.runner_id for e in new] == ["sean-murphy", "shaun-murphy"]


def test_ledger_decision_wins_over_fuzzy_match():
    index = IdentityIndex.build([entry(2023, 2, "Sean Murphy", "M35", "0:31:00", "sean-murphy")])
    ledger = Ledger(2024)
    ledger.record(5, "Sean Murphy", "sean-murphy-belfast")
    new = [entry(2024, 5, "Sean Murphy", "M35", "0:31:00")]

    report = matcher.resolve_year(new, index, 2024, ledger=ledger)

    assert new[0].runner_id == "sean-murphy-belfast"
    assert report.disambiguated == 1
    assert report.auto_assigned == 0


def test_ledger_overrides_an_existing_assignment():
    ledger = Ledger(2024)
    ledger.record(5, "Sean Murphy", "sean-murphy-belfast")
    new = [entry(2024, 5, "Sean Murphy", "M35", runner_id="sean-murphy")]

    matcher.resolve_year(new, IdentityIndex({}), 2024, ledger=ledger)

    assert new[0].runner_id == "sean-murphy-belfast"


def test_stale_ledger_decision_is_not_replayed():
    ledger = Ledger(2024)
    ledger.record(5, "Sean Murphy", "sean-murphy-belfast")
    new = [entry(2024, 5, "Sean Murfy", "M35")]

    report = matcher.resolve_year(new, IdentityIndex({}), 2024, ledger=ledger)

    assert report.stale_decisions == 1
    assert new[0].runner_id == "sean-murfy"


def test_known_name_change_matches_exactly():
    index = IdentityIndex.build([entry(2022, 8, "Mary Kelly", "F40", "0:28:00", "mary-kelly")])
    aliases = {"mary-kelly": ["Mary O'Brien"]}
    new = [entry(2024, 3, "Mary O’Brien", "F40", "0:28:40")]

    report = matcher.resolve_year(new, index, 2024, name_changes=aliases)

    assert new[0].runner_id == "mary-kelly"
    assert report.name_change_matches == 1


def test_known_name_change_still_checks_time():
    index = IdentityIndex.build([entry(2022, 8, "Mary Kelly", "F40", "0:28:00", "mary-kelly")])
    aliases = {"mary-kelly": ["Mary O'Brien"]}
    new = [entry(2024, 3, "Mary O'Brien", "F40", "0:50:00")]

    matcher.resolve_year(new, index, 2024, name_changes=aliases)

    assert new[0].runner_id == "mary-obrien"


def test_every_historical_name_is_tried():
    index = IdentityIndex.build([
        entry(2020, 4, "Katie Byrne", "F35", "0:27:00", "katie-byrne"),
        entry(2022, 6, "Kathryn Byrne", "F35", "0:27:30", "katie-byrne"),
    ])
    new = [entry(2024, 2, "Kathryn Byrnes", "F40", "0:27:10")]

    matcher.resolve_year(new, index, 2024)

    assert new[0].runner_id == "katie-byrne"


def test_time_gate_prefers_recent_results():
    index = IdentityIndex.build([
        entry(2010, 30, "Declan Quinn", "M", "0:40:00", "declan-quinn"),
        entry(2022, 15, "Declan Quinn", "M40", "0:25:00", "declan-quinn"),
    ])
    new = [entry(2024, 11, "Declan Quinn", "M45", "0:26:00")]

    matcher.resolve_year(new, index, 2024)

    assert new[0].runner_id == "declan-quinn"


def test_time_gate_falls_back_to_full_history():
    index = IdentityIndex.build([entry(2010, 30, "Declan Quinn", "M", "0:40:00", "declan-quinn")])
    new = [entry(2024, 11, "Declan Quinn", "M45", "0:26:00")]

    matcher.resolve_year(new, index, 2024)

    assert new[0].runner_id == "declan-quinn-2"


def test_rerun_gives_identical_rows():
    history = smith_history()
    rows = [
        {"Position": 1, "Name": "Jonathan Smyth", "Category": "M40", "Chip Time": "0:25:30"},
        {"Position": 2, "Name": "Sean Murphy", "Category": "M35"},
        {"Position": 3, "Name": "Sean Murphey", "Category": "M35"},
        {"Position": 4, "Name": "Ciara Doyle", "Category": "F", "Club": "Omagh Harriers"},
    ]

    first = [ResultEntry.from_row(2024, r) for r in copy.deepcopy(rows)]
    matcher.resolve_year(first, history, 2024)
    first_rows = [e.to_row() for e in first]

    second = [ResultEntry.from_row(2024, r) for r in copy.deepcopy(first_rows)]
    matcher.resolve_year(second, history, 2024)

    assert [e.to_row() for e in second] == first_rows

    again = [ResultEntry.from_row(2024, r) for r in copy.deepcopy(rows)]
    matcher.resolve_year(again, history, 2024)
    assert [e.to_row() for e in again] == first_rows


def test_existing_ids_are_threaded_through_minting():
    existing = {"ciara-doyle"}
    new = [entry(2024, 4, "Ciara Doyle", "F", club="Omagh Harriers")]

    matcher.resolve_year(new, IdentityIndex({}), 2024, existing_ids=existing)

    assert new[0].runner_id == "ciara-doyle-omagh"
    assert "ciara-doyle-omagh" in existing


def test_warnings_document_shape():
    new = [
        entry(2024, 7, "Jonathan Smyth", "M40", "0:25:30"),
        entry(2024, 8, "Pat Lynch", "M"),
        entry(2024, 9, "Pat Lynch", "M"),
    ]
    report = matcher.resolve_year(new, smith_history(), 2024, auto_threshold=0.95)
    warnings = report.to_warnings()

    assert warnings["target_year"] == 2024
    assert warnings["uncertain_matches"][0]["result"] == {"year": 2024, "position": 7, "name": "Jonathan Smyth"}
    assert warnings["uncertain_matches"][0]["suggested_id"] == "jonathan-smith"
    assert warnings["duplicates_in_new_year"][0]["positions"] == [8, 9]
    assert warnings["duplicates_in_new_year"][0]["similarity"] == 1.0
    assert warnings["summary"]["needs_review"] == 3
    assert warnings["summary"]["new_runners_created"] == 0


def test_blank_name_is_not_matched_to_an_earlier_blank_name():
    index = IdentityIndex.build([entry(2023, 40, "", "M40", "0:30:00", "unknown-runner-1")])
    new = [entry(2024, 41, "", "M40", "0:31:00")]
    report = matcher.resolve_year(new, index, 2024)

    assert new[0].runner_id == "unknown-runner-2"
    assert report.auto_assigned == 0
    assert report.new_runners == [("unknown-runner-2", "")]


def test_blank_names_in_one_year_are_not_paired():
    new = [entry(2024, 3, "", "F"), entry(2024, 9, "  ", "F")]
    report = matcher.resolve_year(new, IdentityIndex.build([]), 2024)

    assert report.duplicates == []
    assert [e.runner_id for e in new] == ["unknown-runner-1", "unknown-runner-2"]
