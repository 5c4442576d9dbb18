import pytest

from archive.results import ResultEntry
from resolution.backfill import RunnerPair, backfill, cluster_unmatched


def entry(year, position, name, category="M40", time=None, runner_id=None, club=""):
    row = {"Position": position, "Name": name, "Category": category, "Club": club}
    if time:
        row["Chip Time"] = time
    if runner_id:
        row["runner_id"] = runner_id
    return ResultEntry.from_row(year, row)


def test_backfill_links_years_and_mints_one_id_per_cluster():
    by_year = {
        2019: [entry(2019, 1, "Jonathan Smith", "M40", "0:25:00", "jonathan-smith"),
               entry(2019, 2, "Mary Kelly", "F", "0:28:00")],
        2020: [entry(2020, 1, "Jonathan Smyth", "M40", "0:25:20"),
               entry(2020, 4, "Mary Kelly", "F", "0:28:30")],
        2021: [entry(2021, 3, "Mary Kelly", "F", "0:29:00")],
    }
    report = backfill(by_year)

    assert by_year[2020][0].runner_id == "jonathan-smith"
    assert {e.runner_id for e in (by_year[2019][1], by_year[2020][1], by_year[2021][0])} == {"mary-kelly"}
    assert report.already_assigned == 1
    assert report.auto_assigned == 1
    assert report.new_runners == [("mary-kelly", "Mary Kelly")]
    assert report.changed_years == {2019, 2020, 2021}
    assert report.potential_duplicates == []


def test_runner_never_gets_two_results_in_one_year():
    by_year = {2020: [entry(2020, 1, "Ann Lee", "F", "0:27:00", "ann-lee"),
                      entry(2020, 9, "Ann Lee", "F", "0:27:30")]}
    backfill(by_year)

    assert by_year[2020][1].runner_id == "ann-lee-2"


def test_same_year_results_are_not_clustered():
    clusters = cluster_unmatched([entry(2020, 1, "Pat Lynch", "M"), entry(2020, 2, "Pat Lynch", "M")])
    assert [len(c) for c in clusters] == [1, 1]


def test_implausible_times_are_not_clustered():
    clusters = cluster_unmatched([entry(2019, 1, "Pat Lynch", "M", "0:20:00"),
                                  entry(2020, 1, "Pat Lynch", "M", "0:45:00")])
    assert len(clusters) == 2


def test_blank_names_each_get_their_own_id():
    by_year = {2019: [entry(2019, 5, "", "M40")], 2020: [entry(2020, 6, "", "M40")]}
    report = backfill(by_year)

    assert [by_year[2019][0].runner_id, by_year[2020][0].runner_id] == ["unknown-runner-1", "unknown-runner-2"]
    assert report.potential_duplicates == []


def test_warned_results_stay_unassigned():
    by_year = {
        2019: [entry(2019, 1, "John Smith", "M40", "0:25:00", "john-smith")],
        2020: [entry(2020, 2, "John Smyth", "M40", "0:25:10")],
    }
    report = backfill(by_year)

    assert by_year[2020][0].runner_id is None
    assert report.uncertain_matches[0].suggested_id == "john-smith"
    assert report.changed_years == set()
    assert report.to_warnings()["uncertain_assignments"][0]["result"]["position"] == 2


def test_new_runner_close_to_an_existing_one_is_reported_not_merged():
    by_year = {
        2019: [entry(2019, 1, "Jonathan Smith", "M40", "0:25:00", "jonathan-smith")],
        2021: [entry(2021, 4, "Jonathan Smithers", "M40", "0:25:40")],
    }
    report = backfill(by_year)

    assert by_year[2021][0].runner_id == "jonathan-smithers"
    [pair] = report.potential_duplicates
    assert pair.runner_ids == ("jonathan-smith", "jonathan-smithers")
    assert pair.similarity == pytest.approx(1 - 3 / 16)
    assert pair.participations[1][0]["year"] == 2021

    document = report.to_warnings()
    assert document["potential_duplicates"][0]["runner_ids"] == ["jonathan-smith", "jonathan-smithers"]
    assert RunnerPair.from_dict(document["potential_duplicates"][0]) == pair


def test_existing_runners_are_not_paired_with_each_other():
    by_year = {
        2019: [entry(2019, 1, "Jonathan Smith", "M40", runner_id="jonathan-smith")],
        2021: [entry(2021, 4, "Jonathan Smithers", "M40", runner_id="jonathan-smithers")],
    }
    assert backfill(by_year).potential_duplicates == []
