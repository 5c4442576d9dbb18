import json

import pytest

from archive.results import Category, MalformedResultsError, list_years, load_year, save_year


def write(path, payload):
    path.write_text(json.dumps(payload) if not isinstance(payload, str) else payload)


def test_category_parsing():
    assert Category.parse("M40") == Category("M40", "M", "40")
    assert Category.parse("fo") == Category("fo", "F", "o")
    assert Category.parse("U18").gender is None
    assert Category.parse(None) == Category("", None, "")


def test_load_and_save_keep_unknown_columns(tmp_path):
    write(tmp_path / "2024.json", [
        {"Position": 1, "Bib no.": 101, "Name": "Ann Lee", "Category": "F", "Lap of Lough": "0:15:00"},
    ])
    entries = load_year(tmp_path, 2024)
    entries[0].runner_id = "ann-lee"
    save_year(tmp_path, 2024, entries)

    saved = json.loads((tmp_path / "2024.json").read_text())
    assert list(saved[0]) == ["Position", "Bib no.", "Name", "Category", "Lap of Lough", "runner_id"]
    assert saved[0]["runner_id"] == "ann-lee"
    assert not list(tmp_path.glob("*.tmp"))


def test_finish_time_falls_back_to_gun_time(tmp_path):
    write(tmp_path / "2024.json", [{"Position": 1, "Name": "A B", "Gun Time": "0:20:00"}])
    assert load_year(tmp_path, 2024)[0].finish_time == "0:20:00"


@pytest.mark.parametrize("payload", [
    "[{not json",
    {"Position": 1},
    [{"Name": "No Position"}],
    [{"Position": "first", "Name": "A B"}],
    [{"Position": 1, "Name": "A B"}, {"Position": 1, "Name": "C D"}],
    ["just a string"],
    [{"Position": 1, "Name": "A B", "Club": 42}],
    [{"Position": 1, "Name": ["A", "B"]}],
    [{"Position": 1, "Name": "A B", "Chip Time": 1500}],
])
def test_malformed_year_files_are_fatal(tmp_path, payload):
    write(tmp_path / "2024.json", payload)
    with pytest.raises(MalformedResultsError):
        load_year(tmp_path, 2024)


def test_missing_year_file_is_fatal(tmp_path):
    with pytest.raises(MalformedResultsError):
        load_year(tmp_path, 2030)


def test_list_years_ignores_other_files(tmp_path):
    for name in ("2019.json", "2021.json", "notes.json", "2020.csv"):
        (tmp_path / name).write_text("[]")
    assert list_years(tmp_path) == [2019, 2021]


def test_non_text_column_reports_file_and_row(tmp_path):
    write(tmp_path / "2024.json", [
        {"Position": 1, "Name": "Ann Lee", "Club": "Omagh Harriers"},
        {"Position": 2, "Name": "Pat Lynch", "Club": 17},
    ])
    with pytest.raises(MalformedResultsError) as excinfo:
        load_year(tmp_path, 2024)

    assert excinfo.value.row == 1
    assert excinfo.value.path == tmp_path / "2024.json"
    assert "Club" in str(excinfo.value)


def test_canonical_markers_are_written_back(tmp_path):
    write(tmp_path / "2024.json", [{"Position": 1, "Name": "Ann Lee"}])
    entries = load_year(tmp_path, 2024)
    entries[0].canonical_name = entries[0].canonical_club = True
    save_year(tmp_path, 2024, entries)

    saved = json.loads((tmp_path / "2024.json").read_text())
    assert saved[0]["canonical_name"] is True and saved[0]["canonical_club"] is True
