import json

import pytest

from archive import ledger as ledger_mod
from archive.ledger import DisambiguationDecision, Ledger
from archive.results import ResultEntry
from archive.store import ArchiveFileError


def test_ledger_persists_and_reloads(tmp_path):
    book = Ledger(2025)
    book.record(5, "Sean Murphy", "sean-murphy-belfast")
    book.record(12, "Sean Murphey", "sean-murphy")
    book.save(tmp_path)

    saved = json.loads((tmp_path / "2025-disambiguation.json").read_text())
    assert saved["year"] == 2025
    assert saved["decisions"][0] == {"position": 5, "name": "Sean Murphy", "runner_id": "sean-murphy-belfast"}

    reloaded = Ledger.open(2025, tmp_path)
    assert reloaded.lookup(5, "Sean Murphy") == "sean-murphy-belfast"
    assert reloaded.lookup(5, "Someone Else") is None


def test_missing_ledger_is_empty(tmp_path):
    assert ledger_mod.load(2025, tmp_path) == []


def test_ledger_for_another_year_is_ignored(tmp_path):
    ledger_mod.save(2024, [DisambiguationDecision(1, "A B", "a-b")], tmp_path)
    (tmp_path / "2025-disambiguation.json").write_text(
        (tmp_path / "2024-disambiguation.json").read_text()
    )
    assert ledger_mod.load(2025, tmp_path) == []


def test_unparseable_ledger_is_fatal(tmp_path):
    (tmp_path / "2025-disambiguation.json").write_text("{not json")
    with pytest.raises(ArchiveFileError):
        ledger_mod.load(2025, tmp_path)


def test_record_updates_existing_decision():
    book = Ledger(2025)
    book.record(5, "Sean Murphy", "sean-murphy")
    book.record(5, "Sean Murphy", "sean-murphy-belfast")
    assert len(book) == 1
    assert book.lookup(5, "Sean Murphy") == "sean-murphy-belfast"


def test_stale_decisions_are_reported():
    book = Ledger(2025)
    book.record(5, "Sean Murphy", "sean-murphy")
    book.record(6, "Ann Lee", "ann-lee")
    live = [
        ResultEntry.from_row(2025, {"Position": 5, "Name": "Sean Murphie"}),
        ResultEntry.from_row(2025, {"Position": 6, "Name": "Ann Lee"}),
    ]
    assert [d.position for d in book.stale(live)] == [5]
