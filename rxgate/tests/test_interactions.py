import json

import pytest

from rxgate.app.errors import InteractionSourceError
from rxgate.app.models import MedicationEntry
from rxgate.app.services.interactions import (
    InteractionChecker,
    NullInteractionSource,
    StaticInteractionSource,
)


def meds(*names):
    return [MedicationEntry(name=n, dosage="1 tab", frequency="daily") for n in names]


class CountingSource:
    def __init__(self):
        self.calls = []

    def query(self, drug_a, drug_b):
        self.calls.append((drug_a, drug_b))
        return None


class BrokenSource:
    def query(self, drug_a, drug_b):
        raise TimeoutError("interaction service timed out")


@pytest.fixture
def table():
    return StaticInteractionSource(
        [
            {"drugs": ["Warfarin", "Aspirin"], "severity": "major", "description": "Bleeding"},
            {"drugs": ["Sildenafil", "Nitroglycerin"], "severity": "major", "description": "Hypotension"},
        ]
    )


def test_warfarin_aspirin_detected(table):
    found = InteractionChecker(table).check(meds("Warfarin", "Aspirin"))

    assert len(found) == 1
    assert set(found[0].drugs) == {"Warfarin", "Aspirin"}
    assert found[0].severity == "major"


def test_lookup_ignores_order_and_case(table):
    assert table.query("aspirin", "WARFARIN") is not None
    assert table.query("Warfarin", "Aspirin") == table.query("Aspirin", "Warfarin")


def test_no_interactions_returns_empty_list(table):
    assert InteractionChecker(table).check(meds("Amoxicillin", "Ibuprofen")) == []


def test_single_medication_makes_no_queries():
    source = CountingSource()
    assert InteractionChecker(source).check(meds("Warfarin")) == []
    assert source.calls == []


def test_every_unordered_pair_queried_once():
    source = CountingSource()
    InteractionChecker(source).check(meds("A", "B", "C", "D"))

    assert len(source.calls) == 6
    assert {frozenset(c) for c in source.calls} == {
        frozenset(p)
        for p in [("A", "B"), ("A", "C"), ("A", "D"), ("B", "C"), ("B", "D"), ("C", "D")]
    }


def test_duplicate_entries_reported_once(table):
    found = InteractionChecker(table).check(meds("Warfarin", "Aspirin", "Warfarin"))
    assert len(found) == 1


def test_multiple_distinct_interactions(table):
    found = InteractionChecker(table).check(
        meds("Warfarin", "Sildenafil", "Aspirin", "Nitroglycerin")
    )
    assert len(found) == 2


def test_source_failure_fails_closed():
    with pytest.raises(InteractionSourceError):
        InteractionChecker(BrokenSource()).check(meds("Warfarin", "Aspirin"))


def test_null_source_finds_nothing():
    assert InteractionChecker(NullInteractionSource()).check(meds("Warfarin", "Aspirin")) == []


def test_from_file(tmp_path):
    path = tmp_path / "interactions.json"
    path.write_text(
        json.dumps([{"drugs": ["Warfarin", "Aspirin"], "severity": "major"}]),
        encoding="utf-8",
    )

    source = StaticInteractionSource.from_file(str(path))

    assert len(source) == 1
    assert source.query("Aspirin", "Warfarin").severity == "major"


@pytest.mark.parametrize("content", ["not json", '[{"severity": "major"}]', '[{"drugs": ["x"]}]'])
def test_from_file_rejects_malformed_table(tmp_path, content):
    path = tmp_path / "interactions.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(InteractionSourceError):
        StaticInteractionSource.from_file(str(path))


def test_from_file_missing():
    with pytest.raises(InteractionSourceError):
        StaticInteractionSource.from_file("/nonexistent/interactions.json")
