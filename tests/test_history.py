"""
Tests for core/history.py

Uses an in-memory key-value store so nothing touches disk.

Run with: pytest tests/test_history.py
"""

import json
from itertools import count

import pydantic
import pytest

from core.errors import PersistenceError
from core.history import STORAGE_KEY, BoundedSequence, HistoryStore
from core.models import AnalysisDraft, AnalysisRequest, Citation, StructuredAnalysis
from core.storage import InMemoryKeyValueStore


class FailingStore:
    """Storage whose every call fails."""

    def get(self, key):
        raise PersistenceError("disk unavailable")

    def set(self, key, value):
        raise PersistenceError("disk full")


def make_draft(country: str = "Germany") -> AnalysisDraft:
    return AnalysisDraft(
        request=AnalysisRequest(country=country, time_period="the last month"),
        analysis=StructuredAnalysis(
            event_summary="Elections held.",
            geopolitical_significance="Shifts EU policy.",
            overall_sentiment="Neutral",
            key_themes=["Elections"],
        ),
        citations=[Citation(uri="https://news.example/de", title="DE news")],
        rendered_text="Event Summary:\nElections held.",
    )


@pytest.fixture
def storage() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def store(storage) -> HistoryStore:
    ticks = count(1_700_000_000_000, 1000)
    return HistoryStore(storage, capacity=3, clock=lambda: next(ticks))


# ── BoundedSequence ────────────────────────────────────────────────────────────


class TestBoundedSequence:
    def test_push_front_orders_newest_first(self):
        seq = BoundedSequence(3)
        for item in "abc":
            seq.push_front(item)
        assert seq.snapshot() == ["c", "b", "a"]

    def test_never_exceeds_capacity(self):
        seq = BoundedSequence(2)
        evicted = [seq.push_front(item) for item in "abcd"]
        assert len(seq) == 2
        assert seq.snapshot() == ["d", "c"]
        assert evicted == [None, None, "a", "b"]

    def test_initial_items_truncated_to_first_n(self):
        assert BoundedSequence(2, ["new", "mid", "old"]).snapshot() == ["new", "mid"]

    def test_remove_first(self):
        seq = BoundedSequence(3, ["a", "b", "c"])
        assert seq.remove_first(lambda x: x == "b") is True
        assert seq.remove_first(lambda x: x == "z") is False
        assert seq.snapshot() == ["a", "c"]

    def test_zero_capacity_rejected(self):
        with pytest.raises(ValueError):
            BoundedSequence(0)


# ── HistoryStore ───────────────────────────────────────────────────────────────


class TestInsert:
    def test_assigns_id_and_timestamp(self, store):
        record = store.insert(make_draft())
        assert record.id == "1700000000000"
        assert record.created_at.year == 2023
        assert record.request.country == "Germany"
        assert record.rendered_text == "Event Summary:\nElections held."

    def test_newest_first(self, store):
        first = store.insert(make_draft("France"))
        second = store.insert(make_draft("Spain"))
        assert [r.id for r in store.list()] == [second.id, first.id]

    def test_ids_unique_within_same_millisecond(self, storage):
        store = HistoryStore(storage, capacity=5, clock=lambda: 42)
        ids = [store.insert(make_draft()).id for _ in range(5)]
        assert len(set(ids)) == 5

    def test_evicts_oldest_beyond_capacity(self, store):
        countries = ["A", "B", "C", "D", "E"]
        for country in countries:
            store.insert(make_draft(country))

        assert len(store) == 3
        assert [r.request.country for r in store.list()] == ["E", "D", "C"]

    def test_persists_after_insert(self, store, storage):
        record = store.insert(make_draft())
        blob = json.loads(storage.get(STORAGE_KEY))
        assert blob[0]["id"] == record.id
        assert blob[0]["request"] == {"country": "Germany", "timePeriod": "the last month"}
        assert blob[0]["renderedText"] == record.rendered_text


class TestListAndLoad:
    def test_list_is_a_snapshot(self, store):
        store.insert(make_draft())
        snapshot = store.list()
        snapshot.clear()
        assert len(store.list()) == 1

    def test_load_existing(self, store):
        record = store.insert(make_draft())
        assert store.load(record.id) == record

    def test_load_does_not_reorder(self, store):
        first = store.insert(make_draft("A"))
        second = store.insert(make_draft("B"))
        store.load(first.id)
        assert [r.id for r in store.list()] == [second.id, first.id]

    def test_load_missing_returns_none(self, store):
        assert store.load("99999") is None


class TestDelete:
    def test_delete_existing_keeps_order_of_rest(self, store):
        a, b, c = (store.insert(make_draft(x)) for x in "ABC")
        assert store.delete(b.id) is True
        assert [r.id for r in store.list()] == [c.id, a.id]

    def test_delete_missing_returns_false(self, store, storage):
        store.insert(make_draft())
        before = storage.get(STORAGE_KEY)
        assert store.delete("99999") is False
        assert len(store) == 1
        assert storage.get(STORAGE_KEY) == before

    def test_delete_persists(self, store, storage):
        record = store.insert(make_draft())
        store.delete(record.id)
        assert json.loads(storage.get(STORAGE_KEY)) == []


class TestClear:
    def test_clear_empties_and_persists(self, store, storage):
        store.insert(make_draft())
        store.insert(make_draft())
        store.clear()
        assert store.list() == []
        assert json.loads(storage.get(STORAGE_KEY)) == []


class TestRestore:
    def test_round_trips_through_storage(self, store, storage):
        inserted = [store.insert(make_draft(x)) for x in "AB"]
        reopened = HistoryStore(storage, capacity=3)
        assert reopened.list() == list(reversed(inserted))

    def test_new_ids_stay_above_restored_ones(self, store, storage):
        store.insert(make_draft())
        reopened = HistoryStore(storage, capacity=3, clock=lambda: 5)
        assert int(reopened.insert(make_draft()).id) > 1_700_000_000_000

    def test_absent_blob_gives_empty_history(self, storage):
        assert HistoryStore(storage).list() == []

    @pytest.mark.parametrize("blob", ["{not json", '{"id": 1}', "42"])
    def test_corrupt_blob_gives_empty_history(self, blob):
        store = HistoryStore(InMemoryKeyValueStore({STORAGE_KEY: blob}))
        assert store.list() == []

    def test_corrupt_entry_is_skipped(self, store, storage):
        good = store.insert(make_draft())
        entries = json.loads(storage.get(STORAGE_KEY))
        entries.append({"id": "1", "analysis": "garbage"})
        storage.set(STORAGE_KEY, json.dumps(entries))

        assert [r.id for r in HistoryStore(storage).list()] == [good.id]

    def test_restored_list_truncated_to_capacity(self, store, storage):
        for x in "ABC":
            store.insert(make_draft(x))
        assert [r.request.country for r in HistoryStore(storage, capacity=2).list()] == ["C", "B"]

    @pytest.mark.parametrize("timestamp", [float("inf"), 10**30, float("nan")])
    def test_out_of_range_legacy_timestamp_is_skipped(self, store, storage, timestamp):
        good = store.insert(make_draft())
        entries = json.loads(storage.get(STORAGE_KEY))
        entries.append({
            "id": "1",
            "country": "X",
            "timePeriod": "y",
            "timestamp": timestamp,
            "analysis": entries[0]["analysis"],
        })
        storage.set(STORAGE_KEY, json.dumps(entries))

        assert [r.id for r in HistoryStore(storage).list()] == [good.id]

    @pytest.mark.parametrize("record_id", ["\u00b2", "abc", "-"])
    def test_non_numeric_id_does_not_break_startup(self, store, storage, record_id):
        store.insert(make_draft())
        entries = json.loads(storage.get(STORAGE_KEY))
        entries[0]["id"] = record_id
        storage.set(STORAGE_KEY, json.dumps(entries))

        reopened = HistoryStore(storage, clock=lambda: 7)

        assert reopened.load(record_id) is not None
        assert reopened.insert(make_draft()).id == "7"

    def test_legacy_entry_shape(self):
        legacy = [{
            "id": "1700000000000",
            "country": "Japan",
            "timePeriod": "recent weeks",
            "timestamp": 1700000000000,
            "analysis": {
                "eventSummary": "E",
                "geopoliticalSignificance": "G",
                "keyActors": "A",
                "futureImplications": "F",
                "overallSentiment": "Positive",
                "keyThemes": ["Trade"],
            },
            "sources": [{"uri": "https://a.example", "title": "A"}],
        }]
        store = HistoryStore(InMemoryKeyValueStore({STORAGE_KEY: json.dumps(legacy)}))

        record = store.load("1700000000000")

        assert record is not None
        assert record.request == AnalysisRequest(country="Japan", time_period="recent weeks")
        assert record.citations[0].uri == "https://a.example"
        assert record.rendered_text == ""
        assert record.created_at.year == 2023


class TestStorageFailures:
    def test_unreadable_storage_gives_empty_history(self):
        assert HistoryStore(FailingStore()).list() == []

    def test_write_failure_keeps_in_memory_state(self):
        store = HistoryStore(FailingStore())
        record = store.insert(make_draft())
        assert store.list() == [record]
        assert store.delete(record.id) is True
        store.clear()
        assert store.list() == []


class TestImmutability:
    def test_stored_record_cannot_be_modified(self, store):
        record = store.insert(make_draft())
        with pytest.raises(pydantic.ValidationError):
            record.rendered_text = "changed"
        with pytest.raises(pydantic.ValidationError):
            store.load(record.id).analysis.event_summary = "changed"
        assert store.load(record.id).rendered_text == "Event Summary:\nElections held."
