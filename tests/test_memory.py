"""Tests for MemoryStore – dedup-on-insert, lookups, listing and deletion."""

from __future__ import annotations

import math

import pytest

from vector_memory.errors import DimensionMismatch, ValidationError
from vector_memory.memory import MemoryStore
from vector_memory.similarity import SimilarityEngine
from conftest import AGENT, DIM, OTHER_ROOM, ROOM, at_similarity, axis, memory


class TestInsert:
    def test_scenario_cats_and_dogs(self, make_store):
        store = make_store(dimension=384)
        memories = MemoryStore(store)
        vec = [0.0] * 384
        vec[7] = 1.0
        record = memory(vec, text="cats and dogs")
        assert memories.insert(record, table="messages") is True

        fetched = memories.get_by_id(record.id)
        assert fetched is not None
        assert fetched.content.text == "cats and dogs"
        assert len(fetched.embedding) == 384
        assert fetched.room_id == ROOM
        assert fetched.agent_id == AGENT

    def test_generates_id_and_timestamp(self, memory_store: MemoryStore):
        record = memory(axis(0))
        memory_store.insert(record, table="messages")
        assert record.id
        assert record.created_at is not None
        assert record.table == "messages"

    def test_same_text_twice_is_not_unique(self, memory_store: MemoryStore):
        first = memory(axis(0), text="same")
        second = memory(axis(0), text="same")
        memory_store.insert(first, table="messages")
        memory_store.insert(second, table="messages")
        assert memory_store.get_by_id(first.id).unique is True
        assert memory_store.get_by_id(second.id).unique is False

    def test_dedup_threshold_is_095(self, memory_store: MemoryStore):
        memory_store.insert(memory(axis(0)), table="messages")
        close = memory(at_similarity(0.96))
        far = memory(at_similarity(0.9, other_axis=2))
        memory_store.insert(close, table="messages")
        memory_store.insert(far, table="messages")
        assert close.unique is False
        assert far.unique is True

    def test_dedup_is_scoped_to_room_and_table(self, memory_store: MemoryStore):
        memory_store.insert(memory(axis(0)), table="messages")
        other_room = memory(axis(0), room=OTHER_ROOM)
        other_table = memory(axis(0))
        memory_store.insert(other_room, table="messages")
        memory_store.insert(other_table, table="facts")
        assert other_room.unique is True
        assert other_table.unique is True

    def test_unique_override_wins(self, memory_store: MemoryStore):
        memory_store.insert(memory(axis(0)), table="messages")
        forced = memory(axis(0))
        memory_store.insert(forced, table="messages", unique=True)
        assert memory_store.get_by_id(forced.id).unique is True

        lonely = memory(axis(3))
        memory_store.insert(lonely, table="messages", unique=False)
        assert memory_store.get_by_id(lonely.id).unique is False

    def test_stale_unique_flag_is_recomputed(self, memory_store: MemoryStore):
        original = memory(axis(0))
        memory_store.insert(original, table="messages")
        copy = memory_store.get_by_id(original.id)
        assert copy.unique is True
        copy.id = None
        memory_store.insert(copy, table="messages")
        assert copy.unique is False

        moved = memory_store.get_by_id(copy.id)
        moved.id = None
        moved.room_id = OTHER_ROOM
        memory_store.insert(moved, table="messages")
        assert memory_store.get_by_id(moved.id).unique is True

    def test_record_without_embedding_is_unique(self, memory_store: MemoryStore):
        record = memory(None)
        memory_store.insert(record, table="messages")
        fetched = memory_store.get_by_id(record.id)
        assert fetched.unique is True
        assert fetched.embedding is None

    def test_duplicate_id_is_a_conflict(self, memory_store: MemoryStore, caplog):
        record = memory(axis(0), id="fixed-id")
        assert memory_store.insert(record, table="messages") is True
        with caplog.at_level("WARNING"):
            assert memory_store.insert(memory(axis(1), id="fixed-id"), table="messages") is False
        assert "already exists" in caplog.text
        assert memory_store.count(ROOM, unique_only=False, table="messages") == 1

    def test_wrong_dimension_fails(self, memory_store: MemoryStore):
        with pytest.raises(DimensionMismatch) as excinfo:
            memory_store.insert(memory([1.0, 0.0, 0.0]), table="messages")
        assert str(DIM) in str(excinfo.value)
        assert "3" in str(excinfo.value)

    def test_table_and_room_are_required(self, memory_store: MemoryStore):
        with pytest.raises(ValidationError, match="table"):
            memory_store.insert(memory(axis(0)))
        with pytest.raises(ValidationError, match="room_id"):
            memory_store.insert(memory(axis(0), room=""), table="messages")

    def test_content_round_trips(self, memory_store: MemoryStore):
        record = memory(axis(0))
        record.content.type = "fact"
        record.content.metadata["source"] = "unit_test"
        memory_store.insert(record, table="facts")
        fetched = memory_store.get_by_id(record.id)
        assert fetched.content.type == "fact"
        assert fetched.content.metadata == {"source": "unit_test"}


class TestLookups:
    def test_get_by_id_missing_is_none(self, memory_store: MemoryStore):
        assert memory_store.get_by_id("missing") is None

    def test_get_by_ids_empty_input(self, memory_store: MemoryStore, monkeypatch):
        def _fail(*args, **kwargs):
            raise AssertionError("no query expected")

        monkeypatch.setattr(memory_store._store, "get", _fail)
        assert memory_store.get_by_ids([]) == []

    def test_get_by_ids_skips_missing(self, memory_store: MemoryStore):
        a, b = memory(axis(0)), memory(axis(1))
        memory_store.insert(a, table="messages")
        memory_store.insert(b, table="messages")
        found = memory_store.get_by_ids([a.id, "missing", b.id])
        assert {m.id for m in found} == {a.id, b.id}
        assert memory_store.get_by_ids(["missing"]) == []

    def test_get_by_ids_table_filter(self, memory_store: MemoryStore):
        a = memory(axis(0))
        memory_store.insert(a, table="messages")
        assert memory_store.get_by_ids([a.id], table="facts") == []


class TestList:
    @pytest.fixture()
    def timeline(self, memory_store: MemoryStore):
        records = []
        for i in range(5):
            record = memory(axis(i), text=f"t{i}", created_at=100.0 * (i + 1))
            memory_store.insert(record, table="messages")
            records.append(record)
        return records

    def test_newest_first(self, memory_store: MemoryStore, timeline):
        listed = memory_store.list(ROOM, "messages")
        assert [m.id for m in listed] == [r.id for r in reversed(timeline)]

    def test_limit(self, memory_store: MemoryStore, timeline):
        listed = memory_store.list(ROOM, "messages", limit=2)
        assert [m.content.text for m in listed] == ["t4", "t3"]

    def test_zero_limit_returns_nothing(self, memory_store: MemoryStore, timeline):
        assert memory_store.list(ROOM, "messages", limit=0) == []
        assert memory_store.list_by_room_ids([ROOM], "messages", limit=0) == []

    def test_start_and_end_are_inclusive(self, memory_store: MemoryStore, timeline):
        listed = memory_store.list(ROOM, "messages", start=200.0, end=400.0)
        assert [m.content.text for m in listed] == ["t3", "t2", "t1"]

    def test_agent_and_unique_filters(self, memory_store: MemoryStore, timeline):
        memory_store.insert(memory(axis(0), agent="someone-else"), table="messages")
        assert len(memory_store.list(ROOM, "messages", agent_id=AGENT)) == 5
        assert len(memory_store.list(ROOM, "messages", unique_only=True)) == 5
        assert len(memory_store.list(ROOM, "messages")) == 6

    def test_requires_scope(self, memory_store: MemoryStore):
        with pytest.raises(ValidationError):
            memory_store.list("", "messages")
        with pytest.raises(ValidationError):
            memory_store.list(ROOM, "")

    def test_list_by_room_ids(self, memory_store: MemoryStore, timeline):
        other = memory(axis(9), room=OTHER_ROOM, created_at=50.0)
        memory_store.insert(other, table="messages")
        listed = memory_store.list_by_room_ids([ROOM, OTHER_ROOM], "messages")
        assert len(listed) == 6
        assert listed[-1].id == other.id
        assert memory_store.list_by_room_ids([], "messages") == []
        assert len(memory_store.list_by_room_ids([OTHER_ROOM], "messages")) == 1


class TestDeleteAndCount:
    def test_delete_by_id(self, memory_store: MemoryStore):
        record = memory(axis(0))
        memory_store.insert(record, table="messages")
        assert memory_store.delete_by_id(record.id, "facts") is False
        assert memory_store.delete_by_id(record.id, "messages") is True
        assert memory_store.get_by_id(record.id) is None

    def test_delete_all_in_room(self, memory_store: MemoryStore):
        for i in range(3):
            memory_store.insert(memory(axis(i)), table="messages")
        keep = memory(axis(0), room=OTHER_ROOM)
        memory_store.insert(keep, table="messages")
        assert memory_store.delete_all_in_room(ROOM, "messages") == 3
        assert memory_store.count(ROOM, unique_only=False, table="messages") == 0
        assert memory_store.get_by_id(keep.id) is not None

    def test_count_unique_by_default(self, memory_store: MemoryStore):
        memory_store.insert(memory(axis(0)), table="messages")
        memory_store.insert(memory(axis(0)), table="messages")
        memory_store.insert(memory(axis(1)), table="messages")
        assert memory_store.count(ROOM, table="messages") == 2
        assert memory_store.count(ROOM, unique_only=False, table="messages") == 3

    def test_count_requires_table(self, memory_store: MemoryStore):
        with pytest.raises(ValidationError):
            memory_store.count(ROOM)


def _cluster(dim: int, base: list[float], noise_axis: int) -> list[float]:
    vec = list(base)
    vec[noise_axis] += 0.05
    norm = math.sqrt(sum(x * x for x in vec))
    return [x / norm for x in vec]


class TestSearch:
    def test_topical_clusters(self, make_store):
        dim = 384
        store = make_store(dimension=dim)
        memories = MemoryStore(store, SimilarityEngine(store))

        c1 = [0.0] * dim
        c1[0] = 1.0
        c2 = [0.0] * dim
        c2[0], c2[1] = 0.7, math.sqrt(1 - 0.49)
        c3 = [0.0] * dim
        c3[2] = 1.0

        clusters = {}
        noise = 3
        for name, base in (("c1", c1), ("c2", c2), ("c3", c3)):
            clusters[name] = []
            for i in range(5):
                record = memory(_cluster(dim, base, noise), text=f"{name}-{i}")
                noise += 1
                memories.insert(record, table="messages")
                clusters[name].append(record.id)

        strict = memories.search_by_embedding(c1, table="messages", threshold=0.8, limit=20)
        loose = memories.search_by_embedding(c1, table="messages", threshold=0.6, limit=20)

        strict_ids = {h.record.id for h in strict}
        loose_ids = {h.record.id for h in loose}
        assert strict_ids == set(clusters["c1"])
        assert strict_ids < loose_ids
        assert loose_ids & set(clusters["c2"])
        assert not loose_ids & set(clusters["c3"])

    def test_search_by_embedding_returns_records(self, memory_store: MemoryStore):
        record = memory(axis(0), text="hello")
        memory_store.insert(record, table="messages")
        hits = memory_store.search_by_embedding(axis(0), table="messages", room_id=ROOM)
        assert hits[0].record.content.text == "hello"
        assert hits[0].similarity == pytest.approx(1.0)

    def test_search_memories_uses_defaults(self, vector_store, engine):
        memories = MemoryStore(vector_store, engine, default_match_threshold=0.9, default_match_count=1)
        memories.insert(memory(axis(0)), table="messages", unique=True)
        memories.insert(memory(at_similarity(0.92)), table="messages", unique=True)
        memories.insert(memory(at_similarity(0.5, other_axis=2)), table="messages", unique=True)

        assert len(memories.search_memories(axis(0), table="messages", room_id=ROOM)) == 1
        hits = memories.search_memories(axis(0), table="messages", room_id=ROOM, match_count=5)
        assert len(hits) == 2
        hits = memories.search_memories(
            axis(0), table="messages", room_id=ROOM, match_count=5, match_threshold=0.4
        )
        assert len(hits) == 3


class TestCachedEmbeddings:
    def test_closest_texts_in_table(self, memory_store: MemoryStore):
        memory_store.insert(memory(axis(0), text="good morning"), table="messages")
        memory_store.insert(memory(axis(1), text="good evening"), table="messages")
        memory_store.insert(memory(axis(2), text="good morning"), table="facts")
        memory_store.insert(memory(None, text="good mornin"), table="messages")

        hits = memory_store.get_cached_embeddings("messages", "good mornings", max_distance=4, match_count=5)
        assert [h.levenshtein_score for h in hits] == [1, 4]
        assert hits[0].embedding == pytest.approx(axis(0))
        assert hits[1].embedding == pytest.approx(axis(1))

    def test_match_count_and_threshold(self, memory_store: MemoryStore):
        memory_store.insert(memory(axis(0), text="alpha"), table="messages")
        memory_store.insert(memory(axis(1), text="alpine"), table="messages")
        assert len(memory_store.get_cached_embeddings("messages", "alpha", 3, 1)) == 1
        assert memory_store.get_cached_embeddings("messages", "omega", 1, 5) == []

    def test_requires_table(self, memory_store: MemoryStore):
        with pytest.raises(ValidationError):
            memory_store.get_cached_embeddings("", "x", 1, 1)
