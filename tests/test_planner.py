from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from devmem.config import RetrievalConfig, StoreConfig
from devmem.embeddings import as_embedder
from devmem.errors import IndexCorruption, ValidationError
from devmem.extraction import EntityExtractor
from devmem.graph import GraphStore
from devmem.memory import RecordStore, new_record
from devmem.retrieval import HybridQueryPlanner, QueryOptions, SearchMode
from devmem.vector import FlatVectorIndex


@pytest.fixture
def parts():
    records = RecordStore(StoreConfig(path=":memory:"))
    vectors = FlatVectorIndex()
    graph = GraphStore()
    planner = HybridQueryPlanner(records, vectors, graph, RetrievalConfig())
    yield records, vectors, graph, planner
    planner.close()
    records.close()


def _store(records, content, minutes=0, **fields):
    record = new_record(content, **fields)
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    record = replace(record, created_at=stamp, updated_at=stamp)
    records.create(record)
    return record


def test_corroborated_record_outranks_single_channel(parts):
    records, vectors, _, planner = parts
    both = _store(records, "alpha release checklist", minutes=1)
    vector_only = _store(records, "unrelated words entirely", minutes=2)
    vectors.upsert(both.id, [1.0, 0.0], both.updated_at)
    vectors.upsert(vector_only.id, [1.0, 0.0], vector_only.updated_at)

    results = planner.query("alpha", QueryOptions(mode=SearchMode.HYBRID, vector=[1.0, 0.0]))
    assert [item.record.id for item in results] == [both.id, vector_only.id]
    assert results[0].score > results[1].score
    assert results[0].channel_scores["vector"] == results[1].channel_scores["vector"]
    assert set(results[0].channel_scores) == {"vector", "text"}
    assert results[0].method == "hybrid"


def test_ties_break_by_recency(parts):
    records, vectors, _, planner = parts
    older = _store(records, "older note", minutes=1)
    newer = _store(records, "newer note", minutes=5)
    vectors.upsert(older.id, [0.0, 1.0], older.updated_at)
    vectors.upsert(newer.id, [0.0, 1.0], newer.updated_at)
    results = planner.query("", QueryOptions(mode="vector", vector=[0.0, 1.0]))
    assert [item.record.id for item in results] == [newer.id, older.id]


def test_pagination_applies_after_ranking(parts):
    records, _, _, planner = parts
    ids = [_store(records, f"deploy checklist step {n}", minutes=n).id for n in range(6)]
    full = [item.record.id for item in planner.query("deploy", QueryOptions(mode="text"))]
    assert sorted(full) == sorted(ids)
    page = planner.query("deploy", QueryOptions(mode="text", limit=2, offset=2))
    assert [item.record.id for item in page] == full[2:4]


def test_threshold_filters_on_mode_score(parts):
    records, vectors, _, planner = parts
    close = _store(records, "close")
    far = _store(records, "far")
    vectors.upsert(close.id, [1.0, 0.1])
    vectors.upsert(far.id, [0.2, 1.0])
    results = planner.query("", QueryOptions(mode="vector", vector=[1.0, 0.0], threshold=0.9))
    assert [item.record.id for item in results] == [close.id]
    assert results[0].score == pytest.approx(results[0].channel_scores["vector"])


def test_graph_mode_expands_one_hop(parts):
    records, _, graph, planner = parts
    extractor = EntityExtractor()
    direct = _store(records, "Redis eviction tuning for session cache")
    neighbour = _store(records, "Sizing notes for session cache")
    unrelated = _store(records, "Terraform state cleanup")
    for record in (direct, neighbour, unrelated):
        graph.apply_extraction(record.id, extractor.extract(record.content, record.tags))

    results = planner.query("Redis", QueryOptions(mode="graph"))
    ranked = [item.record.id for item in results]
    assert ranked[0] == direct.id
    assert unrelated.id not in ranked
    assert "Redis" in results[0].matched_entities
    assert results[0].score == 1.0


def test_filters_by_type_and_tags(parts):
    records, _, _, planner = parts
    note = _store(records, "kafka consumer lag", type="note", tags=["ops"])
    debug = _store(records, "kafka consumer crash", type="debug_session", tags=["Ops", "oncall"])
    by_type = planner.query("kafka", QueryOptions.build(mode="text", type="debug_session"))
    assert [item.record.id for item in by_type] == [debug.id]
    by_tag = planner.query("kafka", QueryOptions.build(mode="text", tags=["OPS"]))
    assert {item.record.id for item in by_tag} == {note.id, debug.id}


def test_orphan_vector_hit_raises_corruption(parts):
    records, vectors, _, planner = parts
    kept = _store(records, "kept")
    vectors.upsert(kept.id, [1.0, 0.0])
    vectors.upsert("ghost", [1.0, 0.0])
    with pytest.raises(IndexCorruption) as info:
        planner.query("", QueryOptions(mode="vector", vector=[1.0, 0.0]))
    assert info.value.orphan_ids == ["ghost"]


def test_hit_deleted_during_query_is_dropped(parts, monkeypatch):
    records, vectors, _, planner = parts
    kept = _store(records, "kept")
    gone = _store(records, "gone")
    vectors.upsert(kept.id, [1.0, 0.0])
    vectors.upsert(gone.id, [1.0, 0.0])
    real_query = vectors.query

    def query_then_delete(vector, k):
        hits = real_query(vector, k)
        vectors.remove(gone.id)
        records.delete(gone.id)
        return hits

    monkeypatch.setattr(vectors, "query", query_then_delete)
    results = planner.query("", QueryOptions(mode="vector", vector=[1.0, 0.0]))
    assert [item.record.id for item in results] == [kept.id]


def test_threshold_applies_to_composite_score(parts):
    records, vectors, _, planner = parts
    both = _store(records, "alpha release checklist")
    vector_only = _store(records, "unrelated words entirely")
    vectors.upsert(both.id, [1.0, 0.0])
    vectors.upsert(vector_only.id, [1.0, 0.0])

    for mode in (SearchMode.HYBRID, SearchMode.AUTO):
        results = planner.query("alpha", QueryOptions(mode=mode, vector=[1.0, 0.0], threshold=0.6))
        assert [item.record.id for item in results] == [both.id]
        assert results[0].score == pytest.approx(0.8)
        assert results[0].method == "hybrid"


def test_failing_query_embedding_empties_vector_channel(parts):
    records, vectors, graph, _ = parts

    def broken(text):
        raise TimeoutError("slow")

    planner = HybridQueryPlanner(records, vectors, graph, RetrievalConfig(), embedder=as_embedder(broken))
    record = _store(records, "grafana dashboard for api latency")
    vectors.upsert(record.id, [1.0, 0.0])
    assert planner.query("grafana", QueryOptions(mode="vector")) == []
    hybrid = planner.query("grafana", QueryOptions(mode="hybrid"))
    assert [item.record.id for item in hybrid] == [record.id]
    assert "vector" not in hybrid[0].channel_scores
    planner.close()


def test_auto_mode_plan(parts):
    records, _, graph, planner = parts
    graph.upsert_entity("Kubernetes", "technology")
    assert planner.plan("short query", QueryOptions()) is SearchMode.HYBRID
    long_plain = "what did we decide last quarter about the rollout schedule for the mobile app"
    assert planner.plan(long_plain, QueryOptions()) is SearchMode.VECTOR
    long_entity = "what did we decide last quarter about upgrading kubernetes across all clusters"
    assert planner.plan(long_entity, QueryOptions()) is SearchMode.HYBRID
    assert planner.plan("anything", QueryOptions(mode=SearchMode.TEXT)) is SearchMode.TEXT


def test_empty_query_returns_nothing(parts):
    _, _, _, planner = parts
    assert planner.query("   ") == []


@pytest.mark.parametrize(
    "options",
    [
        {"mode": "fuzzy"},
        {"limit": 0},
        {"limit": "ten"},
        {"offset": -1},
        {"threshold": "high"},
        {"type": "poem"},
        {"colour": "red"},
    ],
)
def test_invalid_options_rejected(options):
    with pytest.raises(ValidationError):
        QueryOptions.build(**options)
