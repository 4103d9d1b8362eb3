import numpy as np
import pytest

from devmem.config import VectorIndexConfig
from devmem.errors import ValidationError
from devmem.vector import FlatVectorIndex, NSWVectorIndex, build_vector_index


@pytest.fixture(params=["flat", "nsw"])
def index(request):
    return build_vector_index(VectorIndexConfig(kind=request.param, exact_below=0))


def test_upsert_then_query_returns_self(index):
    index.upsert("a", [1.0, 2.0, 3.0])
    index.upsert("b", [-3.0, 0.5, 0.0])
    hits = index.query([1.0, 2.0, 3.0], 1)
    assert hits[0][0] == "a"
    assert hits[0][1] == pytest.approx(1.0, abs=1e-5)


def test_removed_vector_is_never_returned(index):
    for n in range(20):
        index.upsert(f"r{n}", [1.0, n * 0.01, 0.5])
    assert index.remove("r3") is True
    assert index.remove("r3") is False
    ids = [record_id for record_id, _ in index.query([1.0, 0.03, 0.5], 20)]
    assert "r3" not in ids
    assert len(ids) == 19
    assert not index.contains("r3")


def test_zero_vector_scores_zero(index):
    index.upsert("zero", [0.0, 0.0])
    index.upsert("x", [1.0, 0.0])
    hits = dict(index.query([1.0, 0.0], 2))
    assert hits["zero"] == 0.0
    assert dict(index.query([0.0, 0.0], 2)) == {"zero": 0.0, "x": 0.0}


def test_dimension_is_fixed(index):
    index.upsert("a", [1.0, 0.0])
    assert index.dimension == 2
    with pytest.raises(ValidationError):
        index.upsert("b", [1.0, 0.0, 0.0])
    with pytest.raises(ValidationError):
        index.query([1.0], 1)
    with pytest.raises(ValidationError):
        index.upsert("c", [float("nan"), 1.0])


def test_ties_prefer_most_recent(index):
    index.upsert("old", [1.0, 1.0], updated_at=100.0)
    index.upsert("new", [2.0, 2.0], updated_at=200.0)
    assert [record_id for record_id, _ in index.query([1.0, 1.0], 2)] == ["new", "old"]
    index.touch("old", 300.0)
    assert [record_id for record_id, _ in index.query([1.0, 1.0], 2)] == ["old", "new"]


def test_upsert_replaces_existing_vector(index):
    index.upsert("a", [1.0, 0.0])
    index.upsert("a", [0.0, 1.0])
    assert index.size == 1
    assert index.query([0.0, 1.0], 1)[0] == ("a", pytest.approx(1.0))


def test_save_and_load(tmp_path, index):
    index.upsert("a", [1.0, 0.0, 0.0], updated_at=10.0)
    index.upsert("b", [0.0, 1.0, 0.0], updated_at=20.0)
    path = tmp_path / "vectors.npz"
    index.save(path)

    restored = FlatVectorIndex()
    assert restored.load(path) == 2
    assert restored.dimension == 3
    assert restored.query([0.0, 1.0, 0.0], 1)[0][0] == "b"
    assert FlatVectorIndex().load(tmp_path / "missing.npz") == 0


def test_flat_swap_remove_keeps_rows_consistent():
    index = FlatVectorIndex()
    index.upsert("a", [1.0, 0.0, 0.0])
    index.upsert("b", [0.0, 1.0, 0.0])
    index.upsert("c", [0.0, 0.0, 1.0])
    index.remove("a")
    assert index.query([0.0, 0.0, 1.0], 1)[0][0] == "c"
    assert index.query([0.0, 1.0, 0.0], 1)[0][0] == "b"
    assert sorted(index.ids()) == ["b", "c"]


def test_nsw_recall_against_flat():
    rng = np.random.default_rng(7)
    data = rng.normal(size=(600, 16)).astype(np.float32)
    flat = FlatVectorIndex()
    nsw = NSWVectorIndex(max_neighbors=12, ef_construction=80, ef_search=96, exact_below=0)
    for n, vector in enumerate(data):
        flat.upsert(f"v{n}", vector)
        nsw.upsert(f"v{n}", vector)

    recalls = []
    for query in rng.normal(size=(25, 16)):
        truth = {record_id for record_id, _ in flat.query(query, 10)}
        found = {record_id for record_id, _ in nsw.query(query, 10)}
        recalls.append(len(truth & found) / 10)
    assert np.mean(recalls) >= 0.9


def test_nsw_degree_is_bounded_and_survives_removals():
    rng = np.random.default_rng(3)
    nsw = NSWVectorIndex(max_neighbors=4, ef_construction=16, ef_search=32, exact_below=0)
    for n, vector in enumerate(rng.normal(size=(120, 8))):
        nsw.upsert(f"v{n}", vector)
    degrees = [nsw.degree(record_id) for record_id in nsw.ids()]
    assert sum(degrees) / len(degrees) <= 8
    for n in range(0, 120, 2):
        nsw.remove(f"v{n}")
    assert nsw.size == 60
    hits = nsw.query(rng.normal(size=8), 5)
    assert len(hits) == 5
    assert all(int(record_id[1:]) % 2 == 1 for record_id, _ in hits)


def test_unknown_index_kind():
    with pytest.raises(ValidationError):
        build_vector_index(VectorIndexConfig(kind="annoy"))
