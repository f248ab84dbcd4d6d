"""Tests for cosine similarity and greedy threshold clustering."""

import math

import numpy as np
import pytest

from semdedup.dedup.cluster_stage import Cluster, cosine_similarity, greedy_threshold_cluster


# ---------------------------------------------------------------------------
# cosine_similarity
# ---------------------------------------------------------------------------


def test_cosine_of_vector_with_itself_is_one():
    assert cosine_similarity([0.3, -1.2, 4.0], [0.3, -1.2, 4.0]) == pytest.approx(1.0)


def test_cosine_is_symmetric():
    a, b = [1.0, 2.0, 3.0], [-2.0, 0.5, 1.0]
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))


def test_cosine_orthogonal_and_opposite():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_cosine_zero_vector_is_zero():
    assert cosine_similarity([0.0, 0.0, 0.0], [1.0, 2.0, 3.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


def test_cosine_dimension_mismatch_is_zero():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0


def test_cosine_empty_is_zero():
    assert cosine_similarity([], []) == 0.0


def test_cosine_non_finite_is_zero():
    assert cosine_similarity([math.inf, 1.0], [1.0, 1.0]) == 0.0


# ---------------------------------------------------------------------------
# greedy_threshold_cluster
# ---------------------------------------------------------------------------


def test_empty_input_gives_no_clusters():
    assert greedy_threshold_cluster([], threshold=0.9) == []


def test_near_duplicates_grouped_under_first():
    vectors = [
        [1.0, 0.0, 0.0],
        [0.8, 0.6, 0.0],  # 0.80 to the first
        [0.99, 0.141, 0.0],  # ~0.99 to the first
        [0.0, 0.0, 1.0],
    ]
    clusters = greedy_threshold_cluster(vectors, threshold=0.92)

    assert [c.members for c in clusters] == [[0, 2], [1], [3]]
    assert clusters[0].canonical == 0
    assert clusters[0].similarities[0] == 1.0
    assert clusters[0].similarities[1] == pytest.approx(0.99, abs=1e-3)


def test_result_depends_on_input_order():
    a = [1.0, 0.0]
    b = [math.cos(0.3), math.sin(0.3)]  # 0.955 to a and to c
    c = [math.cos(0.6), math.sin(0.6)]  # 0.825 to a
    threshold = 0.9

    forward = greedy_threshold_cluster([a, b, c], threshold=threshold)
    middle_first = greedy_threshold_cluster([b, a, c], threshold=threshold)

    assert [c.members for c in forward] == [[0, 1], [2]]
    assert [c.members for c in middle_first] == [[0, 1, 2]]


def test_every_index_assigned_exactly_once_and_threshold_holds():
    rng = np.random.default_rng(7)
    base = rng.normal(size=(6, 16))
    vectors = [
        (base[i % 6] + rng.normal(scale=0.15, size=16)).tolist() for i in range(60)
    ]
    threshold = 0.9

    clusters = greedy_threshold_cluster(vectors, threshold=threshold)

    seen = sorted(i for c in clusters for i in c.members)
    assert seen == list(range(60))
    for cluster in clusters:
        assert cluster.members[0] == cluster.canonical
        for index, score in zip(cluster.members[1:], cluster.similarities[1:]):
            assert index > cluster.canonical
            assert score >= threshold
            assert cosine_similarity(vectors[cluster.canonical], vectors[index]) == pytest.approx(
                score
            )

    canonicals = [c.canonical for c in clusters]
    assert 1 < len(canonicals) < 60
    for pos, a in enumerate(canonicals):
        for b in canonicals[pos + 1:]:
            assert cosine_similarity(vectors[a], vectors[b]) < threshold


def test_mixed_dimensions_fall_back_to_pairwise():
    vectors = [[1.0, 0.0], [1.0, 0.0, 0.0], [1.0, 0.01]]
    clusters = greedy_threshold_cluster(vectors, threshold=0.92)
    assert [c.members for c in clusters] == [[0, 2], [1]]


def test_zero_vector_is_a_singleton():
    vectors = [[0.0, 0.0], [1.0, 0.0], [0.0, 0.0]]
    clusters = greedy_threshold_cluster(vectors, threshold=0.5)
    assert [c.members for c in clusters] == [[0], [1], [2]]


def test_threshold_is_inclusive():
    clusters = greedy_threshold_cluster([[1.0, 0.0], [1.0, 0.0]], threshold=1.0)
    assert [c.members for c in clusters] == [[0, 1]]


def test_avg_similarity():
    assert Cluster(canonical=0, members=[0], similarities=[1.0]).avg_similarity == 1.0
    cluster = Cluster(canonical=0, members=[0, 3, 5], similarities=[1.0, 0.94, 0.96])
    assert cluster.avg_similarity == pytest.approx(0.95)
