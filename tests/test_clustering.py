import warnings

import numpy as np
import pytest
from sklearn.exceptions import ConvergenceWarning

from trias import clustering
from trias.exceptions import InvalidInputError
from trias.index import ModelIndex
from trias.preprocessing import Snapshot

from conftest import build_index


GROUPED = [
    {"input": "cloudy weather forecast with cold fronts", "output": ["Rain", "Snow"]},
    {"input": "market trading volume and share prices", "output": ["Stocks", "Bonds"]},
]


@pytest.fixture
def grouped_index(pipeline):
    return build_index(pipeline, GROUPED)


def reduce(index, pipeline, categories, **options):
    return clustering.reduce(index, Snapshot(index), pipeline, categories, **options)


def members(result):
    return sorted(label for cluster in result.values() for label in cluster)


def test_thematic_groups(grouped_index, pipeline):
    result = reduce(grouped_index, pipeline, ["Rain", "Stocks", "Snow", "Bonds"], amount=2, seed=7)
    assert sorted(sorted(cluster) for cluster in result.values()) == [["Bonds", "Stocks"], ["Rain", "Snow"]]


@pytest.mark.parametrize("amount", [1, 2, 3, 4])
def test_every_label_in_one_cluster(grouped_index, pipeline, amount):
    labels = ["Rain", "Stocks", "Snow", "Bonds"]
    result = reduce(grouped_index, pipeline, labels, amount=amount, seed=1)
    assert len(result) == amount
    assert members(result) == sorted(labels)


def test_amount_above_input_size(grouped_index, pipeline):
    result = reduce(grouped_index, pipeline, ["Rain", "Stocks"], amount=5, seed=1)
    assert result == {"Rain": ["Rain"], "Stocks": ["Stocks"]}


def test_single_category(grouped_index, pipeline):
    assert reduce(grouped_index, pipeline, ["Rain"], amount=3) == {"Rain": ["Rain"]}


def test_empty_input(grouped_index, pipeline):
    assert reduce(grouped_index, pipeline, []) == {}


def test_weights_order_members_and_names(grouped_index, pipeline):
    result = reduce(grouped_index, pipeline, {"Rain": 1.0, "Snow": 3.0, "Stocks": 2.0, "Bonds": 0.5}, amount=2, seed=3)
    assert list(result) == ["Snow, Rain", "Stocks, Bonds"]
    assert result["Snow, Rain"] == ["Snow", "Rain"]


def test_unknown_categories_on_empty_model(pipeline):
    index = ModelIndex()
    result = reduce(index, pipeline, ["alpha", "beta", "gamma"], amount=2, seed=0)
    assert 1 <= len(result) <= 2
    assert members(result) == ["alpha", "beta", "gamma"]


def test_seed_is_reproducible(grouped_index, pipeline):
    labels = ["Rain", "Stocks", "Snow", "Bonds", "Fog"]
    assert reduce(grouped_index, pipeline, labels, amount=3, seed=11) == \
        reduce(grouped_index, pipeline, labels, amount=3, seed=11)


@pytest.mark.parametrize("categories", [42, "Rain", [1, 2], {"Rain": "heavy"}])
def test_invalid_categories(grouped_index, pipeline, categories):
    with pytest.raises(InvalidInputError):
        reduce(grouped_index, pipeline, categories)


@pytest.mark.parametrize("amount", [0, -1, 1.5, True])
def test_invalid_amount(grouped_index, pipeline, amount):
    with pytest.raises(InvalidInputError):
        reduce(grouped_index, pipeline, ["Rain"], amount=amount)


class TestKMeans:
    def test_separated_points(self):
        rng = np.random.default_rng(0)
        points = np.array([[0.0, 0.0], [0.1, 0.0], [5.0, 5.0], [5.1, 5.0]])
        labels = clustering.kmeans(points, 2, rng)
        assert labels[0] == labels[1]
        assert labels[2] == labels[3]
        assert labels[0] != labels[2]

    def test_fewer_points_than_clusters(self):
        rng = np.random.default_rng(0)
        assert clustering.kmeans(np.zeros((2, 3)), 5, rng).tolist() == [0, 1]

    def test_same_seed_same_labels(self):
        points = np.random.default_rng(7).random((20, 3))
        first = clustering.kmeans(points, 3, np.random.default_rng(1))
        second = clustering.kmeans(points, 3, np.random.default_rng(1))
        assert first.tolist() == second.tolist()
        assert set(first.tolist()) == {0, 1, 2}

    def test_duplicate_points_do_not_warn(self):
        points = np.ones((4, 2))
        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            labels = clustering.kmeans(points, 2, np.random.default_rng(0))
        assert len(labels) == 4

    def test_feature_rows_are_normalized(self, grouped_index, pipeline):
        rng = np.random.default_rng(0)
        snapshot = Snapshot(grouped_index)
        features = clustering.feature_matrix(grouped_index, snapshot, pipeline, {"Rain": 1.0, "Unknown": 1.0}, rng)
        assert np.allclose(np.linalg.norm(features, axis=1), 1.0)
