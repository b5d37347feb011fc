import math

import numpy as np
import pytest

from trias.config import Config
from trias.index import ModelIndex
from trias.preprocessing import PreprocessingCache, Snapshot, count_matrix
from trias.scoring import (
    ALGORITHMS,
    QueryView,
    QueryVector,
    ensemble_scores,
    exp_relative,
    likelihood_scores,
    min_max_normalize,
    softmax,
)


def query_for(index, snapshot, pipeline, text):
    terms = pipeline(text)
    frequencies = {}
    for term in terms:
        tid = index.term_ids.get(term)
        if tid is not None:
            frequencies[tid] = frequencies.get(tid, 0) + 1
    return QueryVector.build(frequencies, len(set(terms)), snapshot)


class TestNormalization:
    def test_min_max_range(self):
        normalized = min_max_normalize(np.array([3.0, -1.0, 1.0]))
        assert normalized.min() == pytest.approx(-1.0)
        assert normalized.max() == pytest.approx(1.0)
        assert normalized[2] == pytest.approx(0.0)

    def test_constant_input_is_zero(self):
        assert np.array_equal(min_max_normalize(np.full(4, 2.5)), np.zeros(4))

    def test_exp_relative_top_is_one(self):
        relative = exp_relative(np.array([-3.0, 0.5, 0.2]))
        assert relative.max() == pytest.approx(1.0)
        assert relative.argmax() == 1

    def test_softmax_sums_to_one(self):
        assert softmax(np.array([-1000.0, 0.0, 2.0])).sum() == pytest.approx(1.0, abs=1e-9)


class TestSnapshot:
    def test_count_matrix_matches_tables(self, weather_index):
        counts = count_matrix(weather_index).toarray()
        for category in weather_index.categories:
            assert counts[category.id].sum() == category.term_total
            for tid, count in category.terms.items():
                assert counts[category.id, tid] == count

    def test_count_matrix_of_empty_index(self):
        assert count_matrix(ModelIndex()).shape == (0, 0)

    def test_log_prior(self, weather_index):
        snapshot = Snapshot(weather_index)
        n_categories = len(weather_index.categories)
        for category in weather_index.categories:
            expected = math.log(
                (category.doc_count + Config.prior_alpha)
                / (weather_index.total_documents + Config.prior_alpha * n_categories)
            )
            assert snapshot.log_prior[category.id] == pytest.approx(expected)

    def test_idf(self, weather_index):
        snapshot = Snapshot(weather_index)
        n = weather_index.total_documents
        for tid, df in enumerate(weather_index.doc_frequency):
            assert snapshot.idf[tid] == pytest.approx(math.log((n + 1) / (df + 1)))

    def test_smoothed_probabilities(self, weather_index):
        snapshot = Snapshot(weather_index)
        category = weather_index.categories[0]
        tid, count = next(iter(category.terms.items()))
        denominator = category.term_total + Config.term_alpha * len(weather_index.terms)
        dense = snapshot.probability_rows(np.array([tid]))
        assert dense[0, 0] == pytest.approx(math.log((count + Config.term_alpha) / denominator))
        assert snapshot.default_log_probability[0] == pytest.approx(math.log(Config.term_alpha / denominator))

    def test_cache_rebuilds_on_new_generation(self, weather_index):
        cache = PreprocessingCache()
        assert not cache.is_warm
        first = cache.get(weather_index)
        assert cache.get(weather_index) is first
        weather_index.touch()
        assert cache.get(weather_index) is not first
        cache.invalidate()
        assert not cache.is_warm


class TestAlgorithms:
    @pytest.mark.parametrize("name", sorted(ALGORITHMS))
    def test_one_score_per_category(self, weather_index, pipeline, name):
        snapshot = Snapshot(weather_index)
        query = query_for(weather_index, snapshot, pipeline, "warm sunny skies and rising shares")
        scores = ALGORITHMS[name](snapshot, query, QueryView(snapshot, query))
        assert scores.shape == (snapshot.n_categories,)
        assert np.all(np.isfinite(scores))

    @pytest.mark.parametrize("name", sorted(ALGORITHMS))
    def test_unknown_query(self, weather_index, pipeline, name):
        snapshot = Snapshot(weather_index)
        query = query_for(weather_index, snapshot, pipeline, "zebra xylophone")
        scores = ALGORITHMS[name](snapshot, query, QueryView(snapshot, query))
        assert np.all(np.isfinite(scores))

    def test_cosine_prefers_matching_category(self, weather_index, pipeline):
        snapshot = Snapshot(weather_index)
        query = query_for(weather_index, snapshot, pipeline, "sunny skies and warm temperatures")
        scores = ALGORITHMS["cosine"](snapshot, query, QueryView(snapshot, query))
        weather = weather_index.category_ids[pipeline.stem_label("Weather")]
        assert scores.argmax() == weather


class TestCombination:
    def test_ensemble_scores_are_relative(self, weather_index, pipeline):
        snapshot = Snapshot(weather_index)
        query = query_for(weather_index, snapshot, pipeline, "stock market shares")
        ids, scores = ensemble_scores(snapshot, query, weather_index.weights.algorithms())
        assert len(ids) == len(scores) == 2
        assert scores.max() == pytest.approx(1.0)
        assert snapshot.stems[ids[scores.argmax()]] == pipeline.stem_label("Finance")

    def test_zero_weights_are_skipped(self, weather_index, pipeline, monkeypatch):
        def explode(*args):
            raise AssertionError("disabled algorithm was computed")

        monkeypatch.setitem(ALGORITHMS, "pearson", explode)
        snapshot = Snapshot(weather_index)
        query = query_for(weather_index, snapshot, pipeline, "stock market")
        ensemble_scores(snapshot, query, {"pearson": 0.0, "cosine": 1.0})

    def test_likelihood_scores_form_distribution(self, weather_index, pipeline):
        snapshot = Snapshot(weather_index)
        query = query_for(weather_index, snapshot, pipeline, "heavy rain and cold wind")
        ids, scores = likelihood_scores(snapshot, query)
        assert scores.sum() == pytest.approx(1.0, abs=1e-9)
        assert snapshot.stems[ids[scores.argmax()]] == pipeline.stem_label("Weather")

    def test_empty_index(self):
        snapshot = Snapshot(ModelIndex())
        query = QueryVector.build({}, 0, snapshot)
        ids, scores = ensemble_scores(snapshot, query, {"cosine": 1.0})
        assert ids.size == 0 and scores.size == 0
