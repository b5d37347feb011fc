"""
Ensemble scoring of a query against every category.

Each algorithm maps (snapshot, query vector) to one raw score per category,
vectorized over categories:

    prior           smoothed log-prior
    cross_entropy   sum_t q_tfidf(t) * ln P(t | c)
    pearson         correlation of query and category TF-IDF over shared terms
    cooccurrence    TF-IDF mass of shared terms, scaled by query coverage
    signature       sum of ln(freq / total) over frequent category terms
                    missing from the query (<= 0)
    cosine          cosine of query and category TF-IDF vectors
    jaccard         |Q & C| / |Q | C| over term sets

Raw scores are min-max normalized to [-1, 1] per algorithm, combined with the
ensemble weights and turned into relative magnitudes with exp(x - max(x)).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from trias.config import Config
from trias.preprocessing import Snapshot

if TYPE_CHECKING:
    from numpy.typing import NDArray


# =============================================================================
# Query representation
# =============================================================================


@dataclass
class QueryVector:
    """Known query terms with their frequencies and TF-IDF weights."""

    term_ids: NDArray[np.int64]
    tf: NDArray[np.float64]
    tfidf: NDArray[np.float64]
    n_distinct: int  # distinct query terms, unknown ones included

    @classmethod
    def build(cls, frequencies: Mapping[int, float], n_distinct: int, snapshot: Snapshot) -> QueryVector:
        term_ids = np.fromiter(frequencies.keys(), dtype=np.int64, count=len(frequencies))
        tf = np.fromiter(frequencies.values(), dtype=np.float64, count=len(frequencies))
        tfidf = tf * snapshot.idf[term_ids] if len(term_ids) else tf
        return cls(term_ids=term_ids, tf=tf, tfidf=tfidf, n_distinct=n_distinct)

    def __len__(self) -> int:
        return len(self.term_ids)


class QueryView:
    """Category rows restricted to the query's known terms, computed once."""

    def __init__(self, snapshot: Snapshot, query: QueryVector):
        ids = query.term_ids
        if len(ids):
            self.counts = snapshot.counts[:, ids].toarray()
            self.tfidf = snapshot.tfidf[:, ids].toarray()
        else:
            self.counts = np.zeros((snapshot.n_categories, 0))
            self.tfidf = np.zeros((snapshot.n_categories, 0))
        self.shared = self.counts > 0
        self.shared_count = self.shared.sum(axis=1).astype(np.float64)


# =============================================================================
# Algorithms
# =============================================================================


class Algorithms:
    """Raw per-category scores. Every method returns an array of length |C|."""

    @staticmethod
    def prior(snapshot: Snapshot, query: QueryVector, view: QueryView) -> NDArray[np.float64]:
        return snapshot.log_prior.copy()

    @staticmethod
    def cross_entropy(snapshot: Snapshot, query: QueryVector, view: QueryView) -> NDArray[np.float64]:
        if not len(query):
            return np.zeros(snapshot.n_categories)
        return snapshot.probability_rows(query.term_ids) @ query.tfidf

    @staticmethod
    def pearson(snapshot: Snapshot, query: QueryVector, view: QueryView) -> NDArray[np.float64]:
        scores = np.zeros(snapshot.n_categories)
        for cid in np.flatnonzero(view.shared_count >= 2):
            mask = view.shared[cid]
            x = query.tfidf[mask]
            y = view.tfidf[cid, mask]
            dx = x - x.mean()
            dy = y - y.mean()
            denominator = np.sqrt((dx * dx).sum() * (dy * dy).sum())
            if denominator > Config.epsilon:
                scores[cid] = float((dx * dy).sum() / denominator)
        return scores

    @staticmethod
    def cooccurrence(snapshot: Snapshot, query: QueryVector, view: QueryView) -> NDArray[np.float64]:
        if not len(query):
            return np.zeros(snapshot.n_categories)
        coverage = view.shared_count / max(query.n_distinct, 1)
        mass = np.where(view.shared, np.log1p(view.counts), 0.0) @ query.tfidf
        return coverage * mass

    @staticmethod
    def signature(snapshot: Snapshot, query: QueryVector, view: QueryView) -> NDArray[np.float64]:
        if not len(query):
            return snapshot.signature_sums.copy()
        present = np.asarray(
            snapshot.signature_log_frequency[:, query.term_ids].sum(axis=1)
        ).ravel()
        return snapshot.signature_sums - present

    @staticmethod
    def cosine(snapshot: Snapshot, query: QueryVector, view: QueryView) -> NDArray[np.float64]:
        if not len(query):
            return np.zeros(snapshot.n_categories)
        denominator = snapshot.tfidf_norms * float(np.linalg.norm(query.tfidf))
        dot = view.tfidf @ query.tfidf
        return np.divide(dot, denominator, out=np.zeros_like(dot), where=denominator > Config.epsilon)

    @staticmethod
    def jaccard(snapshot: Snapshot, query: QueryVector, view: QueryView) -> NDArray[np.float64]:
        union = query.n_distinct + snapshot.term_set_sizes - view.shared_count
        return np.divide(
            view.shared_count, union, out=np.zeros_like(union), where=union > 0
        )


ALGORITHMS: dict[str, Callable[[Snapshot, QueryVector, QueryView], NDArray[np.float64]]] = {
    "prior": Algorithms.prior,
    "cross_entropy": Algorithms.cross_entropy,
    "pearson": Algorithms.pearson,
    "cooccurrence": Algorithms.cooccurrence,
    "signature": Algorithms.signature,
    "cosine": Algorithms.cosine,
    "jaccard": Algorithms.jaccard,
}


# =============================================================================
# Normalization and combination
# =============================================================================


def min_max_normalize(values: NDArray[np.float64]) -> NDArray[np.float64]:
    """Scale to [-1, 1]. Constant input maps to all zeros."""
    if values.size == 0:
        return values
    low, high = float(values.min()), float(values.max())
    if high - low <= Config.epsilon:
        return np.zeros_like(values)
    return 2.0 * (values - low) / (high - low) - 1.0


def exp_relative(totals: NDArray[np.float64]) -> NDArray[np.float64]:
    """exp(x - max(x)): the best category scores 1."""
    if totals.size == 0:
        return totals
    return np.exp(totals - totals.max())


def softmax(totals: NDArray[np.float64]) -> NDArray[np.float64]:
    relative = exp_relative(totals)
    return relative / relative.sum() if relative.size else relative


def ensemble_scores(
    snapshot: Snapshot,
    query: QueryVector,
    weights: Mapping[str, float],
) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
    """
    Score every active category with the weighted ensemble.

    Args:
        snapshot: Preprocessed index statistics.
        query: Query vector.
        weights: Algorithm name -> weight. Zero/missing weights are skipped.

    Returns:
        (category ids, exp-relative scores), both over active categories only.
    """
    active = np.flatnonzero(snapshot.active)
    if active.size == 0:
        return active, np.zeros(0)
    view = QueryView(snapshot, query)
    totals = np.zeros(active.size)
    for name, weight in weights.items():
        if not weight:
            continue
        raw = ALGORITHMS[name](snapshot, query, view)[active]
        totals += weight * min_max_normalize(raw)
    return active, exp_relative(totals)


def likelihood_scores(
    snapshot: Snapshot,
    query: QueryVector,
) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
    """
    Prior + TF-IDF weighted log-likelihood, normalized to a distribution.

    Used for weighted multi-text queries; scores sum to 1.
    """
    active = np.flatnonzero(snapshot.active)
    if active.size == 0:
        return active, np.zeros(0)
    if len(query):
        likelihood = snapshot.probability_rows(query.term_ids) @ query.tfidf
    else:
        likelihood = np.zeros(snapshot.n_categories)
    totals = (
        Config.multi_prior_weight * snapshot.log_prior
        + Config.multi_likelihood_weight * likelihood
    )
    return active, softmax(totals[active])
