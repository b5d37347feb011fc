"""
Clustering engine: groups categories into K thematic clusters.

Each input category gets a feature vector over all known categories:

    v[k] = weight * sum_{t shared} (freq_k(t) / df(t)) / docs(k)

where the shared terms are the index terms of the label itself plus, for a
known category, every term it was trained with. Categories without any
feature get a small random vector. Vectors are L2-normalized and clustered
with scikit-learn K-means (k-means++ seeding); clusters are re-split (largest
first) until K clusters exist or none can be split.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import numpy as np
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning

from trias.config import Config
from trias.exceptions import InvalidInputError
from trias.index import ModelIndex
from trias.lexical import LexicalPipeline
from trias.preprocessing import Snapshot

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

CLUSTER_NAME_SEPARATOR = ", "
CLUSTER_NAME_MEMBERS = 3


def normalize_categories(categories: Any) -> dict[str, float]:
    """A list of labels (weight 1 each) or a {label: weight} mapping."""
    if isinstance(categories, Mapping):
        weights = {}
        for label, weight in categories.items():
            if not isinstance(label, str):
                raise InvalidInputError(f"category labels must be strings, got {label!r}")
            if isinstance(weight, bool) or not isinstance(weight, (int, float)):
                raise InvalidInputError(f"weight of {label!r} must be a number, got {weight!r}")
            weights[label] = float(weight)
        return weights
    if isinstance(categories, (list, tuple)) and all(isinstance(c, str) for c in categories):
        return {label: 1.0 for label in categories}
    raise InvalidInputError(
        f"categories must be a list of labels or a {{label: weight}} mapping, "
        f"got {type(categories).__name__}"
    )


# =============================================================================
# Features
# =============================================================================


def category_term_ids(index: ModelIndex, pipeline: LexicalPipeline, label: str) -> list[int]:
    """Index terms a label resolves to."""
    ids = {index.term_ids[t] for t in pipeline(label) if t in index.term_ids}
    category = index.category(pipeline.stem_label(label))
    if category is not None:
        ids.update(category.terms.keys())
    return sorted(ids)


def feature_matrix(
    index: ModelIndex,
    snapshot: Snapshot,
    pipeline: LexicalPipeline,
    weights: Mapping[str, float],
    rng: np.random.Generator,
) -> NDArray[np.float64]:
    """One L2-normalized row per input category."""
    labels = list(weights)
    n_known = snapshot.n_categories
    dimension = n_known if n_known else len(labels)
    features = np.zeros((len(labels), dimension), dtype=np.float64)
    doc_counts = np.maximum(snapshot.doc_counts, 1.0)

    for row, label in enumerate(labels):
        ids = category_term_ids(index, pipeline, label)
        if ids and n_known:
            ids_array = np.array(ids, dtype=np.int64)
            inverse_df = 1.0 / np.maximum(snapshot.doc_frequency[ids_array], 1.0)
            shared = snapshot.counts[:, ids_array] @ inverse_df
            features[row] = weights[label] * np.asarray(shared).ravel() / doc_counts
        if not np.any(features[row]):
            features[row] = np.abs(rng.normal(scale=Config.random_feature_scale, size=dimension))

    norms = np.linalg.norm(features, axis=1, keepdims=True)
    return features / np.maximum(norms, Config.epsilon)


# =============================================================================
# K-means
# =============================================================================


def kmeans(
    points: NDArray[np.float64],
    k: int,
    rng: np.random.Generator,
    max_iter: int | None = None,
) -> NDArray[np.int64]:
    """
    Cluster labels of each point (k-means++ seeding, one run).

    With no more points than clusters every point is its own cluster.
    """
    n = len(points)
    if n <= k:
        return np.arange(n, dtype=np.int64)
    model = KMeans(
        n_clusters=k,
        init="k-means++",
        n_init=1,
        algorithm="lloyd",
        tol=0.0,
        max_iter=max_iter or Config.kmeans_max_iter,
        random_state=int(rng.integers(2**31 - 1)),
    )
    with warnings.catch_warnings():
        # Duplicate points yield fewer distinct clusters than k
        warnings.simplefilter("ignore", ConvergenceWarning)
        labels = model.fit_predict(points)
    logger.debug("K-means (k=%d) finished after %d iterations", k, model.n_iter_)
    return labels.astype(np.int64)


def _groups(labels: NDArray[np.int64], members: list[int]) -> list[list[int]]:
    grouped: dict[int, list[int]] = {}
    for member, label in zip(members, labels):
        grouped.setdefault(int(label), []).append(member)
    return list(grouped.values())


def split_until(
    clusters: list[list[int]],
    points: NDArray[np.float64],
    k: int,
    rng: np.random.Generator,
) -> list[list[int]]:
    """
    Re-split the largest multi-member cluster in two until there are `k`
    clusters or no pending cluster can be split.
    """
    clusters = [list(c) for c in clusters]
    pending = [c for c in clusters if len(c) > 1]
    while len(clusters) < k and pending:
        pending.sort(key=len)
        largest = pending.pop()
        halves = _groups(kmeans(points[largest], 2, rng), largest)
        if len(halves) < 2:
            continue
        clusters.remove(largest)
        clusters.extend(halves)
        pending.extend(h for h in halves if len(h) > 1)
    return clusters


# =============================================================================
# Entry point
# =============================================================================


def reduce(
    index: ModelIndex,
    snapshot: Snapshot,
    pipeline: LexicalPipeline,
    categories: Any,
    amount: int = 5,
    seed: int | None = None,
) -> dict[str, list[str]]:
    """
    Group categories into at most `amount` clusters.

    Returns:
        Cluster name (its top members by weight) -> member labels, heaviest
        first. Every input label appears in exactly one cluster.
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 1:
        raise InvalidInputError(f"amount must be a positive integer, got {amount!r}")
    weights = normalize_categories(categories)
    if not weights:
        return {}

    rng = np.random.default_rng(seed)
    labels = list(weights)
    points = feature_matrix(index, snapshot, pipeline, weights, rng)
    k = min(amount, len(labels))

    members = list(range(len(labels)))
    clusters = _groups(kmeans(points, k, rng), members)
    clusters = split_until(clusters, points, k, rng)

    order = {label: position for position, label in enumerate(labels)}
    named: list[tuple[float, str, list[str]]] = []
    for cluster in clusters:
        ranked = sorted((labels[i] for i in cluster), key=lambda l: (-weights[l], order[l]))
        name = CLUSTER_NAME_SEPARATOR.join(ranked[:CLUSTER_NAME_MEMBERS])
        named.append((weights[ranked[0]], name, ranked))
    named.sort(key=lambda item: (-item[0], order[item[2][0]]))
    return {name: ranked for _, name, ranked in named}
