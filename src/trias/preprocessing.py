"""
Preprocessing cache: statistics derived from the index, built once per index
generation.

A ``Snapshot`` holds
    - category x term count matrix (CSR) and per-category totals
    - smoothed log-priors per category
    - global IDF per term: ln((N + 1) / (df + 1))
    - category TF-IDF matrix (CSR) and its row norms
    - smoothed term log-probabilities (stored as the sparse non-zero part plus
      a per-category default for unseen terms)
    - signature-term sums used by the missing-signature penalty

Rebuilding is O(categories x terms). ``PreprocessingCache.get`` rebuilds
lazily when the index generation moved; ``invalidate`` discards the snapshot
in full.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from scipy.sparse import csr_matrix

from trias.config import Config
from trias.index import ModelIndex

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


def count_matrix(index: ModelIndex) -> csr_matrix:
    """Category x term occurrence counts."""
    rows: list[int] = []
    cols: list[int] = []
    vals: list[float] = []
    for category in index.categories:
        for tid, count in category.terms.items():
            rows.append(category.id)
            cols.append(tid)
            vals.append(float(count))
    return csr_matrix(
        (
            np.array(vals, dtype=np.float64),
            (np.array(rows, dtype=np.int64), np.array(cols, dtype=np.int64)),
        ),
        shape=(len(index.categories), len(index.terms)),
    )


def inverse_document_frequency(doc_frequency: NDArray[np.float64], n_documents: int) -> NDArray[np.float64]:
    """Smoothed IDF: ln((N + 1) / (df + 1))."""
    return np.log((n_documents + 1.0) / (doc_frequency + 1.0))


class Snapshot:
    """Derived statistics of one index generation."""

    def __init__(self, index: ModelIndex):
        self.generation = index.generation
        self.n_categories = len(index.categories)
        self.n_terms = len(index.terms)
        self.n_documents = index.total_documents
        self.stems = [category.stem for category in index.categories]

        self.counts = count_matrix(index)
        self.doc_counts = np.array([c.doc_count for c in index.categories], dtype=np.float64)
        self.totals = np.array([c.term_total for c in index.categories], dtype=np.float64)
        self.active = self.doc_counts > 0

        # Priors with additive smoothing
        alpha = Config.prior_alpha
        denominator = self.n_documents + alpha * max(self.n_categories, 1)
        self.log_prior = np.log((self.doc_counts + alpha) / denominator)

        # Global IDF
        self.doc_frequency = np.array(index.doc_frequency, dtype=np.float64)
        self.idf = inverse_document_frequency(self.doc_frequency, self.n_documents)

        # Category TF-IDF vectors
        self.tfidf = self.counts.copy()
        self.tfidf.data = self.counts.data * self.idf[self.counts.indices]
        self.tfidf_norms = np.sqrt(np.asarray(self.tfidf.power(2).sum(axis=1)).ravel())

        # Smoothed term probabilities: (freq + a) / (total + a * |V|)
        term_alpha = Config.term_alpha
        self.probability_denominator = self.totals + term_alpha * max(self.n_terms, 1)
        self.default_log_probability = np.log(term_alpha / self.probability_denominator)
        log_probability = self.counts.copy()
        row_of_entry = np.repeat(np.arange(self.n_categories), np.diff(self.counts.indptr))
        log_probability.data = np.log(
            (self.counts.data + term_alpha) / self.probability_denominator[row_of_entry]
        )
        self.log_probability = log_probability

        # Terms each category has seen
        self.term_set_sizes = np.diff(self.counts.indptr).astype(np.float64)

        # Missing-signature penalty baseline: sum of ln(freq / total) over
        # every signature term of the category
        signature = self.counts.copy()
        keep = signature.data > Config.signature_min_count
        signature.data = np.where(
            keep,
            np.log(signature.data / np.maximum(self.totals[row_of_entry], 1.0)),
            0.0,
        )
        signature.eliminate_zeros()
        self.signature_log_frequency = signature
        self.signature_sums = np.asarray(signature.sum(axis=1)).ravel()

        logger.debug(
            "Built preprocessing snapshot: %d categories, %d terms, generation %d",
            self.n_categories, self.n_terms, self.generation,
        )

    def probability_rows(self, term_ids: NDArray[np.int64]) -> NDArray[np.float64]:
        """Dense (categories x len(term_ids)) smoothed log-probabilities."""
        seen = self.counts[:, term_ids].toarray()
        return np.log((seen + Config.term_alpha) / self.probability_denominator[:, np.newaxis])


class PreprocessingCache:
    """Memoizes one ``Snapshot`` per index generation."""

    def __init__(self) -> None:
        self._snapshot: Snapshot | None = None

    def get(self, index: ModelIndex) -> Snapshot:
        snapshot = self._snapshot
        if snapshot is None or snapshot.generation != index.generation:
            snapshot = Snapshot(index)
            self._snapshot = snapshot
        return snapshot

    def invalidate(self) -> None:
        self._snapshot = None

    @property
    def is_warm(self) -> bool:
        return self._snapshot is not None
