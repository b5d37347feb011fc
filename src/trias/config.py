"""
Configuration for the Trias classifier.

Two layers:

1. ``Config`` - algorithm constants shared by every model instance. They are
   plain class attributes read at call time, so they can be tuned (or
   monkeypatched in tests) without touching the engines.
2. ``TriasConfig`` - options of one classifier instance (model file, language,
   n-gram length, byte budget, ...). ``EnsembleWeights`` travels with the
   model and is persisted alongside it.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field, fields


# =============================================================================
# Algorithm constants
# =============================================================================


class Config:
    """Constants used by training, prediction, eviction and clustering."""

    # Category prior: ln((docs + alpha) / (N + alpha * |C|))
    prior_alpha: float = 0.5
    # Term probability: (freq + alpha) / (total + alpha * |V|)
    term_alpha: float = 1.0

    # A category term counts as a "signature" above this many occurrences
    signature_min_count: int = 10

    # Adaptive cutoff
    adaptive_gap_ratio: float = 0.15   # stop when the next gap exceeds 15% of current
    adaptive_top_ratio: float = 0.80   # stop when next < 80% of the top score

    # Weighted multi-text prediction
    multi_prior_weight: float = 0.1
    multi_likelihood_weight: float = 0.9

    # Gravitational groups: matching result samples per group
    group_sample_cap: int = 3

    # Eviction
    fairness_tolerance: float = 1.2
    purge_batch_size: int = 5000       # terms processed between cooperative yields

    # Clustering
    kmeans_max_iter: int = 300
    random_feature_scale: float = 1e-3

    epsilon: float = 1e-12


# =============================================================================
# Ensemble weights
# =============================================================================


@dataclass
class EnsembleWeights:
    """
    Weight of each similarity/likelihood algorithm in the single-text ensemble.

    A weight of 0 disables an algorithm entirely (it is not computed).
    ``gravity`` is the blend weight of gravitational group boosting.
    """

    prior: float = 0.05
    cross_entropy: float = 0.25
    pearson: float = 0.05
    cooccurrence: float = 0.15
    signature: float = 0.05
    cosine: float = 0.3
    jaccard: float = 0.15
    gravity: float = 0.3

    def algorithms(self) -> dict[str, float]:
        """Enabled ensemble algorithms and their weights (gravity excluded)."""
        return {
            name: weight
            for name, weight in asdict(self).items()
            if name != "gravity" and weight
        }

    def as_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, float] | None) -> EnsembleWeights:
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: float(v) for k, v in data.items() if k in known})


# =============================================================================
# Instance options
# =============================================================================

DEFAULT_MODEL_URL = "https://edenware.app/trias/trained/{language}.trias"


@dataclass
class TriasConfig:
    """
    Options of one classifier instance.

    Args:
        file: Path of the compressed model file.
        create: Start from an empty model when the file is missing or corrupt.
        n: Maximum n-gram length produced by the lexical pipeline.
        language: Language code selecting the stemmer.
        weight_exponent: Exponent applied to weights in multi-text prediction.
        capitalize: Upper-case the first letter of output labels.
        excludes: Terms and labels never learned.
        size: Byte budget of the model file.
        auto_import: Download a pre-trained model when the local one is empty.
        model_url: URL template of the pre-trained model (``{language}``).
        weights: Ensemble weights.
    """

    file: str = "./model.trias"
    create: bool = True
    n: int = 3
    language: str = "en"
    weight_exponent: float = 2
    capitalize: bool = False
    excludes: Iterable[str] = ()
    size: int = 4096 * 1024
    auto_import: bool = False
    model_url: str = DEFAULT_MODEL_URL
    weights: EnsembleWeights = field(default_factory=EnsembleWeights)

    def __post_init__(self) -> None:
        self.file = os.fspath(self.file)
        if self.n < 1:
            raise ValueError(f"n must be >= 1, got {self.n}")
        if self.size <= 0:
            raise ValueError(f"size must be positive, got {self.size}")
        self.excludes = tuple(self.excludes)
        if isinstance(self.weights, Mapping):
            self.weights = EnsembleWeights.from_dict(self.weights)

    def resolved_model_url(self) -> str:
        return self.model_url.replace("{language}", self.language).replace("{file}", self.file)
