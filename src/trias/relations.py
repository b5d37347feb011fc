"""
Relation graph: categories related to a weighted set of categories.

Co-occurrence edges are scored first (edge weight x input weight). When they
yield fewer candidates than requested, the weighted multi-text prediction of
the input labels fills the gap; those fallback scores are scaled under the
weakest co-occurrence score so explicit relations always rank first.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from typing import Any

from trias.exceptions import InvalidInputError
from trias.index import ModelIndex
from trias.lexical import LexicalPipeline
from trias.prediction import Candidate, predict_weighted
from trias.preprocessing import Snapshot


def normalize_category_weights(categories: Any) -> dict[str, float]:
    """A label, a list of labels, or a {label: weight} mapping."""
    if isinstance(categories, str):
        return {categories: 1.0}
    if isinstance(categories, (list, tuple)) and all(isinstance(c, str) for c in categories):
        return {label: 1.0 for label in categories}
    if isinstance(categories, Mapping):
        weights = {}
        for label, weight in categories.items():
            if not isinstance(label, str):
                raise InvalidInputError(f"category labels must be strings, got {label!r}")
            if isinstance(weight, bool) or not isinstance(weight, (int, float)) or not weight > 0:
                raise InvalidInputError(f"weight of {label!r} must be a positive number, got {weight!r}")
            weights[label] = float(weight)
        return weights
    raise InvalidInputError(
        f"categories must be a label, a list of labels or a {{label: weight}} mapping, "
        f"got {type(categories).__name__}"
    )


def cooccurring(index: ModelIndex, pipeline: LexicalPipeline, weights: Mapping[str, float]) -> list[Candidate]:
    """Co-occurrence candidates, best first, input categories excluded."""
    inputs = {pipeline.stem_label(label): weight for label, weight in weights.items()}
    scores: Counter[str] = Counter()
    for stem, weight in inputs.items():
        for related, count in index.relations.get(stem, {}).items():
            if related in inputs:
                continue
            scores[related] += count * weight
    return sorted(scores.items(), key=lambda item: item[1], reverse=True)


def related(
    index: ModelIndex,
    snapshot: Snapshot,
    pipeline: LexicalPipeline,
    categories: Any,
    amount: int | None = 5,
) -> list[Candidate]:
    """
    Related categories as (stem, score), best first.

    Args:
        categories: Input categories (see ``normalize_category_weights``).
        amount: Number of candidates wanted before the prediction fallback is
            skipped; None always consults the fallback.
    """
    weights = normalize_category_weights(categories)
    candidates = cooccurring(index, pipeline, weights)
    if amount is not None and len(candidates) >= amount:
        return candidates

    excluded = {pipeline.stem_label(label) for label in weights}
    excluded.update(stem for stem, _ in candidates)
    ceiling = min((score for _, score in candidates), default=1.0)
    for stem, probability in predict_weighted(index, snapshot, pipeline, weights):
        if stem in excluded:
            continue
        candidates.append((stem, probability * ceiling))
        excluded.add(stem)
    return candidates
