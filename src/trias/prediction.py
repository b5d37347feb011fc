"""
Prediction engine.

Queries come in two shapes, resolved once at the API boundary by
``parse_query``:

    SingleText      one text, scored by the weighted ensemble (scoring.py),
                    then boosted by gravitational groups
    WeightedTexts   {text: weight}; term counts are scaled by
                    weight ** weight_exponent and scored by prior +
                    likelihood only; scores form a distribution (sum to 1)

Results are (category stem, score) pairs until ``shape_output`` maps them to
display labels and the requested format.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Union

from trias.config import Config, EnsembleWeights
from trias.exceptions import InvalidInputError
from trias.index import GravitationalGroup, ModelIndex
from trias.lexical import LexicalPipeline
from trias.preprocessing import Snapshot
from trias.scoring import QueryVector, ensemble_scores, likelihood_scores

Candidate = tuple[str, float]

OUTPUT_FORMATS = ("string", "array", "objects")


# =============================================================================
# Query union
# =============================================================================


@dataclass(frozen=True)
class SingleText:
    text: str


@dataclass(frozen=True)
class WeightedTexts:
    texts: Mapping[str, float]


Query = Union[SingleText, WeightedTexts]


def parse_query(value: Any) -> Query:
    """
    Resolve raw prediction input.

    A string is a single text, a mapping is ``{text: weight}``, and a list of
    strings is treated as equally weighted texts.
    """
    if isinstance(value, str):
        return SingleText(value)
    if isinstance(value, Mapping):
        texts: dict[str, float] = {}
        for text, weight in value.items():
            if not isinstance(text, str):
                raise InvalidInputError(f"weighted query keys must be strings, got {text!r}")
            if isinstance(weight, bool) or not isinstance(weight, (int, float)) or not weight > 0:
                raise InvalidInputError(f"weight of {text!r} must be a positive number, got {weight!r}")
            texts[text] = float(weight)
        return WeightedTexts(texts)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return WeightedTexts({text: 1.0 for text in value})
    raise InvalidInputError(
        f"query must be a string, a list of strings or a {{text: weight}} mapping, "
        f"got {type(value).__name__}"
    )


# =============================================================================
# Output options
# =============================================================================


@dataclass
class OutputOptions:
    """
    Args:
        format: "string" (labels joined with ``separator``), "array" (labels)
            or "objects" (``{"category", "score"}`` dicts).
        amount: Exact number of results; None keeps all.
        adaptive: Cut the ranking where scores drop instead of using ``amount``.
        capitalize: Upper-case the first letter of each label.
        separator: Joiner of the "string" format.
    """

    format: str = "string"
    amount: int | None = 1
    adaptive: bool = False
    capitalize: bool = False
    separator: str = ", "

    def __post_init__(self) -> None:
        if self.format not in OUTPUT_FORMATS:
            raise InvalidInputError(f"format must be one of {OUTPUT_FORMATS}, got {self.format!r}")
        if self.amount is not None and self.amount < 1:
            raise InvalidInputError(f"amount must be >= 1, got {self.amount}")


def adaptive_cutoff(ranked: list[Candidate]) -> list[Candidate]:
    """
    Keep results while scores stay close: stop when the gap to the next result
    exceeds 15% of the current score, or the next score falls under 80% of
    the top score. At least one result is kept.
    """
    if not ranked:
        return ranked
    top = ranked[0][1]
    kept = [ranked[0]]
    for (_, current), candidate in zip(ranked, ranked[1:]):
        following = candidate[1]
        if current - following > Config.adaptive_gap_ratio * current:
            break
        if following < Config.adaptive_top_ratio * top:
            break
        kept.append(candidate)
    return kept


def _capitalize(label: str) -> str:
    return label[:1].upper() + label[1:]


def shape_output(
    candidates: Iterable[Candidate],
    options: OutputOptions,
    best_variant: Callable[[str], str],
) -> str | list[str] | list[dict[str, Any]]:
    """Map stems to display labels, sort, cut and format."""
    ranked = []
    for stem, score in candidates:
        label = best_variant(stem)
        if options.capitalize:
            label = _capitalize(label)
        ranked.append((label, float(score)))
    ranked.sort(key=lambda item: item[1], reverse=True)

    if options.adaptive:
        ranked = adaptive_cutoff(ranked)
    elif options.amount is not None:
        ranked = ranked[:options.amount]

    if options.format == "array":
        return [label for label, _ in ranked]
    if options.format == "objects":
        return [{"category": label, "score": score} for label, score in ranked]
    return options.separator.join(label for label, _ in ranked)


# =============================================================================
# Gravitational groups
# =============================================================================


def group_activation(
    group: GravitationalGroup,
    query_terms: set[str],
    ranked: list[Candidate],
) -> float:
    """
    How strongly a query pulls toward a group: member terms found in the query
    plus the scores of (at most ``Config.group_sample_cap``) top results whose
    stem is a member, both scaled by the group's strength.
    """
    strength = group.strength
    activation = len(group.members & query_terms) * strength
    samples = 0
    for stem, score in ranked:
        if samples >= Config.group_sample_cap:
            break
        if stem in group.members:
            activation += score * strength
            samples += 1
    return activation


def apply_gravity(
    candidates: list[Candidate],
    query_terms: set[str],
    groups: Mapping[str, GravitationalGroup],
    weight: float,
) -> list[Candidate]:
    """
    Boost categories named after the most activated group(s).

    Only the group(s) reaching the highest activation count; a category whose
    stem is the key of such a group has its score multiplied by
    ``1 + weight * activation``.
    """
    ranked = sorted(candidates, key=lambda item: item[1], reverse=True)
    if not groups or weight <= 0 or not ranked:
        return ranked

    activations = {
        key: group_activation(group, query_terms, ranked)
        for key, group in groups.items()
    }
    best = max(activations.values())
    if best <= 0:
        return ranked
    winners = {key for key, value in activations.items() if math.isclose(value, best)}

    boosted = [
        (stem, score * (1.0 + weight * best) if stem in winners else score)
        for stem, score in ranked
    ]
    boosted.sort(key=lambda item: item[1], reverse=True)
    return boosted


# =============================================================================
# Prediction paths
# =============================================================================


def _known_frequencies(index: ModelIndex, terms: Iterable[str], scale: float = 1.0) -> Counter[int]:
    frequencies: Counter[int] = Counter()
    for term in terms:
        tid = index.term_ids.get(term)
        if tid is not None:
            frequencies[tid] += scale
    return frequencies


def predict_text(
    index: ModelIndex,
    snapshot: Snapshot,
    pipeline: LexicalPipeline,
    text: str,
    weights: EnsembleWeights | None = None,
) -> list[Candidate]:
    """Ensemble scores of every category for one text, gravity applied."""
    if index.total_documents == 0 or not index.categories:
        return []
    weights = weights or index.weights
    terms = pipeline(text)
    query = QueryVector.build(_known_frequencies(index, terms), len(set(terms)), snapshot)
    category_ids, scores = ensemble_scores(snapshot, query, weights.algorithms())
    candidates = [(snapshot.stems[cid], float(score)) for cid, score in zip(category_ids, scores)]
    return apply_gravity(candidates, set(terms), index.groups, weights.gravity)


def predict_weighted(
    index: ModelIndex,
    snapshot: Snapshot,
    pipeline: LexicalPipeline,
    texts: Mapping[str, float],
) -> list[Candidate]:
    """Probability distribution over categories for weighted texts."""
    if index.total_documents == 0 or not index.categories:
        return []
    frequencies: Counter[int] = Counter()
    distinct: set[str] = set()
    for text, weight in texts.items():
        terms = pipeline(text)
        distinct.update(terms)
        frequencies.update(_known_frequencies(index, terms, weight ** index.weight_exponent))
    query = QueryVector.build(frequencies, len(distinct), snapshot)
    category_ids, scores = likelihood_scores(snapshot, query)
    candidates = [(snapshot.stems[cid], float(score)) for cid, score in zip(category_ids, scores)]
    candidates.sort(key=lambda item: item[1], reverse=True)
    return candidates


def predict(
    index: ModelIndex,
    snapshot: Snapshot,
    pipeline: LexicalPipeline,
    query: Query,
) -> list[Candidate]:
    if isinstance(query, SingleText):
        return predict_text(index, snapshot, pipeline, query.text)
    return predict_weighted(index, snapshot, pipeline, query.texts)
