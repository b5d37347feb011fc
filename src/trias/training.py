"""
Training engine: folds (text, labels) examples into the index.

Per example:
    1. drop excluded labels (skip the example if none survive)
    2. run the lexical pipeline once (skip the example if it yields no terms)
    3. register new terms; +1 document frequency per distinct term
    4. per label: +1 category document, +1 per term occurrence
    5. +1 on every ordered pair of distinct labels in the relation graph
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from typing import Any

from trias.exceptions import InvalidInputError
from trias.index import ModelIndex
from trias.lexical import LexicalPipeline

logger = logging.getLogger(__name__)

# The total document counter grows by one per accepted example, whatever its
# number of labels. Category priors divide by this count.
COUNT_DOCUMENTS_PER_EXAMPLE = True


def normalize_examples(examples: Any, label: Any = None) -> list[dict[str, Any]]:
    """
    Accept ``[{"input": ..., "output": ...}]``, a single such mapping, or the
    ``(text, label)`` shortcut.
    """
    if label is not None:
        if not isinstance(examples, str):
            raise InvalidInputError("train(text, label) expects text to be a string")
        return [{"input": examples, "output": label}]
    if isinstance(examples, Mapping):
        examples = [examples]
    if not isinstance(examples, Iterable) or isinstance(examples, str):
        raise InvalidInputError(
            f"expected a list of {{'input', 'output'}} examples, got {type(examples).__name__}"
        )
    normalized = []
    for example in examples:
        if not isinstance(example, Mapping) or "input" not in example or "output" not in example:
            raise InvalidInputError(f"malformed training example: {example!r}")
        normalized.append(example)
    return normalized


def surviving_labels(output: Any, pipeline: LexicalPipeline) -> list[str]:
    """Labels of an example that are not excluded, duplicates removed."""
    labels = [output] if isinstance(output, str) else list(output or [])
    kept: list[str] = []
    seen: set[str] = set()
    for label in labels:
        if not isinstance(label, str) or not label.strip():
            continue
        label = label.strip()
        if pipeline.is_excluded(label):
            continue
        stem = pipeline.stem_label(label)
        if stem in seen:
            continue
        seen.add(stem)
        kept.append(label)
    return kept


def train_example(index: ModelIndex, pipeline: LexicalPipeline, text: Any, output: Any) -> bool:
    """
    Fold one example into the index.

    Returns:
        True if the example changed the index.
    """
    labels = surviving_labels(output, pipeline)
    if not labels:
        return False
    if not isinstance(text, str):
        logger.warning("Skipping training example with non-string input: %r", text)
        return False

    terms = pipeline(text)
    if not terms:
        return False

    occurrences = Counter(index.ensure_term(term) for term in terms)
    for tid in occurrences:
        index.doc_frequency[tid] += 1

    stems = []
    for label in labels:
        stem = pipeline.stem_label(label)
        stems.append(stem)
        category = index.ensure_category(stem)
        category.variants[label] += 1
        category.doc_count += 1
        category.terms.update(occurrences)
        category.term_total += len(terms)
        if not COUNT_DOCUMENTS_PER_EXAMPLE:
            index.total_documents += 1
    if COUNT_DOCUMENTS_PER_EXAMPLE:
        index.total_documents += 1

    if len(stems) > 1:
        for source in stems:
            for target in stems:
                if source != target:
                    index.relate(source, target)
    return True


def train(index: ModelIndex, pipeline: LexicalPipeline, examples: Iterable[Mapping[str, Any]]) -> int:
    """
    Fold a batch of examples into the index.

    Returns:
        Number of examples that changed the index.
    """
    accepted = 0
    for example in examples:
        if train_example(index, pipeline, example["input"], example["output"]):
            accepted += 1
    if accepted:
        index.touch()
    logger.debug("Trained %d example(s); index now %r", accepted, index)
    return accepted
