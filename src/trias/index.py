"""
Term/category index: the mutable model owned by one classifier instance.

Layout:
    categories[cid]          Category (stem, surface variants, counts, term table)
    category_ids[stem]       stem -> cid
    terms[tid]               term string
    term_ids[term]           term -> tid
    doc_frequency[tid]       number of training examples containing the term
    relations[stem][stem']   co-occurrence count of two labels on one example

Ids are dense and allocated by appending. Category ids are never recycled
(categories only disappear on reset); term ids are rebuilt contiguously by
the eviction engine, which replaces the term tables in a single step.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from trias.config import EnsembleWeights


@dataclass
class Category:
    """A label the model can predict."""

    id: int
    stem: str
    variants: Counter[str] = field(default_factory=Counter)
    doc_count: int = 0
    term_total: int = 0
    terms: Counter[int] = field(default_factory=Counter)

    def best_variant(self) -> str:
        """Surface form observed most often (first seen wins ties)."""
        if not self.variants:
            return self.stem
        best, best_count = self.stem, -1
        for variant, count in self.variants.items():
            if count > best_count:
                best, best_count = variant, count
        return best


@dataclass(frozen=True)
class GravitationalGroup:
    """Named set of stemmed terms that boosts matching categories."""

    key: str
    name: str
    members: frozenset[str]

    @property
    def strength(self) -> float:
        return 1.0 / math.sqrt(len(self.members)) if self.members else 0.0


class ModelIndex:
    """
    Aggregate root of the model.

    Args:
        n: Maximum n-gram length of the terms.
        weights: Ensemble weights.
        excludes: Excluded stems.
        byte_budget: Target size of the persisted model in bytes.
        weight_exponent: Exponent of multi-text prediction weights.
    """

    def __init__(
        self,
        n: int = 3,
        weights: EnsembleWeights | None = None,
        excludes: Iterable[str] = (),
        byte_budget: int = 4096 * 1024,
        weight_exponent: float = 2,
    ):
        self.n = n
        self.weights = weights or EnsembleWeights()
        self.excludes: set[str] = set(excludes)
        self.byte_budget = byte_budget
        self.weight_exponent = weight_exponent
        self.avg_bytes_per_term: float | None = None
        self.generation = 0
        self.clear()

    def clear(self) -> None:
        """Drop everything learned. Configuration is kept."""
        self.categories: list[Category] = []
        self.category_ids: dict[str, int] = {}
        self.terms: list[str] = []
        self.term_ids: dict[str, int] = {}
        self.doc_frequency: list[int] = []
        self.relations: dict[str, Counter[str]] = {}
        self.groups: dict[str, GravitationalGroup] = {}
        self.total_documents = 0
        self.touch()

    def touch(self) -> None:
        """Mark the index as mutated."""
        self.generation += 1

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    def category(self, stem: str) -> Category | None:
        cid = self.category_ids.get(stem)
        return None if cid is None else self.categories[cid]

    def ensure_category(self, stem: str) -> Category:
        cid = self.category_ids.get(stem)
        if cid is not None:
            return self.categories[cid]
        category = Category(id=len(self.categories), stem=stem)
        self.categories.append(category)
        self.category_ids[stem] = category.id
        return category

    def best_variant(self, stem: str) -> str:
        category = self.category(stem)
        return stem if category is None else category.best_variant()

    # -------------------------------------------------------------------------
    # Terms
    # -------------------------------------------------------------------------

    def ensure_term(self, term: str) -> int:
        tid = self.term_ids.get(term)
        if tid is None:
            tid = len(self.terms)
            self.terms.append(term)
            self.term_ids[term] = tid
            self.doc_frequency.append(0)
        return tid

    def replace_terms(
        self,
        terms: list[str],
        doc_frequency: list[int],
        tables: list[Counter[int]],
    ) -> None:
        """
        Swap in a new term table and per-category term tables at once.

        ``tables[cid]`` replaces category ``cid``'s table; totals are recomputed.
        """
        if len(tables) != len(self.categories):
            raise ValueError("one term table per category is required")
        if len(terms) != len(doc_frequency):
            raise ValueError("terms and doc_frequency differ in length")
        self.terms = terms
        self.term_ids = {term: tid for tid, term in enumerate(terms)}
        self.doc_frequency = doc_frequency
        for category, table in zip(self.categories, tables):
            category.terms = table
            category.term_total = sum(table.values())
        self.touch()

    # -------------------------------------------------------------------------
    # Relations and groups
    # -------------------------------------------------------------------------

    def relate(self, source: str, target: str, amount: int = 1) -> None:
        """Add to the directed edge source -> target."""
        self.relations.setdefault(source, Counter())[target] += amount

    def add_group(self, group: GravitationalGroup) -> None:
        self.groups[group.key] = group
        self.touch()

    # -------------------------------------------------------------------------
    # Size
    # -------------------------------------------------------------------------

    @property
    def estimated_size(self) -> float:
        """Estimated persisted size in bytes (0 while the average is unknown)."""
        if self.avg_bytes_per_term and self.avg_bytes_per_term > 0:
            return len(self.terms) * self.avg_bytes_per_term
        return 0.0

    def allowed_terms(self) -> int | None:
        """Term-count budget, or None when the average term size is unknown."""
        if not self.avg_bytes_per_term or self.avg_bytes_per_term <= 0:
            return None
        return math.floor(self.byte_budget / self.avg_bytes_per_term)

    def over_budget(self) -> bool:
        allowed = self.allowed_terms()
        return allowed is not None and len(self.terms) > allowed

    def update_average_term_size(self, byte_size: int) -> None:
        if self.terms:
            self.avg_bytes_per_term = byte_size / len(self.terms)

    # -------------------------------------------------------------------------
    # Integrity
    # -------------------------------------------------------------------------

    def check_integrity(self) -> list[str]:
        """Problems found in the index; empty when consistent."""
        problems = []
        if len(self.doc_frequency) != len(self.terms):
            problems.append("doc_frequency and terms differ in length")
        if len(self.category_ids) != len(self.categories):
            problems.append("category id map and category list differ in length")
        n_terms = len(self.terms)
        for category in self.categories:
            if self.category_ids.get(category.stem) != category.id:
                problems.append(f"category {category.stem!r} has a stale id")
            bad = [tid for tid in category.terms if not 0 <= tid < n_terms]
            if bad:
                problems.append(f"category {category.stem!r} references unknown terms {bad[:5]}")
        return problems

    def stats(self) -> dict[str, int | float]:
        return {
            "categories": len(self.categories),
            "terms": len(self.terms),
            "documents": self.total_documents,
            "groups": len(self.groups),
            "estimated_size": self.estimated_size,
        }

    def __repr__(self) -> str:
        return (
            f"ModelIndex(categories={len(self.categories)}, terms={len(self.terms)}, "
            f"documents={self.total_documents})"
        )
