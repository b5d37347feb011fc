"""
Eviction engine: keeps the index within its byte budget.

The byte budget becomes a term budget through the measured average size of a
term in the persisted model:

    allowed = floor(byte_budget / avg_bytes_per_term)

Phase 1 (global importance):
    target   = floor(allowed / |C|)
    penalty  = max(0, (docs(c) - target) / target)          per category
    score(t) = df(t) / (1 + sum of penalties of categories containing t)
    keep the `allowed` best terms, drop the rest everywhere, renumber ids.

Phase 2 (per-category fairness):
    a category whose retained occurrence total exceeds target * 1.2 loses its
    least frequent terms (from its own table only) until it fits.

New tables are built aside, yielding to the event loop between batches, and
swapped into the index in one step.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from trias.config import Config
from trias.index import ModelIndex

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


@dataclass
class PurgeReport:
    allowed: int
    removed_terms: int
    kept_terms: int
    trimmed_categories: int


class _Yielder:
    """Gives control back to the event loop every ``Config.purge_batch_size`` units of work."""

    def __init__(self) -> None:
        self.pending = 0

    async def step(self, amount: int = 1) -> None:
        self.pending += amount
        if self.pending >= Config.purge_batch_size:
            self.pending = 0
            await asyncio.sleep(0)


def category_target(allowed: int, n_categories: int) -> int:
    return max(allowed // max(n_categories, 1), 1)


def imbalance_penalties(index: ModelIndex, target: int) -> NDArray[np.float64]:
    doc_counts = np.array([c.doc_count for c in index.categories], dtype=np.float64)
    return np.maximum(0.0, (doc_counts - target) / target)


async def term_importance(index: ModelIndex, target: int, yielder: _Yielder) -> NDArray[np.float64]:
    """Phase 1 score of every term."""
    penalties = imbalance_penalties(index, target)
    term_penalty = np.zeros(len(index.terms), dtype=np.float64)
    for category, penalty in zip(index.categories, penalties):
        if penalty > 0 and category.terms:
            ids = np.fromiter(category.terms.keys(), dtype=np.int64, count=len(category.terms))
            term_penalty[ids] += penalty
            await yielder.step(len(ids))
    doc_frequency = np.array(index.doc_frequency, dtype=np.float64)
    return doc_frequency / (1.0 + term_penalty)


def select_terms(scores: NDArray[np.float64], allowed: int) -> NDArray[np.int64]:
    """Ids of the `allowed` best terms, in their original order. Ties keep the older term."""
    order = np.argsort(-scores, kind="stable")
    return np.sort(order[:allowed])


def trim_table(table: Counter[int], limit: float) -> int:
    """
    Drop the least frequent entries until the table's total fits `limit`.

    Returns:
        The new total.
    """
    total = sum(table.values())
    if total <= limit:
        return total
    for tid, count in sorted(table.items(), key=lambda item: (item[1], item[0])):
        if total <= limit:
            break
        total -= count
        del table[tid]
    return total


async def purge(index: ModelIndex, allowed: int | None = None) -> PurgeReport | None:
    """
    Evict terms until the index fits its term budget.

    Args:
        index: Index to shrink in place.
        allowed: Term budget; defaults to ``index.allowed_terms()``.

    Returns:
        A report, or None when nothing had to be evicted.
    """
    if allowed is None:
        allowed = index.allowed_terms()
    if allowed is None or len(index.terms) <= allowed:
        return None

    yielder = _Yielder()
    n_terms = len(index.terms)
    target = category_target(allowed, len(index.categories))
    logger.debug("Purging %d terms down to %d (target %d per category)", n_terms, allowed, target)

    # Phase 1: global importance ranking
    scores = await term_importance(index, target, yielder)
    keep = select_terms(scores, allowed)
    remap = np.full(n_terms, -1, dtype=np.int64)
    remap[keep] = np.arange(keep.size)

    terms = [index.terms[tid] for tid in keep]
    doc_frequency = [index.doc_frequency[tid] for tid in keep]
    tables: list[Counter[int]] = []
    for category in index.categories:
        table: Counter[int] = Counter()
        for tid, count in category.terms.items():
            new_id = remap[tid]
            if new_id >= 0:
                table[int(new_id)] = count
        tables.append(table)
        await yielder.step(len(category.terms))

    # Phase 2: per-category fairness
    limit = target * Config.fairness_tolerance
    trimmed = 0
    for table in tables:
        before = len(table)
        trim_table(table, limit)
        if len(table) != before:
            trimmed += 1
        await yielder.step(before)

    index.replace_terms(terms, doc_frequency, tables)
    report = PurgeReport(
        allowed=allowed,
        removed_terms=n_terms - len(terms),
        kept_terms=len(terms),
        trimmed_categories=trimmed,
    )
    logger.info(
        "Purged %d terms (%d kept), trimmed %d categories",
        report.removed_terms, report.kept_terms, report.trimmed_categories,
    )
    return report
