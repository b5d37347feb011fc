"""
Trias: incremental multi-label text classifier.

The classifier owns one ModelIndex and serializes access to it with an
asyncio lock: training, purging and saving hold it while they mutate the
index, and predictions, relation queries and clustering take it before they
read, so no reader ever sees a half-applied batch. A purge flag and a
pending-save counter sit on top of the lock.

Usage:
    async with Trias(file="news.trias") as oracle:
        await oracle.train([{"input": "Stock market rally", "output": "Finance"}])
        await oracle.predict("markets rally again")          # "Finance"
        await oracle.save()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from trias import clustering, persistence, prediction, relations, training
from trias.config import TriasConfig
from trias.exceptions import (
    CorruptModelError,
    DestroyedStateError,
    InvalidInputError,
    ModelNotFoundError,
    RemoteImportError,
)
from trias.index import GravitationalGroup, ModelIndex
from trias.lexical import LexicalPipeline, get_stemmer
from trias.prediction import OutputOptions, parse_query, shape_output
from trias.preprocessing import PreprocessingCache, Snapshot
from trias.purge import PurgeReport, purge

logger = logging.getLogger(__name__)


class Trias:
    """
    Incremental text classifier.

    Args:
        config: Instance options; keyword arguments build one when omitted
            (see ``TriasConfig``).

    All public operations are coroutines. The model file is loaded lazily on
    the first operation (or explicitly with ``initialize()``).
    """

    def __init__(self, config: TriasConfig | None = None, **options: Any):
        self.config = config or TriasConfig(**options)
        self.stemmer = get_stemmer(self.config.language)
        self.cache = PreprocessingCache()
        self._adopt(ModelIndex(
            n=self.config.n,
            weights=self.config.weights,
            weight_exponent=self.config.weight_exponent,
        ))

        self._lock = asyncio.Lock()
        self._initialization: asyncio.Task | None = None
        self._destroyed = False
        self._purging = False
        self._pending_saves = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def __aenter__(self) -> Trias:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None

    async def initialize(self) -> None:
        """Load (or create, or import) the model. Safe to call repeatedly."""
        self._check_alive()
        if self._initialization is None:
            self._initialization = asyncio.ensure_future(self._initialize())
        try:
            await self._initialization
        except asyncio.CancelledError:
            if self._destroyed:
                raise DestroyedStateError("classifier destroyed during initialization") from None
            raise
        self._check_alive()

    async def _initialize(self) -> None:
        path = self.config.file
        try:
            self._adopt(await asyncio.to_thread(persistence.load, path))
        except ModelNotFoundError:
            if not self.config.create:
                raise
            logger.info("No model at %s, starting with an empty one", path)
        except CorruptModelError as e:
            if not self.config.create:
                raise
            logger.warning("Unreadable model at %s (%s), starting with an empty one", path, e)

        if self.config.auto_import and self.index.total_documents == 0:
            url = self.config.resolved_model_url()
            try:
                await persistence.import_remote(url, path)
                self._adopt(await asyncio.to_thread(persistence.load, path))
            except (RemoteImportError, CorruptModelError) as e:
                if not self.config.create:
                    raise
                logger.warning("Failed to auto-import model from %s: %s", url, e)

        if self.index.over_budget():
            async with self._lock:
                await self._purge_locked()

    def _adopt(self, index: ModelIndex) -> None:
        """Install an index and the lexical pipeline matching it."""
        index.byte_budget = self.config.size
        pipeline = LexicalPipeline(self.stemmer, self.config.excludes, index.n)
        pipeline.excludes = pipeline.excludes | frozenset(index.excludes)
        index.excludes = set(pipeline.excludes)
        self.index = index
        self.pipeline = pipeline
        self.cache.invalidate()

    def _check_alive(self) -> None:
        if self._destroyed:
            raise DestroyedStateError("classifier was destroyed")

    async def destroy(self) -> None:
        """
        Clear all state; every later operation (including another destroy)
        raises DestroyedStateError.

        An in-flight write (training, purge, save) completes before the index
        is cleared.
        """
        self._check_alive()
        self._destroyed = True
        if self._initialization is not None and not self._initialization.done():
            self._initialization.cancel()
        async with self._lock:
            self.index.clear()
            self.cache.invalidate()

    async def reset(self) -> None:
        """Forget everything learned; configuration is kept."""
        await self.initialize()
        async with self._lock:
            self.index.clear()
            self.cache.invalidate()

    # =========================================================================
    # Training
    # =========================================================================

    async def train(self, examples: Any, label: Any = None) -> int:
        """
        Learn from ``[{"input": text, "output": label | [labels]}]`` (or from
        ``train(text, label)``).

        Returns:
            Number of examples that changed the model.
        """
        await self.initialize()
        batch = training.normalize_examples(examples, label)
        async with self._lock:
            accepted = training.train(self.index, self.pipeline, batch)
            self.cache.invalidate()

        if accepted and not self._pending_saves and self.index.over_budget():
            try:
                await self.purge()
            except Exception:
                logger.exception("Purge after training failed; the model stays over budget")
        return accepted

    # =========================================================================
    # Reading
    # =========================================================================

    def _output_options(
        self,
        format: str,
        amount: int | None,
        adaptive: bool,
        capitalize: bool | None,
    ) -> OutputOptions:
        return OutputOptions(
            format=format,
            amount=amount,
            adaptive=adaptive,
            capitalize=self.config.capitalize if capitalize is None else capitalize,
        )

    def _snapshot(self) -> Snapshot:
        return self.cache.get(self.index)

    async def warm(self) -> None:
        """Build the preprocessing cache now instead of on the next prediction."""
        await self.initialize()
        async with self._lock:
            self._snapshot()

    async def predict(
        self,
        query: str | Mapping[str, float] | list[str],
        *,
        format: str = "string",
        amount: int | None = 1,
        adaptive: bool = False,
        capitalize: bool | None = None,
    ) -> str | list[str] | list[dict[str, Any]]:
        """
        Rank categories for a text, or for ``{text: weight}``.

        Args:
            query: Text, list of texts, or texts with positive weights.
            format: "string", "array" or "objects".
            amount: Number of results (ignored when ``adaptive``).
            adaptive: Stop where scores drop instead of at ``amount``.
            capitalize: Override the instance setting.
        """
        await self.initialize()
        parsed = parse_query(query)
        options = self._output_options(format, amount, adaptive, capitalize)
        async with self._lock:
            candidates = prediction.predict(self.index, self._snapshot(), self.pipeline, parsed)
            return shape_output(candidates, options, self.index.best_variant)

    async def related(
        self,
        categories: str | Mapping[str, float] | list[str],
        *,
        format: str = "objects",
        amount: int | None = 5,
        adaptive: bool = False,
        capitalize: bool | None = None,
    ) -> str | list[str] | list[dict[str, Any]]:
        """Categories that co-occur with (or resemble) the given ones."""
        await self.initialize()
        options = self._output_options(format, amount, adaptive, capitalize)
        async with self._lock:
            candidates = relations.related(
                self.index, self._snapshot(), self.pipeline, categories,
                None if adaptive else amount,
            )
            return shape_output(candidates, options, self.index.best_variant)

    async def reduce(
        self,
        categories: list[str] | Mapping[str, float],
        *,
        amount: int = 5,
        seed: int | None = None,
    ) -> dict[str, list[str]]:
        """Group categories into at most ``amount`` thematic clusters."""
        await self.initialize()
        async with self._lock:
            return clustering.reduce(
                self.index, self._snapshot(), self.pipeline, categories, amount, seed
            )

    def best_variant(self, stem: str) -> str:
        self._check_alive()
        return self.index.best_variant(stem)

    @property
    def size(self) -> float:
        """Estimated size of the persisted model in bytes."""
        self._check_alive()
        return self.index.estimated_size

    def stats(self) -> dict[str, int | float]:
        self._check_alive()
        return self.index.stats()

    # =========================================================================
    # Gravitational groups
    # =========================================================================

    async def add_gravitational_groups(self, groups: Mapping[str, Iterable[str]]) -> None:
        """Declare ``{name: [terms]}`` groups that pull predictions toward ``name``."""
        await self.initialize()
        if not isinstance(groups, Mapping):
            raise InvalidInputError(f"groups must be a {{name: [terms]}} mapping, got {type(groups).__name__}")
        parsed = []
        for name, terms in groups.items():
            if not isinstance(name, str) or isinstance(terms, str) or not isinstance(terms, Iterable):
                raise InvalidInputError(f"group {name!r} must map a name to a list of terms")
            keys = (self.pipeline.term_key(term) for term in terms if isinstance(term, str))
            members = frozenset(key for key in keys if key)
            if members:
                parsed.append(GravitationalGroup(key=self.pipeline.stem_label(name), name=name, members=members))
        async with self._lock:
            for group in parsed:
                self.index.add_group(group)

    # =========================================================================
    # Eviction and persistence
    # =========================================================================

    async def purge(self) -> PurgeReport | None:
        """Evict terms until the model fits its byte budget."""
        await self.initialize()
        if self._purging:
            return None
        async with self._lock:
            return await self._purge_locked()

    async def _purge_locked(self) -> PurgeReport | None:
        if self._purging:
            return None
        self._purging = True
        try:
            report = await purge(self.index)
        finally:
            self._purging = False
        if report is not None:
            self.cache.invalidate()
        return report

    async def save(self) -> int:
        """
        Purge, then write the model file.

        Returns:
            Number of bytes written.
        """
        await self.initialize()
        self._pending_saves += 1
        try:
            async with self._lock:
                if self.index.avg_bytes_per_term is None and self.index.terms:
                    self.index.update_average_term_size(persistence.measure(self.index))
                await self._purge_locked()
                written = await asyncio.to_thread(persistence.save, self.config.file, self.index)
                self.index.update_average_term_size(written)
        finally:
            self._pending_saves -= 1
        return written

    def __repr__(self) -> str:
        return f"Trias(file={self.config.file!r}, language={self.config.language!r}, index={self.index!r})"
