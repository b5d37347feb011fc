"""
Persistence of the model index: gzip-compressed JSON.

    load(path)                  -> ModelIndex (average term size measured from the file)
    save(path, index)           -> bytes written (parent directories created)
    measure(index)              -> compressed size without touching the disk
    await import_remote(url, path)  download a pre-trained model verbatim

Load failures are distinguishable: ModelNotFoundError (missing file),
EmptyModelError (zero bytes), CorruptModelError (not gzip / not JSON) and
MalformedModelError (valid JSON, invalid structure).
"""

from __future__ import annotations

import asyncio
import gzip
import json
import logging
import os
import tempfile
import zlib
from collections import Counter
from pathlib import Path
from typing import Any

import httpx

from trias.config import EnsembleWeights
from trias.exceptions import (
    CorruptModelError,
    EmptyModelError,
    MalformedModelError,
    ModelNotFoundError,
    RemoteImportError,
)
from trias.index import Category, GravitationalGroup, ModelIndex

logger = logging.getLogger(__name__)

FORMAT_NAME = "trias"
FORMAT_VERSION = 1


# =============================================================================
# Encoding
# =============================================================================


def to_dict(index: ModelIndex) -> dict[str, Any]:
    return {
        "format": FORMAT_NAME,
        "version": FORMAT_VERSION,
        "n": index.n,
        "weight_exponent": index.weight_exponent,
        "weights": index.weights.as_dict(),
        "excludes": sorted(index.excludes),
        "total_documents": index.total_documents,
        "categories": [
            {
                "id": category.id,
                "stem": category.stem,
                "variants": dict(category.variants),
                "doc_count": category.doc_count,
            }
            for category in index.categories
        ],
        "relations": {source: dict(targets) for source, targets in index.relations.items()},
        "terms": index.terms,
        "doc_frequency": index.doc_frequency,
        "term_counts": [
            {str(tid): count for tid, count in category.terms.items()}
            for category in index.categories
        ],
        "groups": {
            key: {"name": group.name, "members": sorted(group.members)}
            for key, group in index.groups.items()
        },
        "avg_bytes_per_term": index.avg_bytes_per_term,
    }


def from_dict(data: Any) -> ModelIndex:
    """Rebuild an index, validating structure and referential integrity."""
    if not isinstance(data, dict):
        raise MalformedModelError(f"model root must be an object, got {type(data).__name__}")
    if data.get("format", FORMAT_NAME) != FORMAT_NAME:
        raise MalformedModelError(f"unknown model format {data.get('format')!r}")
    try:
        index = ModelIndex(
            n=int(data.get("n", 3)),
            weights=EnsembleWeights.from_dict(data.get("weights")),
            excludes=[str(e) for e in data.get("excludes", [])],
            weight_exponent=float(data.get("weight_exponent", 2)),
        )
        terms = [str(t) for t in data["terms"]]
        doc_frequency = [int(df) for df in data["doc_frequency"]]
        tables = data["term_counts"]
        categories = data["categories"]
        if len(doc_frequency) != len(terms):
            raise MalformedModelError("terms and doc_frequency differ in length")
        if len(tables) != len(categories):
            raise MalformedModelError("categories and term_counts differ in length")

        index.terms = terms
        index.term_ids = {term: tid for tid, term in enumerate(terms)}
        index.doc_frequency = doc_frequency
        for position, (entry, table) in enumerate(zip(categories, tables)):
            if int(entry.get("id", position)) != position:
                raise MalformedModelError(f"category ids must be dense, got {entry.get('id')!r} at {position}")
            counts = Counter({int(tid): int(count) for tid, count in table.items()})
            category = Category(
                id=position,
                stem=str(entry["stem"]),
                variants=Counter({str(v): int(c) for v, c in entry.get("variants", {}).items()}),
                doc_count=int(entry.get("doc_count", 0)),
                term_total=sum(counts.values()),
                terms=counts,
            )
            index.categories.append(category)
            index.category_ids[category.stem] = position

        for source, targets in data.get("relations", {}).items():
            index.relations[str(source)] = Counter({str(t): int(w) for t, w in targets.items()})
        for key, group in data.get("groups", {}).items():
            index.groups[str(key)] = GravitationalGroup(
                key=str(key),
                name=str(group["name"]),
                members=frozenset(str(m) for m in group["members"]),
            )
        index.total_documents = int(data.get("total_documents", 0))
        average = data.get("avg_bytes_per_term")
        index.avg_bytes_per_term = float(average) if average else None
    except MalformedModelError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedModelError(f"invalid model structure: {e!r}") from e

    problems = index.check_integrity()
    if problems:
        raise MalformedModelError("; ".join(problems))
    index.touch()
    return index


def encode(index: ModelIndex) -> bytes:
    payload = json.dumps(to_dict(index), ensure_ascii=False, separators=(",", ":"))
    return gzip.compress(payload.encode("utf-8"))


def decode(blob: bytes) -> ModelIndex:
    if not blob:
        raise EmptyModelError("model data is empty")
    try:
        payload = gzip.decompress(blob)
        data = json.loads(payload.decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptModelError(f"cannot decode model: {e}") from e
    return from_dict(data)


def measure(index: ModelIndex) -> int:
    """Size in bytes the index would have on disk."""
    return len(encode(index))


# =============================================================================
# Files
# =============================================================================


def load(path: str | os.PathLike[str]) -> ModelIndex:
    path = Path(path)
    try:
        blob = path.read_bytes()
    except FileNotFoundError as e:
        raise ModelNotFoundError(f"model file not found: {path}") from e
    if not blob:
        raise EmptyModelError(f"model file is empty: {path}")
    try:
        index = decode(blob)
    except CorruptModelError as e:
        raise type(e)(f"{path}: {e}") from e
    index.update_average_term_size(len(blob))
    logger.info(
        "Loaded model %s (%d categories, %d terms)", path, len(index.categories), len(index.terms)
    )
    return index


def save(path: str | os.PathLike[str], index: ModelIndex) -> int:
    """
    Write the index atomically (temporary file + rename).

    Returns:
        Number of bytes written.
    """
    path = Path(path)
    blob = encode(index)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temporary = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(blob)
        os.replace(temporary, path)
    except BaseException:
        Path(temporary).unlink(missing_ok=True)
        raise
    logger.info(
        "Saved model %s (%d bytes, %d categories, %d terms)",
        path, len(blob), len(index.categories), len(index.terms),
    )
    return len(blob)


async def import_remote(
    url: str,
    path: str | os.PathLike[str],
    timeout: float = 30.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """
    Download a pre-trained model and write it verbatim to `path`.

    The download lands in a temporary file next to `path` and replaces it
    only once complete; a failed import leaves an existing file untouched.

    Args:
        url: Address of the model file.
        path: Destination; replaced if it exists.
        timeout: Request timeout in seconds.
        transport: Custom httpx transport (proxies, mocking).

    Returns:
        Number of bytes written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temporary = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    written = 0
    try:
        with os.fdopen(fd, "wb") as f:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    async for chunk in response.aiter_bytes():
                        await asyncio.to_thread(f.write, chunk)
                        written += len(chunk)
        os.replace(temporary, path)
    except (httpx.HTTPError, OSError) as e:
        Path(temporary).unlink(missing_ok=True)
        raise RemoteImportError(f"failed to import model from {url}: {e}") from e
    except BaseException:
        Path(temporary).unlink(missing_ok=True)
        raise
    logger.info("Imported model from %s into %s (%d bytes)", url, path, written)
    return written
