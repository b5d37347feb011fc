"""
Trias: incremental multi-label text classifier.

Learns from (text, labels) examples, predicts ranked categories, finds
related categories and clusters them, and keeps its compressed model file
within a byte budget.
"""

from trias.classifier import Trias
from trias.config import Config, EnsembleWeights, TriasConfig
from trias.exceptions import (
    CorruptModelError,
    DestroyedStateError,
    EmptyModelError,
    InvalidInputError,
    MalformedModelError,
    ModelNotFoundError,
    RemoteImportError,
    TriasError,
)

__version__ = "0.1.0"

__all__ = [
    "Config",
    "CorruptModelError",
    "DestroyedStateError",
    "EmptyModelError",
    "EnsembleWeights",
    "InvalidInputError",
    "MalformedModelError",
    "ModelNotFoundError",
    "RemoteImportError",
    "Trias",
    "TriasConfig",
    "TriasError",
]
