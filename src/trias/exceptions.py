"""
Exceptions raised by the Trias classifier.

All errors derive from ``TriasError`` so callers can catch everything the
library raises with a single handler. Some classes also derive from the
matching builtin (``FileNotFoundError``, ``ValueError``, ``RuntimeError``) so
generic handlers keep working.
"""


class TriasError(Exception):
    """Base exception for all classifier errors."""

    pass


class ModelNotFoundError(TriasError, FileNotFoundError):
    """
    The model file does not exist and model creation is disabled.

    Examples:
        >>> try:
        ...     await Trias(file="missing.trias", create=False).initialize()
        ... except ModelNotFoundError as e:
        ...     print(f"No model: {e}")
    """

    pass


class CorruptModelError(TriasError):
    """
    The model file exists but cannot be decompressed or parsed.

    Recoverable (an empty model is used instead) only when creation is enabled.
    """

    pass


class EmptyModelError(CorruptModelError):
    """The model file is empty."""

    pass


class MalformedModelError(CorruptModelError):
    """
    The model file decoded fine but its structure is invalid.

    Raised for missing fields, mismatched table lengths or term ids that do
    not exist in the term table.
    """

    pass


class InvalidInputError(TriasError, ValueError):
    """An operation received input of an unsupported shape."""

    pass


class RemoteImportError(TriasError):
    """Downloading a pre-trained model failed."""

    pass


class DestroyedStateError(TriasError, RuntimeError):
    """The classifier was destroyed; no further operation is possible."""

    pass
