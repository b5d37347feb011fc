"""
Lexical pipeline: raw text -> ordered sequence of word n-gram terms.

Two layers:

1. Stemmer collaborator - ``get_stemmer(language)`` returns a ``Stemmer`` with
   ``stem(word)`` and ``tokenize_and_stem(text)``. English uses the Porter
   stemmer, other languages the Snowball family from nltk.
2. ``LexicalPipeline`` - filters stems (length <= 1, excluded stems) and expands
   them into n-grams of length 1..n.

Both layers are pure functions of their input and configuration: the same text
always produces the same terms, in training and in prediction alike.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from functools import lru_cache

from nltk.stem import PorterStemmer, SnowballStemmer

logger = logging.getLogger(__name__)


# =============================================================================
# Tokenization
# =============================================================================

ENGLISH_STOPWORDS: frozenset[str] = frozenset([
    "a", "an", "and", "are", "as", "at", "be", "been", "but", "by", "can",
    "do", "for", "from", "had", "has", "have", "he", "her", "him", "his",
    "how", "i", "if", "in", "into", "is", "it", "its", "me", "my", "no",
    "not", "of", "on", "or", "our", "out", "s", "she", "so", "some", "such",
    "t", "than", "that", "the", "their", "them", "then", "there", "these",
    "they", "this", "to", "too", "us", "very", "was", "we", "were", "what",
    "when", "where", "which", "who", "will", "with", "would", "you", "your",
])

# Letters and digits of any script; underscores split tokens
_TOKEN_PATTERN = re.compile(r"[^\W_]+")


def tokenize(text: str) -> list[str]:
    """Lowercase the text and split it on non-alphanumeric boundaries."""
    return _TOKEN_PATTERN.findall(text.lower())


# =============================================================================
# Stemmer collaborator
# =============================================================================

# ISO 639-1 code -> nltk Snowball language name
SNOWBALL_LANGUAGES: dict[str, str] = {
    "ar": "arabic",
    "da": "danish",
    "de": "german",
    "es": "spanish",
    "fi": "finnish",
    "fr": "french",
    "hu": "hungarian",
    "it": "italian",
    "nl": "dutch",
    "no": "norwegian",
    "pt": "portuguese",
    "ro": "romanian",
    "ru": "russian",
    "sv": "swedish",
}

STOPWORDS: dict[str, frozenset[str]] = {
    "en": ENGLISH_STOPWORDS,
}


class Stemmer:
    """
    Language-specific stemmer.

    Args:
        language: Language code the stemmer was selected for.
        backend: Any object with a ``stem(word) -> str`` method.
        stopwords: Words dropped by ``tokenize_and_stem`` before stemming.
    """

    def __init__(self, language: str, backend, stopwords: frozenset[str] = frozenset()):
        self.language = language
        self._backend = backend
        self.stopwords = stopwords

    def stem(self, word: str) -> str:
        return self._backend.stem(word.lower())

    def tokenize_and_stem(self, text: str) -> list[str]:
        return [self.stem(t) for t in tokenize(text) if t not in self.stopwords]

    def __repr__(self) -> str:
        return f"Stemmer(language={self.language!r})"


@lru_cache(maxsize=None)
def get_stemmer(language: str = "en") -> Stemmer:
    """
    Stemmer for a language code. Unsupported languages fall back to English.
    """
    code = (language or "en").lower()
    if code in SNOWBALL_LANGUAGES:
        backend = SnowballStemmer(SNOWBALL_LANGUAGES[code])
    else:
        if code != "en":
            logger.warning("No stemmer for language %r, falling back to English", language)
            code = "en"
        backend = PorterStemmer()
    return Stemmer(code, backend, STOPWORDS.get(code, frozenset()))


def stem(word: str, language: str = "en") -> str:
    return get_stemmer(language).stem(word)


def tokenize_and_stem(text: str, language: str = "en") -> list[str]:
    return get_stemmer(language).tokenize_and_stem(text)


# =============================================================================
# Lexical pipeline
# =============================================================================


class LexicalPipeline:
    """
    Turns text into the terms the index is built from.

    Args:
        stemmer: Stemmer collaborator.
        excludes: Stems never emitted. Raw words are stemmed on the way in.
        n: Maximum n-gram length.

    Example:
        >>> pipeline = LexicalPipeline(get_stemmer("en"), n=2)
        >>> pipeline("Sunny skies")
        ['sunni', 'sky', 'sunni sky']
    """

    def __init__(self, stemmer: Stemmer, excludes: Iterable[str] = (), n: int = 3):
        self.stemmer = stemmer
        self.n = n
        self.excludes: frozenset[str] = frozenset(self.stem_label(e) for e in excludes)

    def stems(self, text: str) -> list[str]:
        """Stems of the text with short and excluded stems removed."""
        return [
            token
            for token in self.stemmer.tokenize_and_stem(text)
            if len(token) > 1 and token not in self.excludes
        ]

    def __call__(self, text: str) -> list[str]:
        """
        All n-grams of the filtered stems, unigrams first, then bigrams, ...
        each group left to right. Repeats are kept.
        """
        if not isinstance(text, str):
            return []
        tokens = self.stems(text)
        terms: list[str] = []
        for length in range(1, self.n + 1):
            for start in range(len(tokens) - length + 1):
                terms.append(" ".join(tokens[start:start + length]))
        return terms

    def stem_label(self, label: str) -> str:
        """
        Canonical key of a category label (or a group name / exclusion).

        Every word is stemmed and stopwords are kept, so "The Office" and
        "Office" stay distinct categories.
        """
        words = tokenize(label)
        if not words:
            return label.strip().lower()
        return " ".join(self.stemmer.stem(w) for w in words)

    def term_key(self, text: str) -> str:
        """
        The full-length n-gram of a text, filtered like training input, so
        that "the rain" and "rain" match the same query term.
        """
        return " ".join(self.stems(text))

    def is_excluded(self, label: str) -> bool:
        return self.stem_label(label) in self.excludes
