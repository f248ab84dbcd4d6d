"""
Text normalization and content addressing for semantic dedup.

Two messages are exact duplicates when their normalized texts are equal; the
SHA-256 digest of the normalized text is the content address stored on every
cluster member.

Normalization steps, in order:
  1. Unicode NFKC (folds full-width forms, ligatures, non-breaking spaces)
  2. Lower-case
  3. Drop every character that is not a letter of the configured alphabet,
     an ASCII digit or whitespace
  4. Collapse whitespace runs to a single space and trim

Both functions are pure: no I/O, no process state, stable across restarts.

Exports: normalize_text, compute_digest, DEFAULT_ALPHABET, DIGEST_LENGTH
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from functools import lru_cache

# Latin + Cyrillic, matching the school's client base
DEFAULT_ALPHABET = "a-zа-яё"

# SHA-256 hex digest length
DIGEST_LENGTH = 64

_WHITESPACE_RE = re.compile(r"\s+")


@lru_cache(maxsize=8)
def _disallowed_re(alphabet: str) -> re.Pattern[str]:
    return re.compile(f"[^{alphabet}0-9\\s]")


def normalize_text(text: str, alphabet: str = DEFAULT_ALPHABET) -> str:
    """Return the normalized form of *text*.

    Args:
        text:     Raw message text.
        alphabet: Character-class body of letters to keep (regex syntax,
                  lower-case), e.g. ``"a-zа-яё"``.

    Example:
        >>> normalize_text(" Hello,  World! ")
        'hello world'
        >>> normalize_text("Сколько стоит курс?")
        'сколько стоит курс'
    """
    text = unicodedata.normalize("NFKC", text or "").lower()
    text = _disallowed_re(alphabet).sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def compute_digest(normalized_text: str) -> str:
    """Return the SHA-256 hex digest of the UTF-8 bytes of *normalized_text*.

    Example:
        >>> len(compute_digest("hello world"))
        64
    """
    return hashlib.sha256(normalized_text.encode("utf-8")).hexdigest()
