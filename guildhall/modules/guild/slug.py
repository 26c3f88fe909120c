"""Slug derivation for guild names."""

from __future__ import annotations

import re

SLUG_MAX_LENGTH = 100

_WHITESPACE_RE = re.compile(r"\s+")
_DISALLOWED_RE = re.compile(r"[^a-z0-9-]")


def slugify(value: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """
    Derive a URL-safe slug.

    Lowercase, collapse each whitespace run to a single ``-``, drop anything
    outside ``[a-z0-9-]``, then truncate. The result may be empty (e.g. a
    name made only of punctuation); callers decide whether that is valid.

    >>> slugify("Cosmic Explorers")
    'cosmic-explorers'
    """
    slug = _WHITESPACE_RE.sub("-", value.lower())
    slug = _DISALLOWED_RE.sub("", slug)
    return slug[:max_length]
