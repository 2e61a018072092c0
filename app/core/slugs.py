"""
Project slug generation and normalization.

A slug is both a DNS label (the project's subdomain) and the key prefix of
its artifact namespace, so it is restricted to lower-case letters, digits
and hyphens.
"""
import re

from coolname import generate_slug as _random_words

from app.core.errors import ValidationError

SLUG_MAX_LENGTH = 63  # DNS label limit
SLUG_WORDS = 3

_INVALID_CHARS = re.compile(r"[^a-z0-9-]+")
_REPEATED_HYPHENS = re.compile(r"-{2,}")
SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def normalize_slug(raw: str) -> str:
    """
    Normalize a raw string into a DNS-label-safe slug.

    Raises:
        ValidationError: If nothing usable remains after normalization
    """
    slug = _INVALID_CHARS.sub("-", (raw or "").strip().lower())
    slug = _REPEATED_HYPHENS.sub("-", slug).strip("-")
    slug = slug[:SLUG_MAX_LENGTH].strip("-")

    if not slug:
        raise ValidationError(f"Invalid slug: {raw!r}")
    return slug


def generate_slug() -> str:
    """Generate a human-readable random slug, e.g. 'brave-purple-otter'."""
    return normalize_slug(_random_words(SLUG_WORDS))


def is_valid_slug(slug: str) -> bool:
    return bool(SLUG_PATTERN.match(slug or ""))
