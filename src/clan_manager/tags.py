"""
Player and clan tag normalization.

Tags are the unique identifiers of the stats API (``#2PP``, ``#9GQ0UVJ``).
Users paste them with or without the leading ``#``, in lower case and with
the letter ``O`` where the API only ever uses the digit ``0``. This module
turns such input into the canonical form and URL-encodes tags for request
paths.
"""

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

from .exceptions import ValidationError

TAG_ALPHABET = "0289CGJLPQRUVY"
TAG_PATTERN = re.compile(rf"^#[{TAG_ALPHABET}]{{3,14}}$")


@dataclass
class TagValidationResult:
    """Result of tag validation."""

    valid: bool
    canonical_tag: Optional[str]
    error: Optional[str] = None


def validate_tag(raw_tag: str) -> TagValidationResult:
    """Validate and normalize a tag without raising."""
    if not raw_tag or not str(raw_tag).strip():
        return TagValidationResult(valid=False, canonical_tag=None, error="Tag input is empty")

    candidate = str(raw_tag).strip().upper().replace("O", "0")
    if not candidate.startswith("#"):
        candidate = "#" + candidate

    if not TAG_PATTERN.match(candidate):
        return TagValidationResult(
            valid=False,
            canonical_tag=None,
            error=f"Tag contains characters outside {TAG_ALPHABET}",
        )

    return TagValidationResult(valid=True, canonical_tag=candidate)


def normalize_tag(raw_tag: str) -> str:
    """
    Return the canonical ``#XXXX`` form of a tag.

    Raises:
        ValidationError: If the tag is empty or contains invalid characters
    """
    result = validate_tag(raw_tag)
    if not result.valid:
        raise ValidationError(
            code="invalid_tag",
            message=result.error or "Invalid tag",
            details={"raw_input": raw_tag},
        )
    return result.canonical_tag


def encode_tag(tag: str) -> str:
    """URL-encode a tag for use as a path segment (``#`` becomes ``%23``)."""
    return quote(tag, safe="")
