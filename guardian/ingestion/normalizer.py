"""
Text canonicalization and content fingerprints.

Two fetches of the same content must hash identically even when markup,
punctuation, case or spacing differ, so diffing compares canonical text
rather than raw fields. Everything here is pure.
"""

import hashlib
import re

from guardian.ingestion.schemas import FetchedItem, NormalizedItem

# Text fields in the order they are concatenated before hashing
FINGERPRINT_FIELDS = (
    "title",
    "main_text",
    "caption",
    "description",
    "comment_text",
    "ocr_text",
    "transcript",
)

_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^\w\s]")


def normalize_text(text: str) -> str:
    """
    Canonicalize text for hashing.

    Lowercases, collapses whitespace runs to one space, drops every
    character that is neither a word character nor whitespace, then trims.
    Word characters are Unicode-aware, so non-Latin scripts survive.

    >>> normalize_text("  Hello,\\n  World! ")
    'hello world'
    """
    text = text.lower()
    text = _WHITESPACE_RE.sub(" ", text)
    text = _NON_WORD_RE.sub("", text)
    return text.strip()


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def combined_text(item: FetchedItem) -> str:
    """Non-empty text fields joined with single spaces, in fingerprint order."""
    parts = [getattr(item, name) for name in FINGERPRINT_FIELDS]
    return " ".join(part for part in parts if part)


def fingerprint(item: FetchedItem) -> tuple[str, str, str]:
    """
    Compute ``(normalized_text, normalized_text_hash, content_key)``.

    ``content_key`` additionally binds the hash to the item's identity: the
    URL when there is one, otherwise the external id. An item with no text
    at all still gets a valid fingerprint (the hash of the empty string).
    """
    normalized = normalize_text(combined_text(item))
    text_hash = sha256_hex(normalized)
    content_key = sha256_hex(normalized + (item.url or item.external_id))
    return normalized, text_hash, content_key


def normalize_item(item: FetchedItem) -> NormalizedItem:
    """Attach fingerprints to a fetched item."""
    _, text_hash, content_key = fingerprint(item)
    return NormalizedItem(
        **item.model_dump(),
        normalized_text_hash=text_hash,
        content_key=content_key,
    )
