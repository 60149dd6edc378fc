"""Text canonicalization shared by the historical and exact stages."""

from __future__ import annotations

import hashlib
import re

from storydedup.core.models import Post

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str | None) -> str:
    """Lowercase, strip punctuation and collapse whitespace.

    Args:
        text: Raw title, description or body.

    Returns:
        Canonical form used for equality and similarity tests.
    """
    if not text:
        return ""
    stripped = _PUNCTUATION.sub("", text.lower())
    return _WHITESPACE.sub(" ", stripped).strip()


def post_body(post: Post) -> str:
    """Longest available body of a post: full text, else description."""
    return post.full_text or post.description or ""


def content_fingerprint(post: Post) -> str:
    """MD5 of the whitespace-collapsed, lowercased post body.

    Returns an empty string for posts without a body so they never
    match each other by content.
    """
    body = _WHITESPACE.sub(" ", post_body(post).lower()).strip()
    if not body:
        return ""
    return hashlib.md5(body.encode("utf-8")).hexdigest()
