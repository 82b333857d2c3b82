"""Content addressing for downloaded artifacts."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ContentDigest:
    """Dedup key of an artifact: lowercase SHA-256 hex plus byte length."""

    sha256: str
    size: int


def compute_digest(content: bytes) -> ContentDigest:
    """Hash ``content`` in one pass."""

    return ContentDigest(sha256=hashlib.sha256(content).hexdigest(), size=len(content))
