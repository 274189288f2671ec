"""Hash-source parsing and matching for inline code."""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Callable, Iterable, Sequence

from pydantic import BaseModel, ConfigDict

from retrocsp.policy.sources import HASH_SOURCE_RE

DigestFunction = Callable[[str, str], str]

SUPPORTED_ALGORITHMS = ("sha256", "sha384", "sha512")


class HashSource(BaseModel):
    """A hash source expression, e.g. ``'sha256-<base64>'``."""

    model_config = ConfigDict(frozen=True)

    algorithm: str
    digest: str

    @classmethod
    def parse(cls, source: str) -> HashSource | None:
        """Parse a quoted hash source; returns None for anything else."""
        match = HASH_SOURCE_RE.match(source)
        if not match:
            return None
        return cls(algorithm=match.group("algorithm").lower(), digest=match.group("digest"))

    def __str__(self) -> str:
        return f"{self.algorithm}-{self.digest}"


def compute_digest(algorithm: str, text: str) -> str:
    """Base64 digest of the UTF-8 encoding of ``text``."""
    digest = hashlib.new(algorithm.lower(), text.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def _normalize_digest(value: str) -> str:
    # base64url and base64 spellings of the same digest compare equal
    return value.replace("-", "+").replace("_", "/")


def matches_hash_sources(
    code: str,
    hash_sources: Iterable[HashSource],
    digest: DigestFunction = compute_digest,
    cache: dict[str, str] | None = None,
) -> bool:
    """Return True if ``code`` matches any of ``hash_sources``.

    Digests are computed lazily, at most once per algorithm; pass ``cache``
    to share them between several lists for the same candidate.
    """
    if cache is None:
        cache = {}
    for source in hash_sources:
        if source.algorithm not in SUPPORTED_ALGORITHMS:
            continue
        if source.algorithm not in cache:
            cache[source.algorithm] = digest(source.algorithm, code)
        if _normalize_digest(cache[source.algorithm]) == _normalize_digest(source.digest):
            return True
    return False


def is_allowed_script(
    code: str,
    hash_source_lists: Sequence[Sequence[HashSource]],
    digest: DigestFunction = compute_digest,
) -> bool:
    """Every per-policy list must accept ``code``; an empty list accepts nothing."""
    cache: dict[str, str] = {}
    return all(matches_hash_sources(code, hash_sources, digest, cache) for hash_sources in hash_source_lists)
