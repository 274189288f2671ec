"""Source-expression classification helpers."""

from __future__ import annotations

import re
from collections.abc import Iterable

_BASE64_VALUE = r"[A-Za-z0-9+/\-_]+={0,2}"

NONCE_SOURCE_RE = re.compile(rf"^'nonce-{_BASE64_VALUE}'$", re.IGNORECASE)
HASH_SOURCE_RE = re.compile(rf"^'(?P<algorithm>sha(?:256|384|512))-(?P<digest>{_BASE64_VALUE})'$", re.IGNORECASE)
SCHEME_SOURCE_RE = re.compile(r"^(?P<scheme>[A-Za-z][A-Za-z0-9+\-.]*):$")

SELF = "'self'"
NONE = "'none'"
UNSAFE_INLINE = "'unsafe-inline'"
UNSAFE_EVAL = "'unsafe-eval'"
UNSAFE_HASHES = "'unsafe-hashes'"
STRICT_DYNAMIC = "'strict-dynamic'"
REPORT_SAMPLE = "'report-sample'"

# Keyword sources that survive the strict-dynamic host/scheme strip
_STRICT_DYNAMIC_KEYWORDS = frozenset({
    UNSAFE_INLINE,
    UNSAFE_EVAL,
    UNSAFE_HASHES,
    STRICT_DYNAMIC,
    REPORT_SAMPLE,
})


def is_nonce_source(source: str) -> bool:
    return NONCE_SOURCE_RE.match(source) is not None


def is_hash_source(source: str) -> bool:
    return HASH_SOURCE_RE.match(source) is not None


def nonce_source(nonce: str) -> str:
    """Render a nonce value as a source expression."""
    return f"'nonce-{nonce}'"


def has_source(sources: Iterable[str], token: str) -> bool:
    """Case-insensitive membership test for a source set."""
    token = token.lower()
    return any(source.lower() == token for source in sources)


def allows_all_inline_scripts(sources: Iterable[str]) -> bool:
    """Return True if the source list allows every inline script.

    A list does so when it contains 'unsafe-inline' and no nonce source, hash
    source or 'strict-dynamic' (those make browsers ignore 'unsafe-inline').
    """
    allow_all_inline = False
    for source in sources:
        if is_nonce_source(source) or is_hash_source(source) or source.lower() == STRICT_DYNAMIC:
            return False
        if source.lower() == UNSAFE_INLINE:
            allow_all_inline = True
    return allow_all_inline


def is_retained_by_strict_dynamic(source: str) -> bool:
    """Nonce, hash and script keyword sources are kept when 'strict-dynamic' applies."""
    return is_nonce_source(source) or is_hash_source(source) or source.lower() in _STRICT_DYNAMIC_KEYWORDS
