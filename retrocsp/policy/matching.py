"""CSP3 URL to source-expression matching.

Implements the CSP Level 3 "Does url match expression in origin" algorithm
for host sources (scheme, host, port and path parts) plus scheme sources,
the bare ``*`` source and ``'self'``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from urllib.parse import SplitResult, unquote, urlsplit

from retrocsp.policy.sources import NONE, SCHEME_SOURCE_RE, SELF

_PCHAR = r"(?:[A-Za-z0-9\-._~!$&'()*+,=:@]|%[A-Fa-f0-9]{2})"

HOST_SOURCE_RE = re.compile(
    r"^(?:(?P<scheme>[A-Za-z][A-Za-z0-9+\-.]*)://)?"
    r"(?P<host>\*|(?:\*\.)?[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*)"
    r"(?::(?P<port>[0-9]+|\*))?"
    rf"(?P<path>/(?:{_PCHAR}+(?:/{_PCHAR}*)*)?)?$"
)

_IPV4_RE = re.compile(r"^(?:(?:25[0-5]|2[0-4][0-9]|1[0-9]{2}|[1-9]?[0-9])\.){3}(?:25[0-5]|2[0-4][0-9]|1[0-9]{2}|[1-9]?[0-9])$")

_LOOPBACK = "127.0.0.1"

# https://url.spec.whatwg.org/#default-port; None means "no port at all"
_DEFAULT_PORTS: dict[str, str | None] = {
    "ftp": "21",
    "file": None,
    "http": "80",
    "ws": "80",
    "https": "443",
    "wss": "443",
}


@dataclass(frozen=True)
class HostSource:
    """Parsed parts of a host-source expression."""

    host: str
    scheme: str | None = None
    port: str | None = None
    path: str | None = None


def default_port(scheme: str) -> str | None:
    return _DEFAULT_PORTS.get(scheme.lower(), "")


def parse_host_source(expression: str) -> HostSource | None:
    """Split a host-source expression; returns None if it is malformed."""
    match = HOST_SOURCE_RE.match(expression)
    if not match:
        return None
    return HostSource(
        host=match.group("host"),
        scheme=match.group("scheme"),
        port=match.group("port"),
        path=match.group("path"),
    )


def is_ipv4_address(host: str) -> bool:
    return _IPV4_RE.match(host) is not None


def match_schemes(expression_scheme: str, url_scheme: str) -> bool:
    """Scheme match including the http->https and ws->wss upgrades."""
    a = expression_scheme.lower()
    b = url_scheme.lower()
    return (
        a == b
        or (a == "http" and b == "https")
        or (a == "ws" and b in ("ws", "http", "https"))
        or (a == "wss" and b == "https")
    )


def match_hosts(expression_host: str, url_host: str) -> bool:
    a = expression_host.lower()
    b = url_host.lower()
    if a == "*":
        return True
    if a.startswith("*."):
        # literal IPs are never reachable through a wildcard
        if is_ipv4_address(b) and b != _LOOPBACK:
            return False
        return b.endswith(a[1:])
    if a != b:
        return False
    if a == _LOOPBACK:
        return True
    return not is_ipv4_address(a)


def match_ports(expression_port: str | None, url_port: str, url_scheme: str) -> bool:
    """Port match; ``url_port`` is the empty string when the URL has none."""
    if not expression_port:
        return url_port == "" or url_port == default_port(url_scheme)
    if expression_port == "*":
        return True
    if expression_port == url_port:
        return True
    if not url_port:
        return expression_port == default_port(url_scheme)
    return False


def match_paths(expression_path: str | None, url_path: str) -> bool:
    if not expression_path:
        return True
    if expression_path == "/" and not url_path:
        return True
    exact = not expression_path.endswith("/")
    expression_pieces = expression_path.split("/")
    url_pieces = url_path.split("/")
    if len(expression_pieces) > len(url_pieces):
        return False
    if exact and len(expression_pieces) != len(url_pieces):
        return False
    if not exact:
        expression_pieces.pop()
    return all(unquote(a) == unquote(b) for a, b in zip(expression_pieces, url_pieces))


def split_url(url: str | SplitResult) -> SplitResult | None:
    """Split an absolute URL; None if it has no scheme or an invalid port."""
    if isinstance(url, SplitResult):
        return url
    try:
        parts = urlsplit(url)
        # .port raises on out-of-range or non-numeric ports
        parts.port
    except ValueError:
        return None
    if not parts.scheme:
        return None
    return parts


def _port_of(parts: SplitResult) -> str:
    port = parts.port
    return "" if port is None else str(port)


def _host_of(parts: SplitResult) -> str:
    """host[:port] with the scheme's default port omitted."""
    host = parts.hostname or ""
    port = _port_of(parts)
    if port and port != default_port(parts.scheme):
        return f"{host}:{port}"
    return host


def serialize_origin(url: str | SplitResult) -> str | None:
    parts = split_url(url)
    if parts is None or not parts.hostname:
        return None
    return f"{parts.scheme.lower()}://{_host_of(parts)}"


def _path_of(parts: SplitResult) -> str:
    if not parts.path and parts.netloc:
        return "/"
    return parts.path


def url_matches_expression(url: str | SplitResult, expression: str, origin: str | SplitResult) -> bool:
    """Does ``url`` match ``expression`` for a document at ``origin``?

    Unparseable URLs or origins never match.
    """
    target = split_url(url)
    document = split_url(origin)
    if target is None or document is None:
        return False

    if expression == "*":
        if target.scheme in ("ftp", "http", "https") or target.scheme == document.scheme:
            return True

    scheme_source = SCHEME_SOURCE_RE.match(expression)
    if scheme_source:
        return match_schemes(scheme_source.group("scheme"), target.scheme)

    host_source = parse_host_source(expression)
    if host_source is not None:
        if not target.hostname:
            return False
        expected_scheme = host_source.scheme or document.scheme
        if not match_schemes(expected_scheme, target.scheme):
            return False
        if not match_hosts(host_source.host, target.hostname):
            return False
        if not match_ports(host_source.port, _port_of(target), target.scheme):
            return False
        return match_paths(host_source.path, _path_of(target))

    if expression.lower() == SELF:
        if not target.hostname:
            return False
        if serialize_origin(document) == serialize_origin(target):
            return True
        if _host_of(document) == _host_of(target) and target.scheme in ("https", "wss"):
            return True
    return False


def url_matches_source_set(url: str | SplitResult, sources: Iterable[str], origin: str | SplitResult) -> bool:
    """Disjunction over one policy's source set; empty or 'none' matches nothing."""
    sources = tuple(sources)
    if not sources:
        return False
    if len(sources) == 1 and sources[0].lower() == NONE:
        return False
    return any(url_matches_expression(url, expression, origin) for expression in sources)


def is_allowed_navigation_target(
    url: str | SplitResult,
    source_sets: Sequence[Iterable[str]],
    origin: str | SplitResult,
) -> bool:
    """Conjunction over policies: every navigate-to set must accept ``url``."""
    return all(url_matches_source_set(url, sources, origin) for sources in source_sets)
