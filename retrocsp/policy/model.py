"""CSP policy model: parsing, directive fallback and serialization.

A raw policy string may hold several comma-separated policies. Each becomes
an immutable :class:`Policy`; all of them apply conjunctively, so code or a
URL is allowed only if every policy allows it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from retrocsp.policy.nonce import generate_nonce
from retrocsp.policy.sources import (
    NONE,
    STRICT_DYNAMIC,
    allows_all_inline_scripts,
    nonce_source,
)

SourceSet = tuple[str, ...]

SCRIPT_ELEMENT_FALLBACK = ("script-src-elem", "script-src", "default-src")
SCRIPT_ATTRIBUTE_FALLBACK = ("script-src-attr", "script-src", "default-src")


def ordered_set(sources: Iterable[str]) -> SourceSet:
    """Deduplicate while preserving first-seen order."""
    return tuple(dict.fromkeys(sources))


@dataclass(frozen=True)
class Policy:
    """One policy: an ordered directive -> source set mapping."""

    directives: Mapping[str, SourceSet] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen = {name: ordered_set(sources) for name, sources in self.directives.items()}
        object.__setattr__(self, "directives", MappingProxyType(frozen))

    def __contains__(self, name: object) -> bool:
        return name in self.directives

    def __iter__(self) -> Iterator[str]:
        return iter(self.directives)

    def __len__(self) -> int:
        return len(self.directives)

    def __getitem__(self, name: str) -> SourceSet:
        return self.directives[name]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Policy):
            return NotImplemented
        return list(self.directives.items()) == list(other.directives.items())

    def __hash__(self) -> int:
        return hash(tuple(self.directives.items()))

    def get(self, name: str, default: SourceSet | None = None) -> SourceSet | None:
        return self.directives.get(name, default)

    def items(self):
        return self.directives.items()

    def with_sources(self, name: str, sources: Iterable[str]) -> Policy:
        """Return a copy with ``name`` set to ``sources``.

        An existing directive keeps its position; a new one is appended.
        """
        updated = dict(self.directives)
        updated[name] = ordered_set(sources)
        return Policy(updated)

    def _resolve(self, fallback: tuple[str, ...]) -> str | None:
        for name in fallback:
            if name in self.directives:
                return name
        return None

    def script_element_directive(self) -> str | None:
        """Directive governing <script> elements, following CSP fallback."""
        return self._resolve(SCRIPT_ELEMENT_FALLBACK)

    def script_attribute_directive(self) -> str | None:
        """Directive governing inline event handlers and javascript: URLs."""
        return self._resolve(SCRIPT_ATTRIBUTE_FALLBACK)

    def serialize(self) -> str:
        parts = []
        for name, sources in self.directives.items():
            if sources:
                parts.append(f"{name} {' '.join(sources)}")
            else:
                parts.append(name)
        return "; ".join(parts)


def _parse_policy(segment: str) -> Policy | None:
    directives: dict[str, SourceSet] = {}
    for token in segment.split(";"):
        words = token.split()
        if not words:
            continue
        name = words[0].lower()
        if name in directives:
            # first occurrence wins
            continue
        directives[name] = ordered_set(words[1:])
    if not directives:
        return None
    return Policy(directives)


def _materialize_script_src(policy: Policy) -> Policy:
    """Clone default-src into script-src when default-src governs scripts.

    'strict-dynamic' is moved off default-src so only script-src carries it.
    """
    if policy.script_element_directive() != "default-src":
        return policy
    default_src = policy["default-src"]
    remaining = [source for source in default_src if source.lower() != STRICT_DYNAMIC]
    return policy.with_sources("default-src", remaining).with_sources("script-src", default_src)


def parse_policies(text: str) -> tuple[Policy, ...]:
    """Parse a raw, possibly multi-policy CSP string.

    Never raises: unknown tokens are kept as opaque source expressions that
    simply fail every match.

    Example:
        >>> [p.serialize() for p in parse_policies("default-src 'self', script-src https:")]
        ["default-src 'self'; script-src 'self'", 'script-src https:']
    """
    if not text:
        return ()
    policies = []
    for segment in text.split(","):
        policy = _parse_policy(segment)
        if policy is not None:
            policies.append(_materialize_script_src(policy))
    return tuple(policies)


def serialize_policies(policies: Iterable[Policy]) -> str:
    """Render policies as a single Content-Security-Policy header value."""
    return ", ".join(policy.serialize() for policy in policies)


def _add_retrofitting_nonce(policy: Policy, nonce: str) -> Policy | None:
    directive = policy.script_element_directive()
    if directive is None or allows_all_inline_scripts(policy[directive]):
        return None
    sources = [source for source in policy[directive] if source.lower() != NONE]
    sources.append(nonce_source(nonce))
    return policy.with_sources(directive, sources)


@dataclass(frozen=True)
class ContentSecurityPolicy:
    """All policies of one response plus the shared retrofitting nonce.

    The retrofitting nonce is set iff at least one policy restricts inline
    scripts; it is what the injected bootstrap scripts are tagged with.
    """

    policies: tuple[Policy, ...] = ()
    retrofitting_nonce: str | None = None

    @classmethod
    def from_string(
        cls,
        text: str,
        nonce_factory: Callable[[], str] = generate_nonce,
    ) -> ContentSecurityPolicy | None:
        """Parse ``text`` and authorise the retrofitting nonce.

        Returns None when no policy is present, meaning nothing to retrofit.
        """
        policies = parse_policies(text)
        if not policies:
            return None

        nonce = nonce_factory()
        updated = []
        nonce_added = False
        for policy in policies:
            with_nonce = _add_retrofitting_nonce(policy, nonce)
            if with_nonce is None:
                updated.append(policy)
            else:
                updated.append(with_nonce)
                nonce_added = True

        return cls(policies=tuple(updated), retrofitting_nonce=nonce if nonce_added else None)

    def with_policies(self, policies: Iterable[Policy]) -> ContentSecurityPolicy:
        return replace(self, policies=tuple(policies))

    def header_value(self) -> str:
        return serialize_policies(self.policies)

    def __str__(self) -> str:
        return self.header_value()
