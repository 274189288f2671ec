"""Host-side enforcement decisions for retrofitted policies.

The page runtime observes element creation, attribute mutations and
navigation attempts and asks :class:`RetrofitEnforcer` what to do. The
enforcer only works on data: it never touches a DOM.
"""

from __future__ import annotations

import enum
import itertools
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from urllib.parse import urljoin

import structlog

from retrocsp.policy.hashes import DigestFunction, compute_digest, is_allowed_script
from retrocsp.policy.matching import is_allowed_navigation_target, split_url
from retrocsp.retrofit.plans import NavigateToPlan, StrictDynamicPlan, UnsafeHashesPlan

logger = structlog.get_logger()

_JAVASCRIPT_PREFIX = "javascript:"
_EVENT_HANDLER_RE = re.compile(r"^on[a-z]+$")
_REFRESH_TARGET_RE = re.compile(r"^(\d+)\s*;\s*url\s*=\s*(.+)$", re.IGNORECASE)

# element tag -> attribute that may carry a javascript: URL
_JAVASCRIPT_URL_ATTRIBUTES = {
    "a": "href",
    "frame": "src",
    "iframe": "src",
    "form": "action",
}


class Verdict(str, enum.Enum):
    PASSTHROUGH = "passthrough"  # not retrofitted, browser default applies
    ALLOW = "allow"
    BLOCK = "block"


@dataclass(frozen=True)
class AttributeDecision:
    verdict: Verdict
    code: str | None = None
    target: str | None = None
    function_name: str | None = None
    delay_seconds: int | None = None

    @property
    def allowed(self) -> bool:
        return self.verdict is not Verdict.BLOCK


PASSTHROUGH = AttributeDecision(Verdict.PASSTHROUGH)
BLOCK = AttributeDecision(Verdict.BLOCK)


class ScriptNamer:
    """Hands out unique names for wrapper functions of retrofitted handlers.

    Owned by one page; safe to share between threads.
    """

    def __init__(self, prefix: str = "globalFunction") -> None:
        self._prefix = prefix
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def next_name(self) -> str:
        with self._lock:
            return f"{self._prefix}{next(self._counter)}"


def _is_javascript_url(value: str) -> bool:
    return value[: len(_JAVASCRIPT_PREFIX)].lower() == _JAVASCRIPT_PREFIX


class RetrofitEnforcer:
    """Decision functions for one page, built from its retrofit plans."""

    def __init__(
        self,
        plans: Iterable[StrictDynamicPlan | UnsafeHashesPlan | NavigateToPlan],
        document_origin: str,
        digest: DigestFunction = compute_digest,
        namer: ScriptNamer | None = None,
    ) -> None:
        self.document_origin = document_origin
        self.digest = digest
        self.namer = namer or ScriptNamer()
        self.strict_dynamic: StrictDynamicPlan | None = None
        self.unsafe_hashes: UnsafeHashesPlan | None = None
        self.navigate_to: NavigateToPlan | None = None
        for plan in plans:
            if isinstance(plan, StrictDynamicPlan):
                self.strict_dynamic = plan
            elif isinstance(plan, UnsafeHashesPlan):
                self.unsafe_hashes = plan
            elif isinstance(plan, NavigateToPlan):
                self.navigate_to = plan

    # ── predicates ───────────────────────────────────────────────────────

    def is_allowed_script(self, code: str) -> bool:
        if self.unsafe_hashes is None:
            return True
        return is_allowed_script(code, self.unsafe_hashes.hash_source_lists, self.digest)

    def is_allowed_javascript_url(self, value: str) -> bool:
        """A javascript: URL may be hashed with or without its scheme prefix."""
        return self.is_allowed_script(value) or self.is_allowed_script(value[len(_JAVASCRIPT_PREFIX):])

    def is_allowed_navigation_target(self, url: str) -> bool:
        if self.navigate_to is None:
            return True
        return is_allowed_navigation_target(url, self.navigate_to.navigate_to_directives, self.document_origin)

    def _resolve(self, target: str) -> str | None:
        """Resolve ``target`` against the document; None if it is not a usable URL."""
        try:
            resolved = urljoin(self.document_origin, target)
        except ValueError:
            return None
        if split_url(resolved) is None:
            return None
        return resolved

    # ── capability interface ─────────────────────────────────────────────

    def on_element_created(self, tag: str) -> str | None:
        """Nonce to stamp on a newly created element, if any."""
        if self.strict_dynamic is not None and tag.lower() == "script":
            return self.strict_dynamic.nonce
        return None

    def on_attribute_mutated(self, tag: str, attribute: str, value: str | None) -> AttributeDecision:
        tag = tag.lower()
        if value is None:
            return PASSTHROUGH

        if self.unsafe_hashes is not None:
            if _EVENT_HANDLER_RE.match(attribute):
                return self._decide_event_handler(value)
            if _JAVASCRIPT_URL_ATTRIBUTES.get(tag) == attribute and _is_javascript_url(value):
                return self._decide_javascript_url(tag, value)

        if self.navigate_to is not None:
            if tag == "a" and attribute == "href" and not _is_javascript_url(value):
                return self._decide_navigation(value)
            if tag == "meta" and attribute == "refresh-target":
                return self._decide_meta_refresh(value)

        return PASSTHROUGH

    def on_navigation_attempt(self, target: str) -> AttributeDecision:
        """Decide a window.open() call."""
        if target == "":
            return PASSTHROUGH
        if _is_javascript_url(target):
            if self.unsafe_hashes is None:
                return PASSTHROUGH
            return self._decide_javascript_url("window", target)
        if self.navigate_to is None:
            return PASSTHROUGH
        return self._decide_navigation(target)

    # ── decisions ────────────────────────────────────────────────────────

    def _decide_event_handler(self, code: str) -> AttributeDecision:
        if not self.is_allowed_script(code):
            logger.info("inline_handler_blocked", code_length=len(code))
            return BLOCK
        return AttributeDecision(Verdict.ALLOW, code=code, function_name=self.namer.next_name())

    def _decide_javascript_url(self, tag: str, value: str) -> AttributeDecision:
        if tag == "form" and self.unsafe_hashes.restrictive_form_action:
            return BLOCK
        if not self.is_allowed_javascript_url(value):
            logger.info("javascript_url_blocked", tag=tag)
            return BLOCK
        return AttributeDecision(
            Verdict.ALLOW,
            code=value[len(_JAVASCRIPT_PREFIX):],
            function_name=self.namer.next_name(),
        )

    def _decide_navigation(self, target: str, delay_seconds: int | None = None) -> AttributeDecision:
        resolved = self._resolve(target)
        if resolved is None or not self.is_allowed_navigation_target(resolved):
            logger.info("navigation_blocked", target=target)
            return BLOCK
        return AttributeDecision(Verdict.ALLOW, target=resolved, delay_seconds=delay_seconds)

    def _decide_meta_refresh(self, value: str) -> AttributeDecision:
        match = _REFRESH_TARGET_RE.match(value.strip())
        if not match:
            return PASSTHROUGH
        return self._decide_navigation(match.group(2).strip(), delay_seconds=int(match.group(1)))
