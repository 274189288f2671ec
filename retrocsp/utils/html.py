"""HTML text surgery for retrofitted responses.

The bootstrap scripts only queue retrofit plans on ``window.__retroCSP``; a
page runtime that reads that queue and calls the :mod:`retrocsp.runtime`
decisions must be served alongside, or the rewritten policy goes unenforced.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence

from retrocsp.retrofit.plans import NavigateToPlan, StrictDynamicPlan, UnsafeHashesPlan

# Directives a <meta> element is not allowed to deliver
META_ILLEGAL_DIRECTIVES = frozenset({"frame-ancestors", "report-uri", "sandbox"})

# Comments are matched first so tags inside them are skipped
_META_CSP_RE = re.compile(
    r"<!--.*?-->|(<meta[^>]+?http-equiv=[\"']?Content-Security-Policy[\"']?[^>]*>)",
    re.IGNORECASE | re.DOTALL,
)
_META_REFRESH_RE = re.compile(
    r"<!--.*?-->|(<meta[^>]+?http-equiv=[\"']?refresh[\"']?[^>]*>)",
    re.IGNORECASE | re.DOTALL,
)
_CONTENT_ATTR_RE = re.compile(r"\bcontent=\"([^\"]+)\"|\bcontent='([^']+)'", re.IGNORECASE)
_REFRESH_URL_RE = re.compile(r"url\s*=\s*[\"']?\s*javascript:", re.IGNORECASE)

_HEAD_RE = re.compile(r"<head(?:\s[^>]*)?>", re.IGNORECASE)
_HTML_RE = re.compile(r"<html(?:\s[^>]*)?>", re.IGNORECASE)
_DOCTYPE_RE = re.compile(r"<!doctype[^>]*>", re.IGNORECASE)

RUNTIME_GLOBAL = "__retroCSP"


def _content_of(tag: str) -> str | None:
    match = _CONTENT_ATTR_RE.search(tag)
    if not match:
        return None
    return match.group(1) if match.group(1) is not None else match.group(2)


def strip_meta_illegal_directives(policy_text: str) -> str:
    """Drop frame-ancestors, report-uri and sandbox from a meta-delivered policy."""
    kept = []
    for token in policy_text.split(";"):
        words = token.split()
        if not words or words[0].lower() in META_ILLEGAL_DIRECTIVES:
            continue
        kept.append(" ".join(words))
    return "; ".join(kept)


def extract_meta_policies(html: str) -> tuple[str, list[str]]:
    """Remove CSP <meta> elements from ``html`` and return their policies.

    Policies come back in document order with meta-illegal directives
    stripped. Tags inside comments are left alone.
    """
    policies: list[str] = []

    def _replace(match: re.Match[str]) -> str:
        tag = match.group(1)
        if tag is None:
            return match.group(0)
        content = _content_of(tag)
        if content is None:
            return match.group(0)
        policies.append(strip_meta_illegal_directives(content))
        return ""

    return _META_CSP_RE.sub(_replace, html), policies


def collect_policy_text(header_values: Iterable[str], html: str) -> tuple[str, str | None]:
    """Join meta-delivered and header-delivered policies into one string.

    Returns the HTML with CSP meta tags removed and the combined policy text,
    or None when the response declares no policy at all.
    """
    html, policies = extract_meta_policies(html)
    policies.extend(header_values)
    if not policies:
        return html, None
    return html, ", ".join(policies)


def neutralize_meta_refresh(html: str) -> str:
    """Rename ``content`` to ``refresh-target`` on meta refresh elements.

    The browser then ignores the redirect and the runtime performs it once
    navigate-to allows the target. javascript: refreshes are left untouched.
    """

    def _replace(match: re.Match[str]) -> str:
        tag = match.group(1)
        if tag is None:
            return match.group(0)
        content = _content_of(tag)
        if content is None or _REFRESH_URL_RE.search(content):
            return match.group(0)
        return _CONTENT_ATTR_RE.sub(lambda m: "refresh-target" + m.group(0)[len("content"):], tag, count=1)

    return _META_REFRESH_RE.sub(_replace, html)


def render_bootstrap_script(plan: StrictDynamicPlan | UnsafeHashesPlan | NavigateToPlan) -> str:
    """JavaScript that hands ``plan`` to the page runtime."""
    payload = json.dumps(plan.model_dump(mode="json", by_alias=True), separators=(",", ":"))
    # keep the payload from closing the surrounding <script> element
    payload = payload.replace("</", "<\\/")
    return f"(window.{RUNTIME_GLOBAL}=window.{RUNTIME_GLOBAL}||[]).push({payload});"


def render_script_tag(code: str, nonce: str | None) -> str:
    nonce_attr = f' nonce="{nonce}"' if nonce else ""
    return f"<script{nonce_attr}>{code}</script>"


def inject_head_scripts(html: str, nonce: str | None, scripts: Sequence[str]) -> str:
    """Insert ``scripts`` as the first children of <head>, tagged with ``nonce``.

    Falls back to after <html>, after the doctype, or the very start.
    """
    if not scripts:
        return html
    block = "".join(f"\n\t{render_script_tag(code, nonce)}" for code in scripts)
    for pattern in (_HEAD_RE, _HTML_RE, _DOCTYPE_RE):
        match = pattern.search(html)
        if match:
            return html[: match.end()] + block + html[match.end():]
    return block.lstrip("\n") + html
