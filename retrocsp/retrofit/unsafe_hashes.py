"""'unsafe-hashes' retrofitting.

Collects the hash allow-list of every policy that restricts inline event
handlers. The page runtime hashes each candidate handler (or javascript: URL)
and runs it only if every policy's list contains its digest.
"""

from __future__ import annotations

import structlog

from retrocsp.policy.hashes import HashSource
from retrocsp.policy.model import ContentSecurityPolicy
from retrocsp.policy.nonce import NonceFactory, generate_nonce
from retrocsp.policy.sources import UNSAFE_HASHES, allows_all_inline_scripts, has_source
from retrocsp.retrofit.plans import RetrofitResult, UnsafeHashesPlan

logger = structlog.get_logger()

_JAVASCRIPT_SCHEME = "javascript:"


def _form_action_directive(policy) -> str | None:
    if "form-action" in policy:
        return "form-action"
    if "navigate-to" in policy:
        return "navigate-to"
    return None


def retrofit(csp: ContentSecurityPolicy, nonce_factory: NonceFactory = generate_nonce) -> RetrofitResult:
    hash_source_found = False
    hash_source_lists: list[list[HashSource]] = []
    restrictive_form_action = False

    for policy in csp.policies:
        directive = policy.script_attribute_directive()
        if directive is not None:
            sources = policy[directive]
            if allows_all_inline_scripts(sources):
                # this policy allows any inline code
                continue

            unsafe_hashes = has_source(sources, UNSAFE_HASHES)
            hash_sources = []
            for source in sources:
                hash_source = HashSource.parse(source)
                if hash_source is None:
                    continue
                hash_source_found = True
                if unsafe_hashes:
                    hash_sources.append(hash_source)
            hash_source_lists.append(hash_sources)

        form_action = _form_action_directive(policy)
        if form_action and not has_source(policy[form_action], _JAVASCRIPT_SCHEME):
            restrictive_form_action = True

    if not hash_source_found:
        return RetrofitResult(csp, None)

    plan = UnsafeHashesPlan(
        hash_source_lists=hash_source_lists,
        restrictive_form_action=restrictive_form_action,
    )
    logger.debug(
        "unsafe_hashes_retrofitted",
        lists=len(hash_source_lists),
        restrictive_form_action=restrictive_form_action,
    )
    return RetrofitResult(csp, plan)
