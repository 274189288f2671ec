"""'strict-dynamic' retrofitting.

Browsers without 'strict-dynamic' fall back to the host/scheme allow-list,
which is exactly what 'strict-dynamic' is meant to disable. The allow-list is
therefore stripped and a fresh nonce is authorised instead; the page runtime
stamps that nonce onto every <script> element it sees created.
"""

from __future__ import annotations

import structlog

from retrocsp.policy.model import ContentSecurityPolicy
from retrocsp.policy.nonce import NonceFactory, generate_nonce
from retrocsp.policy.sources import STRICT_DYNAMIC, has_source, is_retained_by_strict_dynamic, nonce_source
from retrocsp.retrofit.plans import RetrofitResult, StrictDynamicPlan

logger = structlog.get_logger()


def retrofit(csp: ContentSecurityPolicy, nonce_factory: NonceFactory = generate_nonce) -> RetrofitResult:
    strict_dynamic_nonce: str | None = None
    policies = []
    for policy in csp.policies:
        directive = policy.script_element_directive()
        if directive is None or not has_source(policy[directive], STRICT_DYNAMIC):
            policies.append(policy)
            continue

        # one nonce shared by every policy that uses 'strict-dynamic'
        if strict_dynamic_nonce is None:
            strict_dynamic_nonce = nonce_factory()
        sources = [source for source in policy[directive] if is_retained_by_strict_dynamic(source)]
        sources.append(nonce_source(strict_dynamic_nonce))
        policies.append(policy.with_sources(directive, sources))

    if strict_dynamic_nonce is None:
        return RetrofitResult(csp, None)

    logger.debug("strict_dynamic_retrofitted", policies=len(policies))
    return RetrofitResult(csp.with_policies(policies), StrictDynamicPlan(nonce=strict_dynamic_nonce))
