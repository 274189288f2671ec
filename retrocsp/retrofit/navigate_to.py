"""'navigate-to' retrofitting."""

from __future__ import annotations

import structlog

from retrocsp.policy.model import ContentSecurityPolicy
from retrocsp.policy.nonce import NonceFactory, generate_nonce
from retrocsp.retrofit.plans import NavigateToPlan, RetrofitResult

logger = structlog.get_logger()


def retrofit(csp: ContentSecurityPolicy, nonce_factory: NonceFactory = generate_nonce) -> RetrofitResult:
    """Collect navigate-to sets and mirror them into form-action.

    form-action is enforced natively, so copying navigate-to there covers form
    submissions; links, meta refresh and window.open are left to the runtime.
    """
    navigate_to_directives: list[list[str]] = []
    policies = []
    for policy in csp.policies:
        if "navigate-to" not in policy:
            policies.append(policy)
            continue
        if "form-action" not in policy:
            policy = policy.with_sources("form-action", policy["navigate-to"])
        navigate_to_directives.append(list(policy["navigate-to"]))
        policies.append(policy)

    if not navigate_to_directives:
        return RetrofitResult(csp, None)

    logger.debug("navigate_to_retrofitted", policies=len(navigate_to_directives))
    return RetrofitResult(
        csp.with_policies(policies),
        NavigateToPlan(navigate_to_directives=navigate_to_directives),
    )
