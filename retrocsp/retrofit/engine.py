"""Sequential retrofitting pipeline."""

from __future__ import annotations

from collections.abc import Callable, Iterable

import structlog

from retrocsp.policy.model import ContentSecurityPolicy
from retrocsp.policy.nonce import NonceFactory, generate_nonce
from retrocsp.retrofit import navigate_to, strict_dynamic, unsafe_hashes
from retrocsp.retrofit.plans import RetrofitOutcome, RetrofitResult, RetrofitterKind

logger = structlog.get_logger()

Retrofitter = Callable[[ContentSecurityPolicy, NonceFactory], RetrofitResult]

# Execution order matters: unsafe-hashes inspects form-action before
# navigate-to synthesizes it, and both see the strict-dynamic edits.
RETROFITTERS: dict[RetrofitterKind, Retrofitter] = {
    RetrofitterKind.STRICT_DYNAMIC: strict_dynamic.retrofit,
    RetrofitterKind.UNSAFE_HASHES: unsafe_hashes.retrofit,
    RetrofitterKind.NAVIGATE_TO: navigate_to.retrofit,
}


def retrofit_csp(
    csp: ContentSecurityPolicy,
    enabled: Iterable[RetrofitterKind | str] | None = None,
    nonce_factory: NonceFactory = generate_nonce,
) -> RetrofitOutcome:
    """Run the enabled retrofitters in their fixed order.

    Each retrofitter receives the policy produced by the previous one; the
    input ``csp`` is never modified.
    """
    kinds = set(RETROFITTERS) if enabled is None else {RetrofitterKind(kind) for kind in enabled}
    plans = []
    for kind, retrofitter in RETROFITTERS.items():
        if kind not in kinds:
            continue
        csp, plan = retrofitter(csp, nonce_factory)
        if plan is not None:
            plans.append(plan)

    header = csp.header_value()
    logger.info(
        "csp_retrofitted",
        policies=len(csp.policies),
        plans=[plan.kind.value for plan in plans],
        retrofitting_nonce=csp.retrofitting_nonce is not None,
    )
    return RetrofitOutcome(csp=csp, plans=tuple(plans), header=header)
