"""Retrofitting strategies for strict-dynamic, unsafe-hashes and navigate-to."""

from retrocsp.retrofit.plans import (
    NavigateToPlan,
    RetrofitOutcome,
    RetrofitPlan,
    RetrofitResult,
    RetrofitterKind,
    StrictDynamicPlan,
    UnsafeHashesPlan,
)

__all__ = [
    "NavigateToPlan",
    "RetrofitOutcome",
    "RetrofitPlan",
    "RetrofitResult",
    "RetrofitterKind",
    "StrictDynamicPlan",
    "UnsafeHashesPlan",
]
