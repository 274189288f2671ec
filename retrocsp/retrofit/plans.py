"""Retrofit plans: the data each retrofitter hands to the page runtime."""

from __future__ import annotations

import enum
from typing import Annotated, Literal, NamedTuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from retrocsp.policy.hashes import HashSource
from retrocsp.policy.model import ContentSecurityPolicy


class RetrofitterKind(str, enum.Enum):
    """The closed set of retrofitting strategies, in execution order."""

    STRICT_DYNAMIC = "strict-dynamic"
    UNSAFE_HASHES = "unsafe-hashes"
    NAVIGATE_TO = "navigate-to"


class _Plan(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class StrictDynamicPlan(_Plan):
    """Nonce that dynamically created <script> elements must receive."""

    kind: Literal[RetrofitterKind.STRICT_DYNAMIC] = RetrofitterKind.STRICT_DYNAMIC
    nonce: str


class UnsafeHashesPlan(_Plan):
    """Per-policy hash allow-lists for inline handlers and javascript: URLs."""

    kind: Literal[RetrofitterKind.UNSAFE_HASHES] = RetrofitterKind.UNSAFE_HASHES
    hash_source_lists: list[list[HashSource]] = Field(default_factory=list)
    restrictive_form_action: bool = False


class NavigateToPlan(_Plan):
    """Per-policy navigate-to source sets."""

    kind: Literal[RetrofitterKind.NAVIGATE_TO] = RetrofitterKind.NAVIGATE_TO
    navigate_to_directives: list[list[str]] = Field(default_factory=list)


RetrofitPlan = Annotated[
    Union[StrictDynamicPlan, UnsafeHashesPlan, NavigateToPlan],
    Field(discriminator="kind"),
]


class RetrofitResult(NamedTuple):
    csp: ContentSecurityPolicy
    plan: StrictDynamicPlan | UnsafeHashesPlan | NavigateToPlan | None


class RetrofitOutcome(NamedTuple):
    csp: ContentSecurityPolicy
    plans: tuple[StrictDynamicPlan | UnsafeHashesPlan | NavigateToPlan, ...]
    header: str
