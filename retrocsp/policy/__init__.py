"""CSP policy model, source-expression matching and hash matching."""

from retrocsp.policy.hashes import HashSource, compute_digest, is_allowed_script
from retrocsp.policy.matching import is_allowed_navigation_target, url_matches_expression, url_matches_source_set
from retrocsp.policy.model import ContentSecurityPolicy, Policy, parse_policies, serialize_policies
from retrocsp.policy.nonce import generate_nonce

__all__ = [
    "ContentSecurityPolicy",
    "HashSource",
    "Policy",
    "compute_digest",
    "generate_nonce",
    "is_allowed_navigation_target",
    "is_allowed_script",
    "parse_policies",
    "serialize_policies",
    "url_matches_expression",
    "url_matches_source_set",
]
