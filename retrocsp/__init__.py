"""
retrocsp - Content-Security-Policy retrofitting proxy
"""

__version__ = "0.1.0"

from retrocsp.policy.model import ContentSecurityPolicy, Policy, parse_policies, serialize_policies
from retrocsp.retrofit.engine import retrofit_csp

__all__ = ["ContentSecurityPolicy", "Policy", "parse_policies", "retrofit_csp", "serialize_policies"]
