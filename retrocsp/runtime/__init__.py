"""Page-runtime decision interface for retrofitted policies."""

from retrocsp.runtime.enforcer import AttributeDecision, RetrofitEnforcer, ScriptNamer, Verdict

__all__ = ["AttributeDecision", "RetrofitEnforcer", "ScriptNamer", "Verdict"]
