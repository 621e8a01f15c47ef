from bracketdesk.core.selfcheck.guard import SelfCheckGuard, SelfCheckResult, evaluate

__all__ = ["SelfCheckGuard", "SelfCheckResult", "evaluate"]
