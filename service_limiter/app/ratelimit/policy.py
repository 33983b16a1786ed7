"""
Decision applied once both Redis and the local fallback bucket say no.
"""

from .models import Decision, DecisionSource, FailMode


class FailurePolicy:
    """Fail-open favours availability, fail-closed favours enforcement."""

    def __init__(self, fail_mode: FailMode):
        self.fail_mode = FailMode(fail_mode)

    def decide(self) -> Decision:
        if self.fail_mode is FailMode.OPEN:
            return Decision(allowed=True, remaining=0, source=DecisionSource.LOCAL_OPEN)
        return Decision(allowed=False, remaining=0, source=DecisionSource.LOCAL_CLOSED)
