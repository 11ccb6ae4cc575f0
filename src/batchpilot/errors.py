"""Error taxonomy for waits, steps and cancellation."""

from __future__ import annotations


class BatchError(Exception):
    kind = "error"


class WaitTimeout(BatchError):
    kind = "timeout"

    def __init__(self, description: str, timeout_ms: int):
        self.description = description
        self.timeout_ms = int(timeout_ms)
        super().__init__(f"Timeout: {description} not satisfied within {self.timeout_ms}ms")


class StoppedByUser(BatchError):
    kind = "stopped"

    def __init__(self, context: str = ""):
        self.context = context
        suffix = f" ({context})" if context else ""
        super().__init__(f"{self._prefix()}{suffix}")

    @staticmethod
    def _prefix() -> str:
        return "Stopped by user"


class CommunicationLost(StoppedByUser):
    kind = "communication_lost"

    @staticmethod
    def _prefix() -> str:
        return "Stopped (communication lost)"


class ElementNotFound(BatchError):
    kind = "element_not_found"


class StepPreconditionFailed(BatchError):
    kind = "precondition_failed"


STOP_KINDS = frozenset({StoppedByUser.kind, CommunicationLost.kind})


def error_kind(exc: BaseException) -> str:
    return str(getattr(exc, "kind", "error") or "error")
