"""Debate-level exceptions. Per-worker failures never surface as these."""


class FatalError(Exception):
    """Raised when a debate cannot produce any result at all."""


class NoBackendsAvailable(FatalError):
    """No configured backend has its credential present."""


class AllGenerationsFailed(FatalError):
    """Every backend failed during the initial generation phase."""


class DebateAborted(Exception):
    """Raised when the debate's cancel token fires (caller abort or deadline)."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Debate aborted: {reason}")
