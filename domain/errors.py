"""Typed failures raised by the profile evolution engine.

Each error carries a ``kind`` assigned where the failure happens, plus two
flags read by the callers:

* ``transient`` - the update coordinator releases the lock immediately
  instead of holding it for the failure cooldown.
* ``retryable`` - surfaced at the HTTP boundary so a client can tell
  "retry shortly" apart from "fix your input and resubmit".
"""
from typing import Optional


class ProfileEngineError(Exception):
    kind = "internal"
    transient = False

    def __init__(self, message: str, *, kind: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.transient

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.message, "retryable": self.retryable}


class InputValidationError(ProfileEngineError):
    kind = "validation"

    def __init__(self, message: str, *, not_found: bool = False):
        super().__init__(message)
        self.not_found = not_found


class TransientInfraError(ProfileEngineError):
    kind = "transient"
    transient = True


class PersistentError(ProfileEngineError):
    kind = "persistent"


class WaitTimeoutError(ProfileEngineError):
    kind = "wait_timeout"

    def __init__(self, key: str, waited_seconds: float):
        super().__init__(
            f"Timed out after {waited_seconds:.1f}s waiting for update {key}; "
            "the in-flight owner may be deadlocked"
        )
        self.key = key
        self.waited_seconds = waited_seconds

    @property
    def retryable(self) -> bool:
        return True


class AnalysisError(ProfileEngineError):
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    SCHEMA = "schema"
    EXHAUSTED = "exhausted"

    def __init__(self, kind: str, message: str, *, last_error: Optional[BaseException] = None):
        super().__init__(message, kind=kind)
        self.last_error = last_error

    @property
    def transient(self) -> bool:
        if self.kind == self.TIMEOUT:
            return True
        if self.kind == self.SCHEMA:
            return False
        return self.last_error is not None and is_transient(self.last_error)


class BudgetExceededError(ProfileEngineError):
    kind = "budget_exceeded"

    def __init__(self, estimated_tokens: int, ceiling: int):
        super().__init__(
            f"Prompt inputs need ~{estimated_tokens} tokens even after degradation; "
            f"ceiling is {ceiling}"
        )
        self.estimated_tokens = estimated_tokens
        self.ceiling = ceiling


class VersionConflictError(ProfileEngineError):
    kind = "version_conflict"
    transient = True

    def __init__(self, candidate_id: str, version: int):
        super().__init__(f"Profile version {version} already exists for candidate {candidate_id}")
        self.candidate_id = candidate_id
        self.version = version


def is_transient(exc: BaseException) -> bool:
    """Lock-release classification for arbitrary exceptions."""
    if isinstance(exc, ProfileEngineError):
        return exc.transient
    return isinstance(exc, (TimeoutError, ConnectionError))
