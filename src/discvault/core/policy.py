"""Failure classification and retry decisions."""

import subprocess
from dataclasses import dataclass
from enum import Enum

from discvault.config import ArchiverConfig
from discvault.error_handling import ArchiveFailure, FailureKind


class RetryClass(Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


PERMANENT_KINDS = frozenset({FailureKind.PERMANENT_MEDIA, FailureKind.DECRYPTION})


@dataclass(frozen=True)
class RetryDecision:
    """What to do with a job after a failed attempt."""

    retry: bool
    delay: float
    failure_kind: FailureKind
    escalated: bool = False


def classify(error: BaseException) -> FailureKind:
    """Map any exception raised by a pipeline step to a failure kind."""
    if isinstance(error, ArchiveFailure):
        return error.kind
    if isinstance(error, subprocess.TimeoutExpired | TimeoutError):
        return FailureKind.TIMEOUT
    if isinstance(error, OSError):
        return FailureKind.TRANSIENT_IO
    return FailureKind.HARDWARE_FAULT


def retry_class(kind: FailureKind) -> RetryClass:
    if kind in PERMANENT_KINDS:
        return RetryClass.PERMANENT
    return RetryClass.TRANSIENT


class RetryPolicy:
    """Exponential backoff with an attempt cap.

    Attempts are counted from 1; the delay after attempt ``n`` is
    ``min(cap, base * factor ** (n - 1))``.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_base: float = 30.0,
        backoff_cap: float = 600.0,
        backoff_factor: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.backoff_factor = backoff_factor

    @classmethod
    def from_config(cls, config: ArchiverConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            backoff_base=config.backoff_base,
            backoff_cap=config.backoff_cap,
            backoff_factor=config.backoff_factor,
        )

    def backoff_delay(self, attempt: int) -> float:
        exponent = max(attempt, 1) - 1
        return min(self.backoff_cap, self.backoff_base * self.backoff_factor**exponent)

    def decide(
        self,
        attempts: int,
        failure: BaseException | FailureKind,
        max_attempts: int | None = None,
    ) -> RetryDecision:
        """Decide whether a job that just failed attempt ``attempts`` runs again."""
        kind = failure if isinstance(failure, FailureKind) else classify(failure)
        limit = max_attempts or self.max_attempts

        if retry_class(kind) is RetryClass.PERMANENT:
            return RetryDecision(retry=False, delay=0.0, failure_kind=kind)
        if attempts >= limit:
            return RetryDecision(
                retry=False,
                delay=0.0,
                failure_kind=kind,
                escalated=True,
            )
        return RetryDecision(
            retry=True,
            delay=self.backoff_delay(attempts),
            failure_kind=kind,
        )
