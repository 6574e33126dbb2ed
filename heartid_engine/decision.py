"""
decision.py - Authentication Decision Engine

Maps a confidence score, a SecurityLevel and the current AttemptState to an
AuthenticationResult plus the next AttemptState. Every function is pure:
the caller supplies ``now`` and persists the returned state.

    Ready → Evaluating → Approved | Denied | Retry | Locked (Error)
"""

import logging
from dataclasses import dataclass, replace

from heartid_common.models import (
    AttemptState,
    AuthenticationResult,
    LockoutPolicy,
    SecurityLevel,
    Approved,
    Denied,
    Retry,
    Error,
)
from heartid_common.utils import format_timestamp, format_remaining

logger = logging.getLogger(__name__)

RETRY_MESSAGE = "Partial match - please try again"
DENIED_REASON = "Heart pattern does not match the enrolled template"


@dataclass(frozen=True)
class Decision:
    result: AuthenticationResult
    state: AttemptState


def lockout_error(state: AttemptState, now: float) -> Error:
    remaining = format_remaining(state.lockout_until - now)
    return Error(
        message=f"locked out until {format_timestamp(state.lockout_until)} ({remaining} remaining)",
        code="locked_out",
        locked_until=state.lockout_until,
    )


def check_lockout(state: AttemptState, now: float):
    """Return the lockout Error if *state* is locked at *now*, else None."""
    if state.is_locked(now):
        return lockout_error(state, now)
    return None


def _expire(state: AttemptState, now: float) -> AttemptState:
    if state.lockout_until is not None and state.lockout_until <= now:
        return replace(state, lockout_until=None)
    return state


def record_failure(state: AttemptState, now: float, policy: LockoutPolicy, lock: bool) -> AttemptState:
    """
    Count one failed attempt. When *lock* is set and the failure budget is
    spent, start the next lockout period and begin a fresh failure cycle.
    """
    failures = state.consecutive_failures + 1
    if not lock or failures < policy.max_failures:
        return replace(state, consecutive_failures=failures)

    index = state.lockout_period_index
    period = policy.periods[min(index, len(policy.periods) - 1)]
    logger.warning(
        f"Lockout triggered after {failures} failures: {format_remaining(period)} "
        f"(period #{index + 1})"
    )
    return AttemptState(
        consecutive_failures=0,
        lockout_until=now + period,
        lockout_period_index=index + 1,
    )


def decide(confidence: float,
           level: SecurityLevel,
           state: AttemptState,
           now: float,
           policy: LockoutPolicy = LockoutPolicy()) -> Decision:
    """
    Evaluate one comparison.

    - locked:                          Error(locked_out), state unchanged
    - confidence >= threshold:         Approved, state reset
    - confidence >= threshold - band:  Retry, failure counted, never locks
    - otherwise:                       Denied, failure counted, may lock
    """
    locked = check_lockout(state, now)
    if locked is not None:
        return Decision(locked, state)

    state = _expire(state, now)
    threshold = level.threshold

    if confidence >= threshold:
        return Decision(Approved(confidence=confidence), AttemptState())

    if confidence >= threshold - policy.retry_band:
        return Decision(Retry(message=RETRY_MESSAGE),
                        record_failure(state, now, policy, lock=False))

    return Decision(Denied(reason=DENIED_REASON),
                    record_failure(state, now, policy, lock=True))


def validation_retry(message: str, state: AttemptState) -> Decision:
    """Upstream capture/validation failure: ask for another capture, count nothing."""
    return Decision(Retry(message=message), state)
