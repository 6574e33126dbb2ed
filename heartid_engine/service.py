"""
service.py - Enrollment & Authentication Orchestration

Wires the pure pieces together:

  capture → validation → features → [enroll: TemplateStore.save]
                                  → [auth:   template.compare → decision.decide]

The service owns no attempt state: callers pass the current AttemptState in
and persist the one handed back. Progress is published to subscribers as
plain dict events ({"type": ..., ...}).
"""

import time
import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, Optional

from heartid_common.errors import CaptureError, ExtractionFailure, NotFound, StoreError, ValidationFailure
from heartid_common.models import (
    AttemptState,
    AuthenticationResult,
    LockoutPolicy,
    SampleSequence,
    SecurityLevel,
    UserProfile,
    ValidationResult,
    Error,
    Pending,
    Retry,
)
from heartid_engine import decision
from heartid_engine.features import extract
from heartid_engine.template import build_template, compare
from heartid_engine.validation import Operation, validate

logger = logging.getLogger(__name__)

Event = dict
Listener = Callable[[Event], None]


@dataclass
class EnrollmentResult:
    success: bool
    message: str
    validation: Optional[ValidationResult] = None
    code: Optional[str] = None
    state: Optional[AttemptState] = None

    def to_dict(self):
        return {
            "success": self.success,
            "message": self.message,
            "code": self.code,
            "validation": self.validation.to_dict() if self.validation else None,
        }


@dataclass
class AuthenticationOutcome:
    result: AuthenticationResult
    state: AttemptState
    validation: Optional[ValidationResult] = None

    def to_dict(self):
        return {
            "result": self.result.to_dict(),
            "validation": self.validation.to_dict() if self.validation else None,
        }


class AuthenticationService:

    def __init__(self, store, policy: LockoutPolicy = LockoutPolicy(),
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.policy = policy
        self.clock = clock
        self._listeners = []
        self._listeners_lock = threading.Lock()

    # ─── event channel ───────────────────────────────────────────────────────

    def subscribe(self, listener: Listener):
        with self._listeners_lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener):
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _publish(self, event_type: str, **payload):
        event = {"type": event_type, **payload}
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener failed for event '{event_type}'")

    def _finish(self, result: AuthenticationResult, state: AttemptState,
                validation: Optional[ValidationResult] = None) -> AuthenticationOutcome:
        outcome = AuthenticationOutcome(result=result, state=state, validation=validation)
        self._publish("authentication.completed", result=result, state=state)
        return outcome

    def _enroll_failed(self, message: str, code: str, state: Optional[AttemptState],
                       validation: Optional[ValidationResult] = None) -> EnrollmentResult:
        self._publish("enrollment.failed", code=code, message=message)
        return EnrollmentResult(False, message, validation, code=code, state=state)

    # ─── enrollment ──────────────────────────────────────────────────────────

    def enroll(self, samples: SampleSequence, state: Optional[AttemptState] = None,
               now: Optional[float] = None) -> EnrollmentResult:
        """
        Validate *samples*, build a template and replace any stored profile.
        Refused while *state* is locked out.
        """
        now = self.clock() if now is None else now

        if state is not None and state.is_locked(now):
            error = decision.lockout_error(state, now)
            return self._enroll_failed(error.message, error.code, state)

        validation = validate(samples, Operation.ENROLL)
        self._publish("enrollment.validated", validation=validation)
        if not validation.is_valid:
            logger.warning(f"Enrollment rejected: {validation.error_message}")
            return self._enroll_failed(validation.error_message, ValidationFailure.code, state, validation)

        try:
            template = build_template(samples, created_at=now)
            self.store.save(UserProfile(template=template, enrolled_at=now))
        except ExtractionFailure as e:
            logger.exception("Feature extraction failed during enrollment")
            return self._enroll_failed(str(e), e.code, state, validation)
        except StoreError as e:
            logger.error(f"Template could not be saved: {e}")
            return self._enroll_failed(str(e), e.code, state, validation)

        fresh = AttemptState()
        self._publish("enrollment.completed", validation=validation)
        logger.info(f"Enrollment complete (quality {validation.quality_score:.0%})")
        return EnrollmentResult(True, "Enrollment complete", validation, state=fresh)

    def capture_and_enroll(self, source, duration: float,
                           state: Optional[AttemptState] = None,
                           now: Optional[float] = None) -> EnrollmentResult:
        try:
            samples = source.capture(duration)
        except CaptureError as e:
            logger.warning(f"Enrollment capture failed ({e.kind}): {e}")
            return self._enroll_failed(str(e), e.code, state)
        return self.enroll(samples, state=state, now=now)

    # ─── authentication ──────────────────────────────────────────────────────

    def authenticate(self, samples: SampleSequence, state: AttemptState,
                     level: SecurityLevel = SecurityLevel.MEDIUM,
                     now: Optional[float] = None) -> AuthenticationOutcome:
        """
        Run one authentication attempt.

        Order: lockout → validation → stored template → features → match →
        decision. Only the decision step can change *state*.
        """
        now = self.clock() if now is None else now
        self._publish("authentication.pending", result=Pending())

        locked = decision.check_lockout(state, now)
        if locked is not None:
            logger.info("Authentication refused: locked out")
            return self._finish(locked, state)

        validation = validate(samples, Operation.AUTHENTICATE)
        self._publish("authentication.validated", validation=validation)
        if not validation.is_valid:
            d = decision.validation_retry(validation.error_message, state)
            return self._finish(d.result, d.state, validation)

        try:
            profile = self.store.load()
        except StoreError as e:
            logger.error(f"Stored template unavailable: {e}")
            return self._finish(Error(message=str(e), code=e.code), state, validation)

        try:
            live = extract(samples)
        except ExtractionFailure as e:
            logger.exception("Feature extraction failed after validation passed")
            return self._finish(Error(message=str(e), code=e.code), state, validation)

        match = compare(profile.template.feature_vector, live)
        d = decision.decide(match.confidence, level, state, now, self.policy)
        logger.info(
            f"Decision ({level.name}, th={level.threshold:.2f}): "
            f"{d.result.status} at confidence {match.confidence:.3f}"
        )

        if d.result.is_approved:
            try:
                self.store.save(replace(profile, last_authenticated_at=now))
            except StoreError as e:
                logger.warning(f"Could not record authentication time: {e}")

        return self._finish(d.result, d.state, validation)

    def capture_and_authenticate(self, source, duration: float, state: AttemptState,
                                 level: SecurityLevel = SecurityLevel.MEDIUM,
                                 now: Optional[float] = None) -> AuthenticationOutcome:
        """Capture from *source* first; a CaptureError becomes a Retry, never a denial."""
        now = self.clock() if now is None else now
        locked = decision.check_lockout(state, now)
        if locked is not None:
            return self._finish(locked, state)
        try:
            samples = source.capture(duration)
        except CaptureError as e:
            logger.warning(f"Authentication capture failed ({e.kind}): {e}")
            return self._finish(Retry(message=f"Capture {e.kind}: {e}"), state)
        return self.authenticate(samples, state, level, now)

    # ─── profile lifecycle ───────────────────────────────────────────────────

    def status(self, state: AttemptState, now: Optional[float] = None) -> dict:
        now = self.clock() if now is None else now
        info = {
            "enrolled": False,
            "enrolled_at": None,
            "last_authenticated_at": None,
            "locked": state.is_locked(now),
            "locked_until": state.lockout_until if state.is_locked(now) else None,
            "consecutive_failures": state.consecutive_failures,
            "error": None,
        }
        try:
            profile = self.store.load()
        except NotFound:
            return info
        except StoreError as e:
            info["error"] = e.code
            return info
        info.update(
            enrolled=True,
            enrolled_at=profile.enrolled_at,
            last_authenticated_at=profile.last_authenticated_at,
        )
        return info

    def reset(self) -> AttemptState:
        """Delete the enrolled profile; the attempt history goes with it."""
        self.store.clear()
        self._publish("profile.cleared")
        return AttemptState()
