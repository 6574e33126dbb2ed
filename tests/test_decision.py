"""
test_decision.py - Unit Tests
Tests for: security thresholds, retry band, failure counting, lockout escalation
"""

import sys
import os
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from heartid_common.models import (
    AttemptState,
    LockoutPolicy,
    SecurityLevel,
    Approved,
    Denied,
    Retry,
    Error,
)
from heartid_engine.decision import check_lockout, decide, validation_retry

NOW = 1_700_000_000.0
MINUTE = 60.0


# ─────────────────────────────────────────────
class TestSecurityLevel(unittest.TestCase):

    def test_thresholds(self):
        self.assertEqual(SecurityLevel.LOW.threshold, 0.60)
        self.assertEqual(SecurityLevel.MEDIUM.threshold, 0.75)
        self.assertEqual(SecurityLevel.HIGH.threshold, 0.85)
        self.assertEqual(SecurityLevel.MAXIMUM.threshold, 0.90)

    def test_from_name(self):
        self.assertIs(SecurityLevel.from_name("high"), SecurityLevel.HIGH)
        self.assertIs(SecurityLevel.from_name(" Maximum "), SecurityLevel.MAXIMUM)
        with self.assertRaises(ValueError):
            SecurityLevel.from_name("paranoid")


# ─────────────────────────────────────────────
class TestThresholdBoundary(unittest.TestCase):

    def test_high_level_outcomes(self):
        state = AttemptState()
        self.assertIsInstance(decide(0.84, SecurityLevel.HIGH, state, NOW).result, Retry)
        self.assertIsInstance(decide(0.50, SecurityLevel.HIGH, state, NOW).result, Denied)
        self.assertIsInstance(decide(0.90, SecurityLevel.HIGH, state, NOW).result, Approved)

    def test_threshold_is_inclusive(self):
        d = decide(0.85, SecurityLevel.HIGH, AttemptState(), NOW)
        self.assertEqual(d.result, Approved(confidence=0.85))

    def test_retry_band_lower_edge(self):
        self.assertIsInstance(decide(0.40, SecurityLevel.LOW, AttemptState(), NOW).result, Retry)
        self.assertIsInstance(decide(0.39, SecurityLevel.LOW, AttemptState(), NOW).result, Denied)

    def test_custom_retry_band(self):
        policy = LockoutPolicy(retry_band=0.0)
        self.assertIsInstance(decide(0.84, SecurityLevel.HIGH, AttemptState(), NOW, policy).result, Denied)

    def test_approval_resets_state(self):
        state = AttemptState(consecutive_failures=2, lockout_period_index=3)
        d = decide(0.95, SecurityLevel.MEDIUM, state, NOW)
        self.assertEqual(d.state, AttemptState())


# ─────────────────────────────────────────────
class TestLockout(unittest.TestCase):

    def deny(self, state, now=NOW, policy=LockoutPolicy()):
        return decide(0.10, SecurityLevel.MEDIUM, state, now, policy)

    def test_three_denials_lock(self):
        state = AttemptState()
        for expected in (1, 2):
            d = self.deny(state)
            self.assertIsInstance(d.result, Denied)
            self.assertEqual(d.state.consecutive_failures, expected)
            self.assertIsNone(d.state.lockout_until)
            state = d.state
        d = self.deny(state)
        self.assertIsInstance(d.result, Denied)
        self.assertEqual(d.state.lockout_until, NOW + 10 * MINUTE)
        self.assertEqual(d.state.lockout_period_index, 1)
        self.assertEqual(d.state.consecutive_failures, 0)

    def test_attempt_during_lockout(self):
        locked = AttemptState(consecutive_failures=0, lockout_until=NOW + 600, lockout_period_index=1)
        d = decide(0.99, SecurityLevel.LOW, locked, NOW + 10)
        self.assertIsInstance(d.result, Error)
        self.assertTrue(d.result.is_lockout)
        self.assertEqual(d.result.locked_until, NOW + 600)
        self.assertIn("remaining", d.result.message)
        self.assertEqual(d.state, locked)

    def test_check_lockout(self):
        self.assertIsNone(check_lockout(AttemptState(), NOW))
        self.assertIsNone(check_lockout(AttemptState(lockout_until=NOW), NOW))
        self.assertIsNotNone(check_lockout(AttemptState(lockout_until=NOW + 1), NOW))

    def test_success_after_expiry_resets(self):
        locked = AttemptState(consecutive_failures=0, lockout_until=NOW + 600, lockout_period_index=1)
        d = decide(0.99, SecurityLevel.MEDIUM, locked, NOW + 601)
        self.assertIsInstance(d.result, Approved)
        self.assertEqual(d.state.consecutive_failures, 0)
        self.assertEqual(d.state, AttemptState())

    def test_escalation(self):
        state = AttemptState()
        now = NOW
        for minutes in (10, 20, 40, 90, 360, 1440, 2880, 2880):
            for _ in range(3):
                d = self.deny(state, now)
                state = d.state
            self.assertEqual(state.lockout_until, now + minutes * MINUTE)
            now = state.lockout_until + 1

    def test_failure_after_expiry_clears_stale_lockout(self):
        locked = AttemptState(consecutive_failures=0, lockout_until=NOW + 600, lockout_period_index=1)
        d = self.deny(locked, NOW + 700)
        self.assertIsNone(d.state.lockout_until)
        self.assertEqual(d.state.consecutive_failures, 1)
        self.assertEqual(d.state.lockout_period_index, 1)

    def test_retries_count_but_never_lock(self):
        state = AttemptState()
        for _ in range(5):
            d = decide(0.80, SecurityLevel.HIGH, state, NOW)
            self.assertIsInstance(d.result, Retry)
            state = d.state
        self.assertEqual(state.consecutive_failures, 5)
        self.assertIsNone(state.lockout_until)

    def test_denial_after_retries_locks(self):
        state = AttemptState(consecutive_failures=2)
        d = self.deny(state)
        self.assertIsNotNone(d.state.lockout_until)

    def test_custom_policy(self):
        policy = LockoutPolicy(max_failures=1, periods=(30.0,))
        d = self.deny(AttemptState(), NOW, policy)
        self.assertEqual(d.state.lockout_until, NOW + 30.0)

    def test_validation_retry_keeps_state(self):
        state = AttemptState(consecutive_failures=2)
        d = validation_retry("Insufficient data", state)
        self.assertEqual(d.result, Retry(message="Insufficient data"))
        self.assertIs(d.state, state)


# ─────────────────────────────────────────────
class TestPolicyAndState(unittest.TestCase):

    def test_policy_validation(self):
        with self.assertRaises(ValueError):
            LockoutPolicy(max_failures=0)
        with self.assertRaises(ValueError):
            LockoutPolicy(periods=())
        with self.assertRaises(ValueError):
            LockoutPolicy(periods=(60.0, -1.0))
        with self.assertRaises(ValueError):
            LockoutPolicy(retry_band=1.5)

    def test_default_periods(self):
        self.assertEqual(LockoutPolicy().periods[0], 600.0)
        self.assertEqual(LockoutPolicy().periods[-1], 2880 * 60.0)

    def test_state_round_trip(self):
        state = AttemptState(consecutive_failures=1, lockout_until=NOW, lockout_period_index=2)
        self.assertEqual(AttemptState.from_dict(state.to_dict()), state)

    def test_result_to_dict(self):
        self.assertEqual(Denied(reason="no").to_dict(), {"status": "denied", "reason": "no"})
        self.assertEqual(Approved(confidence=0.9).to_dict(), {"status": "approved", "confidence": 0.9})
        self.assertFalse(Retry(message="again").is_approved)


if __name__ == "__main__":
    unittest.main()
