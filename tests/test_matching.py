"""
test_matching.py - Unit Tests
Tests for: template creation, relative similarity, weighted comparison
"""

import sys
import os
import math
import unittest

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from heartid_common.models import SecurityLevel, samples_from_values
from heartid_engine.features import FEATURE_VERSION, extract
from heartid_engine.template import (
    MORPHOLOGICAL_WEIGHT,
    FREQUENCY_WEIGHT,
    TEMPORAL_WEIGHT,
    build_template,
    compare,
    pattern_digest,
    relative_similarity,
)


def enrolled_series(n=300):
    return [75.0 + 8.0 * math.sin(2 * math.pi * i / 30) for i in range(n)]


def noisy_copy(values, std=0.4, seed=7):
    noise = np.random.default_rng(seed).normal(0.0, std, len(values))
    return (np.array(values) + noise).tolist()


# ─────────────────────────────────────────────
class TestTemplate(unittest.TestCase):

    def test_build_template(self):
        samples = samples_from_values(enrolled_series())
        t = build_template(samples, created_at=1000.0)
        self.assertEqual(t.version, FEATURE_VERSION)
        self.assertEqual(t.created_at, 1000.0)
        self.assertEqual(t.feature_vector, extract(samples))
        self.assertEqual(len(t.raw_pattern_digest), 64)

    def test_digest_is_stable(self):
        samples = samples_from_values(enrolled_series())
        self.assertEqual(pattern_digest(samples), pattern_digest(list(samples)))

    def test_digest_differs(self):
        a = samples_from_values(enrolled_series())
        b = samples_from_values([80.0] * 300)
        self.assertNotEqual(pattern_digest(a), pattern_digest(b))

    def test_weights_sum_to_one(self):
        self.assertAlmostEqual(TEMPORAL_WEIGHT + FREQUENCY_WEIGHT + MORPHOLOGICAL_WEIGHT, 1.0)


# ─────────────────────────────────────────────
class TestRelativeSimilarity(unittest.TestCase):

    def test_identical(self):
        a = np.array([75.0, 8.0, 64.0])
        np.testing.assert_array_equal(relative_similarity(a, a, np.ones(3)), np.ones(3))

    def test_zeros_use_floor(self):
        z = np.zeros(3)
        np.testing.assert_array_equal(relative_similarity(z, z, np.full(3, 0.01)), np.ones(3))

    def test_relative_difference(self):
        sim = relative_similarity(np.array([80.0]), np.array([60.0]), np.array([1.0]))
        self.assertAlmostEqual(float(sim[0]), 0.75)

    def test_clipped_to_unit_range(self):
        sim = relative_similarity(np.array([1.0]), np.array([-1.0]), np.array([1.0]))
        self.assertEqual(float(sim[0]), 0.0)

    def test_non_finite_scores_zero(self):
        sim = relative_similarity(np.array([np.nan, 1.0]), np.array([1.0, np.inf]), np.ones(2))
        np.testing.assert_array_equal(sim, np.zeros(2))


# ─────────────────────────────────────────────
class TestCompare(unittest.TestCase):

    def setUp(self):
        self.base = extract(samples_from_values(enrolled_series()))

    def test_self_similarity(self):
        result = compare(self.base, self.base)
        self.assertAlmostEqual(result.confidence, 1.0, places=12)
        for score in result.subscores.values():
            self.assertAlmostEqual(score, 1.0, places=12)

    def test_self_similarity_flat(self):
        flat = extract(samples_from_values([80.0] * 300))
        self.assertAlmostEqual(compare(flat, flat).confidence, 1.0, places=12)

    def test_ordering(self):
        noisy = extract(samples_from_values(noisy_copy(enrolled_series())))
        different = extract(samples_from_values(
            [90.0 + 3.0 * math.sin(2 * math.pi * i / 12) for i in range(300)]
        ))
        same = compare(self.base, self.base).confidence
        near = compare(self.base, noisy).confidence
        far = compare(self.base, different).confidence
        self.assertGreaterEqual(same, near)
        self.assertGreater(near, far)

    def test_ordering_on_average(self):
        near = [compare(self.base, extract(samples_from_values(noisy_copy(enrolled_series(), seed=s)))).confidence
                for s in range(5)]
        far = [compare(self.base, extract(samples_from_values(noisy_copy([80.0] * 300, seed=s)))).confidence
               for s in range(5)]
        self.assertGreater(np.mean(near), np.mean(far))

    def test_flat_capture_not_approved(self):
        flat = extract(samples_from_values([80.0] * 300))
        self.assertLess(compare(self.base, flat).confidence, SecurityLevel.MEDIUM.threshold)

    def test_scores_bounded(self):
        other = extract(samples_from_values([150.0 + 20 * math.sin(i) for i in range(300)]))
        result = compare(self.base, other)
        self.assertGreaterEqual(result.confidence, 0.0)
        self.assertLessEqual(result.confidence, 1.0)
        for score in result.subscores.values():
            self.assertGreaterEqual(score, 0.0)
            self.assertLessEqual(score, 1.0)


if __name__ == "__main__":
    unittest.main()
