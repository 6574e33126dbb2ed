"""
capture.py - Heart-Rate Capture Sources

A capture source exposes ``capture(duration) -> SampleSequence`` and raises
CaptureError when the sensor cannot deliver. Two sources ship here:

  SimulatedHeartRateSource  deterministic per-user rhythm + sensor noise
  ReplayCaptureSource       replays a JSON / CSV recording from disk
"""

import os
import csv
import json
import math
import hashlib
import logging
from typing import Optional

import numpy as np

from heartid_common.errors import CaptureError
from heartid_common.models import HeartRateSample, SampleSequence, samples_from_values

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────
# CONSTANTS
# ─────────────────────────────────────────────
SAMPLE_INTERVAL = 1.0          # seconds between readings (1 Hz wearable feed)
BASELINE_RANGE = (62.0, 82.0)  # BPM
SWING_RANGE = (3.0, 9.0)       # BPM, amplitude of the main rhythm
PERIOD_RANGE = (10.0, 40.0)    # seconds
NOISE_STD = 0.5                # BPM


# ─────────────────────────────────────────────
# SIMULATION MODE
# ─────────────────────────────────────────────
def _user_rng(user_id: str) -> np.random.Generator:
    seed_int = int(hashlib.sha256(user_id.encode()).hexdigest(), 16) % (2**31)
    return np.random.default_rng(seed_int)


def simulate_heart_rate_series(user_id: str, n_samples: int,
                               interval: float = SAMPLE_INTERVAL,
                               noise_std: float = NOISE_STD,
                               seed: Optional[int] = None) -> SampleSequence:
    """
    Deterministically generate a heart-rate series for *user_id*.

    The rhythm (baseline, two sinusoidal swings) depends only on the user id;
    Gaussian noise drawn from *seed* makes consecutive captures differ
    slightly, the way a real sensor would.
    """
    rng = _user_rng(user_id)
    baseline = rng.uniform(*BASELINE_RANGE)
    swing = rng.uniform(*SWING_RANGE)
    period = rng.uniform(*PERIOD_RANGE)
    swing2 = rng.uniform(0.5, 3.0)
    period2 = rng.uniform(4.0, PERIOD_RANGE[0])
    phase = rng.uniform(0.0, 2 * math.pi)

    t = np.arange(n_samples) * interval
    clean = (baseline
             + swing * np.sin(2 * math.pi * t / period)
             + swing2 * np.sin(2 * math.pi * t / period2 + phase))
    noise = np.random.default_rng(seed).normal(0.0, noise_std, n_samples)
    return samples_from_values((clean + noise).tolist(), interval)


class SimulatedHeartRateSource:
    """
    Stand-in for a wearable. *fail_with* makes every capture raise
    CaptureError of that kind, for exercising the failure paths.
    """

    def __init__(self, user_id: str, interval: float = SAMPLE_INTERVAL,
                 noise_std: float = NOISE_STD, seed: Optional[int] = None,
                 fail_with: Optional[str] = None):
        if fail_with is not None and fail_with not in CaptureError.KINDS:
            raise ValueError(f"Unknown capture error kind: {fail_with!r}")
        self.user_id = user_id
        self.interval = interval
        self.noise_std = noise_std
        self.seed = seed
        self.fail_with = fail_with

    def capture(self, duration: float) -> SampleSequence:
        if not duration > 0 or not math.isfinite(duration):
            raise ValueError(f"Capture duration must be a positive number of seconds, got {duration!r}")
        if self.fail_with:
            raise CaptureError(self.fail_with, f"Simulated sensor {self.fail_with}")
        n = int(duration / self.interval)
        logger.info(f"Simulated capture for '{self.user_id}': {n} samples over {duration:.0f}s")
        return simulate_heart_rate_series(self.user_id, n, self.interval, self.noise_std, self.seed)


# ─────────────────────────────────────────────
# REPLAY MODE
# ─────────────────────────────────────────────
def _parse_json_recording(text: str) -> SampleSequence:
    items = json.loads(text)
    if isinstance(items, dict):
        items = items.get("samples", [])
    if not isinstance(items, list):
        raise ValueError("recording must be a list of readings")
    if all(isinstance(x, (int, float)) for x in items):
        return samples_from_values(items)
    return [HeartRateSample.from_dict(x) for x in items]


def _parse_csv_recording(text: str) -> SampleSequence:
    """Rows of ``offset,value`` or a single ``value`` column; a header row is skipped."""
    samples = []
    for i, row in enumerate(csv.reader(text.splitlines())):
        if not row or not row[0].strip():
            continue
        try:
            numbers = [float(cell) for cell in row]
        except ValueError:
            if i == 0:
                continue
            raise
        if len(numbers) == 1:
            samples.append(HeartRateSample(numbers[0], len(samples) * SAMPLE_INTERVAL))
        else:
            samples.append(HeartRateSample(numbers[1], numbers[0]))
    return samples


def load_recording(path: str) -> SampleSequence:
    """Read a recording; raises CaptureError('unavailable') if it cannot be used."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise CaptureError("unavailable", f"Cannot read recording {path}: {e}") from e

    try:
        if os.path.splitext(path)[1].lower() == ".csv":
            samples = _parse_csv_recording(text)
        else:
            samples = _parse_json_recording(text)
    except (ValueError, KeyError, TypeError) as e:
        raise CaptureError("unavailable", f"Malformed recording {path}: {e}") from e

    return sorted(samples, key=lambda s: s.offset)


class ReplayCaptureSource:
    """Replays the first *duration* seconds of a recorded capture."""

    def __init__(self, path: str):
        self.path = path

    def capture(self, duration: float) -> SampleSequence:
        samples = load_recording(self.path)
        if not samples:
            raise CaptureError("unavailable", f"Recording {self.path} holds no readings")
        start = samples[0].offset
        window = [s for s in samples if s.offset - start < duration]
        logger.info(f"Replaying {len(window)} of {len(samples)} samples from {self.path}")
        return window
