"""
features.py - Heart-Rate Feature Extraction

Turns one SampleSequence into a fixed-shape FeatureVector:
  - temporal      : mean, population standard deviation, variance
  - frequency     : dominant frequency, spectral centroid, spectral rolloff
  - morphological : skewness, excess kurtosis, histogram entropy

Non-uniform sample offsets are linearly interpolated onto an evenly spaced
grid before the FFT. Everything is computed per call; no state survives
between extractions.
"""

import math
import logging

import numpy as np

from heartid_common.errors import InsufficientData
from heartid_common.models import (
    SampleSequence,
    FeatureVector,
    HRVFeatures,
    TemporalFeatures,
    FrequencyFeatures,
    MorphologicalFeatures,
)

logger = logging.getLogger(__name__)

# ─────────────────────────────────────────────
# CONSTANTS
# ─────────────────────────────────────────────
FEATURE_VERSION = 1
ROLLOFF_FRACTION = 0.85
HISTOGRAM_RANGE = (30.0, 220.0)     # BPM
HISTOGRAM_BIN_WIDTH = 2.0           # BPM
DEFAULT_SAMPLE_RATE = 1.0           # Hz, when offsets carry no usable span
UNIFORM_TOLERANCE = 1e-6            # relative jitter accepted as "already uniform"

HRV_MIN_SAMPLES = 50
HRV_MIN_INTERVALS = 30
RR_RANGE_MS = (300.0, 2000.0)       # 200 BPM down to 30 BPM
NN50_THRESHOLD_MS = 50.0
TRIANGULAR_BIN_MS = 7.8125          # 1/128 s
STRESS_BIN_MS = 50.0


# ─────────────────────────────────────────────
# INPUT PREPARATION
# ─────────────────────────────────────────────
def _finite_series(samples: SampleSequence):
    """Return (offsets, values) sorted by offset, dropping non-finite readings."""
    pairs = [
        (float(s.offset), float(s.value))
        for s in samples
        if math.isfinite(s.value) and math.isfinite(s.offset)
    ]
    if not pairs:
        raise InsufficientData("No finite heart rate readings to extract features from")
    pairs.sort(key=lambda p: p[0])
    offsets = np.array([p[0] for p in pairs], dtype=np.float64)
    values = np.array([p[1] for p in pairs], dtype=np.float64)
    return offsets, values


def resample_uniform(offsets: np.ndarray, values: np.ndarray):
    """
    Map the series onto an evenly spaced grid with the same number of points.

    Returns (uniform_values, sample_rate_hz). Already-uniform input is returned
    untouched; input whose offsets do not strictly increase is treated as
    evenly spaced over its span.
    """
    n = values.size
    if n < 2:
        return values, DEFAULT_SAMPLE_RATE

    span = offsets[-1] - offsets[0]
    if span <= 0:
        return values, DEFAULT_SAMPLE_RATE
    rate = (n - 1) / span

    steps = np.diff(offsets)
    if np.any(steps <= 0):
        return values, rate
    if np.allclose(steps, steps[0], rtol=UNIFORM_TOLERANCE, atol=0.0):
        return values, rate

    grid = np.linspace(offsets[0], offsets[-1], n)
    return np.interp(grid, offsets, values), rate


# ─────────────────────────────────────────────
# FEATURE FAMILIES
# ─────────────────────────────────────────────
def temporal_features(values: np.ndarray) -> TemporalFeatures:
    if np.ptp(values) == 0:
        return TemporalFeatures(mean=float(values[0]), std_dev=0.0, variance=0.0)
    variance = float(values.var())
    return TemporalFeatures(
        mean=float(values.mean()),
        std_dev=math.sqrt(variance),
        variance=variance,
    )


def frequency_features(values: np.ndarray, sample_rate: float) -> FrequencyFeatures:
    """
    Spectral features of the mean-removed series (real FFT, no window).
    The DC bin is excluded from every measure.
    """
    zero = FrequencyFeatures(dominant_frequency=0.0, spectral_centroid=0.0, spectral_rolloff=0.0)
    if values.size < 3 or np.ptp(values) == 0:
        return zero

    centered = values - values.mean()
    magnitudes = np.abs(np.fft.rfft(centered))[1:]
    freqs = np.fft.rfftfreq(values.size, d=1.0 / sample_rate)[1:]

    total = magnitudes.sum()
    if total <= 0:
        return zero

    dominant = freqs[int(np.argmax(magnitudes))]
    centroid = float(np.dot(freqs, magnitudes) / total)

    energy = magnitudes ** 2
    cumulative = np.cumsum(energy)
    idx = int(np.searchsorted(cumulative, ROLLOFF_FRACTION * cumulative[-1]))
    rolloff = freqs[min(idx, freqs.size - 1)]

    return FrequencyFeatures(
        dominant_frequency=float(dominant),
        spectral_centroid=centroid,
        spectral_rolloff=float(rolloff),
    )


def histogram_entropy(values: np.ndarray) -> float:
    """Shannon entropy (bits) over fixed-width BPM bins."""
    lo, hi = HISTOGRAM_RANGE
    edges = np.arange(lo, hi + HISTOGRAM_BIN_WIDTH, HISTOGRAM_BIN_WIDTH)
    counts, _ = np.histogram(np.clip(values, lo, hi), bins=edges)
    p = counts[counts > 0] / values.size
    return abs(float(-np.sum(p * np.log2(p))))


def morphological_features(values: np.ndarray, temporal: TemporalFeatures) -> MorphologicalFeatures:
    entropy = histogram_entropy(values)
    if temporal.std_dev == 0:
        return MorphologicalFeatures(skewness=0.0, kurtosis=0.0, entropy=entropy)
    z = (values - temporal.mean) / temporal.std_dev
    return MorphologicalFeatures(
        skewness=float(np.mean(z ** 3)),
        kurtosis=float(np.mean(z ** 4) - 3.0),
        entropy=entropy,
    )


# ─────────────────────────────────────────────
# HEART-RATE VARIABILITY
# ─────────────────────────────────────────────
def rr_intervals(values) -> np.ndarray:
    """BPM readings → RR intervals (ms), keeping only physiologically plausible ones."""
    values = np.asarray(values, dtype=np.float64)
    values = values[np.isfinite(values)]
    rr = 60000.0 / values[values > 0]
    lo, hi = RR_RANGE_MS
    return rr[(rr >= lo) & (rr <= hi)]


def _histogram_mode(rr: np.ndarray, bin_width: float):
    """(bin centre, count) of the fullest bin, bins anchored at the shortest interval."""
    lo = rr.min()
    counts = np.bincount(((rr - lo) // bin_width).astype(int))
    peak = int(np.argmax(counts))
    return lo + (peak + 0.5) * bin_width, int(counts[peak])


def hrv_features(values) -> HRVFeatures:
    """
    Time-domain HRV from a BPM series, each reading taken as one RR interval.

    Returns an all-zero HRVFeatures when fewer than HRV_MIN_SAMPLES readings
    or fewer than HRV_MIN_INTERVALS plausible intervals are available.
    """
    values = np.asarray(values, dtype=np.float64)
    if np.count_nonzero(np.isfinite(values)) < HRV_MIN_SAMPLES:
        return HRVFeatures()
    rr = rr_intervals(values)
    if rr.size < HRV_MIN_INTERVALS:
        return HRVFeatures()

    diffs = np.diff(rr)
    nn50 = int(np.count_nonzero(np.abs(diffs) > NN50_THRESHOLD_MS))
    span = float(np.ptp(rr))

    _, peak_count = _histogram_mode(rr, TRIANGULAR_BIN_MS)
    stress = 0.0
    if span > 0:
        mode, mode_count = _histogram_mode(rr, STRESS_BIN_MS)
        amplitude = mode_count / rr.size * 100.0
        stress = amplitude / (2.0 * mode * span / 1e6)

    features = HRVFeatures(
        mean_rr=float(rr.mean()),
        sdnn=float(rr.std(ddof=1)),
        rmssd=float(np.sqrt(np.mean(diffs ** 2))),
        sdsd=float(diffs.std(ddof=1)),
        nn50=nn50,
        pnn50=nn50 / diffs.size,
        triangular_index=rr.size / peak_count,
        stress_index=stress,
        interval_count=int(rr.size),
    )
    logger.debug(
        f"HRV from {rr.size} intervals: RMSSD={features.rmssd:.2f} ms, "
        f"SDNN={features.sdnn:.2f} ms, pNN50={features.pnn50:.3f}"
    )
    return features


# ─────────────────────────────────────────────
# PUBLIC API
# ─────────────────────────────────────────────
def extract(samples: SampleSequence) -> FeatureVector:
    """
    Build the FeatureVector for one capture.

    Raises InsufficientData when *samples* is empty or holds no finite
    readings. Identical input always yields an identical vector.
    """
    offsets, values = _finite_series(samples)
    temporal = temporal_features(values)
    uniform, rate = resample_uniform(offsets, values)
    vector = FeatureVector(
        temporal=temporal,
        frequency=frequency_features(uniform, rate),
        morphological=morphological_features(values, temporal),
        version=FEATURE_VERSION,
    )
    logger.debug(
        f"Extracted features from {values.size} samples @ {rate:.3f} Hz: "
        f"mean={temporal.mean:.1f}, std={temporal.std_dev:.2f}, "
        f"f_dom={vector.frequency.dominant_frequency:.4f} Hz"
    )
    return vector
