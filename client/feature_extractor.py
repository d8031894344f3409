"""
Feature Extractor Module

Transforms a sequence of pointer samples into a fixed-length vector of
kinematic features. Only positions and timestamps are used; nothing about
the page or the element under the pointer is ever read.

Output order is fixed:
    [mean_velocity, velocity_variance, mean_acceleration, jitter_ratio,
     fitts_ratio, direction_change_freq, pause_entropy]
Every component is normalized to [0, 1].
"""

import math
from typing import List, NamedTuple, Optional, Sequence, Tuple
import logging

import numpy as np

from client.sample_buffer import Sample
from shared.config import NormalizationRanges

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FEATURE_COUNT = 7


class FeatureVector(NamedTuple):
    """Normalized features, each in [0, 1]."""
    mean_velocity: float = 0.0          # Average speed
    velocity_variance: float = 0.0      # Spread of speed (bots are uniform)
    mean_acceleration: float = 0.0      # 0.5 means no net acceleration
    jitter_ratio: float = 0.0           # 0 means a perfectly straight path
    fitts_ratio: float = 0.0            # Low means the pointer slowed near the end
    direction_change_freq: float = 0.0  # Sharp turns per sample
    pause_entropy: float = 0.0          # Share of near-stationary samples


class RawStatistics(NamedTuple):
    """Un-normalized statistics, in the same order as FeatureVector."""
    mean_velocity: float = 0.0
    velocity_variance: float = 0.0
    mean_acceleration: float = 0.0
    jitter_ratio: float = 1.0
    fitts_ratio: float = 1.0
    direction_change_freq: float = 0.0
    pause_entropy: float = 0.0


ZERO_VECTOR = FeatureVector()


def normalize(value: float, bounds: Tuple[float, float]) -> float:
    """Map `value` linearly from [min, max] onto [0, 1] and clamp. NaN maps to 0."""
    low, high = bounds
    if high <= low or math.isnan(value):
        return 0.0
    if math.isinf(value):
        return 1.0 if value > 0 else 0.0
    return max(0.0, min(1.0, (value - low) / (high - low)))


def _safe_mean(values: np.ndarray) -> float:
    return float(values.mean()) if values.size else 0.0


class FeatureExtractor:
    """
    Computes kinematic features over a sample sequence.
    Stateless apart from its tuning parameters; safe to share.
    """

    def __init__(
        self,
        ranges: Optional[NormalizationRanges] = None,
        direction_change_rad: float = 0.5,
        pause_velocity: float = 20.0,
        fitts_split: float = 0.8,
    ):
        """
        Args:
            ranges: Per-feature [min, max] normalization ranges.
            direction_change_rad: Angle delta that counts as a direction change.
            pause_velocity: Speed (units/s) below which a sample is a pause.
            fitts_split: Fraction of the velocity series treated as the
                         approach phase; the rest is the final phase.
        """
        self.ranges = ranges or NormalizationRanges()
        self.direction_change_rad = direction_change_rad
        self.pause_velocity = pause_velocity
        self.fitts_split = fitts_split

    def raw_statistics(self, samples: Sequence[Sample]) -> RawStatistics:
        """Compute the seven raw statistics. Needs at least two samples."""
        if len(samples) < 2:
            return RawStatistics()

        arr = np.array([[s.x, s.y, s.t] for s in samples], dtype=float)
        pos = arr[:, :2]

        dxdy = np.diff(pos, axis=0)
        dist_segments = np.hypot(dxdy[:, 0], dxdy[:, 1])
        dt = np.diff(arr[:, 2]) / 1000.0  # ms -> s

        path_length = float(dist_segments.sum())

        # Zero-dt pairs still add to the path but carry no velocity
        moving = dt > 0
        velocities = dist_segments[moving] / dt[moving]
        vel_dt = dt[moving]

        mean_velocity = _safe_mean(velocities)
        velocity_variance = float(velocities.var()) if velocities.size else 0.0

        if velocities.size > 1:
            accelerations = np.diff(velocities) / vel_dt[1:]
        else:
            accelerations = np.array([])
        mean_acceleration = _safe_mean(accelerations)

        straight_dist = float(np.hypot(*(pos[-1] - pos[0])))
        jitter_ratio = path_length / (straight_dist or 1.0)

        # Fitts' law: biological motion decelerates on approach to a target
        split = int(velocities.size * self.fitts_split)
        initial_mean = _safe_mean(velocities[:split])
        final_mean = _safe_mean(velocities[split:])
        fitts_ratio = final_mean / (initial_mean or 1.0)

        direction_changes = self._count_direction_changes(dxdy, dist_segments)
        direction_change_freq = direction_changes / len(samples)

        if velocities.size:
            pause_entropy = float((velocities < self.pause_velocity).sum()) / velocities.size
        else:
            pause_entropy = 0.0

        return RawStatistics(
            mean_velocity=mean_velocity,
            velocity_variance=velocity_variance,
            mean_acceleration=mean_acceleration,
            jitter_ratio=jitter_ratio,
            fitts_ratio=fitts_ratio,
            direction_change_freq=direction_change_freq,
            pause_entropy=pause_entropy,
        )

    def _count_direction_changes(self, dxdy: np.ndarray, dist_segments: np.ndarray) -> int:
        # A zero-length segment has no heading
        headings = dxdy[dist_segments > 0]
        if len(headings) < 2:
            return 0
        angles = np.arctan2(headings[:, 1], headings[:, 0])
        deltas = np.diff(angles)
        deltas = np.arctan2(np.sin(deltas), np.cos(deltas))  # wrap to [-pi, pi]
        return int((np.abs(deltas) > self.direction_change_rad).sum())

    def extract(self, samples: Sequence[Sample]) -> FeatureVector:
        """
        Compute the normalized feature vector.
        Fewer than two samples yields the all-zero vector.
        """
        if len(samples) < 2:
            return ZERO_VECTOR

        raw = self.raw_statistics(samples)
        r = self.ranges
        fv = FeatureVector(
            mean_velocity=normalize(raw.mean_velocity, r.mean_velocity),
            velocity_variance=normalize(raw.velocity_variance, r.velocity_variance),
            mean_acceleration=normalize(raw.mean_acceleration, r.mean_acceleration),
            jitter_ratio=normalize(raw.jitter_ratio, r.jitter_ratio),
            fitts_ratio=normalize(raw.fitts_ratio, r.fitts_ratio),
            direction_change_freq=normalize(raw.direction_change_freq, r.direction_change_freq),
            pause_entropy=normalize(raw.pause_entropy, r.pause_entropy),
        )
        logger.debug(f"Features from {len(samples)} samples: {[round(v, 4) for v in fv]}")
        return fv


def extract_features(samples: Sequence[Sample], ranges: Optional[NormalizationRanges] = None) -> FeatureVector:
    """Convenience wrapper using default thresholds."""
    return FeatureExtractor(ranges=ranges).extract(samples)


def as_list(features: FeatureVector) -> List[float]:
    return [float(v) for v in features]
