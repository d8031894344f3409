"""
Scoring Engine Module

Maps a normalized feature vector to a humanness score in [0, 1].

Two interchangeable strategies share one interface:
- ModelStrategy: a small feed-forward network (7 -> 16 -> 8 -> 1) whose
  weights are loaded from a JSON asset.
- HeuristicStrategy: additive rules over individual features.

The engine picks the model when its asset loaded and falls back to the
heuristic, per call, whenever the model is missing or fails. Scoring never
raises.
"""

import json
import os
from typing import Optional, Sequence, Tuple
import logging

import numpy as np
import requests

from client.feature_extractor import FEATURE_COUNT, FeatureVector
from shared.config import HeuristicRules
from shared.errors import AssetLoadError, InferenceError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

LAYER_SIZES = (FEATURE_COUNT, 16, 8, 1)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class ScoringStrategy:
    """Abstract base class for scoring strategies."""

    name = "abstract"

    def score(self, features: FeatureVector) -> float:
        """Return a score in [0, 1] for the given feature vector."""
        raise NotImplementedError


class HeuristicStrategy(ScoringStrategy):
    """
    Rule-based scorer. Starts from a base score and nudges it up or down
    for each feature that looks human or scripted.
    """

    name = "heuristic"

    def __init__(self, rules: Optional[HeuristicRules] = None):
        self.rules = rules or HeuristicRules()

    def score(self, features: FeatureVector) -> float:
        r = self.rules
        score = r.base_score

        # 1. Velocity variance: bots move at near-constant speed
        if features.velocity_variance > r.variance_high:
            score += r.variance_bonus
        elif features.velocity_variance < r.variance_low:
            score -= r.variance_penalty

        # 2. Jitter: micro-tremor versus a perfectly straight line
        if features.jitter_ratio > r.jitter_high:
            score += r.jitter_bonus
        elif features.jitter_ratio < r.jitter_low:
            score -= r.jitter_penalty

        # 3. Fitts' law: slowing down near the target
        if features.fitts_ratio < r.fitts_decel:
            score += r.fitts_bonus
        elif features.fitts_ratio > r.fitts_constant:
            score -= r.fitts_penalty

        # 4. Direction changes inside the human band
        low, high = r.direction_band
        if low < features.direction_change_freq < high:
            score += r.direction_bonus

        # 5. Micro-pauses
        if features.pause_entropy > r.pause_min:
            score += r.pause_bonus

        return _clamp(score)


class ModelStrategy(ScoringStrategy):
    """
    Feed-forward network evaluated with numpy.
    Hidden layers use ReLU, the output layer uses a sigmoid.
    """

    name = "model"

    def __init__(self, layers: Sequence[Tuple[np.ndarray, np.ndarray]]):
        """
        Args:
            layers: (weights, bias) pairs; weights have shape (inputs, outputs).
        """
        self._check_shapes(layers)
        self.layers = [(np.asarray(w, dtype=float), np.asarray(b, dtype=float)) for w, b in layers]

    @staticmethod
    def _check_shapes(layers: Sequence[Tuple[np.ndarray, np.ndarray]]) -> None:
        if len(layers) != len(LAYER_SIZES) - 1:
            raise AssetLoadError(f"Expected {len(LAYER_SIZES) - 1} layers, got {len(layers)}")
        for i, (weights, bias) in enumerate(layers):
            expected = (LAYER_SIZES[i], LAYER_SIZES[i + 1])
            if np.shape(weights) != expected or np.shape(bias) != (expected[1],):
                raise AssetLoadError(
                    f"Layer {i} has shape {np.shape(weights)}/{np.shape(bias)}, expected {expected}"
                )

    @classmethod
    def from_dict(cls, data: dict) -> "ModelStrategy":
        """
        Build a model from the asset format:
            {"layers": [{"weights": [[...]], "bias": [...]}, ...]}
        """
        try:
            layers = [
                (np.array(layer["weights"], dtype=float), np.array(layer["bias"], dtype=float))
                for layer in data["layers"]
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise AssetLoadError(f"Malformed model asset: {e}") from e
        return cls(layers)

    def score(self, features: FeatureVector) -> float:
        # errstate is restored when the block exits, on success or error
        try:
            with np.errstate(over="raise", invalid="raise", divide="raise"):
                activation = np.asarray(features, dtype=float).reshape(1, -1)
                last = len(self.layers) - 1
                for i, (weights, bias) in enumerate(self.layers):
                    z = activation @ weights + bias
                    if i < last:
                        activation = np.maximum(z, 0.0)
                    else:
                        # tanh form of the sigmoid cannot overflow
                        activation = 0.5 * (1.0 + np.tanh(0.5 * z))
                result = float(activation[0, 0])
        except (FloatingPointError, ValueError) as e:
            raise InferenceError(f"Model evaluation failed: {e}") from e

        if not np.isfinite(result):
            raise InferenceError(f"Model produced a non-finite score: {result}")
        return _clamp(result)


def load_model(location: str, timeout: float = 5.0) -> ModelStrategy:
    """
    Load model weights from a local path or an http(s) URL.

    Raises:
        AssetLoadError: if the asset cannot be fetched or parsed.
    """
    try:
        if location.startswith(("http://", "https://")):
            resp = requests.get(location, timeout=timeout)
            resp.raise_for_status()
            data = resp.json()
        else:
            if not os.path.exists(location):
                raise AssetLoadError(f"Model asset not found at {location}")
            with open(location, "r", encoding="utf-8") as f:
                data = json.load(f)
    except requests.exceptions.RequestException as e:
        raise AssetLoadError(f"Could not fetch model asset: {e}") from e
    except (OSError, ValueError) as e:
        raise AssetLoadError(f"Could not read model asset: {e}") from e

    if not isinstance(data, dict):
        raise AssetLoadError("Model asset must be a JSON object")
    return ModelStrategy.from_dict(data)


class ScoringEngine:
    """
    Chooses between the model and heuristic strategies.
    The heuristic is always available; the model is optional.
    """

    def __init__(
        self,
        model: Optional[ScoringStrategy] = None,
        heuristic: Optional[ScoringStrategy] = None,
    ):
        self.model = model
        self.heuristic = heuristic or HeuristicStrategy()
        self._last_strategy: Optional[str] = None

    @classmethod
    def from_asset(
        cls,
        location: Optional[str],
        rules: Optional[HeuristicRules] = None,
        timeout: float = 5.0,
    ) -> "ScoringEngine":
        """Create an engine, degrading to heuristic-only if the asset fails to load."""
        heuristic = HeuristicStrategy(rules)
        if not location:
            logger.info("No model asset configured, using heuristic scoring")
            return cls(model=None, heuristic=heuristic)
        try:
            model = load_model(location, timeout=timeout)
            logger.info(f"Model loaded from {location}")
        except AssetLoadError as e:
            logger.warning(f"Model load failed, falling back to heuristic scoring: {e}")
            model = None
        return cls(model=model, heuristic=heuristic)

    @property
    def using_fallback(self) -> bool:
        """True when no model is available and every call uses the heuristic."""
        return self.model is None

    @property
    def last_strategy(self) -> Optional[str]:
        """Name of the strategy that produced the most recent score."""
        return self._last_strategy

    def score(self, features: FeatureVector) -> float:
        """Score a feature vector. Never raises."""
        if self.model is not None:
            try:
                result = self.model.score(features)
                self._last_strategy = self.model.name
                return result
            except Exception as e:
                # Any model failure degrades to the heuristic for this call only
                logger.warning(f"Inference failed, using heuristic fallback: {e}")

        result = self.heuristic.score(features)
        self._last_strategy = self.heuristic.name
        return result
