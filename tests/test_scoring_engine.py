import json
from unittest.mock import Mock, patch

import numpy as np
import pytest

from client.feature_extractor import FeatureExtractor, FeatureVector, ZERO_VECTOR
from client.sample_buffer import Sample
from client.scoring_engine import (
    LAYER_SIZES,
    HeuristicStrategy,
    ModelStrategy,
    ScoringEngine,
    ScoringStrategy,
    load_model,
)
from client import simulation
from shared.errors import AssetLoadError, InferenceError


def features_for(path):
    return FeatureExtractor().extract([Sample(x=x, y=y, t=t) for x, y, t in path])


def model_asset(fill=0.0, bias=0.0):
    return {
        "layers": [
            {
                "weights": np.full((LAYER_SIZES[i], LAYER_SIZES[i + 1]), fill).tolist(),
                "bias": np.full(LAYER_SIZES[i + 1], bias).tolist(),
            }
            for i in range(len(LAYER_SIZES) - 1)
        ]
    }


class ExplodingStrategy(ScoringStrategy):
    name = "exploding"

    def score(self, features):
        raise RuntimeError("boom")


# ----------------------------------------------------------------------
# Heuristic
# ----------------------------------------------------------------------

def test_linear_bot_scores_below_threshold():
    score = HeuristicStrategy().score(features_for(simulation.linear_path()))
    assert score < 0.65
    assert score == 0.0


@pytest.mark.parametrize("seed", [1, 2, 3, 42])
def test_jittery_human_scores_above_threshold(seed):
    score = HeuristicStrategy().score(features_for(simulation.human_path(seed=seed)))
    assert score > 0.65


def test_heuristic_is_clamped():
    perfect = FeatureVector(
        mean_velocity=0.5,
        velocity_variance=0.5,
        mean_acceleration=0.5,
        jitter_ratio=0.5,
        fitts_ratio=0.1,
        direction_change_freq=0.2,
        pause_entropy=0.5,
    )
    assert HeuristicStrategy().score(perfect) == 1.0
    assert HeuristicStrategy().score(ZERO_VECTOR) == 0.0


# ----------------------------------------------------------------------
# Model
# ----------------------------------------------------------------------

def test_zero_model_outputs_half():
    model = ModelStrategy.from_dict(model_asset())
    assert model.score(features_for(simulation.linear_path())) == pytest.approx(0.5)


def test_model_rejects_wrong_shapes():
    asset = model_asset()
    asset["layers"][1]["weights"] = [[0.0] * 8] * 15
    with pytest.raises(AssetLoadError):
        ModelStrategy.from_dict(asset)

    with pytest.raises(AssetLoadError):
        ModelStrategy.from_dict({"layers": asset["layers"][:2]})

    with pytest.raises(AssetLoadError):
        ModelStrategy.from_dict({"weights": []})


def test_non_finite_model_output_raises_inference_error():
    asset = model_asset()
    asset["layers"][-1]["bias"] = [float("nan")]
    model = ModelStrategy.from_dict(asset)

    with pytest.raises(InferenceError):
        model.score(ZERO_VECTOR)


def test_load_model_from_file(tmp_path):
    path = tmp_path / "model.json"
    path.write_text(json.dumps(model_asset()))

    model = load_model(str(path))
    assert isinstance(model, ModelStrategy)


def test_load_model_errors(tmp_path):
    with pytest.raises(AssetLoadError):
        load_model(str(tmp_path / "missing.json"))

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(AssetLoadError):
        load_model(str(bad))

    listed = tmp_path / "list.json"
    listed.write_text("[]")
    with pytest.raises(AssetLoadError):
        load_model(str(listed))


def test_load_model_from_url():
    response = Mock()
    response.json.return_value = model_asset()
    response.raise_for_status.return_value = None

    with patch("client.scoring_engine.requests.get", return_value=response) as get:
        model = load_model("https://cdn.example.com/model.json", timeout=2.0)

    get.assert_called_once_with("https://cdn.example.com/model.json", timeout=2.0)
    assert isinstance(model, ModelStrategy)


# ----------------------------------------------------------------------
# Engine fallback
# ----------------------------------------------------------------------

def test_engine_uses_model_when_loaded(tmp_path):
    path = tmp_path / "model.json"
    path.write_text(json.dumps(model_asset()))

    engine = ScoringEngine.from_asset(str(path))
    score = engine.score(features_for(simulation.linear_path()))

    assert not engine.using_fallback
    assert engine.last_strategy == "model"
    assert score == pytest.approx(0.5)


def test_missing_asset_falls_back_to_heuristic(tmp_path):
    engine = ScoringEngine.from_asset(str(tmp_path / "nope.json"))

    assert engine.using_fallback
    assert engine.score(features_for(simulation.human_path(seed=1))) > 0.65
    assert engine.last_strategy == "heuristic"


def test_no_asset_configured():
    engine = ScoringEngine.from_asset("")
    assert engine.using_fallback


def test_model_failure_falls_back_per_call():
    engine = ScoringEngine(model=ExplodingStrategy())
    features = features_for(simulation.linear_path())

    assert engine.score(features) == HeuristicStrategy().score(features)
    assert engine.last_strategy == "heuristic"
    # The model stays configured; only the failing call fell back
    assert not engine.using_fallback


def test_inference_error_falls_back():
    asset = model_asset()
    asset["layers"][-1]["bias"] = [float("nan")]
    engine = ScoringEngine(model=ModelStrategy.from_dict(asset))

    score = engine.score(features_for(simulation.human_path(seed=3)))
    assert 0.0 <= score <= 1.0
    assert engine.last_strategy == "heuristic"


def test_numpy_error_state_is_restored_after_failure():
    asset = model_asset()
    asset["layers"][-1]["bias"] = [float("nan")]
    model = ModelStrategy.from_dict(asset)
    before = np.geterr()

    with pytest.raises(InferenceError):
        model.score(ZERO_VECTOR)

    assert np.geterr() == before
