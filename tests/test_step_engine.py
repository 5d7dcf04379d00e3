from __future__ import annotations

import math

import numpy as np
import pytest

from cognitive_engine import StepEngine
from conftest import BELIEF_DIM, EMOTION_DIM
from core_abstractions import BackendAllocationError, ShapeMismatchError
from emotion_predictor import CallablePredictor
from numeric_backend import NumericBackend


def _assert_bounded(engine: StepEngine, result) -> None:
    state = engine.get_state()
    assert all(-1.0 <= v <= 1.0 for v in state["belief_embedding"])
    assert all(-1.0 <= v <= 1.0 for v in result.emotion)
    assert 0.0 <= result.trust_score <= 1.0
    assert 0.05 <= result.integration_param <= 0.95


class FlakyPredictor:
    """Returns a fixed emotion vector unless told to fail."""

    def __init__(self, values, mode=None):
        self.values = np.asarray(values, dtype=np.float32)
        self.mode = mode
        self.input_width = BELIEF_DIM + EMOTION_DIM + 2
        self.output_width = EMOTION_DIM

    def predict(self, input_vector):
        if self.mode == "nan":
            return np.array([math.nan, 0.0, 0.0], dtype=np.float32)
        if self.mode == "raise":
            raise RuntimeError("predictor exploded")
        if self.mode == "short":
            return self.values[:2]
        return self.values


def _flaky_engine(backend, mode=None, values=(0.3, -0.2, 0.1)):
    predictor = FlakyPredictor(values, mode)
    engine = StepEngine(backend, predictor, config={"belief_dim": BELIEF_DIM, "emotion_dim": EMOTION_DIM, "seed": 3})
    return engine, predictor


# --- Bounds ---

def test_state_stays_bounded_under_random_inputs(make_engine) -> None:
    rng = np.random.default_rng(0)
    engine = make_engine(lambda _v: rng.normal(0.0, 3.0, EMOTION_DIM))
    for _ in range(60):
        obs = rng.normal(0.0, 100.0, BELIEF_DIM + 4)
        result = engine.step(float(rng.normal(0.0, 10.0)), float(rng.integers(0, 7)), obs)
        assert result.valid
        _assert_bounded(engine, result)


def test_huge_reward_keeps_state_bounded(make_engine) -> None:
    # Echoes the reward slot into every emotion component
    engine = make_engine(lambda v: np.full(EMOTION_DIM, v[-2]))
    for _ in range(10):
        result = engine.step(1e9, 0.0)
        assert result.valid
        _assert_bounded(engine, result)
    assert result.emotion == [1.0] * EMOTION_DIM
    assert result.trust_score < 1.0


def test_reward_beyond_float32_range_is_saturated(make_engine, constant_emotion) -> None:
    engine = make_engine(constant_emotion)
    results = [engine.step(1e39, -1e39) for _ in range(3)]
    assert all(r.valid for r in results)
    assert results[-1].trust_score == pytest.approx(1.0)
    _assert_bounded(engine, results[-1])


@pytest.mark.parametrize("reward", [math.nan, math.inf])
def test_non_finite_reward_is_rejected(make_engine, constant_emotion, reward) -> None:
    engine = make_engine(constant_emotion)
    engine.step(0.0, 0.0)
    before = engine.get_state()
    result = engine.step(reward, 0.0)
    assert result.valid is False
    assert result.trust_score == pytest.approx(0.8)
    assert engine.get_state()["belief_embedding"] == before["belief_embedding"]


@pytest.mark.parametrize("overrides", [{"beliefLearnRate": 0.0}, {"initial_trust": 0.0}])
def test_observation_beyond_float32_range_keeps_belief_finite(make_engine, constant_emotion, overrides) -> None:
    engine = make_engine(constant_emotion, **overrides)
    result = engine.step(0.0, 0.0, np.full(BELIEF_DIM, 1e39))
    assert result.valid
    belief = engine.get_state()["belief_embedding"]
    assert all(math.isfinite(v) and -1.0 <= v <= 1.0 for v in belief)
    assert engine.step(0.0, 0.0).valid


# --- Allocation accounting ---

def test_steps_are_allocation_neutral(backend, make_engine, constant_emotion) -> None:
    engine = make_engine(constant_emotion)
    assert backend.live_count == 2
    for i in range(40):
        before = backend.live_count
        engine.step(0.1 * i, float(i % 3), np.ones(BELIEF_DIM))
        assert backend.live_count == before == 2


def test_invalid_steps_are_allocation_neutral(backend) -> None:
    engine, predictor = _flaky_engine(backend, mode="nan")
    for _ in range(5):
        engine.step(0.0, 0.0)
    predictor.mode = "raise"
    engine.step(0.0, 0.0)
    assert backend.live_count == 2


# --- Invalid predictions ---

@pytest.mark.parametrize("mode", ["nan", "raise", "short"])
def test_invalid_prediction_keeps_state_and_decays_trust(backend, mode) -> None:
    engine, predictor = _flaky_engine(backend)
    engine.step(0.0, 0.0)
    before = engine.get_state()
    samples_before = len(engine.variance_monitor)

    predictor.mode = mode
    result = engine.step(0.5, 1.0, np.ones(BELIEF_DIM))

    assert result.valid is False
    assert result.emotion == before["previous_emotion"]
    assert result.trust_score < before["trust_score"]
    after = engine.get_state()
    assert after["belief_embedding"] == before["belief_embedding"]
    assert after["previous_emotion"] == before["previous_emotion"]
    assert after["stable_streak"] == 0
    assert len(engine.variance_monitor) == samples_before
    assert any(entry.event_type == "PREDICTION_INVALID" for entry in engine.current_step_lot_stream)


def test_trust_recovers_after_stable_steps(backend) -> None:
    engine, predictor = _flaky_engine(backend, mode="nan")
    assert engine.step(0.0, 0.0).trust_score == pytest.approx(0.8)

    predictor.mode = None
    trust = [engine.step(0.0, 0.0).trust_score for _ in range(4)]
    assert trust[0] == pytest.approx(0.8)
    assert trust[1] == pytest.approx(0.8)
    assert trust[2] == pytest.approx(0.85)
    assert trust[3] == pytest.approx(0.9)


def test_large_deviation_decays_trust_but_commits(backend) -> None:
    engine, _ = _flaky_engine(backend, values=(3.0, 0.0, 0.0))
    result = engine.step(0.0, 0.0)
    assert result.valid
    assert result.trust_score == pytest.approx(0.8)
    assert result.emotion == pytest.approx([1.0, 0.0, 0.0])


# --- Structural faults ---

def test_input_width_mismatch_fails_at_construction(backend) -> None:
    predictor = CallablePredictor(lambda v: np.zeros(EMOTION_DIM), BELIEF_DIM + EMOTION_DIM + 1, EMOTION_DIM)
    with pytest.raises(ShapeMismatchError):
        StepEngine(backend, predictor, config={"belief_dim": BELIEF_DIM, "emotion_dim": EMOTION_DIM})
    assert backend.live_count == 0


def test_output_width_mismatch_fails_at_construction(backend) -> None:
    predictor = CallablePredictor(lambda v: np.zeros(4), BELIEF_DIM + EMOTION_DIM + 2, 4)
    with pytest.raises(ShapeMismatchError):
        StepEngine(backend, predictor, config={"belief_dim": BELIEF_DIM, "emotion_dim": EMOTION_DIM})


def test_allocation_failure_propagates_and_disables_engine(make_engine, constant_emotion) -> None:
    limited = NumericBackend(max_live_allocations=6)
    engine = make_engine(constant_emotion, backend_override=limited)
    with pytest.raises(BackendAllocationError):
        engine.step(0.0, 0.0)
    assert engine.is_usable is False
    assert limited.live_count == 2

    limited.max_live_allocations = None
    with pytest.raises(BackendAllocationError):
        engine.step(0.0, 0.0)


def test_unknown_config_key_is_rejected(make_engine, constant_emotion) -> None:
    with pytest.raises(ValueError):
        make_engine(constant_emotion, not_a_key=1)


def test_camel_case_config_names_are_accepted(make_engine, constant_emotion) -> None:
    engine = make_engine(constant_emotion, highVarianceThreshold=0.3, varianceWindowSize=4)
    assert engine.params["high_variance_threshold"] == 0.3
    assert engine.variance_monitor.window_size == 4


# --- Dynamics ---

def test_zero_signal_converges(make_engine, constant_emotion) -> None:
    engine = make_engine(constant_emotion)
    for _ in range(60):
        result = engine.step(0.0, 0.0)
    assert result.valid
    assert result.emotion == pytest.approx([0.3, -0.2, 0.1], abs=1e-5)
    assert engine.state.last_variance_level < 1e-8
    assert result.trust_score == pytest.approx(1.0)


def test_agreeing_predictions_raise_integration(make_engine, constant_emotion) -> None:
    engine = make_engine(constant_emotion)
    first = engine.step(0.0, 0.0)
    assert first.integration_param == pytest.approx(0.5)
    for _ in range(5):
        result = engine.step(0.0, 0.0)
    assert result.integration_param > 0.5


def test_observation_width_is_fitted(make_engine, constant_emotion) -> None:
    engine = make_engine(constant_emotion)
    assert engine.step(0.0, 0.0, np.ones(3)).valid
    assert engine.step(0.0, 0.0, np.ones(BELIEF_DIM * 3)).valid
    assert engine.step(0.0, 0.0, [math.nan] * BELIEF_DIM).valid


def test_result_serializes_with_render_layer_keys(make_engine, constant_emotion) -> None:
    result = make_engine(constant_emotion).step(0.0, 0.0)
    data = result.to_dict()
    assert set(data) == {"emotion", "trustScore", "integrationParam", "valid"}
    assert result.dominant_emotion_index() == 0


# --- State snapshot & teardown ---

def test_state_round_trip(backend, make_engine, constant_emotion) -> None:
    source = make_engine(constant_emotion)
    for i in range(10):
        source.step(0.1 * i, 1.0, np.full(BELIEF_DIM, 0.5))
    snapshot = source.get_state()

    target = make_engine(constant_emotion, seed=99)
    live_before = backend.live_count
    target.load_state(snapshot)
    assert backend.live_count == live_before
    assert target.get_state() == snapshot

    a = source.step(0.2, 2.0)
    b = target.step(0.2, 2.0)
    assert a == b


def test_load_state_rejects_wrong_widths(make_engine, constant_emotion) -> None:
    engine = make_engine(constant_emotion)
    snapshot = engine.get_state()
    snapshot["belief_embedding"] = snapshot["belief_embedding"][:-1]
    with pytest.raises(ShapeMismatchError):
        engine.load_state(snapshot)


def test_save_and_restore_state(tmp_path, make_engine, constant_emotion) -> None:
    path = str(tmp_path / "agent.pkl")
    engine = make_engine(constant_emotion)
    for _ in range(4):
        engine.step(1.0, 0.0)
    assert engine.save_state(path)

    fresh = make_engine(constant_emotion, seed=1)
    assert fresh.restore_state(path)
    assert fresh.get_state() == engine.get_state()
    assert fresh.restore_state(str(tmp_path / "missing.pkl")) is False


@pytest.mark.parametrize("payload", ["mismatched", "not_a_dict"])
def test_restore_state_starts_fresh_on_incompatible_file(tmp_path, make_engine, constant_emotion, payload) -> None:
    import pickle

    engine = make_engine(constant_emotion)
    if payload == "mismatched":
        data = engine.get_state()
        data["belief_embedding"] = data["belief_embedding"] + [0.0]
    else:
        data = [1, 2, 3]
    path = tmp_path / "agent.pkl"
    path.write_bytes(pickle.dumps(data))

    before = engine.get_state()
    assert engine.restore_state(str(path)) is False
    assert engine.get_state() == before
    assert engine.step(0.0, 0.0).valid


def test_cleanup_releases_persistent_handles(backend, make_engine, constant_emotion) -> None:
    engine = make_engine(constant_emotion)
    engine.step(0.0, 0.0)
    engine.cleanup()
    assert backend.live_count == 0
    engine.cleanup()
    with pytest.raises(RuntimeError):
        engine.step(0.0, 0.0)


def test_summary_reports_scalars(make_engine, constant_emotion) -> None:
    engine = make_engine(constant_emotion)
    engine.step(0.0, 0.0)
    summary = engine.get_public_state_summary()
    assert summary["step_count"] == 1
    assert len(summary["emotion"]) == EMOTION_DIM
    lines = []
    engine.print_internal_state_summary(custom_logger=lines.append)
    assert any("Trust" in line for line in lines)
