# cognitive_engine.py

"""
This file is the "brain." It contains the agent's per-tick state update
(StepEngine) and its instability detector (VarianceMonitor). It contains no
top-level configuration dictionaries; it imports them from
`configurations.py` and uses them as defaults.
"""
import copy
import collections
import os
import pickle
import time

import numpy as np

from typing import List, Dict, Any, Deque, Optional, Tuple

from numeric_backend import NumericBackend
from emotion_predictor import EmotionPredictor
from core_abstractions import (
    AgentState,
    StepResult,
    VarianceReport,
    LogEntry,
    TensorHandle,
    InvalidPredictionError,
    ShapeMismatchError,
    BackendAllocationError,
    new_variance_history,
)
from configurations import DEFAULT_STEP_ENGINE_CONFIG, DEFAULT_LOT_CONFIG

INTEGRATION_BOUNDS = (0.05, 0.95)
TRUST_BOUNDS = (0.0, 1.0)
STATE_VERSION = '1.0'
# Largest magnitude the float32 backend holds without overflowing to inf
BACKEND_FLOAT_MAX = float(np.finfo(np.float32).max)


def _saturate(value) -> float:
    """Clamps a finite scalar into the backend range. NaN and inf are returned unchanged."""
    value = float(value)
    if not np.isfinite(value):
        return value
    return float(np.clip(value, -BACKEND_FLOAT_MAX, BACKEND_FLOAT_MAX))

# Names used by the rendering layer's config objects
CONFIG_KEY_ALIASES = {
    'highVarianceThreshold': 'high_variance_threshold',
    'increasingVarianceThreshold': 'increasing_variance_threshold',
    'varianceWindowSize': 'variance_window_size',
    'beliefLearnRate': 'belief_learn_rate',
    'beliefDecay': 'belief_decay',
}


# ---------------------------------------------------------------------------
# Helper Class: VarianceMonitor
# ---------------------------------------------------------------------------
class VarianceMonitor:
    """
    Watches a scalar signal for erratic behaviour. Keeps the last N
    observations in a ring buffer, and the variance level computed after each
    observation in a second ring buffer of the same capacity.
    """
    def __init__(self, window_size: int, high_variance_threshold: float,
                 increasing_variance_threshold: float, history: Optional[Deque[float]] = None):
        if window_size < 2:
            raise ValueError(f"VarianceMonitor needs a window of at least 2 samples, got {window_size}.")
        self.window_size = window_size
        self.high_variance_threshold = high_variance_threshold
        self.increasing_variance_threshold = increasing_variance_threshold
        self.observations: Deque[float] = collections.deque(maxlen=window_size)
        if history is None:
            history = new_variance_history(window_size)
        elif history.maxlen != window_size:
            raise ValueError(f"Variance history capacity {history.maxlen} does not match window size {window_size}.")
        self.variance_history: Deque[float] = history

    def observe(self, value: float) -> VarianceReport:
        """
        Adds one sample and reports on the updated window.

        Returns:
            VarianceReport: population variance of the window (0.0 below two
            samples), whether it exceeds the high-variance threshold, and
            whether the recent half of the variance history sits above the
            older half by more than the increasing-variance threshold.
        """
        value = float(value)
        if not np.isfinite(value):
            raise ValueError(f"VarianceMonitor only accepts finite samples, got {value}.")
        self.observations.append(value)

        variance_level = float(np.var(self.observations)) if len(self.observations) >= 2 else 0.0
        self.variance_history.append(variance_level)

        return VarianceReport(
            variance_level=variance_level,
            high_variance=variance_level > self.high_variance_threshold,
            increasing=self._is_increasing(),
        )

    def _is_increasing(self) -> bool:
        history = list(self.variance_history)
        if len(history) < 2:
            return False
        split = len(history) // 2
        older, recent = history[:split], history[split:]
        return float(np.mean(recent)) - float(np.mean(older)) > self.increasing_variance_threshold

    def reset(self):
        """Forgets all observations and variance samples."""
        self.observations.clear()
        self.variance_history.clear()

    def __len__(self):
        return len(self.observations)


# ---------------------------------------------------------------------------
# Class Definition: StepEngine
# ---------------------------------------------------------------------------
class StepEngine:
    """
    The agent's per-tick cognitive state update.

    One call to `step` reads the belief embedding and previous emotion,
    asks the predictor for a new emotion estimate, blends and bounds the
    results under the trust weighting, and commits the successor state. All
    numeric work happens in a backend scratch scope, so a step leaves the
    backend with exactly as many live allocations as it found.
    """

    def __init__(self, backend: NumericBackend, predictor: EmotionPredictor,
                 agent_id: str = "agent0",
                 config: Optional[Dict] = None,
                 lot_config: Optional[Dict] = None,
                 step_history_max_len: int = 100,
                 verbose: int = 0):

        self.agent_id = agent_id
        self.verbose = verbose
        self.backend = backend
        self.predictor = predictor
        self.params = self._merge_config(config)
        self.lot_config_params = copy.deepcopy(DEFAULT_LOT_CONFIG) if lot_config is None else copy.deepcopy(lot_config)

        self.belief_dim = self.params['belief_dim']
        self.emotion_dim = self.params['emotion_dim']
        self.input_width = self.belief_dim + self.emotion_dim + 2

        # Structural faults abort construction before anything is allocated
        self._validate_components()

        self.is_usable = True
        self.is_torn_down = False
        self.current_step_lot_stream: List[LogEntry] = []
        self.step_history = collections.deque(maxlen=step_history_max_len)

        # --- Persistent allocations ---
        rng = np.random.default_rng(self.params['seed'])
        initial_belief = np.clip(rng.normal(0.0, self.params['initial_belief_scale'], self.belief_dim), -1.0, 1.0)
        belief_handle = self.backend.retain(self.backend.allocate(initial_belief))
        try:
            emotion_handle = self.backend.retain(self.backend.allocate(np.zeros(self.emotion_dim)))
        except BackendAllocationError:
            self.backend.release(belief_handle)
            raise

        self.state = AgentState(
            belief_embedding=belief_handle,
            previous_emotion=emotion_handle,
            variance_history=new_variance_history(self.params['variance_window_size']),
            trust_score=float(np.clip(self.params['initial_trust'], *TRUST_BOUNDS)),
            integration_param=float(np.clip(self.params['initial_integration'], *INTEGRATION_BOUNDS)),
            reflexivity_param=float(np.clip(self.params['initial_reflexivity'], *INTEGRATION_BOUNDS)),
        )
        self.variance_monitor = VarianceMonitor(
            window_size=self.params['variance_window_size'],
            high_variance_threshold=self.params['high_variance_threshold'],
            increasing_variance_threshold=self.params['increasing_variance_threshold'],
            history=self.state.variance_history,
        )

        if self.verbose >= 1:
            print(f"[{self.agent_id}] StepEngine ready. Predictor input width {self.input_width}, "
                  f"emotion width {self.emotion_dim}, backend live handles {self.backend.live_count}.")
        self._log_lot_event("lifecycle", "engine_initialized", {"input_width": self.input_width, "live_handles": self.backend.live_count})

    # --- Configuration & Validation ---
    @staticmethod
    def _merge_config(overrides: Optional[Dict]) -> Dict:
        params = copy.deepcopy(DEFAULT_STEP_ENGINE_CONFIG)
        if overrides:
            normalized = {CONFIG_KEY_ALIASES.get(k, k): v for k, v in overrides.items()}
            unknown = set(normalized) - set(params)
            if unknown:
                raise ValueError(f"Unknown step engine config keys: {sorted(unknown)}")
            params.update(normalized)
        if params['variance_window_size'] < 2:
            raise ValueError("variance_window_size must be at least 2.")
        if not 0.0 <= params['emotion_blend_weight'] <= 1.0:
            raise ValueError("emotion_blend_weight must lie in [0, 1].")
        return params

    def _validate_components(self):
        """Checks the predictor against the fixed [belief | emotion | reward | context] layout."""
        predictor_in = getattr(self.predictor, 'input_width', None)
        predictor_out = getattr(self.predictor, 'output_width', None)
        if predictor_in != self.input_width:
            raise ShapeMismatchError(
                f"[{self.agent_id}] Predictor expects {predictor_in} inputs, but "
                f"[belief({self.belief_dim}) | emotion({self.emotion_dim}) | reward | context] is {self.input_width} wide.")
        if predictor_out != self.emotion_dim:
            raise ShapeMismatchError(
                f"[{self.agent_id}] Predictor produces {predictor_out} emotions, engine is configured for {self.emotion_dim}.")

    # --- Feature: Internal Language Layer ---
    def _log_lot_event(self, event_source: str, event_type: str, details: dict):
        if not self.lot_config_params.get('enabled', False): return
        log_details_config = self.lot_config_params.get('log_level_details', {})

        source_key_lower = event_source.lower()
        full_key_lower = f"{source_key_lower}.{event_type.lower()}"
        if not (log_details_config.get(full_key_lower, False) or log_details_config.get(source_key_lower, False)):
            return

        # Sanitize details for logging to avoid excessive length
        sanitized_details = {}
        for k, v in details.items():
            if isinstance(v, (np.ndarray, list, tuple, dict)) and len(v) > 5:
                sanitized_details[k] = f"<{type(v).__name__} of len {len(v)}>"
            elif isinstance(v, str) and len(v) > 70:
                sanitized_details[k] = v[:67] + "..."
            else:
                sanitized_details[k] = v

        self.current_step_lot_stream.append(LogEntry(
            event_source=event_source.upper(),
            event_type=event_type.upper(),
            details=sanitized_details
        ))

    # --- Core Step ---
    def step(self, reward: float, context: float, raw_observation=None) -> StepResult:
        """
        Performs exactly one state transition.

        Args:
            reward (float): finite reward signal, either sign.
            context (float): context / event signal id.
            raw_observation: optional environment vector; padded or truncated
                to the belief width, zeros when absent.

        Returns:
            StepResult: new emotion values, trust, integration and a validity
            flag. A rejected prediction yields `valid=False` and leaves the
            belief and emotion state untouched.

        Raises:
            ShapeMismatchError: the concatenated input no longer matches the predictor.
            BackendAllocationError: the backend failed to allocate; the engine
                is unusable afterwards.
        """
        if self.is_torn_down:
            raise RuntimeError(f"[{self.agent_id}] step() called after cleanup().")
        if not self.is_usable:
            raise BackendAllocationError(
                f"[{self.agent_id}] Engine is unusable after a backend allocation failure; rebuild it.")

        # --- STEP START ---
        self.state.step_count += 1
        start_time = time.time()
        self.current_step_lot_stream = []
        self._log_lot_event("system", "step_start", {"step": self.state.step_count, "reward_in": reward, "context_in": context})

        try:
            with self.backend.scratch_scope():
                result = self._run_step(reward, context, raw_observation)
        except BackendAllocationError as e:
            self.is_usable = False
            if self.verbose >= 0:
                print(f"[{self.agent_id}] FATAL: backend allocation failed during step {self.state.step_count}: {e}")
            self._log_lot_event("lifecycle", "engine_unusable", {"error": str(e)})
            raise

        duration_ms = (time.time() - start_time) * 1000
        self.step_history.append({
            'step_num': self.state.step_count, 'reward': reward, 'context': context,
            'valid': result.valid, 'trust_score': result.trust_score,
            'integration_param': result.integration_param,
            'variance_level': self.state.last_variance_level,
            'duration_ms': duration_ms,
        })
        self._log_lot_event("system", "step_end", {"duration_ms": duration_ms, "valid": result.valid})

        if self.verbose >= 1 and self.state.step_count % 10 == 0:
            print(f"[{self.agent_id} S{self.state.step_count}] Trust: {result.trust_score:.3f}, "
                  f"Integration: {result.integration_param:.3f}, Variance: {self.state.last_variance_level:.4f}, Valid: {result.valid}")
        return result

    def _run_step(self, reward: float, context: float, raw_observation) -> StepResult:
        """The body of `step`; runs inside a scratch scope."""
        s = self.state
        p = self.params
        b = self.backend

        # --- 1. BUILD PREDICTOR INPUT (order is part of the predictor's contract) ---
        reward_handle = b.allocate([_saturate(reward)])
        context_handle = b.allocate([_saturate(context)])
        model_input = b.concat([s.belief_embedding, s.previous_emotion, reward_handle, context_handle], axis=0)
        input_width = b.size(model_input)
        if input_width != self.predictor.input_width:
            raise ShapeMismatchError(
                f"[{self.agent_id}] Concatenated input is {input_width} wide, predictor expects {self.predictor.input_width}.")

        # --- 2. PREDICT ---
        try:
            raw_emotion = self._predict(model_input)
        except InvalidPredictionError as e:
            return self._reject_step(str(e))

        # --- 3. TRUST-WEIGHTED BELIEF ---
        trust_weighted = b.clip(b.scale(s.belief_embedding, s.trust_score), -1.0, 1.0)

        # --- 4. EMOTION BLEND ---
        w = p['emotion_blend_weight']
        blended = b.add(b.scale(s.previous_emotion, w), b.scale(raw_emotion, 1.0 - w))
        new_emotion = b.clip(blended, -1.0, 1.0)

        # --- 5. BELIEF SUCCESSOR (uses the trust and integration this step started with) ---
        observation = b.allocate(self._fit_observation(raw_observation))
        observation_weight = p['belief_learn_rate'] * (0.5 + s.integration_param) * s.trust_score
        successor = b.clip(
            b.add(b.scale(trust_weighted, p['belief_decay']), b.scale(observation, observation_weight)),
            -1.0, 1.0)
        # clip_by_value passes NaN through, so a non-finite successor is rejected before anything is observed
        if not (b.is_finite(successor) and b.is_finite(new_emotion)):
            return self._reject_step("Successor state contains non-finite values.")

        # --- 6. VARIANCE ---
        report = self.variance_monitor.observe(b.norm(new_emotion))
        if report.high_variance:
            self._log_lot_event("variance", "high_variance", {"level": report.variance_level, "increasing": report.increasing})
        else:
            self._log_lot_event("variance", "observed", {"level": report.variance_level, "increasing": report.increasing})

        # --- 7. INTEGRATION & REFLEXIVITY ---
        agreement = b.cosine_similarity(raw_emotion, b.scale(s.previous_emotion, s.trust_score))
        new_integration, new_reflexivity = self._next_integration_params(agreement, report)

        # --- 8. TRUST ---
        raw_norm = b.norm(raw_emotion)
        new_trust, new_streak, trust_event = self._next_trust(raw_norm, report)
        self._log_lot_event("trust", trust_event, {"raw_norm": raw_norm, "trust_before": s.trust_score, "trust_after": new_trust})

        # --- 9. COMMIT ---
        emotion_values = b.read_values(new_emotion)
        self._commit(successor, new_emotion)
        self._log_lot_event("integration", "update", {"agreement": agreement, "before": s.integration_param, "after": new_integration})
        s.integration_param = new_integration
        s.reflexivity_param = new_reflexivity
        s.trust_score = new_trust
        s.stable_streak = new_streak
        s.last_variance_level = report.variance_level

        return StepResult(
            emotion=emotion_values,
            trust_score=s.trust_score,
            integration_param=s.integration_param,
            valid=True,
        )

    def _predict(self, model_input: TensorHandle) -> TensorHandle:
        """
        Runs the predictor and moves its output into the backend.
        Any predictor failure, wrong output width, or non-finite value is
        turned into an InvalidPredictionError.
        """
        b = self.backend
        if not b.is_finite(model_input):
            raise InvalidPredictionError("Predictor input contains non-finite values.")

        input_values = np.asarray(b.read_values(model_input), dtype=np.float32)
        try:
            prediction = self.predictor.predict(input_values)
            prediction = np.asarray(prediction, dtype=np.float64).reshape(-1)
        except (ShapeMismatchError, BackendAllocationError):
            raise
        except Exception as e:
            raise InvalidPredictionError(f"Predictor raised {type(e).__name__}: {e}") from e

        if prediction.size != self.emotion_dim:
            raise InvalidPredictionError(f"Predictor returned {prediction.size} values, expected {self.emotion_dim}.")
        raw_emotion = b.allocate(prediction)
        # Checked after the cast: finite float64 values can overflow the backend dtype
        if not b.is_finite(raw_emotion):
            raise InvalidPredictionError("Predictor output contains non-finite values.")
        self._log_lot_event("predictor", "prediction", {"raw": prediction.tolist()})
        return raw_emotion

    def _reject_step(self, reason: str) -> StepResult:
        """Keeps the prior state, penalizes trust, reports the step as invalid."""
        s = self.state
        p = self.params
        trust_before = s.trust_score
        s.trust_score = float(np.clip(max(p['trust_floor'], s.trust_score * p['trust_decay']), *TRUST_BOUNDS))
        s.stable_streak = 0

        if self.verbose >= 1:
            print(f"[{self.agent_id}] WARNING: Step {s.step_count} prediction rejected ({reason}). "
                  f"Trust {trust_before:.3f} -> {s.trust_score:.3f}.")
        self._log_lot_event("predictor", "prediction_invalid", {"reason": reason, "trust_before": trust_before, "trust_after": s.trust_score})
        self._log_lot_event("belief", "commit_skipped", {"step": s.step_count})

        return StepResult(
            emotion=self.backend.read_values(s.previous_emotion),
            trust_score=s.trust_score,
            integration_param=s.integration_param,
            valid=False,
        )

    def _commit(self, belief_successor: TensorHandle, new_emotion: TensorHandle):
        """Swaps the persistent handles. Retaining cannot fail, so the swap is all-or-nothing."""
        b = self.backend
        s = self.state
        b.retain(belief_successor)
        b.retain(new_emotion)
        old_belief, old_emotion = s.belief_embedding, s.previous_emotion
        s.belief_embedding = belief_successor
        s.previous_emotion = new_emotion
        b.release(old_belief)
        b.release(old_emotion)
        self._log_lot_event("belief", "commit", {"belief": str(belief_successor), "emotion": str(new_emotion)})

    def _next_integration_params(self, agreement: float, report: VarianceReport) -> Tuple[float, float]:
        """
        Bounded heuristic update of the integration and reflexivity scalars.
        Agreement between the raw prediction and the trust-weighted previous
        emotion pushes integration up and reflexivity down; rising variance
        adds damping; both drift back toward 0.5.
        """
        p = self.params
        s = self.state
        integration_delta = agreement
        reflexivity_delta = -agreement

        if report.high_variance or report.increasing:
            integration_delta += 0.6 * float(np.clip(report.variance_level - p['high_variance_threshold'], 0.0, 1.0))
            reflexivity_delta += 0.4 * float(np.clip(report.variance_level - s.last_variance_level, 0.0, 0.1))
        elif report.variance_level < 0.02:
            # Stable but maybe stuck
            reflexivity_delta += 0.3

        integration_delta += (0.5 - s.integration_param) * p['param_decay']
        reflexivity_delta += (0.5 - s.reflexivity_param) * p['param_decay']

        bound = p['integration_delta_bound']
        integration_delta = float(np.clip(integration_delta, -bound, bound))
        reflexivity_delta = float(np.clip(reflexivity_delta, -bound, bound))

        new_integration = float(np.clip(s.integration_param + integration_delta * p['param_learn_rate'], *INTEGRATION_BOUNDS))
        new_reflexivity = float(np.clip(s.reflexivity_param + reflexivity_delta * p['param_learn_rate'], *INTEGRATION_BOUNDS))
        return new_integration, new_reflexivity

    def _next_trust(self, raw_norm: float, report: VarianceReport) -> Tuple[float, int, str]:
        """Returns (trust, stable_streak, event name) after this step's prediction."""
        p = self.params
        s = self.state
        trust = s.trust_score
        streak = s.stable_streak

        if not np.isfinite(raw_norm) or raw_norm > p['emotion_norm_bound']:
            trust = max(p['trust_floor'], trust * p['trust_decay'])
            streak = 0
            event = "large_deviation"
        elif report.high_variance:
            streak = 0
            event = "hold_high_variance"
        else:
            streak += 1
            event = "stable"
            if streak >= p['trust_recovery_window']:
                trust = min(1.0, trust + p['trust_recovery_rate'])
                event = "recovery"
        return float(np.clip(trust, *TRUST_BOUNDS)), streak, event

    def _fit_observation(self, raw_observation) -> np.ndarray:
        """Pads or truncates the raw observation to the belief width; zeros when absent or unusable."""
        fitted = np.zeros(self.belief_dim)
        if raw_observation is None:
            return fitted
        try:
            values = np.asarray(raw_observation, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError) as e:
            if self.verbose >= 1: print(f"[{self.agent_id}] WARNING: Unusable observation ({e}). Using neutral input.")
            return fitted
        if not np.all(np.isfinite(values)):
            if self.verbose >= 1: print(f"[{self.agent_id}] WARNING: Observation has non-finite values. Using neutral input.")
            return fitted
        n = min(values.size, self.belief_dim)
        fitted[:n] = np.clip(values[:n], -BACKEND_FLOAT_MAX, BACKEND_FLOAT_MAX)
        return fitted

    # --- State Access & Persistence ---
    def get_state(self) -> Dict[str, Any]:
        """Plain-data snapshot of the agent state (no backend handles)."""
        s = self.state
        return {
            'version': STATE_VERSION,
            'belief_embedding': self.backend.read_values(s.belief_embedding),
            'previous_emotion': self.backend.read_values(s.previous_emotion),
            'trust_score': s.trust_score,
            'integration_param': s.integration_param,
            'reflexivity_param': s.reflexivity_param,
            'stable_streak': s.stable_streak,
            'step_count': s.step_count,
            'last_variance_level': s.last_variance_level,
            'variance_history': list(s.variance_history),
            'variance_observations': list(self.variance_monitor.observations),
        }

    def load_state(self, state_data: Dict[str, Any]) -> bool:
        """
        Restores a snapshot produced by `get_state`. The persistent handles
        are replaced, so the backend's live count is unchanged.
        """
        if self.is_torn_down:
            raise RuntimeError(f"[{self.agent_id}] load_state() called after cleanup().")
        belief = np.asarray(state_data['belief_embedding'], dtype=np.float64).reshape(-1)
        emotion = np.asarray(state_data['previous_emotion'], dtype=np.float64).reshape(-1)
        if belief.size != self.belief_dim or emotion.size != self.emotion_dim:
            raise ShapeMismatchError(
                f"[{self.agent_id}] Saved state has belief/emotion widths {belief.size}/{emotion.size}, "
                f"engine expects {self.belief_dim}/{self.emotion_dim}.")
        if not (np.all(np.isfinite(belief)) and np.all(np.isfinite(emotion))):
            raise ValueError(f"[{self.agent_id}] Saved state contains non-finite values.")

        b = self.backend
        s = self.state
        new_belief = b.retain(b.allocate(np.clip(belief, -1.0, 1.0)))
        try:
            new_emotion = b.retain(b.allocate(np.clip(emotion, -1.0, 1.0)))
        except BackendAllocationError:
            b.release(new_belief)
            raise
        b.release(s.belief_embedding)
        b.release(s.previous_emotion)
        s.belief_embedding = new_belief
        s.previous_emotion = new_emotion

        s.trust_score = float(np.clip(state_data.get('trust_score', s.trust_score), *TRUST_BOUNDS))
        s.integration_param = float(np.clip(state_data.get('integration_param', s.integration_param), *INTEGRATION_BOUNDS))
        s.reflexivity_param = float(np.clip(state_data.get('reflexivity_param', s.reflexivity_param), *INTEGRATION_BOUNDS))
        s.stable_streak = int(state_data.get('stable_streak', 0))
        s.step_count = int(state_data.get('step_count', s.step_count))
        s.last_variance_level = float(state_data.get('last_variance_level', 0.0))

        # Load buffers by refilling, not replacing, so the monitor and the state keep sharing one deque
        self.variance_monitor.reset()
        self.variance_monitor.observations.extend(float(v) for v in state_data.get('variance_observations', []))
        s.variance_history.extend(float(v) for v in state_data.get('variance_history', []))

        self._log_lot_event("lifecycle", "state_loaded", {"step": s.step_count})
        return True

    def save_state(self, filepath: Optional[str] = None) -> bool:
        """Saves the agent state to a .pkl file."""
        filepath = filepath or f"{self.agent_id}.pkl"
        if self.verbose >= 0: print(f"[{self.agent_id}] Saving agent state to {filepath}...")
        try:
            with open(filepath, 'wb') as f:
                pickle.dump(self.get_state(), f)
        except (OSError, pickle.PicklingError) as e:
            print(f"[{self.agent_id}] ERROR saving state: {e}")
            return False
        if self.verbose >= 0: print(f"[{self.agent_id}] State successfully saved.")
        return True

    def restore_state(self, filepath: Optional[str] = None) -> bool:
        """Loads the agent state from a .pkl file if it exists."""
        filepath = filepath or f"{self.agent_id}.pkl"
        if not os.path.exists(filepath):
            if self.verbose >= 0: print(f"[{self.agent_id}] No existing state file found. Starting fresh.")
            return False
        if self.verbose >= 0: print(f"[{self.agent_id}] Found existing state file. Loading from {filepath}...")
        try:
            with open(filepath, 'rb') as f:
                state_data = pickle.load(f)
            self.load_state(state_data)
        except (OSError, pickle.UnpicklingError, EOFError, KeyError, TypeError, ValueError, ShapeMismatchError) as e:
            print(f"[{self.agent_id}] ERROR loading state file (it might be corrupted). Starting fresh. Error: {e}")
            return False
        if self.verbose >= 0: print(f"[{self.agent_id}] State successfully loaded. Resuming from step {self.state.step_count}.")
        return True

    def cleanup(self):
        """Agent teardown: releases the persistent handles. Safe to call twice."""
        if self.is_torn_down:
            return
        self.backend.release(self.state.belief_embedding)
        self.backend.release(self.state.previous_emotion)
        self.is_torn_down = True
        self._log_lot_event("lifecycle", "engine_cleanup", {"live_handles": self.backend.live_count})
        if self.verbose >= 1: print(f"[{self.agent_id}] StepEngine cleanup finished.")

    # --- Helper & Utility ---
    def get_public_state_summary(self) -> Dict[str, Any]:
        s = self.state
        alive = not self.is_torn_down
        return {
            "agent_id": self.agent_id, "step_count": s.step_count,
            "trust_score": s.trust_score, "integration_param": s.integration_param,
            "reflexivity_param": s.reflexivity_param, "stable_streak": s.stable_streak,
            "variance_level": s.last_variance_level,
            "belief_norm": self.backend.norm(s.belief_embedding) if alive else 0.0,
            "emotion": self.backend.read_values(s.previous_emotion) if alive else [],
            "is_usable": self.is_usable and alive,
            "verbose": self.verbose,
        }

    def print_internal_state_summary(self, indent="  ", custom_logger=None):
        log_func = custom_logger if callable(custom_logger) else print
        summary = self.get_public_state_summary()

        log_func(f"{indent}--- Internal State Summary for Agent {self.agent_id} (Step {summary['step_count']}) ---")
        log_func(f"{indent}  Scalars: Trust: {summary['trust_score']:.3f}, Integration: {summary['integration_param']:.3f}, "
                 f"Reflexivity: {summary['reflexivity_param']:.3f}, StableStreak: {summary['stable_streak']}")
        log_func(f"{indent}  Variance: Level: {summary['variance_level']:.4f}, "
                 f"History: {len(self.state.variance_history)}/{self.state.variance_history.maxlen}")
        emotion_str = ", ".join(f"{v:.2f}" for v in summary['emotion'])
        log_func(f"{indent}  Emotion: [{emotion_str}], BeliefNorm: {summary['belief_norm']:.3f}")
        log_func(f"{indent}  Backend: {self.backend!r}, Usable: {summary['is_usable']}")
        recent = list(self.step_history)[-5:]
        if recent:
            invalid = sum(1 for h in self.step_history if not h['valid'])
            log_func(f"{indent}  Recent steps: {len(self.step_history)} recorded, {invalid} invalid.")
        log_func(f"{indent}--- End of Summary ---")
