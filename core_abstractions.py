# core_abstractions.py

"""
Contains the fundamental data structures shared by the backend, the
predictor and the step engine: the structured log entry, the opaque tensor
handle, the agent's persistent state, the per-step result handed to the
rendering/driver layer, and the error taxonomy.
"""

import time
import collections
from typing import Dict, List, Any, Deque, Optional, Tuple
from dataclasses import dataclass, field
import numpy as np # <-- Needed for sanitizing in LogEntry


@dataclass
class LogEntry:
    """A structured entry for the agent's Language of Thought stream."""
    timestamp: float = field(default_factory=time.time)
    event_source: str = "SYSTEM"
    event_type: str = "GENERIC"
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self):
        # Format floats to be more readable
        formatted_details = {}
        for k, v in self.details.items():
            if isinstance(v, (float, np.floating)):
                formatted_details[k] = f"{v:.3f}"
            else:
                formatted_details[k] = v

        detail_str = ", ".join(f"{k}={v}" for k, v in formatted_details.items())
        time_obj = time.localtime(self.timestamp)
        ms = f".{int((self.timestamp - int(self.timestamp)) * 1000):03d}"
        time_str = time.strftime('%H:%M:%S', time_obj) + ms

        return f"[{time_str}] [{self.event_source}:{self.event_type}] {detail_str}"


# ---------------------------------------------------------------------------
# Error Taxonomy
# ---------------------------------------------------------------------------

class AffectiveEngineError(Exception):
    """Base class for every error raised by the step engine and its backend."""


class InvalidPredictionError(AffectiveEngineError):
    """
    The predictor raised, returned the wrong width, or returned non-finite
    values. Recovered inside `step`: never escapes to the caller.
    """


class ShapeMismatchError(AffectiveEngineError):
    """
    The concatenated predictor input does not match the predictor's declared
    width. An integration fault: fatal, raised at construction.
    """


class BackendAllocationError(AffectiveEngineError):
    """
    The numeric backend could not allocate. The net-zero allocation guarantee
    no longer holds, so the engine must be rebuilt.
    """


# ---------------------------------------------------------------------------
# Backend Handle Abstraction
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TensorHandle:
    """
    An opaque, hashable reference to a value owned by a NumericBackend.
    The core never touches the tensor itself; it passes handles back to the
    backend that issued them.
    """
    id: int
    shape: Tuple[int, ...] = field(default=(), compare=False)

    def __str__(self) -> str:
        return f"Handle(#{self.id}, shape={self.shape})"


# ---------------------------------------------------------------------------
# Agent State & Step Output
# ---------------------------------------------------------------------------

@dataclass
class AgentState:
    """
    The persistent state of one agent. Mutated only by StepEngine.step;
    the two handles are the only long-lived backend allocations.
    """
    belief_embedding: TensorHandle
    previous_emotion: TensorHandle
    variance_history: Deque[float]
    trust_score: float = 1.0
    integration_param: float = 0.5
    reflexivity_param: float = 0.5
    stable_streak: int = 0
    step_count: int = 0
    last_variance_level: float = 0.0

    def __str__(self) -> str:
        return (f"AgentState(step={self.step_count}, trust={self.trust_score:.3f}, "
                f"integration={self.integration_param:.3f}, reflexivity={self.reflexivity_param:.3f}, "
                f"variance_samples={len(self.variance_history)}/{self.variance_history.maxlen})")


@dataclass(frozen=True)
class VarianceReport:
    """What the VarianceMonitor reports after each observation."""
    variance_level: float
    high_variance: bool
    increasing: bool


@dataclass(frozen=True)
class StepResult:
    """
    The sole output surface of a step. `emotion` is a plain list of floats,
    never a backend handle.
    """
    emotion: List[float]
    trust_score: float
    integration_param: float
    valid: bool

    def to_dict(self) -> Dict[str, Any]:
        """Serializes with the key names the rendering layer reads."""
        return {
            "emotion": list(self.emotion),
            "trustScore": self.trust_score,
            "integrationParam": self.integration_param,
            "valid": self.valid,
        }

    def dominant_emotion_index(self) -> Optional[int]:
        """Index of the strongest emotion component, or None for an empty vector."""
        if not self.emotion:
            return None
        return int(np.argmax(self.emotion))


def new_variance_history(capacity: int) -> Deque[float]:
    """A fixed-capacity ring buffer for variance samples."""
    return collections.deque(maxlen=capacity)
