from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest


def _find_repo_root(start: Path) -> Path:
    cur = start.resolve()
    for candidate in [cur, *cur.parents]:
        if (candidate / "cognitive_engine.py").is_file() and (candidate / "tests").is_dir():
            return candidate
    return cur


repo_root = _find_repo_root(Path(__file__).parent)
repo_root_str = str(repo_root)
if repo_root_str not in sys.path:
    sys.path.insert(0, repo_root_str)

from cognitive_engine import StepEngine  # noqa: E402
from emotion_predictor import CallablePredictor  # noqa: E402
from numeric_backend import NumericBackend  # noqa: E402

BELIEF_DIM = 8
EMOTION_DIM = 3


@pytest.fixture
def backend() -> NumericBackend:
    return NumericBackend()


@pytest.fixture
def make_engine(backend):
    """Builds a small engine around a plain function predictor."""

    def _make(fn, backend_override=None, **config):
        params = {"belief_dim": BELIEF_DIM, "emotion_dim": EMOTION_DIM, "seed": 7}
        params.update(config)
        predictor = CallablePredictor(fn, params["belief_dim"] + params["emotion_dim"] + 2, params["emotion_dim"])
        return StepEngine(backend_override or backend, predictor, agent_id="test_agent", config=params)

    return _make


@pytest.fixture
def constant_emotion():
    values = np.array([0.3, -0.2, 0.1], dtype=np.float32)
    return lambda _vector: values
