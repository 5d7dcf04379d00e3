from __future__ import annotations

import numpy as np

from environment import EmotionalSpace


def test_reset_returns_field_and_base_emotions() -> None:
    env = EmotionalSpace()
    obs, info = env.reset(seed=1)
    assert obs.shape == (env.dimensions + env.emotion_dim,)
    assert env.observation_space.contains(obs)
    assert info["context"] == 0
    assert info["event_type"] is None


def test_step_contract() -> None:
    env = EmotionalSpace()
    env.reset(seed=2)
    obs, reward, terminated, truncated, info = env.step(np.zeros(env.emotion_dim, dtype=np.float32))
    assert obs.shape == (env.dimensions + env.emotion_dim,)
    assert isinstance(reward, float)
    assert terminated is False
    assert truncated is False
    assert {"context", "event_type", "description"} <= set(info)


def test_event_sets_context_id() -> None:
    env = EmotionalSpace({"event_gap": 0, "event_freq": 1.0})
    env.reset(seed=3)
    _, reward, _, _, info = env.step(np.zeros(env.emotion_dim, dtype=np.float32))
    assert info["event_type"] in env.event_names
    assert info["context"] == env.event_names.index(info["event_type"]) + 1
    assert reward != 0.0


def test_base_emotions_follow_agent_and_stay_bounded() -> None:
    env = EmotionalSpace({"event_freq": 0.0})
    env.reset(seed=4)
    start = env.base_emotions.copy()
    for _ in range(200):
        obs, *_ = env.step(np.ones(env.emotion_dim, dtype=np.float32))
    assert env.base_emotions.mean() > start.mean()
    assert np.all((env.base_emotions >= 0.0) & (env.base_emotions <= 1.0))
    assert np.all(np.abs(obs) <= 1.0)


def test_truncates_at_max_steps() -> None:
    env = EmotionalSpace({"max_steps": 3})
    env.reset(seed=5)
    flags = [env.step(np.zeros(env.emotion_dim))[3] for _ in range(3)]
    assert flags == [False, False, True]
