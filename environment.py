
# PURPOSE: Defines the agent's world: a field of abstract dimensions whose mood follows the agent's emotions.

import copy
import gymnasium as gym
import numpy as np
from typing import Dict, Any, Optional

from configurations import DEFAULT_ENVIRONMENT_CONFIG


class EmotionalSpace(gym.Env):
    """
    The environment's "action" is the agent's current emotion vector. Each
    step the environment's own base emotions drift toward it, timed events
    fire and fade, and the field dimensions are recomputed from the base
    emotions. The observation is the field followed by the base emotions.
    """
    metadata = {"render_modes": []}

    def __init__(self, config: Optional[Dict] = None, verbose: int = 0):
        super().__init__()
        self.params = copy.deepcopy(DEFAULT_ENVIRONMENT_CONFIG)
        if config:
            self.params.update(config)
        self.verbose = verbose

        self.dimensions = self.params['dimensions']
        self.emotion_dim = self.params['emotion_dim']
        self.events = list(self.params['events'])
        self.event_names = [e[0] for e in self.events]

        self.observation_space = gym.spaces.Box(-1.0, 1.0, shape=(self.dimensions + self.emotion_dim,), dtype=np.float32)
        self.action_space = gym.spaces.Box(-1.0, 1.0, shape=(self.emotion_dim,), dtype=np.float32)

        self.step_count = 0
        self.event_timer = 0
        self.gap_timer = self.params['event_gap']
        self.current_event = None
        self.base_emotions = np.array(self.params['initial_base_emotions'], dtype=np.float64)
        self.field = np.zeros(self.dimensions, dtype=np.float64)

    def _get_obs(self):
        return np.concatenate([self.field, np.clip(self.base_emotions, 0.0, 1.0)]).astype(np.float32)

    def _get_info(self, event_type=None, description="Ambient fluctuations."):
        # Context id: event index + 1 while an event is active, 0 otherwise
        context = self.event_names.index(event_type) + 1 if event_type in self.event_names else 0
        return {"context": context, "event_type": event_type, "description": description, "step": self.step_count}

    def reset(self, seed=None, options=None):
        super().reset(seed=seed)
        self.step_count = 0
        self.event_timer = 0
        self.gap_timer = self.params['event_gap']
        self.current_event = None
        self.base_emotions = np.array(self.params['initial_base_emotions'], dtype=np.float64)
        self.field = np.zeros(self.dimensions, dtype=np.float64)
        self._update_field()
        return self._get_obs(), self._get_info()

    def step(self, action):
        self.step_count += 1
        agent_emotions = np.zeros(self.emotion_dim)
        values = np.nan_to_num(np.asarray(action, dtype=np.float64).reshape(-1), nan=0.0, posinf=1.0, neginf=-1.0)
        n = min(values.size, self.emotion_dim)
        agent_emotions[:n] = np.clip(values[:n], -1.0, 1.0)

        # --- Base Emotion Drift ---
        drift = ((agent_emotions - self.base_emotions) * self.params['base_emotion_drift_rate']
                 + (0.5 - self.base_emotions) * self.params['base_emotion_reversion_rate'])
        self.base_emotions = np.clip(self.base_emotions + drift, 0.0, 1.0)

        # --- Event Management ---
        reward = 0.0
        event_type = None
        description = "Ambient fluctuations."
        if self.event_timer > 0:
            self.event_timer -= 1
            event_type = self.current_event[0]
            description = self.current_event[1]
            # Reward fades with the remaining event duration
            reward = self.current_event[2] * (self.event_timer / self.params['event_duration'])
            if self.event_timer == 0:
                self.current_event = None
                self.gap_timer = self.params['event_gap']
                description = "Event concluded. System stabilizing."
                if self.verbose >= 1: print(f"[EmotionalSpace] Event concluded at step {self.step_count}.")
        elif self.gap_timer > 0:
            self.gap_timer -= 1
            description = "System stable."
        else:
            intensity = float(np.mean(agent_emotions))
            trigger_prob = self.params['event_freq'] * (1 + intensity * 0.5)
            if self.np_random.random() < trigger_prob:
                event_idx = self._choose_event(agent_emotions)
                self.current_event = self.events[event_idx]
                event_type, description, base_reward = self.current_event
                # Stronger reward when the agent already feels the matching emotion
                felt = agent_emotions[event_idx] if event_idx < self.emotion_dim else 0.0
                reward = base_reward * (felt * 0.7 + 0.3)
                self.event_timer = self.params['event_duration']
                if self.verbose >= 1: print(f"[EmotionalSpace] Event triggered at step {self.step_count}: {event_type} - {description}")

        self._update_field(event_type)

        terminated = False
        truncated = self.params['max_steps'] is not None and self.step_count >= self.params['max_steps']
        return self._get_obs(), float(reward), terminated, truncated, self._get_info(event_type, description)

    def _choose_event(self, agent_emotions: np.ndarray) -> int:
        """Event choice is biased toward the agent's stronger emotions."""
        weights = np.ones(len(self.events))
        n = min(len(self.events), self.emotion_dim)
        weights[:n] = agent_emotions[:n] * 0.5 + 0.5
        weights = np.clip(weights, 0.0, None)
        total = weights.sum()
        probs = weights / total if total > 0 else np.full(len(self.events), 1.0 / len(self.events))
        return int(self.np_random.choice(len(self.events), p=probs))

    def _update_field(self, event_type=None):
        e = np.zeros(6)
        k = min(6, self.emotion_dim)
        e[:k] = self.base_emotions[:k]
        field = self.field

        field[0] = (e[0] - e[1]) * 0.8           # Joy vs. Fear
        if self.dimensions > 1: field[1] = (e[4] - e[3]) * 0.7  # Calm vs. Frustration
        if self.dimensions > 2: field[2] = e[2] * 1.5 - 0.5     # Curiosity
        if self.dimensions > 3: field[3] = e[5] * 1.2 - 0.3     # Surprise

        noise = self.params['field_noise']
        for i in range(4, self.dimensions):
            influence = (self.base_emotions[i % self.emotion_dim] - 0.5) * 0.15
            field[i] = field[i] * 0.95 + influence + (self.np_random.random() - 0.5) * noise

        if event_type in self.event_names:
            idx = self.event_names.index(event_type)
            field[idx % self.dimensions] += 0.4
            field[(idx + 1) % self.dimensions] += 0.15
            for dim in self.np_random.integers(0, self.dimensions, size=3):
                field[dim] += (self.np_random.random() - 0.5) * 0.1

        np.clip(field, -1.0, 1.0, out=field)

    def render(self):
        return None

    def close(self):
        pass
