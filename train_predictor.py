# train_predictor.py

"""
This script contains the functions to bootstrap the agent's emotion
predictor. It collects experience from the EmotionalSpace environment under
random emotional "actions" and fits the KerasEmotionPredictor to the
environment's resulting mood (its base emotions).
"""
import numpy as np
from tensorflow import keras
from tqdm import tqdm

from environment import EmotionalSpace
from emotion_predictor import KerasEmotionPredictor, build_emotion_predictor
from configurations import DEFAULT_PREDICTOR_CONFIG

# ---------------------------------------------------------------------------
# Data Collection
# ---------------------------------------------------------------------------
def collect_experience_data(env: EmotionalSpace, num_steps=10000, belief_dim=64):
    """
    Runs the environment with random emotion vectors to collect a dataset of
    experiences. Each entry holds the predictor input in engine order
    ([belief | emotion | reward | context]) and the next base emotions.
    """
    print(f"Collecting {num_steps} steps of experience data...")
    experiences = []

    obs, info = env.reset()
    reward = 0.0

    for _ in tqdm(range(num_steps)):
        action = env.action_space.sample()
        next_obs, next_reward, terminated, truncated, next_info = env.step(action)

        # The raw observation stands in for the belief embedding, fitted to its width
        belief = np.zeros(belief_dim, dtype=np.float32)
        n = min(belief_dim, obs.size)
        belief[:n] = obs[:n]

        experiences.append({
            'input': np.concatenate([belief, action, [reward, info['context']]]).astype(np.float32),
            'target': np.asarray(env.base_emotions, dtype=np.float32).copy(),
        })

        obs, reward, info = next_obs, next_reward, next_info
        if terminated or truncated:
            obs, info = env.reset()
            reward = 0.0

    print("Data collection complete.")
    return experiences

# ---------------------------------------------------------------------------
# Predictor Training
# ---------------------------------------------------------------------------
def train_emotion_predictor(experiences, belief_dim=64, emotion_dim=6, epochs=None, batch_size=None,
                            config=None) -> KerasEmotionPredictor:
    """Trains the emotion predictor on the collected (input, next mood) pairs."""
    print("--- Training Emotion Predictor ---")
    params = dict(DEFAULT_PREDICTOR_CONFIG)
    if config:
        params.update(config)
    epochs = epochs or params['training_epochs']
    batch_size = batch_size or params['training_batch_size']

    dataset_X = np.array([exp['input'] for exp in experiences], dtype=np.float32)
    dataset_y = np.array([exp['target'] for exp in experiences], dtype=np.float32)
    print(f"Dataset shapes: X={dataset_X.shape}, y={dataset_y.shape}")

    predictor = build_emotion_predictor(belief_dim, emotion_dim, params)
    if dataset_X.shape[1] != predictor.input_width:
        raise ValueError(f"Experience inputs are {dataset_X.shape[1]} wide, predictor expects {predictor.input_width}.")

    predictor.compile(optimizer=keras.optimizers.Adam(), loss='mse')
    predictor.fit(dataset_X, dataset_y, epochs=epochs, batch_size=batch_size,
                  validation_split=0.1 if len(dataset_X) >= 10 else 0.0)

    print("Emotion predictor training complete.")
    return predictor
