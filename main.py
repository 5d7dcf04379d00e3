# main.py

import os
import numpy as np
import random
import time

# --- The Cognitive Architecture ---
from cognitive_engine import StepEngine
from numeric_backend import acquire_backend
from core_abstractions import BackendAllocationError

# --- Emotion Predictor ---
from configurations import DEFAULT_STEP_ENGINE_CONFIG, DEFAULT_PREDICTOR_CONFIG, DEFAULT_ENVIRONMENT_CONFIG
from emotion_predictor import load_or_build_predictor
from train_predictor import collect_experience_data, train_emotion_predictor

# --- The Environment ---
from environment import EmotionalSpace

# ---------------------------------------------------------------------------
# Main Execution Block for the Affective Agent
# ---------------------------------------------------------------------------
if __name__ == '__main__':
    # Set random seeds for reproducibility
    seed_val = int(time.time())
    np.random.seed(seed_val)
    random.seed(seed_val)
    print(f"Global random seed set to: {seed_val}")

    belief_dim = DEFAULT_STEP_ENGINE_CONFIG['belief_dim']
    emotion_dim = DEFAULT_STEP_ENGINE_CONFIG['emotion_dim']
    emotion_names = [e[0] for e in DEFAULT_ENVIRONMENT_CONFIG['events']]

    # --- Step 1: Backend handshake ---
    print("\n--- Acquiring Numeric Backend ---")
    backend = acquire_backend(verbose=1)

    # --- Step 2: Bootstrap the Agent's Emotion Predictor ---
    # This step is only run if the weight file doesn't exist.
    print("\n--- Bootstrapping Agent's Emotion Predictor ---")
    model_path = DEFAULT_PREDICTOR_CONFIG['MODEL_PATH']
    if os.path.exists(model_path):
        print("Found pre-trained emotion predictor. Loading it.")
        predictor = load_or_build_predictor(belief_dim, emotion_dim, verbose=1)
    else:
        print("No pre-trained predictor found. Performing a quick training session...")
        bootstrap_env = EmotionalSpace()
        experiences = collect_experience_data(bootstrap_env, num_steps=DEFAULT_PREDICTOR_CONFIG['bootstrap_steps'], belief_dim=belief_dim)
        predictor = train_emotion_predictor(experiences, belief_dim=belief_dim, emotion_dim=emotion_dim)
        predictor.save_weights(model_path)
        bootstrap_env.close()
        print("Emotion predictor trained and saved.")

    # --- Step 3: Initialize the Agent & Environment ---
    print("\n--- Initializing Affective Agent ---")
    env = EmotionalSpace(verbose=1)
    agent = StepEngine(backend, predictor, agent_id="affective_agent_v1", config={'seed': seed_val}, verbose=1)
    agent.restore_state()

    # --- Step 4: Run the Main Simulation Loop (with robust save on exit) ---
    try:
        print("\n--- Starting Main Simulation Loop ---")
        obs, info = env.reset(seed=seed_val)
        reward = 0.0

        for tick in range(DEFAULT_ENVIRONMENT_CONFIG['max_steps']):
            result = agent.step(reward, info['context'], obs)

            if info['event_type'] is not None and agent.verbose >= 2:
                for entry in agent.current_step_lot_stream:
                    print(f"    {entry}")

            if tick % 100 == 0:
                dominant = result.dominant_emotion_index()
                mood = emotion_names[dominant] if dominant is not None and dominant < len(emotion_names) else "n/a"
                print(f"[Tick {tick}] Mood: {mood}, Trust: {result.trust_score:.3f}, "
                      f"Integration: {result.integration_param:.3f}, Valid: {result.valid}, Live handles: {backend.live_count}")

            obs, reward, terminated, truncated, info = env.step(np.asarray(result.emotion, dtype=np.float32))

            if terminated or truncated:
                print("\n--- Episode Finished ---")
                break

    except KeyboardInterrupt:
        print("\n--- Simulation interrupted by user. ---")
    except BackendAllocationError as e:
        print(f"\n--- Simulation halted: numeric backend failure. {e} ---")
    finally:
        # --- Step 5: Final Wrap-up ---
        print("\n--- Simulation Complete ---")
        agent.print_internal_state_summary()
        if agent.is_usable:
            agent.save_state()
        agent.cleanup()
        env.close()
