# configurations.py

"""
Acts as a central repository for all default parameters of the affective
step engine and its driver. This file isolates tuning parameters from core
logic. It contains ONLY configuration dictionaries and should have no class
or function definitions.
"""

# ---------------------------------------------------------------------------
# Step Engine Defaults
# ---------------------------------------------------------------------------
DEFAULT_STEP_ENGINE_CONFIG = {
    # --- Shape contract ---
    'belief_dim': 64,                 # Width of the belief embedding
    'emotion_dim': 6,                 # Width of the predictor output (Joy, Fear, Curiosity, Frustration, Calm, Surprise)

    # --- Variance monitor ---
    'variance_window_size': 16,       # Ring buffer capacity (observations and variance history)
    'high_variance_threshold': 0.15,
    'increasing_variance_threshold': 0.01,

    # --- Belief blending ---
    'belief_learn_rate': 0.05,        # Weight of the observation term in the belief successor
    'belief_decay': 0.98,             # Retention of the trust-weighted belief
    'initial_belief_scale': 0.1,      # Stddev of the initial belief embedding

    # --- Emotion blending ---
    'emotion_blend_weight': 0.5,      # Share of previous emotion kept; (1 - w) comes from the raw prediction

    # --- Integration / reflexivity parameters ---
    'initial_integration': 0.5,
    'initial_reflexivity': 0.5,
    'param_learn_rate': 0.006,        # Scale applied to the bounded delta
    'param_decay': 0.03,              # Pull toward the neutral 0.5
    'integration_delta_bound': 1.0,   # |delta| cap before scaling; the scalars themselves stay in [0.05, 0.95]

    # --- Trust dynamics ---
    'initial_trust': 1.0,
    'emotion_norm_bound': 2.5,        # Raw prediction norm above this is a large deviation
    'trust_decay': 0.8,               # Multiplicative penalty on a deviation or an invalid step
    'trust_floor': 0.0,
    'trust_recovery_rate': 0.05,
    'trust_recovery_window': 3,       # Consecutive stable steps needed before trust recovers

    'seed': None,                     # Seed for the initial belief embedding
}

# ---------------------------------------------------------------------------
# Numeric Backend Defaults
# ---------------------------------------------------------------------------
DEFAULT_BACKEND_CONFIG = {
    'dtype': 'float32',
    'max_live_allocations': None,     # None = unbounded; an int simulates resource exhaustion
    'norm_epsilon': 1e-9,
}

# ---------------------------------------------------------------------------
# Emotion Predictor Defaults
# ---------------------------------------------------------------------------
DEFAULT_PREDICTOR_CONFIG = {
    'hidden_units': (32, 16),
    'output_activation': 'tanh',      # Keeps raw predictions inside [-1, 1]
    'MODEL_PATH': 'emotion_predictor.weights.h5',
    'training_epochs': 10,
    'training_batch_size': 64,
    'bootstrap_steps': 1500,
}

# ---------------------------------------------------------------------------
# Environment Defaults (driver-side signal source)
# ---------------------------------------------------------------------------
DEFAULT_ENVIRONMENT_CONFIG = {
    'dimensions': 12,                 # Field values at the head of each observation
    'emotion_dim': 6,
    'event_freq': 0.015,              # Chance per step to start an event once the gap has elapsed
    'event_duration': 120,
    'event_gap': 180,
    'base_emotion_drift_rate': 0.005, # Pull of base emotions toward the agent's emotions
    'base_emotion_reversion_rate': 0.001,
    'field_noise': 0.02,
    'max_steps': 5000,
    'initial_base_emotions': (0.6, 0.1, 0.3, 0.1, 0.5, 0.2),
    'events': (
        ("Joy", "A pleasant resonance occurs in the field.", 1.5),
        ("Fear", "A dissonant pattern is detected nearby.", -1.8),
        ("Curiosity", "An unexpected structural variation appears.", 1.2),
        ("Frustration", "System encounters processing resistance.", -1.0),
        ("Calm", "Patterns stabilize into local harmony.", 0.8),
        ("Surprise", "A sudden cascade shift happens.", 1.6),
    ),
}

# ---------------------------------------------------------------------------
# Language of Thought (structured event stream) Defaults
# ---------------------------------------------------------------------------
DEFAULT_LOT_CONFIG = {
    'enabled': True,
    'log_level_details': {
        'system': True, 'predictor': True, 'trust': True, 'lifecycle': True,
        'variance': False, 'integration': False, 'belief': False,
        # Individual events can be switched on without their whole source
        'variance.high_variance': True,
        'belief.commit_skipped': True,
    }
}
