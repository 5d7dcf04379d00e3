# emotion_predictor.py

"""
This file defines the agent's emotion predictors. The step engine treats a
predictor as an opaque strategy with one method, `predict`, and a declared
input/output width. The Keras model is the one the simulation trains and
ships; the callable wrapper lets any other regression model or a test stub
stand in for it.
"""

# This is the canonical, most robust way to import Keras
from tensorflow.keras import layers, Model
import tensorflow as tf
import numpy as np
from typing import Callable, Sequence

from configurations import DEFAULT_PREDICTOR_CONFIG


class EmotionPredictor:
    """
    Strategy interface: maps a fixed-width input vector to an emotion vector.
    Implementations must not keep hidden state between calls.
    """
    input_width: int
    output_width: int

    def predict(self, input_vector: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class CallablePredictor(EmotionPredictor):
    """Wraps a plain function `fn(vector) -> vector` with a declared shape contract."""

    def __init__(self, fn: Callable[[np.ndarray], Sequence[float]], input_width: int, output_width: int):
        self.fn = fn
        self.input_width = input_width
        self.output_width = output_width

    def predict(self, input_vector: np.ndarray) -> np.ndarray:
        return np.asarray(self.fn(np.asarray(input_vector, dtype=np.float32)), dtype=np.float32).reshape(-1)

    def __repr__(self):
        name = getattr(self.fn, '__name__', type(self.fn).__name__)
        return f"CallablePredictor({name}, in={self.input_width}, out={self.output_width})"


# ---------------------------------------------------------------------------
# Emotional Module - Dense MLP
# ---------------------------------------------------------------------------

class KerasEmotionPredictor(Model, EmotionPredictor):
    """
    The agent's "emotional module." A small dense network that reads the
    concatenated [belief, previous emotion, reward, context] vector and
    proposes the next emotion vector.
    """
    def __init__(self, input_width, output_width, hidden_units=None, output_activation=None, **kwargs):
        super(KerasEmotionPredictor, self).__init__(**kwargs)
        self.input_width = input_width
        self.output_width = output_width
        hidden_units = hidden_units or DEFAULT_PREDICTOR_CONFIG['hidden_units']
        output_activation = output_activation or DEFAULT_PREDICTOR_CONFIG['output_activation']

        emotion_input = layers.Input(shape=(self.input_width,), name="emotion_input")
        x = emotion_input
        for units in hidden_units:
            x = layers.Dense(units, activation='relu')(x)
        output_emotions = layers.Dense(self.output_width, activation=output_activation)(x)

        self.model = Model(inputs=emotion_input, outputs=output_emotions, name="emotional_module")

    def call(self, inputs):
        return self.model(inputs)

    def predict_emotions(self, input_vector: np.ndarray) -> np.ndarray:
        """The primary inference function. Reads one input vector, returns one emotion vector."""
        batch = tf.convert_to_tensor(np.asarray(input_vector, dtype=np.float32).reshape(1, -1))
        prediction = self.model(batch, training=False)
        return prediction.numpy().reshape(-1)

    # Keras' Model.predict is the batch API; the step engine uses the single-vector one.
    def predict(self, input_vector, *args, **kwargs):
        if args or kwargs or np.ndim(input_vector) != 1:
            return super().predict(input_vector, *args, **kwargs)
        return self.predict_emotions(input_vector)


def build_emotion_predictor(belief_dim: int, emotion_dim: int, config=None) -> KerasEmotionPredictor:
    """Builds a predictor whose width matches the engine's concatenation order."""
    params = dict(DEFAULT_PREDICTOR_CONFIG)
    if config:
        params.update(config)
    predictor = KerasEmotionPredictor(
        input_width=belief_dim + emotion_dim + 2,
        output_width=emotion_dim,
        hidden_units=params['hidden_units'],
        output_activation=params['output_activation'],
    )
    # Build the model by passing a single data point before any weights are loaded.
    predictor(np.zeros((1, predictor.input_width), dtype=np.float32))
    return predictor


def load_or_build_predictor(belief_dim: int, emotion_dim: int, config=None, verbose=0) -> KerasEmotionPredictor:
    """Builds the predictor and loads saved weights when a compatible file exists."""
    params = dict(DEFAULT_PREDICTOR_CONFIG)
    if config:
        params.update(config)
    predictor = build_emotion_predictor(belief_dim, emotion_dim, params)
    try:
        predictor.load_weights(params['MODEL_PATH'])
        if verbose >= 1: print(f"Loaded emotion predictor weights from {params['MODEL_PATH']}.")
    except (FileNotFoundError, OSError, ValueError) as e:
        if verbose >= 0: print(f"WARNING: Could not load emotion predictor weights. Error: {e}")
    return predictor
