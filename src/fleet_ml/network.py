"""Dense feed-forward network with online backpropagation.

ReLU on every hidden layer, logistic sigmoid on the output layer. Weights
for edge i are stored as a (layers[i+1], layers[i]) matrix so a forward
step is a plain ``W @ a + b``.
"""

from __future__ import annotations

import json
from typing import Protocol, Sequence

import numpy as np


class ShapeMismatchError(ValueError):
    """Raised when an input or target vector doesn't match the layer widths."""


class TrainingPair(Protocol):
    inputs: Sequence[float]
    outputs: Sequence[float]


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(x, -500, 500)))


def _relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(0.0, x)


class DenseNetwork:
    """Fully-connected network trained by per-sample gradient descent."""

    def __init__(
        self,
        layers: Sequence[int],
        learning_rate: float = 0.1,
        rng: np.random.Generator | None = None,
    ) -> None:
        layers = [int(n) for n in layers]
        if len(layers) < 2:
            raise ValueError("A network needs at least an input and an output layer")
        if any(n <= 0 for n in layers):
            raise ValueError(f"Layer widths must be positive, got {layers}")

        self.layers: list[int] = layers
        self.learning_rate = float(learning_rate)
        self.weights: list[np.ndarray] = []
        self.biases: list[np.ndarray] = []
        self._init_parameters(rng if rng is not None else np.random.default_rng())

    def _init_parameters(self, rng: np.random.Generator) -> None:
        """Xavier-style scaling on the fan-in, small uniform biases."""
        for fan_in, fan_out in zip(self.layers[:-1], self.layers[1:]):
            w = (rng.random((fan_out, fan_in)) - 0.5) * 2 / np.sqrt(fan_in)
            b = (rng.random(fan_out) - 0.5) * 0.1
            self.weights.append(w)
            self.biases.append(b)

    @property
    def input_size(self) -> int:
        return self.layers[0]

    @property
    def output_size(self) -> int:
        return self.layers[-1]

    def _as_vector(self, values: Sequence[float], width: int, what: str) -> np.ndarray:
        vec = np.asarray(values, dtype=float)
        if vec.ndim != 1 or vec.shape[0] != width:
            raise ShapeMismatchError(
                f"{what} must have length {width}, got shape {vec.shape}"
            )
        return vec

    def _activations(self, x: np.ndarray) -> list[np.ndarray]:
        """Run a forward pass, keeping every layer's activations (input first)."""
        acts = [x]
        last = len(self.weights) - 1
        for i, (w, b) in enumerate(zip(self.weights, self.biases)):
            z = w @ acts[-1] + b
            acts.append(_sigmoid(z) if i == last else _relu(z))
        return acts

    def forward(self, inputs: Sequence[float]) -> list[float]:
        """Map an input vector to the output layer's activations."""
        x = self._as_vector(inputs, self.input_size, "inputs")
        return self._activations(x)[-1].tolist()

    def train(self, samples: Sequence[TrainingPair], epochs: int = 1000) -> float:
        """Train in place and return the last epoch's squared error per sample.

        Updates are applied after every sample, so the order of ``samples``
        changes the resulting weights.
        """
        if not samples:
            return 0.0

        data = [
            (
                self._as_vector(s.inputs, self.input_size, "inputs"),
                self._as_vector(s.outputs, self.output_size, "outputs"),
            )
            for s in samples
        ]

        last = len(self.weights) - 1
        total_error = 0.0
        for _ in range(epochs):
            total_error = 0.0
            for x, target in data:
                acts = self._activations(x)
                errors = target - acts[-1]
                total_error += float(errors @ errors)

                for i in range(last, -1, -1):
                    a = acts[i + 1]
                    if i == last:
                        derivative = a * (1.0 - a)
                    else:
                        derivative = (a > 0).astype(float)
                    delta = errors * derivative
                    # Error for the layer below goes through the weights as
                    # they were before this sample's update.
                    errors = self.weights[i].T @ delta
                    self.weights[i] += self.learning_rate * np.outer(delta, acts[i])
                    self.biases[i] += self.learning_rate * delta

        return total_error / len(data)

    # ── Persistence ──────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "weights": [w.tolist() for w in self.weights],
            "biases": [b.tolist() for b in self.biases],
            "layers": list(self.layers),
            "learningRate": self.learning_rate,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def save(self, store: KeyValueStore, key: str) -> None:
        """Serialize the full network state under key."""
        store.set(key, self.to_json())

    def load(self, store: KeyValueStore, key: str) -> bool:
        """Restore state saved under key.

        Returns False, leaving the network untouched, when the key is
        missing, the payload can't be parsed, or its layers don't match
        this network's.
        """
        raw = store.get(key)
        if raw is None:
            return False
        try:
            state = _parse_state(raw)
        except (ValueError, TypeError, KeyError):
            return False
        if state["layers"] != self.layers:
            return False

        self.weights = state["weights"]
        self.biases = state["biases"]
        self.learning_rate = state["learning_rate"]
        return True


def _parse_state(raw: str) -> dict:
    """Decode a saved payload and check every matrix against its layers."""
    model = json.loads(raw)
    layers = [int(n) for n in model["layers"]]
    weights = [np.asarray(w, dtype=float) for w in model["weights"]]
    biases = [np.asarray(b, dtype=float) for b in model["biases"]]
    learning_rate = float(model["learningRate"])

    if len(layers) < 2 or len(weights) != len(layers) - 1 or len(biases) != len(weights):
        raise ValueError("layer count doesn't match weights/biases")
    for i, (w, b) in enumerate(zip(weights, biases)):
        if w.shape != (layers[i + 1], layers[i]) or b.shape != (layers[i + 1],):
            raise ValueError(f"bad shape at layer {i}")

    return {
        "layers": layers,
        "weights": weights,
        "biases": biases,
        "learning_rate": learning_rate,
    }
