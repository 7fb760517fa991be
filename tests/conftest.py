"""Shared fixtures for the fleet_ml tests."""
import math

import numpy as np
import pytest

from fleet_ml.engine import FleetMLEngine
from fleet_ml.model_store import MemoryStore


class CountingStore(MemoryStore):
    """MemoryStore that records how many writes it received."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.writes = 0

    def set(self, key, value):
        self.writes += 1
        super().set(key, value)


def pin_output(network, values):
    """Make a network return ``values`` for every input."""
    network.weights[-1][:] = 0.0
    network.biases[-1][:] = [math.log(v / (1 - v)) for v in values]


@pytest.fixture
def store():
    return CountingStore()


@pytest.fixture
def make_engine(store):
    def _make(seed=42, target_store=None, epochs=3, sample_count=20):
        return FleetMLEngine(
            store=target_store if target_store is not None else store,
            rng=np.random.default_rng(seed),
            epochs=epochs,
            sample_count=sample_count,
        )
    return _make
