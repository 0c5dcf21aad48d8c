import chess
import numpy as np
import pytest

from qpolicy.config import NUM_MOVES
from qpolicy.weights import (
    InMemoryWeightStore,
    ModelRegistry,
    QuantizedWeights,
    WeightHandles,
    random_weight_blobs,
)


@pytest.fixture
def registry() -> ModelRegistry:
    reg = ModelRegistry()
    reg.wire(InMemoryWeightStore(random_weight_blobs(seed=7)), shift=6)
    return reg


@pytest.fixture
def weights(registry) -> QuantizedWeights:
    return QuantizedWeights.load(registry.snapshot())


@pytest.fixture
def make_weights():
    """Zero trunk and FC matrix, so every move's logit is its FC bias."""

    def _make(fc_bias: dict[int, int] | None = None, default: int = 0, shift: int = 6) -> QuantizedWeights:
        handles = WeightHandles.default()
        blobs = {handle: bytes(length) for handle, length in handles.expected_lengths().items()}
        bias = np.full(NUM_MOVES, default, dtype="<i4")
        for index, value in (fc_bias or {}).items():
            bias[index] = value
        blobs[handles.fc_bias] = bias.tobytes()
        reg = ModelRegistry()
        reg.wire(InMemoryWeightStore(blobs), shift=shift)
        return QuantizedWeights.load(reg.snapshot())

    return _make


@pytest.fixture
def start_board() -> chess.Board:
    return chess.Board()
