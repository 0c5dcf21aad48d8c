import numpy as np
import pytest

from qpolicy.board import BoardState
from qpolicy.config import FC_CHUNK_ROWS, FC_NUM_CHUNKS, NUM_MOVES, POLICY_SIZE
from qpolicy.errors import ModelNotReadyError, PreconditionError, WeightLengthError
from qpolicy.inference import infer_best
from qpolicy.training.data import legal_move_mask
from qpolicy.weights import (
    InMemoryWeightStore,
    ModelRegistry,
    NpzWeightStore,
    QuantizedWeights,
    WeightHandles,
    fc_chunk_rows,
    random_weight_blobs,
    registry_from_npz,
    resolve_weights,
    save_npz_store,
)


def test_fc_chunk_rows() -> None:
    assert FC_NUM_CHUNKS == 25
    assert fc_chunk_rows(0) == FC_CHUNK_ROWS
    assert fc_chunk_rows(24) == 88
    assert sum(fc_chunk_rows(i) for i in range(FC_NUM_CHUNKS)) == NUM_MOVES
    with pytest.raises(PreconditionError):
        fc_chunk_rows(25)


def test_handles_expected_lengths() -> None:
    lengths = WeightHandles.default().expected_lengths()
    assert lengths["stem.weight"] == 24 * 18 * 9
    assert lengths["block3.conv2.bias"] == 24 * 4
    assert lengths["policy.weight"] == 48
    assert lengths["fc.chunk24"] == 88 * POLICY_SIZE
    assert lengths["fc.bias"] == NUM_MOVES * 4


def test_unwired_registry_refuses_inference(start_board) -> None:
    registry = ModelRegistry()
    assert not registry.ready
    with pytest.raises(ModelNotReadyError):
        registry.snapshot()
    with pytest.raises(ModelNotReadyError):
        infer_best(registry, BoardState.starting_position(), legal_move_mask(start_board))


def test_wrong_blob_length_is_rejected() -> None:
    blobs = random_weight_blobs(seed=1)
    blobs["block2.conv1.weight"] = blobs["block2.conv1.weight"][:-1]
    registry = ModelRegistry()
    with pytest.raises(WeightLengthError) as excinfo:
        registry.wire(InMemoryWeightStore(blobs))
    assert excinfo.value.handle == "block2.conv1.weight"
    assert excinfo.value.actual == excinfo.value.expected - 1
    assert not registry.ready


def test_unvalidated_wiring_fails_on_first_load() -> None:
    blobs = random_weight_blobs(seed=1)
    del blobs["fc.chunk07"]
    registry = ModelRegistry()
    registry.wire(InMemoryWeightStore(blobs), validate=False)
    assert registry.ready
    with pytest.raises(PreconditionError):
        QuantizedWeights.load(registry.snapshot())


def test_shift_range() -> None:
    with pytest.raises(PreconditionError):
        ModelRegistry().wire(InMemoryWeightStore(random_weight_blobs()), shift=32)


def test_rewire_bumps_version_and_keeps_old_snapshot(registry) -> None:
    old = registry.snapshot()
    new = registry.wire(InMemoryWeightStore(random_weight_blobs(seed=9)), shift=4)
    assert new.version == old.version + 1
    assert registry.snapshot() is new
    assert QuantizedWeights.load(old).shift == 6
    assert QuantizedWeights.load(new).shift == 4


def test_fc_chunks_concatenate_in_index_order() -> None:
    blobs = random_weight_blobs(seed=2)
    blobs["fc.chunk01"] = np.concatenate([
        np.full(POLICY_SIZE, 5, dtype=np.int8),
        np.zeros((FC_CHUNK_ROWS - 1) * POLICY_SIZE, dtype=np.int8),
    ]).tobytes()
    registry = ModelRegistry()
    registry.wire(InMemoryWeightStore(blobs))
    weights = QuantizedWeights.load(registry.snapshot())
    assert weights.fc_weight.shape == (NUM_MOVES, POLICY_SIZE)
    assert (weights.fc_weight[FC_CHUNK_ROWS] == 5).all()
    assert not weights.fc_weight[FC_CHUNK_ROWS + 1].any()


def test_resolve_weights(registry, weights) -> None:
    assert resolve_weights(weights) is weights
    assert resolve_weights(registry).version == weights.version
    with pytest.raises(TypeError):
        resolve_weights("model.npz")


def test_npz_round_trip(tmp_path, weights) -> None:
    path = save_npz_store(tmp_path / "tiny_weights.npz", random_weight_blobs(seed=7), shift=5)
    store = NpzWeightStore(path)
    assert store.shift == 5
    assert "meta.shift" not in store.handles()

    loaded = resolve_weights(registry_from_npz(path))
    assert loaded.shift == 5
    assert np.array_equal(loaded.fc_weight, weights.fc_weight)
    assert np.array_equal(loaded.stem.bias, weights.stem.bias)
    assert resolve_weights(registry_from_npz(path, shift=3)).shift == 3


def test_missing_npz(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        NpzWeightStore(tmp_path / "absent.npz")
