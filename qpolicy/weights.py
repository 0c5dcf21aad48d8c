"""Weight storage, administrative wiring and per-request weight caching.

The core never owns weights. A `WeightStore` resolves opaque handles to
immutable byte blobs; `ModelRegistry.wire` installs a new set of handles
(plus the requantization shift) as a versioned `ModelSnapshot` and marks the
model ready. Inference works against a snapshot, so a call that started
before a rewire finishes on the weights it started with.

Blob formats:
    conv / policy weights   int8, one byte per value
    biases                  int32 little endian, 4 bytes per value
    fc.chunkNN              int8 rows of 128 values, 191 rows per chunk
                            (the last chunk holds the remaining 88)
"""

import dataclasses
import logging
import threading
from pathlib import Path
from typing import Mapping, Protocol

import numpy as np

from qpolicy.config import (
    DEFAULT_SHIFT,
    FC_CHUNK_ROWS,
    FC_NUM_CHUNKS,
    INPUT_CHANNELS,
    NUM_BLOCKS,
    NUM_MOVES,
    POLICY_CHANNELS,
    POLICY_SIZE,
    TRUNK_CHANNELS,
)
from qpolicy.errors import ModelNotReadyError, PreconditionError, WeightLengthError

logger = logging.getLogger(__name__)

BIAS_BYTES = 4
SHIFT_KEY = "meta.shift"


def fc_chunk_rows(chunk: int) -> int:
    """Number of move rows stored in fully-connected chunk ``chunk``."""
    if not 0 <= chunk < FC_NUM_CHUNKS:
        raise PreconditionError(f"FC chunk index out of range: {chunk}")
    return min(FC_CHUNK_ROWS, NUM_MOVES - chunk * FC_CHUNK_ROWS)


def decode_int8(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.int8)


def decode_bias(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype="<i4").astype(np.int64)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class WeightStore(Protocol):
    def get(self, handle: str) -> bytes: ...


class InMemoryWeightStore:
    """Dict-backed store; blobs are copied to bytes on insertion."""

    def __init__(self, blobs: Mapping[str, bytes] | None = None):
        self._blobs = {name: bytes(blob) for name, blob in (blobs or {}).items()}

    def get(self, handle: str) -> bytes:
        try:
            return self._blobs[handle]
        except KeyError:
            raise PreconditionError(f"Weight store has no blob {handle!r}") from None

    def handles(self) -> list[str]:
        return sorted(self._blobs)


class NpzWeightStore:
    """Store backed by a numpy ``.npz`` archive holding one uint8 array per handle."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Weight archive not found: {self.path}")
        with np.load(self.path) as archive:
            self._blobs = {name: archive[name].astype(np.uint8).tobytes() for name in archive.files}
        meta = self._blobs.pop(SHIFT_KEY, None)
        # Shift the weights were exported for, if recorded
        self.shift = meta[0] if meta else None

    def get(self, handle: str) -> bytes:
        try:
            return self._blobs[handle]
        except KeyError:
            raise PreconditionError(f"{self.path.name} has no blob {handle!r}") from None

    def handles(self) -> list[str]:
        return sorted(self._blobs)


def save_npz_store(path: str | Path, blobs: Mapping[str, bytes], shift: int | None = None) -> Path:
    """Write blobs as an ``.npz`` archive readable by `NpzWeightStore`."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    arrays = {name: np.frombuffer(bytes(blob), dtype=np.uint8) for name, blob in blobs.items()}
    if shift is not None:
        arrays[SHIFT_KEY] = np.array([shift], dtype=np.uint8)
    np.savez_compressed(path, **arrays)
    return path


# ---------------------------------------------------------------------------
# Handles
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class BlockHandles:
    conv1_weight: str
    conv1_bias: str
    conv2_weight: str
    conv2_bias: str


@dataclasses.dataclass(frozen=True)
class WeightHandles:
    """One opaque handle per tensor of the network."""

    stem_weight: str
    stem_bias: str
    blocks: tuple[BlockHandles, ...]
    policy_weight: str
    policy_bias: str
    fc_chunks: tuple[str, ...]
    fc_bias: str

    def __post_init__(self):
        if len(self.blocks) != NUM_BLOCKS:
            raise PreconditionError(f"Expected {NUM_BLOCKS} residual blocks, got {len(self.blocks)}")
        if len(self.fc_chunks) != FC_NUM_CHUNKS:
            raise PreconditionError(f"Expected {FC_NUM_CHUNKS} FC chunks, got {len(self.fc_chunks)}")

    @classmethod
    def default(cls) -> "WeightHandles":
        return cls(
            stem_weight="stem.weight",
            stem_bias="stem.bias",
            blocks=tuple(
                BlockHandles(
                    conv1_weight=f"block{i}.conv1.weight",
                    conv1_bias=f"block{i}.conv1.bias",
                    conv2_weight=f"block{i}.conv2.weight",
                    conv2_bias=f"block{i}.conv2.bias",
                )
                for i in range(NUM_BLOCKS)
            ),
            policy_weight="policy.weight",
            policy_bias="policy.bias",
            fc_chunks=tuple(f"fc.chunk{i:02d}" for i in range(FC_NUM_CHUNKS)),
            fc_bias="fc.bias",
        )

    def expected_lengths(self) -> dict[str, int]:
        """Byte length every handle must resolve to."""
        trunk_weight = TRUNK_CHANNELS * TRUNK_CHANNELS * 9
        lengths = {
            self.stem_weight: TRUNK_CHANNELS * INPUT_CHANNELS * 9,
            self.stem_bias: TRUNK_CHANNELS * BIAS_BYTES,
            self.policy_weight: POLICY_CHANNELS * TRUNK_CHANNELS,
            self.policy_bias: POLICY_CHANNELS * BIAS_BYTES,
            self.fc_bias: NUM_MOVES * BIAS_BYTES,
        }
        for block in self.blocks:
            lengths[block.conv1_weight] = trunk_weight
            lengths[block.conv1_bias] = TRUNK_CHANNELS * BIAS_BYTES
            lengths[block.conv2_weight] = trunk_weight
            lengths[block.conv2_bias] = TRUNK_CHANNELS * BIAS_BYTES
        for chunk, handle in enumerate(self.fc_chunks):
            lengths[handle] = fc_chunk_rows(chunk) * POLICY_SIZE
        return lengths


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class ModelSnapshot:
    """A ready, versioned view of the wired weights. Read-only."""

    store: WeightStore
    handles: WeightHandles
    shift: int
    version: int

    def fetch(self, handle: str, expected: int) -> bytes:
        blob = self.store.get(handle)
        if blob is None or len(blob) != expected:
            raise WeightLengthError(handle, expected, 0 if blob is None else len(blob))
        return blob


class ModelRegistry:
    """Holds the currently wired weights and the ready flag.

    `wire` replaces everything at once; readers grab a `ModelSnapshot` and
    never observe a half-installed model.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot: ModelSnapshot | None = None
        self._version = 0

    @property
    def ready(self) -> bool:
        return self._snapshot is not None

    def wire(
        self,
        store: WeightStore,
        handles: WeightHandles | None = None,
        shift: int = DEFAULT_SHIFT,
        validate: bool = True,
    ) -> ModelSnapshot:
        """Install new weights and mark the model ready.

        With ``validate`` every blob is fetched once up front so a bad store
        is rejected here instead of on the first inference.
        """
        if not 0 <= shift < 32:
            raise PreconditionError(f"Requantization shift must be in 0..31, got {shift}")
        handles = handles or WeightHandles.default()

        with self._lock:
            snapshot = ModelSnapshot(store=store, handles=handles, shift=shift, version=self._version + 1)
            if validate:
                for handle, expected in handles.expected_lengths().items():
                    snapshot.fetch(handle, expected)
            self._snapshot = snapshot
            self._version = snapshot.version

        logger.info("Wired model version %d (shift=%d)", snapshot.version, shift)
        return snapshot

    def snapshot(self) -> ModelSnapshot:
        snapshot = self._snapshot
        if snapshot is None:
            raise ModelNotReadyError("Model weights have not been wired yet")
        return snapshot


# ---------------------------------------------------------------------------
# Decoded weights
# ---------------------------------------------------------------------------

@dataclasses.dataclass(frozen=True, eq=False)
class ConvWeights:
    weight: np.ndarray   # int8
    bias: np.ndarray     # int64 holding int32 values


@dataclasses.dataclass(frozen=True, eq=False)
class QuantizedWeights:
    """Every tensor of one snapshot, fetched, length-checked and decoded.

    Build one per logical request and reuse it for every inference the
    request makes.
    """

    stem: ConvWeights
    blocks: tuple[tuple[ConvWeights, ConvWeights], ...]
    policy: ConvWeights
    fc_weight: np.ndarray   # (4672, 128) int8, row = move index
    fc_bias: np.ndarray     # (4672,) int64
    shift: int
    version: int

    @classmethod
    def load(cls, snapshot: ModelSnapshot) -> "QuantizedWeights":
        handles = snapshot.handles
        lengths = handles.expected_lengths()

        def conv(weight_handle: str, bias_handle: str) -> ConvWeights:
            return ConvWeights(
                weight=decode_int8(snapshot.fetch(weight_handle, lengths[weight_handle])),
                bias=decode_bias(snapshot.fetch(bias_handle, lengths[bias_handle])),
            )

        blocks = tuple(
            (conv(b.conv1_weight, b.conv1_bias), conv(b.conv2_weight, b.conv2_bias))
            for b in handles.blocks
        )
        # Chunks are concatenated in index order: row = chunk * 191 + offset
        rows = [
            decode_int8(snapshot.fetch(handle, lengths[handle])).reshape(-1, POLICY_SIZE)
            for handle in handles.fc_chunks
        ]
        return cls(
            stem=conv(handles.stem_weight, handles.stem_bias),
            blocks=blocks,
            policy=conv(handles.policy_weight, handles.policy_bias),
            fc_weight=np.concatenate(rows, axis=0),
            fc_bias=decode_bias(snapshot.fetch(handles.fc_bias, lengths[handles.fc_bias])),
            shift=snapshot.shift,
            version=snapshot.version,
        )


def resolve_weights(model) -> QuantizedWeights:
    """Accept a registry, a snapshot or already-loaded weights."""
    if isinstance(model, QuantizedWeights):
        return model
    if isinstance(model, ModelRegistry):
        model = model.snapshot()
    if isinstance(model, ModelSnapshot):
        return QuantizedWeights.load(model)
    raise TypeError(f"Expected ModelRegistry, ModelSnapshot or QuantizedWeights, got {type(model)!r}")


def random_weight_blobs(seed: int = 0, handles: WeightHandles | None = None) -> dict[str, bytes]:
    """Random but well-formed blobs for every handle; used for smoke runs and tests.

    Weights are drawn from a narrow int8 range and biases stay small so
    activations do not saturate through the trunk.
    """
    handles = handles or WeightHandles.default()
    rng = np.random.default_rng(seed)
    bias_handles = {handles.stem_bias, handles.policy_bias, handles.fc_bias}
    for block in handles.blocks:
        bias_handles.update((block.conv1_bias, block.conv2_bias))

    blobs = {}
    for handle, length in handles.expected_lengths().items():
        if handle in bias_handles:
            values = rng.integers(-64, 65, size=length // BIAS_BYTES).astype("<i4")
        else:
            values = rng.integers(-8, 9, size=length).astype(np.int8)
        blobs[handle] = values.tobytes()
    return blobs


def registry_from_npz(path: str | Path, shift: int | None = None) -> ModelRegistry:
    """Wire a fresh registry from an exported ``.npz`` weight store.

    The shift recorded in the archive is used unless one is given explicitly.
    """
    store = NpzWeightStore(path)
    if shift is None:
        shift = store.shift if store.shift is not None else DEFAULT_SHIFT
    registry = ModelRegistry()
    registry.wire(store, shift=shift)
    return registry
