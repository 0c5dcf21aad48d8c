"""Quantized convolutions over 8x8 boards.

Tensors are flat int8 arrays of ``channels * 64`` values, channel-major, with
``square = rank * 8 + file`` inside each channel. A 3x3 kernel is stored
row-major over (row offset, column offset) in -1..1, row being the rank:

    0 up-left    1 up      2 up-right
    3 left       4 centre  5 right
    6 down-left  7 down    8 down-right

where "up" is row - 1. Cells outside the board contribute nothing, which is
what ``torch.nn.Conv2d(kernel_size=3, padding=1)`` does on a (C, 8, 8) input.
"""

import numpy as np

from qpolicy.config import BOARD_SIZE, BOARD_SQUARES
from qpolicy.errors import InvariantError
from qpolicy.models.quant_ops import clamp_array, relu_array, requantize

KERNEL_OFFSETS = tuple((dy, dx) for dy in (-1, 0, 1) for dx in (-1, 0, 1))


def _check_input(x: np.ndarray, in_channels: int) -> np.ndarray:
    if x.size != in_channels * BOARD_SQUARES:
        raise InvariantError(
            f"Input has {x.size} values; expected {in_channels} channels x {BOARD_SQUARES}"
        )
    return np.asarray(x, dtype=np.int64).reshape(in_channels, BOARD_SIZE, BOARD_SIZE)


def conv3x3(
    x: np.ndarray,
    in_channels: int,
    weight: np.ndarray,
    bias: np.ndarray,
    shift: int,
    relu: bool,
) -> np.ndarray:
    """3x3 convolution with edge-respecting neighbourhoods.

    ``weight`` holds ``(out * in_channels + in) * 9 + k`` int8 values and
    ``bias`` one int32 per output channel. Returns ``out_channels * 64`` int8.
    """
    out_channels = len(bias)
    if weight.size != out_channels * in_channels * 9:
        raise InvariantError(
            f"3x3 weight has {weight.size} values; expected {out_channels}x{in_channels}x9"
        )
    board = _check_input(x, in_channels)
    kernels = np.asarray(weight, dtype=np.int64).reshape(out_channels, in_channels, 9)

    padded = np.zeros((in_channels, BOARD_SIZE + 2, BOARD_SIZE + 2), dtype=np.int64)
    padded[:, 1:-1, 1:-1] = board

    acc = np.zeros((out_channels, BOARD_SIZE, BOARD_SIZE), dtype=np.int64)
    for k, (dy, dx) in enumerate(KERNEL_OFFSETS):
        window = padded[:, 1 + dy:1 + dy + BOARD_SIZE, 1 + dx:1 + dx + BOARD_SIZE]
        acc += np.tensordot(kernels[:, :, k], window, axes=(1, 0))

    acc += np.asarray(bias, dtype=np.int64)[:, None, None]
    return requantize(acc, shift, relu).reshape(-1)


def conv1x1(
    x: np.ndarray,
    in_channels: int,
    weight: np.ndarray,
    bias: np.ndarray,
    shift: int,
    relu: bool,
) -> np.ndarray:
    """Pointwise convolution: per-cell dot product over input channels."""
    out_channels = len(bias)
    if weight.size != out_channels * in_channels:
        raise InvariantError(
            f"1x1 weight has {weight.size} values; expected {out_channels}x{in_channels}"
        )
    cells = _check_input(x, in_channels).reshape(in_channels, BOARD_SQUARES)
    kernels = np.asarray(weight, dtype=np.int64).reshape(out_channels, in_channels)

    acc = kernels @ cells
    acc += np.asarray(bias, dtype=np.int64)[:, None]
    return requantize(acc, shift, relu).reshape(-1)


def residual_combine(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Elementwise add, clamp to int8, then ReLU."""
    if a.size != b.size:
        raise InvariantError(f"Residual operands differ in length: {a.size} vs {b.size}")
    total = np.asarray(a, dtype=np.int64) + np.asarray(b, dtype=np.int64)
    return relu_array(clamp_array(total))
