"""Fixed-point primitives shared by every quantized layer.

The scalar functions define the arithmetic; the array versions apply the
exact same rule elementwise and are what the layers actually call.
Accumulators are kept in int64 so sums of int8 products never wrap.
"""

import numpy as np

INT8_MIN = -128
INT8_MAX = 127


def mul_acc1(a: int, b: int) -> int:
    """Exact product of two int8 values."""
    return int(a) * int(b)


def round_shift(acc: int, shift: int) -> int:
    """Round half away from zero, then arithmetic right shift."""
    if shift == 0:
        return acc
    half = 1 << (shift - 1)
    if acc >= 0:
        acc += half
    else:
        acc -= half
    return acc >> shift


def clamp_to_int8(x: int) -> int:
    if x < INT8_MIN:
        return INT8_MIN
    if x > INT8_MAX:
        return INT8_MAX
    return x


def round_shift_array(acc: np.ndarray, shift: int) -> np.ndarray:
    acc = np.asarray(acc, dtype=np.int64)
    if shift == 0:
        return acc
    half = np.int64(1 << (shift - 1))
    rounded = np.where(acc >= 0, acc + half, acc - half)
    # numpy's >> on signed integers is arithmetic, like Python's
    return rounded >> shift


def clamp_array(x: np.ndarray) -> np.ndarray:
    return np.clip(x, INT8_MIN, INT8_MAX).astype(np.int8)


def relu_array(x: np.ndarray) -> np.ndarray:
    return np.maximum(x, 0).astype(x.dtype)


def requantize(acc: np.ndarray, shift: int, relu: bool = False) -> np.ndarray:
    """Accumulator -> int8 activation: round_shift, clamp, optional ReLU."""
    out = clamp_array(round_shift_array(acc, shift))
    if relu:
        out = relu_array(out)
    return out
