import numpy as np
import pytest

from qpolicy.models.quant_ops import (
    INT8_MAX,
    INT8_MIN,
    clamp_array,
    clamp_to_int8,
    mul_acc1,
    requantize,
    round_shift,
    round_shift_array,
)


def test_mul_acc1_is_exact() -> None:
    assert mul_acc1(-128, -128) == 16384
    assert mul_acc1(127, -128) == -16256


@pytest.mark.parametrize(
    "acc, shift, expected",
    [
        (100, 0, 100),
        (-100, 0, -100),
        (5, 1, 3),
        (-5, 1, -3),
        (64, 6, 1),
        (95, 6, 1),
        (96, 6, 2),
        (-96, 6, -2),
    ],
)
def test_round_shift(acc: int, shift: int, expected: int) -> None:
    assert round_shift(acc, shift) == expected


def test_clamp_to_int8() -> None:
    assert clamp_to_int8(1000) == INT8_MAX
    assert clamp_to_int8(-1000) == INT8_MIN
    assert clamp_to_int8(-7) == -7


def test_array_ops_match_scalar_ops() -> None:
    rng = np.random.default_rng(0)
    values = rng.integers(-(2 ** 31), 2 ** 31, size=500, dtype=np.int64)
    values[:4] = [0, -1, 2 ** 31 - 1, -(2 ** 31)]
    for shift in (0, 1, 6, 12, 31):
        expected = [clamp_to_int8(round_shift(int(v), shift)) for v in values]
        got = clamp_array(round_shift_array(values, shift))
        assert got.dtype == np.int8
        assert got.tolist() == expected
        assert got.min() >= INT8_MIN and got.max() <= INT8_MAX


def test_requantize_relu() -> None:
    acc = np.array([-640, -32, 0, 32, 640, 100000], dtype=np.int64)
    # arithmetic shift floors, so -640 - 32 lands on -11
    assert requantize(acc, 6).tolist() == [-11, -1, 0, 1, 10, 127]
    assert requantize(acc, 6, relu=True).tolist() == [0, 0, 0, 1, 10, 127]
