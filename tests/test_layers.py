import numpy as np
import pytest

from qpolicy.errors import InvariantError
from qpolicy.models.layers import KERNEL_OFFSETS, conv1x1, conv3x3, residual_combine
from qpolicy.models.quant_ops import clamp_to_int8, mul_acc1, round_shift


def _naive_conv3x3(x, in_channels, weight, bias, shift, relu):
    out = []
    for o in range(len(bias)):
        for square in range(64):
            rank, file = divmod(square, 8)
            acc = 0
            for i in range(in_channels):
                for k, (dy, dx) in enumerate(KERNEL_OFFSETS):
                    r, f = rank + dy, file + dx
                    if 0 <= r < 8 and 0 <= f < 8:
                        acc += mul_acc1(x[i * 64 + r * 8 + f], weight[(o * in_channels + i) * 9 + k])
            value = clamp_to_int8(round_shift(acc + int(bias[o]), shift))
            out.append(max(value, 0) if relu else value)
    return out


def _random_layer(rng, in_channels, out_channels, kernel):
    x = rng.integers(-128, 128, size=in_channels * 64).astype(np.int8)
    weight = rng.integers(-128, 128, size=out_channels * in_channels * kernel).astype(np.int8)
    bias = rng.integers(-5000, 5000, size=out_channels).astype(np.int64)
    return x, weight, bias


@pytest.mark.parametrize("relu", [False, True])
def test_conv3x3_matches_scalar_reference(relu: bool) -> None:
    rng = np.random.default_rng(1)
    x, weight, bias = _random_layer(rng, 3, 2, 9)
    got = conv3x3(x, 3, weight, bias, shift=10, relu=relu)
    assert got.dtype == np.int8
    assert got.tolist() == _naive_conv3x3(x, 3, weight, bias, 10, relu)


def test_conv3x3_edges_do_not_wrap() -> None:
    # the kernel reads the right-hand neighbour; h1 must not see a2
    x = np.zeros(64, dtype=np.int8)
    x[7] = 1     # h1
    x[8] = 1     # a2
    weight = np.zeros(9, dtype=np.int8)
    weight[5] = 10   # right neighbour
    out = conv3x3(x, 1, weight, np.zeros(1, dtype=np.int64), shift=0, relu=False)
    assert np.flatnonzero(out).tolist() == [6]   # g1 sees h1 to its right
    assert out[6] == 10


def test_conv3x3_matches_torch_conv2d() -> None:
    torch = pytest.importorskip("torch")
    rng = np.random.default_rng(2)
    x = rng.integers(0, 2, size=3 * 64).astype(np.int8)
    weight = rng.integers(-2, 3, size=2 * 3 * 9).astype(np.int8)
    bias = np.array([3, -4], dtype=np.int64)

    got = conv3x3(x, 3, weight, bias, shift=0, relu=False)
    expected = torch.nn.functional.conv2d(
        torch.tensor(x, dtype=torch.float32).reshape(1, 3, 8, 8),
        torch.tensor(weight, dtype=torch.float32).reshape(2, 3, 3, 3),
        torch.tensor(bias, dtype=torch.float32),
        padding=1,
    )
    assert got.tolist() == expected.reshape(-1).to(torch.int64).tolist()


def test_conv1x1_matches_scalar_reference() -> None:
    rng = np.random.default_rng(3)
    x, weight, bias = _random_layer(rng, 4, 2, 1)
    got = conv1x1(x, 4, weight, bias, shift=6, relu=True)
    expected = []
    for o in range(2):
        for square in range(64):
            acc = sum(mul_acc1(x[i * 64 + square], weight[o * 4 + i]) for i in range(4))
            expected.append(max(clamp_to_int8(round_shift(acc + int(bias[o]), 6)), 0))
    assert got.tolist() == expected


def test_residual_combine() -> None:
    a = np.array([100, -50, 10, 0], dtype=np.int8)
    b = np.array([100, 20, -30, 5], dtype=np.int8)
    assert residual_combine(a, b).tolist() == [127, 0, 0, 5]


def test_shape_mismatches_are_invariant_errors() -> None:
    with pytest.raises(InvariantError):
        residual_combine(np.zeros(3, dtype=np.int8), np.zeros(4, dtype=np.int8))
    with pytest.raises(InvariantError):
        conv3x3(np.zeros(64, dtype=np.int8), 2, np.zeros(18, dtype=np.int8), np.zeros(1), 0, False)
    with pytest.raises(InvariantError):
        conv1x1(np.zeros(64, dtype=np.int8), 1, np.zeros(3, dtype=np.int8), np.zeros(2), 0, False)
