"""Integer-only convolutional trunk and policy head.

    stem     3x3 conv 18 -> 24, ReLU
    block x4 3x3 conv 24 -> 24 ReLU, 3x3 conv 24 -> 24, + block input, ReLU
    policy   1x1 conv 24 -> 2, ReLU        -> 128 int8 values
"""

import numpy as np

from qpolicy.board import BoardState
from qpolicy.config import INPUT_CHANNELS, TRUNK_CHANNELS
from qpolicy.models.encoder import encode_board
from qpolicy.models.layers import conv1x1, conv3x3, residual_combine
from qpolicy.weights import QuantizedWeights


def residual_block(x: np.ndarray, block, shift: int) -> np.ndarray:
    first, second = block
    y = conv3x3(x, TRUNK_CHANNELS, first.weight, first.bias, shift, relu=True)
    y = conv3x3(y, TRUNK_CHANNELS, second.weight, second.bias, shift, relu=False)
    return residual_combine(x, y)


def policy_features(planes: np.ndarray, weights: QuantizedWeights) -> np.ndarray:
    """Run encoded input planes through the trunk; returns the (128,) policy tensor."""
    shift = weights.shift
    x = conv3x3(planes, INPUT_CHANNELS, weights.stem.weight, weights.stem.bias, shift, relu=True)
    for block in weights.blocks:
        x = residual_block(x, block, shift)
    return conv1x1(x, TRUNK_CHANNELS, weights.policy.weight, weights.policy.bias, shift, relu=True)


def policy_tensor(state: BoardState, weights: QuantizedWeights) -> np.ndarray:
    """Encoder followed by the trunk: BoardState -> (128,) int8."""
    return policy_features(encode_board(state), weights)
