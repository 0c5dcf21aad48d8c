"""Float reference model with the same topology as the quantized network."""

import torch
import torch.nn as nn

from qpolicy.config import (
    INPUT_CHANNELS,
    NUM_BLOCKS,
    NUM_MOVES,
    POLICY_CHANNELS,
    POLICY_SIZE,
    TRUNK_CHANNELS,
)


class ResidualBlock(nn.Module):
    def __init__(self, channels: int):
        super().__init__()
        self.conv1 = nn.Conv2d(channels, channels, kernel_size=3, padding=1)
        self.conv2 = nn.Conv2d(channels, channels, kernel_size=3, padding=1)

    def forward(self, x):
        y = torch.relu(self.conv1(x))
        y = self.conv2(y)
        return torch.relu(x + y)


class ChessCNN(nn.Module):
    """Residual CNN predicting a logit per encoded move.

    Input:  (batch, 18, 8, 8)  12 piece planes, side-to-move, 4 castling, en passant
    Output: (batch, 4672)      logits over from_sq * 73 + plane

    No batch norm, so every layer maps one-to-one onto an int8 layer at export.
    """

    def __init__(
        self,
        num_channels: int = INPUT_CHANNELS,
        trunk_channels: int = TRUNK_CHANNELS,
        num_blocks: int = NUM_BLOCKS,
        num_classes: int = NUM_MOVES,
    ):
        super().__init__()

        self.stem = nn.Conv2d(num_channels, trunk_channels, kernel_size=3, padding=1)
        self.blocks = nn.ModuleList(ResidualBlock(trunk_channels) for _ in range(num_blocks))
        self.policy = nn.Conv2d(trunk_channels, POLICY_CHANNELS, kernel_size=1)
        self.fc = nn.Linear(POLICY_SIZE, num_classes)

    def forward(self, x):
        x = torch.relu(self.stem(x))
        for block in self.blocks:
            x = block(x)
        x = torch.relu(self.policy(x))
        return self.fc(x.flatten(1))
