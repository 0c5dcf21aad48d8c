"""Deployment constants for the quantized policy network and its search."""

import os
from pathlib import Path

# Board geometry
BOARD_SIZE = 8
BOARD_SQUARES = BOARD_SIZE * BOARD_SIZE

# Network topology
INPUT_CHANNELS = 18     # 12 piece planes + side + 4 castling + en passant
TRUNK_CHANNELS = 24
NUM_BLOCKS = 4
POLICY_CHANNELS = 2
POLICY_SIZE = POLICY_CHANNELS * BOARD_SQUARES  # 128 inputs per move row

# Move encoding: from_square * 73 + plane
MOVE_PLANES = 73
NUM_MOVES = BOARD_SQUARES * MOVE_PLANES  # 4672
MASK_BYTES = NUM_MOVES // 8              # 584

# Fully-connected rows are stored in fixed-size chunks; the last one is shorter.
FC_CHUNK_ROWS = 191
FC_NUM_CHUNKS = (NUM_MOVES + FC_CHUNK_ROWS - 1) // FC_CHUNK_ROWS  # 25

# Global requantization shift applied after every convolution
DEFAULT_SHIFT = int(os.getenv("QPOLICY_SHIFT", "6"))

# One-ply search
MAX_CANDIDATES = 32
TOP_CANDIDATES = 3
MY_CAPTURE_WEIGHT = 64
OPPONENT_CAPTURE_WEIGHT = 48
MAX_ALPHA = 255

# Paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
MODELS_DIR = Path(os.getenv("QPOLICY_MODELS_DIR", PROJECT_ROOT / "models"))
