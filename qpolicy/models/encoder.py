"""BoardState -> (18 x 64) binary input planes.

Channels 0-11:  one plane per bitboard (white P N B R Q K, black P N B R Q K)
Channel 12:     side-to-move (all 1s if white to move, all 0s if black)
Channels 13-16: castling rights (white K, white Q, black K, black Q), each all 1s or all 0s
Channel 17:     en-passant target square, if any
"""

import numpy as np

from qpolicy.board import NUM_BITBOARDS, BoardState
from qpolicy.config import BOARD_SQUARES, INPUT_CHANNELS

SIDE_CHANNEL = 12
CASTLING_CHANNEL = 13
EP_CHANNEL = 17


def bitboard_to_plane(bitboard: int) -> np.ndarray:
    """Expand a 64-bit bitboard into 64 int8 cells in square order."""
    raw = np.frombuffer(bitboard.to_bytes(8, "little"), dtype=np.uint8)
    return np.unpackbits(raw, bitorder="little").astype(np.int8)


def encode_board(state: BoardState) -> np.ndarray:
    """Return a flat int8 tensor of length 18 * 64 = 1152."""
    planes = np.zeros((INPUT_CHANNELS, BOARD_SQUARES), dtype=np.int8)

    for channel in range(NUM_BITBOARDS):
        planes[channel] = bitboard_to_plane(state.pieces[channel])

    if state.white_to_move:
        planes[SIDE_CHANNEL, :] = 1

    for bit in range(4):
        if state.castling & (1 << bit):
            planes[CASTLING_CHANNEL + bit, :] = 1

    ep_square = state.ep_square()
    if ep_square is not None:
        planes[EP_CHANNEL, ep_square] = 1

    return planes.reshape(-1)
