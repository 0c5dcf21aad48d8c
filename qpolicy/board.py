"""Request-scoped value types consumed by the inference core.

A `BoardState` is twelve 64-bit bitboards plus side to move, castling rights
and an optional en-passant file. Square 0 is a1, square 63 is h8, and a piece
on square ``sq`` sets bit ``1 << sq``.

Bitboard order: 0-5 white pawn, knight, bishop, rook, queen, king;
6-11 the same for black.

A legality mask is a 584-byte string holding one bit per move index;
move ``i`` is bit ``i % 8`` (least significant first) of byte ``i // 8``.
"""

import dataclasses

import numpy as np

from qpolicy.config import BOARD_SQUARES, MASK_BYTES, NUM_MOVES
from qpolicy.errors import PreconditionError

PAWN, KNIGHT, BISHOP, ROOK, QUEEN, KING = range(6)
NUM_PIECE_TYPES = 6
NUM_BITBOARDS = 2 * NUM_PIECE_TYPES

# Castling-rights bits
WHITE_KINGSIDE = 1
WHITE_QUEENSIDE = 2
BLACK_KINGSIDE = 4
BLACK_QUEENSIDE = 8
ALL_CASTLING = WHITE_KINGSIDE | WHITE_QUEENSIDE | BLACK_KINGSIDE | BLACK_QUEENSIDE

_FULL = (1 << BOARD_SQUARES) - 1


def bitboard_index(white: bool, piece_type: int) -> int:
    """Position of a (side, piece type) bitboard inside `BoardState.pieces`."""
    return piece_type if white else NUM_PIECE_TYPES + piece_type


@dataclasses.dataclass(frozen=True)
class BoardState:
    """Immutable position handed to the core by the caller."""

    pieces: tuple[int, ...]
    white_to_move: bool = True
    castling: int = 0
    ep_file: int | None = None

    def __post_init__(self):
        pieces = tuple(int(bb) for bb in self.pieces)
        if len(pieces) != NUM_BITBOARDS:
            raise PreconditionError(f"BoardState needs {NUM_BITBOARDS} bitboards, got {len(pieces)}")
        for bb in pieces:
            if bb < 0 or bb > _FULL:
                raise PreconditionError(f"Bitboard out of 64-bit range: {bb:#x}")
        if not 0 <= self.castling <= ALL_CASTLING:
            raise PreconditionError(f"Castling rights must fit in 4 bits, got {self.castling}")
        if self.ep_file is not None and not 0 <= self.ep_file <= 7:
            raise PreconditionError(f"En-passant file must be 0..7, got {self.ep_file}")
        object.__setattr__(self, "pieces", pieces)

    @classmethod
    def starting_position(cls) -> "BoardState":
        return cls(
            pieces=(
                0x000000000000FF00,  # white pawns
                0x0000000000000042,
                0x0000000000000024,
                0x0000000000000081,
                0x0000000000000008,
                0x0000000000000010,
                0x00FF000000000000,  # black pawns
                0x4200000000000000,
                0x2400000000000000,
                0x8100000000000000,
                0x0800000000000000,
                0x1000000000000000,
            ),
            white_to_move=True,
            castling=ALL_CASTLING,
        )

    def bitboard(self, white: bool, piece_type: int) -> int:
        return self.pieces[bitboard_index(white, piece_type)]

    def ep_square(self) -> int | None:
        """En-passant target square implied by ``ep_file`` and the side to move."""
        if self.ep_file is None:
            return None
        rank = 5 if self.white_to_move else 2
        return rank * 8 + self.ep_file


# ---------------------------------------------------------------------------
# Legality masks
# ---------------------------------------------------------------------------

def check_mask(mask: bytes, what: str = "legality mask") -> bytes:
    """Reject anything that is not exactly MASK_BYTES long."""
    if mask is None or len(mask) != MASK_BYTES:
        size = None if mask is None else len(mask)
        raise PreconditionError(f"{what} must be {MASK_BYTES} bytes, got {size}")
    return bytes(mask)


def is_legal(mask: bytes, move_index: int) -> bool:
    if not 0 <= move_index < NUM_MOVES:
        return False
    return bool((mask[move_index >> 3] >> (move_index & 7)) & 1)


def mask_from_indices(indices) -> bytes:
    """Build a legality mask with the given move indices set."""
    buf = bytearray(MASK_BYTES)
    for index in indices:
        if not 0 <= index < NUM_MOVES:
            raise PreconditionError(f"Move index out of range: {index}")
        buf[index >> 3] |= 1 << (index & 7)
    return bytes(buf)


def mask_to_bools(mask: bytes) -> np.ndarray:
    """Unpack a legality mask into a (4672,) boolean array."""
    raw = np.frombuffer(check_mask(mask), dtype=np.uint8)
    return np.unpackbits(raw, bitorder="little").astype(bool)


def mask_indices(mask: bytes) -> list[int]:
    """Legal move indices in ascending order."""
    return np.flatnonzero(mask_to_bools(mask)).tolist()
