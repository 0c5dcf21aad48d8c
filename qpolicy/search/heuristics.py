"""Material heuristics evaluated directly on bitboards and move indices."""

from qpolicy.board import BISHOP, KNIGHT, PAWN, QUEEN, ROOK, BoardState, mask_indices
from qpolicy.move_codec import decode_move

PIECE_VALUES = {
    PAWN: 100,
    KNIGHT: 320,
    BISHOP: 330,
    ROOK: 500,
    QUEEN: 900,
}
# Highest value first; the first bitboard that lost a piece decides.
CAPTURE_ORDER = (QUEEN, ROOK, BISHOP, KNIGHT, PAWN)
MAX_PIECE_VALUE = PIECE_VALUES[QUEEN]


def capture_value_from_delta(root: BoardState, child: BoardState) -> int:
    """Value of the opponent piece captured between ``root`` and ``child``.

    "Opponent" is relative to the side to move in ``root``. Returns 0 when
    none of the opponent's bitboards lost a set bit.
    """
    them = not root.white_to_move
    for piece_type in CAPTURE_ORDER:
        before = root.bitboard(them, piece_type)
        after = child.bitboard(them, piece_type)
        if before & ~after:
            return PIECE_VALUES[piece_type]
    return 0


def _victim_value(state: BoardState, square: int) -> int:
    them = not state.white_to_move
    bit = 1 << square
    for piece_type in CAPTURE_ORDER:
        if state.bitboard(them, piece_type) & bit:
            return PIECE_VALUES[piece_type]
    return 0


def _is_en_passant(state: BoardState, from_square: int, to_square: int) -> bool:
    ep_square = state.ep_square()
    if ep_square is None or to_square != ep_square:
        return False
    if not state.bitboard(state.white_to_move, PAWN) & (1 << from_square):
        return False
    if abs((to_square & 7) - (from_square & 7)) != 1:
        return False
    forward = 1 if state.white_to_move else -1
    return (to_square >> 3) == (from_square >> 3) + forward


def max_capture_value(state: BoardState, mask: bytes) -> int:
    """Most valuable piece the side to move can capture with any legal move."""
    best = 0
    for move_index in mask_indices(mask):
        squares = decode_move(move_index, state.white_to_move)
        if squares is None:
            continue
        from_square, to_square = squares
        value = _victim_value(state, to_square)
        if value == 0 and _is_en_passant(state, from_square, to_square):
            value = PIECE_VALUES[PAWN]
        if value > best:
            best = value
            if best == MAX_PIECE_VALUE:
                break
    return best
