"""64x73 move encoding: ``index = from_square * 73 + plane``.

Planes 0-55   sliding moves, ``direction * 7 + (distance - 1)``
Planes 56-63  knight jumps
Planes 64-72  pawn underpromotions, ``64 + dir3 * 3 + piece``

Directions are absolute (no board flipping), so only the pawn planes depend
on the side to move: a white pawn advances towards rank 8, a black one
towards rank 1. Queen promotions travel through the sliding planes.
"""

from qpolicy.config import MOVE_PLANES, NUM_MOVES
from qpolicy.errors import PreconditionError

# (file delta, rank delta); N points towards rank 8
SLIDING_DIRECTIONS = (
    (0, 1),    # N
    (1, 1),    # NE
    (1, 0),    # E
    (1, -1),   # SE
    (0, -1),   # S
    (-1, -1),  # SW
    (-1, 0),   # W
    (-1, 1),   # NW
)
MAX_DISTANCE = 7

KNIGHT_OFFSETS = (
    (1, 2),
    (2, 1),
    (2, -1),
    (1, -2),
    (-1, -2),
    (-2, -1),
    (-2, 1),
    (-1, 2),
)

# dir3 -> file delta of the pawn move
PAWN_FILE_DELTAS = (-1, 0, 1)
UNDERPROMOTION_PIECES = ("knight", "bishop", "rook")

KNIGHT_PLANE_BASE = len(SLIDING_DIRECTIONS) * MAX_DISTANCE  # 56
PAWN_PLANE_BASE = KNIGHT_PLANE_BASE + len(KNIGHT_OFFSETS)   # 64

_SLIDE_LOOKUP = {direction: i for i, direction in enumerate(SLIDING_DIRECTIONS)}
_KNIGHT_LOOKUP = {offset: i for i, offset in enumerate(KNIGHT_OFFSETS)}


def split_index(move_index: int) -> tuple[int, int]:
    """Return ``(from_square, plane)``."""
    if not 0 <= move_index < NUM_MOVES:
        raise PreconditionError(f"Move index out of range: {move_index}")
    return divmod(move_index, MOVE_PLANES)


def plane_delta(plane: int, white_to_move: bool) -> tuple[int, int]:
    """(file delta, rank delta) travelled by a move on ``plane``."""
    if plane < KNIGHT_PLANE_BASE:
        direction, step = divmod(plane, MAX_DISTANCE)
        df, dr = SLIDING_DIRECTIONS[direction]
        distance = step + 1
        return df * distance, dr * distance
    if plane < PAWN_PLANE_BASE:
        return KNIGHT_OFFSETS[plane - KNIGHT_PLANE_BASE]
    dir3 = (plane - PAWN_PLANE_BASE) // 3
    forward = 1 if white_to_move else -1
    return PAWN_FILE_DELTAS[dir3], forward


def decode_move(move_index: int, white_to_move: bool) -> tuple[int, int] | None:
    """Decode a move index into ``(from_square, to_square)``.

    Returns None when the plane would carry the piece off the board; such
    indices are never legal. The promotion piece of an underpromotion plane
    does not affect the destination.
    """
    from_square, plane = split_index(move_index)
    df, dr = plane_delta(plane, white_to_move)
    to_file = (from_square & 7) + df
    to_rank = (from_square >> 3) + dr
    if not (0 <= to_file < 8 and 0 <= to_rank < 8):
        return None
    return from_square, to_rank * 8 + to_file


def encode_move(
    from_square: int,
    to_square: int,
    white_to_move: bool,
    underpromotion: int | None = None,
) -> int:
    """Inverse of `decode_move`.

    ``underpromotion`` is 0 (knight), 1 (bishop) or 2 (rook) for a pawn
    move promoting to a minor piece or rook; leave it None for everything
    else, queen promotions included.
    """
    if not (0 <= from_square < 64 and 0 <= to_square < 64):
        raise PreconditionError(f"Squares out of range: {from_square} -> {to_square}")
    df = (to_square & 7) - (from_square & 7)
    dr = (to_square >> 3) - (from_square >> 3)

    if underpromotion is not None:
        forward = 1 if white_to_move else -1
        if dr != forward or df not in PAWN_FILE_DELTAS or not 0 <= underpromotion < 3:
            raise PreconditionError(
                f"Not an underpromotion geometry: {from_square} -> {to_square} piece={underpromotion}"
            )
        plane = PAWN_PLANE_BASE + PAWN_FILE_DELTAS.index(df) * 3 + underpromotion
        return from_square * MOVE_PLANES + plane

    if (df, dr) in _KNIGHT_LOOKUP:
        return from_square * MOVE_PLANES + KNIGHT_PLANE_BASE + _KNIGHT_LOOKUP[(df, dr)]

    distance = max(abs(df), abs(dr))
    if distance == 0 or (df != 0 and dr != 0 and abs(df) != abs(dr)):
        raise PreconditionError(f"Not an encodable move: {from_square} -> {to_square}")
    unit = (df // distance, dr // distance)
    plane = _SLIDE_LOOKUP[unit] * MAX_DISTANCE + (distance - 1)
    return from_square * MOVE_PLANES + plane


def underpromotion_piece(move_index: int) -> int | None:
    """Promotion piece sub-index (0 knight, 1 bishop, 2 rook) for pawn planes."""
    _, plane = split_index(move_index)
    if plane < PAWN_PLANE_BASE:
        return None
    return (plane - PAWN_PLANE_BASE) % 3
