"""python-chess adapters: boards, moves and legality masks in the core's encoding."""

import chess
import numpy as np

from qpolicy.board import (
    BLACK_KINGSIDE,
    BLACK_QUEENSIDE,
    WHITE_KINGSIDE,
    WHITE_QUEENSIDE,
    BoardState,
    mask_from_indices,
)
from qpolicy.config import BOARD_SIZE, INPUT_CHANNELS, MAX_CANDIDATES
from qpolicy.inference import OnePlyQuery, infer_top_k, is_sentinel
from qpolicy.models.encoder import encode_board
from qpolicy.move_codec import decode_move, encode_move, underpromotion_piece
from qpolicy.weights import resolve_weights

PIECE_ORDER = (chess.PAWN, chess.KNIGHT, chess.BISHOP, chess.ROOK, chess.QUEEN, chess.KING)

# Underpromotion sub-index of planes 64-72
UNDERPROMOTIONS = {chess.KNIGHT: 0, chess.BISHOP: 1, chess.ROOK: 2}
_UNDERPROMOTION_PIECES = {v: k for k, v in UNDERPROMOTIONS.items()}


def board_to_state(board: chess.Board) -> BoardState:
    """Convert a chess.Board to the core's immutable BoardState.

    The en-passant file is only set when an en-passant capture is legal.
    """
    pieces = tuple(
        int(board.pieces_mask(piece_type, color))
        for color in (chess.WHITE, chess.BLACK)
        for piece_type in PIECE_ORDER
    )
    castling = 0
    if board.has_kingside_castling_rights(chess.WHITE):
        castling |= WHITE_KINGSIDE
    if board.has_queenside_castling_rights(chess.WHITE):
        castling |= WHITE_QUEENSIDE
    if board.has_kingside_castling_rights(chess.BLACK):
        castling |= BLACK_KINGSIDE
    if board.has_queenside_castling_rights(chess.BLACK):
        castling |= BLACK_QUEENSIDE

    ep_file = None
    if board.ep_square is not None and board.has_legal_en_passant():
        ep_file = chess.square_file(board.ep_square)

    return BoardState(
        pieces=pieces,
        white_to_move=board.turn == chess.WHITE,
        castling=castling,
        ep_file=ep_file,
    )


def board_to_planes(board: chess.Board) -> np.ndarray:
    """Convert a chess.Board to an (18, 8, 8) float32 tensor for training."""
    planes = encode_board(board_to_state(board))
    return planes.reshape(INPUT_CHANNELS, BOARD_SIZE, BOARD_SIZE).astype(np.float32)


def move_to_index(move: chess.Move, board: chess.Board) -> int:
    """Encode a move as from_square * 73 + plane (0..4671)."""
    return encode_move(
        move.from_square,
        move.to_square,
        board.turn == chess.WHITE,
        UNDERPROMOTIONS.get(move.promotion),
    )


def index_to_move(index: int, board: chess.Board) -> chess.Move:
    """Decode an index back to a chess.Move.

    A pawn reaching the last rank through a sliding plane promotes to a queen.
    """
    squares = decode_move(index, board.turn == chess.WHITE)
    if squares is None:
        raise ValueError(f"Move index {index} leaves the board")
    from_square, to_square = squares

    piece = underpromotion_piece(index)
    if piece is not None:
        return chess.Move(from_square, to_square, promotion=_UNDERPROMOTION_PIECES[piece])

    if board.piece_type_at(from_square) == chess.PAWN and chess.square_rank(to_square) in (0, 7):
        return chess.Move(from_square, to_square, promotion=chess.QUEEN)
    return chess.Move(from_square, to_square)


def legal_move_mask(board: chess.Board) -> bytes:
    """Return the 584-byte legality mask for the side to move."""
    return mask_from_indices(move_to_index(move, board) for move in board.legal_moves)


def build_candidates(
    board: chess.Board,
    model=None,
    limit: int = MAX_CANDIDATES,
    alpha: int = 0,
    rand_margin: int = 0,
    seed: int = 0,
) -> OnePlyQuery:
    """Assemble a one-ply query for ``board``.

    With a model the candidates are its top ``limit`` moves and their
    logits; without one they are the first ``limit`` legal moves with zero
    priors. Successor states and masks come from pushing each move on a copy.
    """
    board = board.copy(stack=False)
    root = board_to_state(board)
    root_mask = legal_move_mask(board)
    legal = list(board.legal_moves)
    if not legal:
        raise ValueError("No legal moves available.")
    limit = min(limit, len(legal), MAX_CANDIDATES)

    if model is not None:
        weights = resolve_weights(model)
        ranked = infer_top_k(weights, root, root_mask, limit)
        priors = [(index, logit) for index, logit in ranked if not is_sentinel((index, logit))]
    else:
        priors = [(move_to_index(move, board), 0) for move in legal[:limit]]

    successors = []
    successor_masks = []
    for index, _ in priors:
        board.push(index_to_move(index, board))
        successors.append(board_to_state(board))
        successor_masks.append(legal_move_mask(board))
        board.pop()

    return OnePlyQuery(
        position=root,
        legal_mask=root_mask,
        moves=[index for index, _ in priors],
        logits=[logit for _, logit in priors],
        successors=successors,
        successor_masks=successor_masks,
        alpha=alpha,
        rand_margin=rand_margin,
        seed=seed,
    )
