import chess
import numpy as np
import pytest

from qpolicy.board import BLACK_QUEENSIDE, WHITE_KINGSIDE, BoardState, mask_indices
from qpolicy.training.data import (
    board_to_planes,
    board_to_state,
    build_candidates,
    index_to_move,
    legal_move_mask,
    move_to_index,
)

POSITIONS = [
    chess.STARTING_FEN,
    "r3k2r/pppq1ppp/2npbn2/4p3/2B1P3/2NP1N2/PPPQ1PPP/R3K2R w KQkq - 0 1",
    "r3k2r/pppq1ppp/2npbn2/4p3/2B1P3/2NP1N2/PPPQ1PPP/R3K2R b KQkq - 0 1",
    "1r5k/P7/8/8/8/8/7p/K5R1 w - - 0 1",
    "1r5k/P7/8/8/8/8/7p/K5R1 b - - 0 1",
    "4k3/8/8/3pP3/8/8/8/4K3 w - d6 0 1",
]


def test_starting_state() -> None:
    assert board_to_state(chess.Board()) == BoardState.starting_position()


@pytest.mark.parametrize(
    "castling_fen, bits",
    [("K", WHITE_KINGSIDE), ("q", BLACK_QUEENSIDE), ("Kq", WHITE_KINGSIDE | BLACK_QUEENSIDE), ("-", 0)],
)
def test_castling_rights(castling_fen: str, bits: int) -> None:
    board = chess.Board(f"r3k2r/8/8/8/8/8/8/R3K2R w {castling_fen} - 0 1")
    assert board_to_state(board).castling == bits


def test_en_passant_file_only_when_capturable() -> None:
    board = chess.Board()
    board.push_san("e4")
    assert board_to_state(board).ep_file is None
    assert board_to_state(chess.Board(POSITIONS[-1])).ep_file == 3


@pytest.mark.parametrize("fen", POSITIONS)
def test_every_legal_move_round_trips(fen: str) -> None:
    board = chess.Board(fen)
    indices = set()
    for move in board.legal_moves:
        index = move_to_index(move, board)
        assert index_to_move(index, board) == move
        indices.add(index)
    assert len(indices) == board.legal_moves.count()
    assert set(mask_indices(legal_move_mask(board))) == indices


def test_promotions() -> None:
    board = chess.Board(POSITIONS[3])
    queen = move_to_index(chess.Move.from_uci("a7b8q"), board)
    knight = move_to_index(chess.Move.from_uci("a7b8n"), board)
    assert queen // 73 == knight // 73 == chess.A7
    assert queen % 73 < 56
    assert knight % 73 == 64 + 2 * 3 + 0
    assert index_to_move(queen, board).promotion == chess.QUEEN


def test_index_leaving_the_board() -> None:
    with pytest.raises(ValueError):
        index_to_move(chess.A1 * 73 + 6 * 7, chess.Board())


def test_board_to_planes() -> None:
    planes = board_to_planes(chess.Board())
    assert planes.shape == (18, 8, 8)
    assert planes.dtype == np.float32
    # rank 2 white pawns, row index is the rank
    assert planes[0, 1].tolist() == [1.0] * 8
    assert planes[12].all()


def test_build_candidates_without_model() -> None:
    board = chess.Board()
    query = build_candidates(board, limit=5, alpha=10, seed=4)
    assert len(query.moves) == len(query.logits) == len(query.successors) == 5
    assert list(query.logits) == [0] * 5
    assert query.alpha == 10 and query.seed == 4
    assert board.fen() == chess.STARTING_FEN
    assert all(not succ.white_to_move for succ in query.successors)


def test_build_candidates_with_model(registry) -> None:
    board = chess.Board("1r5k/P7/8/8/8/8/7p/K5R1 w - - 0 1")
    query = build_candidates(board, registry, limit=32)
    assert len(query.moves) == board.legal_moves.count()
    assert list(query.logits) == sorted(query.logits, reverse=True)
    assert set(query.moves) == set(mask_indices(query.legal_mask))


def test_build_candidates_without_legal_moves() -> None:
    board = chess.Board("6Rk/5Q2/8/8/8/8/8/K7 b - - 0 1")
    with pytest.raises(ValueError):
        build_candidates(board)
