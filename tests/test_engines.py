import chess
import pytest

from qpolicy.engine.quantized_engine import OnePlyEngine, PolicyEngine
from qpolicy.engine.random_engine import RandomEngine
from qpolicy.entropy import FixedEntropy
from qpolicy.training.evaluate import load_engine, match_score, play_match_game, run_match
from qpolicy.weights import random_weight_blobs, save_npz_store


def test_random_engine_is_seeded(start_board) -> None:
    assert RandomEngine(seed=5).select_move(start_board) == RandomEngine(seed=5).select_move(start_board)
    with pytest.raises(ValueError):
        RandomEngine().select_move(chess.Board("6Rk/5Q2/8/8/8/8/8/K7 b - - 0 1"))


def test_policy_engine_plays_legal_moves(registry) -> None:
    engine = PolicyEngine(registry)
    board = chess.Board()
    for _ in range(6):
        move = engine.select_move(board)
        assert move in board.legal_moves
        board.push(move)


def test_one_ply_engine_is_reproducible(registry, start_board) -> None:
    first = OnePlyEngine(registry, candidates=6, alpha=200, rand_margin=50, seed=11)
    second = OnePlyEngine(registry, candidates=6, alpha=200, rand_margin=50, seed=11)
    move = first.select_move(start_board)
    assert move in start_board.legal_moves
    assert second.select_move(start_board) == move
    assert first.last_decision.move_index == second.last_decision.move_index


def test_one_ply_engine_with_entropy(registry, start_board) -> None:
    engine = OnePlyEngine(registry, rand_margin=1000, entropy=FixedEntropy(b"seed"))
    assert engine.select_move(start_board) == engine.select_move(start_board)


def test_match_between_random_engines() -> None:
    result = run_match("a", RandomEngine(seed=1), "b", RandomEngine(seed=2), num_games=4, max_moves=20)
    assert result.total_games == 4
    assert result.engine1_wins + result.engine2_wins + result.draws == 4
    assert all(game.num_moves <= 20 for game in result.games)
    assert 0.0 <= match_score(result) <= 1.0


def test_play_match_game_checkmate() -> None:
    class Scripted(RandomEngine):
        def __init__(self, ucis):
            super().__init__()
            self.moves = iter(ucis)

        def select_move(self, board):
            return chess.Move.from_uci(next(self.moves))

    # fool's mate
    white = Scripted(["f2f3", "g2g4"])
    black = Scripted(["e7e5", "d8h4"])
    game = play_match_game(white, black)
    assert game.termination == "checkmate"
    assert game.result == -1.0
    assert game.moves == ["f2f3", "e7e5", "g2g4", "d8h4"]


def test_load_engine(tmp_path) -> None:
    save_npz_store(tmp_path / "tiny_weights.npz", random_weight_blobs(seed=3), shift=6)
    assert isinstance(load_engine("random"), RandomEngine)
    assert isinstance(load_engine("tiny", models_dir=tmp_path), PolicyEngine)
    engine = load_engine("tiny:oneply", models_dir=tmp_path, alpha=64, seed=2)
    assert isinstance(engine, OnePlyEngine)
    assert engine.alpha == 64
    with pytest.raises(SystemExit):
        load_engine("missing", models_dir=tmp_path)
