import io

import chess
import chess.pgn
import numpy as np
import pytest

from qpolicy.training.data import move_to_index
from qpolicy.training.pgn_dataset import convert_pgn, process_game, save_batch, should_skip_game

PGN = """[Event "Test"]
[White "a"]
[Black "b"]
[WhiteElo "2100"]
[BlackElo "1900"]
[Result "0-1"]

1. f3 e5 2. g4 Qh4# 0-1
"""

UNFINISHED = PGN.replace('[Result "0-1"]', '[Result "*"]').replace("2. g4 Qh4# 0-1", "*")


def _game(text: str = PGN) -> chess.pgn.Game:
    return chess.pgn.read_game(io.StringIO(text))


def test_should_skip_game() -> None:
    game = _game()
    assert not should_skip_game(game)
    assert not should_skip_game(game, min_elo=1900)
    assert should_skip_game(game, min_elo=2000)
    assert should_skip_game(_game(UNFINISHED))
    assert should_skip_game(_game(PGN.replace('[Event "Test"]', '[Event "Test"]\n[Variant "Chess960"]')))


def test_process_game_indexes_moves_before_push() -> None:
    samples = process_game(_game(), skip_plies=1)
    assert len(samples) == 3
    board = chess.Board()
    board.push_san("f3")
    planes, index = samples[0]
    assert planes.shape == (18, 8, 8)
    assert planes.dtype == np.uint8
    # black to move: side plane empty
    assert not planes[12].any()
    assert index == move_to_index(chess.Move.from_uci("e7e5"), board)


def test_save_batch(tmp_path) -> None:
    samples = process_game(_game(), skip_plies=0)
    path = save_batch([p for p, _ in samples], [i for _, i in samples], tmp_path, 3)
    assert path.name == "batch_0003.npz"
    with np.load(path) as data:
        assert data["boards"].shape == (4, 18, 8, 8)
        assert data["moves"].tolist() == [i for _, i in samples]


def test_chess_dataset(tmp_path) -> None:
    torch = pytest.importorskip("torch")
    from qpolicy.training.dataset import ChessDataset, split_dataset

    samples = process_game(_game(), skip_plies=0)
    save_batch([p for p, _ in samples], [i for _, i in samples], tmp_path, 0)
    dataset = ChessDataset(tmp_path)
    assert len(dataset) == 4
    planes, move = dataset[0]
    assert planes.dtype == torch.float32 and planes.shape == (18, 8, 8)
    assert int(move) == samples[0][1]
    train, val = split_dataset(dataset, 0.25)
    assert (len(train), len(val)) == (3, 1)
    assert len(ChessDataset(tmp_path, max_samples=2)) == 2


def test_chess_dataset_rejects_bad_batches(tmp_path) -> None:
    pytest.importorskip("torch")
    from qpolicy.training.dataset import ChessDataset

    with pytest.raises(FileNotFoundError):
        ChessDataset(tmp_path)
    np.savez_compressed(tmp_path / "batch_0000.npz", boards=np.zeros((1, 12, 8, 8)), moves=np.zeros(1))
    with pytest.raises(ValueError):
        ChessDataset(tmp_path)


def test_convert_pgn(tmp_path) -> None:
    pgn_path = tmp_path / "games.pgn"
    pgn_path.write_text(PGN + "\n" + UNFINISHED + "\n" + PGN)
    out = tmp_path / "out"
    stats = convert_pgn(pgn_path, out, skip_plies=0, batch_size=3)
    assert (stats.games_processed, stats.games_skipped) == (2, 1)
    assert (stats.total_samples, stats.num_batches) == (8, 2)
    assert sorted(p.name for p in out.glob("batch_*.npz")) == ["batch_0000.npz", "batch_0001.npz"]
    assert (out / "metadata.json").exists()
