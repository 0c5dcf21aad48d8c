"""CLI tool: parse a PGN file and produce .npz batches of encoded positions.

Each sample pairs the (18, 8, 8) input planes of a position with the
64x73 index of the move actually played from it.

Usage:
    python -m qpolicy.training.pgn_dataset \
        --pgn games.pgn --output datasets/processed --max-games 20000 --min-elo 1800
"""

import argparse
import dataclasses
import json
import logging
import time
from pathlib import Path
from typing import Iterator, TextIO

import chess
import chess.pgn
import numpy as np

from .data import board_to_planes, move_to_index

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class ConversionStats:
    games_processed: int = 0
    games_skipped: int = 0
    total_samples: int = 0
    num_batches: int = 0


def _header_elo(game: chess.pgn.Game, key: str) -> int | None:
    try:
        return int(game.headers.get(key, ""))
    except ValueError:
        return None


def should_skip_game(game: chess.pgn.Game, min_elo: int = 0) -> bool:
    """Skip unfinished games, non-standard starts and games below ``min_elo``."""
    if game.headers.get("Result", "*") == "*":
        return True
    if "FEN" in game.headers or game.headers.get("Variant", "Standard") != "Standard":
        return True
    if min_elo:
        elos = [_header_elo(game, "WhiteElo"), _header_elo(game, "BlackElo")]
        if any(elo is None or elo < min_elo for elo in elos):
            return True
    return False


def process_game(game: chess.pgn.Game, skip_plies: int = 10) -> list[tuple[np.ndarray, int]]:
    """Extract (planes, move_index) pairs from a game.

    The first ``skip_plies`` half-moves are left out. The move index depends
    on the side to move, so it is taken before the push.
    """
    samples = []
    board = game.board()
    for ply, move in enumerate(game.mainline_moves()):
        if ply >= skip_plies:
            samples.append((board_to_planes(board).astype(np.uint8), move_to_index(move, board)))
        board.push(move)
    return samples


def iter_games(handle: TextIO, stats: ConversionStats, max_games: int, min_elo: int = 0) -> Iterator[chess.pgn.Game]:
    """Yield up to ``max_games`` usable games, counting the skipped ones."""
    while stats.games_processed < max_games:
        game = chess.pgn.read_game(handle)
        if game is None:
            return
        if should_skip_game(game, min_elo):
            stats.games_skipped += 1
            continue
        stats.games_processed += 1
        yield game


def save_batch(
    planes: list[np.ndarray],
    moves: list[int],
    output_dir: Path,
    batch_num: int,
) -> Path:
    """Save a batch of samples as compressed .npz."""
    path = output_dir / f"batch_{batch_num:04d}.npz"
    np.savez_compressed(path, boards=np.stack(planes), moves=np.array(moves, dtype=np.int16))
    return path


def convert_pgn(
    pgn_path: str | Path,
    output_dir: str | Path,
    max_games: int = 20000,
    skip_plies: int = 10,
    min_elo: int = 0,
    batch_size: int = 50000,
) -> ConversionStats:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    stats = ConversionStats()
    planes_buf: list[np.ndarray] = []
    moves_buf: list[int] = []

    def flush() -> None:
        path = save_batch(planes_buf, moves_buf, output_dir, stats.num_batches)
        logger.info("Saved %s (%d samples)", path.name, len(planes_buf))
        planes_buf.clear()
        moves_buf.clear()
        stats.num_batches += 1

    start_time = time.time()
    with open(pgn_path, encoding="utf-8", errors="replace") as f:
        for game in iter_games(f, stats, max_games, min_elo):
            for planes, index in process_game(game, skip_plies=skip_plies):
                planes_buf.append(planes)
                moves_buf.append(index)
            if len(planes_buf) >= batch_size:
                stats.total_samples += len(planes_buf)
                flush()
            if stats.games_processed % 1000 == 0:
                logger.info("[%d/%d] games, %.1fs", stats.games_processed, max_games, time.time() - start_time)

    if planes_buf:
        stats.total_samples += len(planes_buf)
        flush()

    metadata = {
        "pgn": str(pgn_path),
        "encoding": "18x8x8 planes, 64x73 move index",
        "max_games": max_games,
        "skip_plies": skip_plies,
        "min_elo": min_elo,
        **dataclasses.asdict(stats),
        "elapsed_seconds": round(time.time() - start_time, 1),
    }
    (output_dir / "metadata.json").write_text(json.dumps(metadata, indent=2))
    return stats


def main():
    parser = argparse.ArgumentParser(description="Convert PGN to training dataset")
    parser.add_argument("--pgn", required=True, help="Path to PGN file")
    parser.add_argument("--output", required=True, help="Output directory for .npz files")
    parser.add_argument("--max-games", type=int, default=20000, help="Max games to process")
    parser.add_argument("--skip-plies", type=int, default=10, help="Skip first N half-moves")
    parser.add_argument("--min-elo", type=int, default=0, help="Skip games where either player is rated below this")
    parser.add_argument("--batch-size", type=int, default=50000, help="Samples per .npz batch")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S")

    stats = convert_pgn(args.pgn, args.output, args.max_games, args.skip_plies, args.min_elo, args.batch_size)
    print(f"\nDone! {stats.games_processed} games -> {stats.total_samples} samples in {stats.num_batches} batches")
    print(f"Skipped {stats.games_skipped} games; metadata in {Path(args.output) / 'metadata.json'}")


if __name__ == "__main__":
    main()
