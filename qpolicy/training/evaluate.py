"""Evaluation script: run matches between chess engines and collect statistics.

Engine names:
    random              uniformly random legal moves
    stockfish           Stockfish at a fixed depth
    <name>              argmax of models/<name>_weights.npz
    <name>:oneply       the same weights behind the one-ply search

Usage:
    python -m qpolicy.training.evaluate --engine1 sl:oneply --engine2 sl --games 200
"""

import argparse
import csv
import dataclasses
import logging
import sys
from pathlib import Path

import chess
import chess.pgn

from qpolicy.config import MODELS_DIR, PROJECT_ROOT
from qpolicy.engine.base import BaseEngine
from qpolicy.engine.random_engine import RandomEngine

ONE_PLY_SUFFIX = ":oneply"

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class MatchGame:
    """Result of a single game."""

    result: float       # +1 white won, 0 draw, -1 black won
    num_moves: int
    moves: list[str]    # UCI move strings
    termination: str    # "checkmate", "stalemate", "draw", "max_moves", "illegal_move"


@dataclasses.dataclass
class MatchResult:
    """Aggregate result of a multi-game match."""

    engine1_name: str
    engine2_name: str
    engine1_wins: int
    engine2_wins: int
    draws: int
    total_games: int
    avg_length: float
    games: list[MatchGame]


# ---------------------------------------------------------------------------
# Single game
# ---------------------------------------------------------------------------

def play_match_game(
    white: BaseEngine,
    black: BaseEngine,
    max_moves: int = 200,
) -> MatchGame:
    """Play one game between two engines. Returns a MatchGame.

    An engine answering with an illegal move forfeits the game.
    """
    board = chess.Board()
    moves: list[str] = []

    for _ in range(max_moves):
        if board.is_game_over(claim_draw=True):
            break
        engine = white if board.turn == chess.WHITE else black
        move = engine.select_move(board)
        if move not in board.legal_moves:
            logger.warning("%s played illegal move %s in %s", engine.name, move.uci(), board.fen())
            result = -1.0 if board.turn == chess.WHITE else 1.0
            return MatchGame(result=result, num_moves=len(moves), moves=moves, termination="illegal_move")
        moves.append(move.uci())
        board.push(move)

    outcome = board.outcome(claim_draw=True)
    if outcome is None:
        return MatchGame(result=0.0, num_moves=len(moves), moves=moves, termination="max_moves")

    if outcome.termination == chess.Termination.CHECKMATE:
        termination = "checkmate"
    elif outcome.termination == chess.Termination.STALEMATE:
        termination = "stalemate"
    else:
        termination = "draw"
    result = {chess.WHITE: 1.0, chess.BLACK: -1.0, None: 0.0}[outcome.winner]

    return MatchGame(
        result=result,
        num_moves=len(moves),
        moves=moves,
        termination=termination,
    )


# ---------------------------------------------------------------------------
# Full match
# ---------------------------------------------------------------------------

def run_match(
    name1: str,
    engine1: BaseEngine,
    name2: str,
    engine2: BaseEngine,
    num_games: int,
    max_moves: int = 200,
) -> MatchResult:
    """Play *num_games* between two engines, alternating colours each game.

    engine1 has white in even-numbered games.
    """
    tally = {1: 0, -1: 0, 0: 0}  # engine1 score sign -> count
    games: list[MatchGame] = []

    for i in range(num_games):
        engine1_white = i % 2 == 0
        if engine1_white:
            game = play_match_game(engine1, engine2, max_moves)
        else:
            game = play_match_game(engine2, engine1, max_moves)
        score = game.result if engine1_white else -game.result
        tally[int(score)] += 1
        games.append(game)

        if (i + 1) % 50 == 0 or (i + 1) == num_games:
            logger.info(
                "  [%d/%d] %s %d - %d %s (draws %d)",
                i + 1, num_games, name1, tally[1], tally[-1], name2, tally[0],
            )

    total_moves = sum(game.num_moves for game in games)
    return MatchResult(
        engine1_name=name1,
        engine2_name=name2,
        engine1_wins=tally[1],
        engine2_wins=tally[-1],
        draws=tally[0],
        total_games=num_games,
        avg_length=total_moves / num_games if num_games else 0.0,
        games=games,
    )


def match_score(mr: MatchResult) -> float:
    """engine1's score fraction, draws counting half."""
    if not mr.total_games:
        return 0.0
    return (mr.engine1_wins + 0.5 * mr.draws) / mr.total_games


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------

def print_summary(mr: MatchResult) -> None:
    """Print a human-readable summary table."""
    w = max(len(mr.engine1_name), len(mr.engine2_name), 6)
    header = f"Match: {mr.engine1_name} vs {mr.engine2_name} ({mr.total_games} games)"
    sep = "-" * len(header)

    print(f"\n{header}")
    print(sep)
    print(f"{'':>{w}}  {'Wins':>6}  {'Losses':>6}  {'Draws':>6}  {'Win%':>6}")
    rows = (
        (mr.engine1_name, mr.engine1_wins, mr.engine2_wins),
        (mr.engine2_name, mr.engine2_wins, mr.engine1_wins),
    )
    for name, wins, losses in rows:
        pct = wins / mr.total_games * 100 if mr.total_games else 0
        print(f"{name:>{w}}  {wins:>6}  {losses:>6}  {mr.draws:>6}  {pct:>5.1f}%")
    print(sep)
    print(f"Score: {match_score(mr):.1%} for {mr.engine1_name}, avg game length {mr.avg_length:.1f} moves\n")


def save_csv(mr: MatchResult, csv_path: Path) -> None:
    """Append one row to the CSV results file."""
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    write_header = not csv_path.exists()

    with open(csv_path, "a", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=[
            "match", "engine1", "engine2", "e1_wins", "e2_wins", "draws", "total", "score", "avg_length",
        ])
        if write_header:
            writer.writeheader()
        writer.writerow({
            "match": f"{mr.engine1_name}_vs_{mr.engine2_name}",
            "engine1": mr.engine1_name,
            "engine2": mr.engine2_name,
            "e1_wins": mr.engine1_wins,
            "e2_wins": mr.engine2_wins,
            "draws": mr.draws,
            "total": mr.total_games,
            "score": f"{match_score(mr):.3f}",
            "avg_length": f"{mr.avg_length:.1f}",
        })

    logger.info("CSV saved to %s", csv_path)


def game_to_pgn(game: MatchGame, white_name: str, black_name: str) -> chess.pgn.Game:
    pgn = chess.pgn.Game()
    pgn.headers["Event"] = "Eval Match"
    pgn.headers["White"] = white_name
    pgn.headers["Black"] = black_name
    pgn.headers["Result"] = {1.0: "1-0", -1.0: "0-1"}.get(game.result, "1/2-1/2")
    pgn.headers["Termination"] = game.termination
    node = pgn
    for uci in game.moves:
        node = node.add_variation(chess.Move.from_uci(uci))
    return pgn


def save_pgn(mr: MatchResult, pgn_path: Path) -> None:
    """Write all games to a PGN file."""
    pgn_path.parent.mkdir(parents=True, exist_ok=True)

    with open(pgn_path, "w") as f:
        for game_idx, game in enumerate(mr.games):
            names = (mr.engine1_name, mr.engine2_name)
            white_name, black_name = names if game_idx % 2 == 0 else names[::-1]
            print(game_to_pgn(game, white_name, black_name), file=f, end="\n\n")

    logger.info("PGN saved to %s", pgn_path)


# ---------------------------------------------------------------------------
# Engine loading
# ---------------------------------------------------------------------------

def weights_path(name: str, models_dir: Path = MODELS_DIR) -> Path:
    return Path(models_dir) / f"{name}_weights.npz"


def load_engine(
    name: str,
    stockfish_path: str = "stockfish",
    stockfish_depth: int = 1,
    candidates: int = 8,
    alpha: int = 128,
    rand_margin: int = 0,
    seed: int = 0,
    models_dir: Path = MODELS_DIR,
) -> BaseEngine:
    """Load an engine by name. Supports 'random', 'stockfish', and quantized models."""
    if name == "random":
        return RandomEngine()

    if name == "stockfish":
        from qpolicy.engine.stockfish_engine import StockfishEngine
        return StockfishEngine(stockfish_path, depth=stockfish_depth)

    one_ply = name.endswith(ONE_PLY_SUFFIX)
    model_name = name.removesuffix(ONE_PLY_SUFFIX)
    path = weights_path(model_name, models_dir)
    if not path.exists():
        sys.exit(f"Error: weight file not found: {path}")

    from qpolicy.engine.quantized_engine import OnePlyEngine, PolicyEngine
    if one_ply:
        return OnePlyEngine(str(path), candidates=candidates, alpha=alpha, rand_margin=rand_margin, seed=seed)
    return PolicyEngine(str(path))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main() -> None:
    parser = argparse.ArgumentParser(
        description="Evaluate chess engines by playing matches.",
    )
    parser.add_argument("--engine1", required=True, help="First engine name (e.g. sl, sl:oneply, random, stockfish)")
    parser.add_argument("--engine2", required=True, help="Second engine name")
    parser.add_argument("--games", type=int, default=500, help="Number of games (default: 500)")
    parser.add_argument("--max-moves", type=int, default=200, help="Max moves per game (default: 200)")
    parser.add_argument("--save-pgn", action="store_true", help="Save games to PGN file")
    parser.add_argument("--stockfish-path", default="stockfish", help="Path to Stockfish binary")
    parser.add_argument("--stockfish-depth", type=int, default=1, help="Stockfish search depth (default: 1)")
    parser.add_argument("--candidates", type=int, default=8, help="Candidate moves fed to the one-ply search")
    parser.add_argument("--alpha", type=int, default=128, help="Opponent-reply penalty weight, 0..255")
    parser.add_argument("--rand-margin", type=int, default=0, help="Score margin for the one-ply tie-break pool")
    parser.add_argument("--seed", type=int, default=0, help="One-ply tie-break seed, 0 = OS entropy")
    parser.add_argument("--models-dir", default=str(MODELS_DIR), help="Directory holding <name>_weights.npz")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )

    logger.info("Loading engines: %s, %s (alpha=%d)", args.engine1, args.engine2, args.alpha)
    engine_options = dict(
        stockfish_path=args.stockfish_path,
        stockfish_depth=args.stockfish_depth,
        candidates=args.candidates,
        alpha=args.alpha,
        rand_margin=args.rand_margin,
        seed=args.seed,
        models_dir=Path(args.models_dir),
    )
    e1 = load_engine(args.engine1, **engine_options)
    e2 = load_engine(args.engine2, **engine_options)

    try:
        logger.info("Starting match: %s vs %s (%d games)", args.engine1, args.engine2, args.games)
        result = run_match(args.engine1, e1, args.engine2, e2, args.games, args.max_moves)
    finally:
        e1.close()
        e2.close()

    print_summary(result)

    eval_dir = PROJECT_ROOT / "experiments" / "eval_logs"
    save_csv(result, eval_dir / "eval_results.csv")

    if args.save_pgn:
        pgn_name = f"{args.engine1}_vs_{args.engine2}.pgn".replace(":", "_")
        save_pgn(result, eval_dir / pgn_name)


if __name__ == "__main__":
    main()
