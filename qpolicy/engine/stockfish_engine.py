"""Stockfish UCI engine wrapper, used as an evaluation opponent."""

import chess
import chess.engine

from qpolicy.engine.base import BaseEngine


class StockfishEngine(BaseEngine):
    """Wraps a Stockfish binary via UCI protocol."""

    name = "stockfish"

    def __init__(
        self,
        path: str = "stockfish",
        depth: int = 1,
        time_limit: float = 0.1,
        skill_level: int | None = None,
    ):
        self.engine = chess.engine.SimpleEngine.popen_uci(path)
        if skill_level is not None:
            self.engine.configure({"Skill Level": skill_level})
        self.limit = chess.engine.Limit(depth=depth, time=time_limit)

    def select_move(self, board: chess.Board) -> chess.Move:
        return self.engine.play(board, self.limit).move

    def close(self) -> None:
        self.engine.quit()
