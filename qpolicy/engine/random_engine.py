import random

import chess

from qpolicy.engine.base import BaseEngine


class RandomEngine(BaseEngine):
    name = "random"

    def __init__(self, seed: int | None = None):
        self._rng = random.Random(seed)

    def select_move(self, board: chess.Board) -> chess.Move:
        legal = list(board.legal_moves)
        if not legal:
            raise ValueError("No legal moves available.")
        return self._rng.choice(legal)
