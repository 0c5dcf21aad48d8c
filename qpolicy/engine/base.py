import abc

import chess


class BaseEngine(abc.ABC):
    """Anything that can pick a move for the side to move."""

    name = "engine"

    @abc.abstractmethod
    def select_move(self, board: chess.Board) -> chess.Move: ...

    def close(self) -> None:
        """Release external resources; most engines hold none."""
