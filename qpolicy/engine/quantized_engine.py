"""Chess engines backed by the integer policy network."""

import logging

import chess

from qpolicy.engine.base import BaseEngine
from qpolicy.entropy import EntropyProvider
from qpolicy.inference import OnePlyDecision, infer_best, infer_best_1ply
from qpolicy.training.data import board_to_state, build_candidates, index_to_move, legal_move_mask
from qpolicy.weights import ModelRegistry, QuantizedWeights, registry_from_npz

logger = logging.getLogger(__name__)


class PolicyEngine(BaseEngine):
    """Plays the network's highest-logit legal move."""

    name = "policy"

    def __init__(self, model: ModelRegistry | str):
        self.model = registry_from_npz(model) if isinstance(model, str) else model

    def select_move(self, board: chess.Board) -> chess.Move:
        index, logit = infer_best(self.model, board_to_state(board), legal_move_mask(board))
        logger.debug("policy move %d (logit %d)", index, logit)
        return index_to_move(index, board)


class OnePlyEngine(BaseEngine):
    """Takes the network's top moves and refines them with one opponent reply.

    ``seed`` 0 draws the tie-break from ``entropy`` (OS randomness by
    default); any other value makes play fully reproducible.
    """

    name = "one_ply"

    def __init__(
        self,
        model: ModelRegistry | str,
        candidates: int = 8,
        alpha: int = 128,
        rand_margin: int = 0,
        seed: int = 0,
        entropy: EntropyProvider | None = None,
    ):
        self.model = registry_from_npz(model) if isinstance(model, str) else model
        self.candidates = candidates
        self.alpha = alpha
        self.rand_margin = rand_margin
        self.seed = seed
        self.entropy = entropy
        self.last_decision: OnePlyDecision | None = None

    def decide(self, board: chess.Board) -> OnePlyDecision:
        # One decode of the weights serves the candidate ranking and every refinement
        weights = QuantizedWeights.load(self.model.snapshot())
        query = build_candidates(
            board,
            weights,
            limit=self.candidates,
            alpha=self.alpha,
            rand_margin=self.rand_margin,
            seed=self.seed,
        )
        return infer_best_1ply(weights, query, self.entropy)

    def select_move(self, board: chess.Board) -> chess.Move:
        decision = self.decide(board)
        self.last_decision = decision
        return index_to_move(decision.move_index, board)
