"""Public inference entry points.

Every function takes ``model`` first: a `ModelRegistry` (refused until
weights are wired), a `ModelSnapshot`, or a `QuantizedWeights` already
decoded for the current request.
"""

from qpolicy.board import BoardState, check_mask
from qpolicy.config import NUM_MOVES
from qpolicy.errors import PreconditionError
from qpolicy.models.projection import argmax_masked, is_sentinel, top_k_masked
from qpolicy.models.quantized_net import policy_tensor
from qpolicy.search.one_ply import OnePlyDecision, OnePlyQuery, infer_best_1ply
from qpolicy.weights import resolve_weights

__all__ = [
    "OnePlyDecision",
    "OnePlyQuery",
    "infer_best",
    "infer_best_1ply",
    "infer_top_k",
    "is_sentinel",
]


def _check_position(position) -> None:
    if not isinstance(position, BoardState):
        raise PreconditionError(f"position must be a BoardState, got {type(position)!r}")


def infer_best(model, position: BoardState, legal_mask: bytes) -> tuple[int, int]:
    """Highest-logit legal move as ``(move_index, logit)``."""
    _check_position(position)
    mask = check_mask(legal_mask)
    weights = resolve_weights(model)
    return argmax_masked(policy_tensor(position, weights), mask, weights)


def infer_top_k(model, position: BoardState, legal_mask: bytes, k: int) -> list[tuple[int, int]]:
    """The ``k`` best legal moves, best first; see `top_k_masked` for sentinels."""
    _check_position(position)
    mask = check_mask(legal_mask)
    if not 1 <= k <= NUM_MOVES:
        raise PreconditionError(f"k must be in [1, {NUM_MOVES}], got {k}")
    weights = resolve_weights(model)
    return top_k_masked(policy_tensor(position, weights), mask, weights, k)
