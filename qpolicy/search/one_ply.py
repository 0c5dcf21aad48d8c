"""One-ply refinement over a caller-supplied candidate set.

The caller proposes up to 32 moves, each with its prior logit and the
successor position/mask it leads to. Every candidate gets a cheap material
adjusted score, the best three are refined by asking the network for the
opponent's strongest reply, and one of the refined candidates within
``rand_margin`` of the best is picked with a seed.
"""

import dataclasses
import logging
from typing import Sequence

from qpolicy.board import BoardState, check_mask, is_legal, mask_to_bools
from qpolicy.config import (
    MAX_ALPHA,
    MAX_CANDIDATES,
    MY_CAPTURE_WEIGHT,
    OPPONENT_CAPTURE_WEIGHT,
    TOP_CANDIDATES,
)
from qpolicy.entropy import EntropyProvider, SystemEntropy, derive_seed
from qpolicy.errors import PreconditionError
from qpolicy.models.projection import argmax_masked
from qpolicy.models.quantized_net import policy_tensor
from qpolicy.search.heuristics import capture_value_from_delta, max_capture_value
from qpolicy.weights import QuantizedWeights, resolve_weights

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class OnePlyQuery:
    """Root position plus index-aligned candidate arrays."""

    position: BoardState
    legal_mask: bytes
    moves: Sequence[int]
    logits: Sequence[int]
    successors: Sequence[BoardState]
    successor_masks: Sequence[bytes]
    alpha: int = 0
    rand_margin: int = 0
    seed: int = 0       # 0 = derive from the entropy provider


@dataclasses.dataclass(frozen=True)
class OnePlyDecision:
    move_index: int
    score: int
    logit: int
    opponent_reply_logit: int
    my_capture_value: int
    opponent_capture_value: int
    candidate: int      # position of the chosen move in the query arrays


@dataclasses.dataclass
class _Refined:
    candidate: int
    fast_score: int
    score: int
    reply_logit: int


def validate_query(query: OnePlyQuery) -> None:
    """Reject a malformed query before any computation starts."""
    n = len(query.moves)
    if n == 0:
        raise PreconditionError("Candidate set is empty")
    if n > MAX_CANDIDATES:
        raise PreconditionError(f"At most {MAX_CANDIDATES} candidates are allowed, got {n}")
    lengths = (len(query.logits), len(query.successors), len(query.successor_masks))
    if any(length != n for length in lengths):
        raise PreconditionError(
            f"Candidate arrays differ in length: moves={n} logits={lengths[0]} "
            f"successors={lengths[1]} masks={lengths[2]}"
        )
    if not 0 <= query.alpha <= MAX_ALPHA:
        raise PreconditionError(f"alpha must be in 0..{MAX_ALPHA}, got {query.alpha}")
    if query.seed < 0:
        raise PreconditionError(f"seed must be non-negative, got {query.seed}")
    if not isinstance(query.position, BoardState):
        raise PreconditionError(f"position must be a BoardState, got {type(query.position)!r}")

    root_mask = check_mask(query.legal_mask, "root legality mask")
    for i, (move, successor, mask) in enumerate(
        zip(query.moves, query.successors, query.successor_masks)
    ):
        if not is_legal(root_mask, move):
            raise PreconditionError(f"Candidate {i} (move {move}) is not legal in the root position")
        if not isinstance(successor, BoardState):
            raise PreconditionError(f"Successor {i} must be a BoardState, got {type(successor)!r}")
        check_mask(mask, f"successor {i} legality mask")


def fast_score(logit: int, my_capture: int, opponent_capture: int) -> int:
    return logit + my_capture * MY_CAPTURE_WEIGHT - opponent_capture * OPPONENT_CAPTURE_WEIGHT


def select_top(scores: Sequence[int], capacity: int = TOP_CANDIDATES) -> list[int]:
    """Candidate positions of the ``capacity`` best scores, best first.

    Strict ``>`` keeps earlier candidates ahead of later ones on ties.
    """
    top: list[tuple[int, int]] = []
    for candidate, score in enumerate(scores):
        for slot in range(capacity):
            if slot == len(top) or score > top[slot][0]:
                top.insert(slot, (score, candidate))
                del top[capacity:]
                break
    return [candidate for _, candidate in top]


def opponent_reply_logit(successor: BoardState, mask: bytes, weights: QuantizedWeights) -> int:
    """Best reply logit for the side to move in ``successor``; 0 when it has no move."""
    if not mask_to_bools(mask).any():
        return 0
    _, logit = argmax_masked(policy_tensor(successor, weights), mask, weights)
    return logit


def infer_best_1ply(model, query: OnePlyQuery, entropy: EntropyProvider | None = None) -> OnePlyDecision:
    """Pick one candidate after a single ply of opponent-reply refinement.

    ``model`` is a `ModelRegistry`, `ModelSnapshot` or `QuantizedWeights`;
    weights are decoded once and shared by every refinement inference.
    """
    validate_query(query)
    weights = resolve_weights(model)
    root = query.position

    my_captures = []
    opponent_captures = []
    scores = []
    for logit, successor, mask in zip(query.logits, query.successors, query.successor_masks):
        mine = capture_value_from_delta(root, successor)
        theirs = max_capture_value(successor, mask)
        my_captures.append(mine)
        opponent_captures.append(theirs)
        scores.append(fast_score(int(logit), mine, theirs))

    refined: list[_Refined] = []
    for candidate in select_top(scores):
        reply = opponent_reply_logit(query.successors[candidate], query.successor_masks[candidate], weights)
        penalty = (query.alpha * max(reply, 0)) // MAX_ALPHA
        refined.append(_Refined(candidate, scores[candidate], scores[candidate] - penalty, reply))

    best_score = max(r.score for r in refined)
    threshold = best_score - max(query.rand_margin, 0)
    pool = [r for r in refined if r.score >= threshold]

    if query.seed:
        seed = query.seed
    else:
        provider = entropy or SystemEntropy()
        seed = derive_seed(provider.entropy(), query.moves)

    chosen = pool[seed % len(pool)] if pool else refined[0]

    logger.debug(
        "one-ply: %d candidates, refined=%s threshold=%d pool=%d -> move %d",
        len(query.moves),
        [(query.moves[r.candidate], r.score) for r in refined],
        threshold,
        len(pool),
        query.moves[chosen.candidate],
    )

    return OnePlyDecision(
        move_index=int(query.moves[chosen.candidate]),
        score=chosen.score,
        logit=int(query.logits[chosen.candidate]),
        opponent_reply_logit=chosen.reply_logit,
        my_capture_value=my_captures[chosen.candidate],
        opponent_capture_value=opponent_captures[chosen.candidate],
        candidate=chosen.candidate,
    )
