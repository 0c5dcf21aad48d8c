"""Move-logit projection and masked selection.

One dense layer maps the 128-value policy tensor to a logit per move index:

    logit[m] = sum_j policy[j] * fc_weight[m][j] + fc_bias[m]

No requantization is applied; logits are plain Python ints.
"""

import numpy as np

from qpolicy.board import check_mask, mask_to_bools
from qpolicy.config import NUM_MOVES, POLICY_SIZE
from qpolicy.errors import InvariantError, PreconditionError
from qpolicy.weights import QuantizedWeights

# Logit held by unfilled top-k slots
SENTINEL_LOGIT = -(2 ** 63)


def move_logits(policy: np.ndarray, weights: QuantizedWeights) -> np.ndarray:
    """Logits for all 4672 moves as an int64 array."""
    if policy.size != POLICY_SIZE:
        raise InvariantError(f"Policy tensor has {policy.size} values; expected {POLICY_SIZE}")
    fc = np.asarray(weights.fc_weight, dtype=np.int64)
    if fc.shape != (NUM_MOVES, POLICY_SIZE):
        raise InvariantError(f"FC weight has shape {fc.shape}; expected {(NUM_MOVES, POLICY_SIZE)}")
    return fc @ np.asarray(policy, dtype=np.int64) + weights.fc_bias


def argmax_masked(policy: np.ndarray, mask: bytes, weights: QuantizedWeights) -> tuple[int, int]:
    """Legal move with the strictly greatest logit; ties keep the lowest index."""
    legal = mask_to_bools(mask)
    if not legal.any():
        raise PreconditionError("Legality mask has no legal move")
    logits = move_logits(policy, weights)

    best_index = -1
    best_logit = SENTINEL_LOGIT
    for index in np.flatnonzero(legal):
        logit = int(logits[index])
        if best_index < 0 or logit > best_logit:
            best_index = int(index)
            best_logit = logit
    return best_index, best_logit


def top_k_masked(
    policy: np.ndarray,
    mask: bytes,
    weights: QuantizedWeights,
    k: int,
) -> list[tuple[int, int]]:
    """The k best legal moves, best first.

    A candidate goes in at the first slot whose logit it strictly exceeds,
    pushing the tail down and dropping the last entry. Slots left unfilled
    when fewer than k moves are legal hold ``(0, SENTINEL_LOGIT)``.
    """
    if not 1 <= k <= NUM_MOVES:
        raise PreconditionError(f"k must be in [1, {NUM_MOVES}], got {k}")
    legal = mask_to_bools(check_mask(mask))
    logits = move_logits(policy, weights)

    buffer = [(0, SENTINEL_LOGIT)] * k
    filled = 0
    for index in np.flatnonzero(legal):
        logit = int(logits[index])
        for slot in range(k):
            if slot >= filled or logit > buffer[slot][1]:
                buffer[slot + 1:] = buffer[slot:k - 1]
                buffer[slot] = (int(index), logit)
                filled = min(filled + 1, k)
                break
    return buffer


def is_sentinel(entry: tuple[int, int]) -> bool:
    return entry[1] == SENTINEL_LOGIT
