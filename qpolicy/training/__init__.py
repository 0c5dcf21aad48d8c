from .data import (
    board_to_planes,
    board_to_state,
    build_candidates,
    index_to_move,
    legal_move_mask,
    move_to_index,
)
from .evaluate import MatchGame, MatchResult, play_match_game, run_match
