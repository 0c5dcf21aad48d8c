from .heuristics import PIECE_VALUES, capture_value_from_delta, max_capture_value
from .one_ply import OnePlyDecision, OnePlyQuery, infer_best_1ply, select_top
