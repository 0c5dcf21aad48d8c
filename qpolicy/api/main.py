import logging
from pathlib import Path

import chess
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from qpolicy import config
from qpolicy.config import MAX_ALPHA, MAX_CANDIDATES
from qpolicy.engine.base import BaseEngine
from qpolicy.engine.quantized_engine import OnePlyEngine, PolicyEngine
from qpolicy.engine.random_engine import RandomEngine
from qpolicy.errors import ModelNotReadyError, PreconditionError
from qpolicy.inference import infer_best_1ply, infer_top_k, is_sentinel
from qpolicy.training.data import board_to_state, build_candidates, index_to_move, legal_move_mask
from qpolicy.weights import ModelRegistry, QuantizedWeights, registry_from_npz

app = FastAPI(title="Quantized Chess Policy")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_engines: dict[str, BaseEngine] = {}
_registries: dict[str, ModelRegistry] = {}


def _find_models() -> dict[str, Path]:
    """Scan the models dir and return mapping: model name -> weight store."""
    models = {}
    models_dir = Path(config.MODELS_DIR)
    if models_dir.exists():
        for npz_file in models_dir.glob("*_weights.npz"):
            # sl_weights.npz -> "sl"
            models[npz_file.stem.removesuffix("_weights")] = npz_file
    return models


def get_registry(name: str) -> ModelRegistry:
    if name not in _registries:
        models = _find_models()
        if name not in models:
            raise HTTPException(status_code=404, detail=f"Unknown model: {name}")
        _registries[name] = registry_from_npz(models[name])
        logger.info("Loaded model '%s' from %s", name, models[name])
    return _registries[name]


def get_engine(name: str) -> BaseEngine:
    """'random', '<model>' (policy argmax) or '<model>:oneply'."""
    if name not in _engines:
        if name == "random":
            _engines[name] = RandomEngine()
        elif name.endswith(":oneply"):
            _engines[name] = OnePlyEngine(get_registry(name.removesuffix(":oneply")))
        else:
            _engines[name] = PolicyEngine(get_registry(name))
    return _engines[name]


def parse_board(fen: str) -> chess.Board:
    try:
        return chess.Board(fen)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid FEN: {fen}")


class MoveRequest(BaseModel):
    fen: str
    move: str
    engine: str = "random"


class MoveResponse(BaseModel):
    fen: str
    ai_move: str | None
    status: str


class NewGameResponse(BaseModel):
    fen: str
    status: str


class InferRequest(BaseModel):
    fen: str
    model: str
    k: int = Field(default=1, ge=1, le=MAX_CANDIDATES)


class ScoredMove(BaseModel):
    move: str
    index: int
    logit: int


class InferResponse(BaseModel):
    model_version: int
    moves: list[ScoredMove]


class OnePlyRequest(BaseModel):
    fen: str
    model: str
    candidates: int = Field(default=8, ge=1, le=MAX_CANDIDATES)
    alpha: int = Field(default=128, ge=0, le=MAX_ALPHA)
    rand_margin: int = Field(default=0, ge=0)
    seed: int = Field(default=0, ge=0)


class OnePlyResponse(BaseModel):
    move: str
    index: int
    score: int
    logit: int
    opponent_reply_logit: int
    my_capture_value: int
    opponent_capture_value: int


def get_game_status(board: chess.Board) -> str:
    if board.is_checkmate():
        return "checkmate"
    if board.is_stalemate():
        return "stalemate"
    if board.is_insufficient_material() or board.is_fifty_moves() or board.is_repetition():
        return "draw"
    return "playing"


def _playable(board: chess.Board) -> None:
    if not any(board.legal_moves):
        raise HTTPException(status_code=400, detail=f"Game is over: {get_game_status(board)}")


def _load_weights(name: str) -> QuantizedWeights:
    try:
        return QuantizedWeights.load(get_registry(name).snapshot())
    except ModelNotReadyError as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/engines")
def list_engines():
    """Return available engine names."""
    models = sorted(_find_models().keys())
    available = ["random"] + models + [f"{name}:oneply" for name in models]
    return {"engines": available}


@app.post("/new_game", response_model=NewGameResponse)
def new_game():
    board = chess.Board()
    return NewGameResponse(fen=board.fen(), status="playing")


@app.post("/move", response_model=MoveResponse)
def make_move(req: MoveRequest):
    board = parse_board(req.fen)

    try:
        move = chess.Move.from_uci(req.move)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid UCI move: {req.move}")

    if move not in board.legal_moves:
        raise HTTPException(status_code=400, detail=f"Illegal move: {req.move}")

    board.push(move)

    status = get_game_status(board)
    if status != "playing":
        return MoveResponse(fen=board.fen(), ai_move=None, status=status)

    engine = get_engine(req.engine)
    try:
        ai_move = engine.select_move(board)
    except ModelNotReadyError as e:
        raise HTTPException(status_code=503, detail=str(e))
    board.push(ai_move)

    status = get_game_status(board)
    return MoveResponse(fen=board.fen(), ai_move=ai_move.uci(), status=status)


@app.post("/infer", response_model=InferResponse)
def infer(req: InferRequest):
    """The model's top-k legal moves for the side to move."""
    board = parse_board(req.fen)
    _playable(board)
    weights = _load_weights(req.model)

    try:
        ranked = infer_top_k(weights, board_to_state(board), legal_move_mask(board), req.k)
    except PreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    moves = [
        ScoredMove(move=index_to_move(index, board).uci(), index=index, logit=logit)
        for index, logit in ranked
        if not is_sentinel((index, logit))
    ]
    return InferResponse(model_version=weights.version, moves=moves)


@app.post("/infer/one_ply", response_model=OnePlyResponse)
def infer_one_ply(req: OnePlyRequest):
    """One-ply refined choice among the model's top candidates."""
    board = parse_board(req.fen)
    _playable(board)
    weights = _load_weights(req.model)

    try:
        query = build_candidates(
            board,
            weights,
            limit=req.candidates,
            alpha=req.alpha,
            rand_margin=req.rand_margin,
            seed=req.seed,
        )
        decision = infer_best_1ply(weights, query)
    except PreconditionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return OnePlyResponse(
        move=index_to_move(decision.move_index, board).uci(),
        index=decision.move_index,
        score=decision.score,
        logit=decision.logit,
        opponent_reply_logit=decision.opponent_reply_logit,
        my_capture_value=decision.my_capture_value,
        opponent_capture_value=decision.opponent_capture_value,
    )
