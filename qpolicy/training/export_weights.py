"""Quantize a trained ChessCNN into the int8 weight blobs the core reads.

Scales (``s`` = requantization shift, ``A`` = activation scale):
    conv weights      w * A * 2**s for the stem (its input planes are 0/1),
                      w * 2**s for every later conv
    conv biases       b * A * 2**s
    fc weights        w * FC_WEIGHT_SCALE
    fc biases         b * A * FC_WEIGHT_SCALE

so every int8 activation holds ``A`` times the float activation and a logit
of 1.0 comes out as ``A * FC_WEIGHT_SCALE``. Fully-connected rows are split
into 191-row chunks in move-index order.

Usage:
    python -m qpolicy.training.export_weights \
        --checkpoint models/sl_model.pt --output models/sl_weights.npz
    python -m qpolicy.training.export_weights --random --seed 7 --output models/random_weights.npz
"""

import argparse
import logging
from pathlib import Path

import numpy as np
import torch

from qpolicy.config import DEFAULT_SHIFT, FC_CHUNK_ROWS
from qpolicy.models.chess_cnn import ChessCNN
from qpolicy.weights import WeightHandles, random_weight_blobs, save_npz_store

logger = logging.getLogger(__name__)

ACTIVATION_SCALE = 2
FC_WEIGHT_SCALE = 64

_INT32_MIN = -(2 ** 31)
_INT32_MAX = 2 ** 31 - 1


class _Quantizer:
    """Rounds and saturates tensors, counting how many values clipped."""

    def __init__(self):
        self.saturated = 0
        self.total = 0

    def int8(self, tensor: torch.Tensor, scale: float) -> bytes:
        values = np.rint(tensor.detach().cpu().double().numpy().reshape(-1) * scale)
        self.saturated += int(np.count_nonzero((values < -128) | (values > 127)))
        self.total += values.size
        return np.clip(values, -128, 127).astype(np.int8).tobytes()

    def int32(self, tensor: torch.Tensor, scale: float) -> bytes:
        values = np.rint(tensor.detach().cpu().double().numpy().reshape(-1) * scale)
        return np.clip(values, _INT32_MIN, _INT32_MAX).astype("<i4").tobytes()


def quantize_model(
    model: ChessCNN,
    shift: int = DEFAULT_SHIFT,
    activation_scale: int = ACTIVATION_SCALE,
    handles: WeightHandles | None = None,
) -> dict[str, bytes]:
    """Return one blob per handle for ``model``."""
    handles = handles or WeightHandles.default()
    q = _Quantizer()
    conv_scale = float(1 << shift)
    bias_scale = activation_scale * conv_scale

    blobs = {
        handles.stem_weight: q.int8(model.stem.weight, activation_scale * conv_scale),
        handles.stem_bias: q.int32(model.stem.bias, bias_scale),
        handles.policy_weight: q.int8(model.policy.weight, conv_scale),
        handles.policy_bias: q.int32(model.policy.bias, bias_scale),
        handles.fc_bias: q.int32(model.fc.bias, activation_scale * FC_WEIGHT_SCALE),
    }
    for block, names in zip(model.blocks, handles.blocks):
        blobs[names.conv1_weight] = q.int8(block.conv1.weight, conv_scale)
        blobs[names.conv1_bias] = q.int32(block.conv1.bias, bias_scale)
        blobs[names.conv2_weight] = q.int8(block.conv2.weight, conv_scale)
        blobs[names.conv2_bias] = q.int32(block.conv2.bias, bias_scale)

    fc = model.fc.weight.detach()
    for chunk, handle in enumerate(handles.fc_chunks):
        rows = fc[chunk * FC_CHUNK_ROWS:(chunk + 1) * FC_CHUNK_ROWS]
        blobs[handle] = q.int8(rows, FC_WEIGHT_SCALE)

    if q.saturated:
        logger.warning("%d of %d weights saturated at int8", q.saturated, q.total)
    return blobs


def export_model(
    model: ChessCNN,
    output: str | Path,
    shift: int = DEFAULT_SHIFT,
    activation_scale: int = ACTIVATION_SCALE,
) -> Path:
    model.eval()
    return save_npz_store(output, quantize_model(model, shift, activation_scale), shift=shift)


def main() -> None:
    parser = argparse.ArgumentParser(description="Export quantized ChessCNN weights")
    parser.add_argument("--checkpoint", type=str, help="ChessCNN state dict (.pt)")
    parser.add_argument("--output", type=str, required=True, help="Destination .npz weight store")
    parser.add_argument("--shift", type=int, default=DEFAULT_SHIFT, help="Requantization shift")
    parser.add_argument("--activation-scale", type=int, default=ACTIVATION_SCALE)
    parser.add_argument("--random", action="store_true", help="Write random weights instead of a checkpoint")
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S")

    if args.random:
        path = save_npz_store(args.output, random_weight_blobs(args.seed), shift=args.shift)
    else:
        if not args.checkpoint:
            parser.error("--checkpoint is required unless --random is given")
        model = ChessCNN()
        model.load_state_dict(torch.load(args.checkpoint, map_location="cpu", weights_only=True))
        path = export_model(model, args.output, args.shift, args.activation_scale)

    logger.info("Weight store written to %s", path)


if __name__ == "__main__":
    main()
