"""PyTorch Dataset over pre-processed .npz batches of encoded positions."""

from pathlib import Path

import numpy as np
import torch
from torch.utils.data import Dataset, random_split

from qpolicy.config import BOARD_SIZE, INPUT_CHANNELS, NUM_MOVES

PLANE_SHAPE = (INPUT_CHANNELS, BOARD_SIZE, BOARD_SIZE)


class ChessDataset(Dataset):
    """Dataset that loads all batch_*.npz files from a directory into memory.

    Each sample is a (planes, move_index) pair:
        - planes: float32 tensor of shape (18, 8, 8)
        - move_index: int64 scalar (0..4671), the 64x73 encoding
    """

    def __init__(self, data_dir: str | Path, max_samples: int | None = None):
        data_dir = Path(data_dir)
        npz_files = sorted(data_dir.glob("batch_*.npz"))
        if not npz_files:
            raise FileNotFoundError(f"No batch_*.npz files found in {data_dir}")

        all_planes = []
        all_moves = []
        total = 0
        for path in npz_files:
            with np.load(path) as data:
                planes = data["boards"]
                moves = data["moves"].astype(np.int64)
            if planes.shape[1:] != PLANE_SHAPE:
                raise ValueError(f"{path.name}: boards have shape {planes.shape[1:]}, expected {PLANE_SHAPE}")
            if len(moves) and (moves.min() < 0 or moves.max() >= NUM_MOVES):
                raise ValueError(f"{path.name}: move index outside 0..{NUM_MOVES - 1}")
            # Planes are 0/1, uint8 keeps them 4x smaller than float32
            all_planes.append(planes.astype(np.uint8))
            all_moves.append(moves)
            total += len(moves)
            if max_samples is not None and total >= max_samples:
                break

        planes = np.concatenate(all_planes)
        moves = np.concatenate(all_moves)
        if max_samples is not None:
            planes, moves = planes[:max_samples], moves[:max_samples]

        self.planes = torch.from_numpy(planes)
        self.moves = torch.from_numpy(moves)

    def __len__(self) -> int:
        return len(self.moves)

    def __getitem__(self, idx: int) -> tuple[torch.Tensor, torch.Tensor]:
        return self.planes[idx].float(), self.moves[idx]


def split_dataset(dataset: Dataset, val_split: float, seed: int = 42):
    """Deterministic train/validation split."""
    n_val = int(len(dataset) * val_split)
    n_train = len(dataset) - n_val
    return random_split(dataset, [n_train, n_val], generator=torch.Generator().manual_seed(seed))
