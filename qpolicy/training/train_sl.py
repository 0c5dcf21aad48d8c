"""Supervised-learning training for the float ChessCNN.

Weights are clamped after every optimizer step so that the exported int8
tensors do not saturate; with ``--export`` the best checkpoint is quantized
straight into a weight store.

Usage:
    python -m qpolicy.training.train_sl \
        --data datasets/processed \
        --output models/sl_model.pt \
        --epochs 10 --batch-size 512 --lr 1e-3 --export models/sl_weights.npz
"""

import argparse
import dataclasses
import logging
import time
from pathlib import Path

import torch
import torch.nn as nn
from torch.utils.data import DataLoader

from qpolicy.models.chess_cnn import ChessCNN
from qpolicy.training.dataset import ChessDataset, split_dataset
from qpolicy.training.export_weights import export_model

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class EpochStats:
    epoch: int
    train_loss: float
    val_loss: float
    top1: float
    top5: float
    lr: float
    seconds: float


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Train ChessCNN with supervised learning")
    p.add_argument("--data", type=str, required=True, help="Directory with batch_*.npz files")
    p.add_argument("--output", type=str, default="models/sl_model.pt", help="Path to save best model")
    p.add_argument("--export", type=str, default=None, help="Also write quantized weights (.npz) for the best model")
    p.add_argument("--epochs", type=int, default=10)
    p.add_argument("--batch-size", type=int, default=512)
    p.add_argument("--lr", type=float, default=1e-3)
    p.add_argument("--weight-clip", type=float, default=0.99,
                   help="Clamp conv/fc weights to +-this after each step, 0 disables")
    p.add_argument("--patience", type=int, default=3, help="Early stopping patience")
    p.add_argument("--val-split", type=float, default=0.1, help="Validation fraction")
    p.add_argument("--max-samples", type=int, default=None)
    p.add_argument("--workers", type=int, default=2, help="DataLoader worker processes")
    return p.parse_args(argv)


@torch.no_grad()
def clip_weights(model: nn.Module, limit: float) -> None:
    for name, param in model.named_parameters():
        if name.endswith("weight"):
            param.clamp_(-limit, limit)


def train_one_epoch(model, loader, criterion, optimizer, device, weight_clip: float = 0.0) -> float:
    model.train()
    total_loss = 0.0
    total_samples = 0
    for planes, moves in loader:
        planes, moves = planes.to(device), moves.to(device)
        loss = criterion(model(planes), moves)
        optimizer.zero_grad()
        loss.backward()
        optimizer.step()
        if weight_clip:
            clip_weights(model, weight_clip)
        total_loss += loss.item() * planes.size(0)
        total_samples += planes.size(0)
    return total_loss / max(total_samples, 1)


@torch.no_grad()
def evaluate(model, loader, criterion, device) -> tuple[float, float, float]:
    """Validation loss plus top-1 and top-5 move accuracy."""
    model.eval()
    total_loss = 0.0
    hits = torch.zeros(2)
    total_samples = 0
    for planes, moves in loader:
        planes, moves = planes.to(device), moves.to(device)
        logits = model(planes)
        total_loss += criterion(logits, moves).item() * planes.size(0)
        top5 = logits.topk(5, dim=1).indices
        hits[0] += (top5[:, 0] == moves).sum().item()
        hits[1] += (top5 == moves.unsqueeze(1)).any(dim=1).sum().item()
        total_samples += planes.size(0)
    n = max(total_samples, 1)
    return total_loss / n, hits[0].item() / n, hits[1].item() / n


def fit(
    model: ChessCNN,
    train_loader: DataLoader,
    val_loader: DataLoader,
    output_path: Path,
    epochs: int,
    lr: float,
    patience: int,
    weight_clip: float,
    device: torch.device,
) -> list[EpochStats]:
    """Train with early stopping; the best state dict is saved to ``output_path``."""
    criterion = nn.CrossEntropyLoss()
    optimizer = torch.optim.Adam(model.parameters(), lr=lr)
    scheduler = torch.optim.lr_scheduler.ReduceLROnPlateau(optimizer, mode="min", factor=0.5, patience=2)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    history: list[EpochStats] = []
    best_val_loss = float("inf")
    stale_epochs = 0
    for epoch in range(1, epochs + 1):
        t0 = time.time()
        train_loss = train_one_epoch(model, train_loader, criterion, optimizer, device, weight_clip)
        val_loss, top1, top5 = evaluate(model, val_loader, criterion, device)
        scheduler.step(val_loss)

        stats = EpochStats(epoch, train_loss, val_loss, top1, top5, optimizer.param_groups[0]["lr"], time.time() - t0)
        history.append(stats)
        logger.info(
            "epoch %d  train %.4f  val %.4f  top-1 %.2f%%  top-5 %.2f%%  lr %.1e  %.1fs",
            stats.epoch, stats.train_loss, stats.val_loss, 100 * stats.top1, 100 * stats.top5, stats.lr, stats.seconds,
        )

        if val_loss < best_val_loss:
            best_val_loss = val_loss
            stale_epochs = 0
            torch.save(model.state_dict(), output_path)
        else:
            stale_epochs += 1
            if stale_epochs >= patience:
                logger.info("Early stopping at epoch %d (patience=%d)", epoch, patience)
                break

    logger.info("Best val loss: %.4f, model saved to %s", best_val_loss, output_path)
    return history


def main(argv: list[str] | None = None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S")
    device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
    logger.info("Device: %s", device)

    logger.info("Loading dataset from %s ...", args.data)
    dataset = ChessDataset(args.data, max_samples=args.max_samples)
    train_ds, val_ds = split_dataset(dataset, args.val_split)
    logger.info("Train: %d  Val: %d", len(train_ds), len(val_ds))

    pin = device.type == "cuda"
    train_loader = DataLoader(train_ds, batch_size=args.batch_size, shuffle=True, num_workers=args.workers, pin_memory=pin)
    val_loader = DataLoader(val_ds, batch_size=args.batch_size, shuffle=False, num_workers=args.workers, pin_memory=pin)

    model = ChessCNN().to(device)
    logger.info("Model parameters: %s", f"{sum(p.numel() for p in model.parameters()):,}")

    output_path = Path(args.output)
    fit(model, train_loader, val_loader, output_path, args.epochs, args.lr, args.patience, args.weight_clip, device)

    if args.export:
        model.load_state_dict(torch.load(output_path, map_location="cpu", weights_only=True))
        path = export_model(model.cpu(), args.export)
        logger.info("Quantized weights written to %s", path)


if __name__ == "__main__":
    main()
