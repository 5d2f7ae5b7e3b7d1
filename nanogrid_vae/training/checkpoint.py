"""
Checkpoint Persistence

Writes model checkpoints, end-of-epoch saves and fatal-failure debug
snapshots with torch.save. Every write failure surfaces as
ResourceWriteError so callers can choose to log and continue.

File names:
    checkpoint-e{epoch}-i{epoch_iteration}.pt   mid-epoch checkpoint
    model-epoch-{epoch}.pt                      end-of-epoch save
    debug_model.pt                              training-loop failure
    eval_debug.pt                               evaluator failure
"""

import logging
from pathlib import Path
from typing import Any

import torch
import torch.nn as nn

from nanogrid_vae.core.config import TrainingParams
from nanogrid_vae.core.errors import ResourceWriteError
from nanogrid_vae.model.base import ErrorVectorVAE

logger = logging.getLogger(__name__)

DEBUG_MODEL_FILENAME = "debug_model.pt"
EVAL_DEBUG_FILENAME = "eval_debug.pt"


def model_payload(model: ErrorVectorVAE) -> dict[str, Any]:
    """Core model state saved in every checkpoint."""
    return {
        "model_state_dict": model.state_dict(),
        "latent_dims": model.latent_dims,
        "model_config": dict(model.config),
    }


class CheckpointWriter:
    """
    Names and writes checkpoint files inside one output directory.
    """

    def __init__(self, output_dir: str | Path):
        self.output_dir = Path(output_dir)

    def checkpoint_path(self, epoch: int, epoch_iteration: int) -> Path:
        return self.output_dir / f"checkpoint-e{epoch}-i{epoch_iteration}.pt"

    def epoch_path(self, epoch: int) -> Path:
        return self.output_dir / f"model-epoch-{epoch}.pt"

    @property
    def debug_model_path(self) -> Path:
        return self.output_dir / DEBUG_MODEL_FILENAME

    @property
    def eval_debug_path(self) -> Path:
        return self.output_dir / EVAL_DEBUG_FILENAME

    def save(self, path: str | Path, payload: dict[str, Any]) -> Path:
        """
        Serialize payload to path, creating parent directories.

        Raises:
            ResourceWriteError: If the directory or file cannot be written
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            torch.save(payload, path)
        except (OSError, RuntimeError) as e:
            raise ResourceWriteError(path, e) from e
        return path

    def save_model(
        self,
        path: str | Path,
        model: ErrorVectorVAE,
        params: TrainingParams | None = None,
        **extra: Any,
    ) -> Path:
        """
        Save model weights, plus training params and extra state when given.

        Args:
            path: Destination file
            model: Model to snapshot
            params: Training params (enables resuming adaptive KL state)
            **extra: Additional entries (e.g. optimizer_state)
        """
        payload = model_payload(model)
        if params is not None:
            payload["training_params"] = params.state_dict()
        payload.update(extra)
        path = self.save(path, payload)
        logger.info(f"Saved checkpoint to {path}")
        return path

    def save_debug_snapshot(
        self,
        path: str | Path,
        model: ErrorVectorVAE,
        params: TrainingParams | None,
        tensors: dict[str, torch.Tensor | None] | None = None,
        losses: dict[str, float] | None = None,
        error: BaseException | None = None,
    ) -> Path:
        """
        Save everything needed for a postmortem of a fatal failure.

        Args:
            path: Destination file
            model: Model at the time of failure
            params: Training params at the time of failure
            tensors: Last intermediate tensors (encoder output, latent sample, ...)
            losses: Loss values computed before the failure
            error: The exception being propagated
        """
        payload = model_payload(model)
        payload["training_params"] = params.state_dict() if params is not None else None
        payload["tensors"] = {
            name: t.detach().cpu() for name, t in (tensors or {}).items() if t is not None
        }
        payload["losses"] = dict(losses or {})
        payload["error"] = None if error is None else f"{type(error).__name__}: {error}"
        path = self.save(path, payload)
        logger.warning(f"Saved debug snapshot to {path}")
        return path


def load_checkpoint(
    path: str | Path,
    model: nn.Module,
    params: TrainingParams | None = None,
    map_location: str | torch.device = "cpu",
) -> dict[str, Any]:
    """
    Load a checkpoint or debug snapshot into model (and params when present).

    Args:
        path: Checkpoint file
        model: Model whose weights are replaced
        params: Training params to restore, if the checkpoint has them
        map_location: Device to map tensors onto

    Returns:
        The full checkpoint dict (e.g. for optimizer_state)
    """
    path = Path(path)
    checkpoint = torch.load(path, map_location=map_location)

    model.load_state_dict(checkpoint["model_state_dict"])

    restored_params = False
    if params is not None and checkpoint.get("training_params"):
        params.load_state_dict(checkpoint["training_params"])
        restored_params = True

    if checkpoint.get("error"):
        logger.warning(f"Loaded debug snapshot from {path} (failed with {checkpoint['error']})")
    else:
        mode = "model + params" if restored_params else "model-only"
        logger.info(f"Loaded {mode} checkpoint from {path}")
    return checkpoint
