"""
Training Loop

Drives epochs and iterations over the training batch source:

    IDLE -> RUNNING -> (VALIDATING | CHECKPOINTING)* -> STOPPED

Each iteration evaluates one batch, applies the parameter update and
records the losses. Independent countdowns trigger a validation pass on the
next validation batch and a mid-epoch checkpoint. The model is saved at the
end of every epoch.

Checkpoint and CSV write failures are logged and training continues. Any
other error escaping the loop writes a debug snapshot and propagates.

Stop requests (stop_signal or the dashboard) are polled only at epoch and
iteration boundaries, so an in-flight evaluate + update always completes.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import torch

from nanogrid_vae.core.config import TrainingConfig, TrainingParams
from nanogrid_vae.core.errors import ResourceWriteError
from nanogrid_vae.core.interfaces import BatchSource
from nanogrid_vae.model.base import ErrorVectorVAE
from .checkpoint import CheckpointWriter
from .evaluator import LossEvaluator
from .monitoring import MonitorState, record_validation, update_monitor
from .updater import ParameterUpdater

logger = logging.getLogger(__name__)


class TrainingState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    VALIDATING = "validating"
    CHECKPOINTING = "checkpointing"
    STOPPED = "stopped"


@dataclass
class TrainingSummary:
    """What a finished (or stopped) run produced."""

    epochs_completed: int
    iterations: int
    stopped_early: bool
    final_losses: dict[str, float] | None = None
    epoch_files: list[Path] = field(default_factory=list)


class Trainer:
    """
    Single-process, synchronous training loop.

    Args:
        model: Model to train (updated in place)
        config: Loop settings (epochs, throttling intervals)
        params: Training params threaded through every call
        evaluator: Loss and gradient computation
        updater: Optimizer steps
        checkpoint_writer: Checkpoint and snapshot persistence
        monitor: Initial monitor state
        stop_signal: Optional threading.Event for early termination
        device: Device batches are moved to (model device if None)
    """

    def __init__(
        self,
        model: ErrorVectorVAE,
        config: TrainingConfig,
        params: TrainingParams,
        evaluator: LossEvaluator,
        updater: ParameterUpdater,
        checkpoint_writer: CheckpointWriter,
        monitor: MonitorState,
        stop_signal: threading.Event | None = None,
        device: torch.device | str | None = None,
    ):
        self.model = model
        self.config = config
        self.params = params
        self.evaluator = evaluator
        self.updater = updater
        self.checkpoint_writer = checkpoint_writer
        self.monitor = monitor
        self.stop_signal = stop_signal

        if device is None:
            first_param = next(model.parameters(), None)
            device = first_param.device if first_param is not None else "cpu"
        self.device = torch.device(device)

        self.state = TrainingState.IDLE

        # Countdowns fire when they reach zero and are reset to their interval
        self.validation_counter = config.validation_iteration_count
        self.checkpoint_counter = config.checkpoint_iteration_count

    def stop_requested(self) -> bool:
        if self.stop_signal is not None and self.stop_signal.is_set():
            return True
        return self.monitor.dashboard.stop_requested()

    def train(self, training_source: BatchSource, validation_source: BatchSource) -> TrainingSummary:
        """
        Run until epoch_count epochs are done or a stop is requested.

        Args:
            training_source: Batches evaluated and applied every iteration
            validation_source: Batches evaluated (no update) every
                validation_iteration_count iterations

        Returns:
            TrainingSummary of the run

        Raises:
            Whatever escaped the loop, after debug_model.pt has been written
        """
        self.state = TrainingState.RUNNING
        self.model.train()
        self._log_training_settings()

        try:
            return self._run(training_source, validation_source)
        except Exception as e:
            logger.error(
                f"Training failed at epoch {self.params.epoch}, "
                f"iteration {self.params.iteration}: {type(e).__name__}: {e}"
            )
            self._write_debug_model(e)
            raise
        finally:
            self.state = TrainingState.STOPPED

    def _run(self, training_source: BatchSource, validation_source: BatchSource) -> TrainingSummary:
        params = self.params
        epochs_completed = 0
        stopped_early = False
        epoch_files: list[Path] = []

        logger.info(f"Starting training for {self.config.epoch_count} epochs")

        while params.epoch < self.config.epoch_count and not self.stop_requested():
            params.epoch += 1
            epoch_iteration = 0

            training_source.shuffle()
            validation_source.shuffle()

            epoch_start = time.time()

            while training_source.has_next() and not self.stop_requested():
                params.iteration += 1
                epoch_iteration += 1

                batch = training_source.next().to(self.device)
                losses, gradients, params = self.evaluator.evaluate(self.model, batch, params)
                self.model, params = self.updater.update(self.model, losses, gradients, params)
                self.params = params
                self.monitor = update_monitor(self.monitor, losses, params)

                self.validation_counter -= 1
                if self.validation_counter <= 0:
                    self.validation_counter = self.config.validation_iteration_count
                    self._validate(validation_source)

                self.checkpoint_counter -= 1
                if self.checkpoint_counter <= 0:
                    self.checkpoint_counter = self.config.checkpoint_iteration_count
                    self._save_checkpoint(
                        self.checkpoint_writer.checkpoint_path(params.epoch, epoch_iteration)
                    )

            epoch_time = time.time() - epoch_start

            # An epoch is complete only if its data ran out
            if training_source.has_next():
                stopped_early = True
                logger.info(
                    f"Stop requested during epoch {params.epoch} after {epoch_iteration} iterations"
                )
            else:
                epochs_completed += 1

            saved = self._save_checkpoint(self.checkpoint_writer.epoch_path(params.epoch))
            if saved is not None:
                epoch_files.append(saved)

            if epoch_iteration > 0:
                logger.info(
                    f"Epoch {params.epoch} timing: {epoch_time / epoch_iteration:f} seconds "
                    f"per iteration, {epoch_iteration} iterations"
                )
            else:
                logger.warning(f"Epoch {params.epoch} had no training batches")

        if params.epoch < self.config.epoch_count:
            stopped_early = True
        if stopped_early:
            logger.info("Stop signal received, ending training")

        final_losses = self.monitor.losses.to_dict() if self.monitor.losses is not None else None
        logger.info(
            f"Training complete: {params.epoch} epochs, {params.iteration} iterations"
            + (f", final total loss {final_losses['total_loss']:.4f}" if final_losses else "")
        )

        return TrainingSummary(
            epochs_completed=epochs_completed,
            iterations=params.iteration,
            stopped_early=stopped_early,
            final_losses=final_losses,
            epoch_files=epoch_files,
        )

    def _validate(self, validation_source: BatchSource) -> None:
        """Evaluate the next validation batch and record its losses."""
        if not validation_source.has_next():
            # Wrap around to a fresh pass over the validation data
            validation_source.shuffle()
            if not validation_source.has_next():
                logger.warning("Validation source has no batches, skipping validation")
                return

        self.state = TrainingState.VALIDATING
        batch = validation_source.next().to(self.device)
        losses = self.evaluator.validate(self.model, batch, self.params)
        self.monitor = record_validation(self.monitor, losses)
        self.state = TrainingState.RUNNING

    def _save_checkpoint(self, path: Path) -> Path | None:
        """Save model, params and optimizer state. Write failures are logged."""
        self.state = TrainingState.CHECKPOINTING
        try:
            return self.checkpoint_writer.save_model(
                path,
                self.model,
                self.params,
                optimizer_state=self.updater.state_dict(),
            )
        except ResourceWriteError as e:
            logger.error(f"Failed to save model: {e}")
            return None
        finally:
            self.state = TrainingState.RUNNING

    def _write_debug_model(self, error: BaseException) -> None:
        try:
            self.checkpoint_writer.save_debug_snapshot(
                self.checkpoint_writer.debug_model_path,
                self.model,
                self.params,
                error=error,
            )
        except ResourceWriteError as write_error:
            logger.error(f"Could not write debug model: {write_error}")

    def _log_training_settings(self):
        """Log a summary of the training configuration."""
        params = self.params
        config = self.config
        logger.info("=" * 60)
        logger.info("TRAINING SETTINGS")
        logger.info(f"  Device: {self.device}")
        logger.info(f"  Epochs: {config.epoch_count} (starting after epoch {params.epoch})")
        logger.info(
            f"  Optimizer: {self.updater.optimizer_type}, base lr={params.learn_rate}, "
            f"schedule={self.updater.schedule.describe()}"
        )
        if config.gradient_clip_norm is not None:
            logger.info(f"  Gradient clipping: enabled (max_norm={config.gradient_clip_norm})")
        else:
            logger.info("  Gradient clipping: disabled")
        logger.info(
            f"  Loss factors: recon={params.recon_loss_factor}, action={params.action_loss_factor}, "
            f"kl={params.kl_loss_factor} (min scaling loss {params.min_kl_scaling_loss:g})"
        )
        logger.info(f"  Monte Carlo reps: {params.monte_carlo_reps}")
        logger.info(
            f"  Intervals: console={self.monitor.console_update_iterations}, "
            f"validation={config.validation_iteration_count}, "
            f"checkpoint={config.checkpoint_iteration_count} iterations"
        )
        logger.info(
            f"  Strict checks: {self.evaluator.strict}, loss ceiling: {self.evaluator.loss_ceiling:g}"
        )
        logger.info(f"  Output: {self.checkpoint_writer.output_dir}")
        logger.info("=" * 60)
