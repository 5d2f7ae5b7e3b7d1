"""
Training Command Line

    nanogrid-vae-train --config config/training.yaml [--synthetic]
                       [--resume PATH] [--epochs N] [--output-dir DIR]

Builds the model, data sources, evaluator, updater and monitor from the
YAML config, then runs the training loop. Ctrl+C requests a stop at the
next iteration boundary; a second Ctrl+C aborts immediately.
"""

import argparse
import dataclasses
import logging
import signal
import sys
import threading
from pathlib import Path

import torch

from nanogrid_vae.core.config import ExperimentConfig
from nanogrid_vae.core.errors import NanogridError
from nanogrid_vae.data import create_batch_sources
from nanogrid_vae.model import create_model
from nanogrid_vae.training import (
    CheckpointWriter,
    LossEvaluator,
    ParameterUpdater,
    Trainer,
    TrainingSummary,
    create_dashboard,
    create_monitor,
    create_schedule,
    load_checkpoint,
)

logger = logging.getLogger(__name__)

LOG_FILENAME = "training.log"


class FlushingStreamHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit"""

    def emit(self, record):
        try:
            super().emit(record)
            self.flush()
        except OSError:
            pass


def setup_logging(output_dir: str | Path, level: int = logging.INFO) -> None:
    """Log to stdout and to training.log in the output directory."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(output_dir / LOG_FILENAME)
    file_handler.setLevel(level)

    stream_handler = FlushingStreamHandler(sys.stdout)
    stream_handler.setLevel(level)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[file_handler, stream_handler],
        force=True,
    )


def resolve_device(device: str) -> torch.device:
    """Map "auto" to CUDA when available, otherwise CPU."""
    if device == "auto":
        device = "cuda" if torch.cuda.is_available() else "cpu"
    resolved = torch.device(device)
    if resolved.type == "cuda" and not torch.cuda.is_available():
        raise ValueError(f"Device '{device}' requested but CUDA is not available")
    logger.info(f"Using device: {resolved}")
    return resolved


def install_stop_handler(stop_signal: threading.Event) -> None:
    """First SIGINT sets stop_signal; a second one raises KeyboardInterrupt."""

    def handle_interrupt(signum, frame):
        if stop_signal.is_set():
            raise KeyboardInterrupt
        logger.warning(
            "Interrupt received, stopping at the next iteration boundary "
            "(press Ctrl+C again to abort)"
        )
        stop_signal.set()

    signal.signal(signal.SIGINT, handle_interrupt)


def build_trainer(
    config: ExperimentConfig,
    device: torch.device,
    stop_signal: threading.Event | None = None,
    resume: str | Path | None = None,
) -> Trainer:
    """
    Assemble a Trainer from an experiment config.

    Args:
        config: Validated experiment config
        device: Device for the model and batches
        stop_signal: Event polled by the loop at iteration boundaries
        resume: Checkpoint or debug snapshot to continue from

    Returns:
        Ready-to-run Trainer
    """
    if config.training.seed is not None:
        torch.manual_seed(config.training.seed)

    params = config.params
    model = create_model(config.model).to(device)

    checkpoint = None
    if resume is not None:
        checkpoint = load_checkpoint(resume, model, params, map_location=device)
        logger.info(f"Resuming after epoch {params.epoch}, iteration {params.iteration}")

    checkpoint_writer = CheckpointWriter(config.output_dir)

    schedule = create_schedule(config.scheduler, total_epochs=config.training.epoch_count)
    updater = ParameterUpdater(
        model,
        config.optimizer,
        learn_rate=params.learn_rate,
        schedule=schedule,
        check_finite_gradients=config.training.check_finite_gradients,
        gradient_clip_norm=config.training.gradient_clip_norm,
    )
    if checkpoint is not None and checkpoint.get("optimizer_state"):
        updater.load_state_dict(checkpoint["optimizer_state"])

    evaluator = LossEvaluator.from_config(config.training, checkpoint_writer)

    run_config = {
        "model": dataclasses.asdict(config.model),
        "training": dataclasses.asdict(config.training),
        "params": params.state_dict(),
        "optimizer": config.optimizer,
        "scheduler": config.scheduler,
    }
    dashboard = create_dashboard(config.logging, run_config=run_config, stop_signal=stop_signal)
    monitor = create_monitor(
        config.output_dir,
        dashboard,
        console_update_iterations=config.training.console_update_iterations,
    )

    return Trainer(
        model=model,
        config=config.training,
        params=params,
        evaluator=evaluator,
        updater=updater,
        checkpoint_writer=checkpoint_writer,
        monitor=monitor,
        stop_signal=stop_signal,
        device=device,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nanogrid-vae-train",
        description="Train the error-vector VAE with an auxiliary action recommender.",
    )
    parser.add_argument("--config", type=Path, required=True,
                        help="YAML experiment configuration")
    parser.add_argument("--synthetic", action="store_true",
                        help="Train on generated sequences instead of data.data_dir")
    parser.add_argument("--resume", type=Path, default=None,
                        help="Checkpoint or debug snapshot to continue from")
    parser.add_argument("--epochs", type=int, default=None,
                        help="Override training.epoch_count")
    parser.add_argument("--output-dir", type=Path, default=None,
                        help="Override training.output_dir")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable debug logging")
    return parser


def apply_overrides(config: ExperimentConfig, args: argparse.Namespace) -> ExperimentConfig:
    """Apply command-line overrides on top of the file/environment config."""
    training_overrides = {}
    if args.epochs is not None:
        training_overrides["epoch_count"] = args.epochs
    if args.output_dir is not None:
        training_overrides["output_dir"] = str(args.output_dir)
    if training_overrides:
        config.training = dataclasses.replace(config.training, **training_overrides)
    return config


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    config = apply_overrides(ExperimentConfig.from_file(args.config), args)
    setup_logging(config.output_dir, logging.DEBUG if args.verbose else logging.INFO)
    logger.info(f"Configuration: {args.config}")

    device = resolve_device(config.training.device)
    training_source, validation_source = create_batch_sources(
        config.data, config.training, config.model, synthetic=args.synthetic
    )

    stop_signal = threading.Event()
    install_stop_handler(stop_signal)

    trainer = build_trainer(config, device, stop_signal=stop_signal, resume=args.resume)
    try:
        summary: TrainingSummary = trainer.train(training_source, validation_source)
    except NanogridError as e:
        logger.error(f"Training aborted: {e}")
        return 1
    finally:
        trainer.monitor.dashboard.close()

    logger.info(
        f"Finished: {summary.epochs_completed} epochs completed, {summary.iterations} iterations"
        + (" (stopped early)" if summary.stopped_early else "")
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
