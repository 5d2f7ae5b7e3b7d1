import dataclasses
import threading

import pytest
import torch

from nanogrid_vae.core.config import TrainingParams
from nanogrid_vae.model import create_model
from nanogrid_vae.training.checkpoint import CheckpointWriter, load_checkpoint
from nanogrid_vae.training.evaluator import LossEvaluator
from nanogrid_vae.training.monitoring import HeadlessDashboard, create_monitor
from nanogrid_vae.training.trainer import Trainer, TrainingState
from nanogrid_vae.training.updater import ParameterUpdater

ADAM = {"type": "adam"}


def _build_trainer(model, training_config, params=None, stop_signal=None):
    params = params or TrainingParams(monte_carlo_reps=1)
    writer = CheckpointWriter(training_config.output_dir)
    return Trainer(
        model=model,
        config=training_config,
        params=params,
        evaluator=LossEvaluator.from_config(training_config, writer),
        updater=ParameterUpdater(model, ADAM, learn_rate=params.learn_rate),
        checkpoint_writer=writer,
        monitor=create_monitor(
            training_config.output_dir,
            HeadlessDashboard(stop_signal),
            console_update_iterations=training_config.console_update_iterations,
        ),
        stop_signal=stop_signal,
        device="cpu",
    )


def _iterations(csv_path):
    return [int(line.split(", ")[2]) for line in csv_path.read_text().splitlines()]


def test_two_epochs_end_to_end(model, training_config, make_batch_source, output_dir):
    trainer = _build_trainer(model, training_config)
    training_source = make_batch_source(10)
    validation_source = make_batch_source(2, seed_offset=100)

    summary = trainer.train(training_source, validation_source)

    epoch_files = sorted(p.name for p in output_dir.glob("model-epoch-*.pt"))
    assert epoch_files == ["model-epoch-1.pt", "model-epoch-2.pt"]
    assert list(output_dir.glob("checkpoint-*.pt")) == []

    assert _iterations(output_dir / "training.csv") == [5, 10, 15, 20]
    epochs = [int(line.split(", ")[1]) for line in (output_dir / "training.csv").read_text().splitlines()]
    assert epochs == [1, 1, 2, 2]
    assert _iterations(output_dir / "validation.csv") == [3, 6, 9, 12, 15, 18]

    assert summary.epochs_completed == 2
    assert summary.iterations == 20
    assert not summary.stopped_early
    assert trainer.params.epoch == 2
    assert trainer.state is TrainingState.STOPPED
    assert training_source.shuffle_count == 2


def test_mid_epoch_checkpoints_use_epoch_iteration(model, training_config, make_batch_source, output_dir):
    config = dataclasses.replace(training_config, epoch_count=2, checkpoint_iteration_count=4)
    trainer = _build_trainer(model, config)

    trainer.train(make_batch_source(6), make_batch_source(1))

    names = sorted(p.name for p in output_dir.glob("checkpoint-*.pt"))
    # Global iterations 4, 8, 12 fall on epoch-local iterations 4, 2 and 6
    assert names == ["checkpoint-e1-i4.pt", "checkpoint-e2-i2.pt", "checkpoint-e2-i6.pt"]

    checkpoint = torch.load(output_dir / "checkpoint-e2-i2.pt", map_location="cpu")
    assert checkpoint["training_params"]["iteration"] == 8
    assert "optimizer_state" in checkpoint


def test_stop_signal_ends_after_in_flight_iteration(model, training_config, make_batch_source, output_dir):
    stop_signal = threading.Event()
    trainer = _build_trainer(model, training_config, stop_signal=stop_signal)
    training_source = make_batch_source(10)

    original_next = training_source.next

    def next_and_request_stop():
        batch = original_next()
        if training_source.position == 3:
            stop_signal.set()
        return batch

    training_source.next = next_and_request_stop

    summary = trainer.train(training_source, make_batch_source(2))

    assert summary.iterations == 3
    assert summary.stopped_early
    assert summary.epochs_completed == 0
    assert (output_dir / "model-epoch-1.pt").exists()
    assert not (output_dir / "model-epoch-2.pt").exists()


def test_stop_before_start_runs_nothing(model, training_config, make_batch_source, output_dir):
    stop_signal = threading.Event()
    stop_signal.set()
    trainer = _build_trainer(model, training_config, stop_signal=stop_signal)

    summary = trainer.train(make_batch_source(3), make_batch_source(1))

    assert summary.iterations == 0
    assert summary.stopped_early
    assert not output_dir.exists() or not list(output_dir.glob("*.pt"))


def test_csv_failure_does_not_abort_training(model, training_config, make_batch_source, output_dir):
    trainer = _build_trainer(model, training_config)
    trainer.monitor.training_csv_file.mkdir(parents=True)

    summary = trainer.train(make_batch_source(10), make_batch_source(2))

    assert summary.iterations == 20
    assert (output_dir / "model-epoch-2.pt").exists()


def test_checkpoint_failure_does_not_abort_training(model, training_config, make_batch_source, output_dir):
    trainer = _build_trainer(model, training_config)
    (output_dir / "model-epoch-1.pt").mkdir(parents=True)

    summary = trainer.train(make_batch_source(10), make_batch_source(2))

    assert summary.iterations == 20
    assert [p.name for p in summary.epoch_files] == ["model-epoch-2.pt"]


def test_failure_writes_debug_model_and_reraises(model, training_config, make_batch_source, output_dir):
    trainer = _build_trainer(model, training_config)
    training_source = make_batch_source(10)
    original_next = training_source.next

    def failing_next():
        if training_source.position == 2:
            raise RuntimeError("batch source broke")
        return original_next()

    training_source.next = failing_next

    with pytest.raises(RuntimeError, match="batch source broke"):
        trainer.train(training_source, make_batch_source(2))

    snapshot = torch.load(output_dir / "debug_model.pt", map_location="cpu")
    assert "RuntimeError" in snapshot["error"]
    assert snapshot["training_params"]["iteration"] == 3
    assert trainer.state is TrainingState.STOPPED


def test_resume_continues_epoch_and_iteration_counters(
    model, model_config, training_config, make_batch_source, output_dir
):
    config = dataclasses.replace(training_config, epoch_count=1)
    _build_trainer(model, config).train(make_batch_source(4), make_batch_source(1))

    resumed_model = create_model(model_config)
    params = TrainingParams(monte_carlo_reps=1)
    load_checkpoint(output_dir / "model-epoch-1.pt", resumed_model, params)
    assert params.epoch == 1 and params.iteration == 4

    config = dataclasses.replace(training_config, epoch_count=2)
    summary = _build_trainer(resumed_model, config, params=params).train(
        make_batch_source(4), make_batch_source(1)
    )

    assert summary.epochs_completed == 1
    assert summary.iterations == 8
    assert (output_dir / "model-epoch-2.pt").exists()
