import threading
from datetime import datetime

import pytest
import torch

from nanogrid_vae.core.config import TrainingParams
from nanogrid_vae.core.errors import ResourceWriteError
from nanogrid_vae.training.evaluator import LossSet
from nanogrid_vae.training.monitoring import (
    HeadlessDashboard,
    append_csv_record,
    create_dashboard,
    create_monitor,
    format_csv_record,
    record_validation,
    update_monitor,
)


def _losses(total=3.0, recon=1.0, kl=0.5, action=1.5) -> LossSet:
    return LossSet(
        recon_loss=torch.tensor(recon),
        kl_loss=torch.tensor(kl),
        action_loss=torch.tensor(action),
        total_loss=torch.tensor(total),
    )


def _read_rows(path):
    return [line.split(", ") for line in path.read_text().splitlines()]


def test_format_csv_record():
    record = format_csv_record(2, 25, _losses(), timestamp=datetime(2024, 3, 5, 14, 7, 9))

    assert record == "05-Mar-2024 14:07:09, 2, 25, 3.000000, 1.000000, 0.500000\n"


def test_console_records_are_throttled(tmp_path):
    monitor = create_monitor(tmp_path, HeadlessDashboard(), console_update_iterations=3)
    params = TrainingParams(epoch=1)

    for iteration in range(1, 8):
        params.iteration = iteration
        monitor = update_monitor(monitor, _losses(), params)

    rows = _read_rows(tmp_path / "training.csv")
    assert [int(row[2]) for row in rows] == [3, 6]
    assert monitor.iteration == 7
    assert monitor.console_update_counter == 2


def test_every_iteration_reaches_the_dashboard(tmp_path):
    dashboard = HeadlessDashboard()
    monitor = create_monitor(tmp_path, dashboard, console_update_iterations=100)
    params = TrainingParams(epoch=3, iteration=41)

    monitor = update_monitor(monitor, _losses(total=7.0), params)

    assert dashboard.last_iteration == 41
    assert dashboard.latest_metrics["total_loss"] == pytest.approx(7.0)
    assert dashboard.latest_metrics["kl_loss_factor"] == 1.0
    assert dashboard.info == {"epoch": 3, "iteration": 41, "total_loss": pytest.approx(7.0)}
    assert monitor.losses is not None
    assert not (tmp_path / "training.csv").exists()


def test_validation_records_validation_losses(tmp_path):
    dashboard = HeadlessDashboard()
    monitor = create_monitor(tmp_path, dashboard)
    monitor = update_monitor(monitor, _losses(total=9.0), TrainingParams(epoch=1, iteration=4))

    monitor = record_validation(monitor, _losses(total=2.0, recon=1.25, kl=0.25))

    (row,) = _read_rows(tmp_path / "validation.csv")
    assert row[1:] == ["1", "4", "2.000000", "1.250000", "0.250000"]
    assert dashboard.latest_metrics["val_total_loss"] == pytest.approx(2.0)
    assert monitor.validation_losses.total_loss.item() == pytest.approx(2.0)


def test_csv_write_failure_is_logged_not_raised(tmp_path, caplog):
    monitor = create_monitor(tmp_path, HeadlessDashboard(), console_update_iterations=1)
    monitor.training_csv_file.mkdir(parents=True)

    monitor = update_monitor(monitor, _losses(), TrainingParams(epoch=1, iteration=1))

    assert monitor.iteration == 1
    assert "Could not record training losses" in caplog.text


def test_append_csv_record_wraps_os_errors(tmp_path):
    target = tmp_path / "blocked"
    target.mkdir()

    with pytest.raises(ResourceWriteError):
        append_csv_record(target, "row\n")


def test_headless_dashboard_reports_stop_signal():
    stop_signal = threading.Event()
    dashboard = HeadlessDashboard(stop_signal)

    assert not dashboard.stop_requested()
    stop_signal.set()
    assert dashboard.stop_requested()


def test_create_dashboard_defaults_to_headless():
    assert isinstance(create_dashboard({}), HeadlessDashboard)
    assert isinstance(create_dashboard({"wandb": {"enabled": False}}), HeadlessDashboard)
