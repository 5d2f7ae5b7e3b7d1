import pytest
import torch

from nanogrid_vae.core.config import TrainingParams
from nanogrid_vae.core.errors import ResourceWriteError
from nanogrid_vae.model import create_model
from nanogrid_vae.training.checkpoint import CheckpointWriter, load_checkpoint


def test_file_names(output_dir):
    writer = CheckpointWriter(output_dir)

    assert writer.checkpoint_path(3, 1000).name == "checkpoint-e3-i1000.pt"
    assert writer.epoch_path(7).name == "model-epoch-7.pt"
    assert writer.debug_model_path.name == "debug_model.pt"
    assert writer.eval_debug_path.name == "eval_debug.pt"


def test_save_and_load_restores_model_and_params(model, model_config, output_dir):
    writer = CheckpointWriter(output_dir)
    params = TrainingParams(kl_loss_factor=0.4, min_kl_scaling_loss=2.5, epoch=2, iteration=17)

    path = writer.save_model(writer.epoch_path(2), model, params)

    torch.manual_seed(99)
    fresh = create_model(model_config)
    restored_params = TrainingParams()
    checkpoint = load_checkpoint(path, fresh, restored_params)

    assert restored_params == params
    assert checkpoint["latent_dims"] == model.latent_dims
    assert checkpoint["model_config"]["num_features"] == model_config.num_features
    for key, value in model.state_dict().items():
        assert torch.equal(fresh.state_dict()[key], value)


def test_model_only_load_leaves_params_alone(model, model_config, output_dir):
    writer = CheckpointWriter(output_dir)
    path = writer.save_model(writer.epoch_path(1), model)

    params = TrainingParams(iteration=5)
    load_checkpoint(path, create_model(model_config), params)

    assert params.iteration == 5


def test_debug_snapshot_contents(model, output_dir, caplog):
    writer = CheckpointWriter(output_dir)
    params = TrainingParams(iteration=12)
    tensors = {"encoder_output": torch.ones(2, 3, 4), "decoder_output": None}

    path = writer.save_debug_snapshot(
        writer.debug_model_path, model, params, tensors=tensors,
        losses={"recon_loss": 1.5}, error=ValueError("bad"),
    )
    snapshot = torch.load(path, map_location="cpu")

    assert snapshot["error"] == "ValueError: bad"
    assert snapshot["training_params"]["iteration"] == 12
    assert set(snapshot["tensors"]) == {"encoder_output"}
    assert snapshot["losses"] == {"recon_loss": 1.5}

    load_checkpoint(path, model)
    assert "debug snapshot" in caplog.text


def test_write_failure_raises_resource_write_error(model, tmp_path):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("")
    writer = CheckpointWriter(blocker)

    with pytest.raises(ResourceWriteError) as excinfo:
        writer.save_model(writer.epoch_path(1), model)

    assert excinfo.value.path == writer.epoch_path(1)
