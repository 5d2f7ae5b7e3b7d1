import pytest
import torch

from nanogrid_vae.core.config import ModelConfig
from nanogrid_vae.model import NETWORK_NAMES, architecture_registry, create_model
from nanogrid_vae.model.base import ErrorVectorVAE
from nanogrid_vae.model.networks import GaussianLatentSampler


def test_forward_shapes(model, make_batch):
    batch = make_batch()

    outputs = model(batch.error_vectors)

    C, T, B = batch.error_vectors.shape
    assert outputs["encoder_output"].shape == (2 * model.latent_dims, T, B)
    assert outputs["latent_sample"].shape == (model.latent_dims, T, B)
    assert outputs["reconstruction"].shape == (C, T, B)
    assert outputs["action_logits"].shape == (2, T, B)


def test_default_sizes_follow_feature_count():
    model = create_model(ModelConfig(num_features=2, num_actions=3))

    assert model.latent_dims == 2
    assert model.encoder.output.out_channels == 4
    assert model.encoder.hidden.out_channels == 8
    assert model.decoder.output.in_channels == 32


def test_sampler_has_no_parameters_and_is_deterministic_in_eval():
    sampler = GaussianLatentSampler(latent_dims=2)
    encoder_output = torch.randn(4, 3, 2)

    assert list(sampler.parameters()) == []

    sampler.eval()
    assert torch.equal(sampler(encoder_output), encoder_output[:2])

    sampler.train()
    torch.manual_seed(0)
    first = sampler(encoder_output)
    torch.manual_seed(0)
    assert torch.equal(sampler(encoder_output), first)
    assert not torch.equal(first, encoder_output[:2])


def test_unknown_sub_network_name(model):
    with pytest.raises(KeyError, match="Unknown sub-network"):
        model.get_network("critic")
    assert {name for name in NETWORK_NAMES} == {
        "encoder", "latent_sampler", "decoder", "action_recommender"
    }


def test_unknown_architecture():
    with pytest.raises(KeyError, match="Unknown type"):
        create_model(ModelConfig(num_features=2, num_actions=2, architecture="transformer"))
    assert "resnet" in architecture_registry


def test_sequence_length_is_preserved_for_odd_filters(make_batch):
    model = create_model(ModelConfig(num_features=3, num_actions=2, filter_size=5, num_res_blocks=2))

    outputs = model(make_batch().error_vectors)

    assert outputs["reconstruction"].shape == make_batch().error_vectors.shape


def test_architecture_registry_holds_model_builders():
    builder = architecture_registry.get("resnet")

    model = builder(ModelConfig(num_features=2, num_actions=2))

    assert isinstance(model, ErrorVectorVAE)
