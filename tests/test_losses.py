import pytest
import torch
import torch.nn.functional as F

from nanogrid_vae.training.losses import (
    ActionLoss,
    GaussianKLLoss,
    ReconstructionLoss,
    split_encoder_output,
)


def test_kl_is_zero_for_standard_normal_posterior():
    encoder_output = torch.zeros(4, 6, 3)  # latent_dims=2: mu=0, logvar=0

    kl = GaussianKLLoss(latent_dims=2)(encoder_output)

    assert kl.item() == 0.0


def test_kl_is_non_negative():
    torch.manual_seed(0)
    encoder_output = torch.randn(6, 10, 8) * 3

    per_step = GaussianKLLoss(latent_dims=3).per_step(encoder_output)

    assert per_step.shape == (10, 8)
    assert (per_step >= -1e-5).all()


def test_kl_matches_closed_form_for_single_dimension():
    mu, logvar = 1.5, 0.7
    encoder_output = torch.tensor([mu, logvar]).reshape(2, 1, 1)

    kl = GaussianKLLoss(latent_dims=1)(encoder_output)

    expected = 0.5 * (torch.exp(torch.tensor(logvar)) - 1 + mu**2 - logvar)
    assert kl.item() == pytest.approx(expected.item(), rel=1e-5)


def test_split_encoder_output_rejects_wrong_channel_count():
    with pytest.raises(ValueError, match="expected 2 \\* latent_dims"):
        split_encoder_output(torch.zeros(5, 2, 2), latent_dims=2)


def test_reconstruction_loss_is_mse():
    x = torch.randn(3, 4, 2)
    target = torch.randn(3, 4, 2)

    assert torch.equal(ReconstructionLoss()(x, target), F.mse_loss(x, target))


def test_reconstruction_loss_rejects_shape_mismatch():
    with pytest.raises(ValueError, match="does not match"):
        ReconstructionLoss()(torch.zeros(3, 4, 2), torch.zeros(3, 4, 1))


def test_action_loss_accepts_indices_and_one_hot_probabilities():
    torch.manual_seed(0)
    logits = torch.randn(3, 5, 2)  # (A, T, B)
    labels = torch.randint(0, 3, (5, 2))
    one_hot = F.one_hot(labels, num_classes=3).permute(2, 0, 1).float()

    from_indices = ActionLoss()(logits, labels)
    from_probabilities = ActionLoss()(logits, one_hot)

    assert from_indices.item() == pytest.approx(from_probabilities.item(), rel=1e-5)


def test_action_loss_rejects_float_index_labels():
    with pytest.raises(ValueError, match="integer"):
        ActionLoss()(torch.randn(3, 5, 2), torch.zeros(5, 2))


def test_action_loss_rejects_incompatible_labels():
    with pytest.raises(ValueError, match="incompatible"):
        ActionLoss()(torch.randn(3, 5, 2), torch.zeros(4, 5, 2))
