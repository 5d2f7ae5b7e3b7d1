"""
KL Divergence Loss

Closed-form KL(N(mu, var) || N(0, I)) for a diagonal Gaussian posterior
whose parameters are stacked on the channel axis of the encoder output.
"""

import logging

import torch
import torch.nn as nn

from nanogrid_vae.core.interfaces import DIM_C

logger = logging.getLogger(__name__)


def split_encoder_output(
    encoder_output: torch.Tensor,
    latent_dims: int,
) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Split (2 * latent_dims, T, B) encoder output into means and log-variances.

    Raises:
        ValueError: If the channel count is not 2 * latent_dims
    """
    channels = encoder_output.shape[DIM_C]
    if channels != 2 * latent_dims:
        raise ValueError(
            f"Encoder output has {channels} channels, expected 2 * latent_dims = {2 * latent_dims}"
        )
    return encoder_output[:latent_dims], encoder_output[latent_dims:]


class GaussianKLLoss(nn.Module):
    """
    KL divergence between the encoder posterior and a standard normal prior.

    Per batch element and timestep:
        0.5 * (sum(var) - latent_dims + sum(mu^2) - sum(log(var)))

    summed over the latent axis, then averaged over time and over the batch.
    log(var) is taken directly from the log-variance channels, so the term
    stays finite even when var underflows.
    """

    def __init__(self, latent_dims: int):
        super().__init__()
        self.latent_dims = latent_dims

    def per_step(self, encoder_output: torch.Tensor) -> torch.Tensor:
        """
        Returns:
            KL per (timestep, batch element), shape (T, B)
        """
        means, logvars = split_encoder_output(encoder_output, self.latent_dims)
        variances = torch.exp(logvars)
        return 0.5 * (
            variances.sum(dim=DIM_C)
            - self.latent_dims
            + means.pow(2).sum(dim=DIM_C)
            - logvars.sum(dim=DIM_C)
        )

    def forward(self, encoder_output: torch.Tensor) -> torch.Tensor:
        """Scalar KL: mean over time (T), then mean over batch (B)."""
        # (T, B) -> (B,) -> scalar
        kl = self.per_step(encoder_output)
        return kl.mean(dim=0).mean(dim=0)
