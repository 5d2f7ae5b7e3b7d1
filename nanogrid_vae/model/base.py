"""
Error-Vector VAE Container

Owns the four sub-networks the training core works with. The container
knows nothing about their architecture; it only fixes the names the
evaluator, updater and checkpoint writer use to address them.
"""

from typing import Any

import torch
import torch.nn as nn

# Sub-networks that receive gradients. The sampler only reparameterizes the
# encoder output and carries no trained parameters.
TRAINED_NETWORKS = ("action_recommender", "decoder", "encoder")

NETWORK_NAMES = ("encoder", "latent_sampler", "decoder", "action_recommender")


class ErrorVectorVAE(nn.Module):
    """
    VAE over error-vector sequences with an auxiliary action head.

    Tensors flowing between sub-networks use the (channels, time, batch)
    layout:
        encoder:            (C, T, B) -> (2 * latent_dims, T, B)
        latent_sampler:     (2 * latent_dims, T, B) -> (latent_dims, T, B)
        decoder:            (latent_dims, T, B) -> (C, T, B)
        action_recommender: (latent_dims, T, B) -> (num_actions, T, B) logits
    """

    def __init__(
        self,
        encoder: nn.Module,
        latent_sampler: nn.Module,
        decoder: nn.Module,
        action_recommender: nn.Module,
        latent_dims: int,
        config: dict[str, Any] | None = None,
    ):
        """
        Args:
            encoder: Produces means and log-variances stacked on the channel axis
            latent_sampler: Draws a latent sample from the encoder output
            decoder: Reconstructs error vectors from a latent sample
            action_recommender: Predicts action logits from a latent sample
            latent_dims: Number of latent variables
            config: Architecture config kept for checkpoints and snapshots
        """
        super().__init__()
        if latent_dims < 1:
            raise ValueError(f"latent_dims must be >= 1, got {latent_dims}")

        self.encoder = encoder
        self.latent_sampler = latent_sampler
        self.decoder = decoder
        self.action_recommender = action_recommender
        self.latent_dims = latent_dims
        self.config = dict(config or {})

    def get_network(self, name: str) -> nn.Module:
        if name not in NETWORK_NAMES:
            raise KeyError(f"Unknown sub-network: '{name}'. Available: {list(NETWORK_NAMES)}")
        return getattr(self, name)

    def named_trainable_parameters(self, name: str) -> dict[str, nn.Parameter]:
        """Named parameters of one trained sub-network, in registration order."""
        return dict(self.get_network(name).named_parameters())

    def forward(self, x: torch.Tensor) -> dict[str, torch.Tensor]:
        """
        Single encode -> sample -> decode/predict pass.

        Returns:
            Dict with encoder_output, latent_sample, reconstruction, action_logits
        """
        encoder_output = self.encoder(x)
        latent_sample = self.latent_sampler(encoder_output)
        return {
            "encoder_output": encoder_output,
            "latent_sample": latent_sample,
            "reconstruction": self.decoder(latent_sample),
            "action_logits": self.action_recommender(latent_sample),
        }

    def extra_repr(self) -> str:
        return f"latent_dims={self.latent_dims}"
