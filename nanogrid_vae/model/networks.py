"""
Reference Residual Sub-Networks

Default architecture for the four ErrorVectorVAE sub-networks:
- ResNetEncoder: input conv -> residual stack -> hidden 1x1 -> (mu, logvar)
- GaussianLatentSampler: reparameterized N(mu, exp(logvar)) draw
- ResNetDecoder: latent -> residual stack -> error-vector channels
- ActionRecommender: latent -> hidden 1x1 -> action logits

All sub-networks take and return (channels, time, batch) tensors.
"""

import logging
from dataclasses import asdict
from typing import Callable

import torch
import torch.nn as nn

from nanogrid_vae.core.config import ModelConfig
from nanogrid_vae.core.numerical import NumericalConstants
from nanogrid_vae.core.registry import ComponentRegistry
from .base import ErrorVectorVAE
from .layers import ConvBlock1d, bct_to_ctb, ctb_to_bct, make_activation, make_residual_stack

logger = logging.getLogger(__name__)

# Registry of model builders: name -> callable(model_config) -> ErrorVectorVAE
architecture_registry = ComponentRegistry[Callable[[ModelConfig], ErrorVectorVAE]]("architecture")


class ResNetEncoder(nn.Module):
    """
    Residual encoder producing 2 * latent_dims output channels.

    The first latent_dims channels are means, the rest log-variances.
    """

    def __init__(
        self,
        num_features: int,
        num_filters: int,
        filter_size: int,
        num_res_blocks: int,
        hidden_size: int,
        latent_dims: int,
        activation_type: str,
    ):
        super().__init__()
        self.latent_dims = latent_dims
        self.input_block = ConvBlock1d(num_features, num_filters, filter_size, activation_type)
        self.res_blocks = make_residual_stack(num_res_blocks, num_filters, filter_size, activation_type)
        self.hidden = nn.Conv1d(num_filters, hidden_size, kernel_size=1)
        self.activation = make_activation(activation_type)
        self.output = nn.Conv1d(hidden_size, 2 * latent_dims, kernel_size=1)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        h = self.res_blocks(self.input_block(ctb_to_bct(x)))
        h = self.activation(self.hidden(h))
        return bct_to_ctb(self.output(h))


class GaussianLatentSampler(nn.Module):
    """
    Reparameterized sampler for a diagonal Gaussian posterior.

    During training: z = mu + std * epsilon, where epsilon ~ N(0, 1)
    During eval: z = mu (deterministic), used for validation passes
    """

    def __init__(
        self,
        latent_dims: int,
        logvar_clamp_min: float = NumericalConstants.LOGVAR_CLAMP_MIN,
        logvar_clamp_max: float = NumericalConstants.LOGVAR_CLAMP_MAX,
    ):
        super().__init__()
        self.latent_dims = latent_dims
        self.logvar_clamp_min = logvar_clamp_min
        self.logvar_clamp_max = logvar_clamp_max

    def forward(self, encoder_output: torch.Tensor) -> torch.Tensor:
        mu = encoder_output[: self.latent_dims]
        if not self.training:
            return mu

        logvar = encoder_output[self.latent_dims : 2 * self.latent_dims]
        std = torch.exp(0.5 * logvar.clamp(min=self.logvar_clamp_min, max=self.logvar_clamp_max))
        eps = torch.randn_like(std)
        return mu + eps * std

    def extra_repr(self) -> str:
        return (
            f"latent_dims={self.latent_dims}, "
            f"logvar_clamp=[{self.logvar_clamp_min}, {self.logvar_clamp_max}]"
        )


class ResNetDecoder(nn.Module):
    """Residual decoder from latent_dims channels back to num_features channels."""

    def __init__(
        self,
        latent_dims: int,
        num_filters: int,
        filter_size: int,
        num_res_blocks: int,
        num_features: int,
        activation_type: str,
    ):
        super().__init__()
        self.input_block = ConvBlock1d(latent_dims, num_filters, filter_size, activation_type)
        self.res_blocks = make_residual_stack(num_res_blocks, num_filters, filter_size, activation_type)
        self.output = nn.Conv1d(num_filters, num_features, kernel_size=1)

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        h = self.res_blocks(self.input_block(ctb_to_bct(z)))
        return bct_to_ctb(self.output(h))


class ActionRecommender(nn.Module):
    """Per-timestep action classifier. Outputs unnormalized logits."""

    def __init__(
        self,
        latent_dims: int,
        hidden_size: int,
        num_actions: int,
        activation_type: str,
    ):
        super().__init__()
        self.hidden = nn.Conv1d(latent_dims, hidden_size, kernel_size=1)
        self.activation = make_activation(activation_type)
        self.output = nn.Conv1d(hidden_size, num_actions, kernel_size=1)

    def forward(self, z: torch.Tensor) -> torch.Tensor:
        h = self.activation(self.hidden(ctb_to_bct(z)))
        return bct_to_ctb(self.output(h))


def create_resnet(model_config: ModelConfig) -> ErrorVectorVAE:
    """
    Build the reference residual model.

    Args:
        model_config: Architecture settings (derived sizes already resolved)

    Returns:
        ErrorVectorVAE with freshly initialized sub-networks
    """
    cfg = model_config
    model = ErrorVectorVAE(
        encoder=ResNetEncoder(
            num_features=cfg.num_features,
            num_filters=cfg.num_filters,
            filter_size=cfg.filter_size,
            num_res_blocks=cfg.num_res_blocks,
            hidden_size=cfg.encoder_hidden_size,
            latent_dims=cfg.latent_dims,
            activation_type=cfg.activation,
        ),
        latent_sampler=GaussianLatentSampler(cfg.latent_dims),
        decoder=ResNetDecoder(
            latent_dims=cfg.latent_dims,
            num_filters=cfg.num_filters,
            filter_size=cfg.filter_size,
            num_res_blocks=cfg.num_res_blocks,
            num_features=cfg.num_features,
            activation_type=cfg.activation,
        ),
        action_recommender=ActionRecommender(
            latent_dims=cfg.latent_dims,
            hidden_size=cfg.encoder_hidden_size,
            num_actions=cfg.num_actions,
            activation_type=cfg.activation,
        ),
        latent_dims=cfg.latent_dims,
        config=asdict(cfg),
    )

    num_params = sum(p.numel() for p in model.parameters())
    logger.info(
        f"Created resnet model: features={cfg.num_features}, latent_dims={cfg.latent_dims}, "
        f"filters={cfg.num_filters}x{cfg.filter_size}, res_blocks={cfg.num_res_blocks}, "
        f"actions={cfg.num_actions}, params={num_params:,}"
    )
    return model


architecture_registry.register_class("resnet", create_resnet)


def create_model(model_config: ModelConfig) -> ErrorVectorVAE:
    """Build the model architecture named by model_config.architecture."""
    builder = architecture_registry.get(model_config.architecture)
    return builder(model_config)
