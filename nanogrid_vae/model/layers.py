"""
Reusable 1-D Convolutional Layer Blocks

Building blocks for the reference residual sub-networks. Every block works
on torch's native (batch, channels, time) layout; the sub-networks convert
from and to the (channels, time, batch) layout used by the training core.
"""

import logging

import torch
import torch.nn as nn

from nanogrid_vae.core.registry import ComponentRegistry

logger = logging.getLogger(__name__)

# Registry for activation functions
activation_registry = ComponentRegistry[nn.Module]("activation")

activation_registry.register_class("relu", nn.ReLU)
activation_registry.register_class("leaky_relu", nn.LeakyReLU)
activation_registry.register_class("swish", nn.SiLU)
activation_registry.register_class("gelu", nn.GELU)
activation_registry.register_class("elu", nn.ELU)


def make_activation(activation_type: str) -> nn.Module:
    """Create an activation module from its config name."""
    return activation_registry.create(activation_type)


def ctb_to_bct(x: torch.Tensor) -> torch.Tensor:
    """(C, T, B) -> (B, C, T)"""
    return x.permute(2, 0, 1)


def bct_to_ctb(x: torch.Tensor) -> torch.Tensor:
    """(B, C, T) -> (C, T, B)"""
    return x.permute(1, 2, 0)


class ConvBlock1d(nn.Module):
    """
    Conv1d -> GroupNorm -> Activation

    Padding keeps the time axis length unchanged (filter_size must be odd).
    GroupNorm with a single group normalizes per sample, so outputs do not
    depend on the other elements of the batch.
    """

    def __init__(
        self,
        in_channels: int,
        out_channels: int,
        filter_size: int,
        activation_type: str,
    ):
        super().__init__()
        self.conv = nn.Conv1d(
            in_channels,
            out_channels,
            kernel_size=filter_size,
            padding=filter_size // 2,
        )
        self.norm = nn.GroupNorm(1, out_channels)
        self.activation = make_activation(activation_type)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.activation(self.norm(self.conv(x)))


class ResidualBlock1d(nn.Module):
    """
    Two convolution blocks with an identity skip connection.

    Structure: x + Norm(Conv(Activation(Norm(Conv(x))))), followed by the
    activation. Uses x = x + residual (no in-place operations).
    """

    def __init__(self, channels: int, filter_size: int, activation_type: str):
        super().__init__()
        self.block = ConvBlock1d(channels, channels, filter_size, activation_type)
        self.conv = nn.Conv1d(
            channels,
            channels,
            kernel_size=filter_size,
            padding=filter_size // 2,
        )
        self.norm = nn.GroupNorm(1, channels)
        self.activation = make_activation(activation_type)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        out = self.norm(self.conv(self.block(x)))
        return self.activation(out + x)


def make_residual_stack(
    num_blocks: int,
    channels: int,
    filter_size: int,
    activation_type: str,
) -> nn.Sequential:
    """Stack num_blocks residual blocks (an empty stack is the identity)."""
    return nn.Sequential(*[
        ResidualBlock1d(channels, filter_size, activation_type)
        for _ in range(num_blocks)
    ])
