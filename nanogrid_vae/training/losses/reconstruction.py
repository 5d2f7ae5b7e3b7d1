"""
Reconstruction Loss

Mean squared error between decoded and target error vectors.
"""

import logging

import torch
import torch.nn as nn
import torch.nn.functional as F

logger = logging.getLogger(__name__)


class ReconstructionLoss(nn.Module):
    """
    Standard MSE reconstruction loss, averaged over every element of the
    (C, T, B) tensor.
    """

    def forward(
        self,
        x_recon: torch.Tensor,
        x_target: torch.Tensor,
    ) -> torch.Tensor:
        """
        Args:
            x_recon: (C, T, B) decoder output
            x_target: (C, T, B) target error vectors

        Returns:
            Scalar loss value

        Raises:
            ValueError: If the shapes differ (broadcasting would hide bugs)
        """
        if x_recon.shape != x_target.shape:
            raise ValueError(
                f"Reconstruction shape {tuple(x_recon.shape)} does not match "
                f"target shape {tuple(x_target.shape)}"
            )
        return F.mse_loss(x_recon, x_target, reduction="mean")
