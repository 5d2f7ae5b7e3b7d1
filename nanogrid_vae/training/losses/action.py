"""
Action Prediction Loss

Cross-entropy between the action recommender's per-timestep logits and the
true action labels.
"""

import logging

import torch
import torch.nn as nn
import torch.nn.functional as F

from nanogrid_vae.core.interfaces import DIM_C

logger = logging.getLogger(__name__)


class ActionLoss(nn.Module):
    """
    Cross-entropy action loss, averaged over timesteps and batch elements.

    Labels may be given either as class indices with shape (T, B), or as
    class probabilities (one-hot or soft) with shape (A, T, B).
    """

    def forward(self, action_logits: torch.Tensor, labels: torch.Tensor) -> torch.Tensor:
        """
        Args:
            action_logits: (A, T, B) unnormalized scores
            labels: (T, B) integer classes or (A, T, B) probabilities

        Returns:
            Scalar loss value
        """
        # F.cross_entropy wants (batch, classes, time)
        logits = action_logits.permute(2, 0, 1)

        if labels.dim() == action_logits.dim() - 1:
            if labels.is_floating_point():
                raise ValueError("Index labels of shape (T, B) must be an integer tensor")
            target = labels.permute(1, 0).long()
        elif labels.shape == action_logits.shape:
            target = labels.permute(2, 0, 1).to(logits.dtype)
        else:
            raise ValueError(
                f"Labels shape {tuple(labels.shape)} is incompatible with action "
                f"logits shape {tuple(action_logits.shape)}; expected (T, B) indices "
                f"or ({action_logits.shape[DIM_C]}, T, B) probabilities"
            )

        return F.cross_entropy(logits, target, reduction="mean")
