"""
Adaptive KL Loss Weighting

Keeps the KL term from dominating before reconstruction and action
prediction have made progress, and never lets the KL weight exceed 1.

Update rule, applied once per evaluated batch when kl_scaling_loss > 0:
    kl_loss_factor = min(min_kl_scaling_loss / kl_scaling_loss, 1)
    min_kl_scaling_loss = min(min_kl_scaling_loss, kl_scaling_loss)

kl_scaling_loss is the post-scaling reconstruction + action loss. While the
loss keeps setting new minimums the factor stays at 1; when it rises above
its best value so far, the KL weight drops in proportion.

The state (kl_loss_factor, min_kl_scaling_loss) lives in TrainingParams so
it is carried between calls and checkpointed with the rest of the params.
"""
from __future__ import annotations

import logging

from nanogrid_vae.core.config import TrainingParams

logger = logging.getLogger(__name__)


class AdaptiveKLWeightController:
    """
    Running-minimum controller for the KL loss factor.

    Stateful through the params it is handed: the factor trajectory depends
    on the order of the observed losses, not just the latest one.
    """

    def update(self, params: TrainingParams, kl_scaling_loss: float) -> float:
        """
        Update params.kl_loss_factor and params.min_kl_scaling_loss in place.

        Args:
            params: Training params carrying the controller state
            kl_scaling_loss: Post-scaling reconstruction + action loss

        Returns:
            The KL loss factor to apply to this batch
        """
        # NaN fails the comparison and leaves the state untouched
        if kl_scaling_loss > 0:
            new_factor = min(params.min_kl_scaling_loss / kl_scaling_loss, 1.0)
            if new_factor != params.kl_loss_factor:
                logger.debug(
                    f"KL factor {params.kl_loss_factor:.4g} -> {new_factor:.4g} "
                    f"(scaling loss {kl_scaling_loss:.4g}, min {params.min_kl_scaling_loss:.4g})"
                )
            params.kl_loss_factor = new_factor

            if kl_scaling_loss < params.min_kl_scaling_loss:
                params.min_kl_scaling_loss = kl_scaling_loss

        return params.kl_loss_factor

    @staticmethod
    def state_dict(params: TrainingParams) -> dict[str, float]:
        """Get controller state for checkpointing."""
        return {
            "kl_loss_factor": params.kl_loss_factor,
            "min_kl_scaling_loss": params.min_kl_scaling_loss,
        }

    @staticmethod
    def load_state_dict(params: TrainingParams, state: dict[str, float]) -> None:
        """Load controller state from checkpoint into params."""
        params.kl_loss_factor = state["kl_loss_factor"]
        params.min_kl_scaling_loss = state["min_kl_scaling_loss"]
        params.validate()
