"""
Parameter Updater

Applies one optimizer step per trained sub-network from the gradient sets
produced by the LossEvaluator. Each sub-network owns its optimizer (and
its optimizer state), mirroring how the evaluator returns one gradient set
per sub-network.
"""

import logging
from typing import Any

import torch

from nanogrid_vae.core.config import TrainingParams
from nanogrid_vae.core.errors import NonFiniteGradientError
from nanogrid_vae.model.base import ErrorVectorVAE, TRAINED_NETWORKS
from .evaluator import Gradients, LossSet
from .optimizers import create_optimizer
from .scheduler import ConstantSchedule, LearningRateSchedule

logger = logging.getLogger(__name__)


class ParameterUpdater:
    """
    Optimizer step driver for the trained sub-networks.

    Args:
        model: Model whose sub-network parameters are optimized
        optimizer_config: Optimizer section of the experiment config
        learn_rate: Initial base learning rate
        schedule: Learning-rate multiplier schedule (constant 1 if None)
        check_finite_gradients: Raise NonFiniteGradientError on NaN/Inf gradients
        gradient_clip_norm: Clip each sub-network's gradient norm (disabled if None)
    """

    def __init__(
        self,
        model: ErrorVectorVAE,
        optimizer_config: dict[str, Any],
        learn_rate: float,
        schedule: LearningRateSchedule | None = None,
        check_finite_gradients: bool = True,
        gradient_clip_norm: float | None = None,
    ):
        self.schedule = schedule or ConstantSchedule()
        self.check_finite_gradients = check_finite_gradients
        self.gradient_clip_norm = gradient_clip_norm
        self.optimizer_type = optimizer_config["type"]

        self.optimizers = {}
        for name in TRAINED_NETWORKS:
            parameters = list(model.named_trainable_parameters(name).values())
            if not parameters:
                logger.warning(f"Sub-network '{name}' has no parameters; it will not be updated")
                continue
            self.optimizers[name] = create_optimizer(parameters, optimizer_config, lr=learn_rate)

        self.current_lr = learn_rate

    def learning_rate(self, params: TrainingParams) -> float:
        """Base learning rate scaled by the schedule for the current epoch."""
        epoch_index = max(params.epoch - 1, 0)
        return params.learn_rate * self.schedule.multiplier(epoch_index)

    def update(
        self,
        model: ErrorVectorVAE,
        losses: LossSet,
        gradients: Gradients,
        params: TrainingParams,
    ) -> tuple[ErrorVectorVAE, TrainingParams]:
        """
        Apply one optimizer step to each trained sub-network.

        Args:
            model: Model updated in place
            losses: Losses of the evaluated batch (for logging only)
            gradients: Per sub-network gradient sets from the evaluator
            params: Training params (learn_rate and epoch are read)

        Returns:
            Tuple of (model, params)

        Raises:
            NonFiniteGradientError: If a gradient contains NaN/Inf and
                check_finite_gradients is enabled
        """
        if self.check_finite_gradients:
            self._check_gradients(gradients)

        lr = self.learning_rate(params)
        if lr != self.current_lr:
            logger.debug(f"Learning rate {self.current_lr:.3g} -> {lr:.3g}")
            self.current_lr = lr

        for name, optimizer in self.optimizers.items():
            for group in optimizer.param_groups:
                group["lr"] = lr

            named_params = model.named_trainable_parameters(name)
            network_grads = gradients[name]
            for param_name, param in named_params.items():
                param.grad = network_grads[param_name].detach().to(param.dtype)

            if self.gradient_clip_norm is not None:
                torch.nn.utils.clip_grad_norm_(named_params.values(), self.gradient_clip_norm)

            optimizer.step()
            optimizer.zero_grad(set_to_none=True)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"Step {params.iteration}: total loss {losses.total_loss.item():.4g}, lr {lr:.3g}"
            )
        return model, params

    def _check_gradients(self, gradients: Gradients) -> None:
        for network, network_grads in gradients.items():
            for param_name, grad in network_grads.items():
                if not torch.isfinite(grad).all():
                    raise NonFiniteGradientError(network, param_name)

    def state_dict(self) -> dict[str, Any]:
        """Get optimizer states for checkpointing."""
        return {
            "optimizer_type": self.optimizer_type,
            "optimizers": {name: opt.state_dict() for name, opt in self.optimizers.items()},
        }

    def load_state_dict(self, state: dict[str, Any]) -> None:
        """Load optimizer states from checkpoint."""
        if state.get("optimizer_type") != self.optimizer_type:
            logger.warning(
                f"Checkpoint optimizer '{state.get('optimizer_type')}' differs from "
                f"configured '{self.optimizer_type}'; optimizer state not restored"
            )
            return
        for name, optimizer_state in state["optimizers"].items():
            if name in self.optimizers:
                self.optimizers[name].load_state_dict(optimizer_state)
        logger.info("Restored optimizer state")
