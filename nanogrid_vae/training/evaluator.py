"""
Loss Evaluator

Runs one batch through the model and composes the training objective:

    encode -> KL(q || N(0, I))
    Monte Carlo x monte_carlo_reps: sample -> decode (MSE) + predict (CE)
    scale recon/action by their factors
    adapt the KL factor from recon + action (AdaptiveKLWeightController)
    total = recon + kl + action  (all post-scaling)
    gradients of total w.r.t. action_recommender, decoder, encoder

Any failure inside evaluation writes an eval_debug snapshot (model, params,
last intermediate tensors, partial losses) before the error propagates.
"""

import logging
import math
from dataclasses import dataclass

import torch
from torch import Tensor

from nanogrid_vae.core.config import DEFAULT_LOSS_CEILING, TrainingConfig, TrainingParams
from nanogrid_vae.core.errors import DivergedTrainingError, ResourceWriteError
from nanogrid_vae.core.interfaces import Batch
from nanogrid_vae.core.numerical import check_finite, check_non_negative
from nanogrid_vae.model.base import ErrorVectorVAE, TRAINED_NETWORKS
from .checkpoint import CheckpointWriter
from .kl_weighting import AdaptiveKLWeightController
from .losses import ActionLoss, GaussianKLLoss, ReconstructionLoss

logger = logging.getLogger(__name__)

# sub-network name -> parameter name -> gradient
Gradients = dict[str, dict[str, Tensor]]


@dataclass
class LossSet:
    """Per-batch losses. All values are post-scaling scalar tensors."""

    recon_loss: Tensor
    kl_loss: Tensor
    action_loss: Tensor
    total_loss: Tensor

    def to_dict(self) -> dict[str, float]:
        return {
            "total_loss": self.total_loss.item(),
            "recon_loss": self.recon_loss.item(),
            "kl_loss": self.kl_loss.item(),
            "action_loss": self.action_loss.item(),
        }

    def detach(self) -> "LossSet":
        return LossSet(
            recon_loss=self.recon_loss.detach(),
            kl_loss=self.kl_loss.detach(),
            action_loss=self.action_loss.detach(),
            total_loss=self.total_loss.detach(),
        )


class LossEvaluator:
    """
    Computes losses and gradients for one batch.

    Args:
        strict: Check intermediates for NaN/Inf (and negative KL/recon) and
            raise NonFiniteValueError instead of letting them propagate
        loss_ceiling: Total loss above which training is declared diverged
        checkpoint_writer: Where to write the eval_debug snapshot on failure
            (no snapshot when None)
        kl_controller: Adaptive KL weighting policy
    """

    def __init__(
        self,
        strict: bool = True,
        loss_ceiling: float = DEFAULT_LOSS_CEILING,
        checkpoint_writer: CheckpointWriter | None = None,
        kl_controller: AdaptiveKLWeightController | None = None,
    ):
        self.strict = strict
        self.loss_ceiling = loss_ceiling
        self.checkpoint_writer = checkpoint_writer
        self.kl_controller = kl_controller or AdaptiveKLWeightController()

        self.reconstruction_loss = ReconstructionLoss()
        self.action_loss = ActionLoss()
        self._kl_losses: dict[int, GaussianKLLoss] = {}

    @classmethod
    def from_config(
        cls,
        training_config: TrainingConfig,
        checkpoint_writer: CheckpointWriter | None = None,
    ) -> "LossEvaluator":
        return cls(
            strict=training_config.strict,
            loss_ceiling=training_config.loss_ceiling,
            checkpoint_writer=checkpoint_writer,
        )

    def kl_loss(self, latent_dims: int) -> GaussianKLLoss:
        """KL loss module for the given latent size, built once per size."""
        if latent_dims not in self._kl_losses:
            self._kl_losses[latent_dims] = GaussianKLLoss(latent_dims)
        return self._kl_losses[latent_dims]

    def evaluate(
        self,
        model: ErrorVectorVAE,
        batch: Batch,
        params: TrainingParams,
        compute_gradients: bool = True,
    ) -> tuple[LossSet, Gradients, TrainingParams]:
        """
        Evaluate one batch.

        Args:
            model: Model to run (its parameters are only read)
            batch: Error vectors (C, T, B) and labels, already on the model device
            params: Training params; kl_loss_factor and min_kl_scaling_loss
                are updated in place
            compute_gradients: If False, gradients is an empty dict

        Returns:
            Tuple of (losses, gradients, params)

        Raises:
            DivergedTrainingError: If total loss is non-finite or above the ceiling
            NonFiniteValueError: In strict mode, on a bad intermediate value
        """
        intermediates: dict[str, Tensor | None] = {
            "encoder_output": None,
            "latent_sample": None,
            "decoder_output": None,
            "action_output": None,
        }
        partial_losses: dict[str, float] = {}

        try:
            return self._evaluate(
                model, batch, params, compute_gradients, intermediates, partial_losses
            )
        except Exception as e:
            logger.error(f"Evaluation failed at iteration {params.iteration}: {e}")
            self._write_debug_snapshot(model, params, intermediates, partial_losses, e)
            raise

    def validate(
        self,
        model: ErrorVectorVAE,
        batch: Batch,
        params: TrainingParams,
    ) -> LossSet:
        """
        Evaluate a held-out batch without updating anything.

        Runs without gradients, with the model in eval mode (the sampler
        returns the posterior mean), on a copy of params so the adaptive KL
        state of the training run is left untouched.
        """
        was_training = model.training
        model.eval()
        try:
            with torch.no_grad():
                losses, _, _ = self.evaluate(model, batch, params.copy(), compute_gradients=False)
        finally:
            model.train(was_training)
        return losses

    def _evaluate(
        self,
        model: ErrorVectorVAE,
        batch: Batch,
        params: TrainingParams,
        compute_gradients: bool,
        intermediates: dict[str, Tensor | None],
        partial_losses: dict[str, float],
    ) -> tuple[LossSet, Gradients, TrainingParams]:
        monte_carlo_reps = params.monte_carlo_reps
        targets = batch.reconstruction_targets

        # Encode input
        encoder_output = model.encoder(batch.error_vectors)
        intermediates["encoder_output"] = encoder_output
        if self.strict:
            check_finite(encoder_output, "encoder output")

        # KL per (timestep, batch element), then averaged over time and batch
        kl_per_step = self.kl_loss(model.latent_dims).per_step(encoder_output)
        if self.strict:
            check_finite(kl_per_step, "KL loss")
            check_non_negative(kl_per_step, "KL loss")
        kl_loss = kl_per_step.mean(dim=0).mean(dim=0)

        # Sample latent space, reconstruct input, and predict action
        recon_loss = encoder_output.new_zeros(())
        action_loss = encoder_output.new_zeros(())

        for _ in range(monte_carlo_reps):
            latent_sample = model.latent_sampler(encoder_output)
            decoder_output = model.decoder(latent_sample)
            action_output = model.action_recommender(latent_sample)

            intermediates["latent_sample"] = latent_sample
            intermediates["decoder_output"] = decoder_output
            intermediates["action_output"] = action_output

            if self.strict:
                check_finite(latent_sample, "latent sample")
                check_finite(decoder_output, "decoder output")

            recon_loss = recon_loss + self.reconstruction_loss(decoder_output, targets)
            action_loss = action_loss + self.action_loss(action_output, batch.labels)

            if self.strict:
                check_finite(recon_loss, "reconstruction loss")
                check_non_negative(recon_loss, "reconstruction loss", tolerance=0.0)
                check_finite(action_loss, "action loss")

        recon_loss = recon_loss / monte_carlo_reps
        action_loss = action_loss / monte_carlo_reps

        # Scale reconstruction and action losses
        scaled_recon = recon_loss * params.recon_loss_factor
        scaled_action = action_loss * params.action_loss_factor

        # Adjust KL loss factor and get KL loss
        kl_scaling_loss = (scaled_recon + scaled_action).item()
        self.kl_controller.update(params, kl_scaling_loss)
        scaled_kl = kl_loss * params.kl_loss_factor

        total_loss = scaled_recon + scaled_kl + scaled_action

        losses = LossSet(
            recon_loss=scaled_recon,
            kl_loss=scaled_kl,
            action_loss=scaled_action,
            total_loss=total_loss,
        )
        partial_losses.update(losses.to_dict())

        gradients: Gradients = {}
        if compute_gradients:
            gradients = self._compute_gradients(model, total_loss)

        total_value = partial_losses["total_loss"]
        if not math.isfinite(total_value) or total_value > self.loss_ceiling:
            raise DivergedTrainingError(total_value, self.loss_ceiling)

        return losses.detach(), gradients, params

    def _compute_gradients(self, model: ErrorVectorVAE, total_loss: Tensor) -> Gradients:
        """Gradients of total_loss for each trained sub-network."""
        named = {name: model.named_trainable_parameters(name) for name in TRAINED_NETWORKS}
        flat_params = [p for name in TRAINED_NETWORKS for p in named[name].values()]

        flat_grads = torch.autograd.grad(total_loss, flat_params, allow_unused=True)

        gradients: Gradients = {}
        grad_iter = iter(flat_grads)
        for name in TRAINED_NETWORKS:
            gradients[name] = {}
            for param_name, param in named[name].items():
                grad = next(grad_iter)
                # Parameters that do not influence the loss get zero gradients
                if grad is None:
                    grad = torch.zeros_like(param)
                if self.strict:
                    check_finite(grad, f"gradient {name}.{param_name}")
                gradients[name][param_name] = grad
        return gradients

    def _write_debug_snapshot(
        self,
        model: ErrorVectorVAE,
        params: TrainingParams,
        intermediates: dict[str, Tensor | None],
        partial_losses: dict[str, float],
        error: BaseException,
    ) -> None:
        if self.checkpoint_writer is None:
            return
        try:
            self.checkpoint_writer.save_debug_snapshot(
                self.checkpoint_writer.eval_debug_path,
                model,
                params,
                tensors=intermediates,
                losses=partial_losses,
                error=error,
            )
        except ResourceWriteError as write_error:
            logger.error(f"Could not write evaluation debug snapshot: {write_error}")
