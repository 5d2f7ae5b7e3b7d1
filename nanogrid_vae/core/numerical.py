"""
Numerical Stability Constants and Strict-Mode Checks

Centralizes the bounds used by the sampler and loss evaluator, and the
finiteness/negativity checks the evaluator runs when strict mode is on.

CRITICAL: Always use these constants instead of ad-hoc epsilon values.
"""

import torch
from torch import Tensor

from .errors import NonFiniteValueError


class NumericalConstants:
    """
    Central repository for numerical stability constants.
    """

    # Logvar bounds for the reparameterized sampler
    LOGVAR_CLAMP_MIN = -10.0  # std = exp(-5) ≈ 0.007
    LOGVAR_CLAMP_MAX = 4.0    # std = exp(2) ≈ 7.4

    # Closed-form Gaussian KL is >= 0 algebraically; float32 rounding can
    # produce values a hair below zero.
    KL_NEGATIVE_TOLERANCE = 1e-5


def check_finite(x: Tensor, name: str = "tensor") -> None:
    """
    Raise if a tensor contains NaN or Inf values.

    Args:
        x: Tensor to check
        name: Name for the error message

    Raises:
        NonFiniteValueError: If tensor contains non-finite values
    """
    finite = torch.isfinite(x)
    if not finite.all():
        non_finite_count = int((~finite).sum().item())
        raise NonFiniteValueError(
            name, f"{non_finite_count} of {x.numel()} elements are non-finite"
        )


def check_non_negative(
    x: Tensor,
    name: str = "tensor",
    tolerance: float = NumericalConstants.KL_NEGATIVE_TOLERANCE,
) -> None:
    """
    Raise if any element of a loss tensor is negative beyond tolerance.

    Raises:
        NonFiniteValueError: If a negative element is found
    """
    if (x < -tolerance).any():
        raise NonFiniteValueError(name, f"negative value {x.min().item():g}")
