# Core infrastructure for nanogrid_vae
#
# Note: Uses lazy imports for torch-dependent modules (interfaces, numerical)
# so config files can be validated without importing torch.

# These don't require torch
from .registry import ComponentRegistry
from .config import (
    DataConfig,
    ExperimentConfig,
    ModelConfig,
    TrainingConfig,
    TrainingParams,
    load_config,
    validate_required_keys,
)
from .errors import (
    DivergedTrainingError,
    NanogridError,
    NonFiniteGradientError,
    NonFiniteValueError,
    ResourceWriteError,
)
from .settings import EnvironmentSettings

__all__ = [
    # Config/Registry (no torch)
    "ComponentRegistry",
    "DataConfig",
    "EnvironmentSettings",
    "ExperimentConfig",
    "ModelConfig",
    "TrainingConfig",
    "TrainingParams",
    "load_config",
    "validate_required_keys",
    # Errors (no torch)
    "NanogridError",
    "DivergedTrainingError",
    "NonFiniteValueError",
    "NonFiniteGradientError",
    "ResourceWriteError",
    # Interfaces (lazy - requires torch)
    "Batch",
    "BatchSource",
    "MetricsDashboard",
    # Numerical (lazy - requires torch)
    "NumericalConstants",
    "check_finite",
    "check_non_negative",
]


def __getattr__(name):
    """Lazy import for classes that require torch."""

    if name in {"Batch", "BatchSource", "MetricsDashboard"}:
        from .interfaces import Batch, BatchSource, MetricsDashboard
        return locals()[name]

    if name in {"NumericalConstants", "check_finite", "check_non_negative"}:
        from .numerical import (
            NumericalConstants,
            check_finite,
            check_non_negative,
        )
        return locals()[name]

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
