"""
Optimizer Factory

Registry-based optimizer creation with config-driven instantiation.
"""

import logging
from typing import Any, Iterable

import torch
import torch.nn as nn
from torch.optim import Optimizer

from nanogrid_vae.core.registry import ComponentRegistry

logger = logging.getLogger(__name__)

# Registry for optimizers
optimizer_registry = ComponentRegistry[Optimizer]("optimizer")

# Register built-in PyTorch optimizers
optimizer_registry.register_class("adam", torch.optim.Adam)
optimizer_registry.register_class("adamw", torch.optim.AdamW)
optimizer_registry.register_class("sgd", torch.optim.SGD)
optimizer_registry.register_class("rmsprop", torch.optim.RMSprop)
optimizer_registry.register_class("nadam", torch.optim.NAdam)
optimizer_registry.register_class("radam", torch.optim.RAdam)

# Type-specific keys accepted from the optimizer.{type} config section
_TYPE_SPECIFIC_KEYS = {
    "adam": ("betas", "eps", "amsgrad"),
    "adamw": ("betas", "eps", "amsgrad"),
    "sgd": ("momentum", "dampening", "nesterov"),
    "rmsprop": ("alpha", "eps", "momentum"),
    "nadam": ("betas", "eps"),
    "radam": ("betas", "eps"),
}


def create_optimizer(
    params: Iterable[nn.Parameter],
    config: dict[str, Any],
    lr: float,
) -> Optimizer:
    """
    Create optimizer from configuration.

    The learning rate comes from TrainingParams.learn_rate rather than the
    optimizer section; the updater overwrites it every step.

    Args:
        params: Parameters of one sub-network
        config: Optimizer configuration containing:
            - type: Optimizer type (adam, adamw, sgd, rmsprop, nadam, radam)
            - weight_decay: Weight decay (default 0)
            - {type}: Optional type-specific section (betas, eps, momentum, ...)
        lr: Initial learning rate

    Returns:
        Instantiated optimizer

    Raises:
        KeyError: If the optimizer type is unknown
        ValueError: If the type-specific section has unrecognized keys
    """
    optimizer_type = config["type"]
    optimizer_cls = optimizer_registry.get(optimizer_type)

    kwargs: dict[str, Any] = {
        "lr": lr,
        "weight_decay": config.get("weight_decay", 0.0),
    }

    type_config = dict(config.get(optimizer_type) or {})
    allowed = _TYPE_SPECIFIC_KEYS.get(optimizer_type, ())
    unknown = sorted(set(type_config) - set(allowed))
    if unknown:
        raise ValueError(
            f"[optimizer.{optimizer_type}] Unknown keys: {unknown}. Recognized: {list(allowed)}"
        )

    for key, value in type_config.items():
        kwargs[key] = tuple(value) if key == "betas" else value

    return optimizer_cls(params, **kwargs)


def get_supported_optimizers() -> list[str]:
    """Return list of supported optimizer types."""
    return optimizer_registry.list_registered()
