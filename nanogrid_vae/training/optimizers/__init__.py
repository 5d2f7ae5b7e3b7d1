# Optimizer registry

from .factory import create_optimizer, get_supported_optimizers, optimizer_registry

__all__ = [
    "create_optimizer",
    "get_supported_optimizers",
    "optimizer_registry",
]
