# Model components for nanogrid_vae

from .base import ErrorVectorVAE, NETWORK_NAMES, TRAINED_NETWORKS

from .layers import (
    activation_registry,
    make_activation,
    ConvBlock1d,
    ResidualBlock1d,
)

from .networks import (
    architecture_registry,
    ResNetEncoder,
    GaussianLatentSampler,
    ResNetDecoder,
    ActionRecommender,
    create_resnet,
    create_model,
)

__all__ = [
    # Container
    "ErrorVectorVAE",
    "NETWORK_NAMES",
    "TRAINED_NETWORKS",
    # Layers
    "activation_registry",
    "make_activation",
    "ConvBlock1d",
    "ResidualBlock1d",
    # Reference networks
    "architecture_registry",
    "ResNetEncoder",
    "GaussianLatentSampler",
    "ResNetDecoder",
    "ActionRecommender",
    "create_resnet",
    "create_model",
]
