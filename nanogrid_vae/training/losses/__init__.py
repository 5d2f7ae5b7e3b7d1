# Loss terms combined by the LossEvaluator

from .kl import GaussianKLLoss, split_encoder_output
from .reconstruction import ReconstructionLoss
from .action import ActionLoss

__all__ = [
    "GaussianKLLoss",
    "split_encoder_output",
    "ReconstructionLoss",
    "ActionLoss",
]
