"""
Training Error Taxonomy

Two families of errors are raised during training:

Fatal (propagate after a debug snapshot is written):
    - DivergedTrainingError: total loss above the hard ceiling or non-finite
    - NonFiniteValueError: strict-mode check on intermediate tensors
    - NonFiniteGradientError: non-finite gradient reaching the updater

Recoverable (logged and swallowed where they are raised):
    - ResourceWriteError: checkpoint or CSV write failure
"""


class NanogridError(Exception):
    """Base class for all training errors raised by nanogrid_vae."""


class DivergedTrainingError(NanogridError):
    """Total loss exceeded the divergence ceiling or became non-finite."""

    def __init__(self, total_loss: float, ceiling: float):
        self.total_loss = total_loss
        self.ceiling = ceiling
        super().__init__(
            f"Training diverged: total loss {total_loss:g} exceeds ceiling {ceiling:g}"
        )


class NonFiniteValueError(NanogridError):
    """An intermediate tensor contains NaN/Inf, or a loss term is negative."""

    def __init__(self, name: str, detail: str):
        self.name = name
        super().__init__(f"Bad value in {name}: {detail}")


class NonFiniteGradientError(NanogridError):
    """A gradient set handed to the parameter updater contains NaN/Inf."""

    def __init__(self, network: str, parameter: str):
        self.network = network
        self.parameter = parameter
        super().__init__(f"Non-finite gradient for {network}.{parameter}")


class ResourceWriteError(NanogridError):
    """Writing a checkpoint or log record failed. Training may continue."""

    def __init__(self, path, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to write {path}: {type(cause).__name__}: {cause}")
