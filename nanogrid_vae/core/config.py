"""
Configuration Loading, Validation, and Typed Config Records

Provides utilities for loading the YAML experiment configuration and
turning it into explicit dataclasses. Follows the fail-fast philosophy:
missing required keys and unknown keys cause immediate errors rather than
silent fallbacks.

TrainingParams is the one mutable record: it is threaded through every
evaluate/update call and carries the adaptive KL state between iterations.
"""

import copy
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .settings import EnvironmentSettings

logger = logging.getLogger(__name__)

# Hard ceiling on total loss before training is declared diverged
DEFAULT_LOSS_CEILING = 1e6

# Initial running minimum for adaptive KL weighting
DEFAULT_MIN_KL_SCALING_LOSS = 10000.0


REQUIRED_KEYS = [
    "model.num_features",
    "model.num_actions",
    "training.epoch_count",
    "params.learn_rate",
    "optimizer.type",
    "scheduler.type",
]


def load_config(config_path: str | Path) -> dict[str, Any]:
    """
    Load a single YAML configuration file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Dictionary containing the configuration

    Raises:
        FileNotFoundError: If the config file does not exist
        ValueError: If the file is empty
        yaml.YAMLError: If the YAML is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f)

    if config is None:
        raise ValueError(f"Configuration file is empty: {config_path}")

    logger.info(f"Loaded configuration from {config_path}")
    return config


def validate_required_keys(config: dict[str, Any], required_keys: list[str], context: str) -> None:
    """
    Validate that all required keys are present in the configuration.

    Uses dot notation for nested keys (e.g., "model.num_features").

    Raises:
        ValueError: If any required keys are missing
    """
    missing = []

    for key in required_keys:
        current = config
        try:
            for part in key.split("."):
                current = current[part]
        except (KeyError, TypeError):
            missing.append(key)

    if missing:
        raise ValueError(
            f"[{context}] Missing required configuration keys:\n"
            + "\n".join(f"  - {key}" for key in missing)
        )


def _build_section(cls, section: dict[str, Any] | None, context: str):
    """Instantiate a config dataclass, rejecting keys it does not declare."""
    section = dict(section or {})
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(
            f"[{context}] Unknown configuration keys: {unknown}. "
            f"Recognized: {sorted(known)}"
        )
    return cls(**section)


def _require_positive_int(value: Any, name: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")


def _to_float(value: Any, name: str) -> float:
    """
    Coerce a numeric config value to float.

    PyYAML reads exponent literals without a sign (``1e-3`` is fine,
    ``1.0e6`` is not) as strings, so numeric strings are accepted here.

    Raises:
        ValueError: If the value is a bool or cannot be parsed as a float
    """
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass
class ModelConfig:
    """
    Architecture settings for the reference residual model.

    Derived sizes default from num_features when left unset:
        num_filters = num_features * 16
        encoder_hidden_size = num_features * 4
        latent_dims = num_features
    """

    num_features: int
    num_actions: int
    architecture: str = "resnet"
    filter_size: int = 3
    num_filters: int | None = None
    num_res_blocks: int = 4
    encoder_hidden_size: int | None = None
    latent_dims: int | None = None
    activation: str = "relu"

    def __post_init__(self):
        _require_positive_int(self.num_features, "model.num_features")
        _require_positive_int(self.num_actions, "model.num_actions")
        if self.num_filters is None:
            self.num_filters = self.num_features * 16
        if self.encoder_hidden_size is None:
            self.encoder_hidden_size = self.num_features * 4
        if self.latent_dims is None:
            self.latent_dims = self.num_features
        for name in ("filter_size", "num_filters", "encoder_hidden_size", "latent_dims"):
            _require_positive_int(getattr(self, name), f"model.{name}")
        if self.num_res_blocks < 0:
            raise ValueError(f"model.num_res_blocks must be >= 0, got {self.num_res_blocks}")
        if self.filter_size % 2 == 0:
            raise ValueError(
                f"model.filter_size must be odd to preserve sequence length, got {self.filter_size}"
            )


@dataclass
class TrainingConfig:
    """Loop-level settings: epochs, throttling intervals and safety checks."""

    epoch_count: int = 20
    batch_size: int = 64
    validation_iteration_count: int = 3
    checkpoint_iteration_count: int = 1000
    console_update_iterations: int = 25
    loss_ceiling: float = DEFAULT_LOSS_CEILING
    strict: bool = True
    check_finite_gradients: bool = True
    gradient_clip_norm: float | None = None
    device: str = "auto"
    output_dir: str = "output"
    seed: int | None = None

    def __post_init__(self):
        if not isinstance(self.epoch_count, int) or self.epoch_count < 0:
            raise ValueError(f"training.epoch_count must be >= 0, got {self.epoch_count!r}")
        for name in (
            "batch_size",
            "validation_iteration_count",
            "checkpoint_iteration_count",
            "console_update_iterations",
        ):
            _require_positive_int(getattr(self, name), f"training.{name}")
        self.loss_ceiling = _to_float(self.loss_ceiling, "training.loss_ceiling")
        if self.gradient_clip_norm is not None:
            self.gradient_clip_norm = _to_float(self.gradient_clip_norm, "training.gradient_clip_norm")
        if self.loss_ceiling <= 0:
            raise ValueError(f"training.loss_ceiling must be > 0, got {self.loss_ceiling}")
        if self.gradient_clip_norm is not None and self.gradient_clip_norm <= 0:
            raise ValueError(
                f"training.gradient_clip_norm must be > 0 when set, got {self.gradient_clip_norm}"
            )


@dataclass
class DataConfig:
    """Where sequence files live and how they are split into shards."""

    data_dir: str | None = None
    file_pattern: str = "*.npz"
    num_partitions: int = 5
    validation_partitions: int = 1
    num_workers: int = 0
    synthetic_num_sequences: int = 1280
    synthetic_sequence_length: int = 64

    def __post_init__(self):
        _require_positive_int(self.num_partitions, "data.num_partitions")
        _require_positive_int(self.synthetic_num_sequences, "data.synthetic_num_sequences")
        _require_positive_int(self.synthetic_sequence_length, "data.synthetic_sequence_length")
        if self.num_workers < 0:
            raise ValueError(f"data.num_workers must be >= 0, got {self.num_workers}")
        if not 0 < self.validation_partitions < self.num_partitions:
            raise ValueError(
                f"data.validation_partitions must be in [1, {self.num_partitions - 1}], "
                f"got {self.validation_partitions}"
            )


@dataclass
class TrainingParams:
    """
    Mutable training state threaded through evaluate/update calls.

    Invariant: kl_loss_factor is always in (0, 1].
    """

    learn_rate: float = 2e-4
    monte_carlo_reps: int = 3
    recon_loss_factor: float = 1.0
    action_loss_factor: float = 1.0
    kl_loss_factor: float = 1.0
    min_kl_scaling_loss: float = DEFAULT_MIN_KL_SCALING_LOSS
    epoch: int = 0
    iteration: int = 0

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ValueError: If any field is not numeric or outside its valid range
        """
        for name in (
            "learn_rate",
            "recon_loss_factor",
            "action_loss_factor",
            "kl_loss_factor",
            "min_kl_scaling_loss",
        ):
            setattr(self, name, _to_float(getattr(self, name), name))
        if self.learn_rate <= 0:
            raise ValueError(f"learn_rate must be > 0, got {self.learn_rate}")
        _require_positive_int(self.monte_carlo_reps, "monte_carlo_reps")
        if self.recon_loss_factor < 0 or self.action_loss_factor < 0:
            raise ValueError(
                "recon_loss_factor and action_loss_factor must be >= 0, got "
                f"{self.recon_loss_factor} and {self.action_loss_factor}"
            )
        if not 0 < self.kl_loss_factor <= 1:
            raise ValueError(f"kl_loss_factor must be in (0, 1], got {self.kl_loss_factor}")
        if self.min_kl_scaling_loss <= 0:
            raise ValueError(f"min_kl_scaling_loss must be > 0, got {self.min_kl_scaling_loss}")

    def copy(self) -> "TrainingParams":
        return copy.copy(self)

    def state_dict(self) -> dict[str, Any]:
        return asdict(self)

    def load_state_dict(self, state: dict[str, Any]) -> None:
        for key, value in state.items():
            if not hasattr(self, key):
                logger.warning(f"Ignoring unknown training param in checkpoint: {key}")
                continue
            setattr(self, key, value)
        self.validate()


@dataclass
class ExperimentConfig:
    """All configuration for one training run, validated once."""

    model: ModelConfig
    training: TrainingConfig
    params: TrainingParams
    data: DataConfig = field(default_factory=DataConfig)
    optimizer: dict[str, Any] = field(default_factory=lambda: {"type": "adam"})
    scheduler: dict[str, Any] = field(default_factory=lambda: {"type": "constant"})
    logging: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(
        cls,
        config: dict[str, Any],
        settings: EnvironmentSettings | None = None,
    ) -> "ExperimentConfig":
        """
        Build and validate the experiment config.

        Environment settings (NANOGRID_DATA_DIR, NANOGRID_OUTPUT_DIR,
        NANOGRID_DEVICE) take precedence over values from the file.

        Args:
            config: Parsed YAML dict
            settings: Environment overrides (read from the environment if None)
        """
        validate_required_keys(config, REQUIRED_KEYS, "Experiment configuration")

        known_sections = {f.name for f in fields(cls)}
        unknown = sorted(set(config) - known_sections)
        if unknown:
            raise ValueError(f"[Experiment configuration] Unknown sections: {unknown}")

        if settings is None:
            settings = EnvironmentSettings()

        training_section = dict(config["training"])
        data_section = dict(config.get("data") or {})
        if settings.output_dir is not None:
            training_section["output_dir"] = settings.output_dir
        if settings.device is not None:
            training_section["device"] = settings.device
        if settings.data_dir is not None:
            data_section["data_dir"] = settings.data_dir

        return cls(
            model=_build_section(ModelConfig, config["model"], "model"),
            training=_build_section(TrainingConfig, training_section, "training"),
            params=_build_section(TrainingParams, config["params"], "params"),
            data=_build_section(DataConfig, data_section, "data"),
            optimizer=dict(config["optimizer"]),
            scheduler=dict(config["scheduler"]),
            logging=dict(config.get("logging") or {}),
        )

    @classmethod
    def from_file(cls, config_path: str | Path) -> "ExperimentConfig":
        return cls.from_dict(load_config(config_path))

    @property
    def output_dir(self) -> Path:
        return Path(self.training.output_dir)
