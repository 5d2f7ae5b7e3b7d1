"""Environment overrides using Pydantic settings."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentSettings(BaseSettings):
    """
    Per-machine overrides read from NANOGRID_* environment variables.

    Unset fields leave the YAML config values untouched.
    """

    model_config = SettingsConfigDict(
        env_prefix="NANOGRID_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Root directory of the sharded training data
    data_dir: Optional[str] = None

    # Where checkpoints, CSV logs and debug snapshots are written
    output_dir: Optional[str] = None

    # "auto", "cpu", "cuda", "cuda:1", ...
    device: Optional[str] = None
