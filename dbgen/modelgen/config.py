"""
Configuration for modelgen.

Uses pydantic-settings for environment variable loading; command line
options override the loaded values.
"""

import random
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class GeneratorSettings(BaseSettings):
    """Generator configuration loaded from environment."""

    # Model file written next to the schema sources
    model_file_name: str = Field(
        default="entity-model.json", description="Model file name used for directory inputs"
    )

    # Reproducible runs (tests, golden files)
    uid_seed: Optional[int] = Field(default=None, description="Seed for uid generation")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: Literal["text", "json"] = Field(default="text", description="Log format")

    # model_file_name would clash with pydantic's default "model_" namespace
    model_config = {"env_prefix": "MODELGEN_", "protected_namespaces": ("settings_",)}

    def make_rng(self) -> random.Random:
        """Random source for the uid allocator, seeded if uid_seed is set."""
        return random.Random(self.uid_seed)
