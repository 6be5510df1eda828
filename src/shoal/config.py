"""
Configuration for Shoal.

A deployment is described by one YAML file:

    db_path: shoal.db
    log_level: INFO
    policies:
      - category: tool_restriction
        name: no-wire-transfers
        rules:
          denyTools: [wire_transfer]
      - category: approval_required
        rules:
          actionTypes: [tool_call]
          toolNames: [send_email]

``policies`` are seed definitions written to the database by ``shoal init``.
Their ``rules`` are stored as given; unknown or malformed fields are handled
leniently when the policy is evaluated.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from shoal.schema import Policy, PolicyCategory
from shoal.store import ShoalDB

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("shoal.db")

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class PolicyDefinition(BaseModel):
    """One seed policy in the configuration file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    category: PolicyCategory = Field(..., description="Policy category")
    rules: dict[str, Any] = Field(default_factory=dict, description="Rule payload")
    enabled: bool = Field(default=True, description="Whether the policy is active")
    name: str | None = Field(default=None, description="Optional label")


class ShoalConfig(BaseModel):
    """
    Deployment configuration.

    Attributes:
        db_path: SQLite database file
        log_level: Root log level for the CLI
        policies: Seed policies
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    db_path: Path = Field(default=DEFAULT_DB_PATH, description="SQLite database file")
    log_level: str = Field(default="WARNING", description="Log level")
    policies: list[PolicyDefinition] = Field(
        default_factory=list,
        description="Seed policies",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise and validate the log level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            msg = f"Invalid log level: {v}"
            raise ValueError(msg)
        return level


def load_config(path: Path | str) -> ShoalConfig:
    """
    Load configuration from a YAML file.

    Relative ``db_path`` values resolve against the config file's directory.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValidationError: If the YAML doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        data = yaml.safe_load(f) or {}

    config = ShoalConfig.model_validate(data)
    if not config.db_path.is_absolute():
        config = config.model_copy(update={"db_path": path.parent / config.db_path})
    return config


def load_config_from_string(content: str) -> ShoalConfig:
    """Load configuration from a YAML string."""
    data = yaml.safe_load(content) or {}
    return ShoalConfig.model_validate(data)


def seed_policies(db: ShoalDB, config: ShoalConfig) -> list[Policy]:
    """Write every configured policy to ``db`` and return the stored records."""
    stored = [
        db.add_policy(
            definition.category,
            definition.rules,
            enabled=definition.enabled,
            name=definition.name,
        )
        for definition in config.policies
    ]
    logger.info("Seeded %d policies into %s", len(stored), db.db_path)
    return stored
