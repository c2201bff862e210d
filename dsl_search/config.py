"""
Engine configuration.

Settings are a pydantic model so values read from YAML are validated before
any of them reach SQL text.
"""

import logging
from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class SearchConfig(BaseModel):
    """Search engine settings."""
    table: str = Field("log_events", description="Event table name")
    text_field: str = Field("message", description="Canonical free-text column")
    date_fields: List[str] = Field(
        default_factory=lambda: ["timestamp", "created_at", "updated_at", "date"],
        description="Fields parsed as dates in compact query strings",
    )
    fuzzy_keys: List[str] = Field(
        default_factory=lambda: ["message", "source", "device_id", "category"],
        description="Fields searched by the fuzzy post-filter",
    )
    fuzzy_base_threshold: float = Field(0.2, ge=0.0, le=1.0)
    cache_ttl_seconds: float = Field(300.0, ge=0.0)
    default_size: int = Field(100, ge=0)
    terms_default_size: int = Field(10, ge=1)
    aggregation_workers: int = Field(1, ge=1)

    @field_validator("table", "text_field")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        if not value.isidentifier():
            raise ValueError(f"not a valid column or table name: {value!r}")
        return value


def load_config(config_path: str | Path) -> SearchConfig:
    """Load settings from a YAML file.

    The file may hold the settings at top level or under a ``search:`` key.

    Args:
        config_path: Path to the YAML file

    Returns:
        Validated SearchConfig

    Raises:
        OSError: If the file cannot be read
        yaml.YAMLError: If the file is not valid YAML
        pydantic.ValidationError: If a setting is invalid
    """
    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load config: {e}")
        raise

    if isinstance(data, dict) and isinstance(data.get('search'), dict):
        data = data['search']

    config = SearchConfig.model_validate(data)
    logger.info(f"Loaded configuration from {config_path}")
    return config
