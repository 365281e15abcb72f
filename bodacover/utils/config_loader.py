"""
Configuration loader for plan tiers and settlement settings.
"""

from __future__ import annotations

import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

_PROTECTION_TYPES = ("rider", "bike")
_DURATIONS = ("Daily", "Weekly", "Monthly")


class PlanConfig(BaseModel):
    amount: Decimal = Field(gt=0)
    coverage: Dict[str, int] = Field(default_factory=dict)

    @field_validator("coverage")
    @classmethod
    def _non_negative(cls, value: Dict[str, int]) -> Dict[str, int]:
        for benefit, amount in value.items():
            if amount < 0:
                raise ValueError(f"coverage '{benefit}' must be >= 0")
        return value


class SettlementConfig(BaseModel):
    poll_interval_seconds: float = Field(default=5.0, ge=0.0)
    max_poll_attempts: int = Field(default=12, ge=1, le=1000)
    mobile_money_min_amount: Decimal = Field(default=Decimal("1"), ge=0)
    intent_retention_seconds: float = Field(default=3600.0, gt=0.0)
    purge_interval_seconds: float = Field(default=300.0, gt=0.0)


class CoverConfig(BaseModel):
    token_symbol: str = "HBAR"
    fiat_currency: str = "KSh"
    conversion_rate: Decimal = Field(default=Decimal("12.9"), gt=0)
    reward_units_per_token: Decimal = Field(default=Decimal("100"), ge=0)
    settlement: SettlementConfig = Field(default_factory=SettlementConfig)
    plans: Dict[str, Dict[str, PlanConfig]]

    @model_validator(mode="after")
    def _six_tiers(self) -> "CoverConfig":
        if set(self.plans) != set(_PROTECTION_TYPES):
            raise ValueError(f"plans must define exactly {_PROTECTION_TYPES}, got {sorted(self.plans)}")
        for protection_type, tiers in self.plans.items():
            if set(tiers) != set(_DURATIONS):
                raise ValueError(f"plans.{protection_type} must define exactly {_DURATIONS}, got {sorted(tiers)}")
        return self


def default_config_path() -> Path:
    override = os.getenv("COVER_CONFIG_PATH")
    if override:
        return Path(override)
    return Path(__file__).parent.parent.parent / "config" / "cover_config.yml"


def load_cover_config(config_path: Optional[Path] = None) -> CoverConfig:
    """
    Load and validate the plan table and settlement settings from YAML.

    Args:
        config_path: Path to config file. Defaults to config/cover_config.yml
            (or COVER_CONFIG_PATH when set)

    Returns:
        Validated CoverConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValidationError: If config doesn't match schema
    """
    if config_path is None:
        config_path = default_config_path()

    if not config_path.exists():
        raise FileNotFoundError(f"Cover config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    try:
        config = CoverConfig(**data)
    except ValidationError as e:
        logger.error("Cover config validation failed: %s", e)
        raise

    logger.info("Loaded cover config from %s", config_path)
    return config
