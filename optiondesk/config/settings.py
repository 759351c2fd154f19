"""Application settings: config YAML profiles merged with .env overrides via Pydantic Settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_CONFIG_DIR = _PROJECT_ROOT / "config"


def _load_yaml(profile: str = "default") -> dict[str, Any]:
    """Load and merge YAML config files.

    Loads ``default.yaml`` first, then overlays the requested profile.
    """
    base: dict[str, Any] = {}
    default_path = _CONFIG_DIR / "default.yaml"
    if default_path.exists():
        with open(default_path) as f:
            base = yaml.safe_load(f) or {}

    if profile != "default":
        overlay_path = _CONFIG_DIR / f"{profile}.yaml"
        if overlay_path.exists():
            with open(overlay_path) as f:
                overlay = yaml.safe_load(f) or {}
            base = _deep_merge(base, overlay)
    return base


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (override wins)."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------

class BrokerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="POCKET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    name: str = "pocket_option"
    api_key: str = ""
    secret_key: str = ""
    account_id: str = ""
    payout: float = 0.85
    min_trade_amount: float = 1.0
    max_trade_amount: float = 1000.0
    auth_delay: float = 1.5
    connect_delay: float = 0.5
    account_delay: float = 0.8
    execution_delay: float = 0.8
    heartbeat_interval: float = 30.0
    reconnect_attempts: int = 5
    reconnect_delay: float = 5.0


class RiskSettingsConfig(BaseSettings):
    """Initial risk profile, used until the user saves their own."""

    max_position_size: float = 5.0
    daily_loss_limit: float = 100.0
    max_consecutive_losses: int = 3
    min_confidence: float = 65.0
    max_drawdown: float = 20.0
    risk_reward_ratio: float = 2.0
    stop_loss_enabled: bool = True
    take_profit_enabled: bool = True
    initial_balance: float = 1000.0
    apply_recommended: bool = True


class LearningSettings(BaseSettings):
    default_confidence: float = 60.0
    min_strategy_trades: int = 5
    min_recent_trades: int = 5
    min_condition_trades: int = 3
    recent_window: int = 20
    history_limit: int = 2000
    streak_limit: int = 50
    adapt_min_history: int = 20
    adapt_window: int = 50
    confidence_threshold: float = 70.0
    max_risk_per_trade: float = 5.0


class SimulatorSettings(BaseSettings):
    symbols: list[str] = ["EURUSD"]
    update_interval: float = 2.0
    analysis_every: int = 3
    execution_delay: float = 0.1
    seed: int | None = None


class StorageSettings(BaseSettings):
    path: str = "data/optiondesk.db"
    trading_state_ttl: float = 3600.0
    connection_state_ttl: float = 86400.0


class LoggingSettings(BaseSettings):
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Top-level application settings.

    Build order:
    1. Load ``config/default.yaml``
    2. Overlay profile YAML (e.g. ``demo.yaml``)
    3. Override with environment variables / ``.env``
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    broker: BrokerSettings = Field(default_factory=BrokerSettings)
    risk: RiskSettingsConfig = Field(default_factory=RiskSettingsConfig)
    learning: LearningSettings = Field(default_factory=LearningSettings)
    simulator: SimulatorSettings = Field(default_factory=SimulatorSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(profile: str = "default") -> Settings:
    """Create a ``Settings`` instance from YAML + env vars.

    Parameters
    ----------
    profile:
        Config profile name (maps to ``config/<profile>.yaml``).
        Use ``"demo"`` for fast timers and a fixed seed.
    """
    yaml_data = _load_yaml(profile)

    return Settings(
        broker=BrokerSettings(**(yaml_data.get("broker", {}))),
        risk=RiskSettingsConfig(**(yaml_data.get("risk", {}))),
        learning=LearningSettings(**(yaml_data.get("learning", {}))),
        simulator=SimulatorSettings(**(yaml_data.get("simulator", {}))),
        storage=StorageSettings(**(yaml_data.get("storage", {}))),
        logging=LoggingSettings(**(yaml_data.get("logging", {}))),
    )
