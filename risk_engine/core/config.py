"""Pydantic-settings configuration for the risk engine.

Loads tunable engine parameters from the environment (``RISK_ENGINE_*``) or
a .env file, with defaults matching the documented behavior. Component
configs (stress testing, alerting, aggregation) are frozen dataclasses built
from these settings via their ``from_settings()`` classmethods.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="RISK_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # VaR
    mc_simulations: int = Field(default=10_000, gt=0)
    mc_seed: int | None = None
    min_recommended_observations: int = Field(default=30, gt=0)
    trading_days_per_year: int = Field(default=252, gt=0)
    risk_free_rate_annual: float = 0.02

    # Aggregation
    diversification_points_per_position: float = 20.0
    diversification_cap: float = 100.0

    # Stress testing heuristics
    stress_volatility_weight: float = 0.5
    stress_liquidity_weight: float = 0.3
    stress_drawdown_multiplier: float = 1.2
    stress_strict_scenarios: bool = False

    # Alerting
    alert_cooldown_minutes: float = Field(default=30.0, ge=0)
    alert_retention_days: float = Field(default=7.0, gt=0)
    alert_max_history: int = Field(default=10_000, gt=0)
    alert_escalation_ratio: float = Field(default=1.5, gt=1.0)


# Singleton instance
settings = Settings()
