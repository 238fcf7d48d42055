"""Shared enumerations used across the risk engine.

All enums use the (str, Enum) mixin pattern so their values are
serializable strings, compatible with database storage and JSON output.
"""

from enum import Enum


class RiskLevel(str, Enum):
    """Qualitative risk classification of an asset, portfolio or scenario."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class Severity(str, Enum):
    """Alert severity tier, ordered from least to most severe."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class ScenarioSeverity(str, Enum):
    """Severity of a stress scenario."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class AlertType(str, Enum):
    """Alert type. Part of the cooldown rule key."""

    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AlertCategory(str, Enum):
    """What an alert is about."""

    VAR_BREACH = "VAR_BREACH"
    VOLATILITY_SPIKE = "VOLATILITY_SPIKE"
    DRAWDOWN_WARNING = "DRAWDOWN_WARNING"
    CONCENTRATION_RISK = "CONCENTRATION_RISK"
    LIQUIDITY_RISK = "LIQUIDITY_RISK"
    EXCHANGE_FLOW = "EXCHANGE_FLOW"
    FUNDING_RATE = "FUNDING_RATE"
    SENTIMENT = "SENTIMENT"
    DERIVATIVES = "DERIVATIVES"
    VOLUME = "VOLUME"
    VOLATILITY = "VOLATILITY"
    SYSTEM = "SYSTEM"


class RiskTrend(str, Enum):
    """Direction of the risk score relative to the previous snapshot."""

    INCREASING = "INCREASING"
    DECREASING = "DECREASING"
    STABLE = "STABLE"


class VaRMethod(str, Enum):
    """VaR estimation methodology."""

    HISTORICAL = "Historical"
    PARAMETRIC = "Parametric"
    MONTE_CARLO = "MonteCarlo"
