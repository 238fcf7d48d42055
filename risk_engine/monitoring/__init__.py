"""Monitoring package -- risk and market alert evaluation.

Provides:
- AlertEngine: Evaluates alert rules with per-rule-key cooldown and history
- AlertRule: Configurable alert rule dataclass
- default_rules: 10 pre-defined position and market alert rules
"""

from risk_engine.monitoring.alert_manager import (
    Alert,
    AlertEngine,
    AlertNotifier,
    LoggingNotifier,
)
from risk_engine.monitoring.alert_rules import (
    AlertConfig,
    AlertRule,
    AlertSignals,
    MarketAlertThresholds,
    MarketSignals,
    default_rules,
)

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertEngine",
    "AlertNotifier",
    "AlertRule",
    "AlertSignals",
    "LoggingNotifier",
    "MarketAlertThresholds",
    "MarketSignals",
    "default_rules",
]
