"""Risk computation package -- VaR, risk metrics, aggregation, stress testing and reporting."""

from risk_engine.risk.aggregator import (
    AggregationConfig,
    PortfolioRiskSummary,
    RiskAggregator,
)
from risk_engine.risk.risk_metrics import DrawdownResult, build_risk_metric
from risk_engine.risk.risk_monitor import RiskMonitor, RiskReport
from risk_engine.risk.stress_tester import (
    DEFAULT_SCENARIOS,
    StressScenario,
    StressTestConfig,
    StressTester,
    StressTestResult,
)
from risk_engine.risk.var_calculator import (
    ExpectedShortfallResult,
    VaRCalculator,
    VaRComparison,
    VaRInput,
    VaRResult,
)

__all__ = [
    "AggregationConfig",
    "DEFAULT_SCENARIOS",
    "DrawdownResult",
    "ExpectedShortfallResult",
    "PortfolioRiskSummary",
    "RiskAggregator",
    "RiskMonitor",
    "RiskReport",
    "StressScenario",
    "StressTestConfig",
    "StressTestResult",
    "StressTester",
    "VaRCalculator",
    "VaRComparison",
    "VaRInput",
    "VaRResult",
    "build_risk_metric",
]
