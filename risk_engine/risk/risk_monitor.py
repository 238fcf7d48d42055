"""Aggregate risk monitoring and reporting.

RiskMonitor is the single entry point that produces a portfolio risk
report. It builds per-asset RiskMetrics from return series, aggregates them
into a PortfolioRiskSummary, runs stress scenarios and hands the result to
the AlertEngine, collecting everything in a RiskReport.

All functions are pure computation -- no I/O or database access.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

import structlog

from risk_engine.core.config import settings as default_settings
from risk_engine.core.enums import RiskLevel
from risk_engine.core.models import Position, RiskMetric
from risk_engine.core.utils.logging_config import configure_logging
from risk_engine.monitoring.alert_manager import Alert, AlertEngine
from risk_engine.monitoring.alert_rules import AlertSignals, MarketSignals
from risk_engine.risk.aggregator import (
    AggregationConfig,
    PortfolioRiskSummary,
    RiskAggregator,
)
from risk_engine.risk.risk_metrics import TRADING_DAYS_PER_YEAR, build_risk_metric
from risk_engine.risk.stress_tester import StressTestConfig, StressTester, StressTestResult
from risk_engine.risk.var_calculator import VaRCalculator

logger = structlog.get_logger(__name__)

_LEVEL_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


@dataclass
class RiskReport:
    """Aggregate risk report combining all risk components.

    Attributes:
        owner_key: Owner the report (and its alerts) belong to.
        positions: Positions with freshly computed risk metrics attached.
        summary: Portfolio-level aggregation.
        stress_results: Stress test results, in scenario order.
        alerts: Alerts newly raised during this run.
        overall_risk_level: Worse of the summary level and the worst
            stress level, capped at HIGH when only stress is CRITICAL.
        timestamp: When the report was generated.
    """

    owner_key: str
    positions: list[Position]
    summary: PortfolioRiskSummary
    stress_results: list[StressTestResult]
    alerts: list[Alert]
    overall_risk_level: RiskLevel
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RiskMonitor:
    """Orchestrates all risk components into a single RiskReport.

    Args:
        var_calculator: VaR computation engine.
        aggregator: Portfolio aggregation.
        stress_tester: Stress scenario engine.
        alert_engine: Alert rule evaluation and history.
        risk_free_rate_annual: Annual risk-free rate for Sharpe ratios.
        trading_days_per_year: Periods per year used to annualize metrics.
    """

    def __init__(
        self,
        var_calculator: VaRCalculator | None = None,
        aggregator: RiskAggregator | None = None,
        stress_tester: StressTester | None = None,
        alert_engine: AlertEngine | None = None,
        risk_free_rate_annual: float = 0.02,
        trading_days_per_year: int = TRADING_DAYS_PER_YEAR,
    ) -> None:
        self.var_calculator = var_calculator or VaRCalculator()
        self.aggregator = aggregator or RiskAggregator()
        self.stress_tester = stress_tester or StressTester()
        self.alert_engine = alert_engine or AlertEngine()
        self.risk_free_rate_annual = risk_free_rate_annual
        self.trading_days_per_year = trading_days_per_year

    @classmethod
    def from_settings(cls, settings=None, **kwargs) -> RiskMonitor:
        """Build every component from ``Settings`` and configure logging."""
        settings = settings or default_settings
        configure_logging(settings.log_level)
        return cls(
            var_calculator=VaRCalculator.from_settings(settings),
            aggregator=RiskAggregator(AggregationConfig.from_settings(settings)),
            stress_tester=StressTester(config=StressTestConfig.from_settings(settings)),
            alert_engine=AlertEngine.from_settings(settings, **kwargs),
            risk_free_rate_annual=settings.risk_free_rate_annual,
            trading_days_per_year=settings.trading_days_per_year,
        )

    def attach_metrics(
        self,
        positions: Sequence[Position],
        returns_by_asset: Mapping[str, Sequence[float]],
    ) -> list[Position]:
        """Return copies of ``positions`` with metrics built from their returns.

        Positions without a return series keep whatever metric they carry;
        an existing metric is used as the previous snapshot for the trend.
        """
        updated: list[Position] = []
        for position in positions:
            returns = returns_by_asset.get(position.asset_id)
            if returns is None:
                updated.append(position)
                continue
            metric: RiskMetric = build_risk_metric(
                position.asset_id,
                returns,
                position.value,
                previous=position.risk_metric,
                calculator=self.var_calculator,
                risk_free_rate_annual=self.risk_free_rate_annual,
                trading_days_per_year=self.trading_days_per_year,
            )
            updated.append(replace(position, risk_metric=metric))
        return updated

    def generate_report(
        self,
        owner_key: str,
        positions: Sequence[Position],
        returns_by_asset: Mapping[str, Sequence[float]] | None = None,
        scenario_ids: Sequence[str] | None = None,
        market: MarketSignals | None = None,
        market_asset_id: str | None = None,
    ) -> RiskReport:
        """Generate a comprehensive risk report.

        Args:
            owner_key: Owner whose alert config and cooldowns apply.
            positions: Portfolio positions.
            returns_by_asset: Daily return series by asset id.
            scenario_ids: Scenarios to run; all configured ones when None.
            market: Market readings for the market-signal alert rules.
            market_asset_id: Asset the market readings refer to.

        Raises:
            ValidationError: If the portfolio is empty or has no positive value.
        """
        # Step 1: per-asset metrics
        enriched = self.attach_metrics(positions, returns_by_asset or {})

        # Step 2: aggregation
        summary = self.aggregator.aggregate(enriched)

        # Step 3: stress tests
        if scenario_ids is None:
            stress_results = self.stress_tester.run_all(enriched)
        else:
            stress_results = self.stress_tester.run(enriched, scenario_ids)

        # Step 4: alerts
        alerts = self.alert_engine.process_signals(
            owner_key,
            AlertSignals(positions=enriched, market=market, market_asset_id=market_asset_id),
        )

        # Step 5: overall risk level
        overall = self._classify_risk_level(summary, stress_results)

        logger.info(
            "risk_report_generated",
            owner_key=owner_key,
            portfolio_value=summary.total_value,
            overall_risk_level=overall.value,
            n_stress_scenarios=len(stress_results),
            n_alerts=len(alerts),
        )

        return RiskReport(
            owner_key=owner_key,
            positions=enriched,
            summary=summary,
            stress_results=stress_results,
            alerts=alerts,
            overall_risk_level=overall,
        )

    def format_report(self, report: RiskReport) -> str:
        """Format a RiskReport as plain text for terminal display.

        Sections: Portfolio Summary, Positions, Stress Test Results, Alerts.
        """
        lines: list[str] = []
        sep = "=" * 72
        summary = report.summary

        # Header
        lines.append(sep)
        lines.append(
            f"  RISK REPORT  |  {report.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}"
        )
        lines.append(
            f"  Risk Level: {report.overall_risk_level.value}  |  "
            f"Portfolio Value: {summary.total_value:,.2f}"
        )
        lines.append(sep)

        # Summary
        lines.append("")
        lines.append("  Portfolio Summary")
        lines.append("  " + "-" * 68)
        lines.append(f"  {'VaR 95%':<28} {summary.total_var95:>14,.2f}")
        lines.append(f"  {'VaR 99%':<28} {summary.total_var99:>14,.2f}")
        lines.append(f"  {'Volatility (ann.)':<28} {summary.portfolio_volatility:>13.2%}")
        lines.append(f"  {'Max Drawdown':<28} {summary.max_drawdown:>13.2%}")
        lines.append(f"  {'Sharpe Ratio':<28} {summary.sharpe_ratio:>14.2f}")
        lines.append(
            f"  {'Risk Score':<28} {summary.risk_score:>14.1f}  ({summary.risk_level.value})"
        )
        lines.append(f"  {'Diversification':<28} {summary.diversification_score:>14.1f}")
        if summary.positions_without_metrics:
            lines.append(
                f"  Missing metrics: {', '.join(summary.positions_without_metrics)}"
            )

        # Positions
        lines.append("")
        lines.append("  Positions")
        lines.append("  " + "-" * 68)
        lines.append(
            f"  {'Asset':<16} {'Value':>14} {'VaR 95%':>12} {'Vol':>8} {'Score':>8}"
        )
        lines.append("  " + "-" * 68)
        for p in report.positions:
            m = p.risk_metric
            if m is None:
                lines.append(f"  {p.asset_id:<16} {p.value:>14,.2f} {'n/a':>12}")
                continue
            lines.append(
                f"  {p.asset_id:<16} {p.value:>14,.2f} {m.var95:>12,.2f} "
                f"{m.volatility:>7.1%} {m.risk_score:>8.1f}"
            )

        # Stress Test Section
        lines.append("")
        lines.append("  Stress Test Results")
        lines.append("  " + "-" * 68)
        lines.append(
            f"  {'Scenario':<28} {'Loss':>14} {'Loss %':>9} {'Recovery':>9} {'Level':>8}"
        )
        lines.append("  " + "-" * 68)
        for sr in report.stress_results:
            lines.append(
                f"  {sr.scenario_name:<28} {sr.loss_amount:>14,.2f} "
                f"{sr.loss_percentage:>8.1f}% {sr.recovery_time_days:>8}d "
                f"{sr.risk_level.value:>8}"
            )

        # Alerts
        if report.alerts:
            lines.append("")
            lines.append("  Alerts")
            lines.append("  " + "-" * 68)
            for alert in report.alerts:
                target = f" [{alert.asset_id}]" if alert.asset_id else ""
                lines.append(f"  - {alert.severity.value:<8} {alert.title}{target}")

        lines.append("")
        lines.append(sep)

        return "\n".join(lines)

    @staticmethod
    def _classify_risk_level(
        summary: PortfolioRiskSummary,
        stress_results: list[StressTestResult],
    ) -> RiskLevel:
        """Overall level from the aggregated score and the stress outcomes.

        - The summary level is the floor.
        - A CRITICAL stress result lifts the level to at least HIGH.
        """
        level = summary.risk_level
        if any(r.risk_level == RiskLevel.CRITICAL for r in stress_results):
            level = max(level, RiskLevel.HIGH, key=_LEVEL_ORDER.index)
        return level
