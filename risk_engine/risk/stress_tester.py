"""Scenario stress testing engine.

Defines 5 market stress scenarios (2008 crash, 2022 crypto winter, black
swan, regulatory crackdown, exchange failure) and applies their market,
volatility and liquidity shocks to portfolio positions to estimate loss,
VaR breach, recovery time and a qualitative risk level per scenario.

The volatility and liquidity weights and the drawdown multiplier are
heuristic calibration knobs, exposed through StressTestConfig.

Stress tests are advisory only -- they report results but do not change
positions. All functions are pure computation.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

import structlog

from risk_engine.core.enums import RiskLevel, ScenarioSeverity
from risk_engine.core.exceptions import UnknownScenarioError, ValidationError
from risk_engine.core.models import PortfolioSnapshot, Position, ensure_finite

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StressScenario:
    """Definition of a stress scenario.

    All shocks are percentages: ``market_shock_pct=-50`` is a 50% price drop.

    Attributes:
        id: Stable identifier used in requests.
        name: Human-readable scenario name.
        description: Brief narrative of the event.
        severity: Scenario severity, scales recovery time.
        probability: Estimated probability in (0, 1].
        market_shock_pct: Price move applied to every position.
        volatility_increase_pct: Volatility expansion.
        correlation_breakdown_pct: Correlation stress (informational).
        liquidity_shock_pct: Liquidity move, partially realized as loss.
    """

    id: str
    name: str
    description: str
    severity: ScenarioSeverity
    probability: float
    market_shock_pct: float = 0.0
    volatility_increase_pct: float = 0.0
    correlation_breakdown_pct: float = 0.0
    liquidity_shock_pct: float = 0.0

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("Stress scenario id is required")
        if not 0.0 < self.probability <= 1.0:
            raise ValidationError(
                f"Scenario {self.id}: probability must be in (0, 1], got {self.probability}"
            )
        for name in (
            "market_shock_pct",
            "volatility_increase_pct",
            "correlation_breakdown_pct",
            "liquidity_shock_pct",
        ):
            ensure_finite(name, getattr(self, name))


@dataclass
class StressTestResult:
    """Result of applying a stress scenario to a portfolio.

    Attributes:
        scenario_id: Id of the scenario that was applied.
        scenario_name: Name of the scenario.
        portfolio_value_before: Portfolio value before the shock.
        portfolio_value_after: Portfolio value after the shock.
        loss_amount: Absolute value of the total shocked P&L.
        loss_percentage: Signed P&L as a percent of value before.
        var_breach: Whether the loss exceeds the summed position VaR.
        max_drawdown: Amplified drawdown estimate, percent.
        recovery_time_days: Estimated days to recover.
        risk_level: Qualitative risk level.
        timestamp: When the stress test was computed.
    """

    scenario_id: str
    scenario_name: str
    portfolio_value_before: float
    portfolio_value_after: float
    loss_amount: float
    loss_percentage: float
    var_breach: bool
    max_drawdown: float
    recovery_time_days: int
    risk_level: RiskLevel
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "scenarioId": self.scenario_id,
            "scenarioName": self.scenario_name,
            "portfolioValueBefore": self.portfolio_value_before,
            "portfolioValueAfter": self.portfolio_value_after,
            "lossAmount": self.loss_amount,
            "lossPercentage": self.loss_percentage,
            "varBreach": self.var_breach,
            "maxDrawdown": self.max_drawdown,
            "recoveryTimeDays": self.recovery_time_days,
            "riskLevel": self.risk_level.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class StressTestConfig:
    """Heuristic calibration for stress loss estimation.

    Attributes:
        volatility_weight: Share of the volatility impact added to the loss.
        liquidity_weight: Share of the liquidity shock realized as loss.
        drawdown_multiplier: Drawdown amplification over the immediate loss.
        recovery_buckets: ``(max_loss_pct_exclusive, days)`` pairs, ascending;
            losses beyond the last bucket use ``recovery_days_max``.
        recovery_days_max: Recovery days for the largest losses.
        severity_recovery_factors: Recovery time multiplier per severity.
        strict_scenarios: Reject unknown scenario ids instead of skipping them.
    """

    volatility_weight: float = 0.5
    liquidity_weight: float = 0.3
    drawdown_multiplier: float = 1.2
    recovery_buckets: tuple[tuple[float, int], ...] = ((10.0, 30), (25.0, 90), (50.0, 180))
    recovery_days_max: int = 365
    severity_recovery_factors: dict[ScenarioSeverity, float] = field(
        default_factory=lambda: {
            ScenarioSeverity.EXTREME: 1.5,
            ScenarioSeverity.HIGH: 1.2,
        }
    )
    strict_scenarios: bool = False

    @classmethod
    def from_settings(cls, settings) -> StressTestConfig:
        return cls(
            volatility_weight=settings.stress_volatility_weight,
            liquidity_weight=settings.stress_liquidity_weight,
            drawdown_multiplier=settings.stress_drawdown_multiplier,
            strict_scenarios=settings.stress_strict_scenarios,
        )


# ---------------------------------------------------------------------------
# Default scenarios
# ---------------------------------------------------------------------------


DEFAULT_SCENARIOS: list[StressScenario] = [
    StressScenario(
        id="market_crash_2008",
        name="2008 Market Crash",
        description="Global financial crisis similar to 2008",
        severity=ScenarioSeverity.EXTREME,
        probability=0.01,
        market_shock_pct=-50,
        volatility_increase_pct=300,
        correlation_breakdown_pct=80,
        liquidity_shock_pct=-70,
    ),
    StressScenario(
        id="crypto_winter_2022",
        name="Crypto Winter 2022",
        description="Extended crypto bear market",
        severity=ScenarioSeverity.HIGH,
        probability=0.05,
        market_shock_pct=-70,
        volatility_increase_pct=200,
        correlation_breakdown_pct=60,
        liquidity_shock_pct=-50,
    ),
    StressScenario(
        id="black_swan_event",
        name="Black Swan Event",
        description="Unprecedented market event",
        severity=ScenarioSeverity.EXTREME,
        probability=0.001,
        market_shock_pct=-80,
        volatility_increase_pct=500,
        correlation_breakdown_pct=90,
        liquidity_shock_pct=-90,
    ),
    StressScenario(
        id="regulatory_crackdown",
        name="Regulatory Crackdown",
        description="Major regulatory restrictions",
        severity=ScenarioSeverity.HIGH,
        probability=0.02,
        market_shock_pct=-40,
        volatility_increase_pct=150,
        correlation_breakdown_pct=70,
        liquidity_shock_pct=-60,
    ),
    StressScenario(
        id="exchange_failure",
        name="Major Exchange Failure",
        description="Collapse of a major exchange",
        severity=ScenarioSeverity.MEDIUM,
        probability=0.03,
        market_shock_pct=-30,
        volatility_increase_pct=100,
        correlation_breakdown_pct=50,
        liquidity_shock_pct=-80,
    ),
]


# ---------------------------------------------------------------------------
# StressTester class
# ---------------------------------------------------------------------------


def classify_stress_risk(loss_percentage: float, var_breach: bool) -> RiskLevel:
    """CRITICAL beyond -50% or on VaR breach, HIGH beyond -25%, MEDIUM beyond -10%."""
    if loss_percentage < -50 or var_breach:
        return RiskLevel.CRITICAL
    if loss_percentage < -25:
        return RiskLevel.HIGH
    if loss_percentage < -10:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class StressTester:
    """Runs stress scenarios against portfolio positions.

    Args:
        scenarios: Available scenarios. Defaults to DEFAULT_SCENARIOS.
        config: Heuristic calibration. Defaults to StressTestConfig().
    """

    def __init__(
        self,
        scenarios: list[StressScenario] | None = None,
        config: StressTestConfig | None = None,
    ) -> None:
        scenarios = scenarios if scenarios is not None else list(DEFAULT_SCENARIOS)
        self.scenarios: dict[str, StressScenario] = {s.id: s for s in scenarios}
        self.config = config or StressTestConfig()

    def get_scenario(self, scenario_id: str) -> StressScenario | None:
        return self.scenarios.get(scenario_id)

    def position_loss(self, position: Position, scenario: StressScenario) -> float:
        """Signed P&L of one position under a scenario (negative = loss)."""
        cfg = self.config
        value = position.value
        loss = value * (scenario.market_shock_pct / 100.0)

        vol_pct = position.effective_volatility_pct
        if vol_pct:
            vol_impact = value * (vol_pct / 100.0) * (scenario.volatility_increase_pct / 100.0)
            loss += cfg.volatility_weight * abs(vol_impact)

        loss += cfg.liquidity_weight * value * (scenario.liquidity_shock_pct / 100.0)
        return loss

    def recovery_time_days(self, loss_percentage: float, severity: ScenarioSeverity) -> int:
        magnitude = abs(loss_percentage)
        days: float = self.config.recovery_days_max
        for limit, bucket_days in self.config.recovery_buckets:
            if magnitude < limit:
                days = bucket_days
                break
        days *= self.config.severity_recovery_factors.get(severity, 1.0)
        return int(round(days))

    def run_scenario(
        self,
        positions: Sequence[Position],
        scenario: StressScenario,
    ) -> StressTestResult:
        """Apply a single stress scenario to the portfolio.

        Raises:
            ValidationError: If the portfolio is empty or has no positive value.
        """
        snapshot = PortfolioSnapshot.from_positions(positions)
        if not snapshot.positions:
            raise ValidationError("Cannot stress test an empty portfolio")
        value_before = snapshot.total_value
        if value_before <= 0:
            raise ValidationError("Portfolio value must be positive for stress testing")

        total_loss = sum(self.position_loss(p, scenario) for p in snapshot.positions)
        total_loss = ensure_finite("total_loss", total_loss)
        portfolio_var = sum(p.effective_var95 for p in snapshot.positions)

        loss_percentage = total_loss / value_before * 100.0
        var_breach = abs(total_loss) > portfolio_var

        return StressTestResult(
            scenario_id=scenario.id,
            scenario_name=scenario.name,
            portfolio_value_before=value_before,
            portfolio_value_after=value_before + total_loss,
            loss_amount=abs(total_loss),
            loss_percentage=loss_percentage,
            var_breach=var_breach,
            max_drawdown=abs(loss_percentage) * self.config.drawdown_multiplier,
            recovery_time_days=self.recovery_time_days(loss_percentage, scenario.severity),
            risk_level=classify_stress_risk(loss_percentage, var_breach),
        )

    def run(
        self,
        positions: Sequence[Position],
        scenario_ids: Sequence[str],
    ) -> list[StressTestResult]:
        """Run the requested scenarios, in request order.

        Each scenario runs once even if its id is repeated. Unknown ids are
        skipped unless ``config.strict_scenarios`` is set.

        Raises:
            UnknownScenarioError: In strict mode, if any id is unknown.
        """
        scenario_ids = list(dict.fromkeys(scenario_ids))
        unknown = [sid for sid in scenario_ids if sid not in self.scenarios]
        if unknown:
            if self.config.strict_scenarios:
                raise UnknownScenarioError(unknown)
            logger.info("stress_test_unknown_scenarios_skipped", scenario_ids=unknown)

        selected = [self.scenarios[sid] for sid in scenario_ids if sid in self.scenarios]
        results = [self.run_scenario(positions, s) for s in selected]

        logger.info(
            "stress_test_completed",
            n_requested=len(scenario_ids),
            n_tested=len(results),
            n_breaches=sum(1 for r in results if r.var_breach),
        )
        return results

    def run_all(self, positions: Sequence[Position]) -> list[StressTestResult]:
        """Run every configured scenario against the portfolio."""
        return self.run(positions, list(self.scenarios))

    def worst_case(self, results: list[StressTestResult]) -> StressTestResult:
        """Return the result with the most negative loss percentage.

        Raises:
            ValueError: If results list is empty.
        """
        if not results:
            raise ValueError("Cannot determine worst case from empty results list")
        return min(results, key=lambda r: r.loss_percentage)
