"""Alert rule definitions for portfolio risk and market signal monitoring.

Provides 10 alert rules: four position-level risk rules (VaR breach,
volatility spike, drawdown warning, concentration risk) evaluated per
position against the owner's AlertConfig, and six market-signal rules
(exchange flow, funding rate, sentiment, derivatives, volume, volatility)
evaluated against MarketAlertThresholds.

Each rule has a ``check_fn`` that receives its subject (a Position or the
MarketSignals) plus a RuleContext and returns the RuleHits that breached.
Cooldown deduplication is the AlertEngine's job, not the rules'.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Callable

from risk_engine.core.enums import AlertCategory, AlertType, Severity
from risk_engine.core.exceptions import ValidationError
from risk_engine.core.models import Position, ensure_finite

# ---------------------------------------------------------------------------
# Configuration and inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlertConfig:
    """Per-owner risk alert thresholds, all in percent.

    Attributes:
        var_threshold_pct: 95% VaR as % of position value.
        volatility_threshold_pct: Annualized volatility in %.
        drawdown_threshold_pct: Max drawdown in %.
        concentration_threshold_pct: Position weight in % of portfolio.
        enabled: Master switch; a disabled config produces no alerts.
    """

    var_threshold_pct: float = 5.0
    volatility_threshold_pct: float = 30.0
    drawdown_threshold_pct: float = 15.0
    concentration_threshold_pct: float = 40.0
    enabled: bool = True

    def __post_init__(self) -> None:
        for name in (
            "var_threshold_pct",
            "volatility_threshold_pct",
            "drawdown_threshold_pct",
            "concentration_threshold_pct",
        ):
            if ensure_finite(name, getattr(self, name)) <= 0:
                raise ValidationError(f"{name} must be positive")

    def to_dict(self) -> dict[str, Any]:
        return {
            "varThresholdPct": self.var_threshold_pct,
            "volatilityThresholdPct": self.volatility_threshold_pct,
            "drawdownThresholdPct": self.drawdown_threshold_pct,
            "concentrationThresholdPct": self.concentration_threshold_pct,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class MarketAlertThresholds:
    """Thresholds for market-signal rules."""

    exchange_inflow: float = 50_000.0
    exchange_inflow_spike_pct: float = 200.0
    funding_rate_high: float = 0.001  # +0.1% per 8h
    funding_rate_low: float = -0.0005  # -0.05% per 8h
    fear_greed_extreme_low: float = 10.0
    fear_greed_extreme_high: float = 90.0
    open_interest_high_fraction: float = 0.95
    liquidation_volume: float = 100_000_000.0
    volume_spike_pct: float = 300.0
    volume_drop_pct: float = 70.0
    price_volatility_pct: float = 15.0


@dataclass(frozen=True)
class MarketSignals:
    """Raw market readings for one asset. Absent readings are None."""

    exchange_inflow: float | None = None
    previous_exchange_inflow: float | None = None
    funding_rate: float | None = None
    fear_greed_index: float | None = None
    open_interest: float | None = None
    liquidation_volume: float | None = None
    transaction_volume: float | None = None
    previous_transaction_volume: float | None = None
    price_change_24h: float | None = None


@dataclass
class AlertSignals:
    """Everything one processing cycle evaluates.

    Attributes:
        positions: Positions with their latest risk metrics. Raw mappings
            are accepted and validated by the engine.
        market: Market readings for ``market_asset_id``.
        market_asset_id: Asset the market readings refer to.
    """

    positions: Sequence[Position | Mapping[str, Any]] = field(default_factory=list)
    market: MarketSignals | None = None
    market_asset_id: str | None = None


@dataclass(frozen=True)
class RuleHit:
    """A breached rule, before cooldown filtering turns it into an Alert."""

    category: AlertCategory
    type: AlertType
    severity: Severity
    title: str
    message: str
    threshold: float
    current_value: float
    asset_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class RuleContext:
    """Inputs shared by all rules in one cycle."""

    config: AlertConfig
    thresholds: MarketAlertThresholds
    escalation_ratio: float = 1.5
    total_value: float = 0.0
    asset_id: str | None = None
    historical_highs: dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Severity helpers
# ---------------------------------------------------------------------------

_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


def escalate(base: Severity, ratio: float, escalation_ratio: float) -> Severity:
    """Raise ``base`` one tier when magnitude/threshold exceeds ``escalation_ratio``."""
    if ratio <= escalation_ratio:
        return base
    index = _SEVERITY_ORDER.index(base)
    return _SEVERITY_ORDER[min(index + 1, len(_SEVERITY_ORDER) - 1)]


def type_for_severity(severity: Severity) -> AlertType:
    if severity == Severity.CRITICAL:
        return AlertType.CRITICAL
    if severity == Severity.LOW:
        return AlertType.INFO
    return AlertType.WARNING


# ---------------------------------------------------------------------------
# AlertRule dataclass
# ---------------------------------------------------------------------------


@dataclass
class AlertRule:
    """A single evaluatable alert rule.

    Attributes:
        rule_id: Unique identifier (e.g. ``"VAR_BREACH"``).
        name: Human-readable rule name.
        category: Category of the alerts it produces.
        scope: ``"position"`` (called once per position) or ``"market"``.
        requires_metric: Position rules that need a RiskMetric; positions
            without one are skipped for this rule.
        escalation_ratio: Rule-specific escalation ratio; None uses the
            engine default.
        enabled: Runtime toggle (default ``True``).
        check_fn: ``(subject, ctx) -> list[RuleHit]``.
    """

    rule_id: str
    name: str
    category: AlertCategory
    scope: str
    requires_metric: bool = False
    escalation_ratio: float | None = None
    enabled: bool = True
    check_fn: Callable[[Any, RuleContext], list[RuleHit]] = field(
        default=lambda subject, ctx: []
    )

    def evaluate(self, subject: Any, ctx: RuleContext) -> list[RuleHit]:
        if self.escalation_ratio is not None:
            ctx = RuleContext(
                config=ctx.config,
                thresholds=ctx.thresholds,
                escalation_ratio=self.escalation_ratio,
                total_value=ctx.total_value,
                asset_id=ctx.asset_id,
                historical_highs=ctx.historical_highs,
            )
        return self.check_fn(subject, ctx)


# ---------------------------------------------------------------------------
# Position check functions
# ---------------------------------------------------------------------------


def _position_hit(
    position: Position,
    category: AlertCategory,
    severity: Severity,
    title: str,
    message: str,
    threshold: float,
    current_value: float,
    metadata: dict[str, Any],
) -> list[RuleHit]:
    return [
        RuleHit(
            category=category,
            type=type_for_severity(severity),
            severity=severity,
            title=title,
            message=message,
            threshold=threshold,
            current_value=current_value,
            asset_id=position.asset_id,
            metadata=metadata,
        )
    ]


def _check_var_breach(position: Position, ctx: RuleContext) -> list[RuleHit]:
    """Fire when 95% VaR exceeds the configured share of position value."""
    metric = position.risk_metric
    value = position.value
    if metric is None or not metric.var95 or value <= 0:
        return []
    threshold = ctx.config.var_threshold_pct
    var_pct = metric.var95 / value * 100.0
    if var_pct <= threshold:
        return []
    severity = escalate(Severity.HIGH, var_pct / threshold, ctx.escalation_ratio)
    return _position_hit(
        position,
        AlertCategory.VAR_BREACH,
        severity,
        "VaR Breach Detected",
        f"Value at Risk for {position.asset_id} exceeds threshold: {metric.var95:,.2f}",
        threshold,
        var_pct,
        {"var_level": metric.var95},
    )


def _check_volatility_spike(position: Position, ctx: RuleContext) -> list[RuleHit]:
    """Fire when annualized volatility (in %) exceeds threshold."""
    metric = position.risk_metric
    if metric is None or not metric.volatility:
        return []
    threshold = ctx.config.volatility_threshold_pct
    vol_pct = metric.volatility * 100.0
    if vol_pct <= threshold:
        return []
    severity = escalate(Severity.MEDIUM, vol_pct / threshold, ctx.escalation_ratio)
    return _position_hit(
        position,
        AlertCategory.VOLATILITY_SPIKE,
        severity,
        "High Volatility Detected",
        f"{position.asset_id} volatility is elevated: {vol_pct:.2f}%",
        threshold,
        vol_pct,
        {"volatility_level": vol_pct},
    )


def _check_drawdown_warning(position: Position, ctx: RuleContext) -> list[RuleHit]:
    """Fire when max drawdown (in %) exceeds threshold."""
    metric = position.risk_metric
    if metric is None or not metric.max_drawdown:
        return []
    threshold = ctx.config.drawdown_threshold_pct
    dd_pct = abs(metric.max_drawdown) * 100.0
    if dd_pct <= threshold:
        return []
    severity = escalate(Severity.MEDIUM, dd_pct / threshold, ctx.escalation_ratio)
    return _position_hit(
        position,
        AlertCategory.DRAWDOWN_WARNING,
        severity,
        "Significant Drawdown Detected",
        f"{position.asset_id} is experiencing significant drawdown: {dd_pct:.2f}%",
        threshold,
        dd_pct,
        {"drawdown_level": dd_pct},
    )


def _check_concentration(position: Position, ctx: RuleContext) -> list[RuleHit]:
    """Fire when the position's weight in the portfolio exceeds threshold."""
    if ctx.total_value <= 0:
        return []
    threshold = ctx.config.concentration_threshold_pct
    weight_pct = position.value / ctx.total_value * 100.0
    if weight_pct <= threshold:
        return []
    severity = escalate(Severity.MEDIUM, weight_pct / threshold, ctx.escalation_ratio)
    return _position_hit(
        position,
        AlertCategory.CONCENTRATION_RISK,
        severity,
        "High Concentration Risk",
        f"{position.asset_id} represents {weight_pct:.1f}% of the portfolio",
        threshold,
        weight_pct,
        {"concentration_level": weight_pct},
    )


# ---------------------------------------------------------------------------
# Market check functions
# ---------------------------------------------------------------------------


def _market_hit(ctx: RuleContext, **kwargs: Any) -> RuleHit:
    return RuleHit(asset_id=ctx.asset_id, **kwargs)


def _check_exchange_flow(market: MarketSignals, ctx: RuleContext) -> list[RuleHit]:
    """Large absolute inflow first; otherwise a percentage spike vs previous period."""
    inflow = market.exchange_inflow
    if not inflow:
        return []
    th = ctx.thresholds
    if inflow > th.exchange_inflow:
        return [
            _market_hit(
                ctx,
                category=AlertCategory.EXCHANGE_FLOW,
                type=AlertType.CRITICAL,
                severity=escalate(Severity.HIGH, inflow / th.exchange_inflow, ctx.escalation_ratio),
                title="Large Exchange Inflow Detected",
                message=(
                    f"Exchange inflow of {inflow:,.0f} detected, indicating potential "
                    f"selling pressure."
                ),
                threshold=th.exchange_inflow,
                current_value=inflow,
                metadata={"exchange_inflow": inflow},
            )
        ]
    previous = market.previous_exchange_inflow
    if not previous:
        return []
    increase_pct = (inflow / previous - 1.0) * 100.0
    if increase_pct > th.exchange_inflow_spike_pct:
        return [
            _market_hit(
                ctx,
                category=AlertCategory.EXCHANGE_FLOW,
                type=AlertType.WARNING,
                severity=escalate(
                    Severity.MEDIUM,
                    increase_pct / th.exchange_inflow_spike_pct,
                    ctx.escalation_ratio,
                ),
                title="Exchange Inflow Spike",
                message=f"Exchange inflow increased by {increase_pct:.1f}% compared to previous period.",
                threshold=th.exchange_inflow_spike_pct,
                current_value=increase_pct,
                metadata={"exchange_inflow": inflow, "percentage_increase": increase_pct},
            )
        ]
    return []


def _check_funding_rate(market: MarketSignals, ctx: RuleContext) -> list[RuleHit]:
    """Fire on funding above the high or below the low threshold."""
    rate = market.funding_rate
    if rate is None:
        return []
    th = ctx.thresholds
    if rate > th.funding_rate_high:
        threshold, title, side = th.funding_rate_high, "High Funding Rate Detected", "long"
    elif rate < th.funding_rate_low:
        threshold, title, side = th.funding_rate_low, "Low Funding Rate Detected", "short"
    else:
        return []
    return [
        _market_hit(
            ctx,
            category=AlertCategory.FUNDING_RATE,
            type=AlertType.WARNING,
            severity=escalate(Severity.MEDIUM, rate / threshold, ctx.escalation_ratio),
            title=title,
            message=(
                f"Funding rate at {rate * 100:.3f}% indicates strong {side} pressure "
                f"and potential squeeze risk."
            ),
            threshold=threshold,
            current_value=rate,
            metadata={"funding_rate": rate},
        )
    ]


def _check_sentiment(market: MarketSignals, ctx: RuleContext) -> list[RuleHit]:
    """Fire on extreme fear (INFO) or extreme greed (WARNING)."""
    index = market.fear_greed_index
    if index is None:
        return []
    th = ctx.thresholds
    if index <= th.fear_greed_extreme_low:
        return [
            _market_hit(
                ctx,
                category=AlertCategory.SENTIMENT,
                type=AlertType.INFO,
                severity=Severity.LOW,
                title="Extreme Fear Detected",
                message=f"Fear & Greed Index at {index:.0f} indicates extreme market fear.",
                threshold=th.fear_greed_extreme_low,
                current_value=index,
                metadata={"fear_greed_index": index},
            )
        ]
    if index >= th.fear_greed_extreme_high:
        return [
            _market_hit(
                ctx,
                category=AlertCategory.SENTIMENT,
                type=AlertType.WARNING,
                severity=Severity.MEDIUM,
                title="Extreme Greed Detected",
                message=f"Fear & Greed Index at {index:.0f} indicates extreme market greed.",
                threshold=th.fear_greed_extreme_high,
                current_value=index,
                metadata={"fear_greed_index": index},
            )
        ]
    return []


def _check_derivatives(market: MarketSignals, ctx: RuleContext) -> list[RuleHit]:
    """Open interest near its historical high, and large liquidations."""
    th = ctx.thresholds
    hits: list[RuleHit] = []

    open_interest = market.open_interest
    high = ctx.historical_highs.get("open_interest")
    if open_interest and high and open_interest > high * th.open_interest_high_fraction:
        hits.append(
            _market_hit(
                ctx,
                category=AlertCategory.DERIVATIVES,
                type=AlertType.WARNING,
                severity=Severity.MEDIUM,
                title="High Open Interest Detected",
                message=(
                    f"Open interest at {open_interest / 1e9:.1f}B is near historical highs "
                    f"- increased volatility risk."
                ),
                threshold=high * th.open_interest_high_fraction,
                current_value=open_interest,
                metadata={
                    "open_interest": open_interest,
                    "historical_high": high,
                    "percentage_of_high": open_interest / high * 100.0,
                },
            )
        )

    liquidations = market.liquidation_volume
    if liquidations and liquidations > th.liquidation_volume:
        hits.append(
            _market_hit(
                ctx,
                category=AlertCategory.DERIVATIVES,
                type=AlertType.CRITICAL,
                severity=escalate(
                    Severity.HIGH, liquidations / th.liquidation_volume, ctx.escalation_ratio
                ),
                title="Large Liquidations Detected",
                message=f"Liquidations totaling {liquidations / 1e6:.1f}M detected - market stress indicator.",
                threshold=th.liquidation_volume,
                current_value=liquidations,
                metadata={"liquidation_volume": liquidations},
            )
        )
    return hits


def _check_volume(market: MarketSignals, ctx: RuleContext) -> list[RuleHit]:
    """Volume spike (INFO) or drop (WARNING) vs the previous period."""
    volume = market.transaction_volume
    previous = market.previous_transaction_volume
    if not volume or not previous:
        return []
    th = ctx.thresholds
    change_pct = (volume / previous - 1.0) * 100.0
    if change_pct > th.volume_spike_pct:
        return [
            _market_hit(
                ctx,
                category=AlertCategory.VOLUME,
                type=AlertType.INFO,
                severity=Severity.LOW,
                title="Volume Spike Detected",
                message=f"Volume increased by {change_pct:.1f}% - indicating strong market interest.",
                threshold=th.volume_spike_pct,
                current_value=change_pct,
                metadata={"transaction_volume": volume, "percentage_change": change_pct},
            )
        ]
    if change_pct < -th.volume_drop_pct:
        return [
            _market_hit(
                ctx,
                category=AlertCategory.VOLUME,
                type=AlertType.WARNING,
                severity=Severity.MEDIUM,
                title="Volume Drop Detected",
                message=f"Volume decreased by {abs(change_pct):.1f}% - indicating waning interest.",
                threshold=th.volume_drop_pct,
                current_value=change_pct,
                metadata={"transaction_volume": volume, "percentage_change": change_pct},
            )
        ]
    return []


def _check_price_volatility(market: MarketSignals, ctx: RuleContext) -> list[RuleHit]:
    """Fire when the absolute 24h price change exceeds threshold (percent)."""
    change = market.price_change_24h
    if change is None:
        return []
    th = ctx.thresholds
    magnitude = abs(change)
    if magnitude <= th.price_volatility_pct:
        return []
    return [
        _market_hit(
            ctx,
            category=AlertCategory.VOLATILITY,
            type=AlertType.WARNING,
            severity=escalate(
                Severity.MEDIUM, magnitude / th.price_volatility_pct, ctx.escalation_ratio
            ),
            title="High Volatility Detected",
            message=f"24h price change of {change:.2f}% indicates high market volatility.",
            threshold=th.price_volatility_pct,
            current_value=magnitude,
            metadata={"price_change_24h": change},
        )
    ]


# ---------------------------------------------------------------------------
# Default rule set
# ---------------------------------------------------------------------------


def default_rules() -> list[AlertRule]:
    """Fresh copies of the default rules (rules carry a mutable ``enabled`` flag)."""
    return [
        AlertRule(
            rule_id="VAR_BREACH",
            name="VaR Breach (95%)",
            category=AlertCategory.VAR_BREACH,
            scope="position",
            requires_metric=True,
            escalation_ratio=2.0,
            check_fn=_check_var_breach,
        ),
        AlertRule(
            rule_id="VOLATILITY_SPIKE",
            name="Volatility Spike",
            category=AlertCategory.VOLATILITY_SPIKE,
            scope="position",
            requires_metric=True,
            check_fn=_check_volatility_spike,
        ),
        AlertRule(
            rule_id="DRAWDOWN_WARNING",
            name="Drawdown Warning",
            category=AlertCategory.DRAWDOWN_WARNING,
            scope="position",
            requires_metric=True,
            check_fn=_check_drawdown_warning,
        ),
        AlertRule(
            rule_id="CONCENTRATION_RISK",
            name="Concentration Risk",
            category=AlertCategory.CONCENTRATION_RISK,
            scope="position",
            escalation_ratio=1.25,
            check_fn=_check_concentration,
        ),
        AlertRule(
            rule_id="EXCHANGE_FLOW",
            name="Exchange Flow",
            category=AlertCategory.EXCHANGE_FLOW,
            scope="market",
            check_fn=_check_exchange_flow,
        ),
        AlertRule(
            rule_id="FUNDING_RATE",
            name="Funding Rate",
            category=AlertCategory.FUNDING_RATE,
            scope="market",
            check_fn=_check_funding_rate,
        ),
        AlertRule(
            rule_id="SENTIMENT",
            name="Sentiment Extreme",
            category=AlertCategory.SENTIMENT,
            scope="market",
            check_fn=_check_sentiment,
        ),
        AlertRule(
            rule_id="DERIVATIVES",
            name="Derivatives Stress",
            category=AlertCategory.DERIVATIVES,
            scope="market",
            check_fn=_check_derivatives,
        ),
        AlertRule(
            rule_id="VOLUME",
            name="Volume Anomaly",
            category=AlertCategory.VOLUME,
            scope="market",
            check_fn=_check_volume,
        ),
        AlertRule(
            rule_id="PRICE_VOLATILITY",
            name="Price Volatility",
            category=AlertCategory.VOLATILITY,
            scope="market",
            check_fn=_check_price_volatility,
        ),
    ]
