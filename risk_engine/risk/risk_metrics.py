"""Per-asset risk statistics derived from a return series.

Volatility, maximum drawdown, Sharpe ratio and beta, plus
``build_risk_metric`` which assembles a full RiskMetric snapshot from VaR,
Expected Shortfall and these statistics.

Short series degrade to documented defaults (0, STABLE, reduced
confidence) instead of raising. All functions are pure computation.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import structlog

from risk_engine.core.enums import RiskTrend
from risk_engine.core.models import (
    RiskMetric,
    ensure_finite,
    risk_level_from_score,
    validate_returns,
)
from risk_engine.risk.var_calculator import (
    MIN_RECOMMENDED_OBSERVATIONS,
    VaRCalculator,
    VaRInput,
)

logger = structlog.get_logger(__name__)

TRADING_DAYS_PER_YEAR = 252
DEFAULT_CONFIDENCE = 0.9
TREND_THRESHOLD = 5.0


@dataclass(frozen=True)
class DrawdownResult:
    """Maximum drawdown (fraction in [0, 1]) and the longest underwater run."""

    max_drawdown: float
    duration_periods: int


def volatility(
    returns: Sequence[float],
    annualized: bool = True,
    trading_days_per_year: int = TRADING_DAYS_PER_YEAR,
) -> float:
    """Sample standard deviation of returns, optionally annualized.

    Annualization multiplies by ``sqrt(trading_days_per_year)`` (252 by default).

    Returns 0 for fewer than 2 observations.
    """
    arr = np.asarray(returns, dtype=np.float64).ravel()
    if len(arr) < 2:
        return 0.0
    std = float(np.std(arr, ddof=1))
    if annualized:
        std *= math.sqrt(trading_days_per_year)
    return ensure_finite("volatility", std)


def max_drawdown(returns: Sequence[float]) -> DrawdownResult:
    """Peak-to-trough decline of compounded wealth starting from 1.

    ``duration_periods`` is the longest contiguous run of periods spent
    below a prior peak.
    """
    arr = np.asarray(returns, dtype=np.float64).ravel()
    if len(arr) == 0:
        return DrawdownResult(0.0, 0)

    wealth = np.cumprod(1.0 + arr)
    peaks = np.maximum.accumulate(np.maximum(wealth, 1.0))
    drawdowns = np.clip((peaks - wealth) / peaks, 0.0, 1.0)

    longest = run = 0
    for underwater in wealth < peaks:
        run = run + 1 if underwater else 0
        longest = max(longest, run)

    return DrawdownResult(
        max_drawdown=ensure_finite("max_drawdown", float(drawdowns.max())),
        duration_periods=longest,
    )


def sharpe_ratio(
    returns: Sequence[float],
    risk_free_rate_annual: float = 0.02,
    trading_days_per_year: int = TRADING_DAYS_PER_YEAR,
) -> float:
    """Annualized Sharpe ratio; 0 when volatility is 0."""
    arr = np.asarray(returns, dtype=np.float64).ravel()
    if len(arr) == 0:
        return 0.0
    daily_vol = volatility(arr, annualized=False)
    # Constant series leave float noise in the std.
    if daily_vol < 1e-12:
        return 0.0
    excess = float(np.mean(arr)) - risk_free_rate_annual / trading_days_per_year
    return ensure_finite(
        "sharpe_ratio", excess / daily_vol * math.sqrt(trading_days_per_year)
    )


def beta(asset_returns: Sequence[float], market_returns: Sequence[float]) -> float:
    """Covariance with the market over market variance.

    Returns 1 (market-neutral default) when the series are empty, differ in
    length, or the market has zero variance.
    """
    asset = np.asarray(asset_returns, dtype=np.float64).ravel()
    market = np.asarray(market_returns, dtype=np.float64).ravel()
    if len(asset) == 0 or len(asset) != len(market):
        return 1.0

    market_dev = market - market.mean()
    market_var = float(np.dot(market_dev, market_dev))
    if market_var == 0.0:
        return 1.0
    cov = float(np.dot(asset - asset.mean(), market_dev))
    return ensure_finite("beta", cov / market_var)


def compute_risk_score(
    var95_pct: float,
    annual_volatility: float,
    max_dd: float,
    sharpe: float,
) -> float:
    """Composite 0-100 score from VaR, volatility, drawdown and Sharpe.

    Components are capped at 30/30/20/20 points respectively.

    Args:
        var95_pct: 95% VaR as a fraction of position value.
        annual_volatility: Annualized volatility fraction.
        max_dd: Max drawdown fraction.
        sharpe: Annualized Sharpe ratio.
    """
    score = 0.0
    score += min(30.0, var95_pct * 100.0 * 10.0)
    score += min(30.0, annual_volatility * 100.0 * 5.0)
    score += min(20.0, max_dd * 100.0 * 2.0)
    score += min(20.0, max(0.0, (2.0 - sharpe) * 10.0))
    return min(100.0, max(0.0, score))


def _trend(score: float, previous: RiskMetric | None) -> RiskTrend:
    if previous is None:
        return RiskTrend.STABLE
    delta = score - previous.risk_score
    if delta > TREND_THRESHOLD:
        return RiskTrend.INCREASING
    if delta < -TREND_THRESHOLD:
        return RiskTrend.DECREASING
    return RiskTrend.STABLE


def build_risk_metric(
    asset_id: str,
    returns: Sequence[float],
    position_value: float,
    previous: RiskMetric | None = None,
    calculator: VaRCalculator | None = None,
    risk_free_rate_annual: float = 0.02,
    trading_days_per_year: int = TRADING_DAYS_PER_YEAR,
) -> RiskMetric:
    """Compute a complete RiskMetric snapshot for one asset.

    Args:
        asset_id: Asset identifier.
        returns: Daily return series for the asset.
        position_value: Value the VaR figures are scaled to.
        previous: Prior snapshot, used only to derive ``risk_trend``.
        calculator: VaR service; a default seeded one is created if omitted.
        risk_free_rate_annual: Annual risk-free rate for the Sharpe ratio.
        trading_days_per_year: Periods per year used to annualize.

    Raises:
        ValidationError: If the inputs fail VaR validation.
    """
    calculator = calculator or VaRCalculator()
    arr = validate_returns(returns)

    input_95 = VaRInput(position_value, arr, 0.95, 1)
    input_99 = VaRInput(position_value, arr, 0.99, 1)
    comparison = calculator.calculate_all(input_95)
    var99 = calculator.historical(input_99).var
    es99 = calculator.expected_shortfall(position_value, arr, 0.99).expected_shortfall

    annual_vol = volatility(arr, trading_days_per_year=trading_days_per_year)
    drawdown = max_drawdown(arr)
    sharpe = sharpe_ratio(arr, risk_free_rate_annual, trading_days_per_year)
    var95 = comparison.historical.var

    score = compute_risk_score(var95 / position_value, annual_vol, drawdown.max_drawdown, sharpe)

    n_obs = len(arr)
    confidence = DEFAULT_CONFIDENCE * min(1.0, n_obs / MIN_RECOMMENDED_OBSERVATIONS)
    if n_obs < 2:
        logger.warning("risk_metric_insufficient_data", asset_id=asset_id, n_obs=n_obs)

    metric = RiskMetric(
        asset_id=asset_id,
        var95=var95,
        var99=var99,
        var_historical=comparison.historical.var,
        var_parametric=comparison.parametric.var,
        var_monte_carlo=comparison.monte_carlo.var,
        expected_shortfall95=comparison.expected_shortfall.expected_shortfall,
        expected_shortfall99=es99,
        volatility=annual_vol,
        daily_volatility=volatility(arr, annualized=False),
        max_drawdown=drawdown.max_drawdown,
        max_drawdown_duration_periods=drawdown.duration_periods,
        sharpe_ratio=sharpe,
        risk_level=risk_level_from_score(score),
        risk_score=score,
        risk_trend=_trend(score, previous),
        confidence=confidence,
    )
    logger.debug(
        "risk_metric_built",
        asset_id=asset_id,
        risk_score=round(score, 2),
        risk_level=metric.risk_level.value,
        n_obs=n_obs,
    )
    return metric
