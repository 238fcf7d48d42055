"""Value-at-Risk (VaR) and Expected Shortfall computation engine.

Provides three VaR methodologies over a single return series:
- Historical: empirical quantile of the sorted return series
- Parametric: Gaussian assumption with a tabulated z-score
- Monte Carlo: Box-Muller normal draws from an injectable generator

VaR is reported as a non-negative currency amount scaled by
``sqrt(time_horizon_days)``. All functions are pure computation -- no I/O
or database access.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

import numpy as np
import structlog
from scipy import stats

from risk_engine.core.enums import VaRMethod
from risk_engine.core.exceptions import ValidationError
from risk_engine.core.models import ensure_finite, validate_returns

logger = structlog.get_logger(__name__)

# Historical quantiles below this sample size are unreliable.
MIN_RECOMMENDED_OBSERVATIONS = 30

DEFAULT_Z_SCORE = 1.645
Z_SCORES: dict[float, float] = {
    0.90: 1.28,
    0.95: 1.645,
    0.99: 2.33,
    0.995: 2.58,
    0.999: 3.09,
}


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VaRInput:
    """A VaR request.

    Attributes:
        portfolio_value: Portfolio value in currency units (> 0).
        returns: Periodic fractional returns, chronological.
        confidence_level: Confidence in (0, 1), e.g. 0.95.
        time_horizon_days: Holding period in days (> 0).
    """

    portfolio_value: float
    returns: Sequence[float]
    confidence_level: float = 0.95
    time_horizon_days: int = 1


@dataclass
class VaRResult:
    """Result of a single VaR computation."""

    var: float
    confidence_level: float
    time_horizon: int
    method: VaRMethod
    n_observations: int
    confidence_warning: str | None = None
    calculation_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "var": self.var,
            "confidenceLevel": self.confidence_level,
            "timeHorizon": self.time_horizon,
            "method": self.method.value,
            "calculationDate": self.calculation_date.isoformat(),
        }


@dataclass
class ExpectedShortfallResult:
    """Expected Shortfall (CVaR) with the VaR it was measured against.

    ``tail_losses`` holds the tail returns scaled to currency, worst first.
    """

    expected_shortfall: float
    confidence_level: float
    var: float
    tail_losses: list[float]


@dataclass
class VaRComparison:
    """Side-by-side results of every VaR method for one input."""

    historical: VaRResult
    parametric: VaRResult
    monte_carlo: VaRResult
    expected_shortfall: ExpectedShortfallResult


# ---------------------------------------------------------------------------
# Pure computation functions
# ---------------------------------------------------------------------------


def validate_var_input(var_input: VaRInput) -> np.ndarray:
    """Validate a VaRInput and return its returns as a float array.

    Raises:
        ValidationError: Non-positive value or horizon, empty or non-finite
            returns, or confidence outside (0, 1).
    """
    portfolio_value = ensure_finite("portfolio_value", var_input.portfolio_value)
    if portfolio_value <= 0:
        raise ValidationError("Portfolio value must be positive")
    confidence_level = ensure_finite("confidence_level", var_input.confidence_level)
    if not 0.0 < confidence_level < 1.0:
        raise ValidationError("Confidence level must be between 0 and 1")
    if ensure_finite("time_horizon_days", var_input.time_horizon_days) <= 0:
        raise ValidationError("Time horizon must be positive")
    return validate_returns(var_input.returns)


def quantile_index(confidence_level: float, n: int) -> int:
    """Index of the VaR quantile in an ascending sort of ``n`` returns."""
    return math.floor((1.0 - confidence_level) * n)


def _quantile_loss(sorted_returns: np.ndarray, confidence_level: float) -> float:
    """Loss fraction at the confidence quantile (0 when the quantile is a gain)."""
    index = quantile_index(confidence_level, len(sorted_returns))
    if index >= len(sorted_returns):
        return 0.0
    return max(-float(sorted_returns[index]), 0.0)


def get_z_score(confidence_level: float) -> float:
    """Look up the one-tailed normal z-score for a confidence level.

    Unlisted levels fall back to the 95% value with a warning.
    """
    for level, z in Z_SCORES.items():
        if math.isclose(level, confidence_level, abs_tol=1e-9):
            return z
    logger.warning(
        "z_score_not_tabulated",
        confidence_level=confidence_level,
        fallback=DEFAULT_Z_SCORE,
        exact_z=float(stats.norm.ppf(confidence_level)),
    )
    return DEFAULT_Z_SCORE


def _sample_moments(returns: np.ndarray) -> tuple[float, float]:
    """Sample mean and (n-1) standard deviation; sigma is 0 below 2 points."""
    mu = float(np.mean(returns))
    if len(returns) < 2:
        return mu, 0.0
    return mu, float(np.std(returns, ddof=1))


def _history_warning(n_obs: int, min_obs: int) -> str | None:
    if n_obs >= min_obs:
        return None
    logger.warning("var_short_history", n_obs=n_obs, min_recommended=min_obs)
    return f"Insufficient history ({n_obs} < {min_obs}); quantile estimate is unreliable."


def historical_var(
    var_input: VaRInput, min_observations: int = MIN_RECOMMENDED_OBSERVATIONS
) -> VaRResult:
    """Historical-simulation VaR from the empirical return quantile.

    No distributional assumption; accuracy is bounded by sample size.
    """
    returns = validate_var_input(var_input)
    sorted_returns = np.sort(returns)
    loss = _quantile_loss(sorted_returns, var_input.confidence_level)
    var = loss * var_input.portfolio_value * math.sqrt(var_input.time_horizon_days)

    return VaRResult(
        var=ensure_finite("historical_var", var),
        confidence_level=var_input.confidence_level,
        time_horizon=var_input.time_horizon_days,
        method=VaRMethod.HISTORICAL,
        n_observations=len(returns),
        confidence_warning=_history_warning(len(returns), min_observations),
    )


def parametric_var(var_input: VaRInput) -> VaRResult:
    """Variance-covariance VaR assuming normally distributed returns.

    ``VaR = |z| * sigma * portfolio_value * sqrt(horizon)``. Fat tails make
    this an underestimate; a Jarque-Bera rejection is reported in
    ``confidence_warning``.
    """
    returns = validate_var_input(var_input)
    _, sigma = _sample_moments(returns)
    z = get_z_score(var_input.confidence_level)
    var = abs(z) * sigma * var_input.portfolio_value * math.sqrt(var_input.time_horizon_days)

    confidence_warning: str | None = None
    if len(returns) >= MIN_RECOMMENDED_OBSERVATIONS and sigma > 1e-12:
        jb = stats.jarque_bera(returns)
        if jb.pvalue < 0.05:
            confidence_warning = (
                f"Returns reject normality (Jarque-Bera p={jb.pvalue:.4f}); "
                f"parametric VaR may understate tail risk."
            )
            logger.info("parametric_var_non_normal", p_value=float(jb.pvalue))

    return VaRResult(
        var=ensure_finite("parametric_var", var),
        confidence_level=var_input.confidence_level,
        time_horizon=var_input.time_horizon_days,
        method=VaRMethod.PARAMETRIC,
        n_observations=len(returns),
        confidence_warning=confidence_warning,
    )


def box_muller(rng: np.random.Generator, n: int) -> np.ndarray:
    """Draw ``n`` standard normals with the Box-Muller transform.

    ``U1`` is taken from (0, 1] so the logarithm is always defined.
    """
    u1 = 1.0 - rng.random(n)
    u2 = rng.random(n)
    return np.sqrt(-2.0 * np.log(u1)) * np.cos(2.0 * np.pi * u2)


def monte_carlo_var(
    var_input: VaRInput,
    simulations: int = 10_000,
    rng: np.random.Generator | None = None,
) -> VaRResult:
    """Monte Carlo VaR from normal draws fitted to the historical moments.

    Args:
        var_input: The VaR request.
        simulations: Number of simulated returns.
        rng: Random generator. Defaults to a generator seeded with 42 so
            results are reproducible unless the caller supplies its own.
    """
    returns = validate_var_input(var_input)
    if simulations <= 0:
        raise ValidationError("simulations must be positive")
    if rng is None:
        rng = np.random.default_rng(seed=42)

    mu, sigma = _sample_moments(returns)
    simulated = np.sort(mu + box_muller(rng, simulations) * sigma)
    loss = _quantile_loss(simulated, var_input.confidence_level)
    var = loss * var_input.portfolio_value * math.sqrt(var_input.time_horizon_days)

    return VaRResult(
        var=ensure_finite("monte_carlo_var", var),
        confidence_level=var_input.confidence_level,
        time_horizon=var_input.time_horizon_days,
        method=VaRMethod.MONTE_CARLO,
        n_observations=len(returns),
    )


def expected_shortfall(
    portfolio_value: float,
    returns: Sequence[float],
    confidence_level: float,
    time_horizon_days: int = 1,
) -> ExpectedShortfallResult:
    """Expected Shortfall: mean of the tail up to and including the VaR return.

    The tail averages returns no better than the VaR quantile, so
    ``expected_shortfall >= var`` always holds.
    """
    arr = validate_var_input(
        VaRInput(portfolio_value, returns, confidence_level, time_horizon_days)
    )
    sorted_returns = np.sort(arr)
    index = min(quantile_index(confidence_level, len(sorted_returns)), len(sorted_returns) - 1)
    scale = portfolio_value * math.sqrt(time_horizon_days)

    var = max(-float(sorted_returns[index]), 0.0) * scale
    tail = sorted_returns[: index + 1]
    es = abs(float(np.mean(tail))) * scale

    return ExpectedShortfallResult(
        expected_shortfall=ensure_finite("expected_shortfall", es),
        confidence_level=confidence_level,
        var=ensure_finite("var", var),
        tail_losses=[float(r) * portfolio_value for r in tail],
    )


def calculate_all_var_metrics(
    var_input: VaRInput,
    simulations: int = 10_000,
    rng: np.random.Generator | None = None,
) -> VaRComparison:
    """Run every VaR method plus Expected Shortfall on the same input."""
    return VaRComparison(
        historical=historical_var(var_input),
        parametric=parametric_var(var_input),
        monte_carlo=monte_carlo_var(var_input, simulations, rng=rng),
        expected_shortfall=expected_shortfall(
            var_input.portfolio_value,
            var_input.returns,
            var_input.confidence_level,
            var_input.time_horizon_days,
        ),
    )


def generate_sample_returns(
    mean: float = 0.001,
    std_dev: float = 0.02,
    count: int = 252,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Generate a synthetic normal return series via Box-Muller."""
    if rng is None:
        rng = np.random.default_rng()
    return mean + box_muller(rng, count) * std_dev


# ---------------------------------------------------------------------------
# VaRCalculator service
# ---------------------------------------------------------------------------


class VaRCalculator:
    """Constructible VaR service wrapping the pure functions.

    Args:
        mc_simulations: Number of Monte Carlo draws per call.
        rng: Generator shared by Monte Carlo calls. Defaults to one seeded
            with ``seed`` (or 42) so runs are reproducible.
        seed: Seed for the default generator.
        min_observations: Sample size below which historical results carry
            a warning.
    """

    def __init__(
        self,
        mc_simulations: int = 10_000,
        rng: np.random.Generator | None = None,
        seed: int | None = None,
        min_observations: int = MIN_RECOMMENDED_OBSERVATIONS,
    ) -> None:
        if mc_simulations <= 0:
            raise ValidationError("mc_simulations must be positive")
        self.mc_simulations = mc_simulations
        self.rng = rng if rng is not None else np.random.default_rng(
            seed if seed is not None else 42
        )
        self.min_observations = min_observations

    @classmethod
    def from_settings(cls, settings) -> VaRCalculator:
        return cls(
            mc_simulations=settings.mc_simulations,
            seed=settings.mc_seed,
            min_observations=settings.min_recommended_observations,
        )

    def historical(self, var_input: VaRInput) -> VaRResult:
        return historical_var(var_input, self.min_observations)

    def parametric(self, var_input: VaRInput) -> VaRResult:
        return parametric_var(var_input)

    def monte_carlo(self, var_input: VaRInput, simulations: int | None = None) -> VaRResult:
        if simulations is None:
            simulations = self.mc_simulations
        return monte_carlo_var(var_input, simulations, rng=self.rng)

    def expected_shortfall(
        self,
        portfolio_value: float,
        returns: Sequence[float],
        confidence_level: float,
        time_horizon_days: int = 1,
    ) -> ExpectedShortfallResult:
        return expected_shortfall(portfolio_value, returns, confidence_level, time_horizon_days)

    def calculate_all(self, var_input: VaRInput) -> VaRComparison:
        """Run all methods; Monte Carlo draws from this calculator's generator."""
        return VaRComparison(
            historical=self.historical(var_input),
            parametric=self.parametric(var_input),
            monte_carlo=self.monte_carlo(var_input),
            expected_shortfall=self.expected_shortfall(
                var_input.portfolio_value,
                var_input.returns,
                var_input.confidence_level,
                var_input.time_horizon_days,
            ),
        )
