"""Unit tests for VaR and Expected Shortfall computation across all methods.

Covers historical VaR, parametric VaR (z-table lookup and normality
diagnostic), Monte Carlo VaR with an injected generator, Expected
Shortfall, time-horizon scaling, input validation and the ordering
properties between confidence levels and between ES and VaR.
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from risk_engine.core.config import Settings
from risk_engine.core.enums import VaRMethod
from risk_engine.core.exceptions import ValidationError
from risk_engine.risk.var_calculator import (
    DEFAULT_Z_SCORE,
    VaRCalculator,
    VaRInput,
    box_muller,
    calculate_all_var_metrics,
    expected_shortfall,
    generate_sample_returns,
    get_z_score,
    historical_var,
    monte_carlo_var,
    parametric_var,
    quantile_index,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def ladder_returns() -> np.ndarray:
    """20 evenly spaced returns from -10% to +9% in 1% steps."""
    return np.round(np.arange(-0.10, 0.095, 0.01), 10)


@pytest.fixture
def standardized_returns() -> np.ndarray:
    """252 returns with sample mean 0.001 and sample std exactly 0.02."""
    rng = np.random.default_rng(seed=7)
    z = rng.standard_normal(252)
    z = (z - z.mean()) / z.std(ddof=1)
    return 0.001 + 0.02 * z


# ---------------------------------------------------------------------------
# Historical VaR
# ---------------------------------------------------------------------------


class TestHistoricalVar:
    def test_known_quantile(self, ladder_returns: np.ndarray) -> None:
        """95% quantile of 20 returns is the 2nd worst (index 1) -> 9% loss."""
        result = historical_var(VaRInput(100_000.0, ladder_returns, 0.95, 1))
        assert result.var == pytest.approx(9_000.0)
        assert result.method == VaRMethod.HISTORICAL
        assert result.n_observations == 20

    def test_99_uses_worst_return(self, ladder_returns: np.ndarray) -> None:
        result = historical_var(VaRInput(100_000.0, ladder_returns, 0.99, 1))
        assert result.var == pytest.approx(10_000.0)

    def test_time_horizon_scales_by_sqrt(self, ladder_returns: np.ndarray) -> None:
        one_day = historical_var(VaRInput(100_000.0, ladder_returns, 0.95, 1))
        four_day = historical_var(VaRInput(100_000.0, ladder_returns, 0.95, 4))
        assert four_day.var == pytest.approx(2.0 * one_day.var)
        assert four_day.time_horizon == 4

    def test_all_gains_gives_zero_var(self) -> None:
        result = historical_var(VaRInput(50_000.0, [0.01, 0.02, 0.03, 0.015], 0.95))
        assert result.var == 0.0

    def test_short_history_warning(self, ladder_returns: np.ndarray) -> None:
        result = historical_var(VaRInput(100_000.0, ladder_returns, 0.95))
        assert result.confidence_warning is not None
        assert "Insufficient history" in result.confidence_warning

    def test_no_warning_with_enough_history(self, sample_returns: np.ndarray) -> None:
        result = historical_var(VaRInput(100_000.0, sample_returns, 0.95))
        assert result.confidence_warning is None

    def test_single_observation(self) -> None:
        result = historical_var(VaRInput(1_000.0, [-0.05], 0.95))
        assert result.var == pytest.approx(50.0)

    def test_quantile_index_floor(self) -> None:
        assert quantile_index(0.95, 20) == 1
        assert quantile_index(0.99, 20) == 0
        assert quantile_index(0.95, 252) == 12

    def test_to_dict_keys(self, ladder_returns: np.ndarray) -> None:
        payload = historical_var(VaRInput(100_000.0, ladder_returns)).to_dict()
        assert set(payload) == {
            "var",
            "confidenceLevel",
            "timeHorizon",
            "method",
            "calculationDate",
        }
        assert payload["method"] == "Historical"


# ---------------------------------------------------------------------------
# Parametric VaR
# ---------------------------------------------------------------------------


class TestParametricVar:
    def test_concrete_case(self, standardized_returns: np.ndarray) -> None:
        """VaR = 1.645 * 0.02 * 100000 = 3290 when sample std is 0.02."""
        result = parametric_var(VaRInput(100_000.0, standardized_returns, 0.95, 1))
        assert result.var == pytest.approx(3_290.0, rel=1e-9)
        assert result.method == VaRMethod.PARAMETRIC

    def test_generated_series_within_tolerance(self) -> None:
        returns = generate_sample_returns(0.001, 0.02, 252, rng=np.random.default_rng(11))
        result = parametric_var(VaRInput(100_000.0, returns, 0.95, 1))
        assert result.var == pytest.approx(3_290.0, rel=0.15)

    def test_99_uses_tabulated_z(self, standardized_returns: np.ndarray) -> None:
        result = parametric_var(VaRInput(100_000.0, standardized_returns, 0.99, 1))
        assert result.var == pytest.approx(2.33 * 0.02 * 100_000.0, rel=1e-9)

    def test_single_observation_is_zero(self) -> None:
        result = parametric_var(VaRInput(100_000.0, [-0.03], 0.95))
        assert result.var == 0.0

    def test_fat_tails_flagged(self) -> None:
        rng = np.random.default_rng(seed=3)
        returns = 0.01 * rng.standard_t(df=2, size=1_000)
        result = parametric_var(VaRInput(100_000.0, returns, 0.95))
        assert result.confidence_warning is not None
        assert "Jarque-Bera" in result.confidence_warning


class TestZScore:
    @pytest.mark.parametrize(
        "confidence, expected",
        [(0.90, 1.28), (0.95, 1.645), (0.99, 2.33), (0.995, 2.58), (0.999, 3.09)],
    )
    def test_table(self, confidence: float, expected: float) -> None:
        assert get_z_score(confidence) == expected

    def test_unlisted_level_falls_back(self) -> None:
        assert get_z_score(0.97) == DEFAULT_Z_SCORE

    def test_float_noise_still_matches(self) -> None:
        assert get_z_score(1.0 - 0.01) == 2.33


# ---------------------------------------------------------------------------
# Monte Carlo VaR
# ---------------------------------------------------------------------------


class TestMonteCarloVar:
    def test_reproducible_with_seeded_generator(self, sample_returns: np.ndarray) -> None:
        var_input = VaRInput(100_000.0, sample_returns, 0.95)
        a = monte_carlo_var(var_input, 5_000, rng=np.random.default_rng(1))
        b = monte_carlo_var(var_input, 5_000, rng=np.random.default_rng(1))
        assert a.var == b.var
        assert a.method == VaRMethod.MONTE_CARLO

    def test_default_generator_is_deterministic(self, sample_returns: np.ndarray) -> None:
        var_input = VaRInput(100_000.0, sample_returns, 0.95)
        assert monte_carlo_var(var_input, 2_000).var == monte_carlo_var(var_input, 2_000).var

    def test_close_to_normal_quantile(self, sample_returns: np.ndarray) -> None:
        mu = float(np.mean(sample_returns))
        sigma = float(np.std(sample_returns, ddof=1))
        expected = (1.645 * sigma - mu) * 100_000.0
        result = monte_carlo_var(
            VaRInput(100_000.0, sample_returns, 0.95), 50_000, rng=np.random.default_rng(5)
        )
        assert result.var == pytest.approx(expected, rel=0.05)

    def test_rejects_non_positive_simulations(self, sample_returns: np.ndarray) -> None:
        with pytest.raises(ValidationError):
            monte_carlo_var(VaRInput(100_000.0, sample_returns), 0)

    def test_box_muller_is_standard_normal(self) -> None:
        draws = box_muller(np.random.default_rng(0), 100_000)
        assert np.all(np.isfinite(draws))
        assert float(draws.mean()) == pytest.approx(0.0, abs=0.02)
        assert float(draws.std()) == pytest.approx(1.0, abs=0.02)


# ---------------------------------------------------------------------------
# Expected Shortfall
# ---------------------------------------------------------------------------


class TestExpectedShortfall:
    def test_tail_mean(self, ladder_returns: np.ndarray) -> None:
        """Tail at 95% is the two worst returns: mean(-10%, -9%) = -9.5%."""
        result = expected_shortfall(100_000.0, ladder_returns, 0.95)
        assert result.expected_shortfall == pytest.approx(9_500.0)
        assert result.var == pytest.approx(9_000.0)
        assert result.tail_losses == pytest.approx([-10_000.0, -9_000.0])

    def test_horizon_scaling(self, ladder_returns: np.ndarray) -> None:
        one = expected_shortfall(100_000.0, ladder_returns, 0.95, 1)
        nine = expected_shortfall(100_000.0, ladder_returns, 0.95, 9)
        assert nine.expected_shortfall == pytest.approx(3.0 * one.expected_shortfall)

    def test_single_observation(self) -> None:
        result = expected_shortfall(1_000.0, [-0.02], 0.99)
        assert result.expected_shortfall == pytest.approx(20.0)


# ---------------------------------------------------------------------------
# Ordering properties
# ---------------------------------------------------------------------------


class TestOrderingProperties:
    @pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
    @pytest.mark.parametrize("size", [2, 5, 40, 252])
    def test_var_non_decreasing_in_confidence(self, seed: int, size: int) -> None:
        returns = np.random.default_rng(seed).normal(0.0005, 0.02, size=size)
        v90, v95, v99 = (
            historical_var(VaRInput(10_000.0, returns, c)).var for c in (0.90, 0.95, 0.99)
        )
        assert v90 <= v95 <= v99

    def test_var_monotone_for_all_positive_series(self) -> None:
        returns = [0.01, 0.02, 0.03, 0.04]
        values = [historical_var(VaRInput(10_000.0, returns, c)).var for c in (0.90, 0.95, 0.99)]
        assert values == sorted(values)

    @pytest.mark.parametrize("seed", [10, 11, 12])
    @pytest.mark.parametrize("confidence", [0.5, 0.9, 0.95, 0.99, 0.999])
    def test_es_at_least_var(self, seed: int, confidence: float) -> None:
        returns = np.random.default_rng(seed).normal(0.0, 0.03, size=120)
        es = expected_shortfall(10_000.0, returns, confidence)
        var = historical_var(VaRInput(10_000.0, returns, confidence))
        assert es.expected_shortfall >= var.var - 1e-9
        assert es.expected_shortfall >= es.var - 1e-9


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.parametrize(
        "var_input",
        [
            VaRInput(0.0, [0.01, -0.02]),
            VaRInput(-5.0, [0.01, -0.02]),
            VaRInput(100.0, []),
            VaRInput(100.0, [0.01, -0.02], confidence_level=1.0),
            VaRInput(100.0, [0.01, -0.02], confidence_level=0.0),
            VaRInput(100.0, [0.01, -0.02], time_horizon_days=0),
            VaRInput(100.0, [0.01, math.nan]),
            VaRInput(100.0, [0.01, math.inf]),
            VaRInput(math.inf, [0.01, -0.02]),
            VaRInput(100.0, [0.01, -0.02], confidence_level=None),
            VaRInput(100.0, [0.01, -0.02], confidence_level="0.95"),
            VaRInput(100.0, [0.01, -0.02], time_horizon_days=None),
        ],
    )
    def test_invalid_inputs_raise(self, var_input: VaRInput) -> None:
        with pytest.raises(ValidationError):
            historical_var(var_input)
        with pytest.raises(ValidationError):
            parametric_var(var_input)

    def test_validation_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            historical_var(VaRInput(100.0, []))


# ---------------------------------------------------------------------------
# Service object and generator
# ---------------------------------------------------------------------------


class TestVaRCalculator:
    def test_calculate_all(self, sample_returns: np.ndarray) -> None:
        calc = VaRCalculator(mc_simulations=2_000, seed=9)
        comparison = calc.calculate_all(VaRInput(100_000.0, sample_returns, 0.95))
        assert comparison.historical.method == VaRMethod.HISTORICAL
        assert comparison.parametric.method == VaRMethod.PARAMETRIC
        assert comparison.monte_carlo.method == VaRMethod.MONTE_CARLO
        assert comparison.expected_shortfall.expected_shortfall >= comparison.historical.var

    def test_same_seed_same_results(self, sample_returns: np.ndarray) -> None:
        var_input = VaRInput(100_000.0, sample_returns)
        a = VaRCalculator(mc_simulations=1_000, seed=3).monte_carlo(var_input)
        b = VaRCalculator(mc_simulations=1_000, seed=3).monte_carlo(var_input)
        assert a.var == b.var

    def test_from_settings(self) -> None:
        calc = VaRCalculator.from_settings(
            Settings(mc_simulations=500, mc_seed=1, min_recommended_observations=10)
        )
        assert calc.mc_simulations == 500
        assert calc.min_observations == 10

    def test_rejects_bad_simulation_count(self) -> None:
        with pytest.raises(ValidationError):
            VaRCalculator(mc_simulations=0)

    def test_explicit_zero_simulations_rejected(self, sample_returns: np.ndarray) -> None:
        calc = VaRCalculator(mc_simulations=1_000, seed=3)
        with pytest.raises(ValidationError):
            calc.monte_carlo(VaRInput(100_000.0, sample_returns), simulations=0)

    def test_module_level_calculate_all(self, sample_returns: np.ndarray) -> None:
        comparison = calculate_all_var_metrics(
            VaRInput(100_000.0, sample_returns), 1_000, rng=np.random.default_rng(2)
        )
        assert comparison.parametric.var > 0


class TestGenerateSampleReturns:
    def test_shape_and_reproducibility(self) -> None:
        a = generate_sample_returns(0.001, 0.02, 252, rng=np.random.default_rng(4))
        b = generate_sample_returns(0.001, 0.02, 252, rng=np.random.default_rng(4))
        assert a.shape == (252,)
        np.testing.assert_array_equal(a, b)

    def test_moments(self) -> None:
        returns = generate_sample_returns(0.001, 0.02, 50_000, rng=np.random.default_rng(8))
        assert float(returns.mean()) == pytest.approx(0.001, abs=5e-4)
        assert float(returns.std(ddof=1)) == pytest.approx(0.02, rel=0.02)
