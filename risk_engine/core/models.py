"""Validated value types shared across the risk engine.

Rows arriving from the persistence layer are loosely typed mappings. They
only enter the engine through the validating factories here
(``Position.from_dict``, ``RiskMetric.from_dict``), which raise
``ValidationError`` on malformed input. All types are frozen: a newer
snapshot supersedes an older one, nothing is mutated in place.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import numpy as np

from risk_engine.core.enums import RiskLevel, RiskTrend
from risk_engine.core.exceptions import NumericGuardError, ValidationError


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def ensure_finite(name: str, value: float) -> float:
    """Return ``value`` as float, raising NumericGuardError if NaN or infinite.

    Raises:
        ValidationError: If ``value`` is not a number at all.
    """
    if isinstance(value, (str, bytes, bool)):
        raise ValidationError(f"{name} must be numeric, got {type(value).__name__}")
    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be numeric: {exc}") from exc
    if not math.isfinite(result):
        raise NumericGuardError(f"{name} is not finite: {value!r}")
    return result


def validate_returns(returns: Iterable[float]) -> np.ndarray:
    """Coerce a return series to a 1-D float array and validate it.

    Raises:
        ValidationError: If the series is empty, not numeric, or contains
            NaN/Infinity.
    """
    try:
        arr = np.asarray(list(returns), dtype=np.float64).ravel()
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Returns must be numeric: {exc}") from exc
    if arr.size == 0:
        raise ValidationError("Returns array cannot be empty")
    if not np.all(np.isfinite(arr)):
        raise ValidationError("Returns must all be finite")
    return arr


def risk_level_from_score(score: float) -> RiskLevel:
    """Map a 0-100 risk score to a risk level (<30 LOW, <50 MEDIUM, <70 HIGH)."""
    if score < 30:
        return RiskLevel.LOW
    if score < 50:
        return RiskLevel.MEDIUM
    if score < 70:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def snake_case_keys(row: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of ``row`` with camelCase keys (``avgBuyPrice``) renamed to snake_case.

    Request payloads use camelCase, persistence rows snake_case. When both
    spellings are present the snake_case one wins.
    """
    converted: dict[str, Any] = {}
    native: dict[str, Any] = {}
    for key, value in row.items():
        snake = _CAMEL_BOUNDARY.sub("_", key).lower() if isinstance(key, str) else key
        if snake == key:
            native[key] = value
        else:
            converted[snake] = value
    converted.update(native)
    return converted


def _optional_float(row: Mapping[str, Any], key: str, default: float = 0.0) -> float:
    value = row.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float, np.floating, np.integer)):
        raise ValidationError(f"{key} must be numeric, got {type(value).__name__}")
    return ensure_finite(key, value)


# ---------------------------------------------------------------------------
# RiskMetric
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RiskMetric:
    """Per-asset risk snapshot.

    VaR and expected shortfall values are in currency units. ``volatility``
    is the annualized fraction, ``daily_volatility`` the per-period one.
    ``max_drawdown`` is a fraction in [0, 1].
    """

    asset_id: str
    var95: float = 0.0
    var99: float = 0.0
    var_historical: float = 0.0
    var_parametric: float = 0.0
    var_monte_carlo: float = 0.0
    expected_shortfall95: float = 0.0
    expected_shortfall99: float = 0.0
    volatility: float = 0.0
    daily_volatility: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_duration_periods: int = 0
    sharpe_ratio: float = 0.0
    risk_level: RiskLevel = RiskLevel.MEDIUM
    risk_score: float = 50.0
    risk_trend: RiskTrend = RiskTrend.STABLE
    confidence: float = 0.9
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not 0.0 <= self.max_drawdown <= 1.0:
            raise ValidationError(f"max_drawdown must be in [0, 1], got {self.max_drawdown}")
        if not 0.0 <= self.risk_score <= 100.0:
            raise ValidationError(f"risk_score must be in [0, 100], got {self.risk_score}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValidationError(f"confidence must be in [0, 1], got {self.confidence}")
        for name in ("var95", "var99", "expected_shortfall95", "expected_shortfall99", "volatility"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} must be non-negative")

    @classmethod
    def from_dict(cls, row: Mapping[str, Any]) -> RiskMetric:
        """Build a RiskMetric from a persistence row or request payload.

        Keys may be snake_case or camelCase. Missing numeric fields fall
        back to the dataclass defaults; present fields must be finite numbers.

        Raises:
            ValidationError: If the row is not a mapping or a field is malformed.
        """
        if not isinstance(row, Mapping):
            raise ValidationError(f"Risk metric row must be a mapping, got {type(row).__name__}")
        row = snake_case_keys(row)
        asset_id = row.get("asset_id")
        if not asset_id:
            raise ValidationError("Risk metric row is missing asset_id")
        defaults = cls(asset_id=str(asset_id))
        try:
            risk_level = RiskLevel(row.get("risk_level") or defaults.risk_level)
            risk_trend = RiskTrend(row.get("risk_trend") or defaults.risk_trend)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        timestamp = row.get("timestamp") or defaults.timestamp
        if not isinstance(timestamp, datetime):
            raise ValidationError("timestamp must be a datetime")
        return cls(
            asset_id=str(asset_id),
            var95=_optional_float(row, "var95"),
            var99=_optional_float(row, "var99"),
            var_historical=_optional_float(row, "var_historical"),
            var_parametric=_optional_float(row, "var_parametric"),
            var_monte_carlo=_optional_float(row, "var_monte_carlo"),
            expected_shortfall95=_optional_float(row, "expected_shortfall95"),
            expected_shortfall99=_optional_float(row, "expected_shortfall99"),
            volatility=_optional_float(row, "volatility"),
            daily_volatility=_optional_float(row, "daily_volatility"),
            max_drawdown=_optional_float(row, "max_drawdown"),
            max_drawdown_duration_periods=int(
                _optional_float(row, "max_drawdown_duration_periods")
            ),
            sharpe_ratio=_optional_float(row, "sharpe_ratio"),
            risk_level=risk_level,
            risk_score=_optional_float(row, "risk_score", defaults.risk_score),
            risk_trend=risk_trend,
            confidence=_optional_float(row, "confidence", defaults.confidence),
            timestamp=timestamp,
        )


# ---------------------------------------------------------------------------
# Position / PortfolioSnapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    """A holding in a portfolio. Owned by the caller, never mutated.

    Attributes:
        asset_id: Asset identifier.
        amount: Units held.
        avg_buy_price: Average acquisition price per unit.
        current_value: Marked value. Defaults to ``amount * avg_buy_price``.
        risk_metric: Latest per-asset risk snapshot, if any.
        volatility: Stress-test volatility override, annualized percent.
        var95: Stress-test VaR override, currency units.
    """

    asset_id: str
    amount: float
    avg_buy_price: float
    current_value: float | None = None
    risk_metric: RiskMetric | None = None
    volatility: float | None = None
    var95: float | None = None

    @property
    def value(self) -> float:
        if self.current_value:
            return self.current_value
        return self.amount * self.avg_buy_price

    @property
    def effective_volatility_pct(self) -> float | None:
        """Annualized volatility in percent, preferring the explicit override."""
        if self.volatility is not None:
            return self.volatility
        if self.risk_metric is not None and self.risk_metric.volatility:
            return self.risk_metric.volatility * 100.0
        return None

    @property
    def effective_var95(self) -> float:
        if self.var95 is not None:
            return self.var95
        if self.risk_metric is not None:
            return self.risk_metric.var95
        return 0.0

    @classmethod
    def create(
        cls,
        asset_id: str,
        amount: float,
        avg_buy_price: float,
        current_value: float | None = None,
        risk_metric: RiskMetric | None = None,
        volatility: float | None = None,
        var95: float | None = None,
    ) -> Position:
        """Validate and build a Position.

        Raises:
            ValidationError: On an empty id or non-finite/negative numbers.
        """
        if not asset_id:
            raise ValidationError("Position asset_id is required")
        amount = ensure_finite("amount", amount)
        avg_buy_price = ensure_finite("avg_buy_price", avg_buy_price)
        if amount < 0 or avg_buy_price < 0:
            raise ValidationError(f"Position {asset_id}: amount and avg_buy_price must be >= 0")
        if current_value is not None:
            current_value = ensure_finite("current_value", current_value)
            if current_value < 0:
                raise ValidationError(f"Position {asset_id}: current_value must be >= 0")
        if volatility is not None:
            volatility = ensure_finite("volatility", volatility)
        if var95 is not None:
            var95 = ensure_finite("var95", var95)
        return cls(
            asset_id=str(asset_id),
            amount=amount,
            avg_buy_price=avg_buy_price,
            current_value=current_value,
            risk_metric=risk_metric,
            volatility=volatility,
            var95=var95,
        )

    @classmethod
    def from_dict(cls, row: Mapping[str, Any]) -> Position:
        """Build a Position from a request or persistence row.

        Accepts the snake_case row shape and the camelCase request shape
        (``assetId``, ``avgBuyPrice``, ``currentValue`` ...). A nested
        ``risk_metric`` mapping is parsed with ``RiskMetric.from_dict``.
        """
        if not isinstance(row, Mapping):
            raise ValidationError(f"Position row must be a mapping, got {type(row).__name__}")
        row = snake_case_keys(row)
        try:
            amount = row["amount"]
            avg_buy_price = row["avg_buy_price"]
        except KeyError as exc:
            raise ValidationError(f"Position row is missing {exc.args[0]}") from exc
        metric = row.get("risk_metric")
        if isinstance(metric, Mapping):
            metric = RiskMetric.from_dict({"asset_id": row.get("asset_id"), **metric})
        elif metric is not None and not isinstance(metric, RiskMetric):
            raise ValidationError("risk_metric must be a mapping or RiskMetric")
        return cls.create(
            asset_id=row.get("asset_id", ""),
            amount=amount,
            avg_buy_price=avg_buy_price,
            current_value=row.get("current_value"),
            risk_metric=metric,
            volatility=row.get("volatility"),
            var95=row.get("var95"),
        )


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Ephemeral view of a set of positions with their derived total value."""

    positions: tuple[Position, ...]
    total_value: float

    @classmethod
    def from_positions(cls, positions: Sequence[Position]) -> PortfolioSnapshot:
        positions = tuple(positions)
        total = sum(p.value for p in positions)
        return cls(positions=positions, total_value=ensure_finite("total_value", total))

    def weights(self) -> dict[str, float]:
        """Position weight by asset id (0 for every asset when total is 0)."""
        if self.total_value <= 0:
            return {p.asset_id: 0.0 for p in self.positions}
        return {p.asset_id: p.value / self.total_value for p in self.positions}
