"""Root pytest configuration and shared fixtures.

Provides common test fixtures used across all test modules:
- sample_returns: 252 seeded daily returns (mean 0.001, std 0.02)
- make_metric / make_position: builders for validated value types
- clock: a controllable UTC clock for cooldown and retention tests
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import numpy as np
import pytest

from risk_engine.core.models import Position, RiskMetric


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def sample_returns() -> np.ndarray:
    """252 normal daily returns, seeded for reproducibility."""
    rng = np.random.default_rng(seed=2024)
    return rng.normal(loc=0.001, scale=0.02, size=252)


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at 2025-01-01 12:00 UTC."""
    return FakeClock(datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_metric() -> Any:
    """Return a callable building a RiskMetric with overridable fields.

    Usage::

        def test_something(make_metric):
            metric = make_metric("BTC", var95=800.0, volatility=0.45)
    """
    def _make(asset_id: str = "BTC", **fields: Any) -> RiskMetric:
        return RiskMetric(asset_id=asset_id, **fields)
    return _make


@pytest.fixture
def make_position() -> Any:
    """Return a callable building a validated Position."""
    def _make(
        asset_id: str = "BTC",
        value: float = 10_000.0,
        metric: RiskMetric | None = None,
        **fields: Any,
    ) -> Position:
        return Position.create(
            asset_id=asset_id,
            amount=1.0,
            avg_buy_price=value,
            current_value=value,
            risk_metric=metric,
            **fields,
        )
    return _make
