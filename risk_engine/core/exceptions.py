"""Exception hierarchy for the risk engine.

Only input validation is fatal. Insufficient data degrades to documented
defaults and partial evaluation failures are logged and skipped, so neither
has an exception type here.
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------
class RiskEngineError(Exception):
    """Base exception for all risk engine errors."""


class ValidationError(RiskEngineError, ValueError):
    """Raised when an input record or parameter is invalid. Never retried."""


class NumericGuardError(ValidationError):
    """Raised when a computation produces NaN or Infinity."""


class UnknownScenarioError(ValidationError):
    """Raised in strict mode when a requested stress scenario does not exist."""

    def __init__(self, scenario_ids: list[str]) -> None:
        self.scenario_ids = scenario_ids
        super().__init__(f"Unknown stress scenario id(s): {', '.join(scenario_ids)}")
