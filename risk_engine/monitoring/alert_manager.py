"""AlertEngine -- evaluates alert rules and emits deduplicated Alert records.

Provides:
- Per-rule-key cooldown (default 30 minutes) keyed by (owner, category, type)
- Bounded alert history with a 7-day retention window
- Per-owner AlertConfig, replaceable at runtime
- Batch partial-failure tolerance: a bad position or failing rule is logged
  and skipped, never aborting the cycle
- Hand-off of new alerts to an injected notifier; delivery is out of scope

One engine instance owns its own history and cooldown state; the host
application constructs and passes it explicitly.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

import structlog

from risk_engine.core.enums import AlertCategory, AlertType, Severity
from risk_engine.core.exceptions import ValidationError
from risk_engine.core.models import Position, snake_case_keys
from risk_engine.monitoring.alert_rules import (
    AlertConfig,
    AlertRule,
    AlertSignals,
    MarketAlertThresholds,
    RuleContext,
    RuleHit,
    default_rules,
)

logger = structlog.get_logger("alert_engine")

RuleKey = tuple[str, AlertCategory, AlertType]


# ---------------------------------------------------------------------------
# Alert records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Alert:
    """An emitted alert. Acknowledging produces a new instance."""

    id: str
    owner_key: str
    category: AlertCategory
    type: AlertType
    severity: Severity
    title: str
    message: str
    threshold: float
    current_value: float
    triggered_at: datetime
    asset_id: str | None = None
    acknowledged: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def rule_key(self) -> RuleKey:
        return (self.owner_key, self.category, self.type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ownerKey": self.owner_key,
            "category": self.category.value,
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "assetId": self.asset_id,
            "threshold": self.threshold,
            "currentValue": self.current_value,
            "triggeredAt": self.triggered_at.isoformat(),
            "acknowledged": self.acknowledged,
            "metadata": dict(self.metadata),
        }


@dataclass
class EvaluationReport:
    """Outcome of one processing cycle.

    Attributes:
        alerts: Newly created alerts.
        suppressed: Breaches dropped because their rule key was in cooldown.
        skipped: Human-readable reasons for skipped positions or rules.
    """

    alerts: list[Alert] = field(default_factory=list)
    suppressed: list[RuleHit] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


@dataclass
class AlertStats:
    """Alert counts over the retained history (or a window of it)."""

    total_alerts: int
    last_24h: int
    last_7d: int
    by_type: dict[str, int]
    by_category: dict[str, int]


# ---------------------------------------------------------------------------
# Notifiers
# ---------------------------------------------------------------------------


class AlertNotifier(Protocol):
    """Receives newly created alerts for delivery (email, push, webhook...)."""

    def notify(self, alert: Alert) -> None: ...


class LoggingNotifier:
    """Default notifier: logs each alert via structlog and delivers nothing."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger("alert_notifier")

    def notify(self, alert: Alert) -> None:
        self._logger.warning(
            "alert_emitted",
            alert_id=alert.id,
            owner_key=alert.owner_key,
            category=alert.category.value,
            type=alert.type.value,
            severity=alert.severity.value,
            asset_id=alert.asset_id,
        )


# ---------------------------------------------------------------------------
# AlertEngine
# ---------------------------------------------------------------------------


class AlertEngine:
    """Evaluate alert rules for an owner and record deduplicated alerts.

    Parameters:
        rules: ``AlertRule`` instances (defaults to ``default_rules()``).
        thresholds: Market-signal thresholds.
        default_config: AlertConfig for owners without their own.
        cooldown: Minimum interval between alerts sharing a rule key. A
            breach fires again once ``now - last_fired >= cooldown``, so
            exactly at the boundary it fires and a zero cooldown disables
            deduplication.
        retention: Alerts older than this are purged each cycle.
        max_history: Hard cap on stored alerts; oldest are dropped first.
        escalation_ratio: Default magnitude/threshold ratio above which a
            rule escalates severity one tier.
        notifier: Receives each new alert. Defaults to ``LoggingNotifier``.
        clock: Returns the current UTC time. Injectable for tests.
    """

    def __init__(
        self,
        rules: list[AlertRule] | None = None,
        thresholds: MarketAlertThresholds | None = None,
        default_config: AlertConfig | None = None,
        cooldown: timedelta = timedelta(minutes=30),
        retention: timedelta = timedelta(days=7),
        max_history: int = 10_000,
        escalation_ratio: float = 1.5,
        notifier: AlertNotifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_history <= 0:
            raise ValidationError("max_history must be positive")
        self.rules: dict[str, AlertRule] = {r.rule_id: r for r in (rules or default_rules())}
        self.thresholds = thresholds or MarketAlertThresholds()
        self.default_config = default_config or AlertConfig()
        self.cooldown = cooldown
        self.retention = retention
        self.max_history = max_history
        self.escalation_ratio = escalation_ratio
        self.notifier: AlertNotifier = notifier or LoggingNotifier()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._configs: dict[str, AlertConfig] = {}
        self._alerts: list[Alert] = []
        self._last_fired: dict[str, dict[tuple[AlertCategory, AlertType], datetime]] = {}
        self._historical: dict[tuple[str, str], dict[str, float]] = {}

        self._history_lock = threading.Lock()
        self._registry_lock = threading.Lock()
        self._historical_lock = threading.Lock()
        self._owner_locks: dict[str, threading.Lock] = {}
        self._logger = logger

    @classmethod
    def from_settings(cls, settings, **kwargs: Any) -> AlertEngine:
        return cls(
            cooldown=timedelta(minutes=settings.alert_cooldown_minutes),
            retention=timedelta(days=settings.alert_retention_days),
            max_history=settings.alert_max_history,
            escalation_ratio=settings.alert_escalation_ratio,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self, owner_key: str) -> AlertConfig:
        return self._configs.get(owner_key, self.default_config)

    def set_config(self, owner_key: str, config: AlertConfig) -> None:
        self._configs[owner_key] = config
        self._logger.info("alert_config_set", owner_key=owner_key, **config.to_dict())

    def update_config(self, owner_key: str, **changes: Any) -> AlertConfig:
        """Replace selected fields of an owner's config.

        Raises:
            ValidationError: On unknown fields or invalid values.
        """
        try:
            config = replace(self.get_config(owner_key), **changes)
        except TypeError as exc:
            raise ValidationError(str(exc)) from exc
        self.set_config(owner_key, config)
        return config

    def enable_rule(self, rule_id: str) -> None:
        """Enable a rule at runtime."""
        if rule_id not in self.rules:
            raise KeyError(f"Unknown rule: {rule_id}")
        self.rules[rule_id].enabled = True
        self._logger.info("rule_enabled", rule_id=rule_id)

    def disable_rule(self, rule_id: str) -> None:
        """Disable a rule at runtime."""
        if rule_id not in self.rules:
            raise KeyError(f"Unknown rule: {rule_id}")
        self.rules[rule_id].enabled = False
        self._logger.info("rule_disabled", rule_id=rule_id)

    def update_historical_data(self, asset_id: str, metric: str, value: float) -> None:
        """Track the running high/low of a market metric for an asset."""
        key = (asset_id, metric)
        with self._historical_lock:
            current = self._historical.get(key, {"high": value, "low": value})
            self._historical[key] = {
                "high": max(current["high"], value),
                "low": min(current["low"], value),
            }

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_signals(self, owner_key: str, signals: AlertSignals) -> list[Alert]:
        """Evaluate all enabled rules and return the newly created alerts."""
        return self.evaluate(owner_key, signals).alerts

    def evaluate(self, owner_key: str, signals: AlertSignals) -> EvaluationReport:
        """Run one processing cycle for ``owner_key``.

        Purges expired alerts, evaluates every enabled rule, applies the
        cooldown per rule key and records the surviving alerts. A breach
        strictly inside the cooldown window is suppressed without resetting
        the timer; one at exactly ``cooldown`` after the last alert fires.
        """
        now = self._clock()
        self._purge(now)
        report = EvaluationReport()

        config = self.get_config(owner_key)
        if not config.enabled:
            self._logger.debug("alerts_disabled", owner_key=owner_key)
            return report

        hits = self._collect_hits(signals, config, report)

        with self._owner_lock(owner_key):
            last_fired = self._last_fired.setdefault(owner_key, {})
            for hit in hits:
                key = (hit.category, hit.type)
                last = last_fired.get(key)
                if last is not None and now - last < self.cooldown:
                    report.suppressed.append(hit)
                    self._logger.debug(
                        "alert_in_cooldown",
                        owner_key=owner_key,
                        category=hit.category.value,
                        type=hit.type.value,
                    )
                    continue
                alert = self._create_alert(owner_key, hit, now)
                last_fired[key] = now
                self._store(alert)
                report.alerts.append(alert)
                self._logger.info(
                    "alert_fired",
                    owner_key=owner_key,
                    category=hit.category.value,
                    severity=hit.severity.value,
                    asset_id=hit.asset_id,
                )

        for alert in report.alerts:
            self._dispatch(alert)
        return report

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def get_recent_alerts(self, limit: int = 50) -> list[Alert]:
        """Most recent alerts across all owners, newest first."""
        with self._history_lock:
            alerts = list(self._alerts)
        alerts.sort(key=lambda a: a.triggered_at, reverse=True)
        return alerts[:limit]

    def get_alerts_for_owner(self, owner_key: str, limit: int = 20) -> list[Alert]:
        """Most recent alerts for one owner, newest first."""
        with self._history_lock:
            alerts = [a for a in self._alerts if a.owner_key == owner_key]
        alerts.sort(key=lambda a: a.triggered_at, reverse=True)
        return alerts[:limit]

    def get_stats(self, window: timedelta | None = None) -> AlertStats:
        """Counts over the retained history, grouped by type and category.

        Args:
            window: Restrict the grouping to alerts newer than ``now - window``.
                The 24h/7d counts always use their own rolling windows.
        """
        now = self._clock()
        with self._history_lock:
            alerts = list(self._alerts)
        if window is not None:
            scoped = [a for a in alerts if a.triggered_at > now - window]
        else:
            scoped = alerts

        by_type = {t.value: 0 for t in AlertType}
        by_category = {c.value: 0 for c in AlertCategory}
        for alert in scoped:
            by_type[alert.type.value] += 1
            by_category[alert.category.value] += 1

        return AlertStats(
            total_alerts=len(scoped),
            last_24h=sum(1 for a in alerts if a.triggered_at > now - timedelta(hours=24)),
            last_7d=sum(1 for a in alerts if a.triggered_at > now - timedelta(days=7)),
            by_type=by_type,
            by_category=by_category,
        )

    def acknowledge(self, alert_id: str) -> Alert | None:
        """Mark an alert acknowledged. Returns the updated alert, or None."""
        with self._history_lock:
            for i, alert in enumerate(self._alerts):
                if alert.id == alert_id:
                    self._alerts[i] = replace(alert, acknowledged=True)
                    self._logger.info("alert_acknowledged", alert_id=alert_id)
                    return self._alerts[i]
        return None

    def clear_alerts(self) -> None:
        """Drop all stored alerts and cooldown state."""
        with self._history_lock:
            self._alerts.clear()
        with self._registry_lock:
            self._last_fired.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _owner_lock(self, owner_key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._owner_locks.get(owner_key)
            if lock is None:
                lock = self._owner_locks[owner_key] = threading.Lock()
            return lock

    def _coerce_positions(
        self, raw_positions: Sequence[Position | Mapping[str, Any]], report: EvaluationReport
    ) -> list[Position]:
        """Validate incoming positions; malformed ones are logged and dropped.

        A position whose risk metric alone is malformed is kept without it,
        so value-based rules still see it.
        """
        positions: list[Position] = []
        for i, raw in enumerate(raw_positions):
            if isinstance(raw, Position):
                positions.append(raw)
                continue
            try:
                positions.append(Position.from_dict(raw))
                continue
            except ValidationError as exc:
                error = str(exc)
            row = snake_case_keys(raw) if isinstance(raw, Mapping) else None
            if row is not None and row.get("risk_metric") is not None:
                try:
                    positions.append(Position.from_dict({**row, "risk_metric": None}))
                    self._logger.warning(
                        "position_metric_malformed",
                        asset_id=row.get("asset_id"),
                        error=error,
                    )
                    report.skipped.append(f"{row.get('asset_id')}: malformed risk metric")
                    continue
                except ValidationError:
                    pass
            self._logger.warning("position_malformed_skipped", index=i, error=error)
            report.skipped.append(f"position[{i}]: {error}")
        return positions

    def _collect_hits(
        self, signals: AlertSignals, config: AlertConfig, report: EvaluationReport
    ) -> list[RuleHit]:
        hits: list[RuleHit] = []
        positions = self._coerce_positions(signals.positions, report)
        total_value = sum(p.value for p in positions)
        position_rules = [r for r in self.rules.values() if r.enabled and r.scope == "position"]
        market_rules = [r for r in self.rules.values() if r.enabled and r.scope == "market"]

        for position in positions:
            ctx = RuleContext(
                config=config,
                thresholds=self.thresholds,
                escalation_ratio=self.escalation_ratio,
                total_value=total_value,
                asset_id=position.asset_id,
            )
            if position.risk_metric is None and any(r.requires_metric for r in position_rules):
                self._logger.warning("position_metric_missing", asset_id=position.asset_id)
                report.skipped.append(f"{position.asset_id}: missing risk metric")
            for rule in position_rules:
                if rule.requires_metric and position.risk_metric is None:
                    continue
                hits.extend(self._run_rule(rule, position, ctx, report))

        if signals.market is not None and market_rules:
            asset_id = signals.market_asset_id
            with self._historical_lock:
                highs = {
                    metric: values["high"]
                    for (aid, metric), values in self._historical.items()
                    if aid == asset_id
                }
            ctx = RuleContext(
                config=config,
                thresholds=self.thresholds,
                escalation_ratio=self.escalation_ratio,
                total_value=total_value,
                asset_id=asset_id,
                historical_highs=highs,
            )
            for rule in market_rules:
                hits.extend(self._run_rule(rule, signals.market, ctx, report))

        return hits

    def _run_rule(
        self, rule: AlertRule, subject: Any, ctx: RuleContext, report: EvaluationReport
    ) -> list[RuleHit]:
        try:
            return rule.evaluate(subject, ctx)
        except Exception as exc:
            self._logger.warning(
                "rule_check_error",
                rule_id=rule.rule_id,
                asset_id=ctx.asset_id,
                error=str(exc),
            )
            report.skipped.append(f"{rule.rule_id}/{ctx.asset_id}: {exc}")
            return []

    def _create_alert(self, owner_key: str, hit: RuleHit, now: datetime) -> Alert:
        return Alert(
            id=f"alert_{uuid.uuid4().hex}",
            owner_key=owner_key,
            category=hit.category,
            type=hit.type,
            severity=hit.severity,
            title=hit.title,
            message=hit.message,
            threshold=hit.threshold,
            current_value=hit.current_value,
            triggered_at=now,
            asset_id=hit.asset_id,
            metadata=dict(hit.metadata),
        )

    def _store(self, alert: Alert) -> None:
        with self._history_lock:
            self._alerts.append(alert)
            overflow = len(self._alerts) - self.max_history
            if overflow > 0:
                del self._alerts[:overflow]

    def _purge(self, now: datetime) -> None:
        cutoff = now - self.retention
        with self._history_lock:
            before = len(self._alerts)
            self._alerts = [a for a in self._alerts if a.triggered_at > cutoff]
            purged = before - len(self._alerts)
        if purged:
            self._logger.debug("alerts_purged", count=purged)

    def _dispatch(self, alert: Alert) -> None:
        """Hand an alert to the notifier. Never raises -- delivery is best effort."""
        try:
            self.notifier.notify(alert)
        except Exception as exc:
            self._logger.error(
                "alert_notify_failed",
                alert_id=alert.id,
                error=str(exc),
            )
