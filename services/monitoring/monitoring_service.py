from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config.config_loader import DEFAULT_CONFIG
from config.settings import settings
from models.monitoring import (
    AlertSeverity,
    DataDriftMetrics,
    HealthState,
    ModelHealthStatus,
    ModelPerformanceMetrics,
    MonitoringAlert,
    PerformanceReport,
    PerformanceSummary,
    SweepReport,
)
from services.monitoring.drift import compute_drift
from services.storage.base import KeyValueStore
from utils.clock import SystemClock
from utils.errors import NotFoundError
from utils.keyed_lock import KeyedLock
from utils.logger import setup_logger

logger = setup_logger(__name__)

PERFORMANCE_NAMESPACE = "model_performance"
HEALTH_NAMESPACE = "model_health"
DRIFT_NAMESPACE = "drift_history"
ALERT_NAMESPACE = "monitoring_alerts"

TREND_BAND = 0.05
MAX_REPORT_RECOMMENDATIONS = 5

REMEDIATIONS = {
    "accuracy": "Review recent scoring inputs and re-tune the heuristic weights",
    "latency": "Profile the scoring path or add capacity",
    "error_rate": "Inspect recent errors and the health of dependent services",
    "memory_usage": "Check for unbounded caches or histories",
    "cpu_usage": "Reduce per-request computation or scale out",
}

METRIC_LABELS = {
    "accuracy": "Accuracy",
    "latency": "Latency",
    "error_rate": "Error rate",
    "memory_usage": "Memory usage",
    "cpu_usage": "CPU usage",
}


def threshold_level(value: float, spec: Dict[str, Any]) -> Optional[AlertSeverity]:
    """Severity of ``value`` against a warning/critical threshold pair, or None when within bounds."""
    if spec["direction"] == "below":
        if value < spec["critical"]:
            return AlertSeverity.CRITICAL
        if value < spec["warning"]:
            return AlertSeverity.WARNING
        return None
    if value > spec["critical"]:
        return AlertSeverity.CRITICAL
    if value > spec["warning"]:
        return AlertSeverity.WARNING
    return None


def drift_severity(drift_score: float, bands: Dict[str, float]) -> AlertSeverity:
    if drift_score > bands["critical"]:
        return AlertSeverity.CRITICAL
    if drift_score > bands["warning"]:
        return AlertSeverity.WARNING
    return AlertSeverity.INFO


def relative_trend(values: Sequence[float], higher_is_better: bool = True) -> str:
    """Compare the mean of the newer half of ``values`` with the older half."""
    if len(values) < 2:
        return "stable"
    middle = len(values) // 2
    older = sum(values[:middle]) / middle
    newer = sum(values[middle:]) / (len(values) - middle)
    if older == 0:
        return "stable"
    change = (newer - older) / abs(older)
    if not higher_is_better:
        change = -change
    if change > TREND_BAND:
        return "improving"
    if change < -TREND_BAND:
        return "degrading"
    return "stable"


class MonitoringService:
    """
    Health tracking for scoring models and drift detection for their inputs.

    Alerts for the same (metric, model) pair are throttled: while an
    unresolved alert for the pair is younger than the throttle window, new
    violations update the health status but raise no new alert. The window is
    measured on the monotonic clock within a process and falls back to the
    stored trigger time after a restart.
    """

    def __init__(
        self,
        store: KeyValueStore,
        metrics=None,
        clock=None,
        thresholds: Optional[Dict[str, Dict[str, Any]]] = None,
        drift_config: Optional[Dict[str, Any]] = None,
        throttle_minutes: Optional[int] = None,
        offline_minutes: Optional[int] = None,
        retention_days: Optional[int] = None,
        performance_history_limit: Optional[int] = None,
        drift_history_limit: Optional[int] = None,
    ):
        self.store = store
        self.metrics = metrics
        self.clock = clock or SystemClock()
        self.thresholds = thresholds or DEFAULT_CONFIG["monitoring"]["thresholds"]
        self.drift_config = drift_config or DEFAULT_CONFIG["monitoring"]["drift"]
        self.throttle_minutes = throttle_minutes or settings.ALERT_THROTTLE_MINUTES
        self.offline_minutes = offline_minutes or settings.MODEL_OFFLINE_MINUTES
        self.retention_days = retention_days or settings.RETENTION_DAYS
        self.performance_history_limit = performance_history_limit or settings.PERFORMANCE_HISTORY_LIMIT
        self.drift_history_limit = drift_history_limit or settings.DRIFT_HISTORY_LIMIT

        self._alert_locks = KeyedLock()
        self._last_fired: Dict[Tuple[str, str], Tuple[float, str]] = {}

    # -- performance --------------------------------------------------------

    def record_model_performance(self, performance: ModelPerformanceMetrics) -> ModelHealthStatus:
        now = self.clock.now()
        if performance.timestamp is None:
            performance.timestamp = now

        self.store.append(
            PERFORMANCE_NAMESPACE,
            performance.model_id,
            performance.model_dump(mode="json"),
            max_length=self.performance_history_limit,
        )
        if self.metrics:
            self.metrics.record_model_performance(performance.model_id, performance.model_dump())

        issues: List[str] = []
        recommendations: List[str] = []
        worst: Optional[AlertSeverity] = None
        for metric_name, spec in self.thresholds.items():
            value = getattr(performance, metric_name, None)
            if value is None:
                continue
            severity = threshold_level(value, spec)
            if severity is None:
                continue

            limit = spec[severity.value]
            label = METRIC_LABELS.get(metric_name, metric_name)
            issue = f"{label} {value:g} breached the {severity.value} threshold {limit:g}"
            issues.append(issue)
            if metric_name in REMEDIATIONS:
                recommendations.append(REMEDIATIONS[metric_name])
            if worst is None or severity == AlertSeverity.CRITICAL:
                worst = severity

            self._raise_alert(metric_name, performance.model_id, severity, value, limit, issue)

        state = HealthState.HEALTHY
        if worst == AlertSeverity.CRITICAL:
            state = HealthState.CRITICAL
        elif worst == AlertSeverity.WARNING:
            state = HealthState.WARNING

        def _apply(data):
            first_seen = ModelHealthStatus.model_validate(data).first_seen if data else now
            return ModelHealthStatus(
                model_id=performance.model_id,
                status=state,
                last_health_check=now,
                first_seen=first_seen,
                issues=issues,
                recommendations=recommendations,
            ).model_dump(mode="json")

        health = ModelHealthStatus.model_validate(self.store.update(HEALTH_NAMESPACE, performance.model_id, _apply))
        self._refresh_health_gauges()

        logger.debug(
            "Model performance recorded",
            extra={"model_id": performance.model_id, "status": state.value, "issues": len(issues)}
        )
        return health

    def get_performance_history(self, model_id: str) -> List[ModelPerformanceMetrics]:
        return [
            ModelPerformanceMetrics.model_validate(item)
            for item in self.store.get_list(PERFORMANCE_NAMESPACE, model_id)
        ]

    def get_model_health(self, model_id: str) -> Optional[ModelHealthStatus]:
        data = self.store.get(HEALTH_NAMESPACE, model_id)
        return ModelHealthStatus.model_validate(data) if data else None

    def get_all_model_health(self) -> List[ModelHealthStatus]:
        statuses = []
        for model_id in self.store.keys(HEALTH_NAMESPACE):
            status = self.get_model_health(model_id)
            if status is not None:
                statuses.append(status)
        return statuses

    # -- drift --------------------------------------------------------------

    def detect_data_drift(
        self,
        feature_name: str,
        current: Sequence[float],
        reference: Sequence[float],
        threshold: Optional[float] = None,
        model_id: Optional[str] = None,
    ) -> DataDriftMetrics:
        threshold = self.drift_config["threshold"] if threshold is None else threshold
        statistics = compute_drift(current, reference, bins=self.drift_config.get("bins", 10))

        drift = DataDriftMetrics(
            feature_name=feature_name,
            model_id=model_id,
            timestamp=self.clock.now(),
            drift_score=statistics.drift_score,
            p_value=statistics.p_value,
            reference_distribution=statistics.reference_distribution,
            current_distribution=statistics.current_distribution,
            bin_edges=statistics.bin_edges,
            threshold=threshold,
            is_drifting=statistics.drift_score > threshold,
        )
        self.store.append(
            DRIFT_NAMESPACE,
            feature_name,
            drift.model_dump(mode="json"),
            max_length=self.drift_history_limit,
        )
        if self.metrics:
            self.metrics.record_drift(feature_name, drift.drift_score, drift.p_value)

        if drift.is_drifting:
            severity = drift_severity(drift.drift_score, self.drift_config["bands"])
            logger.info(
                "Data drift detected",
                extra={
                    "feature": feature_name,
                    "drift_score": round(drift.drift_score, 4),
                    "p_value": round(drift.p_value, 4),
                    "severity": severity.value,
                }
            )
            self._raise_alert(
                f"data_drift:{feature_name}",
                model_id,
                severity,
                drift.drift_score,
                threshold,
                f"Feature {feature_name} is drifting (KS statistic {drift.drift_score:.3f})",
            )

        return drift

    def detect_all_feature_drift(
        self,
        current: Dict[str, Sequence[float]],
        reference: Dict[str, Sequence[float]],
        threshold: Optional[float] = None,
    ) -> Dict[str, DataDriftMetrics]:
        missing = sorted(set(current) ^ set(reference))
        if missing:
            logger.warning("Features without both samples skipped", extra={"features": missing})

        results = {
            feature: self.detect_data_drift(feature, current[feature], reference[feature], threshold)
            for feature in current
            if feature in reference
        }
        if results:
            overall = sum(item.drift_score for item in results.values()) / len(results)
            if self.metrics:
                self.metrics.set_overall_drift(overall)
            logger.info(
                "Feature drift check completed",
                extra={
                    "features": len(results),
                    "drifting": sum(1 for item in results.values() if item.is_drifting),
                    "overall_drift_score": round(overall, 4),
                }
            )
        return results

    def get_drift_history(self, feature_name: str) -> List[DataDriftMetrics]:
        return [DataDriftMetrics.model_validate(item) for item in self.store.get_list(DRIFT_NAMESPACE, feature_name)]

    # -- alerts -------------------------------------------------------------

    def _raise_alert(
        self,
        metric_name: str,
        model_id: Optional[str],
        severity: AlertSeverity,
        value: float,
        threshold: float,
        message: str,
    ) -> Optional[MonitoringAlert]:
        pair = (metric_name, model_id or "")
        with self._alert_locks.hold(pair):
            if self._is_throttled(pair):
                logger.debug("Alert throttled", extra={"metric": metric_name, "model_id": model_id})
                return None

            alert = MonitoringAlert(
                triggered_at=self.clock.now(),
                severity=severity,
                message=message,
                model_id=model_id,
                metric_name=metric_name,
                current_value=value,
                threshold=threshold,
            )
            self.store.set(ALERT_NAMESPACE, alert.alert_id, alert.model_dump(mode="json"))
            self._last_fired[pair] = (self.clock.monotonic(), alert.alert_id)

        logger.info(
            "Alert raised",
            extra={
                "alert_id": alert.alert_id,
                "severity": severity.value,
                "metric": metric_name,
                "model_id": model_id,
                "value": value,
                "threshold": threshold,
            }
        )
        if self.metrics:
            self.metrics.record_alert(severity.value)
            self.metrics.set_active_alerts(len(self.get_active_alerts()))
        return alert

    def _is_throttled(self, pair: Tuple[str, str]) -> bool:
        window_seconds = self.throttle_minutes * 60
        fired = self._last_fired.get(pair)
        if fired is not None:
            fired_at, alert_id = fired
            if self.clock.monotonic() - fired_at >= window_seconds:
                return False
            data = self.store.get(ALERT_NAMESPACE, alert_id)
            return data is not None and not data.get("resolved", False)

        # no alert fired by this process yet
        cutoff = self.clock.now() - timedelta(seconds=window_seconds)
        metric_name, model_id = pair
        return any(
            alert.metric_name == metric_name
            and (alert.model_id or "") == model_id
            and alert.triggered_at >= cutoff
            for alert in self.get_active_alerts()
        )

    def get_active_alerts(self, model_id: Optional[str] = None) -> List[MonitoringAlert]:
        alerts = [
            alert for alert in self._all_alerts()
            if not alert.resolved and (model_id is None or alert.model_id == model_id)
        ]
        alerts.sort(key=lambda alert: alert.triggered_at, reverse=True)
        return alerts

    def _all_alerts(self) -> List[MonitoringAlert]:
        alerts = []
        for alert_id in self.store.keys(ALERT_NAMESPACE):
            data = self.store.get(ALERT_NAMESPACE, alert_id)
            if data:
                alerts.append(MonitoringAlert.model_validate(data))
        return alerts

    def resolve_alert(self, alert_id: str) -> MonitoringAlert:
        if self.store.get(ALERT_NAMESPACE, alert_id) is None:
            raise NotFoundError(f"alert {alert_id} not found")

        now = self.clock.now()

        def _apply(data):
            alert = MonitoringAlert.model_validate(data)
            if not alert.resolved:
                alert.resolved = True
                alert.resolved_at = now
            return alert.model_dump(mode="json")

        alert = MonitoringAlert.model_validate(self.store.update(ALERT_NAMESPACE, alert_id, _apply))
        if self.metrics:
            self.metrics.set_active_alerts(len(self.get_active_alerts()))

        logger.info("Alert resolved", extra={"alert_id": alert_id, "metric": alert.metric_name})
        return alert

    # -- reporting ----------------------------------------------------------

    def generate_performance_report(self, model_id: str, hours: int = 24) -> PerformanceReport:
        cutoff = self.clock.now() - timedelta(hours=hours)
        history = [item for item in self.get_performance_history(model_id) if item.timestamp >= cutoff]
        alerts = [
            alert for alert in self._all_alerts()
            if alert.model_id == model_id and alert.triggered_at >= cutoff
        ]
        report = PerformanceReport(model_id=model_id, window_hours=hours, sample_count=len(history), alerts=alerts)

        if not history:
            report.recommendations = ["No performance data in the selected window"]
            return report

        count = len(history)
        report.summary = PerformanceSummary(
            average_accuracy=sum(item.accuracy for item in history) / count,
            average_latency=sum(item.latency for item in history) / count,
            total_requests=sum(item.throughput for item in history),
            error_rate=sum(item.error_rate for item in history) / count,
        )
        report.trends = {
            "accuracy": relative_trend([item.accuracy for item in history]),
            "latency": relative_trend([item.latency for item in history], higher_is_better=False),
        }
        report.recommendations = self._report_recommendations(report)
        return report

    def _report_recommendations(self, report: PerformanceReport) -> List[str]:
        recommendations = []
        summary = report.summary
        accuracy = self.thresholds.get("accuracy")
        latency = self.thresholds.get("latency")
        error_rate = self.thresholds.get("error_rate")

        if accuracy and summary.average_accuracy < accuracy["warning"]:
            recommendations.append("Average accuracy is below target; review the scoring inputs")
        if latency and summary.average_latency > latency["warning"]:
            recommendations.append("Average latency is high; profile the scoring path")
        if error_rate and summary.error_rate > error_rate["warning"]:
            recommendations.append("Error rate is elevated; inspect recent failures")
        if report.trends.get("accuracy") == "degrading":
            recommendations.append("Accuracy is trending down; check for input drift")
        if report.trends.get("latency") == "degrading":
            recommendations.append("Latency is trending up; check load and resource usage")
        if len([alert for alert in report.alerts if not alert.resolved]) > 0:
            recommendations.append("Resolve the open alerts for this model")
        return recommendations[:MAX_REPORT_RECOMMENDATIONS]

    # -- maintenance --------------------------------------------------------

    def run_sweep(self) -> SweepReport:
        """
        Mark silent models offline and prune expired history.

        Each key is rewritten in one atomic update with the filtered copy, so
        a failure leaves every history either untouched or fully pruned.
        """
        now = self.clock.now()
        report = SweepReport()

        offline_cutoff = now - timedelta(minutes=self.offline_minutes)
        for status in self.get_all_model_health():
            if status.status != HealthState.OFFLINE and status.last_health_check < offline_cutoff:
                self._mark_offline(status.model_id, offline_cutoff)
                report.models_marked_offline.append(status.model_id)

        retention_cutoff = now - timedelta(days=self.retention_days)
        report.performance_records_pruned = self._prune_namespace(PERFORMANCE_NAMESPACE, retention_cutoff)
        report.drift_records_pruned = self._prune_namespace(DRIFT_NAMESPACE, retention_cutoff)

        for alert in self._all_alerts():
            if alert.resolved and alert.resolved_at is not None and alert.resolved_at < retention_cutoff:
                if self.store.delete(ALERT_NAMESPACE, alert.alert_id):
                    report.alerts_pruned += 1

        self._refresh_health_gauges()
        if self.metrics:
            self.metrics.set_active_alerts(len(self.get_active_alerts()))

        logger.info(
            "Monitoring sweep completed",
            extra={
                "models_marked_offline": report.models_marked_offline,
                "performance_records_pruned": report.performance_records_pruned,
                "drift_records_pruned": report.drift_records_pruned,
                "alerts_pruned": report.alerts_pruned,
            }
        )
        return report

    def _mark_offline(self, model_id: str, offline_cutoff: datetime):
        minutes = self.offline_minutes

        def _apply(data):
            status = ModelHealthStatus.model_validate(data)
            # a report may have landed since the scan
            if status.last_health_check >= offline_cutoff:
                return data
            status.status = HealthState.OFFLINE
            status.issues = [f"No performance update for more than {minutes} minutes"]
            status.recommendations = ["Check that the model is still running and reporting"]
            return status.model_dump(mode="json")

        self.store.update(HEALTH_NAMESPACE, model_id, _apply)
        logger.warning("Model marked offline", extra={"model_id": model_id})

    def _prune_namespace(self, namespace: str, cutoff: datetime) -> int:
        pruned = 0
        for key in self.store.keys(namespace):
            removed = []

            def _apply(items):
                kept = [item for item in (items or []) if _parse_timestamp(item) >= cutoff]
                removed.append(len(items or []) - len(kept))
                return kept

            self.store.update(namespace, key, _apply)
            pruned += removed[-1] if removed else 0
        return pruned

    def _refresh_health_gauges(self):
        if not self.metrics:
            return
        counts = {state.value: 0 for state in HealthState}
        for status in self.get_all_model_health():
            counts[status.status.value] += 1
        self.metrics.set_model_health_counts(counts)

    def render_metrics(self) -> bytes:
        return self.metrics.generate_metrics() if self.metrics else b""


def _parse_timestamp(item: Dict[str, Any]) -> datetime:
    value = item.get("timestamp")
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
