from typing import Dict

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST

from utils.logger import setup_logger

logger = setup_logger(__name__)

PERFORMANCE_FIELDS = ("accuracy", "latency", "error_rate", "memory_usage", "cpu_usage", "throughput")


class PrometheusMetrics:
    """Engine gauges and counters on a private registry.

    Every engine instance owns its registry, so several engines (one per test,
    one per worker) never collide on metric names.
    """

    def __init__(self, enabled: bool = True, namespace: str = "personalization"):
        self.enabled = enabled
        self.registry = CollectorRegistry()

        if not self.enabled:
            return

        self.model_performance = Gauge(
            f'{namespace}_model_performance',
            'Latest reported scoring-model performance value',
            ['model_id', 'metric'],
            registry=self.registry
        )

        self.model_health = Gauge(
            f'{namespace}_models',
            'Number of monitored models by health status',
            ['status'],
            registry=self.registry
        )

        self.drift_score = Gauge(
            f'{namespace}_drift_score',
            'Latest Kolmogorov-Smirnov drift score per feature',
            ['feature'],
            registry=self.registry
        )

        self.drift_p_value = Gauge(
            f'{namespace}_drift_p_value',
            'Latest approximate drift p-value per feature',
            ['feature'],
            registry=self.registry
        )

        self.overall_drift_score = Gauge(
            f'{namespace}_overall_drift_score',
            'Mean drift score of the last multi-feature drift check',
            registry=self.registry
        )

        self.alerts_raised = Counter(
            f'{namespace}_alerts_raised_total',
            'Alerts raised after throttling',
            ['severity'],
            registry=self.registry
        )

        self.active_alerts = Gauge(
            f'{namespace}_active_alerts',
            'Unresolved alerts',
            registry=self.registry
        )

        self.recommendation_count = Counter(
            f'{namespace}_recommendations_total',
            'Recommendation requests served',
            ['outcome'],
            registry=self.registry
        )

        self.recommendation_duration = Histogram(
            f'{namespace}_recommendation_duration_seconds',
            'Recommendation pipeline duration in seconds',
            registry=self.registry
        )

        self.experiment_exposures = Counter(
            f'{namespace}_experiment_exposures_total',
            'Experiment results recorded',
            ['test_id', 'variant_id'],
            registry=self.registry
        )

        self.active_experiments = Gauge(
            f'{namespace}_active_experiments',
            'Experiments currently in the active state',
            registry=self.registry
        )

        self.quality_assessments = Counter(
            f'{namespace}_quality_assessments_total',
            'Artifact quality assessments by category',
            ['category'],
            registry=self.registry
        )

        self.quality_score = Histogram(
            f'{namespace}_quality_score',
            'Overall artifact quality score',
            buckets=(10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
            registry=self.registry
        )

        logger.info("Prometheus metrics initialized successfully", extra={"namespace": namespace})

    def record_model_performance(self, model_id: str, values: Dict[str, float]):
        if not self.enabled:
            return

        for metric in PERFORMANCE_FIELDS:
            if metric in values and values[metric] is not None:
                self.model_performance.labels(model_id=model_id, metric=metric).set(values[metric])

    def set_model_health_counts(self, counts: Dict[str, int]):
        if not self.enabled:
            return

        for status, count in counts.items():
            self.model_health.labels(status=status).set(count)

    def record_drift(self, feature: str, drift_score: float, p_value: float):
        if not self.enabled:
            return

        self.drift_score.labels(feature=feature).set(drift_score)
        self.drift_p_value.labels(feature=feature).set(p_value)

    def set_overall_drift(self, drift_score: float):
        if not self.enabled:
            return

        self.overall_drift_score.set(drift_score)

    def record_alert(self, severity: str):
        if not self.enabled:
            return

        self.alerts_raised.labels(severity=severity).inc()

    def set_active_alerts(self, count: int):
        if not self.enabled:
            return

        self.active_alerts.set(count)

    def record_recommendation(self, outcome: str, duration_seconds: float):
        if not self.enabled:
            return

        self.recommendation_count.labels(outcome=outcome).inc()
        self.recommendation_duration.observe(duration_seconds)

    def record_experiment_exposure(self, test_id: str, variant_id: str):
        if not self.enabled:
            return

        self.experiment_exposures.labels(test_id=test_id, variant_id=variant_id).inc()

    def set_active_experiments(self, count: int):
        if not self.enabled:
            return

        self.active_experiments.set(count)

    def record_quality_assessment(self, category: str, overall_score: float):
        if not self.enabled:
            return

        self.quality_assessments.labels(category=category).inc()
        self.quality_score.observe(overall_score)

    def generate_metrics(self) -> bytes:
        if not self.enabled:
            return b""

        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        if not self.enabled:
            return "text/plain"

        return CONTENT_TYPE_LATEST


