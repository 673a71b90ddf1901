from __future__ import annotations
from typing import Any, Dict, List, Optional

from config.settings import settings
from models.experiment import (
    AnalysisStatus,
    AssignmentContext,
    AudienceCriteria,
    ExperimentAnalysis,
    ExperimentConfig,
    ExperimentResult,
    ExperimentStats,
    ExperimentStatus,
    ExperimentVariant,
    ExperimentWinner,
    MetricAnalysis,
    MetricDefinition,
    TargetAudience,
    VariantAnalysis,
    VariantChange,
)
from services.experiments.statistics import mean_and_interval, percent_improvement, pooled_t_test
from services.storage.base import KeyValueStore
from utils.clock import SystemClock
from utils.errors import NotFoundError, ValidationError
from utils.hashing import hash_fraction, stable_hash64
from utils.keyed_lock import KeyedLock
from utils.logger import setup_logger

logger = setup_logger(__name__)

ACTIVE_NAMESPACE = "experiments_active"
HISTORY_NAMESPACE = "experiments_history"
RESULTS_NAMESPACE = "experiment_results"
ASSIGNMENT_NAMESPACE = "experiment_assignments"

EXCLUDED = "__excluded__"
SPLIT_TOLERANCE = 0.01
MIN_CONCLUSIVE_SAMPLES = 100
INCONCLUSIVE_SAMPLES = 1000
AUTO_STOP_SAMPLES = 500
REDESIGN_SAMPLES = 5000
WINNER_CONFIDENCE = 0.95
AUTO_STOP_REASON = "auto_stop_conclusive"
DEFAULT_SIGNIFICANCE = 0.05

METRIC_PRESETS: Dict[str, Dict[str, Any]] = {
    "quality": {"name": "Image quality", "type": "quality", "target": "80", "unit": "score", "higher_is_better": True},
    "satisfaction": {"name": "User satisfaction", "type": "satisfaction", "target": "4.0", "unit": "rating", "higher_is_better": True},
    "generation_time": {"name": "Generation time", "type": "performance", "target": "30", "unit": "seconds", "higher_is_better": False},
    "conversion_rate": {"name": "Conversion rate", "type": "conversion", "target": "0.1", "unit": "rate", "higher_is_better": True},
    "engagement": {"name": "Engagement", "type": "engagement", "target": "5", "unit": "actions", "higher_is_better": True},
}


def metric_definition(metric_id: str, significance: float = DEFAULT_SIGNIFICANCE) -> MetricDefinition:
    preset = METRIC_PRESETS.get(metric_id, {})
    return MetricDefinition(
        id=metric_id,
        name=preset.get("name", metric_id),
        type=preset.get("type", "engagement"),
        target=preset.get("target", "1"),
        unit=preset.get("unit", "count"),
        higher_is_better=preset.get("higher_is_better", True),
        significance=significance,
    )


def validate_test_config(config: ExperimentConfig) -> ExperimentConfig:
    """
    Check a test definition and return a normalized copy.

    The copy has exactly one control variant (the first one when none is
    marked) and a traffic split that sums to exactly 1.
    """
    if not config.test_id or not config.test_name:
        raise ValidationError("test_id and test_name are required")
    if len(config.variants) < 2:
        raise ValidationError("at least 2 variants are required")

    variant_ids = [variant.id for variant in config.variants]
    if len(set(variant_ids)) != len(variant_ids):
        raise ValidationError("variant ids must be unique")

    controls = [variant for variant in config.variants if variant.is_control]
    if len(controls) > 1:
        raise ValidationError("at most one variant can be the control")

    percentage = config.target_users.percentage
    if percentage <= 0 or percentage > 1:
        raise ValidationError("target user percentage must be in (0, 1]")

    normalized = config.model_copy(deep=True)
    if not controls:
        normalized.variants[0].is_control = True

    split = dict(config.traffic_split or {})
    if not split:
        share = 1.0 / len(variant_ids)
        split = {variant_id: share for variant_id in variant_ids}
    else:
        if set(split) != set(variant_ids):
            raise ValidationError("traffic split must name every variant exactly once")
        if any(share < 0 for share in split.values()):
            raise ValidationError("traffic split shares must not be negative")
        total = sum(split.values())
        if abs(total - 1) > SPLIT_TOLERANCE:
            raise ValidationError(f"traffic split must sum to 1, got {total:.4f}")
        split = {variant_id: share / total for variant_id, share in split.items()}

    normalized.traffic_split = split
    return normalized


def audience_matches(criteria: Optional[AudienceCriteria], context: AssignmentContext) -> bool:
    if criteria is None:
        return True
    if criteria.new_users is not None and criteria.new_users != context.is_new_user:
        return False
    if criteria.skill_level and criteria.skill_level != context.user_skill_level:
        return False
    if criteria.device_types and context.device_type not in criteria.device_types:
        return False
    if criteria.active_users is not None and criteria.active_users != context.is_active_user:
        return False
    return True


class ExperimentFramework:
    """
    Controlled experiments over tool and parameter variants.

    Assignment is a pure function of (user, test, seed): an eligibility hash
    against the audience percentage, then an independently salted hash into
    the cumulative traffic split. The first decision is persisted with
    first-write-wins semantics, so racing first calls agree and excluded
    users stay excluded.
    """

    def __init__(
        self,
        store: KeyValueStore,
        metrics=None,
        clock=None,
        hash_seed: Optional[int] = None,
        auto_stop: Optional[bool] = None,
        auto_stop_check_interval: Optional[int] = None,
        significance: float = DEFAULT_SIGNIFICANCE,
    ):
        self.store = store
        self.metrics = metrics
        self.clock = clock or SystemClock()
        self.hash_seed = settings.HASH_SEED if hash_seed is None else hash_seed
        self.variant_seed = stable_hash64("variant", self.hash_seed)
        self.auto_stop = settings.EXPERIMENT_AUTO_STOP if auto_stop is None else auto_stop
        self.auto_stop_check_interval = auto_stop_check_interval or settings.EXPERIMENT_AUTO_STOP_CHECK_INTERVAL
        self.significance = significance
        self._test_locks = KeyedLock()

    # -- lifecycle ----------------------------------------------------------

    def create_test(self, config: ExperimentConfig) -> ExperimentConfig:
        normalized = validate_test_config(config)
        normalized.status = ExperimentStatus.DRAFT
        normalized.created_at = self.clock.now()
        normalized.start_date = None
        normalized.end_date = None

        payload = normalized.model_dump(mode="json")
        with self._test_locks.hold(normalized.test_id):
            if self.store.get(HISTORY_NAMESPACE, normalized.test_id) is not None:
                raise ValidationError(f"test {normalized.test_id} already exists")
            stored = self.store.set_if_absent(ACTIVE_NAMESPACE, normalized.test_id, payload)
            if stored != payload:
                raise ValidationError(f"test {normalized.test_id} already exists")

        logger.info(
            "Experiment created",
            extra={
                "test_id": normalized.test_id,
                "variants": [variant.id for variant in normalized.variants],
                "traffic_split": normalized.traffic_split,
            }
        )
        return normalized

    def start_test(self, test_id: str) -> ExperimentConfig:
        with self._test_locks.hold(test_id):
            config = self._require_test(test_id)
            if config.status == ExperimentStatus.COMPLETED:
                raise ValidationError(f"test {test_id} is completed and cannot be restarted")
            if config.status == ExperimentStatus.ACTIVE:
                return config
            config.status = ExperimentStatus.ACTIVE
            config.start_date = self.clock.now()
            self.store.set(ACTIVE_NAMESPACE, test_id, config.model_dump(mode="json"))

        self._refresh_active_gauge()
        logger.info("Experiment started", extra={"test_id": test_id})
        return config

    def pause_test(self, test_id: str) -> ExperimentConfig:
        with self._test_locks.hold(test_id):
            config = self._require_test(test_id)
            if config.status != ExperimentStatus.ACTIVE:
                raise ValidationError(f"only active tests can be paused, {test_id} is {config.status.value}")
            config.status = ExperimentStatus.PAUSED
            self.store.set(ACTIVE_NAMESPACE, test_id, config.model_dump(mode="json"))

        self._refresh_active_gauge()
        logger.info("Experiment paused", extra={"test_id": test_id})
        return config

    def stop_test(self, test_id: str, reason: Optional[str] = None) -> ExperimentConfig:
        with self._test_locks.hold(test_id):
            data = self.store.get(ACTIVE_NAMESPACE, test_id)
            if data is None:
                raise NotFoundError(f"test {test_id} not found")
            config = ExperimentConfig.model_validate(data)
            config.status = ExperimentStatus.COMPLETED
            config.end_date = self.clock.now()
            config.stop_reason = reason
            self.store.set(HISTORY_NAMESPACE, test_id, config.model_dump(mode="json"))
            self.store.delete(ACTIVE_NAMESPACE, test_id)

        self._refresh_active_gauge()
        logger.info("Experiment stopped", extra={"test_id": test_id, "reason": reason})
        return config

    def get_test(self, test_id: str) -> Optional[ExperimentConfig]:
        data = self.store.get(ACTIVE_NAMESPACE, test_id) or self.store.get(HISTORY_NAMESPACE, test_id)
        return ExperimentConfig.model_validate(data) if data else None

    def get_active_tests(self) -> List[ExperimentConfig]:
        tests = []
        for test_id in self.store.keys(ACTIVE_NAMESPACE):
            data = self.store.get(ACTIVE_NAMESPACE, test_id)
            if data and data.get("status") == ExperimentStatus.ACTIVE.value:
                tests.append(ExperimentConfig.model_validate(data))
        return tests

    def list_tests(self) -> List[ExperimentConfig]:
        tests = []
        for namespace in (ACTIVE_NAMESPACE, HISTORY_NAMESPACE):
            for test_id in self.store.keys(namespace):
                data = self.store.get(namespace, test_id)
                if data:
                    tests.append(ExperimentConfig.model_validate(data))
        return tests

    def _require_test(self, test_id: str) -> ExperimentConfig:
        data = self.store.get(ACTIVE_NAMESPACE, test_id)
        if data is None:
            if self.store.get(HISTORY_NAMESPACE, test_id) is not None:
                raise ValidationError(f"test {test_id} is completed")
            raise NotFoundError(f"test {test_id} not found")
        return ExperimentConfig.model_validate(data)

    def _refresh_active_gauge(self):
        if self.metrics:
            self.metrics.set_active_experiments(len(self.get_active_tests()))

    # -- assignment ---------------------------------------------------------

    def get_user_variant(
        self,
        user_id: str,
        test_id: str,
        context: Optional[AssignmentContext] = None
    ) -> Optional[str]:
        """Variant id for the user, or None when the test is not running or the user is excluded."""
        data = self.store.get(ACTIVE_NAMESPACE, test_id)
        if data is None or data.get("status") != ExperimentStatus.ACTIVE.value:
            return None

        key = f"{test_id}:{user_id}"
        existing = self.store.get(ASSIGNMENT_NAMESPACE, key)
        if existing is not None:
            return None if existing == EXCLUDED else existing

        config = ExperimentConfig.model_validate(data)
        decision = self._decide(user_id, config, context or AssignmentContext())
        stored = self.store.set_if_absent(ASSIGNMENT_NAMESPACE, key, decision)

        if stored == decision:
            logger.debug(
                "User assigned",
                extra={"test_id": test_id, "user_id": user_id, "variant_id": None if decision == EXCLUDED else decision}
            )
        return None if stored == EXCLUDED else stored

    def _decide(self, user_id: str, config: ExperimentConfig, context: AssignmentContext) -> str:
        if not audience_matches(config.target_users.criteria, context):
            return EXCLUDED
        if hash_fraction(f"{user_id}:{config.test_id}", self.hash_seed) >= config.target_users.percentage:
            return EXCLUDED
        return self.assign_variant(user_id, config)

    def assign_variant(self, user_id: str, config: ExperimentConfig) -> str:
        point = hash_fraction(f"{user_id}:{config.test_id}:variant", self.variant_seed)
        cumulative = 0.0
        for variant in config.variants:
            cumulative += config.traffic_split.get(variant.id, 0.0)
            if point < cumulative:
                return variant.id
        # rounding left the top of the range uncovered
        return config.variants[-1].id

    # -- results ------------------------------------------------------------

    def record_test_result(self, result: ExperimentResult) -> bool:
        data = self.store.get(ACTIVE_NAMESPACE, result.test_id)
        if data is None or data.get("status") != ExperimentStatus.ACTIVE.value:
            logger.warning(
                "Result for unknown or inactive test ignored",
                extra={"test_id": result.test_id, "user_id": result.user_id}
            )
            return False

        config = ExperimentConfig.model_validate(data)
        if result.variant_id not in {variant.id for variant in config.variants}:
            logger.warning(
                "Result for unknown variant ignored",
                extra={"test_id": result.test_id, "variant_id": result.variant_id}
            )
            return False

        count = self.store.append(RESULTS_NAMESPACE, result.test_id, result.model_dump(mode="json"))
        if self.metrics:
            self.metrics.record_experiment_exposure(result.test_id, result.variant_id)

        if count % self.auto_stop_check_interval == 0:
            self._check_auto_stop(result.test_id)
        return True

    def get_results(self, test_id: str) -> List[ExperimentResult]:
        return [ExperimentResult.model_validate(item) for item in self.store.get_list(RESULTS_NAMESPACE, test_id)]

    def _check_auto_stop(self, test_id: str):
        analysis = self.analyze_test(test_id)
        if analysis.status == AnalysisStatus.CONCLUSIVE and analysis.total_samples >= AUTO_STOP_SAMPLES:
            if self.auto_stop:
                logger.info(
                    "Experiment reached a conclusive result, stopping",
                    extra={"test_id": test_id, "winner": analysis.winner.variant_id, "samples": analysis.total_samples}
                )
                self.stop_test(test_id, reason=AUTO_STOP_REASON)
            else:
                logger.info("Experiment reached a conclusive result", extra={"test_id": test_id})
        elif analysis.total_samples >= REDESIGN_SAMPLES:
            logger.warning(
                "Experiment has a large sample without a conclusion, consider redesigning it",
                extra={"test_id": test_id, "samples": analysis.total_samples}
            )

    # -- analysis -----------------------------------------------------------

    def analyze_test(self, test_id: str) -> ExperimentAnalysis:
        config = self.get_test(test_id)
        if config is None:
            raise NotFoundError(f"test {test_id} not found")

        results = self.get_results(test_id)
        by_variant: Dict[str, List[ExperimentResult]] = {variant.id: [] for variant in config.variants}
        for result in results:
            if result.variant_id in by_variant:
                by_variant[result.variant_id].append(result)

        control = config.control_variant()
        control_results = by_variant.get(control.id, []) if control else []

        analysis = ExperimentAnalysis(test_id=test_id, total_samples=len(results))
        for variant in config.variants:
            variant_results = by_variant[variant.id]
            variant_analysis = VariantAnalysis(
                variant_id=variant.id,
                variant_name=variant.name,
                is_control=variant.is_control,
                sample_size=len(variant_results),
            )
            if variant_results:
                for metric in config.metrics:
                    metric_analysis = self._analyze_metric(metric, variant, variant_results, control_results)
                    if metric_analysis is not None:
                        variant_analysis.metrics[metric.id] = metric_analysis
            analysis.results.append(variant_analysis)

        self._determine_outcome(analysis, config)
        analysis.recommendations = self._recommendations(analysis, config)
        return analysis

    @staticmethod
    def _analyze_metric(
        metric: MetricDefinition,
        variant: ExperimentVariant,
        variant_results: List[ExperimentResult],
        control_results: List[ExperimentResult],
    ) -> Optional[MetricAnalysis]:
        values = [r.metrics[metric.id] for r in variant_results if metric.id in r.metrics]
        if not values:
            return None

        mean, interval = mean_and_interval(values)
        analysis = MetricAnalysis(value=mean, sample_size=len(values), confidence_interval=interval)

        if variant.is_control:
            return analysis
        control_values = [r.metrics[metric.id] for r in control_results if metric.id in r.metrics]
        if not control_values:
            return analysis

        t_stat, p_value = pooled_t_test(values, control_values)
        control_mean = sum(control_values) / len(control_values)
        analysis.t_statistic = t_stat
        analysis.p_value = p_value
        analysis.is_significant = p_value < metric.significance
        analysis.improvement = percent_improvement(mean, control_mean)
        return analysis

    @staticmethod
    def _determine_outcome(analysis: ExperimentAnalysis, config: ExperimentConfig):
        best: Optional[VariantAnalysis] = None
        best_score = float("-inf")

        for variant_analysis in analysis.results:
            score = 0.0
            significant = 0
            for metric in config.metrics:
                metric_analysis = variant_analysis.metrics.get(metric.id)
                if metric_analysis is None or not metric_analysis.is_significant:
                    continue
                significant += 1
                clipped = max(-100.0, min(100.0, metric_analysis.improvement))
                score += clipped if metric.higher_is_better else -clipped
            if significant and score > best_score:
                best_score = score
                best = variant_analysis

        if best is not None and best_score > 0 and analysis.total_samples >= MIN_CONCLUSIVE_SAMPLES:
            analysis.status = AnalysisStatus.CONCLUSIVE
            analysis.winner = ExperimentWinner(
                variant_id=best.variant_id,
                confidence=WINNER_CONFIDENCE,
                combined_score=best_score,
                improvement={metric_id: m.improvement for metric_id, m in best.metrics.items()},
            )
        elif analysis.total_samples >= INCONCLUSIVE_SAMPLES:
            analysis.status = AnalysisStatus.INCONCLUSIVE

    @staticmethod
    def _recommendations(analysis: ExperimentAnalysis, config: ExperimentConfig) -> List[str]:
        recommendations = []
        if analysis.status == AnalysisStatus.CONCLUSIVE and analysis.winner:
            winner = next((v for v in config.variants if v.id == analysis.winner.variant_id), None)
            name = winner.name if winner else analysis.winner.variant_id
            recommendations.append(f'Adopt variant "{name}": it improves the key metrics significantly')
            improvements = [
                f"{metric_id}: {value:+.1f}%"
                for metric_id, value in analysis.winner.improvement.items()
                if abs(value) > 5
            ]
            if improvements:
                recommendations.append(f"Main improvements: {', '.join(improvements)}")
        elif analysis.status == AnalysisStatus.INCONCLUSIVE:
            recommendations.append("Results are not significant; extend the test or increase the sample size")
        else:
            recommendations.append("Test is still running; keep collecting data")
            remaining = MIN_CONCLUSIVE_SAMPLES - analysis.total_samples
            if remaining > 0:
                recommendations.append(f"Collect at least {remaining} more samples")
        return recommendations

    def get_test_stats(self, test_id: str) -> ExperimentStats:
        if self.get_test(test_id) is None:
            raise NotFoundError(f"test {test_id} not found")

        results = self.get_results(test_id)
        distribution: Dict[str, int] = {}
        conversions: Dict[str, int] = {}
        values: Dict[str, Dict[str, List[float]]] = {}
        for result in results:
            distribution[result.variant_id] = distribution.get(result.variant_id, 0) + 1
            if result.completed:
                conversions[result.variant_id] = conversions.get(result.variant_id, 0) + 1
            for metric_id, value in result.metrics.items():
                values.setdefault(result.variant_id, {}).setdefault(metric_id, []).append(value)

        return ExperimentStats(
            total_samples=len(results),
            variant_distribution=distribution,
            conversion_rates={
                variant_id: conversions.get(variant_id, 0) / total
                for variant_id, total in distribution.items()
            },
            average_metrics={
                variant_id: {metric_id: sum(v) / len(v) for metric_id, v in metrics.items()}
                for variant_id, metrics in values.items()
            },
        )

    # -- builders -----------------------------------------------------------

    def create_tool_comparison_test(
        self,
        test_name: str,
        tool_a: str,
        tool_b: str,
        target_metrics: Optional[List[str]] = None
    ) -> ExperimentConfig:
        metric_ids = target_metrics or ["quality", "satisfaction", "generation_time"]
        stamp = int(self.clock.now().timestamp() * 1000)
        return ExperimentConfig(
            test_id=f"tool-comparison-{stamp}",
            test_name=f"{test_name}: {tool_a} vs {tool_b}",
            description=f"Compare {tool_a} with {tool_b}",
            target_users=TargetAudience(percentage=0.2, criteria=AudienceCriteria(active_users=True)),
            variants=[
                ExperimentVariant(
                    id="control",
                    name=tool_a,
                    description=f"Use {tool_a}",
                    changes=[VariantChange(type="tool", target="selected_tool", value=tool_a)],
                    is_control=True,
                ),
                ExperimentVariant(
                    id="variant",
                    name=tool_b,
                    description=f"Use {tool_b}",
                    changes=[VariantChange(type="tool", target="selected_tool", value=tool_b)],
                ),
            ],
            metrics=[metric_definition(metric_id, self.significance) for metric_id in metric_ids],
            traffic_split={"control": 0.5, "variant": 0.5},
        )

    def create_parameter_optimization_test(
        self,
        test_name: str,
        tool_id: str,
        parameter_name: str,
        values: List[Any]
    ) -> ExperimentConfig:
        if len(values) < 2:
            raise ValidationError("at least 2 parameter values are required")

        stamp = int(self.clock.now().timestamp() * 1000)
        variants = [
            ExperimentVariant(
                id=f"param-{index}",
                name=f"{parameter_name}={value}",
                description=f"Set {parameter_name} to {value}",
                changes=[VariantChange(
                    type="parameter",
                    target=parameter_name,
                    value=value,
                    condition=f"tool_id == '{tool_id}'",
                )],
                is_control=index == 0,
            )
            for index, value in enumerate(values)
        ]
        return ExperimentConfig(
            test_id=f"param-optimization-{stamp}",
            test_name=f"{test_name}: {tool_id} parameter optimization",
            description=f"Compare values of {parameter_name} for {tool_id}",
            target_users=TargetAudience(percentage=0.3, criteria=AudienceCriteria(skill_level="intermediate")),
            variants=variants,
            metrics=[metric_definition("quality", self.significance), metric_definition("satisfaction", self.significance)],
            traffic_split={variant.id: 1.0 / len(variants) for variant in variants},
        )
