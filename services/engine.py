from __future__ import annotations
from typing import Any, Dict, Optional, Union

from config.config_loader import ConfigurationError, load_engine_config
from config.database import build_engine, create_db_and_tables
from config.settings import settings
from models.experiment import ExperimentResult
from models.features import BehaviorEvent, GenerationFeatures, GenerationOutcome
from models.quality import QualityAssessmentRequest
from models.recommendation import RecommendationContext, ToolUsageOutcome
from services.experiments import ExperimentFramework
from services.features import FeatureStore
from services.monitoring import MonitoringService
from services.quality import QualityAssessor
from services.recommendation import RecommendationEngine
from services.storage import InMemoryStore, KeyValueStore, SQLModelStore
from utils.clock import SystemClock
from utils.fallback import log_and_ignore
from utils.logger import setup_logger
from utils.prometheus_metrics import PrometheusMetrics

logger = setup_logger(__name__)


class PersonalizationEngine:
    """
    One set of services sharing a store, a clock and a metrics registry.

    Build one per process (or per test) and pass it where it is needed; there
    is no module-level instance.
    """

    def __init__(
        self,
        store: KeyValueStore,
        metrics: Optional[PrometheusMetrics] = None,
        clock=None,
        config: Optional[Dict[str, Any]] = None,
        hash_seed: Optional[int] = None,
        quality_assessor: Optional[QualityAssessor] = None,
    ):
        config = config or load_engine_config()
        self.config = config
        self.store = store
        self.metrics = metrics if metrics is not None else PrometheusMetrics(enabled=settings.PROMETHEUS_ENABLED)
        self.clock = clock or SystemClock()

        self.quality = quality_assessor or QualityAssessor(store, metrics=self.metrics)
        self.features = FeatureStore(store, clock=self.clock, hash_seed=hash_seed)
        self.recommendations = RecommendationEngine(
            store,
            self.features,
            quality_assessor=self.quality,
            metrics=self.metrics,
            clock=self.clock,
            weights=config["scoring"]["weights"],
        )
        self.experiments = ExperimentFramework(
            store,
            metrics=self.metrics,
            clock=self.clock,
            hash_seed=hash_seed,
            significance=config["experiments"]["significance"],
        )
        self.monitoring = MonitoringService(
            store,
            metrics=self.metrics,
            clock=self.clock,
            thresholds=config["monitoring"]["thresholds"],
            drift_config=config["monitoring"]["drift"],
        )

    # -- fire-and-forget ingestion ------------------------------------------

    @log_and_ignore("record_behavior")
    def record_behavior(self, event: BehaviorEvent) -> Optional[int]:
        return self.features.record_behavior(event)

    @log_and_ignore("record_tool_usage")
    def record_tool_usage(
        self,
        tool_id: str,
        context: RecommendationContext,
        outcome: ToolUsageOutcome
    ) -> Optional[bool]:
        return self.recommendations.record_tool_usage(tool_id, context, outcome)

    @log_and_ignore("record_test_result")
    def record_test_result(self, result: ExperimentResult) -> Optional[bool]:
        return self.experiments.record_test_result(result)

    @log_and_ignore("record_generation_outcome")
    def record_generation_outcome(
        self,
        generation_id: str,
        success: bool,
        generation_time: float = 0.0,
        image_data: Optional[Union[bytes, str]] = None,
        user_satisfaction: Optional[int] = None,
    ) -> Optional[GenerationFeatures]:
        """
        Fold a finished generation into every aggregate that depends on it.

        The artifact (when supplied) is assessed first so that its quality
        score lands on the generation record and in the tool history. Only
        the delivery that actually sets the outcome reaches the quality and
        tool statistics; repeated deliveries return the stored record.
        """
        generation = self.features.get_generation(generation_id)
        if generation is None:
            logger.warning("Outcome for unknown generation ignored", extra={"generation_id": generation_id})
            return None
        if generation.outcome is not None:
            logger.info("Outcome for completed generation ignored", extra={"generation_id": generation_id})
            return generation

        assessment = None
        quality_score = 0.0
        if image_data is not None and success:
            assessment = self.quality.assess_image_quality(
                QualityAssessmentRequest(
                    image_data=image_data,
                    original_prompt=generation.prompt_text,
                    tool_id=generation.tool_id,
                ),
                record=False,
            )
            if not assessment.degraded:
                quality_score = float(assessment.overall_score)

        outcome = GenerationOutcome(
            success=success,
            generation_time=generation_time,
            quality_score=quality_score,
            user_satisfaction=user_satisfaction,
        )
        updated, applied = self.features.apply_generation_result(generation_id, outcome)
        if not applied:
            return updated

        if assessment is not None:
            self.quality.record_assessment(generation.tool_id, assessment)

        context = RecommendationContext(
            user_id=generation.user_id,
            current_time=generation.timestamp,
            user_prompt=generation.prompt_text,
            has_images=generation.has_images,
            image_count=generation.input_image_count,
            device_type=generation.device_type,
            network_speed=generation.network_speed,
        )
        self.recommendations.record_tool_usage(
            generation.tool_id,
            context,
            ToolUsageOutcome(
                success=success,
                generation_time=generation_time,
                quality_score=quality_score,
                user_satisfaction=user_satisfaction,
            ),
        )
        return updated

    def close(self):
        self.quality.close()
        self.store.close()


def build_store(backend: Optional[str] = None, database_url: Optional[str] = None) -> KeyValueStore:
    backend = (backend or settings.STORAGE_BACKEND).lower()
    if backend == "memory":
        return InMemoryStore()
    if backend == "sql":
        target = build_engine(database_url or settings.DATABASE_URL, echo=settings.DEBUG)
        create_db_and_tables(target)
        return SQLModelStore(target)
    raise ConfigurationError(f"unknown storage backend: {backend} (expected memory or sql)")


def build_engine_from_settings(backend: Optional[str] = None) -> PersonalizationEngine:
    config = load_engine_config(settings.CONFIG_PATH)
    store = build_store(backend)
    logger.info(
        "Personalization engine built",
        extra={"storage_backend": backend or settings.STORAGE_BACKEND, "scoring_version": config["scoring"]["version"]}
    )
    return PersonalizationEngine(store, config=config)
