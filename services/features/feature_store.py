from __future__ import annotations
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from config.settings import settings
from models.features import (
    BehaviorEvent,
    BehaviorInsights,
    ComplexityPreference,
    DeviceType,
    FeatureVector,
    GenerationFeatures,
    GenerationOutcome,
    GenerationRequest,
    NetworkSpeed,
    QualityTrend,
    SuccessRateAnalysis,
    ToolPreferencePrediction,
    UserFeatures,
    UserStats,
)
from services.features.behavior_predictor import BehaviorPredictor
from services.features.text_features import (
    calculate_creativity,
    calculate_parameter_complexity,
    calculate_prompt_complexity,
    calculate_sentiment,
    calculate_specificity,
    calculate_trend,
    clamp01,
    extract_keywords,
    extract_semantic_categories,
    generate_prompt_embedding,
    is_default_parameters,
)
from services.storage.base import KeyValueStore
from utils.clock import SystemClock
from utils.errors import ValidationError
from utils.logger import setup_logger

logger = setup_logger(__name__)

USER_FEATURES_NAMESPACE = "user_features"
GENERATION_HISTORY_NAMESPACE = "generation_history"
GENERATION_INDEX_NAMESPACE = "generation_index"
SCALER_NAMESPACE = "feature_scalers"

SESSION_GAP = timedelta(minutes=30)
RECENT_QUALITY_WINDOW = 10
MIN_HISTORY_FOR_INSIGHTS = 5

LEARNING_CURVE = {
    QualityTrend.IMPROVING: 0.8,
    QualityTrend.STABLE: 0.5,
    QualityTrend.DECLINING: 0.2,
}

TREND_TO_QUALITY = {
    "increasing": QualityTrend.IMPROVING,
    "stable": QualityTrend.STABLE,
    "decreasing": QualityTrend.DECLINING,
}

# Fixed vector layout. Reordering breaks stored scalers and importance maps.
USER_NUMERIC_FIELDS: List[Tuple[str, str]] = [
    ("user_accountAge", "account_age_days"),
    ("user_totalGenerations", "total_generations"),
    ("user_successRate", "success_rate"),
    ("user_averageSessionLength", "average_session_length"),
    ("user_sessionsPerWeek", "sessions_per_week"),
    ("user_averagePromptLength", "average_prompt_length"),
    ("user_averageQualityScore", "average_quality_score"),
    ("user_averageSatisfactionRating", "average_satisfaction_rating"),
    ("user_explorationScore", "exploration_score"),
    ("user_consistencyScore", "consistency_score"),
    ("user_learningCurve", "learning_curve"),
]

GENERATION_NUMERIC_FIELDS: List[Tuple[str, str]] = [
    ("gen_promptLength", "prompt_length"),
    ("gen_promptComplexity", "prompt_complexity"),
    ("gen_keywordCount", "keyword_count"),
    ("gen_inputImageCount", "input_image_count"),
    ("gen_sentimentScore", "sentiment_score"),
    ("gen_creativityScore", "creativity_score"),
    ("gen_specificityScore", "specificity_score"),
    ("gen_parameterComplexity", "parameter_complexity"),
    ("gen_timeOfDay", "time_of_day"),
    ("gen_dayOfWeek", "day_of_week"),
    ("gen_sessionPosition", "session_position"),
]


def _top_keys(counts: Dict[str, int], limit: int) -> List[str]:
    return [key for key, _ in sorted(counts.items(), key=lambda item: item[1], reverse=True)[:limit]]


def _complexity_preference(average_complexity: float) -> ComplexityPreference:
    if average_complexity < 0.3:
        return ComplexityPreference.SIMPLE
    if average_complexity < 0.7:
        return ComplexityPreference.MODERATE
    return ComplexityPreference.COMPLEX


def merge_generation(features: UserFeatures, generation: GenerationFeatures, now: datetime) -> UserFeatures:
    """
    Fold one completed generation into the user's running aggregates.

    Derived scores are recomputed from the updated counters on every merge.
    """
    outcome = generation.outcome
    if outcome is None:
        return features

    f = features.model_copy(deep=True)

    f.total_generations += 1
    if outcome.success:
        f.successful_generations += 1
    f.success_rate = clamp01(f.successful_generations / f.total_generations)

    hour = str(generation.time_of_day)
    f.hour_counts[hour] = f.hour_counts.get(hour, 0) + 1
    f.preferred_hours = [int(h) for h in _top_keys(f.hour_counts, 3)]

    f.tool_counts[generation.tool_id] = f.tool_counts.get(generation.tool_id, 0) + 1
    f.most_used_tools = _top_keys(f.tool_counts, 5)

    device = generation.device_type.value
    f.device_counts[device] = f.device_counts.get(device, 0) + 1
    f.primary_device_type = DeviceType(_top_keys(f.device_counts, 1)[0])

    network = generation.network_speed.value
    f.network_counts[network] = f.network_counts.get(network, 0) + 1
    f.typical_network_speed = NetworkSpeed(_top_keys(f.network_counts, 1)[0])

    if generation.timestamp < f.first_seen:
        f.first_seen = generation.timestamp
    if f.last_event_at is None or generation.timestamp - f.last_event_at > SESSION_GAP:
        f.session_count += 1
    if f.last_event_at is None or generation.timestamp > f.last_event_at:
        f.last_event_at = generation.timestamp
    f.last_updated = now

    f.average_session_length = f.total_generations / f.session_count
    weeks = max(f.account_age_days / 7.0, 1.0)
    f.sessions_per_week = f.session_count / weeks

    f.prompt_length_total += generation.prompt_length
    f.average_prompt_length = f.prompt_length_total / f.total_generations
    f.complexity_total += generation.prompt_complexity
    f.complexity_preference = _complexity_preference(f.complexity_total / f.total_generations)

    if outcome.quality_score > 0:
        f.quality_total += outcome.quality_score
        f.quality_count += 1
        f.average_quality_score = f.quality_total / f.quality_count
        f.recent_quality = (f.recent_quality + [outcome.quality_score])[-RECENT_QUALITY_WINDOW:]
        f.quality_trend = TREND_TO_QUALITY[calculate_trend(f.recent_quality)]

    satisfaction = generation.user_satisfaction or outcome.user_satisfaction
    if satisfaction is not None:
        f.satisfaction_total += satisfaction
        f.satisfaction_count += 1
        f.average_satisfaction_rating = f.satisfaction_total / f.satisfaction_count

    distinct_tools = len(f.tool_counts)
    f.exploration_score = min(distinct_tools / 10.0, 1.0)
    f.consistency_score = clamp01(1 - distinct_tools / f.total_generations)
    f.learning_curve = LEARNING_CURVE[f.quality_trend]
    return f


class FeatureStore:
    """
    Per-user and per-generation feature aggregation.

    Generation records are written at request time and receive their outcome
    exactly once; the user aggregate is folded forward when an outcome lands.
    Feature vectors are normalized with online min-max scalers persisted per
    feature name. Early vectors are unstable until the scalers have seen a
    spread of values.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock=None,
        hash_seed: Optional[int] = None,
        history_limit: Optional[int] = None,
        behavior_history_limit: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.hash_seed = settings.HASH_SEED if hash_seed is None else hash_seed
        self.history_limit = history_limit or settings.GENERATION_HISTORY_LIMIT
        self.behavior = BehaviorPredictor(store, clock=self.clock, history_limit=behavior_history_limit)

    # -- generation records -------------------------------------------------

    def extract_generation_features(self, request: GenerationRequest) -> GenerationFeatures:
        prompt = (request.prompt or "").strip()
        if not prompt:
            raise ValidationError("prompt must not be empty")

        timestamp = request.timestamp or self.clock.now()
        keywords = extract_keywords(prompt)
        parameters = dict(request.parameters or {})

        features = GenerationFeatures(
            user_id=request.user_id,
            tool_id=request.tool_id,
            timestamp=timestamp,
            prompt_text=prompt,
            prompt_length=len(prompt),
            prompt_complexity=calculate_prompt_complexity(prompt),
            keywords=keywords,
            keyword_count=len(keywords),
            has_images=request.image_count > 0,
            input_image_count=request.image_count,
            prompt_embedding=generate_prompt_embedding(keywords, self.hash_seed),
            semantic_categories=extract_semantic_categories(prompt),
            sentiment_score=calculate_sentiment(prompt),
            creativity_score=calculate_creativity(prompt),
            specificity_score=calculate_specificity(prompt),
            tool_parameters=parameters,
            parameter_complexity=calculate_parameter_complexity(parameters),
            is_default_parameters=is_default_parameters(parameters),
            device_type=request.device_type,
            network_speed=request.network_speed,
            time_of_day=timestamp.hour,
            day_of_week=timestamp.weekday(),
            session_position=self._session_position(request.user_id, timestamp),
        )
        if request.generation_id:
            features.generation_id = request.generation_id

        record = features.model_dump(mode="json")
        evicted: List[str] = []

        def _append(history):
            history = list(history or [])
            history.append(record)
            overflow = len(history) - self.history_limit
            if overflow > 0:
                evicted.extend(item.get("generation_id") for item in history[:overflow])
                history = history[overflow:]
            return history

        self.store.update(GENERATION_HISTORY_NAMESPACE, request.user_id, _append)
        self.store.set(GENERATION_INDEX_NAMESPACE, features.generation_id, request.user_id)
        # the index only points at records still present in the history
        for generation_id in evicted:
            if generation_id and generation_id != features.generation_id:
                self.store.delete(GENERATION_INDEX_NAMESPACE, generation_id)

        logger.debug(
            "Generation features extracted",
            extra={
                "generation_id": features.generation_id,
                "user_id": request.user_id,
                "tool_id": request.tool_id,
                "prompt_complexity": round(features.prompt_complexity, 3),
            }
        )
        return features

    def get_generation_history(self, user_id: str) -> List[GenerationFeatures]:
        return [
            GenerationFeatures.model_validate(item)
            for item in self.store.get_list(GENERATION_HISTORY_NAMESPACE, user_id)
        ]

    def get_generation(self, generation_id: str) -> Optional[GenerationFeatures]:
        user_id = self.store.get(GENERATION_INDEX_NAMESPACE, generation_id)
        if user_id is None:
            return None
        for item in self.store.get_list(GENERATION_HISTORY_NAMESPACE, user_id):
            if item.get("generation_id") == generation_id:
                return GenerationFeatures.model_validate(item)
        return None

    def update_generation_result(
        self,
        generation_id: str,
        outcome: GenerationOutcome
    ) -> Optional[GenerationFeatures]:
        """
        Attach the outcome to a generation record.

        The outcome is set once. Repeating the same outcome is a no-op; a
        different outcome for an already completed generation is logged and
        ignored. Unknown ids are logged and ignored, since a generation can
        finish before its request record is written.
        """
        record, _ = self.apply_generation_result(generation_id, outcome)
        return record

    def apply_generation_result(
        self,
        generation_id: str,
        outcome: GenerationOutcome
    ) -> Tuple[Optional[GenerationFeatures], bool]:
        """Same as ``update_generation_result``, also reporting whether this call set the outcome."""
        user_id = self.store.get(GENERATION_INDEX_NAMESPACE, generation_id)
        if user_id is None:
            logger.warning("Generation result for unknown generation ignored", extra={"generation_id": generation_id})
            return None, False

        state: Dict[str, Any] = {"record": None, "applied": False, "conflict": False}
        completed_at = self.clock.now()
        outcome_data = outcome.model_dump(mode="json")

        def _apply(history):
            history = history or []
            for item in history:
                if item.get("generation_id") != generation_id:
                    continue
                if item.get("outcome") is None:
                    item["outcome"] = outcome_data
                    item["completed_at"] = completed_at.isoformat()
                    if item.get("user_satisfaction") is None and outcome.user_satisfaction is not None:
                        item["user_satisfaction"] = outcome.user_satisfaction
                    state["applied"] = True
                elif item["outcome"] != outcome_data:
                    state["conflict"] = True
                state["record"] = dict(item)
                break
            return history

        self.store.update(GENERATION_HISTORY_NAMESPACE, user_id, _apply)

        if state["record"] is None:
            logger.warning(
                "Generation result for evicted generation ignored",
                extra={"generation_id": generation_id, "user_id": user_id}
            )
            return None, False

        record = GenerationFeatures.model_validate(state["record"])
        if state["conflict"]:
            logger.warning(
                "Conflicting generation result ignored",
                extra={"generation_id": generation_id, "user_id": user_id}
            )
            return record, False

        if state["applied"]:
            self._merge_into_user(record)
            logger.info(
                "Generation result recorded",
                extra={
                    "generation_id": generation_id,
                    "user_id": user_id,
                    "success": outcome.success,
                    "quality_score": outcome.quality_score,
                }
            )
        return record, state["applied"]

    def record_user_rating(self, generation_id: str, rating: int) -> bool:
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            raise ValidationError("rating must be an integer between 1 and 5")

        user_id = self.store.get(GENERATION_INDEX_NAMESPACE, generation_id)
        if user_id is None:
            logger.warning("Rating for unknown generation ignored", extra={"generation_id": generation_id})
            return False

        state = {"applied": False, "completed": False}

        def _rate(history):
            history = history or []
            for item in history:
                if item.get("generation_id") == generation_id and item.get("user_satisfaction") is None:
                    item["user_satisfaction"] = rating
                    state["applied"] = True
                    state["completed"] = item.get("outcome") is not None
                    break
            return history

        self.store.update(GENERATION_HISTORY_NAMESPACE, user_id, _rate)

        if not state["applied"]:
            logger.info("Rating already recorded or generation evicted", extra={"generation_id": generation_id})
            return False

        # an outcome merged earlier did not carry this rating yet
        if state["completed"]:
            def _add_rating(data):
                if data is None:
                    return data
                features = UserFeatures.model_validate(data)
                features.satisfaction_total += rating
                features.satisfaction_count += 1
                features.average_satisfaction_rating = features.satisfaction_total / features.satisfaction_count
                return features.model_dump(mode="json")

            self.store.update(USER_FEATURES_NAMESPACE, user_id, _add_rating)

        logger.info("User rating recorded", extra={"generation_id": generation_id, "rating": rating})
        return True

    # -- user aggregates ----------------------------------------------------

    def extract_user_features(
        self,
        user_id: str,
        recent_events: Optional[List[GenerationFeatures]] = None
    ) -> UserFeatures:
        """
        Return the cached aggregate, folding in any newer completed events.

        Events without an outcome, or not newer than the last merged event,
        are skipped so that replaying the same batch never double counts.
        """
        if recent_events:
            completed = sorted(
                (event for event in recent_events if event.user_id == user_id and event.outcome is not None),
                key=lambda event: event.timestamp,
            )
            if completed:
                now = self.clock.now()

                def _merge(data):
                    features = self._load_or_new(user_id, data, completed[0].timestamp)
                    for event in completed:
                        if features.last_event_at is None or event.timestamp > features.last_event_at:
                            features = merge_generation(features, event, now)
                    return features.model_dump(mode="json")

                return UserFeatures.model_validate(self.store.update(USER_FEATURES_NAMESPACE, user_id, _merge))

        data = self.store.get(USER_FEATURES_NAMESPACE, user_id)
        if data is None:
            now = self.clock.now()
            return UserFeatures(user_id=user_id, first_seen=now, last_updated=now)
        return UserFeatures.model_validate(data)

    def _merge_into_user(self, generation: GenerationFeatures):
        now = self.clock.now()

        def _merge(data):
            features = self._load_or_new(generation.user_id, data, generation.timestamp)
            return merge_generation(features, generation, now).model_dump(mode="json")

        self.store.update(USER_FEATURES_NAMESPACE, generation.user_id, _merge)

    @staticmethod
    def _load_or_new(user_id: str, data: Optional[dict], first_seen: datetime) -> UserFeatures:
        if data is None:
            return UserFeatures(user_id=user_id, first_seen=first_seen, last_updated=first_seen)
        return UserFeatures.model_validate(data)

    def _session_position(self, user_id: str, timestamp: datetime) -> int:
        window_start = timestamp - SESSION_GAP
        position = 1
        for generation in self.get_generation_history(user_id):
            if window_start <= generation.timestamp <= timestamp:
                position += 1
        return position

    # -- vectors ------------------------------------------------------------

    def create_feature_vector(
        self,
        user_features: UserFeatures,
        generation: Optional[GenerationFeatures] = None,
        context: str = "recommendation"
    ) -> FeatureVector:
        raw: List[float] = []
        names: List[str] = []

        for name, attribute in USER_NUMERIC_FIELDS:
            names.append(name)
            raw.append(float(getattr(user_features, attribute)))

        for device in DeviceType:
            names.append(f"user_device_{device.value}")
            raw.append(1.0 if user_features.primary_device_type == device else 0.0)

        for complexity in ComplexityPreference:
            names.append(f"user_complexity_{complexity.value}")
            raw.append(1.0 if user_features.complexity_preference == complexity else 0.0)

        if generation is not None:
            for name, attribute in GENERATION_NUMERIC_FIELDS:
                names.append(name)
                raw.append(float(getattr(generation, attribute)))
            names.append("gen_hasImages")
            raw.append(1.0 if generation.has_images else 0.0)
            names.append("gen_isDefaultParameters")
            raw.append(1.0 if generation.is_default_parameters else 0.0)

        normalized = [self._normalize(name, value) for name, value in zip(names, raw)]
        return FeatureVector(
            user_id=user_features.user_id,
            features=normalized,
            feature_names=names,
            context=context,
            timestamp=self.clock.now(),
        )

    def _normalize(self, name: str, value: float) -> float:
        def _widen(scaler):
            if scaler is None:
                return {"min": value, "max": value, "count": 1}
            return {
                "min": min(scaler["min"], value),
                "max": max(scaler["max"], value),
                "count": scaler.get("count", 0) + 1,
            }

        scaler = self.store.update(SCALER_NAMESPACE, name, _widen)
        span = scaler["max"] - scaler["min"]
        if span == 0:
            return 0.5
        return (value - scaler["min"]) / span

    def get_scaler(self, name: str) -> Optional[Dict[str, float]]:
        return self.store.get(SCALER_NAMESPACE, name)

    def analyze_feature_importance(
        self,
        vectors: List[FeatureVector],
        targets: List[float]
    ) -> Dict[str, float]:
        """Absolute Pearson correlation of every feature with the targets."""
        if not vectors or len(vectors) != len(targets):
            return {}

        names = vectors[0].feature_names
        if any(v.feature_names != names or len(v.features) != len(names) for v in vectors):
            logger.warning(
                "Feature importance skipped for mixed vector layouts",
                extra={"vector_count": len(vectors)}
            )
            return {}

        matrix = np.array([v.features for v in vectors], dtype=float)
        y = np.asarray(targets, dtype=float)
        y_centered = y - y.mean()
        y_norm = np.sqrt(np.sum(y_centered ** 2))

        importance: Dict[str, float] = {}
        for index, name in enumerate(names):
            x_centered = matrix[:, index] - matrix[:, index].mean()
            denominator = np.sqrt(np.sum(x_centered ** 2)) * y_norm
            if denominator == 0:
                importance[name] = 0.0
            else:
                importance[name] = float(abs(np.sum(x_centered * y_centered) / denominator))
        return importance

    # -- insights -----------------------------------------------------------

    def get_user_behavior_insights(self, user_id: str) -> BehaviorInsights:
        history = self.get_generation_history(user_id)
        cached = self.store.get(USER_FEATURES_NAMESPACE, user_id)
        if cached is None or len(history) < MIN_HISTORY_FOR_INSIGHTS:
            return BehaviorInsights(recommendations=["More activity is needed to analyze behavior patterns"])

        features = UserFeatures.model_validate(cached)
        quality = [g.outcome.quality_score if g.outcome else 0.0 for g in history]

        hour_usage = Counter(g.time_of_day for g in history)
        tool_usage = Counter(g.tool_id for g in history)
        patterns: Dict[str, Any] = {
            "peak_hours": [hour for hour, _ in hour_usage.most_common(3)],
            "tool_preference": [{"tool": tool, "usage": count} for tool, count in tool_usage.most_common(3)],
            "quality_trend": calculate_trend(quality[-RECENT_QUALITY_WINDOW:]),
        }

        anomalies: List[str] = []
        if features.success_rate < 0.3 and features.total_generations > 10:
            anomalies.append("Unusually low success rate; guidance may help")
        recent = history[-5:]
        if features.average_session_length > 120 and all(
            g.outcome is not None and g.outcome.generation_time > 60 for g in recent
        ):
            anomalies.append("Generation times are unusually long; possible technical issue")
        if len({g.tool_id for g in history[-10:]}) == 1 and len(history) > 10:
            anomalies.append("Tool usage is very narrow; try other features")

        recommendations = list(anomalies)
        if patterns["tool_preference"]:
            top_tool = patterns["tool_preference"][0]["tool"]
            recommendations.append(f"You often use {top_tool}; combining it with other tools can work well")
        if patterns["quality_trend"] == "decreasing":
            recommendations.append("Recent quality has dropped; review the usage tips")
        elif patterns["quality_trend"] == "increasing":
            recommendations.append("Your results keep improving; try more advanced tools")

        weekly = Counter(int(g.timestamp.timestamp() // (7 * 24 * 3600)) for g in history)
        trends = {
            "quality": calculate_trend(quality),
            "complexity": calculate_trend([g.prompt_complexity for g in history]),
            "usage": calculate_trend([float(weekly[week]) for week in sorted(weekly)]),
        }

        return BehaviorInsights(
            patterns=patterns,
            anomalies=anomalies,
            recommendations=recommendations[:5],
            trends=trends,
        )

    # -- behavior events ----------------------------------------------------

    def record_behavior(self, event: BehaviorEvent) -> int:
        return self.behavior.record_behavior(event)

    def predict_tool_preference(self, user_id: str, hour: Optional[int] = None) -> ToolPreferencePrediction:
        return self.behavior.predict_tool_preference(user_id, hour=hour)

    def predict_parameters(self, user_id: str, tool_id: str) -> Dict[str, Any]:
        return self.behavior.predict_parameters(user_id, tool_id)

    def get_user_stats(self, user_id: str) -> UserStats:
        return self.behavior.get_user_stats(user_id)

    def analyze_user_success_rate(self, user_id: str) -> SuccessRateAnalysis:
        return self.behavior.analyze_user_success_rate(user_id)
