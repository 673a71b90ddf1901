from __future__ import annotations
from collections import Counter
from typing import Any, Dict, List, Optional

from config.settings import settings
from models.features import (
    BehaviorEvent,
    ComplexityPreference,
    SuccessRateAnalysis,
    ToolPreferencePrediction,
    UserPreferenceSummary,
    UserStats,
)
from services.catalog import NEW_USER_TOOLS, tool_category
from services.storage.base import KeyValueStore
from utils.clock import SystemClock
from utils.errors import DegradedDataError
from utils.logger import setup_logger

logger = setup_logger(__name__)

BEHAVIOR_NAMESPACE = "behavior_history"
PREFERENCE_NAMESPACE = "user_preferences"

MIN_EVENTS_FOR_PREDICTION = 3
PREFERENCE_WINDOW = 20
USAGE_WEIGHT = 0.4
TIME_PATTERN_WEIGHT = 0.3
TIME_PATTERN_HOURS = 2
MAX_PREDICTED_TOOLS = 5
DEFAULT_CONFIDENCE = 0.3


def predict_parameter_values(events: List[BehaviorEvent]) -> Dict[str, Any]:
    """Mean for numeric parameters, most frequent value for everything else."""
    values_by_name: Dict[str, List[Any]] = {}
    for event in events:
        for name, value in event.parameters.items():
            values_by_name.setdefault(name, []).append(value)

    suggested: Dict[str, Any] = {}
    for name, values in values_by_name.items():
        first = values[0]
        if isinstance(first, (int, float)) and not isinstance(first, bool):
            numbers = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]
            suggested[name] = sum(numbers) / len(numbers)
        else:
            frequency = Counter(str(v) if isinstance(v, (dict, list)) else v for v in values)
            suggested[name] = frequency.most_common(1)[0][0]
    return suggested


def complexity_from_prompt_length(average_length: float) -> ComplexityPreference:
    if average_length < 50:
        return ComplexityPreference.SIMPLE
    if average_length < 150:
        return ComplexityPreference.MODERATE
    return ComplexityPreference.COMPLEX


class BehaviorPredictor:
    """
    Tool-preference prediction from raw interaction events.

    Keeps a rolling per-user event history and a preference summary that is
    refreshed on every recorded event once the user has three or more events.
    """

    def __init__(self, store: KeyValueStore, clock=None, history_limit: Optional[int] = None):
        self.store = store
        self.clock = clock or SystemClock()
        self.history_limit = history_limit or settings.BEHAVIOR_HISTORY_LIMIT

    def record_behavior(self, event: BehaviorEvent) -> int:
        if event.timestamp is None:
            event = event.model_copy(update={"timestamp": self.clock.now()})
        if not event.tool_category or event.tool_category == "creative":
            event = event.model_copy(update={"tool_category": tool_category(event.tool_id)})

        length = self.store.append(
            BEHAVIOR_NAMESPACE,
            event.user_id,
            event.model_dump(mode="json"),
            max_length=self.history_limit,
        )
        self._refresh_preferences(event.user_id)

        logger.debug(
            "Behavior event recorded",
            extra={"user_id": event.user_id, "tool_id": event.tool_id, "history_length": length}
        )
        return length

    def get_history(self, user_id: str) -> List[BehaviorEvent]:
        return [BehaviorEvent.model_validate(item) for item in self.store.get_list(BEHAVIOR_NAMESPACE, user_id)]

    def get_preferences(self, user_id: str) -> Optional[UserPreferenceSummary]:
        data = self.store.get(PREFERENCE_NAMESPACE, user_id)
        return UserPreferenceSummary.model_validate(data) if data else None

    def predict_tool_preference(self, user_id: str, hour: Optional[int] = None) -> ToolPreferencePrediction:
        try:
            return self._predict_from_history(user_id, hour)
        except DegradedDataError:
            return ToolPreferencePrediction(
                recommended_tools=list(NEW_USER_TOOLS),
                suggested_parameters={},
                confidence=DEFAULT_CONFIDENCE,
                reasoning="Default recommendation for new users",
                degraded=True,
            )

    def _predict_from_history(self, user_id: str, hour: Optional[int]) -> ToolPreferencePrediction:
        history = self.get_history(user_id)
        if len(history) < MIN_EVENTS_FOR_PREDICTION:
            raise DegradedDataError(f"{len(history)} events recorded for {user_id}")

        if hour is None:
            hour = self.clock.now().hour

        usage = Counter(event.tool_id for event in history)
        near_hour = Counter(
            event.tool_id for event in history
            if event.timestamp is not None and abs(event.timestamp.hour - hour) <= TIME_PATTERN_HOURS
        )

        scores: Dict[str, float] = {}
        for tool_id, count in usage.items():
            scores[tool_id] = scores.get(tool_id, 0.0) + count * USAGE_WEIGHT
        for tool_id, count in near_hour.items():
            scores[tool_id] = scores.get(tool_id, 0.0) + count * TIME_PATTERN_WEIGHT

        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        recommended = [tool_id for tool_id, _ in ranked[:MAX_PREDICTED_TOOLS]]

        preferences = self.get_preferences(user_id)
        success_rate = preferences.success_rate if preferences else 0.0
        confidence = round(min(len(history) / 20.0, 1.0) * 0.6 + success_rate * 0.4, 2)

        reasons = []
        if success_rate > 0.8:
            reasons.append("High success rate with these tools")
        reasons.append("Based on your usage history")

        return ToolPreferencePrediction(
            recommended_tools=recommended,
            suggested_parameters=self.predict_parameters(user_id, recommended[0], history=history),
            confidence=confidence,
            reasoning="; ".join(reasons),
        )

    def predict_parameters(
        self,
        user_id: str,
        tool_id: Optional[str],
        history: Optional[List[BehaviorEvent]] = None
    ) -> Dict[str, Any]:
        if not tool_id:
            return {}
        if history is None:
            history = self.get_history(user_id)
        tool_history = [event for event in history if event.tool_id == tool_id]
        if not tool_history:
            return {}
        return predict_parameter_values(tool_history)

    def analyze_user_success_rate(self, user_id: str) -> SuccessRateAnalysis:
        history = self.get_history(user_id)
        if not history:
            return SuccessRateAnalysis(
                improvement_suggestions=["Start using tools to receive personalized suggestions"]
            )

        overall = sum(1 for event in history if event.success) / len(history)

        totals: Dict[str, List[int]] = {}
        for event in history:
            stats = totals.setdefault(event.tool_id, [0, 0])
            stats[0] += 1
            if event.success:
                stats[1] += 1
        tool_rates = {tool_id: success / total for tool_id, (total, success) in totals.items()}

        suggestions: List[str] = []
        if overall < 0.6:
            suggestions.append("Use more descriptive prompts to raise your success rate")
            suggestions.append("Pick tools that match your content more closely")

        worst = min(tool_rates.items(), key=lambda item: item[1])
        if worst[1] < 0.4:
            suggestions.append(f"Consider using {worst[0]} less often or adjusting how you use it")

        average_prompt_length = sum(event.prompt_length for event in history) / len(history)
        if average_prompt_length < 20:
            suggestions.append("Try a more detailed prompt")
        elif average_prompt_length > 200:
            suggestions.append("Try simplifying your prompt")

        return SuccessRateAnalysis(
            overall_success_rate=overall,
            tool_success_rates=tool_rates,
            improvement_suggestions=suggestions,
        )

    def get_user_stats(self, user_id: str) -> UserStats:
        history = self.get_history(user_id)
        if not history:
            return UserStats()

        usage = Counter(event.tool_id for event in history)
        return UserStats(
            total_generations=len(history),
            favorite_tools=[tool_id for tool_id, _ in usage.most_common(3)],
            average_success_rate=sum(1 for event in history if event.success) / len(history),
            total_time_spent=sum(event.generation_time for event in history),
        )

    def _refresh_preferences(self, user_id: str):
        history = self.get_history(user_id)
        if len(history) < MIN_EVENTS_FOR_PREDICTION:
            return

        recent = history[-PREFERENCE_WINDOW:]
        categories = Counter(event.tool_category for event in recent)
        summary = UserPreferenceSummary(
            favorite_categories=[category for category, _ in categories.most_common(3)],
            preferred_image_count=round(sum(event.image_count for event in recent) / len(recent)),
            success_rate=sum(1 for event in recent if event.success) / len(recent),
            average_generation_time=sum(event.generation_time for event in recent) / len(recent),
            complexity_preference=complexity_from_prompt_length(
                sum(event.prompt_length for event in recent) / len(recent)
            ),
        )
        self.store.set(PREFERENCE_NAMESPACE, user_id, summary.model_dump(mode="json"))
