from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional

from config.settings import settings
from models.features import DeviceType, NetworkSpeed, ToolPreferencePrediction
from models.recommendation import (
    ContextPattern,
    Difficulty,
    LearningPath,
    PromptAnalysis,
    QuickStart,
    RecommendationContext,
    RecommendationResult,
    ScoreComponents,
    ToolPerformanceRecord,
    ToolRecommendation,
    ToolSkill,
    ToolUsageOutcome,
    UserSkillLevel,
)
from services.catalog import DEFAULT_TOOL_ID, SLOW_NETWORK_TOOLS, TOOLS, ToolSpec, get_tool
from services.features.feature_store import FeatureStore
from services.features.text_features import calculate_prompt_complexity
from services.recommendation.prompt_analysis import analyze_prompt, prompt_match_score
from services.storage.base import KeyValueStore
from utils.clock import SystemClock
from utils.fallback import with_fallback
from utils.logger import setup_logger
from utils.timing import StageTimer

logger = setup_logger(__name__)

SCORING_VERSION = "heuristic-v1"

# Ranking weights; they sum to 1.
BEHAVIOR_WEIGHT = 0.30
PROMPT_WEIGHT = 0.25
PERFORMANCE_WEIGHT = 0.20
SKILL_WEIGHT = 0.15
CONTEXT_WEIGHT = 0.10

SCORING_WEIGHTS = {
    "behavior": BEHAVIOR_WEIGHT,
    "prompt": PROMPT_WEIGHT,
    "performance": PERFORMANCE_WEIGHT,
    "skill": SKILL_WEIGHT,
    "context": CONTEXT_WEIGHT,
}

NEUTRAL_SCORE = 0.5
UNPREDICTED_BEHAVIOR_SCORE = 0.3
INITIAL_SKILL_LEVEL = 0.3
PRIMARY_COUNT = 3
ALTERNATIVE_COUNT = 3
SIMILAR_COMPLEXITY_BAND = 0.3

TOOL_PERFORMANCE_NAMESPACE = "tool_performance"
USER_SKILL_NAMESPACE = "user_skills"
CONTEXT_PATTERN_NAMESPACE = "context_patterns"


def filter_tools_by_capabilities(context: RecommendationContext) -> List[ToolSpec]:
    suitable = []
    for tool in TOOLS:
        if context.device_type == DeviceType.MOBILE and tool.requires_multiple_images:
            continue
        if context.network_speed == NetworkSpeed.SLOW and tool.id not in SLOW_NETWORK_TOOLS:
            continue
        if tool.requires_image and not context.has_images:
            continue
        if tool.requires_multiple_images and context.image_count < 2:
            continue
        suitable.append(tool)
    return suitable


def tool_difficulty(tool: ToolSpec) -> float:
    difficulty = 0.3
    if tool.requires_image:
        difficulty += 0.2
    if tool.requires_multiple_images:
        difficulty += 0.3
    if len(tool.parameters) > 2:
        difficulty += 0.2
    return min(difficulty, 1.0)


def context_fit_score(tool: ToolSpec, context: RecommendationContext) -> float:
    score = 0.5
    if context.device_type == DeviceType.MOBILE and not tool.requires_multiple_images:
        score += 0.2
    if context.network_speed == NetworkSpeed.FAST or not tool.high_bandwidth:
        score += 0.2
    hour = context.current_time.hour
    if tool.night_friendly and (hour >= 20 or hour <= 6):
        score += 0.1
    return min(score, 1.0)


def estimate_generation_time(tool: ToolSpec, context: RecommendationContext) -> int:
    multiplier = 1.0
    if context.device_type == DeviceType.MOBILE:
        multiplier *= 1.2
    if context.network_speed == NetworkSpeed.SLOW:
        multiplier *= 1.5
    if context.has_images:
        multiplier *= 1.3
    return int(round(tool.base_generation_seconds * multiplier))


def _default_recommendations(*args, **kwargs) -> RecommendationResult:
    tool = get_tool(DEFAULT_TOOL_ID)
    recommendation = ToolRecommendation(
        tool_id=tool.id,
        tool_name=tool.name,
        confidence=int(round(NEUTRAL_SCORE * 100)),
        reasons=["Default recommendation"],
        estimated_quality=tool.baseline_quality,
        estimated_generation_time=tool.base_generation_seconds,
        difficulty=Difficulty.BEGINNER,
        requires_image=tool.requires_image,
    )
    return RecommendationResult(
        primary_recommendations=[recommendation],
        quick_start=QuickStart(tool_id=tool.id, preset_prompt=tool.preset_prompts[0], one_click_generate=True),
        confidence=UNPREDICTED_BEHAVIOR_SCORE,
        scoring_version=SCORING_VERSION,
        degraded=True,
    )


class RecommendationEngine:
    """
    Ranks catalog tools for the user's current context.

    Scoring is a fixed weighted sum of five component scores, each in [0, 1].
    Missing history never fails a request: components fall back to neutral
    values and the result carries a lowered confidence.
    """

    def __init__(
        self,
        store: KeyValueStore,
        feature_store: FeatureStore,
        quality_assessor=None,
        metrics=None,
        clock=None,
        tool_history_limit: Optional[int] = None,
        context_pattern_limit: Optional[int] = None,
        weights: Optional[Dict[str, float]] = None,
    ):
        self.store = store
        self.feature_store = feature_store
        self.quality_assessor = quality_assessor
        self.metrics = metrics
        self.clock = clock or SystemClock()
        self.tool_history_limit = tool_history_limit or settings.TOOL_HISTORY_LIMIT
        self.context_pattern_limit = context_pattern_limit or settings.CONTEXT_PATTERN_LIMIT
        self.weights = dict(weights or SCORING_WEIGHTS)

    @with_fallback(_default_recommendations)
    def get_recommendations(self, context: RecommendationContext) -> RecommendationResult:
        timer = StageTimer("get_recommendations")

        with timer.stage("behavior"):
            prediction = self.feature_store.predict_tool_preference(context.user_id, hour=context.current_time.hour)
        with timer.stage("prompt_analysis"):
            analysis = analyze_prompt(context.user_prompt)
        with timer.stage("filter"):
            candidates = filter_tools_by_capabilities(context) or [get_tool(DEFAULT_TOOL_ID)]

        skill = self.get_user_skill(context.user_id)
        with timer.stage("scoring"):
            scored = [self._score_tool(tool, prediction, analysis, context, skill) for tool in candidates]
            scored.sort(key=lambda item: item[1], reverse=True)

        with timer.stage("build"):
            base_parameters = prediction.suggested_parameters
            primary = [
                self._build_recommendation(tool, score, components, context, skill, base_parameters)
                for tool, score, components in scored[:PRIMARY_COUNT]
            ]
            alternatives = [
                self._build_recommendation(tool, score, components, context, skill, base_parameters)
                for tool, score, components in scored[PRIMARY_COUNT:PRIMARY_COUNT + ALTERNATIVE_COUNT]
            ]

        stats = self.feature_store.get_user_stats(context.user_id)
        result = RecommendationResult(
            primary_recommendations=primary,
            alternative_options=alternatives,
            quick_start=self._quick_start(primary[0], context),
            personalized_tips=self._personalized_tips(context, stats),
            learning_path=self._learning_path(skill, stats.total_generations),
            confidence=prediction.confidence,
            scoring_version=SCORING_VERSION,
            degraded=prediction.degraded,
        )

        if self.metrics:
            self.metrics.record_recommendation("degraded" if result.degraded else "ok", timer.elapsed_seconds)
        timer.log_summary(extra={"user_id": context.user_id, "candidates": len(candidates)})
        return result

    def _score_tool(
        self,
        tool: ToolSpec,
        prediction: ToolPreferencePrediction,
        analysis: PromptAnalysis,
        context: RecommendationContext,
        skill: Optional[UserSkillLevel],
    ):
        components = ScoreComponents(
            behavior=prediction.confidence if tool.id in prediction.recommended_tools else UNPREDICTED_BEHAVIOR_SCORE,
            prompt=prompt_match_score(tool, analysis),
            performance=self._performance_score(tool.id, context),
            skill=self._skill_match_score(tool, skill),
            context=context_fit_score(tool, context),
        )
        score = sum(getattr(components, name) * weight for name, weight in self.weights.items())
        return tool, score, components

    def _performance_score(self, tool_id: str, context: RecommendationContext) -> float:
        history = self.get_tool_history(tool_id)
        if not history:
            return NEUTRAL_SCORE
        same_device = [record for record in history if record.device_type == context.device_type]
        relevant = same_device or history
        return sum(record.quality_score for record in relevant) / len(relevant) / 100.0

    @staticmethod
    def _skill_match_score(tool: ToolSpec, skill: Optional[UserSkillLevel]) -> float:
        if skill is None:
            return NEUTRAL_SCORE
        return max(0.0, 1 - abs(skill.overall_level - tool_difficulty(tool)))

    def _build_recommendation(
        self,
        tool: ToolSpec,
        score: float,
        components: ScoreComponents,
        context: RecommendationContext,
        skill: Optional[UserSkillLevel],
        base_parameters: Dict[str, Any],
    ) -> ToolRecommendation:
        return ToolRecommendation(
            tool_id=tool.id,
            tool_name=tool.name,
            confidence=int(round(score * 100)),
            reasons=self._reasons(components, context),
            suggested_parameters=self._suggested_parameters(base_parameters, context),
            estimated_quality=self._estimate_quality(tool, context),
            estimated_generation_time=estimate_generation_time(tool, context),
            difficulty=self._assess_difficulty(tool, skill),
            requires_image=tool.requires_image,
            score_components=components,
        )

    @staticmethod
    def _reasons(components: ScoreComponents, context: RecommendationContext) -> List[str]:
        reasons = []
        if components.behavior > 0.7:
            reasons.append("Matches your usage habits")
        if components.prompt > 0.8:
            reasons.append("Closely matches your description")
        if components.performance > 0.8:
            reasons.append("Performs well in similar situations")
        if components.skill > 0.7:
            reasons.append("Suits your current skill level")
        if context.device_type == DeviceType.MOBILE and components.context > 0.8:
            reasons.append("Optimized for mobile devices")
        return reasons or ["Overall best fit"]

    @staticmethod
    def _suggested_parameters(base: Dict[str, Any], context: RecommendationContext) -> Dict[str, Any]:
        parameters = dict(base)
        if context.device_type == DeviceType.MOBILE:
            parameters["quality"] = "medium"
            parameters["size"] = "small"
        if context.network_speed == NetworkSpeed.SLOW:
            parameters["complexity"] = "simple"
            parameters["image_count"] = 1
        return parameters

    def _estimate_quality(self, tool: ToolSpec, context: RecommendationContext) -> float:
        history = self.get_tool_history(tool.id)
        if not history:
            if self.quality_assessor is not None:
                stats = self.quality_assessor.get_tool_quality_stats(tool.id)
                if stats.total_assessments:
                    return stats.average_score
            return tool.baseline_quality

        complexity = calculate_prompt_complexity(context.user_prompt)
        similar = [
            record for record in history
            if record.device_type == context.device_type
            and abs(record.prompt_complexity - complexity) < SIMILAR_COMPLEXITY_BAND
        ]
        relevant = similar or history
        return sum(record.quality_score for record in relevant) / len(relevant)

    @staticmethod
    def _assess_difficulty(tool: ToolSpec, skill: Optional[UserSkillLevel]) -> Difficulty:
        complexity = 0
        if tool.requires_image:
            complexity += 1
        if tool.requires_multiple_images:
            complexity += 2
        if len(tool.parameters) > 3:
            complexity += 1

        if skill is not None:
            if skill.overall_level > 0.7 and complexity <= 2:
                return Difficulty.BEGINNER
            if skill.overall_level > 0.5 and complexity <= 3:
                return Difficulty.INTERMEDIATE

        if complexity <= 1:
            return Difficulty.BEGINNER
        if complexity <= 3:
            return Difficulty.INTERMEDIATE
        return Difficulty.ADVANCED

    @staticmethod
    def _quick_start(primary: ToolRecommendation, context: RecommendationContext) -> QuickStart:
        tool = get_tool(primary.tool_id)
        presets = list(tool.preset_prompts) if tool else []
        return QuickStart(
            tool_id=primary.tool_id,
            preset_prompt=presets[0] if presets else context.user_prompt,
            one_click_generate=primary.difficulty == Difficulty.BEGINNER,
        )

    @staticmethod
    def _personalized_tips(context: RecommendationContext, stats) -> List[str]:
        tips = []
        if stats.total_generations < 5:
            tips.append("New here? Detailed descriptions give better results")
            tips.append("Start with simple text-to-image generations")
        elif stats.average_success_rate < 0.6:
            tips.append("Short, precise descriptions raise the success rate")
            tips.append("Pick tools that match your content more closely")

        hour = context.current_time.hour
        if hour >= 22 or hour <= 6:
            tips.append("Late night session: words like 'night' or 'moonlight' set the mood")
        if context.device_type == DeviceType.MOBILE:
            tips.append("On mobile, keep descriptions short and clear")
        if stats.favorite_tools:
            tips.append(f"You use {stats.favorite_tools[0]} most; combine it with other tools for variety")
        return tips[:3]

    @staticmethod
    def _learning_path(skill: Optional[UserSkillLevel], total_generations: int) -> Optional[LearningPath]:
        if skill is None or total_generations < 10:
            return LearningPath(
                current_level="beginner",
                next_suggestions=[
                    "Try different kinds of tools",
                    "Learn to write more precise prompts",
                    "Get to know what each tool is best at",
                ],
                skill_progression={
                    "basics": 0.3,
                    "prompt_writing": 0.1,
                    "tool_selection": 0.2,
                    "parameter_tuning": 0.0,
                },
            )
        if skill.overall_level < 0.7:
            return LearningPath(
                current_level="intermediate",
                next_suggestions=[
                    "Learn the advanced tools",
                    "Try multi-image fusion",
                    "Practice tuning parameters",
                ],
                skill_progression={
                    "basics": 0.8,
                    "prompt_writing": 0.6,
                    "tool_selection": 0.7,
                    "parameter_tuning": 0.4,
                },
            )
        return None

    # -- usage ingestion ----------------------------------------------------

    def record_tool_usage(self, tool_id: str, context: RecommendationContext, outcome: ToolUsageOutcome) -> bool:
        if get_tool(tool_id) is None:
            logger.warning("Usage for unknown tool ignored", extra={"tool_id": tool_id, "user_id": context.user_id})
            return False

        now = self.clock.now()
        record = ToolPerformanceRecord(
            tool_id=tool_id,
            user_id=context.user_id,
            timestamp=now,
            prompt_complexity=calculate_prompt_complexity(context.user_prompt),
            device_type=context.device_type,
            network_speed=context.network_speed,
            success=outcome.success,
            generation_time=outcome.generation_time,
            quality_score=outcome.quality_score,
            user_satisfaction=outcome.user_satisfaction or 3,
        )
        self.store.append(
            TOOL_PERFORMANCE_NAMESPACE,
            tool_id,
            record.model_dump(mode="json"),
            max_length=self.tool_history_limit,
        )
        self._update_user_skill(context.user_id, tool_id, outcome, now)
        self._record_context_pattern(context, outcome, now)

        logger.info(
            "Tool usage recorded",
            extra={
                "tool_id": tool_id,
                "user_id": context.user_id,
                "success": outcome.success,
                "quality_score": outcome.quality_score,
            }
        )
        return True

    def _update_user_skill(self, user_id: str, tool_id: str, outcome: ToolUsageOutcome, now: datetime):
        def _apply(data):
            skill = UserSkillLevel.model_validate(data) if data else UserSkillLevel(
                user_id=user_id, overall_level=INITIAL_SKILL_LEVEL
            )
            skill.total_generations += 1
            if outcome.success:
                skill.successful_generations += 1

            # recomputed from the latest quality only, not smoothed
            success_rate = skill.successful_generations / skill.total_generations
            skill.overall_level = success_rate * 0.6 + (outcome.quality_score / 100.0) * 0.4

            tool_skill = skill.tool_levels.get(tool_id) or ToolSkill()
            tool_skill.attempts += 1
            if outcome.success:
                tool_skill.successes += 1
            tool_skill.average_quality = (
                tool_skill.average_quality * (tool_skill.attempts - 1) + outcome.quality_score
            ) / tool_skill.attempts
            skill.tool_levels[tool_id] = tool_skill
            skill.last_updated = now
            return skill.model_dump(mode="json")

        self.store.update(USER_SKILL_NAMESPACE, user_id, _apply)

    def _record_context_pattern(self, context: RecommendationContext, outcome: ToolUsageOutcome, now: datetime):
        pattern = ContextPattern(
            time_of_day=context.current_time.hour,
            day_of_week=context.current_time.weekday(),
            device_type=context.device_type,
            network_speed=context.network_speed,
            prompt_length=len(context.user_prompt),
            has_images=context.has_images,
            success=outcome.success,
            quality_score=outcome.quality_score,
            timestamp=now,
        )
        key = f"{context.device_type.value}_{context.network_speed.value}"
        self.store.append(
            CONTEXT_PATTERN_NAMESPACE,
            key,
            pattern.model_dump(mode="json"),
            max_length=self.context_pattern_limit,
        )

    # -- reads --------------------------------------------------------------

    def get_user_skill(self, user_id: str) -> Optional[UserSkillLevel]:
        data = self.store.get(USER_SKILL_NAMESPACE, user_id)
        return UserSkillLevel.model_validate(data) if data else None

    def get_tool_history(self, tool_id: str) -> List[ToolPerformanceRecord]:
        return [
            ToolPerformanceRecord.model_validate(item)
            for item in self.store.get_list(TOOL_PERFORMANCE_NAMESPACE, tool_id)
        ]

    def get_context_patterns(self, device_type: DeviceType, network_speed: NetworkSpeed) -> List[ContextPattern]:
        key = f"{device_type.value}_{network_speed.value}"
        return [ContextPattern.model_validate(item) for item in self.store.get_list(CONTEXT_PATTERN_NAMESPACE, key)]
