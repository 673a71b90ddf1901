import pytest

from models.features import DeviceType, GenerationRequest, NetworkSpeed
from models.recommendation import Difficulty, RecommendationContext, ToolUsageOutcome
from services.catalog import get_tool
from services.recommendation import SCORING_VERSION
from services.recommendation.recommendation_engine import (
    estimate_generation_time,
    filter_tools_by_capabilities,
)
from tests.helpers import START, make_engine, make_png


def context(**kwargs):
    values = {"user_id": "user-1", "current_time": START, "user_prompt": "a cat in space"}
    values.update(kwargs)
    return RecommendationContext(**values)


def test_new_mobile_user_without_images():
    engine = make_engine()
    result = engine.recommendations.get_recommendations(context(device_type=DeviceType.MOBILE))

    assert len(result.primary_recommendations) == 3
    assert {r.tool_id for r in result.primary_recommendations} == {"text_to_image", "character_story", "film_noir"}
    for recommendation in result.primary_recommendations:
        assert recommendation.requires_image is False
        assert 0 <= recommendation.confidence <= 100
        assert recommendation.suggested_parameters["size"] == "small"
    assert result.alternative_options == []
    assert result.scoring_version == SCORING_VERSION
    assert result.degraded is True
    assert result.confidence == 0.3
    assert result.learning_path.current_level == "beginner"
    assert result.quick_start.tool_id == result.primary_recommendations[0].tool_id


def test_primary_recommendations_are_ranked_by_confidence():
    engine = make_engine()
    result = engine.recommendations.get_recommendations(
        context(has_images=True, image_count=3, user_prompt="merge these photos into a collage")
    )

    confidences = [r.confidence for r in result.primary_recommendations + result.alternative_options]
    assert confidences == sorted(confidences, reverse=True)
    assert len(result.primary_recommendations) == 3
    assert len(result.alternative_options) == 3


def test_capability_filter():
    slow = filter_tools_by_capabilities(context(network_speed=NetworkSpeed.SLOW))
    assert [tool.id for tool in slow] == ["text_to_image"]

    single_image = filter_tools_by_capabilities(context(has_images=True, image_count=1))
    assert all(not tool.requires_multiple_images for tool in single_image)
    assert any(tool.requires_image for tool in single_image)

    mobile = filter_tools_by_capabilities(context(device_type=DeviceType.MOBILE, has_images=True, image_count=4))
    assert all(not tool.requires_multiple_images for tool in mobile)


def test_generation_time_estimate():
    tool = get_tool("text_to_image")
    assert estimate_generation_time(tool, context()) == 30
    slow_mobile = context(device_type=DeviceType.MOBILE, network_speed=NetworkSpeed.SLOW)
    assert estimate_generation_time(tool, slow_mobile) == 54


def test_scoring_failure_falls_back_to_default():
    engine = make_engine()

    def _broken(*args, **kwargs):
        raise RuntimeError("store unavailable")

    engine.features.predict_tool_preference = _broken
    result = engine.recommendations.get_recommendations(context())

    assert result.degraded is True
    assert [r.tool_id for r in result.primary_recommendations] == ["text_to_image"]
    assert result.primary_recommendations[0].confidence == 50


def test_tool_usage_updates_history_and_skill():
    engine = make_engine()
    recommendations = engine.recommendations

    assert recommendations.record_tool_usage(
        "film_noir", context(), ToolUsageOutcome(success=True, quality_score=80.0)
    ) is True
    skill = recommendations.get_user_skill("user-1")
    assert skill.overall_level == pytest.approx(0.92)

    recommendations.record_tool_usage("film_noir", context(), ToolUsageOutcome(success=False))
    skill = recommendations.get_user_skill("user-1")
    assert skill.total_generations == 2
    assert skill.overall_level == pytest.approx(0.3)
    assert skill.tool_levels["film_noir"].attempts == 2
    assert skill.tool_levels["film_noir"].average_quality == pytest.approx(40.0)

    history = recommendations.get_tool_history("film_noir")
    assert [record.success for record in history] == [True, False]
    assert history[0].user_satisfaction == 3
    assert len(recommendations.get_context_patterns(DeviceType.DESKTOP, NetworkSpeed.MEDIUM)) == 2


def test_unknown_tool_usage_is_ignored():
    engine = make_engine()
    assert engine.recommendations.record_tool_usage(
        "no_such_tool", context(), ToolUsageOutcome(success=True)
    ) is False
    assert engine.recommendations.get_user_skill("user-1") is None


def test_tool_history_drives_performance_and_quality_estimate():
    engine = make_engine()
    for _ in range(3):
        engine.recommendations.record_tool_usage(
            "film_noir", context(), ToolUsageOutcome(success=True, quality_score=100.0)
        )

    result = engine.recommendations.get_recommendations(context())
    by_id = {r.tool_id: r for r in result.primary_recommendations}

    assert by_id["film_noir"].score_components.performance == 1.0
    assert by_id["film_noir"].estimated_quality == 100.0
    assert by_id["text_to_image"].score_components.performance == 0.5
    assert by_id["film_noir"].difficulty == Difficulty.BEGINNER


def test_generation_outcome_flows_into_every_aggregate():
    engine = make_engine()
    generation = engine.features.extract_generation_features(
        GenerationRequest(user_id="user-1", tool_id="text_to_image", prompt="a landscape painting at dawn")
    )

    updated = engine.record_generation_outcome(
        generation.generation_id, success=True, generation_time=21.5, image_data=make_png()
    )

    assert updated.outcome.quality_score > 0
    assert engine.features.extract_user_features("user-1").total_generations == 1
    assert engine.quality.get_tool_quality_stats("text_to_image").total_assessments == 1
    history = engine.recommendations.get_tool_history("text_to_image")
    assert len(history) == 1
    assert history[0].quality_score == updated.outcome.quality_score
    assert engine.recommendations.get_user_skill("user-1").total_generations == 1


def test_repeated_generation_outcome_is_counted_once():
    engine = make_engine()
    generation = engine.features.extract_generation_features(
        GenerationRequest(user_id="user-1", tool_id="text_to_image", prompt="a landscape painting at dawn")
    )

    first = engine.record_generation_outcome(
        generation.generation_id, success=True, generation_time=21.5, image_data=make_png()
    )
    second = engine.record_generation_outcome(
        generation.generation_id, success=True, generation_time=21.5, image_data=make_png()
    )

    assert second.outcome.model_dump() == first.outcome.model_dump()
    assert engine.features.extract_user_features("user-1").total_generations == 1
    assert len(engine.recommendations.get_tool_history("text_to_image")) == 1
    assert engine.recommendations.get_user_skill("user-1").total_generations == 1
    assert engine.quality.get_tool_quality_stats("text_to_image").total_assessments == 1


def test_generation_outcome_for_unknown_id_is_ignored():
    engine = make_engine()
    assert engine.record_generation_outcome("gen_missing", success=True) is None
    assert engine.recommendations.get_tool_history("text_to_image") == []
