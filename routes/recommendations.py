from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException
from typing import Optional
from pydantic import BaseModel, Field

from models.features import BehaviorEvent, GenerationRequest
from models.recommendation import RecommendationContext, ToolUsageOutcome
from routes.dependencies import get_engine
from services.engine import PersonalizationEngine
from utils.errors import ValidationError
from utils.logger import setup_logger

logger = setup_logger(__name__)

router = APIRouter(tags=["recommendations"])


class ToolUsageBody(BaseModel):
    tool_id: str
    context: RecommendationContext
    outcome: ToolUsageOutcome


class GenerationOutcomeBody(BaseModel):
    success: bool
    generation_time: float = 0.0
    image_data: Optional[str] = None
    user_satisfaction: Optional[int] = Field(None, ge=1, le=5)


class RatingBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)


@router.post("/recommendations")
def get_recommendations(context: RecommendationContext, engine: PersonalizationEngine = Depends(get_engine)):
    return engine.recommendations.get_recommendations(context)


@router.post("/recommendations/usage", status_code=202)
def record_tool_usage(body: ToolUsageBody, engine: PersonalizationEngine = Depends(get_engine)):
    engine.record_tool_usage(body.tool_id, body.context, body.outcome)
    return {"status": "accepted"}


@router.post("/behavior", status_code=202)
def record_behavior(event: BehaviorEvent, engine: PersonalizationEngine = Depends(get_engine)):
    engine.record_behavior(event)
    return {"status": "accepted"}


@router.post("/generations")
def register_generation(request: GenerationRequest, engine: PersonalizationEngine = Depends(get_engine)):
    try:
        generation = engine.features.extract_generation_features(request)
    except ValidationError as e:
        raise HTTPException(400, str(e))
    return {
        "generation_id": generation.generation_id,
        "prompt_complexity": generation.prompt_complexity,
        "keywords": generation.keywords,
        "semantic_categories": generation.semantic_categories,
    }


@router.post("/generations/{generation_id}/outcome", status_code=202)
def record_generation_outcome(
    generation_id: str,
    body: GenerationOutcomeBody,
    engine: PersonalizationEngine = Depends(get_engine)
):
    engine.record_generation_outcome(
        generation_id,
        success=body.success,
        generation_time=body.generation_time,
        image_data=body.image_data,
        user_satisfaction=body.user_satisfaction,
    )
    return {"status": "accepted"}


@router.post("/generations/{generation_id}/rating", status_code=202)
def record_rating(generation_id: str, body: RatingBody, engine: PersonalizationEngine = Depends(get_engine)):
    try:
        engine.features.record_user_rating(generation_id, body.rating)
    except ValidationError as e:
        raise HTTPException(400, str(e))
    return {"status": "accepted"}


@router.get("/users/{user_id}/features")
def get_user_features(user_id: str, engine: PersonalizationEngine = Depends(get_engine)):
    return engine.features.extract_user_features(user_id)


@router.get("/users/{user_id}/insights")
def get_user_insights(user_id: str, engine: PersonalizationEngine = Depends(get_engine)):
    return engine.features.get_user_behavior_insights(user_id)


@router.get("/users/{user_id}/skill")
def get_user_skill(user_id: str, engine: PersonalizationEngine = Depends(get_engine)):
    skill = engine.recommendations.get_user_skill(user_id)
    if skill is None:
        raise HTTPException(404, "no skill data for user")
    return skill
