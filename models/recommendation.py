from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from sqlmodel import SQLModel, Field

from models.features import DeviceType, NetworkSpeed


class Difficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class PreviousGeneration(SQLModel):
    tool_id: str
    success: bool
    quality: float = 0.0


class RecommendationContext(SQLModel):
    user_id: str
    session_id: str = ""
    current_time: datetime = Field(default_factory=datetime.utcnow)
    user_prompt: str = ""
    has_images: bool = False
    image_count: int = 0
    device_type: DeviceType = DeviceType.DESKTOP
    network_speed: NetworkSpeed = NetworkSpeed.MEDIUM
    previous_generations: List[PreviousGeneration] = Field(default_factory=list)


class PromptAnalysis(SQLModel):
    keywords: List[str] = Field(default_factory=list)
    sentiment: str = "neutral"
    complexity: float = 0.0
    category: str = "creative"
    style: str = "realistic"
    subjects: List[str] = Field(default_factory=list)
    length: int = 0
    is_detailed: bool = False
    has_specific_requirements: bool = False


class ScoreComponents(SQLModel):
    behavior: float
    prompt: float
    performance: float
    skill: float
    context: float


class ToolRecommendation(SQLModel):
    tool_id: str
    tool_name: str
    confidence: int
    reasons: List[str] = Field(default_factory=list)
    suggested_parameters: Dict[str, Any] = Field(default_factory=dict)
    estimated_quality: float
    estimated_generation_time: int
    difficulty: Difficulty
    requires_image: bool
    score_components: Optional[ScoreComponents] = None


class QuickStart(SQLModel):
    tool_id: str
    preset_prompt: str
    one_click_generate: bool


class LearningPath(SQLModel):
    current_level: str
    next_suggestions: List[str]
    skill_progression: Dict[str, float]


class RecommendationResult(SQLModel):
    primary_recommendations: List[ToolRecommendation]
    alternative_options: List[ToolRecommendation] = Field(default_factory=list)
    quick_start: QuickStart
    personalized_tips: List[str] = Field(default_factory=list)
    learning_path: Optional[LearningPath] = None
    confidence: float = 0.0
    scoring_version: str
    degraded: bool = False


class ToolUsageOutcome(SQLModel):
    success: bool
    generation_time: float = 0.0
    quality_score: float = 0.0
    user_satisfaction: Optional[int] = None


class ToolPerformanceRecord(SQLModel):
    tool_id: str
    user_id: str
    timestamp: datetime
    prompt_complexity: float
    device_type: DeviceType
    network_speed: NetworkSpeed
    success: bool
    generation_time: float
    quality_score: float
    user_satisfaction: int = 3


class ToolSkill(SQLModel):
    attempts: int = 0
    successes: int = 0
    average_quality: float = 0.0


class UserSkillLevel(SQLModel):
    user_id: str
    overall_level: float = 0.3
    tool_levels: Dict[str, ToolSkill] = Field(default_factory=dict)
    total_generations: int = 0
    successful_generations: int = 0
    last_updated: datetime = Field(default_factory=datetime.utcnow)


class ContextPattern(SQLModel):
    time_of_day: int
    day_of_week: int
    device_type: DeviceType
    network_speed: NetworkSpeed
    prompt_length: int
    has_images: bool
    success: bool
    quality_score: float
    timestamp: datetime
