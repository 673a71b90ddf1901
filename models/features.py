from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from uuid import uuid4
from sqlmodel import SQLModel, Field


class DeviceType(str, Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


class NetworkSpeed(str, Enum):
    SLOW = "slow"
    MEDIUM = "medium"
    FAST = "fast"


class ComplexityPreference(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class QualityTrend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class GenerationRequest(SQLModel):
    user_id: str
    tool_id: str
    prompt: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    image_count: int = 0
    device_type: DeviceType = DeviceType.DESKTOP
    network_speed: NetworkSpeed = NetworkSpeed.MEDIUM
    timestamp: Optional[datetime] = None
    generation_id: Optional[str] = None


class GenerationOutcome(SQLModel):
    success: bool
    generation_time: float = 0.0
    quality_score: float = 0.0
    user_satisfaction: Optional[int] = None


class GenerationFeatures(SQLModel):
    generation_id: str = Field(default_factory=lambda: f"gen_{uuid4().hex}")
    user_id: str
    tool_id: str
    timestamp: datetime

    prompt_text: str
    prompt_length: int
    prompt_complexity: float
    keywords: List[str] = Field(default_factory=list)
    keyword_count: int = 0
    has_images: bool = False
    input_image_count: int = 0

    prompt_embedding: List[float] = Field(default_factory=list)
    semantic_categories: List[str] = Field(default_factory=list)
    sentiment_score: float = 0.0
    creativity_score: float = 0.0
    specificity_score: float = 0.0

    tool_parameters: Dict[str, Any] = Field(default_factory=dict)
    parameter_complexity: float = 0.0
    is_default_parameters: bool = True

    device_type: DeviceType = DeviceType.DESKTOP
    network_speed: NetworkSpeed = NetworkSpeed.MEDIUM
    time_of_day: int = 0
    day_of_week: int = 0
    session_position: int = 1

    # unset until the generation result arrives
    outcome: Optional[GenerationOutcome] = None
    user_satisfaction: Optional[int] = None
    completed_at: Optional[datetime] = None


class UserFeatures(SQLModel):
    user_id: str
    first_seen: datetime
    last_updated: datetime
    last_event_at: Optional[datetime] = None

    total_generations: int = 0
    successful_generations: int = 0
    success_rate: float = 0.0

    hour_counts: Dict[str, int] = Field(default_factory=dict)
    tool_counts: Dict[str, int] = Field(default_factory=dict)
    device_counts: Dict[str, int] = Field(default_factory=dict)
    network_counts: Dict[str, int] = Field(default_factory=dict)
    preferred_hours: List[int] = Field(default_factory=list)
    most_used_tools: List[str] = Field(default_factory=list)
    primary_device_type: DeviceType = DeviceType.DESKTOP
    typical_network_speed: NetworkSpeed = NetworkSpeed.MEDIUM

    session_count: int = 0
    average_session_length: float = 0.0
    sessions_per_week: float = 0.0

    prompt_length_total: int = 0
    average_prompt_length: float = 0.0
    complexity_total: float = 0.0
    complexity_preference: ComplexityPreference = ComplexityPreference.MODERATE

    quality_total: float = 0.0
    quality_count: int = 0
    average_quality_score: float = 0.0
    recent_quality: List[float] = Field(default_factory=list)
    quality_trend: QualityTrend = QualityTrend.STABLE

    satisfaction_total: float = 0.0
    satisfaction_count: int = 0
    average_satisfaction_rating: float = 0.0

    exploration_score: float = 0.0
    consistency_score: float = 0.0
    learning_curve: float = 0.5

    @property
    def is_new_user(self) -> bool:
        return self.total_generations == 0

    @property
    def account_age_days(self) -> float:
        return max((self.last_updated - self.first_seen).total_seconds() / 86400.0, 0.0)


class FeatureVector(SQLModel):
    user_id: str
    features: List[float]
    feature_names: List[str]
    context: str = "recommendation"
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class BehaviorEvent(SQLModel):
    user_id: str
    tool_id: str
    tool_category: str = "creative"
    parameters: Dict[str, Any] = Field(default_factory=dict)
    image_count: int = 0
    prompt_length: int = 0
    generation_time: float = 0.0
    success: bool = True
    user_satisfaction: Optional[int] = None
    timestamp: Optional[datetime] = None


class UserPreferenceSummary(SQLModel):
    favorite_categories: List[str] = Field(default_factory=list)
    preferred_image_count: int = 0
    success_rate: float = 0.0
    average_generation_time: float = 0.0
    complexity_preference: ComplexityPreference = ComplexityPreference.MODERATE


class ToolPreferencePrediction(SQLModel):
    recommended_tools: List[str]
    suggested_parameters: Dict[str, Any] = Field(default_factory=dict)
    confidence: float
    reasoning: str
    degraded: bool = False


class UserStats(SQLModel):
    total_generations: int = 0
    favorite_tools: List[str] = Field(default_factory=list)
    average_success_rate: float = 0.0
    total_time_spent: float = 0.0


class SuccessRateAnalysis(SQLModel):
    overall_success_rate: float = 0.0
    tool_success_rates: Dict[str, float] = Field(default_factory=dict)
    improvement_suggestions: List[str] = Field(default_factory=list)


class BehaviorInsights(SQLModel):
    patterns: Dict[str, Any] = Field(default_factory=dict)
    anomalies: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    trends: Dict[str, str] = Field(default_factory=dict)
