from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from sqlmodel import SQLModel, Field


class QualityCategory(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class TechnicalQuality(SQLModel):
    sharpness: float = 0.5
    contrast: float = 0.5
    brightness: float = 0.5
    color_balance: float = 0.5
    noise_level: float = 0.5
    resolution: float = 0.5


class ContentQuality(SQLModel):
    prompt_alignment: float = 0.5
    completeness: float = 0.5
    creativity: float = 0.5
    aesthetics: float = 0.5
    coherence: float = 0.5


class QualityAssessmentRequest(SQLModel):
    # raw bytes, or base64 text with an optional data-URL prefix
    image_data: Union[bytes, str]
    original_prompt: str = ""
    tool_id: str
    user_feedback: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ImageQualityMetrics(SQLModel):
    technical_quality: TechnicalQuality = Field(default_factory=TechnicalQuality)
    content_quality: ContentQuality = Field(default_factory=ContentQuality)
    overall_score: int = 50
    category: QualityCategory = QualityCategory.FAIR
    suggestions: List[str] = Field(default_factory=list)
    width: Optional[int] = None
    height: Optional[int] = None
    degraded: bool = False


class ToolQualityStats(SQLModel):
    average_score: float = 0.0
    total_assessments: int = 0
    category_distribution: Dict[str, int] = Field(default_factory=dict)
    common_issues: List[str] = Field(default_factory=list)
