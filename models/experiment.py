from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class ExperimentStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class AnalysisStatus(str, Enum):
    RUNNING = "running"
    CONCLUSIVE = "conclusive"
    INCONCLUSIVE = "inconclusive"


class VariantChange(SQLModel):
    type: str
    target: str
    value: Any = None
    condition: Optional[str] = None


class ExperimentVariant(SQLModel):
    id: str
    name: str
    description: str = ""
    changes: List[VariantChange] = Field(default_factory=list)
    is_control: bool = False


class MetricDefinition(SQLModel):
    id: str
    name: str = ""
    type: str = "engagement"
    target: str = ""
    unit: str = ""
    higher_is_better: bool = True
    significance: float = 0.05


class AudienceCriteria(SQLModel):
    new_users: Optional[bool] = None
    skill_level: Optional[str] = None
    device_types: Optional[List[str]] = None
    active_users: Optional[bool] = None


class TargetAudience(SQLModel):
    percentage: float = 1.0
    criteria: Optional[AudienceCriteria] = None


class ExperimentConfig(SQLModel):
    test_id: str
    test_name: str
    description: str = ""
    status: ExperimentStatus = ExperimentStatus.DRAFT
    created_at: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    stop_reason: Optional[str] = None
    target_users: TargetAudience = Field(default_factory=TargetAudience)
    variants: List[ExperimentVariant] = Field(default_factory=list)
    metrics: List[MetricDefinition] = Field(default_factory=list)
    traffic_split: Dict[str, float] = Field(default_factory=dict)

    def control_variant(self) -> Optional[ExperimentVariant]:
        for variant in self.variants:
            if variant.is_control:
                return variant
        return None


class AssignmentContext(SQLModel):
    device_type: str = "desktop"
    user_agent: str = ""
    is_new_user: bool = False
    user_skill_level: str = "beginner"
    is_active_user: bool = True


class ResultContext(SQLModel):
    device_type: str = "desktop"
    user_agent: str = ""
    network_speed: str = "medium"
    time_of_day: int = 0
    day_of_week: int = 0


class ExperimentResult(SQLModel):
    test_id: str
    variant_id: str
    user_id: str
    session_id: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    metrics: Dict[str, float] = Field(default_factory=dict)
    context: Optional[ResultContext] = None
    completed: bool = True


class MetricAnalysis(SQLModel):
    value: float
    sample_size: int
    confidence_interval: List[float]
    t_statistic: float = 0.0
    p_value: float = 1.0
    is_significant: bool = False
    improvement: float = 0.0


class VariantAnalysis(SQLModel):
    variant_id: str
    variant_name: str
    is_control: bool = False
    sample_size: int
    metrics: Dict[str, MetricAnalysis] = Field(default_factory=dict)


class ExperimentWinner(SQLModel):
    variant_id: str
    confidence: float
    combined_score: float
    improvement: Dict[str, float] = Field(default_factory=dict)


class ExperimentAnalysis(SQLModel):
    test_id: str
    status: AnalysisStatus = AnalysisStatus.RUNNING
    total_samples: int = 0
    results: List[VariantAnalysis] = Field(default_factory=list)
    winner: Optional[ExperimentWinner] = None
    recommendations: List[str] = Field(default_factory=list)


class ExperimentStats(SQLModel):
    total_samples: int = 0
    variant_distribution: Dict[str, int] = Field(default_factory=dict)
    conversion_rates: Dict[str, float] = Field(default_factory=dict)
    average_metrics: Dict[str, Dict[str, float]] = Field(default_factory=dict)
