from .storage import KeyValueEntry
from .features import (
    DeviceType,
    NetworkSpeed,
    GenerationRequest,
    GenerationOutcome,
    GenerationFeatures,
    UserFeatures,
    FeatureVector,
    BehaviorEvent,
)
from .recommendation import RecommendationContext, RecommendationResult, ToolRecommendation, ToolUsageOutcome
from .experiment import ExperimentConfig, ExperimentResult, ExperimentAnalysis, ExperimentStatus, AssignmentContext
from .quality import QualityAssessmentRequest, ImageQualityMetrics, QualityCategory
from .monitoring import ModelPerformanceMetrics, DataDriftMetrics, ModelHealthStatus, MonitoringAlert, HealthState, AlertSeverity
