from __future__ import annotations
from enum import Enum
from typing import Dict, List, Optional
from datetime import datetime
from uuid import uuid4
from sqlmodel import SQLModel, Field


class HealthState(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    OFFLINE = "offline"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ModelPerformanceMetrics(SQLModel):
    model_id: str
    timestamp: Optional[datetime] = None
    accuracy: float
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    latency: float = 0.0
    throughput: float = 0.0
    error_rate: float = 0.0
    memory_usage: float = 0.0
    cpu_usage: float = 0.0


class DataDriftMetrics(SQLModel):
    feature_name: str
    model_id: Optional[str] = None
    timestamp: datetime
    drift_score: float
    p_value: float
    reference_distribution: List[float]
    current_distribution: List[float]
    bin_edges: List[float]
    threshold: float
    is_drifting: bool


class ModelHealthStatus(SQLModel):
    model_id: str
    status: HealthState = HealthState.HEALTHY
    last_health_check: datetime
    first_seen: datetime
    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    version: str = "1.0.0"


class MonitoringAlert(SQLModel):
    alert_id: str = Field(default_factory=lambda: f"alert_{uuid4().hex}")
    triggered_at: datetime
    severity: AlertSeverity
    message: str
    model_id: Optional[str] = None
    metric_name: str
    current_value: float
    threshold: float
    resolved: bool = False
    resolved_at: Optional[datetime] = None


class PerformanceSummary(SQLModel):
    average_accuracy: float = 0.0
    average_latency: float = 0.0
    total_requests: float = 0.0
    error_rate: float = 0.0


class PerformanceReport(SQLModel):
    model_id: str
    window_hours: int
    sample_count: int = 0
    summary: PerformanceSummary = Field(default_factory=PerformanceSummary)
    trends: Dict[str, str] = Field(default_factory=dict)
    alerts: List[MonitoringAlert] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class SweepReport(SQLModel):
    models_marked_offline: List[str] = Field(default_factory=list)
    performance_records_pruned: int = 0
    drift_records_pruned: int = 0
    alerts_pruned: int = 0
