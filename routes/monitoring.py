from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from models.monitoring import ModelPerformanceMetrics
from routes.dependencies import get_engine
from services.engine import PersonalizationEngine
from utils.errors import NotFoundError

router = APIRouter(prefix="/monitoring", tags=["monitoring"])

metrics_router = APIRouter(tags=["metrics"])


class DriftRequest(BaseModel):
    feature_name: str
    current: List[float]
    reference: List[float]
    threshold: Optional[float] = Field(None, gt=0, le=1)
    model_id: Optional[str] = None


class BatchDriftRequest(BaseModel):
    current: Dict[str, List[float]]
    reference: Dict[str, List[float]]
    threshold: Optional[float] = Field(None, gt=0, le=1)


@router.post("/performance")
def record_performance(performance: ModelPerformanceMetrics, engine: PersonalizationEngine = Depends(get_engine)):
    return engine.monitoring.record_model_performance(performance)


@router.post("/drift")
def detect_drift(body: DriftRequest, engine: PersonalizationEngine = Depends(get_engine)):
    return engine.monitoring.detect_data_drift(
        body.feature_name,
        body.current,
        body.reference,
        threshold=body.threshold,
        model_id=body.model_id,
    )


@router.post("/drift/batch")
def detect_all_drift(body: BatchDriftRequest, engine: PersonalizationEngine = Depends(get_engine)):
    return engine.monitoring.detect_all_feature_drift(body.current, body.reference, threshold=body.threshold)


@router.get("/alerts")
def get_active_alerts(model_id: Optional[str] = None, engine: PersonalizationEngine = Depends(get_engine)):
    return engine.monitoring.get_active_alerts(model_id)


@router.post("/alerts/{alert_id}/resolve")
def resolve_alert(alert_id: str, engine: PersonalizationEngine = Depends(get_engine)):
    try:
        return engine.monitoring.resolve_alert(alert_id)
    except NotFoundError as e:
        raise HTTPException(404, str(e))


@router.get("/health")
def get_all_model_health(engine: PersonalizationEngine = Depends(get_engine)):
    return engine.monitoring.get_all_model_health()


@router.get("/health/{model_id}")
def get_model_health(model_id: str, engine: PersonalizationEngine = Depends(get_engine)):
    status = engine.monitoring.get_model_health(model_id)
    if status is None:
        raise HTTPException(404, f"model {model_id} not found")
    return status


@router.get("/reports/{model_id}")
def get_performance_report(
    model_id: str,
    hours: int = Query(24, ge=1, le=24 * 30),
    engine: PersonalizationEngine = Depends(get_engine)
):
    return engine.monitoring.generate_performance_report(model_id, hours=hours)


@router.post("/sweep")
def run_sweep(engine: PersonalizationEngine = Depends(get_engine)):
    return engine.monitoring.run_sweep()


@metrics_router.get("/metrics")
def metrics(engine: PersonalizationEngine = Depends(get_engine)):
    return Response(content=engine.monitoring.render_metrics(), media_type=engine.metrics.get_content_type())
