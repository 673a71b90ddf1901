from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException
from typing import Dict, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from models.experiment import AssignmentContext, ExperimentConfig, ExperimentResult, ResultContext
from routes.dependencies import get_engine
from services.engine import PersonalizationEngine
from utils.errors import NotFoundError, ValidationError

router = APIRouter(prefix="/experiments", tags=["experiments"])


class VariantRequest(BaseModel):
    user_id: str
    context: AssignmentContext = Field(default_factory=AssignmentContext)


class StopRequest(BaseModel):
    reason: Optional[str] = None


class ResultBody(BaseModel):
    variant_id: str
    user_id: str
    session_id: str = ""
    timestamp: Optional[datetime] = None
    metrics: Dict[str, float] = Field(default_factory=dict)
    context: Optional[ResultContext] = None
    completed: bool = True


def _control_call(fn, *args):
    try:
        return fn(*args)
    except NotFoundError as e:
        raise HTTPException(404, str(e))
    except ValidationError as e:
        raise HTTPException(400, str(e))


@router.post("", status_code=201)
def create_test(config: ExperimentConfig, engine: PersonalizationEngine = Depends(get_engine)):
    return _control_call(engine.experiments.create_test, config)


@router.get("")
def list_active_tests(engine: PersonalizationEngine = Depends(get_engine)):
    return engine.experiments.get_active_tests()


@router.get("/{test_id}")
def get_test(test_id: str, engine: PersonalizationEngine = Depends(get_engine)):
    config = engine.experiments.get_test(test_id)
    if config is None:
        raise HTTPException(404, f"test {test_id} not found")
    return config


@router.post("/{test_id}/start")
def start_test(test_id: str, engine: PersonalizationEngine = Depends(get_engine)):
    return _control_call(engine.experiments.start_test, test_id)


@router.post("/{test_id}/pause")
def pause_test(test_id: str, engine: PersonalizationEngine = Depends(get_engine)):
    return _control_call(engine.experiments.pause_test, test_id)


@router.post("/{test_id}/stop")
def stop_test(test_id: str, body: Optional[StopRequest] = None, engine: PersonalizationEngine = Depends(get_engine)):
    return _control_call(engine.experiments.stop_test, test_id, body.reason if body else None)


@router.get("/{test_id}/analysis")
def analyze_test(test_id: str, engine: PersonalizationEngine = Depends(get_engine)):
    return _control_call(engine.experiments.analyze_test, test_id)


@router.get("/{test_id}/stats")
def get_test_stats(test_id: str, engine: PersonalizationEngine = Depends(get_engine)):
    return _control_call(engine.experiments.get_test_stats, test_id)


@router.post("/{test_id}/variant")
def get_user_variant(test_id: str, body: VariantRequest, engine: PersonalizationEngine = Depends(get_engine)):
    variant_id = engine.experiments.get_user_variant(body.user_id, test_id, body.context)
    return {"test_id": test_id, "user_id": body.user_id, "variant_id": variant_id}


@router.post("/{test_id}/results", status_code=202)
def record_test_result(test_id: str, body: ResultBody, engine: PersonalizationEngine = Depends(get_engine)):
    payload = body.model_dump(exclude_none=True)
    engine.record_test_result(ExperimentResult(test_id=test_id, **payload))
    return {"status": "accepted"}
