from fastapi import APIRouter, Depends
from typing import Dict, Any
from datetime import datetime

from routes.dependencies import get_engine
from services.engine import PersonalizationEngine
from services.recommendation import SCORING_VERSION
from utils.logger import setup_logger

logger = setup_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": "personalization-engine",
        "scoring_version": SCORING_VERSION
    }


@router.get("/ready")
def readiness_check(engine: PersonalizationEngine = Depends(get_engine)):
    checks_passed = True
    checks: Dict[str, Any] = {}

    try:
        engine.store.keys("model_health")
        checks["storage"] = {"status": "ready", "backend": type(engine.store).__name__}
    except Exception as e:
        logger.warning("Storage readiness check failed", extra={"error": str(e)})
        checks["storage"] = {"status": "not_ready", "error": str(e)}
        checks_passed = False

    breaker = engine.quality.breaker.get_state()
    if breaker["state"] == "open":
        # assessments still answer with defaults
        checks["image_decoding"] = {"status": "degraded", "circuit_breaker": breaker}
    else:
        checks["image_decoding"] = {"status": "ready", "circuit_breaker": breaker}

    return {
        "ready": checks_passed,
        "checks": checks,
        "timestamp": datetime.utcnow().isoformat()
    }


@router.get("/live")
def liveness_check():
    return {
        "alive": True,
        "timestamp": datetime.utcnow().isoformat()
    }
