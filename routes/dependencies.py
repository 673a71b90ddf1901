from fastapi import HTTPException, Request

from services.engine import PersonalizationEngine


def get_engine(request: Request) -> PersonalizationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(503, "engine not initialized")
    return engine
