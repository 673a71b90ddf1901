from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Callable, Optional

from config import settings
from middleware.logging_middleware import CorrelationIdMiddleware, RequestTimingMiddleware
from routes.api import router as api_router
from routes.health import router as health_router
from routes.monitoring import metrics_router
from services.engine import PersonalizationEngine, build_engine_from_settings
from services.monitoring import ScheduledMonitoringSweep
from utils.logger import setup_logger

logger = setup_logger(__name__)


def create_app(engine_factory: Optional[Callable[[], PersonalizationEngine]] = None) -> FastAPI:
    engine_factory = engine_factory or build_engine_from_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting application lifespan")

        engine = engine_factory()
        app.state.engine = engine

        sweep = ScheduledMonitoringSweep(engine.monitoring, interval_minutes=settings.SWEEP_INTERVAL_MINUTES)
        sweep.start()

        yield

        await sweep.stop()
        engine.close()
        logger.info("Application shutdown complete")

    app = FastAPI(title="Personalization Engine", version="0.1.0", debug=settings.DEBUG, lifespan=lifespan)

    # added last runs first, so the correlation id is bound before timing logs
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")
    app.include_router(health_router)
    app.include_router(metrics_router)

    @app.get("/")
    def root():
        return {"app": "personalization-engine", "status": "running"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
