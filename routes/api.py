from fastapi import APIRouter

from routes.experiments import router as experiments_router
from routes.monitoring import router as monitoring_router
from routes.recommendations import router as recommendations_router


router = APIRouter()

router.include_router(recommendations_router)
router.include_router(experiments_router)
router.include_router(monitoring_router)
