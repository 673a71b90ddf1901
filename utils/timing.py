import time
from typing import Optional, Dict, Any
from contextlib import contextmanager

from utils.logger import setup_logger

logger = setup_logger(__name__)


class StageTimer:
    """Per-stage wall time for one pipeline invocation."""

    def __init__(self, operation: str):
        self.operation = operation
        self.stages: Dict[str, float] = {}
        self._started = time.perf_counter()
    
    @contextmanager
    def stage(self, stage_name: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            self.stages[stage_name] = round(duration_ms, 3)
            logger.debug(
                f"Stage completed: {stage_name}",
                extra={
                    "operation": self.operation,
                    "stage": stage_name,
                    "duration_ms": round(duration_ms, 3)
                }
            )
    
    @property
    def elapsed_seconds(self) -> float:
        return time.perf_counter() - self._started
    
    def get_summary(self) -> Dict[str, Any]:
        return {
            "stages": dict(self.stages),
            "total_duration_ms": round(self.elapsed_seconds * 1000, 3),
            "stage_count": len(self.stages)
        }
    
    def log_summary(self, extra: Optional[Dict[str, Any]] = None):
        summary = self.get_summary()
        payload = {
            "operation": self.operation,
            "total_duration_ms": summary["total_duration_ms"],
            "stage_count": summary["stage_count"],
            "stages": summary["stages"],
        }
        if extra:
            payload.update(extra)
        
        logger.info(f"{self.operation} timing summary", extra=payload)
