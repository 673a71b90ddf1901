import asyncio
from typing import Optional

from services.monitoring.monitoring_service import MonitoringService
from utils.logger import setup_logger

logger = setup_logger(__name__)


class ScheduledMonitoringSweep:
    def __init__(self, monitoring: MonitoringService, interval_minutes: int = 5):
        self.monitoring = monitoring
        self.interval_minutes = interval_minutes
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def run_scheduled_sweep(self):
        self.running = True

        logger.info(
            "Scheduled monitoring sweep started",
            extra={"interval_minutes": self.interval_minutes}
        )

        while self.running:
            try:
                await asyncio.sleep(self.interval_minutes * 60)

                if not self.running:
                    break

                await asyncio.to_thread(self.monitoring.run_sweep)

            except asyncio.CancelledError:
                logger.info("Scheduled monitoring sweep cancelled")
                break
            except Exception as e:
                # retried on the next tick
                logger.error(
                    "Monitoring sweep failed",
                    extra={"error": str(e)},
                    exc_info=True
                )

    def start(self):
        if self.task is None or self.task.done():
            self.task = asyncio.create_task(self.run_scheduled_sweep())
            logger.info("Scheduled monitoring sweep task created")

    async def stop(self):
        self.running = False

        if self.task and not self.task.done():
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass

        logger.info("Scheduled monitoring sweep stopped")
