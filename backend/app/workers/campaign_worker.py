"""
Campaign Worker
Background worker that starts scheduled campaigns and dispatches recipients

Run as separate process:
    python -m app.workers.campaign_worker
"""
import asyncio
import logging
import signal
import socket
import uuid
from datetime import datetime
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from app.core.config import ConfigManager, get_settings
from app.domain.services.container import ServiceContainer, build_services


logger = logging.getLogger(__name__)

# Configure logging for worker
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class CampaignWorker:
    """
    Background worker for campaign execution.

    Responsibilities:
    - Start scheduled campaigns once their time has come
    - Claim pending recipients of running campaigns and trigger the workflow
    - Complete campaigns whose recipients are all processed

    Architecture:
    - Runs as separate process from FastAPI
    - Several workers may share one database; record claims keep them apart
    """

    MAX_CONSECUTIVE_ERRORS = 10

    def __init__(self, services: Optional[ServiceContainer] = None, worker_id: Optional[str] = None):
        settings = get_settings()
        config = ConfigManager(env=settings.environment)

        self.services = services
        self.worker_id = worker_id or f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"
        self.batch_size = int(config.get("worker.batch_size", settings.worker_batch_size))
        self.poll_interval = float(config.get("worker.poll_interval", settings.worker_poll_interval))
        self.scheduled_check_interval = float(config.get("worker.scheduled_check_interval", 30))

        self.running = False
        self._shutdown_done = False

        # Stats
        self._campaigns_started = 0
        self._recipients_sent = 0
        self._recipients_failed = 0
        self._campaigns_completed = 0
        self._last_scheduled_check: Optional[datetime] = None

    async def initialize(self) -> None:
        """Build services (database + automation engine) if not injected."""
        logger.info(f"Initializing Campaign Worker {self.worker_id}...")
        if self.services is None:
            self.services = build_services()
        logger.info("Campaign Worker initialized successfully")

    async def run_once(self, now: Optional[datetime] = None) -> dict:
        """
        One iteration: start due schedules (periodically), then dispatch
        one batch per running campaign.
        """
        now = now or datetime.utcnow()
        scheduler = self.services.scheduler

        if (
            self._last_scheduled_check is None
            or (now - self._last_scheduled_check).total_seconds() >= self.scheduled_check_interval
        ):
            started = await scheduler.process_due_schedules(now)
            self._campaigns_started += len(started)
            self._last_scheduled_check = now

        stats = await scheduler.dispatch_pending(self.worker_id, self.batch_size)
        self._recipients_sent += stats["sent"]
        self._recipients_failed += stats["failed"]
        self._campaigns_completed += stats["completed"]

        if stats["claimed"]:
            logger.info(
                f"Dispatched {stats['claimed']} recipients "
                f"(sent={stats['sent']}, failed={stats['failed']}, completed={stats['completed']})"
            )
        return stats

    async def run(self) -> None:
        """
        Main worker loop.

        Continuously:
        1. Start due scheduled campaigns
        2. Dispatch pending recipients
        3. Back off on errors
        """
        await self.initialize()

        self.running = True
        consecutive_errors = 0

        logger.info("Campaign Worker started - polling for work")

        while self.running:
            try:
                stats = await self.run_once()
                consecutive_errors = 0

                if not stats["claimed"]:
                    # Nothing to do, wait before checking again
                    await asyncio.sleep(self.poll_interval)

            except asyncio.CancelledError:
                logger.info("Worker received cancellation signal")
                break
            except Exception as e:
                consecutive_errors += 1
                logger.error(f"Worker error ({consecutive_errors}): {e}", exc_info=True)

                if consecutive_errors >= self.MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Too many consecutive errors, stopping worker")
                    break

                await asyncio.sleep(min(5 * consecutive_errors, 60))

        await self.shutdown()

    async def shutdown(self) -> None:
        """Graceful shutdown."""
        if self._shutdown_done:
            return
        logger.info("Shutting down Campaign Worker...")
        self.running = False
        self._shutdown_done = True

        logger.info(
            f"Campaign Worker shutdown complete. "
            f"Started: {self._campaigns_started}, Sent: {self._recipients_sent}, "
            f"Failed: {self._recipients_failed}, Completed: {self._campaigns_completed}"
        )

    def get_stats(self) -> dict:
        """Get worker statistics."""
        return {
            "worker_id": self.worker_id,
            "running": self.running,
            "campaigns_started": self._campaigns_started,
            "recipients_sent": self._recipients_sent,
            "recipients_failed": self._recipients_failed,
            "campaigns_completed": self._campaigns_completed,
        }


async def main():
    """Entry point for running campaign worker as separate process."""
    worker = CampaignWorker()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        worker.running = False

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        await worker.run()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    finally:
        await worker.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
