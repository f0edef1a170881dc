"""
Resume worker - re-delivers delay-node continuations to the engine.

Runs as a background task of the API process and polls the resume
scheduler for due entries.
"""
import asyncio
import logging
from typing import Optional, Any, Dict, TYPE_CHECKING

from ..core.config import settings
from ..models.schedule import ResumeStatus
from .contracts import ResumeScheduler

if TYPE_CHECKING:
    from ..flow.executor import ExecutionEngine

logger = logging.getLogger(__name__)


class ResumeWorker:
    """Polls due ScheduledResume entries and hands them to the engine"""

    def __init__(
        self,
        engine: "ExecutionEngine",
        scheduler: Optional[ResumeScheduler] = None,
        check_interval: Optional[float] = None,
        batch_size: int = 50
    ):
        self.engine = engine
        self.scheduler = scheduler or engine.scheduler
        self.check_interval = check_interval or settings.RESUME_CHECK_INTERVAL_SECONDS
        self.batch_size = batch_size

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._processed = 0
        self._failed = 0
        self._deferred = 0

    async def process_due_resumes(self) -> int:
        """Run every due resume once; returns how many were handled"""
        # Imported here: the engine module imports this package
        from ..flow.executor import InboundOutcome

        due = await self.scheduler.due_resumes(limit=self.batch_size)
        handled = 0
        for resume in due:
            outcome = await self.engine.handle_scheduled_resume(resume)
            if outcome == InboundOutcome.CONFLICT:
                # Another pass holds the conversation; left pending for the next poll
                self._deferred += 1
                logger.info(f"Resume {resume.id} deferred, conversation busy")
                continue
            if outcome == InboundOutcome.FAILED:
                self._failed += 1
                await self.scheduler.mark_resume(resume.id, ResumeStatus.FAILED, error=outcome.value)
            else:
                self._processed += 1
                await self.scheduler.mark_resume(resume.id, ResumeStatus.DONE)
            handled += 1
            logger.info(f"Resume {resume.id} -> {outcome.value}")

        return handled

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "processed": self._processed,
            "failed": self._failed,
            "deferred": self._deferred,
            "check_interval": self.check_interval
        }

    async def start_scheduler(self) -> None:
        """Start the background polling loop"""
        if self._running:
            logger.warning("Resume worker already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop())
        logger.info("Resume worker started")

    async def stop_scheduler(self) -> None:
        """Stop the background polling loop"""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Resume worker stopped")

    async def _scheduler_loop(self) -> None:
        while self._running:
            try:
                handled = await self.process_due_resumes()
                if handled:
                    logger.debug(f"Processed {handled} resumes")
            except Exception as e:
                logger.exception(f"Error in resume worker loop: {e}")

            await asyncio.sleep(self.check_interval)
