from typing import Any, Dict
import structlog
from app.context import WorkerContext
from app.models.enums import JobType
from app.repositories.job_repository import JobRepository

logger = structlog.get_logger(__name__)

class LifecycleManager:
    """Terminal transition of a job once its command has exited."""

    def __init__(self, repo: JobRepository):
        self.repo = repo

    def retire(self, job: Dict[str, Any], context: WorkerContext) -> int:
        job_type = JobType(job.get("type") or JobType.EPHEMERAL)

        if job_type is JobType.PERMANENT:
            # Permanent jobs respawn on death
            affected = self.repo.release(job["id"])
            logger.debug("permanent_job_released", job_id=job["id"], affected=affected)
        elif job_type is JobType.CRON:
            # Fired marker, keeps the slot from firing or being scheduled twice
            affected = self.repo.mark_fired(job["id"])
            logger.debug("cron_job_fired", job_id=job["id"], affected=affected)
        else:
            affected = self.repo.delete_finished(job["id"], context.pid)
            logger.debug("job_deleted", job_id=job["id"], pid=context.pid, affected=affected)

        return affected

    def abandon(self, job: Dict[str, Any], context: WorkerContext) -> int:
        """Undo a claim whose command never started.

        Ephemeral rows are dropped. Cron and permanent rows are released so a
        later cycle can try them again.
        """
        job_type = JobType(job.get("type") or JobType.EPHEMERAL)

        if job_type is JobType.EPHEMERAL:
            affected = self.repo.delete_finished(job["id"], context.pid)
        else:
            affected = self.repo.release(job["id"])
        logger.warning("claim_abandoned", job_id=job["id"], type=job_type.value, affected=affected)
        return affected
