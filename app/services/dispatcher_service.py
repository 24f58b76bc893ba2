import time
from typing import Any, Dict, List, Optional

import structlog

from app.config import PROCESS_LIMIT
from app.context import WorkerContext
from app.exceptions import AdmissionRejected, ChildProcessFailure, LostClaim, NoEligibleJob, SpawnFailure
from app.models.enums import DispatchOutcome, QueueEvent
from app.repositories.job_repository import JobRepository
from app.schemas.schedules import CronSchedule
from app.services.admission_service import AdmissionController
from app.services.cron_service import CronMaterializer, configured_schedules
from app.services.events_service import EventPublisher
from app.services.launcher_service import LaunchResult, WorkerLauncher
from app.services.lifecycle_service import LifecycleManager
from app.services.reaper_service import OrphanReaper

logger = structlog.get_logger(__name__)


class Dispatcher:
    """One claim-execute-retire cycle against the shared job table."""

    def __init__(
        self,
        repo: JobRepository,
        launcher: Optional[WorkerLauncher] = None,
        events: Optional[EventPublisher] = None,
        limit: int = PROCESS_LIMIT,
    ):
        self.repo = repo
        self.admission = AdmissionController(repo, limit)
        self.launcher = launcher or WorkerLauncher()
        self.lifecycle = LifecycleManager(repo)
        self.events = events

    def _publish(self, job_id, event, **fields):
        if self.events is not None:
            self.events.publish(job_id, event, **fields)

    def claim_next(self, context: WorkerContext, now: Optional[float] = None) -> Dict[str, Any]:
        """Admit, select and claim one job inside a single locked transaction.

        Raises AdmissionRejected, NoEligibleJob or LostClaim after rolling back.
        """
        now = time.time() if now is None else now
        try:
            self.repo.lock_queue()
            occupied = self.admission.admit()

            # Only jobs that fit the remaining capacity are candidates
            job = self.repo.select_next(now, headroom=self.admission.limit - occupied)
            if job is None:
                raise NoEligibleJob()

            if not self.repo.claim(job.id, context.pid, now):
                raise LostClaim(job.id)

            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        self.repo.session.refresh(job)
        return job.descriptor()

    def execute(self, job: Dict[str, Any], context: WorkerContext) -> LaunchResult:
        logger.debug("execute_process", job_id=job["id"], command=job["command"], worker=context.worker_id)
        self._publish(job["id"], QueueEvent.CLAIMED, worker=context.worker_id)

        def spawned(child_pid: int):
            self.repo.record_child(job["id"], child_pid)
            self._publish(job["id"], QueueEvent.SPAWNED, child_pid=child_pid)

        try:
            result = self.launcher.launch(job["command"], env=context.env, on_spawn=spawned)
        except SpawnFailure as e:
            # Nothing ran, hand the claim back
            affected = self.lifecycle.abandon(job, context)
            self._publish(job["id"], QueueEvent.ERROR, error=str(e), affected=affected)
            raise

        try:
            result.check()
        except ChildProcessFailure as e:
            logger.warning("child_process_failure", job_id=job["id"], returncode=e.returncode, error=str(e))

        affected = self.lifecycle.retire(job, context)
        self._publish(job["id"], QueueEvent.RETIRED, returncode=result.returncode, affected=affected)
        return result

    def run_cycle(self, context: WorkerContext, now: Optional[float] = None) -> DispatchOutcome:
        try:
            job = self.claim_next(context, now)
        except AdmissionRejected:
            logger.debug("capacity_exhausted", worker=context.worker_id)
            return DispatchOutcome.ADMISSION_REJECTED
        except NoEligibleJob:
            logger.debug("no_eligible_job", worker=context.worker_id)
            return DispatchOutcome.NO_ELIGIBLE_JOB
        except LostClaim as e:
            logger.warning("lost_claim", job_id=e.job_id, worker=context.worker_id)
            return DispatchOutcome.LOST_CLAIM

        self.execute(job, context)
        return DispatchOutcome.COMPLETED

    def run_chain(self, context: WorkerContext, max_jobs: Optional[int] = None) -> int:
        """Keep claiming successors until the queue is idle; returns the number of jobs run."""
        completed = 0
        while max_jobs is None or completed < max_jobs:
            if self.run_cycle(context).idle:
                break
            completed += 1
        return completed

    def run(
        self,
        context: WorkerContext,
        cron: bool = False,
        cleanup: bool = False,
        schedules: Optional[List[CronSchedule]] = None,
        chain: bool = True,
    ) -> int:
        """Single dispatcher invocation.

        With `cleanup` only the reaper runs and the number of reconciled rows
        is returned. Otherwise schedules are materialized first when `cron` is
        set, then jobs are dispatched and the number run is returned.
        """
        if cleanup:
            return OrphanReaper(self.repo).reap()

        if cron:
            logger.debug("cron_started_process")
            created = CronMaterializer(self.repo).materialize(
                configured_schedules() if schedules is None else schedules
            )
            logger.info("schedules_materialized", created=len(created))

        if chain:
            return self.run_chain(context)
        return int(self.run_cycle(context) is DispatchOutcome.COMPLETED)
