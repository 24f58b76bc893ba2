import os
import signal
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog

from app.exceptions import InvalidCommand
from app.models.enums import JobType, QueueEvent
from app.models.job import Job
from app.repositories.job_repository import JobRepository
from app.services.events_service import EventPublisher

logger = structlog.get_logger(__name__)


class QueueService:
    def __init__(self, repo: JobRepository, events: Optional[EventPublisher] = None):
        self.repo = repo
        self.events = events

    def _publish(self, job_id, event, **fields):
        if self.events is not None:
            self.events.publish(job_id, event, **fields)

    def enqueue(
        self,
        command: str,
        job_type: JobType = JobType.EPHEMERAL,
        capacity: int = 1,
        weight: int = 0,
        start_time: Optional[float] = None,
        schedule_name: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Job:
        if not command or not command.strip():
            raise InvalidCommand("Command cannot be empty.")
        if capacity < 1:
            raise InvalidCommand("Capacity must be a positive integer.")

        job = self.repo.create(
            command.strip(),
            job_type=job_type,
            capacity=capacity,
            weight=weight,
            start_time=start_time,
            schedule_name=schedule_name,
            payload=payload,
        )
        logger.info("job_enqueued", job_id=job.id, command=job.command, type=job.type.value)
        self._publish(job.id, QueueEvent.ENQUEUED, command=job.command)
        return job

    def enqueue_once(
        self,
        command: str,
        requeue: bool = False,
        include_active: bool = False,
        **options,
    ) -> Tuple[List[Job], bool]:
        """Enqueue `command` unless an identical one is already queued.

        Returns `(jobs, created)`; the existing rows and False when one is found.
        With `requeue` the existing rows are killed and a fresh row is put at
        the back of the queue.
        With `include_active` claimed rows count as duplicates too.
        """
        command = (command or "").strip()
        if not command:
            raise InvalidCommand("Command cannot be empty.")

        self.repo.lock_queue()
        existing = self.repo.find_by_command(command, include_active=include_active)

        if existing and not requeue:
            logger.debug("job_already_queued", command=command, job_ids=[j.id for j in existing])
            self.repo.rollback()
            return existing, False

        victims = [(j.id, j.child_pid) for j in existing]
        try:
            if victims:
                self.repo.delete_ids([job_id for job_id, _ in victims], commit=False)
            # Commits the delete and the insert together, releasing the queue lock
            job = self.enqueue(command, **options)
        except Exception:
            self.repo.rollback()
            raise

        self._signal(victims, signal.SIGKILL)
        return [job], True

    def kill(self, target: Union[int, str], sig: int = signal.SIGKILL) -> int:
        """Remove jobs and signal their running commands.

        An int `target` is a job id, a string is matched against commands.
        """
        if isinstance(target, int):
            job = self.repo.get(target)
            jobs = [job] if job else []
        else:
            jobs = self.repo.find_by_command(target, include_active=True)

        if not jobs:
            return 0

        victims = [(j.id, j.child_pid) for j in jobs]
        deleted = self.repo.delete_ids([job_id for job_id, _ in victims])
        logger.debug("killing_jobs", job_ids=[job_id for job_id, _ in victims], signal=int(sig))
        self._signal(victims, sig)
        return deleted

    def _signal(self, victims, sig):
        for job_id, child_pid in victims:
            if child_pid:
                try:
                    # Children run in their own session, signal the whole group
                    os.killpg(child_pid, sig)
                except (ProcessLookupError, PermissionError) as e:
                    logger.warning("kill_failed", job_id=job_id, child_pid=child_pid, error=str(e))
            self._publish(job_id, QueueEvent.KILLED, signal=int(sig))
