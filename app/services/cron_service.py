import time
from datetime import datetime, timezone
from typing import Iterable, List, NamedTuple, Optional

import structlog
from croniter import croniter

from app.config import CRONTAB_FILE, CRONTAB_SCHEDULES
from app.models.enums import JobType
from app.models.job import Job
from app.repositories.job_repository import JobRepository
from app.schemas.schedules import CronSchedule, load_schedules

logger = structlog.get_logger(__name__)


class Materialized(NamedTuple):
    job: Job
    spawn: bool


def configured_schedules() -> List[CronSchedule]:
    return load_schedules(CRONTAB_SCHEDULES, CRONTAB_FILE or None)


def next_fire_time(expression: str, now: Optional[float] = None) -> float:
    """Earliest fire time strictly after `now`, as epoch seconds (UTC)."""
    now = time.time() if now is None else now
    base = datetime.fromtimestamp(now, tz=timezone.utc)
    return croniter(expression, base).get_next(float)


class CronMaterializer:
    """Turns crontab schedules into queued jobs, one pending row per slot."""

    def __init__(self, repo: JobRepository):
        self.repo = repo

    def materialize(self, schedules: Iterable[CronSchedule], now: Optional[float] = None) -> List[Materialized]:
        out = []
        for schedule in schedules:
            try:
                next_time = next_fire_time(schedule.schedule, now)
            except (ValueError, KeyError) as e:
                logger.error("invalid_cron_expression", schedule=schedule.name,
                             expression=schedule.schedule, error=str(e))
                continue

            # Permanent schedules never re-arm by time, one row per schedule is enough
            start_filter = None if schedule.type is JobType.PERMANENT else next_time
            if self.repo.count_scheduled(schedule.name, schedule.type, start_filter):
                continue

            job = self.repo.create(
                schedule.command,
                job_type=schedule.type,
                capacity=schedule.capacity,
                weight=schedule.weight,
                start_time=next_time,
                schedule_name=schedule.name,
            )
            logger.debug("schedule_materialized", schedule=schedule.name, job_id=job.id, start_time=next_time)
            out.append(Materialized(job, schedule.spawn))
        return out
