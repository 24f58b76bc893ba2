import time
from typing import Optional, Dict, Any, Iterable, List
from sqlalchemy import case, delete, func, text, update
from sqlmodel import select
from app.repositories.base_repository import BaseRepository
from app.models.job import Job
from app.models.enums import JobType, CRON_FIRED_PID

class JobRepository(BaseRepository):
    """Store gateway for the `job` table.

    Methods used inside the claim transaction (`lock_queue`, `occupied_capacity`,
    `select_next`, `claim`) never commit; the caller owns that transaction.
    Everything else commits on its own.
    """

    def _execute(self, statement):
        # Core statements run on the session's connection so they share its transaction
        return self.session.connection().execute(statement)

    def get(self, job_id: int) -> Optional[Job]:
        return self.session.get(Job, job_id)

    def create(
        self,
        command: str,
        job_type: JobType = JobType.EPHEMERAL,
        capacity: int = 1,
        weight: int = 0,
        start_time: Optional[float] = None,
        schedule_name: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Job:
        now = time.time()
        job = Job(
            command=command,
            type=job_type,
            capacity=capacity,
            weight=weight,
            start_time=start_time if start_time is not None else now,
            timestamp=now,
            schedule_name=schedule_name,
            payload=payload or {},
        )
        self.session.add(job)
        self.session.commit()
        self.session.refresh(job)
        return job

    def list(self, job_type: Optional[JobType] = None) -> List[Job]:
        statement = select(Job).order_by(Job.id)
        if job_type is not None:
            statement = statement.where(Job.type == job_type)
        return list(self.session.exec(statement).all())

    def counts(self) -> Dict[str, Dict[str, int]]:
        """Queued and running row counts per job type."""
        out = {t.value: {"queued": 0, "running": 0} for t in JobType}
        running = case((Job.pid > 0, 1), else_=0)
        statement = select(Job.type, running, func.count()).group_by(Job.type, running)
        for job_type, running, count in self.session.exec(statement).all():
            out[JobType(job_type).value]["running" if running else "queued"] += count
        return out

    # ---------- claim transaction ----------
    def lock_queue(self):
        """Serialize claimers on the job table until the transaction ends."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            self._execute(text("LOCK TABLE job IN SHARE ROW EXCLUSIVE MODE"))
        elif dialect == "sqlite":
            # A write statement takes the RESERVED lock even when it touches no rows
            self._execute(text("UPDATE job SET pid = pid WHERE 0 = 1"))
        else:
            self.session.exec(select(Job.id).where(Job.pid.is_(None)).with_for_update()).all()

    def occupied_capacity(self) -> int:
        statement = select(func.coalesce(func.sum(Job.capacity), 0)).where(
            Job.pid.is_not(None), Job.pid > 0
        )
        return int(self.session.exec(statement).one())

    def select_next(self, now: Optional[float] = None, headroom: Optional[int] = None) -> Optional[Job]:
        """Best unclaimed job: least occupied type first, then heaviest weight, then oldest.

        With `headroom`, jobs whose capacity does not fit in it are skipped.
        """
        now = time.time() if now is None else now
        active = (
            select(Job.type.label("type"), func.sum(Job.capacity).label("occupation"))
            .where(Job.pid.is_not(None), Job.pid > 0)
            .group_by(Job.type)
            .subquery("active")
        )
        occupation = func.coalesce(active.c.occupation, 0)
        statement = (
            select(Job)
            .outerjoin(active, active.c.type == Job.type)
            .where(Job.timestamp <= now, Job.start_time <= now, Job.pid.is_(None))
            .order_by(occupation.asc(), Job.weight.desc(), Job.id.asc())
            .limit(1)
        )
        if headroom is not None:
            statement = statement.where(Job.capacity <= headroom)
        return self.session.exec(statement).first()

    def claim(self, job_id: int, pid: int, now: Optional[float] = None) -> bool:
        statement = (
            update(Job)
            .where(Job.id == job_id, Job.pid.is_(None))
            .values(pid=pid, timestamp=time.time() if now is None else now)
        )
        return self._execute(statement).rowcount == 1

    # ---------- lifecycle ----------
    def record_child(self, job_id: int, child_pid: int):
        self._execute(update(Job).where(Job.id == job_id).values(child_pid=child_pid))
        self.session.commit()

    def release(self, job_id: int) -> int:
        """Clear the owner so the job is eligible again."""
        res = self._execute(
            update(Job).where(Job.id == job_id).values(pid=None, child_pid=None, timestamp=time.time())
        )
        self.session.commit()
        return res.rowcount

    def mark_fired(self, job_id: int) -> int:
        res = self._execute(
            update(Job).where(Job.id == job_id).values(pid=CRON_FIRED_PID, child_pid=None, timestamp=time.time())
        )
        self.session.commit()
        return res.rowcount

    def delete_finished(self, job_id: int, pid: int) -> int:
        res = self._execute(delete(Job).where(Job.id == job_id, Job.pid == pid))
        self.session.commit()
        return res.rowcount

    # ---------- queue maintenance ----------
    def count_scheduled(self, schedule_name: str, job_type: JobType, start_time: Optional[float] = None) -> int:
        statement = select(func.count()).select_from(Job).where(
            Job.type == job_type, Job.schedule_name == schedule_name
        )
        if start_time is not None:
            statement = statement.where(Job.start_time == start_time)
        return int(self.session.exec(statement).one())

    def find_by_command(self, command: str, include_active: bool = False) -> List[Job]:
        statement = select(Job).where(Job.command == command).order_by(Job.id)
        if not include_active:
            statement = statement.where(Job.pid.is_(None))
        return list(self.session.exec(statement).all())

    def delete_ids(self, job_ids: Iterable[int], commit: bool = True) -> int:
        job_ids = list(job_ids)
        if not job_ids:
            return 0
        res = self._execute(delete(Job).where(Job.id.in_(job_ids)))
        if commit:
            self.session.commit()
        return res.rowcount

    def delete_orphans(self, live_pids: Iterable[int]) -> int:
        """Non-permanent rows owned by a pid that is no longer alive."""
        res = self._execute(
            delete(Job).where(
                Job.type != JobType.PERMANENT,
                Job.pid.is_not(None),
                Job.pid.not_in(list(live_pids)),
            )
        )
        self.session.commit()
        return res.rowcount

    def delete_fired_cron(self) -> int:
        res = self._execute(delete(Job).where(Job.type == JobType.CRON, Job.pid == CRON_FIRED_PID))
        self.session.commit()
        return res.rowcount

    def release_orphaned_permanent(self, live_pids: Iterable[int]) -> int:
        res = self._execute(
            update(Job)
            .where(
                Job.type == JobType.PERMANENT,
                Job.pid.is_not(None),
                Job.pid.not_in(list(live_pids)),
            )
            .values(pid=None, child_pid=None, timestamp=time.time())
        )
        self.session.commit()
        return res.rowcount
