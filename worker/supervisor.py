import queue
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import structlog
from sqlmodel import Session

from app.config import (
    CLEANUP_INTERVAL_S,
    CRON_INTERVAL_S,
    POLL_INTERVAL_S,
    PROCESS_LIMIT,
    WORKER_CONCURRENCY,
)
from app.context import WorkerContext
from app.exceptions import SpawnFailure
from app.models.enums import DispatchOutcome
from app.repositories.job_repository import JobRepository
from app.schemas.schedules import CronSchedule
from app.services.cron_service import CronMaterializer
from app.services.dispatcher_service import Dispatcher
from app.services.reaper_service import OrphanReaper

logger = structlog.get_logger(__name__)


@dataclass
class SlotResult:
    slot: int
    outcome: Optional[DispatchOutcome] = None
    error: Optional[BaseException] = None


@dataclass
class SupervisorStats:
    completed: int = 0
    idle: int = 0
    spawn_failures: int = 0


class Supervisor:
    """Bounded pool of dispatch slots sharing the claim protocol.

    Each slot runs dispatch cycles with its own session and reports every
    outcome on the result channel. Idle slots back off for `poll_interval`.
    Cron materialization and orphan reaping run from the supervising thread.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        concurrency: int = WORKER_CONCURRENCY,
        poll_interval: float = POLL_INTERVAL_S,
        cron_interval: Optional[float] = CRON_INTERVAL_S,
        cleanup_interval: Optional[float] = CLEANUP_INTERVAL_S,
        schedules: Optional[List[CronSchedule]] = None,
        env: Optional[Dict[str, str]] = None,
        dispatcher_factory: Optional[Callable[[Session], Dispatcher]] = None,
        limit: int = PROCESS_LIMIT,
    ):
        self.session_factory = session_factory
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.cron_interval = cron_interval
        self.cleanup_interval = cleanup_interval
        self.schedules = schedules or []
        self.env = env
        self.dispatcher_factory = dispatcher_factory or (lambda session: Dispatcher(JobRepository(session), limit=limit))

        self.results: "queue.Queue[SlotResult]" = queue.Queue()
        self.stats = SupervisorStats()
        self._stop = threading.Event()
        self._wake = threading.Event()

    def stop(self, *_):
        self._stop.set()
        self._wake.set()

    def wake(self):
        self._wake.set()

    def _slot(self, slot: int):
        context = WorkerContext.current(slot=slot, env=self.env)
        while not self._stop.is_set():
            try:
                with self.session_factory() as session:
                    outcome = self.dispatcher_factory(session).run_cycle(context)
            except SpawnFailure as e:
                self.results.put(SlotResult(slot, error=e))
                continue
            except Exception as e:
                self.results.put(SlotResult(slot, error=e))
                return

            self.results.put(SlotResult(slot, outcome))
            if outcome.idle:
                self._wake.wait(self.poll_interval)
                self._wake.clear()

    def _maintain(self, now: float, due: Dict[str, float]):
        if self.cron_interval is not None and self.schedules and now >= due["cron"]:
            due["cron"] = now + self.cron_interval
            with self.session_factory() as session:
                created = CronMaterializer(JobRepository(session)).materialize(self.schedules, now)
            if any(m.spawn for m in created):
                self.wake()

        if self.cleanup_interval is not None and now >= due["cleanup"]:
            due["cleanup"] = now + self.cleanup_interval
            with self.session_factory() as session:
                OrphanReaper(JobRepository(session)).reap()

    def _handle(self, result: SlotResult):
        if result.error is None:
            if result.outcome is DispatchOutcome.COMPLETED:
                self.stats.completed += 1
            else:
                self.stats.idle += 1
            return

        if isinstance(result.error, SpawnFailure):
            self.stats.spawn_failures += 1
            logger.error("spawn_failure", slot=result.slot, error=str(result.error))
            return

        logger.error("slot_failed", slot=result.slot, error=str(result.error))
        self.stop()
        raise result.error

    def run(self, until: Optional[Callable[[SupervisorStats], bool]] = None) -> SupervisorStats:
        now = time.time()
        due = {"cron": now, "cleanup": now}
        logger.info("supervisor_started", concurrency=self.concurrency)

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="dispatch") as pool:
            for slot in range(self.concurrency):
                pool.submit(self._slot, slot)

            try:
                while not self._stop.is_set():
                    self._maintain(time.time(), due)
                    try:
                        self._handle(self.results.get(timeout=self.poll_interval))
                    except queue.Empty:
                        pass
                    if until is not None and until(self.stats):
                        break
            finally:
                self.stop()

        # Drain outcomes reported while the slots were winding down
        while not self.results.empty():
            result = self.results.get_nowait()
            if result.outcome is DispatchOutcome.COMPLETED:
                self.stats.completed += 1

        logger.info("supervisor_stopped", completed=self.stats.completed, spawn_failures=self.stats.spawn_failures)
        return self.stats

    def serve(self) -> SupervisorStats:
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self.stop)
        return self.run()
