import os
import re
from typing import Iterable, Optional, Set

import psutil
import structlog
from sqlalchemy.exc import SQLAlchemyError

from app.config import LIVE_PROCESS_PATTERN
from app.exceptions import OrphanMismatch
from app.repositories.job_repository import JobRepository

logger = structlog.get_logger(__name__)


def list_live_process_ids(pattern: str = LIVE_PROCESS_PATTERN) -> Set[int]:
    """Pids of processes whose name or command line matches `pattern`.

    The current process is always included.
    """
    matcher = re.compile(pattern)
    pids = {os.getpid()}
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        info = proc.info
        haystack = " ".join([info.get("name") or ""] + list(info.get("cmdline") or []))
        if matcher.search(haystack):
            pids.add(info["pid"])
    return pids


class OrphanReaper:
    """Reconciles claimed rows against the live process table after crashes."""

    def __init__(self, repo: JobRepository, pattern: str = LIVE_PROCESS_PATTERN):
        self.repo = repo
        self.pattern = pattern

    def reap(self, live_pids: Optional[Iterable[int]] = None) -> int:
        live = set(live_pids) if live_pids is not None else list_live_process_ids(self.pattern)

        branches = (
            ("orphaned_jobs_deleted", lambda: self.repo.delete_orphans(live)),
            ("fired_cron_deleted", self.repo.delete_fired_cron),
            ("orphaned_permanent_released", lambda: self.repo.release_orphaned_permanent(live)),
        )

        affected = 0
        for branch, run in branches:
            try:
                count = run()
            except SQLAlchemyError as e:
                self.repo.rollback()
                logger.error("cleanup_branch_failed", branch=branch, error=str(e))
                continue
            if count:
                mismatch = OrphanMismatch(branch, count, live)
                logger.warning("orphan_mismatch", branch=branch, affected=count, detail=str(mismatch))
            affected += count

        logger.info("process_cleanup", affected=affected, live_pids=len(live))
        return affected
