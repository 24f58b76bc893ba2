import os
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

from app.config import SPAWN_RETRY_COUNT, SPAWN_RETRY_INTERVAL_S
from app.exceptions import ChildProcessFailure, SpawnFailure

logger = structlog.get_logger(__name__)


@dataclass
class LaunchResult:
    command: str
    pid: int
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    attempts: int = 1

    def check(self):
        """Raise ChildProcessFailure on stderr output or an unsuccessful exit."""
        if self.stderr or self.returncode != 0:
            raise ChildProcessFailure(self.command, self.returncode, self.stderr)


class WorkerLauncher:
    def __init__(self, max_attempts: int = SPAWN_RETRY_COUNT, backoff_s: float = SPAWN_RETRY_INTERVAL_S):
        self.max_attempts = max(1, max_attempts)
        self.backoff_s = backoff_s

    def _environment(self, env: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if not env:
            return None
        return {**os.environ, **{k: str(v) for k, v in env.items()}}

    def spawn(self, command: str, env: Optional[Dict[str, str]] = None):
        """Start `command` under the shell, retrying OSError with a fixed backoff."""
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                proc = subprocess.Popen(
                    command,
                    shell=True,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    env=self._environment(env),
                    start_new_session=True,
                )
                return proc, attempt
            except OSError as e:
                last_error = e
                logger.warning("spawn_retry", command=command, attempt=attempt, error=str(e))
                if attempt < self.max_attempts:
                    time.sleep(self.backoff_s)

        logger.error("spawn_failed", command=command, attempts=self.max_attempts, error=str(last_error))
        raise SpawnFailure(command, self.max_attempts, last_error)

    def launch(
        self,
        command: str,
        env: Optional[Dict[str, str]] = None,
        on_spawn: Optional[Callable[[int], None]] = None,
    ) -> LaunchResult:
        proc, attempts = self.spawn(command, env)
        if on_spawn is not None:
            on_spawn(proc.pid)

        # Blocks until the child closes its pipes
        stdout, stderr = proc.communicate()

        result = LaunchResult(
            command=command,
            pid=proc.pid,
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            attempts=attempts,
        )

        if result.stderr:
            logger.error("command_output", command=command, stdout=result.stdout, stderr=result.stderr)
        elif result.stdout:
            logger.info("command_output", command=command, stdout=result.stdout)

        return result
