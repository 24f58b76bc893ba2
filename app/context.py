import os
import socket
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class WorkerContext:
    """Identity of the worker claiming jobs, passed explicitly through every call."""

    worker_id: str
    pid: int
    env: Optional[Dict[str, str]] = field(default=None)

    @classmethod
    def current(cls, slot: Optional[int] = None, env: Optional[Dict[str, str]] = None) -> "WorkerContext":
        pid = os.getpid()
        worker_id = f"{socket.gethostname()}:{pid}"
        if slot is not None:
            worker_id = f"{worker_id}:{slot}"
        return cls(worker_id=worker_id, pid=pid, env=env)
