from typing import Iterable, Optional


class QueueError(Exception):
    """Base class for process queue errors."""


class AdmissionRejected(QueueError):
    def __init__(self, occupied: int, limit: int):
        super().__init__(f"Occupied capacity {occupied} has reached the limit of {limit}")
        self.occupied = occupied
        self.limit = limit


class NoEligibleJob(QueueError):
    pass


class LostClaim(QueueError):
    def __init__(self, job_id: int):
        super().__init__(f"Job {job_id} was claimed by another worker")
        self.job_id = job_id


class SpawnFailure(QueueError):
    def __init__(self, command: str, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(f"Unable to spawn `{command}` after {attempts} attempt(s): {cause}")
        self.command = command
        self.attempts = attempts
        self.cause = cause


class ChildProcessFailure(QueueError):
    def __init__(self, command: str, returncode: Optional[int], stderr: str = ""):
        super().__init__(f"`{command}` exited with {returncode}" + (f": {stderr.strip()}" if stderr else ""))
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class OrphanMismatch(QueueError):
    """Divergence between stored pids and the live process table. Corrective, never raised."""

    def __init__(self, branch: str, affected: int, live_pids: Iterable[int] = ()):
        super().__init__(f"{branch}: {affected} row(s) reconciled")
        self.branch = branch
        self.affected = affected
        self.live_pids = sorted(live_pids)


class InvalidCommand(QueueError, ValueError):
    pass
