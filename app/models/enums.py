from enum import Enum

class JobType(str, Enum):
    EPHEMERAL = "ephemeral"
    CRON = "cron"
    PERMANENT = "permanent"

class DispatchOutcome(str, Enum):
    ADMISSION_REJECTED = "ADMISSION_REJECTED"
    NO_ELIGIBLE_JOB = "NO_ELIGIBLE_JOB"
    LOST_CLAIM = "LOST_CLAIM"
    COMPLETED = "COMPLETED"

    @property
    def idle(self) -> bool:
        return self is not DispatchOutcome.COMPLETED

class QueueEvent(str, Enum):
    ENQUEUED = "JOB_ENQUEUED"
    CLAIMED = "JOB_CLAIMED"
    SPAWNED = "JOB_SPAWNED"
    RETIRED = "JOB_RETIRED"
    KILLED = "JOB_KILLED"
    ERROR = "JOB_ERROR"

# Marker stored in `pid` once a cron slot has fired
CRON_FIRED_PID = 0
