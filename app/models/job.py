import time
from typing import Any, Dict, Optional
from sqlmodel import SQLModel, Field, JSON
from app.models.enums import JobType

class Job(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    command: str
    type: JobType = Field(default=JobType.EPHEMERAL, index=True)

    capacity: int = Field(default=1)
    weight: int = Field(default=0)

    # None: unclaimed, >0: owning worker pid, 0: fired cron slot
    pid: Optional[int] = Field(default=None, index=True)
    child_pid: Optional[int] = None

    start_time: float = Field(default_factory=time.time)
    timestamp: float = Field(default_factory=time.time)

    schedule_name: Optional[str] = Field(default=None, index=True)

    payload: Dict = Field(default_factory=dict, sa_type=JSON)

    def descriptor(self) -> Dict[str, Any]:
        """Payload merged with the row's columns; columns win on conflicts."""
        columns = self.model_dump(exclude={"payload"})
        return {**(self.payload or {}), **columns}
