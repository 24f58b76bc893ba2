from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from app.models.enums import JobType

class EnqueueRequest(BaseModel):
    command: str
    type: JobType = JobType.EPHEMERAL
    capacity: int = Field(default=1, ge=1)
    weight: int = 0
    start_time: Optional[float] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    once: bool = False
    requeue: bool = False
    include_active: bool = False
    spawn: bool = True  # kick a dispatcher right away

class JobView(BaseModel):
    id: int
    command: str
    type: JobType
    capacity: int
    weight: int
    pid: Optional[int] = None
    start_time: float
    timestamp: float
    schedule_name: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

class EnqueueResponse(BaseModel):
    success: bool
    created: bool
    jobs: List[JobView]
    monitor_url: str
