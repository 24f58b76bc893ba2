import json
from pathlib import Path
from typing import List
from pydantic import BaseModel, Field, TypeAdapter
from app.models.enums import JobType

class CronSchedule(BaseModel):
    name: str
    command: str
    schedule: str  # cron expression, e.g. "*/5 * * * *"
    type: JobType = JobType.CRON
    spawn: bool = False
    capacity: int = Field(default=1, ge=1)
    weight: int = 0

_schedules = TypeAdapter(List[CronSchedule])

def load_schedules(raw: str = None, path: str = None) -> List[CronSchedule]:
    """Crontab schedules from a JSON file, or from an inline JSON string."""
    if path:
        raw = Path(path).read_text()
    if not raw:
        return []
    return _schedules.validate_python(json.loads(raw))
