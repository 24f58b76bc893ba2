from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from app.dependencies import get_session
from app.exceptions import InvalidCommand
from app.models.enums import JobType
from app.repositories.job_repository import JobRepository
from app.schemas.jobs import EnqueueRequest, EnqueueResponse, JobView
from app.services.events_service import EventPublisher
from app.services.queue_service import QueueService
from worker.tasks import spawn_successor

router = APIRouter()

@router.post("/jobs", status_code=201, response_model=EnqueueResponse)
def enqueue_job(req: EnqueueRequest, session: Session = Depends(get_session)):
    service = QueueService(JobRepository(session), events=EventPublisher())
    options = dict(
        job_type=req.type,
        capacity=req.capacity,
        weight=req.weight,
        start_time=req.start_time,
        payload=req.payload,
    )

    try:
        if req.once:
            jobs, created = service.enqueue_once(req.command, requeue=req.requeue,
                                                 include_active=req.include_active, **options)
        else:
            jobs = [service.enqueue(req.command, **options)]
            created = True
    except InvalidCommand as e:
        raise HTTPException(400, str(e))

    if created and req.spawn:
        spawn_successor()

    views = [JobView.model_validate(j, from_attributes=True) for j in jobs]
    return {
        "success": True,
        "created": created,
        "jobs": views,
        "monitor_url": f"ws://localhost:8000/ws/jobs/{views[0].id}",
    }

@router.get("/jobs", response_model=List[JobView])
def list_jobs(type: Optional[JobType] = None, session: Session = Depends(get_session)):
    return [JobView.model_validate(j, from_attributes=True) for j in JobRepository(session).list(type)]

@router.delete("/jobs/{job_id}")
def kill_job(job_id: int, signal: int = 9, session: Session = Depends(get_session)):
    killed = QueueService(JobRepository(session), events=EventPublisher()).kill(job_id, signal)
    if not killed:
        raise HTTPException(404, "Job not found")
    return {"success": True, "job_id": job_id, "killed": killed}
