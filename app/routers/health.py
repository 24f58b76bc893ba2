from fastapi import APIRouter, Depends
from sqlmodel import Session
from app.config import PROCESS_LIMIT
from app.dependencies import get_session
from app.repositories.job_repository import JobRepository
from app.services.admission_service import AdmissionController

router = APIRouter()

@router.get("/health")
def health():
    return {"ok": True}

@router.get("/health/queue")
def health_queue(session: Session = Depends(get_session)):
    repo = JobRepository(session)
    admission = AdmissionController(repo, PROCESS_LIMIT)
    occupied = admission.occupied_capacity()
    return {
        "ok": True,
        "occupied": occupied,
        "limit": admission.limit,
        "admissible": occupied < admission.limit,
        "jobs": repo.counts(),
    }
