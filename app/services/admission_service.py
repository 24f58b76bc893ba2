import structlog
from app.config import PROCESS_LIMIT
from app.exceptions import AdmissionRejected
from app.repositories.job_repository import JobRepository

logger = structlog.get_logger(__name__)

class AdmissionController:
    def __init__(self, repo: JobRepository, limit: int = PROCESS_LIMIT):
        self.repo = repo
        self.limit = limit

    def occupied_capacity(self) -> int:
        return self.repo.occupied_capacity()

    def is_admissible(self, limit: int = None) -> bool:
        limit = self.limit if limit is None else limit
        return self.occupied_capacity() < limit

    def admit(self):
        """Raise AdmissionRejected when running jobs already occupy the ceiling."""
        occupied = self.occupied_capacity()
        if occupied >= self.limit:
            logger.debug("admission_rejected", occupied=occupied, limit=self.limit)
            raise AdmissionRejected(occupied, self.limit)
        return occupied
