from celery import Task
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from app.celery_app import celery_app
from app.config import DATABASE_URL, QUEUE_DISPATCH
from app.context import WorkerContext
from app.dependencies import make_engine
from app.models.enums import DispatchOutcome
from app.repositories.job_repository import JobRepository
from app.services.cron_service import CronMaterializer, configured_schedules
from app.services.dispatcher_service import Dispatcher
from app.services.events_service import EventPublisher
from app.services.reaper_service import OrphanReaper

engine = make_engine(DATABASE_URL)

class BaseTaskWithRetry(Task):
    autoretry_for = (OperationalError,)
    retry_kwargs = {"max_retries": 10, "countdown": 3}
    retry_backoff = True

def spawn_successor(env=None):
    dispatch_queue.apply_async(kwargs={"env": env}, queue=QUEUE_DISPATCH)

@celery_app.task(bind=True, base=BaseTaskWithRetry, acks_late=True)
def dispatch_queue(self, env=None):
    context = WorkerContext.current(env=env)
    with Session(engine) as session:
        dispatcher = Dispatcher(JobRepository(session), events=EventPublisher())
        outcome = dispatcher.run_cycle(context)

    # Each finished job hands over to a fresh dispatch, the chain ends on an idle queue
    if outcome is DispatchOutcome.COMPLETED:
        spawn_successor(env)
    return outcome.value

@celery_app.task(base=BaseTaskWithRetry)
def materialize_schedules():
    with Session(engine) as session:
        created = CronMaterializer(JobRepository(session)).materialize(configured_schedules())

    if any(m.spawn for m in created):
        spawn_successor()
    return len(created)

@celery_app.task(base=BaseTaskWithRetry)
def reap_orphans():
    with Session(engine) as session:
        return OrphanReaper(JobRepository(session)).reap()
