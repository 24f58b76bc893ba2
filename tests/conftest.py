import os

# Point the app at throwaway stores before any app module is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("PROCESS_LIMIT", "5")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.context import WorkerContext
from app.models.enums import JobType
from app.repositories.job_repository import JobRepository
from app.services.launcher_service import LaunchResult


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def repo(session):
    return JobRepository(session)


@pytest.fixture
def context():
    return WorkerContext(worker_id="test-worker", pid=4242)


@pytest.fixture
def make_job(repo):
    def _make(command="echo hi", job_type=JobType.EPHEMERAL, capacity=1, weight=0,
              start_time=0.0, pid=None, schedule_name=None, payload=None):
        job = repo.create(command, job_type=job_type, capacity=capacity, weight=weight,
                          start_time=start_time, schedule_name=schedule_name, payload=payload)
        if pid is not None:
            job.pid = pid
            repo.session.add(job)
            repo.session.commit()
            repo.session.refresh(job)
        return job
    return _make


@pytest.fixture
def fake_launcher(mocker):
    launcher = mocker.MagicMock()

    def launch(command, env=None, on_spawn=None):
        if on_spawn is not None:
            on_spawn(9999)
        return LaunchResult(command=command, pid=9999, returncode=0, stdout="ok\n")

    launcher.launch.side_effect = launch
    return launcher


@pytest.fixture
def redis_conn(mocker):
    return mocker.patch("app.services.events_service.r")


@pytest.fixture
def client(engine, redis_conn, mocker):
    from app.dependencies import get_session
    from app.main import app

    mocker.patch("app.routers.jobs.spawn_successor")

    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()
