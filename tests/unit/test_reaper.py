import os
from sqlalchemy.exc import OperationalError
from app.models.enums import JobType, CRON_FIRED_PID
from app.services.reaper_service import OrphanReaper, list_live_process_ids

def test_cleanup_reconciles_against_live_pids(repo, make_job):
    ephemeral = make_job("gone", pid=300)
    permanent = make_job("daemon", job_type=JobType.PERMANENT, pid=400)
    cron = make_job("report", job_type=JobType.CRON, pid=CRON_FIRED_PID)
    alive = make_job("alive", pid=100)
    queued = make_job("queued")
    ids = (ephemeral.id, permanent.id, cron.id, alive.id, queued.id)

    affected = OrphanReaper(repo).reap(live_pids={100, 200})

    assert affected == 3
    repo.session.expire_all()
    assert repo.get(ids[0]) is None
    assert repo.get(ids[1]).pid is None
    assert repo.get(ids[2]) is None
    assert repo.get(ids[3]).pid == 100
    assert repo.get(ids[4]).pid is None

def test_live_permanent_job_untouched(repo, make_job):
    permanent = make_job("daemon", job_type=JobType.PERMANENT, pid=100)

    assert OrphanReaper(repo).reap(live_pids={100}) == 0
    repo.session.refresh(permanent)
    assert permanent.pid == 100

def test_failing_branch_does_not_block_others(repo, make_job, mocker):
    permanent = make_job("daemon", job_type=JobType.PERMANENT, pid=400)
    mocker.patch.object(repo, "delete_orphans", side_effect=OperationalError("DELETE", {}, Exception("locked")))
    logger = mocker.patch("app.services.reaper_service.logger")

    affected = OrphanReaper(repo).reap(live_pids={100})

    assert affected == 1
    logger.error.assert_called_once()
    repo.session.refresh(permanent)
    assert permanent.pid is None

def test_mismatch_logged_per_branch(repo, make_job, mocker):
    make_job("gone", pid=300)
    logger = mocker.patch("app.services.reaper_service.logger")

    OrphanReaper(repo).reap(live_pids=set())

    warning = logger.warning.call_args
    assert warning.args == ("orphan_mismatch",)
    assert warning.kwargs["branch"] == "orphaned_jobs_deleted"
    assert warning.kwargs["affected"] == 1
    logger.info.assert_called_once_with("process_cleanup", affected=1, live_pids=0)

def test_reap_scans_process_table_by_default(repo, make_job, mocker):
    make_job("gone", pid=300)
    scan = mocker.patch("app.services.reaper_service.list_live_process_ids", return_value={300})

    assert OrphanReaper(repo, pattern="python").reap() == 0
    scan.assert_called_once_with("python")

def test_list_live_process_ids_filters_by_pattern(mocker):
    procs = []
    for pid, name, cmdline in [
        (10, "python3", ["python3", "-m", "app.cli"]),
        (11, "bash", ["bash"]),
        (12, "sh", ["sh", "-c", "celery worker"]),
        (13, None, None),
    ]:
        proc = mocker.MagicMock()
        proc.info = {"pid": pid, "name": name, "cmdline": cmdline}
        procs.append(proc)
    mocker.patch("app.services.reaper_service.psutil.process_iter", return_value=procs)

    live = list_live_process_ids(r"python|celery")

    assert live == {10, 12, os.getpid()}
