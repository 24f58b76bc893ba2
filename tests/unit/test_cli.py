import json

import pytest
from click.testing import CliRunner

from app.cli import cli
from app.models.enums import JobType
from app.schemas.schedules import CronSchedule


@pytest.fixture
def run(engine, mocker, fake_launcher):
    mocker.patch("app.cli.engine", engine)
    mocker.patch("app.cli.configure_logging")
    mocker.patch("app.cli.EventPublisher")
    mocker.patch("app.services.dispatcher_service.WorkerLauncher", return_value=fake_launcher)
    runner = CliRunner()

    def _run(*args):
        return runner.invoke(cli, list(args))
    return _run


def test_enqueue_and_list(run):
    result = run("enqueue", "echo hi", "--type", "permanent", "--weight", "2")
    assert result.exit_code == 0, result.output
    assert "`echo hi` (permanent, pid=None)" in result.output

    result = run("list")
    assert result.exit_code == 0
    assert "permanent" in result.output
    assert "weight=2" in result.output


def test_list_empty(run):
    result = run("list")
    assert result.exit_code == 0
    assert "No jobs." in result.output


def test_enqueue_once_is_idempotent(run, repo):
    run("enqueue", "echo hi", "--once")
    result = run("enqueue", "echo hi", "--once")

    assert result.exit_code == 0
    assert len(repo.list()) == 1


def test_enqueue_rejects_empty_command(run):
    result = run("enqueue", "  ")
    assert result.exit_code == 1
    assert "Command cannot be empty" in result.output


def test_dispatch_runs_chain(run, make_job, fake_launcher, repo):
    make_job("echo 1")
    make_job("echo 2")

    result = run("dispatch")

    assert result.exit_code == 0, result.output
    assert "Dispatched 2 job(s)." in result.output
    assert fake_launcher.launch.call_count == 2
    assert repo.list() == []


def test_dispatch_single_cycle_on_empty_queue(run):
    result = run("dispatch", "--no-chain")
    assert result.exit_code == 0
    assert "Dispatched 0 job(s)." in result.output


def test_dispatch_forwards_env(run, make_job, fake_launcher):
    make_job("echo 1")

    result = run("dispatch", "--env", '{"DEPLOY": "1"}')

    assert result.exit_code == 0, result.output
    assert fake_launcher.launch.call_args.kwargs["env"] == {"DEPLOY": "1"}


@pytest.mark.parametrize("value", ["not json", "[1, 2]"])
def test_dispatch_rejects_bad_env(run, value):
    result = run("dispatch", "--env", value)
    assert result.exit_code == 2


def test_dispatch_cron_materializes_schedules(run, mocker, repo):
    schedule = CronSchedule(name="nightly", command="echo report", schedule="0 3 * * *")
    mocker.patch("app.cli.configured_schedules", return_value=[schedule])

    result = run("dispatch", "--cron")

    assert result.exit_code == 0, result.output
    # Next fire time is in the future, nothing to run yet
    assert "Dispatched 0 job(s)." in result.output
    [job] = repo.list()
    assert job.type is JobType.CRON
    assert job.schedule_name == "nightly"


def test_dispatch_cleanup_reaps_orphans(run, make_job, mocker, repo):
    make_job("gone", pid=31337)
    mocker.patch("app.services.reaper_service.list_live_process_ids", return_value={1})

    result = run("dispatch", "--cleanup")

    assert result.exit_code == 0, result.output
    assert "1 job(s) reconciled" in result.output
    assert repo.list() == []


def test_dispatch_spawn_failure_exits_non_zero(run, make_job, fake_launcher):
    from app.exceptions import SpawnFailure

    make_job("echo 1")
    fake_launcher.launch.side_effect = SpawnFailure("echo 1", 3)

    result = run("dispatch")
    assert result.exit_code == 1


def test_kill_missing_job(run):
    result = run("kill", "12345")
    assert result.exit_code == 1
    assert "No job matches 12345." in result.output


def test_kill_by_command(run, make_job, repo):
    make_job("sleep 60")

    result = run("kill", "sleep 60")

    assert result.exit_code == 0
    assert "Killed 1 job(s)." in result.output
    assert repo.list() == []


def test_status(run, make_job):
    make_job("a", capacity=2, pid=100)
    make_job("b")

    result = run("status")

    assert result.exit_code == 0
    out = json.loads(result.output)
    assert out["occupied"] == 2
    assert out["limit"] == 5
    assert out["jobs"]["ephemeral"] == {"queued": 1, "running": 1}


def test_worker_start_uses_count(run, mocker):
    supervisor = mocker.patch("worker.supervisor.Supervisor")
    supervisor.return_value.concurrency = 2
    supervisor.return_value.serve.return_value.completed = 0
    mocker.patch("app.cli.configured_schedules", return_value=[])

    result = run("worker", "start", "--count", "2")

    assert result.exit_code == 0, result.output
    assert supervisor.call_args.kwargs["concurrency"] == 2
    supervisor.return_value.serve.assert_called_once_with()


def test_kill_by_id(run, make_job, repo):
    job = make_job("sleep 60")

    result = run("kill", "--id", str(job.id))

    assert result.exit_code == 0, result.output
    assert repo.list() == []


def test_kill_id_must_be_numeric(run):
    result = run("kill", "--id", "sleep")
    assert result.exit_code == 2
