import json
import time

import click
from sqlmodel import Session

from app.context import WorkerContext
from app.dependencies import engine, init_db
from app.exceptions import InvalidCommand, SpawnFailure
from app.log import configure_logging
from app.models.enums import JobType
from app.repositories.job_repository import JobRepository
from app.services.cron_service import configured_schedules
from app.services.dispatcher_service import Dispatcher
from app.services.events_service import EventPublisher
from app.services.queue_service import QueueService


def _parse_env(value):
    if not value:
        return None
    try:
        env = json.loads(value)
    except ValueError as e:
        raise click.BadParameter(f"--env must be a JSON object ({e})")
    if not isinstance(env, dict):
        raise click.BadParameter("--env must be a JSON object")
    return env


@click.group(help="procqueue: store-coordinated process queue")
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level):
    if log_level:
        configure_logging(level=log_level)
    else:
        configure_logging()


@cli.command("init-db", help="Create the job table")
def init_db_cmd():
    init_db(engine)
    click.secho("Database initialized.", fg="green")


# ---------- Dispatch ----------
@cli.command("dispatch", help="Run one dispatcher invocation")
@click.option("--cron", "-c", is_flag=True, help="Materialize crontab schedules before dispatching")
@click.option("--cleanup", is_flag=True, help="Reconcile jobs against live processes instead of dispatching")
@click.option("--chain/--no-chain", default=True, show_default=True,
              help="Keep claiming successor jobs until the queue is idle")
@click.option("--env", "env_json", default=None, help="JSON object forwarded to the spawned commands' environment")
def dispatch_cmd(cron, cleanup, chain, env_json):
    env = _parse_env(env_json)

    with Session(engine) as session:
        dispatcher = Dispatcher(JobRepository(session), events=EventPublisher())
        try:
            count = dispatcher.run(
                WorkerContext.current(env=env),
                cron=cron,
                cleanup=cleanup,
                schedules=configured_schedules() if cron else None,
                chain=chain,
            )
        except SpawnFailure as e:
            click.secho(f"Error: {e}", fg="red")
            raise SystemExit(1)

    if cleanup:
        click.echo(f"Process cleanup, {count} job(s) reconciled.")
    else:
        click.echo(f"Dispatched {count} job(s).")


# ---------- Workers ----------
@cli.group("worker", help="Manage the local worker pool")
def worker_group():
    pass


@worker_group.command("start")
@click.option("--count", type=int, default=None, help="Number of dispatch slots (WORKER_CONCURRENCY)")
@click.option("--env", "env_json", default=None, help="JSON object forwarded to the spawned commands' environment")
def worker_start(count, env_json):
    from app.config import WORKER_CONCURRENCY
    from worker.supervisor import Supervisor

    supervisor = Supervisor(
        lambda: Session(engine),
        concurrency=count or WORKER_CONCURRENCY,
        schedules=configured_schedules(),
        env=_parse_env(env_json),
        dispatcher_factory=lambda session: Dispatcher(JobRepository(session), events=EventPublisher()),
    )
    click.secho(f"Starting {supervisor.concurrency} slot(s). Press Ctrl+C to stop…", fg="cyan")
    stats = supervisor.serve()
    click.secho(f"Workers stopped after {stats.completed} job(s).", fg="yellow")


# ---------- Jobs ----------
@cli.command("enqueue", help="Add a command to the queue")
@click.argument("command")
@click.option("--type", "job_type", type=click.Choice([t.value for t in JobType]), default=JobType.EPHEMERAL.value,
              show_default=True)
@click.option("--capacity", type=int, default=1, show_default=True)
@click.option("--weight", type=int, default=0, show_default=True, help="Higher runs sooner")
@click.option("--start-in", type=float, default=None, help="Seconds from now before the job becomes eligible")
@click.option("--once", is_flag=True, help="Skip when an identical command is already queued")
@click.option("--requeue", is_flag=True, help="With --once, replace the queued command instead")
@click.option("--include-active", is_flag=True, help="With --once, running commands count as duplicates")
def enqueue_cmd(command, job_type, capacity, weight, start_in, once, requeue, include_active):
    start_time = time.time() + start_in if start_in else None
    options = dict(job_type=JobType(job_type), capacity=capacity, weight=weight, start_time=start_time)

    with Session(engine) as session:
        service = QueueService(JobRepository(session), events=EventPublisher())
        try:
            if once:
                jobs, _ = service.enqueue_once(command, requeue=requeue, include_active=include_active, **options)
            else:
                jobs = [service.enqueue(command, **options)]
        except InvalidCommand as e:
            click.secho(f"Error: {e}", fg="red")
            raise SystemExit(1)

        for job in jobs:
            click.secho(f"Job {job.id} -> `{job.command}` ({job.type.value}, pid={job.pid})", fg="green")


@cli.command("kill", help="Remove jobs by command, or by id with --id, and signal their processes")
@click.argument("target")
@click.option("--id", "by_id", is_flag=True, help="Treat TARGET as a job id")
@click.option("--signal", "sig", type=int, default=9, show_default=True)
def kill_cmd(target, by_id, sig):
    if by_id:
        try:
            target = int(target)
        except ValueError:
            raise click.BadParameter(f"{target} is not a job id")
    with Session(engine) as session:
        killed = QueueService(JobRepository(session), events=EventPublisher()).kill(target, sig)
    if not killed:
        raise click.ClickException(f"No job matches {target}.")
    click.secho(f"Killed {killed} job(s).", fg="green")


@cli.command("list")
@click.option("--type", "job_type", type=click.Choice([t.value for t in JobType]), default=None)
def list_cmd(job_type):
    with Session(engine) as session:
        rows = JobRepository(session).list(JobType(job_type) if job_type else None)

    if not rows:
        click.echo("No jobs.")
        return

    for r in rows:
        click.echo(
            f"{r.id:>8} | {r.type.value:<9} | pid={r.pid} | capacity={r.capacity} | weight={r.weight} "
            f"| start={r.start_time:.0f} | cmd={r.command}"
        )


@cli.command("status")
def status_cmd():
    from app.config import PROCESS_LIMIT

    with Session(engine) as session:
        repo = JobRepository(session)
        out = {"occupied": repo.occupied_capacity(), "limit": PROCESS_LIMIT, "jobs": repo.counts()}
    click.echo(json.dumps(out, indent=2))


def main():
    cli()
