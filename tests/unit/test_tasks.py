import pytest

from app.models.enums import DispatchOutcome
from worker import tasks


@pytest.fixture
def dispatcher(mocker):
    mocker.patch("worker.tasks.Session")
    mocker.patch("worker.tasks.EventPublisher")
    return mocker.patch("worker.tasks.Dispatcher").return_value


@pytest.fixture
def successor(mocker):
    return mocker.patch("worker.tasks.spawn_successor")


def test_completed_dispatch_spawns_successor(dispatcher, successor):
    dispatcher.run_cycle.return_value = DispatchOutcome.COMPLETED

    assert tasks.dispatch_queue(env={"A": "1"}) == DispatchOutcome.COMPLETED.value

    context = dispatcher.run_cycle.call_args.args[0]
    assert context.env == {"A": "1"}
    successor.assert_called_once_with({"A": "1"})


@pytest.mark.parametrize("outcome", [
    DispatchOutcome.ADMISSION_REJECTED,
    DispatchOutcome.NO_ELIGIBLE_JOB,
    DispatchOutcome.LOST_CLAIM,
])
def test_idle_dispatch_ends_chain(dispatcher, successor, outcome):
    dispatcher.run_cycle.return_value = outcome

    assert tasks.dispatch_queue() == outcome.value
    successor.assert_not_called()


def test_spawn_successor_routes_to_dispatch_queue(mocker):
    apply_async = mocker.patch.object(tasks.dispatch_queue, "apply_async")

    tasks.spawn_successor({"A": "1"})

    apply_async.assert_called_once_with(kwargs={"env": {"A": "1"}}, queue="dispatch")


def test_materialize_schedules_kicks_dispatcher_for_spawn_schedules(mocker, successor):
    mocker.patch("worker.tasks.Session")
    mocker.patch("worker.tasks.configured_schedules", return_value=[])
    materializer = mocker.patch("worker.tasks.CronMaterializer").return_value
    materializer.materialize.return_value = [mocker.MagicMock(spawn=False), mocker.MagicMock(spawn=True)]

    assert tasks.materialize_schedules() == 2
    successor.assert_called_once_with()


def test_materialize_schedules_without_spawn(mocker, successor):
    mocker.patch("worker.tasks.Session")
    mocker.patch("worker.tasks.configured_schedules", return_value=[])
    mocker.patch("worker.tasks.CronMaterializer").return_value.materialize.return_value = []

    assert tasks.materialize_schedules() == 0
    successor.assert_not_called()


def test_reap_orphans(mocker):
    mocker.patch("worker.tasks.Session")
    reaper = mocker.patch("worker.tasks.OrphanReaper").return_value
    reaper.reap.return_value = 4

    assert tasks.reap_orphans() == 4
