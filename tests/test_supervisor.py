"""Tests for supervisor.py - worker spawning, shutdown and exit outcomes."""

import asyncio

import pytest

from conftest import FakeQueryClient, SessionRecorder, make_token, wait_until
from config import GlobalConfig, ServerConfig
from server_worker import ServerWorker
from supervisor import ExitOutcome, Supervisor
from worker_state import WorkerState


def _config(*servers: ServerConfig, poll_interval: float = 0.01) -> GlobalConfig:
    return GlobalConfig(poll_interval=poll_interval, servers={s.name: s for s in servers})


def _server(name: str, enabled: bool = True, credential: str = None) -> ServerConfig:
    return ServerConfig(
        name=name,
        address="127.0.0.1:27015",
        enabled=enabled,
        credential=make_token() if credential is None else credential,
    )


class WorkerFactory:
    """Builds real workers wired to fakes, one session recorder per server."""

    def __init__(self, reconnect_delay: float = 0.01) -> None:
        self.reconnect_delay = reconnect_delay
        self.recorders = {}
        self.poll_intervals = {}

    def __call__(self, config: ServerConfig, poll_interval: float) -> ServerWorker:
        recorder = SessionRecorder()
        self.recorders[config.name] = recorder
        self.poll_intervals[config.name] = poll_interval
        return ServerWorker(
            config,
            poll_interval,
            query_client=FakeQueryClient(),
            session_factory=recorder,
            reconnect_delay=self.reconnect_delay,
            max_reconnect_delay=max(0.05, self.reconnect_delay),
        )


class TestSpawn:

    @pytest.mark.asyncio
    async def test_one_worker_per_enabled_server(self) -> None:
        factory = WorkerFactory()
        supervisor = Supervisor(
            _config(_server("alpha"), _server("beta"), _server("gamma", enabled=False)),
            worker_factory=factory,
        )

        started = supervisor.spawn_workers()
        try:
            assert started == ["alpha", "beta"]
            assert set(factory.recorders) == {"alpha", "beta"}
            assert supervisor.tasks["alpha"].get_name() == "worker-alpha"
        finally:
            await supervisor.stop_all()

    @pytest.mark.asyncio
    async def test_workers_get_global_poll_interval(self) -> None:
        factory = WorkerFactory()
        supervisor = Supervisor(_config(_server("alpha"), poll_interval=7.5), worker_factory=factory)

        supervisor.spawn_workers()
        try:
            assert factory.poll_intervals == {"alpha": 7.5}
        finally:
            await supervisor.stop_all()


class TestRun:

    @pytest.mark.asyncio
    async def test_no_enabled_servers(self) -> None:
        factory = WorkerFactory()
        supervisor = Supervisor(_config(_server("alpha", enabled=False)), worker_factory=factory)

        outcome = await supervisor.run(asyncio.Event())

        assert outcome == ExitOutcome.NO_ENABLED_SERVERS
        assert outcome.exit_code == 0
        assert factory.recorders == {}

    @pytest.mark.asyncio
    async def test_empty_config(self) -> None:
        outcome = await Supervisor(_config()).run(asyncio.Event())
        assert outcome == ExitOutcome.NO_ENABLED_SERVERS

    @pytest.mark.asyncio
    async def test_shutdown_stops_every_worker(self) -> None:
        factory = WorkerFactory()
        supervisor = Supervisor(_config(_server("alpha"), _server("beta")), worker_factory=factory)
        shutdown = asyncio.Event()

        run_task = asyncio.create_task(supervisor.run(shutdown))
        await wait_until(lambda: len(supervisor.workers) == 2 and all(
            worker.state == WorkerState.ACTIVE for worker in supervisor.workers.values()
        ))

        shutdown.set()
        outcome = await asyncio.wait_for(run_task, timeout=2.0)

        assert outcome == ExitOutcome.SHUTDOWN
        assert outcome.exit_code == 0
        for name, worker in supervisor.workers.items():
            assert worker.state == WorkerState.TERMINATED
            assert all(session.closed for session in factory.recorders[name].sessions)
        assert all(task.done() for task in supervisor.tasks.values())

    @pytest.mark.asyncio
    async def test_invalid_credential_does_not_affect_siblings(self) -> None:
        factory = WorkerFactory()
        supervisor = Supervisor(
            _config(_server("good"), _server("bad", credential="garbage")),
            worker_factory=factory,
        )
        shutdown = asyncio.Event()

        run_task = asyncio.create_task(supervisor.run(shutdown))
        await wait_until(lambda: "bad" in supervisor.tasks and supervisor.tasks["bad"].done())
        await wait_until(lambda: supervisor.workers["good"].state == WorkerState.ACTIVE)

        assert supervisor.workers["bad"].state == WorkerState.TERMINATED
        assert not run_task.done()

        shutdown.set()
        assert await asyncio.wait_for(run_task, timeout=2.0) == ExitOutcome.SHUTDOWN

    @pytest.mark.asyncio
    async def test_reconnecting_worker_does_not_pause_siblings(self) -> None:
        factory = WorkerFactory(reconnect_delay=0.3)
        supervisor = Supervisor(_config(_server("alpha"), _server("beta")), worker_factory=factory)
        shutdown = asyncio.Event()

        run_task = asyncio.create_task(supervisor.run(shutdown))
        await wait_until(lambda: len(supervisor.workers) == 2 and all(
            worker.state == WorkerState.ACTIVE for worker in supervisor.workers.values()
        ))
        alpha = supervisor.workers["alpha"]
        beta = supervisor.workers["beta"]
        beta_session = factory.recorders["beta"].sessions[0]

        factory.recorders["alpha"].sessions[0].drop()
        await wait_until(lambda: alpha.state == WorkerState.DISCONNECTED)

        # alpha sits in its 0.3s backoff while beta keeps polling
        pushed = len(beta_session.presences)
        await wait_until(lambda: len(beta_session.presences) >= pushed + 3)
        assert alpha.state in (WorkerState.DISCONNECTED, WorkerState.CONNECTING)
        assert beta.state == WorkerState.ACTIVE
        assert beta.status.restarts == 0

        await wait_until(lambda: len(factory.recorders["alpha"].sessions) == 2
                         and alpha.state == WorkerState.ACTIVE)
        assert alpha.status.restarts == 1
        assert factory.recorders["beta"].sessions == [beta_session]

        shutdown.set()
        assert await asyncio.wait_for(run_task, timeout=2.0) == ExitOutcome.SHUTDOWN

    @pytest.mark.asyncio
    async def test_all_workers_exited(self) -> None:
        supervisor = Supervisor(
            _config(_server("one", credential=""), _server("two", credential="x.y")),
            worker_factory=WorkerFactory(),
        )

        outcome = await asyncio.wait_for(supervisor.run(asyncio.Event()), timeout=2.0)

        assert outcome == ExitOutcome.ALL_WORKERS_EXITED
        assert outcome.exit_code == 3

    @pytest.mark.asyncio
    async def test_cancelling_run_stops_workers(self) -> None:
        supervisor = Supervisor(_config(_server("alpha")), worker_factory=WorkerFactory())

        run_task = asyncio.create_task(supervisor.run(asyncio.Event()))
        await wait_until(lambda: "alpha" in supervisor.workers
                         and supervisor.workers["alpha"].state == WorkerState.ACTIVE)
        run_task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await run_task

        assert supervisor.workers["alpha"].state == WorkerState.TERMINATED


class TestStatusSnapshot:

    @pytest.mark.asyncio
    async def test_snapshot(self) -> None:
        supervisor = Supervisor(_config(_server("alpha")), worker_factory=WorkerFactory())
        shutdown = asyncio.Event()
        run_task = asyncio.create_task(supervisor.run(shutdown))
        await wait_until(lambda: "alpha" in supervisor.workers
                         and supervisor.workers["alpha"].status.last_presence is not None)

        snapshot = supervisor.status_snapshot()

        assert snapshot["alpha"]["state"] == "active"
        assert snapshot["alpha"]["last_presence"] == "Playing 0/0 on map: none"
        assert snapshot["alpha"]["restarts"] == 0

        shutdown.set()
        await asyncio.wait_for(run_task, timeout=2.0)
        assert supervisor.status_snapshot()["alpha"]["state"] == "terminated"
