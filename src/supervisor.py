# Copyright (c) 2025 Stephen Clau
#
# This file is part of Player Count Bots.
#
# Player Count Bots is dual-licensed:
#
# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms
#
# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com
#
# SPDX-License-Identifier: AGPL-3.0-only OR Commercial



"""
Multi-server supervision for Player Count Bots.

Runs one ServerWorker task per enabled server and stops them all together
when the shutdown event is set.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

try:
    from .config import GlobalConfig, ServerConfig
    from .server_worker import ServerWorker
except ImportError:
    from config import GlobalConfig, ServerConfig
    from server_worker import ServerWorker

logger = structlog.get_logger()

WorkerFactory = Callable[[ServerConfig, float], ServerWorker]


class ExitOutcome(Enum):
    """Why Supervisor.run() returned."""

    SHUTDOWN = "shutdown"
    NO_ENABLED_SERVERS = "no_enabled_servers"
    ALL_WORKERS_EXITED = "all_workers_exited"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    ExitOutcome.SHUTDOWN: 0,
    ExitOutcome.NO_ENABLED_SERVERS: 0,
    ExitOutcome.ALL_WORKERS_EXITED: 3,
}


class Supervisor:
    """Owns the set of server workers."""

    def __init__(
        self,
        config: GlobalConfig,
        worker_factory: Optional[WorkerFactory] = None,
    ) -> None:
        """
        Initialize supervisor.

        Args:
            config: Loaded configuration (read-only)
            worker_factory: Builds a worker from (server config, poll interval)
        """
        self.config = config
        self.worker_factory: WorkerFactory = worker_factory or ServerWorker
        self.workers: Dict[str, ServerWorker] = {}
        self.tasks: Dict[str, asyncio.Task] = {}

    def spawn_workers(self) -> List[str]:
        """Start one task per enabled server. Returns the started names."""
        for name, server in self.config.servers.items():
            if not server.enabled:
                logger.info("server_disabled_skipped", server=name)
                continue
            if name in self.tasks:
                raise ValueError(f"Worker for '{name}' already running")

            worker = self.worker_factory(server, self.config.poll_interval)
            self.workers[name] = worker
            self.tasks[name] = asyncio.create_task(worker.run(), name=f"worker-{name}")
            logger.info("worker_spawned", server=name, address=server.address)

        return list(self.tasks.keys())

    async def run(self, shutdown_event: asyncio.Event) -> ExitOutcome:
        """
        Run all workers until shutdown is requested or every worker has exited.

        Args:
            shutdown_event: Process-wide cancellation signal

        Returns:
            ExitOutcome describing why supervision ended
        """
        started = self.spawn_workers()
        if not started:
            logger.warning(
                "no_enabled_servers",
                configured=len(self.config.servers),
                message="Enable at least one server in the config file",
            )
            return ExitOutcome.NO_ENABLED_SERVERS

        logger.info("supervisor_running", workers=started)

        shutdown_waiter = asyncio.create_task(shutdown_event.wait())
        running = {task: name for name, task in self.tasks.items()}
        try:
            while running:
                done, _ = await asyncio.wait(
                    set(running) | {shutdown_waiter},
                    return_when=asyncio.FIRST_COMPLETED,
                )

                for task in done:
                    if task is shutdown_waiter:
                        continue
                    self._report_exit(running.pop(task), task)

                if shutdown_waiter in done:
                    logger.info("supervisor_shutdown_requested", running=len(running))
                    await self.stop_all()
                    return ExitOutcome.SHUTDOWN
        finally:
            if not shutdown_waiter.done():
                shutdown_waiter.cancel()
            if any(not task.done() for task in self.tasks.values()):
                await self.stop_all()

        logger.error("all_workers_exited", workers=started)
        return ExitOutcome.ALL_WORKERS_EXITED

    def _report_exit(self, name: str, task: asyncio.Task) -> None:
        worker = self.workers[name]
        if task.cancelled():
            logger.info("worker_exited", server=name, state=worker.state.value, cancelled=True)
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "worker_crashed",
                server=name,
                error=f"{type(error).__name__}: {error}",
                exc_info=error,
            )
        else:
            logger.warning(
                "worker_exited",
                server=name,
                state=worker.state.value,
                last_error=worker.status.last_error,
            )

    async def stop_all(self) -> None:
        """Cancel every worker and wait until each has terminated."""
        pending = [task for task in self.tasks.values() if not task.done()]
        logger.info("stopping_all_workers", count=len(pending))

        for task in pending:
            task.cancel()

        results = await asyncio.gather(*pending, return_exceptions=True)
        for task, result in zip(pending, results):
            if isinstance(result, Exception):
                logger.error("worker_stop_failed", task=task.get_name(), error=str(result))

        logger.info("all_workers_stopped")

    def status_snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Per-worker state, keyed by server name."""
        return {name: worker.status.snapshot() for name, worker in self.workers.items()}
