"""
Player Count Bots - Main Entry Point

One Discord bot per game server, each showing the server's player count and
map as its presence and answering /players with the current roster.

- config.yml lists the servers (scaffolded on first run)
- Supervisor runs one worker per enabled server
- SIGINT / SIGTERM stop every worker before exit
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional, Any

import structlog

try:
    from .config import GlobalConfig, Settings, load_config, load_settings
    from .errors import ConfigError
    from .health import HealthCheckServer
    from .supervisor import ExitOutcome, Supervisor
except ImportError:
    from config import GlobalConfig, Settings, load_config, load_settings  # type: ignore
    from errors import ConfigError  # type: ignore
    from health import HealthCheckServer  # type: ignore
    from supervisor import ExitOutcome, Supervisor  # type: ignore

logger = structlog.get_logger()

EXIT_CONFIG_ERROR = 2
EXIT_UNEXPECTED_ERROR = 1


def setup_logging(log_level: str, log_format: str) -> None:
    """
    Configure structured logging.

    Args:
        log_level: Logging level (debug, info, warning, error, critical)
        log_format: Output format ("json" or "console")
    """
    level_map: dict[str, int] = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
        "critical": logging.CRITICAL,
    }

    min_level = level_map.get(log_level.lower(), logging.INFO)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # discord.py logs through stdlib logging
    logging.basicConfig(level=max(min_level, logging.WARNING), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    logger.info("logging_configured", level=log_level, format=log_format)


class Application:
    """Wires settings, config, supervisor and health server together."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings
        self.config: Optional[GlobalConfig] = None
        self.supervisor: Optional[Supervisor] = None
        self.health_server: Optional[HealthCheckServer] = None
        self.shutdown_event: asyncio.Event = asyncio.Event()

    def setup(self) -> None:
        """
        Load settings and config.

        Raises:
            ConfigError: Settings or config file invalid
        """
        if self.settings is None:
            self.settings = load_settings()

        setup_logging(self.settings.log_level, self.settings.log_format)
        logger.info("application_starting", config_path=str(self.settings.config_path))

        try:
            self.config = load_config(self.settings.config_path)
        except ConfigError as e:
            logger.error("config_load_failed", path=str(self.settings.config_path), error=str(e))
            raise

        self.supervisor = Supervisor(self.config)

    async def start_health_server(self) -> None:
        assert self.settings is not None
        assert self.supervisor is not None

        if not self.settings.health_check_enabled:
            return

        self.health_server = HealthCheckServer(
            host=self.settings.health_check_host,
            port=self.settings.health_check_port,
            status_provider=self.supervisor.status_snapshot,
        )
        await self.health_server.start()

    async def run(self) -> ExitOutcome:
        """Run until shutdown or until no worker is left."""
        if self.supervisor is None:
            self.setup()
        assert self.supervisor is not None

        try:
            await self.start_health_server()
            outcome = await self.supervisor.run(self.shutdown_event)
        finally:
            await self.stop()

        logger.info("application_stopped", outcome=outcome.value)
        return outcome

    async def stop(self) -> None:
        """Stop auxiliary components."""
        if self.health_server is not None:
            try:
                await self.health_server.stop()
            except Exception as e:
                logger.warning("health_server_stop_failed", error=str(e))
            self.health_server = None

    def request_shutdown(self, signame: str = "manual") -> None:
        logger.info("received_signal", signal=signame)
        self.shutdown_event.set()


def _install_signal_handlers(app: Application) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, app.request_shutdown, sig.name)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(
                app.request_shutdown, signal.Signals(signum).name
            ))


async def main() -> int:
    """Main async entry point. Returns the process exit code."""
    app = Application()

    try:
        app.setup()
    except ConfigError as e:
        logger.error("fatal_config_error", error=str(e))
        return EXIT_CONFIG_ERROR

    _install_signal_handlers(app)

    try:
        outcome = await app.run()
    except Exception as e:
        logger.error("fatal_error", error=str(e), exc_info=True)
        return EXIT_UNEXPECTED_ERROR

    return outcome.exit_code


def run() -> None:
    """Console script entry point."""
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown complete.")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    run()
