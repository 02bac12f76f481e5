import asyncio
import contextlib
import logging
import signal
import sys

from fastapi import FastAPI
from prometheus_client import CollectorRegistry
from uvicorn import Config, Server

from ravendb_exporter.api.routes import router
from ravendb_exporter.config.logging import setup_logging
from ravendb_exporter.config.settings import settings
from ravendb_exporter.core.client import RavenClient
from ravendb_exporter.core.manager import QueryManager
from ravendb_exporter.core.queries import load_queries
from ravendb_exporter.core.stats import StatsCollector
from ravendb_exporter.errors import ConfigError

# Set up logging with configured level
setup_logging(log_level=settings.log_level, log_file=settings.log_file)

logger = logging.getLogger(__name__)

app = FastAPI(title="RavenDB Prometheus Exporter")
app.include_router(router)


async def main() -> int:
    """
    Exporter entry point.
    Loads the query definitions, wires the collectors into the API and serves until signalled.
    """
    logger.info("Starting RavenDB exporter...")

    # 1. Query definitions must be valid before anything starts
    try:
        queries = load_queries(settings.queries_dir)
    except ConfigError as e:
        logger.critical(f"Invalid query configuration: {e}")
        return 1

    # 2. Core components on a private registry
    registry = CollectorRegistry()
    client = RavenClient.from_settings(settings.ravendb)
    stats_collector = StatsCollector(client, registry)
    query_manager = QueryManager(client, registry)
    query_manager.register_all(queries)

    app.state.registry = registry
    app.state.stats_collector = stats_collector
    app.state.query_manager = query_manager

    # 3. Query loops and API server
    query_manager.start_all()

    config = Config(app, host=settings.api.host, port=settings.api.port, log_config=None)
    server = Server(config)
    server_task = asyncio.create_task(server.serve(), name="api_server")

    # 4. Handle signals for graceful shutdown
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    logger.info(f"Exporter started on {settings.api.host}:{settings.api.port}, scraping {settings.ravendb.url}")
    await shutdown_event.wait()

    # 5. Shutdown: API first, then the query loops, then the HTTP client
    logger.info("Shutting down...")
    server.should_exit = True
    await server_task

    query_manager.stop_all()
    await query_manager.wait_closed()
    await client.aclose()

    logger.info("Shutdown complete.")
    return 0


def run() -> None:
    exit_code = 0
    with contextlib.suppress(KeyboardInterrupt):
        exit_code = asyncio.run(main())
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
