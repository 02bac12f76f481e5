import asyncio
import time
from collections.abc import Awaitable, Callable

from prometheus_client import CollectorRegistry, Gauge

from ravendb_exporter.config.logging import get_logger
from ravendb_exporter.core.client import RavenClient
from ravendb_exporter.core.metrics import create_query_gauge
from ravendb_exporter.core.monitoring import ResultCallback, query_loop
from ravendb_exporter.models import QueryDefinition, QueryResult, QueryStatus, QueryWithStatus

logger = get_logger(__name__)

LoopFunction = Callable[[QueryDefinition, Gauge, RavenClient, asyncio.Event, ResultCallback], Awaitable[None]]


class QueryManager:
    """Owns the query gauges and the lifecycle of their collector tasks."""

    def __init__(
        self,
        client: RavenClient,
        registry: CollectorRegistry,
        loop_func: LoopFunction = query_loop,
    ):
        """
        Initialize the QueryManager.

        Args:
            client: Client shared by every query loop
            registry: Registry the query gauges are registered on
            loop_func: Coroutine function running one query's loop. Defaults to query_loop.
        """
        self.client = client
        self.registry = registry
        self.loop_func = loop_func
        self.queries: dict[str, QueryDefinition] = {}
        self.gauges: dict[str, Gauge] = {}
        self.statuses: dict[str, QueryStatus] = {}
        self.tasks: dict[str, asyncio.Task] = {}
        # One signal stops every loop
        self.stop_event = asyncio.Event()
        self.start_time = time.time()

    def register(self, query: QueryDefinition) -> Gauge:
        """
        Register the gauge for a query.

        Raises:
            ValueError: If a query with the same name is already registered
        """
        if query.name in self.queries:
            raise ValueError(f"Query [{query.name}] is already registered")

        gauge = create_query_gauge(self.registry, query.metric_name, query.name, query.label_names)
        self.queries[query.name] = query
        self.gauges[query.name] = gauge
        self.statuses[query.name] = QueryStatus()
        logger.debug(f"Registered metric {query.metric_name} with labels {query.label_names}")
        return gauge

    def register_all(self, queries: list[QueryDefinition]) -> None:
        """Register every query's gauge. Must run before start_all."""
        for query in queries:
            self.register(query)

    def get_query(self, name: str) -> QueryDefinition | None:
        return self.queries.get(name)

    def get_query_with_status(self, name: str) -> QueryWithStatus | None:
        """Get a query with its status by name."""
        query = self.queries.get(name)
        if not query:
            return None
        return QueryWithStatus(
            name=query.name,
            database=query.database,
            rql=query.rql,
            metric_name=query.metric_name,
            label_names=query.label_names,
            interval_seconds=query.interval_seconds,
            value_on_error=query.value_on_error,
            status=self.statuses.get(name, QueryStatus()),
        )

    def get_all_queries_with_status(self) -> list[QueryWithStatus]:
        return [self.get_query_with_status(name) for name in self.queries]

    def get_active_count(self) -> int:
        """Get number of running query tasks."""
        return sum(1 for task in self.tasks.values() if not task.done())

    def update_query_status(self, result: QueryResult) -> None:
        """Record the outcome of one collection cycle."""
        status = self.statuses.setdefault(result.query_name, QueryStatus())
        status.run_count += 1
        status.last_run = result.timestamp
        if result.success:
            status.last_outcome = "success"
            status.last_error = None
            status.last_row_count = result.row_count
        else:
            status.last_outcome = "error"
            status.last_error = result.error
            status.error_count += 1

    def start_all(self) -> None:
        """Start one collector task per registered query."""
        for name, query in self.queries.items():
            if name in self.tasks:
                logger.warning(f"Collector task for query {name} already exists")
                continue

            task = asyncio.create_task(
                self.loop_func(query, self.gauges[name], self.client, self.stop_event, self.update_query_status),
                name=f"query:{name}",
            )
            self.tasks[name] = task
            logger.info(f"Started collector task for query {name}")

    def stop_all(self) -> None:
        """Signal every query loop to stop."""
        logger.info(f"Stopping all query tasks ({len(self.tasks)} tasks)")
        self.stop_event.set()

    async def wait_closed(self, timeout: float = 10.0) -> None:
        """Wait for the loops to exit, cancelling those that are stuck in a request."""
        if not self.tasks:
            return
        tasks = list(self.tasks.values())
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            logger.warning(f"Cancelling query task {task.get_name()} that did not stop in time")
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.tasks.clear()
        logger.info("All query tasks stopped")
