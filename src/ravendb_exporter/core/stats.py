"""
Server-wide and per-database RavenDB statistics.

Each scrape fetches a fresh snapshot of the server's stats documents and maps
them onto a fixed set of gauges (set every cycle) and counters (incremented
by the reported value every cycle). The extraction functions below are pure
functions of the snapshot; a missing numeric field reads as 0.
"""

import asyncio
import math
from collections.abc import Callable
from urllib.parse import quote

from prometheus_client import CollectorRegistry, Counter, Gauge

from ravendb_exporter.config.logging import get_logger
from ravendb_exporter.core.client import RavenClient
from ravendb_exporter.core.duration import parse_duration
from ravendb_exporter.core.jsonpath import get_bool, get_float, get_string, iter_array
from ravendb_exporter.core.metrics import (
    create_counter,
    create_database_counter,
    create_database_gauge,
    create_gauge,
)
from ravendb_exporter.errors import ExporterError, ParseError
from ravendb_exporter.models import DatabaseStats, StatsSnapshot

logger = get_logger(__name__)

CPU_STATS_PATH = "/admin/debug/cpu/stats"
MEMORY_STATS_PATH = "/admin/debug/memory/stats"
NODE_INFO_PATH = "/cluster/node-info"
SERVER_METRICS_PATH = "/admin/metrics"
DATABASES_PATH = "/databases"


def _float_or_zero(document, *path) -> float:
    value, found = get_float(document, *path)
    return value if found else 0.0


# --- Server-wide ---


def get_memory_working_set(stats: StatsSnapshot) -> float:
    return _float_or_zero(stats.memory, "WorkingSet")


def get_cpu_time(stats: StatsSnapshot) -> float:
    # CpuStats is an array; the last entry wins
    cpu_time = ""
    for entry in iter_array(stats.cpu, "CpuStats"):
        value, found = get_string(entry, "TotalProcessorTime")
        cpu_time = value if found else ""
    return parse_duration(cpu_time)


def get_is_leader(stats: StatsSnapshot) -> float:
    value, _ = get_string(stats.node_info, "CurrentState")
    return 1.0 if value == "Leader" else 0.0


def get_request_total(stats: StatsSnapshot) -> float:
    return _float_or_zero(stats.metrics, "Requests", "RequestsPerSec", "Count")


def get_document_put_total(stats: StatsSnapshot) -> float:
    return _float_or_zero(stats.metrics, "Docs", "PutsPerSec", "Count")


def get_document_put_bytes_total(stats: StatsSnapshot) -> float:
    return _float_or_zero(stats.metrics, "Docs", "BytesPutsPerSec", "Count")


# Index rates read IndexedPerSec of MapIndexes and Mapped/ReducedPerSec of MapReduceIndexes,
# not the MapIndexes.MappedPerSec paths older exporters used
def get_map_index_indexed_total(stats: StatsSnapshot) -> float:
    return _float_or_zero(stats.metrics, "MapIndexes", "IndexedPerSec", "Count")


def get_map_reduce_index_mapped_total(stats: StatsSnapshot) -> float:
    return _float_or_zero(stats.metrics, "MapReduceIndexes", "MappedPerSec", "Count")


def get_map_reduce_index_reduced_total(stats: StatsSnapshot) -> float:
    return _float_or_zero(stats.metrics, "MapReduceIndexes", "ReducedPerSec", "Count")


# --- Per database ---


def get_database_documents(db: DatabaseStats) -> float:
    return _float_or_zero(db.stats, "CountOfDocuments")


def get_database_indexes(db: DatabaseStats) -> float:
    return _float_or_zero(db.stats, "CountOfIndexes")


def get_database_stale_indexes(db: DatabaseStats) -> float:
    count = 0
    for index in iter_array(db.stats, "Indexes"):
        is_stale, _ = get_bool(index, "IsStale")
        if is_stale:
            count += 1
    return float(count)


def get_database_size(db: DatabaseStats) -> float:
    return _float_or_zero(db.stats, "SizeOnDisk", "SizeInBytes")


def get_database_request_total(db: DatabaseStats) -> float:
    return _float_or_zero(db.metrics, "Requests", "RequestsPerSec", "Count")


def get_database_document_put_total(db: DatabaseStats) -> float:
    return _float_or_zero(db.metrics, "Docs", "PutsPerSec", "Count")


def get_database_document_put_bytes(db: DatabaseStats) -> float:
    return _float_or_zero(db.metrics, "Docs", "BytesPutsPerSec", "Count")


# Same index rate paths as the server-wide counters above
def get_database_map_index_indexed_total(db: DatabaseStats) -> float:
    return _float_or_zero(db.metrics, "MapIndexes", "IndexedPerSec", "Count")


def get_database_map_reduce_index_mapped_total(db: DatabaseStats) -> float:
    return _float_or_zero(db.metrics, "MapReduceIndexes", "MappedPerSec", "Count")


def get_database_map_reduce_index_reduced_total(db: DatabaseStats) -> float:
    return _float_or_zero(db.metrics, "MapReduceIndexes", "ReducedPerSec", "Count")


DatabaseExtractor = Callable[[DatabaseStats], float]
# (metric, label values, "set" or "inc", value)
Update = tuple[Gauge | Counter, tuple[str, ...], str, float]


class StatsCollector:
    """Fetches RavenDB statistics and publishes them on each scrape."""

    def __init__(self, client: RavenClient, registry: CollectorRegistry):
        """
        Initialize the collector and register its metrics.

        Args:
            client: Client used to reach the RavenDB server
            registry: Registry the metrics are registered on
        """
        self.client = client
        self.scrape_count = 0
        self.error_count = 0

        self.up = create_gauge(registry, "up", "Whether the RavenDB scrape was successful")
        self.working_set = create_gauge(registry, "working_set_bytes", "Process working set")
        self.cpu_time = create_counter(registry, "cpu_time_seconds_total", "CPU time")
        self.is_leader = create_gauge(registry, "is_leader", "If 1, then node is the cluster leader, otherwise 0")

        # (counter, extractor) pairs incremented on every successful scrape
        self.server_counters: list[tuple[Counter, Callable[[StatsSnapshot], float]]] = [
            (self.cpu_time, get_cpu_time),
            (create_counter(registry, "request_total", "Server-wide request count"), get_request_total),
            (create_counter(registry, "document_put_total", "Server-wide document puts count"), get_document_put_total),
            (
                create_counter(registry, "document_put_bytes_total", "Server-wide document put bytes"),
                get_document_put_bytes_total,
            ),
            (
                create_counter(registry, "mapindex_indexed_total", "Server-wide map index indexed count"),
                get_map_index_indexed_total,
            ),
            (
                create_counter(registry, "mapreduceindex_mapped_total", "Server-wide map-reduce index mapped count"),
                get_map_reduce_index_mapped_total,
            ),
            (
                create_counter(registry, "mapreduceindex_reduced_total", "Server-wide map-reduce index reduced count"),
                get_map_reduce_index_reduced_total,
            ),
        ]

        self.database_gauges: list[tuple[Gauge, DatabaseExtractor]] = [
            (
                create_database_gauge(registry, "database_documents", "Count of documents in a database"),
                get_database_documents,
            ),
            (
                create_database_gauge(registry, "database_indexes", "Count of indexes in a database"),
                get_database_indexes,
            ),
            (
                create_database_gauge(registry, "database_stale_indexes", "Count of stale indexes in a database"),
                get_database_stale_indexes,
            ),
            (
                create_database_gauge(registry, "database_size_bytes", "Database size in bytes"),
                get_database_size,
            ),
        ]

        self.database_counters: list[tuple[Counter, DatabaseExtractor]] = [
            (
                create_database_counter(registry, "database_request_total", "Database request count"),
                get_database_request_total,
            ),
            (
                create_database_counter(registry, "database_document_put_total", "Database document puts count"),
                get_database_document_put_total,
            ),
            (
                create_database_counter(registry, "database_document_put_bytes_total", "Database document put bytes"),
                get_database_document_put_bytes,
            ),
            (
                create_database_counter(
                    registry, "database_mapindex_indexed_total", "Database map index indexed count"
                ),
                get_database_map_index_indexed_total,
            ),
            (
                create_database_counter(
                    registry, "database_mapreduceindex_mapped_total", "Database map-reduce index mapped count"
                ),
                get_database_map_reduce_index_mapped_total,
            ),
            (
                create_database_counter(
                    registry, "database_mapreduceindex_reduced_total", "Database map-reduce index reduced count"
                ),
                get_database_map_reduce_index_reduced_total,
            ),
        ]

    async def scrape(self) -> StatsSnapshot:
        """
        Fetch every document needed for one cycle.

        Requests of a stage run concurrently; the first failure cancels the rest.

        Raises:
            TransportError: If any request fails
            ParseError: If any response is not valid JSON
        """
        cpu, memory, node_info, metrics, databases = await _fetch_all(
            self.client.get_json(CPU_STATS_PATH),
            self.client.get_json(MEMORY_STATS_PATH),
            self.client.get_json(NODE_INFO_PATH),
            self.client.get_json(SERVER_METRICS_PATH),
            self.client.get_json(DATABASES_PATH),
        )

        names = []
        for entry in iter_array(databases, "Databases"):
            name, found = get_string(entry, "Name")
            if found:
                names.append(name)

        database_stats = await _fetch_all(*(self._fetch_database(name) for name in names))
        return StatsSnapshot(
            cpu=cpu,
            memory=memory,
            node_info=node_info,
            metrics=metrics,
            databases={db.name: db for db in database_stats},
        )

    async def _fetch_database(self, name: str) -> DatabaseStats:
        quoted = quote(name, safe="")
        stats, metrics = await _fetch_all(
            self.client.get_json(f"/databases/{quoted}/stats"),
            self.client.get_json(f"/databases/{quoted}/metrics"),
        )
        return DatabaseStats(name=name, stats=stats, metrics=metrics)

    def prepare(self, stats: StatsSnapshot) -> list[Update]:
        """
        Extract every value of a snapshot without touching any metric.

        Raises:
            ParseError: If a counter value is negative or not finite
        """
        updates: list[Update] = [
            (self.working_set, (), "set", get_memory_working_set(stats)),
            (self.is_leader, (), "set", get_is_leader(stats)),
        ]
        for counter, extractor in self.server_counters:
            updates.append((counter, (), "inc", _counter_value(extractor(stats), extractor.__name__)))

        for db in stats.databases.values():
            for gauge, extractor in self.database_gauges:
                updates.append((gauge, (db.name,), "set", extractor(db)))
            for counter, extractor in self.database_counters:
                value = _counter_value(extractor(db), f"{extractor.__name__} of database {db.name}")
                updates.append((counter, (db.name,), "inc", value))
        return updates

    def publish(self, updates: list[Update]) -> None:
        """Apply prepared updates and mark the scrape successful."""
        self.up.set(1)
        for metric, labels, operation, value in updates:
            series = metric.labels(*labels) if labels else metric
            if operation == "inc":
                series.inc(value)
            else:
                series.set(value)

    async def collect(self) -> bool:
        """
        Run one scrape cycle.

        Returns:
            True if the snapshot was fetched and published, False if only ``up=0`` was set
        """
        logger.info("Running scrape")
        self.scrape_count += 1
        try:
            stats = await self.scrape()
            updates = self.prepare(stats)
        except ExporterError as e:
            self.error_count += 1
            logger.error(f"Error while getting data from RavenDB: {e}")
            self.up.set(0)
            return False

        self.publish(updates)
        logger.debug(f"Scrape published {len(stats.databases)} database(s)")
        return True


def _counter_value(value: float, source: str) -> float:
    if not math.isfinite(value) or value < 0:
        raise ParseError(f"{source} returned {value}, counters only accept finite non-negative increments")
    return value


async def _fetch_all(*requests):
    """Await requests concurrently, cancelling the others as soon as one fails."""
    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(request) for request in requests]
    except BaseExceptionGroup as errors:
        # Surface the first failure as a plain exception for the callers' error handling
        first = errors.exceptions[0]
        while isinstance(first, BaseExceptionGroup):
            first = first.exceptions[0]
        raise first from None
    return [task.result() for task in tasks]
