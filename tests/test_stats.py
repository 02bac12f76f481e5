import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import CollectorRegistry

from ravendb_exporter.core.client import RavenClient
from ravendb_exporter.core.stats import (
    StatsCollector,
    get_cpu_time,
    get_database_documents,
    get_database_size,
    get_database_stale_indexes,
    get_is_leader,
    get_memory_working_set,
)
from ravendb_exporter.errors import ParseError, TransportError
from ravendb_exporter.models import DatabaseStats, StatsSnapshot

SERVER_METRICS = {
    "Requests": {"RequestsPerSec": {"Count": 100}},
    "Docs": {"PutsPerSec": {"Count": 20}, "BytesPutsPerSec": {"Count": 2048}},
    # MappedPerSec/ReducedPerSec of MapIndexes must not be picked up by the index counters
    "MapIndexes": {"IndexedPerSec": {"Count": 5}, "MappedPerSec": {"Count": 900}, "ReducedPerSec": {"Count": 901}},
    "MapReduceIndexes": {"MappedPerSec": {"Count": 3}, "ReducedPerSec": {"Count": 1}},
}

NORTHWIND_STATS = {
    "CountOfDocuments": 1059,
    "CountOfIndexes": 3,
    "Indexes": [
        {"Name": "Orders/ByCompany", "IsStale": True},
        {"Name": "Products/Search", "IsStale": False},
        {"Name": "Employees/ByName", "IsStale": False},
    ],
    "SizeOnDisk": {"SizeInBytes": 67108864},
}

NORTHWIND_METRICS = {
    "Requests": {"RequestsPerSec": {"Count": 40}},
    "Docs": {"PutsPerSec": {"Count": 8}, "BytesPutsPerSec": {"Count": 512}},
    "MapIndexes": {"IndexedPerSec": {"Count": 6}, "MappedPerSec": {"Count": 910}, "ReducedPerSec": {"Count": 911}},
    "MapReduceIndexes": {"MappedPerSec": {"Count": 4}, "ReducedPerSec": {"Count": 7}},
}


def make_documents(databases=("Northwind",)):
    documents = {
        "/admin/debug/cpu/stats": {
            "CpuStats": [
                {"ProcessName": "Raven.Server", "TotalProcessorTime": "00:00:10"},
                {"ProcessName": "Raven.Server", "TotalProcessorTime": "00:01:02.5000000"},
            ]
        },
        "/admin/debug/memory/stats": {"WorkingSet": 536870912},
        "/cluster/node-info": {"NodeTag": "A", "CurrentState": "Leader"},
        "/admin/metrics": SERVER_METRICS,
        "/databases": {"Databases": [{"Name": name} for name in databases]},
    }
    for name in databases:
        documents[f"/databases/{name}/stats"] = NORTHWIND_STATS
        documents[f"/databases/{name}/metrics"] = NORTHWIND_METRICS
    return documents


def make_client(documents):
    client = MagicMock(spec=RavenClient)

    async def get_json(path, params=None):
        if path not in documents:
            raise TransportError(f"GET {path} returned HTTP 404")
        return documents[path]

    client.get_json = AsyncMock(side_effect=get_json)
    return client


@pytest.fixture
def registry():
    return CollectorRegistry()


def database_samples(registry):
    return [
        sample
        for metric in registry.collect()
        for sample in metric.samples
        if sample.name.startswith("ravendb_database_")
    ]


@pytest.mark.asyncio
async def test_collect_publishes_server_and_database_metrics(registry):
    collector = StatsCollector(make_client(make_documents()), registry)

    assert await collector.collect() is True

    assert registry.get_sample_value("ravendb_up") == 1
    assert registry.get_sample_value("ravendb_working_set_bytes") == 536870912
    assert registry.get_sample_value("ravendb_is_leader") == 1
    assert registry.get_sample_value("ravendb_cpu_time_seconds_total") == 62.5
    assert registry.get_sample_value("ravendb_request_total") == 100
    assert registry.get_sample_value("ravendb_document_put_total") == 20
    assert registry.get_sample_value("ravendb_document_put_bytes_total") == 2048
    assert registry.get_sample_value("ravendb_mapindex_indexed_total") == 5
    assert registry.get_sample_value("ravendb_mapreduceindex_mapped_total") == 3
    assert registry.get_sample_value("ravendb_mapreduceindex_reduced_total") == 1

    labels = {"database": "Northwind"}
    assert registry.get_sample_value("ravendb_database_documents", labels) == 1059
    assert registry.get_sample_value("ravendb_database_indexes", labels) == 3
    assert registry.get_sample_value("ravendb_database_stale_indexes", labels) == 1
    assert registry.get_sample_value("ravendb_database_size_bytes", labels) == 67108864
    assert registry.get_sample_value("ravendb_database_request_total", labels) == 40
    assert registry.get_sample_value("ravendb_database_document_put_total", labels) == 8
    assert registry.get_sample_value("ravendb_database_document_put_bytes_total", labels) == 512
    assert registry.get_sample_value("ravendb_database_mapindex_indexed_total", labels) == 6
    assert registry.get_sample_value("ravendb_database_mapreduceindex_mapped_total", labels) == 4
    assert registry.get_sample_value("ravendb_database_mapreduceindex_reduced_total", labels) == 7


@pytest.mark.asyncio
async def test_gauges_overwrite_and_counters_accumulate(registry):
    collector = StatsCollector(make_client(make_documents()), registry)

    await collector.collect()
    await collector.collect()

    labels = {"database": "Northwind"}
    assert registry.get_sample_value("ravendb_working_set_bytes") == 536870912
    assert registry.get_sample_value("ravendb_database_documents", labels) == 1059
    assert registry.get_sample_value("ravendb_cpu_time_seconds_total") == 125.0
    assert registry.get_sample_value("ravendb_request_total") == 200
    assert registry.get_sample_value("ravendb_database_request_total", labels) == 80


@pytest.mark.asyncio
async def test_no_databases_publishes_only_server_metrics(registry):
    collector = StatsCollector(make_client(make_documents(databases=())), registry)

    await collector.collect()

    assert registry.get_sample_value("ravendb_up") == 1
    assert database_samples(registry) == []


@pytest.mark.asyncio
async def test_fetch_failure_only_sets_up(registry):
    documents = make_documents()
    del documents["/admin/debug/memory/stats"]
    collector = StatsCollector(make_client(documents), registry)

    assert await collector.collect() is False

    assert registry.get_sample_value("ravendb_up") == 0
    assert registry.get_sample_value("ravendb_working_set_bytes") == 0
    assert registry.get_sample_value("ravendb_request_total") == 0
    assert database_samples(registry) == []
    assert collector.error_count == 1


@pytest.mark.asyncio
async def test_database_fetch_failure_aborts_cycle(registry):
    documents = make_documents()
    del documents["/databases/Northwind/metrics"]
    collector = StatsCollector(make_client(documents), registry)

    assert await collector.collect() is False
    assert registry.get_sample_value("ravendb_up") == 0
    assert database_samples(registry) == []


@pytest.mark.asyncio
async def test_parse_error_sets_up_zero(registry):
    client = make_client(make_documents())
    client.get_json.side_effect = ParseError("GET /admin/metrics returned invalid JSON")
    collector = StatsCollector(client, registry)

    assert await collector.collect() is False
    assert registry.get_sample_value("ravendb_up") == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [-1, float("inf"), float("nan")])
async def test_invalid_counter_value_publishes_nothing(registry, count):
    documents = make_documents()
    documents["/admin/metrics"] = {**SERVER_METRICS, "Requests": {"RequestsPerSec": {"Count": count}}}
    collector = StatsCollector(make_client(documents), registry)

    assert await collector.collect() is False

    assert registry.get_sample_value("ravendb_up") == 0
    assert registry.get_sample_value("ravendb_working_set_bytes") == 0
    assert registry.get_sample_value("ravendb_cpu_time_seconds_total") == 0
    assert registry.get_sample_value("ravendb_request_total") == 0
    assert database_samples(registry) == []
    assert collector.error_count == 1


@pytest.mark.asyncio
async def test_invalid_database_counter_value_publishes_nothing(registry):
    documents = make_documents()
    documents["/databases/Northwind/metrics"] = {**NORTHWIND_METRICS, "Docs": {"PutsPerSec": {"Count": -5}}}
    collector = StatsCollector(make_client(documents), registry)

    assert await collector.collect() is False
    assert registry.get_sample_value("ravendb_up") == 0
    assert registry.get_sample_value("ravendb_request_total") == 0
    assert database_samples(registry) == []


@pytest.mark.asyncio
async def test_failed_request_cancels_requests_in_flight(registry):
    documents = make_documents()
    del documents["/admin/debug/memory/stats"]
    cancelled = []

    async def get_json(path, params=None):
        if path == "/admin/metrics":
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append(path)
                raise
        if path not in documents:
            raise TransportError(f"GET {path} returned HTTP 404")
        return documents[path]

    client = make_client(documents)
    client.get_json.side_effect = get_json
    collector = StatsCollector(client, registry)

    assert await asyncio.wait_for(collector.collect(), timeout=5) is False
    assert cancelled == ["/admin/metrics"]


@pytest.mark.asyncio
async def test_vanished_database_keeps_last_value(registry):
    documents = make_documents(databases=("Northwind", "Media"))
    client = make_client(documents)
    collector = StatsCollector(client, registry)
    await collector.collect()

    documents["/databases"] = {"Databases": [{"Name": "Northwind"}]}
    await collector.collect()

    assert registry.get_sample_value("ravendb_database_documents", {"database": "Media"}) == 1059
    assert registry.get_sample_value("ravendb_database_request_total", {"database": "Media"}) == 40


def test_stale_indexes_counted():
    db = DatabaseStats(name="Northwind", stats=NORTHWIND_STATS, metrics={})
    assert get_database_stale_indexes(db) == 1


def test_missing_fields_read_as_zero():
    db = DatabaseStats(name="Empty", stats={}, metrics={})
    snapshot = StatsSnapshot(cpu={}, memory={}, node_info={"CurrentState": "Follower"}, metrics={})

    assert get_database_documents(db) == 0
    assert get_database_stale_indexes(db) == 0
    assert get_memory_working_set(snapshot) == 0
    assert get_cpu_time(snapshot) == 0
    assert get_is_leader(snapshot) == 0


def test_extraction_is_pure():
    documents = make_documents()
    snapshot = StatsSnapshot(
        cpu=documents["/admin/debug/cpu/stats"],
        memory=documents["/admin/debug/memory/stats"],
        node_info=documents["/cluster/node-info"],
        metrics=SERVER_METRICS,
        databases={"Northwind": DatabaseStats(name="Northwind", stats=NORTHWIND_STATS, metrics=NORTHWIND_METRICS)},
    )
    db = snapshot.databases["Northwind"]

    first = [get_memory_working_set(snapshot), get_is_leader(snapshot), get_database_size(db)]
    second = [get_memory_working_set(snapshot), get_is_leader(snapshot), get_database_size(db)]
    assert first == second == [536870912, 1, 67108864]
