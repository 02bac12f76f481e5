import time

from fastapi import APIRouter, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from ravendb_exporter.config.logging import get_logger
from ravendb_exporter.core.manager import QueryManager
from ravendb_exporter.core.stats import StatsCollector
from ravendb_exporter.models import QueryWithStatus, SystemStats

logger = get_logger(__name__)

router = APIRouter()


def get_manager(request: Request) -> QueryManager:
    """Helper to get the query manager from app state."""
    return request.app.state.query_manager


def get_collector(request: Request) -> StatsCollector:
    """Helper to get the stats collector from app state."""
    return request.app.state.stats_collector


def get_registry(request: Request) -> CollectorRegistry:
    return request.app.state.registry


@router.get("/metrics")
async def get_metrics(request: Request) -> Response:
    """
    Scrape RavenDB and return every metric in the Prometheus text format.
    """
    await get_collector(request).collect()
    return Response(content=generate_latest(get_registry(request)), media_type=CONTENT_TYPE_LATEST)


@router.get("/queries", response_model=list[QueryWithStatus])
async def list_queries(request: Request) -> list[QueryWithStatus]:
    """
    List all configured queries with their status.
    """
    return get_manager(request).get_all_queries_with_status()


@router.get("/queries/{name}", response_model=QueryWithStatus)
async def get_query(name: str, request: Request) -> QueryWithStatus:
    """
    Get details of a specific query with its status.
    """
    query = get_manager(request).get_query_with_status(name)
    if not query:
        raise HTTPException(status_code=404, detail="Query not found")
    return query


@router.get("/stats", response_model=SystemStats)
async def get_stats(request: Request) -> SystemStats:
    """
    Get exporter statistics.
    """
    manager = get_manager(request)
    collector = get_collector(request)

    return SystemStats(
        active_queries=manager.get_active_count(),
        scrape_count=collector.scrape_count,
        scrape_errors=collector.error_count,
        uptime_seconds=time.time() - manager.start_time,
    )


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
