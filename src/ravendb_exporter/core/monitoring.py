import asyncio
import contextlib
import functools
import time
from collections.abc import AsyncGenerator, Callable
from typing import Any

from prometheus_client import Gauge

from ravendb_exporter.config.logging import get_logger
from ravendb_exporter.core.client import RavenClient
from ravendb_exporter.core.jsonpath import get_float, get_string
from ravendb_exporter.errors import ExporterError, ParseError
from ravendb_exporter.models import QueryDefinition, QueryResult

logger = get_logger(__name__)

ResultCallback = Callable[[QueryResult], None]


def periodic_task(interval_attr: str = "interval_seconds"):
    """
    Decorator to turn a single-cycle coroutine into an endless periodic stream.

    The wrapped coroutine runs, its result is yielded, then the loop waits
    ``interval_attr`` seconds (read from the first argument) or until the
    stop event is set. Unexpected errors are logged and the loop carries on
    with the next cycle.

    Args:
        interval_attr: Name of the attribute on the first argument holding the interval in seconds
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(definition: QueryDefinition, stop_event: asyncio.Event, *args, **kwargs):
            interval = getattr(definition, interval_attr)

            while not stop_event.is_set():
                try:
                    yield await func(definition, *args, **kwargs)
                except Exception as e:
                    logger.error(f"Error in {func.__name__} for query {definition.name}: {e}", exc_info=True)

                # Sleep for the interval OR until shutdown
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)

            logger.info(f"Stop signal received for query {definition.name}. Exiting loop.")

        return wrapper

    return decorator


def extract_rows(definition: QueryDefinition, response: Any) -> list[tuple[tuple[str, ...], float]]:
    """
    Turn a query response into ``(label values, value)`` pairs, one per result row.

    Raises:
        ParseError: If the response has no ``Results`` array, or any row lacks the
            value field or a label field. No rows are returned in that case.
    """
    results = response.get("Results") if isinstance(response, dict) else None
    if not isinstance(results, list):
        raise ParseError("Response has no Results array")

    value_path = definition.value_path
    label_paths = definition.label_paths

    rows = []
    for position, row in enumerate(results):
        value, found = get_float(row, *value_path)
        if not found:
            raise ParseError(f"Cannot read metric value {definition.value_field!r} from row {position}")

        labels = []
        for field, path in zip(definition.label_fields, label_paths, strict=True):
            label, found = get_string(row, *path)
            if not found:
                raise ParseError(f"Cannot read metric label {field!r} from row {position}")
            labels.append(label)

        rows.append((tuple(labels), value))
    return rows


async def collect_query(definition: QueryDefinition, gauge: Gauge, client: RavenClient) -> int:
    """
    Run one query and publish every result row.

    Returns:
        Number of rows published

    Raises:
        TransportError: If the query request fails
        ParseError: If the response cannot be mapped onto the metric
    """
    response = await client.query(definition.database, definition.rql)
    rows = extract_rows(definition, response)

    for labels, value in rows:
        if definition.label_fields:
            gauge.labels(*labels).set(value)
        else:
            gauge.set(value)
    return len(rows)


def set_fallback(definition: QueryDefinition, gauge: Gauge) -> None:
    """Publish ``value-on-error`` on the unlabeled series (all label values empty)."""
    if definition.label_fields:
        gauge.labels(*("" for _ in definition.label_fields)).set(definition.value_on_error)
    else:
        gauge.set(definition.value_on_error)


@periodic_task(interval_attr="interval_seconds")
async def query_stream(definition: QueryDefinition, gauge: Gauge, client: RavenClient) -> QueryResult:
    """One collection cycle; @periodic_task repeats it every interval."""
    logger.info(f"Running query {definition.name}")
    timestamp = time.time()
    try:
        row_count = await collect_query(definition, gauge, client)
    except ExporterError as e:
        logger.error(f"Error while executing query {definition.name}: {e}")
        set_fallback(definition, gauge)
        return QueryResult(query_name=definition.name, success=False, error=str(e), timestamp=timestamp)

    logger.info(f"Metrics from query {definition.name} collected ({row_count} rows)")
    return QueryResult(query_name=definition.name, success=True, row_count=row_count, timestamp=timestamp)


async def query_loop(
    definition: QueryDefinition,
    gauge: Gauge,
    client: RavenClient,
    stop_event: asyncio.Event,
    on_result: ResultCallback | None = None,
) -> None:
    """
    Collect ``definition`` until ``stop_event`` is set, reporting each cycle to ``on_result``.
    """
    logger.info(
        f"Starting query collector {definition.name} "
        f"(database: {definition.database}, interval: {definition.interval_seconds}s)"
    )

    stream: AsyncGenerator[QueryResult] = query_stream(definition, stop_event, gauge, client)
    async for result in stream:
        if on_result:
            on_result(result)
