from prometheus_client import CollectorRegistry, Counter, Gauge

NAMESPACE = "ravendb"
DATABASE_LABEL = "database"


def create_gauge(registry: CollectorRegistry, name: str, documentation: str) -> Gauge:
    return Gauge(name, documentation, namespace=NAMESPACE, registry=registry)


def create_counter(registry: CollectorRegistry, name: str, documentation: str) -> Counter:
    return Counter(name, documentation, namespace=NAMESPACE, registry=registry)


def create_database_gauge(registry: CollectorRegistry, name: str, documentation: str) -> Gauge:
    return Gauge(name, documentation, [DATABASE_LABEL], namespace=NAMESPACE, registry=registry)


def create_database_counter(registry: CollectorRegistry, name: str, documentation: str) -> Counter:
    return Counter(name, documentation, [DATABASE_LABEL], namespace=NAMESPACE, registry=registry)


def create_query_gauge(registry: CollectorRegistry, metric_name: str, query_name: str, label_names) -> Gauge:
    """Register the gauge that carries the results of one RQL query."""
    return Gauge(metric_name, f"Result of an RQL query {query_name}", list(label_names), registry=registry)
