import re
from datetime import timedelta
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from ravendb_exporter.core.duration import parse_interval
from ravendb_exporter.core.jsonpath import PathStep, parse_path

QUERY_METRIC_PREFIX = "ravendb_queryresult_"

_METRIC_SUFFIX_RE = re.compile(r"^[a-zA-Z0-9_:]+$")
_LABEL_CHAR_RE = re.compile(r"[^a-zA-Z0-9_]")


def label_name_for(field_path: str) -> str:
    """Derive a Prometheus label name from a label field path, e.g. ``Address.City`` -> ``Address_City``."""
    name = _LABEL_CHAR_RE.sub("_", field_path.strip())
    if name[:1].isdigit():
        name = f"_{name}"
    return name


class DatabaseStats(BaseModel):
    """Decoded stats and metrics documents of one database."""

    name: str
    stats: Any = None
    metrics: Any = None


class StatsSnapshot(BaseModel):
    """Documents fetched in a single scrape cycle."""

    cpu: Any = None
    memory: Any = None
    node_info: Any = None
    metrics: Any = None
    databases: dict[str, DatabaseStats] = Field(default_factory=dict)


class QueryDefinition(BaseModel):
    """A user defined RQL query published as a labeled gauge."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(default="", validation_alias=AliasChoices("Name", "name"))
    rql: str = Field(default="", validation_alias=AliasChoices("RQL", "rql"))
    database: str = Field(default="", validation_alias=AliasChoices("Database", "database"))
    value_on_error: float = Field(default=0.0, validation_alias=AliasChoices("value-on-error", "value_on_error"))
    value_field: str = Field(default="", validation_alias=AliasChoices("value-field", "value_field"))
    label_fields: tuple[str, ...] = Field(default=(), validation_alias=AliasChoices("label-fields", "label_fields"))
    interval: timedelta = Field(default=timedelta(0), validation_alias=AliasChoices("Interval", "interval"))

    @field_validator("interval", mode="before")
    @classmethod
    def parse_interval_value(cls, value):
        if value is None:
            return timedelta(0)
        return parse_interval(value)

    @field_validator("label_fields", mode="before")
    @classmethod
    def default_label_fields(cls, value):
        return () if value is None else value

    @model_validator(mode="after")
    def check_required(self):
        if not self.name:
            raise ValueError("Query name missed!")
        if not _METRIC_SUFFIX_RE.match(self.name):
            raise ValueError(f"Query name [{self.name}] may only contain letters, digits, '_' and ':'")
        if not self.database:
            raise ValueError(f"No database specified for query [{self.name}]")
        if not self.rql:
            raise ValueError(f"RQL statement required for query [{self.name}]")
        if self.interval <= timedelta(0):
            raise ValueError(f"Interval must be greater than zero for query [{self.name}]")
        if not self.value_field:
            raise ValueError(f"ValueField required for query [{self.name}]")

        parse_path(self.value_field)
        names = [label_name_for(field) for field in self.label_fields]
        for field, name in zip(self.label_fields, names, strict=True):
            parse_path(field)
            if name.startswith("__"):
                raise ValueError(f"Label field [{field}] maps to reserved label name {name} in query [{self.name}]")
        if len(set(names)) != len(names):
            raise ValueError(f"Label fields of query [{self.name}] map to duplicate label names: {names}")
        return self

    @property
    def metric_name(self) -> str:
        return f"{QUERY_METRIC_PREFIX}{self.name}"

    @property
    def label_names(self) -> list[str]:
        return [label_name_for(field) for field in self.label_fields]

    @property
    def value_path(self) -> list[PathStep]:
        return parse_path(self.value_field)

    @property
    def label_paths(self) -> list[list[PathStep]]:
        return [parse_path(field) for field in self.label_fields]

    @property
    def interval_seconds(self) -> float:
        return self.interval.total_seconds()


class QueryResult(BaseModel):
    """Outcome of a single query collection cycle."""

    query_name: str
    success: bool
    row_count: int = 0
    error: str | None = None
    timestamp: float = 0.0


class QueryStatus(BaseModel):
    """Runtime status of a query collector."""

    last_run: float | None = None
    last_outcome: Literal["success", "error"] | None = None
    last_error: str | None = None
    last_row_count: int = 0
    run_count: int = 0
    error_count: int = 0


class QueryWithStatus(BaseModel):
    """A query definition together with its current status."""

    name: str
    database: str
    rql: str
    metric_name: str
    label_names: list[str]
    interval_seconds: float
    value_on_error: float
    status: QueryStatus = Field(default_factory=QueryStatus)


class SystemStats(BaseModel):
    """Statistics about the exporter itself."""

    active_queries: int
    scrape_count: int
    scrape_errors: int
    uptime_seconds: float
