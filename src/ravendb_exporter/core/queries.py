from pathlib import Path

import yaml
from pydantic import ValidationError

from ravendb_exporter.config.logging import get_logger
from ravendb_exporter.errors import ConfigError
from ravendb_exporter.models import QueryDefinition

logger = get_logger(__name__)

QUERY_FILE_SUFFIX = ".yml"


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(detail["msg"].removeprefix("Value error, ") for detail in error.errors())


def load_query_file(path: Path) -> list[QueryDefinition]:
    """
    Load and validate the query definitions of a single file.

    Raises:
        ConfigError: If the file cannot be read or decoded, or a definition is invalid
    """
    logger.info(f"Loading {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read query file {path}: {e}") from e

    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError(f"Query file {path} must contain a list of queries")

    queries = []
    for position, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ConfigError(f"Entry {position} in {path} is not a mapping")
        try:
            queries.append(QueryDefinition.model_validate(entry))
        except ValidationError as e:
            raise ConfigError(f"{path}: {_format_validation_error(e)}") from e
    return queries


def load_queries(directory: str | Path | None) -> list[QueryDefinition]:
    """
    Load every ``*.yml`` query file in ``directory`` (not recursive).

    Files are read in name order. The whole load fails on the first problem,
    nothing partial is returned.

    Args:
        directory: Directory holding query files. Empty or None disables queries.

    Raises:
        ConfigError: On unreadable directories, invalid files or duplicate query names
    """
    if not directory:
        logger.info("Queries directory not configured")
        return []

    path = Path(directory)
    logger.info(f"Load queries from directory {path}")
    try:
        files = sorted(p for p in path.iterdir() if p.is_file() and p.name.endswith(QUERY_FILE_SUFFIX))
    except OSError as e:
        raise ConfigError(f"Cannot read queries directory {path}: {e}") from e

    result: list[QueryDefinition] = []
    seen: dict[str, Path] = {}
    for file in files:
        for query in load_query_file(file):
            if query.name in seen:
                raise ConfigError(f"Duplicate query name [{query.name}] in {file} (first defined in {seen[query.name]})")
            seen[query.name] = file
            result.append(query)

    logger.info(f"Loaded {len(result)} queries from {len(files)} file(s)")
    return result
