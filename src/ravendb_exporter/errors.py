class ExporterError(Exception):
    """Base class for exporter errors."""


class TransportError(ExporterError):
    """A request to the RavenDB server failed or returned a non-success status."""


class ParseError(ExporterError):
    """A response could not be decoded or lacks a required field."""


class ConfigError(ExporterError):
    """A query definition file is malformed or a definition is invalid."""
