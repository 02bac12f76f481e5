import json
import ssl
from typing import Any
from urllib.parse import quote

import httpx

from ravendb_exporter.config.logging import get_logger
from ravendb_exporter.config.settings import RavenDBSettings
from ravendb_exporter.errors import ParseError, TransportError

logger = get_logger(__name__)

QUERY_PAGE_SIZE = 101


class RavenClient:
    """Thin async HTTP client for the RavenDB REST endpoints the exporter reads."""

    def __init__(self, http_client: httpx.AsyncClient):
        """
        Initialize the client.

        Args:
            http_client: Configured httpx client with ``base_url`` pointing at the server
        """
        self.http_client = http_client

    @classmethod
    def from_settings(cls, config: RavenDBSettings) -> "RavenClient":
        verify: ssl.SSLContext | bool = True
        if config.ca_cert or config.use_auth:
            verify = ssl.create_default_context(cafile=config.ca_cert)
            if config.use_auth:
                verify.load_cert_chain(config.client_cert, config.client_key)

        http_client = httpx.AsyncClient(
            base_url=config.url,
            timeout=config.timeout,
            verify=verify,
        )
        logger.info(f"RavenDB client configured for {config.url} (auth: {config.use_auth})")
        return cls(http_client)

    async def get(self, path: str, params: dict[str, Any] | None = None) -> bytes:
        """
        Issue a GET request and return the raw body.

        Raises:
            TransportError: On connection failures, timeouts and non-2xx responses
        """
        try:
            response = await self.http_client.get(path, params=params)
        except httpx.HTTPError as e:
            raise TransportError(f"GET {path} failed: {e!r}") from e

        if response.is_error:
            raise TransportError(f"GET {path} returned HTTP {response.status_code}")
        return response.content

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        Issue a GET request and decode the JSON body.

        Raises:
            TransportError: If the request fails
            ParseError: If the body is not valid JSON
        """
        body = await self.get(path, params=params)
        try:
            return json.loads(body)
        except ValueError as e:
            raise ParseError(f"GET {path} returned invalid JSON: {e}") from e

    async def query(self, database: str, rql: str) -> Any:
        """Run an RQL query against ``database`` and return the decoded response."""
        path = f"/databases/{quote(database, safe='')}/queries"
        params = {
            "query": rql,
            "start": 0,
            "pageSize": QUERY_PAGE_SIZE,
            "metadataOnly": "false",
        }
        return await self.get_json(path, params=params)

    async def aclose(self) -> None:
        await self.http_client.aclose()
