"""CouchDB document store over HTTP.

Both clients speak the same three endpoints:
- ``POST /{db}/_bulk_docs`` for batched writes
- ``GET /{db}/{id}?conflicts=true`` for query by identity, with ``?rev=``
  to read the losing side of a conflict
- ``GET /`` for server information
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from couchodm.core.config import StoreConfig
from couchodm.core.constants import CONFLICT_ERROR
from couchodm.core.exceptions import NetworkFailure, StoreResponseError
from couchodm.models.batch import BatchRequest, BatchResultEntry, RemoteDocument
from couchodm.store.base import AsyncDocumentStore, DocumentStore


logger = logging.getLogger(__name__)


class BulkDocsRow(BaseModel):
    """One row of a ``_bulk_docs`` response."""

    id: str
    rev: str | None = None
    ok: bool | None = None
    error: str | None = None
    reason: str | None = None

    def to_result(self) -> BatchResultEntry:
        """Classify the row as accepted, conflict or rejected."""
        if self.error is None and self.rev:
            return BatchResultEntry.accepted(self.id, self.rev)
        if self.error == CONFLICT_ERROR:
            return BatchResultEntry.conflict(self.id, self.reason)
        reason = f"{self.error}: {self.reason}" if self.reason else str(self.error)
        return BatchResultEntry.rejected(self.id, reason)


class ServerInfo(BaseModel):
    """Response of ``GET /``."""

    couchdb: str = ""
    version: str = ""
    uuid: str | None = None
    vendor: dict[str, Any] = Field(default_factory=dict)


_rows_adapter = TypeAdapter(list[BulkDocsRow])


class _CouchDBProtocol:
    """Request building and response parsing shared by both clients."""

    def __init__(self, config: StoreConfig) -> None:
        self._config = config

    @property
    def config(self) -> StoreConfig:
        return self._config

    def _client_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "base_url": self._config.url.rstrip("/"),
            "timeout": self._config.timeout,
            "headers": {"Accept": "application/json"},
        }
        if self._config.username:
            options["auth"] = (self._config.username, self._config.password or "")
        return options

    def _bulk_path(self) -> str:
        return f"/{self._config.database}/_bulk_docs"

    def _doc_path(self, identity: str) -> str:
        return f"/{self._config.database}/{quote(identity, safe='')}"

    def _doc_params(self, revision: str | None) -> dict[str, str]:
        if revision is not None:
            return {"rev": revision}
        return {"conflicts": "true"}

    def _check_status(self, response: httpx.Response, operation: str) -> None:
        if response.status_code >= 400:
            raise NetworkFailure(
                f"Store returned HTTP {response.status_code} for {operation}",
                operation=operation,
                status_code=response.status_code,
                details={"body": response.text[:200]},
            )

    def _parse_bulk(
        self,
        request: BatchRequest,
        response: httpx.Response,
    ) -> list[BatchResultEntry]:
        self._check_status(response, "bulk_write")
        try:
            rows = _rows_adapter.validate_python(response.json())
        except (ValueError, ValidationError) as e:
            raise StoreResponseError(
                f"Malformed _bulk_docs response: {e}",
                operation="bulk_write",
            ) from e
        logger.debug(f"_bulk_docs returned {len(rows)} row(s) for {len(request)} doc(s)")
        return [row.to_result() for row in rows]

    def _parse_document(self, response: httpx.Response) -> RemoteDocument | None:
        if response.status_code == 404:
            return None
        self._check_status(response, "get")
        try:
            return RemoteDocument.from_document(response.json())
        except (ValueError, KeyError) as e:
            raise StoreResponseError(
                f"Malformed document response: {e}",
                operation="get",
            ) from e

    def _transport_error(self, e: httpx.HTTPError, operation: str) -> NetworkFailure:
        return NetworkFailure(
            f"Store request failed: {e}",
            operation=operation,
            details={"url": self._config.database_url},
        )


class CouchDBStore(_CouchDBProtocol, DocumentStore):
    """Blocking CouchDB client built on ``httpx.Client``."""

    def __init__(
        self,
        config: StoreConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(config or StoreConfig())
        self._client = httpx.Client(transport=transport, **self._client_options())

    def bulk_write(self, request: BatchRequest) -> list[BatchResultEntry]:
        try:
            response = self._client.post(self._bulk_path(), json=request.to_dict())
        except httpx.HTTPError as e:
            raise self._transport_error(e, "bulk_write") from e
        return self._parse_bulk(request, response)

    def get(self, identity: str, revision: str | None = None) -> RemoteDocument | None:
        try:
            response = self._client.get(
                self._doc_path(identity), params=self._doc_params(revision)
            )
        except httpx.HTTPError as e:
            raise self._transport_error(e, "get") from e
        return self._parse_document(response)

    def server_info(self) -> ServerInfo:
        """Get the server welcome document."""
        try:
            response = self._client.get("/")
        except httpx.HTTPError as e:
            raise self._transport_error(e, "server_info") from e
        self._check_status(response, "server_info")
        return ServerInfo.model_validate(response.json())

    def ensure_database(self) -> bool:
        """Create the configured database if missing. Returns True if created."""
        try:
            response = self._client.put(f"/{self._config.database}")
        except httpx.HTTPError as e:
            raise self._transport_error(e, "create_database") from e
        if response.status_code == 412:
            return False
        self._check_status(response, "create_database")
        return True

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "CouchDBStore":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


class AsyncCouchDBStore(_CouchDBProtocol, AsyncDocumentStore):
    """Awaitable CouchDB client built on ``httpx.AsyncClient``."""

    def __init__(
        self,
        config: StoreConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config or StoreConfig())
        self._client = httpx.AsyncClient(transport=transport, **self._client_options())

    async def bulk_write(self, request: BatchRequest) -> list[BatchResultEntry]:
        try:
            response = await self._client.post(self._bulk_path(), json=request.to_dict())
        except httpx.HTTPError as e:
            raise self._transport_error(e, "bulk_write") from e
        return self._parse_bulk(request, response)

    async def get(self, identity: str, revision: str | None = None) -> RemoteDocument | None:
        try:
            response = await self._client.get(
                self._doc_path(identity), params=self._doc_params(revision)
            )
        except httpx.HTTPError as e:
            raise self._transport_error(e, "get") from e
        return self._parse_document(response)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "AsyncCouchDBStore":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
