"""
Elasticsearch REST Client.

The target-store side of the sync:
- Bulk upsert (``_bulk`` with ``index`` actions, replace semantics by id)
- Index provisioning (create, mapping, delete, refresh)
- Rate limiting and retry logic
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from es_sync.config import DEFAULT_DOC_TYPE, ElasticsearchConfig, Settings


logger = logging.getLogger(__name__)


class ElasticsearchError(Exception):
    """Base exception for Elasticsearch API errors."""

    def __init__(
        self,
        message: str,
        error_type: str | None = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.status = status


class ElasticsearchRateLimitError(ElasticsearchError):
    """Raised when the cluster keeps rejecting requests with 429."""

    def __init__(self, retry_after: float = 1.0) -> None:
        super().__init__(f"Rate limit exceeded. Retry after {retry_after}s", status=429)
        self.retry_after = retry_after


@dataclass
class BulkResult:
    """Result of a bulk upsert."""

    success: bool
    accepted: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    error: str | None = None
    duration_ms: float = 0.0


class ElasticsearchClient:
    """
    Async Elasticsearch REST client.

    Example:
        async with ElasticsearchClient("http://localhost:9200") as es:
            result = await es.bulk_upsert(
                "orders", "_doc", {"1": {"status": "paid"}}
            )
            print(result.accepted)
    """

    def __init__(
        self,
        url: str,
        username: str | None = None,
        password: str | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize client.

        Args:
            url: Cluster base URL
            username: Basic auth user (optional)
            password: Basic auth password (optional)
            api_key: Encoded API key (optional, instead of basic auth)
            timeout: Read timeout in seconds
            max_retries: Attempts per request on 429 / transport errors
            retry_delay: Base backoff delay in seconds
            verify: Verify TLS certificates
            transport: Custom httpx transport (tests)
        """
        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.verify = verify
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"ApiKey {self.api_key}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            auth = None
            if self.username and not self.api_key:
                auth = httpx.BasicAuth(self.username, self.password or "")
            self._client = httpx.AsyncClient(
                base_url=self.url,
                headers=self._get_headers(),
                auth=auth,
                verify=self.verify,
                transport=self._transport,
                timeout=httpx.Timeout(
                    connect=10.0,
                    read=self.timeout,
                    write=30.0,
                    pool=10.0,
                ),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ElasticsearchClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        allow_statuses: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an API request with retry logic.

        Handles:
        - Rate limiting with backoff (429, honoring Retry-After)
        - Transient transport errors with retry
        - Error bodies of the form {"error": {"type": ..., "reason": ...}}
        """
        client = await self._get_client()

        for attempt in range(self.max_retries):
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.TransportError as e:
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                    continue
                raise ElasticsearchError(f"Connection error: {e}") from e

            if response.status_code == 429:
                retry_after = self._retry_after(response)
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(retry_after)
                    continue
                raise ElasticsearchRateLimitError(retry_after)

            if response.status_code >= 400 and response.status_code not in allow_statuses:
                raise _error_from_response(response)

            return response

        raise ElasticsearchError("Max retries exceeded")

    def _retry_after(self, response: httpx.Response) -> float:
        """Seconds to wait from a Retry-After header (delay or HTTP date)."""
        value = response.headers.get("Retry-After")
        if not value:
            return self.retry_delay
        try:
            return max(float(value), 0.0)
        except ValueError:
            pass
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return self.retry_delay
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)

    async def bulk_upsert(
        self,
        index: str,
        doc_type: str,
        documents: dict[str, dict[str, Any]],
    ) -> BulkResult:
        """
        Index documents by id, replacing any existing document.

        Partial success is reported exactly: ``accepted`` counts the items the
        cluster answered with a 2xx status.

        Args:
            index: Target index
            doc_type: Document kind ("_doc" on typeless clusters)
            documents: id -> fields

        Returns:
            BulkResult with the accepted count
        """
        if not documents:
            return BulkResult(success=True)

        lines: list[str] = []
        for doc_id, fields in documents.items():
            action: dict[str, Any] = {"_index": index, "_id": doc_id}
            if doc_type and doc_type != DEFAULT_DOC_TYPE:
                action["_type"] = doc_type
            lines.append(json.dumps({"index": action}))
            lines.append(json.dumps(fields, default=str, ensure_ascii=False))
        body = "\n".join(lines) + "\n"

        start_time = time.time()
        try:
            response = await self._request(
                "POST",
                "/_bulk",
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/x-ndjson"},
            )
        except ElasticsearchError as e:
            return BulkResult(success=False, failed=len(documents), error=str(e))

        duration = (time.time() - start_time) * 1000
        data = response.json()

        result = BulkResult(success=True, duration_ms=duration)
        for item in data.get("items", []):
            outcome = next(iter(item.values()), {})
            status = outcome.get("status", 0)
            if 200 <= status < 300:
                result.accepted += 1
            else:
                result.failed += 1
                reason = outcome.get("error", {})
                if isinstance(reason, dict):
                    reason = reason.get("reason") or reason.get("type")
                result.errors.append(f"{outcome.get('_id')}: {reason}")

        if result.failed:
            logger.warning(
                "bulk to(%s/%s) failed %d of %d, first errors: %s",
                index,
                doc_type,
                result.failed,
                len(documents),
                result.errors[:3],
            )
        return result

    async def index_exists(self, index: str) -> bool:
        response = await self._request("HEAD", f"/{index}", allow_statuses=(404,))
        return response.status_code == 200

    async def create_index(
        self,
        index: str,
        properties: dict[str, dict[str, Any]] | None = None,
    ) -> bool:
        """Create an index with the given field mapping. False if it exists."""
        body: dict[str, Any] = {}
        if properties:
            body["mappings"] = {"properties": properties}
        try:
            await self._request("PUT", f"/{index}", json=body)
        except ElasticsearchError as e:
            if e.error_type == "resource_already_exists_exception":
                return False
            raise
        return True

    async def put_mapping(self, index: str, properties: dict[str, dict[str, Any]]) -> None:
        """Add fields to an existing index mapping."""
        await self._request("PUT", f"/{index}/_mapping", json={"properties": properties})

    async def delete_index(self, index: str) -> bool:
        response = await self._request("DELETE", f"/{index}", allow_statuses=(404,))
        return response.status_code == 200

    async def refresh(self, index: str) -> None:
        await self._request("POST", f"/{index}/_refresh")

    async def get_document(self, index: str, doc_id: str) -> dict[str, Any] | None:
        """Stored fields of a document, or None if missing."""
        response = await self._request("GET", f"/{index}/_doc/{doc_id}", allow_statuses=(404,))
        if response.status_code == 404:
            return None
        return response.json().get("_source")


def _error_from_response(response: httpx.Response) -> ElasticsearchError:
    try:
        data = response.json()
    except ValueError:
        return ElasticsearchError(response.text or "Unknown error", status=response.status_code)

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return ElasticsearchError(
            error.get("reason", "Unknown error"),
            error.get("type"),
            response.status_code,
        )
    return ElasticsearchError(str(error or data), status=response.status_code)


def create_es_client(
    settings: Settings | ElasticsearchConfig,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ElasticsearchClient:
    """Create an ElasticsearchClient from settings."""
    config = settings.elasticsearch if isinstance(settings, Settings) else settings
    return ElasticsearchClient(
        url=config.url,
        username=config.username,
        password=config.password.get_secret_value() if config.password else None,
        api_key=config.api_key.get_secret_value() if config.api_key else None,
        timeout=config.timeout_seconds,
        max_retries=config.max_retries,
        verify=config.verify_certs,
        transport=transport,
    )
