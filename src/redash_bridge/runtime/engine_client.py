"""
HTTP client for the Redash query engine.

Wraps the three upstream calls used by the job poller:
    POST /api/queries/{query_id}/results
    GET  /api/jobs/{job_id}
    GET  /api/query_results/{result_id}.json
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx

from ..core.errors import UnexpectedUpstreamShape, UpstreamHTTPError


def _segment(value: Any) -> str:
    """Escape a value for use as one URL path segment."""
    return quote(str(value), safe="")


class EngineClient:
    """
    HTTP client for Redash API calls.

    Usage:
        client = EngineClient("https://redash.example.com")
        envelope = await client.submit("35173", {"org": "acme.com"}, credential="...")
        ...
        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize engine client.

        Args:
            base_url: Redash base URL
            timeout: Per-request HTTP timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _auth(credential: str) -> dict[str, str]:
        return {"Authorization": f"Key {credential}"}

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        credential: str,
        json: Optional[dict] = None,
    ) -> Any:
        client = await self._get_client()
        try:
            response = await client.request(method, path, headers=self._auth(credential), json=json)
        except httpx.RequestError as e:
            raise UpstreamHTTPError(operation=operation, status_code=0, body=str(e)) from e

        if not response.is_success:
            raise UpstreamHTTPError(
                operation=operation,
                status_code=response.status_code,
                body=response.text,
            )
        try:
            return response.json()
        except ValueError as e:
            raise UnexpectedUpstreamShape(response.text) from e

    async def submit(
        self,
        query_id: str,
        parameters: dict[str, Any],
        credential: str,
        max_age: Optional[int] = None,
    ) -> Any:
        """
        Request results for a query.

        Args:
            query_id: Redash query id
            parameters: Query parameters
            credential: Redash API key
            max_age: Maximum acceptable cached result age in seconds; omitted when None

        Returns:
            Decoded JSON envelope: either {"query_result": ...} or {"job": {...}}
        """
        body: dict[str, Any] = {"parameters": parameters}
        if max_age is not None:
            body["max_age"] = max_age

        return await self._request(
            "request Redash results",
            "POST",
            f"/api/queries/{_segment(query_id)}/results",
            credential,
            json=body,
        )

    async def get_job(self, job_id: str, credential: str) -> Any:
        """Fetch the current status of a job."""
        return await self._request(
            f"poll job {job_id}",
            "GET",
            f"/api/jobs/{_segment(job_id)}",
            credential,
        )

    async def get_result(self, result_id: Any, credential: str) -> Any:
        """Fetch a completed query result by id."""
        return await self._request(
            f"fetch query_results/{result_id}",
            "GET",
            f"/api/query_results/{_segment(result_id)}.json",
            credential,
        )
