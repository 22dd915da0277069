import logging
from typing import Any, Dict, Optional

import httpx

from typeflow.workflows.engine.constants import ExecutionConfig

logger = logging.getLogger(__name__)


class HTTPRuntime:
    """Handles network requests for the workflow engine."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, timeout_ms: Optional[int] = None):
        # A custom transport lets tests serve requests in-process
        self.transport = transport
        self.timeout_ms = timeout_ms or ExecutionConfig.DEFAULT_HTTP_TIMEOUT_MS

    @staticmethod
    def parse_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        content: Optional[str] = None,
        json_body: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout_ms: Optional[int] = None,
        raise_for_status: bool = False,
    ) -> Dict[str, Any]:
        """Performs an asynchronous HTTP request; returns statusCode, headers and parsed data."""
        timeout = (timeout_ms or self.timeout_ms) / 1000
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=timeout) as client:
                response = await client.request(
                    method=method.upper(),
                    url=url,
                    headers=headers,
                    content=content,
                    json=json_body,
                    params=params,
                )
        except httpx.HTTPError as e:
            logger.error(f"HTTP runtime request failed: {e!r}")
            raise RuntimeError(f"Network request failed: {str(e) or type(e).__name__}") from e

        if raise_for_status and response.is_error:
            raise RuntimeError(f"HTTP {response.status_code}: {response.reason_phrase}")

        return {
            "statusCode": response.status_code,
            "headers": dict(response.headers),
            "data": self.parse_body(response),
        }
