import json
import logging
from typing import Any, Dict, List, Optional

from typeflow.config import settings
from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem, make_item
from typeflow.workflows.engine.error_handler import RetryHandler
from typeflow.workflows.engine.errors import NodeConfigurationError
from typeflow.workflows.engine.expressions.resolver import substitute_item_placeholders
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import HttpRequestConfig
from typeflow.workflows.engine.nodes.registry import NodeRegistry

logger = logging.getLogger(__name__)

NO_BODY_METHODS = ("GET", "HEAD")


def _is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


@NodeRegistry.register
class HttpRequestNode(BaseNode):
    """
    One request per input item.

    `{{key}}` placeholders in the URL take the item's top-level values, in the
    body their JSON form. A failing request does not fail the node: the item
    becomes `{error, input}` instead.
    """
    kinds = (NodeKind.HTTP_REQUEST,)
    config_model = HttpRequestConfig

    def build_request(self, config: HttpRequestConfig, item: ExecutionItem) -> Dict[str, Any]:
        method = (config.method or "GET").upper()
        url = substitute_item_placeholders(config.url, item.json_data)
        headers = dict(config.headers)

        body: Optional[str] = None
        if config.body and method not in NO_BODY_METHODS:
            raw = config.body if isinstance(config.body, str) else json.dumps(config.body)
            body = substitute_item_placeholders(raw, item.json_data, as_json=True)
            if config.body_type == "json" and "Content-Type" not in headers:
                headers["Content-Type"] = "application/json"

        return {"method": method, "url": url, "headers": headers, "content": body}

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        config = self.parse_config(ctx.node)
        if not config.url:
            raise NodeConfigurationError("HTTP Request node requires a URL")

        runtime = ctx.engine.http_runtime
        timeout_ms = config.timeout or settings.HTTP_REQUEST_TIMEOUT_MS
        retry = config.retry if config.retry and config.retry.max_attempts > 1 else None

        results = []
        for item in items:
            request = self.build_request(config, item)

            async def _send() -> Dict[str, Any]:
                response = await runtime.request(**request, timeout_ms=timeout_ms)
                if retry and _is_retryable_status(response["statusCode"]):
                    raise RuntimeError(f"HTTP {response['statusCode']}")
                return response

            try:
                if retry:
                    response, attempts = await RetryHandler.execute_with_retry(
                        _send,
                        max_attempts=retry.max_attempts,
                        base_delay=retry.base_delay,
                        max_delay=retry.max_delay,
                    )
                    if attempts > 1:
                        logger.info(f"{request['method']} {request['url']} succeeded after {attempts} attempts")
                else:
                    response = await _send()
                results.append(make_item(response))
            except Exception as e:
                logger.warning(f"{request['method']} {request['url']} failed: {e}")
                results.append(make_item({"error": str(e) or type(e).__name__, "input": item.json_data}))
        return results
