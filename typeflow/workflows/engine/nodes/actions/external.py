"""
External node types resolved through the node loader.

Programmatic types get an execute-functions object (`ExecuteFunctions`)
and return items. Declarative types are turned into one HTTP request per
input item from `requestDefaults` plus the routing of each property.
"""

import base64
import copy
import inspect
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem, make_item
from typeflow.workflows.engine.errors import NodeConfigurationError, NodeExecutionError, UnknownNodeTypeError
from typeflow.workflows.engine.expressions.resolver import ExpressionResolver
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.loader import LoadedNodeType
from typeflow.workflows.engine.nodes.registry import NodeRegistry

logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")


def credential_config(credential: Any) -> Dict[str, Any]:
    """Settings of a credential client, or the credential itself when it is a plain mapping."""
    if isinstance(credential, dict):
        return credential
    config = getattr(credential, "config", None)
    return config if isinstance(config, dict) else {}


def apply_credentials(options: Dict[str, Any], credential: Dict[str, Any]) -> None:
    if not credential:
        return
    if credential.get("apiKey"):
        options.setdefault("qs", {})["api_key"] = str(credential["apiKey"])
    token = credential.get("token") or credential.get("accessToken")
    if token:
        options.setdefault("headers", {})["Authorization"] = f"Bearer {token}"
    if credential.get("username") and credential.get("password"):
        raw = f"{credential['username']}:{credential['password']}".encode()
        options.setdefault("headers", {})["Authorization"] = f"Basic {base64.b64encode(raw).decode()}"


def flatten_result(result: Any) -> List[ExecutionItem]:
    """Items from `[[items] per output]`, `[items]` or a single dict."""
    if result is None:
        return []
    if isinstance(result, dict):
        result = [result]
    flat: List[Any] = []
    for entry in result:
        if isinstance(entry, (list, tuple)):
            flat.extend(entry)
        else:
            flat.append(entry)
    items = []
    for entry in flat:
        if isinstance(entry, ExecutionItem):
            items.append(entry)
        elif isinstance(entry, dict) and "json" in entry:
            items.append(make_item(entry.get("json")))
        elif isinstance(entry, dict):
            items.append(make_item(entry))
        else:
            items.append(make_item({"value": entry}))
    return items


async def send_request(ctx: NodeContext, options: Dict[str, Any]) -> Any:
    """Perform a request described by node-style options (`url`, `baseURL`, `qs`, `body`, `json`, ...)."""
    method = (options.get("method") or "GET").upper()
    url = options.get("url") or ""
    base_url = options.get("baseURL") or options.get("base_url")
    if base_url:
        url = urljoin(base_url.rstrip("/") + "/", url.lstrip("/")) if url else base_url

    headers = dict(options.get("headers") or {})
    json_body = None
    content = None
    body = options.get("body")
    if body and method in BODY_METHODS:
        if options.get("json", True) is not False:
            json_body = body
        else:
            content = body if isinstance(body, (str, bytes)) else str(body)

    response = await ctx.engine.http_runtime.request(
        method,
        url,
        headers=headers,
        content=content,
        json_body=json_body,
        params=options.get("qs") or None,
        timeout_ms=options.get("timeout"),
        raise_for_status=not options.get("ignoreHttpStatusErrors", False),
    )
    if options.get("returnFullResponse"):
        return {"statusCode": response["statusCode"], "headers": response["headers"], "body": response["data"]}
    return response["data"]


class RequestHelpers:
    """`helpers` of the execute functions."""

    def __init__(self, functions: "ExecuteFunctions"):
        self._functions = functions

    async def request(self, options: Dict[str, Any]) -> Any:
        return await send_request(self._functions.ctx, options)

    http_request = request

    async def request_with_authentication(self, credential_type: str, options: Dict[str, Any]) -> Any:
        options = copy.deepcopy(options)
        apply_credentials(options, await self._functions.get_credentials(credential_type))
        return await send_request(self._functions.ctx, options)

    http_request_with_authentication = request_with_authentication


class ExecuteFunctions:
    """The context object a programmatic node's `execute` receives."""

    def __init__(self, ctx: NodeContext, node_type: LoadedNodeType, items: List[ExecutionItem], parameters: Dict[str, Any]):
        self.ctx = ctx
        self.node_type = node_type
        self.parameters = parameters
        self._input = [{"json": item.json_data} for item in items]
        self.helpers = RequestHelpers(self)

    def get_input_data(self, input_index: int = 0) -> List[Dict[str, Any]]:
        return self._input

    def get_node_parameter(self, name: str, item_index: int = 0, fallback: Any = None) -> Any:
        value = self.parameters.get(name)
        return fallback if value is None else value

    async def get_credentials(self, credential_type: str) -> Dict[str, Any]:
        credentials = await self.ctx.get_credentials()
        return credential_config(credentials.get(credential_type))

    def get_node(self) -> Dict[str, Any]:
        description = self.node_type.description
        return {
            "id": self.ctx.node.id,
            "name": description.defaults.get("name") or description.display_name,
            "type": description.name,
            "parameters": self.parameters,
        }

    def get_workflow(self) -> Dict[str, Any]:
        return {"id": self.ctx.workflow.id, "name": self.ctx.workflow.name}

    def get_mode(self) -> str:
        return "manual"

    def continue_on_fail(self) -> bool:
        return False


class DeclarativeRequestBuilder:
    """Builds request options for one item from property routing."""

    def __init__(self, node_type: LoadedNodeType, parameters: Dict[str, Any]):
        self.description = node_type.description
        self.parameters = parameters

    def build(self, item: ExecutionItem, item_index: int) -> Dict[str, Any]:
        defaults = self.description.request_defaults
        options: Dict[str, Any] = {
            "baseURL": defaults.get("baseURL"),
            "url": defaults.get("url") or "",
            "method": defaults.get("method") or "GET",
            "headers": dict(defaults.get("headers") or {}),
            "qs": dict(defaults.get("qs") or {}),
            "json": defaults.get("json", True) is not False,
        }

        for prop in self.description.properties:
            value = self.parameters.get(prop.get("name"))
            if prop.get("routing") and value is not None:
                self._apply_routing(options, prop["routing"], value, item, item_index)
            if prop.get("type") == "options":
                for option in prop.get("options") or []:
                    if isinstance(option, dict) and option.get("value") == value and option.get("routing"):
                        self._apply_routing(options, option["routing"], value, item, item_index)
                        break
        return options

    def _apply_routing(self, options: Dict[str, Any], routing: Dict[str, Any], value: Any, item: ExecutionItem, item_index: int) -> None:
        request = routing.get("request")
        if not request:
            return
        resolver = ExpressionResolver(
            {"value": value, "json": item.json_data, "itemIndex": item_index, "parameter": self.parameters}
        )

        def _resolve(obj: Any) -> Any:
            if isinstance(obj, str):
                return resolver.evaluate_expression(obj)
            if isinstance(obj, list):
                return [_resolve(entry) for entry in obj]
            if isinstance(obj, dict):
                return {key: _resolve(entry) for key, entry in obj.items()}
            return obj

        if request.get("method"):
            options["method"] = request["method"]
        if request.get("url"):
            options["url"] = _resolve(request["url"])
        for key, header in (request.get("headers") or {}).items():
            options["headers"][key] = _resolve(header)
        for key, qs_value in (request.get("qs") or {}).items():
            options["qs"][key] = _resolve(qs_value)
        if "body" in request:
            options["body"] = _resolve(request["body"])


@NodeRegistry.register
class ExternalNode(BaseNode):
    kinds = (NodeKind.EXTERNAL,)

    def resolve_type_name(self, ctx: NodeContext) -> str:
        if ctx.node.type == NodeKind.EXTERNAL.value:
            return ctx.node.config.get("nodeType") or ctx.node.type
        return ctx.node.type

    def resolve_parameters(self, ctx: NodeContext) -> Dict[str, Any]:
        parameters = ctx.node.config.get("parameters")
        return parameters if isinstance(parameters, dict) else dict(ctx.node.config)

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        type_name = self.resolve_type_name(ctx)
        loader = ctx.engine.node_loader
        if loader is None or not loader.has_node(type_name):
            raise UnknownNodeTypeError(type_name)

        node_type = loader.get_node(type_name)
        parameters = self.resolve_parameters(ctx)

        if node_type.validate is not None:
            validation = node_type.validate(parameters)
            if inspect.isawaitable(validation):
                validation = await validation
            if not (validation or {}).get("valid", True):
                errors = (validation or {}).get("errors") or ["Validation failed"]
                raise NodeConfigurationError(f"Configuration validation failed: {', '.join(errors)}")

        if node_type.execute is not None:
            return await self._execute_programmatic(ctx, node_type, items, parameters)
        if node_type.has_routing:
            return await self._execute_declarative(ctx, node_type, items, parameters)
        raise NodeConfigurationError(f"Node type {type_name} has neither execute nor routing")

    async def _execute_programmatic(
        self, ctx: NodeContext, node_type: LoadedNodeType, items: List[ExecutionItem], parameters: Dict[str, Any]
    ) -> List[ExecutionItem]:
        functions = ExecuteFunctions(ctx, node_type, items, parameters)
        try:
            result = node_type.execute(functions)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error(f"Node {node_type.description.name} execution failed: {e}")
            raise NodeExecutionError(f"Node execution failed: {e}") from e
        return flatten_result(result)

    async def _execute_declarative(
        self, ctx: NodeContext, node_type: LoadedNodeType, items: List[ExecutionItem], parameters: Dict[str, Any]
    ) -> List[ExecutionItem]:
        builder = DeclarativeRequestBuilder(node_type, parameters)
        credential: Optional[Dict[str, Any]] = None
        if node_type.description.credentials:
            credentials = await ctx.get_credentials()
            credential = credential_config(credentials.get(node_type.description.credentials[0].get("name")))

        results = []
        for index, item in enumerate(items):
            try:
                options = builder.build(item, index)
                if credential:
                    apply_credentials(options, credential)
                response = await send_request(ctx, options)
                results.append(make_item(response if isinstance(response, dict) else {"data": response}))
            except Exception as e:
                results.append(make_item({"error": True, "message": str(e), "originalItem": item.json_data}))
        return results
