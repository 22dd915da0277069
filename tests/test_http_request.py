import json

import httpx
import pytest

from typeflow.workflows.engine.runtime.http import HTTPRuntime

from .conftest import ORG_ID, edge, make_workflow, node, outputs


def http_workflow(repository, **config):
    return repository.add_workflow(
        make_workflow(
            [
                node("trigger", "trigger"),
                node("split", "splitOut", fieldToSplit="users", includeOtherFields=False),
                node("http", "httpRequest", **config),
            ],
            [edge("trigger", "split"), edge("split", "http")],
        )
    )


def engine_with(make_engine, handler):
    return make_engine(http_runtime=HTTPRuntime(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_one_request_per_item(make_engine, repository):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        user_id = int(request.url.path.rsplit("/", 1)[-1])
        return httpx.Response(200, json={"id": user_id, "name": f"user-{user_id}"})

    http_workflow(repository, url="https://api.test/users/{{id}}")
    engine = engine_with(make_engine, handler)

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"id": 1}, {"id": 2}]})

    assert result.success
    assert seen == ["https://api.test/users/1", "https://api.test/users/2"]
    items = outputs(result, "http")
    assert [item["statusCode"] for item in items] == [200, 200]
    assert [item["data"] for item in items] == [{"id": 1, "name": "user-1"}, {"id": 2, "name": "user-2"}]


@pytest.mark.asyncio
async def test_failed_request_becomes_error_item(make_engine, repository):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/2"):
            raise httpx.ConnectError("boom", request=request)
        return httpx.Response(200, json={"ok": True})

    http_workflow(repository, url="https://api.test/users/{{id}}")
    engine = engine_with(make_engine, handler)

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"id": 1}, {"id": 2}]})

    assert result.success
    first, second = outputs(result, "http")
    assert first["data"] == {"ok": True}
    assert second == {"error": "Network request failed: boom", "input": {"id": 2}}


@pytest.mark.asyncio
async def test_error_status_is_returned_without_retry(make_engine, repository):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="oops")

    http_workflow(repository, url="https://api.test/users/{{id}}")
    engine = engine_with(make_engine, handler)

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"id": 1}]})

    item = outputs(result, "http")[0]
    assert item["statusCode"] == 500
    assert item["data"] == "oops"


@pytest.mark.asyncio
async def test_retries_on_service_unavailable(make_engine, repository):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"ok": True})

    http_workflow(
        repository,
        url="https://api.test/users/{{id}}",
        retry={"maxAttempts": 3, "baseDelay": 0, "maxDelay": 0},
    )
    engine = engine_with(make_engine, handler)

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"id": 1}]})

    assert len(calls) == 2
    assert outputs(result, "http")[0]["data"] == {"ok": True}


@pytest.mark.asyncio
async def test_retries_exhausted_gives_error_item(make_engine, repository):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    http_workflow(
        repository,
        url="https://api.test/users/{{id}}",
        retry={"maxAttempts": 2, "baseDelay": 0, "maxDelay": 0},
    )
    engine = engine_with(make_engine, handler)

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"id": 1}]})

    assert len(calls) == 2
    assert outputs(result, "http") == [{"error": "HTTP 503", "input": {"id": 1}}]


@pytest.mark.asyncio
async def test_post_body_placeholders_are_json(make_engine, repository):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        captured["content_type"] = request.headers["content-type"]
        captured["method"] = request.method
        return httpx.Response(201, json={"created": True})

    http_workflow(
        repository,
        url="https://api.test/users",
        method="post",
        body='{"id": {{id}}, "name": {{name}}}',
        bodyType="json",
    )
    engine = engine_with(make_engine, handler)

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"id": 7, "name": "Ada"}]})

    assert captured == {"body": {"id": 7, "name": "Ada"}, "content_type": "application/json", "method": "POST"}
    assert outputs(result, "http")[0]["statusCode"] == 201


@pytest.mark.asyncio
async def test_missing_url_fails_the_node(engine, repository):
    http_workflow(repository)

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"id": 1}]})

    assert not result.success
    assert result.error == "HTTP Request node requires a URL"
