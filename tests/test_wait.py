import pytest

from typeflow.config import settings
from typeflow.workflows.engine.nodes.configs import WaitConfig
from typeflow.workflows.engine.nodes.logic import wait as wait_module
from typeflow.workflows.engine.nodes.logic.wait import wait_seconds

from .conftest import ORG_ID, edge, make_workflow, node, outputs


@pytest.mark.parametrize(
    "config, expected",
    [
        ({"waitTime": 5}, 5),
        ({"waitTime": 2, "unit": "minutes"}, 120),
        ({"waitTime": 1.5, "unit": "hours"}, 5400),
        ({"waitTime": 1, "unit": "days"}, 86400),
        ({"waitTime": 3, "unit": "fortnights"}, 3),
        ({}, 1),
    ],
)
def test_wait_seconds_converts_units(config, expected):
    assert wait_seconds(WaitConfig.model_validate(config), max_seconds=10**6) == expected


def test_wait_seconds_is_capped():
    config = WaitConfig.model_validate({"waitTime": 10, "unit": "minutes"})
    assert wait_seconds(config, settings.WAIT_NODE_MAX_SECONDS) == settings.WAIT_NODE_MAX_SECONDS
    assert wait_seconds(config, 30) == 30


def test_negative_wait_is_zero():
    assert wait_seconds(WaitConfig.model_validate({"waitTime": -4}), max_seconds=60) == 0


@pytest.fixture
def slept(monkeypatch):
    calls = []

    async def fake_sleep(seconds):
        calls.append(seconds)

    monkeypatch.setattr(wait_module.asyncio, "sleep", fake_sleep)
    return calls


@pytest.mark.asyncio
async def test_wait_node_passes_input_through(engine, repository, slept):
    repository.add_workflow(
        make_workflow(
            [node("trigger", "trigger"), node("pause", "wait", waitTime=2, unit="minutes"), node("after")],
            [edge("trigger", "pause"), edge("pause", "after")],
        )
    )

    result = await engine.execute_workflow("wf-1", ORG_ID, {"order": 7})

    assert result.success, result.error
    assert slept == [120]
    assert outputs(result, "pause") == [{"order": 7}]
    assert outputs(result, "after") == [{"order": 7}]


@pytest.mark.asyncio
async def test_wait_node_never_sleeps_past_the_cap(engine, repository, slept, monkeypatch):
    monkeypatch.setattr(settings, "WAIT_NODE_MAX_SECONDS", 5)
    repository.add_workflow(
        make_workflow(
            [node("trigger", "trigger"), node("pause", "wait", waitTime=3, unit="days")],
            [edge("trigger", "pause")],
        )
    )

    result = await engine.execute_workflow("wf-1", ORG_ID, {"order": 7})

    assert result.success, result.error
    assert slept == [5]
