import pytest

from .conftest import ORG_ID, edge, make_workflow, node, outputs

DOUBLE = "return {'doubled': _json['json']['n'] * 2}"


def add_child(repository, nodes=None, edges=None):
    if nodes is None:
        nodes = [node("trigger", "trigger"), node("calc", "code", code=DOUBLE)]
        edges = [edge("trigger", "calc")]
    repository.add_workflow(make_workflow(nodes, edges, workflow_id="wf-child"))


def add_parent(repository, **config):
    repository.add_workflow(
        make_workflow(
            [
                node("trigger", "trigger"),
                node("split", "splitOut", fieldToSplit="users", includeOtherFields=False),
                node("run", "executeWorkflow", **config),
            ],
            [edge("trigger", "split"), edge("split", "run")],
        )
    )


@pytest.mark.asyncio
async def test_once_mode_passes_all_items(engine, repository):
    add_child(repository)
    add_parent(repository, workflowId="wf-child")

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"n": 1}, {"n": 5}]})

    assert result.success, result.error
    assert outputs(result, "run") == [{"doubled": 2}]


@pytest.mark.asyncio
async def test_once_mode_sees_every_item(engine, repository):
    add_child(repository, [node("trigger", "trigger"), node("end")], [edge("trigger", "end")])
    add_parent(repository, workflowId="wf-child")

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"n": 1}, {"n": 5}]})

    [child_output] = outputs(result, "run")
    assert child_output["items"] == [{"json": {"n": 1}}, {"json": {"n": 5}}]
    assert child_output["json"] == {"n": 1}


@pytest.mark.asyncio
async def test_foreach_mode_runs_per_item(engine, repository):
    add_child(repository)
    add_parent(repository, workflowId="wf-child", mode="foreach")

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"n": 1}, {"n": 5}]})

    assert outputs(result, "run") == [{"doubled": 2}, {"doubled": 10}]


@pytest.mark.asyncio
async def test_failed_child_fails_the_node(engine, repository):
    add_child(
        repository,
        [node("trigger", "trigger"), node("fail", "throwError", errorMessage="child broke")],
        [edge("trigger", "fail")],
    )
    add_parent(repository, workflowId="wf-child")

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"n": 1}]})

    assert not result.success
    assert result.error == "Subworkflow failed: [Error] child broke"


@pytest.mark.asyncio
async def test_failed_child_in_foreach_names_the_item(engine, repository):
    add_child(
        repository,
        [node("trigger", "trigger"), node("fail", "throwError", errorMessage="child broke")],
        [edge("trigger", "fail")],
    )
    add_parent(repository, workflowId="wf-child", mode="foreach")

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"n": 1}]})

    assert result.error == "Subworkflow failed for item 1: [Error] child broke"


@pytest.mark.asyncio
async def test_missing_child_workflow(engine, repository):
    add_parent(repository, workflowId="wf-gone")

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"n": 1}]})

    assert result.error == "Subworkflow execution failed: Workflow not found"


@pytest.mark.asyncio
async def test_workflow_id_is_required(engine, repository):
    add_parent(repository)

    result = await engine.execute_workflow("wf-1", ORG_ID, {"users": [{"n": 1}]})

    assert result.error == "No workflow configured for Execute Workflow node"
