import pytest

from typeflow.workflows.engine.constants import DebugSessionStatus
from typeflow.workflows.engine.debug import (
    DebugExecutionOptions,
    DebugExecutionResult,
    DebugPreviousState,
    DebugSession,
)
from typeflow.workflows.engine.errors import DebugSessionError

from .conftest import ORG_ID, edge, make_workflow, node


@pytest.fixture
def chain_workflow(repository):
    return repository.add_workflow(
        make_workflow(
            [node("trigger", "trigger"), node("a"), node("b")],
            [edge("trigger", "a"), edge("a", "b")],
        )
    )


def previous_state(result: DebugExecutionResult) -> DebugPreviousState:
    return DebugPreviousState(
        node_results=result.node_results,
        node_outputs=result.node_outputs,
        last_executed_node_id=result.last_executed_node_id,
        paused_at_node_id=result.paused_at_node_id,
        call_stack=result.call_stack,
    )


@pytest.mark.asyncio
async def test_breakpoint_pauses_before_node(engine, chain_workflow):
    options = DebugExecutionOptions(breakpoints={"b"})

    result = await engine.execute_with_debug("wf-1", ORG_ID, options, {"v": 1})

    assert result.success
    assert result.is_paused
    assert result.paused_at_node_id == "b"
    assert result.last_executed_node_id == "a"
    assert result.next_node_ids == []
    assert "b" not in result.node_results
    assert [frame.node_id for frame in result.call_stack] == ["trigger", "a"]


@pytest.mark.asyncio
async def test_resume_after_breakpoint_runs_the_rest(engine, chain_workflow):
    paused = await engine.execute_with_debug(
        "wf-1", ORG_ID, DebugExecutionOptions(breakpoints={"b"}), {"v": 1}
    )

    resumed = await engine.execute_with_debug(
        "wf-1",
        ORG_ID,
        DebugExecutionOptions(
            previous_state=DebugPreviousState(
                node_results=paused.node_results,
                node_outputs=paused.node_outputs,
                last_executed_node_id="a",
            )
        ),
        {"v": 1},
    )

    assert resumed.success
    assert not resumed.is_paused
    assert set(resumed.node_results) == {"trigger", "a", "b"}
    assert [item.json_data for item in resumed.final_output] == [{"v": 1}]


@pytest.mark.asyncio
async def test_breakpoint_paused_on_is_not_hit_again(engine, chain_workflow):
    options = DebugExecutionOptions(breakpoints={"b"})
    paused = await engine.execute_with_debug("wf-1", ORG_ID, options, {})

    resumed = await engine.execute_with_debug(
        "wf-1",
        ORG_ID,
        DebugExecutionOptions(breakpoints={"b"}, previous_state=previous_state(paused)),
        {},
    )

    assert not resumed.is_paused
    assert "b" in resumed.node_results
    assert [frame.node_id for frame in resumed.call_stack] == ["trigger", "a", "b"]


@pytest.mark.asyncio
async def test_stop_at_node_pauses_after_it(engine, chain_workflow):
    options = DebugExecutionOptions(stop_at_node="a")

    result = await engine.execute_with_debug("wf-1", ORG_ID, options)

    assert result.is_paused
    assert result.paused_at_node_id == "a"
    assert "a" in result.node_results
    assert "b" not in result.node_results
    assert result.next_node_ids == ["b"]


@pytest.mark.asyncio
async def test_stop_at_last_node_completes(engine, chain_workflow):
    result = await engine.execute_with_debug("wf-1", ORG_ID, DebugExecutionOptions(stop_at_node="b"))

    assert result.success
    assert not result.is_paused
    assert result.final_output is not None


@pytest.mark.asyncio
async def test_step_through_with_execute_one_node(engine, chain_workflow):
    paused = await engine.execute_with_debug("wf-1", ORG_ID, DebugExecutionOptions(breakpoints={"a"}))
    assert paused.paused_at_node_id == "a"
    assert set(paused.node_results) == {"trigger"}

    step_a = await engine.execute_one_node("wf-1", ORG_ID, "a", previous_state(paused))

    assert step_a.is_paused
    assert step_a.paused_at_node_id == "a"
    assert step_a.last_executed_node_id == "a"
    assert step_a.next_node_ids == ["b"]
    assert set(step_a.node_results) == {"trigger", "a"}

    step_b = await engine.execute_one_node("wf-1", ORG_ID, "b", previous_state(step_a))

    assert step_b.success
    assert not step_b.is_paused
    assert step_b.next_node_ids == []
    assert set(step_b.node_results) == {"trigger", "a", "b"}


@pytest.mark.asyncio
async def test_failure_records_source_location(engine, repository):
    repository.add_workflow(
        make_workflow(
            [node("trigger", "trigger"), node("code", "code", label="Broken", code="x = 1\nraise ValueError('bad')")],
            [edge("trigger", "code")],
        )
    )

    result = await engine.execute_with_debug(
        "wf-1", ORG_ID, DebugExecutionOptions(capture_stack_traces=True)
    )

    assert not result.success
    assert not result.is_paused
    assert result.error == "Code execution failed: ValueError: bad"
    frame = result.call_stack[-1]
    assert frame.node_label == "Broken"
    assert frame.error == result.error
    assert frame.source_location.line == 2
    assert frame.source_location.code == "raise ValueError('bad')"


@pytest.mark.asyncio
async def test_source_location_only_when_requested(engine, repository):
    repository.add_workflow(
        make_workflow(
            [node("trigger", "trigger"), node("code", "code", code="raise ValueError('bad')")],
            [edge("trigger", "code")],
        )
    )

    result = await engine.execute_with_debug("wf-1", ORG_ID, DebugExecutionOptions())

    assert result.call_stack[-1].source_location is None


def test_session_follows_results():
    session = DebugSession(organization_id=ORG_ID, workflow_id="wf-1", breakpoints=["b"])
    assert session.previous_state() is None

    session.apply_result(
        DebugExecutionResult(success=True, is_paused=True, paused_at_node_id="b", last_executed_node_id="a")
    )
    assert session.status == DebugSessionStatus.PAUSED
    assert session.next_step_node() == "b"
    assert session.previous_state().paused_at_node_id == "b"

    session.apply_result(DebugExecutionResult(success=True, last_executed_node_id="b"))
    assert session.status == DebugSessionStatus.COMPLETED
    assert session.is_finished


def test_finished_session_cannot_be_resumed():
    session = DebugSession(organization_id=ORG_ID, workflow_id="wf-1")
    session.apply_result(DebugExecutionResult(success=False, error="boom"))

    assert session.status == DebugSessionStatus.TERMINATED
    with pytest.raises(DebugSessionError):
        session.complete()
    with pytest.raises(DebugSessionError):
        session.apply_result(DebugExecutionResult(success=True))


def test_terminate_is_idempotent():
    session = DebugSession(organization_id=ORG_ID, workflow_id="wf-1")
    session.terminate()
    session.terminate()
    assert session.status == DebugSessionStatus.TERMINATED
