import math

import pytest

from typeflow.workflows.engine.constants import FanInMode
from typeflow.workflows.engine.errors import CyclicGraphError, NoTriggerNodeError, NodeNotFoundError
from typeflow.workflows.engine.graph import WorkflowGraph
from typeflow.workflows.engine.scheduler import ExecutionScheduler

from .conftest import edge, make_workflow, node


def build_graph(nodes, edges) -> WorkflowGraph:
    workflow = make_workflow(nodes, edges)
    return WorkflowGraph(workflow.nodes, workflow.connections)


@pytest.fixture
def chain():
    return build_graph(
        [node("trigger", "trigger"), node("a"), node("b"), node("c"), node("d")],
        [edge("trigger", "a"), edge("a", "b"), edge("b", "c")],
    )


def test_predecessors_are_transitive(chain):
    assert chain.predecessors("c") == {"trigger", "a", "b"}
    assert chain.predecessors("trigger") == set()


def test_descendants(chain):
    assert chain.descendants("a") == {"b", "c"}
    assert chain.descendants("d") == set()


def test_distance(chain):
    assert chain.distance("trigger", "c") == 3
    assert chain.distance("a", "a") == 0
    assert chain.distance("c", "trigger") == math.inf


def test_topological_order_keeps_execution_order_for_ties():
    graph = build_graph(
        [node("trigger", "trigger"), node("x"), node("y"), node("z")],
        [edge("trigger", "y"), edge("trigger", "x"), edge("x", "z"), edge("y", "z")],
    )
    assert graph.topological_order() == ["trigger", "x", "y", "z"]


def test_cycle_is_reported_with_its_nodes():
    graph = build_graph(
        [node("trigger", "trigger"), node("a"), node("b")],
        [edge("trigger", "a"), edge("a", "b"), edge("b", "a")],
    )
    with pytest.raises(CyclicGraphError) as exc_info:
        graph.topological_order()
    assert exc_info.value.node_ids == ["a", "b"]
    assert graph.detect_cycles() == ["a", "b"]


def test_find_trigger_prefers_trigger_kinds():
    graph = build_graph([node("a"), node("hook", "webhook")], [])
    assert graph.find_trigger().id == "hook"


def test_find_trigger_falls_back_to_first_node():
    graph = build_graph([node("a"), node("b")], [])
    assert graph.find_trigger().id == "a"


def test_find_trigger_on_empty_graph():
    with pytest.raises(NoTriggerNodeError):
        build_graph([], []).find_trigger()


def test_unknown_node():
    with pytest.raises(NodeNotFoundError):
        build_graph([node("a")], []).get_node("missing")


def test_edges_to_unknown_nodes_are_ignored():
    graph = build_graph([node("a"), node("b")], [edge("a", "b"), edge("a", "ghost")])
    assert graph.successors("a") == ["b"]


def _drain(scheduler: ExecutionScheduler):
    order = []
    while True:
        node_id = scheduler.next_ready()
        if node_id is None:
            return order
        order.append(node_id)
        scheduler.mark_done(node_id)


@pytest.fixture
def uneven_diamond():
    # m has one short and one long path from the trigger
    return build_graph(
        [node("trigger", "trigger"), node("a"), node("b"), node("b2"), node("m")],
        [edge("trigger", "a"), edge("trigger", "b"), edge("a", "m"), edge("b", "b2"), edge("b2", "m")],
    )


def test_gated_scheduler_waits_for_every_predecessor(uneven_diamond):
    scope = set(uneven_diamond.node_map)
    order = _drain(ExecutionScheduler(uneven_diamond, scope, FanInMode.GATED))
    assert order == ["trigger", "a", "b", "b2", "m"]


def test_eager_scheduler_releases_on_first_predecessor(uneven_diamond):
    scope = set(uneven_diamond.node_map)
    order = _drain(ExecutionScheduler(uneven_diamond, scope, FanInMode.EAGER))
    assert order == ["trigger", "a", "b", "m", "b2"]


def test_scheduler_resumes_from_done_nodes(chain):
    scope = {"trigger", "a", "b", "c"}
    scheduler = ExecutionScheduler(chain, scope, done={"trigger", "a"})
    assert scheduler.peek_ready() == ["b"]
    assert scheduler.unfinished() == ["b", "c"]


def test_scheduler_ignores_predecessors_out_of_scope(chain):
    scheduler = ExecutionScheduler(chain, {"b", "c"})
    assert scheduler.next_ready() == "b"


def test_scheduler_rejects_cycles():
    graph = build_graph(
        [node("trigger", "trigger"), node("a"), node("b")],
        [edge("trigger", "a"), edge("a", "b"), edge("b", "a")],
    )
    with pytest.raises(CyclicGraphError):
        ExecutionScheduler(graph, set(graph.node_map))
