from typing import Any, Dict, List, Optional

import pytest

from typeflow.workflows.engine import WorkflowEngine
from typeflow.workflows.engine.definitions import WorkflowDefinition
from typeflow.workflows.logger import WorkflowExecutorLogger
from typeflow.workflows.repository import InMemoryWorkflowRepository

ORG_ID = "org-1"


def node(node_id: str, node_type: str = "noop", label: Optional[str] = None, **config: Any) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "label": label or node_id, "config": config}


def edge(source: str, target: str, handle: Optional[str] = None) -> Dict[str, Any]:
    return {"source": source, "target": target, "handle": handle}


def make_workflow(
    nodes: List[Dict[str, Any]],
    edges: List[Dict[str, Any]],
    workflow_id: str = "wf-1",
    organization_id: str = ORG_ID,
    metadata: Optional[Dict[str, Any]] = None,
) -> WorkflowDefinition:
    connections = [
        {
            "id": f"{e['source']}-{e['target']}-{index}",
            "sourceNodeId": e["source"],
            "targetNodeId": e["target"],
            "sourceHandle": e["handle"],
        }
        for index, e in enumerate(edges)
    ]
    return WorkflowDefinition.model_validate(
        {
            "id": workflow_id,
            "organizationId": organization_id,
            "name": workflow_id,
            "nodes": nodes,
            "connections": connections,
            "metadata": metadata or {},
        }
    )


def outputs(result, node_id: str) -> List[Dict[str, Any]]:
    return [item.json_data for item in result.node_results[node_id].output]


def silent_events(workflow_id: str, execution_id: str) -> WorkflowExecutorLogger:
    return WorkflowExecutorLogger(workflow_id, execution_id, enabled=False)


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def make_engine(repository):
    def _make(**kwargs) -> WorkflowEngine:
        kwargs.setdefault("event_logger_factory", silent_events)
        return WorkflowEngine(repository, **kwargs)

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()
