"""
Where the engine reads workflow definitions and custom node types from.

`InMemoryWorkflowRepository` backs tests and the CLI;
`SQLModelWorkflowRepository` reads the tables in `typeflow.workflows.models`.
"""

import asyncio
import logging
from typing import Dict, Optional, Protocol, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from typeflow.workflows.engine.definitions import (
    Connection,
    CustomNodeDefinition,
    Node,
    Position,
    WorkflowDefinition,
)
from typeflow.workflows.models import CustomNodeType, Workflow

logger = logging.getLogger(__name__)


class WorkflowRepository(Protocol):
    async def get_workflow(self, workflow_id: str, organization_id: str) -> Optional[WorkflowDefinition]: ...

    async def get_custom_node(self, organization_id: str, name: str) -> Optional[CustomNodeDefinition]: ...


class InMemoryWorkflowRepository:
    def __init__(self):
        self._workflows: Dict[Tuple[str, str], WorkflowDefinition] = {}
        self._custom_nodes: Dict[Tuple[str, str], CustomNodeDefinition] = {}

    def add_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        self._workflows[(workflow.organization_id, workflow.id)] = workflow
        return workflow

    def add_custom_node(self, definition: CustomNodeDefinition) -> CustomNodeDefinition:
        self._custom_nodes[(definition.organization_id, definition.name)] = definition
        return definition

    async def get_workflow(self, workflow_id: str, organization_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get((organization_id, workflow_id))

    async def get_custom_node(self, organization_id: str, name: str) -> Optional[CustomNodeDefinition]:
        return self._custom_nodes.get((organization_id, name))


def to_definition(workflow: Workflow) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=workflow.id,
        organization_id=workflow.organization_id,
        name=workflow.name,
        nodes=[
            Node(
                id=node.id,
                type=node.node_type,
                label=node.label,
                position=Position(x=node.position_x, y=node.position_y),
                config=node.config or {},
                execution_order=node.execution_order,
            )
            for node in workflow.nodes
        ],
        connections=[
            Connection(
                id=edge.id,
                source_node_id=edge.source_node_id,
                target_node_id=edge.target_node_id,
                source_handle=edge.source_handle,
                target_handle=edge.target_handle,
            )
            for edge in workflow.edges
        ],
        metadata=workflow.meta or {},
    )


class SQLModelWorkflowRepository:
    """Reads workflows with a sync Session in a worker thread."""

    def __init__(self, engine: Optional[Engine] = None):
        if engine is None:
            from typeflow.database import engine as default_engine

            engine = default_engine
        self.engine = engine

    def _get_workflow(self, workflow_id: str, organization_id: str) -> Optional[WorkflowDefinition]:
        with Session(self.engine) as session:
            workflow = session.exec(
                select(Workflow)
                .where(Workflow.id == workflow_id)
                .where(Workflow.organization_id == organization_id)
            ).first()
            return to_definition(workflow) if workflow else None

    def _get_custom_node(self, organization_id: str, name: str) -> Optional[CustomNodeDefinition]:
        with Session(self.engine) as session:
            row = session.exec(
                select(CustomNodeType)
                .where(CustomNodeType.organization_id == organization_id)
                .where(CustomNodeType.name == name)
            ).first()
            if row is None:
                return None
            return CustomNodeDefinition(
                id=row.id,
                organization_id=row.organization_id,
                name=row.name,
                description=row.description or {},
                execute_code=row.execute_code,
            )

    async def get_workflow(self, workflow_id: str, organization_id: str) -> Optional[WorkflowDefinition]:
        return await asyncio.to_thread(self._get_workflow, workflow_id, organization_id)

    async def get_custom_node(self, organization_id: str, name: str) -> Optional[CustomNodeDefinition]:
        return await asyncio.to_thread(self._get_custom_node, organization_id, name)
