import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Text
from sqlmodel import Field, Relationship, SQLModel


class Workflow(SQLModel, table=True):
    __tablename__ = "workflow"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    organization_id: str = Field(index=True, max_length=255)
    name: str = Field(max_length=255)
    description: Optional[str] = Field(default=None, sa_type=Text)
    # Workflow-level settings, e.g. {"typeDefinitions": "..."} for code nodes
    meta: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    nodes: List["WorkflowNode"] = Relationship(
        back_populates="workflow", cascade_delete=True, sa_relationship_kwargs={"lazy": "selectin"}
    )
    edges: List["WorkflowEdge"] = Relationship(
        back_populates="workflow", cascade_delete=True, sa_relationship_kwargs={"lazy": "selectin"}
    )


class WorkflowNode(SQLModel, table=True):
    __tablename__ = "workflow_node"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    workflow_id: str = Field(foreign_key="workflow.id", nullable=False, ondelete="CASCADE")
    node_type: str = Field(max_length=100)
    label: Optional[str] = Field(default=None, max_length=255)
    position_x: float = 0
    position_y: float = 0
    config: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    execution_order: int = 0

    workflow: Workflow = Relationship(back_populates="nodes")


class WorkflowEdge(SQLModel, table=True):
    __tablename__ = "workflow_edge"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    workflow_id: str = Field(foreign_key="workflow.id", nullable=False, ondelete="CASCADE")
    source_node_id: str = Field(max_length=255)
    target_node_id: str = Field(max_length=255)
    source_handle: Optional[str] = Field(default=None, max_length=100)
    target_handle: Optional[str] = Field(default=None, max_length=100)

    workflow: Workflow = Relationship(back_populates="edges")


class CustomNodeType(SQLModel, table=True):
    """User-defined node type, used in workflows as `custom_<name>`."""
    __tablename__ = "custom_node_type"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    organization_id: str = Field(index=True, max_length=255)
    name: str = Field(max_length=255)
    description: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    execute_code: Optional[str] = Field(default=None, sa_type=Text)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
