from sqlmodel import SQLModel, create_engine

from typeflow.config import settings

engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI))


def init_db(db_engine=None) -> None:
    # Create tables if they don't exist; import the models first so they are registered
    from typeflow.credentials.models import Credential  # noqa: F401
    from typeflow.workflows.models import CustomNodeType, Workflow, WorkflowEdge, WorkflowNode  # noqa: F401

    SQLModel.metadata.create_all(db_engine or engine)
