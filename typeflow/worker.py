import asyncio
import logging
from typing import Any, Dict, Optional

from celery import Celery
from celery.signals import after_setup_logger, after_setup_task_logger

from typeflow.config import settings
from typeflow.logger import setup_celery_logger

logger = logging.getLogger(__name__)

celery_app = Celery(
    "typeflow",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_log_format="%(message)s",
    worker_task_log_format="%(message)s",
    worker_log_color=True,
    task_routes={
        "typeflow.workflows.engine.execute_workflow": "workflows",
    },
)


@after_setup_logger.connect
@after_setup_task_logger.connect
def on_setup_logger(logger, loglevel, **kwargs):
    setup_celery_logger(logger=logger, loglevel=loglevel, **kwargs)


async def _execute(workflow_id: str, organization_id: str, trigger_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    from typeflow.credentials import CredentialService
    from typeflow.packages.manager import PackageManager
    from typeflow.workflows.engine import WorkflowEngine
    from typeflow.workflows.repository import SQLModelWorkflowRepository

    engine = WorkflowEngine(
        SQLModelWorkflowRepository(),
        credential_service=CredentialService(),
        package_manager=PackageManager(),
    )
    try:
        result = await engine.execute_workflow(workflow_id, organization_id, trigger_data)
    finally:
        await engine.aclose()
    return result.to_dict()


@celery_app.task(name="typeflow.workflows.engine.execute_workflow")
def execute_workflow_task(workflow_id: str, organization_id: str, trigger_data: Optional[Dict[str, Any]] = None):
    """Run a stored workflow; returns the serialized WorkflowExecutionResult."""
    logger.info(f"Worker executing workflow {workflow_id}")
    return asyncio.run(_execute(workflow_id, organization_id, trigger_data))
