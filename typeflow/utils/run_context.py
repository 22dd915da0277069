"""
Execution ID context for log correlation.

The engine binds the current execution id while a run is in progress so
that every log line emitted on its behalf (engine, node executors, user
code console) can be prefixed with it.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

execution_id_var: ContextVar[Optional[str]] = ContextVar("execution_id", default=None)


def get_execution_id() -> Optional[str]:
    """Get the current execution ID from context."""
    return execution_id_var.get()


def generate_execution_id() -> str:
    """Generate a new unique execution ID."""
    return str(uuid.uuid4())


@contextmanager
def bind_execution_id(execution_id: Optional[str] = None) -> Iterator[str]:
    """Bind an execution id for the duration of the block."""
    execution_id = execution_id or generate_execution_id()
    token = execution_id_var.set(execution_id)
    try:
        yield execution_id
    finally:
        execution_id_var.reset(token)


def get_log_context() -> dict:
    """
    Get logging context with the execution ID.

    Example:
        logger.info("Running node", extra=get_log_context())
    """
    execution_id = get_execution_id()
    if execution_id:
        return {"execution_id": execution_id}
    return {}
