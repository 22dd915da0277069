import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from typeflow.config import settings
from typeflow.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)


class WorkflowExecutorLogger:
    """
    Publishes workflow execution events to Redis (`workflow:execution:<id>`)
    for live progress in a UI. Publishing is best effort: a failed publish is
    logged and never affects the run.
    """

    def __init__(self, workflow_id: str, execution_id: str, redis_client=None, enabled: Optional[bool] = None):
        self.workflow_id = workflow_id
        self.execution_id = execution_id
        self.enabled = settings.EXECUTION_EVENTS_ENABLED if enabled is None else enabled
        self._redis = redis_client
        self.channel = f"workflow:execution:{execution_id}"

    @property
    def redis(self):
        if self._redis is None:
            self._redis = get_redis_client()
        return self._redis

    def _publish(self, event_type: str, data: Dict[str, Any]):
        if not self.enabled:
            return
        message = {
            "type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data,
        }
        try:
            self.redis.publish(self.channel, json.dumps(message, default=str))
        except Exception as e:
            logger.error(f"Failed to publish event to Redis: {e}")

    def _workflow_event(self, event_type: str, **extra: Any):
        self._publish(event_type, {"workflow_id": self.workflow_id, "execution_id": self.execution_id, **extra})

    def log_workflow_start(self, mode: str = "full"):
        self._workflow_event("workflow_started", mode=mode)

    def log_workflow_complete(self):
        self._workflow_event("workflow_completed", status="completed")

    def log_workflow_failed(self, error: str):
        self._workflow_event("workflow_failed", error=error)

    def log_workflow_paused(self, node_id: str):
        self._workflow_event("workflow_paused", node_id=node_id)

    def log_node_start(self, node_id: str, input_count: int = 0):
        self._publish("node_started", {"node_id": node_id, "input_count": input_count})

    def log_node_complete(self, node_id: str, output_count: int, duration: float):
        self._publish("node_completed", {"node_id": node_id, "output_count": output_count, "duration_ms": duration})

    def log_node_skipped(self, node_id: str):
        self._publish("node_skipped", {"node_id": node_id})

    def log_node_failed(self, node_id: str, error: str, error_context: Optional[Dict[str, Any]] = None):
        """`error_context` is `ErrorContext.to_dict()` of the classified failure."""
        data = {"node_id": node_id, "error": error}
        if error_context:
            data["error_category"] = error_context.get("category", "unknown")
            data["error_suggestion"] = error_context.get("suggestion")
            data["is_retryable"] = error_context.get("is_retryable", False)
        self._publish("node_failed", data)
