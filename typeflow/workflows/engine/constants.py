"""
Constants for Workflow Engine

Centralizes all magic strings and numbers used throughout the workflow engine.
"""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Valid node execution statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DebugSessionStatus(str, Enum):
    """Debug session lifecycle statuses."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    TERMINATED = "terminated"


class FanInMode(str, Enum):
    """How a node with several predecessors waits for them."""
    GATED = "gated"
    EAGER = "eager"


class NodeKind(str, Enum):
    """Built-in node kinds. The value is the node `type` string."""
    TRIGGER = "trigger"
    WEBHOOK = "webhook"
    CODE = "code"
    UTILITIES = "utilities"
    FILTER = "filter"
    LIMIT = "limit"
    REMOVE_DUPLICATES = "removeDuplicates"
    SPLIT_OUT = "splitOut"
    AGGREGATE = "aggregate"
    MERGE = "merge"
    SUMMARIZE = "summarize"
    DATE_TIME = "dateTime"
    EDIT_FIELDS = "editFields"
    IF = "if"
    SWITCH = "switch"
    THROW_ERROR = "throwError"
    HTTP_REQUEST = "httpRequest"
    WAIT = "wait"
    POSTGRES = "postgres"
    MYSQL = "mysql"
    MONGODB = "mongodb"
    REDIS = "redis"
    EXECUTE_WORKFLOW = "executeWorkflow"
    WEBHOOK_RESPONSE = "webhookResponse"
    NOOP = "noop"
    CUSTOM = "custom"
    EXTERNAL = "externalNode"


TRIGGER_KINDS = frozenset({NodeKind.TRIGGER, NodeKind.WEBHOOK})
CONDITIONAL_KINDS = frozenset({NodeKind.IF, NodeKind.SWITCH})
CUSTOM_NODE_PREFIX = "custom_"


class ExecutionConfig:
    """Execution-related configuration constants."""
    # Sandboxed code budget (milliseconds)
    DEFAULT_CODE_TIMEOUT_MS = 5000

    # Custom node budget (milliseconds)
    DEFAULT_CUSTOM_NODE_TIMEOUT_MS = 30000

    # HTTP request node default timeout (milliseconds)
    DEFAULT_HTTP_TIMEOUT_MS = 30000

    # Wait node cap (seconds)
    MAX_WAIT_SECONDS = 5 * 60

    # Default retry settings
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_RETRY_BASE_DELAY = 1.0  # seconds
    DEFAULT_RETRY_MAX_DELAY = 30.0  # seconds

    # Label prefix length for unnamed nodes ("Node 1a2b3c4d")
    UNNAMED_LABEL_ID_LENGTH = 8
