"""
Typed configuration per built-in node kind.

Configs are stored as free-form camelCase JSON on the node; each executor
parses its own model at execution time. Unknown keys are kept (`extra`)
so editor-only settings do not fail validation.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from typeflow.workflows.engine.constants import ExecutionConfig


class NodeConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="allow")


class Condition(NodeConfig):
    field: str = ""
    operator: str = "equals"
    value: Any = ""


class FilterConfig(NodeConfig):
    conditions: List[Condition] = Field(default_factory=list)
    combine_with: str = "and"


class LimitConfig(NodeConfig):
    max_items: Optional[int] = None
    keep_first: bool = True


class RemoveDuplicatesConfig(NodeConfig):
    field_to_compare: Optional[str] = None
    compare_all: bool = False


class SplitOutConfig(NodeConfig):
    field_to_split: Optional[str] = None
    include_other_fields: bool = True


class AggregateConfig(NodeConfig):
    field_to_aggregate: Optional[str] = None
    output_field_name: Optional[str] = None


class MergeConfig(NodeConfig):
    mode: str = "append"
    combine_mode: Optional[str] = None
    join_field: Optional[str] = None


class SummarizeOperation(NodeConfig):
    type: str
    field: Optional[str] = None
    output_field: Optional[str] = None


class SummarizeConfig(NodeConfig):
    operations: List[SummarizeOperation] = Field(default_factory=list)
    # Accepted but not applied to the aggregation
    group_by: Optional[str] = None


class DateTimeConfig(NodeConfig):
    operation: str = "now"
    input_field: Optional[str] = None
    output_field: Optional[str] = None
    format: Optional[str] = None
    amount: Optional[float] = None
    unit: str = "days"
    extract_part: str = "year"
    compare_field: Optional[str] = None


class EditField(NodeConfig):
    name: str
    value: Any = ""
    type: Optional[str] = None


class RenameField(NodeConfig):
    from_field: str = Field(alias="from")
    to: str


class EditFieldsConfig(NodeConfig):
    mode: str = "manual"
    fields: List[EditField] = Field(default_factory=list)
    remove_fields: List[str] = Field(default_factory=list)
    rename_fields: List[RenameField] = Field(default_factory=list)
    keep_only_set: bool = False


class IfBranch(NodeConfig):
    id: str
    name: Optional[str] = None
    conditions: List[Condition] = Field(default_factory=list)
    combine_with: str = "and"


class IfConfig(NodeConfig):
    conditions: List[Condition] = Field(default_factory=list)
    combine_with: str = "and"
    branches: List[IfBranch] = Field(default_factory=list)
    else_enabled: bool = True


class SwitchCase(NodeConfig):
    id: str
    name: Optional[str] = None
    conditions: List[Condition] = Field(default_factory=list)
    combine_with: str = "and"


class SwitchConfig(NodeConfig):
    mode: str = "rules"
    cases: List[SwitchCase] = Field(default_factory=list)
    fallback_enabled: bool = True


class ThrowErrorConfig(NodeConfig):
    error_message: Optional[str] = None
    error_type: Optional[str] = None


class RetryConfig(NodeConfig):
    max_attempts: int = 1
    base_delay: float = ExecutionConfig.DEFAULT_RETRY_BASE_DELAY
    max_delay: float = ExecutionConfig.DEFAULT_RETRY_MAX_DELAY


class HttpRequestConfig(NodeConfig):
    method: str = "GET"
    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = None
    body_type: Optional[str] = None
    authentication: Optional[str] = None
    timeout: Optional[int] = None  # milliseconds
    retry: Optional[RetryConfig] = None


class WaitConfig(NodeConfig):
    wait_time: Optional[float] = None
    unit: str = "seconds"


class DatabaseConfig(NodeConfig):
    credential_id: Optional[str] = None
    operation: Optional[str] = None
    query: Optional[str] = None
    table: Optional[str] = None


class MongoDBConfig(DatabaseConfig):
    collection: Optional[str] = None


class RedisConfig(DatabaseConfig):
    key: Optional[str] = None
    value: Optional[str] = None
    field: Optional[str] = None


class ExecuteWorkflowConfig(NodeConfig):
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    mode: str = "once"


class CodeConfig(NodeConfig):
    code: Optional[str] = None
