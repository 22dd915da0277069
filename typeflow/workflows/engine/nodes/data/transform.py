"""
Item transforms: filter, limit, removeDuplicates, splitOut, aggregate,
summarize and editFields.

Each transform is a plain function of `(config, items)` so it can be used
without an engine; the node classes below only parse config and delegate.
"""

import copy
import json
import logging
import math
from typing import Any, Dict, List, Optional

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem, make_item
from typeflow.workflows.engine.expressions.resolver import to_js_string
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import (
    AggregateConfig,
    EditFieldsConfig,
    FilterConfig,
    LimitConfig,
    RemoveDuplicatesConfig,
    SplitOutConfig,
    SummarizeConfig,
)
from typeflow.workflows.engine.nodes.data.paths import (
    delete_nested_value,
    get_nested_value,
    set_nested_value,
)
from typeflow.workflows.engine.nodes.logic.conditions import matches, to_number
from typeflow.workflows.engine.nodes.registry import NodeRegistry

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_AGGREGATE_FIELD = "data"


def _stable_key(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=str)


def _clean_number(value: float) -> Any:
    """Whole floats back to int, NaN to None, so results serialize as JSON."""
    if math.isnan(value):
        return None
    if not math.isinf(value) and value.is_integer():
        return int(value)
    return value


def filter_items(config: FilterConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
    if not config.conditions:
        return items
    return [item for item in items if matches(config.conditions, item.json_data, config.combine_with)]


def limit_items(config: LimitConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
    max_items = config.max_items or DEFAULT_LIMIT
    if config.keep_first:
        return items[:max_items]
    return items[-max_items:]


def remove_duplicates(config: RemoveDuplicatesConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
    seen = set()
    result = []
    for item in items:
        if config.compare_all or not config.field_to_compare:
            key = _stable_key(item.json_data)
        else:
            key = _stable_key(get_nested_value(item.json_data, config.field_to_compare))
        if key not in seen:
            seen.add(key)
            result.append(item)
    return result


def split_out(config: SplitOutConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
    field = config.field_to_split
    if not field:
        return items

    result = []
    for item in items:
        value = get_nested_value(item.json_data, field)
        if not isinstance(value, list):
            result.append(item)
            continue
        for element in value:
            if config.include_other_fields:
                result.append(make_item({**item.json_data, field: element}))
            elif isinstance(element, dict):
                result.append(make_item(element))
            else:
                result.append(make_item({"value": element}))
    return result


def aggregate(config: AggregateConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
    output_field = config.output_field_name or DEFAULT_AGGREGATE_FIELD
    if config.field_to_aggregate:
        values = [get_nested_value(item.json_data, config.field_to_aggregate) for item in items]
    else:
        values = [item.json_data for item in items]
    return [make_item({output_field: values})]


def summarize(config: SummarizeConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
    if not config.operations:
        return [make_item({"count": len(items)})]
    if config.group_by:
        logger.debug("Summarize groupBy is not applied; aggregating over all items")

    result: Dict[str, Any] = {}
    for operation in config.operations:
        output_field = operation.output_field or operation.type
        if operation.field:
            values = [get_nested_value(item.json_data, operation.field) for item in items]
        else:
            values = [item.json_data for item in items]

        def _total() -> float:
            total = 0.0
            for value in values:
                number = to_number(value)
                total += 0.0 if math.isnan(number) else number
            return total

        numbers = [v for v in values if isinstance(v, (int, float)) and not isinstance(v, bool)]

        if operation.type == "count":
            result[output_field] = len(items)
        elif operation.type == "sum":
            result[output_field] = _clean_number(_total())
        elif operation.type == "average":
            result[output_field] = _clean_number(_total() / len(items)) if items else 0
        elif operation.type == "min":
            result[output_field] = min(numbers) if numbers else None
        elif operation.type == "max":
            result[output_field] = max(numbers) if numbers else None
        elif operation.type == "concat":
            result[output_field] = ", ".join(to_js_string(v) for v in values)
        else:
            logger.warning(f"Unknown summarize operation '{operation.type}' ignored")
    return [make_item(result)]


def coerce_field_value(value: Any, field_type: Optional[str]) -> Any:
    if field_type == "number":
        return _clean_number(to_number(value))
    if field_type == "boolean":
        return value is True or value == "true"
    if field_type in ("object", "array"):
        if not isinstance(value, str):
            return value
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def edit_fields(
    config: EditFieldsConfig,
    items: List[ExecutionItem],
    ctx: Optional[NodeContext] = None,
) -> List[ExecutionItem]:
    result = []
    for index, item in enumerate(items):
        new_json: Dict[str, Any] = {} if config.keep_only_set else copy.deepcopy(item.json_data)

        resolver = None
        if config.mode == "expression" and ctx is not None:
            resolver = ctx.expression_resolver(item, index)

        for field in config.fields:
            value = resolver.resolve(field.value) if resolver else field.value
            set_nested_value(new_json, field.name, coerce_field_value(value, field.type))

        for path in config.remove_fields:
            delete_nested_value(new_json, path)

        for rename in config.rename_fields:
            value = get_nested_value(new_json, rename.from_field)
            if value is not None:
                delete_nested_value(new_json, rename.from_field)
                set_nested_value(new_json, rename.to, value)

        result.append(make_item(new_json))
    return result


@NodeRegistry.register
class FilterNode(BaseNode):
    """Keeps items matching all (or any) conditions."""
    kinds = (NodeKind.FILTER,)
    config_model = FilterConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        return filter_items(self.parse_config(ctx.node), items)


@NodeRegistry.register
class LimitNode(BaseNode):
    kinds = (NodeKind.LIMIT,)
    config_model = LimitConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        return limit_items(self.parse_config(ctx.node), items)


@NodeRegistry.register
class RemoveDuplicatesNode(BaseNode):
    kinds = (NodeKind.REMOVE_DUPLICATES,)
    config_model = RemoveDuplicatesConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        return remove_duplicates(self.parse_config(ctx.node), items)


@NodeRegistry.register
class SplitOutNode(BaseNode):
    kinds = (NodeKind.SPLIT_OUT,)
    config_model = SplitOutConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        return split_out(self.parse_config(ctx.node), items)


@NodeRegistry.register
class AggregateNode(BaseNode):
    kinds = (NodeKind.AGGREGATE,)
    config_model = AggregateConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        return aggregate(self.parse_config(ctx.node), items)


@NodeRegistry.register
class SummarizeNode(BaseNode):
    kinds = (NodeKind.SUMMARIZE,)
    config_model = SummarizeConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        return summarize(self.parse_config(ctx.node), items)


@NodeRegistry.register
class EditFieldsNode(BaseNode):
    """Sets, removes and renames fields by dot-path."""
    kinds = (NodeKind.EDIT_FIELDS,)
    config_model = EditFieldsConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        return edit_fields(self.parse_config(ctx.node), items, ctx)
