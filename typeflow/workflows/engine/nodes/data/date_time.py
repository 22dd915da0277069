"""
dateTime node: now / format / add / subtract / difference / extract.

All dates are handled in UTC and written as ISO 8601 with milliseconds
and a `Z` suffix. Formatting supports the YYYY, MM, DD, HH, mm and ss
tokens only.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from typeflow.workflows.engine.constants import NodeKind
from typeflow.workflows.engine.context import NodeContext
from typeflow.workflows.engine.definitions import ExecutionItem, make_item
from typeflow.workflows.engine.nodes.base import BaseNode
from typeflow.workflows.engine.nodes.configs import DateTimeConfig
from typeflow.workflows.engine.nodes.data.paths import get_nested_value
from typeflow.workflows.engine.nodes.registry import NodeRegistry

DEFAULT_OUTPUT_FIELD = "date"

FIXED_UNITS = {
    "seconds": 1,
    "minutes": 60,
    "hours": 60 * 60,
    "days": 24 * 60 * 60,
    "weeks": 7 * 24 * 60 * 60,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_date(value: Any) -> datetime:
    """Epoch milliseconds, ISO strings or datetimes; naive values are UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        if math.isnan(value) or math.isinf(value):
            raise ValueError(f"Invalid date: {value}")
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("z"):
            text = text[:-1] + "Z"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid date: {value}") from None
    else:
        raise ValueError(f"Invalid date: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_date(value: datetime, fmt: str) -> str:
    # first occurrence of each token only
    for token, replacement in (
        ("YYYY", f"{value.year}"),
        ("MM", f"{value.month:02d}"),
        ("DD", f"{value.day:02d}"),
        ("HH", f"{value.hour:02d}"),
        ("mm", f"{value.minute:02d}"),
        ("ss", f"{value.second:02d}"),
    ):
        fmt = fmt.replace(token, replacement, 1)
    return fmt


def _shift_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; a day past the end of the month rolls over (Jan 31 + 1 month = Mar 3)."""
    total = value.year * 12 + (value.month - 1) + months
    year, month = divmod(total, 12)
    first = value.replace(year=year, month=month + 1, day=1)
    return first + timedelta(days=value.day - 1)


def add_to_date(value: datetime, amount: float, unit: str) -> datetime:
    if unit in FIXED_UNITS:
        return value + timedelta(seconds=amount * FIXED_UNITS[unit])
    if unit == "months":
        return _shift_months(value, int(amount))
    if unit == "years":
        return _shift_months(value, int(amount) * 12)
    return value


def difference(start: datetime, end: datetime, unit: str) -> int:
    """Whole units from `start` to `end`, truncated toward zero."""
    if unit in ("months", "years"):
        months = (end.year - start.year) * 12 + (end.month - start.month)
        # an unfinished last month does not count
        if months > 0 and _shift_months(start, months) > end:
            months -= 1
        elif months < 0 and _shift_months(start, months) < end:
            months += 1
        return int(months / 12) if unit == "years" else months
    seconds = (end - start).total_seconds()
    return int(seconds / FIXED_UNITS.get(unit, FIXED_UNITS["days"]))


def extract_from_date(value: datetime, part: str) -> int:
    if part == "year":
        return value.year
    if part == "month":
        return value.month
    if part == "day":
        return value.day
    if part == "hour":
        return value.hour
    if part == "minute":
        return value.minute
    if part == "second":
        return value.second
    if part == "dayOfWeek":
        # Sunday = 0
        return (value.weekday() + 1) % 7
    return 0


def _field_date(item: ExecutionItem, field: Optional[str]) -> datetime:
    if not field:
        return utc_now()
    value = get_nested_value(item.json_data, field)
    return parse_date(value) if value else utc_now()


def transform_dates(config: DateTimeConfig, items: List[ExecutionItem]) -> List[ExecutionItem]:
    output_field = config.output_field or DEFAULT_OUTPUT_FIELD
    result = []
    for item in items:
        input_date = _field_date(item, config.input_field)
        operation = config.operation

        if operation == "now":
            value: Any = to_iso(utc_now())
        elif operation == "format":
            value = format_date(input_date, config.format) if config.format else to_iso(input_date)
        elif operation in ("add", "subtract"):
            amount = (config.amount or 0) * (-1 if operation == "subtract" else 1)
            value = to_iso(add_to_date(input_date, amount, config.unit or "days"))
        elif operation == "difference":
            value = difference(input_date, _field_date(item, config.compare_field), config.unit or "days")
        elif operation == "extract":
            value = extract_from_date(input_date, config.extract_part or "year")
        else:
            value = to_iso(input_date)

        result.append(make_item({**item.json_data, output_field: value}))
    return result


@NodeRegistry.register
class DateTimeNode(BaseNode):
    kinds = (NodeKind.DATE_TIME,)
    config_model = DateTimeConfig

    async def execute(self, ctx: NodeContext, items: List[ExecutionItem]) -> List[ExecutionItem]:
        return transform_dates(self.parse_config(ctx.node), items)
