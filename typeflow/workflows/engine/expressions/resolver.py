import json
import logging
import math
import re
from typing import Any, Dict

from jinja2.sandbox import SandboxedEnvironment

logger = logging.getLogger(__name__)

JSON_PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*\$json\.([a-zA-Z0-9_.]+)\s*\}\}")
# "$value", "$json.x", "$parameter['url']" -> jinja-friendly names
DOLLAR_IDENTIFIER_PATTERN = re.compile(r"\$(?=[A-Za-z_])")


def to_js_string(value: Any) -> str:
    """String coercion as the workflow editor shows values (true/false, no trailing .0)."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def interpolate_json_placeholders(template: str, item_json: Dict[str, Any]) -> str:
    """
    Replace `{{ $json.a.b }}` with the value at that path of `item_json`.

    A missing leaf renders as an empty string; a path that runs through a
    non-object keeps the placeholder untouched.
    """
    if not template:
        return template

    def _replace(match: re.Match) -> str:
        value: Any = item_json or {}
        for part in match.group(1).split("."):
            if isinstance(value, dict):
                value = value.get(part)
            else:
                return match.group(0)
        return to_js_string(value)

    return JSON_PLACEHOLDER_PATTERN.sub(_replace, template)


def substitute_item_placeholders(template: str, data: Dict[str, Any], as_json: bool = False) -> str:
    """Replace the first `{{key}}` per top-level key of `data`."""
    if not template:
        return template
    for key, value in (data or {}).items():
        replacement = json.dumps(value, default=str) if as_json else to_js_string(value)
        template = template.replace("{{" + key + "}}", replacement, 1)
    return template


class ExpressionResolver:
    """
    Resolves expressions in node configurations.
    Uses Jinja2 syntax (e.g. {{ json.name }}) with a restricted sandbox.
    """

    def __init__(self, context: Dict[str, Any]):
        self.env = SandboxedEnvironment()
        self.context = context

    def resolve(self, value: Any) -> Any:
        """
        Recursively resolve template strings in the given value.

        Args:
            value: The value to resolve (string, dict, list, or primitive)

        Returns:
            Resolved value
        """
        if isinstance(value, str):
            return self._resolve_string(value)
        elif isinstance(value, dict):
            return {k: self.resolve(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self.resolve(v) for v in value]
        else:
            return value

    def _resolve_string(self, value: str) -> Any:
        if not value:
            return value

        # "={{ expr }}" is a single expression, evaluated to a string
        if value.startswith("="):
            return self.evaluate_expression(value)

        if "{{" in value and "}}" in value:
            try:
                template = self.env.from_string(value)
                return template.render(**self.context)
            except Exception as e:
                # Keep the raw value so a typo in one field does not fail the node
                logger.warning(f"Expression resolution failed for '{value}': {e}")
                return value

        return value

    def evaluate_expression(self, expression: str) -> str:
        """Evaluate an `={{ ... }}` expression; returns the input unchanged on failure."""
        if not expression.startswith("="):
            return expression

        expr = expression[1:].strip()
        if expr.startswith("{{") and expr.endswith("}}"):
            expr = expr[2:-2]
        expr = DOLLAR_IDENTIFIER_PATTERN.sub("", expr.strip())

        try:
            compiled = self.env.compile_expression(expr, undefined_to_none=True)
            return to_js_string(compiled(**self.context))
        except Exception as e:
            logger.warning(f"Expression evaluation failed for '{expression}': {e}")
            return expression
