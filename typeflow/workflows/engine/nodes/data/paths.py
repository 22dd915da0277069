"""Dot-path access into item JSON (`a.b.c`, with an optional `$json.` prefix)."""

from typing import Any, Dict

JSON_PREFIX = "$json."


def get_nested_value(obj: Dict[str, Any], path: str, default: Any = None) -> Any:
    """Value at `path`, or `default` when the path does not exist. An explicit null stays None."""
    if path == "$json":
        return obj
    if path.startswith(JSON_PREFIX):
        path = path[len(JSON_PREFIX):]

    current: Any = obj
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return default
    return current


def set_nested_value(obj: Dict[str, Any], path: str, value: Any) -> None:
    """Set `path` to `value`, replacing missing or non-object intermediates with `{}`."""
    keys = path.split(".")
    current = obj
    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[keys[-1]] = value


def delete_nested_value(obj: Dict[str, Any], path: str) -> None:
    keys = path.split(".")
    current: Any = obj
    for key in keys[:-1]:
        if not isinstance(current, dict) or key not in current:
            return
        current = current[key]
    if isinstance(current, dict):
        current.pop(keys[-1], None)
