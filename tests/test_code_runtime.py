import ast

import pytest

from typeflow.workflows.engine.definitions import ExecutionItem, make_item
from typeflow.workflows.engine.errors import (
    CodeExecutionError,
    CodeValidationError,
    ExecutionTimeoutError,
    UtilitiesExecutionError,
)
from typeflow.workflows.engine.runtime.code import (
    CodeRuntime,
    normalize_code_result,
    predecessor_variables,
    rewrite_imports,
    sanitize_label,
)


@pytest.fixture
def runtime():
    return CodeRuntime(timeout_ms=1000)


def as_json(items):
    return [item.json_data for item in items]


def test_normalize_primitive():
    assert as_json(normalize_code_result(42)) == [{"value": 42}]


def test_normalize_none():
    assert as_json(normalize_code_result(None)) == [{"value": None}]


def test_normalize_list_of_dicts():
    assert as_json(normalize_code_result([{"x": 1}, {"x": 2}])) == [{"x": 1}, {"x": 2}]


def test_normalize_item_shaped_entries_pass_through():
    items = normalize_code_result([{"json": {"x": 1}, "pairedItem": {"item": 0}}])
    assert items[0].json_data == {"x": 1}
    assert items[0].paired_item.item == 0


def test_normalize_list_of_primitives():
    assert as_json(normalize_code_result([1, "a"])) == [{"value": 1}, {"value": "a"}]


def test_sanitize_label():
    assert sanitize_label("My Node") == "_My_Node"
    assert sanitize_label("1st step") == "__1st_step"


def test_rewrite_imports_keeps_line_numbers():
    tree = ast.parse("import json\nfrom os import path as p\nx = 1")
    rewritten, diagnostics = rewrite_imports(tree)
    assert diagnostics == []
    assert [ast.unparse(statement) for statement in rewritten.body] == [
        "json = require('json')",
        "p = require.attribute('os', 'path')",
        "x = 1",
    ]
    assert [statement.lineno for statement in rewritten.body] == [1, 2, 3]


def test_rewrite_imports_leaves_strings_alone():
    tree = ast.parse('doc = """\nimport os\n"""\nimport json')
    rewritten, _ = rewrite_imports(tree)
    assert rewritten.body[0].value.value == "\nimport os\n"
    assert ast.unparse(rewritten.body[1]) == "json = require('json')"


def test_rewrite_imports_rejects_star_imports():
    _, diagnostics = rewrite_imports(ast.parse("from os import *"))
    assert diagnostics == ["Line 1, Col 1: Star imports are not supported ('from os import *')"]


def test_rewrite_imports_rejects_relative_imports():
    _, diagnostics = rewrite_imports(ast.parse("x = 1\n  \nfrom .sibling import y"))
    assert diagnostics == ["Line 3, Col 1: Relative imports are not supported ('from .sibling import ...')"]


@pytest.mark.asyncio
async def test_code_returns_primitive(runtime):
    output = await runtime.run_code_node("return 42", [make_item()])
    assert [item.to_dict() for item in output] == [{"json": {"value": 42}}]


@pytest.mark.asyncio
async def test_empty_code_returns_input(runtime):
    items = [make_item({"a": 1})]
    assert await runtime.run_code_node("  ", items) is items


@pytest.mark.asyncio
async def test_code_reads_input_items(runtime):
    code = "return [{'n': item['json']['n'] * 10} for item in _input]"
    output = await runtime.run_code_node(code, [make_item({"n": 1}), make_item({"n": 2})])
    assert as_json(output) == [{"n": 10}, {"n": 20}]


@pytest.mark.asyncio
async def test_code_can_await(runtime):
    code = "import asyncio\nawait asyncio.sleep(0)\nreturn {'done': True}"
    output = await runtime.run_code_node(code, [make_item()])
    assert as_json(output) == [{"done": True}]


@pytest.mark.asyncio
async def test_imports_resolve_through_require(runtime):
    code = "import json\nreturn {'s': json.dumps([1])}"
    output = await runtime.run_code_node(code, [make_item()])
    assert as_json(output) == [{"s": "[1]"}]


@pytest.mark.asyncio
async def test_undefined_name_is_reported_in_user_coordinates(runtime):
    with pytest.raises(CodeValidationError) as exc_info:
        await runtime.run_code_node("return undefined_name", [make_item()])
    message = str(exc_info.value)
    assert message.startswith("Code execution failed: Code validation error:")
    assert "Line 1, Col 8: Name 'undefined_name' is not defined" in message


@pytest.mark.asyncio
async def test_syntax_error_is_a_validation_error(runtime):
    with pytest.raises(CodeValidationError):
        await runtime.run_code_node("return (", [make_item()])


@pytest.mark.asyncio
async def test_names_bound_later_are_known(runtime):
    code = "def helper():\n    return total\ntotal = 3\nreturn helper()"
    output = await runtime.run_code_node(code, [make_item()])
    assert as_json(output) == [{"value": 3}]


@pytest.mark.asyncio
async def test_infinite_loop_times_out():
    runtime = CodeRuntime(timeout_ms=50)
    with pytest.raises(ExecutionTimeoutError, match="Execution timeout"):
        await runtime.run_code_node("while True:\n    pass", [make_item()])


@pytest.mark.asyncio
async def test_hanging_await_times_out():
    runtime = CodeRuntime(timeout_ms=50)
    code = "import asyncio\nawait asyncio.sleep(10)\nreturn 1"
    with pytest.raises(ExecutionTimeoutError):
        await runtime.run_code_node(code, [make_item()])


@pytest.mark.asyncio
async def test_runtime_error_carries_location(runtime):
    code = "a = 1\nb = 0\nreturn a / b"
    with pytest.raises(CodeExecutionError) as exc_info:
        await runtime.run_code_node(code, [make_item()])
    error = exc_info.value
    assert str(error) == "Code execution failed: ZeroDivisionError: division by zero"
    assert error.source_location.line == 3


@pytest.mark.asyncio
async def test_utilities_export_functions_and_classes(runtime):
    code = "import math\n\ndef area(r):\n    return math.pi * r * r\n\nclass Box:\n    pass\n\n_private = 1\n"
    utility = await runtime.run_utilities("u1", "Geometry", code)
    assert set(utility.exports) == {"area", "Box"}
    assert utility.namespace().area(1) == pytest.approx(3.14159, rel=1e-4)


@pytest.mark.asyncio
async def test_utilities_honour_dunder_all(runtime):
    code = "__all__ = ['VALUE']\nVALUE = 7\ndef hidden():\n    pass\n"
    utility = await runtime.run_utilities("u1", "Consts", code)
    assert utility.exports == {"VALUE": 7}


@pytest.mark.asyncio
async def test_utilities_syntax_error(runtime):
    with pytest.raises(UtilitiesExecutionError, match="Utilities execution failed"):
        await runtime.run_utilities("u1", "Broken", "def (:")


@pytest.mark.asyncio
async def test_custom_result_can_be_execution_items(runtime):
    output = await runtime.run_code_node(
        "return [{'json': {'a': 1}}, {'json': {'a': 2}}]", [ExecutionItem(json={})]
    )
    assert as_json(output) == [{"a": 1}, {"a": 2}]


@pytest.mark.asyncio
async def test_triple_quoted_strings_keep_their_lines(runtime):
    code = 's = """a\nb"""\nreturn {"s": s}'
    output = await runtime.run_code_node(code, [make_item()])
    assert as_json(output) == [{"s": "a\nb"}]


@pytest.mark.asyncio
async def test_import_text_inside_strings_is_not_rewritten(runtime):
    code = 'text = """\nimport os\n"""\nreturn {"text": text}'
    output = await runtime.run_code_node(code, [make_item()])
    assert as_json(output) == [{"text": "\nimport os\n"}]


@pytest.mark.asyncio
async def test_error_after_multiline_string_points_at_user_line(runtime):
    code = 's = """one\ntwo\nthree"""\nreturn 1 / 0'
    with pytest.raises(CodeExecutionError) as exc_info:
        await runtime.run_code_node(code, [make_item()])
    assert exc_info.value.source_location.line == 4
    assert exc_info.value.source_location.code == "return 1 / 0"


@pytest.mark.asyncio
async def test_utilities_keep_multiline_strings(runtime):
    code = 'TEMPLATE = """\nimport os\n"""\n__all__ = ["TEMPLATE"]\n'
    utility = await runtime.run_utilities("u1", "Templates", code)
    assert utility.exports == {"TEMPLATE": "\nimport os\n"}


def test_predecessor_variables_suffix_repeated_labels():
    first, second, third = [make_item({"n": 1})], [make_item({"n": 2})], [make_item({"n": 3})]
    variables = predecessor_variables([("Fetch", first), ("Fetch", second), ("Other step", third)])
    assert list(variables) == ["_Fetch", "_Fetch_2", "_Other_step"]
    assert variables["_Fetch_2"] is second
