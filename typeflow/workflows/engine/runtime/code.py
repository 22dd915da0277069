"""
Sandboxed runner for user-authored Python (code, utilities and custom nodes).

User code is parsed and checked before it runs. Everything happens on the
syntax tree, never on the source text:
- `import` statements become `require` calls at the same location
- the module body moves into `async def __user_code__():` so `await` and
  `return` work at the top level
- syntax errors and names that are neither bound nor ambient are reported as
  `Line N, Col M: message` in the user's own coordinates

Execution happens on a daemon thread with its own event loop. A deadline is
enforced twice: `asyncio.wait_for` for awaits that never resolve, and a trace
function on sandbox frames for CPU-bound loops. Isolation is process-level
only: user code runs with the host's privileges.
"""

import ast
import asyncio
import builtins
import contextvars
import inspect
import logging
import re
import sys
import threading
import time
import traceback
from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from typeflow.workflows.engine.constants import ExecutionConfig
from typeflow.workflows.engine.debug import SourceLocation
from typeflow.workflows.engine.definitions import ExecutionItem
from typeflow.workflows.engine.errors import (
    CodeExecutionError,
    CodeValidationError,
    ExecutionTimeoutError,
    UtilitiesExecutionError,
)
from typeflow.workflows.engine.runtime.modules import ModuleResolver

logger = logging.getLogger(__name__)

SANDBOX_FILENAME_PREFIX = "<typeflow:"
USER_CODE_FILENAME = "<typeflow:code>"
TYPE_DEFINITIONS_FILENAME = "<typeflow:types>"

WRAPPER_NAME = "__user_code__"

# Diagnostics about names only known at run time
HARMLESS_DIAGNOSTICS = ("Name '__",)


class _DeadlineExceeded(BaseException):
    """Raised inside sandbox frames; BaseException so `except Exception` cannot swallow it."""


@dataclass
class UtilityModule:
    """Entry of the utilities registry: what one utilities node exported."""
    node_id: str
    label: str
    code: str
    exports: Dict[str, Any] = field(default_factory=dict)

    def namespace(self) -> SimpleNamespace:
        return SimpleNamespace(**self.exports)


def sanitize_label(label: str) -> str:
    """Node label -> ambient variable name (`My Node` -> `_My_Node`)."""
    name = re.sub(r"[^a-zA-Z0-9_]", "_", label or "")
    if re.match(r"^[0-9]", name):
        name = "_" + name
    return "_" + name


def predecessor_variables(labelled: Iterable[Tuple[str, List[ExecutionItem]]]) -> Dict[str, List[ExecutionItem]]:
    """
    Ambient variable name for each (label, output) pair, in order. A name
    that is already taken gets `_2`, `_3`, ... appended.
    """
    variables: Dict[str, List[ExecutionItem]] = {}
    for label, output in labelled:
        base = name = sanitize_label(label)
        suffix = 2
        while name in variables:
            name = f"{base}_{suffix}"
            suffix += 1
        if name != base:
            logger.warning(f"Several predecessors are labelled '{label}'; this one is available as {name}")
        variables[name] = output
    return variables


def _require(module: str, attribute: Optional[str] = None) -> ast.expr:
    func: ast.expr = ast.Name(id="require", ctx=ast.Load())
    args: List[ast.expr] = [ast.Constant(module)]
    if attribute is not None:
        func = ast.Attribute(value=func, attr="attribute", ctx=ast.Load())
        args.append(ast.Constant(attribute))
    return ast.Call(func=func, args=args, keywords=[])


def _bind(name: str, value: ast.expr) -> ast.stmt:
    return ast.Assign(targets=[ast.Name(id=name, ctx=ast.Store())], value=value)


class ImportRewriter(ast.NodeTransformer):
    """
    Replaces import statements with `require` calls at the same location:

        import a.b        ->  require("a.b"); a = require("a")
        import a as b     ->  b = require("a")
        from a import x   ->  x = require.attribute("a", "x")

    Star and relative imports become diagnostics and a `pass`.
    """

    def __init__(self):
        self.diagnostics: List[str] = []

    def _reject(self, node: ast.stmt, message: str) -> ast.stmt:
        self.diagnostics.append(f"Line {node.lineno}, Col {node.col_offset + 1}: {message}")
        return ast.copy_location(ast.Pass(), node)

    def visit_Import(self, node: ast.Import) -> List[ast.stmt]:
        statements = []
        for alias in node.names:
            if alias.asname:
                statements.append(_bind(alias.asname, _require(alias.name)))
                continue
            top = alias.name.split(".")[0]
            if top != alias.name:
                statements.append(ast.Expr(_require(alias.name)))
            statements.append(_bind(top, _require(top)))
        return [ast.copy_location(statement, node) for statement in statements]

    def visit_ImportFrom(self, node: ast.ImportFrom) -> Any:
        module = node.module or ""
        if node.level:
            return self._reject(node, f"Relative imports are not supported ('from {'.' * node.level}{module} import ...')")
        if any(alias.name == "*" for alias in node.names):
            return self._reject(node, f"Star imports are not supported ('from {module} import *')")
        return [
            ast.copy_location(_bind(alias.asname or alias.name, _require(module, alias.name)), node)
            for alias in node.names
        ]


def rewrite_imports(tree: ast.Module) -> Tuple[ast.Module, List[str]]:
    """
    Turn import statements into `require` calls. Works on the syntax tree,
    so string literals and line numbers are untouched.

    Returns the rewritten tree and diagnostics for imports that cannot be
    expressed (star and relative imports).
    """
    rewriter = ImportRewriter()
    tree = ast.fix_missing_locations(rewriter.visit(tree))
    return tree, rewriter.diagnostics


def wrap_user_code(tree: ast.Module) -> ast.Module:
    """Move the module body into `async def __user_code__():` so `await` and `return` work at top level."""
    wrapper = ast.parse(f"async def {WRAPPER_NAME}():\n    pass").body[0]
    if tree.body:
        wrapper.body = tree.body
        wrapper.end_lineno = tree.body[-1].end_lineno
    return ast.fix_missing_locations(ast.Module(body=[wrapper], type_ignores=[]))


def _bound_names(tree: ast.AST) -> set:
    """Every name the code binds anywhere, regardless of scope."""
    names = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and isinstance(node.ctx, (ast.Store, ast.Del)):
            names.add(node.id)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            names.add(node.name)
        elif isinstance(node, ast.arg):
            names.add(node.arg)
        elif isinstance(node, ast.alias):
            names.add((node.asname or node.name).split(".")[0])
        elif isinstance(node, ast.ExceptHandler) and node.name:
            names.add(node.name)
        elif isinstance(node, (ast.Global, ast.Nonlocal)):
            names.update(node.names)
        elif isinstance(node, (ast.MatchAs, ast.MatchStar)) and node.name:
            names.add(node.name)
        elif isinstance(node, ast.MatchMapping) and node.rest:
            names.add(node.rest)
    return names


def _user_position(lineno: Optional[int], col_offset: Optional[int], user_line_count: int) -> Tuple[int, int]:
    """1-based line and column from a 0-based column offset, clamped to the user's lines."""
    line = min(max(1, lineno or 1), max(1, user_line_count))
    return line, (col_offset or 0) + 1


def _syntax_diagnostic(error: SyntaxError, user_line_count: int) -> str:
    line = min(max(1, error.lineno or 1), max(1, user_line_count))
    return f"Line {line}, Col {error.offset or 1}: {error.msg}"


def _is_harmless(diagnostic: str) -> bool:
    return any(pattern in diagnostic for pattern in HARMLESS_DIAGNOSTICS)


def normalize_code_result(result: Any) -> List[ExecutionItem]:
    """Coerce whatever user code returned into a list of items."""
    if result is None:
        return [ExecutionItem(json={"value": None})]
    if isinstance(result, ExecutionItem):
        return [result]
    if isinstance(result, (list, tuple)):
        result = list(result)
        if not result:
            return []
        first = result[0]
        if isinstance(first, ExecutionItem) or (isinstance(first, dict) and "json" in first):
            return [
                entry if isinstance(entry, ExecutionItem) else ExecutionItem.model_validate(entry)
                for entry in result
            ]
        return [
            ExecutionItem(json=entry if isinstance(entry, dict) else {"value": entry})
            for entry in result
        ]
    if isinstance(result, dict):
        return [ExecutionItem(json=result)]
    return [ExecutionItem(json={"value": result})]


class SandboxConsole:
    """`console` inside user code; lines go to the engine logger."""

    def __init__(self, label: str):
        self.label = label

    def _format(self, args) -> str:
        return " ".join(str(arg) for arg in args)

    def log(self, *args: Any) -> None:
        logger.info(f"[{self.label}] {self._format(args)}")

    info = log

    def debug(self, *args: Any) -> None:
        logger.debug(f"[{self.label}] {self._format(args)}")

    def warn(self, *args: Any) -> None:
        logger.warning(f"[{self.label}] {self._format(args)}")

    warning = warn

    def error(self, *args: Any) -> None:
        logger.error(f"[{self.label}] {self._format(args)}")

    def print(self, *args: Any, **kwargs: Any) -> None:
        self.log(*args)


class CodeRuntime:
    """Validates and executes user code for code, utilities and custom nodes."""

    def __init__(self, module_resolver: Optional[ModuleResolver] = None, timeout_ms: Optional[int] = None):
        self.module_resolver = module_resolver or ModuleResolver()
        self.timeout_ms = timeout_ms or ExecutionConfig.DEFAULT_CODE_TIMEOUT_MS

    # Validation

    def validate(self, code: str, ambient_names: set, type_definitions: Optional[str] = None) -> ast.Module:
        """
        Parse, rewrite imports and check the code. Returns the wrapped tree
        ready to compile; raises CodeValidationError listing what is wrong.
        """
        diagnostics: List[str] = []
        user_line_count = len(code.split("\n"))
        known = set(ambient_names) | set(dir(builtins))

        if type_definitions:
            try:
                type_tree = ast.parse(type_definitions, filename=TYPE_DEFINITIONS_FILENAME)
                known |= _bound_names(type_tree)
            except SyntaxError as e:
                diagnostics.append(f"Type definitions, Line {e.lineno or 1}, Col {e.offset or 1}: {e.msg}")

        tree: Optional[ast.Module] = None
        try:
            parsed = ast.parse(code, filename=USER_CODE_FILENAME)
        except SyntaxError as e:
            diagnostics.append(_syntax_diagnostic(e, user_line_count))
        else:
            parsed, import_diagnostics = rewrite_imports(parsed)
            diagnostics.extend(import_diagnostics)
            tree = wrap_user_code(parsed)
            try:
                compile(tree, USER_CODE_FILENAME, "exec")
            except SyntaxError as e:
                diagnostics.append(_syntax_diagnostic(e, user_line_count))
                tree = None

        if tree is not None:
            known |= _bound_names(tree)
            reported = set()
            for node in ast.walk(tree):
                if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Load):
                    if node.id in known or node.id in reported:
                        continue
                    reported.add(node.id)
                    line, column = _user_position(node.lineno, node.col_offset, user_line_count)
                    diagnostics.append(f"Line {line}, Col {column}: Name '{node.id}' is not defined")

        errors = [d for d in diagnostics if not _is_harmless(d)]
        if errors:
            raise CodeValidationError(errors)
        return tree

    # Execution

    async def _run_with_deadline(self, func: Callable[[], Awaitable[Any]], timeout_ms: int) -> Any:
        """Run `func()` on a worker thread with its own event loop, bounded by `timeout_ms`."""
        timeout = timeout_ms / 1000
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        deadline = time.monotonic() + timeout

        def _local_trace(frame, event, arg):
            if time.monotonic() > deadline:
                raise _DeadlineExceeded()
            return _local_trace

        def _global_trace(frame, event, arg):
            if not frame.f_code.co_filename.startswith(SANDBOX_FILENAME_PREFIX):
                return None
            if time.monotonic() > deadline:
                raise _DeadlineExceeded()
            return _local_trace

        def _settle(setter: Callable[[Any], None], value: Any) -> None:
            if not future.done():
                setter(value)

        def _post(setter: Callable[[Any], None], value: Any) -> None:
            try:
                loop.call_soon_threadsafe(_settle, setter, value)
            except RuntimeError:
                # caller's loop already closed after a timeout
                logger.debug("Sandbox finished after its caller went away")

        def _target() -> None:
            sys.settrace(_global_trace)
            try:
                result = asyncio.run(asyncio.wait_for(func(), timeout))
            except BaseException as e:
                _post(future.set_exception, e)
            else:
                _post(future.set_result, result)
            finally:
                sys.settrace(None)

        context = contextvars.copy_context()
        thread = threading.Thread(target=context.run, args=(_target,), name="typeflow-sandbox", daemon=True)
        thread.start()

        try:
            return await asyncio.wait_for(future, timeout)
        except _DeadlineExceeded as e:
            raise ExecutionTimeoutError() from e
        except asyncio.TimeoutError as e:
            raise ExecutionTimeoutError() from e

    def _locate(self, error: BaseException, code: str, filename: str) -> Optional[SourceLocation]:
        """Map the innermost sandbox frame of a traceback back to user coordinates."""
        current: Optional[BaseException] = error
        user_lines = code.split("\n")
        while current is not None:
            frames = [f for f in traceback.extract_tb(current.__traceback__) if f.filename == filename]
            if frames:
                frame = frames[-1]
                line, column = _user_position(frame.lineno, getattr(frame, "colno", None), len(user_lines))
                snippet = user_lines[line - 1].strip() if line <= len(user_lines) else ""
                return SourceLocation(line=line, column=column, code=snippet, file_name=filename)
            current = current.__cause__ or current.__context__
        return None

    async def run_user_function(
        self,
        code: str,
        namespace: Dict[str, Any],
        timeout_ms: Optional[int] = None,
        error_prefix: str = "Code execution failed: ",
        type_definitions: Optional[str] = None,
    ) -> Any:
        """
        Validate `code`, then run it as the body of an async function whose
        globals are `namespace`. Failures raise CodeValidationError,
        ExecutionTimeoutError or CodeExecutionError (with source location).
        """
        try:
            tree = self.validate(code, set(namespace), type_definitions)
        except CodeValidationError as e:
            raise CodeValidationError(e.diagnostics, prefix=error_prefix) from None
        compiled = compile(tree, USER_CODE_FILENAME, "exec")
        globals_ns: Dict[str, Any] = {"__builtins__": builtins, "__name__": "__typeflow_code__", **namespace}

        async def _invoke() -> Any:
            if type_definitions:
                exec(compile(type_definitions, TYPE_DEFINITIONS_FILENAME, "exec"), globals_ns)
            exec(compiled, globals_ns)
            result = await globals_ns[WRAPPER_NAME]()
            if inspect.isawaitable(result):
                result = await result
            return result

        try:
            return await self._run_with_deadline(_invoke, timeout_ms or self.timeout_ms)
        except ExecutionTimeoutError as e:
            error = ExecutionTimeoutError(f"{error_prefix}Execution timeout")
            error.source_location = self._locate(e, code, USER_CODE_FILENAME)
            raise error from None
        except Exception as e:
            detail = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            raise CodeExecutionError(f"{error_prefix}{detail}", self._locate(e, code, USER_CODE_FILENAME)) from e

    def build_code_namespace(
        self,
        input_items: List[ExecutionItem],
        predecessor_outputs: Dict[str, List[ExecutionItem]],
        utilities: Dict[str, UtilityModule],
        credentials: Dict[str, Any],
        label: str,
    ) -> Dict[str, Any]:
        items = [item.to_dict() for item in input_items]
        first_json = items[0]["json"] if items else {}
        console = SandboxConsole(label)
        namespace: Dict[str, Any] = {
            "_input": items,
            "_json": first_json,
            "_input_item": first_json,
            "_input_all": items,
            "_credentials": credentials,
            "console": console,
            "print": console.print,
            "require": self.module_resolver,
        }
        # keys are already variable names, see predecessor_variables
        for name, output in predecessor_outputs.items():
            output_dicts = [item.to_dict() for item in output or []]
            namespace[name] = {
                "json": output_dicts[0]["json"] if output_dicts else {},
                "input": output_dicts,
            }
        for utility in utilities.values():
            namespace[sanitize_label(utility.label)] = utility.namespace()
        return namespace

    async def run_code_node(
        self,
        code: Optional[str],
        input_items: List[ExecutionItem],
        predecessor_outputs: Optional[Dict[str, List[ExecutionItem]]] = None,
        utilities: Optional[Dict[str, UtilityModule]] = None,
        credentials: Optional[Dict[str, Any]] = None,
        type_definitions: Optional[str] = None,
        label: str = "code",
    ) -> List[ExecutionItem]:
        if not code or not code.strip():
            return input_items

        namespace = self.build_code_namespace(
            input_items, predecessor_outputs or {}, utilities or {}, credentials or {}, label
        )
        result = await self.run_user_function(code, namespace, type_definitions=type_definitions)
        try:
            return normalize_code_result(result)
        except ValueError as e:
            raise CodeExecutionError(f"Code execution failed: invalid return value: {e}") from e

    async def run_utilities(self, node_id: str, label: str, code: Optional[str]) -> UtilityModule:
        """Execute a utilities node at module level and collect what it exports."""
        utility = UtilityModule(node_id=node_id, label=label, code=code or "")
        if not code or not code.strip():
            return utility

        filename = f"{SANDBOX_FILENAME_PREFIX}utilities:{node_id}>"
        module_name = f"typeflow_utilities{sanitize_label(label)}"
        try:
            tree, diagnostics = rewrite_imports(ast.parse(code, filename=filename))
            if diagnostics:
                raise UtilitiesExecutionError(node_id, "; ".join(diagnostics))
            compiled = compile(tree, filename, "exec")
        except SyntaxError as e:
            raise UtilitiesExecutionError(node_id, f"Line {e.lineno}, Col {e.offset}: {e.msg}") from e

        console = SandboxConsole(label)
        namespace: Dict[str, Any] = {
            "__builtins__": builtins,
            "__name__": module_name,
            "console": console,
            "print": console.print,
            "require": self.module_resolver,
        }

        async def _load() -> None:
            exec(compiled, namespace)

        try:
            await self._run_with_deadline(_load, self.timeout_ms)
        except ExecutionTimeoutError as e:
            raise UtilitiesExecutionError(node_id, "Execution timeout") from e
        except Exception as e:
            raise UtilitiesExecutionError(node_id, f"{type(e).__name__}: {e}") from e

        if "__all__" in namespace:
            names = list(namespace["__all__"])
        else:
            names = [
                name
                for name, value in namespace.items()
                if not name.startswith("_")
                and (inspect.isfunction(value) or inspect.isclass(value))
                and getattr(value, "__module__", None) == module_name
            ]
        utility.exports = {name: namespace[name] for name in names if name in namespace}
        logger.debug(f"Utilities '{label}' exported {sorted(utility.exports)}")
        return utility
