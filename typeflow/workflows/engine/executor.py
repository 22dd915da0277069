"""
Workflow execution engine.

`WorkflowEngine` runs a workflow graph in one of three modes that share a
single traversal loop:

- full run (`execute_workflow`): trigger and everything downstream of it
- targeted run (`execute_until_node`): only the ancestors of a target node,
  stopping once the target completed
- debug run (`execute_with_debug` / `execute_one_node`): breakpoints,
  single steps and resumption from a previous state

Nodes run one at a time in the order the `ExecutionScheduler` releases them.
The first failing node halts the run; its error is recorded in its
NodeResult. Graph errors (unknown workflow, cycles, no trigger) are raised.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from typeflow.config import settings
from typeflow.utils.run_context import bind_execution_id
from typeflow.workflows.engine.constants import ExecutionStatus, FanInMode, NodeKind
from typeflow.workflows.engine.context import NodeContext, RunContext
from typeflow.workflows.engine.debug import (
    DebugExecutionOptions,
    DebugExecutionResult,
    DebugPreviousState,
    DebugStackFrame,
)
from typeflow.workflows.engine.definitions import (
    ConditionalOutput,
    Connection,
    ExecutionItem,
    Node,
    WorkflowDefinition,
    empty_items,
    make_item,
)
from typeflow.workflows.engine.error_handler import ErrorClassifier
from typeflow.workflows.engine.errors import UnknownNodeTypeError, UtilitiesExecutionError, WorkflowNotFoundError
from typeflow.workflows.engine.graph import WorkflowGraph
from typeflow.workflows.engine.nodes import NodeRegistry
from typeflow.workflows.engine.nodes.loader import NodeLoader, NodePackageLoader
from typeflow.workflows.engine.results import NodeResult, WorkflowExecutionResult
from typeflow.workflows.engine.runtime.code import CodeRuntime
from typeflow.workflows.engine.runtime.http import HTTPRuntime
from typeflow.workflows.engine.runtime.modules import ModuleResolver
from typeflow.workflows.engine.scheduler import ExecutionScheduler
from typeflow.workflows.logger import WorkflowExecutorLogger

logger = logging.getLogger(__name__)


@dataclass
class TraversalOutcome:
    """Where a traversal stopped and why."""
    error: Optional[str] = None
    failed_node_id: Optional[str] = None
    last_executed_node_id: Optional[str] = None
    paused_at_node_id: Optional[str] = None
    next_node_ids: List[str] = field(default_factory=list)

    @property
    def is_paused(self) -> bool:
        return self.paused_at_node_id is not None and self.error is None


@dataclass
class DebugRun:
    """Debug settings and the call stack of one debug call."""
    breakpoints: Set[str] = field(default_factory=set)
    stop_at_node: Optional[str] = None
    capture_stack_traces: bool = False
    # Breakpoint the previous call paused on; not hit a second time
    resumed_from: Optional[str] = None
    call_stack: List[DebugStackFrame] = field(default_factory=list)

    def should_break(self, node_id: str) -> bool:
        if self.stop_at_node is not None or node_id == self.resumed_from:
            return False
        return node_id in self.breakpoints

    def record(
        self,
        node: Node,
        items: List[ExecutionItem],
        result: NodeResult,
        error: Optional[BaseException],
    ) -> None:
        frame = DebugStackFrame(
            node_id=node.id,
            node_label=node.display_label,
            node_type=node.type,
            input=items,
            output=result.output,
            error=result.error,
        )
        if error is not None and self.capture_stack_traces:
            frame.source_location = getattr(error, "source_location", None)
        self.call_stack.append(frame)


class WorkflowEngine:
    """
    Executes workflows.

    Collaborators are injected: `repository` loads workflow definitions and
    custom node types, `credential_service` hands out credential clients,
    `package_manager` locates per-organization packages for `require`,
    `node_loader` resolves external node types.
    """

    def __init__(
        self,
        repository,
        credential_service=None,
        package_manager=None,
        node_loader: Optional[NodeLoader] = None,
        event_logger_factory: Optional[Callable[[str, str], WorkflowExecutorLogger]] = None,
        code_timeout_ms: Optional[int] = None,
        fan_in_mode: Optional[FanInMode] = None,
        http_runtime: Optional[HTTPRuntime] = None,
    ):
        self.repository = repository
        self.credential_service = credential_service
        self.package_manager = package_manager
        if node_loader is None and settings.NODE_PACKAGES_DIR:
            node_loader = NodePackageLoader(settings.NODE_PACKAGES_DIR)
        self.node_loader = node_loader
        self.event_logger_factory = event_logger_factory or WorkflowExecutorLogger
        self.code_timeout_ms = code_timeout_ms or settings.CODE_EXECUTION_TIMEOUT_MS
        self.fan_in_mode = FanInMode(fan_in_mode or settings.FAN_IN_MODE)
        self.http_runtime = http_runtime or HTTPRuntime(timeout_ms=settings.HTTP_REQUEST_TIMEOUT_MS)
        self._code_runtimes: Dict[str, CodeRuntime] = {}

    def code_runtime(self, organization_id: str) -> CodeRuntime:
        """Sandbox whose `require` resolves the organization's packages first."""
        runtime = self._code_runtimes.get(organization_id)
        if runtime is None:
            packages_path = None
            if self.package_manager is not None:
                packages_path = self.package_manager.get_packages_path(organization_id)
            runtime = CodeRuntime(ModuleResolver(packages_path), self.code_timeout_ms)
            self._code_runtimes[organization_id] = runtime
        return runtime

    async def aclose(self) -> None:
        if self.credential_service is not None:
            await self.credential_service.disconnect_all()

    # Entry points

    async def execute_workflow(
        self,
        workflow_id: str,
        organization_id: str,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> WorkflowExecutionResult:
        workflow = await self._load_workflow(workflow_id, organization_id)
        graph = WorkflowGraph(workflow.nodes, workflow.connections)
        trigger = graph.find_trigger()
        scope = self._downstream_scope(graph, trigger.id)

        with bind_execution_id() as execution_id:
            run = RunContext(self, workflow, graph, execution_id)
            events = self.event_logger_factory(workflow.id, execution_id)
            scheduler = ExecutionScheduler(graph, scope, self.fan_in_mode)
            logger.info(f"Executing workflow {workflow.id} ({len(scope)} nodes, {self.fan_in_mode.value} fan-in)")
            events.log_workflow_start("full")

            failure = await self._prepare_utilities(run)
            if failure is not None:
                events.log_workflow_failed(failure)
                return WorkflowExecutionResult(success=False, node_results=run.node_results, error=failure)

            outcome = await self._traverse(run, scheduler, trigger.id, trigger_data, events)
            final_output = run.node_outputs.get(outcome.last_executed_node_id) if outcome.last_executed_node_id else None
            return self._finish(run, outcome, events, final_output)

    async def execute_until_node(
        self,
        workflow_id: str,
        organization_id: str,
        target_node_id: str,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> WorkflowExecutionResult:
        workflow = await self._load_workflow(workflow_id, organization_id)
        graph = WorkflowGraph(workflow.nodes, workflow.connections)
        graph.get_node(target_node_id)
        trigger = graph.find_trigger()

        reachable = self._downstream_scope(graph, trigger.id)
        scope = reachable & (graph.predecessors(target_node_id) | {target_node_id, trigger.id})
        if target_node_id not in scope:
            logger.warning(f"Node {target_node_id} is not reachable from trigger {trigger.id}")

        with bind_execution_id() as execution_id:
            run = RunContext(self, workflow, graph, execution_id)
            events = self.event_logger_factory(workflow.id, execution_id)
            scheduler = ExecutionScheduler(graph, scope, FanInMode.GATED)
            logger.info(f"Executing workflow {workflow.id} until node {target_node_id} ({len(scope)} nodes)")
            events.log_workflow_start("until_node")

            failure = await self._prepare_utilities(run)
            if failure is not None:
                events.log_workflow_failed(failure)
                return WorkflowExecutionResult(success=False, node_results=run.node_results, error=failure)

            outcome = await self._traverse(run, scheduler, trigger.id, trigger_data, events, stop_after=target_node_id)
            return self._finish(run, outcome, events, run.node_outputs.get(target_node_id))

    async def execute_with_debug(
        self,
        workflow_id: str,
        organization_id: str,
        options: Optional[DebugExecutionOptions] = None,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> DebugExecutionResult:
        """
        Run until a breakpoint, `stop_at_node` or the end of the workflow.

        A breakpoint pauses *before* its node runs; `stop_at_node` pauses
        right *after* that node ran. Pass the returned state back as
        `options.previous_state` to continue.
        """
        options = options or DebugExecutionOptions()
        workflow = await self._load_workflow(workflow_id, organization_id)
        graph = WorkflowGraph(workflow.nodes, workflow.connections)
        trigger = graph.find_trigger()
        scope = self._downstream_scope(graph, trigger.id)

        with bind_execution_id() as execution_id:
            run = RunContext(self, workflow, graph, execution_id)
            events = self.event_logger_factory(workflow.id, execution_id)
            previous = options.previous_state
            debug = DebugRun(
                breakpoints=set(options.breakpoints),
                stop_at_node=options.stop_at_node,
                capture_stack_traces=options.capture_stack_traces,
                resumed_from=previous.paused_at_node_id if previous else None,
                call_stack=list(previous.call_stack) if previous else [],
            )
            events.log_workflow_start("debug")

            failure = await self._prepare_utilities(run)
            if failure is not None:
                events.log_workflow_failed(failure)
                return DebugExecutionResult(success=False, node_results=run.node_results, error=failure)

            done = self._restore(run, previous)
            scheduler = ExecutionScheduler(graph, scope, FanInMode.GATED, done=done)
            outcome = await self._traverse(run, scheduler, trigger.id, trigger_data, events, debug=debug)
            if outcome.last_executed_node_id is None and previous is not None:
                outcome.last_executed_node_id = previous.last_executed_node_id
            return self._debug_result(run, outcome, events, debug)

    async def execute_one_node(
        self,
        workflow_id: str,
        organization_id: str,
        node_id: str,
        previous_state: Optional[DebugPreviousState] = None,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> DebugExecutionResult:
        """Step over: run exactly `node_id` on top of `previous_state` and pause after it."""
        workflow = await self._load_workflow(workflow_id, organization_id)
        graph = WorkflowGraph(workflow.nodes, workflow.connections)
        node = graph.get_node(node_id)
        trigger = graph.find_trigger()
        scope = self._downstream_scope(graph, trigger.id)

        with bind_execution_id() as execution_id:
            run = RunContext(self, workflow, graph, execution_id)
            events = self.event_logger_factory(workflow.id, execution_id)
            debug = DebugRun(
                capture_stack_traces=True,
                call_stack=list(previous_state.call_stack) if previous_state else [],
            )
            events.log_workflow_start("step")

            failure = await self._prepare_utilities(run)
            if failure is not None:
                events.log_workflow_failed(failure)
                return DebugExecutionResult(success=False, node_results=run.node_results, error=failure)

            done = self._restore(run, previous_state)
            scheduler = ExecutionScheduler(graph, scope, FanInMode.GATED, done=done)
            outcome = TraversalOutcome(
                last_executed_node_id=previous_state.last_executed_node_id if previous_state else None
            )
            result = await self._step(run, scheduler, node, trigger.id, trigger_data, events, debug)
            if result is not None and not result.completed:
                outcome.error = result.error
                outcome.failed_node_id = node.id
            else:
                if result is not None:
                    outcome.last_executed_node_id = node.id
                outcome.next_node_ids = self._next_after(scheduler, node.id)
                if outcome.next_node_ids:
                    outcome.paused_at_node_id = node.id
            return self._debug_result(run, outcome, events, debug)

    # Traversal

    async def _traverse(
        self,
        run: RunContext,
        scheduler: ExecutionScheduler,
        trigger_id: str,
        trigger_data: Optional[Dict[str, Any]],
        events: WorkflowExecutorLogger,
        stop_after: Optional[str] = None,
        debug: Optional[DebugRun] = None,
    ) -> TraversalOutcome:
        outcome = TraversalOutcome()

        while True:
            node_id = scheduler.next_ready()
            if node_id is None:
                break
            node = run.graph.get_node(node_id)

            if debug is not None and debug.should_break(node_id) and not self._is_dead(run, node_id, trigger_id):
                logger.info(f"Breakpoint hit before node {node.display_label}")
                outcome.paused_at_node_id = node_id
                outcome.next_node_ids = scheduler.successors_in_scope(node_id)
                return outcome

            result = await self._step(run, scheduler, node, trigger_id, trigger_data, events, debug)
            if result is None:
                continue
            if not result.completed:
                outcome.error = result.error
                outcome.failed_node_id = node_id
                return outcome

            outcome.last_executed_node_id = node_id
            if node_id == stop_after:
                break
            if debug is not None and node_id == debug.stop_at_node:
                outcome.next_node_ids = self._next_after(scheduler, node_id)
                if outcome.next_node_ids:
                    outcome.paused_at_node_id = node_id
                return outcome

        return outcome

    async def _step(
        self,
        run: RunContext,
        scheduler: ExecutionScheduler,
        node: Node,
        trigger_id: str,
        trigger_data: Optional[Dict[str, Any]],
        events: WorkflowExecutorLogger,
        debug: Optional[DebugRun] = None,
    ) -> Optional[NodeResult]:
        """Run (or skip) one node and release its successors. Returns None when skipped."""
        if self._is_dead(run, node.id, trigger_id):
            logger.info(f"Skipping node {node.display_label}: no live input branch")
            run.skipped.add(node.id)
            scheduler.mark_done(node.id)
            events.log_node_skipped(node.id)
            return None

        items = self._gather_input(run, node, trigger_id, trigger_data)
        result, error = await self._execute_node(run, node, items, events)
        if debug is not None:
            debug.record(node, items, result, error)
        if result.completed:
            scheduler.mark_done(node.id)
        return result

    async def _execute_node(
        self,
        run: RunContext,
        node: Node,
        items: List[ExecutionItem],
        events: WorkflowExecutorLogger,
    ) -> Tuple[NodeResult, Optional[BaseException]]:
        logger.info(f"Executing node {node.display_label} ({node.type}) with {len(items)} input items")
        events.log_node_start(node.id, len(items))
        start = time.perf_counter()

        try:
            executor = NodeRegistry.get(node.kind)
            if executor is None:
                raise UnknownNodeTypeError(node.type)
            output = await executor.execute(NodeContext(run, node), items)
        except Exception as e:
            duration = (time.perf_counter() - start) * 1000
            error_context = ErrorClassifier.classify(e)
            logger.error(f"Node {node.display_label} failed: {e} ({error_context.category.value})")
            result = NodeResult(
                node_id=node.id,
                node_label=node.display_label,
                status=ExecutionStatus.FAILED,
                error=str(e),
                duration=duration,
            )
            run.node_results[node.id] = result
            events.log_node_failed(node.id, str(e), error_context.to_dict())
            return result, e

        duration = (time.perf_counter() - start) * 1000
        handle_outputs = None
        if isinstance(output, ConditionalOutput):
            handle_outputs = output.outputs
            run.handle_outputs[node.id] = handle_outputs
            output = output.flatten()

        run.node_outputs[node.id] = output
        result = NodeResult(
            node_id=node.id,
            node_label=node.display_label,
            status=ExecutionStatus.COMPLETED,
            output=output,
            outputs=handle_outputs,
            duration=duration,
        )
        run.node_results[node.id] = result
        logger.info(f"Node {node.display_label} completed in {duration:.1f}ms with {len(output)} items")
        events.log_node_complete(node.id, len(output), duration)
        return result, None

    # Data flow

    @staticmethod
    def _edge_items(run: RunContext, conn: Connection) -> Optional[List[ExecutionItem]]:
        """Items an edge delivers, None when its source has not run."""
        source = conn.source_node_id
        handles = run.handle_outputs.get(source)
        if handles is not None:
            handle = conn.source_handle
            if handle is None:
                handle = "true" if "true" in handles else next(iter(handles), None)
            return list(handles.get(handle, []))
        output = run.node_outputs.get(source)
        return list(output) if output is not None else None

    def _is_dead(self, run: RunContext, node_id: str, trigger_id: str) -> bool:
        """
        True when every incoming edge is dead: its source was skipped or it
        carries an empty conditional branch.
        """
        if node_id == trigger_id:
            return False
        incoming = run.graph.incoming(node_id)
        if not incoming:
            return False
        for conn in incoming:
            if conn.source_node_id in run.skipped:
                continue
            if conn.source_node_id in run.handle_outputs and not self._edge_items(run, conn):
                continue
            return False
        return True

    def _gather_input(
        self,
        run: RunContext,
        node: Node,
        trigger_id: str,
        trigger_data: Optional[Dict[str, Any]],
    ) -> List[ExecutionItem]:
        if node.id == trigger_id:
            return [make_item(trigger_data or {})]

        incoming = run.graph.incoming(node.id)
        if not incoming:
            return empty_items()
        if len(incoming) == 1:
            items = self._edge_items(run, incoming[0])
            return items if items is not None else empty_items()

        # fan-in: concatenate in connection order
        items: List[ExecutionItem] = []
        for conn in incoming:
            items.extend(self._edge_items(run, conn) or [])
        return items or empty_items()

    # Run setup and results

    async def _load_workflow(self, workflow_id: str, organization_id: str) -> WorkflowDefinition:
        workflow = await self.repository.get_workflow(workflow_id, organization_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    @staticmethod
    def _downstream_scope(graph: WorkflowGraph, trigger_id: str) -> Set[str]:
        return graph.descendants(trigger_id) | {trigger_id}

    async def _prepare_utilities(self, run: RunContext) -> Optional[str]:
        """Execute every utilities node into the run's registry. Returns the error on failure."""
        runtime = self.code_runtime(run.organization_id)
        for node in run.graph.nodes:
            if node.kind != NodeKind.UTILITIES:
                continue
            start = time.perf_counter()
            try:
                run.utilities[node.id] = await runtime.run_utilities(
                    node.id, node.display_label, node.config.get("code")
                )
            except UtilitiesExecutionError as e:
                logger.error(f"Utilities node {node.display_label} failed: {e}")
                run.node_results[node.id] = NodeResult(
                    node_id=node.id,
                    node_label=node.display_label,
                    status=ExecutionStatus.FAILED,
                    error=str(e),
                    duration=(time.perf_counter() - start) * 1000,
                )
                return str(e)
        return None

    @staticmethod
    def _restore(run: RunContext, previous: Optional[DebugPreviousState]) -> Set[str]:
        """Load a previous debug state into the run and return the nodes already done."""
        if previous is None:
            return set()

        done: Set[str] = set()
        for node_id, result in previous.node_results.items():
            if node_id not in run.graph.node_map or not result.completed:
                continue
            run.node_results[node_id] = result
            if result.output is not None:
                run.node_outputs[node_id] = result.output
            if result.outputs is not None:
                run.handle_outputs[node_id] = result.outputs
            done.add(node_id)

        for node_id, output in previous.node_outputs.items():
            if node_id in run.graph.node_map:
                run.node_outputs[node_id] = output

        last = previous.last_executed_node_id
        if last and last in run.graph.node_map:
            done.add(last)
            done |= run.graph.predecessors(last)
        return done

    @staticmethod
    def _next_after(scheduler: ExecutionScheduler, node_id: str) -> List[str]:
        """Nodes ready to run next, the finished node's successors first."""
        # a stepped node may still sit in the queue
        ready = [n for n in scheduler.peek_ready() if n != node_id]
        successors = set(scheduler.successors_in_scope(node_id))
        return [n for n in ready if n in successors] + [n for n in ready if n not in successors]

    @staticmethod
    def _finish(
        run: RunContext,
        outcome: TraversalOutcome,
        events: WorkflowExecutorLogger,
        final_output: Optional[List[ExecutionItem]],
    ) -> WorkflowExecutionResult:
        if outcome.error is not None:
            logger.error(f"Workflow {run.workflow.id} failed at node {outcome.failed_node_id}: {outcome.error}")
            events.log_workflow_failed(outcome.error)
            return WorkflowExecutionResult(success=False, node_results=run.node_results, error=outcome.error)

        logger.info(f"Workflow {run.workflow.id} completed: {len(run.node_results)} nodes executed")
        events.log_workflow_complete()
        return WorkflowExecutionResult(success=True, node_results=run.node_results, final_output=final_output)

    @staticmethod
    def _debug_result(
        run: RunContext,
        outcome: TraversalOutcome,
        events: WorkflowExecutorLogger,
        debug: DebugRun,
    ) -> DebugExecutionResult:
        result = DebugExecutionResult(
            success=outcome.error is None,
            node_results=run.node_results,
            node_outputs=run.node_outputs,
            error=outcome.error,
            last_executed_node_id=outcome.last_executed_node_id,
            call_stack=debug.call_stack,
        )
        if outcome.error is not None:
            events.log_workflow_failed(outcome.error)
            return result

        if outcome.is_paused:
            result.is_paused = True
            result.paused_at_node_id = outcome.paused_at_node_id
            result.next_node_ids = outcome.next_node_ids
            events.log_workflow_paused(outcome.paused_at_node_id)
            return result

        if outcome.last_executed_node_id:
            result.final_output = run.node_outputs.get(outcome.last_executed_node_id)
        events.log_workflow_complete()
        return result
