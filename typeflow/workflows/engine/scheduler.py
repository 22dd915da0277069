import logging
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Set

from typeflow.workflows.engine.constants import FanInMode
from typeflow.workflows.engine.graph import WorkflowGraph

logger = logging.getLogger(__name__)


class ExecutionScheduler:
    """
    Dependency-count queue over the nodes of one run.

    Each node in scope tracks how many of its in-scope predecessors are still
    outstanding. In GATED mode a node becomes ready when that count reaches
    zero; in EAGER mode it becomes ready as soon as any predecessor finishes
    (the historical full-run order). Nodes already finished by an earlier
    call (debug resume) are passed in as `done`.
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        scope: Iterable[str],
        mode: FanInMode = FanInMode.GATED,
        done: Iterable[str] = (),
    ):
        self.graph = graph
        self.mode = mode
        self.scope: Set[str] = set(scope)
        # Raises CyclicGraphError before anything runs
        self.order: List[str] = graph.topological_order(self.scope)

        self.done: Set[str] = {node_id for node_id in done if node_id in self.scope}
        self._queued: Set[str] = set()
        self._queue: Deque[str] = deque()
        self._remaining: Dict[str, int] = {}

        for node_id in self.order:
            preds = graph.in_scope_predecessors(node_id, self.scope)
            self._remaining[node_id] = sum(1 for pid in preds if pid not in self.done)

        for node_id in self.order:
            if node_id not in self.done and self._remaining[node_id] == 0:
                self._enqueue(node_id)

    def _enqueue(self, node_id: str) -> None:
        if node_id in self.done or node_id in self._queued:
            return
        self._queued.add(node_id)
        self._queue.append(node_id)

    def next_ready(self) -> Optional[str]:
        if not self._queue:
            return None
        node_id = self._queue.popleft()
        self._queued.discard(node_id)
        return node_id

    def peek_ready(self) -> List[str]:
        return list(self._queue)

    def mark_done(self, node_id: str) -> None:
        """Record a node as finished (executed or skipped) and release its successors."""
        self.done.add(node_id)
        for target in self.graph.successors(node_id):
            if target not in self.scope or target in self.done:
                continue
            # one decrement per distinct predecessor
            self._remaining[target] = max(0, self._remaining[target] - 1)
            if self.mode == FanInMode.EAGER or self._remaining[target] == 0:
                self._enqueue(target)

    def successors_in_scope(self, node_id: str) -> List[str]:
        return [target for target in self.graph.successors(node_id) if target in self.scope]

    @property
    def has_pending(self) -> bool:
        return bool(self._queue)

    def unfinished(self) -> List[str]:
        return [node_id for node_id in self.order if node_id not in self.done]
