"""
Parallel reduction of the binary-splitting tree.

The recursion over [lo, hi) is laid out up front as an explicit task graph:
a list of nodes addressed by index, bisected top-down until a node spans at
most `leaf_terms` terms. Leaves are evaluated on a fixed-size thread pool;
an inner node is merged as soon as both of its children hold a triple, and
always as merge(left, right). The shape of the tree alone fixes the merge
order, so the result does not depend on which thread finishes first.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .checkpoint import CheckpointScheduler, SnapshotBuilder
from .errors import LimbCeilingExceeded, TaskFailure
from .models import Checkpoint, TermRange
from .progress import NullProgressSink, ProgressSink
from .series import IDENTITY, SeriesEvaluator, Triple

logger = logging.getLogger(__name__)

# Upper bound on how long a waiting dispatcher goes without re-checking cancellation.
_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class Prefix:
    """Merged triple of the completed ranges [0, end)."""

    ranges: Tuple[TermRange, ...]
    triple: Triple

    @property
    def end(self) -> int:
        return self.ranges[-1][1] if self.ranges else 0

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint) -> "Prefix":
        return cls(checkpoint.completed_ranges, checkpoint.partial)


EMPTY_PREFIX = Prefix((), IDENTITY)


class _Node:
    __slots__ = ("lo", "hi", "parent", "left", "right", "triple", "pending")

    def __init__(self, lo: int, hi: int, parent: int) -> None:
        self.lo = lo
        self.hi = hi
        self.parent = parent
        self.left = -1
        self.right = -1
        self.triple: Optional[Triple] = None
        self.pending = 0

    @property
    def is_leaf(self) -> bool:
        return self.left < 0


class TaskGraph:
    """Bisection tree over [lo, hi); node 0 is the root."""

    ROOT = 0

    def __init__(self, lo: int, hi: int, leaf_terms: int) -> None:
        if hi <= lo:
            raise ValueError(f"empty term range [{lo}, {hi})")
        if leaf_terms < 1:
            raise ValueError("leaf_terms must be >= 1")
        self.nodes: List[_Node] = [_Node(lo, hi, -1)]
        frontier = deque([self.ROOT])
        while frontier:
            idx = frontier.popleft()
            node = self.nodes[idx]
            if node.hi - node.lo <= leaf_terms:
                continue
            m = (node.lo + node.hi) // 2
            node.left = len(self.nodes)
            self.nodes.append(_Node(node.lo, m, idx))
            node.right = len(self.nodes)
            self.nodes.append(_Node(m, node.hi, idx))
            node.pending = 2
            frontier.extend((node.left, node.right))
        self.leaves: List[int] = sorted(
            (i for i, n in enumerate(self.nodes) if n.is_leaf),
            key=lambda i: self.nodes[i].lo,
        )

    @property
    def root(self) -> _Node:
        return self.nodes[self.ROOT]

    def completed_prefix(self) -> List[_Node]:
        """
        Maximal completed nodes covering a prefix of the range, left to
        right. Caller must hold the lock guarding node state.
        """
        parts: List[_Node] = []
        node = self.root
        while True:
            if node.triple is not None:
                parts.append(node)
                return parts
            if node.is_leaf:
                return parts
            left = self.nodes[node.left]
            if left.triple is not None:
                parts.append(left)
                node = self.nodes[node.right]
            else:
                node = left


class Reducer:
    """
    Evaluates [prefix.end, total_terms) and merges it onto `prefix`.

    Single use: build one per computation, call run() once.
    """

    def __init__(
        self,
        evaluator: SeriesEvaluator,
        total_terms: int,
        *,
        target_digits: int,
        prefix: Prefix = EMPTY_PREFIX,
        workers: int = 1,
        max_in_flight: Optional[int] = None,
        leaf_terms: int = 32,
        progress: Optional[ProgressSink] = None,
        scheduler: Optional[CheckpointScheduler] = None,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        started_at: Optional[float] = None,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if prefix.end > total_terms:
            raise ValueError(
                f"prefix ends at term {prefix.end}, beyond total {total_terms}"
            )
        self.evaluator = evaluator
        self.total_terms = total_terms
        self.target_digits = target_digits
        self.prefix = prefix
        self.workers = workers
        self.max_in_flight = max_in_flight if max_in_flight is not None else 2 * workers
        self.progress = progress if progress is not None else NullProgressSink()
        self.scheduler = scheduler
        self.cancel = cancel if cancel is not None else threading.Event()
        self._clock = clock
        self._started_at = started_at if started_at is not None else clock()

        self.graph: Optional[TaskGraph] = None
        if prefix.end < total_terms:
            self.graph = TaskGraph(prefix.end, total_terms, leaf_terms)

        self._cond = threading.Condition()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._in_flight = 0
        self._active = 0
        self._failure: Optional[BaseException] = None
        self.completed_terms = prefix.end
        self.dispatched = 0
        self.merges = 0

    # =========================
    # Driver
    # =========================

    def run(self) -> Optional[Triple]:
        """
        Returns the triple for [0, total_terms), or None when cancelled.
        Raises LimbCeilingExceeded or TaskFailure if a task failed.
        """
        if self.graph is None:
            self._report()
            return self.prefix.triple

        logger.info(
            "reducing terms [%d, %d) over %d leaves",
            self.prefix.end,
            self.total_terms,
            len(self.graph.leaves),
            extra={"terms": self.total_terms, "workers": self.workers},
        )
        self._executor = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="pi-worker"
        )
        try:
            self._dispatch()
            self._await_settled()
        finally:
            self._executor.shutdown(wait=True, cancel_futures=self._failure is not None)

        if self._failure is not None:
            raise self._failure
        root = self.graph.root.triple
        if root is None:
            logger.info(
                "reduction cancelled after %d of %d terms",
                self.completed_terms,
                self.total_terms,
                extra={"completed_terms": self.completed_terms},
            )
            return None
        if not self.prefix.ranges:
            return root
        return self.evaluator.merge(self.prefix.triple, root)

    def _stopping(self) -> bool:
        return self._failure is not None or self.cancel.is_set()

    def _dispatch(self) -> None:
        for leaf_id in self.graph.leaves:
            with self._cond:
                while self._in_flight >= self.max_in_flight and not self._stopping():
                    self._cond.wait(timeout=_POLL_SECONDS)
                if self._stopping():
                    logger.debug("dispatch stopped with %d leaves sent", self.dispatched)
                    return
                self._in_flight += 1
                self._active += 1
                self.dispatched += 1
            self._executor.submit(self._run_leaf, leaf_id)

    def _await_settled(self) -> None:
        root = self.graph.root
        with self._cond:
            while True:
                if self._failure is not None or root.triple is not None:
                    return
                if self.cancel.is_set() and self._active == 0:
                    return
                self._cond.wait(timeout=_POLL_SECONDS)

    # =========================
    # Tasks
    # =========================

    def _run_leaf(self, node_id: int) -> None:
        node = self.graph.nodes[node_id]
        try:
            triple = self.evaluator.evaluate(node.lo, node.hi)
        except Exception as exc:
            self._task_failed(node, exc, leaf=True)
            return
        self._complete(node_id, triple, leaf=True)

    def _run_merge(self, node_id: int) -> None:
        node = self.graph.nodes[node_id]
        left = self.graph.nodes[node.left]
        right = self.graph.nodes[node.right]
        try:
            triple = self.evaluator.merge(left.triple, right.triple)
        except Exception as exc:
            self._task_failed(node, exc, leaf=False)
            return
        self._complete(node_id, triple, leaf=False)

    def _complete(self, node_id: int, triple: Triple, leaf: bool) -> None:
        node = self.graph.nodes[node_id]
        merge_parent = -1
        with self._cond:
            node.triple = triple
            if leaf:
                self._in_flight -= 1
                self.completed_terms += node.hi - node.lo
            else:
                # Children are folded into this node; release them.
                self.graph.nodes[node.left].triple = None
                self.graph.nodes[node.right].triple = None
                self.merges += 1
            if node.parent >= 0:
                parent = self.graph.nodes[node.parent]
                parent.pending -= 1
                if parent.pending == 0 and not self._stopping():
                    merge_parent = node.parent
                    self._active += 1
            self._active -= 1
            merges = self.merges
            self._cond.notify_all()

        self._report()
        if not leaf and self.scheduler is not None:
            self.scheduler.tick(merges, self.capture)
        if merge_parent >= 0:
            self._submit_merge(merge_parent)

    def _submit_merge(self, node_id: int) -> None:
        try:
            self._executor.submit(self._run_merge, node_id)
        except RuntimeError:
            # run() already shut the pool down after another task failed.
            with self._cond:
                self._active -= 1
                self._cond.notify_all()
            logger.debug("merge for node %d dropped, pool is shut down", node_id)

    def _task_failed(self, node: _Node, exc: Exception, leaf: bool) -> None:
        if isinstance(exc, LimbCeilingExceeded):
            error: BaseException = exc
        else:
            error = TaskFailure(node.lo, node.hi, exc)
            error.__cause__ = exc
        with self._cond:
            if leaf:
                self._in_flight -= 1
            self._active -= 1
            if self._failure is None:
                self._failure = error
                logger.error("task for terms [%d, %d) failed: %s", node.lo, node.hi, exc)
            self._cond.notify_all()

    def _report(self) -> None:
        elapsed = self._clock() - self._started_at
        try:
            self.progress.on_progress(self.completed_terms, self.total_terms, elapsed)
        except Exception:
            logger.warning("progress sink raised", exc_info=True)

    # =========================
    # Snapshots
    # =========================

    def capture(self) -> SnapshotBuilder:
        """
        Capture the completed prefix under the lock; the returned builder
        merges it into a Checkpoint (or returns None if nothing new
        completed) and may run on any thread.
        """
        with self._cond:
            if self.graph is None:
                parts = []
            else:
                parts = [(n.lo, n.hi, n.triple) for n in self.graph.completed_prefix()]
        prefix = self.prefix
        evaluator = self.evaluator
        target_digits = self.target_digits

        def build() -> Optional[Checkpoint]:
            if not parts:
                return None
            if prefix.ranges:
                triple = prefix.triple
                remaining = parts
            else:
                triple = parts[0][2]
                remaining = parts[1:]
            for _, _, part in remaining:
                triple = evaluator.merge(triple, part)
            ranges = prefix.ranges + tuple((lo, hi) for lo, hi, _ in parts)
            return Checkpoint.create(target_digits, ranges, triple)

        return build
