# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/utils/fanout.py

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from rackforge.cluster.models import Node
from rackforge.errors import ProvisioningCancelled

log = logging.getLogger("rackforge.fanout")


class CancelScope:
    """
    Cancellation token for one fan-out. Set locally when a sibling task fails,
    and also reports set once the caller's parent token is set.
    """

    def __init__(self, parent: Optional[Any] = None):
        self._event = threading.Event()
        self._parent = parent

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set() or (self._parent is not None and self._parent.is_set())

    def wait(self, timeout: Optional[float] = None) -> bool:
        self._event.wait(timeout)
        return self.is_set()


@dataclass
class TaskOutcome:
    node: Node
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def fan_out(
    nodes: Sequence[Node],
    fn: Callable[[Node, CancelScope], Any],
    *,
    max_workers: int = 8,
    cancel: Optional[Any] = None,
    fail_fast: bool = True,
) -> List[TaskOutcome]:
    """
    Run `fn(node, scope)` for every node on a bounded thread pool and return
    only when all of them have finished. Outcomes come back in roster order.

    With `fail_fast`, the first failure sets the scope so in-flight siblings
    stop at their next poll and queued ones never start a command.
    """
    if not nodes:
        return []

    scope = CancelScope(cancel)
    outcomes: Dict[Node, TaskOutcome] = {}
    workers = max(1, min(max_workers, len(nodes)))

    with concurrent.futures.ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix="rackforge"
    ) as pool:
        futures = {pool.submit(fn, node, scope): node for node in nodes}
        for fut in concurrent.futures.as_completed(futures):
            node = futures[fut]
            try:
                outcomes[node] = TaskOutcome(node=node, value=fut.result())
            except Exception as e:
                outcomes[node] = TaskOutcome(node=node, error=e)
                if fail_fast and not scope.is_set():
                    log.debug("[%s] failed, cancelling sibling tasks", node.address)
                    scope.set()

    return [outcomes[n] for n in nodes]


def _is_cancellation(error: Optional[BaseException]) -> bool:
    # PhaseFailure carries the underlying error on `.cause`
    cause = getattr(error, "cause", None)
    return isinstance(error, ProvisioningCancelled) or isinstance(cause, ProvisioningCancelled)


def first_failure(outcomes: Sequence[TaskOutcome]) -> Optional[TaskOutcome]:
    """
    The failure to report for a fail-fast fan-out: the first real error in
    roster order, falling back to a cancellation if that is all there is.
    """
    failed = [o for o in outcomes if not o.ok]
    for outcome in failed:
        if not _is_cancellation(outcome.error):
            return outcome
    return failed[0] if failed else None
