# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/cluster/teardown.py

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from rackforge.errors import (
    NodeConnectionError,
    ProvisioningCancelled,
    ProvisioningError,
    TeardownError,
)
from rackforge.observers.dispatcher import EventBus
from rackforge.observers.events import (
    new_ctx,
    NodeResetResult,
    TeardownStarted,
    TeardownSummary,
)
from rackforge.remote.executor import CancelToken, RemoteExecutor
from rackforge.utils.fanout import fan_out

from .models import Node, NodeOutcome, Step
from .steps import reset_steps

log = logging.getLogger("rackforge.teardown")


@dataclass
class TeardownReport:
    cluster_name: str
    outcomes: List[NodeOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(o.ok for o in self.outcomes)

    @property
    def failed(self) -> List[NodeOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def summary(self) -> str:
        return f"OK={len(self.outcomes) - len(self.failed)} FAILED={len(self.failed)}"

    def raise_for_failures(self) -> None:
        if not self.success:
            raise TeardownError(self.cluster_name, self.failed)


class TeardownController:
    """
    Best-effort reset of every node to a pre-cluster state. Every reset step
    is attempted on every node; step failures are collected per node and the
    node is reported FAILED once all of its steps have run.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        *,
        max_workers: int = 8,
        observers: Optional[List] = None,
    ):
        self.executor = executor
        self.max_workers = max_workers
        self.bus = EventBus(observers or [])

    def teardown(
        self,
        nodes: Sequence[Node],
        cluster_name: str,
        *,
        cancel: Optional[Any] = None,
        run_id: Optional[str] = None,
    ) -> TeardownReport:
        ctx = new_ctx(cluster=cluster_name, run_id=run_id or str(uuid.uuid4()))
        log.info("Destroying Kubernetes cluster %s on %d node(s)", cluster_name, len(nodes))
        self.bus.emit(TeardownStarted(nodes=[n.address for n in nodes], **ctx))

        steps = reset_steps()
        outcomes = fan_out(
            nodes,
            lambda node, scope: self._reset_node(node, steps, scope),
            max_workers=self.max_workers,
            cancel=cancel,
            fail_fast=False,
        )

        report = TeardownReport(cluster_name=cluster_name)
        for o in outcomes:
            if not o.ok:
                error = str(o.error)
            else:
                error = "; ".join(o.value) or None
            if error:
                log.warning("[%s] reset failed: %s", o.node.address, error)
            report.outcomes.append(NodeOutcome(node=o.node, ok=error is None, error=error))
            self.bus.emit(NodeResetResult(
                node=o.node.address,
                status="OK" if error is None else "FAILED",
                error=error,
                **ctx,
            ))

        self.bus.emit(TeardownSummary(
            ok=len(report.outcomes) - len(report.failed),
            failed=len(report.failed),
            **ctx,
        ))
        if report.success:
            log.info("Kubernetes cluster %s destroyed successfully", cluster_name)
        else:
            log.error("Teardown of %s incomplete: %s", cluster_name, report.summary())
        return report

    def _reset_node(self, node: Node, steps: Sequence[Step], cancel: CancelToken) -> List[str]:
        """
        Run every reset step on `node`, returning the failures. Only
        cancellation or an unreachable node stops it early.
        """
        errors: List[str] = []
        for step in steps:
            log.info("[%s] %s", node.hostname, step.description)
            try:
                self.executor.run_step(node, step, cancel=cancel)
            except (ProvisioningCancelled, NodeConnectionError):
                raise
            except ProvisioningError as e:
                log.warning("[%s] %s failed, continuing: %s", node.address, step.description, e)
                errors.append(f"{step.description}: {e}")
        return errors
