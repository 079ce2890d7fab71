# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/cluster/provisioner.py

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from rackforge.errors import (
    PhaseFailure,
    ProvisioningError,
    SequencingError,
)
from rackforge.observers.dispatcher import EventBus
from rackforge.observers.events import (
    new_ctx,
    NodeStepFailed,
    NodeStepStarted,
    NodeStepSucceeded,
    PhaseCompleted,
    PhaseFailed,
    PhaseStarted,
    RunStarted,
    RunSummary,
    SecretExtracted,
)
from rackforge.remote.executor import RemoteExecutor
from rackforge.utils.fanout import fan_out, first_failure

from . import steps as catalog
from .models import (
    PHASE_ORDER,
    ClusterSpec,
    Node,
    Phase,
    ProvisioningResult,
    RunStatus,
    Step,
)
from .roster import partition_roster
from .secrets import (
    build_control_plane_join,
    extract_certificate_key,
    extract_join_command,
)
from .session import ProvisioningSession
from .templates import render_cni_manifest, render_haproxy_config

log = logging.getLogger("rackforge.provisioner")


class ClusterProvisioner:
    """
    Drives a roster of machines through the bootstrap phases in order:

      PREREQS -> MASTER_INIT -> MASTER_JOIN -> WORKER_JOIN
              -> HA_SETUP -> CNI_INSTALL -> AGENT_REGISTRATION

    Nodes inside PREREQS, MASTER_JOIN and WORKER_JOIN run concurrently on a
    bounded pool; every phase is a barrier for the next. The first failure
    ends the run. Nothing is rolled back; call TeardownController for that.

    The provisioner holds no per-run state, so one instance can serve
    concurrent runs for different clusters.
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
        self._phases: Dict[Phase, Callable[..., None]] = {
            Phase.PREREQS: self.prereqs,
            Phase.MASTER_INIT: self.master_init,
            Phase.MASTER_JOIN: self.master_join,
            Phase.WORKER_JOIN: self.worker_join,
            Phase.HA_SETUP: self.ha_setup,
            Phase.CNI_INSTALL: self.cni_install,
            Phase.AGENT_REGISTRATION: self.agent_registration,
        }

    # ------------------ run ------------------

    def start_session(
        self,
        nodes: Sequence[Node],
        spec: ClusterSpec,
        run_id: Optional[str] = None,
    ) -> ProvisioningSession:
        roster = partition_roster(nodes, spec.control_plane_count)
        if run_id:
            return ProvisioningSession(spec=spec, roster=roster, run_id=run_id)
        return ProvisioningSession(spec=spec, roster=roster)

    def provision(
        self,
        nodes: Sequence[Node],
        spec: ClusterSpec,
        *,
        cancel: Optional[Any] = None,
        run_id: Optional[str] = None,
    ) -> ProvisioningResult:
        """
        Run every phase and report PROVISIONED or FAILED. Remote, connection,
        secret, timeout and cancellation errors become a FAILED result;
        SequencingError is a programming error and propagates. `run_id`
        correlates events with the caller's log file.
        """
        session = self.start_session(nodes, spec, run_id)
        ctx = self._ctx(session)
        log.info(
            "Provisioning cluster %s: %d control-plane, %d worker node(s)",
            spec.name, len(session.control_plane), len(session.workers),
        )
        self.bus.emit(RunStarted(
            control_plane=[n.address for n in session.control_plane],
            workers=[n.address for n in session.workers],
            **ctx,
        ))

        try:
            for phase in PHASE_ORDER:
                self._phases[phase](session, cancel=cancel)
        except SequencingError:
            raise
        except PhaseFailure as e:
            log.error("Cluster %s: %s", spec.name, e)
            result = ProvisioningResult(
                cluster_name=spec.name,
                status=RunStatus.FAILED,
                phase=Phase(e.phase),
                node=e.node,
                cause=str(e),
                error=e.cause,
            )
        except ProvisioningError as e:
            log.error("Cluster %s failed during %s: %s", spec.name, session.phase, e)
            result = ProvisioningResult(
                cluster_name=spec.name,
                status=RunStatus.FAILED,
                phase=session.phase,
                cause=str(e),
                error=e,
            )
        else:
            log.info("Kubernetes cluster %s provisioned successfully", spec.name)
            result = ProvisioningResult(cluster_name=spec.name, status=RunStatus.PROVISIONED)

        self.bus.emit(RunSummary(
            status=result.status.value,
            phase=result.phase.value if result.phase and not result.success else None,
            node=result.node,
            error=result.cause,
            **ctx,
        ))
        return result

    # ------------------ phases ------------------

    def prereqs(self, session: ProvisioningSession, *, cancel: Optional[Any] = None) -> None:
        """Prepare the OS on every node in the roster."""
        with self._phase(session, Phase.PREREQS, session.roster.all_nodes):
            self._fan_out(
                session, Phase.PREREQS, session.roster.all_nodes,
                lambda node: catalog.prerequisite_steps(
                    session.spec, session.first_control_plane.address,
                ),
                cancel,
            )

    def master_init(self, session: ProvisioningSession, *, cancel: Optional[Any] = None) -> None:
        """
        Initialise the cluster on the first control-plane node and capture the
        join secrets every later phase depends on.
        """
        node = session.first_control_plane
        spec = session.spec
        with self._phase(session, Phase.MASTER_INIT, [node]):
            self._run_on(
                session, Phase.MASTER_INIT, node,
                [
                    *catalog.runtime_steps(spec),
                    *catalog.init_steps(spec),
                    *catalog.kubeconfig_steps(),
                ],
                cancel,
            )
            try:
                out = self.executor.run(node, catalog.PRINT_JOIN_COMMAND, cancel=cancel, sensitive=True)
                join_command = extract_join_command(out.stdout)
                self._emit(session, SecretExtracted, name="worker-join-command", node=node.address)

                out = self.executor.run(node, catalog.UPLOAD_CERTS, cancel=cancel, sensitive=True)
                certificate_key = extract_certificate_key(out.stdout)
                self._emit(session, SecretExtracted, name="certificate-key", node=node.address)
            except ProvisioningError as e:
                raise PhaseFailure(Phase.MASTER_INIT.value, node.address, e) from e

            session.record_join_secrets(
                worker_join_command=join_command,
                certificate_key=certificate_key,
                control_plane_join_command=build_control_plane_join(join_command, certificate_key),
            )

    def master_join(self, session: ProvisioningSession, *, cancel: Optional[Any] = None) -> None:
        join_command = session.require_control_plane_join()
        nodes = list(session.roster.joining_control_plane)
        spec = session.spec
        with self._phase(session, Phase.MASTER_JOIN, nodes):
            self._fan_out(
                session, Phase.MASTER_JOIN, nodes,
                lambda node: [
                    *catalog.runtime_steps(spec),
                    catalog.join_step(join_command, control_plane=True),
                    *catalog.kubeconfig_steps(),
                ],
                cancel,
            )

    def worker_join(self, session: ProvisioningSession, *, cancel: Optional[Any] = None) -> None:
        join_command = session.require_worker_join()
        nodes = session.workers
        spec = session.spec
        with self._phase(session, Phase.WORKER_JOIN, nodes):
            self._fan_out(
                session, Phase.WORKER_JOIN, nodes,
                lambda node: [
                    *catalog.runtime_steps(spec),
                    catalog.join_step(join_command, control_plane=False),
                ],
                cancel,
            )

    def ha_setup(self, session: ProvisioningSession, *, cancel: Optional[Any] = None) -> None:
        """Load balancer over the final control-plane set, on the first node."""
        session.require(Phase.MASTER_JOIN, for_phase=Phase.HA_SETUP)
        node = session.first_control_plane
        with self._phase(session, Phase.HA_SETUP, [node]):
            config = render_haproxy_config(session.control_plane, session.spec)
            self._run_on(session, Phase.HA_SETUP, node, catalog.haproxy_steps(config), cancel)

    def cni_install(self, session: ProvisioningSession, *, cancel: Optional[Any] = None) -> None:
        session.require(Phase.MASTER_INIT, for_phase=Phase.CNI_INSTALL)
        node = session.first_control_plane
        with self._phase(session, Phase.CNI_INSTALL, [node]):
            manifest = render_cni_manifest(session.control_plane, session.spec)
            self._run_on(session, Phase.CNI_INSTALL, node, catalog.cni_steps(manifest), cancel)

    def agent_registration(self, session: ProvisioningSession, *, cancel: Optional[Any] = None) -> None:
        session.require(Phase.MASTER_INIT, for_phase=Phase.AGENT_REGISTRATION)
        node = session.first_control_plane
        with self._phase(session, Phase.AGENT_REGISTRATION, [node]):
            self._run_on(
                session, Phase.AGENT_REGISTRATION, node,
                catalog.agent_registration_steps(session.spec), cancel,
            )

    # ------------------ helpers ------------------

    def _ctx(self, session: ProvisioningSession) -> dict:
        return new_ctx(cluster=session.spec.name, run_id=session.run_id)

    def _emit(self, session: ProvisioningSession, event_cls, **data) -> None:
        self.bus.emit(event_cls(**data, **self._ctx(session)))

    def _phase(self, session: ProvisioningSession, phase: Phase, nodes: Sequence[Node]):
        return _PhaseScope(self, session, phase, nodes)

    def _run_on(
        self,
        session: ProvisioningSession,
        phase: Phase,
        node: Node,
        step_list: Sequence[Step],
        cancel: Optional[Any],
    ) -> None:
        try:
            self.executor.run_steps(
                node,
                step_list,
                cancel=cancel,
                on_start=lambda n, s: self._emit(
                    session, NodeStepStarted, phase=phase.value, node=n.address, step=s.description),
                on_success=lambda n, s: self._emit(
                    session, NodeStepSucceeded, phase=phase.value, node=n.address, step=s.description),
                on_error=lambda n, s, e: self._emit(
                    session, NodeStepFailed, phase=phase.value, node=n.address,
                    step=s.description, error=str(e)),
            )
        except ProvisioningError as e:
            raise PhaseFailure(phase.value, node.address, e) from e

    def _fan_out(
        self,
        session: ProvisioningSession,
        phase: Phase,
        nodes: Sequence[Node],
        steps_for: Callable[[Node], Sequence[Step]],
        cancel: Optional[Any],
    ) -> None:
        outcomes = fan_out(
            nodes,
            lambda node, scope: self._run_on(session, phase, node, steps_for(node), scope),
            max_workers=self.max_workers,
            cancel=cancel,
        )
        failed = first_failure(outcomes)
        if failed is None:
            return
        if isinstance(failed.error, PhaseFailure) or not isinstance(failed.error, ProvisioningError):
            raise failed.error
        raise PhaseFailure(phase.value, failed.node.address, failed.error) from failed.error


class _PhaseScope:
    """Marks a phase begun/completed on the session and reports it on the bus."""

    def __init__(self, provisioner: ClusterProvisioner, session: ProvisioningSession,
                 phase: Phase, nodes: Sequence[Node]):
        self.provisioner = provisioner
        self.session = session
        self.phase = phase
        self.nodes = list(nodes)
        self._t0 = 0.0

    def __enter__(self):
        self.session.begin(self.phase)
        log.info("[%s] %s on %d node(s)", self.session.spec.name, self.phase.value, len(self.nodes))
        self.provisioner._emit(
            self.session, PhaseStarted, phase=self.phase.value,
            nodes=[n.address for n in self.nodes],
        )
        self._t0 = time.time()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None:
            self.session.complete(self.phase)
            self.provisioner._emit(
                self.session, PhaseCompleted, phase=self.phase.value,
                duration_ms=int((time.time() - self._t0) * 1000),
            )
        elif isinstance(exc, ProvisioningError):
            self.provisioner._emit(
                self.session, PhaseFailed, phase=self.phase.value,
                node=getattr(exc, "node", None), error=str(exc),
            )
        return False
