# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/cluster/session.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Set

from rackforge.errors import SequencingError

from .models import ClusterSpec, Node, Phase
from .roster import RosterPartition


@dataclass
class ProvisioningSession:
    """
    In-memory state for exactly one provisioning run: the partitioned roster,
    the join secrets captured on the first control-plane node, and phase
    progress. Never persisted and never shared between runs.
    """
    spec: ClusterSpec
    roster: RosterPartition
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    worker_join_command: Optional[str] = field(default=None, repr=False)
    certificate_key: Optional[str] = field(default=None, repr=False)
    control_plane_join_command: Optional[str] = field(default=None, repr=False)
    phase: Optional[Phase] = None
    completed: Set[Phase] = field(default_factory=set)

    @property
    def control_plane(self) -> List[Node]:
        return list(self.roster.control_plane)

    @property
    def workers(self) -> List[Node]:
        return list(self.roster.workers)

    @property
    def first_control_plane(self) -> Node:
        return self.roster.first_control_plane

    def begin(self, phase: Phase) -> None:
        """
        Phases only move forward; a phase may not start twice.
        """
        if phase in self.completed:
            raise SequencingError(f"{phase.value} already completed in run {self.run_id}")
        if self.phase is not None and phase.order <= self.phase.order:
            raise SequencingError(
                f"{phase.value} cannot start after {self.phase.value}; phases do not go back"
            )
        self.phase = phase

    def complete(self, phase: Phase) -> None:
        if self.phase != phase:
            raise SequencingError(f"{phase.value} completed while {self.phase} was active")
        self.completed.add(phase)

    def require(self, phase: Phase, *, for_phase: Phase) -> None:
        if phase not in self.completed:
            raise SequencingError(
                f"{for_phase.value} requires {phase.value} to have completed first"
            )

    def record_join_secrets(
        self,
        *,
        worker_join_command: str,
        certificate_key: str,
        control_plane_join_command: str,
    ) -> None:
        if self.worker_join_command is not None or self.control_plane_join_command is not None:
            raise SequencingError("join secrets are produced once per run")
        self.worker_join_command = worker_join_command
        self.certificate_key = certificate_key
        self.control_plane_join_command = control_plane_join_command

    def require_worker_join(self) -> str:
        if not self.worker_join_command:
            raise SequencingError(
                f"{Phase.WORKER_JOIN.value} invoked before {Phase.MASTER_INIT.value} "
                "captured the worker join command"
            )
        return self.worker_join_command

    def require_control_plane_join(self) -> str:
        if not self.control_plane_join_command or not self.certificate_key:
            raise SequencingError(
                f"{Phase.MASTER_JOIN.value} invoked before {Phase.MASTER_INIT.value} "
                "captured the control-plane join command and certificate key"
            )
        return self.control_plane_join_command
