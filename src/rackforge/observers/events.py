# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events of one provisioning or teardown run
    cluster: str

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(cluster: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "cluster": cluster,
    }


# ---------------------------------------------------------------------
# Provisioning run
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class RunStarted(BaseEvent):
    control_plane: List[str]
    workers: List[str]

@dataclass(frozen=True)
class PhaseStarted(BaseEvent):
    phase: str
    nodes: List[str]

@dataclass(frozen=True)
class PhaseCompleted(BaseEvent):
    phase: str
    duration_ms: int

@dataclass(frozen=True)
class PhaseFailed(BaseEvent):
    phase: str
    node: Optional[str]
    error: str

@dataclass(frozen=True)
class SecretExtracted(BaseEvent):
    name: str         # never the value
    node: str

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    status: str       # "PROVISIONED" | "FAILED"
    phase: Optional[str] = None
    node: Optional[str] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------
# Per-node steps
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NodeStepStarted(BaseEvent):
    phase: str
    node: str
    step: str

@dataclass(frozen=True)
class NodeStepSucceeded(BaseEvent):
    phase: str
    node: str
    step: str

@dataclass(frozen=True)
class NodeStepFailed(BaseEvent):
    phase: str
    node: str
    step: str
    error: str


# ---------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class TeardownStarted(BaseEvent):
    nodes: List[str]

@dataclass(frozen=True)
class NodeResetResult(BaseEvent):
    node: str
    status: str       # "OK" | "FAILED"
    error: Optional[str] = None

@dataclass(frozen=True)
class TeardownSummary(BaseEvent):
    ok: int
    failed: int
