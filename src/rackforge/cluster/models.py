# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/cluster/models.py

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

DEFAULT_CNI_MANIFEST_URL = (
    "https://raw.githubusercontent.com/projectcalico/calico/v3.24.5/manifests/calico.yaml"
)


@dataclass(frozen=True)
class Node:
    """
    A physical machine reachable over SSH. Identity is the network address.
    """
    hostname: str = field(compare=False)
    address: str
    port: int = field(default=22, compare=False)
    username: str = field(default="root", compare=False)
    key_path: Optional[Path] = field(default=None, compare=False)

    def __str__(self) -> str:
        return f"{self.hostname}({self.address})"


@dataclass(frozen=True)
class ClusterSpec:
    name: str
    control_plane_count: int
    registration_url: str
    registration_token: str = field(repr=False)
    pod_cidr: str = "10.244.0.0/16"
    service_cidr: str = "10.96.0.0/12"
    control_plane_endpoint: Optional[str] = None
    kubernetes_version: str = "v1.28"
    api_server_port: int = 6443
    lb_bind_port: int = 8443
    cni_manifest_url: str = DEFAULT_CNI_MANIFEST_URL
    cni_installer_image: str = "bitnami/kubectl:1.28"
    registration_installer_url: str = "https://get.rancher.io"

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("cluster name must not be empty")
        if self.control_plane_count < 1:
            raise ValueError("control_plane_count must be at least 1")
        for label, cidr in (("pod_cidr", self.pod_cidr), ("service_cidr", self.service_cidr)):
            try:
                ipaddress.ip_network(cidr)
            except ValueError as e:
                raise ValueError(f"{label} is not a valid network: {cidr}") from e

    @property
    def endpoint(self) -> str:
        return self.control_plane_endpoint or f"{self.name}-lb"


@dataclass(frozen=True)
class Step:
    """
    One remote command with a human description. `expected_output` is a regex
    checked against stdout; `sensitive` keeps the command out of logs.
    """
    description: str
    command: str
    expected_output: Optional[str] = None
    sensitive: bool = False


@dataclass(frozen=True)
class RemoteCommandResult:
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class Phase(str, Enum):
    PREREQS = "PREREQS"
    MASTER_INIT = "MASTER_INIT"
    MASTER_JOIN = "MASTER_JOIN"
    WORKER_JOIN = "WORKER_JOIN"
    HA_SETUP = "HA_SETUP"
    CNI_INSTALL = "CNI_INSTALL"
    AGENT_REGISTRATION = "AGENT_REGISTRATION"

    @property
    def order(self) -> int:
        return PHASE_ORDER.index(self)


PHASE_ORDER: List[Phase] = list(Phase)


class RunStatus(str, Enum):
    PROVISIONED = "PROVISIONED"
    FAILED = "FAILED"


@dataclass
class ProvisioningResult:
    cluster_name: str
    status: RunStatus
    phase: Optional[Phase] = None
    node: Optional[str] = None
    cause: Optional[str] = None
    error: Optional[BaseException] = field(default=None, repr=False)

    @property
    def success(self) -> bool:
        return self.status == RunStatus.PROVISIONED


@dataclass
class NodeOutcome:
    node: Node
    ok: bool
    error: Optional[str] = None
