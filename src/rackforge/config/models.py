# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/config/models.py

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import ipaddress

from pydantic import BaseModel, Field, field_validator, model_validator

from rackforge.cluster.models import DEFAULT_CNI_MANIFEST_URL, ClusterSpec, Node


class NodeConfig(BaseModel):
    hostname: str
    address: str
    port: int = 22
    username: str = "root"
    key_path: Optional[Path] = None

    def to_node(self) -> Node:
        return Node(
            hostname=self.hostname,
            address=self.address,
            port=self.port,
            username=self.username,
            key_path=self.key_path,
        )


class RegistrationConfig(BaseModel):
    url: str
    token: str = Field(repr=False)
    installer_url: str = "https://get.rancher.io"


class ClusterConfig(BaseModel):
    name: str = Field(min_length=1)
    control_plane_count: int = Field(3, ge=1)
    pod_cidr: str = "10.244.0.0/16"
    service_cidr: str = "10.96.0.0/12"
    control_plane_endpoint: Optional[str] = None
    kubernetes_version: str = "v1.28"
    api_server_port: int = 6443
    lb_bind_port: int = 8443
    cni_manifest_url: str = DEFAULT_CNI_MANIFEST_URL
    cni_installer_image: str = "bitnami/kubectl:1.28"
    registration: RegistrationConfig

    @field_validator("pod_cidr", "service_cidr")
    @classmethod
    def _valid_network(cls, v: str) -> str:
        ipaddress.ip_network(v)
        return v


class ExecutorConfig(BaseModel):
    connect_timeout: Optional[float] = None
    command_timeout: Optional[float] = None
    max_workers: Optional[int] = Field(None, ge=1)


class RackforgeConfig(BaseModel):
    cluster: ClusterConfig
    nodes: List[NodeConfig]
    executor: ExecutorConfig = ExecutorConfig()

    @model_validator(mode="after")
    def _check_roster(self) -> "RackforgeConfig":
        if not self.nodes:
            raise ValueError("nodes must list at least one machine")
        if self.cluster.control_plane_count > len(self.nodes):
            raise ValueError(
                f"control_plane_count={self.cluster.control_plane_count} "
                f"exceeds the {len(self.nodes)} node(s) in the roster"
            )
        addresses = [n.address for n in self.nodes]
        dupes = sorted({a for a in addresses if addresses.count(a) > 1})
        if dupes:
            raise ValueError(f"duplicate node addresses: {', '.join(dupes)}")
        return self

    def to_nodes(self) -> List[Node]:
        return [n.to_node() for n in self.nodes]

    def to_cluster_spec(self) -> ClusterSpec:
        c = self.cluster
        return ClusterSpec(
            name=c.name,
            control_plane_count=c.control_plane_count,
            registration_url=c.registration.url,
            registration_token=c.registration.token,
            registration_installer_url=c.registration.installer_url,
            pod_cidr=c.pod_cidr,
            service_cidr=c.service_cidr,
            control_plane_endpoint=c.control_plane_endpoint,
            kubernetes_version=c.kubernetes_version,
            api_server_port=c.api_server_port,
            lb_bind_port=c.lb_bind_port,
            cni_manifest_url=c.cni_manifest_url,
            cni_installer_image=c.cni_installer_image,
        )
