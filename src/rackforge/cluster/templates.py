# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/cluster/templates.py

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Sequence

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .models import ClusterSpec, Node

ASSETS_DIR = Path(__file__).resolve().parents[1] / "assets"

HAPROXY_TEMPLATE = "haproxy.cfg.j2"
CNI_TEMPLATE = "cni-install.yaml.j2"


@lru_cache(maxsize=None)
def _environment(root: Path = ASSETS_DIR) -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(root)),
        undefined=StrictUndefined,
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["tojson"] = lambda v: json.dumps(v)
    return env


def render(template_name: str, context: dict) -> str:
    return _environment().get_template(template_name).render(**context)


def render_haproxy_config(control_plane: Sequence[Node], spec: ClusterSpec) -> str:
    """
    TCP load balancer in front of every control-plane API server, round-robin,
    servers listed in roster order.
    """
    if not control_plane:
        raise ValueError("cannot render a load balancer without control-plane nodes")
    servers = [
        {"name": f"master{i}", "address": node.address}
        for i, node in enumerate(control_plane, 1)
    ]
    return render(
        HAPROXY_TEMPLATE,
        {
            "cluster_name": spec.name,
            "bind_port": spec.lb_bind_port,
            "api_server_port": spec.api_server_port,
            "servers": servers,
        },
    )


def render_cni_manifest(control_plane: Sequence[Node], spec: ClusterSpec) -> str:
    """
    One-shot pod that applies the CNI manifest from a control-plane node,
    preferring the node that initialised the cluster.
    """
    if not control_plane:
        raise ValueError("cannot render a CNI manifest without control-plane nodes")
    return render(
        CNI_TEMPLATE,
        {
            "cluster_name": spec.name,
            "hostnames": [control_plane[0].hostname.lower()],
            "installer_image": spec.cni_installer_image,
            "manifest_url": spec.cni_manifest_url,
        },
    )
