# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/cluster/steps.py

from __future__ import annotations

import shlex
import textwrap
from typing import List

from .models import ClusterSpec, Step

PRINT_JOIN_COMMAND = "kubeadm token create --print-join-command"
UPLOAD_CERTS = "kubeadm init phase upload-certs --upload-certs"

HAPROXY_CONFIG_PATH = "/etc/haproxy/haproxy.cfg"
CNI_MANIFEST_PATH = "/tmp/cni-install.yaml"

K8S_MODULES = ("overlay", "br_netfilter")

K8S_SYSCTLS = (
    "net.bridge.bridge-nf-call-iptables = 1",
    "net.bridge.bridge-nf-call-ip6tables = 1",
    "net.ipv4.ip_forward = 1",
)


def write_file(path: str, content: str) -> str:
    """
    Heredoc with a quoted delimiter so the remote shell does not expand $vars.
    """
    if not content.endswith("\n"):
        content += "\n"
    return f"mkdir -p {shlex.quote(path.rsplit('/', 1)[0] or '/')} && cat > {shlex.quote(path)} <<'RACKFORGE_EOF'\n{content}RACKFORGE_EOF"


def endpoint_hosts_step(endpoint: str, address: str) -> Step:
    """
    Pin `endpoint` to `address` in /etc/hosts; re-running replaces the old entry.
    """
    pattern = endpoint.replace(".", r"\.")
    entry = shlex.quote(f"{address} {endpoint}")
    return Step(
        f"resolve {endpoint} to {address}",
        f"sed -i '/[[:space:]]{pattern}$/d' /etc/hosts && echo {entry} >> /etc/hosts",
    )


def prerequisite_steps(spec: ClusterSpec, first_control_plane_address: str) -> List[Step]:
    """
    OS preparation for every node. Without an explicit control-plane
    endpoint the derived name is resolved through /etc/hosts.
    """
    modules = "\n".join(K8S_MODULES)
    sysctls = "\n".join(K8S_SYSCTLS)
    resolve = []
    if spec.control_plane_endpoint is None:
        resolve.append(endpoint_hosts_step(spec.endpoint, first_control_plane_address))
    return [
        Step("update system packages", "yum update -y"),
        Step("install base utilities", "yum install -y curl wget vim net-tools"),
        Step(
            "disable firewalld",
            "systemctl disable --now firewalld || true",
        ),
        Step(
            "disable SELinux enforcement",
            "setenforce 0 || true; sed -i 's/^SELINUX=enforcing$/SELINUX=disabled/' /etc/selinux/config",
        ),
        Step("disable swap", "swapoff -a && sed -i '/ swap / s/^[^#]/#&/' /etc/fstab"),
        Step(
            "load kernel modules",
            write_file("/etc/modules-load.d/k8s.conf", modules)
            + " && " + " && ".join(f"modprobe {m}" for m in K8S_MODULES),
        ),
        Step(
            "apply sysctl settings",
            write_file("/etc/sysctl.d/k8s.conf", sysctls) + " && sysctl --system",
        ),
        *resolve,
    ]


def _kubernetes_repo(version: str) -> str:
    return textwrap.dedent(f"""\
        [kubernetes]
        name=Kubernetes
        baseurl=https://pkgs.k8s.io/core:/stable:/{version}/rpm/
        enabled=1
        gpgcheck=1
        gpgkey=https://pkgs.k8s.io/core:/stable:/{version}/rpm/repodata/repomd.xml.key
        exclude=kubelet kubeadm kubectl cri-tools kubernetes-cni
    """)


def runtime_steps(spec: ClusterSpec) -> List[Step]:
    """
    Container runtime and kubeadm tooling; identical on every node.
    """
    return [
        Step("install yum-utils", "yum install -y yum-utils"),
        Step(
            "add docker repository",
            "yum-config-manager --add-repo https://download.docker.com/linux/centos/docker-ce.repo",
        ),
        Step(
            "install container runtime",
            "yum install -y docker-ce docker-ce-cli containerd.io && systemctl enable --now docker",
        ),
        Step(
            "add kubernetes repository",
            write_file("/etc/yum.repos.d/kubernetes.repo", _kubernetes_repo(spec.kubernetes_version)),
        ),
        Step(
            "install kubelet kubeadm kubectl",
            "yum install -y kubelet kubeadm kubectl --disableexcludes=kubernetes && systemctl enable kubelet",
        ),
        Step(
            "configure containerd for systemd cgroups",
            "mkdir -p /etc/containerd && containerd config default > /etc/containerd/config.toml"
            " && sed -i 's/SystemdCgroup = false/SystemdCgroup = true/' /etc/containerd/config.toml"
            " && systemctl restart containerd && systemctl restart kubelet",
        ),
    ]


def init_steps(spec: ClusterSpec) -> List[Step]:
    cmd = " ".join(
        [
            "kubeadm init",
            f"--control-plane-endpoint={shlex.quote(spec.endpoint)}",
            f"--pod-network-cidr={shlex.quote(spec.pod_cidr)}",
            f"--service-cidr={shlex.quote(spec.service_cidr)}",
            "--upload-certs",
        ]
    )
    return [
        Step(
            "initialize control plane",
            cmd,
            expected_output=r"initialized successfully",
        ),
    ]


def kubeconfig_steps() -> List[Step]:
    return [
        Step(
            "install kubeconfig",
            "mkdir -p $HOME/.kube && cp -f /etc/kubernetes/admin.conf $HOME/.kube/config"
            " && chown $(id -u):$(id -g) $HOME/.kube/config",
        ),
    ]


def join_step(join_command: str, *, control_plane: bool) -> Step:
    role = "control plane" if control_plane else "worker"
    return Step(f"join cluster as {role}", join_command, sensitive=True)


def haproxy_steps(config_text: str) -> List[Step]:
    return [
        Step("install haproxy", "yum install -y haproxy"),
        Step("write haproxy config", write_file(HAPROXY_CONFIG_PATH, config_text)),
        Step(
            "validate haproxy config",
            f"haproxy -c -f {HAPROXY_CONFIG_PATH}",
        ),
        Step("start haproxy", "systemctl enable haproxy && systemctl restart haproxy"),
    ]


def cni_steps(manifest_text: str) -> List[Step]:
    return [
        Step("write CNI manifest", write_file(CNI_MANIFEST_PATH, manifest_text)),
        Step("apply CNI manifest", f"kubectl apply -f {CNI_MANIFEST_PATH}"),
    ]


def agent_registration_steps(spec: ClusterSpec) -> List[Step]:
    cmd = (
        f"curl -sfL {shlex.quote(spec.registration_installer_url)} | sh -s -"
        f" --server {shlex.quote(spec.registration_url)}"
        f" --token {shlex.quote(spec.registration_token)}"
    )
    return [Step("register cluster with fleet manager", cmd, sensitive=True)]


def reset_steps() -> List[Step]:
    return [
        Step("reset kubeadm state", "kubeadm reset --force"),
        Step("stop kubelet", "systemctl stop kubelet"),
        Step("stop container runtime", "systemctl stop docker containerd"),
        Step(
            "remove cluster state",
            "rm -rf /var/lib/cni/ /var/lib/kubelet/* /etc/cni/ /etc/kubernetes/ /var/lib/etcd/ $HOME/.kube/",
        ),
        Step(
            "flush packet filter rules",
            "iptables -F && iptables -t nat -F && iptables -t mangle -F && iptables -X",
        ),
    ]
