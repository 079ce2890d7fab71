# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/cluster/secrets.py

from __future__ import annotations

import re

from rackforge.errors import MissingSecretError

# kubeadm token create --print-join-command
_JOIN_RE = re.compile(
    r"(kubeadm\s+join\s+\S+"
    r"(?:\s+--[\w-]+(?:[ =]\S+)?)*?"
    r"\s+--token\s+\S+"
    r"(?:\s+--[\w-]+(?:[ =]\S+)?)*?"
    r"\s+--discovery-token-ca-cert-hash\s+sha256:[0-9a-fA-F]+)"
)

# `--certificate-key <key>` as printed in the kubeadm init summary, or the
# bare value after "Using certificate key:" from `kubeadm init phase upload-certs`.
_CERT_KEY_FLAG_RE = re.compile(r"--certificate-key[ =]([0-9a-fA-F]{32,})")
_CERT_KEY_UPLOAD_RE = re.compile(r"Using certificate key:\s*\n?\s*([0-9a-fA-F]{32,})")


def _unfold(text: str) -> str:
    return re.sub(r"\\\s*\n\s*", " ", text)


def extract_join_command(stdout: str) -> str:
    match = _JOIN_RE.search(_unfold(stdout))
    if not match:
        raise MissingSecretError(
            "worker join command",
            "expected a 'kubeadm join ... --token ... --discovery-token-ca-cert-hash' line",
        )
    return " ".join(match.group(1).split())


def extract_certificate_key(stdout: str) -> str:
    text = _unfold(stdout)
    match = _CERT_KEY_FLAG_RE.search(text) or _CERT_KEY_UPLOAD_RE.search(text)
    if not match:
        raise MissingSecretError(
            "certificate key",
            "expected '--certificate-key <key>' or 'Using certificate key:'",
        )
    return match.group(1)


def build_control_plane_join(join_command: str, certificate_key: str) -> str:
    if not join_command:
        raise MissingSecretError("worker join command")
    if not certificate_key:
        raise MissingSecretError("certificate key")
    return f"{join_command} --control-plane --certificate-key {certificate_key}"
