# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/errors.py

from __future__ import annotations

from typing import List, Optional

REDACTED = "<redacted>"


class ProvisioningError(RuntimeError):
    """Base class for cluster bootstrap failures."""


class NodeConnectionError(ProvisioningError, ConnectionError):
    """Raised when an SSH session to a node cannot be opened or authenticated."""

    def __init__(self, node: str, reason: str):
        self.node = node
        self.reason = reason
        super().__init__(f"cannot connect to {node}: {reason}")


class RemoteCommandFailure(ProvisioningError):
    """A remote command exited non-zero."""

    def __init__(
        self,
        node: str,
        command: str,
        exit_status: int,
        stderr: str = "",
        step: Optional[str] = None,
    ):
        self.node = node
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr
        self.step = step
        where = f" ({step})" if step else ""
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no stderr"
        super().__init__(
            f"command on {node}{where} exited {exit_status}: {command}: {detail}"
        )


class UnexpectedOutputError(RemoteCommandFailure):
    """A step succeeded but its stdout did not match the expected pattern."""

    def __init__(self, node: str, command: str, pattern: str, step: Optional[str] = None):
        self.pattern = pattern
        super().__init__(
            node,
            command,
            0,
            stderr=f"output did not match /{pattern}/",
            step=step,
        )


class CommandTimeoutError(ProvisioningError):
    def __init__(self, node: str, command: str, timeout: float):
        self.node = node
        self.command = command
        self.timeout = timeout
        super().__init__(f"command on {node} did not finish within {timeout:g}s: {command}")


class ProvisioningCancelled(ProvisioningError):
    def __init__(self, node: Optional[str] = None):
        self.node = node
        super().__init__(f"cancelled while running on {node}" if node else "cancelled")


class MissingSecretError(ProvisioningError):
    """Expected credential material was absent from command output."""

    def __init__(self, secret: str, hint: str = ""):
        self.secret = secret
        msg = f"could not find {secret} in command output"
        super().__init__(f"{msg}: {hint}" if hint else msg)


class SequencingError(RuntimeError):
    """
    A phase was invoked before the session state it depends on exists.
    This is a caller bug, not a remote failure, so it does not derive from
    ProvisioningError and is never folded into a FAILED result.
    """


class PhaseFailure(ProvisioningError):
    def __init__(self, phase: str, node: Optional[str], cause: BaseException):
        self.phase = phase
        self.node = node
        self.cause = cause
        at = f" at node {node}" if node else ""
        super().__init__(f"provisioning failed during {phase}{at}: {cause}")


class TeardownError(ProvisioningError):
    def __init__(self, cluster_name: str, failures: List):
        self.cluster_name = cluster_name
        self.failures = failures
        nodes = ", ".join(f.node.address for f in failures)
        super().__init__(f"teardown of {cluster_name} failed on {len(failures)} node(s): {nodes}")
