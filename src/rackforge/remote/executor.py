# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/remote/executor.py

from __future__ import annotations

import logging
import re
import shlex
import socket
import time
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence

import paramiko

from rackforge.cluster.models import Node, RemoteCommandResult, Step
from rackforge.errors import (
    REDACTED,
    CommandTimeoutError,
    NodeConnectionError,
    ProvisioningCancelled,
    ProvisioningError,
    RemoteCommandFailure,
    UnexpectedOutputError,
)
from rackforge.remote.ssh import open_session

log = logging.getLogger("rackforge.executor")

_CHUNK = 32768

# first stdout line of every wrapped command: the remote process group id
_PGID_MARKER = "RACKFORGE_PGID="
_PGID_RE = re.compile(rb"\A" + _PGID_MARKER.encode() + rb"(\d+)\r?\n")


class CancelToken(Protocol):
    def is_set(self) -> bool: ...
    def wait(self, timeout: Optional[float] = None) -> bool: ...


StepHook = Callable[[Node, Step], None]
StepErrorHook = Callable[[Node, Step, Exception], None]


def wrap_command(command: str, username: str) -> str:
    """
    Run through a login shell in a new process group whose id is printed
    first, so the whole group can be signalled on cancel or timeout.
    Non-root principals go through passwordless sudo.
    """
    inner = f"echo {_PGID_MARKER}$$; exec bash -lc {shlex.quote(command)}"
    wrapped = f"setsid -w bash -c {shlex.quote(inner)}"
    if username != "root":
        wrapped = f"sudo -n {wrapped}"
    return wrapped


def kill_command(pgid: int, username: str) -> str:
    kill = f"kill -TERM -- -{pgid}"
    return kill if username == "root" else f"sudo -n {kill}"


class RemoteExecutor:
    """
    Runs one command per SSH session. Every call opens its own session and
    closes it before returning, whatever the outcome.
    """

    def __init__(
        self,
        *,
        key_path: Optional[Path] = None,
        connect_timeout: float = 20.0,
        command_timeout: Optional[float] = 1800.0,
        poll_interval: float = 0.2,
    ):
        self.key_path = key_path
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.poll_interval = poll_interval

    def run(
        self,
        node: Node,
        command: str,
        *,
        timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
        sensitive: bool = False,
        step: Optional[str] = None,
    ) -> RemoteCommandResult:
        shown = REDACTED if sensitive else command
        if cancel is not None and cancel.is_set():
            raise ProvisioningCancelled(node.address)

        limit = timeout if timeout is not None else self.command_timeout
        log.debug("[%s] $ %s", node.address, shown)

        with open_session(
            node, key_path=self.key_path, connect_timeout=self.connect_timeout
        ) as client:
            try:
                status, out, err = self._exec(client, node, command, shown, limit, cancel)
            except ProvisioningError:
                raise
            except (paramiko.SSHException, socket.timeout, EOFError, OSError) as e:
                raise NodeConnectionError(node.address, f"session lost: {type(e).__name__}: {e}") from e

        result = RemoteCommandResult(
            stdout=_PGID_RE.sub(b"", b"".join(out), count=1).decode("utf-8", errors="replace"),
            stderr=b"".join(err).decode("utf-8", errors="replace"),
            exit_status=status,
        )
        if not result.ok:
            log.debug("[%s] exit=%d stderr=%s", node.address, status, result.stderr.strip())
            raise RemoteCommandFailure(node.address, shown, status, result.stderr, step=step)
        return result

    def _exec(self, client, node, command, shown, limit, cancel):
        """
        Drain output while polling for exit so a chatty command cannot stall
        on a full channel window; enforce the deadline and cancellation.
        """
        stdin, stdout, stderr = client.exec_command(wrap_command(command, node.username))
        stdin.close()
        channel = stdout.channel

        out: List[bytes] = []
        err: List[bytes] = []
        deadline = None if limit is None else time.monotonic() + limit
        while not channel.exit_status_ready():
            self._drain(channel, out, err)
            if cancel is not None and cancel.is_set():
                self._abandon(node, channel, out, err)
                raise ProvisioningCancelled(node.address)
            if deadline is not None and time.monotonic() >= deadline:
                self._abandon(node, channel, out, err)
                raise CommandTimeoutError(node.address, shown, limit)
            if cancel is not None:
                cancel.wait(self.poll_interval)
            else:
                time.sleep(self.poll_interval)

        self._drain(channel, out, err)
        out.append(stdout.read())
        err.append(stderr.read())
        return channel.recv_exit_status(), out, err

    def _abandon(self, node: Node, channel, out: List[bytes], err: List[bytes]) -> None:
        """
        Stop waiting on `channel` and terminate the remote process group.
        Closing the channel alone leaves the command running on the node.
        """
        self._drain(channel, out, err)
        channel.close()
        match = _PGID_RE.match(b"".join(out))
        if not match:
            log.warning("[%s] remote process group unknown, command may still be running", node.address)
            return
        self.terminate(node, int(match.group(1)))

    def terminate(self, node: Node, pgid: int) -> None:
        """SIGTERM the remote process group `pgid` over a fresh session."""
        try:
            with open_session(
                node, key_path=self.key_path, connect_timeout=self.connect_timeout
            ) as client:
                _, stdout, _ = client.exec_command(
                    kill_command(pgid, node.username), timeout=self.connect_timeout
                )
                status = stdout.channel.recv_exit_status()
        except (ProvisioningError, paramiko.SSHException, socket.timeout, OSError) as e:
            log.warning("[%s] could not terminate remote process group %d: %s", node.address, pgid, e)
            return
        log.info("[%s] sent SIGTERM to remote process group %d (exit=%d)", node.address, pgid, status)

    @staticmethod
    def _drain(channel, out: List[bytes], err: List[bytes]) -> None:
        while channel.recv_ready():
            out.append(channel.recv(_CHUNK))
        while channel.recv_stderr_ready():
            err.append(channel.recv_stderr(_CHUNK))

    def run_step(
        self,
        node: Node,
        step: Step,
        *,
        cancel: Optional[CancelToken] = None,
    ) -> RemoteCommandResult:
        result = self.run(
            node,
            step.command,
            cancel=cancel,
            sensitive=step.sensitive,
            step=step.description,
        )
        if step.expected_output and not re.search(step.expected_output, result.stdout, re.MULTILINE):
            raise UnexpectedOutputError(
                node.address,
                REDACTED if step.sensitive else step.command,
                step.expected_output,
                step=step.description,
            )
        return result

    def run_steps(
        self,
        node: Node,
        steps: Sequence[Step],
        *,
        cancel: Optional[CancelToken] = None,
        on_start: Optional[StepHook] = None,
        on_success: Optional[StepHook] = None,
        on_error: Optional[StepErrorHook] = None,
    ) -> List[RemoteCommandResult]:
        """
        Execute `steps` in order, stopping at the first failure.
        """
        results: List[RemoteCommandResult] = []
        for step in steps:
            log.info("[%s] %s", node.hostname, step.description)
            if on_start:
                on_start(node, step)
            try:
                results.append(self.run_step(node, step, cancel=cancel))
            except Exception as e:
                if on_error:
                    on_error(node, step, e)
                raise
            if on_success:
                on_success(node, step)
        return results
