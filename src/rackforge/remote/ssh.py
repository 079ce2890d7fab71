# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import socket
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import paramiko

from rackforge.cluster.models import Node
from rackforge.errors import NodeConnectionError

log = logging.getLogger("rackforge.ssh")

_KEY_TYPES = (
    paramiko.RSAKey,
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
)


def load_private_key(path: Path) -> paramiko.PKey:
    """
    Try the supported key formats in turn; raise if none parses.
    """
    last_err: Optional[Exception] = None
    for key_cls in _KEY_TYPES:
        try:
            return key_cls.from_private_key_file(str(path))
        except paramiko.SSHException as e:
            last_err = e
            continue
    raise NodeConnectionError(str(path), f"unsupported private key format: {last_err}")


@contextmanager
def open_session(
    node: Node,
    *,
    key_path: Optional[Path] = None,
    connect_timeout: float = 20.0,
) -> Iterator[paramiko.SSHClient]:
    """
    Connect to `node`, yield the client and always close it on exit.
    The node's own key reference wins over `key_path`.
    """
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    path = node.key_path or key_path
    try:
        pkey = load_private_key(Path(path).expanduser()) if path else None
    except OSError as e:
        raise NodeConnectionError(node.address, f"cannot read private key {path}: {e}") from e

    try:
        client.connect(
            hostname=node.address,
            port=node.port,
            username=node.username,
            pkey=pkey,
            password=None,
            look_for_keys=pkey is None,
            allow_agent=pkey is None,
            timeout=connect_timeout,
            banner_timeout=connect_timeout,
            auth_timeout=connect_timeout,
        )
    except paramiko.AuthenticationException as e:
        client.close()
        raise NodeConnectionError(node.address, f"authentication failed for {node.username}: {e}") from e
    except (paramiko.SSHException, socket.timeout, OSError) as e:
        client.close()
        raise NodeConnectionError(node.address, f"{type(e).__name__}: {e}") from e

    log.debug("[%s] session opened", node.address)
    try:
        yield client
    finally:
        client.close()
        log.debug("[%s] session closed", node.address)
