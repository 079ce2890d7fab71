# src/rackforge/cli/app.py
from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional

import typer
import yaml

from rackforge.cluster.models import PHASE_ORDER
from rackforge.cluster.provisioner import ClusterProvisioner
from rackforge.cluster.roster import partition_roster
from rackforge.cluster.teardown import TeardownController
from rackforge.cluster.templates import render_cni_manifest, render_haproxy_config
from rackforge.config.loader import load_config
from rackforge.config.models import RackforgeConfig
from rackforge.config.settings import ExecutorSettings, load_executor_settings, log_dir
from rackforge.logging.log import init_logging
from rackforge.observers.console import ConsoleObserver
from rackforge.observers.jsonfile import JsonFileObserver
from rackforge.observers.logger import LoggerObserver
from rackforge.remote.executor import RemoteExecutor


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Bare-metal Kubernetes cluster bootstrap over SSH")


class RenderTarget(str, Enum):
    haproxy = "haproxy"
    cni = "cni"


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _load(cluster_file: Path) -> RackforgeConfig:
    """Load the cluster file and check it converts to a ClusterSpec."""
    try:
        cfg = load_config(cluster_file)
        cfg.to_cluster_spec()
    except FileNotFoundError:
        raise typer.BadParameter(f"cluster file not found: {cluster_file}")
    except yaml.YAMLError as e:
        raise typer.BadParameter(f"cluster file {cluster_file} is not valid YAML:\n{e}")
    except ValueError as e:
        # includes pydantic.ValidationError
        raise typer.BadParameter(f"invalid cluster file {cluster_file}:\n{e}")
    return cfg


def _executor_settings(
    cfg: RackforgeConfig,
    *,
    ssh_key: Optional[Path],
    command_timeout: Optional[float],
    max_workers: Optional[int],
) -> ExecutorSettings:
    settings = load_executor_settings().merged(cfg.executor)
    overrides = {}
    if ssh_key is not None:
        overrides["key_path"] = ssh_key
    if command_timeout is not None:
        overrides["command_timeout"] = command_timeout or None
    if max_workers is not None:
        overrides["max_workers"] = max_workers
    return replace(settings, **overrides)


def _observers(logger, run_id: str, events_file: Optional[Path]) -> List:
    path = events_file or (log_dir() / f"{run_id}.jsonl")
    return [ConsoleObserver(), LoggerObserver(logger), JsonFileObserver(path)]


@contextmanager
def _cancel_on_sigint() -> Iterator[threading.Event]:
    """
    First Ctrl-C stops in-flight remote commands; the run then reports FAILED.
    """
    cancel = threading.Event()

    def _handler(signum, frame):
        typer.echo("\n[rackforge] interrupt received, cancelling remote commands...", err=True)
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, previous)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def provision(
    cluster_file: Path = typer.Argument(..., help="Cluster file: roster + cluster spec"),
    ssh_key: Optional[Path] = typer.Option(None, "--ssh-key", help="Overrides RACKFORGE_SSH_KEY_PATH"),
    command_timeout: Optional[float] = typer.Option(None, "--command-timeout", help="Seconds per remote command, 0 disables"),
    max_workers: Optional[int] = typer.Option(None, "--max-workers", min=1),
    events_file: Optional[Path] = typer.Option(None, "--events-file"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Bootstrap a Kubernetes cluster on the machines in CLUSTER_FILE."""
    cfg = _load(cluster_file)
    logger, run_id, log_path = init_logging(verbose=debug)
    settings = _executor_settings(cfg, ssh_key=ssh_key, command_timeout=command_timeout, max_workers=max_workers)

    executor = RemoteExecutor(
        key_path=settings.key_path,
        connect_timeout=settings.connect_timeout,
        command_timeout=settings.command_timeout,
    )
    provisioner = ClusterProvisioner(
        executor,
        max_workers=settings.max_workers,
        observers=_observers(logger, run_id, events_file),
    )

    with _cancel_on_sigint() as cancel:
        result = provisioner.provision(
            cfg.to_nodes(), cfg.to_cluster_spec(), cancel=cancel, run_id=run_id,
        )
    if result.success:
        typer.echo(f"[rackforge] cluster {result.cluster_name} {result.status.value}")
        return
    typer.echo(f"[rackforge] cluster {result.cluster_name} {result.status.value}: {result.cause}", err=True)
    typer.echo(f"[rackforge] full trace in {log_path}", err=True)
    raise typer.Exit(code=1)


@app.command()
def teardown(
    cluster_file: Path = typer.Argument(...),
    ssh_key: Optional[Path] = typer.Option(None, "--ssh-key"),
    command_timeout: Optional[float] = typer.Option(None, "--command-timeout"),
    max_workers: Optional[int] = typer.Option(None, "--max-workers", min=1),
    events_file: Optional[Path] = typer.Option(None, "--events-file"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Reset every machine in CLUSTER_FILE to a pre-cluster state (best effort)."""
    cfg = _load(cluster_file)
    if not yes:
        typer.confirm(
            f"Reset all {len(cfg.nodes)} node(s) of cluster {cfg.cluster.name}?",
            abort=True,
        )
    logger, run_id, _ = init_logging(verbose=debug)
    settings = _executor_settings(cfg, ssh_key=ssh_key, command_timeout=command_timeout, max_workers=max_workers)

    controller = TeardownController(
        RemoteExecutor(
            key_path=settings.key_path,
            connect_timeout=settings.connect_timeout,
            command_timeout=settings.command_timeout,
        ),
        max_workers=settings.max_workers,
        observers=_observers(logger, run_id, events_file),
    )
    with _cancel_on_sigint() as cancel:
        report = controller.teardown(
            cfg.to_nodes(), cfg.cluster.name, cancel=cancel, run_id=run_id,
        )
    typer.echo(f"[rackforge] teardown {cfg.cluster.name}: {report.summary()}")
    for outcome in report.failed:
        typer.echo(f"  {outcome.node.address}: {outcome.error}", err=True)
    if not report.success:
        raise typer.Exit(code=1)


@app.command()
def render(
    target: RenderTarget = typer.Argument(...),
    cluster_file: Path = typer.Argument(...),
):
    """Print the generated load-balancer config or CNI manifest; no remote calls."""
    cfg = _load(cluster_file)
    spec = cfg.to_cluster_spec()
    roster = partition_roster(cfg.to_nodes(), spec.control_plane_count)
    if target == RenderTarget.haproxy:
        text = render_haproxy_config(roster.control_plane, spec)
    else:
        text = render_cni_manifest(roster.control_plane, spec)
    typer.echo(text, nl=False)


@app.command()
def plan(cluster_file: Path = typer.Argument(...)):
    """Show the roster partition and the phase order; no remote calls."""
    cfg = _load(cluster_file)
    spec = cfg.to_cluster_spec()
    roster = partition_roster(cfg.to_nodes(), spec.control_plane_count)

    typer.echo(f"cluster: {spec.name} (endpoint {spec.endpoint})")
    typer.echo("control plane:")
    for i, node in enumerate(roster.control_plane):
        role = "init" if i == 0 else "join"
        typer.echo(f"  - {node.hostname} {node.address}:{node.port} [{role}]")
    typer.echo("workers:")
    for node in roster.workers:
        typer.echo(f"  - {node.hostname} {node.address}:{node.port}")
    if not roster.workers:
        typer.echo("  (none)")
    typer.echo("phases: " + " -> ".join(p.value for p in PHASE_ORDER))


if __name__ == "__main__":
    app()
