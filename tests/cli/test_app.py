import json
import logging
import textwrap

import pytest
from typer.testing import CliRunner

import rackforge.cli.app as app_mod
from rackforge.cli.app import app

runner = CliRunner()

CLUSTER = textwrap.dedent("""
    cluster:
      name: prod
      control_plane_count: 2
      registration:
        url: https://fleet.example.com
        token: fleet-token
    nodes:
      - {hostname: node1, address: 10.0.0.11}
      - {hostname: node2, address: 10.0.0.12}
      - {hostname: node3, address: 10.0.0.13}
""")


@pytest.fixture
def cluster_file(tmp_path, monkeypatch):
    monkeypatch.delenv("RACKFORGE_SECRETS_FILE", raising=False)
    monkeypatch.setenv("RACKFORGE_LOG_DIR", str(tmp_path / "logs"))
    f = tmp_path / "cluster.yaml"
    f.write_text(CLUSTER)
    return f


@pytest.fixture
def restore_logging():
    yield
    logger = logging.getLogger("rackforge")
    for h in list(logger.handlers):
        h.close()
    logger.handlers.clear()
    logger.propagate = True


def test_plan(cluster_file):
    result = runner.invoke(app, ["plan", str(cluster_file)])
    assert result.exit_code == 0, result.output
    assert "node1 10.0.0.11:22 [init]" in result.output
    assert "node2 10.0.0.12:22 [join]" in result.output
    assert "node3 10.0.0.13:22" in result.output
    assert "PREREQS -> MASTER_INIT -> MASTER_JOIN" in result.output


def test_render_haproxy(cluster_file):
    result = runner.invoke(app, ["render", "haproxy", str(cluster_file)])
    assert result.exit_code == 0, result.output
    assert "server master1 10.0.0.11:6443 check" in result.output
    assert "server master2 10.0.0.12:6443 check" in result.output
    assert "10.0.0.13" not in result.output


def test_render_cni(cluster_file):
    result = runner.invoke(app, ["render", "cni", str(cluster_file)])
    assert result.exit_code == 0, result.output
    assert "kind: Pod" in result.output


def test_missing_cluster_file(tmp_path):
    result = runner.invoke(app, ["plan", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 2


def test_invalid_cluster_file(cluster_file):
    cluster_file.write_text(CLUSTER.replace("control_plane_count: 2", "control_plane_count: 7"))
    result = runner.invoke(app, ["plan", str(cluster_file)])
    assert result.exit_code == 2


def test_provision(cluster_file, fake_executor, monkeypatch, restore_logging):
    ex = fake_executor()
    monkeypatch.setattr(app_mod, "RemoteExecutor", lambda **kw: ex)
    result = runner.invoke(app, ["provision", str(cluster_file), "--events-file", str(cluster_file.parent / "ev.jsonl")])

    assert result.exit_code == 0, result.output
    assert "cluster prod PROVISIONED" in result.output
    assert "fleet-token" not in result.output
    assert (cluster_file.parent / "ev.jsonl").exists()


def test_provision_failure_exits_non_zero(cluster_file, fake_executor, monkeypatch, restore_logging):
    ex = fake_executor(fail=[("10.0.0.12", "--control-plane")])
    monkeypatch.setattr(app_mod, "RemoteExecutor", lambda **kw: ex)
    result = runner.invoke(app, ["provision", str(cluster_file)])

    assert result.exit_code == 1
    assert "MASTER_JOIN" in result.output
    assert "10.0.0.12" in result.output


def test_teardown_requires_confirmation(cluster_file, fake_executor, monkeypatch):
    ex = fake_executor()
    monkeypatch.setattr(app_mod, "RemoteExecutor", lambda **kw: ex)
    result = runner.invoke(app, ["teardown", str(cluster_file)], input="n\n")

    assert result.exit_code == 1
    assert ex.calls == []


def test_teardown(cluster_file, fake_executor, monkeypatch, restore_logging):
    ex = fake_executor()
    monkeypatch.setattr(app_mod, "RemoteExecutor", lambda **kw: ex)
    result = runner.invoke(app, ["teardown", str(cluster_file), "--yes"])

    assert result.exit_code == 0, result.output
    assert "OK=3 FAILED=0" in result.output


def test_malformed_yaml_is_a_usage_error(cluster_file):
    cluster_file.write_text("cluster: [name: prod\n")
    result = runner.invoke(app, ["plan", str(cluster_file)])
    assert result.exit_code == 2


def test_empty_cluster_name_is_a_usage_error(cluster_file):
    cluster_file.write_text(CLUSTER.replace("name: prod", 'name: ""'))
    result = runner.invoke(app, ["plan", str(cluster_file)])
    assert result.exit_code == 2


def test_default_events_file_named_after_run_id(cluster_file, fake_executor, monkeypatch, restore_logging):
    ex = fake_executor()
    monkeypatch.setattr(app_mod, "RemoteExecutor", lambda **kw: ex)
    result = runner.invoke(app, ["provision", str(cluster_file)])
    assert result.exit_code == 0, result.output

    (events,) = (cluster_file.parent / "logs").glob("*.jsonl")
    run_ids = {json.loads(line)["run_id"] for line in events.read_text().splitlines()}
    assert run_ids == {events.stem}
