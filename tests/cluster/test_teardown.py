import pytest

from rackforge.cluster.teardown import TeardownController
from rackforge.errors import TeardownError


def test_teardown_attempts_every_node(nodes, fake_executor, capture):
    ex = fake_executor(fail=[("10.0.0.12", "kubeadm reset")])
    report = TeardownController(ex, observers=[capture]).teardown(nodes, "k8s")

    assert not report.success
    assert [o.node.address for o in report.failed] == ["10.0.0.12"]
    assert report.summary() == "OK=4 FAILED=1"
    assert ex.nodes_running("kubeadm reset --force") == [n.address for n in nodes]

    # a failing step does not stop the rest of that node's reset
    assert any("systemctl stop kubelet" in c for c in ex.commands_on("10.0.0.12"))
    assert "reset kubeadm state" in report.failed[0].error
    for addr in ("10.0.0.11", "10.0.0.12", "10.0.0.13", "10.0.0.14", "10.0.0.15"):
        assert any(c.startswith("iptables -F") for c in ex.commands_on(addr))

    results = {e.node: e.status for e in capture.of("NodeResetResult")}
    assert results["10.0.0.12"] == "FAILED"
    assert list(results.values()).count("OK") == 4
    summary = capture.of("TeardownSummary")[-1]
    assert (summary.ok, summary.failed) == (4, 1)

    with pytest.raises(TeardownError, match="10.0.0.12"):
        report.raise_for_failures()


def test_teardown_all_ok(nodes, fake_executor):
    report = TeardownController(fake_executor()).teardown(nodes, "k8s")
    assert report.success
    assert report.summary() == "OK=5 FAILED=0"
    report.raise_for_failures()


def test_teardown_unreachable_node_does_not_stop_others(nodes, fake_executor):
    from rackforge.errors import NodeConnectionError

    def hook(node, command):
        if node.address == "10.0.0.11":
            raise NodeConnectionError(node.address, "connection refused")

    ex = fake_executor(hook=hook)
    report = TeardownController(ex, max_workers=2).teardown(nodes, "k8s")

    assert [o.node.address for o in report.failed] == ["10.0.0.11"]
    assert "connection refused" in report.failed[0].error
    assert len(ex.nodes_running("kubeadm reset --force")) == 5


def test_node_without_kubeadm_is_still_cleaned(nodes, fake_executor):
    # workers of a run that failed early never had kubeadm installed
    ex = fake_executor(fail=[(n.address, "kubeadm reset") for n in nodes[3:]])
    report = TeardownController(ex).teardown(nodes, "k8s")

    assert [o.node.address for o in report.failed] == ["10.0.0.14", "10.0.0.15"]
    for worker in ("10.0.0.14", "10.0.0.15"):
        cmds = ex.commands_on(worker)
        assert len(cmds) == 5
        assert cmds[-1].startswith("iptables -F")


def test_teardown_events_use_caller_run_id(nodes, fake_executor, capture):
    TeardownController(fake_executor(), observers=[capture]).teardown(nodes, "k8s", run_id="td-1")
    assert {e.run_id for e in capture.events} == {"td-1"}
