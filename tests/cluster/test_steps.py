import shlex

from rackforge.cluster import steps
from rackforge.cluster.models import ClusterSpec


def test_prerequisites_disable_firewall_swap_and_selinux(spec):
    commands = [s.command for s in steps.prerequisite_steps(spec, "10.0.0.11")]
    # hosts without firewalld must not fail the phase
    assert "systemctl disable --now firewalld || true" in commands
    assert any(c.startswith("swapoff -a") for c in commands)
    assert any(c.startswith("setenforce 0") for c in commands)
    assert any("br_netfilter" in c for c in commands)


def test_init_step_uses_cluster_networking(spec):
    (init,) = steps.init_steps(spec)
    assert "--control-plane-endpoint=k8s-lb" in init.command
    assert "--pod-network-cidr=10.244.0.0/16" in init.command
    assert "--service-cidr=10.96.0.0/12" in init.command
    assert init.expected_output


def test_runtime_steps_pin_kubernetes_minor():
    spec = ClusterSpec(
        name="k", control_plane_count=1, registration_url="u", registration_token="t",
        kubernetes_version="v1.29",
    )
    repo = [s for s in steps.runtime_steps(spec) if "kubernetes.repo" in s.command][0]
    assert "core:/stable:/v1.29/rpm/" in repo.command


def test_join_and_registration_steps_are_sensitive(spec):
    assert steps.join_step("kubeadm join x", control_plane=True).sensitive
    (reg,) = steps.agent_registration_steps(spec)
    assert reg.sensitive
    assert f"--token {shlex.quote(spec.registration_token)}" in reg.command
    assert f"--server {spec.registration_url}" in reg.command


def test_write_file_heredoc_is_not_expanded():
    cmd = steps.write_file("/etc/haproxy/haproxy.cfg", "a $HOME b")
    assert cmd.startswith("mkdir -p /etc/haproxy && cat > /etc/haproxy/haproxy.cfg <<'RACKFORGE_EOF'\n")
    assert cmd.endswith("a $HOME b\nRACKFORGE_EOF")


def test_reset_starts_with_kubeadm_reset():
    reset = steps.reset_steps()
    assert reset[0].command == "kubeadm reset --force"
    assert len(reset) == 5


def test_default_endpoint_is_pinned_in_hosts_file(spec):
    hosts = [s for s in steps.prerequisite_steps(spec, "10.0.0.11") if "/etc/hosts" in s.command]
    assert len(hosts) == 1
    cmd = hosts[0].command
    assert cmd == (
        "sed -i '/[[:space:]]k8s-lb$/d' /etc/hosts && echo '10.0.0.11 k8s-lb' >> /etc/hosts"
    )


def test_explicit_endpoint_is_left_to_dns():
    spec = ClusterSpec(
        name="k", control_plane_count=1, registration_url="u", registration_token="t",
        control_plane_endpoint="api.k8s.example.com",
    )
    assert not any("/etc/hosts" in s.command for s in steps.prerequisite_steps(spec, "10.0.0.11"))


def test_hosts_entry_escapes_dots():
    step = steps.endpoint_hosts_step("api.lab", "10.1.2.3")
    assert "/[[:space:]]api\\.lab$/d" in step.command
    assert step.command.endswith("echo '10.1.2.3 api.lab' >> /etc/hosts")
