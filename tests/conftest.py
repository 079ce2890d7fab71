import threading

import pytest

from rackforge.cluster.models import ClusterSpec, Node, RemoteCommandResult
from rackforge.cluster.steps import PRINT_JOIN_COMMAND, UPLOAD_CERTS
from rackforge.errors import REDACTED, ProvisioningCancelled, RemoteCommandFailure
from rackforge.remote.executor import RemoteExecutor

JOIN = (
    "kubeadm join k8s-lb:6443 --token abcdef.0123456789abcdef "
    "--discovery-token-ca-cert-hash sha256:" + "a" * 64
)
CERT_KEY = "b" * 64
TOKEN = "s3cr3t-registration-token"

INIT_OUTPUT = "[addons] Applied essential addon: CoreDNS\n\nYour Kubernetes control-plane has initialized successfully!\n"
UPLOAD_OUTPUT = (
    '[upload-certs] Storing the certificates in Secret "kubeadm-certs" in the "kube-system" Namespace\n'
    "[upload-certs] Using certificate key:\n"
    f"{CERT_KEY}\n"
)


class FakeExecutor(RemoteExecutor):
    """
    Records every command instead of opening SSH sessions. `fail` holds
    (address, substring) pairs that make a matching command exit 1.
    """

    def __init__(self, fail=None, outputs=None, hook=None):
        super().__init__(command_timeout=None)
        self.fail = list(fail or [])
        self.outputs = {
            PRINT_JOIN_COMMAND: JOIN + "\n",
            UPLOAD_CERTS: UPLOAD_OUTPUT,
            "kubeadm init --": INIT_OUTPUT,
        }
        self.outputs.update(outputs or {})
        self.hook = hook
        self.calls = []
        self._lock = threading.Lock()

    def run(self, node, command, *, timeout=None, cancel=None, sensitive=False, step=None):
        if cancel is not None and cancel.is_set():
            raise ProvisioningCancelled(node.address)
        with self._lock:
            self.calls.append((node.address, command))
        if self.hook:
            self.hook(node, command)
        for address, needle in self.fail:
            if node.address == address and needle in command:
                shown = REDACTED if sensitive else command
                raise RemoteCommandFailure(node.address, shown, 1, "boom", step=step)
        for prefix, stdout in self.outputs.items():
            if command.startswith(prefix):
                return RemoteCommandResult(stdout, "", 0)
        return RemoteCommandResult("", "", 0)

    def commands_on(self, address):
        return [c for a, c in self.calls if a == address]

    def nodes_running(self, needle):
        return sorted({a for a, c in self.calls if needle in c})


class Capture:
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def notify(self, event):
        with self._lock:
            self.events.append(event)

    def of(self, name):
        return [e for e in self.events if type(e).__name__ == name]


@pytest.fixture
def nodes():
    return [
        Node(hostname=f"node{i}", address=f"10.0.0.{10 + i}")
        for i in range(1, 6)
    ]


@pytest.fixture
def spec():
    return ClusterSpec(
        name="k8s",
        control_plane_count=3,
        registration_url="https://fleet.example.com",
        registration_token=TOKEN,
    )


@pytest.fixture
def fake_executor():
    return FakeExecutor


@pytest.fixture
def capture():
    return Capture()
