import pytest

from rackforge.cluster.models import ClusterSpec, Phase
from rackforge.cluster.roster import partition_roster
from rackforge.cluster.session import ProvisioningSession
from rackforge.errors import SequencingError


@pytest.fixture
def session(nodes, spec):
    return ProvisioningSession(spec=spec, roster=partition_roster(nodes, spec.control_plane_count))


def test_phases_move_forward(session):
    session.begin(Phase.PREREQS)
    session.complete(Phase.PREREQS)
    session.begin(Phase.MASTER_INIT)
    assert session.phase == Phase.MASTER_INIT

    with pytest.raises(SequencingError):
        session.begin(Phase.PREREQS)


def test_phase_cannot_restart(session):
    session.begin(Phase.PREREQS)
    session.complete(Phase.PREREQS)
    with pytest.raises(SequencingError):
        session.begin(Phase.PREREQS)


def test_require_completed_phase(session):
    with pytest.raises(SequencingError, match="MASTER_INIT"):
        session.require(Phase.MASTER_INIT, for_phase=Phase.CNI_INSTALL)


def test_join_secrets_required_and_recorded_once(session):
    with pytest.raises(SequencingError):
        session.require_worker_join()
    with pytest.raises(SequencingError):
        session.require_control_plane_join()

    session.record_join_secrets(
        worker_join_command="kubeadm join x",
        certificate_key="k" * 64,
        control_plane_join_command="kubeadm join x --control-plane",
    )
    assert session.require_worker_join() == "kubeadm join x"
    assert session.require_control_plane_join() == "kubeadm join x --control-plane"

    with pytest.raises(SequencingError):
        session.record_join_secrets(
            worker_join_command="other", certificate_key="other", control_plane_join_command="other",
        )


def test_repr_hides_secrets(session, spec):
    session.record_join_secrets(
        worker_join_command="kubeadm join --token zzz",
        certificate_key="k" * 64,
        control_plane_join_command="kubeadm join --token zzz --control-plane",
    )
    text = repr(session)
    assert "zzz" not in text
    assert "k" * 64 not in text
    assert spec.registration_token not in text


def test_sessions_are_independent(nodes, spec):
    roster = partition_roster(nodes, 3)
    a = ProvisioningSession(spec=spec, roster=roster)
    b = ProvisioningSession(spec=spec, roster=roster)
    a.begin(Phase.PREREQS)
    assert b.phase is None
    assert a.run_id != b.run_id


def test_cluster_spec_validation():
    with pytest.raises(ValueError):
        ClusterSpec(name="x", control_plane_count=1, registration_url="u", registration_token="t", pod_cidr="nope")
    with pytest.raises(ValueError):
        ClusterSpec(name="", control_plane_count=1, registration_url="u", registration_token="t")
    spec = ClusterSpec(name="prod", control_plane_count=1, registration_url="u", registration_token="t")
    assert spec.endpoint == "prod-lb"
