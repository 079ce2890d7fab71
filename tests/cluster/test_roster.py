import pytest

from rackforge.cluster.models import Node
from rackforge.cluster.roster import partition_roster


def test_first_k_nodes_are_control_plane(nodes):
    roster = partition_roster(nodes, 3)
    assert [n.address for n in roster.control_plane] == ["10.0.0.11", "10.0.0.12", "10.0.0.13"]
    assert [n.address for n in roster.workers] == ["10.0.0.14", "10.0.0.15"]
    assert roster.first_control_plane.address == "10.0.0.11"
    assert [n.address for n in roster.joining_control_plane] == ["10.0.0.12", "10.0.0.13"]
    assert roster.all_nodes == nodes


def test_all_nodes_control_plane(nodes):
    roster = partition_roster(nodes, len(nodes))
    assert roster.workers == ()


@pytest.mark.parametrize("count", [0, -1, 6])
def test_control_plane_count_out_of_range(nodes, count):
    with pytest.raises(ValueError):
        partition_roster(nodes, count)


def test_duplicate_address_rejected():
    nodes = [Node("a", "10.0.0.1"), Node("b", "10.0.0.1")]
    with pytest.raises(ValueError, match="10.0.0.1"):
        partition_roster(nodes, 1)


def test_node_identity_is_address():
    assert Node("a", "10.0.0.1") == Node("renamed", "10.0.0.1", port=2222)
    assert str(Node("a", "10.0.0.1")) == "a(10.0.0.1)"
