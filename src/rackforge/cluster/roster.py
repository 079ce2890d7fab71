# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .models import Node


@dataclass(frozen=True)
class RosterPartition:
    control_plane: Tuple[Node, ...]
    workers: Tuple[Node, ...]

    @property
    def first_control_plane(self) -> Node:
        return self.control_plane[0]

    @property
    def joining_control_plane(self) -> Tuple[Node, ...]:
        return self.control_plane[1:]

    @property
    def all_nodes(self) -> List[Node]:
        return [*self.control_plane, *self.workers]


def partition_roster(nodes: Sequence[Node], control_plane_count: int) -> RosterPartition:
    """
    The first `control_plane_count` nodes, in roster order, are the control
    plane; the rest are workers.
    """
    if not 0 < control_plane_count <= len(nodes):
        raise ValueError(
            f"control_plane_count must be between 1 and {len(nodes)}, got {control_plane_count}"
        )

    seen = set()
    for node in nodes:
        if node.address in seen:
            raise ValueError(f"duplicate node address in roster: {node.address}")
        seen.add(node.address)

    return RosterPartition(
        control_plane=tuple(nodes[:control_plane_count]),
        workers=tuple(nodes[control_plane_count:]),
    )
