"""Rally point selection.

Every node computes the same answer from the same membership snapshot,
so no election protocol is needed: the member with the smallest instance
id is the rally point.

Correctness depends on every node seeing the same snapshot. If the group
scales while nodes are starting, two nodes can both believe they are the
rally point, or none can. The coordinator's create-if-absent write keeps
the first case safe; the second shows up as follower timeouts.
"""

from __future__ import annotations

from collections.abc import Iterable

from acl_bootstrap.errors import DirectoryLookupFailed
from acl_bootstrap.models import MembershipSet, NodeIdentity


def order_members(members: Iterable[NodeIdentity]) -> list[NodeIdentity]:
    """Return members in rally order, one entry per instance id."""
    unique: dict[str, NodeIdentity] = {}
    for member in members:
        unique.setdefault(member.instance_id, member)
    return [unique[iid] for iid in sorted(unique)]


def select_rally_point(members: Iterable[NodeIdentity]) -> NodeIdentity:
    """Return the member that coordinates the bootstrap.

    Raises:
        DirectoryLookupFailed: If there are no members to choose from.
    """
    ordered = order_members(members)
    if not ordered:
        raise DirectoryLookupFailed("Cannot select a rally point from an empty group")
    return ordered[0]


def is_rally_point(self_identity: NodeIdentity, membership: MembershipSet) -> bool:
    """True if *self_identity* is this membership's rally point.

    A node missing from the snapshot is never the rally point.
    """
    if not membership.members:
        return False
    if self_identity.instance_id not in membership.instance_ids:
        return False
    return select_rally_point(membership.members).instance_id == self_identity.instance_id
