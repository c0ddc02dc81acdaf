"""Node bootstrap — resolve who we are, pick a role, run the coordinator.

Identity and membership come from the cloud directory. Failures there are
fatal: without a trustworthy identity and membership snapshot no node can
safely decide whether it is the rally point.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from acl_bootstrap.acl.client import AclAuthority
from acl_bootstrap.coordinator.coordinator import BootstrapCoordinator
from acl_bootstrap.directory.client import CloudDirectoryClient
from acl_bootstrap.election.rally_point import (
    is_rally_point,
    order_members,
    select_rally_point,
)
from acl_bootstrap.errors import (
    BootstrapError,
    DirectoryLookupFailed,
    MetadataUnavailable,
    RetriesExhausted,
)
from acl_bootstrap.models import (
    BootstrapResult,
    BootstrapRole,
    ClusterIdentity,
    MembershipSet,
    NodeIdentity,
    PolicyDefinition,
)
from acl_bootstrap.retry.executor import RetryExecutor, RetryPolicy
from acl_bootstrap.store.gateway import SecretStore, SecretStoreGateway

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CLUSTER_TAG_KEY = "acl-bootstrap:cluster"


@dataclass(frozen=True)
class NodeContext:
    """Everything a node learns before choosing its role."""

    node: NodeIdentity
    cluster: ClusterIdentity
    membership: MembershipSet

    @property
    def rally_point(self) -> NodeIdentity:
        return select_rally_point(self.membership.members)

    @property
    def ordered_members(self) -> list[NodeIdentity]:
        return order_members(self.membership.members)

    @property
    def role(self) -> BootstrapRole:
        if is_rally_point(self.node, self.membership):
            return BootstrapRole.COORDINATOR
        return BootstrapRole.FOLLOWER


class NodeBootstrap:
    """Runs the full bootstrap for the node this process is running on."""

    def __init__(
        self,
        directory: CloudDirectoryClient,
        authority: AclAuthority,
        *,
        store: SecretStore | None = None,
        policies: Sequence[PolicyDefinition] = (),
        cluster_tag_key: str = DEFAULT_CLUSTER_TAG_KEY,
        cluster_tag_value: str | None = None,
        asg_name: str | None = None,
        wait_for_capacity: bool = True,
        directory_retry: RetryExecutor | None = None,
        bootstrap_retry: RetryExecutor | None = None,
        poll_retry: RetryExecutor | None = None,
    ) -> None:
        self._directory = directory
        self._authority = authority
        self._store = store
        self._policies = list(policies)
        self._cluster_tag_key = cluster_tag_key
        self._cluster_tag_value = cluster_tag_value
        self._asg_name = asg_name
        self._wait_for_capacity = wait_for_capacity
        self._directory_retry = directory_retry or RetryExecutor.from_policy(RetryPolicy())
        self._bootstrap_retry = bootstrap_retry
        self._poll_retry = poll_retry

    def resolve_identity(self) -> tuple[NodeIdentity, ClusterIdentity]:
        """Resolve this node's identity and the cluster it belongs to.

        Raises:
            MetadataUnavailable: If this node's identity cannot be resolved.
            DirectoryLookupFailed: If the cluster tag cannot be read.
        """
        node = self._resolve(
            self._directory.resolve_node_identity,
            MetadataUnavailable,
            "resolve node identity",
        )

        if self._cluster_tag_value:
            cluster = ClusterIdentity(
                cluster_tag_value=self._cluster_tag_value, region=node.region,
            )
        else:
            cluster = self._resolve(
                lambda: self._directory.resolve_cluster_identity(node, self._cluster_tag_key),
                DirectoryLookupFailed,
                "resolve cluster tag",
            )
        return node, cluster

    def resolve(self) -> NodeContext:
        """Resolve node identity, cluster identity and group membership.

        Raises:
            MetadataUnavailable: If this node's identity cannot be resolved.
            DirectoryLookupFailed: If the group, tags or membership cannot
                be resolved, or the group never reaches desired capacity
                while ``wait_for_capacity`` is set.
        """
        node, cluster = self.resolve_identity()

        asg_name = self._asg_name or self._resolve(
            lambda: self._directory.resolve_group_name(node.instance_id),
            DirectoryLookupFailed,
            "resolve autoscaling group",
        )

        membership = self._resolve(
            lambda: self._read_membership(asg_name, node.region),
            DirectoryLookupFailed,
            f"resolve membership of {asg_name}",
        )
        logger.info(
            "Cluster %s: group %s has %d member(s), desired %d",
            cluster.cluster_tag_value, asg_name,
            membership.size, membership.desired_capacity,
        )
        return NodeContext(node=node, cluster=cluster, membership=membership)

    def run(self) -> BootstrapResult:
        """Resolve, pick the role and run the matching coordinator path."""
        context = self.resolve()
        role = context.role
        rally = context.rally_point

        if role == BootstrapRole.COORDINATOR:
            logger.info(
                "Node %s is the rally point for cluster %s",
                context.node.instance_id, context.cluster.cluster_tag_value,
            )
        else:
            logger.info(
                "Node %s is a follower; rally point is %s",
                context.node.instance_id, rally.instance_id,
            )

        coordinator = self.build_coordinator(context.cluster)
        return coordinator.run(context.node, role)

    def build_coordinator(self, cluster: ClusterIdentity) -> BootstrapCoordinator:
        gateway = SecretStoreGateway(self.store, cluster)
        return BootstrapCoordinator(
            gateway,
            self._authority,
            policies=self._policies,
            bootstrap_retry=self._bootstrap_retry,
            poll_retry=self._poll_retry,
        )

    @property
    def store(self) -> SecretStore:
        if self._store is None:
            from acl_bootstrap.store.parameter_store import ParameterStoreBackend

            self._store = ParameterStoreBackend(self._directory)
        return self._store

    def _read_membership(self, asg_name: str, region: str) -> MembershipSet:
        membership = self._directory.resolve_membership(asg_name, region)
        if self._wait_for_capacity and not membership.is_complete:
            raise DirectoryLookupFailed(
                f"Group {asg_name} has {membership.size} of "
                f"{membership.desired_capacity} desired member(s)"
            )
        return membership

    def _resolve(
        self,
        operation: Callable[[], T],
        error_type: type[BootstrapError],
        description: str,
    ) -> T:
        try:
            return self._directory_retry.execute(operation, description=description)
        except RetriesExhausted as e:
            raise error_type(str(e)) from e
