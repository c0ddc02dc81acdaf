"""Bootstrap coordination: role selection, coordinator/follower paths, handoff.

Entry points: NodeBootstrap (full node run), BootstrapCoordinator.
"""

from acl_bootstrap.coordinator.coordinator import BootstrapCoordinator
from acl_bootstrap.coordinator.node import NodeBootstrap, NodeContext

__all__ = [
    "BootstrapCoordinator",
    "NodeBootstrap",
    "NodeContext",
]
