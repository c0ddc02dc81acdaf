"""acl-bootstrap: one-time ACL bootstrap for scheduler clusters in an autoscaling group."""

__version__ = "0.4.0"

from acl_bootstrap.acl.client import AclAuthority, SchedulerAclClient
from acl_bootstrap.config import BootstrapConfig, find_config, load_config
from acl_bootstrap.coordinator.coordinator import BootstrapCoordinator
from acl_bootstrap.coordinator.node import NodeBootstrap, NodeContext
from acl_bootstrap.election.rally_point import is_rally_point, select_rally_point
from acl_bootstrap.errors import (
    AlreadyExists,
    BootstrapError,
    BootstrapTimeout,
    DirectoryLookupFailed,
    HandoffWriteError,
    MetadataUnavailable,
    PolicySecretMintFailed,
    RetriesExhausted,
    StoreAccessDenied,
    StoreUnavailable,
)
from acl_bootstrap.models import (
    BootstrapResult,
    BootstrapRole,
    BootstrapState,
    ClusterIdentity,
    MembershipSet,
    NodeIdentity,
    PolicyDefinition,
    Secret,
)
from acl_bootstrap.retry.executor import RetryExecutor, RetryPolicy
from acl_bootstrap.store.gateway import SecretStore, SecretStoreGateway
from acl_bootstrap.store.memory import InMemorySecretStore

__all__ = [
    "AclAuthority",
    "AlreadyExists",
    "BootstrapConfig",
    "BootstrapCoordinator",
    "BootstrapError",
    "BootstrapResult",
    "BootstrapRole",
    "BootstrapState",
    "BootstrapTimeout",
    "ClusterIdentity",
    "DirectoryLookupFailed",
    "find_config",
    "HandoffWriteError",
    "InMemorySecretStore",
    "is_rally_point",
    "load_config",
    "MembershipSet",
    "MetadataUnavailable",
    "NodeBootstrap",
    "NodeContext",
    "NodeIdentity",
    "PolicyDefinition",
    "PolicySecretMintFailed",
    "RetriesExhausted",
    "RetryExecutor",
    "RetryPolicy",
    "SchedulerAclClient",
    "Secret",
    "SecretStore",
    "SecretStoreGateway",
    "StoreAccessDenied",
    "StoreUnavailable",
    "select_rally_point",
    "__version__",
]
