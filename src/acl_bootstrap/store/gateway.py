"""Secret store protocol and the gateway the coordinator talks to.

Defines the create-if-absent interface every backing store must satisfy.
Built-in backends: InMemorySecretStore (tests, local simulation) and
ParameterStoreBackend (SSM Parameter Store, the default on a fleet).
A strongly consistent key-value store, a lock service or a table with a
unique constraint can be plugged in behind the same two methods.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from acl_bootstrap.errors import AlreadyExists
from acl_bootstrap.models import ClusterIdentity, Secret, StoreRecord

if TYPE_CHECKING:
    from acl_bootstrap.directory.client import CloudDirectoryClient

logger = logging.getLogger(__name__)


@runtime_checkable
class SecretStore(Protocol):
    """Protocol for shared secret store backends.

    Any object with ``get()`` and ``create_if_absent()`` satisfies this
    protocol.
    """

    def get(self, key: str) -> StoreRecord | None:
        """Return the record stored under *key*, or ``None``.

        A backend may be eventually consistent: a record just created by
        another process is allowed to read as ``None`` for a while.
        """
        ...

    def create_if_absent(self, key: str, value: str) -> StoreRecord:
        """Create *key* with *value* unless it already exists.

        Of several concurrent creates for one key, at most one may
        succeed (to the extent the backend guarantees it).

        Raises:
            AlreadyExists: If *key* already holds a value. Transient
                failures must surface as other exception types.
        """
        ...


class SecretStoreGateway:
    """Namespaces secrets by cluster and exposes create-if-absent semantics.

    Never overwrites: a secret is either absent or present with a fixed
    value for its name.
    """

    def __init__(self, store: SecretStore, cluster: ClusterIdentity) -> None:
        self._store = store
        self._cluster = cluster

    @property
    def cluster(self) -> ClusterIdentity:
        return self._cluster

    @property
    def store(self) -> SecretStore:
        return self._store

    def key_for(self, name: str) -> str:
        return f"{self._cluster.cluster_tag_value}/{name}"

    def get_secret(self, name: str) -> Secret | None:
        record = self._store.get(self.key_for(name))
        if record is None:
            return None
        return self._to_secret(name, record)

    def exists(self, name: str) -> bool:
        return self.get_secret(name) is not None

    def put_secret(self, name: str, value: str) -> Secret:
        """Create secret *name*; raises ``AlreadyExists`` if it is taken."""
        if not value:
            raise ValueError(f"Refusing to store an empty value for '{name}'")
        key = self.key_for(name)
        try:
            record = self._store.create_if_absent(key, value)
        except AlreadyExists:
            logger.info("Secret %s already exists in the store", key)
            raise
        logger.info("Stored secret %s", key)
        return self._to_secret(name, record)

    def _to_secret(self, name: str, record: StoreRecord) -> Secret:
        return Secret(
            cluster_tag_value=self._cluster.cluster_tag_value,
            name=name,
            value=record.value,
            created_at=record.created_at,
        )


def build_store(
    config: dict[str, Any],
    directory: CloudDirectoryClient | None = None,
) -> SecretStore:
    """Build a store backend from a configuration dict.

    Supported keys:
    - type: ``"ssm"`` (default) — ParameterStoreBackend over *directory*
    - type: ``"memory"`` — InMemorySecretStore (single process only)
    """
    store_type = config.get("type", "ssm")

    if store_type == "memory":
        from acl_bootstrap.store.memory import InMemorySecretStore

        return InMemorySecretStore()

    if store_type == "ssm":
        from acl_bootstrap.store.parameter_store import ParameterStoreBackend

        if directory is None:
            raise ValueError("The 'ssm' store needs a CloudDirectoryClient")
        return ParameterStoreBackend(directory)

    raise ValueError(f"Unknown store type: {store_type}. Available: 'ssm', 'memory'.")
