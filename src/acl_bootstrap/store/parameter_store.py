"""SSM Parameter Store backend.

Keys map to parameter names under the directory client's prefix
(``cluster/bootstrap`` -> ``/acl-bootstrap/cluster/bootstrap``).
``PutParameter(Overwrite=False)`` gives at most one successful create per
name. Reads are eventually consistent, so a node that loses a create race
may briefly read nothing; the coordinator polls for that.
"""

from __future__ import annotations

from acl_bootstrap.directory.client import CloudDirectoryClient, secret_path
from acl_bootstrap.models import StoreRecord


class ParameterStoreBackend:
    """SecretStore backed by SSM SecureString parameters."""

    def __init__(self, directory: CloudDirectoryClient) -> None:
        self._directory = directory

    def path_for(self, key: str) -> str:
        return secret_path(self._directory.parameter_prefix, "", key)

    def get(self, key: str) -> StoreRecord | None:
        record = self._directory.read_parameter(self.path_for(key))
        if record is None:
            return None
        return StoreRecord(key=key, value=record.value, created_at=record.created_at)

    def create_if_absent(self, key: str, value: str) -> StoreRecord:
        record = self._directory.create_parameter(self.path_for(key), value)
        return StoreRecord(key=key, value=record.value, created_at=record.created_at)
