"""Parameter Store backend against LocalStack.

Run with:  pytest tests/integration/ -m integration -v
Requires:  LocalStack on :4566. Tests skip automatically if it is not
available.
"""

from __future__ import annotations

import socket
import threading
import uuid

import pytest

from acl_bootstrap.coordinator.coordinator import BootstrapCoordinator
from acl_bootstrap.directory.client import CloudDirectoryClient
from acl_bootstrap.errors import AlreadyExists
from acl_bootstrap.models import BootstrapRole, ClusterIdentity, NodeIdentity
from acl_bootstrap.retry.executor import RetryExecutor
from acl_bootstrap.store.gateway import SecretStoreGateway
from acl_bootstrap.store.parameter_store import ParameterStoreBackend

LOCALSTACK_ENDPOINT = "http://localhost:4566"


def _is_localstack_running() -> bool:
    try:
        with socket.create_connection(("localhost", 4566), timeout=2.0):
            return True
    except OSError:
        return False


skip_no_localstack = pytest.mark.skipif(
    not _is_localstack_running(),
    reason="LocalStack not running on localhost:4566",
)

pytestmark = [pytest.mark.integration, skip_no_localstack]


class _OneShotAuthority:
    """Bootstraps once; enough to drive the coordinator path against SSM."""

    def __init__(self) -> None:
        self.root = str(uuid.uuid4())

    def bootstrap(self) -> str:
        return self.root

    def create_policy(self, name, document, description, token) -> None:
        return None

    def create_token(self, policy, token) -> str:
        return str(uuid.uuid4())


@pytest.fixture(autouse=True)
def _aws_env(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "test")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "test")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture()
def directory() -> CloudDirectoryClient:
    # Unique prefix per test.
    return CloudDirectoryClient(
        region="us-east-1",
        parameter_prefix=f"/acl-bootstrap-test/{uuid.uuid4().hex[:8]}",
        endpoint_url=LOCALSTACK_ENDPOINT,
    )


@pytest.fixture()
def cluster() -> ClusterIdentity:
    return ClusterIdentity(cluster_tag_value="inttest", region="us-east-1")


class TestParameterStoreBackend:
    def test_create_and_read(self, directory):
        backend = ParameterStoreBackend(directory)
        assert backend.get("inttest/bootstrap") is None

        backend.create_if_absent("inttest/bootstrap", "root-value")

        record = backend.get("inttest/bootstrap")
        assert record is not None
        assert record.value == "root-value"
        assert record.key == "inttest/bootstrap"

    def test_second_create_rejected(self, directory):
        backend = ParameterStoreBackend(directory)
        backend.create_if_absent("inttest/bootstrap", "first")

        with pytest.raises(AlreadyExists):
            backend.create_if_absent("inttest/bootstrap", "second")
        assert backend.get("inttest/bootstrap").value == "first"

    def test_concurrent_creates_one_winner(self, directory):
        backend = ParameterStoreBackend(directory)
        barrier = threading.Barrier(4)
        winners: list[str] = []
        lock = threading.Lock()

        def attempt(i: int) -> None:
            barrier.wait()
            try:
                backend.create_if_absent("inttest/race", f"v{i}")
            except AlreadyExists:
                return
            with lock:
                winners.append(f"v{i}")

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert backend.get("inttest/race").value == winners[0]


class TestCoordinatorOnParameterStore:
    def test_rally_point_then_follower(self, directory, cluster):
        gateway = SecretStoreGateway(ParameterStoreBackend(directory), cluster)
        authority = _OneShotAuthority()
        node = NodeIdentity(instance_id="i-0inttest", region="us-east-1")

        coordinator = BootstrapCoordinator(
            gateway, authority,
            bootstrap_retry=RetryExecutor(3, 0.5),
            poll_retry=RetryExecutor(10, 0.5),
        )
        minted = coordinator.run(node, BootstrapRole.COORDINATOR)

        follower = BootstrapCoordinator(
            gateway, authority, poll_retry=RetryExecutor(10, 0.5),
        )
        result = follower.run(
            NodeIdentity(instance_id="i-1inttest", region="us-east-1"),
            BootstrapRole.FOLLOWER,
        )

        assert minted.minted is True
        assert result.root_secret == authority.root
