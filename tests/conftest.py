"""Fixtures for bootstrap tests (fakes live in ``fakes.py``)."""

from __future__ import annotations

import pytest
from fakes import CLUSTER, FakeAuthority, SleepRecorder

from acl_bootstrap.retry.executor import RetryExecutor
from acl_bootstrap.store.gateway import SecretStoreGateway
from acl_bootstrap.store.memory import InMemorySecretStore


@pytest.fixture()
def store() -> InMemorySecretStore:
    return InMemorySecretStore()


@pytest.fixture()
def gateway(store: InMemorySecretStore) -> SecretStoreGateway:
    return SecretStoreGateway(store, CLUSTER)


@pytest.fixture()
def authority() -> FakeAuthority:
    return FakeAuthority()


@pytest.fixture()
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def fast_retry(sleeper: SleepRecorder) -> RetryExecutor:
    return RetryExecutor(3, 0.5, _sleep=sleeper)
