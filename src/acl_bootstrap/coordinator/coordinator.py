"""Bootstrap coordinator — the one-time ACL bootstrap state machine.

States::

    resolving -> coordinator_path | follower_path -> done | failed

The coordinator path (run by the rally point):

1. If the root secret is already stored, stop. Nothing is minted or written.
2. Bootstrap the ACL system. If it reports "already bootstrapped", another
   node won; wait for its root secret to appear in the store.
3. Store the minted root secret with create-if-absent. On ``AlreadyExists``
   the locally minted value is discarded and the stored one is used.
4. For each policy: register it, mint a scoped secret and store it. A
   failing policy is logged, reported and skipped.

The follower path polls the store until the root secret appears or the
poll budget runs out (``BootstrapTimeout``).

No in-process state is shared between coordinators: every dependency is
passed in, so several simulated nodes can run against one fake store.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from acl_bootstrap.acl.client import AclAuthority
from acl_bootstrap.errors import (
    AlreadyBootstrapped,
    AlreadyExists,
    BootstrapTimeout,
    InvalidSecret,
    PolicySecretMintFailed,
    RetriesExhausted,
    StoreAccessDenied,
    StoreUnavailable,
)
from acl_bootstrap.models import (
    ROOT_SECRET_NAME,
    BootstrapResult,
    BootstrapRole,
    BootstrapState,
    NodeIdentity,
    PolicyDefinition,
    PolicyOutcome,
    PolicyStatus,
    Secret,
    is_valid_secret_id,
)
from acl_bootstrap.retry.executor import RetryExecutor, RetryPolicy
from acl_bootstrap.store.gateway import SecretStoreGateway

logger = logging.getLogger(__name__)


class _SecretNotVisible(Exception):
    """The polled secret is not (yet) readable from the store."""


class BootstrapCoordinator:
    """Drives one node through the coordinator or follower path."""

    def __init__(
        self,
        gateway: SecretStoreGateway,
        authority: AclAuthority,
        *,
        policies: Sequence[PolicyDefinition] = (),
        bootstrap_retry: RetryExecutor | None = None,
        poll_retry: RetryExecutor | None = None,
    ) -> None:
        self._gateway = gateway
        self._authority = authority
        self._policies = list(policies)
        self._bootstrap_retry = bootstrap_retry or RetryExecutor.from_policy(RetryPolicy())
        self._poll_retry = poll_retry or RetryExecutor.from_policy(
            RetryPolicy(attempts=30, delay=5.0),
        )
        self._state = BootstrapState.RESOLVING

    @property
    def state(self) -> BootstrapState:
        return self._state

    @property
    def policies(self) -> list[PolicyDefinition]:
        return list(self._policies)

    def run(self, node: NodeIdentity, role: BootstrapRole) -> BootstrapResult:
        """Run the path for *role* and return the result.

        Any exception leaves the coordinator in the ``failed`` state and
        propagates to the caller.
        """
        try:
            if role == BootstrapRole.COORDINATOR:
                return self.run_coordinator_path(node)
            return self.run_follower_path(node)
        except Exception as exc:
            self._transition(BootstrapState.FAILED)
            logger.error("Bootstrap failed on %s: %s", node.instance_id, exc)
            raise

    # --- Coordinator path ---

    def run_coordinator_path(self, node: NodeIdentity) -> BootstrapResult:
        self._transition(BootstrapState.COORDINATOR_PATH)

        existing = self._bootstrap_retry.execute(
            lambda: self._gateway.get_secret(ROOT_SECRET_NAME),
            give_up_on=(StoreAccessDenied,),
            description="check root secret",
        )
        if existing is not None:
            logger.info(
                "Root secret for %s already stored (created %s); nothing to do",
                self._cluster_tag, existing.created_at.isoformat(),
            )
            return self._done(node, BootstrapRole.COORDINATOR, existing.value)

        logger.info("Attempting ACL bootstrap for cluster %s", self._cluster_tag)
        try:
            minted = self._bootstrap_retry.execute(
                self._authority.bootstrap,
                give_up_on=(AlreadyBootstrapped,),
                description="ACL bootstrap",
            )
        except AlreadyBootstrapped:
            logger.info(
                "ACL system reports it is already bootstrapped; "
                "reading root secret from the store",
            )
            stored = self._await_secret(ROOT_SECRET_NAME)
            _require_secret_id(stored.value, "stored root secret")
            return self._done(node, BootstrapRole.COORDINATOR, stored.value)

        _require_secret_id(minted, "minted root secret")
        logger.info("ACL bootstrap succeeded; storing root secret")

        root = minted
        won = True
        try:
            self._bootstrap_retry.execute(
                lambda: self._gateway.put_secret(ROOT_SECRET_NAME, minted),
                give_up_on=(AlreadyExists, StoreAccessDenied),
                description="store root secret",
            )
        except AlreadyExists:
            logger.warning(
                "Another node stored the root secret first; "
                "discarding the locally minted value",
            )
            won = False
            root = self._await_secret(ROOT_SECRET_NAME).value

        outcomes, policy_secrets = self._process_policies(root)
        return self._done(
            node, BootstrapRole.COORDINATOR, root,
            minted=won,
            policy_secrets=policy_secrets,
            policy_outcomes=outcomes,
        )

    def _process_policies(
        self, root: str,
    ) -> tuple[list[PolicyOutcome], dict[str, str]]:
        outcomes: list[PolicyOutcome] = []
        secrets: dict[str, str] = {}

        for policy in self._policies:
            try:
                outcome, value = self._process_policy(policy, root)
            except Exception as exc:
                failure = PolicySecretMintFailed(policy.name, str(exc))
                logger.warning("Skipping policy secret: %s", failure)
                outcomes.append(PolicyOutcome(
                    policy=policy.name,
                    status=PolicyStatus.FAILED,
                    error=failure.reason,
                ))
                continue

            outcomes.append(outcome)
            secrets[policy.name] = value
            logger.info("Policy %s processed (%s)", policy.name, outcome.status)

        failed = [o.policy for o in outcomes if o.status == PolicyStatus.FAILED]
        if failed:
            logger.warning(
                "%d policy secret(s) missing from the store: %s",
                len(failed), ", ".join(failed),
            )
        return outcomes, secrets

    def _process_policy(
        self, policy: PolicyDefinition, root: str,
    ) -> tuple[PolicyOutcome, str]:
        existing = self._gateway.get_secret(policy.name)
        if existing is not None:
            return PolicyOutcome(policy=policy.name, status=PolicyStatus.EXISTING), existing.value

        self._bootstrap_retry.execute(
            lambda: self._authority.create_policy(
                policy.name, policy.document, policy.description, root,
            ),
            description=f"create policy {policy.name}",
        )
        scoped = self._bootstrap_retry.execute(
            lambda: self._authority.create_token(policy.name, root),
            description=f"mint secret for policy {policy.name}",
        )

        try:
            self._gateway.put_secret(policy.name, scoped)
        except AlreadyExists:
            stored = self._await_secret(policy.name)
            return PolicyOutcome(policy=policy.name, status=PolicyStatus.EXISTING), stored.value

        return PolicyOutcome(policy=policy.name, status=PolicyStatus.CREATED), scoped

    # --- Follower path ---

    def run_follower_path(self, node: NodeIdentity) -> BootstrapResult:
        self._transition(BootstrapState.FOLLOWER_PATH)
        logger.info("Waiting for the rally point to store the root secret")

        root = self._await_secret(ROOT_SECRET_NAME)
        logger.info("Root secret for %s is available", self._cluster_tag)

        return self._done(
            node, BootstrapRole.FOLLOWER, root.value,
            policy_secrets=self._collect_policy_secrets(),
        )

    def _collect_policy_secrets(self) -> dict[str, str]:
        secrets: dict[str, str] = {}
        for policy in self._policies:
            try:
                secret = self._gateway.get_secret(policy.name)
            except Exception as exc:
                logger.warning("Cannot read secret for policy %s: %s", policy.name, exc)
                continue
            if secret is None:
                logger.warning("Secret for policy %s is not in the store", policy.name)
                continue
            secrets[policy.name] = secret.value
        return secrets

    # --- Helpers ---

    @property
    def _cluster_tag(self) -> str:
        return self._gateway.cluster.cluster_tag_value

    def _await_secret(self, name: str) -> Secret:
        """Poll the store until *name* is readable.

        Only "not there yet" and transient store failures are retried.

        Raises:
            BootstrapTimeout: If the poll budget runs out first.
            StoreAccessDenied: If the store rejects the read.
        """
        def _read() -> Secret:
            secret = self._gateway.get_secret(name)
            if secret is None:
                raise _SecretNotVisible(f"secret '{name}' not in the store yet")
            return secret

        try:
            return self._poll_retry.execute(
                _read,
                retry_on=(_SecretNotVisible, StoreUnavailable),
                give_up_on=(StoreAccessDenied,),
                description=f"read secret {name}",
            )
        except RetriesExhausted as e:
            raise BootstrapTimeout(
                f"Secret '{name}' for cluster {self._cluster_tag} not visible "
                f"after {e.attempts} poll(s): {e.last_error}"
            ) from e

    def _transition(self, state: BootstrapState) -> None:
        if state != self._state:
            logger.debug("Bootstrap state %s -> %s", self._state, state)
        self._state = state

    def _done(
        self,
        node: NodeIdentity,
        role: BootstrapRole,
        root: str,
        *,
        minted: bool = False,
        policy_secrets: dict[str, str] | None = None,
        policy_outcomes: list[PolicyOutcome] | None = None,
    ) -> BootstrapResult:
        self._transition(BootstrapState.DONE)
        return BootstrapResult(
            cluster=self._gateway.cluster,
            node=node,
            role=role,
            state=BootstrapState.DONE,
            root_secret=root,
            minted=minted,
            policy_secrets=policy_secrets or {},
            policy_outcomes=policy_outcomes or [],
        )


def _require_secret_id(value: str, what: str) -> None:
    if not is_valid_secret_id(value):
        raise InvalidSecret(f"The {what} is not a valid secret id")
