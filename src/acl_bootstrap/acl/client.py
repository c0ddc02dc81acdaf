"""Scheduler ACL API client.

Talks to the local scheduler agent's HTTP API to bootstrap the ACL
system, register policies and mint policy-scoped tokens.

Uses stdlib ``urllib.request`` — no extra dependencies required.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any, Protocol, runtime_checkable

from acl_bootstrap.errors import AclApiError, AlreadyBootstrapped

logger = logging.getLogger(__name__)

DEFAULT_ACL_ADDRESS = "http://127.0.0.1:4646"
TOKEN_HEADER = "X-Nomad-Token"

_ALREADY_BOOTSTRAPPED_MARKER = "already done"


@runtime_checkable
class AclAuthority(Protocol):
    """Protocol for the authorization subsystem the coordinator drives."""

    def bootstrap(self) -> str:
        """Mint the root secret. Works once per cluster.

        Raises:
            AlreadyBootstrapped: If the cluster was bootstrapped before.
        """
        ...

    def create_policy(
        self, name: str, document: str, description: str, token: str,
    ) -> None:
        """Create or update policy *name* under the authority of *token*."""
        ...

    def create_token(self, policy: str, token: str) -> str:
        """Mint a new secret scoped to *policy* and return its value."""
        ...


class SchedulerAclClient:
    """HTTP client for the scheduler's ``/v1/acl`` endpoints.

    Every failure other than "already bootstrapped" is an ``AclApiError``;
    callers decide whether to retry.
    """

    def __init__(
        self,
        address: str = DEFAULT_ACL_ADDRESS,
        timeout: float = 10.0,
    ) -> None:
        self._address = address.rstrip("/")
        self._timeout = timeout

    @property
    def address(self) -> str:
        return self._address

    def bootstrap(self) -> str:
        try:
            response = self._request("POST", "/v1/acl/bootstrap")
        except AclApiError as e:
            if e.status == 400 and _ALREADY_BOOTSTRAPPED_MARKER in str(e).lower():
                raise AlreadyBootstrapped(str(e), status=e.status) from e
            raise
        return _secret_id(response, "bootstrap")

    def create_policy(
        self, name: str, document: str, description: str, token: str,
    ) -> None:
        self._request(
            "POST",
            f"/v1/acl/policy/{name}",
            body={"Name": name, "Description": description, "Rules": document},
            token=token,
        )
        logger.debug("Registered ACL policy %s", name)

    def create_token(self, policy: str, token: str) -> str:
        response = self._request(
            "POST",
            "/v1/acl/token",
            body={"Name": f"{policy}-token", "Type": "client", "Policies": [policy]},
            token=token,
        )
        return _secret_id(response, f"token for policy '{policy}'")

    def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> Any:
        headers = {"Accept": "application/json"}
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if token:
            headers[TOKEN_HEADER] = token

        req = urllib.request.Request(
            f"{self._address}{path}", data=data, headers=headers, method=method,
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace").strip()
            raise AclApiError(
                f"{method} {path} returned HTTP {e.code}: {detail}", status=e.code,
            ) from e
        except (urllib.error.URLError, OSError) as e:
            raise AclApiError(f"{method} {path} failed: {e}") from e

        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise AclApiError(f"{method} {path} returned invalid JSON") from e


def _secret_id(response: Any, what: str) -> str:
    if not isinstance(response, dict) or not response.get("SecretID"):
        raise AclApiError(f"Response for {what} has no SecretID")
    return str(response["SecretID"])
