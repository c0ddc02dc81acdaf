"""Error taxonomy for the ACL bootstrap.

Every failure the bootstrap can surface is a ``BootstrapError`` carrying a
stable ``kind`` (shown to operators) and the process ``exit_code`` the CLI
uses for it. ``AlreadyExists`` and ``AlreadyBootstrapped`` are race signals
handled inside the coordinator; they only reach the CLI through a bug.
"""

from __future__ import annotations


class BootstrapError(Exception):
    """Base class for all ACL bootstrap errors."""

    kind = "BootstrapError"
    exit_code = 1


class MetadataUnavailable(BootstrapError):
    """The instance metadata service is unreachable or returned bad data."""

    kind = "MetadataUnavailable"
    exit_code = 10


class DirectoryLookupFailed(BootstrapError):
    """An autoscaling, EC2 or tag lookup failed."""

    kind = "DirectoryLookupFailed"
    exit_code = 11


class RetriesExhausted(BootstrapError):
    """Every attempt of a retried operation failed."""

    kind = "RetriesExhausted"
    exit_code = 12

    def __init__(
        self,
        attempts: int,
        last_error: BaseException | None,
        description: str = "operation",
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.description = description
        super().__init__(
            f"{description} failed after {attempts} attempt(s): {last_error}"
        )


class BootstrapTimeout(BootstrapError):
    """The root secret never became visible within the poll budget."""

    kind = "BootstrapTimeout"
    exit_code = 13


class InvalidSecret(BootstrapError):
    """A secret value does not have the shape of a scheduler secret id."""

    kind = "InvalidSecret"
    exit_code = 14


class PolicyLoadError(BootstrapError):
    """Policy definition files could not be loaded or validated."""

    kind = "PolicyLoadError"
    exit_code = 15


class StoreUnavailable(BootstrapError):
    """The secret store backend failed a request.

    ``code`` is the backend's error code when it gave one. Raised for
    transient failures (throttling, connection errors); see
    ``StoreAccessDenied`` for requests retrying cannot fix.
    """

    kind = "StoreUnavailable"
    exit_code = 16

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class StoreAccessDenied(StoreUnavailable):
    """The store rejected the request (permissions, credentials, bad input)."""

    kind = "StoreAccessDenied"


class HandoffWriteError(BootstrapError):
    """The secrets handoff file could not be written."""

    kind = "HandoffWriteError"
    exit_code = 17


class AlreadyExists(BootstrapError):
    """A create-if-absent write lost to an existing value for the same key."""

    kind = "AlreadyExists"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Secret already exists: {key}")


class PolicySecretMintFailed(BootstrapError):
    """Creating, minting or persisting one policy's secret failed (non-fatal)."""

    kind = "PolicySecretMintFailed"

    def __init__(self, policy: str, reason: str) -> None:
        self.policy = policy
        self.reason = reason
        super().__init__(f"Policy '{policy}': {reason}")


class AclApiError(BootstrapError):
    """The scheduler ACL API returned an error or could not be reached."""

    kind = "AclApiError"

    def __init__(self, message: str, status: int | None = None) -> None:
        self.status = status
        super().__init__(message)


class AlreadyBootstrapped(AclApiError):
    """The ACL system reports that bootstrap has already been done."""

    kind = "AlreadyBootstrapped"
