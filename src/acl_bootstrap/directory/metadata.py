"""EC2 instance metadata client (IMDSv2).

A session token is fetched once with ``PUT /latest/api/token`` and reused
for every later read. If a read is rejected with 401 (token expired) the
token is dropped and the handshake is repeated once.

Uses stdlib ``urllib.request`` — the metadata service is a plain local
HTTP endpoint.
"""

from __future__ import annotations

import logging
import urllib.error
import urllib.request

from acl_bootstrap.errors import MetadataUnavailable

logger = logging.getLogger(__name__)

DEFAULT_METADATA_URL = "http://169.254.169.254"
TOKEN_TTL_SECONDS = 21600


class MetadataClient:
    """Reads instance metadata paths using a cached IMDSv2 token."""

    def __init__(
        self,
        base_url: str = DEFAULT_METADATA_URL,
        timeout: float = 2.0,
        token_ttl: int = TOKEN_TTL_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._token_ttl = token_ttl
        self._token: str | None = None

    @property
    def has_token(self) -> bool:
        return self._token is not None

    def get(self, path: str) -> str:
        """Read ``/latest/meta-data/<path>`` and return the stripped body.

        Raises:
            MetadataUnavailable: On handshake failure, transport errors,
                non-200 responses, an empty body or a body that is not UTF-8.
        """
        path = path.lstrip("/")
        try:
            return self._read(path)
        except urllib.error.HTTPError as e:
            if e.code != 401:
                raise MetadataUnavailable(
                    f"Metadata path '{path}' returned HTTP {e.code}"
                ) from e
            logger.debug("Metadata token rejected, renewing")
            self._token = None

        try:
            return self._read(path)
        except urllib.error.HTTPError as e:
            raise MetadataUnavailable(
                f"Metadata path '{path}' returned HTTP {e.code}"
            ) from e

    def _read(self, path: str) -> str:
        token = self._ensure_token()
        req = urllib.request.Request(
            f"{self._base_url}/latest/meta-data/{path}",
            headers={"X-aws-ec2-metadata-token": token},
            method="GET",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                body = resp.read().decode("utf-8").strip()
        except urllib.error.HTTPError:
            raise
        except (urllib.error.URLError, OSError) as e:
            raise MetadataUnavailable(
                f"Metadata service unreachable reading '{path}': {e}"
            ) from e
        except UnicodeDecodeError as e:
            raise MetadataUnavailable(
                f"Metadata path '{path}' returned malformed data: {e}"
            ) from e

        if not body:
            raise MetadataUnavailable(f"Metadata path '{path}' returned an empty value")
        return body

    def _ensure_token(self) -> str:
        if self._token is not None:
            return self._token

        req = urllib.request.Request(
            f"{self._base_url}/latest/api/token",
            headers={"X-aws-ec2-metadata-token-ttl-seconds": str(self._token_ttl)},
            method="PUT",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                token = resp.read().decode("utf-8").strip()
        except (urllib.error.URLError, OSError) as e:
            raise MetadataUnavailable(f"Metadata token handshake failed: {e}") from e
        except UnicodeDecodeError as e:
            raise MetadataUnavailable(
                f"Metadata token handshake returned malformed data: {e}"
            ) from e

        if not token:
            raise MetadataUnavailable("Metadata token handshake returned an empty token")

        logger.debug("Obtained metadata session token (ttl=%ds)", self._token_ttl)
        self._token = token
        return token
