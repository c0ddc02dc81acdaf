"""Cloud directory client — read-only views of EC2, autoscaling and SSM.

Resolves this node's identity from instance metadata, its autoscaling
group and cluster tag from EC2 tags, the group's membership from the
autoscaling API, and reads/creates parameters in SSM Parameter Store.

Parameter Store is the shared store between nodes. ``PutParameter`` with
``Overwrite=False`` allows at most one successful create per name, but it
is not linearizable: a value written by one node may take a moment to
become readable on another. Callers poll for visibility.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from acl_bootstrap.directory.metadata import MetadataClient
from acl_bootstrap.errors import (
    AlreadyExists,
    DirectoryLookupFailed,
    MetadataUnavailable,
    StoreAccessDenied,
    StoreUnavailable,
)
from acl_bootstrap.models import (
    ClusterIdentity,
    MembershipSet,
    NodeIdentity,
    Secret,
    StoreRecord,
)

logger = logging.getLogger(__name__)

GROUP_NAME_TAG = "aws:autoscaling:groupName"
DEFAULT_PARAMETER_PREFIX = "/acl-bootstrap"

# SSM error codes that retrying cannot fix.
_REJECTED_CODES = frozenset({
    "AccessDenied",
    "AccessDeniedException",
    "ExpiredTokenException",
    "InvalidKeyId",
    "UnrecognizedClientException",
    "ValidationException",
})

# Lifecycle states that count as group members. Terminating, detaching
# and standby instances are left out.
_MEMBER_STATES = ("InService", "Pending")


def secret_path(prefix: str, cluster_tag: str, name: str) -> str:
    """Return the parameter name for a cluster secret.

    ``secret_path("/acl-bootstrap", "prod", "bootstrap")`` is
    ``/acl-bootstrap/prod/bootstrap``.
    """
    parts = [p.strip("/") for p in (prefix, cluster_tag, name) if p.strip("/")]
    return "/" + "/".join(parts)


class CloudDirectoryClient:
    """Queries the cloud provider on behalf of one node.

    Credentials come from boto3's default chain (the instance profile on
    a fleet node). ``endpoint_url`` points every client at LocalStack in
    tests.
    """

    def __init__(
        self,
        region: str | None = None,
        metadata: MetadataClient | None = None,
        parameter_prefix: str = DEFAULT_PARAMETER_PREFIX,
        endpoint_url: str | None = None,
        profile: str | None = None,
    ) -> None:
        self._region = region
        self._metadata = metadata or MetadataClient()
        self._prefix = parameter_prefix
        self._endpoint_url = endpoint_url
        self._profile = profile
        self._clients: dict[str, Any] = {}

    @property
    def region(self) -> str | None:
        return self._region

    @property
    def parameter_prefix(self) -> str:
        return self._prefix

    # --- Identity ---

    def resolve_node_identity(self) -> NodeIdentity:
        """Resolve this instance's id, private IP, zone and region.

        Raises:
            MetadataUnavailable: If metadata cannot be read or is malformed.
        """
        instance_id = self._metadata.get("instance-id")
        if not instance_id.startswith("i-"):
            raise MetadataUnavailable(f"Malformed instance id: {instance_id!r}")

        private_ip = self._metadata.get("local-ipv4")
        zone = self._metadata.get("placement/availability-zone")
        try:
            region = self._metadata.get("placement/region")
        except MetadataUnavailable:
            # Older metadata versions have no region path; a zone is its
            # region plus one letter.
            region = zone[:-1]

        if not region:
            raise MetadataUnavailable(f"Cannot derive region from zone {zone!r}")

        if self._region is None:
            self._region = region

        node = NodeIdentity(
            instance_id=instance_id,
            private_ip=private_ip,
            availability_zone=zone,
            region=region,
        )
        logger.info(
            "Resolved node identity %s (%s, %s)",
            node.instance_id, node.private_ip, node.availability_zone,
        )
        return node

    def resolve_group_name(self, instance_id: str) -> str:
        """Return the autoscaling group *instance_id* belongs to.

        Raises:
            DirectoryLookupFailed: If the lookup fails or the tag is missing.
        """
        value = self._instance_tag(instance_id, GROUP_NAME_TAG)
        if value is None:
            raise DirectoryLookupFailed(
                f"Instance {instance_id} has no {GROUP_NAME_TAG} tag "
                f"(not in an autoscaling group?)"
            )
        return value

    def resolve_cluster_identity(
        self, node: NodeIdentity, tag_key: str,
    ) -> ClusterIdentity:
        """Read the cluster tag of *node*.

        Raises:
            DirectoryLookupFailed: If the lookup fails or the tag is missing.
        """
        value = self._instance_tag(node.instance_id, tag_key)
        if value is None:
            raise DirectoryLookupFailed(
                f"Instance {node.instance_id} has no '{tag_key}' tag"
            )
        return ClusterIdentity(cluster_tag_value=value, region=node.region)

    # --- Membership ---

    def resolve_membership(
        self, asg_name: str, region: str | None = None,
    ) -> MembershipSet:
        """Describe *asg_name* and return its current members.

        Raises:
            DirectoryLookupFailed: On API errors or an unknown group.
        """
        autoscaling = self._get_client("autoscaling", region)
        try:
            response = autoscaling.describe_auto_scaling_groups(
                AutoScalingGroupNames=[asg_name],
            )
        except (ClientError, BotoCoreError) as e:
            raise DirectoryLookupFailed(
                f"Cannot describe autoscaling group {asg_name}: {e}"
            ) from e

        groups = response.get("AutoScalingGroups", [])
        if not groups:
            raise DirectoryLookupFailed(f"Autoscaling group not found: {asg_name}")
        group = groups[0]

        instances = [
            inst for inst in group.get("Instances", [])
            if str(inst.get("LifecycleState", "")).startswith(_MEMBER_STATES)
        ]
        ips = self._private_ips([inst["InstanceId"] for inst in instances], region)
        members = [
            NodeIdentity(
                instance_id=inst["InstanceId"],
                private_ip=ips.get(inst["InstanceId"], ""),
                availability_zone=inst.get("AvailabilityZone", ""),
                region=region or self._region or "",
            )
            for inst in instances
        ]

        membership = MembershipSet(
            group_name=asg_name,
            desired_capacity=int(group.get("DesiredCapacity", 0)),
            members=members,
        )
        logger.debug(
            "Group %s: %d/%d members", asg_name,
            membership.size, membership.desired_capacity,
        )
        return membership

    # --- Parameters ---

    def read_parameter(self, path: str) -> StoreRecord | None:
        """Return the parameter at *path*, or ``None`` if it does not exist."""
        ssm = self._get_client("ssm")
        try:
            response = ssm.get_parameter(Name=path, WithDecryption=True)
        except ClientError as e:
            if _error_code(e) == "ParameterNotFound":
                return None
            raise _store_error(f"Cannot read parameter {path}", e) from e
        except BotoCoreError as e:
            raise _store_error(f"Cannot read parameter {path}", e) from e

        param = response["Parameter"]
        return StoreRecord(
            key=path,
            value=param["Value"],
            created_at=param.get("LastModifiedDate") or datetime.now(tz=UTC),
        )

    def create_parameter(self, path: str, value: str) -> StoreRecord:
        """Create *path* as a SecureString, refusing to overwrite.

        Raises:
            AlreadyExists: If a parameter with this name already exists.
            StoreUnavailable: If SSM fails the request.
        """
        ssm = self._get_client("ssm")
        try:
            ssm.put_parameter(
                Name=path,
                Value=value,
                Type="SecureString",
                Overwrite=False,
            )
        except ClientError as e:
            if _error_code(e) == "ParameterAlreadyExists":
                raise AlreadyExists(path) from e
            raise _store_error(f"Cannot create parameter {path}", e) from e
        except BotoCoreError as e:
            raise _store_error(f"Cannot create parameter {path}", e) from e
        return StoreRecord(key=path, value=value, created_at=datetime.now(tz=UTC))

    def get_secret(self, cluster_tag: str, name: str) -> Secret | None:
        record = self.read_parameter(secret_path(self._prefix, cluster_tag, name))
        if record is None:
            return None
        return Secret(
            cluster_tag_value=cluster_tag,
            name=name,
            value=record.value,
            created_at=record.created_at,
        )

    def put_secret(self, cluster_tag: str, name: str, value: str) -> Secret:
        record = self.create_parameter(
            secret_path(self._prefix, cluster_tag, name), value,
        )
        return Secret(
            cluster_tag_value=cluster_tag,
            name=name,
            value=record.value,
            created_at=record.created_at,
        )

    # --- Private ---

    def _instance_tag(self, instance_id: str, key: str) -> str | None:
        ec2 = self._get_client("ec2")
        try:
            response = ec2.describe_tags(
                Filters=[
                    {"Name": "resource-id", "Values": [instance_id]},
                    {"Name": "key", "Values": [key]},
                ],
            )
        except (ClientError, BotoCoreError) as e:
            raise DirectoryLookupFailed(
                f"Cannot read tag '{key}' of {instance_id}: {e}"
            ) from e

        for tag in response.get("Tags", []):
            if tag.get("Key") == key:
                return tag.get("Value")
        return None

    def _private_ips(
        self, instance_ids: list[str], region: str | None = None,
    ) -> dict[str, str]:
        if not instance_ids:
            return {}
        ec2 = self._get_client("ec2", region)
        try:
            response = ec2.describe_instances(InstanceIds=instance_ids)
        except (ClientError, BotoCoreError) as e:
            raise DirectoryLookupFailed(
                f"Cannot describe group instances: {e}"
            ) from e

        ips: dict[str, str] = {}
        for reservation in response.get("Reservations", []):
            for inst in reservation.get("Instances", []):
                ips[inst["InstanceId"]] = inst.get("PrivateIpAddress", "")
        return ips

    def _get_client(self, service: str, region: str | None = None) -> Any:
        """Get a cached boto3 service client."""
        region = region or self._region
        cache_key = f"{service}:{region}"
        client = self._clients.get(cache_key)
        if client is None:
            session_kwargs: dict[str, Any] = {}
            if region:
                session_kwargs["region_name"] = region
            if self._profile:
                session_kwargs["profile_name"] = self._profile
            session = boto3.Session(**session_kwargs)

            client_kwargs: dict[str, Any] = {}
            if self._endpoint_url:
                client_kwargs["endpoint_url"] = self._endpoint_url
            client = session.client(service, **client_kwargs)
            self._clients[cache_key] = client
        return client


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _store_error(message: str, error: Exception) -> StoreUnavailable:
    """Map an SSM failure to ``StoreAccessDenied`` or ``StoreUnavailable``."""
    if isinstance(error, ClientError):
        code = _error_code(error)
        cls = StoreAccessDenied if code in _REJECTED_CODES else StoreUnavailable
        return cls(f"{message}: {error}", code=code or None)
    if isinstance(error, NoCredentialsError):
        return StoreAccessDenied(f"{message}: {error}")
    return StoreUnavailable(f"{message}: {error}")
