"""Tests for CloudDirectoryClient — mocked boto3 clients and metadata."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from acl_bootstrap.directory.client import CloudDirectoryClient, secret_path
from acl_bootstrap.errors import (
    AlreadyExists,
    DirectoryLookupFailed,
    MetadataUnavailable,
    StoreAccessDenied,
    StoreUnavailable,
)
from acl_bootstrap.models import NodeIdentity

NODE = NodeIdentity(
    instance_id="i-0abc", private_ip="10.0.0.5",
    availability_zone="us-east-1b", region="us-east-1",
)

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _metadata(values: dict[str, str]) -> MagicMock:
    def _get(path: str) -> str:
        if path not in values:
            raise MetadataUnavailable(f"Metadata path '{path}' returned HTTP 404")
        return values[path]

    metadata = MagicMock()
    metadata.get.side_effect = _get
    return metadata


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def _group(instances: list[dict], desired: int) -> dict:
    return {
        "AutoScalingGroups": [{
            "AutoScalingGroupName": "jobs-asg",
            "DesiredCapacity": desired,
            "Instances": instances,
        }],
    }


# ------------------------------------------------------------------
# Tests
# ------------------------------------------------------------------


class TestSecretPath:
    def test_joins_parts(self) -> None:
        assert secret_path("/acl-bootstrap", "prod", "bootstrap") == "/acl-bootstrap/prod/bootstrap"

    def test_strips_slashes_and_skips_empty(self) -> None:
        assert secret_path("/acl-bootstrap/", "", "prod/readonly") == "/acl-bootstrap/prod/readonly"


class TestNodeIdentity:
    def test_resolves_from_metadata(self) -> None:
        client = CloudDirectoryClient(metadata=_metadata({
            "instance-id": "i-0abc",
            "local-ipv4": "10.0.0.5",
            "placement/availability-zone": "us-east-1b",
            "placement/region": "us-east-1",
        }))
        assert client.resolve_node_identity() == NODE
        assert client.region == "us-east-1"

    def test_region_derived_from_zone(self) -> None:
        client = CloudDirectoryClient(metadata=_metadata({
            "instance-id": "i-0abc",
            "local-ipv4": "10.0.0.5",
            "placement/availability-zone": "eu-west-2c",
        }))
        assert client.resolve_node_identity().region == "eu-west-2"

    def test_explicit_region_kept(self) -> None:
        client = CloudDirectoryClient(region="us-west-2", metadata=_metadata({
            "instance-id": "i-0abc",
            "local-ipv4": "10.0.0.5",
            "placement/availability-zone": "us-east-1b",
            "placement/region": "us-east-1",
        }))
        client.resolve_node_identity()
        assert client.region == "us-west-2"

    def test_malformed_instance_id(self) -> None:
        client = CloudDirectoryClient(metadata=_metadata({"instance-id": "<html>"}))
        with pytest.raises(MetadataUnavailable, match="Malformed"):
            client.resolve_node_identity()

    def test_metadata_failure_propagates(self) -> None:
        client = CloudDirectoryClient(metadata=_metadata({}))
        with pytest.raises(MetadataUnavailable):
            client.resolve_node_identity()


class TestTags:
    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_cluster_identity(self, mock_get_client: MagicMock) -> None:
        ec2 = MagicMock()
        ec2.describe_tags.return_value = {
            "Tags": [{"Key": "acl-bootstrap:cluster", "Value": "jobs-prod"}],
        }
        mock_get_client.return_value = ec2

        cluster = CloudDirectoryClient("us-east-1").resolve_cluster_identity(
            NODE, "acl-bootstrap:cluster",
        )

        assert cluster.cluster_tag_value == "jobs-prod"
        assert cluster.region == "us-east-1"
        filters = ec2.describe_tags.call_args.kwargs["Filters"]
        assert {"Name": "resource-id", "Values": ["i-0abc"]} in filters
        assert {"Name": "key", "Values": ["acl-bootstrap:cluster"]} in filters

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_missing_cluster_tag(self, mock_get_client: MagicMock) -> None:
        ec2 = MagicMock()
        ec2.describe_tags.return_value = {"Tags": []}
        mock_get_client.return_value = ec2

        with pytest.raises(DirectoryLookupFailed, match="acl-bootstrap:cluster"):
            CloudDirectoryClient("us-east-1").resolve_cluster_identity(
                NODE, "acl-bootstrap:cluster",
            )

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_group_name(self, mock_get_client: MagicMock) -> None:
        ec2 = MagicMock()
        ec2.describe_tags.return_value = {
            "Tags": [{"Key": "aws:autoscaling:groupName", "Value": "jobs-asg"}],
        }
        mock_get_client.return_value = ec2

        assert CloudDirectoryClient("us-east-1").resolve_group_name("i-0abc") == "jobs-asg"

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_tag_api_error(self, mock_get_client: MagicMock) -> None:
        ec2 = MagicMock()
        ec2.describe_tags.side_effect = _client_error("UnauthorizedOperation", "DescribeTags")
        mock_get_client.return_value = ec2

        with pytest.raises(DirectoryLookupFailed, match="UnauthorizedOperation"):
            CloudDirectoryClient("us-east-1").resolve_group_name("i-0abc")


class TestMembership:
    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_members_with_ips(self, mock_get_client: MagicMock) -> None:
        api = MagicMock()
        api.describe_auto_scaling_groups.return_value = _group([
            {"InstanceId": "i-002", "LifecycleState": "InService", "AvailabilityZone": "us-east-1a"},
            {"InstanceId": "i-001", "LifecycleState": "Pending:Wait", "AvailabilityZone": "us-east-1b"},
            {"InstanceId": "i-009", "LifecycleState": "Terminating", "AvailabilityZone": "us-east-1a"},
        ], desired=2)
        api.describe_instances.return_value = {
            "Reservations": [{"Instances": [
                {"InstanceId": "i-001", "PrivateIpAddress": "10.0.0.1"},
                {"InstanceId": "i-002", "PrivateIpAddress": "10.0.0.2"},
            ]}],
        }
        mock_get_client.return_value = api

        membership = CloudDirectoryClient("us-east-1").resolve_membership("jobs-asg")

        assert membership.group_name == "jobs-asg"
        assert membership.instance_ids == ["i-001", "i-002"]
        assert membership.desired_capacity == 2
        assert membership.is_complete
        ips = {m.instance_id: m.private_ip for m in membership.members}
        assert ips == {"i-001": "10.0.0.1", "i-002": "10.0.0.2"}
        api.describe_instances.assert_called_once_with(InstanceIds=["i-002", "i-001"])

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_incomplete_group(self, mock_get_client: MagicMock) -> None:
        api = MagicMock()
        api.describe_auto_scaling_groups.return_value = _group([
            {"InstanceId": "i-001", "LifecycleState": "InService"},
        ], desired=3)
        api.describe_instances.return_value = {"Reservations": []}
        mock_get_client.return_value = api

        membership = CloudDirectoryClient("us-east-1").resolve_membership("jobs-asg")

        assert membership.size == 1
        assert not membership.is_complete

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_empty_group_skips_instance_lookup(self, mock_get_client: MagicMock) -> None:
        api = MagicMock()
        api.describe_auto_scaling_groups.return_value = _group([], desired=0)
        mock_get_client.return_value = api

        membership = CloudDirectoryClient("us-east-1").resolve_membership("jobs-asg")

        assert membership.members == []
        api.describe_instances.assert_not_called()

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_unknown_group(self, mock_get_client: MagicMock) -> None:
        api = MagicMock()
        api.describe_auto_scaling_groups.return_value = {"AutoScalingGroups": []}
        mock_get_client.return_value = api

        with pytest.raises(DirectoryLookupFailed, match="not found"):
            CloudDirectoryClient("us-east-1").resolve_membership("nope")

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_api_error(self, mock_get_client: MagicMock) -> None:
        api = MagicMock()
        api.describe_auto_scaling_groups.side_effect = _client_error(
            "Throttling", "DescribeAutoScalingGroups",
        )
        mock_get_client.return_value = api

        with pytest.raises(DirectoryLookupFailed):
            CloudDirectoryClient("us-east-1").resolve_membership("jobs-asg")


class TestParameters:
    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_read_existing(self, mock_get_client: MagicMock) -> None:
        created = datetime(2025, 6, 1, tzinfo=UTC)
        ssm = MagicMock()
        ssm.get_parameter.return_value = {
            "Parameter": {"Name": "/p/x", "Value": "v", "LastModifiedDate": created},
        }
        mock_get_client.return_value = ssm

        record = CloudDirectoryClient("us-east-1").read_parameter("/p/x")

        assert record is not None
        assert record.value == "v"
        assert record.created_at == created
        ssm.get_parameter.assert_called_once_with(Name="/p/x", WithDecryption=True)

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_read_missing_returns_none(self, mock_get_client: MagicMock) -> None:
        ssm = MagicMock()
        ssm.get_parameter.side_effect = _client_error("ParameterNotFound", "GetParameter")
        mock_get_client.return_value = ssm

        assert CloudDirectoryClient("us-east-1").read_parameter("/p/x") is None

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_read_access_denied(self, mock_get_client: MagicMock) -> None:
        ssm = MagicMock()
        ssm.get_parameter.side_effect = _client_error("AccessDeniedException", "GetParameter")
        mock_get_client.return_value = ssm

        with pytest.raises(StoreAccessDenied) as exc_info:
            CloudDirectoryClient("us-east-1").read_parameter("/p/x")
        assert exc_info.value.code == "AccessDeniedException"
        assert exc_info.value.exit_code == 16
        assert isinstance(exc_info.value.__cause__, ClientError)

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_read_throttled_is_transient(self, mock_get_client: MagicMock) -> None:
        ssm = MagicMock()
        ssm.get_parameter.side_effect = _client_error("ThrottlingException", "GetParameter")
        mock_get_client.return_value = ssm

        with pytest.raises(StoreUnavailable) as exc_info:
            CloudDirectoryClient("us-east-1").read_parameter("/p/x")
        assert not isinstance(exc_info.value, StoreAccessDenied)
        assert exc_info.value.code == "ThrottlingException"

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_read_connection_error(self, mock_get_client: MagicMock) -> None:
        ssm = MagicMock()
        ssm.get_parameter.side_effect = EndpointConnectionError(
            endpoint_url="https://ssm.us-east-1.amazonaws.com",
        )
        mock_get_client.return_value = ssm

        with pytest.raises(StoreUnavailable, match="Cannot read parameter /p/x"):
            CloudDirectoryClient("us-east-1").read_parameter("/p/x")

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_read_without_credentials(self, mock_get_client: MagicMock) -> None:
        ssm = MagicMock()
        ssm.get_parameter.side_effect = NoCredentialsError()
        mock_get_client.return_value = ssm

        with pytest.raises(StoreAccessDenied):
            CloudDirectoryClient("us-east-1").read_parameter("/p/x")

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_create_never_overwrites(self, mock_get_client: MagicMock) -> None:
        ssm = MagicMock()
        mock_get_client.return_value = ssm

        record = CloudDirectoryClient("us-east-1").create_parameter("/p/x", "v")

        assert record.value == "v"
        ssm.put_parameter.assert_called_once_with(
            Name="/p/x", Value="v", Type="SecureString", Overwrite=False,
        )

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_create_existing_raises(self, mock_get_client: MagicMock) -> None:
        ssm = MagicMock()
        ssm.put_parameter.side_effect = _client_error("ParameterAlreadyExists", "PutParameter")
        mock_get_client.return_value = ssm

        with pytest.raises(AlreadyExists) as exc_info:
            CloudDirectoryClient("us-east-1").create_parameter("/p/x", "v")
        assert exc_info.value.key == "/p/x"

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_create_error_is_not_already_exists(self, mock_get_client: MagicMock) -> None:
        ssm = MagicMock()
        ssm.put_parameter.side_effect = _client_error("AccessDeniedException", "PutParameter")
        mock_get_client.return_value = ssm

        with pytest.raises(StoreAccessDenied) as exc_info:
            CloudDirectoryClient("us-east-1").create_parameter("/p/x", "v")
        assert not isinstance(exc_info.value, AlreadyExists)

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_create_internal_error(self, mock_get_client: MagicMock) -> None:
        ssm = MagicMock()
        ssm.put_parameter.side_effect = _client_error("InternalServerError", "PutParameter")
        mock_get_client.return_value = ssm

        with pytest.raises(StoreUnavailable, match="Cannot create parameter /p/x"):
            CloudDirectoryClient("us-east-1").create_parameter("/p/x", "v")

    @patch("acl_bootstrap.directory.client.CloudDirectoryClient._get_client")
    def test_secret_helpers_use_prefix(self, mock_get_client: MagicMock) -> None:
        ssm = MagicMock()
        ssm.get_parameter.return_value = {"Parameter": {"Value": "root"}}
        mock_get_client.return_value = ssm

        client = CloudDirectoryClient("us-east-1", parameter_prefix="/acl")
        secret = client.get_secret("jobs-prod", "bootstrap")
        client.put_secret("jobs-prod", "readonly", "tok")

        assert secret is not None
        assert secret.value == "root"
        assert secret.name == "bootstrap"
        ssm.get_parameter.assert_called_once_with(
            Name="/acl/jobs-prod/bootstrap", WithDecryption=True,
        )
        assert ssm.put_parameter.call_args.kwargs["Name"] == "/acl/jobs-prod/readonly"


class TestClientCache:
    @patch("acl_bootstrap.directory.client.boto3.Session")
    def test_clients_cached_per_service_and_region(self, mock_session: MagicMock) -> None:
        client = CloudDirectoryClient("us-east-1", endpoint_url="http://localhost:4566")

        first = client._get_client("ssm")
        second = client._get_client("ssm")
        client._get_client("ssm", "eu-west-1")

        assert first is second
        assert mock_session.call_count == 2
        mock_session.assert_any_call(region_name="us-east-1")
        mock_session.assert_any_call(region_name="eu-west-1")
        mock_session.return_value.client.assert_any_call(
            "ssm", endpoint_url="http://localhost:4566",
        )
