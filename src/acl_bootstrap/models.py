"""Core data models for the ACL bootstrap.

Defines the schemas for:
- Cluster and node identity (who and where we are)
- Autoscaling group membership (who else is running)
- Stored secrets and raw store records (what is shared)
- Policy definitions (what scoped secrets to derive)
- Bootstrap results (what a run produced)
"""

from __future__ import annotations

import enum
import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

ROOT_SECRET_NAME = "bootstrap"

_POLICY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9-]{1,128}$")

# Scheduler secret ids are UUIDs.
_SECRET_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# --- Enums ---


class BootstrapRole(enum.StrEnum):
    COORDINATOR = "coordinator"
    FOLLOWER = "follower"


class BootstrapState(enum.StrEnum):
    RESOLVING = "resolving"
    COORDINATOR_PATH = "coordinator_path"
    FOLLOWER_PATH = "follower_path"
    DONE = "done"
    FAILED = "failed"


class PolicyStatus(enum.StrEnum):
    CREATED = "created"
    EXISTING = "existing"
    FAILED = "failed"


# --- Identity ---


class ClusterIdentity(BaseModel):
    """Namespace for every stored secret and every group lookup."""

    model_config = ConfigDict(frozen=True)

    cluster_tag_value: str = Field(..., min_length=1)
    region: str = Field(..., min_length=1)


class NodeIdentity(BaseModel):
    """One EC2 instance, resolved once from instance metadata."""

    model_config = ConfigDict(frozen=True)

    instance_id: str = Field(..., min_length=1)
    private_ip: str = ""
    availability_zone: str = ""
    region: str = ""


class MembershipSet(BaseModel):
    """A snapshot of an autoscaling group's members.

    Member order is whatever the directory returned; consumers that need
    a stable order must sort (see ``election.rally_point``).
    """

    group_name: str
    desired_capacity: int = Field(0, ge=0)
    members: list[NodeIdentity] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.instance_ids)

    @property
    def instance_ids(self) -> list[str]:
        """Distinct member instance ids, sorted."""
        return sorted({m.instance_id for m in self.members})

    @property
    def is_complete(self) -> bool:
        """True once at least ``desired_capacity`` members are visible."""
        return self.size >= self.desired_capacity


# --- Secrets ---


class StoreRecord(BaseModel):
    """A raw value as returned by a backing secret store."""

    key: str
    value: str
    created_at: datetime


class Secret(BaseModel):
    """A named secret for one cluster. Never updated in place."""

    model_config = ConfigDict(frozen=True)

    cluster_tag_value: str
    name: str
    value: str
    created_at: datetime


class PolicyDefinition(BaseModel):
    """A named ACL policy document loaded from a local file."""

    name: str
    document: str = Field(..., min_length=1)
    description: str = ""

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _POLICY_NAME_PATTERN.match(value):
            raise ValueError(
                f"Invalid policy name '{value}': use 1-128 letters, digits or '-'"
            )
        if value == ROOT_SECRET_NAME:
            raise ValueError(
                f"Policy name '{ROOT_SECRET_NAME}' is reserved for the root secret"
            )
        return value


# --- Results ---


class PolicyOutcome(BaseModel):
    """What happened to one policy during a coordinator run."""

    policy: str
    status: PolicyStatus
    error: str | None = None


class BootstrapResult(BaseModel):
    """The outcome of one node's bootstrap run."""

    cluster: ClusterIdentity
    node: NodeIdentity
    role: BootstrapRole
    state: BootstrapState = BootstrapState.DONE
    root_secret: str
    minted: bool = False
    policy_secrets: dict[str, str] = Field(default_factory=dict)
    policy_outcomes: list[PolicyOutcome] = Field(default_factory=list)

    @property
    def failed_policies(self) -> list[str]:
        return [
            o.policy for o in self.policy_outcomes
            if o.status == PolicyStatus.FAILED
        ]

    def secrets(self) -> dict[str, str]:
        """Plain ``name -> value`` mapping for the config renderer."""
        out = {ROOT_SECRET_NAME: self.root_secret}
        out.update(self.policy_secrets)
        return out

    def summary(self) -> dict[str, object]:
        """JSON-safe view with secret values left out."""
        return {
            "cluster": self.cluster.model_dump(mode="json"),
            "node": self.node.model_dump(mode="json"),
            "role": str(self.role),
            "state": str(self.state),
            "minted": self.minted,
            "secrets": sorted(self.secrets()),
            "policies": [o.model_dump(mode="json") for o in self.policy_outcomes],
        }


def is_valid_secret_id(value: str) -> bool:
    """Return True if *value* looks like a scheduler secret id (UUID)."""
    return bool(_SECRET_ID_PATTERN.match(value or ""))
