"""Pydantic intent model and immutable snapshot records.

PolicyIntent provides:
1. Type-safe parsing of the intent document
2. Validation at the boundary (fail fast, fail loudly)
3. A frozen value that stays constant for the duration of a run

Snapshot rows (ResourceRecord, EnrollmentState) and derived values
(ScopeDecision, ReconcileOperation) are frozen dataclasses.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import InternalInvariantViolation

VALID_CLUSTER_ID_PATTERN = r"\w{3}"

# Tag every protected resource carries, regardless of cluster
SHIELD_OPT_IN_TAG_KEY = "USE_SHIELD_ADVANCED"
CLUSTER_TAG_KEY_PREFIX = "IS_CLUSTER_"
TAG_TRUE_VALUE = "true"


def cluster_tag_key(cluster_id: str) -> str:
    """Build the cluster-identity tag key for a cluster id."""
    return f"{CLUSTER_TAG_KEY_PREFIX}{cluster_id}"


# =============================================================================
# Enumerations
# =============================================================================


class ProtectionMode(str, Enum):
    """Automatic application-layer response mode."""

    ENABLED = "ENABLED"
    DISABLED = "DISABLED"
    IGNORED = "IGNORED"


class EnforcementAction(str, Enum):
    """What the protection service does with matched attack traffic."""

    BLOCK = "BLOCK"
    COUNT = "COUNT"


class ResourceType(str, Enum):
    """Resource types the protection service can be attached to."""

    CDN_DISTRIBUTION = "CDN_DISTRIBUTION"
    LOAD_BALANCER = "LOAD_BALANCER"
    APPLICATION_LOAD_BALANCER = "APPLICATION_LOAD_BALANCER"
    ELASTIC_IP = "ELASTIC_IP"
    DNS_ZONE = "DNS_ZONE"
    GLOBAL_ACCELERATOR = "GLOBAL_ACCELERATOR"


class ScopeReason(str, Enum):
    """Why a resource is (or is not) in scope."""

    IN_SCOPE = "in_scope"
    TYPE_NOT_PROTECTED = "type_not_protected"
    MISSING_TAG = "missing_tag"
    TAG_MISMATCH = "tag_mismatch"
    ACCOUNT_OUT_OF_SCOPE = "account_out_of_scope"


class OperationKind(str, Enum):
    """Reconcile operation variants."""

    ENROLL = "Enroll"
    UNENROLL = "Unenroll"
    NOOP = "NoOp"


# =============================================================================
# Intent
# =============================================================================


def normalize_tag_value(value: Any) -> str:
    # YAML turns `true` into a bool; tags are always strings on the provider side
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        raise ValueError("tag values cannot be null")
    return str(value)


class AccountScope(BaseModel):
    """Account membership predicate.

    Exactly one of include/exclude may be set. Neither set means every
    account is in scope.
    """

    model_config = {"extra": "forbid", "frozen": True}

    include: frozenset[str] | None = None
    exclude: frozenset[str] | None = None

    @model_validator(mode="after")
    def check_exclusive(self) -> AccountScope:
        if self.include is not None and self.exclude is not None:
            raise InternalInvariantViolation(
                "accountScope cannot set both include and exclude"
            )
        return self

    def contains(self, account_id: str) -> bool:
        """Check whether an account satisfies the scope."""
        if self.include is not None:
            return account_id in self.include
        if self.exclude is not None:
            return account_id not in self.exclude
        return True

    def describe(self) -> str:
        """Human-readable form used in logs and CLI output."""
        if self.include is not None:
            return f"include={sorted(self.include)}"
        if self.exclude is not None:
            return f"exclude={sorted(self.exclude)}"
        return "all"


class PolicyIntent(BaseModel):
    """Desired protection policy.

    Immutable for the duration of a reconciliation run.
    """

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    cluster_id: Annotated[str, Field(alias="clusterId")]
    mode: ProtectionMode
    action: EnforcementAction | None = None
    resource_types: Annotated[frozenset[ResourceType], Field(alias="resourceTypes", min_length=1)]
    required_tags: tuple[tuple[str, str], ...] = Field(default=(), alias="requiredTags")
    account_scope: AccountScope = Field(default_factory=AccountScope, alias="accountScope")

    @field_validator("cluster_id", mode="before")
    @classmethod
    def coerce_cluster_id(cls, v: Any) -> Any:
        # Unquoted numeric ids like `clusterId: 123` parse as integers
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("cluster_id")
    @classmethod
    def validate_cluster_id(cls, v: str) -> str:
        if not re.fullmatch(VALID_CLUSTER_ID_PATTERN, v):
            raise ValueError("clusterId must be exactly 3 word characters")
        return v

    @field_validator("required_tags", mode="before")
    @classmethod
    def normalize_required_tags(cls, v: Any) -> Any:
        """Accept a mapping or a list of {key, value} pairs, in declared order.

        Omitting requiredTags selects the default tags; an explicit empty
        or null value is rejected.
        """
        if v is None:
            raise ValueError("requiredTags cannot be null, omit it to use the default tags")
        if isinstance(v, Mapping):
            pairs = list(v.items())
        elif isinstance(v, list | tuple):
            pairs = []
            for item in v:
                if isinstance(item, Mapping):
                    if "key" not in item or "value" not in item:
                        raise ValueError("each required tag needs 'key' and 'value'")
                    pairs.append((item["key"], item["value"]))
                elif isinstance(item, list | tuple) and len(item) == 2:
                    pairs.append((item[0], item[1]))
                else:
                    raise ValueError(f"invalid required tag entry: {item!r}")
        else:
            raise ValueError("requiredTags must be a mapping or a list")
        if not pairs:
            raise ValueError("requiredTags cannot be empty, omit it to use the default tags")

        seen: set[str] = set()
        normalized = []
        for key, value in pairs:
            key = str(key)
            if not key:
                raise ValueError("tag keys cannot be empty")
            if key in seen:
                raise ValueError(f"duplicate required tag key: {key}")
            seen.add(key)
            normalized.append((key, normalize_tag_value(value)))
        return tuple(normalized)

    @model_validator(mode="after")
    def check_action_and_tags(self) -> PolicyIntent:
        if self.mode == ProtectionMode.ENABLED and self.action is None:
            raise ValueError("action is required when mode is ENABLED")

        cluster_key = cluster_tag_key(self.cluster_id)
        if not self.required_tags:
            object.__setattr__(
                self,
                "required_tags",
                ((SHIELD_OPT_IN_TAG_KEY, TAG_TRUE_VALUE), (cluster_key, TAG_TRUE_VALUE)),
            )
        elif (cluster_key, TAG_TRUE_VALUE) not in self.required_tags:
            raise ValueError(
                f"requiredTags must include the cluster identity tag {cluster_key}={TAG_TRUE_VALUE}"
            )
        return self

    @property
    def cluster_tag(self) -> tuple[str, str]:
        return (cluster_tag_key(self.cluster_id), TAG_TRUE_VALUE)

    @property
    def automatic_response(self) -> EnforcementAction | None:
        """Effective automatic response action, None unless mode is ENABLED."""
        if self.mode == ProtectionMode.ENABLED:
            return self.action
        return None

    def summary(self) -> dict[str, Any]:
        """Serializable summary for logs and reports."""
        return {
            "cluster_id": self.cluster_id,
            "mode": self.mode.value,
            "action": self.automatic_response.value if self.automatic_response else None,
            "resource_types": sorted(t.value for t in self.resource_types),
            "required_tags": {k: v for k, v in self.required_tags},
            "account_scope": self.account_scope.describe(),
        }


# =============================================================================
# Snapshot rows and derived values
# =============================================================================


@dataclass(frozen=True)
class ResourceRecord:
    """One row of an inventory snapshot.

    Attributes:
        resource_id: Provider resource identifier (ARN, resource ID, ...)
        resource_type: Protectable resource type
        tags: Resource tags (read-only view)
        account_id: Owning account
    """

    resource_id: str
    resource_type: ResourceType
    tags: Mapping[str, str] = field(default_factory=dict)
    account_id: str = ""

    def __post_init__(self) -> None:
        if not self.resource_id:
            raise InternalInvariantViolation("resource_id cannot be empty")
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    def __hash__(self) -> int:
        # MappingProxyType is unhashable; resource ids are unique per snapshot
        return hash(self.resource_id)


@dataclass(frozen=True)
class ScopeDecision:
    """Whether one resource belongs to the desired protected set."""

    resource_id: str
    in_scope: bool
    reason: ScopeReason
    detail: str = ""


@dataclass(frozen=True)
class EnrollmentState:
    """Live enrollment of one resource, as reported by the provider."""

    resource_id: str
    currently_enrolled: bool = True


@dataclass(frozen=True)
class ReconcileOperation:
    """A single enroll/unenroll/no-op step."""

    kind: OperationKind
    resource_id: str

    @classmethod
    def enroll(cls, resource_id: str) -> ReconcileOperation:
        return cls(OperationKind.ENROLL, resource_id)

    @classmethod
    def unenroll(cls, resource_id: str) -> ReconcileOperation:
        return cls(OperationKind.UNENROLL, resource_id)

    @classmethod
    def noop(cls, resource_id: str) -> ReconcileOperation:
        return cls(OperationKind.NOOP, resource_id)

    @property
    def is_mutating(self) -> bool:
        return self.kind != OperationKind.NOOP

    def __str__(self) -> str:
        return f"{self.kind.value}({self.resource_id})"
