"""Inventory and enrollment boundaries.

The reconciler never talks to a cloud API directly. It consumes two
narrow interfaces so it is source agnostic and easy to fake in tests:

- InventoryAdapter: lists resources with their tags, types and accounts
- EnrollmentProvider: lists, enrolls and unenrolls protected resources

Credentials and API clients live in whatever constructs the adapters.
This module also ships file-backed snapshot implementations used by the
CLI for offline planning and local reconciliation.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .config import MAX_SNAPSHOT_FILE_SIZE_BYTES
from .errors import (
    ErrorKind,
    IntentValidationError,
    InventoryUnavailableError,
    ProviderError,
)
from .intent_loader import format_validation_error, read_document
from .models import (
    AccountScope,
    EnrollmentState,
    ResourceRecord,
    ResourceType,
    normalize_tag_value,
)

logger = logging.getLogger(__name__)


class InventoryAdapter(Protocol):
    """Supplies a fresh inventory snapshot for each run."""

    async def list_resources(self, account_scope: AccountScope) -> Sequence[ResourceRecord]:
        """List resources in the given account scope.

        Raises:
            InventoryUnavailableError: If the inventory cannot be read completely.
        """
        ...


class EnrollmentProvider(Protocol):
    """The protection service's enrollment API."""

    async def list_enrolled(self, account_scope: AccountScope) -> Sequence[EnrollmentState]:
        """List resources currently enrolled in protection."""
        ...

    async def enroll(self, resource_id: str) -> None:
        """Enroll a resource. Raises ProviderError (or an azure-core error) on failure."""
        ...

    async def unenroll(self, resource_id: str) -> None:
        """Unenroll a resource. Raises ProviderError (or an azure-core error) on failure."""
        ...


# =============================================================================
# Snapshot file formats
# =============================================================================


class InventoryRow(BaseModel):
    """One resource in an inventory snapshot file."""

    model_config = {"extra": "ignore"}

    id: str = Field(min_length=1)
    type: ResourceType
    account_id: str = Field("", alias="accountId")
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("account_id", mode="before")
    @classmethod
    def coerce_account_id(cls, v: Any) -> Any:
        # Unquoted 12-digit account ids parse as integers
        return "" if v is None else str(v)

    @field_validator("tags", mode="before")
    @classmethod
    def coerce_tags(cls, v: Any) -> Any:
        if v is None:
            return {}
        if not isinstance(v, Mapping):
            raise ValueError("tags must be a mapping")
        return {str(key): normalize_tag_value(value) for key, value in v.items()}

    def to_record(self) -> ResourceRecord:
        return ResourceRecord(
            resource_id=self.id,
            resource_type=self.type,
            tags=self.tags,
            account_id=self.account_id,
        )


class InventorySnapshot(BaseModel):
    """Inventory snapshot file: `resources: [...]`."""

    model_config = {"extra": "ignore"}

    resources: list[InventoryRow] = Field(default_factory=list)


class EnrollmentRow(BaseModel):
    model_config = {"extra": "ignore"}

    resource_id: str = Field(alias="resourceId", min_length=1)
    account_id: str = Field("", alias="accountId")

    @field_validator("account_id", mode="before")
    @classmethod
    def coerce_account_id(cls, v: Any) -> Any:
        return "" if v is None else str(v)


class EnrollmentSnapshot(BaseModel):
    """Enrollment state file: `enrolled: [...]`."""

    model_config = {"extra": "ignore"}

    enrolled: list[EnrollmentRow] = Field(default_factory=list)


def _load_snapshot(path: Path, model: type[BaseModel]) -> Any:
    try:
        data = read_document(path, MAX_SNAPSHOT_FILE_SIZE_BYTES)
    except IntentValidationError as e:
        raise InventoryUnavailableError(str(e), ErrorKind.UNAVAILABLE) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InventoryUnavailableError(
            f"Snapshot must contain a mapping: {path}", ErrorKind.UNAVAILABLE
        )

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InventoryUnavailableError(
            f"Invalid snapshot {path}:\n{format_validation_error(e)}", ErrorKind.UNAVAILABLE
        ) from e


class SnapshotInventory:
    """Inventory adapter backed by a YAML/JSON snapshot file.

    The file is re-read on every call so each run sees a fresh snapshot.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    async def list_resources(self, account_scope: AccountScope) -> list[ResourceRecord]:
        snapshot: InventorySnapshot = _load_snapshot(self._path, InventorySnapshot)
        records = [
            row.to_record()
            for row in snapshot.resources
            if account_scope.contains(row.account_id)
        ]
        logger.debug(
            "Loaded inventory snapshot",
            extra={"path": str(self._path), "resources_found": len(records)},
        )
        return records


class SnapshotEnrollmentProvider:
    """Enrollment provider persisted to a YAML state file.

    Every enroll/unenroll rewrites the file atomically. Account ids for
    newly enrolled resources come from `accounts` (typically built from
    the inventory snapshot); unknown accounts are stored empty.
    """

    def __init__(self, path: Path, accounts: Mapping[str, str] | None = None) -> None:
        self._path = path
        self._accounts = dict(accounts or {})
        self._enrolled: dict[str, str] | None = None

    def _state(self) -> dict[str, str]:
        if self._enrolled is None:
            if self._path.exists():
                snapshot: EnrollmentSnapshot = _load_snapshot(self._path, EnrollmentSnapshot)
                self._enrolled = {row.resource_id: row.account_id for row in snapshot.enrolled}
            else:
                self._enrolled = {}
        return self._enrolled

    @property
    def enrolled_ids(self) -> list[str]:
        return sorted(self._state())

    async def list_enrolled(self, account_scope: AccountScope) -> list[EnrollmentState]:
        # Reload so each run reads the live file
        self._enrolled = None
        return [
            EnrollmentState(resource_id=rid, currently_enrolled=True)
            for rid, account_id in sorted(self._state().items())
            if not account_id or account_scope.contains(account_id)
        ]

    async def enroll(self, resource_id: str) -> None:
        state = self._state()
        if resource_id in state:
            raise ProviderError(ErrorKind.CONFLICT, f"{resource_id} is already enrolled")
        state[resource_id] = self._accounts.get(resource_id, "")
        self._persist()

    async def unenroll(self, resource_id: str) -> None:
        state = self._state()
        if resource_id not in state:
            raise ProviderError(ErrorKind.NOT_FOUND, f"{resource_id} is not enrolled")
        del state[resource_id]
        self._persist()

    def _persist(self) -> None:
        document = {
            "enrolled": [
                {"resourceId": rid, "accountId": account_id}
                for rid, account_id in sorted(self._state().items())
            ]
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".enrollment-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(document, handle, sort_keys=False)
            os.replace(tmp_name, self._path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise ProviderError(ErrorKind.INTERNAL, f"Failed to write {self._path}: {e}") from e
