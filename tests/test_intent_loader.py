"""Tests for policy intent loading."""

from pathlib import Path

import pytest

from shield_reconciler.errors import IntentValidationError, InternalInvariantViolation
from shield_reconciler.intent_loader import load_intent, parse_intent, read_document
from shield_reconciler.models import ProtectionMode, ResourceType

FLAT_INTENT = """\
clusterId: edg
mode: ENABLED
action: COUNT
resourceTypes:
  - CDN_DISTRIBUTION
  - GLOBAL_ACCELERATOR
accountScope:
  exclude: ["123456789012"]
"""

WRAPPED_INTENT = """\
apiVersion: shield.reconciler/v1
kind: ShieldPolicyIntent
metadata:
  name: edge
spec:
  clusterId: edg
  mode: DISABLED
  resourceTypes: [DNS_ZONE]
"""


class TestLoadIntent:
    """Tests for load_intent()."""

    def test_load_flat_document(self, tmp_path: Path) -> None:
        """Test loading a flat intent document."""
        path = tmp_path / "intent.yaml"
        path.write_text(FLAT_INTENT)

        intent = load_intent(path)

        assert intent.cluster_id == "edg"
        assert ResourceType.GLOBAL_ACCELERATOR in intent.resource_types
        assert intent.account_scope.exclude == frozenset({"123456789012"})

    def test_load_wrapped_document(self, tmp_path: Path) -> None:
        """Test loading an apiVersion/kind/spec wrapped document."""
        path = tmp_path / "intent.yaml"
        path.write_text(WRAPPED_INTENT)

        intent = load_intent(path)

        assert intent.mode == ProtectionMode.DISABLED
        assert intent.resource_types == frozenset({ResourceType.DNS_ZONE})

    def test_load_json_document(self, tmp_path: Path) -> None:
        """Test that JSON documents are accepted."""
        path = tmp_path / "intent.json"
        path.write_text(
            '{"clusterId": "edg", "mode": "IGNORED", "resourceTypes": ["ELASTIC_IP"]}'
        )

        assert load_intent(path).mode == ProtectionMode.IGNORED

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(IntentValidationError, match="File not found"):
            load_intent(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "intent.yaml"
        path.write_text("clusterId: [unclosed")

        with pytest.raises(IntentValidationError, match="Invalid YAML"):
            load_intent(path)

    def test_validation_error_lists_fields(self, tmp_path: Path) -> None:
        """Test that validation errors name the offending fields."""
        path = tmp_path / "intent.yaml"
        path.write_text("clusterId: toolong\nmode: ENABLED\nresourceTypes: []\n")

        with pytest.raises(IntentValidationError) as exc_info:
            load_intent(path)

        message = str(exc_info.value)
        assert "clusterId" in message
        assert "resourceTypes" in message

    def test_file_too_large(self, tmp_path: Path) -> None:
        path = tmp_path / "intent.yaml"
        path.write_text("x" * 64)

        with pytest.raises(IntentValidationError, match="maximum size"):
            read_document(path, max_size_bytes=16)


class TestParseIntent:
    """Tests for parse_intent()."""

    def test_not_a_mapping(self) -> None:
        with pytest.raises(IntentValidationError, match="must be a mapping"):
            parse_intent(["clusterId", "abc"])

    def test_empty_document(self) -> None:
        with pytest.raises(IntentValidationError):
            parse_intent(None)

    def test_wrong_kind(self) -> None:
        data = {"apiVersion": "v1", "kind": "Deployment", "spec": {}}

        with pytest.raises(IntentValidationError, match="Unsupported kind"):
            parse_intent(data)

    def test_account_scope_conflict_propagates(self) -> None:
        """Test that include plus exclude is an invariant violation, not a field error."""
        data = {
            "clusterId": "abc",
            "mode": "DISABLED",
            "resourceTypes": ["DNS_ZONE"],
            "accountScope": {"include": ["1"], "exclude": ["2"]},
        }

        with pytest.raises(InternalInvariantViolation):
            parse_intent(data)
