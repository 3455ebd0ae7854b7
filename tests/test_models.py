"""Tests for resource, binding and result models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from provisioner.models import (
    BindingSpec,
    BindingTarget,
    BucketSpec,
    FirewallRuleSpec,
    KmsAuthorizationSpec,
    KmsKeySpec,
    NetworkSpec,
    Outcome,
    ReconcileResult,
    RunReport,
    parse_resource,
)


class TestResourceSpecs:
    """Tests for the resource spec tagged union."""

    def test_parse_dispatches_on_kind(self) -> None:
        spec = parse_resource(
            {
                "kind": "kms-key",
                "name": "storage-key",
                "keyring": "stig-artifacts",
                "location": "us-central1",
            }
        )

        assert isinstance(spec, KmsKeySpec)
        assert spec.purpose == "encryption"
        assert spec.key == "kms-key/storage-key"

    def test_parse_accepts_aliases(self) -> None:
        spec = parse_resource(
            {
                "kind": "bucket",
                "name": "demo-stig-artifacts",
                "location": "us-central1",
                "defaultKmsKey": "projects/demo/locations/us-central1/keyRings/k/cryptoKeys/c",
                "dependsOn": ["kms-key/c"],
            }
        )

        assert isinstance(spec, BucketSpec)
        assert spec.uniform_access is True
        assert spec.depends_on == ("kms-key/c",)

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_resource({"kind": "vm-instance", "name": "x"})

    def test_extra_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_resource({"kind": "network", "name": "default", "mtu": 1460})

    def test_network_defaults(self) -> None:
        spec = NetworkSpec(name="default")

        assert spec.subnet_mode == "auto"
        assert spec.bgp_routing_mode == "regional"

    def test_invalid_subnet_mode(self) -> None:
        with pytest.raises(ValidationError):
            NetworkSpec(name="default", subnet_mode="dynamic")

    def test_firewall_requires_allow_rules(self) -> None:
        with pytest.raises(ValidationError):
            FirewallRuleSpec(name="allow-iap-ssh", network="default", allow=())

    def test_firewall_defaults_to_iap_range(self) -> None:
        spec = FirewallRuleSpec(name="allow-iap-ssh", network="default", allow=("tcp:22",))

        assert spec.source_ranges == ("35.235.240.0/20",)

    def test_bucket_name_without_scheme(self) -> None:
        with pytest.raises(ValidationError, match="gs://"):
            BucketSpec(name="gs://demo", location="us-central1")

    def test_specs_are_frozen(self) -> None:
        spec = NetworkSpec(name="default")

        with pytest.raises(ValidationError):
            spec.name = "other"  # type: ignore[misc]


class TestBindingSpec:
    """Tests for IAM grant specs."""

    def test_key_and_name(self) -> None:
        binding = BindingSpec(
            target=BindingTarget.BUCKET,
            resource="demo_cloudbuild",
            member="serviceAccount:1@cloudbuild.gserviceaccount.com",
            roles=("roles/storage.admin",),
        )

        assert binding.kind == "iam-binding"
        assert binding.name == "bucket:demo_cloudbuild"
        assert binding.key == (
            "iam-binding/bucket/demo_cloudbuild/serviceAccount:1@cloudbuild.gserviceaccount.com"
        )

    def test_member_prefix_required(self) -> None:
        with pytest.raises(ValidationError, match="member must start"):
            BindingSpec(
                target=BindingTarget.PROJECT,
                resource="demo",
                member="packer@demo.iam.gserviceaccount.com",
                roles=("roles/logging.logWriter",),
            )

    def test_role_prefix_required(self) -> None:
        with pytest.raises(ValidationError, match="role must start"):
            BindingSpec(
                target=BindingTarget.PROJECT,
                resource="demo",
                member="serviceAccount:packer@demo.iam.gserviceaccount.com",
                roles=("logging.logWriter",),
            )

    def test_roles_required(self) -> None:
        with pytest.raises(ValidationError):
            BindingSpec(
                target=BindingTarget.PROJECT,
                resource="demo",
                member="serviceAccount:packer@demo.iam.gserviceaccount.com",
                roles=(),
            )


class TestKmsAuthorizationSpec:
    """Tests for service agent key authorizations."""

    def test_key_and_kind(self) -> None:
        spec = KmsAuthorizationSpec(
            keyName="storage-key",
            keyring="stig-artifacts",
            location="us-central1",
            agent="service-1@gs-project-accounts.iam.gserviceaccount.com",
        )

        assert spec.kind == "kms-authorization"
        assert spec.name == "storage-key"
        assert spec.key == (
            "kms-authorization/storage-key/service-1@gs-project-accounts.iam.gserviceaccount.com"
        )

    def test_key_name_required(self) -> None:
        with pytest.raises(ValidationError):
            KmsAuthorizationSpec(
                key_name="", keyring="stig-artifacts", location="us-central1", agent="a@b"
            )


class TestRunReport:
    """Tests for run report aggregation."""

    def test_counts(self) -> None:
        report = RunReport(project_id="demo")
        report.results = [
            ReconcileResult("network/default", "network", "default", Outcome.CREATED),
            ReconcileResult(
                "firewall-rule/allow-iap-ssh", "firewall-rule", "allow-iap-ssh",
                Outcome.ALREADY_EXISTS,
            ),  # fmt: skip
            ReconcileResult("iam-binding/project/demo/x", "iam-binding", "project:demo",
                            Outcome.CREATED),  # fmt: skip
            ReconcileResult("kms-authorization/storage-key/agent", "kms-authorization",
                            "storage-key", Outcome.CREATED),  # fmt: skip
        ]

        assert report.created_count == 1
        assert report.existing_count == 1
        assert report.binding_count == 1
        assert report.authorization_count == 1
        assert report.success is True
        assert report.failed is None

    def test_failed_result(self) -> None:
        report = RunReport(project_id="demo")
        failure = ReconcileResult(
            "bucket/demo-stig-artifacts", "bucket", "demo-stig-artifacts", Outcome.FAILED,
            reason="denied", error_category="permission-denied",
        )  # fmt: skip
        report.results = [failure]

        assert report.success is False
        assert report.failed is failure

    def test_report_error_is_failure(self) -> None:
        report = RunReport(project_id="demo", error="provider-error: boom")

        assert report.success is False

    def test_duration_zero_until_finished(self) -> None:
        assert RunReport(project_id="demo").duration_seconds == 0.0
