"""Tests for the declared STIG project plan."""

from __future__ import annotations

import pytest

from provisioner.config import Configuration, ConfigurationError
from provisioner.dependency import validate_plan_order
from provisioner.models import (
    ArtifactRepositorySpec,
    BindingSpec,
    BindingTarget,
    BucketSpec,
    FirewallRuleSpec,
    KmsAuthorizationSpec,
    KmsKeyRingSpec,
    KmsKeySpec,
    NetworkSpec,
    ServiceAccountSpec,
    ServicesSpec,
)
from provisioner.plan import REQUIRED_SERVICES, build_plan, describe_plan


def _index(steps: list, key: str) -> int:
    return [step.key for step in steps].index(key)


def _resources(steps: list) -> list:
    return [s for s in steps if not isinstance(s, (BindingSpec, KmsAuthorizationSpec))]


class TestBuildPlan:
    """Tests for build_plan."""

    def test_requires_project_number(self, unresolved_config: Configuration) -> None:
        with pytest.raises(ConfigurationError):
            build_plan(unresolved_config)

    def test_step_counts(self, config: Configuration) -> None:
        steps = build_plan(config)

        bindings = [s for s in steps if isinstance(s, BindingSpec)]
        authorizations = [s for s in steps if isinstance(s, KmsAuthorizationSpec)]
        assert len(_resources(steps)) == 9
        assert len(bindings) == 12
        assert len(authorizations) == 1
        assert len(steps) == 22

    def test_order_is_valid(self, config: Configuration) -> None:
        validate_plan_order(build_plan(config))

    def test_resource_kinds(self, config: Configuration) -> None:
        resources = _resources(build_plan(config))

        assert [type(s) for s in resources] == [
            ServicesSpec,
            NetworkSpec,
            FirewallRuleSpec,
            ServiceAccountSpec,
            KmsKeyRingSpec,
            KmsKeySpec,
            BucketSpec,
            BucketSpec,
            ArtifactRepositorySpec,
        ]

    def test_required_services(self, config: Configuration) -> None:
        services = build_plan(config)[0]

        assert isinstance(services, ServicesSpec)
        assert services.services == REQUIRED_SERVICES

    def test_declared_ordering(self, config: Configuration) -> None:
        steps = build_plan(config)

        assert _index(steps, "network/default") < _index(steps, "firewall-rule/allow-iap-ssh")
        assert _index(steps, "kms-keyring/stig-artifacts") < _index(steps, "kms-key/storage-key")
        assert _index(steps, "kms-key/storage-key") < _index(steps, "bucket/demo-stig-artifacts")
        assert _index(steps, "kms-key/storage-key") < _index(steps, "bucket/demo_cloudbuild")

    def test_bindings_follow_their_resource(self, config: Configuration) -> None:
        steps = build_plan(config)
        positions = {step.key: i for i, step in enumerate(steps)}

        for index, step in enumerate(steps):
            if not isinstance(step, BindingSpec):
                continue
            for dep in step.depends_on:
                assert positions[dep] < index

    def test_buckets_encrypted_with_storage_key(self, config: Configuration) -> None:
        buckets = [s for s in build_plan(config) if isinstance(s, BucketSpec)]

        assert {b.name for b in buckets} == {"demo-stig-artifacts", "demo_cloudbuild"}
        for bucket in buckets:
            assert bucket.default_kms_key == config.key_path
            assert bucket.location == "us-central1"

    def test_compute_account_has_object_admin_on_artifacts(self, config: Configuration) -> None:
        bindings = [s for s in build_plan(config) if isinstance(s, BindingSpec)]
        matching = [
            b
            for b in bindings
            if b.target == BindingTarget.BUCKET
            and b.resource == "demo-stig-artifacts"
            and b.member == f"serviceAccount:{config.compute_service_account}"
        ]

        assert len(matching) == 1
        assert matching[0].roles == ("roles/storage.objectAdmin",)

    def test_packer_project_roles(self, config: Configuration) -> None:
        bindings = [s for s in build_plan(config) if isinstance(s, BindingSpec)]
        packer = next(
            b
            for b in bindings
            if b.target == BindingTarget.PROJECT
            and b.member == "serviceAccount:packer@demo.iam.gserviceaccount.com"
        )

        assert packer.roles == (
            "roles/compute.instanceAdmin.v1",
            "roles/iam.serviceAccountUser",
            "roles/iap.tunnelResourceAccessor",
        )

    def test_storage_agent_authorized_before_buckets(self, config: Configuration) -> None:
        steps = build_plan(config)
        authorization = next(s for s in steps if isinstance(s, KmsAuthorizationSpec))

        assert authorization.key == (
            "kms-authorization/storage-key/"
            "service-123456789012@gs-project-accounts.iam.gserviceaccount.com"
        )
        assert authorization.depends_on == ("kms-key/storage-key",)
        assert _index(steps, authorization.key) < _index(steps, "bucket/demo-stig-artifacts")
        assert _index(steps, authorization.key) < _index(steps, "bucket/demo_cloudbuild")

    def test_repository_is_multi_region(self, config: Configuration) -> None:
        repository = next(s for s in build_plan(config) if isinstance(s, ArtifactRepositorySpec))

        assert repository.name == "gcr.io"
        assert repository.location == "us"
        assert repository.repository_format == "docker"


class TestDescribePlan:
    """Tests for plan rendering."""

    def test_describe_includes_keys_and_kinds(self, config: Configuration) -> None:
        described = describe_plan(build_plan(config))

        assert described[0]["key"] == "services/required-apis"
        assert described[0]["kind"] == "services"
        binding = next(d for d in described if d["kind"] == "iam-binding")
        assert binding["target"] == "project"
        assert "dependsOn" in binding

    def test_describe_authorization(self, config: Configuration) -> None:
        described = describe_plan(build_plan(config))

        authorization = next(d for d in described if d["kind"] == "kms-authorization")
        assert authorization["keyName"] == "storage-key"
        assert authorization["agent"] == config.storage_service_agent
