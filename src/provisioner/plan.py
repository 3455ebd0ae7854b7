"""Declared desired state for a STIG image-builder project.

The plan is a fixed total order of resource and IAM grant steps. Each step
declares what it depends on so the order can be validated (see
dependency.validate_plan_order) and so a reader can see why it sits where
it does:

- network before firewall rule
- service account before its IAM grants
- keyring before key before the key's IAM grants
- key (and the storage agent's authorization on it) before any bucket using it
- bucket before its IAM grants
- repository before its IAM grants
"""

from __future__ import annotations

from typing import Any

from .config import PACKER_ACCOUNT_ID, Configuration
from .models import (
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
    Step,
)

REQUIRED_SERVICES: tuple[str, ...] = (
    "cloudbuild.googleapis.com",
    "compute.googleapis.com",
    "iap.googleapis.com",
    "cloudkms.googleapis.com",
    "artifactregistry.googleapis.com",
    "containerregistry.googleapis.com",
    "storage.googleapis.com",
)

NETWORK_NAME = "default"
FIREWALL_RULE_NAME = "allow-iap-ssh"
SERVICES_NAME = "required-apis"

ROLE_INSTANCE_ADMIN = "roles/compute.instanceAdmin.v1"
ROLE_SA_USER = "roles/iam.serviceAccountUser"
ROLE_SA_TOKEN_CREATOR = "roles/iam.serviceAccountTokenCreator"
ROLE_IAP_TUNNEL = "roles/iap.tunnelResourceAccessor"
ROLE_AR_WRITER = "roles/artifactregistry.writer"
ROLE_OBJECT_ADMIN = "roles/storage.objectAdmin"
ROLE_STORAGE_ADMIN = "roles/storage.admin"
ROLE_LOG_WRITER = "roles/logging.logWriter"
ROLE_KMS_ENCRYPTER_DECRYPTER = "roles/cloudkms.cryptoKeyEncrypterDecrypter"


def _sa(email: str) -> str:
    return f"serviceAccount:{email}"


def build_plan(config: Configuration) -> list[Step]:
    """Build the ordered provisioning plan for ``config``.

    Args:
        config: Configuration with the project number resolved.

    Returns:
        Resource, binding and authorization steps in execution order.

    Raises:
        ConfigurationError: If the project number has not been resolved.
    """
    packer = config.packer_service_account
    cloudbuild = _sa(config.cloudbuild_service_account)
    compute = _sa(config.compute_service_account)

    services = ServicesSpec(name=SERVICES_NAME, services=REQUIRED_SERVICES)
    network = NetworkSpec(name=NETWORK_NAME, depends_on=(services.key,))
    firewall = FirewallRuleSpec(
        name=FIREWALL_RULE_NAME,
        network=network.name,
        allow=("tcp:22",),
        description="Allow SSH from IAP",
        depends_on=(network.key,),
    )
    packer_account = ServiceAccountSpec(
        name=packer,
        account_id=PACKER_ACCOUNT_ID,
        display_name="Packer Service Account",
        description="Packer Service Account",
        depends_on=(services.key,),
    )

    def project_grant(member: str, *roles: str) -> BindingSpec:
        return BindingSpec(
            target=BindingTarget.PROJECT,
            resource=config.project_id,
            member=member,
            roles=roles,
            depends_on=(services.key,),
        )

    def account_grant(account: str, member: str, *roles: str, after: str) -> BindingSpec:
        return BindingSpec(
            target=BindingTarget.SERVICE_ACCOUNT,
            resource=account,
            member=member,
            roles=roles,
            depends_on=(after,),
        )

    keyring = KmsKeyRingSpec(
        name=config.keyring_name, location=config.region, depends_on=(services.key,)
    )
    key = KmsKeySpec(
        name=config.key_name,
        keyring=keyring.name,
        location=config.region,
        depends_on=(keyring.key,),
    )

    storage_agent_authorization = KmsAuthorizationSpec(
        key_name=key.name,
        keyring=keyring.name,
        location=config.region,
        agent=config.storage_service_agent,
        depends_on=(key.key,),
    )
    compute_agent_grant = BindingSpec(
        target=BindingTarget.KMS_KEY,
        resource=key.name,
        member=_sa(config.compute_system_agent),
        roles=(ROLE_KMS_ENCRYPTER_DECRYPTER,),
        location=config.region,
        parent=keyring.name,
        depends_on=(key.key,),
    )

    def bucket(name: str) -> BucketSpec:
        return BucketSpec(
            name=name,
            location=config.region,
            default_kms_key=config.key_path,
            depends_on=(key.key, storage_agent_authorization.key),
        )

    artifacts_bucket = bucket(config.bucket_name)
    cloudbuild_bucket = bucket(config.cloudbuild_bucket)

    def bucket_grant(target: BucketSpec, member: str, role: str) -> BindingSpec:
        return BindingSpec(
            target=BindingTarget.BUCKET,
            resource=target.name,
            member=member,
            roles=(role,),
            depends_on=(target.key,),
        )

    repository = ArtifactRepositorySpec(
        name=config.repository_name,
        location=config.artifact_location,
        description="GCR repository for container images",
        depends_on=(services.key,),
    )

    def repository_grant(member: str) -> BindingSpec:
        return BindingSpec(
            target=BindingTarget.ARTIFACT_REPOSITORY,
            resource=repository.name,
            member=member,
            roles=(ROLE_AR_WRITER,),
            location=repository.location,
            depends_on=(repository.key,),
        )

    return [
        services,
        network,
        firewall,
        packer_account,
        project_grant(_sa(packer), ROLE_INSTANCE_ADMIN, ROLE_SA_USER, ROLE_IAP_TUNNEL),
        account_grant(packer, cloudbuild, ROLE_SA_TOKEN_CREATOR, after=packer_account.key),
        account_grant(packer, compute, ROLE_SA_TOKEN_CREATOR, after=packer_account.key),
        project_grant(
            cloudbuild, ROLE_IAP_TUNNEL, ROLE_AR_WRITER, ROLE_OBJECT_ADMIN, ROLE_INSTANCE_ADMIN
        ),
        project_grant(compute, ROLE_INSTANCE_ADMIN, ROLE_IAP_TUNNEL, ROLE_LOG_WRITER),
        # The compute default account appears once the compute API is enabled
        account_grant(
            config.compute_service_account, compute, ROLE_SA_USER, after=services.key
        ),
        keyring,
        key,
        storage_agent_authorization,
        compute_agent_grant,
        artifacts_bucket,
        cloudbuild_bucket,
        bucket_grant(cloudbuild_bucket, cloudbuild, ROLE_STORAGE_ADMIN),
        bucket_grant(cloudbuild_bucket, compute, ROLE_STORAGE_ADMIN),
        bucket_grant(artifacts_bucket, compute, ROLE_OBJECT_ADMIN),
        repository,
        repository_grant(cloudbuild),
        repository_grant(compute),
    ]


def describe_plan(steps: list[Step]) -> list[dict[str, Any]]:
    """Render steps as plain mappings for display (e.g. YAML output)."""
    described: list[dict[str, Any]] = []
    for step in steps:
        data = step.model_dump(mode="json", by_alias=True, exclude_none=True)
        if isinstance(step, (BindingSpec, KmsAuthorizationSpec)):
            data = {"kind": step.kind, **data}
        described.append({"key": step.key, **data})
    return described
