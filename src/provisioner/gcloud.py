"""Cloud Resource Provider backed by the gcloud and gsutil CLIs.

Every call runs the CLI as a subprocess (argument list, never a shell),
with a timeout, and classifies failures from stderr:

- NOT_FOUND on a describe  -> resource is absent
- NOT_FOUND on create/grant -> DependencyNotFoundError
- PERMISSION_DENIED / 403   -> PermissionDeniedError
- anything else             -> ProviderError

No call is retried. Re-running the whole reconciliation is the recovery
path, and it is safe because creates are guarded by existence checks.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess

from .config import DEFAULT_COMMAND_TIMEOUT_SECONDS
from .models import (
    ArtifactRepositorySpec,
    BindingSpec,
    BindingTarget,
    BucketSpec,
    FirewallRuleSpec,
    KmsKeyRingSpec,
    KmsAuthorizationSpec,
    KmsKeySpec,
    NetworkSpec,
    ResourceSpec,
    ServiceAccountSpec,
    ServicesSpec,
)
from .provider import (
    DependencyNotFoundError,
    PermissionDeniedError,
    PrerequisiteError,
    ProviderError,
)

logger = logging.getLogger(__name__)

GCLOUD = "gcloud"
GSUTIL = "gsutil"
REQUIRED_TOOLS: tuple[str, ...] = (GCLOUD, GSUTIL)
INSTALL_URL = "https://cloud.google.com/sdk/docs/install"

# Max stderr characters carried into error messages
MAX_ERROR_MESSAGE_LENGTH = 2000

_NOT_FOUND_RE = re.compile(
    r"NOT_FOUND|was not found|not found|does not exist|\b404\b", re.IGNORECASE
)
_PERMISSION_DENIED_RE = re.compile(
    r"PERMISSION_DENIED|does not have .*permission|AccessDenied|\b403\b", re.IGNORECASE
)


def missing_tools() -> list[str]:
    """Return the required CLIs that are not on PATH."""
    return [tool for tool in REQUIRED_TOOLS if shutil.which(tool) is None]


def check_prerequisites() -> None:
    """Check that the Google Cloud SDK is installed.

    Raises:
        PrerequisiteError: If gcloud or gsutil is not on PATH.
    """
    missing = missing_tools()
    if missing:
        raise PrerequisiteError(
            f"{', '.join(missing)} not found. Install the Google Cloud SDK from {INSTALL_URL}"
        )


def _is_not_found(stderr: str) -> bool:
    return bool(_NOT_FOUND_RE.search(stderr)) and not _PERMISSION_DENIED_RE.search(stderr)


def _classify(stderr: str, command: str) -> ProviderError:
    message = stderr.strip()[:MAX_ERROR_MESSAGE_LENGTH] or "command failed without output"
    if _PERMISSION_DENIED_RE.search(stderr):
        return PermissionDeniedError(message, command=command)
    if _NOT_FOUND_RE.search(stderr):
        return DependencyNotFoundError(message, command=command)
    return ProviderError(message, command=command)


class GcloudProvider:
    """CloudProvider implementation that shells out to the Cloud SDK."""

    def __init__(
        self,
        project_id: str,
        *,
        timeout: int = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self._project_id = project_id
        self._timeout = timeout

    @property
    def project_id(self) -> str:
        return self._project_id

    # =========================================================================
    # Command execution
    # =========================================================================

    def _run(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        """Run a CLI command and return the completed process.

        Non-zero exit codes are returned, not raised; callers decide whether
        a failure means absence or an error.

        Raises:
            PrerequisiteError: If the executable is missing.
            ProviderError: If the command times out.
        """
        rendered = " ".join(cmd)
        logger.debug("Running command", extra={"command": rendered})
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ProviderError(
                f"Command timed out after {self._timeout}s", command=rendered
            ) from e
        except FileNotFoundError as e:
            raise PrerequisiteError(
                f"Command not found: {cmd[0]}. Install the Google Cloud SDK from {INSTALL_URL}",
                command=rendered,
            ) from e

    def _mutate(self, cmd: list[str]) -> str:
        """Run a mutating command; any failure is an error."""
        result = self._run(cmd)
        if result.returncode != 0:
            raise _classify(result.stderr or "", " ".join(cmd))
        return result.stdout

    def _describe(self, cmd: list[str]) -> bool:
        """Run a describe command; NOT_FOUND means absent."""
        result = self._run(cmd)
        if result.returncode == 0:
            return True
        stderr = result.stderr or ""
        if _is_not_found(stderr):
            return False
        raise _classify(stderr, " ".join(cmd))

    def _project_flag(self) -> str:
        return f"--project={self._project_id}"

    # =========================================================================
    # Project
    # =========================================================================

    def set_active_project(self, project_id: str) -> None:
        self._mutate([GCLOUD, "config", "set", "project", project_id])
        self._project_id = project_id

    def get_project_number(self, project_id: str) -> str:
        """Look up the project number with ``gcloud projects describe``.

        Raises:
            DependencyNotFoundError: If the project is missing or has no number.
        """
        output = self._mutate(
            [GCLOUD, "projects", "describe", project_id, "--format=value(projectNumber)"]
        ).strip()
        if not output:
            raise DependencyNotFoundError(f"No project number returned for {project_id}")
        return output

    # =========================================================================
    # Resources
    # =========================================================================

    def exists(self, spec: ResourceSpec) -> bool:
        if isinstance(spec, ServicesSpec):
            output = self._mutate(
                [
                    GCLOUD,
                    "services",
                    "list",
                    "--enabled",
                    self._project_flag(),
                    "--format=value(config.name)",
                ]
            )
            enabled = {line.strip() for line in output.splitlines() if line.strip()}
            return all(service in enabled for service in spec.services)
        return self._describe(self._describe_command(spec))

    def _describe_command(self, spec: ResourceSpec) -> list[str]:
        project = self._project_flag()
        if isinstance(spec, NetworkSpec):
            return [GCLOUD, "compute", "networks", "describe", spec.name, project]
        if isinstance(spec, FirewallRuleSpec):
            return [GCLOUD, "compute", "firewall-rules", "describe", spec.name, project]
        if isinstance(spec, ServiceAccountSpec):
            return [GCLOUD, "iam", "service-accounts", "describe", spec.name, project]
        if isinstance(spec, KmsKeyRingSpec):
            return [
                GCLOUD, "kms", "keyrings", "describe", spec.name,
                f"--location={spec.location}", project,
            ]  # fmt: skip
        if isinstance(spec, KmsKeySpec):
            return [
                GCLOUD, "kms", "keys", "describe", spec.name,
                f"--location={spec.location}", f"--keyring={spec.keyring}", project,
            ]  # fmt: skip
        if isinstance(spec, BucketSpec):
            return [GCLOUD, "storage", "buckets", "describe", f"gs://{spec.name}", project]
        if isinstance(spec, ArtifactRepositorySpec):
            return [
                GCLOUD, "artifacts", "repositories", "describe", spec.name,
                f"--location={spec.location}", project,
            ]  # fmt: skip
        raise ValueError(f"Unsupported resource kind: {spec.kind}")

    def create(self, spec: ResourceSpec) -> None:
        self._mutate(self._create_command(spec))
        logger.debug("Created resource", extra={"kind": spec.kind, "resource": spec.name})

    def _create_command(self, spec: ResourceSpec) -> list[str]:
        project = self._project_flag()
        if isinstance(spec, ServicesSpec):
            return [GCLOUD, "services", "enable", *spec.services, project]
        if isinstance(spec, NetworkSpec):
            return [
                GCLOUD, "compute", "networks", "create", spec.name,
                f"--subnet-mode={spec.subnet_mode}",
                f"--bgp-routing-mode={spec.bgp_routing_mode}",
                project, "--quiet",
            ]  # fmt: skip
        if isinstance(spec, FirewallRuleSpec):
            cmd = [
                GCLOUD, "compute", "firewall-rules", "create", spec.name,
                f"--network={spec.network}",
                f"--allow={','.join(spec.allow)}",
                f"--source-ranges={','.join(spec.source_ranges)}",
                project,
            ]  # fmt: skip
            if spec.description:
                cmd.append(f"--description={spec.description}")
            cmd.append("--quiet")
            return cmd
        if isinstance(spec, ServiceAccountSpec):
            cmd = [GCLOUD, "iam", "service-accounts", "create", spec.account_id, project]
            if spec.description:
                cmd.append(f"--description={spec.description}")
            if spec.display_name:
                cmd.append(f"--display-name={spec.display_name}")
            return cmd
        if isinstance(spec, KmsKeyRingSpec):
            return [
                GCLOUD, "kms", "keyrings", "create", spec.name,
                f"--location={spec.location}", project, "--quiet",
            ]  # fmt: skip
        if isinstance(spec, KmsKeySpec):
            return [
                GCLOUD, "kms", "keys", "create", spec.name,
                f"--location={spec.location}",
                f"--keyring={spec.keyring}",
                f"--purpose={spec.purpose}",
                project, "--quiet",
            ]  # fmt: skip
        if isinstance(spec, BucketSpec):
            cmd = [
                GCLOUD, "storage", "buckets", "create", f"gs://{spec.name}",
                project, f"--location={spec.location}",
            ]  # fmt: skip
            if spec.uniform_access:
                cmd.append("--uniform-bucket-level-access")
            if spec.default_kms_key:
                cmd.append(f"--default-encryption-key={spec.default_kms_key}")
            return cmd
        if isinstance(spec, ArtifactRepositorySpec):
            cmd = [
                GCLOUD, "artifacts", "repositories", "create", spec.name,
                f"--repository-format={spec.repository_format}",
                f"--location={spec.location}",
                project,
            ]  # fmt: skip
            if spec.description:
                cmd.append(f"--description={spec.description}")
            cmd.append("--quiet")
            return cmd
        raise ValueError(f"Unsupported resource kind: {spec.kind}")

    # =========================================================================
    # IAM grants
    # =========================================================================

    def grant(self, binding: BindingSpec, role: str) -> None:
        self._mutate(self._grant_command(binding, role))

    def _grant_command(self, binding: BindingSpec, role: str) -> list[str]:
        member = f"--member={binding.member}"
        role_flag = f"--role={role}"
        project = self._project_flag()
        if binding.target == BindingTarget.PROJECT:
            return [
                GCLOUD, "projects", "add-iam-policy-binding", binding.resource,
                member, role_flag, "--condition=None", "--quiet",
            ]  # fmt: skip
        if binding.target == BindingTarget.SERVICE_ACCOUNT:
            return [
                GCLOUD, "iam", "service-accounts", "add-iam-policy-binding", binding.resource,
                member, role_flag, project, "--quiet",
            ]  # fmt: skip
        if binding.target == BindingTarget.KMS_KEY:
            return [
                GCLOUD, "kms", "keys", "add-iam-policy-binding", binding.resource,
                f"--location={binding.location}", f"--keyring={binding.parent}",
                member, role_flag, project, "--quiet",
            ]  # fmt: skip
        if binding.target == BindingTarget.BUCKET:
            return [
                GCLOUD, "storage", "buckets", "add-iam-policy-binding",
                f"gs://{binding.resource}", member, role_flag, "--quiet",
            ]  # fmt: skip
        if binding.target == BindingTarget.ARTIFACT_REPOSITORY:
            return [
                GCLOUD, "artifacts", "repositories", "add-iam-policy-binding", binding.resource,
                f"--location={binding.location}", member, role_flag, project, "--quiet",
            ]  # fmt: skip
        raise ValueError(f"Unsupported binding target: {binding.target}")

    # =========================================================================
    # Service agent authorizations
    # =========================================================================

    def authorize_kms_key(self, spec: KmsAuthorizationSpec) -> None:
        """Authorize the project's Cloud Storage agent on the key.

        ``gsutil kms authorize`` creates the agent if it does not exist yet,
        which a plain IAM grant on the key cannot do.
        """
        key_path = (
            f"projects/{self._project_id}/locations/{spec.location}"
            f"/keyRings/{spec.keyring}/cryptoKeys/{spec.key_name}"
        )
        self._mutate([GSUTIL, "kms", "authorize", "-k", key_path, "-p", self._project_id])
