"""Cloud Resource Provider interface and error taxonomy.

The reconciler only talks to the cloud through this interface, which
assumes:
- create-if-absent semantics per resource kind (creates fail when the
  name is taken, so callers must check existence first)
- idempotent grant semantics for IAM bindings
- synchronous request/response, no operation polling
"""

from __future__ import annotations

from typing import Protocol

from .models import BindingSpec, KmsAuthorizationSpec, ResourceSpec


class ErrorCategory:
    """Category labels attached to provider errors and failed results."""

    PERMISSION_DENIED = "permission-denied"
    DEPENDENCY_NOT_FOUND = "dependency-not-found"
    PREREQUISITE = "prerequisite"
    PROVIDER = "provider-error"


class ProviderError(Exception):
    """Generic failure reported by the cloud control plane."""

    category = ErrorCategory.PROVIDER

    def __init__(self, message: str, *, command: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.command = command


class PermissionDeniedError(ProviderError):
    """The caller lacks permission for the requested operation."""

    category = ErrorCategory.PERMISSION_DENIED


class DependencyNotFoundError(ProviderError):
    """A required upstream resource is missing (e.g. KMS key for a bucket)."""

    category = ErrorCategory.DEPENDENCY_NOT_FOUND


class PrerequisiteError(ProviderError):
    """Local tooling required to reach the provider is unavailable."""

    category = ErrorCategory.PREREQUISITE


class CloudProvider(Protocol):
    """Operations the reconciler needs from a cloud control plane."""

    def set_active_project(self, project_id: str) -> None:
        """Point subsequent calls at ``project_id``."""
        ...

    def get_project_number(self, project_id: str) -> str:
        """Look up the numeric project id.

        Raises:
            DependencyNotFoundError: If the project is not visible.
        """
        ...

    def exists(self, spec: ResourceSpec) -> bool:
        """Return whether a resource with ``spec.name`` and ``spec.kind`` exists."""
        ...

    def create(self, spec: ResourceSpec) -> None:
        """Create the resource described by ``spec``."""
        ...

    def grant(self, binding: BindingSpec, role: str) -> None:
        """Grant ``role`` to ``binding.member`` on the binding's target."""
        ...

    def authorize_kms_key(self, spec: KmsAuthorizationSpec) -> None:
        """Let ``spec.agent`` encrypt and decrypt with the KMS key."""
        ...
