"""One-shot reconciliation of a project towards its declared plan.

Two idempotency strategies are used because the provider offers two
different guarantees:
- Resources: creates fail when the name is taken, so existence is checked
  first and present resources are skipped, never updated (idempotent by
  skip).
- IAM grants and service agent key authorizations: granting an
  already-held role is a no-op success, so both are always re-applied
  (idempotent by reapply).

Execution is strictly sequential and fail-fast: the first failed step ends
the run, since later steps may depend on it. Nothing is retried; re-running
after fixing the cause completes the remainder without touching what was
already applied.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from datetime import UTC, datetime

from .config import Configuration, ConfigurationError
from .dependency import validate_plan_order
from .models import (
    BindingSpec,
    KmsAuthorizationSpec,
    Outcome,
    ReconcileResult,
    ResourceSpec,
    RunReport,
    Step,
)
from .plan import build_plan
from .provider import CloudProvider, ProviderError

logger = logging.getLogger(__name__)


class Reconciler:
    """Applies a provisioning plan through a CloudProvider.

    The configuration is immutable; the project number is resolved once in
    prepare() and the resolved configuration replaces the original for the
    rest of the run.
    """

    def __init__(
        self,
        config: Configuration,
        provider: CloudProvider,
        plan: Sequence[Step] | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            config: Validated configuration.
            provider: Cloud control plane client.
            plan: Steps to apply. Defaults to build_plan(config) once the
                project number is known.
        """
        self._config = config
        self._provider = provider
        self._plan: list[Step] | None = list(plan) if plan is not None else None

    @property
    def config(self) -> Configuration:
        return self._config

    @property
    def plan(self) -> list[Step]:
        if self._plan is None:
            self._plan = build_plan(self._config)
        return self._plan

    def prepare(self) -> Configuration:
        """Select the project and resolve its number (only once).

        Raises:
            ProviderError: If the project cannot be selected or looked up.
        """
        logger.info("Setting active project", extra={"project_id": self._config.project_id})
        self._provider.set_active_project(self._config.project_id)

        if self._config.project_number is None:
            logger.info("Retrieving project number", extra={"project_id": self._config.project_id})
            number = self._provider.get_project_number(self._config.project_id)
            self._config = self._config.with_project_number(number)

        logger.info(
            "Project number: %s",
            self._config.project_number,
            extra={"project_number": self._config.project_number},
        )
        return self._config

    def ensure_resource(self, spec: ResourceSpec) -> ReconcileResult:
        """Create ``spec`` if absent, skip it if present.

        Existing resources are never updated, even when their settings
        differ from the spec.
        """
        start = time.monotonic()
        result = ReconcileResult(
            key=spec.key, kind=spec.kind, name=spec.name, outcome=Outcome.FAILED
        )
        try:
            if self._provider.exists(spec):
                result.outcome = Outcome.ALREADY_EXISTS
                logger.warning(
                    "%s '%s' already exists. Skipping creation.",
                    spec.kind,
                    spec.name,
                    extra={"kind": spec.kind, "resource": spec.name},
                )
            else:
                logger.info(
                    "Creating %s '%s'...",
                    spec.kind,
                    spec.name,
                    extra={"kind": spec.kind, "resource": spec.name},
                )
                self._provider.create(spec)
                result.outcome = Outcome.CREATED
                logger.info(
                    "%s '%s' created.",
                    spec.kind,
                    spec.name,
                    extra={"kind": spec.kind, "resource": spec.name},
                )
        except ProviderError as e:
            self._record_failure(result, e)

        result.duration_seconds = time.monotonic() - start
        return result

    def apply_binding(self, binding: BindingSpec) -> ReconcileResult:
        """Grant every role of ``binding`` unconditionally."""
        start = time.monotonic()
        result = ReconcileResult(
            key=binding.key, kind=binding.kind, name=binding.name, outcome=Outcome.FAILED
        )
        try:
            for role in binding.roles:
                self._provider.grant(binding, role)
                logger.info(
                    "Granted %s to %s on %s",
                    role,
                    binding.member,
                    binding.name,
                    extra={"member": binding.member, "role": role, "resource": binding.name},
                )
            result.outcome = Outcome.CREATED
        except ProviderError as e:
            self._record_failure(result, e)

        result.duration_seconds = time.monotonic() - start
        return result

    def apply_authorization(self, spec: KmsAuthorizationSpec) -> ReconcileResult:
        """Authorize a service agent on a KMS key unconditionally."""
        start = time.monotonic()
        result = ReconcileResult(
            key=spec.key, kind=spec.kind, name=spec.name, outcome=Outcome.FAILED
        )
        try:
            self._provider.authorize_kms_key(spec)
            result.outcome = Outcome.CREATED
            logger.info(
                "Authorized %s on KMS key %s",
                spec.agent,
                spec.key_name,
                extra={"member": spec.agent, "resource": spec.key_name},
            )
        except ProviderError as e:
            self._record_failure(result, e)

        result.duration_seconds = time.monotonic() - start
        return result

    def _record_failure(self, result: ReconcileResult, error: ProviderError) -> None:
        result.outcome = Outcome.FAILED
        result.reason = error.message
        result.error_category = error.category
        logger.error(
            "Failed to reconcile %s '%s': %s",
            result.kind,
            result.name,
            error.message,
            extra={
                "kind": result.kind,
                "resource": result.name,
                "category": error.category,
                "command": error.command,
            },
        )

    def apply(self, step: Step) -> ReconcileResult:
        if isinstance(step, BindingSpec):
            return self.apply_binding(step)
        if isinstance(step, KmsAuthorizationSpec):
            return self.apply_authorization(step)
        return self.ensure_resource(step)

    def run(self) -> RunReport:
        """Run the full plan once, stopping at the first failure.

        Plan order is validated before any remote call is made; an invalid
        plan raises DependencyError.

        Returns:
            RunReport with one result per attempted step.
        """
        report = RunReport(project_id=self._config.project_id)

        try:
            self.prepare()
        except ProviderError as e:
            report.error = f"{e.category}: {e.message}"
            report.end_time = datetime.now(UTC)
            logger.error(
                "Project preparation failed: %s", e.message, extra={"category": e.category}
            )
            return report
        except ConfigurationError as e:
            # e.g. a malformed project number returned by the provider
            report.error = f"configuration: {e}"
            report.end_time = datetime.now(UTC)
            logger.error("Project preparation failed: %s", e, extra={"category": "configuration"})
            return report

        steps = self.plan
        validate_plan_order(steps)

        for step in steps:
            result = self.apply(step)
            report.results.append(result)
            if not result.success:
                logger.error(
                    "Stopping run after failure of %s",
                    result.key,
                    extra={
                        "failed_step": result.key,
                        "skipped_steps": len(steps) - len(report.results),
                    },
                )
                break

        report.end_time = datetime.now(UTC)
        logger.info(
            "Reconciliation complete: %d created, %d already existed, %d grants applied, "
            "%d authorizations applied, duration=%.1fs",
            report.created_count,
            report.existing_count,
            report.binding_count,
            report.authorization_count,
            report.duration_seconds,
            extra={"success": report.success},
        )
        return report
