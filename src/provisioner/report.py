"""Human-readable summary of a reconciliation run."""

from __future__ import annotations

from .config import Configuration
from .models import Outcome, RunReport

SEPARATOR = "=" * 44

_OUTCOME_MARKS: dict[Outcome, str] = {
    Outcome.CREATED: "+",
    Outcome.ALREADY_EXISTS: "=",
    Outcome.FAILED: "x",
}

NEXT_STEPS: tuple[str, ...] = (
    "Update Makefile with project configuration",
    "Run 'make builder' to build the Packer container image",
    "Run 'make rebuild' to build and evaluate STIG-compliant images",
)


def configuration_lines(config: Configuration) -> list[str]:
    """Lines echoed before asking the operator to confirm."""
    lines = [
        "Configuration:",
        f"  Project ID: {config.project_id}",
        f"  Zone: {config.zone}",
        f"  Region: {config.region}",
        f"  STIG Artifacts Bucket: {config.bucket_name}",
        f"  Cloud Build Bucket: {config.cloudbuild_bucket}",
    ]
    if config.project_number:
        lines.append(f"  Project Number: {config.project_number}")
    return lines


def summary_lines(report: RunReport, config: Configuration) -> list[str]:
    """Render the final summary block.

    Lists every attempted step with its outcome. On success, also lists the
    provisioned resource identifiers consumed by the image pipeline and the
    next steps.
    """
    lines = [SEPARATOR]
    if report.success:
        lines.append("Setup completed successfully!")
    else:
        lines.append("Setup FAILED")
    lines.append(SEPARATOR)

    lines.append("Project Configuration:")
    lines.append(f"  Project ID: {config.project_id}")
    if config.project_number:
        lines.append(f"  Project Number: {config.project_number}")
    lines.append(f"  Zone: {config.zone}")
    lines.append(f"  Region: {config.region}")

    lines.append("")
    lines.append(
        f"Results: {report.created_count} created, {report.existing_count} already existed, "
        f"{report.binding_count} grants applied"
    )
    for result in report.results:
        mark = _OUTCOME_MARKS[result.outcome]
        line = f"  [{mark}] {result.key}: {result.outcome.value}"
        if result.reason:
            line += f" ({result.error_category}: {result.reason})"
        lines.append(line)

    if report.error:
        lines.append(f"  [x] {report.error}")

    if report.success:
        lines.append("")
        lines.append("Resources:")
        lines.append(f"  Packer service account: {config.packer_service_account}")
        lines.append(f"  KMS keyring: {config.keyring_path}")
        lines.append(f"  KMS key: {config.key_path}")
        lines.append(f"  STIG artifacts bucket: gs://{config.bucket_name}")
        lines.append(f"  Cloud Build bucket: gs://{config.cloudbuild_bucket}")
        lines.append(f"  Artifact Registry repository: {config.repository_url}")
        lines.append("")
        lines.append("Next Steps:")
        for index, step in enumerate(NEXT_STEPS, start=1):
            lines.append(f"  {index}. {step}")
    else:
        lines.append("")
        lines.append("Fix the reported error and re-run; completed steps will be skipped.")

    return lines
