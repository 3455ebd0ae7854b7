"""STIG image-builder project provisioner CLI (stigprov).

Usage:
    stigprov setup                  # Provision the project (prompts for missing values)
    stigprov setup --yes            # Non-interactive, values from env/options
    stigprov plan --project-id X    # Print the ordered plan as YAML
    stigprov check                  # Check that the Cloud SDK is installed
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path

import click
import yaml

from . import __version__
from .config import (
    DEFAULT_ZONE,
    Configuration,
    ConfigurationError,
    default_bucket_name,
)
from .dependency import DependencyError, validate_plan_order
from .gcloud import REQUIRED_TOOLS, GcloudProvider, check_prerequisites
from .main import (
    EXIT_CANCELLED,
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    provision,
    setup_logging,
)
from .plan import build_plan, describe_plan
from .provider import PrerequisiteError, ProviderError
from .report import configuration_lines
from .settings_loader import SettingsLoadError, load_settings

logger = logging.getLogger(__name__)

TOOL_VERSION_TIMEOUT_SECONDS = 10


def _collect_values(
    settings_file: Path | None,
    options: dict[str, str | None],
) -> dict[str, str | None]:
    """Merge settings file values under env/CLI option values.

    Exits with EXIT_CONFIG_ERROR if the settings file is invalid.
    """
    values: dict[str, str | None] = {}
    if settings_file is not None:
        try:
            settings = load_settings(settings_file)
        except SettingsLoadError as e:
            logger.error("%s", e)
            raise SystemExit(EXIT_CONFIG_ERROR) from e
        # Environment wins over the file
        values.update({k: v for k, v in settings.to_env().items() if not os.environ.get(k)})
    values.update({k: v for k, v in options.items() if v})
    return values


def _build_config(values: dict[str, str | None]) -> Configuration:
    try:
        return Configuration.from_env(values)
    except ConfigurationError as e:
        logger.error("%s", e)
        raise SystemExit(EXIT_CONFIG_ERROR) from e


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="stigprov")
def cli() -> None:
    """Provision a Google Cloud project for the RHEL8 STIG image pipeline.

    \b
    Quick Start:
        stigprov check     # Verify gcloud/gsutil are installed
        stigprov setup     # Create network, accounts, KMS, buckets, registry
    """
    pass


def _common_options(func):  # type: ignore[no-untyped-def]
    options = [
        click.option("--project-id", envvar="PROJECT_ID", help="GCP project ID"),
        click.option("--zone", envvar="ZONE", help=f"Compute zone (default: {DEFAULT_ZONE})"),
        click.option("--region", envvar="REGION", help="Region (default: derived from zone)"),
        click.option(
            "--bucket-name",
            envvar="BUCKET_NAME",
            help="STIG artifacts bucket (default: <project>-stig-artifacts)",
        ),
        click.option(
            "--cloudbuild-bucket",
            envvar="CLOUDBUILD_BUCKET",
            help="Cloud Build staging bucket (default: <project>_cloudbuild)",
        ),
        click.option(
            "--settings-file",
            type=click.Path(dir_okay=False, path_type=Path),
            help="YAML settings file",
        ),
        click.option(
            "--log-format",
            type=click.Choice(["color", "json"]),
            default="color",
            show_default=True,
        ),
        click.option("--verbose", "-v", is_flag=True, help="Show every command run"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


# =============================================================================
# Setup Command
# =============================================================================


@cli.command()
@_common_options
@click.option("--yes", "-y", is_flag=True, help="Skip prompts and confirmation")
def setup(
    project_id: str | None,
    zone: str | None,
    region: str | None,
    bucket_name: str | None,
    cloudbuild_bucket: str | None,
    settings_file: Path | None,
    log_format: str,
    verbose: bool,
    yes: bool,
) -> None:
    """Bring the project to the state the image pipeline needs.

    Safe to re-run: existing resources are skipped and IAM grants are
    re-applied.

    \b
    Exit codes:
        0  success
        1  a provisioning step failed
        2  configuration or prerequisite error
        3  cancelled at the confirmation prompt
    """
    setup_logging(log_format, verbose)

    logger.info("Checking prerequisites...")
    try:
        check_prerequisites()
    except PrerequisiteError as e:
        logger.error("%s", e.message)
        raise SystemExit(EXIT_CONFIG_ERROR) from e

    values = _collect_values(
        settings_file,
        {
            "PROJECT_ID": project_id,
            "ZONE": zone,
            "REGION": region,
            "BUCKET_NAME": bucket_name,
            "CLOUDBUILD_BUCKET": cloudbuild_bucket,
        },
    )

    if not yes:
        if not values.get("PROJECT_ID"):
            values["PROJECT_ID"] = click.prompt("Enter GCP Project ID")
        if not values.get("ZONE"):
            values["ZONE"] = click.prompt(
                f"Enter GCP Zone (default: {DEFAULT_ZONE})",
                default=DEFAULT_ZONE,
                show_default=False,
            )
        if not values.get("BUCKET_NAME"):
            default_bucket = default_bucket_name(values["PROJECT_ID"] or "")
            values["BUCKET_NAME"] = click.prompt(
                f"Enter GCS bucket name for STIG artifacts (default: {default_bucket})",
                default=default_bucket,
                show_default=False,
            )

    config = _build_config(values)

    for line in configuration_lines(config):
        logger.info(line)

    if not yes and not click.confirm("Continue with this configuration?", default=False):
        logger.warning("Setup cancelled.")
        raise SystemExit(EXIT_CANCELLED)

    provider = GcloudProvider(config.project_id, timeout=config.command_timeout_seconds)
    raise SystemExit(provision(config, provider))


# =============================================================================
# Plan Command
# =============================================================================


@cli.command()
@_common_options
@click.option(
    "--project-number",
    envvar="PROJECT_NUMBER",
    help="Project number (looked up with gcloud when omitted)",
)
def plan(
    project_id: str | None,
    zone: str | None,
    region: str | None,
    bucket_name: str | None,
    cloudbuild_bucket: str | None,
    settings_file: Path | None,
    log_format: str,
    verbose: bool,
    project_number: str | None,
) -> None:
    """Print the ordered provisioning plan as YAML without changing anything."""
    setup_logging(log_format, verbose, stream=sys.stderr)

    values = _collect_values(
        settings_file,
        {
            "PROJECT_ID": project_id,
            "ZONE": zone,
            "REGION": region,
            "BUCKET_NAME": bucket_name,
            "CLOUDBUILD_BUCKET": cloudbuild_bucket,
            "PROJECT_NUMBER": project_number,
        },
    )
    config = _build_config(values)

    if config.project_number is None:
        provider = GcloudProvider(config.project_id, timeout=config.command_timeout_seconds)
        try:
            config = config.with_project_number(provider.get_project_number(config.project_id))
        except ProviderError as e:
            logger.error("Could not look up project number: %s", e.message)
            raise SystemExit(EXIT_FAILURE) from e
        except ConfigurationError as e:
            logger.error("Project number lookup returned an invalid value: %s", e)
            raise SystemExit(EXIT_FAILURE) from e

    steps = build_plan(config)
    try:
        validate_plan_order(steps)
    except DependencyError as e:
        logger.error("Invalid provisioning plan: %s", e)
        raise SystemExit(EXIT_FAILURE) from e

    click.echo(yaml.safe_dump({"steps": describe_plan(steps)}, sort_keys=False))


# =============================================================================
# Check Command
# =============================================================================


@cli.command()
def check() -> None:
    """Show whether the Cloud SDK tools are installed."""
    missing = False
    for tool in REQUIRED_TOOLS:
        path = shutil.which(tool)
        if path is None:
            click.secho(f"  {tool}: not found", fg="red")
            missing = True
            continue
        try:
            result = subprocess.run(
                [path, "--version"],
                capture_output=True,
                text=True,
                timeout=TOOL_VERSION_TIMEOUT_SECONDS,
                check=False,
            )
            version = (
                result.stdout.split("\n")[0].strip() if result.returncode == 0 else "unknown"
            )
        except subprocess.TimeoutExpired:
            version = "unknown"
        click.echo(f"  {tool}: {version} ({path})")

    if missing:
        click.secho("Install the Google Cloud SDK: https://cloud.google.com/sdk/docs/install")
        raise SystemExit(EXIT_CONFIG_ERROR)
    click.secho("All prerequisites found.", fg="green")
    raise SystemExit(EXIT_SUCCESS)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
