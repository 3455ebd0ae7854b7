"""Configuration management with validation.

The shell-era globals (PROJECT_ID, ZONE, REGION, ...) are collected into a
single immutable Configuration value that is built once at startup and
passed to every component. Invalid values are rejected at load time.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, replace


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


DEFAULT_ZONE = "us-central1-c"
DEFAULT_ARTIFACT_LOCATION = "us"
DEFAULT_KEYRING_NAME = "stig-artifacts"
DEFAULT_KEY_NAME = "storage-key"
DEFAULT_REPOSITORY_NAME = "gcr.io"
PACKER_ACCOUNT_ID = "packer"

DEFAULT_COMMAND_TIMEOUT_SECONDS = 300
MIN_COMMAND_TIMEOUT_SECONDS = 10
MAX_COMMAND_TIMEOUT_SECONDS = 3600

# Input validation patterns
VALID_PROJECT_ID_PATTERN = r"^[a-z][a-z0-9-]{2,28}[a-z0-9]$"
VALID_ZONE_PATTERN = r"^[a-z]+-[a-z]+[0-9]+-[a-z0-9]+$"
VALID_REGION_PATTERN = r"^[a-z]+-[a-z]+[0-9]+$"
VALID_BUCKET_NAME_PATTERN = r"^[a-z0-9][a-z0-9._-]{1,61}[a-z0-9]$"
VALID_PROJECT_NUMBER_PATTERN = r"^[0-9]{6,20}$"


def derive_region(zone: str) -> str:
    """Strip the zone suffix to get its region.

    Args:
        zone: Compute zone, e.g. "us-central1-c".

    Returns:
        Region, e.g. "us-central1". A value without a dash is returned as is.
    """
    head, sep, _ = zone.rpartition("-")
    return head if sep else zone


def default_bucket_name(project_id: str) -> str:
    return f"{project_id}-stig-artifacts"


def default_cloudbuild_bucket(project_id: str) -> str:
    return f"{project_id}_cloudbuild"


@dataclass(frozen=True)
class Configuration:
    """Provisioning configuration for a single run.

    All fields are validated at construction time. The project number is
    the only value not known up front: it is looked up once from the
    provider and attached with with_project_number(), after which it is
    read-only like everything else.
    """

    project_id: str
    zone: str = DEFAULT_ZONE
    region: str = ""
    bucket_name: str = ""
    cloudbuild_bucket: str = ""
    project_number: str | None = None

    artifact_location: str = DEFAULT_ARTIFACT_LOCATION
    keyring_name: str = DEFAULT_KEYRING_NAME
    key_name: str = DEFAULT_KEY_NAME
    repository_name: str = DEFAULT_REPOSITORY_NAME

    command_timeout_seconds: int = DEFAULT_COMMAND_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        """Fill derived defaults and validate.

        Frozen dataclass, so derived values are written with
        object.__setattr__ before validation runs.
        """
        if not self.region and self.zone:
            object.__setattr__(self, "region", derive_region(self.zone))
        if not self.bucket_name and self.project_id:
            object.__setattr__(self, "bucket_name", default_bucket_name(self.project_id))
        if not self.cloudbuild_bucket and self.project_id:
            object.__setattr__(
                self, "cloudbuild_bucket", default_cloudbuild_bucket(self.project_id)
            )

        errors: list[str] = []

        if not self.project_id:
            errors.append("PROJECT_ID is required")
        elif not re.match(VALID_PROJECT_ID_PATTERN, self.project_id):
            errors.append(
                f"PROJECT_ID must match pattern {VALID_PROJECT_ID_PATTERN}: {self.project_id}"
            )

        if not re.match(VALID_ZONE_PATTERN, self.zone):
            errors.append(f"ZONE must be a valid compute zone: {self.zone}")

        if not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"REGION must be a valid region: {self.region}")

        if self.project_id:
            for label, value in (
                ("BUCKET_NAME", self.bucket_name),
                ("CLOUDBUILD_BUCKET", self.cloudbuild_bucket),
            ):
                if not re.match(VALID_BUCKET_NAME_PATTERN, value):
                    errors.append(f"{label} is not a valid bucket name: {value}")
            if self.bucket_name == self.cloudbuild_bucket:
                errors.append("BUCKET_NAME and CLOUDBUILD_BUCKET must differ")

        if self.project_number is not None and not re.match(
            VALID_PROJECT_NUMBER_PATTERN, self.project_number
        ):
            errors.append(f"PROJECT_NUMBER must be numeric: {self.project_number}")

        if not (
            MIN_COMMAND_TIMEOUT_SECONDS
            <= self.command_timeout_seconds
            <= MAX_COMMAND_TIMEOUT_SECONDS
        ):
            errors.append(
                f"COMMAND_TIMEOUT must be between {MIN_COMMAND_TIMEOUT_SECONDS} "
                f"and {MAX_COMMAND_TIMEOUT_SECONDS} seconds"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def with_project_number(self, project_number: str) -> Configuration:
        """Return a copy carrying the looked-up project number.

        Raises:
            ConfigurationError: If a different number is already set.
        """
        if self.project_number is not None and self.project_number != project_number:
            raise ConfigurationError(
                f"Project number already set to {self.project_number}, "
                f"refusing to replace it with {project_number}"
            )
        return replace(self, project_number=project_number)

    def _require_number(self) -> str:
        if self.project_number is None:
            raise ConfigurationError("Project number has not been resolved yet")
        return self.project_number

    # =========================================================================
    # Derived identities
    # =========================================================================

    @property
    def packer_service_account(self) -> str:
        return f"{PACKER_ACCOUNT_ID}@{self.project_id}.iam.gserviceaccount.com"

    @property
    def cloudbuild_service_account(self) -> str:
        return f"{self._require_number()}@cloudbuild.gserviceaccount.com"

    @property
    def compute_service_account(self) -> str:
        return f"{self._require_number()}-compute@developer.gserviceaccount.com"

    @property
    def compute_system_agent(self) -> str:
        return f"service-{self._require_number()}@compute-system.iam.gserviceaccount.com"

    @property
    def storage_service_agent(self) -> str:
        return f"service-{self._require_number()}@gs-project-accounts.iam.gserviceaccount.com"

    @property
    def keyring_path(self) -> str:
        return f"projects/{self.project_id}/locations/{self.region}/keyRings/{self.keyring_name}"

    @property
    def key_path(self) -> str:
        """Full KMS key resource name used as the buckets' default key."""
        return f"{self.keyring_path}/cryptoKeys/{self.key_name}"

    @property
    def repository_url(self) -> str:
        return f"{self.artifact_location}-docker.pkg.dev/{self.project_id}/{self.repository_name}"

    @classmethod
    def from_env(cls, overrides: dict[str, str | None] | None = None) -> Configuration:
        """Load configuration from environment variables.

        Environment Variables:
            PROJECT_ID: Target GCP project (required)
            ZONE: Compute zone (default: us-central1-c)
            REGION: Region (default: derived from ZONE)
            BUCKET_NAME: STIG artifacts bucket (default: ${PROJECT_ID}-stig-artifacts)
            CLOUDBUILD_BUCKET: Cloud Build staging bucket (default: ${PROJECT_ID}_cloudbuild)
            PROJECT_NUMBER: Skip the project number lookup when set
            COMMAND_TIMEOUT: Timeout for each gcloud call in seconds (default: 300)

        Args:
            overrides: Values that win over the environment; None entries are ignored.
        """
        values = {
            "PROJECT_ID": os.environ.get("PROJECT_ID"),
            "ZONE": os.environ.get("ZONE"),
            "REGION": os.environ.get("REGION"),
            "BUCKET_NAME": os.environ.get("BUCKET_NAME"),
            "CLOUDBUILD_BUCKET": os.environ.get("CLOUDBUILD_BUCKET"),
            "PROJECT_NUMBER": os.environ.get("PROJECT_NUMBER"),
            "COMMAND_TIMEOUT": os.environ.get("COMMAND_TIMEOUT"),
        }
        for key, value in (overrides or {}).items():
            if value:
                values[key] = value

        timeout_raw = values["COMMAND_TIMEOUT"]
        try:
            timeout = int(timeout_raw) if timeout_raw else DEFAULT_COMMAND_TIMEOUT_SECONDS
        except ValueError as e:
            raise ConfigurationError(f"COMMAND_TIMEOUT must be an integer: {timeout_raw}") from e

        return cls(
            project_id=values["PROJECT_ID"] or "",
            zone=values["ZONE"] or DEFAULT_ZONE,
            region=values["REGION"] or "",
            bucket_name=values["BUCKET_NAME"] or "",
            cloudbuild_bucket=values["CLOUDBUILD_BUCKET"] or "",
            project_number=values["PROJECT_NUMBER"] or None,
            command_timeout_seconds=timeout,
        )
