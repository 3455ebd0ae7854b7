"""Optional YAML settings file loading with validation.

A settings file supplies the same values as the environment variables,
e.g.:

    projectId: el-stig-builder
    zone: us-central1-c
    bucketName: el-stig-builder-artifacts

Command-line options and environment variables take precedence over it.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

MAX_SETTINGS_FILE_SIZE_BYTES = 64 * 1024


class SettingsLoadError(Exception):
    """Raised when the settings file cannot be loaded or validated."""

    pass


class SettingsFile(BaseModel):
    """Schema of the settings file."""

    model_config = {"extra": "forbid", "populate_by_name": True, "coerce_numbers_to_str": True}

    project_id: str | None = Field(None, alias="projectId")
    zone: str | None = None
    region: str | None = None
    bucket_name: str | None = Field(None, alias="bucketName")
    cloudbuild_bucket: str | None = Field(None, alias="cloudbuildBucket")
    project_number: str | None = Field(None, alias="projectNumber")
    command_timeout: int | None = Field(None, alias="commandTimeout", ge=1)

    def to_env(self) -> dict[str, str | None]:
        """Map settings onto the environment variable names Configuration reads."""
        return {
            "PROJECT_ID": self.project_id,
            "ZONE": self.zone,
            "REGION": self.region,
            "BUCKET_NAME": self.bucket_name,
            "CLOUDBUILD_BUCKET": self.cloudbuild_bucket,
            "PROJECT_NUMBER": self.project_number,
            "COMMAND_TIMEOUT": str(self.command_timeout) if self.command_timeout else None,
        }


def load_settings(path: Path) -> SettingsFile:
    """Load and validate a settings file.

    Raises:
        SettingsLoadError: If the file is missing, too large, not YAML, or invalid.
    """
    if not path.exists():
        raise SettingsLoadError(f"Settings file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SettingsLoadError(f"Failed to stat settings file {path}: {e}") from e

    if file_size > MAX_SETTINGS_FILE_SIZE_BYTES:
        raise SettingsLoadError(
            f"Settings file exceeds maximum size of {MAX_SETTINGS_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        raw_data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise SettingsLoadError(f"Failed to read settings file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise SettingsLoadError(f"Invalid YAML in {path}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise SettingsLoadError(f"Settings file must contain a YAML mapping: {path}")

    try:
        settings = SettingsFile.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise SettingsLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info("Loaded settings from %s", path)
    return settings
