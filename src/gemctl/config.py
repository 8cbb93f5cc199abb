"""Configuration management with validation.

Defaults for project and location are resolved once, at load time, the same
way the gcloud tooling resolves them. The resulting configuration is frozen:
the API endpoint derived from the location never changes for the lifetime of
a client.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_LOCATION = "us"
GLOBAL_LOCATION = "global"
DEFAULT_COLLECTION = "default_collection"
DEFAULT_COMPANY_NAME = "BCBSMA"

DEFAULT_OPERATION_TIMEOUT_SECONDS = 300
DEFAULT_OPERATION_POLL_INTERVAL_SECONDS = 5
MAX_OPERATION_TIMEOUT_SECONDS = 3600

DEFAULT_TOKEN_COMMAND: tuple[str, ...] = ("gcloud", "auth", "print-access-token")
DEFAULT_TOKEN_COMMAND_TIMEOUT_SECONDS = 30
GCLOUD_CONFIG_TIMEOUT_SECONDS = 10

DEFAULT_DATA_SCHEMA = "content"
DEFAULT_RECONCILIATION_MODE = "INCREMENTAL"
DEFAULT_SEARCH_TIER = "SEARCH_TIER_ENTERPRISE"

MAX_MANIFEST_FILE_SIZE_BYTES = 1024 * 1024  # 1MB
MAX_STATE_FILE_SIZE_BYTES = 10 * 1024 * 1024  # 10MB

API_HOST = "discoveryengine.googleapis.com"
CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

# Environment variables consulted, in order, when no value is given
PROJECT_ENV_VARS: tuple[str, ...] = ("GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT")
LOCATION_ENV_VARS: tuple[str, ...] = ("AGENTSPACE_LOCATION", "GCLOUD_LOCATION")

# Input validation patterns
VALID_PROJECT_PATTERN = r"^[a-z0-9][a-z0-9.:-]*$"
VALID_LOCATION_PATTERN = r"^[a-z][a-z0-9-]*$"
VALID_RESOURCE_ID_PATTERN = r"^[a-z0-9][a-z0-9_-]{0,62}$"
VALID_DATA_SCHEMAS = frozenset({"document", "content", "custom", "csv"})
VALID_RECONCILIATION_MODES = frozenset({"INCREMENTAL", "FULL"})


def api_endpoint_for(location: str) -> str:
    """Return the API authority serving a location.

    The global location uses the default authority. Any other location is
    served by a multi-region authority named after the part of the location
    before its first hyphen (``us-central1`` -> ``us``).
    """
    if location == GLOBAL_LOCATION:
        return API_HOST
    region_prefix = location.split("-", 1)[0]
    return f"{region_prefix}-{API_HOST}"


def _gcloud_project() -> str | None:
    """Read the active project from the local gcloud configuration."""
    try:
        result = subprocess.run(
            ["gcloud", "config", "get-value", "project"],
            capture_output=True,
            text=True,
            timeout=GCLOUD_CONFIG_TIMEOUT_SECONDS,
            check=False,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def _credentials_project() -> str | None:
    """Read the project associated with Application Default Credentials."""
    import google.auth
    from google.auth.exceptions import DefaultCredentialsError

    try:
        _, project_id = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
    except DefaultCredentialsError:
        return None
    return project_id or None


def resolve_project(project_id: str | None = None) -> str:
    """Resolve the project ID.

    Order: explicit value, environment variables, gcloud configuration, the
    project of the ambient credentials.

    Raises:
        ConfigurationError: If no source yields a project.
    """
    if project_id:
        return project_id

    for env_var in PROJECT_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            logger.debug("Project resolved from environment", extra={"source": env_var})
            return value

    project = _gcloud_project()
    if project:
        logger.debug("Project resolved from gcloud config")
        return project

    project = _credentials_project()
    if project:
        logger.debug("Project resolved from default credentials")
        return project

    raise ConfigurationError(
        "project ID is required: no project found in environment variables, "
        "gcloud config, or credentials"
    )


def resolve_location(location: str | None = None) -> str:
    """Resolve the location, falling back to environment then ``us``."""
    if location:
        return location
    for env_var in LOCATION_ENV_VARS:
        value = os.environ.get(env_var)
        if value:
            return value
    return DEFAULT_LOCATION


@dataclass(frozen=True)
class Config:
    """Client configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    project_id: str
    location: str = DEFAULT_LOCATION
    collection: str = DEFAULT_COLLECTION

    # Credentials: managed (ADC) when True, delegated to the token command otherwise
    use_service_account: bool = False
    token_command: tuple[str, ...] = DEFAULT_TOKEN_COMMAND
    token_command_timeout_seconds: int = DEFAULT_TOKEN_COMMAND_TIMEOUT_SECONDS

    # Engine defaults
    company_name: str = DEFAULT_COMPANY_NAME

    # Import defaults
    data_schema: str = DEFAULT_DATA_SCHEMA
    reconciliation_mode: str = DEFAULT_RECONCILIATION_MODE

    # Long-running operations
    wait_for_operations: bool = False
    operation_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS
    operation_poll_interval_seconds: int = DEFAULT_OPERATION_POLL_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.project_id:
            errors.append("project ID is required")
        elif not re.match(VALID_PROJECT_PATTERN, self.project_id):
            errors.append(
                f"project ID must match pattern {VALID_PROJECT_PATTERN}: {self.project_id}"
            )

        if not self.location:
            errors.append("location is required")
        elif not re.match(VALID_LOCATION_PATTERN, self.location):
            errors.append(f"location must match pattern {VALID_LOCATION_PATTERN}: {self.location}")

        if not self.collection:
            errors.append("collection is required")
        elif not re.match(VALID_RESOURCE_ID_PATTERN, self.collection):
            errors.append(f"collection is not a valid resource ID: {self.collection}")

        if not self.use_service_account and not self.token_command:
            errors.append("token command is required when not using a service account")

        if self.token_command_timeout_seconds < 1:
            errors.append("token command timeout must be at least 1 second")

        if self.data_schema not in VALID_DATA_SCHEMAS:
            errors.append(f"data schema must be one of {sorted(VALID_DATA_SCHEMAS)}")

        if self.reconciliation_mode not in VALID_RECONCILIATION_MODES:
            errors.append(
                f"reconciliation mode must be one of {sorted(VALID_RECONCILIATION_MODES)}"
            )

        if not 1 <= self.operation_timeout_seconds <= MAX_OPERATION_TIMEOUT_SECONDS:
            errors.append(
                f"operation timeout must be between 1 and {MAX_OPERATION_TIMEOUT_SECONDS} seconds"
            )

        if self.operation_poll_interval_seconds < 1:
            errors.append("operation poll interval must be at least 1 second")
        elif self.operation_poll_interval_seconds > self.operation_timeout_seconds:
            errors.append("operation poll interval cannot exceed the operation timeout")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def api_endpoint(self) -> str:
        """API authority for the configured location."""
        return api_endpoint_for(self.location)

    @property
    def parent(self) -> str:
        """Location path: ``projects/{p}/locations/{l}``."""
        return f"projects/{self.project_id}/locations/{self.location}"

    @classmethod
    def from_env(
        cls,
        *,
        project_id: str | None = None,
        location: str | None = None,
        collection: str | None = None,
        use_service_account: bool | None = None,
        wait_for_operations: bool | None = None,
    ) -> Config:
        """Load configuration from environment variables.

        Explicit arguments win over environment variables. The project and
        location then fall back to the chains of resolve_project and
        resolve_location.

        Environment Variables:
            GEMCTL_PROJECT: Project ID (falls back to GOOGLE_CLOUD_PROJECT,
                GCLOUD_PROJECT, gcloud config, then default credentials)
            GEMCTL_LOCATION: Location (falls back to AGENTSPACE_LOCATION,
                GCLOUD_LOCATION, then "us")
            GEMCTL_COLLECTION: Collection ID (default: default_collection)
            GEMCTL_USE_SERVICE_ACCOUNT: If "true", use Application Default
                Credentials instead of the token command (default: false)
            GEMCTL_TOKEN_COMMAND: Command printing an access token
                (default: "gcloud auth print-access-token")
            GEMCTL_TOKEN_COMMAND_TIMEOUT: Seconds to wait for the token command
            GEMCTL_COMPANY_NAME: Company name set on created engines
            GEMCTL_DATA_SCHEMA: Import data schema (default: content)
            GEMCTL_RECONCILIATION_MODE: INCREMENTAL or FULL (default: INCREMENTAL)
            GEMCTL_WAIT: If "true", wait for create operations to finish
            GEMCTL_OPERATION_TIMEOUT: Seconds to wait for an operation (default: 300)
            GEMCTL_OPERATION_INTERVAL: Seconds between operation polls (default: 5)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        token_command = os.environ.get("GEMCTL_TOKEN_COMMAND")
        if use_service_account is None:
            use_service_account = get_bool("GEMCTL_USE_SERVICE_ACCOUNT", False)
        if wait_for_operations is None:
            wait_for_operations = get_bool("GEMCTL_WAIT", False)

        return cls(
            project_id=resolve_project(project_id or os.environ.get("GEMCTL_PROJECT")),
            location=resolve_location(location or os.environ.get("GEMCTL_LOCATION")),
            collection=collection or os.environ.get("GEMCTL_COLLECTION", DEFAULT_COLLECTION),
            use_service_account=use_service_account,
            token_command=tuple(token_command.split()) if token_command else DEFAULT_TOKEN_COMMAND,
            token_command_timeout_seconds=get_int(
                "GEMCTL_TOKEN_COMMAND_TIMEOUT", DEFAULT_TOKEN_COMMAND_TIMEOUT_SECONDS
            ),
            company_name=os.environ.get("GEMCTL_COMPANY_NAME", DEFAULT_COMPANY_NAME),
            data_schema=os.environ.get("GEMCTL_DATA_SCHEMA", DEFAULT_DATA_SCHEMA),
            reconciliation_mode=os.environ.get(
                "GEMCTL_RECONCILIATION_MODE", DEFAULT_RECONCILIATION_MODE
            ).upper(),
            wait_for_operations=wait_for_operations,
            operation_timeout_seconds=get_int(
                "GEMCTL_OPERATION_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            operation_poll_interval_seconds=get_int(
                "GEMCTL_OPERATION_INTERVAL", DEFAULT_OPERATION_POLL_INTERVAL_SECONDS
            ),
        )
