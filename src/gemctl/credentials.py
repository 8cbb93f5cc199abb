"""Credential acquisition for outbound API calls.

Two credential sources are supported:
- Managed: Application Default Credentials from the ambient environment
  (service account, workload identity, metadata server).
- Delegated: an external command that prints an access token, by default
  ``gcloud auth print-access-token``.

Delegated tokens are treated as non-authoritative. Whatever lifetime the
helper reports, a fetched token is considered valid for TOKEN_LIFETIME and is
then fetched again by re-running the command.

Both sources are wrapped in a CredentialProvider, which caches the current
token and refreshes it under a lock only once it has expired.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

import google.auth
from google.auth import credentials as ga_credentials
from google.auth.exceptions import DefaultCredentialsError, RefreshError
from google.auth.transport.requests import Request

from .config import CLOUD_PLATFORM_SCOPE, Config

logger = logging.getLogger(__name__)

# Fixed lifetime assigned to tokens printed by the helper command
TOKEN_LIFETIME = timedelta(minutes=50)


class AuthError(Exception):
    """Raised when an access token cannot be acquired.

    Fatal for the call chain that needed the token. Never retried here.
    """

    pass


def _utcnow() -> datetime:
    """Current time as a naive UTC datetime, the form google-auth expects."""
    return datetime.now(UTC).replace(tzinfo=None)


class CommandTokenCredentials(ga_credentials.CredentialsWithQuotaProject):
    """google-auth credentials backed by a token-printing command.

    The command's stdout, trimmed of whitespace, is the bearer token.
    """

    def __init__(
        self,
        command: Sequence[str],
        timeout_seconds: int,
        quota_project_id: str | None = None,
    ) -> None:
        super().__init__()
        self._command = tuple(command)
        self._timeout_seconds = timeout_seconds
        self._quota_project_id = quota_project_id

    @property
    def command(self) -> tuple[str, ...]:
        """The helper command."""
        return self._command

    @property
    def expired(self) -> bool:
        """Whether the cached token has passed its expiry.

        The lifetime is already shortened to TOKEN_LIFETIME, so no refresh
        skew is applied on top of it.
        """
        if self.expiry is None:
            return False
        return _utcnow() >= self.expiry

    def refresh(self, request: Any) -> None:
        """Run the helper command and cache its token.

        Raises:
            AuthError: If the command is missing, fails, times out or prints
                nothing.
        """
        del request  # the helper performs its own transport
        try:
            result = subprocess.run(
                list(self._command),
                capture_output=True,
                text=True,
                timeout=self._timeout_seconds,
                check=False,
            )
        except FileNotFoundError as e:
            raise AuthError(f"Token command not found: {self._command[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise AuthError(
                f"Token command timed out after {self._timeout_seconds}s: "
                f"{' '.join(self._command)}"
            ) from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise AuthError(
                f"Failed to get access token from {self._command[0]} "
                f"(exit code {result.returncode}): {stderr}"
            )

        token = (result.stdout or "").strip()
        if not token:
            raise AuthError(f"Token command printed no token: {' '.join(self._command)}")

        self.token = token
        self.expiry = _utcnow() + TOKEN_LIFETIME
        logger.info(
            "Access token fetched from helper command",
            extra={"command": self._command[0], "expiry": self.expiry.isoformat()},
        )

    def with_quota_project(self, quota_project_id: str | None) -> CommandTokenCredentials:
        return CommandTokenCredentials(
            self._command,
            self._timeout_seconds,
            quota_project_id=quota_project_id,
        )


class CredentialProvider:
    """Token cache in front of a google-auth credentials object.

    get_token() returns the cached token while it is valid and refreshes it
    otherwise. Refresh happens under a lock; concurrent readers in steady
    state only read the cached token.
    """

    def __init__(self, credentials: ga_credentials.Credentials) -> None:
        self._credentials = credentials
        self._lock = threading.Lock()

    @property
    def credentials(self) -> ga_credentials.Credentials:
        """The wrapped credentials, for handing to API clients."""
        return self._credentials

    def get_token(self) -> tuple[str, datetime | None]:
        """Return ``(access_token, expiry)``, refreshing if needed.

        Raises:
            AuthError: If the token cannot be refreshed.
        """
        with self._lock:
            if not self._credentials.valid:
                try:
                    self._credentials.refresh(Request())
                except RefreshError as e:
                    raise AuthError(f"Failed to refresh credentials: {e}") from e
            return self._credentials.token, self._credentials.expiry


def get_credential_provider(config: Config) -> CredentialProvider:
    """Build the credential provider selected by configuration.

    Managed credentials are resolved immediately; a missing credential chain
    is fatal. Delegated credentials are fetched lazily on first use and carry
    the configured project as their quota project.

    Raises:
        AuthError: If managed credentials cannot be found.
    """
    if config.use_service_account:
        try:
            credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        except DefaultCredentialsError as e:
            raise AuthError(f"Failed to load application default credentials: {e}") from e
        logger.info("Using application default credentials")
        return CredentialProvider(credentials)

    logger.info(
        "Using delegated credentials from helper command",
        extra={"command": config.token_command[0]},
    )
    credentials = CommandTokenCredentials(
        config.token_command,
        config.token_command_timeout_seconds,
        quota_project_id=config.project_id,
    )
    return CredentialProvider(credentials)
