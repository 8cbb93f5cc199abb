"""Tests for credential acquisition.

The delegated helper is never actually run: subprocess.run and the clock
are patched so token reuse and expiry can be observed directly.
"""

from __future__ import annotations

import subprocess
from datetime import datetime, timedelta
from unittest import mock

import pytest
from google.auth.exceptions import DefaultCredentialsError

from gemctl.config import Config
from gemctl.credentials import (
    TOKEN_LIFETIME,
    AuthError,
    CommandTokenCredentials,
    CredentialProvider,
    get_credential_provider,
)

START = datetime(2026, 1, 1, 12, 0, 0)


def _completed(stdout: str = "token-1\n", returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def clock() -> mock.MagicMock:
    """Patch the credential clock; set clock.return_value to move time."""
    with mock.patch("gemctl.credentials._utcnow", return_value=START) as utcnow:
        yield utcnow


@pytest.fixture
def provider() -> CredentialProvider:
    credentials = CommandTokenCredentials(
        ("gcloud", "auth", "print-access-token"), timeout_seconds=30, quota_project_id="p"
    )
    return CredentialProvider(credentials)


class TestDelegatedTokens:
    """Tests for tokens fetched from the helper command."""

    def test_token_is_trimmed_stdout(self, clock: mock.MagicMock, provider: CredentialProvider) -> None:
        with mock.patch("gemctl.credentials.subprocess.run", return_value=_completed("  abc123 \n")):
            token, expiry = provider.get_token()

        assert token == "abc123"
        assert expiry == START + TOKEN_LIFETIME

    def test_helper_invocation(self, clock: mock.MagicMock, provider: CredentialProvider) -> None:
        with mock.patch("gemctl.credentials.subprocess.run", return_value=_completed()) as run:
            provider.get_token()

        assert run.call_args.args[0] == ["gcloud", "auth", "print-access-token"]
        assert run.call_args.kwargs["timeout"] == 30

    def test_token_reused_within_lifetime(self, clock: mock.MagicMock, provider: CredentialProvider) -> None:
        """Test that a second request inside 50 minutes does not rerun the helper."""
        with mock.patch("gemctl.credentials.subprocess.run", return_value=_completed()) as run:
            first, _ = provider.get_token()
            clock.return_value = START + timedelta(minutes=49)
            second, _ = provider.get_token()

        assert first == second
        assert run.call_count == 1

    def test_token_refetched_after_expiry(self, clock: mock.MagicMock, provider: CredentialProvider) -> None:
        """Test that the helper runs again once the 50 minute lifetime has passed."""
        responses = [_completed("token-1"), _completed("token-2")]
        with mock.patch("gemctl.credentials.subprocess.run", side_effect=responses) as run:
            first, _ = provider.get_token()
            clock.return_value = START + timedelta(minutes=50)
            second, expiry = provider.get_token()

        assert first == "token-1"
        assert second == "token-2"
        assert expiry == START + timedelta(minutes=50) + TOKEN_LIFETIME
        assert run.call_count == 2

    def test_non_zero_exit(self, clock: mock.MagicMock, provider: CredentialProvider) -> None:
        failed = _completed(stdout="", returncode=1, stderr="You do not currently have an active account")
        with mock.patch("gemctl.credentials.subprocess.run", return_value=failed):
            with pytest.raises(AuthError) as exc_info:
                provider.get_token()

        assert "exit code 1" in str(exc_info.value)
        assert "active account" in str(exc_info.value)

    def test_missing_binary(self, clock: mock.MagicMock, provider: CredentialProvider) -> None:
        with mock.patch("gemctl.credentials.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(AuthError) as exc_info:
                provider.get_token()

        assert "not found" in str(exc_info.value)

    def test_timeout(self, clock: mock.MagicMock, provider: CredentialProvider) -> None:
        expired = subprocess.TimeoutExpired(cmd="gcloud", timeout=30)
        with mock.patch("gemctl.credentials.subprocess.run", side_effect=expired):
            with pytest.raises(AuthError) as exc_info:
                provider.get_token()

        assert "timed out" in str(exc_info.value)

    def test_empty_output(self, clock: mock.MagicMock, provider: CredentialProvider) -> None:
        with mock.patch("gemctl.credentials.subprocess.run", return_value=_completed("   \n")):
            with pytest.raises(AuthError):
                provider.get_token()

    def test_failure_is_not_retried(self, clock: mock.MagicMock, provider: CredentialProvider) -> None:
        with mock.patch("gemctl.credentials.subprocess.run", side_effect=FileNotFoundError) as run:
            with pytest.raises(AuthError):
                provider.get_token()

        assert run.call_count == 1

    def test_quota_project(self) -> None:
        credentials = CommandTokenCredentials(("helper",), timeout_seconds=5, quota_project_id="p")
        assert credentials.quota_project_id == "p"

        other = credentials.with_quota_project("q")
        assert other.quota_project_id == "q"
        assert other.command == ("helper",)


class TestGetCredentialProvider:
    """Tests for credential source selection."""

    def test_delegated_by_default(self) -> None:
        provider = get_credential_provider(Config(project_id="p"))

        assert isinstance(provider.credentials, CommandTokenCredentials)
        assert provider.credentials.quota_project_id == "p"

    def test_managed_uses_default_credentials(self) -> None:
        adc = mock.MagicMock()
        with mock.patch("gemctl.credentials.google.auth.default", return_value=(adc, "p")) as default:
            provider = get_credential_provider(Config(project_id="p", use_service_account=True))

        assert provider.credentials is adc
        assert default.call_args.kwargs["scopes"] == [
            "https://www.googleapis.com/auth/cloud-platform"
        ]

    def test_managed_without_credentials(self) -> None:
        with mock.patch(
            "gemctl.credentials.google.auth.default",
            side_effect=DefaultCredentialsError("no credentials"),
        ):
            with pytest.raises(AuthError) as exc_info:
                get_credential_provider(Config(project_id="p", use_service_account=True))

        assert "application default credentials" in str(exc_info.value)
