"""Discovery Engine mock context for integration testing.

Provides a context manager that patches the SDK service clients and the
credential lookup used by gemctl.client with mock implementations.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any
from unittest import mock

from gemctl.credentials import CredentialProvider

from .clients import (
    MockDataStoreServiceClient,
    MockDocumentServiceClient,
    MockEngineServiceClient,
    MockSchemaServiceClient,
)
from .credential import MockCredentials
from .state import MockDiscoveryState

# Name patched in gemctl.client -> mock class
_SERVICE_CLIENTS = {
    "DataStoreServiceClient": MockDataStoreServiceClient,
    "EngineServiceClient": MockEngineServiceClient,
    "DocumentServiceClient": MockDocumentServiceClient,
    "SchemaServiceClient": MockSchemaServiceClient,
}


class MockDiscoveryContext:
    """Context manager for Discovery Engine API mocking.

    Patches:
    - gemctl.client.get_credential_provider -> provider over MockCredentials
    - gemctl.client.{DataStore,Engine,Document,Schema}ServiceClient -> mock clients

    Usage:
        with MockDiscoveryContext() as ctx:
            client = DiscoveryEngineClient.from_config(config)
            client.create_data_store("ds1", "Docs")

            assert ctx.data_store_count == 1
    """

    def __init__(
        self,
        *,
        fail_auth: bool = False,
        operation_pending_polls: int = 0,
        operation_error: tuple[int, str] | None = None,
        page_size: int | None = None,
    ) -> None:
        """Initialize mock context.

        Args:
            fail_auth: Whether token refresh should fail.
            operation_pending_polls: Polls each operation stays running.
            operation_error: (code, message) every operation finishes with.
            page_size: Page size of list pagers; None returns one page.
        """
        self._fail_auth = fail_auth
        self._operation_pending_polls = operation_pending_polls
        self._operation_error = operation_error
        self._page_size = page_size

        # These are set when context is entered
        self._state: MockDiscoveryState | None = None
        self._credentials: MockCredentials | None = None
        self._patches: list[Any] = []
        self.service_clients: list[Any] = []

    @property
    def state(self) -> MockDiscoveryState:
        """Get the mock API state.

        Raises:
            RuntimeError: If accessed outside of context.
        """
        if self._state is None:
            raise RuntimeError("MockDiscoveryContext must be used as a context manager")
        return self._state

    @property
    def credentials(self) -> MockCredentials:
        """Get the mock credentials.

        Raises:
            RuntimeError: If accessed outside of context.
        """
        if self._credentials is None:
            raise RuntimeError("MockDiscoveryContext must be used as a context manager")
        return self._credentials

    @property
    def data_store_count(self) -> int:
        return len(self.state.data_stores)

    @property
    def engine_count(self) -> int:
        return len(self.state.engines)

    def __enter__(self) -> MockDiscoveryContext:
        """Enter the mock context, applying patches."""
        self._state = MockDiscoveryState(
            operation_pending_polls=self._operation_pending_polls,
            operation_error=self._operation_error,
            page_size=self._page_size,
        )
        self._credentials = MockCredentials()
        if self._fail_auth:
            self._credentials.set_failure(True, "Simulated authentication failure")

        def create_provider(config: Any) -> CredentialProvider:
            if not config.use_service_account:
                self._credentials._quota_project_id = config.project_id
            return CredentialProvider(self._credentials)

        def client_factory(client_class: type) -> Any:
            def create_client(**kwargs: Any) -> Any:
                client = client_class(self._state, **kwargs)
                self.service_clients.append(client)
                return client

            return create_client

        self._patches.append(
            mock.patch("gemctl.client.get_credential_provider", side_effect=create_provider)
        )
        for name, client_class in _SERVICE_CLIENTS.items():
            self._patches.append(
                mock.patch(f"gemctl.client.{name}", side_effect=client_factory(client_class))
            )

        for patch in self._patches:
            patch.start()

        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit the mock context, removing patches."""
        for patch in reversed(self._patches):
            patch.stop()
        self._patches.clear()


@contextmanager
def mock_discovery_context(**kwargs: Any) -> Generator[MockDiscoveryContext, None, None]:
    """Convenience function for creating a mock Discovery Engine context.

    Yields:
        MockDiscoveryContext for test assertions.
    """
    with MockDiscoveryContext(**kwargs) as ctx:
        yield ctx
