"""Discovery Engine API Mock for Integration Testing.

This module provides mock implementations of the google-cloud-discoveryengine
v1 service clients that enable integration testing without Google Cloud
connectivity.

Key Features:
- In-memory state for data stores, engines, schemas and documents, held as
  the SDK's own message types
- Long-running operations that stay running for a configurable number of
  polls, then succeed or fail
- Lazily paged list results
- Error injection per method and resource, raising google.api_core errors
- Mock credentials that never shell out to gcloud

Usage:
    from discovery_mock import MockDiscoveryContext

    with MockDiscoveryContext() as ctx:
        reconciler = Reconciler.from_config(config)
        report = reconciler.apply(manifest, ResourceState())

        assert ctx.engine_count == 1
"""

from .clients import (
    MockDataStoreServiceClient,
    MockDocumentServiceClient,
    MockEngineServiceClient,
    MockSchemaServiceClient,
)
from .context import MockDiscoveryContext, mock_discovery_context
from .credential import MockCredentials
from .state import MockDiscoveryState

__all__ = [
    "MockCredentials",
    "MockDataStoreServiceClient",
    "MockDiscoveryContext",
    "MockDiscoveryState",
    "MockDocumentServiceClient",
    "MockEngineServiceClient",
    "MockSchemaServiceClient",
    "mock_discovery_context",
]
