"""Discovery Engine resource client.

One method per remote operation, backed by the google-cloud-discoveryengine
v1 service clients. Each method builds the fully-qualified resource name
from {project, location, collection, id}, invokes the SDK call and converts
the returned message into the models in models.py.

ERROR HANDLING:
Read and list operations raise StructuralError; a failed read means a bad
reference or a missing permission and must halt the caller.

Create, import and delete operations never raise for remote failures. They
return a CreateResult/DeleteResult with status "error" and a descriptive
message, so a caller provisioning in several steps can record how far it got.

Credential failures (AuthError) are not remote failures and always propagate.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from google.api_core import exceptions as gcp_exceptions
from google.api_core.client_options import ClientOptions
from google.cloud import discoveryengine_v1 as discoveryengine
from google.cloud.discoveryengine_v1 import (
    DataStoreServiceClient,
    DocumentServiceClient,
    EngineServiceClient,
    SchemaServiceClient,
)
from google.longrunning import operations_pb2

from . import names
from .config import Config
from .credentials import CredentialProvider, get_credential_provider
from .models import (
    CreateResult,
    DataStore,
    DeleteResult,
    Document,
    Engine,
    EngineFullConfig,
    Operation,
    OperationStatus,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 60

# Message types a finished create operation may carry
_OPERATION_RESPONSE_TYPES = (discoveryengine.DataStore, discoveryengine.Engine)


class StructuralError(Exception):
    """A read or list failed: bad reference or missing permission."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _describe(error: gcp_exceptions.GoogleAPIError) -> str:
    """Render an API error as ``STATUS: message``."""
    status = getattr(getattr(error, "grpc_status_code", None), "name", None)
    message = getattr(error, "message", None) or str(error)
    return f"{status}: {message}" if status else message


def _structural(prefix: str, error: gcp_exceptions.GoogleAPIError) -> StructuralError:
    return StructuralError(f"{prefix}: {_describe(error)}", getattr(error, "code", None))


def _to_dict(message: Any) -> dict[str, Any]:
    """Convert an SDK message to its JSON field names and enum names."""
    return type(message).to_dict(
        message, use_integers_for_enums=False, preserving_proto_field_name=False
    )


# =============================================================================
# Request messages
# =============================================================================


def data_store_message(display_name: str) -> discoveryengine.DataStore:
    """Data store with the fixed defaults every created data store gets."""
    return discoveryengine.DataStore(
        display_name=display_name,
        industry_vertical=discoveryengine.IndustryVertical.GENERIC,
        solution_types=[discoveryengine.SolutionType.SOLUTION_TYPE_SEARCH],
        content_config=discoveryengine.DataStore.ContentConfig.CONTENT_REQUIRED,
    )


def engine_message(
    display_name: str,
    data_store_ids: Sequence[str],
    *,
    company_name: str,
    search_tier: str,
) -> discoveryengine.Engine:
    """Search engine over zero or more data stores.

    ``data_store_ids`` is only set when there is at least one data store.
    """
    engine = discoveryengine.Engine(
        display_name=display_name,
        solution_type=discoveryengine.SolutionType.SOLUTION_TYPE_SEARCH,
        industry_vertical=discoveryengine.IndustryVertical.GENERIC,
        app_type=discoveryengine.Engine.AppType.APP_TYPE_INTRANET,
        common_config=discoveryengine.Engine.CommonConfig(company_name=company_name),
        search_engine_config=discoveryengine.Engine.SearchEngineConfig(
            search_tier=discoveryengine.SearchTier[search_tier],
        ),
    )
    if data_store_ids:
        engine.data_store_ids = list(data_store_ids)
    return engine


def import_request(
    data_store_name: str,
    source_uri: str,
    data_schema: str,
    reconciliation_mode: str,
) -> discoveryengine.ImportDocumentsRequest:
    """Import of documents from Cloud Storage into the default branch."""
    return discoveryengine.ImportDocumentsRequest(
        parent=names.branch_name(data_store_name),
        gcs_source=discoveryengine.GcsSource(input_uris=[source_uri], data_schema=data_schema),
        reconciliation_mode=discoveryengine.ImportDocumentsRequest.ReconciliationMode[
            reconciliation_mode
        ],
    )


# =============================================================================
# Conversion
# =============================================================================


def _convert_data_store(message: discoveryengine.DataStore) -> DataStore:
    return DataStore.model_validate(_to_dict(message))


def _convert_engine(message: discoveryengine.Engine) -> Engine:
    engine = _to_dict(message)
    features = engine.get("features") or {}
    engine["features"] = {key: str(value) for key, value in features.items()}
    return Engine.model_validate(engine)


def _convert_document(message: discoveryengine.Document) -> Document:
    payload = _to_dict(message)
    content = payload.get("structData") or payload.get("content") or {}
    return Document(
        id=payload.get("id") or names.resource_id(payload.get("name", "")),
        content=dict(content),
        index_time=payload.get("indexTime") or "",
    )


def _convert_schema(message: discoveryengine.Schema) -> dict[str, Any]:
    payload = _to_dict(message)
    schema: dict[str, Any] = {}
    for key in ("name", "structSchema", "jsonSchema"):
        if payload.get(key):
            schema[key] = payload[key]
    return schema


def _convert_operation(operation: operations_pb2.Operation) -> Operation:
    error = None
    if operation.HasField("error"):
        error = OperationStatus(code=operation.error.code, message=operation.error.message)

    response: dict[str, Any] = {}
    if operation.HasField("response"):
        for message_type in _OPERATION_RESPONSE_TYPES:
            resource = message_type.pb()()
            if operation.response.Is(resource.DESCRIPTOR):
                operation.response.Unpack(resource)
                response = {"@type": operation.response.type_url, "name": resource.name}
                break

    return Operation(name=operation.name, done=operation.done, error=error, response=response)


class DiscoveryEngineClient:
    """Stateless per-call wrapper around the Discovery Engine service clients.

    The client holds configuration, a credential provider and one SDK client
    per service; it keeps no resource state between calls.
    """

    def __init__(self, config: Config, credentials: CredentialProvider) -> None:
        """Initialize the client.

        Args:
            config: Validated configuration; selects the API endpoint.
            credentials: Provider of the credentials every call is made with.
        """
        self._config = config
        self._credentials = credentials

        options = ClientOptions(api_endpoint=config.api_endpoint)
        sdk_credentials = credentials.credentials
        self._data_store_service = DataStoreServiceClient(
            credentials=sdk_credentials, client_options=options
        )
        self._engine_service = EngineServiceClient(
            credentials=sdk_credentials, client_options=options
        )
        self._document_service = DocumentServiceClient(
            credentials=sdk_credentials, client_options=options
        )
        self._schema_service = SchemaServiceClient(
            credentials=sdk_credentials, client_options=options
        )

    @classmethod
    def from_config(cls, config: Config) -> DiscoveryEngineClient:
        """Build a client with the credential source selected by config.

        Raises:
            AuthError: If managed credentials cannot be found.
        """
        return cls(config, get_credential_provider(config))

    @property
    def config(self) -> Config:
        """Get the client configuration."""
        return self._config

    # -------------------------------------------------------------------------
    # Naming
    # -------------------------------------------------------------------------

    @property
    def collection_path(self) -> str:
        return names.collection_path(
            self._config.project_id, self._config.location, self._config.collection
        )

    def data_store_name(self, data_store_id: str) -> str:
        """Deterministic name of a data store in the configured collection."""
        return names.data_store_name(
            self._config.project_id,
            self._config.location,
            self._config.collection,
            data_store_id,
        )

    def engine_name(self, engine_id: str) -> str:
        """Deterministic name of an engine in the configured collection."""
        return names.engine_name(
            self._config.project_id,
            self._config.location,
            self._config.collection,
            engine_id,
        )

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _call(self, method: Callable[..., Any], request: Any) -> Any:
        """Invoke one SDK method without automatic retry.

        The token is refreshed here rather than inside the SDK transport, so
        a failing credential source surfaces as AuthError before any call.

        Raises:
            GoogleAPIError: On any API or transport failure.
            AuthError: If no access token can be obtained.
        """
        self._credentials.get_token()
        logger.debug("API request", extra={"method": method.__name__})
        return method(request=request, retry=None, timeout=REQUEST_TIMEOUT_SECONDS)

    # -------------------------------------------------------------------------
    # Data stores
    # -------------------------------------------------------------------------

    def list_data_stores(self) -> list[DataStore]:
        """List the data stores of the configured collection.

        Raises:
            StructuralError: If the list call fails.
        """
        request = discoveryengine.ListDataStoresRequest(parent=self.collection_path)
        try:
            items = list(self._call(self._data_store_service.list_data_stores, request))
        except gcp_exceptions.GoogleAPIError as e:
            raise _structural("failed to list data stores", e) from e
        return [_convert_data_store(item) for item in items]

    def get_data_store(self, data_store_name: str) -> DataStore:
        """Get a data store by full resource name.

        Raises:
            StructuralError: If the data store cannot be read.
        """
        request = discoveryengine.GetDataStoreRequest(name=data_store_name)
        try:
            message = self._call(self._data_store_service.get_data_store, request)
        except gcp_exceptions.GoogleAPIError as e:
            raise _structural("failed to get data store details", e) from e
        return _convert_data_store(message)

    def get_data_store_schema(self, data_store_name: str) -> dict[str, Any]:
        """Get the default schema of a data store.

        Raises:
            StructuralError: If the schema cannot be read.
        """
        request = discoveryengine.GetSchemaRequest(name=names.schema_name(data_store_name))
        try:
            message = self._call(self._schema_service.get_schema, request)
        except gcp_exceptions.GoogleAPIError as e:
            raise _structural("failed to get data store schema", e) from e
        return _convert_schema(message)

    def list_documents(
        self, data_store_name: str, branch: str = names.DEFAULT_BRANCH
    ) -> list[Document]:
        """List documents in a data store branch.

        Raises:
            StructuralError: If the list call fails.
        """
        request = discoveryengine.ListDocumentsRequest(
            parent=names.branch_name(data_store_name, branch)
        )
        try:
            items = list(self._call(self._document_service.list_documents, request))
        except gcp_exceptions.GoogleAPIError as e:
            raise _structural("failed to list documents", e) from e
        return [_convert_document(item) for item in items]

    def create_data_store(self, data_store_id: str, display_name: str) -> CreateResult:
        """Create an empty data store with fixed defaults.

        The returned name is built from the ID, not read from the response.
        """
        request = discoveryengine.CreateDataStoreRequest(
            parent=self.collection_path,
            data_store=data_store_message(display_name),
            data_store_id=data_store_id,
        )
        try:
            lro = self._call(self._data_store_service.create_data_store, request)
        except gcp_exceptions.GoogleAPIError as e:
            logger.warning(
                "Data store creation failed",
                extra={"data_store_id": data_store_id, "error": _describe(e)},
            )
            return CreateResult.failure(f"Failed to create data store: {_describe(e)}")

        operation = _convert_operation(lro.operation)
        logger.info(
            "Data store creation started",
            extra={"data_store_id": data_store_id, "operation": operation.name},
        )
        return CreateResult.for_data_store(self.data_store_name(data_store_id), operation=operation)

    def import_documents(
        self,
        data_store_name: str,
        source_uri: str,
        data_schema: str,
        reconciliation_mode: str,
    ) -> CreateResult:
        """Import documents from Cloud Storage into the default branch."""
        request = import_request(data_store_name, source_uri, data_schema, reconciliation_mode)
        try:
            lro = self._call(self._document_service.import_documents, request)
        except gcp_exceptions.GoogleAPIError as e:
            logger.warning(
                "Document import failed",
                extra={
                    "data_store": data_store_name,
                    "source_uri": source_uri,
                    "error": _describe(e),
                },
            )
            return CreateResult.failure(f"Failed to import documents: {_describe(e)}")

        operation = _convert_operation(lro.operation)
        logger.info(
            "Document import started",
            extra={
                "data_store": data_store_name,
                "source_uri": source_uri,
                "operation": operation.name,
            },
        )
        return CreateResult.for_data_store(data_store_name, import_operation=operation)

    def delete_data_store(self, data_store_name: str) -> DeleteResult:
        """Delete a data store by full resource name."""
        request = discoveryengine.DeleteDataStoreRequest(name=data_store_name)
        try:
            self._call(self._data_store_service.delete_data_store, request)
        except gcp_exceptions.GoogleAPIError as e:
            logger.warning(
                "Data store deletion failed",
                extra={"data_store": data_store_name, "error": _describe(e)},
            )
            return DeleteResult.failure(f"Failed to delete data store: {_describe(e)}")
        logger.info("Data store deleted", extra={"data_store": data_store_name})
        return DeleteResult.success("Data store deleted successfully")

    # -------------------------------------------------------------------------
    # Engines
    # -------------------------------------------------------------------------

    def list_engines(self, collection: str | None = None) -> list[Engine]:
        """List the engines of a collection (default: the configured one).

        Raises:
            StructuralError: If the list call fails.
        """
        parent = names.collection_path(
            self._config.project_id,
            self._config.location,
            collection or self._config.collection,
        )
        request = discoveryengine.ListEnginesRequest(parent=parent)
        try:
            items = list(self._call(self._engine_service.list_engines, request))
        except gcp_exceptions.GoogleAPIError as e:
            raise _structural("failed to list engines", e) from e
        return [_convert_engine(item) for item in items]

    def get_engine(self, engine_name: str) -> Engine:
        """Get an engine by full resource name.

        Raises:
            StructuralError: If the engine cannot be read.
        """
        request = discoveryengine.GetEngineRequest(name=engine_name)
        try:
            message = self._call(self._engine_service.get_engine, request)
        except gcp_exceptions.GoogleAPIError as e:
            raise _structural("failed to get engine details", e) from e
        return _convert_engine(message)

    def get_engine_full_config(self, engine_name: str) -> EngineFullConfig:
        """Get an engine together with every data store it references.

        Data stores that cannot be read are skipped; a schema that cannot be
        read leaves the data store's schema unset. Only the engine read
        itself can fail.

        Raises:
            StructuralError: If the engine cannot be read.
        """
        engine = self.get_engine(engine_name)

        data_stores: list[DataStore] = []
        for data_store_id in engine.data_store_ids:
            data_store_name = self.data_store_name(data_store_id)
            try:
                data_store = self.get_data_store(data_store_name)
            except StructuralError as e:
                logger.warning(
                    "Skipping unreadable data store",
                    extra={"engine": engine_name, "data_store": data_store_name, "error": str(e)},
                )
                continue

            try:
                schema = self.get_data_store_schema(data_store_name)
            except StructuralError as e:
                logger.debug(
                    "Data store schema unavailable",
                    extra={"data_store": data_store_name, "error": str(e)},
                )
            else:
                if schema:
                    data_store = data_store.model_copy(update={"data_schema": schema})

            data_stores.append(data_store)

        return EngineFullConfig(engine=engine, data_stores=data_stores)

    def create_engine(
        self,
        engine_id: str,
        display_name: str,
        data_store_ids: Sequence[str],
        search_tier: str,
    ) -> CreateResult:
        """Create a search engine connected to data stores.

        The returned name is built from the ID, not read from the response.
        """
        request = discoveryengine.CreateEngineRequest(
            parent=self.collection_path,
            engine=engine_message(
                display_name,
                data_store_ids,
                company_name=self._config.company_name,
                search_tier=search_tier,
            ),
            engine_id=engine_id,
        )
        try:
            lro = self._call(self._engine_service.create_engine, request)
        except gcp_exceptions.GoogleAPIError as e:
            logger.warning(
                "Engine creation failed",
                extra={"engine_id": engine_id, "error": _describe(e)},
            )
            return CreateResult.failure(f"Failed to create engine: {_describe(e)}")

        operation = _convert_operation(lro.operation)
        logger.info(
            "Engine creation started",
            extra={
                "engine_id": engine_id,
                "data_store_ids": list(data_store_ids),
                "operation": operation.name,
            },
        )
        return CreateResult.for_engine(self.engine_name(engine_id), operation=operation)

    def delete_engine(self, engine_name: str) -> DeleteResult:
        """Delete an engine by full resource name."""
        request = discoveryengine.DeleteEngineRequest(name=engine_name)
        try:
            self._call(self._engine_service.delete_engine, request)
        except gcp_exceptions.GoogleAPIError as e:
            logger.warning(
                "Engine deletion failed",
                extra={"engine": engine_name, "error": _describe(e)},
            )
            return DeleteResult.failure(f"Failed to delete engine: {_describe(e)}")
        logger.info("Engine deleted", extra={"engine": engine_name})
        return DeleteResult.success("Engine deleted successfully")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def get_operation(self, operation_name: str) -> Operation:
        """Get the status of a long-running operation.

        Raises:
            StructuralError: If the operation cannot be read.
        """
        request = operations_pb2.GetOperationRequest(name=operation_name)
        try:
            operation = self._call(self._data_store_service.get_operation, request)
        except gcp_exceptions.GoogleAPIError as e:
            raise _structural("failed to check operation status", e) from e
        return _convert_operation(operation)
