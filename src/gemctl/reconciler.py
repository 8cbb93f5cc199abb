"""Declared-state reconciliation for data stores and engines.

Each resource kind has a small CRUD state machine:

    create -> (wait) -> [import] -> record name
    read   -> refresh display name and name from the remote resource
    update -> create again with the same id
    delete -> delete by name

Reconciler drives both from a manifest and the persisted state, in
dependency order:
1. Data stores (create, update or refresh)
2. Engines (create, update or refresh)
3. Engines no longer declared are deleted
4. Data stores no longer declared are deleted

PARTIAL FAILURE:
A multi-step create reports an error as soon as any step fails; nothing
created by earlier steps is rolled back. The error result carries no
resource name, so the resource stays out of state even if it exists
remotely. When a document import fails, the data store container already
exists: a later apply creates it again and gets ALREADY_EXISTS. The operator
has to delete the data store or run the import by hand before re-applying.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .client import DiscoveryEngineClient, StructuralError
from .config import Config
from .credentials import AuthError
from .models import (
    CreateResult,
    DataStoreRecord,
    DeleteResult,
    EngineRecord,
    Operation,
    ResourceManifest,
)
from .poller import OperationError, OperationPoller
from .state import ResourceState

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    """Kinds of managed resources."""

    DATA_STORE = "dataStore"
    ENGINE = "engine"


class ActionType(str, Enum):
    """What reconciliation does with one resource."""

    CREATE = "create"
    UPDATE = "update"
    READ = "read"
    DELETE = "delete"


@dataclass
class ResourceAction:
    """One planned or executed step.

    ``succeeded`` is None until the step has run.
    """

    kind: ResourceKind
    resource_id: str
    action: ActionType
    succeeded: bool | None = None
    name: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "id": self.resource_id,
            "action": self.action.value,
            "succeeded": self.succeeded,
            "name": self.name,
            "message": self.message,
        }


@dataclass
class ApplyReport:
    """Result of one apply run.

    ``state`` is always the state to persist, including the outcome of every
    step that ran before a halting error.
    """

    state: ResourceState
    actions: list[ResourceAction] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def failed_actions(self) -> list[ResourceAction]:
        return [a for a in self.actions if a.succeeded is False]

    @property
    def success(self) -> bool:
        """Whether every step ran and succeeded."""
        return self.error is None and not self.failed_actions

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "durationSeconds": self.duration_seconds,
            "error": str(self.error) if self.error is not None else None,
            "actions": [a.to_dict() for a in self.actions],
        }


class _ResourceReconciler:
    """Shared create-wait plumbing for the per-kind reconcilers."""

    def __init__(
        self,
        client: DiscoveryEngineClient,
        poller: OperationPoller,
        config: Config,
    ) -> None:
        self._client = client
        self._poller = poller
        self._config = config

    def _wait(self, operation: Operation | None, fallback_name: str) -> str | None:
        """Wait for a create operation when configured to.

        Returns:
            None on success (or when not waiting), an error message otherwise.
        """
        if not self._config.wait_for_operations or operation is None:
            return None
        try:
            self._poller.wait(
                operation.name,
                fallback_name,
                timeout=self._config.operation_timeout_seconds,
                interval=self._config.operation_poll_interval_seconds,
            )
        except OperationError as e:
            return str(e)
        return None


class DataStoreReconciler(_ResourceReconciler):
    """CRUD state machine for data stores."""

    def create(self, record: DataStoreRecord) -> CreateResult:
        """Create the data store, then import its documents.

        The import is only attempted once the container exists. An import
        failure is reported as an error even though the container remains.
        """
        logger.info(
            "Creating data store",
            extra={"data_store_id": record.id, "source_uri": record.source_uri},
        )
        result = self._client.create_data_store(record.id, record.display_name)
        if not result.succeeded:
            return result

        name = self._client.data_store_name(record.id)

        error = self._wait(result.operation, name)
        if error is not None:
            logger.warning(
                "Data store creation did not complete",
                extra={"data_store": name, "error": error},
            )
            return CreateResult.failure(f"Failed to create data store: {error}")

        import_result = self._client.import_documents(
            name,
            record.source_uri,
            record.data_schema or self._config.data_schema,
            record.reconciliation_mode or self._config.reconciliation_mode,
        )
        if not import_result.succeeded:
            logger.warning(
                "Data store created but document import failed",
                extra={"data_store": name, "error": import_result.error},
            )
            return import_result

        return CreateResult.for_data_store(
            name,
            operation=result.operation,
            import_operation=import_result.import_operation,
        )

    def read(self, record: DataStoreRecord) -> DataStoreRecord:
        """Refresh a record from the remote data store.

        Raises:
            StructuralError: If the data store cannot be read.
        """
        data_store = self._client.get_data_store(self._client.data_store_name(record.id))
        return record.model_copy(
            update={
                "display_name": data_store.display_name or record.display_name,
                "name": data_store.name,
            }
        )

    def update(self, record: DataStoreRecord) -> CreateResult:
        """Re-provision: create again under the same id."""
        logger.info("Updating data store by re-creating it", extra={"data_store_id": record.id})
        return self.create(record)

    def delete(self, record: DataStoreRecord) -> DeleteResult:
        return self._client.delete_data_store(self._client.data_store_name(record.id))


class EngineReconciler(_ResourceReconciler):
    """CRUD state machine for engines."""

    def create(self, record: EngineRecord) -> CreateResult:
        """Create the engine over its data stores.

        Data store ids are passed through unchecked; the remote API is the
        only judge of whether they resolve.
        """
        logger.info(
            "Creating engine",
            extra={"engine_id": record.id, "data_store_ids": record.data_store_ids},
        )
        result = self._client.create_engine(
            record.id,
            record.display_name,
            record.data_store_ids,
            record.search_tier,
        )
        if not result.succeeded:
            return result

        name = self._client.engine_name(record.id)

        error = self._wait(result.operation, name)
        if error is not None:
            logger.warning(
                "Engine creation did not complete",
                extra={"engine": name, "error": error},
            )
            return CreateResult.failure(f"Failed to create engine: {error}")

        return CreateResult.for_engine(name, operation=result.operation)

    def read(self, record: EngineRecord) -> EngineRecord:
        """Refresh a record from the remote engine.

        Raises:
            StructuralError: If the engine cannot be read.
        """
        engine = self._client.get_engine(self._client.engine_name(record.id))
        return record.model_copy(
            update={
                "display_name": engine.display_name or record.display_name,
                "name": engine.name,
            }
        )

    def update(self, record: EngineRecord) -> CreateResult:
        """Re-provision: create again under the same id."""
        logger.info("Updating engine by re-creating it", extra={"engine_id": record.id})
        return self.create(record)

    def delete(self, record: EngineRecord) -> DeleteResult:
        return self._client.delete_engine(self._client.engine_name(record.id))


class Reconciler:
    """Drives the per-kind reconcilers from a manifest and persisted state.

    Every collaborator is passed in explicitly; from_config() wires the
    default chain of credentials, client and poller.
    """

    def __init__(
        self,
        client: DiscoveryEngineClient,
        poller: OperationPoller,
        config: Config,
    ) -> None:
        """Initialize reconciler.

        Args:
            client: Resource client for the configured collection.
            poller: Operation poller backed by the same client.
            config: Validated configuration.
        """
        self._client = client
        self._config = config
        self._data_stores = DataStoreReconciler(client, poller, config)
        self._engines = EngineReconciler(client, poller, config)

    @classmethod
    def from_config(cls, config: Config) -> Reconciler:
        """Build a reconciler and its collaborators from configuration.

        Raises:
            AuthError: If managed credentials cannot be found.
        """
        client = DiscoveryEngineClient.from_config(config)
        return cls(client, OperationPoller(client), config)

    @property
    def config(self) -> Config:
        """Get the reconciler configuration."""
        return self._config

    @property
    def client(self) -> DiscoveryEngineClient:
        return self._client

    @property
    def data_stores(self) -> DataStoreReconciler:
        return self._data_stores

    @property
    def engines(self) -> EngineReconciler:
        return self._engines

    def plan(self, manifest: ResourceManifest, state: ResourceState) -> list[ResourceAction]:
        """Compute the steps apply() would run, in order, without running them."""
        actions: list[ResourceAction] = []

        declared: list[tuple[ResourceKind, list[Any], dict[str, Any]]] = [
            (ResourceKind.DATA_STORE, manifest.data_stores, state.data_stores),
            (ResourceKind.ENGINE, manifest.engines, state.engines),
        ]
        for kind, records, applied in declared:
            for record in records:
                previous = applied.get(record.id)
                if previous is None:
                    action = ActionType.CREATE
                elif record.differs_from(previous):
                    action = ActionType.UPDATE
                else:
                    action = ActionType.READ
                actions.append(ResourceAction(kind=kind, resource_id=record.id, action=action))

        # Engines go before the data stores they may reference
        declared_engines = {e.id for e in manifest.engines}
        for engine_id in state.engines:
            if engine_id not in declared_engines:
                actions.append(
                    ResourceAction(
                        kind=ResourceKind.ENGINE, resource_id=engine_id, action=ActionType.DELETE
                    )
                )

        declared_data_stores = {ds.id for ds in manifest.data_stores}
        for data_store_id in state.data_stores:
            if data_store_id not in declared_data_stores:
                actions.append(
                    ResourceAction(
                        kind=ResourceKind.DATA_STORE,
                        resource_id=data_store_id,
                        action=ActionType.DELETE,
                    )
                )

        return actions

    def apply(self, manifest: ResourceManifest, state: ResourceState) -> ApplyReport:
        """Reconcile remote resources toward the manifest.

        Operational failures are recorded per action and processing
        continues. A structural or credential error halts the run; it is
        recorded on the report so the state gathered so far can be saved.
        """
        report = ApplyReport(state=state.model_copy(deep=True))
        records: dict[tuple[ResourceKind, str], Any] = {}
        for ds in manifest.data_stores:
            records[(ResourceKind.DATA_STORE, ds.id)] = ds
        for engine in manifest.engines:
            records[(ResourceKind.ENGINE, engine.id)] = engine

        logger.info(
            "Starting apply",
            extra={
                "collection": self._config.collection,
                "data_stores": len(manifest.data_stores),
                "engines": len(manifest.engines),
            },
        )

        for action in self.plan(manifest, state):
            report.actions.append(action)
            try:
                self._execute(action, records.get((action.kind, action.resource_id)), report.state)
            except (StructuralError, AuthError) as e:
                action.succeeded = False
                action.message = str(e)
                report.error = e
                break

        report.end_time = datetime.now(UTC)
        self._log_report(report)
        return report

    def _execute(self, action: ResourceAction, record: Any, state: ResourceState) -> None:
        if action.kind == ResourceKind.DATA_STORE:
            reconciler: DataStoreReconciler | EngineReconciler = self._data_stores
            applied: dict[str, Any] = state.data_stores
        else:
            reconciler = self._engines
            applied = state.engines

        if action.action == ActionType.DELETE:
            delete_result = reconciler.delete(applied[action.resource_id])
            action.succeeded = delete_result.succeeded
            action.message = delete_result.message
            if delete_result.succeeded:
                del applied[action.resource_id]
            return

        if action.action == ActionType.READ:
            refreshed = reconciler.read(record)
            action.succeeded = True
            action.name = refreshed.name
            applied[action.resource_id] = refreshed
            return

        if action.action == ActionType.CREATE:
            result = reconciler.create(record)
        else:
            result = reconciler.update(record)

        action.succeeded = result.succeeded
        if not result.succeeded:
            # Previous state stays as it was
            action.message = result.error
            return

        name = result.data_store_name or result.engine_name
        action.name = name
        applied[action.resource_id] = record.model_copy(update={"name": name})

    def _log_report(self, report: ApplyReport) -> None:
        extra: dict[str, Any] = {
            "collection": self._config.collection,
            "duration_seconds": report.duration_seconds,
            "actions": len(report.actions),
            "failed": len(report.failed_actions),
        }
        if report.error is not None:
            extra["error"] = str(report.error)
            logger.error("Apply halted", extra=extra)
        elif report.failed_actions:
            logger.warning("Apply finished with failures", extra=extra)
        else:
            logger.info("Apply finished", extra=extra)
