"""gemctl command line.

Inspect and reconcile Discovery Engine search resources.

Usage:
    gemctl data-stores list                  # List data stores
    gemctl engines describe eng1 --full      # Engine plus its data stores
    gemctl plan -f resources.yaml            # Show what apply would do
    gemctl apply -f resources.yaml --wait    # Reconcile and record state
    gemctl delete-engine eng1                # One-shot delete
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from .client import DiscoveryEngineClient, StructuralError
from .config import (
    DEFAULT_OPERATION_POLL_INTERVAL_SECONDS,
    DEFAULT_OPERATION_TIMEOUT_SECONDS,
    DEFAULT_SEARCH_TIER,
    Config,
    ConfigurationError,
)
from .credentials import AuthError
from .models import DataStoreRecord, EngineRecord
from .poller import OperationError, OperationPoller
from .reconciler import Reconciler
from .spec_loader import SpecLoadError, format_validation_error, load_manifest
from .state import StateError, load_state, save_state

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "gemctl-state.json"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# Errors reported as a one-line message with exit code 1
GEMCTL_ERRORS: tuple[type[Exception], ...] = (
    ConfigurationError,
    AuthError,
    StructuralError,
    OperationError,
    SpecLoadError,
    StateError,
)

_RESERVED_LOG_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Extra fields passed via extra={...}
        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "WARNING", log_format: str = "json") -> None:
    """Configure logging on stderr; stdout is reserved for command output."""
    handler = logging.StreamHandler(sys.stderr)
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler.set_name("gemctl")

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == "gemctl":
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from HTTP and auth libraries
    for noisy in ("google", "requests", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


@contextmanager
def _errors_as_click_exceptions() -> Iterator[None]:
    try:
        yield
    except GEMCTL_ERRORS as e:
        raise click.ClickException(str(e)) from e


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _load_config(ctx: click.Context, *, wait: bool | None = None) -> Config:
    options = ctx.obj
    return Config.from_env(
        project_id=options["project"],
        location=options["location"],
        collection=options["collection"],
        use_service_account=options["service_account"],
        wait_for_operations=wait,
    )


def _client(ctx: click.Context) -> DiscoveryEngineClient:
    return DiscoveryEngineClient.from_config(_load_config(ctx))


def _reconciler(ctx: click.Context, *, wait: bool | None = None) -> Reconciler:
    return Reconciler.from_config(_load_config(ctx, wait=wait))


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="gemctl")
@click.option("--project", "-p", help="Project ID (default: environment or gcloud config)")
@click.option("--location", "-l", help="Location (default: environment or 'us')")
@click.option("--collection", "-c", help="Collection ID (default: default_collection)")
@click.option(
    "--service-account/--user-token",
    "service_account",
    default=None,
    help="Use application default credentials instead of the gcloud user token",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
)
@click.option(
    "--log-format",
    type=click.Choice(("json", "text")),
    default="json",
    show_default=True,
)
@click.pass_context
def cli(
    ctx: click.Context,
    project: str | None,
    location: str | None,
    collection: str | None,
    service_account: bool | None,
    log_level: str,
    log_format: str,
) -> None:
    """gemctl: manage Discovery Engine data stores and engines.

    \b
    Quick Start:
        gemctl data-stores list
        gemctl plan -f resources.yaml
        gemctl apply -f resources.yaml
    """
    setup_logging(log_level.upper(), log_format)
    ctx.obj = {
        "project": project,
        "location": location,
        "collection": collection,
        "service_account": service_account,
    }


# =============================================================================
# Data Store Commands
# =============================================================================


@cli.group("data-stores")
def data_stores() -> None:
    """Inspect data stores: list, describe, documents."""
    pass


@data_stores.command("list")
@click.pass_context
def data_stores_list(ctx: click.Context) -> None:
    """List data stores in the collection."""
    with _errors_as_click_exceptions():
        items = _client(ctx).list_data_stores()
    _echo_json([ds.model_dump(mode="json", by_alias=True) for ds in items])


@data_stores.command("describe")
@click.argument("data_store_id")
@click.option("--schema", "with_schema", is_flag=True, help="Include the default schema")
@click.pass_context
def data_stores_describe(ctx: click.Context, data_store_id: str, with_schema: bool) -> None:
    """Show one data store."""
    with _errors_as_click_exceptions():
        client = _client(ctx)
        name = client.data_store_name(data_store_id)
        data_store = client.get_data_store(name)
        if with_schema:
            data_store = data_store.model_copy(
                update={"data_schema": client.get_data_store_schema(name)}
            )
    _echo_json(data_store.model_dump(mode="json", by_alias=True))


@data_stores.command("documents")
@click.argument("data_store_id")
@click.option("--branch", default="default_branch", show_default=True)
@click.pass_context
def data_stores_documents(ctx: click.Context, data_store_id: str, branch: str) -> None:
    """List documents in a data store branch."""
    with _errors_as_click_exceptions():
        client = _client(ctx)
        documents = client.list_documents(client.data_store_name(data_store_id), branch)
    _echo_json([doc.model_dump(mode="json", by_alias=True) for doc in documents])


# =============================================================================
# Engine Commands
# =============================================================================


@cli.group()
def engines() -> None:
    """Inspect engines: list, describe."""
    pass


@engines.command("list")
@click.option("--collection", "list_collection", help="Collection to list (default: global option)")
@click.pass_context
def engines_list(ctx: click.Context, list_collection: str | None) -> None:
    """List engines in a collection."""
    with _errors_as_click_exceptions():
        items = _client(ctx).list_engines(list_collection)
    _echo_json([engine.model_dump(mode="json", by_alias=True) for engine in items])


@engines.command("describe")
@click.argument("engine_id")
@click.option("--full", is_flag=True, help="Include the referenced data stores")
@click.pass_context
def engines_describe(ctx: click.Context, engine_id: str, full: bool) -> None:
    """Show one engine."""
    with _errors_as_click_exceptions():
        client = _client(ctx)
        name = client.engine_name(engine_id)
        if full:
            result = client.get_engine_full_config(name).model_dump(mode="json", by_alias=True)
        else:
            result = client.get_engine(name).model_dump(mode="json", by_alias=True)
    _echo_json(result)


# =============================================================================
# Operation Commands
# =============================================================================


@cli.group()
def operations() -> None:
    """Track long-running operations."""
    pass


@operations.command("wait")
@click.argument("operation_name")
@click.option("--resource-name", default="", help="Name to report if the operation has none")
@click.option(
    "--timeout", default=DEFAULT_OPERATION_TIMEOUT_SECONDS, show_default=True,
    type=click.IntRange(min=1),
)
@click.option(
    "--interval", default=DEFAULT_OPERATION_POLL_INTERVAL_SECONDS, show_default=True,
    type=click.IntRange(min=1),
)
@click.pass_context
def operations_wait(
    ctx: click.Context,
    operation_name: str,
    resource_name: str,
    timeout: int,
    interval: int,
) -> None:
    """Block until an operation finishes."""
    with _errors_as_click_exceptions():
        poller = OperationPoller(_client(ctx))
        name = poller.wait(operation_name, resource_name, timeout=timeout, interval=interval)
    _echo_json({"operation": operation_name, "done": True, "resourceName": name or None})


# =============================================================================
# Reconciliation Commands
# =============================================================================


@cli.command()
@click.option(
    "--file", "-f", "manifest_file", required=True, type=click.Path(path_type=Path)
)
@click.option(
    "--state", "state_file", default=DEFAULT_STATE_FILE, show_default=True,
    type=click.Path(path_type=Path),
)
@click.pass_context
def plan(ctx: click.Context, manifest_file: Path, state_file: Path) -> None:
    """Show the steps apply would run."""
    with _errors_as_click_exceptions():
        manifest = load_manifest(manifest_file)
        state = load_state(state_file)
        actions = _reconciler(ctx).plan(manifest, state)
    _echo_json([action.to_dict() for action in actions])


@cli.command()
@click.option(
    "--file", "-f", "manifest_file", required=True, type=click.Path(path_type=Path)
)
@click.option(
    "--state", "state_file", default=DEFAULT_STATE_FILE, show_default=True,
    type=click.Path(path_type=Path),
)
@click.option("--wait/--no-wait", default=None, help="Wait for create operations to finish")
@click.pass_context
def apply(ctx: click.Context, manifest_file: Path, state_file: Path, wait: bool | None) -> None:
    """Reconcile data stores and engines toward a manifest.

    State is saved even when a step fails, so a rerun picks up where this
    one stopped.
    """
    with _errors_as_click_exceptions():
        manifest = load_manifest(manifest_file)
        state = load_state(state_file)
        reconciler = _reconciler(ctx, wait=wait)
        report = reconciler.apply(manifest, state)
        save_state(report.state, state_file)

    _echo_json(report.to_dict())
    if not report.success:
        ctx.exit(1)


# =============================================================================
# One-shot Commands
# =============================================================================


def _record(model: type[DataStoreRecord] | type[EngineRecord], **fields: Any) -> Any:
    try:
        return model.model_validate(fields)
    except ValidationError as e:
        raise click.ClickException(f"Invalid arguments:\n{format_validation_error(e)}") from e


@cli.command("create-data-store")
@click.argument("data_store_id")
@click.option("--display-name", required=True)
@click.option("--source-uri", required=True, help="Cloud Storage URI, e.g. gs://bucket/docs/*")
@click.option("--data-schema", default=None, help="Import data schema (default: config)")
@click.option("--reconciliation-mode", default=None, help="INCREMENTAL or FULL (default: config)")
@click.option("--wait/--no-wait", default=None, help="Wait for the create operation")
@click.pass_context
def create_data_store(
    ctx: click.Context,
    data_store_id: str,
    display_name: str,
    source_uri: str,
    data_schema: str | None,
    reconciliation_mode: str | None,
    wait: bool | None,
) -> None:
    """Create a data store and import documents into it."""
    with _errors_as_click_exceptions():
        reconciler = _reconciler(ctx, wait=wait)
        record = _record(
            DataStoreRecord,
            id=data_store_id,
            displayName=display_name,
            sourceUri=source_uri,
            dataSchema=data_schema,
            reconciliationMode=reconciliation_mode,
        )
        result = reconciler.data_stores.create(record)

    _echo_json(result.model_dump(mode="json", exclude_none=True))
    if not result.succeeded:
        ctx.exit(1)


@cli.command("create-engine")
@click.argument("engine_id")
@click.option("--display-name", required=True)
@click.option("--data-store-id", "data_store_ids", multiple=True, help="Repeatable")
@click.option("--search-tier", default=DEFAULT_SEARCH_TIER, show_default=True)
@click.option("--wait/--no-wait", default=None, help="Wait for the create operation")
@click.pass_context
def create_engine(
    ctx: click.Context,
    engine_id: str,
    display_name: str,
    data_store_ids: tuple[str, ...],
    search_tier: str,
    wait: bool | None,
) -> None:
    """Create a search engine over zero or more data stores."""
    record = _record(
        EngineRecord,
        id=engine_id,
        displayName=display_name,
        dataStoreIds=list(data_store_ids),
        searchTier=search_tier,
    )
    with _errors_as_click_exceptions():
        result = _reconciler(ctx, wait=wait).engines.create(record)

    _echo_json(result.model_dump(mode="json", exclude_none=True))
    if not result.succeeded:
        ctx.exit(1)


@cli.command("delete-data-store")
@click.argument("data_store_id")
@click.pass_context
def delete_data_store(ctx: click.Context, data_store_id: str) -> None:
    """Delete a data store."""
    with _errors_as_click_exceptions():
        client = _client(ctx)
        result = client.delete_data_store(client.data_store_name(data_store_id))

    _echo_json(result.model_dump(mode="json"))
    if not result.succeeded:
        ctx.exit(1)


@cli.command("delete-engine")
@click.argument("engine_id")
@click.pass_context
def delete_engine(ctx: click.Context, engine_id: str) -> None:
    """Delete an engine."""
    with _errors_as_click_exceptions():
        client = _client(ctx)
        result = client.delete_engine(client.engine_name(engine_id))

    _echo_json(result.model_dump(mode="json"))
    if not result.succeeded:
        ctx.exit(1)


def main() -> None:
    """Entry point for the gemctl command."""
    cli()


if __name__ == "__main__":
    main()
