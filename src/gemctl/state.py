"""Persisted resource state.

The state file records, per resource id, the last record successfully applied
together with its deterministic name. It is the only memory the apply loop
has of what it created: resources missing from state are treated as new, and
resources present in state but missing from the manifest are deleted.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from .config import MAX_STATE_FILE_SIZE_BYTES
from .models import DataStoreRecord, EngineRecord

logger = logging.getLogger(__name__)


class StateError(Exception):
    """Raised when the state file cannot be read or written."""

    pass


class ResourceState(BaseModel):
    """Applied records keyed by resource id."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    data_stores: dict[str, DataStoreRecord] = Field(default_factory=dict, alias="dataStores")
    engines: dict[str, EngineRecord] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.data_stores and not self.engines


def load_state(state_path: Path) -> ResourceState:
    """Load state from a JSON file; a missing file is an empty state.

    Raises:
        StateError: If the file is too large, unreadable or invalid.
    """
    if not state_path.exists():
        logger.debug("No state file, starting empty", extra={"path": str(state_path)})
        return ResourceState()

    try:
        file_size = state_path.stat().st_size
    except OSError as e:
        raise StateError(f"Failed to stat state file {state_path}: {e}") from e

    if file_size > MAX_STATE_FILE_SIZE_BYTES:
        raise StateError(
            f"State file exceeds maximum size of {MAX_STATE_FILE_SIZE_BYTES} bytes: {state_path}"
        )

    try:
        content = state_path.read_text(encoding="utf-8")
    except OSError as e:
        raise StateError(f"Failed to read state file {state_path}: {e}") from e

    if not content.strip():
        return ResourceState()

    try:
        return ResourceState.model_validate_json(content)
    except ValidationError as e:
        raise StateError(f"Invalid state file {state_path}: {e}") from e


def save_state(state: ResourceState, state_path: Path) -> None:
    """Write state atomically: temp file in the same directory, then replace.

    Raises:
        StateError: If the file cannot be written.
    """
    content = state.model_dump_json(by_alias=True, indent=2)
    directory = state_path.parent if str(state_path.parent) else Path(".")

    try:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{state_path.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.write("\n")
            os.replace(tmp_name, state_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise StateError(f"Failed to write state file {state_path}: {e}") from e

    logger.info(
        "State saved",
        extra={
            "path": str(state_path),
            "data_stores": len(state.data_stores),
            "engines": len(state.engines),
        },
    )
