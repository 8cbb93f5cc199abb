"""Manifest file loading with validation.

SECURITY: Manifest files are size-checked before reading. Input validation
is performed at the boundary; nothing past this module sees unvalidated data.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_MANIFEST_FILE_SIZE_BYTES
from .models import ResourceManifest

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when manifest loading or validation fails."""

    pass


def format_validation_error(error: ValidationError) -> str:
    """Format pydantic validation errors as an indented list."""
    lines = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        lines.append(f"  - {loc}: {item['msg']}")
    return "\n".join(lines)


def load_manifest(manifest_path: Path) -> ResourceManifest:
    """Load and validate a resource manifest from YAML.

    The file holds either the manifest itself or a wrapper with
    ``apiVersion``/``kind``/``spec`` whose ``spec`` is the manifest.

    Args:
        manifest_path: Path to the YAML manifest.

    Returns:
        Validated manifest.

    Raises:
        SpecLoadError: If the manifest cannot be loaded or fails validation.
    """
    if not manifest_path.exists():
        raise SpecLoadError(f"Manifest file not found: {manifest_path}")

    try:
        file_size = manifest_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat manifest file {manifest_path}: {e}") from e

    if file_size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Manifest file exceeds maximum size of {MAX_MANIFEST_FILE_SIZE_BYTES} bytes: "
            f"{manifest_path}"
        )

    try:
        content = manifest_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read manifest file {manifest_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {manifest_path}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Manifest file must contain a YAML mapping: {manifest_path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        manifest_data = raw_data.get("spec") or {}
        if not isinstance(manifest_data, dict):
            raise SpecLoadError(f"Spec section must be a mapping: {manifest_path}")
    else:
        manifest_data = raw_data

    try:
        manifest = ResourceManifest.model_validate(manifest_data)
    except ValidationError as e:
        raise SpecLoadError(
            f"Validation failed for {manifest_path}:\n{format_validation_error(e)}"
        ) from e

    # Dangling references are legal; the engine is created with them as-is
    for engine_id, missing in manifest.undeclared_references().items():
        logger.warning(
            "Engine references undeclared data stores",
            extra={"engine_id": engine_id, "data_store_ids": missing},
        )

    logger.info(
        "Loaded manifest from %s",
        manifest_path,
        extra={
            "data_stores": len(manifest.data_stores),
            "engines": len(manifest.engines),
        },
    )
    return manifest
