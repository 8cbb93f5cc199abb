"""Deterministic resource names.

Resource identity is a pure function of {project, location, collection, id}.
Names are never taken from create responses.

Resource names follow the pattern:
projects/{project}/locations/{location}/collections/{collection}/{kind}/{id}
"""

from __future__ import annotations

DATA_STORES_SEGMENT = "dataStores"
ENGINES_SEGMENT = "engines"
DEFAULT_BRANCH = "default_branch"
DEFAULT_SCHEMA = "default_schema"


def location_path(project_id: str, location: str) -> str:
    """``projects/{p}/locations/{l}``."""
    return f"projects/{project_id}/locations/{location}"


def collection_path(project_id: str, location: str, collection: str) -> str:
    """``projects/{p}/locations/{l}/collections/{c}``."""
    return f"{location_path(project_id, location)}/collections/{collection}"


def data_store_name(project_id: str, location: str, collection: str, data_store_id: str) -> str:
    """Full resource name of a data store."""
    return (
        f"{collection_path(project_id, location, collection)}"
        f"/{DATA_STORES_SEGMENT}/{data_store_id}"
    )


def engine_name(project_id: str, location: str, collection: str, engine_id: str) -> str:
    """Full resource name of an engine."""
    return f"{collection_path(project_id, location, collection)}/{ENGINES_SEGMENT}/{engine_id}"


def branch_name(data_store: str, branch: str = DEFAULT_BRANCH) -> str:
    """Branch under a data store; imports target the default branch."""
    return f"{data_store}/branches/{branch}"


def schema_name(data_store: str, schema: str = DEFAULT_SCHEMA) -> str:
    """Schema under a data store."""
    return f"{data_store}/schemas/{schema}"


def resource_id(name: str) -> str:
    """Last segment of a resource name (``.../dataStores/ds1`` -> ``ds1``)."""
    return name.rstrip("/").rsplit("/", 1)[-1]
