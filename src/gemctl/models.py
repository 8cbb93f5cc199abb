"""Pydantic models for remote resources, outcomes and declared state.

These models provide:
1. The internal shape of engines, data stores, documents and operations,
   independent of the wire messages they are converted from
2. Result objects through which create/delete outcomes are reported
3. Declared resource records, validated at the boundary
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import (
    DEFAULT_SEARCH_TIER,
    VALID_DATA_SCHEMAS,
    VALID_RECONCILIATION_MODES,
    VALID_RESOURCE_ID_PATTERN,
)

# =============================================================================
# Remote Resources
# =============================================================================


class ResourceModel(BaseModel):
    """Base for remote resource projections.

    Fields use snake_case in Python and camelCase in JSON output, matching the
    API's own field names.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}


class SearchEngineConfig(ResourceModel):
    """Search tier and add-ons of a search engine."""

    search_tier: str = Field("", alias="searchTier")
    search_add_ons: list[str] = Field(default_factory=list, alias="searchAddOns")


class Engine(ResourceModel):
    """A named, addressable search configuration."""

    name: str
    display_name: str = Field("", alias="displayName")
    solution_type: str = Field("", alias="solutionType")
    industry_vertical: str = Field("", alias="industryVertical")
    app_type: str = Field("", alias="appType")
    create_time: str = Field("", alias="createTime")
    data_store_ids: list[str] = Field(default_factory=list, alias="dataStoreIds")
    search_engine_config: SearchEngineConfig | None = Field(None, alias="searchEngineConfig")
    common_config: dict[str, Any] = Field(default_factory=dict, alias="commonConfig")
    features: dict[str, str] = Field(default_factory=dict)

    @field_validator("data_store_ids")
    @classmethod
    def dedupe_data_store_ids(cls, v: list[str]) -> list[str]:
        # Ordered set: keep first occurrence
        return list(dict.fromkeys(v))


class BillingEstimation(ResourceModel):
    """Billing information of a data store."""

    unstructured_data_size: int = Field(0, alias="unstructuredDataSize")
    unstructured_data_update_time: str = Field("", alias="unstructuredDataUpdateTime")


class DataStore(ResourceModel):
    """A content container with an ingestion source."""

    name: str
    display_name: str = Field("", alias="displayName")
    industry_vertical: str = Field("", alias="industryVertical")
    content_config: str = Field("", alias="contentConfig")
    create_time: str = Field("", alias="createTime")
    solution_types: list[str] = Field(default_factory=list, alias="solutionTypes")
    acl_enabled: bool = Field(False, alias="aclEnabled")
    billing_estimation: BillingEstimation | None = Field(None, alias="billingEstimation")
    document_processing_config: dict[str, Any] = Field(
        default_factory=dict, alias="documentProcessingConfig"
    )
    # "schema" shadows a BaseModel attribute, hence the field name
    data_schema: dict[str, Any] | None = Field(None, alias="schema")


class Document(ResourceModel):
    """Read-only projection of an ingested document."""

    id: str
    content: dict[str, Any] = Field(default_factory=dict)
    index_time: str = Field("", alias="indexTime")


class OperationStatus(ResourceModel):
    """Error carried by a finished long-running operation."""

    code: int = 0
    message: str = ""


class Operation(ResourceModel):
    """Handle to an asynchronous remote task."""

    name: str
    done: bool = False
    error: OperationStatus | None = None
    response: dict[str, Any] = Field(default_factory=dict)

    @property
    def resource_name(self) -> str | None:
        """Resource name decoded from the response, if any."""
        name = self.response.get("name")
        return name or None


class EngineFullConfig(ResourceModel):
    """An engine together with the data stores it references."""

    engine: Engine
    data_stores: list[DataStore] = Field(default_factory=list, alias="dataStores")


# =============================================================================
# Outcomes
# =============================================================================


class ResultStatus(str, Enum):
    """Outcome tag of a create or delete."""

    SUCCESS = "success"
    ERROR = "error"


class CreateResult(BaseModel):
    """Terminal outcome of a create.

    An error result never carries a resource name, even though a resource
    may exist remotely (e.g., container created, import failed).
    """

    model_config = {"frozen": True}

    status: ResultStatus
    error: str | None = None
    engine_name: str | None = None
    data_store_name: str | None = None
    operation: Operation | None = None
    import_operation: Operation | None = None

    @model_validator(mode="after")
    def validate_outcome(self) -> CreateResult:
        if self.status == ResultStatus.ERROR:
            if self.engine_name or self.data_store_name:
                raise ValueError("an error result cannot carry a resource name")
            if not self.error:
                raise ValueError("an error result requires an error message")
        elif self.error:
            raise ValueError("a success result cannot carry an error message")
        return self

    @property
    def succeeded(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @classmethod
    def failure(cls, message: str) -> CreateResult:
        return cls(status=ResultStatus.ERROR, error=message)

    @classmethod
    def for_data_store(
        cls,
        name: str,
        *,
        operation: Operation | None = None,
        import_operation: Operation | None = None,
    ) -> CreateResult:
        return cls(
            status=ResultStatus.SUCCESS,
            data_store_name=name,
            operation=operation,
            import_operation=import_operation,
        )

    @classmethod
    def for_engine(cls, name: str, *, operation: Operation | None = None) -> CreateResult:
        return cls(status=ResultStatus.SUCCESS, engine_name=name, operation=operation)


class DeleteResult(BaseModel):
    """Terminal outcome of a delete."""

    model_config = {"frozen": True}

    status: ResultStatus
    message: str

    @property
    def succeeded(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @classmethod
    def success(cls, message: str) -> DeleteResult:
        return cls(status=ResultStatus.SUCCESS, message=message)

    @classmethod
    def failure(cls, message: str) -> DeleteResult:
        return cls(status=ResultStatus.ERROR, message=message)


# =============================================================================
# Declared Resources
# =============================================================================

ResourceId = Annotated[str, Field(pattern=VALID_RESOURCE_ID_PATTERN)]


class ResourceRecord(BaseModel):
    """Declared resource plus the state returned for persistence.

    ``name`` is filled in from the deterministic name after a successful
    create and is never part of the declared fields.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    id: ResourceId
    display_name: Annotated[str, Field(min_length=1, max_length=128, alias="displayName")]
    name: str | None = None

    def declared_fields(self) -> dict[str, Any]:
        """Fields that drive reconciliation; changes here trigger an update."""
        return self.model_dump(exclude={"name"})

    def differs_from(self, other: ResourceRecord) -> bool:
        """Whether the declared fields differ from another record."""
        return self.declared_fields() != other.declared_fields()


class DataStoreRecord(ResourceRecord):
    """Declared data store: ``{id, displayName, sourceUri}``."""

    source_uri: str = Field(alias="sourceUri")
    # None defers to the configured import defaults
    data_schema: str | None = Field(None, alias="dataSchema")
    reconciliation_mode: str | None = Field(None, alias="reconciliationMode")

    @field_validator("source_uri")
    @classmethod
    def validate_source_uri(cls, v: str) -> str:
        if not v.startswith("gs://") or len(v) <= len("gs://"):
            raise ValueError("sourceUri must be a Cloud Storage URI (gs://bucket/path)")
        return v

    @field_validator("data_schema")
    @classmethod
    def validate_data_schema(cls, v: str | None) -> str | None:
        if v is not None and v not in VALID_DATA_SCHEMAS:
            raise ValueError(f"dataSchema must be one of {sorted(VALID_DATA_SCHEMAS)}")
        return v

    @field_validator("reconciliation_mode")
    @classmethod
    def validate_reconciliation_mode(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.upper()
        if v not in VALID_RECONCILIATION_MODES:
            raise ValueError(
                f"reconciliationMode must be one of {sorted(VALID_RECONCILIATION_MODES)}"
            )
        return v


class EngineRecord(ResourceRecord):
    """Declared engine: ``{id, displayName, dataStoreIds}``."""

    data_store_ids: list[ResourceId] = Field(default_factory=list, alias="dataStoreIds")
    search_tier: str = Field(DEFAULT_SEARCH_TIER, alias="searchTier")

    @field_validator("data_store_ids")
    @classmethod
    def dedupe_data_store_ids(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @field_validator("search_tier")
    @classmethod
    def validate_search_tier(cls, v: str) -> str:
        valid_tiers = {"SEARCH_TIER_STANDARD", "SEARCH_TIER_ENTERPRISE"}
        if v not in valid_tiers:
            raise ValueError(f"searchTier must be one of {sorted(valid_tiers)}")
        return v


class ResourceManifest(BaseModel):
    """Desired state: the data stores and engines that should exist."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    data_stores: list[DataStoreRecord] = Field(default_factory=list, alias="dataStores")
    engines: list[EngineRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> ResourceManifest:
        for kind, records in (("data store", self.data_stores), ("engine", self.engines)):
            seen: set[str] = set()
            for record in records:
                if record.id in seen:
                    raise ValueError(f"duplicate {kind} id: {record.id}")
                seen.add(record.id)
        return self

    def undeclared_references(self) -> dict[str, list[str]]:
        """Engine references to data stores not declared in this manifest."""
        declared = {ds.id for ds in self.data_stores}
        dangling: dict[str, list[str]] = {}
        for engine in self.engines:
            missing = [ds_id for ds_id in engine.data_store_ids if ds_id not in declared]
            if missing:
                dangling[engine.id] = missing
        return dangling
