"""Catalog data model plus report and outcome models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .values import ResourceRef, decode_value, encode_value, normalize_type


class RelationshipKind(str, Enum):
    REQUIRE = "require"
    BEFORE = "before"
    NOTIFY = "notify"
    SUBSCRIBE = "subscribe"

    @property
    def refreshes(self) -> bool:
        return self in (RelationshipKind.NOTIFY, RelationshipKind.SUBSCRIBE)

    @property
    def points_forward(self) -> bool:
        # before/notify on X name the resources that run after X
        return self in (RelationshipKind.BEFORE, RelationshipKind.NOTIFY)


METAPARAMETERS = {kind.value: kind for kind in RelationshipKind}


@dataclass(frozen=True)
class Resource:
    type: str
    title: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", normalize_type(self.type))

    @property
    def ref(self) -> str:
        return f"{self.type}[{self.title}]"

    def parameter(self, name: str, default: Any = None) -> Any:
        return self.parameters.get(name, default)


@dataclass(frozen=True)
class Relationship:
    before: str
    after: str
    kind: RelationshipKind = RelationshipKind.REQUIRE


class FileMetadata(BaseModel):
    path: str
    checksum: str
    source: Optional[str] = None
    content_uri: Optional[str] = None
    ftype: str = "file"


@dataclass(frozen=True)
class Catalog:
    name: str
    environment: str
    version: Optional[str] = None
    resources: tuple[Resource, ...] = ()
    relationships: tuple[Relationship, ...] = ()
    metadata: dict[str, FileMetadata] = field(default_factory=dict)
    code_id: Optional[str] = None

    def resource_refs(self) -> list[str]:
        return [resource.ref for resource in self.resources]

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Catalog":
        resources = tuple(
            Resource(
                type=str(entry["type"]),
                title=str(entry["title"]),
                parameters=decode_value(entry.get("parameters") or {}),
            )
            for entry in document.get("resources", [])
        )
        relationships = tuple(
            Relationship(
                before=ResourceRef.parse(str(edge["source"])).ref,
                after=ResourceRef.parse(str(edge["target"])).ref,
                kind=RelationshipKind(edge.get("kind", RelationshipKind.REQUIRE.value)),
            )
            for edge in document.get("edges", [])
        )
        metadata = {
            str(path): FileMetadata(**payload) for path, payload in (document.get("metadata") or {}).items()
        }
        version = document.get("version")
        return cls(
            name=str(document["name"]),
            environment=str(document["environment"]),
            version=None if version is None else str(version),
            resources=resources,
            relationships=relationships,
            metadata=metadata,
            code_id=document.get("code_id"),
        )

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "name": self.name,
            "environment": self.environment,
            "resources": [
                {"type": resource.type, "title": resource.title, "parameters": encode_value(resource.parameters)}
                for resource in self.resources
            ],
            "edges": [
                {"source": rel.before, "target": rel.after, "kind": rel.kind.value} for rel in self.relationships
            ],
        }
        if self.version is not None:
            document["version"] = self.version
        if self.code_id is not None:
            document["code_id"] = self.code_id
        if self.metadata:
            document["metadata"] = {
                path: meta.model_dump(mode="json", exclude_none=True) for path, meta in self.metadata.items()
            }
        return document


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatusState(str, Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    FAILED = "failed"


class RunOutcome(str, Enum):
    NO_CHANGES = "NoChanges"
    APPLIED_WITH_CHANGES = "AppliedWithChanges"
    FAILED = "Failed"
    LOCK_CONTENTION = "LockContention"
    TRANSPORT_OR_TRUST_FAILURE = "TransportOrTrustFailure"


class CachedCatalogStatus(str, Enum):
    NOT_USED = "not_used"
    EXPLICITLY_REQUESTED = "explicitly_requested"
    ON_FAILURE = "on_failure"


class EventStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    REFRESH = "refresh"


class ReportEvent(BaseModel):
    resource: str
    status: EventStatus
    message: str
    property: Optional[str] = None
    previous_value: Optional[str] = None
    desired_value: Optional[str] = None
    sensitive: bool = False


class ReportMetrics(BaseModel):
    resources_total: int = 0
    changed: int = 0
    failed: int = 0
    skipped: int = 0
    refreshed: int = 0
    events_total: int = 0


class Report(BaseModel):
    host: str
    environment: str
    transaction_uuid: str
    status: RunStatusState
    time: datetime
    configuration_version: Optional[str] = None
    server_used: Optional[str] = None
    cached_catalog_status: CachedCatalogStatus = CachedCatalogStatus.NOT_USED
    events: list[ReportEvent] = Field(default_factory=list)
    metrics: ReportMetrics = Field(default_factory=ReportMetrics)
    logs: list[str] = Field(default_factory=list)


class RunSummary(BaseModel):
    environment: str
    status: RunStatusState
    time: datetime
    configuration_version: Optional[str] = None
    server_used: Optional[str] = None
