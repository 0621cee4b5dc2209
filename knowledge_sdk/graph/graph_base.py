# knowledge_sdk/graph/graph_base.py
# SPDX-License-Identifier: Apache-2.0
"""
Knowledge Graph Feature Service SDK — core types

Purpose
-------
Shared, dependency-free building blocks for the knowledge-graph bridge:

- Schema types (data model, entity types, properties, relationship types)
- Derived feature-service metadata (layers / tables / relationship descriptors)
- Per-response quantization parameters
- Normalized error taxonomy (machine-actionable codes, SIEM-safe details)
- Operation context and metrics hooks

Design Philosophy
-----------------
- Schema types are plain frozen dataclasses decoupled from the wire messages;
  the codec converts once, everything downstream works on these.
- Layer metadata is an index-based arena: layers and tables live in one flat
  list addressed by integer id, relationship descriptors hold integer ids and
  never object references.
- Errors always carry a stable UPPER_SNAKE_CASE code so handlers can classify
  them without isinstance ladders.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

KNOWLEDGE_PROTOCOL_VERSION = "1.0.0"

OBJECTID_PROPERTY = "objectid"
ID_FIELD = "OBJECTID"
GEOMETRY_FIELD_TYPE = "esriFieldTypeGeometry"

ROLE_ORIGIN = "esriRelRoleOrigin"
ROLE_DESTINATION = "esriRelRoleDestination"

# Fixed full-world extent reported for every layer ([[xmin, ymin], [xmax, ymax]]).
WORLD_EXTENT: Tuple[Tuple[float, float], Tuple[float, float]] = ((-180.0, -90.0), (180.0, 90.0))

_GEOMETRY_TYPES = {
    "esriGeometryTypePolygon": "Polygon",
    "esriGeometryTypePolyline": "LineString",
    "esriGeometryTypeMultipoint": "MultiPoint",
}


def geometry_type_for(geometry_tag: Optional[str]) -> str:
    """
    Classify a schema geometry tag into a GeoJSON geometry type.

    Point is the default: the wire format omits the tag for points because it
    is the zero value of the enum.
    """
    return _GEOMETRY_TYPES.get(geometry_tag or "", "Point")


def presentation_name(name: str) -> str:
    """Public field name for a graph property (only `objectid` is renamed)."""
    return ID_FIELD if name == OBJECTID_PROPERTY else name


# =============================================================================
# Schema types
# =============================================================================

@dataclass(frozen=True)
class Property:
    """
    A single property declared on an entity type.

    Attributes:
        name: Graph property name (lower-case `objectid` for the id field).
        alias: Display alias.
        field_type: Field type tag, e.g. "esriFieldTypeInteger".
        geometry_type: Geometry type tag for geometry fields, else None.
    """
    name: str
    alias: str = ""
    field_type: str = "esriFieldTypeString"
    geometry_type: Optional[str] = None

    @property
    def is_geometry(self) -> bool:
        return self.field_type == GEOMETRY_FIELD_TYPE


@dataclass(frozen=True)
class EntityType:
    """An entity (node) type and its ordered properties."""
    name: str
    alias: str = ""
    properties: Tuple[Property, ...] = ()

    def get_property(self, name: str) -> Optional[Property]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    @property
    def geometry_property(self) -> Optional[Property]:
        for prop in self.properties:
            if prop.is_geometry:
                return prop
        return None


@dataclass(frozen=True)
class RelationshipType:
    """
    A relationship (edge) type as declared by the data model.

    Attributes:
        name: Relationship type name (the Cypher edge label).
        origin_entity_types: Entity names allowed at the origin end.
        dest_entity_types: Entity names allowed at the destination end.
        cardinality: Cardinality tag, e.g. "esriRelCardinalityOneToMany".
        properties: Properties declared on the relationship itself.
    """
    name: str
    origin_entity_types: Tuple[str, ...] = ()
    dest_entity_types: Tuple[str, ...] = ()
    cardinality: str = "esriRelCardinalityOneToMany"
    properties: Tuple[Property, ...] = ()


@dataclass(frozen=True)
class DataModel:
    """Root schema object returned by the data model endpoint."""
    entity_types: Tuple[EntityType, ...] = ()
    relationship_types: Tuple[RelationshipType, ...] = ()
    objectid_property: str = OBJECTID_PROPERTY
    globalid_property: str = ""
    spatial_reference: Optional[int] = None


# =============================================================================
# Feature-service metadata (index-based arena)
# =============================================================================

@dataclass(frozen=True)
class RelationshipDescriptor:
    """
    One side of a relationship as seen from a layer.

    Both sides of the same (relationship type, origin, destination) triple
    share `id`; `related_table_id` always resolves inside the same arena.
    """
    id: int
    name: str
    related_table_id: int
    role: str
    cardinality: str

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "relatedTableId": self.related_table_id,
            "cardinality": self.cardinality,
            "role": self.role,
            "keyField": ID_FIELD,
        }


@dataclass(frozen=True)
class LayerMetadata:
    """
    Feature-service view of an entity type.

    Attributes:
        id: Stable integer id (geometry layers first, then tables).
        entity: The underlying entity type.
        geometry_type: "Polygon" / "LineString" / "Point" / "MultiPoint" or None
                       for tables.
        relationships: Relationship descriptors attached to this layer.
    """
    id: int
    entity: EntityType
    geometry_type: Optional[str] = None
    relationships: Tuple[RelationshipDescriptor, ...] = ()

    @property
    def name(self) -> str:
        return self.entity.name

    @property
    def is_table(self) -> bool:
        return self.geometry_type is None

    @property
    def geometry_field(self) -> Optional[str]:
        prop = self.entity.geometry_property
        return prop.name if prop else None

    def relationship(self, relationship_id: int) -> Optional[RelationshipDescriptor]:
        for rel in self.relationships:
            if rel.id == relationship_id:
                return rel
        return None

    def fields(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": presentation_name(p.name),
                "alias": p.alias,
                "type": p.field_type.replace("esriFieldType", ""),
            }
            for p in self.entity.properties
        ]

    def to_feature_collection(self) -> Dict[str, Any]:
        """Layer info shape expected by feature-service consumers."""
        return {
            "type": "FeatureCollection",
            "features": [],
            "metadata": {
                "id": self.id,
                "name": self.name,
                "description": self.name,
                "extent": [list(WORLD_EXTENT[0]), list(WORLD_EXTENT[1])],
                "fields": self.fields(),
                "geometryType": self.geometry_type,
                "idField": ID_FIELD,
                "relationships": [r.to_metadata() for r in self.relationships],
            },
        }


@dataclass(frozen=True)
class TransformParams:
    """
    Affine quantization parameters delivered with a single query response.

    Never cached or reused across responses.
    """
    x_scale: float = 1.0
    y_scale: float = 1.0
    x_translate: float = 0.0
    y_translate: float = 0.0

    @classmethod
    def from_mapping(cls, obj: Optional[Mapping[str, Any]]) -> Optional["TransformParams"]:
        """Build from `{scale: {x, y}, translate: {x, y}}` (or *Scale/*Translate keys)."""
        if not obj:
            return None
        scale = obj.get("scale") or {}
        translate = obj.get("translate") or {}
        return cls(
            x_scale=float(scale.get("x", scale.get("xScale", 1.0))),
            y_scale=float(scale.get("y", scale.get("yScale", 1.0))),
            x_translate=float(translate.get("x", translate.get("xTranslate", 0.0))),
            y_translate=float(translate.get("y", translate.get("yTranslate", 0.0))),
        )


# =============================================================================
# Decoded query values
# =============================================================================

@dataclass(frozen=True)
class GeometryRecord:
    """
    Raw geometry as delivered by the service.

    Attributes:
        geometry_type: Geometry type tag, e.g. "esriGeometryTypePolygon".
        coords: Flat delta-encoded quantized coordinates.
        lengths: Point count per part (may be empty for single-part shapes).
    """
    geometry_type: str
    coords: Tuple[int, ...] = ()
    lengths: Tuple[int, ...] = ()


@dataclass(frozen=True)
class EntityRecord:
    """A decoded entity value; `properties` hold decoded primitives."""
    type_name: str
    properties: Mapping[str, Any] = field(default_factory=dict)
    id: Any = None


@dataclass(frozen=True)
class RelationshipRecord:
    """A decoded relationship value."""
    type_name: str
    properties: Mapping[str, Any] = field(default_factory=dict)
    id: Any = None
    origin_id: Any = None
    destination_id: Any = None


@dataclass(frozen=True)
class PathRecord:
    """A decoded path: alternating entities and relationships."""
    entities: Tuple[EntityRecord, ...] = ()
    relationships: Tuple[RelationshipRecord, ...] = ()


# =============================================================================
# Normalized Errors
# =============================================================================

class KnowledgeGraphError(Exception):
    """
    Base exception for knowledge-graph bridge errors.

    Attributes:
        message: Human-readable description.
        code: Machine-readable, UPPER_SNAKE_CASE error code.
        retry_after_ms: Suggested client backoff (if applicable).
        details: Additional, SIEM-safe machine context (no tokens).
    """
    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retry_after_ms = retry_after_ms
        self.details = dict(details or {})

    def __str__(self) -> str:
        base = self.message or self.__class__.__name__
        if self.code:
            base += f" [code={self.code}]"
        if self.retry_after_ms is not None:
            base += f" retry_after_ms={self.retry_after_ms}"
        if self.details:
            base += f" details={self.details}"
        return base


class SchemaFetchError(KnowledgeGraphError):
    """Data model retrieval failed or returned an error payload."""
    def __init__(self, message: str, **kw: Any):
        kw.setdefault("code", "SCHEMA_FETCH_ERROR")
        super().__init__(message, **kw)


class TransportError(KnowledgeGraphError):
    """Network-level failure talking to the knowledge graph service."""
    def __init__(self, message: str, **kw: Any):
        kw.setdefault("code", "TRANSPORT_ERROR")
        super().__init__(message, **kw)


class DecodeError(KnowledgeGraphError):
    """Malformed binary payload."""
    def __init__(self, message: str, **kw: Any):
        kw.setdefault("code", "DECODE_ERROR")
        super().__init__(message, **kw)


class InvalidLayerId(KnowledgeGraphError):
    """Unparseable or out-of-range layer reference."""
    def __init__(self, message: str, **kw: Any):
        kw.setdefault("code", "INVALID_LAYER_ID")
        super().__init__(message, **kw)


class InvalidRelationshipId(KnowledgeGraphError):
    """Relationship id missing, unparseable, or not attached to the layer."""
    def __init__(self, message: str, **kw: Any):
        kw.setdefault("code", "INVALID_RELATIONSHIP_ID")
        super().__init__(message, **kw)


class FilterParseError(KnowledgeGraphError):
    """Malformed SQL filter expression."""
    def __init__(self, message: str, **kw: Any):
        kw.setdefault("code", "FILTER_PARSE_ERROR")
        super().__init__(message, **kw)


class SpatialFilterError(FilterParseError):
    """Spatial filter could not be normalized into a predicate."""
    def __init__(self, message: str, **kw: Any):
        kw.setdefault("code", "SPATIAL_FILTER_ERROR")
        super().__init__(message, **kw)


class GraphQueryError(KnowledgeGraphError):
    """Server-reported error embedded in a query response."""
    def __init__(self, message: str, **kw: Any):
        kw.setdefault("code", "GRAPH_QUERY_ERROR")
        super().__init__(message, **kw)


class EditsError(KnowledgeGraphError):
    """Failure decoding the result of an edit submission."""
    def __init__(self, message: str, **kw: Any):
        kw.setdefault("code", "EDITS_ERROR")
        super().__init__(message, **kw)


class ServiceNotFound(KnowledgeGraphError):
    """Unknown service identifier."""
    def __init__(self, message: str, **kw: Any):
        kw.setdefault("code", "SERVICE_NOT_FOUND")
        super().__init__(message, **kw)


# =============================================================================
# Context + Metrics
# =============================================================================

@dataclass(frozen=True)
class OperationContext:
    """
    Per-request context.

    Attributes:
        request_id: Correlation ID for tracing.
        token: Caller-supplied token; overrides the server's configured token
               (never logged).
    """
    request_id: Optional[str] = None
    token: Optional[str] = None


class MetricsSink(Protocol):
    """
    Metrics collection protocol (low-cardinality; SIEM-safe).
    """
    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        ...

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        ...


class NoopMetrics:
    def observe(self, **_: Any) -> None:
        ...
    def counter(self, **_: Any) -> None:
        ...


def elapsed_ms(t0: float) -> float:
    return (time.monotonic() - t0) * 1000.0


__all__ = [
    "KNOWLEDGE_PROTOCOL_VERSION",
    "OBJECTID_PROPERTY",
    "ID_FIELD",
    "GEOMETRY_FIELD_TYPE",
    "ROLE_ORIGIN",
    "ROLE_DESTINATION",
    "WORLD_EXTENT",
    "geometry_type_for",
    "presentation_name",
    "Property",
    "EntityType",
    "RelationshipType",
    "DataModel",
    "RelationshipDescriptor",
    "LayerMetadata",
    "TransformParams",
    "GeometryRecord",
    "EntityRecord",
    "RelationshipRecord",
    "PathRecord",
    "KnowledgeGraphError",
    "SchemaFetchError",
    "TransportError",
    "DecodeError",
    "InvalidLayerId",
    "InvalidRelationshipId",
    "FilterParseError",
    "SpatialFilterError",
    "GraphQueryError",
    "EditsError",
    "ServiceNotFound",
    "OperationContext",
    "MetricsSink",
    "NoopMetrics",
    "elapsed_ms",
]
