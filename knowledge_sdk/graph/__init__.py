# knowledge_sdk/graph/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Knowledge Graph bridge - Public API

Core types, errors, the query translator, the protocol codec and the
server facade are re-exported here for clean imports.
"""

from knowledge_sdk.graph.graph_base import (
    # Protocol version
    KNOWLEDGE_PROTOCOL_VERSION,
    ID_FIELD,

    # Schema types
    Property,
    EntityType,
    RelationshipType,
    DataModel,

    # Feature-service metadata
    RelationshipDescriptor,
    LayerMetadata,
    TransformParams,

    # Decoded values
    GeometryRecord,
    EntityRecord,
    RelationshipRecord,
    PathRecord,

    # Error types
    KnowledgeGraphError,
    SchemaFetchError,
    TransportError,
    DecodeError,
    InvalidLayerId,
    InvalidRelationshipId,
    FilterParseError,
    SpatialFilterError,
    GraphQueryError,
    EditsError,
    ServiceNotFound,

    # Context and metrics
    OperationContext,
    MetricsSink,
    NoopMetrics,
)

from knowledge_sdk.graph.cypher_builder import (
    FeatureQuery,
    build_entity_query,
    build_relationship_query,
)

from knowledge_sdk.graph.data_model import (
    SchemaCache,
    SchemaSnapshot,
    derive_layers,
)

from knowledge_sdk.graph.pbf_codec import (
    PbfClient,
    QueryResponse,
    EditsResult,
)

from knowledge_sdk.graph.knowledge_server import KnowledgeGraphServer

__all__ = [
    "KNOWLEDGE_PROTOCOL_VERSION",
    "ID_FIELD",
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
    "FeatureQuery",
    "build_entity_query",
    "build_relationship_query",
    "SchemaCache",
    "SchemaSnapshot",
    "derive_layers",
    "PbfClient",
    "QueryResponse",
    "EditsResult",
    "KnowledgeGraphServer",
]

__version__ = KNOWLEDGE_PROTOCOL_VERSION
