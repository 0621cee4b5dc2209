# knowledge_sdk/graph/cypher_builder.py
# SPDX-License-Identifier: Apache-2.0
"""
openCypher query assembly for feature-service queries.

Clause order is fixed:

    match <pattern> [where (<filter>) and <spatial> | where <filter> | where <spatial>] return <ns> [order by ..] [limit N]

`FeatureQuery` is the parsed form of the recognized query parameters; raw
request mappings go through `FeatureQuery.from_params`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from knowledge_sdk.graph.graph_base import (
    OBJECTID_PROPERTY,
    ROLE_ORIGIN,
    FilterParseError,
    RelationshipDescriptor,
    SpatialFilterError,
)
from knowledge_sdk.graph.spatial import build_spatial_clause
from knowledge_sdk.graph.sql_translation import translate_where

LOG = logging.getLogger(__name__)

SPATIAL_POLICIES = ("skip", "raise")


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def _object_ids(value: Any) -> Tuple[int, ...]:
    if value is None or value == "":
        return ()
    parts = value if isinstance(value, (list, tuple)) else str(value).split(",")
    try:
        return tuple(int(str(p).strip()) for p in parts if str(p).strip())
    except ValueError as e:
        raise FilterParseError(f"objectIds must be integers: {value!r}") from e


def _count(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        count = int(str(value).strip())
    except ValueError as e:
        raise FilterParseError(f"resultRecordCount must be an integer: {value!r}") from e
    if count < 0:
        raise FilterParseError(f"resultRecordCount must be non-negative: {count}")
    return count


@dataclass(frozen=True)
class FeatureQuery:
    """Recognized feature-service query parameters."""
    where: Optional[str] = None
    object_ids: Tuple[int, ...] = ()
    geometry: Any = None
    geometry_type: Optional[str] = None
    in_sr: Any = None
    spatial_rel: Optional[str] = None
    return_ids_only: bool = False
    return_count_only: bool = False
    result_record_count: Optional[int] = None
    relationship_id: Optional[str] = None

    @classmethod
    def from_params(cls, params: Optional[Mapping[str, Any]]) -> "FeatureQuery":
        params = params or {}
        rel = params.get("relationshipId")
        return cls(
            where=params.get("where"),
            object_ids=_object_ids(params.get("objectIds")),
            geometry=params.get("geometry") or None,
            geometry_type=params.get("geometryType"),
            in_sr=params.get("inSR"),
            spatial_rel=params.get("spatialRel") or None,
            return_ids_only=_flag(params.get("returnIdsOnly", False)),
            return_count_only=_flag(params.get("returnCountOnly", False)),
            result_record_count=_count(params.get("resultRecordCount")),
            relationship_id=None if rel in (None, "") else str(rel),
        )


def _filter_clauses(
    query: FeatureQuery,
    *,
    geometry_field: Optional[str],
    spatial_filter_errors: str,
) -> str:
    where = translate_where(query.where, query.object_ids, namespace="n")
    spatial = None
    if query.geometry is not None:
        try:
            spatial = build_spatial_clause(
                query.geometry,
                geometry_field=geometry_field,
                in_sr=query.in_sr,
                spatial_rel=query.spatial_rel,
            )
        except SpatialFilterError as e:
            if spatial_filter_errors == "raise":
                raise
            LOG.warning("spatial filter dropped: %s", e.message)

    if where and spatial:
        # the spatial predicate applies to every OR alternative of the filter
        return f"where ({where}) and {spatial} "
    if where or spatial:
        return f"where {where or spatial} "
    return ""


def _return_clause(query: FeatureQuery, namespaces: Tuple[str, ...], count_of: str) -> str:
    if query.return_count_only:
        return f"return count({count_of})"
    if query.return_ids_only:
        return "return " + ", ".join(f"{ns}.{OBJECTID_PROPERTY}" for ns in namespaces)
    return "return " + ", ".join(namespaces)


def _limit(query: FeatureQuery) -> str:
    return f" limit {query.result_record_count}" if query.result_record_count is not None else ""


def build_entity_query(
    entity_name: str,
    query: FeatureQuery,
    *,
    geometry_field: Optional[str] = None,
    spatial_filter_errors: str = "skip",
) -> str:
    """
    Cypher for a layer query against one entity type.

    >>> build_entity_query("Well", FeatureQuery(return_ids_only=True))
    'match (n:Well) return n.objectid'
    """
    cypher = f"match (n:{entity_name}) "
    cypher += _filter_clauses(query, geometry_field=geometry_field, spatial_filter_errors=spatial_filter_errors)
    cypher += _return_clause(query, ("n",), "n")
    if not query.return_count_only:
        cypher += _limit(query)
    LOG.debug("cypher: %s", cypher)
    return cypher


def relationship_pattern(entity_name: str, related_name: str, descriptor: RelationshipDescriptor) -> str:
    if descriptor.role == ROLE_ORIGIN:
        return f"(n:{entity_name})-[r:{descriptor.name}]->(m:{related_name})"
    return f"(n:{entity_name})<-[r:{descriptor.name}]-(m:{related_name})"


def build_relationship_query(
    entity_name: str,
    related_name: str,
    descriptor: RelationshipDescriptor,
    query: FeatureQuery,
    *,
    geometry_field: Optional[str] = None,
    spatial_filter_errors: str = "skip",
) -> str:
    """
    Cypher for related records: filters apply to `n`, related rows come back
    as `m`, ordered by `n.objectid` so consecutive rows can be grouped.
    """
    cypher = f"match {relationship_pattern(entity_name, related_name, descriptor)} "
    cypher += _filter_clauses(query, geometry_field=geometry_field, spatial_filter_errors=spatial_filter_errors)
    cypher += _return_clause(query, ("n", "m"), "m")
    if not query.return_count_only:
        cypher += f" order by n.{OBJECTID_PROPERTY}"
        cypher += _limit(query)
    LOG.debug("cypher: %s", cypher)
    return cypher


__all__ = [
    "SPATIAL_POLICIES",
    "FeatureQuery",
    "build_entity_query",
    "build_relationship_query",
    "relationship_pattern",
]
