# knowledge_sdk/graph/geojson.py
# SPDX-License-Identifier: Apache-2.0
"""
Result assembly: decoded graph rows → GeoJSON.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from knowledge_sdk.graph.graph_base import (
    ID_FIELD,
    OBJECTID_PROPERTY,
    EntityRecord,
    GeometryRecord,
    TransformParams,
    presentation_name,
)
from knowledge_sdk.graph.quantization import dequantize

FILTERS_APPLIED = {"where": True, "geometry": True}

_IDENTITY = TransformParams()


def _split_parts(points: List[List[float]], lengths: Sequence[int]) -> List[List[List[float]]]:
    parts = []
    start = 0
    for size in lengths:
        parts.append(points[start:start + size])
        start += size
    return parts


def convert_geometry(record: GeometryRecord, transform: Optional[TransformParams]) -> Optional[Dict[str, Any]]:
    """
    Build a GeoJSON geometry from a quantized geometry record.

    Delta accumulation runs over the whole coordinate list; `lengths` with
    more than one entry splits the points into parts afterwards.
    """
    points = [[x, y] for x, y in dequantize(record.coords, transform or _IDENTITY)]
    multipart = len(record.lengths) > 1
    tag = record.geometry_type

    if tag == "esriGeometryTypePolygon":
        rings = _split_parts(points, record.lengths) if multipart else [points]
        return {"type": "Polygon", "coordinates": rings}
    if tag == "esriGeometryTypePolyline":
        if multipart:
            return {"type": "MultiLineString", "coordinates": _split_parts(points, record.lengths)}
        return {"type": "LineString", "coordinates": points}
    if tag == "esriGeometryTypeMultipoint":
        return {"type": "MultiPoint", "coordinates": points}
    if not points:
        return None
    return {"type": "Point", "coordinates": points[0]}


def _json_safe(value: Any) -> bool:
    return not isinstance(value, (bytes, bytearray, GeometryRecord))


def to_feature(value: Any, geometry_field: Optional[str], transform: Optional[TransformParams]) -> Dict[str, Any]:
    """One row value → Feature. Scalar values (id-only rows) become `{OBJECTID: v}`."""
    if not isinstance(value, EntityRecord):
        return {"type": "Feature", "properties": {ID_FIELD: value}, "geometry": None}

    properties = {
        presentation_name(key): val
        for key, val in value.properties.items()
        if key != geometry_field and _json_safe(val)
    }
    geometry = None
    shape = value.properties.get(geometry_field) if geometry_field else None
    if isinstance(shape, GeometryRecord):
        geometry = convert_geometry(shape, transform)
    return {"type": "Feature", "properties": properties, "geometry": geometry}


def decorate(collection: Dict[str, Any]) -> Dict[str, Any]:
    collection["metadata"] = {"idField": ID_FIELD}
    collection["filtersApplied"] = dict(FILTERS_APPLIED)
    return collection


def to_feature_collection(
    rows: Sequence[Sequence[Any]],
    geometry_field: Optional[str],
    transform: Optional[TransformParams],
) -> Dict[str, Any]:
    features = [to_feature(row[0], geometry_field, transform) for row in rows if row]
    return decorate({"type": "FeatureCollection", "features": features})


def _origin_id(value: Any) -> Any:
    if isinstance(value, EntityRecord):
        return value.properties.get(OBJECTID_PROPERTY)
    return value


def to_relationship_feature_collections(
    rows: Sequence[Sequence[Any]],
    geometry_field: Optional[str],
    transform: Optional[TransformParams],
) -> Dict[str, Any]:
    """
    Group rows `(origin, related)` into one child collection per origin id.

    Rows must already be ordered by origin id; a group ends whenever the id
    changes, nothing is re-sorted.
    """
    groups: List[Dict[str, Any]] = []
    current: Any = object()
    for row in rows:
        if len(row) < 2:
            continue
        origin = _origin_id(row[0])
        if not groups or origin != current:
            current = origin
            groups.append({
                "type": "FeatureCollection",
                "properties": {ID_FIELD: origin},
                "features": [],
            })
        groups[-1]["features"].append(to_feature(row[1], geometry_field, transform))
    return decorate({"type": "FeatureCollection", "features": groups})


def to_count_collection(rows: Sequence[Sequence[Any]]) -> Dict[str, Any]:
    """Count result: the single aggregate value, else the number of rows."""
    count = len(rows)
    if len(rows) == 1 and len(rows[0]) == 1:
        value = rows[0][0]
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            count = int(value)
    return decorate({"type": "FeatureCollection", "features": [], "count": count})


__all__ = [
    "FILTERS_APPLIED",
    "convert_geometry",
    "to_feature",
    "to_feature_collection",
    "to_relationship_feature_collections",
    "to_count_collection",
    "decorate",
]
