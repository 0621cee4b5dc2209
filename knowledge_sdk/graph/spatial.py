# knowledge_sdk/graph/spatial.py
# SPDX-License-Identifier: Apache-2.0
"""
Spatial filter normalization and predicate construction.

Inputs follow the feature-service query parameters:

- `geometry`: "x,y", "xmin,ymin,xmax,ymax", a JSON object string, or a dict
  with `x`/`y` or `xmin`/`ymin`/`xmax`/`ymax` (optionally `spatialReference`)
- `inSR`: wkid as int / numeric string / `{"wkid": ...}`
- `spatialRel`: esriSpatialRelIntersects (default) or esriSpatialRelContains

Web Mercator input is reprojected to WGS84 and rounded to 6 decimals.
Envelopes spanning a hemisphere or more are split into equal-width pieces
(2 for [180, 360), 4 for >= 360) and the predicates are OR-ed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Mapping, Optional, Tuple, Union

from pyproj import Transformer
from pyproj.exceptions import ProjError

from knowledge_sdk.graph.graph_base import SpatialFilterError

LOG = logging.getLogger(__name__)

WEB_MERCATOR_WKIDS = frozenset({102100, 102113, 900913, 3857})
GEOGRAPHIC_WKID = 4326
COORDINATE_PRECISION = 6

SPATIAL_FUNCTIONS = {
    "esriSpatialRelIntersects": "esri.graph.ST_Intersects",
    "esriSpatialRelContains": "esri.graph.ST_Contains",
}
DEFAULT_SPATIAL_REL = "esriSpatialRelIntersects"


@dataclass(frozen=True)
class Envelope:
    xmin: float
    ymin: float
    xmax: float
    ymax: float

    @property
    def width(self) -> float:
        return self.xmax - self.xmin

    def to_wkt(self) -> str:
        x0, y0, x1, y1 = (format_coordinate(v) for v in (self.xmin, self.ymin, self.xmax, self.ymax))
        return f"POLYGON(({x0} {y0}, {x1} {y0}, {x1} {y1}, {x0} {y1}, {x0} {y0}))"


@dataclass(frozen=True)
class PointGeometry:
    x: float
    y: float

    def to_wkt(self) -> str:
        return f"POINT({format_coordinate(self.x)} {format_coordinate(self.y)})"


SpatialFilter = Union[Envelope, PointGeometry]


def format_coordinate(value: float) -> str:
    """Fixed-point text with no exponent and no trailing zeros."""
    text = f"{value:.{COORDINATE_PRECISION}f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


@lru_cache(maxsize=None)
def _to_geographic() -> Transformer:
    return Transformer.from_crs(3857, GEOGRAPHIC_WKID, always_xy=True)


def parse_wkid(in_sr: Any) -> Optional[int]:
    if in_sr is None or in_sr == "":
        return None
    if isinstance(in_sr, Mapping):
        in_sr = in_sr.get("latestWkid", in_sr.get("wkid"))
        return parse_wkid(in_sr)
    if isinstance(in_sr, str) and in_sr.strip().startswith("{"):
        try:
            return parse_wkid(json.loads(in_sr))
        except ValueError as e:
            raise SpatialFilterError(f"invalid inSR {in_sr!r}") from e
    try:
        return int(str(in_sr).strip())
    except ValueError as e:
        raise SpatialFilterError(f"invalid inSR {in_sr!r}") from e


def _coerce(geometry: Any) -> Tuple[Union[List[float], Mapping[str, Any]], Optional[int]]:
    if isinstance(geometry, Mapping):
        return geometry, parse_wkid(geometry.get("spatialReference"))
    text = str(geometry).strip()
    if text.startswith("{"):
        try:
            obj = json.loads(text)
        except ValueError as e:
            raise SpatialFilterError("geometry is not valid JSON") from e
        if not isinstance(obj, Mapping):
            raise SpatialFilterError("geometry JSON must be an object")
        return obj, parse_wkid(obj.get("spatialReference"))
    try:
        return [float(part) for part in text.split(",")], None
    except ValueError as e:
        raise SpatialFilterError(f"invalid geometry {text!r}") from e


def normalize_geometry(geometry: Any, in_sr: Any = None) -> SpatialFilter:
    """
    Normalize a geometry parameter into an `Envelope` or `PointGeometry`
    in geographic coordinates.
    """
    if geometry is None or geometry == "":
        raise SpatialFilterError("empty geometry")
    value, embedded_wkid = _coerce(geometry)
    wkid = parse_wkid(in_sr) or embedded_wkid

    shape: SpatialFilter
    if isinstance(value, list):
        if len(value) == 2:
            shape = PointGeometry(value[0], value[1])
        elif len(value) == 4:
            shape = Envelope(*value)
        else:
            raise SpatialFilterError(f"expected 2 or 4 coordinates, got {len(value)}")
    else:
        try:
            if all(k in value for k in ("xmin", "ymin", "xmax", "ymax")):
                shape = Envelope(
                    float(value["xmin"]), float(value["ymin"]),
                    float(value["xmax"]), float(value["ymax"]),
                )
            elif "x" in value and "y" in value:
                shape = PointGeometry(float(value["x"]), float(value["y"]))
            else:
                raise SpatialFilterError("unsupported geometry object (need an envelope or point)")
        except (TypeError, ValueError) as e:
            raise SpatialFilterError("geometry has non-numeric coordinates") from e

    if wkid in WEB_MERCATOR_WKIDS:
        shape = reproject(shape)
    return shape


def _project(x: float, y: float) -> Tuple[float, float]:
    try:
        lon, lat = _to_geographic().transform(x, y)
    except ProjError as e:
        raise SpatialFilterError("could not reproject geometry") from e
    return round(lon, COORDINATE_PRECISION), round(lat, COORDINATE_PRECISION)


def reproject(shape: SpatialFilter) -> SpatialFilter:
    """Web Mercator → WGS84, corner by corner."""
    if isinstance(shape, PointGeometry):
        return PointGeometry(*_project(shape.x, shape.y))
    xmin, ymin = _project(shape.xmin, shape.ymin)
    xmax, ymax = _project(shape.xmax, shape.ymax)
    return Envelope(xmin, ymin, xmax, ymax)


def split_envelope(envelope: Envelope) -> List[Envelope]:
    """Split an envelope into 1, 2 or 4 equal-width pieces by longitudinal span."""
    span = envelope.width
    if span >= 360:
        count = 4
    elif span >= 180:
        count = 2
    else:
        return [envelope]
    step = span / count
    pieces = []
    for i in range(count):
        xmin = envelope.xmin + i * step
        xmax = envelope.xmax if i == count - 1 else envelope.xmin + (i + 1) * step
        pieces.append(Envelope(xmin, envelope.ymin, xmax, envelope.ymax))
    return pieces


def spatial_predicate(shape: SpatialFilter, geometry_field: str, spatial_rel: str, namespace: str = "n") -> str:
    func = SPATIAL_FUNCTIONS[spatial_rel]
    return f"{func}(esri.graph.ST_WKTToGeometry('{shape.to_wkt()}'), {namespace}.{geometry_field})"


def build_spatial_clause(
    geometry: Any,
    *,
    geometry_field: Optional[str],
    in_sr: Any = None,
    spatial_rel: Optional[str] = None,
    namespace: str = "n",
) -> str:
    """
    Build the Cypher spatial predicate for a geometry parameter.

    Raises SpatialFilterError for anything that cannot become a predicate.
    """
    if not geometry_field:
        raise SpatialFilterError("layer has no geometry field")
    rel = spatial_rel or DEFAULT_SPATIAL_REL
    if rel not in SPATIAL_FUNCTIONS:
        raise SpatialFilterError(f"unsupported spatialRel {rel!r}", details={"supported": sorted(SPATIAL_FUNCTIONS)})

    shape = normalize_geometry(geometry, in_sr)
    pieces: List[SpatialFilter] = split_envelope(shape) if isinstance(shape, Envelope) else [shape]
    predicates = [spatial_predicate(p, geometry_field, rel, namespace) for p in pieces]
    if len(predicates) == 1:
        return predicates[0]
    return "(" + " OR ".join(predicates) + ")"


__all__ = [
    "Envelope",
    "PointGeometry",
    "WEB_MERCATOR_WKIDS",
    "SPATIAL_FUNCTIONS",
    "format_coordinate",
    "parse_wkid",
    "normalize_geometry",
    "reproject",
    "split_envelope",
    "spatial_predicate",
    "build_spatial_clause",
]
