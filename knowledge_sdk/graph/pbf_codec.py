# knowledge_sdk/graph/pbf_codec.py
# SPDX-License-Identifier: Apache-2.0
"""
Binary protocol codec for the knowledge graph service.

Responsibilities
----------------
- Serialize outbound messages (length-delimited protobuf; gzip for edit frames)
- Perform the HTTP calls (httpx, async)
- Decode inbound payloads into SDK types:
    * data model: one delimited `GraphDataModel`
    * query: one delimited header followed by zero or more delimited frames
    * edits: one `GraphApplyEditsResult`

Failure semantics
-----------------
- Transport failures surface as `TransportError` (never raw httpx errors).
- A JSON content type means the service returned a structured error payload:
  `SchemaFetchError` for the data model, `GraphQueryError` for queries.
- Malformed binary payloads raise `DecodeError`, so callers can tell
  "no rows" apart from "unreadable rows".
- A query frame carrying a server error stops decoding; rows from earlier
  frames are kept and returned next to the error.
- `submit_edits` never raises: failures come back on `EditsResult.error`.
"""

from __future__ import annotations

import gzip
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import httpx
from google.protobuf import message as pb_message
from google.protobuf.internal.decoder import _DecodeVarint32
from google.protobuf.internal.encoder import _VarintBytes

from knowledge_sdk.graph import wire_schema as pb
from knowledge_sdk.graph.graph_base import (
    DataModel,
    DecodeError,
    EditsError,
    EntityRecord,
    EntityType,
    GeometryRecord,
    GraphQueryError,
    KnowledgeGraphError,
    PathRecord,
    Property,
    RelationshipRecord,
    RelationshipType,
    SchemaFetchError,
    TransformParams,
    TransportError,
)
from knowledge_sdk.graph.quantization import quantize

LOG = logging.getLogger(__name__)

DEFAULT_QUERY_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}
EDITS_HEADERS = {"Content-Type": "application/octet-stream"}

_TOKEN_RE = re.compile(r"(token=)[^&]*")


def redact_url(url: str) -> str:
    """Strip token values from a URL before it reaches logs or error details."""
    return _TOKEN_RE.sub(r"\1***", url)


# =============================================================================
# Framing
# =============================================================================

def encode_delimited(msg: pb_message.Message) -> bytes:
    payload = msg.SerializeToString()
    return _VarintBytes(len(payload)) + payload


def read_delimited(buffer: bytes, pos: int) -> Tuple[bytes, int]:
    """Return (payload, next_pos) for the delimited message starting at `pos`."""
    try:
        size, start = _DecodeVarint32(buffer, pos)
    except (IndexError, pb_message.DecodeError) as e:
        raise DecodeError("invalid length prefix", details={"offset": pos}) from e
    end = start + size
    if end > len(buffer):
        raise DecodeError(
            "truncated message",
            details={"offset": pos, "size": size, "available": len(buffer) - start},
        )
    return buffer[start:end], end


def _parse(cls: Any, payload: bytes, what: str) -> Any:
    try:
        return cls.FromString(payload)
    except pb_message.DecodeError as e:
        raise DecodeError(f"could not decode {what}") from e


# =============================================================================
# Value decoding
# =============================================================================

def _format_uuid(raw: bytes) -> str:
    return "{" + str(uuid.UUID(bytes=bytes(raw))).upper() + "}"


def _geometry_record(value: Any) -> GeometryRecord:
    return GeometryRecord(
        geometry_type=pb.enum_name("GeometryType", value.geometry_type),
        coords=tuple(value.geometry.coords),
        lengths=tuple(value.geometry.lengths),
    )


# Closed set of primitive variants; anything not listed here is a decode error.
PRIMITIVE_DECODERS: Dict[str, Callable[[Any], Any]] = {
    "sint32_value": int,
    "uint32_value": int,
    "sint64_value": int,
    "uint64_value": int,
    "float_value": float,
    "double_value": float,
    "string_value": str,
    "bool_value": bool,
    "date_value": int,
    "uuid_value": _format_uuid,
    "blob_value": bytes,
    "geometry_value": _geometry_record,
}


def decode_primitive(value: Any) -> Any:
    variant = value.WhichOneof("value")
    if variant is None:
        return None
    try:
        decoder = PRIMITIVE_DECODERS[variant]
    except KeyError:
        raise DecodeError(f"unsupported primitive variant '{variant}'")
    return decoder(getattr(value, variant))


def _decode_properties(props: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(val) for key, val in props.items()}


def _entity_record(value: Any) -> EntityRecord:
    return EntityRecord(
        type_name=value.type_name,
        properties=_decode_properties(value.properties),
        id=decode_value(value.id) if value.HasField("id") else None,
    )


def _relationship_record(value: Any) -> RelationshipRecord:
    return RelationshipRecord(
        type_name=value.type_name,
        properties=_decode_properties(value.properties),
        id=decode_value(value.id) if value.HasField("id") else None,
        origin_id=decode_value(value.origin_id) if value.HasField("origin_id") else None,
        destination_id=(
            decode_value(value.destination_id) if value.HasField("destination_id") else None
        ),
    )


def decode_value(value: Any) -> Any:
    """Decode an `AnyValue` into plain Python / SDK record types."""
    kind = value.WhichOneof("value")
    if kind is None:
        return None
    if kind == "primitive_value":
        return decode_primitive(value.primitive_value)
    if kind == "entity_value":
        return _entity_record(value.entity_value)
    if kind == "relationship_value":
        return _relationship_record(value.relationship_value)
    if kind == "path_value":
        path = value.path_value
        return PathRecord(
            entities=tuple(decode_value(v) for v in path.entities),
            relationships=tuple(decode_value(v) for v in path.relationships),
        )
    if kind == "array_value":
        return [decode_value(v) for v in value.array_value.values]
    if kind == "object_value":
        return _decode_properties(value.object_value.values)
    raise DecodeError(f"unsupported value kind '{kind}'")


def decode_row(row: Any) -> List[Any]:
    return [decode_value(v) for v in row.values]


# =============================================================================
# Query responses
# =============================================================================

@dataclass
class QueryHeader:
    transform: Optional[TransformParams] = None
    header_keys: Tuple[str, ...] = ()
    exceeded_transfer_limit: bool = False


@dataclass
class QueryResponse:
    """
    Decoded query payload.

    `error` is set when the server embedded an error in the stream; `rows`
    then holds whatever arrived before it.
    """
    header: Optional[QueryHeader] = None
    rows: List[List[Any]] = field(default_factory=list)
    error: Optional[GraphQueryError] = None

    @property
    def transform(self) -> Optional[TransformParams]:
        return self.header.transform if self.header else None


def transform_from_message(msg: Any) -> Optional[TransformParams]:
    if not msg.HasField("scale"):
        return None
    return TransformParams(
        x_scale=msg.scale.x_scale,
        y_scale=msg.scale.y_scale,
        x_translate=msg.translate.x_translate,
        y_translate=msg.translate.y_translate,
    )


def transform_to_message(params: TransformParams) -> Any:
    return pb.Transform(
        scale=pb.Scale(x_scale=params.x_scale, y_scale=params.y_scale),
        translate=pb.Translate(x_translate=params.x_translate, y_translate=params.y_translate),
    )


def _graph_error(err: Any, rows_received: int = 0) -> GraphQueryError:
    return GraphQueryError(
        err.error_message or "graph query failed",
        details={"error_code": err.error_code, "rows_received": rows_received},
    )


def decode_query_payload(buffer: bytes) -> QueryResponse:
    """
    Decode a header + frame stream.

    If the header itself cannot be decoded the buffer is re-read from the
    start as a frame stream, which surfaces error frames sent without a
    header.
    """
    response = QueryResponse()
    pos = 0
    try:
        raw, next_pos = read_delimited(buffer, 0)
        header = _parse(pb.GraphQueryResultHeader, raw, "query header")
    except DecodeError:
        LOG.debug("query header not decodable; reading payload as frames")
    else:
        pos = next_pos
        response.header = QueryHeader(
            transform=transform_from_message(header.transform) if header.HasField("transform") else None,
            header_keys=tuple(header.header_keys),
            exceeded_transfer_limit=header.exceeded_transfer_limit,
        )
        if header.HasField("error"):
            response.error = _graph_error(header.error)
            return response

    while pos < len(buffer):
        raw, pos = read_delimited(buffer, pos)
        frame = _parse(pb.GraphQueryResultFrame, raw, "query frame")
        if frame.HasField("error"):
            response.error = _graph_error(frame.error, len(response.rows))
            break
        response.rows.extend(decode_row(r) for r in frame.rows)
    return response


def encode_query_payload(
    rows_per_frame: List[List[Any]],
    *,
    transform: Optional[TransformParams] = None,
    header_keys: Tuple[str, ...] = (),
    error: Optional[Tuple[int, str]] = None,
) -> bytes:
    """
    Build a header + frames payload from `pb.Row` lists (one list per frame).

    `error` appends a final error frame. Used by tests and local fakes.
    """
    header = pb.GraphQueryResultHeader(minor_version=1, header_keys=list(header_keys))
    if transform is not None:
        header.transform.CopyFrom(transform_to_message(transform))
    body = bytearray(encode_delimited(header))
    for rows in rows_per_frame:
        body += encode_delimited(pb.GraphQueryResultFrame(rows=rows))
    if error is not None:
        frame = pb.GraphQueryResultFrame(
            error=pb.GraphError(error_code=error[0], error_message=error[1])
        )
        body += encode_delimited(frame)
    return bytes(body)


# =============================================================================
# Data model
# =============================================================================

def _property(msg: Any) -> Property:
    field_type = pb.enum_name("FieldType", msg.field_type)
    geometry_type = None
    if field_type == "esriFieldTypeGeometry":
        geometry_type = pb.enum_name("GeometryType", msg.geometry_type)
    return Property(name=msg.name, alias=msg.alias, field_type=field_type, geometry_type=geometry_type)


def data_model_from_message(msg: Any) -> DataModel:
    return DataModel(
        entity_types=tuple(
            EntityType(
                name=et.entity.name,
                alias=et.entity.alias,
                properties=tuple(_property(p) for p in et.entity.properties),
            )
            for et in msg.entity_types
        ),
        relationship_types=tuple(
            RelationshipType(
                name=rt.relationship.name,
                origin_entity_types=tuple(rt.origin_entity_types),
                dest_entity_types=tuple(rt.dest_entity_types),
                cardinality=pb.enum_name("Cardinality", rt.cardinality),
                properties=tuple(_property(p) for p in rt.relationship.properties),
            )
            for rt in msg.relationship_types
        ),
        objectid_property=msg.objectid_property or "objectid",
        globalid_property=msg.globalid_property,
        spatial_reference=msg.spatial_reference_wkid or None,
    )


def decode_data_model(buffer: bytes) -> DataModel:
    raw, _ = read_delimited(buffer, 0)
    msg = _parse(pb.GraphDataModel, raw, "data model")
    if not msg.globalid_property:
        raise SchemaFetchError("payload is not a data model (no globalid property)")
    return data_model_from_message(msg)


# =============================================================================
# Edits
# =============================================================================

@dataclass
class EditOutcome:
    global_id: str = ""
    object_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class EditsResult:
    """
    Result of an edit submission. Always returned, never raised; check
    `error` first.
    """
    entity_add_results: Dict[str, List[EditOutcome]] = field(default_factory=dict)
    relationship_add_results: Dict[str, List[EditOutcome]] = field(default_factory=dict)
    error: Optional[KnowledgeGraphError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _primitive_any(variant: str, value: Any) -> Any:
    if variant not in PRIMITIVE_DECODERS or variant == "geometry_value":
        raise ValueError(f"unsupported primitive variant '{variant}'")
    return pb.AnyValue(primitive_value=pb.PrimitiveValue(**{variant: value}))


def _point_any(x: float, y: float, transform: Optional[TransformParams]) -> Any:
    coords = [x, y] if transform is None else quantize([(x, y)], transform)
    geometry = pb.GeometryValue(
        geometry=pb.EsriDefaultGeometry(coords=[int(round(c)) for c in coords], lengths=[1])
    )
    return pb.AnyValue(primitive_value=pb.PrimitiveValue(geometry_value=geometry))


def build_entity_adds(
    entity_type: str,
    properties: Mapping[str, Tuple[str, Any]],
    *,
    transform: Optional[TransformParams] = None,
) -> Any:
    """
    Build an `Adds` message creating one entity.

    `properties` maps names to `(variant, value)`, e.g. `("string_value", "x")`.
    A `("geometry_value", {"x": .., "y": ..})` entry becomes a point geometry,
    quantized with `transform` when one is given.
    """
    props = {}
    for key, (variant, value) in properties.items():
        if variant == "geometry_value":
            props[key] = _point_any(float(value["x"]), float(value["y"]), transform)
        else:
            props[key] = _primitive_any(variant, value)
    adds = pb.Adds()
    adds.entities[entity_type].named_object_adds.append(pb.NamedObjectAdd(properties=props))
    return adds


def build_relationship_adds(origin_global_id: str, destination_global_id: str, relationship_type: str) -> Any:
    """Build an `Adds` message creating one relationship between two GUIDs."""
    origin = uuid.UUID(origin_global_id.strip().strip("{}"))
    destination = uuid.UUID(destination_global_id.strip().strip("{}"))
    props = {
        "id": _primitive_any("sint64_value", -1),
        "originGlobalID": _primitive_any("uuid_value", origin.bytes),
        "destinationGlobalID": _primitive_any("uuid_value", destination.bytes),
    }
    adds = pb.Adds()
    adds.relationships[relationship_type].named_object_adds.append(pb.NamedObjectAdd(properties=props))
    return adds


def encode_edits_body(header: Any, frame: Any) -> bytes:
    """Delimited header, then the gzip-compressed frame as a length-prefixed blob."""
    compressed = gzip.compress(frame.SerializeToString())
    return encode_delimited(header) + _VarintBytes(len(compressed)) + compressed


def _edit_outcomes(results: Mapping[str, Any]) -> Dict[str, List[EditOutcome]]:
    out: Dict[str, List[EditOutcome]] = {}
    for type_name, edit_results in results.items():
        out[type_name] = [
            EditOutcome(
                global_id=r.global_id,
                object_id=r.object_id,
                error=r.error.error_message if r.HasField("error") else None,
            )
            for r in edit_results.add_results
        ]
    return out


def decode_edits_result(buffer: bytes) -> EditsResult:
    try:
        msg = pb.GraphApplyEditsResult.FromString(buffer)
    except pb_message.DecodeError as e:
        return EditsResult(error=EditsError(f"could not decode edits result: {e}"))
    result = EditsResult(
        entity_add_results=_edit_outcomes(msg.entity_add_results),
        relationship_add_results=_edit_outcomes(msg.relationship_add_results),
    )
    if msg.HasField("error"):
        result.error = GraphQueryError(
            msg.error.error_message or "apply edits failed",
            details={"error_code": msg.error.error_code},
        )
    return result


# =============================================================================
# Transport
# =============================================================================

def _is_json(response: httpx.Response) -> bool:
    return response.headers.get("content-type", "").startswith("application/json")


def _error_payload(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {"message": response.text}
    if isinstance(payload, dict):
        err = payload.get("error", payload)
        return err if isinstance(err, dict) else {"message": str(err)}
    return {"message": str(payload)}


class PbfClient:
    """
    Async HTTP client for the service's binary endpoints.

    Owns its `httpx.AsyncClient` unless one is injected.
    """

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: Optional[float] = 30.0,
        referer: Optional[str] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._referer = referer

    async def __aenter__(self) -> "PbfClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _send(self, method: str, url: str, *, headers: Mapping[str, str], content: Optional[bytes] = None) -> httpx.Response:
        LOG.debug("%s %s", method, redact_url(url))
        try:
            response = await self._client.request(method, url, headers=dict(headers), content=content)
        except httpx.HTTPError as e:
            raise TransportError(
                f"{method} request failed: {type(e).__name__}",
                details={"url": redact_url(url)},
            ) from e
        if response.status_code >= 400 and not _is_json(response):
            raise TransportError(
                f"{method} request failed with status {response.status_code}",
                details={"url": redact_url(url), "status": response.status_code},
            )
        return response

    def _query_headers(self) -> Dict[str, str]:
        headers = dict(DEFAULT_QUERY_HEADERS)
        if self._referer:
            headers["Referer"] = self._referer
        return headers

    async def fetch_data_model(self, url: str) -> DataModel:
        response = await self._send("GET", url, headers=self._query_headers())
        if _is_json(response):
            raise SchemaFetchError(
                "data model request returned an error payload",
                details={"error": _error_payload(response)},
            )
        return decode_data_model(response.content)

    async def execute_query(self, url: str) -> QueryResponse:
        response = await self._send("GET", url, headers=self._query_headers())
        if _is_json(response):
            payload = _error_payload(response)
            raise GraphQueryError(
                str(payload.get("message") or "graph query failed"),
                details={"error": payload},
            )
        return decode_query_payload(response.content)

    async def submit_edits(self, url: str, header: Any, frame: Any) -> EditsResult:
        body = encode_edits_body(header, frame)
        try:
            response = await self._send("POST", url, headers=EDITS_HEADERS, content=body)
        except TransportError as e:
            return EditsResult(error=e)
        if _is_json(response):
            payload = _error_payload(response)
            return EditsResult(
                error=GraphQueryError(
                    str(payload.get("message") or "apply edits failed"),
                    details={"error": payload},
                )
            )
        return decode_edits_result(response.content)


__all__ = [
    "PRIMITIVE_DECODERS",
    "PbfClient",
    "QueryHeader",
    "QueryResponse",
    "EditOutcome",
    "EditsResult",
    "redact_url",
    "encode_delimited",
    "read_delimited",
    "decode_value",
    "decode_row",
    "decode_query_payload",
    "encode_query_payload",
    "decode_data_model",
    "data_model_from_message",
    "transform_from_message",
    "transform_to_message",
    "build_entity_adds",
    "build_relationship_adds",
    "encode_edits_body",
    "decode_edits_result",
]
