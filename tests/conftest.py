# tests/conftest.py
# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures: protobuf payload builders and a fake knowledge graph
service mounted on `httpx.MockTransport`.

Sample data model (discovery order):

    Owner  (table)                 → id 2
    Well   (Point geometry)        → id 0
    Pipe   (Polyline geometry)     → id 1

    OwnedBy:  Well  → Owner
    Connects: Pipe  → Well
    Feeds:    Well  → Well (self relation)
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from knowledge_sdk.graph import wire_schema as pb
from knowledge_sdk.graph.graph_base import TransformParams
from knowledge_sdk.graph.knowledge_server import DEFAULT_REFERER, KnowledgeGraphServer
from knowledge_sdk.graph.pbf_codec import (
    PbfClient,
    encode_delimited,
    encode_query_payload,
)

SERVICE_URL = "https://kg.example.com/server/rest/services/Hosted/Utilities/KnowledgeGraphServer"

PBF = {"content-type": "application/x-protobuf"}
JSON = {"content-type": "application/json"}


# =============================================================================
# Message builders
# =============================================================================

def make_property(name: str, field_type: str = "esriFieldTypeString", geometry_type: Optional[str] = None, alias: str = ""):
    prop = pb.GraphProperty(
        name=name,
        alias=alias or name,
        field_type=pb.enum_value("FieldType", field_type),
    )
    if geometry_type:
        prop.geometry_type = pb.enum_value("GeometryType", geometry_type)
    return prop


def make_entity_type(name: str, properties: Sequence[Any]):
    return pb.EntityType(entity=pb.GraphNamedObjectType(name=name, alias=name, properties=list(properties)))


def make_relationship_type(name: str, origins: Sequence[str], dests: Sequence[str], cardinality: str = "esriRelCardinalityOneToMany"):
    return pb.RelationshipType(
        relationship=pb.GraphNamedObjectType(name=name, alias=name),
        origin_entity_types=list(origins),
        dest_entity_types=list(dests),
        cardinality=pb.enum_value("Cardinality", cardinality),
    )


def sample_data_model_message():
    return pb.GraphDataModel(
        spatial_reference_wkid=4326,
        objectid_property="objectid",
        globalid_property="globalid",
        entity_types=[
            make_entity_type("Owner", [
                make_property("objectid", "esriFieldTypeOID"),
                make_property("name"),
            ]),
            make_entity_type("Well", [
                make_property("objectid", "esriFieldTypeOID"),
                make_property("name"),
                make_property("depth", "esriFieldTypeDouble"),
                make_property("shape", "esriFieldTypeGeometry", "esriGeometryTypePoint"),
            ]),
            make_entity_type("Pipe", [
                make_property("objectid", "esriFieldTypeOID"),
                make_property("shape", "esriFieldTypeGeometry", "esriGeometryTypePolyline"),
            ]),
        ],
        relationship_types=[
            make_relationship_type("OwnedBy", ["Well"], ["Owner"]),
            make_relationship_type("Connects", ["Pipe"], ["Well"], "esriRelCardinalityManyToMany"),
            make_relationship_type("Feeds", ["Well"], ["Well"]),
        ],
    )


def prim(**kw: Any):
    return pb.AnyValue(primitive_value=pb.PrimitiveValue(**kw))


def geometry(geometry_type: str, coords: Sequence[int], lengths: Sequence[int] = ()):
    value = pb.GeometryValue(
        geometry_type=pb.enum_value("GeometryType", geometry_type),
        geometry=pb.EsriDefaultGeometry(coords=list(coords), lengths=list(lengths)),
    )
    return pb.AnyValue(primitive_value=pb.PrimitiveValue(geometry_value=value))


def entity(type_name: str, objectid: int, **props: Any):
    values = {"objectid": prim(sint64_value=objectid)}
    values.update(props)
    return pb.AnyValue(entity_value=pb.EntityValue(type_name=type_name, properties=values))


def row(*values: Any):
    return pb.Row(values=list(values))


def data_model_payload(msg: Any = None) -> bytes:
    return encode_delimited(msg if msg is not None else sample_data_model_message())


def query_payload(*frames: List[Any], transform: Optional[TransformParams] = None, error=None) -> bytes:
    return encode_query_payload(list(frames), transform=transform, error=error)


# =============================================================================
# Fake service
# =============================================================================

class FakeKnowledgeService:
    """
    Minimal knowledge graph service for `httpx.MockTransport`.

    `query_responder(cypher)` returns either bytes (binary payload) or an
    `httpx.Response`; the default answers every query with no rows.
    """

    def __init__(self) -> None:
        self.data_model: bytes = data_model_payload()
        self.data_model_response: Optional[httpx.Response] = None
        self.query_responder: Callable[[str], Any] = lambda cypher: query_payload()
        self.edits_response: bytes = pb.GraphApplyEditsResult().SerializeToString()
        self.requests: List[httpx.Request] = []
        self.queries: List[str] = []

    @property
    def data_model_requests(self) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith("/dataModel/queryDataModel"))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/dataModel/queryDataModel"):
            if self.data_model_response is not None:
                return self.data_model_response
            return httpx.Response(200, headers=PBF, content=self.data_model)
        if path.endswith("/graph/query"):
            params = parse_qs(urlsplit(str(request.url)).query)
            cypher = params["openCypherQuery"][0]
            self.queries.append(cypher)
            answer = self.query_responder(cypher)
            if isinstance(answer, httpx.Response):
                return answer
            return httpx.Response(200, headers=PBF, content=answer)
        if path.endswith("/graph/applyEdits"):
            return httpx.Response(200, headers=PBF, content=self.edits_response)
        return httpx.Response(404, headers=JSON, content=json.dumps({"error": {"code": 404}}).encode())


@pytest.fixture
def fake_service() -> FakeKnowledgeService:
    return FakeKnowledgeService()


@pytest.fixture
def make_server(fake_service: FakeKnowledgeService):
    servers: List[KnowledgeGraphServer] = []

    def factory(token: Optional[str] = "secret-token", referer: Optional[str] = DEFAULT_REFERER, **kw: Any) -> KnowledgeGraphServer:
        client = httpx.AsyncClient(transport=httpx.MockTransport(fake_service.handler))
        codec = PbfClient(client=client, referer=referer)
        server = KnowledgeGraphServer(SERVICE_URL, token, codec=codec, **kw)
        servers.append(server)
        return server

    return factory


@pytest.fixture
def server(make_server) -> KnowledgeGraphServer:
    return make_server()


class RecordingMetrics:
    def __init__(self) -> None:
        self.observations: List[Dict[str, Any]] = []
        self.counters: List[Dict[str, Any]] = []

    def observe(self, **kw: Any) -> None:
        self.observations.append(kw)

    def counter(self, **kw: Any) -> None:
        self.counters.append(kw)


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()
