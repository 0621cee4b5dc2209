# tests/graph/test_knowledge_server.py
# SPDX-License-Identifier: Apache-2.0
"""
KnowledgeGraphServer — end-to-end against a fake service.

Asserts:
  • The data model is fetched once and reused
  • URLs carry the query text, f=pbf and the effective token
  • Entity queries decode to GeoJSON with the response's own transform
  • Embedded server errors raise GraphQueryError with a partial-row count
  • Relationship queries group rows per origin
  • Edits wrap adds in a version-2 header
  • Metrics are recorded and never break the caller
"""

import gzip
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from google.protobuf.internal.decoder import _DecodeVarint32

from knowledge_sdk.graph import wire_schema as pb
from knowledge_sdk.graph.graph_base import (
    GraphQueryError,
    InvalidLayerId,
    InvalidRelationshipId,
    OperationContext,
    SchemaFetchError,
    TransformParams,
)
from knowledge_sdk.graph.pbf_codec import read_delimited
from tests.conftest import JSON, entity, geometry, prim, query_payload, row

pytestmark = pytest.mark.asyncio


def _params(request):
    return parse_qs(urlsplit(str(request.url)).query)


async def test_data_model_fetched_once(server, fake_service):
    """Repeated metadata access reuses the cached schema."""
    await server.get_data_model()
    await server.layers()
    await server.get_entity_by_id("1")
    assert fake_service.data_model_requests == 1


async def test_schema_failure_is_schema_fetch_error(server, fake_service):
    fake_service.data_model_response = httpx.Response(200, headers=JSON, content=b'{"error": {"code": 500}}')
    with pytest.raises(SchemaFetchError):
        await server.get_data_model()
    fake_service.data_model_response = None
    assert (await server.get_data_model()).entity_types


async def test_invalid_layer_id(server):
    with pytest.raises(InvalidLayerId):
        await server.get_entity_by_id("12")


async def test_query_url_carries_cypher_format_and_token(server, fake_service):
    layer = await server.get_entity_by_id(0)
    await server.query_entity(layer, {"returnIdsOnly": "true"})

    request = fake_service.requests[-1]
    params = _params(request)
    assert request.url.path.endswith("/graph/query")
    assert params["openCypherQuery"] == ["match (n:Well) return n.objectid"]
    assert params["f"] == ["pbf"]
    assert params["token"] == ["secret-token"]
    assert request.headers["referer"] == "http://koopjs.esri.com"


async def test_injected_codec_owns_referer(make_server, fake_service):
    """A codec built without a referer sends none, whatever the server default."""
    server = make_server(referer=None)
    await server.get_data_model()
    assert "referer" not in fake_service.requests[-1].headers


async def test_context_token_overrides_server_token(server, fake_service):
    layer = await server.get_entity_by_id(0)
    await server.query_entity(layer, {}, ctx=OperationContext(token="caller-token"))
    assert _params(fake_service.requests[-1])["token"] == ["caller-token"]


async def test_entity_query_assembles_features(server, fake_service):
    params = TransformParams(x_scale=0.5, y_scale=0.5, x_translate=0.0, y_translate=0.0)
    fake_service.query_responder = lambda cypher: query_payload(
        [row(entity("Well", 1, name=prim(string_value="A"), shape=geometry("esriGeometryTypePoint", [4, 6])))],
        [row(entity("Well", 2, name=prim(string_value="B"), shape=geometry("esriGeometryTypePoint", [8, 2])))],
        transform=params,
    )
    layer = await server.get_entity_by_id(0)
    fc = await server.query_entity(layer, {"where": "1=1"})

    assert fake_service.queries[-1] == "match (n:Well) return n"
    assert [f["properties"]["OBJECTID"] for f in fc["features"]] == [1, 2]
    assert fc["features"][0]["geometry"] == {"type": "Point", "coordinates": [2.0, 3.0]}
    assert fc["features"][1]["geometry"]["coordinates"] == [4.0, 1.0]
    assert fc["metadata"]["idField"] == "OBJECTID"
    assert fc["filtersApplied"] == {"where": True, "geometry": True}


async def test_embedded_error_raises_with_partial_rows(server, fake_service):
    fake_service.query_responder = lambda cypher: query_payload(
        [row(entity("Well", 1))],
        error=(9, "server gave up"),
    )
    layer = await server.get_entity_by_id(0)
    with pytest.raises(GraphQueryError) as ei:
        await server.query_entity(layer, {})
    assert ei.value.message == "server gave up"
    assert ei.value.details["partial_rows"] == 1


async def test_count_only(server, fake_service):
    fake_service.query_responder = lambda cypher: query_payload([row(prim(sint64_value=17))])
    layer = await server.get_entity_by_id(0)
    result = await server.query_entity(layer, {"returnCountOnly": "true"})
    assert fake_service.queries[-1] == "match (n:Well) return count(n)"
    assert result["count"] == 17


async def test_relationship_query_groups_by_origin(server, fake_service):
    fake_service.query_responder = lambda cypher: query_payload([
        row(entity("Well", 1), entity("Owner", 10)),
        row(entity("Well", 1), entity("Owner", 11)),
        row(entity("Well", 2), entity("Owner", 12)),
    ])
    well = await server.get_entity_by_id(0)
    owned_by = next(r for r in well.relationships if r.name == "OwnedBy")

    result = await server.query_relationship(well, owned_by.id, {"objectIds": "1,2"})

    assert fake_service.queries[-1] == (
        "match (n:Well)-[r:OwnedBy]->(m:Owner) where n.objectid IN [1,2] "
        "return n, m order by n.objectid"
    )
    assert [len(g["features"]) for g in result["features"]] == [2, 1]


async def test_unknown_relationship_id(server):
    well = await server.get_entity_by_id(0)
    with pytest.raises(InvalidRelationshipId):
        await server.query_relationship(well, 99, {})
    with pytest.raises(InvalidRelationshipId):
        await server.query_relationship(well, "abc", {})


async def test_service_info_lists_layers_and_tables(server):
    info = await server.service_info()
    assert [l["metadata"]["name"] for l in info["layers"]] == ["Well", "Pipe"]
    assert [t["metadata"]["name"] for t in info["tables"]] == ["Owner"]


async def test_add_entity_posts_version_two_header(server, fake_service):
    result = await server.add_entity("Owner", {"name": ("string_value", "ACME")})
    assert result.ok

    request = fake_service.requests[-1]
    assert request.method == "POST"
    assert request.url.path.endswith("/graph/applyEdits")
    body = request.content
    raw_header, pos = read_delimited(body, 0)
    assert pb.GraphApplyEditsHeader.FromString(raw_header).minor_version == 2
    size, start = _DecodeVarint32(body, pos)
    frame = pb.GraphApplyEditsFrame.FromString(gzip.decompress(body[start:start + size]))
    assert "Owner" in frame.adds.entities


async def test_add_relationship_reports_server_error(server, fake_service):
    fake_service.edits_response = pb.GraphApplyEditsResult(
        error=pb.GraphError(error_code=1, error_message="origin not found")
    ).SerializeToString()
    result = await server.add_relationship(
        "{1B4E28BA-2FA1-11D2-883F-0016D3CCA427}",
        "{6FA459EA-EE8A-3CA4-894E-DB77E160355E}",
        "OwnedBy",
    )
    assert not result.ok
    assert result.error.message == "origin not found"


async def test_metrics_recorded(make_server, fake_service, metrics):
    server = make_server(metrics=metrics)
    layer = await server.get_entity_by_id(0)
    await server.query_entity(layer, {})

    ops = [o["op"] for o in metrics.observations]
    assert "query_entity" in ops
    names = [c["name"] for c in metrics.counters]
    assert "schema_fetches" in names
    assert "query_rows" in names


async def test_broken_metrics_never_break_caller(make_server):
    class Exploding:
        def observe(self, **_):
            raise RuntimeError("sink down")

        def counter(self, **_):
            raise RuntimeError("sink down")

    server = make_server(metrics=Exploding())
    layer = await server.get_entity_by_id(0)
    fc = await server.query_entity(layer, {})
    assert fc["features"] == []


async def test_invalid_spatial_policy_rejected(make_server):
    with pytest.raises(ValueError):
        make_server(spatial_filter_errors="explode")
