# tests/service/test_feature_service.py
# SPDX-License-Identifier: Apache-2.0
"""
Feature-service handler — routing and error envelopes.

Asserts:
  • Unknown service → 404 "Service <id> not found"
  • No layer → service info; non-query method → layer info
  • query / queryRelatedRecords dispatch to entity / relationship queries
  • Error kinds map to stable status codes; opaque errors get "internal error"
  • A `token` query parameter becomes the per-request token
"""

from urllib.parse import parse_qs, urlsplit

import pytest

from knowledge_sdk.graph.graph_base import (
    GraphQueryError,
    KnowledgeGraphError,
    TransportError,
)
from knowledge_sdk.service.feature_service import (
    FeatureServiceHandler,
    FeatureServiceRequest,
    status_for,
)
from tests.conftest import entity, query_payload, row

pytestmark = pytest.mark.asyncio


@pytest.fixture
def handler(server):
    return FeatureServiceHandler({"utilities": server})


async def test_unknown_service_is_404(handler):
    response = await handler.handle(FeatureServiceRequest(service_id="nope"))
    assert response.status == 404
    assert not response.ok
    assert response.body["message"] == "Service nope not found"
    assert response.body["error"] == "ServiceNotFound"


async def test_service_info_without_layer(handler):
    response = await handler.handle(FeatureServiceRequest(service_id="utilities"))
    assert response.ok
    assert set(response.body) == {"layers", "tables"}
    assert len(response.body["layers"]) == 2


async def test_layer_info_for_non_query_method(handler):
    response = await handler.handle(FeatureServiceRequest(service_id="utilities", layer="2", method="generateRenderer"))
    assert response.ok
    assert response.body["metadata"]["name"] == "Owner"
    assert response.body["features"] == []


async def test_invalid_layer_is_400(handler):
    response = await handler.handle(FeatureServiceRequest(service_id="utilities", layer="x", method="query"))
    assert response.status == 400
    assert response.body["error"] == "InvalidLayerId"


async def test_query_dispatches_entity_query(handler, fake_service):
    fake_service.query_responder = lambda cypher: query_payload([row(entity("Well", 3))])
    response = await handler.handle(
        FeatureServiceRequest(service_id="utilities", layer="0", method="query", query={"where": "OBJECTID = 3"})
    )
    assert response.ok
    assert fake_service.queries[-1] == "match (n:Well) where n.objectid = 3 return n"
    assert response.body["features"][0]["properties"]["OBJECTID"] == 3


async def test_query_with_relationship_id_runs_relationship_query(handler, fake_service):
    response = await handler.handle(
        FeatureServiceRequest(service_id="utilities", layer="2", method="query", query={"relationshipId": "0"})
    )
    assert response.ok
    assert fake_service.queries[-1].startswith("match (n:Owner)<-[r:OwnedBy]-(m:Well)")


async def test_query_related_records_requires_relationship_id(handler):
    response = await handler.handle(
        FeatureServiceRequest(service_id="utilities", layer="0", method="queryRelatedRecords")
    )
    assert response.status == 400
    assert response.body["error"] == "InvalidRelationshipId"


async def test_malformed_filter_is_400(handler):
    response = await handler.handle(
        FeatureServiceRequest(service_id="utilities", layer="0", method="query", query={"where": "depth > ("})
    )
    assert response.status == 400
    assert response.body["error"] == "FilterParseError"


async def test_embedded_server_error_is_502_with_message(handler, fake_service):
    fake_service.query_responder = lambda cypher: query_payload(error=(1, "label missing"))
    response = await handler.handle(FeatureServiceRequest(service_id="utilities", layer="0", method="query"))
    assert response.status == 502
    assert response.body["message"] == "label missing"


async def test_request_token_overrides_configured_token(handler, fake_service):
    await handler.handle(
        FeatureServiceRequest(service_id="utilities", layer="0", method="query", query={"token": "abc"})
    )
    query = parse_qs(urlsplit(str(fake_service.requests[-1].url)).query)
    assert query["token"] == ["abc"]


async def test_status_mapping():
    assert status_for(TransportError("x")) == 502
    assert status_for(GraphQueryError("x")) == 502
    assert status_for(KnowledgeGraphError("x")) == 500
    assert status_for(RuntimeError()) == 500


async def test_opaque_error_gets_generic_marker(handler):
    class Broken:
        async def service_info(self, ctx=None):
            raise RuntimeError()

        async def close(self):
            pass

    response = await FeatureServiceHandler({"b": Broken()}).handle(FeatureServiceRequest(service_id="b"))
    assert response.status == 500
    assert response.body["message"] == "internal error"
