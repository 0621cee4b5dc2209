# tests/service/test_app.py
# SPDX-License-Identifier: Apache-2.0
"""
FastAPI routes over the feature-service handler.

Asserts:
  • /rest/info answers without touching any source
  • FeatureServer, layer and layer/method routes reach the handler
  • Error envelopes keep their HTTP status
  • Query-string parameters reach the Cypher builder verbatim
"""

import pytest
from fastapi.testclient import TestClient

from knowledge_sdk.config import ProviderConfig
from knowledge_sdk.service.app import create_app


@pytest.fixture
def client(make_server):
    app = create_app(ProviderConfig(), servers={"utilities": make_server()})
    with TestClient(app) as c:
        yield c


def test_rest_info(client):
    body = client.get("/rest/info").json()
    assert body["currentVersion"] == 11.0


def test_feature_server_lists_layers(client):
    response = client.get("/rest/services/utilities/FeatureServer")
    assert response.status_code == 200
    assert [l["metadata"]["name"] for l in response.json()["layers"]] == ["Well", "Pipe"]


def test_unknown_service_is_404(client):
    response = client.get("/rest/services/missing/FeatureServer/0/query")
    assert response.status_code == 404
    assert response.json()["message"] == "Service missing not found"


def test_layer_route_returns_layer_info(client):
    body = client.get("/rest/services/utilities/FeatureServer/1").json()
    assert body["metadata"]["name"] == "Pipe"


def test_query_route_passes_parameters(client, fake_service):
    response = client.get(
        "/rest/services/utilities/FeatureServer/0/query",
        params={"where": "1=1", "returnIdsOnly": "true", "resultRecordCount": "5"},
    )
    assert response.status_code == 200
    assert fake_service.queries[-1] == "match (n:Well) return n.objectid limit 5"


def test_bad_layer_is_400(client):
    response = client.get("/rest/services/utilities/FeatureServer/abc/query")
    assert response.status_code == 400
    assert response.json()["error"] == "InvalidLayerId"
