# knowledge_sdk/service/app.py
# SPDX-License-Identifier: Apache-2.0
"""
FastAPI application exposing knowledge graph sources as GeoServices
FeatureServers.

Endpoints:
- GET /rest/info
- GET /rest/services/{service_id}/FeatureServer
- GET /rest/services/{service_id}/FeatureServer/{layer}
- GET /rest/services/{service_id}/FeatureServer/{layer}/{method}

Query-string parameters are passed to the handler verbatim.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Mapping, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from knowledge_sdk.config import ProviderConfig, load_config
from knowledge_sdk.graph.knowledge_server import KnowledgeGraphServer
from knowledge_sdk.service.feature_service import (
    FeatureServiceHandler,
    FeatureServiceRequest,
)

LOG = logging.getLogger(__name__)


def build_servers(config: ProviderConfig) -> Dict[str, KnowledgeGraphServer]:
    return {
        key: KnowledgeGraphServer(
            source.url,
            source.token,
            spatial_filter_errors=config.spatial_filter_errors,
            referer=config.referer,
        )
        for key, source in config.sources.items()
    }


def create_app(
    config: Optional[ProviderConfig] = None,
    *,
    servers: Optional[Mapping[str, KnowledgeGraphServer]] = None,
) -> FastAPI:
    """
    Build the app. `servers` bypasses config-driven construction (tests inject
    servers backed by a mock transport).
    """
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        handler = FeatureServiceHandler(servers if servers is not None else build_servers(config))
        app.state.handler = handler
        LOG.info("serving %d knowledge graph source(s)", len(handler.servers))
        try:
            yield
        finally:
            await handler.close()

    app = FastAPI(
        title="Knowledge Graph Feature Service",
        description="GeoServices FeatureServer API backed by knowledge graph services",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    async def _respond(
        request: Request,
        service_id: str,
        layer: Optional[str] = None,
        method: Optional[str] = None,
    ) -> JSONResponse:
        handler: FeatureServiceHandler = request.app.state.handler
        response = await handler.handle(
            FeatureServiceRequest(
                service_id=service_id,
                layer=layer,
                method=method,
                query=dict(request.query_params),
                request_id=request.headers.get("x-request-id"),
            )
        )
        return JSONResponse(response.body, status_code=response.status)

    @app.get("/rest/info")
    async def rest_info():
        return {
            "currentVersion": 11.0,
            "fullVersion": "11.0.0",
            "owningSystemUrl": "",
            "authInfo": {"isTokenBasedSecurity": False},
        }

    @app.get("/rest/services/{service_id}/FeatureServer")
    async def feature_server(request: Request, service_id: str):
        return await _respond(request, service_id)

    @app.get("/rest/services/{service_id}/FeatureServer/{layer}")
    async def feature_layer(request: Request, service_id: str, layer: str):
        return await _respond(request, service_id, layer)

    @app.get("/rest/services/{service_id}/FeatureServer/{layer}/{method}")
    async def feature_layer_method(request: Request, service_id: str, layer: str, method: str):
        return await _respond(request, service_id, layer, method)

    return app


__all__ = ["build_servers", "create_app"]
