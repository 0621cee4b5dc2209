# knowledge_sdk/service/feature_service.py
# SPDX-License-Identifier: Apache-2.0
"""
Feature-service request routing.

Transport-agnostic: the FastAPI app (or any other host) turns an inbound
request into a `FeatureServiceRequest` and serializes the returned
`FeatureServiceResponse.body` as JSON with `status`.

Routing
-------
- unknown service id            → 404 "Service <id> not found"
- no layer                      → service info {layers, tables}
- layer, method not a query     → layer info
- layer, method "query"         → entity query (relationship query when
                                  `relationshipId` is present)
- layer, "queryRelatedRecords"  → relationship query
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from knowledge_sdk.graph.graph_base import (
    DecodeError,
    FilterParseError,
    GraphQueryError,
    InvalidLayerId,
    InvalidRelationshipId,
    KnowledgeGraphError,
    OperationContext,
    SchemaFetchError,
    ServiceNotFound,
    TransportError,
    elapsed_ms,
)
from knowledge_sdk.graph.knowledge_server import KnowledgeGraphServer

LOG = logging.getLogger(__name__)

QUERY_METHODS = ("query", "queryRelatedRecords")

_STATUS = (
    (ServiceNotFound, 404),
    (InvalidLayerId, 400),
    (InvalidRelationshipId, 400),
    (FilterParseError, 400),
    (TransportError, 502),
    (GraphQueryError, 502),
    (SchemaFetchError, 502),
    (DecodeError, 502),
)


@dataclass(frozen=True)
class FeatureServiceRequest:
    service_id: str
    layer: Optional[str] = None
    method: Optional[str] = None
    query: Mapping[str, Any] = field(default_factory=dict)
    request_id: Optional[str] = None


@dataclass(frozen=True)
class FeatureServiceResponse:
    ok: bool
    status: int
    body: Dict[str, Any]


def status_for(e: Exception) -> int:
    for kind, status in _STATUS:
        if isinstance(e, kind):
            return status
    return 500


def _error_to_wire(e: Exception) -> FeatureServiceResponse:
    """Map any error to the caller envelope; opaque errors get a generic marker."""
    status = status_for(e)
    if isinstance(e, KnowledgeGraphError):
        message = e.message or "internal error"
        details = e.details or None
    else:
        message = str(e) or "internal error"
        details = None
    return FeatureServiceResponse(
        ok=False,
        status=status,
        body={
            "code": status,
            "message": message,
            "error": type(e).__name__,
            "details": details,
        },
    )


def _ctx_from_request(request: FeatureServiceRequest) -> OperationContext:
    return OperationContext(
        request_id=request.request_id or uuid.uuid4().hex,
        token=request.query.get("token") or None,
    )


class FeatureServiceHandler:
    """Routes feature-service requests to the configured knowledge graph servers."""

    def __init__(self, servers: Mapping[str, KnowledgeGraphServer]):
        self._servers = dict(servers)

    @property
    def servers(self) -> Dict[str, KnowledgeGraphServer]:
        return self._servers

    async def close(self) -> None:
        for server in self._servers.values():
            await server.close()

    async def handle(self, request: FeatureServiceRequest) -> FeatureServiceResponse:
        t0 = time.monotonic()
        ctx = _ctx_from_request(request)
        try:
            body = await self._dispatch(request, ctx)
        except Exception as e:
            if status_for(e) >= 500:
                LOG.error(
                    "request %s failed after %.1fms: %s",
                    ctx.request_id, elapsed_ms(t0), type(e).__name__,
                )
            else:
                LOG.info("request %s rejected: %s", ctx.request_id, type(e).__name__)
            return _error_to_wire(e)
        return FeatureServiceResponse(ok=True, status=200, body=body)

    async def _dispatch(self, request: FeatureServiceRequest, ctx: OperationContext) -> Dict[str, Any]:
        server = self._servers.get(request.service_id)
        if server is None:
            raise ServiceNotFound(f"Service {request.service_id} not found")

        if request.layer is None or request.layer == "":
            return await server.service_info(ctx)

        layer = await server.get_entity_by_id(request.layer, ctx)
        if request.method not in QUERY_METHODS:
            return layer.to_feature_collection()

        query = dict(request.query)
        relationship_id = query.get("relationshipId")
        if request.method == "queryRelatedRecords" or relationship_id not in (None, ""):
            if relationship_id in (None, ""):
                raise InvalidRelationshipId("relationshipId is required")
            return await server.query_relationship(layer, relationship_id, query, ctx)
        return await server.query_entity(layer, query, ctx)


__all__ = [
    "QUERY_METHODS",
    "FeatureServiceRequest",
    "FeatureServiceResponse",
    "FeatureServiceHandler",
    "status_for",
]
