# knowledge_sdk/graph/knowledge_server.py
# SPDX-License-Identifier: Apache-2.0
"""
KnowledgeGraphServer: one remote knowledge graph service.

Control flow for a query:

    schema cache (ensure metadata) → cypher_builder (text)
        → PbfClient (execute + decode) → geojson (assemble)

Responsibilities:
    - Own the schema cache for this service (single-flight, lives as long as
      the server object).
    - Resolve layer ids and relationship ids against the cached arena.
    - Build URLs (token appended, never logged).
    - Record one metric observation per public operation.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import quote, urlencode

from knowledge_sdk.graph import wire_schema as pb
from knowledge_sdk.graph.cypher_builder import (
    SPATIAL_POLICIES,
    FeatureQuery,
    build_entity_query,
    build_relationship_query,
)
from knowledge_sdk.graph.data_model import SchemaCache, SchemaSnapshot
from knowledge_sdk.graph.geojson import (
    to_count_collection,
    to_feature_collection,
    to_relationship_feature_collections,
)
from knowledge_sdk.graph.graph_base import (
    DataModel,
    InvalidRelationshipId,
    KnowledgeGraphError,
    LayerMetadata,
    MetricsSink,
    NoopMetrics,
    OperationContext,
    TransformParams,
    elapsed_ms,
)
from knowledge_sdk.graph.pbf_codec import (
    EditsResult,
    PbfClient,
    QueryResponse,
    build_entity_adds,
    build_relationship_adds,
    transform_to_message,
)

LOG = logging.getLogger(__name__)

DEFAULT_REFERER = "http://koopjs.esri.com"
EDITS_MINOR_VERSION = 2


class KnowledgeGraphServer:
    """
    Feature-service facade over a knowledge graph service URL.

    Args:
        url: Service root, e.g. `https://host/server/rest/services/Hosted/KG/KnowledgeGraphServer`.
        token: Default token; `OperationContext.token` overrides it per call.
        codec: Injected `PbfClient` (tests pass one built on `httpx.MockTransport`).
        metrics: Metrics sink; defaults to `NoopMetrics`.
        spatial_filter_errors: "skip" (log and drop the clause) or "raise".
        referer: Referer header for the client built here; an injected
                 `codec` carries its own.
    """

    _component = "knowledge_graph"

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        *,
        codec: Optional[PbfClient] = None,
        metrics: Optional[MetricsSink] = None,
        spatial_filter_errors: str = "skip",
        referer: Optional[str] = DEFAULT_REFERER,
    ) -> None:
        if spatial_filter_errors not in SPATIAL_POLICIES:
            raise ValueError(f"spatial_filter_errors must be one of {SPATIAL_POLICIES}")
        self.url = url.rstrip("/")
        self._token = token or None
        self._codec = codec or PbfClient(referer=referer)
        self._metrics: MetricsSink = metrics or NoopMetrics()
        self._spatial_filter_errors = spatial_filter_errors
        self._schema = SchemaCache()

    async def __aenter__(self) -> "KnowledgeGraphServer":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._codec.close()

    # ---- internal helpers ---------------------------------------------------

    def _record(self, op: str, t0: float, ok: bool, *, code: str = "OK", **extra: Any) -> None:
        try:
            self._metrics.observe(
                component=self._component,
                op=op,
                ms=elapsed_ms(t0),
                ok=ok,
                code=code,
                extra=extra or None,
            )
        except Exception:
            # never let metrics break caller
            pass

    def _count(self, name: str, value: int = 1) -> None:
        try:
            self._metrics.counter(component=self._component, name=name, value=value)
        except Exception:
            pass

    def _token_for(self, ctx: Optional[OperationContext]) -> str:
        if ctx is not None and ctx.token:
            return ctx.token
        return self._token or ""

    def data_model_url(self, ctx: Optional[OperationContext] = None) -> str:
        return f"{self.url}/dataModel/queryDataModel?" + urlencode({"f": "pbf", "token": self._token_for(ctx)})

    def query_url(self, cypher: str, ctx: Optional[OperationContext] = None) -> str:
        params = urlencode(
            {"openCypherQuery": cypher, "f": "pbf", "token": self._token_for(ctx)},
            quote_via=quote,
        )
        return f"{self.url}/graph/query?{params}"

    def apply_edits_url(self, ctx: Optional[OperationContext] = None) -> str:
        return f"{self.url}/graph/applyEdits?" + urlencode({"f": "pbf", "token": self._token_for(ctx)})

    # ---- schema -------------------------------------------------------------

    async def _snapshot(self, ctx: Optional[OperationContext]) -> SchemaSnapshot:
        async def fetch() -> DataModel:
            self._count("schema_fetches")
            return await self._codec.fetch_data_model(self.data_model_url(ctx))

        return await self._schema.get(fetch)

    async def get_data_model(self, ctx: Optional[OperationContext] = None) -> DataModel:
        t0 = time.monotonic()
        try:
            snapshot = await self._snapshot(ctx)
        except KnowledgeGraphError as e:
            self._record("get_data_model", t0, False, code=e.code or type(e).__name__)
            raise
        self._record("get_data_model", t0, True)
        return snapshot.model

    async def get_entity_by_id(self, layer_id: Any, ctx: Optional[OperationContext] = None) -> LayerMetadata:
        snapshot = await self._snapshot(ctx)
        return snapshot.get(layer_id)

    async def layers(self, ctx: Optional[OperationContext] = None) -> Tuple[LayerMetadata, ...]:
        return (await self._snapshot(ctx)).layers

    async def tables(self, ctx: Optional[OperationContext] = None) -> Tuple[LayerMetadata, ...]:
        return (await self._snapshot(ctx)).tables

    async def service_info(self, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        snapshot = await self._snapshot(ctx)
        return {
            "layers": [m.to_feature_collection() for m in snapshot.layers],
            "tables": [m.to_feature_collection() for m in snapshot.tables],
        }

    # ---- queries ------------------------------------------------------------

    async def query(self, cypher: str, ctx: Optional[OperationContext] = None) -> QueryResponse:
        """Run raw Cypher; a server error embedded in the stream is raised."""
        response = await self._codec.execute_query(self.query_url(cypher, ctx))
        if response.error is not None:
            err = response.error
            err.details.setdefault("partial_rows", len(response.rows))
            raise err
        self._count("query_rows", len(response.rows))
        return response

    async def query_entity(
        self,
        layer: LayerMetadata,
        params: Optional[Mapping[str, Any]] = None,
        ctx: Optional[OperationContext] = None,
    ) -> Dict[str, Any]:
        t0 = time.monotonic()
        try:
            query = params if isinstance(params, FeatureQuery) else FeatureQuery.from_params(params)
            cypher = build_entity_query(
                layer.name,
                query,
                geometry_field=layer.geometry_field,
                spatial_filter_errors=self._spatial_filter_errors,
            )
            response = await self.query(cypher, ctx)
            if query.return_count_only:
                result = to_count_collection(response.rows)
            else:
                result = to_feature_collection(response.rows, layer.geometry_field, response.transform)
        except KnowledgeGraphError as e:
            self._record("query_entity", t0, False, code=e.code or type(e).__name__, layer=layer.id)
            raise
        self._record("query_entity", t0, True, layer=layer.id)
        return result

    async def query_relationship(
        self,
        layer: LayerMetadata,
        relationship_id: Any,
        params: Optional[Mapping[str, Any]] = None,
        ctx: Optional[OperationContext] = None,
    ) -> Dict[str, Any]:
        t0 = time.monotonic()
        try:
            descriptor = self._relationship(layer, relationship_id)
            snapshot = await self._snapshot(ctx)
            related = snapshot.get(descriptor.related_table_id)
            query = params if isinstance(params, FeatureQuery) else FeatureQuery.from_params(params)
            cypher = build_relationship_query(
                layer.name,
                related.name,
                descriptor,
                query,
                geometry_field=layer.geometry_field,
                spatial_filter_errors=self._spatial_filter_errors,
            )
            response = await self.query(cypher, ctx)
            if query.return_count_only:
                result = to_count_collection(response.rows)
            else:
                result = to_relationship_feature_collections(
                    response.rows, related.geometry_field, response.transform
                )
        except KnowledgeGraphError as e:
            self._record("query_relationship", t0, False, code=e.code or type(e).__name__, layer=layer.id)
            raise
        self._record("query_relationship", t0, True, layer=layer.id)
        return result

    @staticmethod
    def _relationship(layer: LayerMetadata, relationship_id: Any):
        try:
            rid = int(str(relationship_id).strip())
        except (TypeError, ValueError) as e:
            raise InvalidRelationshipId(f"invalid relationship id {relationship_id!r}") from e
        descriptor = layer.relationship(rid)
        if descriptor is None:
            raise InvalidRelationshipId(
                f"relationship {rid} is not defined on layer {layer.id}",
                details={"layer_id": layer.id, "relationship_id": rid},
            )
        return descriptor

    # ---- edits --------------------------------------------------------------

    async def _apply_edits(self, adds: Any, transform: Optional[TransformParams], ctx: Optional[OperationContext]) -> EditsResult:
        t0 = time.monotonic()
        header = pb.GraphApplyEditsHeader(minor_version=EDITS_MINOR_VERSION)
        if transform is not None:
            header.input_transform.CopyFrom(transform_to_message(transform))
        frame = pb.GraphApplyEditsFrame(adds=adds)
        result = await self._codec.submit_edits(self.apply_edits_url(ctx), header, frame)
        if result.error is not None:
            self._record("apply_edits", t0, False, code=result.error.code or "EDITS_ERROR")
        else:
            self._record("apply_edits", t0, True)
        return result

    async def add_entity(
        self,
        entity_type: str,
        properties: Mapping[str, Tuple[str, Any]],
        *,
        transform: Optional[TransformParams] = None,
        ctx: Optional[OperationContext] = None,
    ) -> EditsResult:
        """Add one entity; see `build_entity_adds` for the property format."""
        adds = build_entity_adds(entity_type, properties, transform=transform)
        return await self._apply_edits(adds, transform, ctx)

    async def add_relationship(
        self,
        origin_global_id: str,
        destination_global_id: str,
        relationship_type: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> EditsResult:
        adds = build_relationship_adds(origin_global_id, destination_global_id, relationship_type)
        return await self._apply_edits(adds, None, ctx)


__all__ = [
    "DEFAULT_REFERER",
    "KnowledgeGraphServer",
]
