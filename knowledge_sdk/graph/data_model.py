# knowledge_sdk/graph/data_model.py
# SPDX-License-Identifier: Apache-2.0
"""
Schema loader: data model cache and derived layer metadata.

The data model is fetched once per server object and turned into a flat
arena of `LayerMetadata`:

- geometry-bearing entity types first (discovery order), ids 0..N-1
- non-geometry entity types (tables) after them, ids N..N+M-1

Relationship types expand into descriptors attached to both ends of every
(origin, destination) pair. Descriptors reference layers by integer id only.

Concurrency
-----------
Cold-start fetches are single-flight: concurrent callers await one shared
task. A failed fetch clears both the cache and the in-flight slot so the
next caller retries.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from knowledge_sdk.graph.graph_base import (
    ROLE_DESTINATION,
    ROLE_ORIGIN,
    DataModel,
    EntityType,
    InvalidLayerId,
    KnowledgeGraphError,
    LayerMetadata,
    RelationshipDescriptor,
    SchemaFetchError,
    geometry_type_for,
)

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaSnapshot:
    """Cached data model plus the metadata derived from it."""
    model: DataModel
    layers: Tuple[LayerMetadata, ...]
    tables: Tuple[LayerMetadata, ...]

    @property
    def all(self) -> Tuple[LayerMetadata, ...]:
        return self.layers + self.tables

    def by_name(self, name: str) -> Optional[LayerMetadata]:
        for meta in self.all:
            if meta.name == name:
                return meta
        return None

    def get(self, layer_id: Any) -> LayerMetadata:
        return get_entity_by_id(self, layer_id)


def derive_layers(model: DataModel) -> SchemaSnapshot:
    """Number entity types and attach relationship descriptors."""
    spatial = [e for e in model.entity_types if e.geometry_property is not None]
    tabular = [e for e in model.entity_types if e.geometry_property is None]
    ordered: List[EntityType] = spatial + tabular
    ids: Dict[str, int] = {e.name: i for i, e in enumerate(ordered)}

    attached: Dict[int, List[RelationshipDescriptor]] = {i: [] for i in range(len(ordered))}
    next_id = 0
    for rel in model.relationship_types:
        for origin in rel.origin_entity_types:
            for dest in rel.dest_entity_types:
                if origin not in ids or dest not in ids:
                    LOG.debug("relationship %s references unknown entity (%s -> %s)", rel.name, origin, dest)
                    continue
                rel_id = next_id
                next_id += 1
                origin_id, dest_id = ids[origin], ids[dest]
                attached[origin_id].append(
                    RelationshipDescriptor(
                        id=rel_id,
                        name=rel.name,
                        related_table_id=dest_id,
                        role=ROLE_ORIGIN,
                        cardinality=rel.cardinality,
                    )
                )
                if origin_id != dest_id:
                    attached[dest_id].append(
                        RelationshipDescriptor(
                            id=rel_id,
                            name=rel.name,
                            related_table_id=origin_id,
                            role=ROLE_DESTINATION,
                            cardinality=rel.cardinality,
                        )
                    )

    metas = []
    for i, entity in enumerate(ordered):
        geom = entity.geometry_property
        metas.append(
            LayerMetadata(
                id=i,
                entity=entity,
                geometry_type=geometry_type_for(geom.geometry_type) if geom else None,
                relationships=tuple(attached[i]),
            )
        )
    return SchemaSnapshot(
        model=model,
        layers=tuple(metas[: len(spatial)]),
        tables=tuple(metas[len(spatial):]),
    )


def parse_layer_id(layer_id: Any) -> int:
    if isinstance(layer_id, bool):
        raise InvalidLayerId(f"invalid layer id {layer_id!r}")
    if isinstance(layer_id, int):
        value = layer_id
    else:
        text = str(layer_id).strip()
        if not text.isdigit():
            raise InvalidLayerId(f"invalid layer id {layer_id!r}")
        value = int(text)
    if value < 0:
        raise InvalidLayerId(f"invalid layer id {layer_id!r}")
    return value


def get_entity_by_id(snapshot: SchemaSnapshot, layer_id: Any) -> LayerMetadata:
    index = parse_layer_id(layer_id)
    everything = snapshot.all
    if index >= len(everything):
        raise InvalidLayerId(
            f"layer {index} does not exist",
            details={"layer_id": index, "count": len(everything)},
        )
    return everything[index]


class SchemaCache:
    """
    Single-flight cache around a data model fetch coroutine.

    `fetch` is called with no arguments and must return a `DataModel`.
    """

    def __init__(self) -> None:
        self._snapshot: Optional[SchemaSnapshot] = None
        self._inflight: Optional["asyncio.Task[SchemaSnapshot]"] = None
        self.fetches = 0

    @property
    def snapshot(self) -> Optional[SchemaSnapshot]:
        return self._snapshot

    async def get(self, fetch: Callable[[], Awaitable[DataModel]]) -> SchemaSnapshot:
        if self._snapshot is not None:
            return self._snapshot
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._load(fetch))
        task = self._inflight
        try:
            # shield so one cancelled waiter does not cancel the shared fetch
            return await asyncio.shield(task)
        finally:
            if task.done() and self._inflight is task:
                self._inflight = None

    async def _load(self, fetch: Callable[[], Awaitable[DataModel]]) -> SchemaSnapshot:
        self.fetches += 1
        try:
            model = await fetch()
        except SchemaFetchError:
            self._snapshot = None
            LOG.error("data model fetch failed")
            raise
        except KnowledgeGraphError as e:
            self._snapshot = None
            LOG.error("data model fetch failed: %s", e.code)
            raise SchemaFetchError(
                f"could not fetch data model: {e.message}",
                details={"cause": e.code},
            ) from e
        snapshot = derive_layers(model)
        self._snapshot = snapshot
        LOG.debug(
            "data model cached (%d layers, %d tables)", len(snapshot.layers), len(snapshot.tables)
        )
        return snapshot


__all__ = [
    "SchemaSnapshot",
    "SchemaCache",
    "derive_layers",
    "parse_layer_id",
    "get_entity_by_id",
]
