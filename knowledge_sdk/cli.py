# knowledge_sdk/cli.py
# SPDX-License-Identifier: Apache-2.0
"""
Knowledge SDK CLI

Serve configured knowledge graph sources as FeatureServers, or print the
openCypher a layer query translates to.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from knowledge_sdk.config import ConfigError, ProviderConfig, load_config
from knowledge_sdk.graph.cypher_builder import FeatureQuery, build_entity_query
from knowledge_sdk.graph.graph_base import KnowledgeGraphError, ServiceNotFound
from knowledge_sdk.graph.knowledge_server import KnowledgeGraphServer

LOG = logging.getLogger(__name__)


def _configure_logging(level: Optional[str]) -> None:
    name = (level or os.environ.get("KNOWLEDGE_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _query_params(args: argparse.Namespace) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if args.where:
        params["where"] = args.where
    if args.object_ids:
        params["objectIds"] = args.object_ids
    if args.geometry:
        params["geometry"] = args.geometry
    if args.in_sr:
        params["inSR"] = args.in_sr
    if args.spatial_rel:
        params["spatialRel"] = args.spatial_rel
    if args.ids_only:
        params["returnIdsOnly"] = "true"
    if args.count_only:
        params["returnCountOnly"] = "true"
    if args.limit is not None:
        params["resultRecordCount"] = args.limit
    return params


async def _cypher_for_layer(args: argparse.Namespace, config: ProviderConfig) -> str:
    source = config.sources.get(args.service)
    if source is None:
        raise ServiceNotFound(f"Service {args.service} not found")
    async with KnowledgeGraphServer(
        source.url,
        args.token or source.token,
        spatial_filter_errors=config.spatial_filter_errors,
        referer=config.referer,
    ) as server:
        layer = await server.get_entity_by_id(args.layer)
        return build_entity_query(
            layer.name,
            FeatureQuery.from_params(_query_params(args)),
            geometry_field=layer.geometry_field,
            spatial_filter_errors=config.spatial_filter_errors,
        )


def _cmd_cypher(args: argparse.Namespace, config: ProviderConfig) -> int:
    try:
        if args.entity:
            cypher = build_entity_query(
                args.entity,
                FeatureQuery.from_params(_query_params(args)),
                geometry_field=args.geometry_field,
                spatial_filter_errors=config.spatial_filter_errors,
            )
        else:
            if not args.service or args.layer is None:
                print("error: --service and --layer are required without --entity", file=sys.stderr)
                return 2
            cypher = asyncio.run(_cypher_for_layer(args, config))
    except KnowledgeGraphError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    print(cypher)
    return 0


def _cmd_serve(args: argparse.Namespace, config: ProviderConfig) -> int:
    import uvicorn

    from knowledge_sdk.service.app import create_app

    if not config.sources:
        LOG.warning("no knowledge graph sources configured")
    uvicorn.run(create_app(config), host=args.host, port=args.port, log_level=config.log_level.lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knowledge-sdk",
        description="Knowledge SDK CLI - knowledge graphs as feature services",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  knowledge-sdk serve --port 8080
  knowledge-sdk cypher --entity Well --where "OBJECTID in (1,2,3)"
  knowledge-sdk cypher --service myGraph --layer 0 --ids-only

Configuration (environment variables):
  KNOWLEDGE_CONFIG=path.json             Provider config file
  KNOWLEDGE_SOURCES='{"k": {"url": ..}}' Source overrides
  KNOWLEDGE_LOG_LEVEL=DEBUG              Log level
  KNOWLEDGE_SPATIAL_FILTER_ERRORS=raise  Fail queries with bad geometry
        """.strip(),
    )
    parser.add_argument("--config", help="Path to the provider config file")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")

    subparsers = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    serve = subparsers.add_parser("serve", help="Run the feature service API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)

    cypher = subparsers.add_parser("cypher", help="Print the Cypher for a layer query")
    cypher.add_argument("--service", help="Configured source key")
    cypher.add_argument("--layer", help="Layer id")
    cypher.add_argument("--token", help="Token overriding the configured one")
    cypher.add_argument("--entity", help="Translate against this entity name without fetching the schema")
    cypher.add_argument("--geometry-field", default="shape", help="Geometry field used with --entity")
    cypher.add_argument("--where")
    cypher.add_argument("--object-ids")
    cypher.add_argument("--geometry")
    cypher.add_argument("--in-sr")
    cypher.add_argument("--spatial-rel")
    cypher.add_argument("--ids-only", action="store_true")
    cypher.add_argument("--count-only", action="store_true")
    cypher.add_argument("--limit", type=int)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return e.code

    _configure_logging(args.log_level)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    if args.command == "serve":
        return _cmd_serve(args, config)
    if args.command == "cypher":
        return _cmd_cypher(args, config)
    parser.print_help()
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
