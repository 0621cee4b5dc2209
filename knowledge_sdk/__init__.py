# knowledge_sdk/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Knowledge SDK

Serve remote knowledge graph services as GeoServices FeatureServers:
feature-service queries are translated to openCypher, executed over the
service's binary protocol and assembled into GeoJSON.
"""

from knowledge_sdk.graph import (
    KNOWLEDGE_PROTOCOL_VERSION,
    KnowledgeGraphError,
    KnowledgeGraphServer,
    OperationContext,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "KNOWLEDGE_PROTOCOL_VERSION",
    "KnowledgeGraphError",
    "KnowledgeGraphServer",
    "OperationContext",
]
