# knowledge_sdk/service/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Feature-service host surface: request routing and the FastAPI app.
"""

from knowledge_sdk.service.feature_service import (
    QUERY_METHODS,
    FeatureServiceRequest,
    FeatureServiceResponse,
    FeatureServiceHandler,
    status_for,
)

__all__ = [
    "QUERY_METHODS",
    "FeatureServiceRequest",
    "FeatureServiceResponse",
    "FeatureServiceHandler",
    "status_for",
]
