# SPDX-License-Identifier: Apache-2.0
"""
Knowledge SDK Tests

Core tests (quantization, codec, schema loader, query translation, GeoJSON
assembly, server) live in tests/graph; the feature-service host surface
(handler, FastAPI app, config, CLI) in tests/service.
"""
