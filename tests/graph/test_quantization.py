# tests/graph/test_quantization.py
# SPDX-License-Identifier: Apache-2.0
"""
Quantization — affine transforms and delta reconstruction.

Asserts:
  • Forward transform is shift(-translate) then scale(1/scale)
  • Reconstruct → re-quantize recovers the absolute quantized points
  • Zero-determinant transforms invert to the zero transform
  • Deltas accumulate in quantized space before the inverse is applied
  • Transform descriptions `{scale: {x, y}, translate: {x, y}}` parse into parameters
"""

import pytest

from knowledge_sdk.graph.graph_base import TransformParams
from knowledge_sdk.graph.quantization import (
    Transformation2D,
    accumulate_deltas,
    create_inverse_transform,
    create_transform,
    dequantize,
    quantize,
)

PARAMS = TransformParams(x_scale=0.001, y_scale=0.002, x_translate=-180.0, y_translate=-90.0)


def test_forward_transform_shifts_then_scales():
    t = create_transform(PARAMS)
    x, y = t.apply(-179.0, -89.0)
    assert x == pytest.approx(1000.0)
    assert y == pytest.approx(500.0)


def test_inverse_undoes_forward():
    forward = create_transform(PARAMS)
    inverse = create_inverse_transform(PARAMS)
    qx, qy = forward.apply(12.5, 41.25)
    x, y = inverse.apply(qx, qy)
    assert x == pytest.approx(12.5)
    assert y == pytest.approx(41.25)


@pytest.mark.parametrize(
    "params",
    [
        PARAMS,
        TransformParams(x_scale=1e-4, y_scale=1e-4, x_translate=-400.0, y_translate=-400.0),
        TransformParams(x_scale=2.5, y_scale=0.5, x_translate=10.0, y_translate=-3.0),
    ],
)
def test_round_trip_recovers_absolute_quantized_points(params):
    deltas = [1000, 2000, 5, -3, -12, 40, 0, 0, 7, 7]
    absolute = accumulate_deltas(deltas)

    points = dequantize(deltas, params)
    forward = create_transform(params)
    requantized = [forward.apply(x, y) for x, y in points]

    assert len(requantized) == len(absolute)
    for (qx, qy), (ax, ay) in zip(requantized, absolute):
        assert qx == pytest.approx(ax, abs=1e-6)
        assert qy == pytest.approx(ay, abs=1e-6)


def test_quantize_emits_first_point_absolute_then_deltas():
    points = [(-179.0, -89.0), (-178.0, -88.0)]
    out = quantize(points, PARAMS)
    assert out[0] == pytest.approx(1000.0)
    assert out[1] == pytest.approx(500.0)
    assert out[2] == pytest.approx(1000.0)
    assert out[3] == pytest.approx(500.0)


def test_zero_determinant_inverts_to_zero_transform():
    t = Transformation2D()
    t.set_scale(0.0, 5.0)
    assert t.determinant == 0.0

    inv = t.inverse()
    assert (inv.xx, inv.xy, inv.xd, inv.yx, inv.yy, inv.yd) == (0.0, 0.0, 0.0, 0.0, 0.0, 0.0)
    assert inv.apply(10.0, 20.0) == (0.0, 0.0)


def test_accumulate_deltas_ignores_trailing_odd_value():
    assert accumulate_deltas([1, 2, 3, 4, 99]) == [(1.0, 2.0), (4.0, 6.0)]
    assert accumulate_deltas([5]) == []
    assert accumulate_deltas([]) == []


def test_first_point_is_taken_verbatim_before_inverse():
    identity = TransformParams()
    assert dequantize([10, 20, 1, 1], identity) == [(10.0, 20.0), (11.0, 21.0)]


def test_scale_composes_after_existing_transform():
    t = Transformation2D()
    t.set_shift(2.0, 3.0)
    t.scale(10.0, 100.0)
    assert t.apply(1.0, 1.0) == (30.0, 400.0)


def test_transform_description_parses_to_params():
    params = TransformParams.from_mapping({"scale": {"x": 0.5, "y": 0.25}, "translate": {"x": 10, "y": -20}})
    assert params == TransformParams(x_scale=0.5, y_scale=0.25, x_translate=10.0, y_translate=-20.0)
    points = dequantize([2, 4, 2, 4], params)
    assert points[0] == pytest.approx((11.0, -19.0))
    assert points[1] == pytest.approx((12.0, -18.0))
    assert TransformParams.from_mapping(None) is None
