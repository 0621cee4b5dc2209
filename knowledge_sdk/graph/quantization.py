# knowledge_sdk/graph/quantization.py
# SPDX-License-Identifier: Apache-2.0
"""
Quantized coordinate reconstruction.

Query responses carry geometry as integer coordinates in a quantized space:
the first (x, y) pair is absolute, every following pair is a delta from the
previous absolute position. The response header carries the affine transform
(scale + translate) that maps real-world coordinates into that space.

Reconstruction accumulates the raw deltas first and only then applies the
inverse transform to each accumulated absolute point. All arithmetic is
64-bit float; nothing is rounded here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from knowledge_sdk.graph.graph_base import TransformParams

Point = Tuple[float, float]


@dataclass
class Transformation2D:
    """
    2D affine transform:

        x' = xx * x + xy * y + xd
        y' = yx * x + yy * y + yd
    """
    xx: float = 0.0
    xy: float = 0.0
    xd: float = 0.0
    yx: float = 0.0
    yy: float = 0.0
    yd: float = 0.0

    def set_zero(self) -> None:
        self.xx = self.xy = self.xd = 0.0
        self.yx = self.yy = self.yd = 0.0

    def set_shift(self, x: float, y: float) -> None:
        self.xx, self.xy, self.xd = 1.0, 0.0, x
        self.yx, self.yy, self.yd = 0.0, 1.0, y

    def set_scale(self, x: float, y: float) -> None:
        self.xx, self.xy, self.xd = x, 0.0, 0.0
        self.yx, self.yy, self.yd = 0.0, y, 0.0

    def scale(self, x: float, y: float) -> None:
        """Compose with a scale applied after the current transform."""
        self.xx *= x
        self.xy *= x
        self.xd *= x
        self.yx *= y
        self.yy *= y
        self.yd *= y

    @property
    def determinant(self) -> float:
        return self.xx * self.yy - self.xy * self.yx

    def inverse(self) -> "Transformation2D":
        """
        Standard 2x2 affine inverse.

        A zero determinant yields the zero transform instead of raising.
        """
        inv = Transformation2D()
        det = self.determinant
        if det == 0.0:
            return inv
        det = 1.0 / det
        inv.xd = (self.xy * self.yd - self.xd * self.yy) * det
        inv.yd = (self.xd * self.yx - self.xx * self.yd) * det
        inv.xx = self.yy * det
        inv.xy = -self.xy * det
        inv.yx = -self.yx * det
        inv.yy = self.xx * det
        return inv

    def apply(self, x: float, y: float) -> Point:
        return (
            self.xx * x + self.xy * y + self.xd,
            self.yx * x + self.yy * y + self.yd,
        )


def create_transform(params: TransformParams) -> Transformation2D:
    """Forward (quantizing) transform: shift by -translate, then scale by 1/scale."""
    t = Transformation2D()
    t.set_shift(-params.x_translate, -params.y_translate)
    t.scale(1.0 / params.x_scale, 1.0 / params.y_scale)
    return t


def create_inverse_transform(params: TransformParams) -> Transformation2D:
    return create_transform(params).inverse()


def accumulate_deltas(coords: Sequence[float]) -> List[Point]:
    """
    Turn a flat delta-encoded sequence into absolute quantized points.

    A trailing unpaired value is ignored.
    """
    points: List[Point] = []
    if len(coords) < 2:
        return points
    x = float(coords[0])
    y = float(coords[1])
    points.append((x, y))
    for i in range(2, len(coords) - 1, 2):
        x += float(coords[i])
        y += float(coords[i + 1])
        points.append((x, y))
    return points


def dequantize(coords: Sequence[float], params: TransformParams) -> List[Point]:
    """Reconstruct real-world points from delta-encoded quantized coordinates."""
    inverse = create_inverse_transform(params)
    return [inverse.apply(x, y) for x, y in accumulate_deltas(coords)]


def quantize(points: Iterable[Point], params: TransformParams) -> List[float]:
    """
    Encode real-world points as a flat delta sequence (first pair absolute).

    Used to build edit payloads; values are not rounded.
    """
    forward = create_transform(params)
    out: List[float] = []
    prev = None
    for x, y in points:
        qx, qy = forward.apply(x, y)
        if prev is None:
            out.extend((qx, qy))
        else:
            out.extend((qx - prev[0], qy - prev[1]))
        prev = (qx, qy)
    return out


__all__ = [
    "Transformation2D",
    "create_transform",
    "create_inverse_transform",
    "accumulate_deltas",
    "dequantize",
    "quantize",
]
