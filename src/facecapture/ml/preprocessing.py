"""Image preprocessing for the RetinaFace detector.

Handles letterboxing into the fixed square model input, BGR mean
subtraction, NCHW layout, and generation of the anchor priors the model
outputs are decoded against.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from numpy.typing import NDArray

BGR_MEAN = np.array([104.0, 117.0, 123.0], dtype=np.float32)

PRIOR_MIN_SIZES: tuple[tuple[int, ...], ...] = ((16, 32), (64, 128), (256, 512))
PRIOR_STEPS: tuple[int, ...] = (8, 16, 32)
VARIANCES: tuple[float, float] = (0.1, 0.2)


@dataclass(frozen=True)
class Letterbox:
    """Model input tensor plus the scale needed to map results back."""

    tensor: NDArray[np.float32]
    scale: float


def letterbox(image: Image.Image, size: int) -> Letterbox:
    """Resize keeping aspect ratio and pad to ``size x size`` at the top-left.

    Args:
        image: Any Pillow image; converted to RGB.
        size: Square model input size in pixels.

    Returns:
        A 1x3xHxW float32 BGR tensor with the mean subtracted, and the resize scale.
    """
    rgb = image.convert("RGB")
    scale = min(size / rgb.width, size / rgb.height)
    resized_w = max(1, round(rgb.width * scale))
    resized_h = max(1, round(rgb.height * scale))
    resized = rgb.resize((resized_w, resized_h), Image.Resampling.BILINEAR)

    canvas = np.zeros((size, size, 3), dtype=np.float32)
    canvas[:resized_h, :resized_w] = np.asarray(resized, dtype=np.float32)[:, :, ::-1]
    canvas -= BGR_MEAN
    tensor = canvas.transpose(2, 0, 1)[np.newaxis, ...]
    return Letterbox(tensor=np.ascontiguousarray(tensor), scale=scale)


def build_priors(size: int) -> NDArray[np.float32]:
    """Generate RetinaFace priors as (cx, cy, w, h) relative to the input size.

    Ordering matches the model outputs: feature level, then row, then
    column, then anchor size.
    """
    levels: list[NDArray[np.float32]] = []
    for step, min_sizes in zip(PRIOR_STEPS, PRIOR_MIN_SIZES, strict=True):
        rows = math.ceil(size / step)
        cols = math.ceil(size / step)
        ys, xs = np.meshgrid(np.arange(rows), np.arange(cols), indexing="ij")
        cx = (xs.reshape(-1) + 0.5) * step / size
        cy = (ys.reshape(-1) + 0.5) * step / size
        anchors = len(min_sizes)
        wh = np.tile(np.asarray(min_sizes, dtype=np.float32) / size, rows * cols)
        level = np.stack(
            [np.repeat(cx, anchors), np.repeat(cy, anchors), wh, wh],
            axis=1,
        )
        levels.append(level.astype(np.float32))
    return np.concatenate(levels, axis=0)


def decode_boxes(loc: NDArray[np.float32], priors: NDArray[np.float32]) -> NDArray[np.float32]:
    """Decode box regressions into relative (x1, y1, x2, y2) corners."""
    centers = priors[:, :2] + loc[:, :2] * VARIANCES[0] * priors[:, 2:]
    sizes = priors[:, 2:] * np.exp(loc[:, 2:] * VARIANCES[1])
    top_left = centers - sizes / 2
    return np.concatenate([top_left, top_left + sizes], axis=1)


def decode_landmarks(landms: NDArray[np.float32], priors: NDArray[np.float32]) -> NDArray[np.float32]:
    """Decode landmark regressions into relative (N, 5, 2) points."""
    offsets = landms.reshape(-1, 5, 2)
    return priors[:, np.newaxis, :2] + offsets * VARIANCES[0] * priors[:, np.newaxis, 2:]


def nms(boxes: NDArray[np.float32], scores: NDArray[np.float32], threshold: float) -> list[int]:
    """Greedy non-maximum suppression. Returns kept indices by descending score."""
    x1, y1, x2, y2 = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]
    areas = np.maximum(x2 - x1, 0) * np.maximum(y2 - y1, 0)
    order = scores.argsort()[::-1]

    keep: list[int] = []
    while order.size > 0:
        i = int(order[0])
        keep.append(i)
        rest = order[1:]
        w = np.maximum(0.0, np.minimum(x2[i], x2[rest]) - np.maximum(x1[i], x1[rest]))
        h = np.maximum(0.0, np.minimum(y2[i], y2[rest]) - np.maximum(y1[i], y1[rest]))
        inter = w * h
        union = areas[i] + areas[rest] - inter
        iou = np.divide(inter, union, out=np.zeros_like(inter), where=union > 0)
        order = rest[iou <= threshold]
    return keep
