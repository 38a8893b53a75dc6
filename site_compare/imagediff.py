"""site_compare.imagediff: грубое сравнение скриншотов подсчётом отличающихся пикселей.

Порог задаётся долей (например, 0.01) от максимального евклидова расстояния
между двумя RGB-цветами (255·√3 ≈ 441.67). Сравнивается только общая
(перекрывающаяся) область двух изображений.
"""

from __future__ import annotations

import io
from typing import Final, Union

import numpy as np
from PIL import Image

__all__ = ("MAX_RGB_DISTANCE", "scaled_threshold", "threshold_count", "within_threshold")

MAX_RGB_DISTANCE: Final[float] = 441.67

_ImageSource = Union[bytes, Image.Image]


def _to_rgb_array(source: _ImageSource) -> np.ndarray:
    image = Image.open(io.BytesIO(source)) if isinstance(source, (bytes, bytearray)) else source
    return np.asarray(image.convert("RGB"), dtype=np.float64)


def scaled_threshold(rmse_threshold: float) -> float:
    """Переводит долю в единицы расстояния RGB."""
    return rmse_threshold * MAX_RGB_DISTANCE


def threshold_count(left: _ImageSource, right: _ImageSource, threshold: float) -> int:
    """Число пикселей, RGB-расстояние которых строго больше *threshold*."""
    a = _to_rgb_array(left)
    b = _to_rgb_array(right)
    height = min(a.shape[0], b.shape[0])
    width = min(a.shape[1], b.shape[1])
    if height == 0 or width == 0:
        return 0
    delta = a[:height, :width] - b[:height, :width]
    distance = np.sqrt((delta * delta).sum(axis=2))
    return int(np.count_nonzero(distance > threshold))


def within_threshold(count: int, max_count: int) -> bool:
    """Сравнение проходит, если число различий не превышает допустимое."""
    return count <= max_count
