"""Statistics and colour science helpers for device profiling."""

from __future__ import annotations

import colorsys
import itertools
import math
from typing import Iterable, Sequence

import numpy as np

from aurora_sync.core.models import BrightnessSample

RGB = tuple[int, int, int]


def mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) else 0.0


def consistency(values: Sequence[float]) -> float:
    """Population standard deviation; 0 for fewer than two samples."""
    if len(values) < 2:
        return 0.0
    return float(np.std(values))


def percentile(values: Sequence[float], pct: float) -> float:
    """Nearest-rank percentile."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = math.ceil((pct / 100.0) * len(ordered)) - 1
    return float(ordered[max(0, min(index, len(ordered) - 1))])


def brightness_linearity(samples: Iterable[BrightnessSample]) -> float:
    """
    R² of a least-squares line through (commanded, reported) brightness.

    A perfectly flat response carries no information about the curve and is
    reported as 0; a single sample cannot be fitted and also yields 0.
    """
    points = [(s.input, s.output) for s in samples]
    if len(points) < 2:
        return 0.0
    x = np.array([p[0] for p in points], dtype=np.float64)
    y = np.array([p[1] for p in points], dtype=np.float64)

    ss_tot = float(np.sum((y - y.mean()) ** 2))
    if ss_tot == 0.0 or float(np.ptp(x)) == 0.0:
        return 0.0

    slope, intercept = np.polyfit(x, y, 1)
    ss_res = float(np.sum((y - (slope * x + intercept)) ** 2))
    return max(0.0, min(1.0, 1.0 - ss_res / ss_tot))


def _srgb_to_linear(c: float) -> float:
    c = c / 255.0
    return c / 12.92 if c <= 0.04045 else ((c + 0.055) / 1.055) ** 2.4


def rgb_to_lab(rgb: Sequence[float]) -> tuple[float, float, float]:
    """sRGB (0-255) to CIE L*a*b* under D65."""
    r, g, b = (_srgb_to_linear(float(c)) for c in rgb)
    x = (0.4124564 * r + 0.3575761 * g + 0.1804375 * b) / 0.95047
    y = (0.2126729 * r + 0.7151522 * g + 0.0721750 * b) / 1.00000
    z = (0.0193339 * r + 0.1191920 * g + 0.9503041 * b) / 1.08883

    def f(t: float) -> float:
        return t ** (1.0 / 3.0) if t > 216.0 / 24389.0 else (24389.0 / 27.0 * t + 16.0) / 116.0

    fx, fy, fz = f(x), f(y), f(z)
    return 116.0 * fy - 16.0, 500.0 * (fx - fy), 200.0 * (fy - fz)


def delta_e76(a: Sequence[float], b: Sequence[float]) -> float:
    """CIE76 colour difference between two sRGB colours."""
    la, lb = rgb_to_lab(a), rgb_to_lab(b)
    return math.sqrt(sum((p - q) ** 2 for p, q in zip(la, lb)))


# Largest CIE76 distance inside the sRGB gamut (between cube corners, ~258.7)
MAX_DELTA_E76 = max(
    delta_e76(p, q)
    for p, q in itertools.combinations(itertools.product((0, 255), repeat=3), 2)
)


def color_accuracy(commanded: Sequence[float], reported: Sequence[float]) -> float:
    """1 - normalized CIE76 distance, within [0, 1]."""
    return max(0.0, min(1.0, 1.0 - delta_e76(commanded, reported) / MAX_DELTA_E76))


def hs_to_rgb(hue: float, saturation: float) -> RGB:
    """Platform hs_color (degrees, percent) at full value to sRGB."""
    r, g, b = colorsys.hsv_to_rgb((hue % 360.0) / 360.0, max(0.0, min(1.0, saturation / 100.0)), 1.0)
    return round(r * 255), round(g * 255), round(b * 255)


def smoothness(samples: Sequence[float]) -> float:
    """1 / (1 + coefficient of variation) of response times."""
    if not samples:
        return 0.0
    m = mean(samples)
    if m <= 0:
        return 1.0
    return 1.0 / (1.0 + consistency(samples) / m)
