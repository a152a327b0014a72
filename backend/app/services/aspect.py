from __future__ import annotations

import enum

from app.core.errors import InvalidDimensions


# Wide enough for encoder padding (1920x1088), narrow enough to keep 16:10 and 4:3 out.
RATIO_TOLERANCE = 0.02

LANDSCAPE_RATIO = 16.0 / 9.0
PORTRAIT_RATIO = 9.0 / 16.0


class AspectClass(str, enum.Enum):
    landscape = "landscape"
    portrait = "portrait"
    other = "other"


def classify(width: int, height: int) -> AspectClass:
    if width <= 0 or height <= 0:
        raise InvalidDimensions(f"invalid dimensions: width={width} height={height}", stage="classify")

    r = float(width) / float(height)
    # 16:9 first, then 9:16.
    if abs(r - LANDSCAPE_RATIO) < RATIO_TOLERANCE:
        return AspectClass.landscape
    if abs(r - PORTRAIT_RATIO) < RATIO_TOLERANCE:
        return AspectClass.portrait
    return AspectClass.other
