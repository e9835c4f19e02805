"""
Temperature classification of engagement scores
"""

import math
from typing import Union

from services.enums import ClientTemperature

HOT_THRESHOLD = 80
WARM_THRESHOLD = 50


def classify_temperature(score: Union[int, float, None]) -> ClientTemperature:
    """
    Bucket an engagement score.

    80 and above is hot, 50-79 warm, anything else cold. Scores outside
    0-100 are clamped first and a missing or NaN score is cold, so this never
    raises.
    """
    if score is None:
        return ClientTemperature.COLD
    try:
        value = float(score)
    except (TypeError, ValueError):
        return ClientTemperature.COLD
    if math.isnan(value):
        return ClientTemperature.COLD

    value = max(0.0, min(100.0, value))
    if value >= HOT_THRESHOLD:
        return ClientTemperature.HOT
    if value >= WARM_THRESHOLD:
        return ClientTemperature.WARM
    return ClientTemperature.COLD
