from typing import List, Union

from .models import Bar

QUANTITY_SCALE: List[str] = [
    "thousand",
    "million",
    "billion",
    "trillion",
    "quadrillion",
    "quintillion",
    "sextillion",
    "septillion",
]


def humanize_quantity(value: float, threshold: int = 1000) -> Union[float, str]:
    """1_500_000 -> '1.5 million'; values under the threshold are returned as is"""
    if value < threshold:
        return value
    exponent: int = -1
    while value >= threshold and exponent < len(QUANTITY_SCALE) - 1:
        value /= threshold
        exponent += 1
    return f"{value:.1f} {QUANTITY_SCALE[exponent]}"


def overlay_text(bar: Bar, precision: int = 2) -> str:
    """Crosshair legend for a hovered bar; empty for bars without trades"""
    if bar.is_empty or not bar.open:
        return ""
    change: float = (bar.close - bar.open) / bar.open * 100
    return (f"O: {bar.open:.{precision}f} H: {bar.high:.{precision}f} "
            f"L: {bar.low:.{precision}f} C: {bar.close:.{precision}f} "
            f"%: {change:.{precision}f} V: {humanize_quantity(bar.volume or 0.0)}")
