"""
Design Utils - Color and font conversions shared by the prompt, renderer and serializer.
"""

import re
from typing import Dict, Optional

DEFAULT_FONT_FAMILY = "Inter"
DEFAULT_FONT_STYLE = "Regular"
DEFAULT_FONT_WEIGHT = 400

FONT_WEIGHT_TO_STYLE: Dict[int, str] = {
    100: "Thin",
    200: "ExtraLight",
    300: "Light",
    400: "Regular",
    500: "Medium",
    600: "SemiBold",
    700: "Bold",
    800: "ExtraBold",
    900: "Black",
}

FONT_STYLE_TO_WEIGHT: Dict[str, int] = {
    "Thin": 100,
    "Hairline": 100,
    "ExtraLight": 200,
    "UltraLight": 200,
    "Light": 300,
    "Regular": 400,
    "Normal": 400,
    "Medium": 500,
    "SemiBold": 600,
    "DemiBold": 600,
    "Bold": 700,
    "ExtraBold": 800,
    "UltraBold": 800,
    "Black": 900,
    "Heavy": 900,
}

_HEX6_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)
_HEX_ANY_RE = re.compile(r"^#?([a-f\d]{3}|[a-f\d]{6})$", re.IGNORECASE)


def hex_to_rgb(hex_color: str) -> Dict[str, float]:
    """Convert "#RRGGBB" to a 0-1 channel dict rounded to two decimals.

    Invalid input yields black.
    """
    if not is_valid_hex(hex_color):
        return {"r": 0.0, "g": 0.0, "b": 0.0}
    match = _HEX6_RE.match(normalize_hex(hex_color))
    r, g, b = (round(int(part, 16) / 255, 2) for part in match.groups())
    return {"r": r, "g": g, "b": b}


def rgb_to_hex(color: Dict[str, float]) -> str:
    r = round(float(color.get("r", 0)) * 255)
    g = round(float(color.get("g", 0)) * 255)
    b = round(float(color.get("b", 0)) * 255)
    return f"#{r:02x}{g:02x}{b:02x}"


def format_color_for_prompt(hex_color: str) -> str:
    """Show a palette color both as a 0-1 triple and as hex."""
    rgb = hex_to_rgb(hex_color)
    return f'{{ "r": {_fmt(rgb["r"])}, "g": {_fmt(rgb["g"])}, "b": {_fmt(rgb["b"])} }} ({hex_color})'


def is_valid_hex(hex_color: Optional[str]) -> bool:
    return bool(hex_color) and bool(_HEX_ANY_RE.match(hex_color))


def normalize_hex(hex_color: str) -> str:
    """Ensure a leading '#', expand shorthand (#ABC -> #AABBCC), upper-case."""
    normalized = hex_color if hex_color.startswith("#") else f"#{hex_color}"
    if len(normalized) == 4:
        normalized = "#" + "".join(ch * 2 for ch in normalized[1:])
    return normalized.upper()


def clamp_unit(value: float, default: float = 0.0) -> float:
    """Clamp a channel/opacity to [0, 1]; non-numbers become `default`."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, v))


def get_font_style(weight: Optional[int]) -> str:
    if weight is None:
        return DEFAULT_FONT_STYLE
    try:
        return FONT_WEIGHT_TO_STYLE.get(int(weight), DEFAULT_FONT_STYLE)
    except (TypeError, ValueError):
        return DEFAULT_FONT_STYLE


def get_font_weight(style: Optional[str]) -> int:
    """Map a font style name ("SemiBold", "bold", "Heavy") to its numeric weight."""
    if not style:
        return DEFAULT_FONT_WEIGHT
    if style in FONT_STYLE_TO_WEIGHT:
        return FONT_STYLE_TO_WEIGHT[style]
    style_lower = style.lower()
    for key, value in FONT_STYLE_TO_WEIGHT.items():
        if key.lower() == style_lower:
            return value
    return DEFAULT_FONT_WEIGHT


def _fmt(value: float) -> str:
    # 1.0 -> "1", 0.5 -> "0.5"
    return f"{value:g}"
