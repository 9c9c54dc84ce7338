"""
Design Schema - Typed design document shared by the parser, renderer and serializer

The generative model emits JSON in camelCase; every model here accepts those
aliases as well as the snake_case field names. Parsing is lenient where model
output is commonly sloppy (lower-case enums, 0-255 colors, hex strings,
numeric padding). A document-tree field that still fails validation is
dropped back to its default with a warning instead of rejecting the whole
document; a bad entry in a list field drops only that entry.
"""

import logging
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from design_utils import clamp_unit, get_font_weight, hex_to_rgb, is_valid_hex

logger = logging.getLogger(__name__)


class DesignModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_json_dict(self) -> Dict[str, Any]:
        """camelCase dict without unset/None fields, as the model would write it."""
        return self.model_dump(by_alias=True, exclude_none=True)


class LenientModel(DesignModel):
    """Document-tree model: one malformed field never rejects the whole design."""

    @field_validator("*", mode="wrap")
    @classmethod
    def _drop_invalid(cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo) -> Any:
        try:
            return handler(value)
        except ValidationError as e:
            field = cls.model_fields[info.field_name]
            if field.is_required():
                raise
            if isinstance(value, list):
                kept = _valid_items(value, handler)
                if kept is not None:
                    logger.warning(
                        f"⚠️ Dropped {len(value) - len(kept)} invalid entr{'y' if len(value) - len(kept) == 1 else 'ies'} "
                        f"from {cls.__name__}.{info.field_name}"
                    )
                    return kept
            logger.warning(f"⚠️ Ignoring invalid {cls.__name__}.{info.field_name}={value!r:.80} ({e.error_count()} error(s))")
            return field.get_default(call_default_factory=True)


def _valid_items(items: List[Any], handler: ValidatorFunctionWrapHandler) -> Optional[List[Any]]:
    """The entries of `items` that validate on their own, or None if the field is not a list."""
    try:
        handler([])
    except ValidationError:
        return None
    kept: List[Any] = []
    for item in items:
        try:
            kept.extend(handler([item]))
        except ValidationError:
            continue
    return kept


# ============================================
# ============ PAINTS & EFFECTS ==============
# ============================================

class Color(LenientModel):
    r: float = 0.0
    g: float = 0.0
    b: float = 0.0
    a: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        if isinstance(value, str) and is_valid_hex(value):
            return hex_to_rgb(value)
        if isinstance(value, dict):
            channels = [value.get(k) for k in ("r", "g", "b")]
            numeric = [c for c in channels if isinstance(c, (int, float))]
            # Any channel above 1 means the model wrote a 0-255 triple
            if numeric and max(numeric) > 1:
                value = dict(value)
                for k in ("r", "g", "b"):
                    if isinstance(value.get(k), (int, float)):
                        value[k] = value[k] / 255
        return value

    @field_validator("r", "g", "b")
    @classmethod
    def _clamp_channel(cls, v: float) -> float:
        return clamp_unit(v)

    @field_validator("a")
    @classmethod
    def _clamp_alpha(cls, v: Optional[float]) -> Optional[float]:
        return None if v is None else clamp_unit(v, 1.0)

    def rgb(self) -> Dict[str, float]:
        return {"r": self.r, "g": self.g, "b": self.b}

    def rgba(self) -> Dict[str, float]:
        return {"r": self.r, "g": self.g, "b": self.b, "a": 1.0 if self.a is None else self.a}


class GradientStop(LenientModel):
    position: float = 0.0
    color: Color = Field(default_factory=Color)


class Fill(LenientModel):
    type: str = "SOLID"
    color: Optional[Color] = None
    opacity: Optional[float] = None
    gradient_stops: Optional[List[GradientStop]] = None
    color_variable: Optional[str] = None
    visible: Optional[bool] = None

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class Stroke(LenientModel):
    type: str = "SOLID"
    color: Optional[Color] = None
    opacity: Optional[float] = None
    color_variable: Optional[str] = None
    visible: Optional[bool] = None

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class Offset(LenientModel):
    x: float = 0.0
    y: float = 0.0


class Effect(LenientModel):
    type: str = "DROP_SHADOW"
    color: Optional[Color] = None
    offset: Optional[Offset] = None
    radius: Optional[float] = None
    spread: Optional[float] = None
    visible: Optional[bool] = None

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class Padding(LenientModel):
    top: float = 0.0
    right: float = 0.0
    bottom: float = 0.0
    left: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _uniform(cls, value: Any) -> Any:
        # "padding": 16 means all four sides
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return {"top": value, "right": value, "bottom": value, "left": value}
        return value


class LineHeight(LenientModel):
    value: float = 0.0
    unit: str = "PIXELS"


# ============================================
# ============ DOCUMENT TREE =================
# ============================================

ELEMENT_TYPES = ("FRAME", "TEXT", "RECTANGLE", "ELLIPSE", "LINE", "INSTANCE")


class AppearanceProps(LenientModel):
    fills: Optional[List[Fill]] = None
    strokes: Optional[List[Stroke]] = None
    stroke_weight: Optional[float] = None
    corner_radius: Optional[float] = None
    opacity: Optional[float] = None
    effects: Optional[List[Effect]] = None


class ContainerProps(LenientModel):
    layout_mode: Optional[str] = None
    primary_axis_align_items: Optional[str] = None
    counter_axis_align_items: Optional[str] = None
    primary_axis_sizing_mode: Optional[str] = None
    counter_axis_sizing_mode: Optional[str] = None
    padding: Optional[Padding] = None
    padding_variable: Optional[str] = None
    item_spacing: Optional[float] = None
    item_spacing_variable: Optional[str] = None
    clips_content: Optional[bool] = None

    @field_validator(
        "layout_mode",
        "primary_axis_align_items",
        "counter_axis_align_items",
        "primary_axis_sizing_mode",
        "counter_axis_sizing_mode",
        mode="before",
    )
    @classmethod
    def _upper_enum(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class ElementBase(AppearanceProps):
    type: str = "FRAME"
    name: str = ""
    width: Optional[float] = None
    height: Optional[float] = None
    x: Optional[float] = None
    y: Optional[float] = None
    layout_align: Optional[str] = None
    layout_grow: Optional[float] = None
    layout_positioning: Optional[str] = None

    @field_validator("type", "layout_align", "layout_positioning", mode="before")
    @classmethod
    def _upper(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @property
    def kind(self) -> str:
        """The variant this element renders as."""
        return "FRAME"


class FrameElement(ElementBase, ContainerProps):
    """Container element. Unknown element types (e.g. VECTOR) validate as frames."""

    type: str = "FRAME"
    children: List["Element"] = Field(default_factory=list)


class TextElement(ElementBase):
    type: str = "TEXT"
    characters: str = ""
    font_size: Optional[float] = None
    font_weight: Optional[int] = None
    font_family: Optional[str] = None
    text_style_name: Optional[str] = None
    text_align_horizontal: Optional[str] = None
    text_align_vertical: Optional[str] = None
    line_height: Optional[Union[float, LineHeight]] = None
    letter_spacing: Optional[float] = None
    text_case: Optional[str] = None
    text_decoration: Optional[str] = None

    @field_validator("font_weight", mode="before")
    @classmethod
    def _weight_from_style(cls, v: Any) -> Any:
        # "fontWeight": "bold"
        if isinstance(v, str) and not v.strip().isdigit():
            return get_font_weight(v.strip())
        return v

    @field_validator("line_height", mode="before")
    @classmethod
    def _auto_line_height(cls, v: Any) -> Any:
        # "AUTO" is the host default, same as leaving it unset
        if isinstance(v, str) and v.strip().upper() == "AUTO":
            return None
        if isinstance(v, dict) and str(v.get("unit", "")).upper() == "AUTO":
            return None
        return v

    @property
    def kind(self) -> str:
        return "TEXT"


class RectangleElement(ElementBase):
    type: str = "RECTANGLE"

    @property
    def kind(self) -> str:
        return "RECTANGLE"


class EllipseElement(ElementBase):
    type: str = "ELLIPSE"

    @property
    def kind(self) -> str:
        return "ELLIPSE"


class LineElement(ElementBase):
    type: str = "LINE"

    @property
    def kind(self) -> str:
        return "LINE"


class InstanceElement(FrameElement):
    """Component instance; keeps container fields so it can fall back to a frame."""

    type: str = "INSTANCE"
    component_key: Optional[str] = None
    component_properties: Optional[Dict[str, Union[bool, str]]] = None

    @field_validator("component_properties", mode="before")
    @classmethod
    def _stringify_numbers(cls, v: Any) -> Any:
        # Text properties arrive as numbers ("Count": 3)
        if isinstance(v, dict):
            return {k: str(p) if isinstance(p, (int, float)) and not isinstance(p, bool) else p for k, p in v.items()}
        return v

    @property
    def kind(self) -> str:
        return "INSTANCE"


def _element_tag(value: Any) -> str:
    if isinstance(value, dict):
        raw = value.get("type")
    else:
        raw = getattr(value, "type", None)
    tag = str(raw or "FRAME").upper()
    return tag if tag in ELEMENT_TYPES else "FRAME"


Element = Annotated[
    Union[
        Annotated[FrameElement, Tag("FRAME")],
        Annotated[TextElement, Tag("TEXT")],
        Annotated[RectangleElement, Tag("RECTANGLE")],
        Annotated[EllipseElement, Tag("ELLIPSE")],
        Annotated[LineElement, Tag("LINE")],
        Annotated[InstanceElement, Tag("INSTANCE")],
    ],
    Discriminator(_element_tag),
]


class DesignDocument(ContainerProps, AppearanceProps):
    """Root of a generated (or serialized) screen."""

    name: str = ""
    width: Optional[float] = None
    height: Optional[float] = None
    children: List[Element] = Field(default_factory=list)


FrameElement.model_rebuild()
InstanceElement.model_rebuild()
DesignDocument.model_rebuild()

element_adapter: TypeAdapter = TypeAdapter(Element)


# ============================================
# ======= DESIGN SYSTEM PROJECTIONS ==========
# ============================================

class VariableInfo(DesignModel):
    id: str
    name: str
    collection: str = ""
    value: Union[float, str, None] = None  # hex for colors, number for spacing
    is_token: bool = False
    description: Optional[str] = None


class TextStyleInfo(DesignModel):
    id: str
    name: str
    font_family: str = "Inter"
    font_style: str = "Regular"
    font_size: float = 16.0
    font_weight: int = 400
    line_height: Optional[float] = None
    letter_spacing: Optional[float] = None


class ComponentInfo(DesignModel):
    key: str
    name: str
    id: Optional[str] = None
    description: Optional[str] = None


class DesignSystemSnapshot(DesignModel):
    color_variables: List[VariableInfo] = Field(default_factory=list)
    spacing_variables: List[VariableInfo] = Field(default_factory=list)
    text_styles: List[TextStyleInfo] = Field(default_factory=list)
    components: List[ComponentInfo] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.color_variables or self.spacing_variables or self.text_styles or self.components)


# ============================================
# ========= VIEWPORT & PALETTE ===============
# ============================================

class ViewportSize(DesignModel):
    width: float
    height: float
    name: str = "Custom"

    @classmethod
    def from_preset(cls, preset: Optional[str]) -> "ViewportSize":
        return VIEWPORT_PRESETS.get((preset or "").lower(), VIEWPORT_PRESETS["mobile"])


VIEWPORT_PRESETS: Dict[str, ViewportSize] = {
    "mobile": ViewportSize(width=375, height=812, name="Mobile"),
    "tablet": ViewportSize(width=768, height=1024, name="Tablet"),
    "desktop": ViewportSize(width=1440, height=900, name="Desktop"),
    "custom": ViewportSize(width=400, height=600, name="Custom"),
}


class ColorPalette(DesignModel):
    """Fallback palette used when the file has no design system."""

    primary: str = "#18A0FB"
    primary_dark: str = "#0D8DE3"
    background: str = "#F5F5F5"
    background_card: str = "#FFFFFF"
    text_primary: str = "#1A1A1A"
    text_secondary: str = "#666666"
    border: str = "#E0E0E0"
    success: str = "#14AE5C"
    error: str = "#F24822"
    warning: str = "#FFCD29"


DEFAULT_COLOR_PALETTE = ColorPalette()
