"""
Selection Serializer - Host node snapshots back into a DesignDocument

The inverse of the renderer's property application. Input is the deep node
snapshot the plugin returns for `get_node_details` (Figma property names,
children nested). Neutral values (opacity 1, layoutGrow 0, INHERIT alignment)
are left out so round-tripped documents stay small.

With a `TokenIndex`, bound variables and text styles serialize back to their
names (`colorVariable`, `paddingVariable`, `itemSpacingVariable`,
`textStyleName`) so an edit request keeps the design system links.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from design_schema import DesignDocument
from design_tokens import TokenIndex
from design_utils import get_font_weight

logger = logging.getLogger(__name__)

FRAME_LIKE = {"FRAME", "COMPONENT", "COMPONENT_SET"}
ROOT_FRAME_TYPES = {"FRAME", "COMPONENT", "INSTANCE"}
HOST_TO_SIZING = {"AUTO": "HUG", "FIXED": "FIXED"}
PADDING_KEYS = (("top", "paddingTop"), ("right", "paddingRight"), ("bottom", "paddingBottom"), ("left", "paddingLeft"))


def serialize_selection(nodes: Sequence[Dict[str, Any]], index: Optional[TokenIndex] = None) -> Optional[DesignDocument]:
    """Serialize the current selection; None when nothing is selected.

    A single frame-like node becomes the document itself. Anything else is
    wrapped in a virtual "Selection" document.
    """
    if not nodes:
        return None
    serializer = SelectionSerializer(index)
    first = nodes[0]

    if len(nodes) == 1 and first.get("type") in ROOT_FRAME_TYPES:
        data = serializer.frame_document(first)
    else:
        children = [c for c in (serializer.node(n) for n in nodes) if c is not None]
        data = {"name": "Selection", "children": children}
        if len(nodes) == 1:
            _copy_number(first, data, "width")
            _copy_number(first, data, "height")

    document = DesignDocument.model_validate(data)
    logger.info(f"📋 Serialized selection '{document.name}' ({len(document.children)} top-level children)")
    return document


class SelectionSerializer:
    def __init__(self, index: Optional[TokenIndex] = None):
        self.index = index

    # ---------- documents & nodes ----------

    def frame_document(self, node: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": node.get("name", "")}
        _copy_number(node, result, "width")
        _copy_number(node, result, "height")
        self._container(node, result)
        self._appearance(node, result, corner=True)
        if node.get("clipsContent"):
            result["clipsContent"] = True
        children = self._children(node)
        if children:
            result["children"] = children
        return result

    def node(self, node: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        node_type = node.get("type")
        if node_type in FRAME_LIKE:
            return self._frame(node)
        if node_type == "INSTANCE":
            return self._instance(node)
        if node_type == "TEXT":
            return self._text(node)
        if node_type in ("RECTANGLE", "ELLIPSE"):
            return self._shape(node, node_type)
        if node_type == "LINE":
            return self._line(node)
        if node_type == "GROUP":
            return self._group(node)
        logger.debug(f"Skipping unsupported node type {node_type} ('{node.get('name')}')")
        return None

    def _children(self, node: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [c for c in (self.node(child) for child in node.get("children") or []) if c is not None]

    def _frame(self, node: Dict[str, Any]) -> Dict[str, Any]:
        result = _base(node, "FRAME")
        if node.get("layoutPositioning") == "ABSOLUTE":
            result["layoutPositioning"] = "ABSOLUTE"
            _copy_number(node, result, "x")
            _copy_number(node, result, "y")
        self._container(node, result)
        _participation(node, result)
        self._appearance(node, result, corner=True)
        if node.get("clipsContent"):
            result["clipsContent"] = True
        children = self._children(node)
        if children:
            result["children"] = children
        return result

    def _instance(self, node: Dict[str, Any]) -> Dict[str, Any]:
        result = _base(node, "INSTANCE")
        main_component = node.get("mainComponent")
        key = main_component.get("key") if isinstance(main_component, dict) else node.get("componentKey")
        if key:
            result["componentKey"] = key
        properties = _component_properties(node.get("componentProperties"))
        if properties:
            result["componentProperties"] = properties
        _participation(node, result)
        _opacity(node, result)
        return result

    def _text(self, node: Dict[str, Any]) -> Dict[str, Any]:
        result = _base(node, "TEXT")
        result["characters"] = node.get("characters", "")

        style = self.index.find_text_style_by_id(node.get("textStyleId")) if self.index else None
        if style is not None:
            result["textStyleName"] = style.name

        font_name = node.get("fontName")
        if isinstance(font_name, dict):
            result["fontFamily"] = font_name.get("family")
            result["fontWeight"] = get_font_weight(font_name.get("style"))
        if isinstance(node.get("fontSize"), (int, float)):
            result["fontSize"] = node["fontSize"]
        for key in ("textAlignHorizontal", "textAlignVertical"):
            if isinstance(node.get(key), str):
                result[key] = node[key]

        line_height = node.get("lineHeight")
        if isinstance(line_height, dict) and line_height.get("unit") not in (None, "AUTO"):
            result["lineHeight"] = {"value": line_height.get("value", 0), "unit": line_height["unit"]}
        letter_spacing = node.get("letterSpacing")
        if isinstance(letter_spacing, dict) and letter_spacing.get("value"):
            result["letterSpacing"] = letter_spacing["value"]
        for key in ("textDecoration", "textCase"):
            if isinstance(node.get(key), str) and node[key] not in ("NONE", "ORIGINAL"):
                result[key] = node[key]

        fills = self._paints(node, "fills")
        if fills:
            result["fills"] = fills
        _participation(node, result)
        _opacity(node, result)
        return result

    def _shape(self, node: Dict[str, Any], node_type: str) -> Dict[str, Any]:
        result = _base(node, node_type)
        self._appearance(node, result, corner=node_type == "RECTANGLE")
        if node_type == "RECTANGLE":
            _participation(node, result)
        return result

    def _line(self, node: Dict[str, Any]) -> Dict[str, Any]:
        result = {"type": "LINE", "name": node.get("name", "")}
        _copy_number(node, result, "width")
        strokes = self._paints(node, "strokes")
        if strokes:
            result["strokes"] = strokes
            _copy_number(node, result, "strokeWeight")
        _opacity(node, result)
        return result

    def _group(self, node: Dict[str, Any]) -> Dict[str, Any]:
        result = _base(node, "FRAME")
        _opacity(node, result)
        children = self._children(node)
        if children:
            result["children"] = children
        return result

    # ---------- layout ----------

    def _container(self, node: Dict[str, Any], result: Dict[str, Any]) -> None:
        layout_mode = node.get("layoutMode")
        if layout_mode not in ("HORIZONTAL", "VERTICAL"):
            return
        result["layoutMode"] = layout_mode
        for key in ("primaryAxisAlignItems", "counterAxisAlignItems"):
            if node.get(key):
                result[key] = node[key]
        for key in ("primaryAxisSizingMode", "counterAxisSizingMode"):
            if node.get(key) in HOST_TO_SIZING:
                result[key] = HOST_TO_SIZING[node[key]]
        _copy_number(node, result, "itemSpacing")

        if any(node.get(prop) for _, prop in PADDING_KEYS):
            result["padding"] = {side: node.get(prop, 0) or 0 for side, prop in PADDING_KEYS}

        bound = node.get("boundVariables") or {}
        spacing_name = self._variable_name(bound.get("itemSpacing"))
        if spacing_name:
            result["itemSpacingVariable"] = spacing_name
        padding_names = {self._variable_name(bound.get(prop)) for _, prop in PADDING_KEYS}
        # Only a uniform binding maps back to a single paddingVariable
        if len(padding_names) == 1 and None not in padding_names:
            result["paddingVariable"] = padding_names.pop()

    # ---------- appearance ----------

    def _appearance(self, node: Dict[str, Any], result: Dict[str, Any], corner: bool) -> None:
        fills = self._paints(node, "fills")
        if fills:
            result["fills"] = fills
        strokes = self._paints(node, "strokes")
        if strokes:
            result["strokes"] = strokes
            _copy_number(node, result, "strokeWeight")
        if corner and isinstance(node.get("cornerRadius"), (int, float)) and node["cornerRadius"] > 0:
            result["cornerRadius"] = node["cornerRadius"]
        _opacity(node, result)
        effects = _effects(node.get("effects"))
        if effects:
            result["effects"] = effects

    def _paints(self, node: Dict[str, Any], prop: str) -> List[Dict[str, Any]]:
        paints = node.get(prop)
        if not isinstance(paints, list):
            return []
        node_bindings = (node.get("boundVariables") or {}).get(prop)
        out: List[Dict[str, Any]] = []
        for i, paint in enumerate(paints):
            if not isinstance(paint, dict) or paint.get("visible") is False:
                continue
            paint_type = paint.get("type")
            if paint_type == "SOLID" and isinstance(paint.get("color"), dict):
                color = paint["color"]
                entry: Dict[str, Any] = {
                    "type": "SOLID",
                    "color": {"r": color.get("r", 0), "g": color.get("g", 0), "b": color.get("b", 0)},
                }
                if paint.get("opacity") is not None:
                    entry["opacity"] = paint["opacity"]
                alias = (paint.get("boundVariables") or {}).get("color")
                if alias is None and isinstance(node_bindings, list) and i < len(node_bindings):
                    alias = node_bindings[i]
                name = self._variable_name(alias)
                if name:
                    entry["colorVariable"] = name
                out.append(entry)
            elif prop == "fills" and paint_type == "GRADIENT_LINEAR":
                out.append({
                    "type": "GRADIENT_LINEAR",
                    "gradientStops": [
                        {"position": stop.get("position", 0), "color": stop.get("color", {})}
                        for stop in paint.get("gradientStops") or []
                    ],
                })
        return out

    def _variable_name(self, alias: Any) -> Optional[str]:
        if self.index is None or not isinstance(alias, dict):
            return None
        variable = self.index.find_variable_by_id(alias.get("id"))
        return variable.name if variable is not None else None


def _base(node: Dict[str, Any], node_type: str) -> Dict[str, Any]:
    result: Dict[str, Any] = {"type": node_type, "name": node.get("name", "")}
    _copy_number(node, result, "width")
    _copy_number(node, result, "height")
    return result


def _copy_number(node: Dict[str, Any], result: Dict[str, Any], key: str) -> None:
    value = node.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        result[key] = value


def _participation(node: Dict[str, Any], result: Dict[str, Any]) -> None:
    if node.get("layoutAlign") not in (None, "INHERIT"):
        result["layoutAlign"] = node["layoutAlign"]
    if node.get("layoutGrow"):
        result["layoutGrow"] = node["layoutGrow"]


def _opacity(node: Dict[str, Any], result: Dict[str, Any]) -> None:
    opacity = node.get("opacity")
    if isinstance(opacity, (int, float)) and opacity != 1:
        result["opacity"] = opacity


def _effects(effects: Any) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for effect in effects if isinstance(effects, list) else []:
        if not isinstance(effect, dict) or effect.get("visible") is False:
            continue
        effect_type = effect.get("type")
        if effect_type in ("DROP_SHADOW", "INNER_SHADOW"):
            out.append({
                "type": effect_type,
                "color": effect.get("color"),
                "offset": effect.get("offset"),
                "radius": effect.get("radius"),
                "spread": effect.get("spread"),
            })
        elif effect_type in ("LAYER_BLUR", "BACKGROUND_BLUR"):
            out.append({"type": effect_type, "radius": effect.get("radius")})
    return out


def _component_properties(raw: Any) -> Dict[str, Any]:
    """{"Label#1:2": {"type": "TEXT", "value": "Go"}} -> {"Label#1:2": "Go"}"""
    if not isinstance(raw, dict):
        return {}
    out: Dict[str, Any] = {}
    for name, prop in raw.items():
        value = prop.get("value") if isinstance(prop, dict) else prop
        if isinstance(value, (str, bool)):
            out[name] = value
    return out
