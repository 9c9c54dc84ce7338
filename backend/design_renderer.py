"""
Design Renderer - Resolves a DesignDocument against the token index and builds it in the host scene

Per node: create → size → layout → appearance → children → attach. Symbolic
references resolve in a fixed order everywhere: named reference (bound live to
the variable when possible) → literal value → system default. Unresolved
references never abort the render; they become `ResolutionWarning`s.

Host command failures are caught at each child's boundary: the partial child
is removed and its siblings still render. A failure on the root itself aborts
the render with `RenderError`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from design_errors import RenderError, ResolutionWarning
from design_schema import (
    DesignDocument,
    Effect,
    Fill,
    FrameElement,
    InstanceElement,
    LineHeight,
    Stroke,
    TextElement,
    ViewportSize,
)
from design_tokens import TokenIndex
from design_utils import DEFAULT_FONT_FAMILY, DEFAULT_FONT_STYLE, get_font_style, hex_to_rgb, is_valid_hex
from figma_communicator import HostCommandError
from figma_scene import HostScene

logger = logging.getLogger(__name__)

VALID_LAYOUT_MODES = {"HORIZONTAL", "VERTICAL"}
VALID_PRIMARY_ALIGN = {"MIN", "MAX", "CENTER", "SPACE_BETWEEN"}
VALID_COUNTER_ALIGN = {"MIN", "MAX", "CENTER", "BASELINE"}

# Declared intent → host sizing primitive. FILL is AUTO plus a grow/stretch flag.
SIZING_MODES = {"HUG": "AUTO", "FIXED": "FIXED", "FILL": "AUTO", "AUTO": "AUTO"}

DEFAULT_PAINT_COLOR = {"r": 0.5, "g": 0.5, "b": 0.5}
DEFAULT_LINE_COLOR = {"r": 0.0, "g": 0.0, "b": 0.0}
DEFAULT_PADDING = 16
DEFAULT_ITEM_SPACING = 8
DEFAULT_ROOT_NAME = "Generated Screen"
PADDING_SIDES = (("top", "paddingTop"), ("right", "paddingRight"), ("bottom", "paddingBottom"), ("left", "paddingLeft"))
IDENTITY_GRADIENT_TRANSFORM = [[1, 0, 0], [0, 1, 0]]

ContainerLike = Union[DesignDocument, FrameElement]


@dataclass
class RenderedArtifact:
    node_id: str
    name: str
    element_count: int
    warnings: List[ResolutionWarning] = field(default_factory=list)
    failed_nodes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "name": self.name,
            "element_count": self.element_count,
            "warnings": [w.to_dict() for w in self.warnings],
            "failed_nodes": self.failed_nodes,
        }


class DesignRenderer:
    """One render session: a scene, a read-only index, and a font cache."""

    def __init__(self, scene: HostScene, index: Optional[TokenIndex] = None):
        self.scene = scene
        self.index = index or TokenIndex.empty()
        self.warnings: List[ResolutionWarning] = []
        self.failed_nodes = 0
        self._loaded_fonts: Set[Tuple[str, str]] = set()
        self._failed_fonts: Set[Tuple[str, str]] = set()

    # ============================================
    # ================ ROOT ======================
    # ============================================

    async def render(
        self,
        document: DesignDocument,
        viewport: ViewportSize,
        position: Optional[Dict[str, float]] = None,
    ) -> RenderedArtifact:
        """Render `document` as a new top-level frame sized exactly to `viewport`."""
        name = document.name or DEFAULT_ROOT_NAME
        root = document
        if (document.layout_mode or "NONE") not in VALID_LAYOUT_MODES:
            root = document.model_copy(update={
                "layout_mode": "VERTICAL",
                "primary_axis_align_items": document.primary_axis_align_items or "MIN",
                "counter_axis_align_items": document.counter_axis_align_items or "CENTER",
            })

        logger.info(f"🎨 Rendering '{name}' at {viewport.width:g}x{viewport.height:g} ({len(root.children)} top-level children)")
        try:
            root_id = await self.scene.create_node("FRAME", name)
        except HostCommandError as e:
            raise RenderError(name, e) from e

        try:
            await self.scene.resize(root_id, viewport.width, viewport.height)
            if position is not None:
                await self.scene.set_properties(root_id, {"x": position["x"], "y": position["y"]})
            await self._apply_container(root_id, root, name)
            # The root always matches the viewport exactly, whatever the document asked for
            await self.scene.set_properties(root_id, {"primaryAxisSizingMode": "FIXED", "counterAxisSizingMode": "FIXED"})
            await self.scene.resize(root_id, viewport.width, viewport.height)
            element_count = await self._render_children(root_id, root.children)
        except HostCommandError as e:
            logger.error(f"❌ Root frame '{name}' failed: {e}")
            await self._discard(root_id)
            raise RenderError(name, e) from e

        if self.failed_nodes:
            logger.warning(f"⚠️ {self.failed_nodes} node(s) failed to render and were skipped")
        logger.info(f"✅ Rendered '{name}' with {element_count} elements ({len(self.warnings)} warnings)")
        return RenderedArtifact(
            node_id=root_id,
            name=name,
            element_count=element_count,
            warnings=list(self.warnings),
            failed_nodes=self.failed_nodes,
        )

    # ============================================
    # ============== TREE WALK ===================
    # ============================================

    async def _render_children(self, parent_id: str, children: Sequence[Any]) -> int:
        count = 0
        for child in children:
            count += await self._render_child(parent_id, child)
        return count

    async def _render_child(self, parent_id: str, element: Any) -> int:
        """Render and attach one child. Returns the number of nodes it added (0 on failure)."""
        try:
            node_id, descendants = await self._render_element(element)
        except HostCommandError as e:
            self.failed_nodes += 1
            logger.error(f"❌ Failed to render {element.kind} '{element.name}': {e}")
            return 0
        try:
            await self.scene.append_child(parent_id, node_id)
        except HostCommandError as e:
            self.failed_nodes += 1
            logger.error(f"❌ Failed to attach '{element.name}': {e}")
            await self._discard(node_id)
            return 0
        return 1 + descendants

    async def _render_element(self, element: Any) -> Tuple[str, int]:
        kind = element.kind
        if kind == "TEXT":
            return await self._render_text(element), 0
        if kind == "RECTANGLE":
            return await self._render_shape(element, "RECTANGLE", "Rectangle"), 0
        if kind == "ELLIPSE":
            return await self._render_shape(element, "ELLIPSE", "Ellipse"), 0
        if kind == "LINE":
            return await self._render_line(element), 0
        if kind == "INSTANCE":
            return await self._render_instance(element)
        return await self._render_frame(element)

    async def _discard(self, node_id: str) -> None:
        try:
            await self.scene.remove_node(node_id)
        except HostCommandError as e:
            logger.warning(f"⚠️ Could not remove partial node {node_id}: {e}")

    # ============================================
    # ============== NODE KINDS ==================
    # ============================================

    async def _render_frame(self, element: FrameElement) -> Tuple[str, int]:
        name = element.name or "Frame"
        node_id = await self.scene.create_node("FRAME", name)
        try:
            await self._apply_container(node_id, element, name)
            descendants = await self._render_children(node_id, element.children)
        except HostCommandError:
            await self._discard(node_id)
            raise
        return node_id, descendants

    async def _render_shape(self, element: Any, kind: str, default_name: str) -> str:
        name = element.name or default_name
        node_id = await self.scene.create_node(kind, name)
        try:
            if element.width is not None and element.height is not None:
                await self.scene.resize(node_id, element.width, element.height)
            props: Dict[str, Any] = {}
            fill_bindings = self._resolve_paints("fills", element.fills, name, props)
            stroke_bindings = self._resolve_paints("strokes", element.strokes, name, props)
            if props.get("strokes") and element.stroke_weight is not None:
                props["strokeWeight"] = element.stroke_weight
            if kind == "RECTANGLE" and element.corner_radius is not None:
                props["cornerRadius"] = element.corner_radius
            self._apply_effects(element.effects, props)
            self._apply_participation(element, props)
            await self.scene.set_properties(node_id, props)
            await self._bind_paints(node_id, "fills", fill_bindings, name)
            await self._bind_paints(node_id, "strokes", stroke_bindings, name)
        except HostCommandError:
            await self._discard(node_id)
            raise
        return node_id

    async def _render_line(self, element: Any) -> str:
        name = element.name or "Line"
        node_id = await self.scene.create_node("LINE", name)
        try:
            if element.width is not None:
                await self.scene.resize(node_id, element.width, 0)
            props: Dict[str, Any] = {}
            stroke_bindings = self._resolve_paints("strokes", element.strokes, name, props)
            if props.get("strokes"):
                if element.stroke_weight is not None:
                    props["strokeWeight"] = element.stroke_weight
            elif not element.strokes:
                # A line with no stroke is invisible
                props["strokes"] = [{"type": "SOLID", "color": dict(DEFAULT_LINE_COLOR)}]
            self._apply_participation(element, props)
            await self.scene.set_properties(node_id, props)
            await self._bind_paints(node_id, "strokes", stroke_bindings, name)
        except HostCommandError:
            await self._discard(node_id)
            raise
        return node_id

    async def _render_text(self, element: TextElement) -> str:
        name = element.name or "Text"
        node_id = await self.scene.create_node("TEXT", name)
        try:
            style = None
            if element.text_style_name:
                style = self.index.find_text_style(element.text_style_name)
                if style is None:
                    self._warn("text_style", element.text_style_name, "direct font properties", name)

            props: Dict[str, Any] = {}
            if style is not None:
                family, font_style = await self._load_font(style.font_family, style.font_style, name)
                await self.scene.set_properties(node_id, {
                    "fontName": {"family": family, "style": font_style},
                    "characters": element.characters or "",
                })
                try:
                    await self.scene.apply_text_style(node_id, style.id)
                except HostCommandError as e:
                    logger.warning(f"⚠️ Could not apply text style '{style.name}' to '{name}': {e}")
                    self._warn("binding", style.name, "copied style values", name)
                    props["fontSize"] = style.font_size
                    if style.line_height is not None:
                        props["lineHeight"] = {"value": style.line_height, "unit": "PIXELS"}
                    if style.letter_spacing is not None:
                        props["letterSpacing"] = {"value": style.letter_spacing, "unit": "PIXELS"}
            else:
                family = element.font_family or DEFAULT_FONT_FAMILY
                font_style = get_font_style(element.font_weight)
                family, font_style = await self._load_font(family, font_style, name)
                # Font is loaded before characters are assigned
                await self.scene.set_properties(node_id, {
                    "fontName": {"family": family, "style": font_style},
                    "characters": element.characters or "",
                })
                self._apply_text_properties(element, props)

            fill_bindings = self._resolve_paints("fills", element.fills, name, props)

            if element.width is not None:
                font_size = element.font_size or (style.font_size if style else 16)
                await self.scene.resize(node_id, element.width, element.height or round(font_size * 1.4))
                props["textAutoResize"] = "HEIGHT"
            if element.layout_align == "STRETCH":
                props["textAutoResize"] = "HEIGHT"
            self._apply_effects(element.effects, props)
            self._apply_participation(element, props)
            await self.scene.set_properties(node_id, props)
            await self._bind_paints(node_id, "fills", fill_bindings, name)
        except HostCommandError:
            await self._discard(node_id)
            raise
        return node_id

    async def _render_instance(self, element: InstanceElement) -> Tuple[str, int]:
        name = element.name or "Instance"
        reference = element.component_key
        component = self.index.find_component(reference) if reference else None
        key = component.key if component is not None else reference

        if not key:
            self._warn("component", "(missing componentKey)", "frame with the same children", name)
            return await self._render_frame(element)

        try:
            node_id = await self.scene.create_instance(key)
        except HostCommandError as e:
            logger.info(f"🧩 Component '{key}' unavailable ({e.code}), rendering '{name}' as a frame")
            self._warn("component", key, "frame with the same children", name)
            return await self._render_frame(element)

        try:
            props: Dict[str, Any] = {"name": element.name or (component.name if component else name)}
            if element.width is not None and element.height is not None:
                await self.scene.resize(node_id, element.width, element.height)
            if element.component_properties:
                for prop_name, value in element.component_properties.items():
                    try:
                        await self.scene.set_instance_properties(node_id, {prop_name: value})
                    except HostCommandError as e:
                        logger.debug(f"Instance property '{prop_name}' not applied on '{name}': {e}")
            if element.opacity is not None:
                props["opacity"] = element.opacity
            self._apply_participation(element, props)
            await self.scene.set_properties(node_id, props)
        except HostCommandError:
            await self._discard(node_id)
            raise
        return node_id, await self._instance_layers(node_id)

    async def _instance_layers(self, node_id: str) -> int:
        """Layers the component brought into the instance; they count like any other element."""
        try:
            snapshots = await self.scene.get_nodes([node_id])
        except HostCommandError as e:
            logger.debug(f"Could not read layers of instance {node_id}: {e}")
            return 0
        return count_descendants(snapshots[0]) if snapshots else 0

    # ============================================
    # ======== CONTAINER / LAYOUT ================
    # ============================================

    async def _apply_container(self, node_id: str, element: ContainerLike, name: str) -> None:
        """Size, auto-layout, appearance and participation for a frame-like node."""
        if element.width is not None and element.height is not None:
            await self.scene.resize(node_id, element.width, element.height)

        props: Dict[str, Any] = {}
        number_bindings: List[Tuple[str, str]] = []

        layout_mode = element.layout_mode if element.layout_mode in VALID_LAYOUT_MODES else None
        if layout_mode:
            props["layoutMode"] = layout_mode
            if element.primary_axis_align_items in VALID_PRIMARY_ALIGN:
                props["primaryAxisAlignItems"] = element.primary_axis_align_items
            if element.counter_axis_align_items:
                props["counterAxisAlignItems"] = coerce_counter_axis_align(element.counter_axis_align_items)

            self._resolve_number(
                "itemSpacing", element.item_spacing, element.item_spacing_variable,
                DEFAULT_ITEM_SPACING, name, props, number_bindings,
            )
            self._resolve_padding(element, name, props, number_bindings)

            # Never left unset: a missing mode means HUG
            primary = (element.primary_axis_sizing_mode or "HUG").upper()
            counter = (element.counter_axis_sizing_mode or "HUG").upper()
            props["primaryAxisSizingMode"] = SIZING_MODES.get(primary, "AUTO")
            props["counterAxisSizingMode"] = SIZING_MODES.get(counter, "AUTO")
            # FILL is expressed on the child side; the root has no parent to fill
            if not isinstance(element, DesignDocument):
                if primary == "FILL" and element.layout_grow is None:
                    props["layoutGrow"] = 1
                if counter == "FILL" and element.layout_align is None:
                    props["layoutAlign"] = "STRETCH"

        fill_bindings = self._resolve_paints("fills", element.fills, name, props)
        stroke_bindings = self._resolve_paints("strokes", element.strokes, name, props)
        if element.stroke_weight is not None:
            props["strokeWeight"] = element.stroke_weight
        if element.corner_radius is not None:
            props["cornerRadius"] = element.corner_radius
        self._apply_effects(element.effects, props)
        if element.clips_content is not None:
            props["clipsContent"] = element.clips_content
        if isinstance(element, FrameElement):
            self._apply_participation(element, props)
        elif element.opacity is not None:
            props["opacity"] = element.opacity

        await self.scene.set_properties(node_id, props)
        await self._bind_paints(node_id, "fills", fill_bindings, name)
        await self._bind_paints(node_id, "strokes", stroke_bindings, name)
        for prop, variable_id in number_bindings:
            try:
                await self.scene.bind_variable(node_id, prop, variable_id)
            except HostCommandError as e:
                logger.warning(f"⚠️ Could not bind {prop} on '{name}': {e}")
                self._warn("binding", prop, "copied value", name)

    def _resolve_padding(self, element: ContainerLike, name: str, props: Dict[str, Any], bindings: List[Tuple[str, str]]) -> None:
        if element.padding_variable:
            variable = self._find_spacing(element.padding_variable, name, "literal padding" if element.padding else f"{DEFAULT_PADDING}px")
            if variable is not None:
                for _, prop in PADDING_SIDES:
                    props[prop] = variable.value
                    bindings.append((prop, variable.id))
                return
        if element.padding is not None:
            for side, prop in PADDING_SIDES:
                props[prop] = getattr(element.padding, side)
        elif element.padding_variable:
            for _, prop in PADDING_SIDES:
                props[prop] = DEFAULT_PADDING

    def _resolve_number(
        self,
        prop: str,
        literal: Optional[float],
        reference: Optional[str],
        default: float,
        name: str,
        props: Dict[str, Any],
        bindings: List[Tuple[str, str]],
    ) -> None:
        if reference:
            variable = self._find_spacing(reference, name, "literal value" if literal is not None else f"{default:g}px")
            if variable is not None:
                props[prop] = variable.value
                bindings.append((prop, variable.id))
                return
        if literal is not None:
            props[prop] = literal
        elif reference:
            props[prop] = default

    def _find_spacing(self, reference: str, node_name: str, fallback: str):
        variable = self.index.find_spacing(reference)
        if variable is None or not isinstance(variable.value, (int, float)):
            self._warn("spacing", reference, fallback, node_name)
            return None
        return variable

    # ============================================
    # ============ PAINTS & EFFECTS ==============
    # ============================================

    def _resolve_paints(
        self,
        prop: str,
        entries: Optional[Sequence[Union[Fill, Stroke]]],
        node_name: str,
        props: Dict[str, Any],
    ) -> List[Tuple[int, str]]:
        """Fill `props[prop]` with host paints; return (paint index, variable id) pairs to bind."""
        if not entries:
            return []
        paints: List[Dict[str, Any]] = []
        bindings: List[Tuple[int, str]] = []
        for entry in entries:
            if entry.visible is False:
                continue
            opacity = _paint_opacity(entry)

            if entry.color_variable:
                variable = self.index.find_color(entry.color_variable)
                if variable is not None and isinstance(variable.value, str) and is_valid_hex(variable.value):
                    bindings.append((len(paints), variable.id))
                    paints.append({"type": "SOLID", "color": hex_to_rgb(variable.value), "opacity": opacity})
                    continue
                self._warn("color", entry.color_variable, "literal color" if entry.color else "default gray", node_name)

            if entry.color is not None:
                paints.append({"type": "SOLID", "color": entry.color.rgb(), "opacity": opacity})
            elif isinstance(entry, Fill) and entry.type.startswith("GRADIENT") and entry.gradient_stops:
                paints.append({
                    "type": entry.type,
                    "gradientStops": [{"position": s.position, "color": s.color.rgba()} for s in entry.gradient_stops],
                    "gradientTransform": IDENTITY_GRADIENT_TRANSFORM,
                })
            elif entry.color_variable or entry.type == "SOLID":
                paints.append({"type": "SOLID", "color": dict(DEFAULT_PAINT_COLOR), "opacity": opacity})
            else:
                logger.debug(f"Skipping unsupported {prop} entry of type {entry.type} on '{node_name}'")

        if paints:
            props[prop] = paints
        return bindings

    async def _bind_paints(self, node_id: str, prop: str, bindings: List[Tuple[int, str]], node_name: str) -> None:
        for index, variable_id in bindings:
            path = f"{prop}[{index}].color"
            try:
                await self.scene.bind_variable(node_id, path, variable_id)
            except HostCommandError as e:
                # The resolved color was already copied into the paint
                logger.warning(f"⚠️ Could not bind {path} on '{node_name}': {e}")
                self._warn("binding", path, "copied value", node_name)

    def _apply_effects(self, effects: Optional[Sequence[Effect]], props: Dict[str, Any]) -> None:
        if not effects:
            return
        converted = [e for e in (convert_effect(effect) for effect in effects) if e is not None]
        if converted:
            props["effects"] = converted

    # ============================================
    # ================ TEXT ======================
    # ============================================

    async def _load_font(self, family: str, style: str, node_name: str) -> Tuple[str, str]:
        """Load the first available of family+style, Inter+style, Inter Regular."""
        chain: List[Tuple[str, str]] = []
        for candidate in ((family, style), (DEFAULT_FONT_FAMILY, style), (DEFAULT_FONT_FAMILY, DEFAULT_FONT_STYLE)):
            if candidate not in chain:
                chain.append(candidate)

        last_error: Optional[HostCommandError] = None
        for candidate in chain:
            if candidate in self._loaded_fonts:
                return self._note_font_fallback(chain[0], candidate, node_name)
            if candidate in self._failed_fonts:
                continue
            try:
                await self.scene.load_font(*candidate)
            except HostCommandError as e:
                logger.debug(f"Font {candidate[0]} {candidate[1]} unavailable: {e}")
                self._failed_fonts.add(candidate)
                last_error = e
                continue
            self._loaded_fonts.add(candidate)
            return self._note_font_fallback(chain[0], candidate, node_name)

        raise last_error or HostCommandError(
            {"code": "font_unavailable", "message": f"No font could be loaded for '{node_name}'"},
            command="load_font",
        )

    def _note_font_fallback(self, requested: Tuple[str, str], loaded: Tuple[str, str], node_name: str) -> Tuple[str, str]:
        if loaded != requested:
            self._warn("font", f"{requested[0]} {requested[1]}", f"{loaded[0]} {loaded[1]}", node_name)
        return loaded

    def _apply_text_properties(self, element: TextElement, props: Dict[str, Any]) -> None:
        if element.font_size:
            props["fontSize"] = element.font_size
        if element.text_align_horizontal:
            props["textAlignHorizontal"] = element.text_align_horizontal.upper()
        if element.text_align_vertical:
            props["textAlignVertical"] = element.text_align_vertical.upper()
        if element.line_height is not None:
            if isinstance(element.line_height, LineHeight):
                props["lineHeight"] = {"value": element.line_height.value, "unit": element.line_height.unit.upper()}
            else:
                props["lineHeight"] = {"value": element.line_height, "unit": "PIXELS"}
        if element.letter_spacing is not None:
            props["letterSpacing"] = {"value": element.letter_spacing, "unit": "PIXELS"}
        if element.text_decoration:
            props["textDecoration"] = element.text_decoration.upper()
        if element.text_case:
            props["textCase"] = element.text_case.upper()

    # ============================================
    # ============== HELPERS =====================
    # ============================================

    def _apply_participation(self, element: Any, props: Dict[str, Any]) -> None:
        """How the node sits inside an auto-layout parent."""
        if element.opacity is not None:
            props["opacity"] = element.opacity
        if element.layout_align in ("STRETCH", "INHERIT"):
            props["layoutAlign"] = element.layout_align
        if element.layout_grow is not None:
            props["layoutGrow"] = element.layout_grow
        # Auto-layout owns the position of every other child
        if element.layout_positioning == "ABSOLUTE":
            props["layoutPositioning"] = "ABSOLUTE"
            if element.x is not None:
                props["x"] = element.x
            if element.y is not None:
                props["y"] = element.y

    def _warn(self, kind: str, reference: str, fallback: str, node_name: str) -> None:
        warning = ResolutionWarning(kind=kind, reference=reference, fallback=fallback, node_name=node_name)
        self.warnings.append(warning)
        logger.warning(f"⚠️ {warning}")


def coerce_counter_axis_align(value: Optional[str]) -> str:
    """Container cross-axis alignment; anything outside the valid set becomes CENTER."""
    value = (value or "").upper()
    return value if value in VALID_COUNTER_ALIGN else "CENTER"


def count_descendants(node: Dict[str, Any]) -> int:
    children = node.get("children") or []
    return sum(1 + count_descendants(child) for child in children)


def convert_effect(effect: Effect) -> Optional[Dict[str, Any]]:
    if effect.visible is False:
        return None
    offset = effect.offset.model_dump() if effect.offset is not None else None
    if effect.type == "DROP_SHADOW" and effect.color is not None:
        return {
            "type": "DROP_SHADOW",
            "color": effect.color.rgba(),
            "offset": offset or {"x": 0, "y": 4},
            "radius": effect.radius if effect.radius is not None else 8,
            "spread": effect.spread if effect.spread is not None else 0,
            "visible": True,
            "blendMode": "NORMAL",
        }
    if effect.type == "INNER_SHADOW" and effect.color is not None:
        return {
            "type": "INNER_SHADOW",
            "color": effect.color.rgba(),
            "offset": offset or {"x": 0, "y": 2},
            "radius": effect.radius if effect.radius is not None else 4,
            "spread": effect.spread if effect.spread is not None else 0,
            "visible": True,
            "blendMode": "NORMAL",
        }
    if effect.type == "LAYER_BLUR":
        return {"type": "LAYER_BLUR", "radius": effect.radius if effect.radius is not None else 4, "visible": True}
    if effect.type == "BACKGROUND_BLUR":
        return {"type": "BACKGROUND_BLUR", "radius": effect.radius if effect.radius is not None else 10, "visible": True}
    return None


def _paint_opacity(entry: Union[Fill, Stroke]) -> float:
    if entry.opacity is not None:
        return entry.opacity
    if entry.color is not None and entry.color.a is not None:
        return entry.color.a
    return 1.0


async def render_design(
    scene: HostScene,
    document: DesignDocument,
    viewport: ViewportSize,
    index: Optional[TokenIndex] = None,
    position: Optional[Dict[str, float]] = None,
) -> RenderedArtifact:
    """Render `document` with a fresh session (new warnings list and font cache)."""
    return await DesignRenderer(scene, index).render(document, viewport, position=position)
