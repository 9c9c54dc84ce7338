"""
Design Tokens - Session-scoped index over the host document's design system

Built once per generation or render from the raw host payloads (variable
collections, variables, text styles, components) and then read-only. The
index exposes two things:

- a `DesignSystemSnapshot` for the prompt (tokens preferred over primitives,
  each category capped)
- name lookups for the renderer with exact → case-insensitive → substring
  matching, because model-generated names rarely match host names exactly
  ("Primary" vs "Primary/500").
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar

from design_schema import ComponentInfo, DesignSystemSnapshot, TextStyleInfo, VariableInfo
from design_utils import DEFAULT_FONT_FAMILY, DEFAULT_FONT_STYLE, get_font_weight, rgb_to_hex
from figma_communicator import HostCommandError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOKEN_COLLECTION_NAMES = {"tokens", "token"}
SEMANTIC_COLLECTION_RE = re.compile(r"semantic|theme|alias|component", re.IGNORECASE)
PRIMITIVE_COLLECTION_RE = re.compile(r"primitive|base|core|foundation|scale|palette|brand", re.IGNORECASE)
SEMANTIC_VARIABLE_RE = re.compile(
    r"background|foreground|surface|primary|secondary|text|border|success|error|warning|info|danger|accent|muted",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class IndexLimits:
    """Caps on what the index exposes. Tuning values, not invariants."""

    max_color_variables: int = 50
    max_spacing_variables: int = 30
    max_text_styles: int = 25
    max_components: int = 50
    alias_max_depth: int = 10

    @classmethod
    def from_env(cls) -> "IndexLimits":
        defaults = cls()
        return cls(
            max_color_variables=_env_int("MAX_COLOR_VARIABLES", defaults.max_color_variables),
            max_spacing_variables=_env_int("MAX_SPACING_VARIABLES", defaults.max_spacing_variables),
            max_text_styles=_env_int("MAX_TEXT_STYLES", defaults.max_text_styles),
            max_components=_env_int("MAX_COMPONENTS", defaults.max_components),
            alias_max_depth=_env_int("ALIAS_MAX_DEPTH", defaults.alias_max_depth),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"⚠️ Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def is_token_collection(name: str) -> bool:
    """Classify a variable collection by its name.

    Exact "tokens"/"token" always counts. Otherwise the name must look semantic
    and not look primitive; a name matching both is treated as primitive.
    """
    lowered = (name or "").strip().lower()
    if lowered in TOKEN_COLLECTION_NAMES:
        return True
    return bool(SEMANTIC_COLLECTION_RE.search(lowered)) and not PRIMITIVE_COLLECTION_RE.search(lowered)


def is_alias(value: Any) -> bool:
    return isinstance(value, dict) and value.get("type") == "VARIABLE_ALIAS" and bool(value.get("id"))


def _mode_value(variable: Dict[str, Any], collection: Optional[Dict[str, Any]]) -> Any:
    """Value of `variable` in its collection's default mode (or its first mode)."""
    values = variable.get("valuesByMode") or {}
    if not values:
        return None
    default_mode = (collection or {}).get("defaultModeId")
    if default_mode and default_mode in values:
        return values[default_mode]
    return next(iter(values.values()))


class NameLookup(Generic[T]):
    """Name → entity table with the exact / case-insensitive / substring fallback."""

    def __init__(self):
        self._entries: Dict[str, T] = {}

    def add(self, key: str, entity: T, overwrite: bool = True) -> None:
        if not key:
            return
        if overwrite or key not in self._entries:
            self._entries[key] = entity

    def find(self, name: Optional[str]) -> Optional[T]:
        if not name:
            return None
        if name in self._entries:
            return self._entries[name]
        lowered = name.lower()
        for key, entity in self._entries.items():
            if key.lower() == lowered:
                return entity
        for key, entity in self._entries.items():
            key_lower = key.lower()
            if lowered in key_lower or key_lower in lowered:
                return entity
        return None

    def __len__(self) -> int:
        return len(self._entries)


class TokenIndex:
    """Read-only lookup tables for one generation/render session."""

    def __init__(
        self,
        color_variables: List[VariableInfo],
        spacing_variables: List[VariableInfo],
        text_styles: List[TextStyleInfo],
        components: List[ComponentInfo],
        limits: Optional[IndexLimits] = None,
    ):
        self.limits = limits or IndexLimits()
        self.color_variables = color_variables
        self.spacing_variables = spacing_variables
        self.text_styles = text_styles
        self.components = components

        self._variables_by_id: Dict[str, VariableInfo] = {}
        self._text_styles_by_id: Dict[str, TextStyleInfo] = {t.id: t for t in text_styles}
        self._components_by_key: Dict[str, ComponentInfo] = {c.key: c for c in components}

        self._colors: NameLookup[VariableInfo] = NameLookup()
        self._spacing: NameLookup[VariableInfo] = NameLookup()
        self._styles: NameLookup[TextStyleInfo] = NameLookup()
        self._component_names: NameLookup[ComponentInfo] = NameLookup()

        for lookup, variables in ((self._colors, color_variables), (self._spacing, spacing_variables)):
            for var in variables:
                self._variables_by_id[var.id] = var
                lookup.add(var.name, var)
                if var.collection:
                    lookup.add(f"{var.collection}/{var.name}", var)
        for style in text_styles:
            self._styles.add(style.name, style)
        for style in text_styles:
            # "Typography/Body/Regular" is also reachable as "Regular"
            self._styles.add(style.name.split("/")[-1], style, overwrite=False)
        for comp in components:
            self._component_names.add(comp.name, comp, overwrite=False)

    # ---------- construction ----------

    @classmethod
    def empty(cls, limits: Optional[IndexLimits] = None) -> "TokenIndex":
        return cls([], [], [], [], limits=limits)

    @classmethod
    def build(
        cls,
        collections: Iterable[Dict[str, Any]],
        variables: Iterable[Dict[str, Any]],
        text_styles: Iterable[Dict[str, Any]] = (),
        components: Iterable[Dict[str, Any]] = (),
        limits: Optional[IndexLimits] = None,
    ) -> "TokenIndex":
        """Build the index from raw host payloads.

        `collections` carry id, name, modes/defaultModeId and variableIds;
        `variables` carry id, name, resolvedType, variableCollectionId and
        valuesByMode, where a value may be {"type": "VARIABLE_ALIAS", "id": ...}.
        """
        limits = limits or IndexLimits()
        collections_by_id = {c.get("id"): c for c in collections if c.get("id")}
        raw_by_id = {v.get("id"): v for v in variables if v.get("id")}

        colors: List[VariableInfo] = []
        spacing: List[VariableInfo] = []
        for raw in raw_by_id.values():
            resolved_type = raw.get("resolvedType")
            if resolved_type not in ("COLOR", "FLOAT"):
                continue
            collection = collections_by_id.get(raw.get("variableCollectionId"))
            collection_name = (collection or {}).get("name", "")
            raw_value = _mode_value(raw, collection)
            value = _resolve_alias(raw, raw_by_id, collections_by_id, limits.alias_max_depth)
            if value is None:
                logger.debug(f"Variable '{raw.get('name')}' has no resolvable value, skipping")
                continue

            token = (
                is_token_collection(collection_name)
                or is_alias(raw_value)
                or bool(SEMANTIC_VARIABLE_RE.search(raw.get("name", "")))
            )
            if resolved_type == "COLOR" and isinstance(value, dict) and "r" in value:
                colors.append(VariableInfo(
                    id=raw["id"],
                    name=raw.get("name", ""),
                    collection=collection_name,
                    value=rgb_to_hex(value).upper(),
                    is_token=token,
                    description=raw.get("description") or None,
                ))
            elif resolved_type == "FLOAT" and isinstance(value, (int, float)) and not isinstance(value, bool):
                spacing.append(VariableInfo(
                    id=raw["id"],
                    name=raw.get("name", ""),
                    collection=collection_name,
                    value=value,
                    is_token=token,
                    description=raw.get("description") or None,
                ))

        colors = _prefer_tokens(colors)[: limits.max_color_variables]
        spacing = _prefer_tokens(spacing)[: limits.max_spacing_variables]
        styles = [s for s in (_text_style_info(raw) for raw in text_styles) if s is not None]
        comps = [c for c in (_component_info(raw) for raw in components) if c is not None]

        index = cls(
            colors,
            spacing,
            styles[: limits.max_text_styles],
            comps[: limits.max_components],
            limits=limits,
        )
        logger.info(
            f"📚 Token index built: {len(index.color_variables)} colors, {len(index.spacing_variables)} spacing, "
            f"{len(index.text_styles)} text styles, {len(index.components)} components"
        )
        return index

    # ---------- lookups ----------

    def find_color(self, name: Optional[str]) -> Optional[VariableInfo]:
        return self._colors.find(name)

    def find_spacing(self, name: Optional[str]) -> Optional[VariableInfo]:
        return self._spacing.find(name)

    def find_text_style(self, name: Optional[str]) -> Optional[TextStyleInfo]:
        return self._styles.find(name)

    def find_component(self, key_or_name: Optional[str]) -> Optional[ComponentInfo]:
        """Exact component key first, then the name fallback chain."""
        if not key_or_name:
            return None
        if key_or_name in self._components_by_key:
            return self._components_by_key[key_or_name]
        return self._component_names.find(key_or_name)

    def find_variable_by_id(self, variable_id: Optional[str]) -> Optional[VariableInfo]:
        if not variable_id:
            return None
        return self._variables_by_id.get(variable_id)

    def find_text_style_by_id(self, style_id: Optional[str]) -> Optional[TextStyleInfo]:
        if not style_id:
            return None
        return self._text_styles_by_id.get(style_id)

    def is_empty(self) -> bool:
        return not (self.color_variables or self.spacing_variables or self.text_styles or self.components)

    def snapshot(self) -> DesignSystemSnapshot:
        return DesignSystemSnapshot(
            color_variables=list(self.color_variables),
            spacing_variables=list(self.spacing_variables),
            text_styles=list(self.text_styles),
            components=list(self.components),
        )


def _resolve_alias(
    variable: Dict[str, Any],
    raw_by_id: Dict[str, Dict[str, Any]],
    collections_by_id: Dict[str, Dict[str, Any]],
    max_depth: int,
) -> Any:
    """Follow alias references to a concrete value.

    Returns None for a missing target, a cycle, or a chain longer than `max_depth`.
    """
    seen = {variable.get("id")}
    current = variable
    for _ in range(max_depth + 1):
        value = _mode_value(current, collections_by_id.get(current.get("variableCollectionId")))
        if not is_alias(value):
            return value
        target_id = value["id"]
        if target_id in seen:
            logger.warning(f"⚠️ Alias cycle at variable '{variable.get('name')}'")
            return None
        target = raw_by_id.get(target_id)
        if target is None:
            logger.debug(f"Alias target {target_id} of '{variable.get('name')}' not found")
            return None
        seen.add(target_id)
        current = target
    logger.warning(f"⚠️ Alias chain for '{variable.get('name')}' exceeds {max_depth} hops")
    return None


def _prefer_tokens(variables: List[VariableInfo]) -> List[VariableInfo]:
    tokens = [v for v in variables if v.is_token]
    return tokens if tokens else variables


def _px(value: Any) -> Optional[float]:
    # {"unit": "PIXELS", "value": 24} or a bare number
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, dict) and value.get("unit") == "PIXELS" and isinstance(value.get("value"), (int, float)):
        return float(value["value"])
    return None


def _text_style_info(raw: Dict[str, Any]) -> Optional[TextStyleInfo]:
    if not raw.get("id") or not raw.get("name"):
        return None
    font_name = raw.get("fontName") or {}
    style = font_name.get("style") or DEFAULT_FONT_STYLE
    font_size = raw.get("fontSize")
    return TextStyleInfo(
        id=raw["id"],
        name=raw["name"],
        font_family=font_name.get("family") or DEFAULT_FONT_FAMILY,
        font_style=style,
        font_size=float(font_size) if isinstance(font_size, (int, float)) else 16.0,
        font_weight=get_font_weight(style),
        line_height=_px(raw.get("lineHeight")),
        letter_spacing=_px(raw.get("letterSpacing")),
    )


def _component_info(raw: Dict[str, Any]) -> Optional[ComponentInfo]:
    key = raw.get("key") or raw.get("component_key")
    if not key or not raw.get("name"):
        return None
    return ComponentInfo(
        key=key,
        name=raw["name"],
        id=raw.get("id"),
        description=raw.get("description") or None,
    )


async def load_token_index(scene, limits: Optional[IndexLimits] = None) -> TokenIndex:
    """Read the host document's design system through `scene` and index it.

    A category that cannot be read is logged and left empty rather than
    failing the whole generation.
    """
    collections: List[Dict[str, Any]] = []
    variables: List[Dict[str, Any]] = []
    styles: List[Dict[str, Any]] = []
    comps: List[Dict[str, Any]] = []

    try:
        collections, variables = await scene.get_local_variables()
    except HostCommandError as e:
        logger.warning(f"⚠️ Could not read variables: {e}")
    try:
        styles = await scene.get_text_styles()
    except HostCommandError as e:
        logger.warning(f"⚠️ Could not read text styles: {e}")
    try:
        comps = await scene.get_components()
    except HostCommandError as e:
        logger.warning(f"⚠️ Could not read components: {e}")

    return TokenIndex.build(collections, variables, styles, comps, limits=limits)

