"""
Figma Scene - Host-scene read/write surface used by the renderer and serializer

`HostScene` is the protocol the core depends on. `FigmaScene` implements it on
top of `FigmaCommunicator.send_command`, so every call is one `tool_call` to
the plugin. Property names are Figma's own (layoutMode, paddingTop, fills...).

Every method raises `HostCommandError` on failure.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

from figma_communicator import FigmaCommunicator, HostCommandError

logger = logging.getLogger(__name__)


class HostScene(Protocol):
    async def create_node(self, kind: str, name: str) -> str: ...

    async def set_properties(self, node_id: str, properties: Dict[str, Any]) -> None: ...

    async def resize(self, node_id: str, width: float, height: float) -> None: ...

    async def bind_variable(self, node_id: str, property_path: str, variable_id: str) -> None: ...

    async def load_font(self, family: str, style: str) -> None: ...

    async def apply_text_style(self, node_id: str, style_id: str) -> None: ...

    async def create_instance(self, component_key: str) -> str: ...

    async def set_instance_properties(self, node_id: str, properties: Dict[str, Any]) -> None: ...

    async def append_child(self, parent_id: str, child_id: str) -> None: ...

    async def remove_node(self, node_id: str) -> None: ...

    async def get_nodes(self, node_ids: List[str]) -> List[Dict[str, Any]]: ...

    async def get_selection(self) -> List[Dict[str, Any]]: ...

    async def set_selection(self, node_ids: List[str]) -> None: ...

    async def scroll_into_view(self, node_ids: List[str]) -> None: ...

    async def get_viewport_center(self) -> Dict[str, float]: ...

    async def get_local_variables(self) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]: ...

    async def get_text_styles(self) -> List[Dict[str, Any]]: ...

    async def get_components(self) -> List[Dict[str, Any]]: ...


def _created_id(result: Any, command: str) -> str:
    if isinstance(result, dict):
        node_id = result.get("created_node_id") or result.get("id")
        if not node_id and isinstance(result.get("node"), dict):
            node_id = result["node"].get("id")
        if node_id:
            return str(node_id)
    raise HostCommandError(
        {"code": "unexpected_result", "message": "Plugin did not return a node id", "details": {"result": result}},
        command=command,
    )


class FigmaScene:
    """`HostScene` over the plugin's command set."""

    def __init__(self, communicator: FigmaCommunicator):
        self.communicator = communicator

    async def _send(self, command: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.communicator.send_command(command, params or {})

    # ---------- write surface ----------

    async def create_node(self, kind: str, name: str) -> str:
        """Create a detached node of `kind` (FRAME, TEXT, RECTANGLE, ELLIPSE, LINE).

        The plugin creates it on the current page; `append_child` moves it
        under its parent once it is fully configured.
        """
        result = await self._send("create_node", {"type": kind, "name": name})
        return _created_id(result, "create_node")

    async def set_properties(self, node_id: str, properties: Dict[str, Any]) -> None:
        if not properties:
            return
        await self._send("set_node_properties", {"node_id": node_id, "properties": properties})

    async def resize(self, node_id: str, width: float, height: float) -> None:
        await self._send("set_size", {"node_ids": [node_id], "width": width, "height": height})

    async def bind_variable(self, node_id: str, property_path: str, variable_id: str) -> None:
        """Bind `variable_id` to a property path such as `fills[0].color` or `paddingTop`."""
        logger.debug(f"🔗 bind_variable_to_property: node_id={node_id} property={property_path} variable_id={variable_id}")
        await self._send(
            "bind_variable_to_property",
            {"node_id": node_id, "property": property_path, "variable_id": variable_id},
        )

    async def load_font(self, family: str, style: str) -> None:
        await self._send("load_font", {"family": family, "style": style})

    async def apply_text_style(self, node_id: str, style_id: str) -> None:
        await self._send("apply_style", {"node_ids": [node_id], "style_id": style_id, "style_type": "TEXT"})

    async def create_instance(self, component_key: str) -> str:
        result = await self._send("create_component_instance", {"component_key": component_key})
        return _created_id(result, "create_component_instance")

    async def set_instance_properties(self, node_id: str, properties: Dict[str, Any]) -> None:
        await self._send("set_instance_properties", {"node_ids": [node_id], "properties": properties})

    async def append_child(self, parent_id: str, child_id: str) -> None:
        await self._send("reparent_nodes", {"node_ids_to_move": [child_id], "new_parent_id": parent_id})

    async def remove_node(self, node_id: str) -> None:
        await self._send("delete_nodes", {"node_ids": [node_id]})

    async def set_selection(self, node_ids: List[str]) -> None:
        await self._send("set_selection", {"node_ids": node_ids})

    async def scroll_into_view(self, node_ids: List[str]) -> None:
        await self._send("scroll_and_zoom_into_view", {"node_ids": node_ids})

    # ---------- read surface ----------

    async def get_nodes(self, node_ids: List[str]) -> List[Dict[str, Any]]:
        """Deep snapshots (node plus all descendants) in request order.

        Ids the plugin could not resolve are skipped.
        """
        if not node_ids:
            return []
        result = await self._send("get_node_details", {"node_ids": node_ids, "depth": "full"})
        details = (result or {}).get("details", {}) if isinstance(result, dict) else {}
        nodes: List[Dict[str, Any]] = []
        for node_id in node_ids:
            entry = details.get(node_id)
            if isinstance(entry, dict):
                nodes.append(entry.get("target_node", entry))
        return nodes

    async def get_selection(self) -> List[Dict[str, Any]]:
        """Shallow summaries ({id, name, type, x, y}) of the current selection."""
        result = await self._send("get_canvas_snapshot", {"include_images": False})
        selection = (result or {}).get("selection") if isinstance(result, dict) else None
        return selection if isinstance(selection, list) else []

    async def get_viewport_center(self) -> Dict[str, float]:
        result = await self._send("get_viewport_center")
        center = result.get("center", result) if isinstance(result, dict) else {}
        return {"x": float(center.get("x", 0)), "y": float(center.get("y", 0))}

    async def get_local_variables(self) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        result = await self._send("get_local_variables")
        if not isinstance(result, dict):
            return [], []
        return list(result.get("collections") or []), list(result.get("variables") or [])

    async def get_text_styles(self) -> List[Dict[str, Any]]:
        result = await self._send("get_document_styles", {"style_types": ["TEXT"]})
        styles = (result or {}).get("styles") if isinstance(result, dict) else None
        return [s for s in (styles or []) if s.get("type", "TEXT") == "TEXT"]

    async def get_components(self) -> List[Dict[str, Any]]:
        result = await self._send("get_document_components")
        components = (result or {}).get("components") if isinstance(result, dict) else None
        # Component sets are variant containers, not instantiable by key
        return [c for c in (components or []) if c.get("type", "COMPONENT") == "COMPONENT"]
