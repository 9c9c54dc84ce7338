import copy
import itertools
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from design_tokens import TokenIndex
from figma_communicator import HostCommandError


class FakeScene:
    """In-memory HostScene. Nodes are plain dicts keyed by id.

    Failure switches:
      fail_fonts        {(family, style)} that refuse to load
      components        {key: name} instantiable by key; anything else fails
      component_layers  {key: [layer names]} TEXT layers each new instance of that key contains
      fail_commands     method names that always fail
      fail_node_names   nodes whose writes (after creation) fail
    """

    def __init__(self):
        self.nodes: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)
        self.calls: List[Tuple[str, tuple]] = []
        self.loaded_fonts: List[Tuple[str, str]] = []

        self.fail_fonts: Set[Tuple[str, str]] = set()
        self.components: Dict[str, str] = {}
        self.component_layers: Dict[str, List[str]] = {}
        self.fail_commands: Set[str] = set()
        self.fail_node_names: Set[str] = set()

        self.selection: List[str] = []
        self.scrolled_to: List[str] = []
        self.viewport_center = {"x": 1000.0, "y": 500.0}
        self.collections: List[Dict[str, Any]] = []
        self.variables: List[Dict[str, Any]] = []
        self.text_styles: List[Dict[str, Any]] = []
        self.component_payloads: List[Dict[str, Any]] = []

    # ---------- helpers ----------

    def _check(self, command: str, node_id: Optional[str] = None) -> None:
        if command in self.fail_commands:
            raise HostCommandError({"code": "plugin_reported_failure", "message": f"{command} failed"}, command=command)
        if node_id is not None and self.nodes.get(node_id, {}).get("name") in self.fail_node_names:
            raise HostCommandError(
                {"code": "plugin_reported_failure", "message": f"{command} rejected for {self.nodes[node_id]['name']}"},
                command=command,
            )

    def _new(self, node_type: str, name: str) -> str:
        node_id = f"1:{next(self._ids)}"
        self.nodes[node_id] = {
            "id": node_id,
            "type": node_type,
            "name": name,
            "width": 100.0,
            "height": 100.0,
            "x": 0.0,
            "y": 0.0,
            "props": {},
            "bindings": {},
            "children": [],
            "parent": None,
        }
        return node_id

    def roots(self) -> List[Dict[str, Any]]:
        return [n for n in self.nodes.values() if n["parent"] is None]

    def by_name(self, name: str) -> Dict[str, Any]:
        matches = [n for n in self.nodes.values() if n["name"] == name]
        assert len(matches) == 1, f"expected one node named {name!r}, found {len(matches)}"
        return matches[0]

    def children_of(self, node_id: str) -> List[Dict[str, Any]]:
        return [self.nodes[c] for c in self.nodes[node_id]["children"]]

    def add_selected(self, node_type: str, name: str, x: float = 0.0, y: float = 0.0) -> str:
        node_id = self._new(node_type, name)
        self.nodes[node_id].update(x=x, y=y)
        self.selection = [node_id]
        return node_id

    # ---------- write surface ----------

    async def create_node(self, kind: str, name: str) -> str:
        self.calls.append(("create_node", (kind, name)))
        self._check("create_node")
        return self._new(kind, name)

    async def set_properties(self, node_id: str, properties: Dict[str, Any]) -> None:
        self.calls.append(("set_properties", (node_id, properties)))
        self._check("set_properties", node_id)
        node = self.nodes[node_id]
        props = copy.deepcopy(properties)
        for key in ("name", "x", "y"):
            if key in props:
                node[key] = props.pop(key)
        if node["type"] == "TEXT" and "characters" in props:
            font = props.get("fontName") or node["props"].get("fontName")
            assert font and (font["family"], font["style"]) in self.loaded_fonts, "characters assigned before its font was loaded"
        node["props"].update(props)

    async def resize(self, node_id: str, width: float, height: float) -> None:
        self.calls.append(("resize", (node_id, width, height)))
        self._check("resize", node_id)
        self.nodes[node_id]["width"] = width
        self.nodes[node_id]["height"] = height

    async def bind_variable(self, node_id: str, property_path: str, variable_id: str) -> None:
        self.calls.append(("bind_variable", (node_id, property_path, variable_id)))
        self._check("bind_variable", node_id)
        self.nodes[node_id]["bindings"][property_path] = variable_id

    async def load_font(self, family: str, style: str) -> None:
        self.calls.append(("load_font", (family, style)))
        self._check("load_font")
        if (family, style) in self.fail_fonts:
            raise HostCommandError({"code": "font_unavailable", "message": f"{family} {style} not available"}, command="load_font")
        self.loaded_fonts.append((family, style))

    async def apply_text_style(self, node_id: str, style_id: str) -> None:
        self.calls.append(("apply_text_style", (node_id, style_id)))
        self._check("apply_text_style", node_id)
        self.nodes[node_id]["text_style_id"] = style_id

    async def create_instance(self, component_key: str) -> str:
        self.calls.append(("create_instance", (component_key,)))
        self._check("create_instance")
        if component_key not in self.components:
            raise HostCommandError(
                {"code": "component_not_found", "message": f"No component with key {component_key}"},
                command="create_component_instance",
            )
        node_id = self._new("INSTANCE", self.components[component_key])
        self.nodes[node_id]["component_key"] = component_key
        for layer in self.component_layers.get(component_key, []):
            layer_id = self._new("TEXT", layer)
            self.nodes[layer_id]["parent"] = node_id
            self.nodes[node_id]["children"].append(layer_id)
        return node_id

    async def set_instance_properties(self, node_id: str, properties: Dict[str, Any]) -> None:
        self.calls.append(("set_instance_properties", (node_id, properties)))
        self._check("set_instance_properties", node_id)
        self.nodes[node_id].setdefault("instance_props", {}).update(properties)

    async def append_child(self, parent_id: str, child_id: str) -> None:
        self.calls.append(("append_child", (parent_id, child_id)))
        self._check("append_child", child_id)
        child = self.nodes[child_id]
        if child["parent"] is not None:
            self.nodes[child["parent"]]["children"].remove(child_id)
        self.nodes[parent_id]["children"].append(child_id)
        child["parent"] = parent_id

    async def remove_node(self, node_id: str) -> None:
        self.calls.append(("remove_node", (node_id,)))
        self._check("remove_node")
        node = self.nodes.pop(node_id)
        for child_id in list(node["children"]):
            await self.remove_node(child_id)
        if node["parent"] is not None and node["parent"] in self.nodes:
            self.nodes[node["parent"]]["children"].remove(node_id)
        if node_id in self.selection:
            self.selection.remove(node_id)

    async def set_selection(self, node_ids: List[str]) -> None:
        self._check("set_selection")
        self.selection = list(node_ids)

    async def scroll_into_view(self, node_ids: List[str]) -> None:
        self._check("scroll_into_view")
        self.scrolled_to = list(node_ids)

    # ---------- read surface ----------

    def snapshot(self, node_id: str) -> Dict[str, Any]:
        """The node the way the plugin's get_node_details reports it."""
        node = self.nodes[node_id]
        out: Dict[str, Any] = {
            "id": node["id"],
            "type": node["type"],
            "name": node["name"],
            "width": node["width"],
            "height": node["height"],
            "x": node["x"],
            "y": node["y"],
            "opacity": 1,
            "layoutAlign": "INHERIT",
            "layoutGrow": 0,
        }
        out.update(copy.deepcopy(node["props"]))
        bound: Dict[str, Any] = {}
        for path, variable_id in node["bindings"].items():
            alias = {"type": "VARIABLE_ALIAS", "id": variable_id}
            if path.endswith(".color"):
                prop, index = path[:-len(".color")].rstrip("]").split("[")
                out[prop][int(index)]["boundVariables"] = {"color": alias}
            else:
                bound[path] = alias
        if bound:
            out["boundVariables"] = bound
        if node.get("text_style_id"):
            out["textStyleId"] = node["text_style_id"]
        if node.get("component_key"):
            out["mainComponent"] = {"key": node["component_key"], "name": node["name"]}
        if node["type"] not in ("TEXT", "RECTANGLE", "ELLIPSE", "LINE"):
            out["children"] = [self.snapshot(c) for c in node["children"]]
        return out

    async def get_nodes(self, node_ids: List[str]) -> List[Dict[str, Any]]:
        self._check("get_nodes")
        return [self.snapshot(i) for i in node_ids if i in self.nodes]

    async def get_selection(self) -> List[Dict[str, Any]]:
        self._check("get_selection")
        return [
            {"id": i, "name": self.nodes[i]["name"], "type": self.nodes[i]["type"], "x": self.nodes[i]["x"], "y": self.nodes[i]["y"]}
            for i in self.selection
        ]

    async def get_viewport_center(self) -> Dict[str, float]:
        self._check("get_viewport_center")
        return dict(self.viewport_center)

    async def get_local_variables(self):
        self._check("get_local_variables")
        return list(self.collections), list(self.variables)

    async def get_text_styles(self) -> List[Dict[str, Any]]:
        self._check("get_text_styles")
        return list(self.text_styles)

    async def get_components(self) -> List[Dict[str, Any]]:
        self._check("get_components")
        return list(self.component_payloads)


# ---------- raw host payload builders ----------

def collection(collection_id: str, name: str, mode: str = "m1") -> Dict[str, Any]:
    return {"id": collection_id, "name": name, "modes": [{"modeId": mode, "name": "Default"}], "defaultModeId": mode}


def color_variable(variable_id: str, name: str, collection_id: str, value: Any, mode: str = "m1") -> Dict[str, Any]:
    return {
        "id": variable_id,
        "name": name,
        "resolvedType": "COLOR",
        "variableCollectionId": collection_id,
        "valuesByMode": {mode: value},
    }


def float_variable(variable_id: str, name: str, collection_id: str, value: Any, mode: str = "m1") -> Dict[str, Any]:
    return {
        "id": variable_id,
        "name": name,
        "resolvedType": "FLOAT",
        "variableCollectionId": collection_id,
        "valuesByMode": {mode: value},
    }


def alias(variable_id: str) -> Dict[str, Any]:
    return {"type": "VARIABLE_ALIAS", "id": variable_id}


def text_style(style_id: str, name: str, family: str = "Inter", style: str = "Regular", size: float = 16) -> Dict[str, Any]:
    return {
        "id": style_id,
        "name": name,
        "type": "TEXT",
        "fontName": {"family": family, "style": style},
        "fontSize": size,
        "lineHeight": {"unit": "PIXELS", "value": size * 1.5},
        "letterSpacing": {"unit": "PIXELS", "value": 0},
    }


@pytest.fixture
def scene() -> FakeScene:
    return FakeScene()


@pytest.fixture
def token_index() -> TokenIndex:
    """Primary/500 = #3366FF, Spacing/md = 16, Typography/Body/Regular, one Button component."""
    return TokenIndex.build(
        collections=[collection("c-tokens", "Tokens"), collection("c-prim", "Primitives")],
        variables=[
            color_variable("v-blue", "Blue/500", "c-prim", {"r": 0.2, "g": 0.4, "b": 1.0, "a": 1}),
            color_variable("v-primary", "Primary/500", "c-tokens", alias("v-blue")),
            color_variable("v-bg", "Background/Default", "c-tokens", {"r": 1, "g": 1, "b": 1, "a": 1}),
            float_variable("v-md", "Spacing/md", "c-tokens", 16),
            float_variable("v-lg", "Spacing/lg", "c-tokens", 24),
        ],
        text_styles=[text_style("s-body", "Typography/Body/Regular"), text_style("s-h1", "Typography/Heading/H1", style="Bold", size=32)],
        components=[{"key": "btn-key", "name": "Button/Primary", "id": "10:1"}],
    )
