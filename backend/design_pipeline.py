"""
Design Pipeline - generate → parse → render, plus the selection and design-system reads

Every generation, render and selection read builds its own `TokenIndex` from
the document, so variables added after the plugin connected are picked up.
The latest index is kept on `index`. A lock keeps at most one render running
against the document.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from design_errors import GenerationCancelled
from design_parser import parse_design_json
from design_renderer import RenderedArtifact, render_design
from design_schema import DesignDocument, DesignSystemSnapshot, ViewportSize
from design_serializer import serialize_selection
from design_tokens import IndexLimits, TokenIndex, load_token_index
from figma_communicator import HostCommandError
from figma_scene import HostScene
from model_providers import GenerationRequest, ProgressCallback, ProviderAdapter

logger = logging.getLogger(__name__)

REPLACEABLE_TYPES = {"FRAME", "COMPONENT", "INSTANCE"}


def completion_message(artifact: RenderedArtifact) -> str:
    return f'Created "{artifact.name}" with {artifact.element_count} elements'


class DesignPipeline:
    def __init__(self, scene: HostScene, limits: Optional[IndexLimits] = None):
        self.scene = scene
        self.limits = limits or IndexLimits()
        self.index = TokenIndex.empty(self.limits)
        self._render_lock = asyncio.Lock()

    # ============================================
    # ============ DESIGN SYSTEM =================
    # ============================================

    async def refresh_design_system(self) -> DesignSystemSnapshot:
        """Re-read variables, text styles and components and swap in a new index."""
        index = await self._load_index()
        return index.snapshot()

    async def _load_index(self) -> TokenIndex:
        self.index = await load_token_index(self.scene, self.limits)
        return self.index

    # ============================================
    # ============== SELECTION ===================
    # ============================================

    async def selection_info(self) -> Optional[Dict[str, Any]]:
        """{id, name, type, hasMultiple, count} for the first selected node, or None."""
        selection = await self.scene.get_selection()
        if not selection:
            return None
        first = selection[0]
        return {
            "id": first.get("id"),
            "name": first.get("name"),
            "type": first.get("type"),
            "hasMultiple": len(selection) > 1,
            "count": len(selection),
        }

    async def selection_data(self) -> Optional[DesignDocument]:
        selection = await self.scene.get_selection()
        if not selection:
            return None
        node_ids = [s["id"] for s in selection if s.get("id")]
        nodes = await self.scene.get_nodes(node_ids)
        return serialize_selection(nodes, await self._load_index())

    # ============================================
    # ============== GENERATION ==================
    # ============================================

    async def generate(
        self,
        provider: ProviderAdapter,
        request: GenerationRequest,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DesignDocument:
        """Stream a design from `provider` and parse it.

        Nothing touches the scene here, so a cancelled or failed generation
        leaves the document as it was.
        """
        index = await self._load_index()
        if request.design_system is None and not index.is_empty():
            request.design_system = index.snapshot()
        raw_text = await provider.generate(request, on_progress=on_progress, cancel_event=cancel_event)
        if cancel_event is not None and cancel_event.is_set():
            raise GenerationCancelled()
        document = parse_design_json(raw_text)
        logger.info(f"🧩 Parsed design '{document.name}' with {len(document.children)} top-level children")
        return document

    # ============================================
    # ================ RENDER ====================
    # ============================================

    async def render(self, document: DesignDocument, viewport: ViewportSize) -> RenderedArtifact:
        """Render, replacing a single selected frame or centering on the viewport."""
        async with self._render_lock:
            replace = await self._replaceable_selection()
            if replace is not None:
                position = {"x": float(replace.get("x", 0)), "y": float(replace.get("y", 0))}
                logger.info(f"🔁 Replacing selected {replace.get('type')} '{replace.get('name')}'")
            else:
                center = await self.scene.get_viewport_center()
                position = {"x": center["x"] - viewport.width / 2, "y": center["y"] - viewport.height / 2}

            artifact = await render_design(self.scene, document, viewport, await self._load_index(), position=position)

            if replace is not None:
                try:
                    await self.scene.remove_node(replace["id"])
                except HostCommandError as e:
                    logger.warning(f"⚠️ Could not remove replaced node {replace['id']}: {e}")

            try:
                await self.scene.set_selection([artifact.node_id])
                await self.scene.scroll_into_view([artifact.node_id])
            except HostCommandError as e:
                logger.warning(f"⚠️ Could not focus rendered frame: {e}")
            return artifact

    async def _replaceable_selection(self) -> Optional[Dict[str, Any]]:
        selection = await self.scene.get_selection()
        if len(selection) != 1 or selection[0].get("type") not in REPLACEABLE_TYPES:
            return None
        selected = selection[0]
        if "x" in selected and "y" in selected:
            return selected
        nodes = await self.scene.get_nodes([selected["id"]])
        if nodes:
            return {**selected, "x": nodes[0].get("x", 0), "y": nodes[0].get("y", 0)}
        return selected
