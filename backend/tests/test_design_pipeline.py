import asyncio

import pytest

from conftest import collection, color_variable, text_style
from design_errors import GenerationCancelled, ParseError
from design_pipeline import DesignPipeline, completion_message
from design_renderer import RenderedArtifact
from design_schema import VIEWPORT_PRESETS, DesignDocument
from model_providers import GenerationRequest

MOBILE = VIEWPORT_PRESETS["mobile"]
SCREEN = DesignDocument.model_validate({"name": "Home", "children": [{"type": "TEXT", "characters": "Hi"}]})


class ScriptedProvider:
    """Returns canned text and remembers the request it was given."""

    def __init__(self, text):
        self.text = text
        self.requests = []

    async def generate(self, request, on_progress=None, cancel_event=None):
        self.requests.append(request)
        if on_progress is not None:
            on_progress(self.text)
        return self.text


def test_completion_message():
    artifact = RenderedArtifact(node_id="1:1", name="Login", element_count=7)
    assert completion_message(artifact) == 'Created "Login" with 7 elements'


@pytest.mark.asyncio
async def test_render_centers_on_viewport_without_selection(scene):
    pipeline = DesignPipeline(scene)

    artifact = await pipeline.render(SCREEN, MOBILE)

    root = scene.nodes[artifact.node_id]
    assert (root["x"], root["y"]) == (1000 - 375 / 2, 500 - 812 / 2)
    assert scene.selection == [artifact.node_id]
    assert scene.scrolled_to == [artifact.node_id]


@pytest.mark.asyncio
async def test_render_replaces_single_selected_frame(scene):
    old_id = scene.add_selected("FRAME", "Old Screen", x=120, y=-40)
    pipeline = DesignPipeline(scene)

    artifact = await pipeline.render(SCREEN, MOBILE)

    assert old_id not in scene.nodes
    root = scene.nodes[artifact.node_id]
    assert (root["x"], root["y"]) == (120, -40)
    assert scene.selection == [artifact.node_id]


@pytest.mark.asyncio
async def test_render_keeps_selected_non_frame(scene):
    text_id = scene.add_selected("TEXT", "Caption", x=5, y=5)
    pipeline = DesignPipeline(scene)

    artifact = await pipeline.render(SCREEN, MOBILE)

    assert text_id in scene.nodes
    assert (scene.nodes[artifact.node_id]["x"], scene.nodes[artifact.node_id]["y"]) == (812.5, 94.0)


@pytest.mark.asyncio
async def test_failed_removal_of_replaced_frame_does_not_fail_render(scene):
    scene.add_selected("FRAME", "Old Screen")
    scene.fail_commands = {"remove_node", "scroll_into_view"}
    pipeline = DesignPipeline(scene)

    artifact = await pipeline.render(SCREEN, MOBILE)

    assert artifact.element_count == 1
    assert len(scene.roots()) == 2


@pytest.mark.asyncio
async def test_selection_info(scene):
    pipeline = DesignPipeline(scene)
    assert await pipeline.selection_info() is None

    first = scene.add_selected("FRAME", "Home")
    second = scene.add_selected("TEXT", "Title")
    scene.selection = [first, second]

    info = await pipeline.selection_info()

    assert info == {"id": first, "name": "Home", "type": "FRAME", "hasMultiple": True, "count": 2}


@pytest.mark.asyncio
async def test_selection_data_serializes_the_selected_frame(scene):
    pipeline = DesignPipeline(scene)
    artifact = await pipeline.render(SCREEN, MOBILE)

    document = await pipeline.selection_data()

    assert document.name == "Home"
    assert document.children[0].characters == "Hi"
    assert scene.selection == [artifact.node_id]


@pytest.mark.asyncio
async def test_refresh_design_system_swaps_index(scene):
    scene.collections = [collection("c", "Tokens")]
    scene.variables = [color_variable("v", "Primary", "c", {"r": 1, "g": 0, "b": 0, "a": 1})]
    scene.text_styles = [text_style("s", "Body")]
    pipeline = DesignPipeline(scene)

    snapshot = await pipeline.refresh_design_system()

    assert [v.name for v in snapshot.color_variables] == ["Primary"]
    assert pipeline.index.find_color("Primary").id == "v"


@pytest.mark.asyncio
async def test_generate_attaches_design_system_and_parses(scene):
    scene.collections = [collection("c", "Tokens")]
    scene.variables = [color_variable("v", "Primary", "c", {"r": 1, "g": 0, "b": 0, "a": 1})]
    pipeline = DesignPipeline(scene)
    await pipeline.refresh_design_system()
    provider = ScriptedProvider('```json\n{"name": "Login", "children": []}\n```')
    progress = []

    document = await pipeline.generate(provider, GenerationRequest(prompt="login", viewport=MOBILE), progress.append)

    assert document.name == "Login"
    assert provider.requests[0].design_system.color_variables[0].name == "Primary"
    assert progress == [provider.text]


@pytest.mark.asyncio
async def test_generate_without_design_system_uses_fallback(scene):
    pipeline = DesignPipeline(scene)
    provider = ScriptedProvider('{"name": "Login"}')

    await pipeline.generate(provider, GenerationRequest(prompt="login", viewport=MOBILE))

    assert provider.requests[0].design_system is None


@pytest.mark.asyncio
async def test_generate_parse_failure_touches_nothing(scene):
    pipeline = DesignPipeline(scene)

    with pytest.raises(ParseError):
        await pipeline.generate(ScriptedProvider("no design today"), GenerationRequest(prompt="x", viewport=MOBILE))

    assert scene.nodes == {}


@pytest.mark.asyncio
async def test_generate_cancelled_after_stream(scene):
    pipeline = DesignPipeline(scene)
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(GenerationCancelled):
        await pipeline.generate(
            ScriptedProvider('{"name": "X"}'), GenerationRequest(prompt="x", viewport=MOBILE), cancel_event=cancel,
        )


@pytest.mark.asyncio
async def test_render_reads_variables_added_after_the_last_refresh(scene):
    pipeline = DesignPipeline(scene)
    await pipeline.refresh_design_system()
    scene.collections = [collection("c", "Tokens")]
    scene.variables = [color_variable("v-primary", "Primary/500", "c", {"r": 0.2, "g": 0.4, "b": 1, "a": 1})]
    card = DesignDocument.model_validate({
        "name": "Card",
        "children": [{"type": "RECTANGLE", "name": "Swatch", "fills": [{"type": "SOLID", "colorVariable": "Primary/500"}]}],
    })

    await pipeline.render(card, MOBILE)

    swatch = scene.by_name("Swatch")
    assert swatch["bindings"] == {"fills[0].color": "v-primary"}
    assert pipeline.index.find_color("Primary/500").id == "v-primary"


@pytest.mark.asyncio
async def test_generate_reads_the_current_design_system(scene):
    pipeline = DesignPipeline(scene)
    scene.text_styles = [text_style("s", "Heading/H1", style="Bold", size=32)]
    provider = ScriptedProvider('{"name": "Login"}')

    await pipeline.generate(provider, GenerationRequest(prompt="login", viewport=MOBILE))

    assert [s.name for s in provider.requests[0].design_system.text_styles] == ["Heading/H1"]
