import json

import pytest

from design_errors import PARSE_FAILED_MESSAGE, ParseError
from design_parser import extract_json_text, parse_design_json, repair_truncated_json
from design_schema import FrameElement, TextElement

SIMPLE = {"name": "Login", "children": [{"type": "TEXT", "name": "Title", "characters": "Welcome"}]}


def test_plain_json_parses():
    document = parse_design_json(json.dumps(SIMPLE))

    assert document.name == "Login"
    assert isinstance(document.children[0], TextElement)
    assert document.children[0].characters == "Welcome"


def test_fenced_json_with_surrounding_prose():
    raw = "Here is your design:\n```json\n" + json.dumps(SIMPLE) + "\n```\nLet me know if you need changes."

    document = parse_design_json(raw)

    assert document.name == "Login"


def test_unlabelled_fence_and_trailing_prose():
    raw = "```\n" + json.dumps(SIMPLE) + "\n```"
    assert parse_design_json(raw).name == "Login"

    assert parse_design_json("Sure! " + json.dumps(SIMPLE) + " Enjoy.").name == "Login"


def test_extract_json_text_slices_outer_object():
    assert extract_json_text('prefix {"a": {"b": 1}} suffix') == '{"a": {"b": 1}}'
    assert extract_json_text('{"a": [1, 2') == '{"a": [1, 2'
    assert extract_json_text("no json here") == "no json here"


def test_truncated_inside_text_value_keeps_partial_string():
    raw = '{"name":"X","children":[{"type":"TEXT","characters":"Hel'

    document = parse_design_json(raw)

    assert document.name == "X"
    assert document.children[0].characters == "Hel"


def test_truncated_inside_key_rolls_back_to_last_complete_value():
    repaired = repair_truncated_json('{"name":"X","children":[{"type":"TEXT","chara')

    assert json.loads(repaired) == {"name": "X", "children": [{"type": "TEXT"}]}


def test_truncated_after_colon_drops_dangling_key():
    repaired = repair_truncated_json('{"name":"X","children":')

    assert json.loads(repaired) == {"name": "X"}


def test_truncated_inside_literal_rolls_back():
    repaired = repair_truncated_json('{"name":"X","clipsContent":tr')

    assert json.loads(repaired) == {"name": "X"}


def test_truncated_after_complete_number_keeps_it():
    repaired = repair_truncated_json('{"name":"X","width":375')

    assert json.loads(repaired) == {"name": "X", "width": 375}


def test_truncated_after_escape_and_braces_inside_strings():
    raw = '{"name":"Quote \\"{\\" here","children":[{"type":"TEXT","characters":"a } b \\'

    data = json.loads(repair_truncated_json(raw))

    assert data["name"] == 'Quote "{" here'
    assert data["children"][0]["characters"] == "a } b "


def test_truncated_in_fenced_response_is_repaired():
    raw = '```json\n{"name":"Dashboard","children":[{"type":"FRAME","name":"Header","children":['

    document = parse_design_json(raw)

    assert document.name == "Dashboard"
    assert isinstance(document.children[0], FrameElement)
    assert document.children[0].children == []


def test_repair_ignores_text_after_closed_root():
    assert repair_truncated_json('{"name":"X"} trailing {"other":') == '{"name":"X"}'


def test_repair_returns_none_without_an_object():
    assert repair_truncated_json("nothing to see") is None


def test_garbage_raises_parse_error_with_excerpt():
    raw = "I'm sorry, I can't produce that design." * 30

    with pytest.raises(ParseError) as exc_info:
        parse_design_json(raw)

    assert str(exc_info.value) == PARSE_FAILED_MESSAGE
    assert exc_info.value.excerpt.endswith("...")
    assert len(exc_info.value.excerpt) == 503


@pytest.mark.parametrize("raw", ['{"foo": 1}', "[1, 2, 3]", "", '{"name": ""}'])
def test_values_that_are_not_designs_are_rejected(raw):
    with pytest.raises(ParseError):
        parse_design_json(raw)


def test_malformed_children_field_falls_back_to_empty():
    document = parse_design_json('{"name": "X", "children": "not a list"}')

    assert document.name == "X"
    assert document.children == []


def test_unknown_element_type_is_treated_as_frame():
    document = parse_design_json('{"name":"X","children":[{"type":"VECTOR","name":"Star"}]}')

    assert isinstance(document.children[0], FrameElement)
    assert document.children[0].kind == "FRAME"


# ---------- malformed optional fields ----------

def test_auto_line_height_is_left_to_the_host():
    document = parse_design_json(
        '{"name":"X","children":[{"type":"TEXT","characters":"Hi","fontSize":14,"lineHeight":"AUTO"}]}'
    )

    text = document.children[0]
    assert text.characters == "Hi"
    assert text.font_size == 14
    assert text.line_height is None


def test_letter_spacing_object_is_dropped(caplog):
    raw = '{"name":"X","children":[{"type":"TEXT","characters":"Hi","letterSpacing":{"value":2,"unit":"PERCENT"}}]}'

    document = parse_design_json(raw)

    assert document.children[0].characters == "Hi"
    assert document.children[0].letter_spacing is None
    assert "letter_spacing" in caplog.text


def test_per_corner_radius_list_is_dropped():
    raw = '{"name":"X","children":[{"type":"RECTANGLE","cornerRadius":[8,8,0,0],"fills":[{"type":"SOLID","color":"#FF0000"}]}]}'

    rectangle = parse_design_json(raw).children[0]

    assert rectangle.corner_radius is None
    assert rectangle.fills[0].color.r == 1.0


def test_numeric_component_property_becomes_text():
    raw = '{"name":"X","children":[{"type":"INSTANCE","componentKey":"k","componentProperties":{"Count":3,"Disabled":false}}]}'

    instance = parse_design_json(raw).children[0]

    assert instance.component_properties == {"Count": "3", "Disabled": False}


def test_invalid_list_entries_are_dropped_individually():
    raw = '{"name":"X","fills":[5,{"type":"SOLID","color":"#000000"}],"children":["oops",{"type":"TEXT","characters":"ok"}]}'

    document = parse_design_json(raw)

    assert len(document.fills) == 1
    assert [child.kind for child in document.children] == ["TEXT"]


# ---------- every truncation point ----------

RICH = {
    "name": 'Profile "Ω" ✓',
    "layoutMode": "VERTICAL",
    "itemSpacing": 12,
    "padding": {"top": 24, "right": 16, "bottom": 24, "left": 16},
    "fills": [{"type": "SOLID", "colorVariable": "Background/Default", "color": {"r": 1, "g": 1, "b": 1}}],
    "children": [
        {"type": "TEXT", "name": "Title", "characters": 'Say "hi" \\ wavé', "fontSize": 24, "fontWeight": 700},
        {
            "type": "FRAME",
            "name": "Row",
            "layoutMode": "HORIZONTAL",
            "clipsContent": False,
            "children": [
                {"type": "ELLIPSE", "name": "Avatar", "width": 48, "height": 48, "visible": True},
                {"type": "TEXT", "characters": "Ünïcode\nline", "layoutGrow": 1},
            ],
        },
        {
            "type": "RECTANGLE",
            "name": "Banner",
            "fills": [{"type": "GRADIENT_LINEAR", "gradientStops": [
                {"position": 0, "color": {"r": 0.1, "g": 0.2, "b": 0.3}},
                {"position": 1, "color": {"r": 0.9, "g": 0.8, "b": 0.7}},
            ]}],
            "effects": [{"type": "DROP_SHADOW", "offset": {"x": -2.5, "y": 4}, "radius": 8}],
        },
        {"type": "LINE", "name": "Divider", "x": -20, "layoutPositioning": "ABSOLUTE", "strokeWeight": 1},
    ],
}


@pytest.mark.parametrize("dump", [
    lambda d: json.dumps(d, separators=(",", ":"), ensure_ascii=False),
    lambda d: json.dumps(d, indent=2),
], ids=["compact", "indented-ascii"])
def test_every_prefix_parses_consistently_or_fails_cleanly(dump):
    text = dump(RICH)

    for k in range(1, len(text) + 1):
        try:
            document = parse_design_json(text[:k])
        except ParseError:
            continue

        assert RICH["name"].startswith(document.name), k
        assert len(document.children) <= len(RICH["children"]), k
        for child, expected in zip(document.children, RICH["children"]):
            if "type" in child.model_fields_set:
                assert expected["type"].startswith(child.type), k
            if expected["type"] == "TEXT" and child.kind == "TEXT":
                assert expected["characters"].startswith(child.characters), k

    assert parse_design_json(text).to_json_dict()["children"][3]["x"] == -20
