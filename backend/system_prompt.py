"""
System Prompt - Instruction text for design generation

`build_system_prompt` is pure: the same viewport, design-system snapshot,
instructions and palette always give the same text. Section order is fixed:
output contract and schema, design guidelines, design system (token mode) or
palette (fallback mode), the user's own requirements, then the closing rules
so the output contract always has the last word.
"""

import json
from typing import Optional

from design_schema import DEFAULT_COLOR_PALETTE, ColorPalette, DesignDocument, DesignSystemSnapshot, ViewportSize
from design_utils import format_color_for_prompt

OUTPUT_CONTRACT = """You are a UI/UX design assistant that generates Figma-compatible design specifications in JSON format.

## Output Format
You MUST respond with valid JSON only. No markdown, no explanations, just the JSON object.

The JSON must follow this schema for a frame/screen:
{
  "name": "Screen Name",
  "layoutMode": "VERTICAL",
  "padding": { "top": number, "right": number, "bottom": number, "left": number },
  "paddingVariable": "spacing variable name (design system only)",
  "itemSpacing": number,
  "itemSpacingVariable": "spacing variable name (design system only)",
  "fills": [...],
  "children": [
    {
      "type": "FRAME" | "TEXT" | "RECTANGLE" | "ELLIPSE" | "LINE" | "INSTANCE",
      "name": "Element Name",
      "width": number,
      "height": number,
      "layoutMode": "NONE" | "HORIZONTAL" | "VERTICAL",
      "primaryAxisAlignItems": "MIN" | "CENTER" | "MAX" | "SPACE_BETWEEN",
      "counterAxisAlignItems": "MIN" | "CENTER" | "MAX" (NOT "STRETCH" - use layoutAlign for stretch),
      "primaryAxisSizingMode": "HUG" | "FIXED" | "FILL",
      "counterAxisSizingMode": "HUG" | "FIXED" | "FILL",
      "padding": { "top": number, "right": number, "bottom": number, "left": number },
      "paddingVariable": "spacing variable name",
      "itemSpacing": number,
      "itemSpacingVariable": "spacing variable name",
      "layoutAlign": "STRETCH" | "INHERIT",
      "layoutGrow": number,
      "layoutPositioning": "AUTO" | "ABSOLUTE",
      "fills": [{ "type": "SOLID", "color": { "r": 0-1, "g": 0-1, "b": 0-1 }, "colorVariable": "color variable name", "opacity": 0-1 }],
      "strokes": [{ "type": "SOLID", "color": { "r": 0-1, "g": 0-1, "b": 0-1 }, "colorVariable": "color variable name", "opacity": 0-1 }],
      "strokeWeight": number,
      "cornerRadius": number,
      "opacity": 0-1,
      "effects": [{ "type": "DROP_SHADOW", "color": { "r": 0-1, "g": 0-1, "b": 0-1, "a": 0-1 }, "offset": { "x": number, "y": number }, "radius": number, "spread": number }],
      "clipsContent": boolean,
      "characters": "Text content (for TEXT type)",
      "textStyleName": "text style name (TEXT type, design system only)",
      "fontSize": number,
      "fontWeight": 100-900,
      "fontFamily": "Inter",
      "textAlignHorizontal": "LEFT" | "CENTER" | "RIGHT" | "JUSTIFIED",
      "textAlignVertical": "TOP" | "CENTER" | "BOTTOM",
      "lineHeight": number,
      "letterSpacing": number,
      "componentKey": "component key (INSTANCE type)",
      "componentProperties": { "Property Name": "value" | boolean },
      "children": [...]
    }
  ]
}"""

SIZING_RULES = """## Sizing Modes - IMPORTANT
- Every auto-layout container MUST declare primaryAxisSizingMode and counterAxisSizingMode
- "HUG": the container wraps its content (default when unsure)
- "FIXED": the container uses its width/height exactly - only when width/height are given
- "FILL": the container expands to fill its parent (combine with layoutGrow: 1 on the primary axis, layoutAlign: "STRETCH" on the counter axis)
- Never leave a container without content AND without a fixed size - it will collapse to 0px"""

INPUT_FIELD_EXAMPLE = """## Input Fields - IMPORTANT
For text input fields, ALWAYS use a FRAME with auto-layout, NOT a RECTANGLE:
{
  "type": "FRAME",
  "name": "Input Field",
  "layoutMode": "HORIZONTAL",
  "counterAxisAlignItems": "CENTER",
  "primaryAxisSizingMode": "FIXED",
  "counterAxisSizingMode": "HUG",
  "layoutAlign": "STRETCH",
  "padding": { "top": 12, "right": 16, "bottom": 12, "left": 16 },
  "cornerRadius": 8,
  "fills": [{ "type": "SOLID", "color": { "r": 1, "g": 1, "b": 1 } }],
  "strokes": [{ "type": "SOLID", "color": { "r": 0.85, "g": 0.85, "b": 0.85 } }],
  "strokeWeight": 1,
  "children": [
    { "type": "TEXT", "name": "Placeholder", "characters": "Enter text...", "fontSize": 14, "fontWeight": 400, "fills": [...], "layoutGrow": 1 }
  ]
}"""

DESIGN_SYSTEM_RULES = """## Design System Usage (MANDATORY)
This file has a design system. You MUST reference it by name instead of writing raw values:
1. Every fill and stroke MUST use "colorVariable" with one of the color names listed above. A raw "color" is an error.
2. Padding MUST use "paddingVariable" and gaps MUST use "itemSpacingVariable" with the spacing names listed above. Raw numbers are an error.
3. Every TEXT element MUST use "textStyleName" with one of the text styles listed above instead of fontSize/fontWeight/fontFamily.
4. When a listed component fits (button, input, card...), use type "INSTANCE" with its "componentKey" instead of rebuilding it.
5. Copy names exactly as listed, including slashes and capitalization.
6. Only fall back to raw values for something the design system genuinely does not cover."""

CLOSING_RULES = """## Important Rules
1. ONLY output valid JSON - no markdown code blocks, no explanations
2. The root object should have "name" and "children" properties
3. Every element must have "type" and "name"
4. Use realistic, professional content (not "Lorem ipsum")
5. Create complete, usable UI designs with proper hierarchy
6. Ensure text is readable (minimum 12px font size, good contrast)
7. Add appropriate padding and spacing for touch targets (minimum 44px for buttons)
8. counterAxisAlignItems can ONLY be: "MIN", "CENTER", "MAX" (NOT "STRETCH" - use layoutAlign for that)
9. Keep designs focused - max 3-4 levels of nesting to avoid response truncation
10. Prefer fewer, well-designed elements over many simple ones"""


def _design_guidelines(viewport: ViewportSize) -> str:
    return f"""## Design Guidelines
- Target viewport: {_num(viewport.width)}x{_num(viewport.height)}px ({viewport.name})
- ROOT FRAME MUST have layoutMode: "VERTICAL" with proper padding
- Use auto-layout (layoutMode: "VERTICAL" or "HORIZONTAL") for ALL containers
- Use layoutAlign: "STRETCH" for elements that should fill available width
- Use layoutGrow: 1 for elements that should expand to fill space
- Colors are in 0-1 range (e.g., white is {{ "r": 1, "g": 1, "b": 1 }})
- Use consistent spacing (8px grid recommended)
- Create semantic, descriptive names for layers
- Use corner radius for modern rounded elements
- Add subtle shadows for depth on cards/buttons

{SIZING_RULES}"""


def _design_system_section(snapshot: DesignSystemSnapshot) -> str:
    lines = ["## Design System Available"]

    if snapshot.color_variables:
        lines.append("")
        lines.append('### Color Variables (use as "colorVariable"):')
        for var in snapshot.color_variables:
            # Names only, never the hex value
            lines.append(f"- {var.name}")

    if snapshot.spacing_variables:
        lines.append("")
        lines.append('### Spacing Variables (use as "paddingVariable" / "itemSpacingVariable"):')
        for var in snapshot.spacing_variables:
            lines.append(f"- {var.name}: {_num(var.value)}px")

    if snapshot.text_styles:
        lines.append("")
        lines.append('### Text Styles (use as "textStyleName"):')
        for style in snapshot.text_styles:
            detail = f"{style.font_family} {style.font_weight} {_num(style.font_size)}px"
            if style.line_height is not None:
                detail += f", line height {_num(style.line_height)}px"
            if style.letter_spacing:
                detail += f", letter spacing {_num(style.letter_spacing)}px"
            lines.append(f"- {style.name}: {detail}")

    if snapshot.components:
        lines.append("")
        lines.append('### Available Components (use type: "INSTANCE" with componentKey):')
        for comp in snapshot.components:
            suffix = f" - {comp.description}" if comp.description else ""
            lines.append(f'- {comp.name}: "{comp.key}"{suffix}')

    return "\n".join(lines) + "\n\n" + DESIGN_SYSTEM_RULES


def _palette_section(colors: ColorPalette) -> str:
    return f"""## Color Palette (USE THESE COLORS)
Use this color palette for your designs:

### Primary Colors
- Primary: {format_color_for_prompt(colors.primary)}
- Primary Dark: {format_color_for_prompt(colors.primary_dark)}

### Backgrounds
- Background: {format_color_for_prompt(colors.background)}
- Card Background: {format_color_for_prompt(colors.background_card)}

### Text Colors
- Text Primary: {format_color_for_prompt(colors.text_primary)}
- Text Secondary: {format_color_for_prompt(colors.text_secondary)}

### UI Colors
- Border: {format_color_for_prompt(colors.border)}
- Success: {format_color_for_prompt(colors.success)}
- Error: {format_color_for_prompt(colors.error)}
- Warning: {format_color_for_prompt(colors.warning)}

Write these as literal "color" values on fills and strokes.
IMPORTANT: Use Background ({colors.background}) for page backgrounds, not pure white, so elements are visible."""


def build_system_prompt(
    viewport: ViewportSize,
    design_system: Optional[DesignSystemSnapshot],
    context_instructions: str = "",
    palette: Optional[ColorPalette] = None,
) -> str:
    """Build the instruction text for one generation request.

    A non-empty design-system snapshot switches to token mode (names only,
    mandatory usage block); otherwise the palette is listed with literal values.
    """
    sections = [OUTPUT_CONTRACT, _design_guidelines(viewport), INPUT_FIELD_EXAMPLE]

    if design_system is not None and not design_system.is_empty():
        sections.append(_design_system_section(design_system))
    else:
        sections.append(_palette_section(palette or DEFAULT_COLOR_PALETTE))

    if context_instructions and context_instructions.strip():
        sections.append(f"## Additional Design Requirements\n{context_instructions}")

    sections.append(CLOSING_RULES)
    return "\n\n".join(sections)


def build_user_message(
    prompt: str,
    viewport: ViewportSize,
    existing_design: Optional[DesignDocument] = None,
    has_image: bool = False,
) -> str:
    """User-turn text for plain create, edit-in-place, and image-reference requests."""
    if has_image:
        if existing_design is not None:
            return (
                f"Here is the current design:\n{_dump(existing_design)}\n\n"
                f"User request: {prompt}\n\nGenerate the updated design JSON:"
            )
        return (
            "Reference the attached image for visual inspiration.\n\n"
            f"User request: {prompt}\n\nGenerate the design JSON:"
        )
    if existing_design is not None:
        return (
            f"Here is the current design:\n{_dump(existing_design)}\n\n"
            f"User request: {prompt}\n\n"
            "Generate the updated design JSON maintaining the overall structure but applying the requested changes:"
        )
    return f"Create a {viewport.name.lower()} screen design for: {prompt}\n\nGenerate the design JSON:"


def _dump(document: DesignDocument) -> str:
    return json.dumps(document.to_json_dict(), indent=2, ensure_ascii=False)


def _num(value) -> str:
    # 16.0 -> "16"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
