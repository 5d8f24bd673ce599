"""Tool catalogue: input schemas and verification categories.

Each ToolSpec declares:
- input_schema: JSON Schema (Draft 7) for the agent-supplied parameters
- expected_operation: what a successful run must visibly do to the image
- tunable / tolerance_param / intensity_param / list_param: which parameters
  the validator calibrates and the retry strategist may repair
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from editguard.shared.errors import UnknownToolError


class ExpectedOperation(enum.Enum):
    TRANSPARENCY_CHANGE = "transparency_change"
    COLOR_CHANGE = "color_change"
    QUALITY_ENHANCEMENT = "quality_enhancement"
    STRUCTURAL_CHANGE = "structural_change"
    INFO_ONLY = "info_only"
    GENERATIVE = "generative"


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]
    expected_operation: ExpectedOperation
    tunable: tuple[str, ...] = ()
    tolerance_param: str | None = None
    intensity_param: str | None = None
    list_param: str | None = None
    transparency_modes: dict[str, Any] = field(default_factory=dict)

    @property
    def informational(self) -> bool:
        return self.expected_operation is ExpectedOperation.INFO_ONLY

    @property
    def known_parameters(self) -> frozenset[str]:
        return frozenset(self.input_schema.get("properties", {}))

    def value_of(self, parameters: dict[str, Any], name: str) -> Any:
        """Parameter value, falling back to the schema default."""
        if name in parameters:
            return parameters[name]
        return self.input_schema.get("properties", {}).get(name, {}).get("default")

    def expected_for(self, parameters: dict[str, Any]) -> ExpectedOperation:
        """Resolve the category for concrete parameters.

        A transparency tool asked to paint a solid color instead behaves
        like a color change.
        """
        if self.expected_operation is ExpectedOperation.TRANSPARENCY_CHANGE:
            for param, transparent_value in self.transparency_modes.items():
                value = parameters.get(param)
                if transparent_value is None and value:
                    return ExpectedOperation.COLOR_CHANGE
                if transparent_value is not None and value not in (None, transparent_value):
                    return ExpectedOperation.COLOR_CHANGE
        return self.expected_operation


def _obj(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


_HEX = {"type": "string", "pattern": "^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$"}
_CHANNEL = {"type": "number", "minimum": 0, "maximum": 255}

_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="color_knockout",
        description="Remove specific colors with adjustable tolerance and anti-aliasing.",
        input_schema=_obj(
            {
                "colors": {
                    "type": "array",
                    "minItems": 1,
                    "items": _obj(
                        {"hex": _HEX, "r": _CHANNEL, "g": _CHANNEL, "b": _CHANNEL},
                        ["hex", "r", "g", "b"],
                    ),
                },
                "tolerance": {"type": "number", "minimum": 0, "maximum": 100, "default": 30},
                "replaceMode": {
                    "type": "string",
                    "enum": ["transparency", "color", "mask"],
                    "default": "transparency",
                },
                "feather": {"type": "number", "minimum": 0, "maximum": 20, "default": 0},
                "antiAliasing": {"type": "boolean", "default": True},
            },
            ["colors"],
        ),
        expected_operation=ExpectedOperation.TRANSPARENCY_CHANGE,
        tunable=("tolerance", "feather"),
        tolerance_param="tolerance",
        intensity_param="tolerance",
        list_param="colors",
        transparency_modes={"replaceMode": "transparency"},
    ),
    ToolSpec(
        name="extract_color_palette",
        description="Extract dominant colors as a 9 or 36 swatch palette.",
        input_schema=_obj(
            {
                "paletteSize": {"type": "number", "enum": [9, 36], "default": 9},
                "algorithm": {"type": "string", "enum": ["smart", "detailed"], "default": "smart"},
            }
        ),
        expected_operation=ExpectedOperation.INFO_ONLY,
    ),
    ToolSpec(
        name="recolor_image",
        description="Map palette colors to new colors.",
        input_schema=_obj(
            {
                "colorMappings": {
                    "type": "array",
                    "minItems": 1,
                    "items": _obj(
                        {"originalIndex": {"type": "integer", "minimum": 0}, "newColor": _HEX},
                        ["originalIndex", "newColor"],
                    ),
                },
                "blendMode": {
                    "type": "string",
                    "enum": ["replace", "overlay", "multiply"],
                    "default": "replace",
                },
                "tolerance": {"type": "number", "minimum": 0, "maximum": 100, "default": 30},
            },
            ["colorMappings"],
        ),
        expected_operation=ExpectedOperation.COLOR_CHANGE,
        tunable=("tolerance",),
        tolerance_param="tolerance",
        intensity_param="tolerance",
        list_param="colorMappings",
    ),
    ToolSpec(
        name="texture_cut",
        description="Cut image regions to transparent through a texture mask.",
        input_schema=_obj(
            {
                "textureType": {
                    "type": "string",
                    "enum": ["dots", "lines", "grid", "noise", "custom"],
                    "default": "noise",
                },
                "invert": {"type": "boolean", "default": False},
                "amount": {"type": "number", "minimum": 0, "maximum": 1, "default": 0.5},
                "scale": {"type": "number", "minimum": 0.1, "maximum": 5, "default": 1},
                "rotation": {"type": "number", "minimum": 0, "maximum": 360, "default": 0},
                "tile": {"type": "boolean", "default": False},
            },
            ["textureType"],
        ),
        expected_operation=ExpectedOperation.TRANSPARENCY_CHANGE,
        tunable=("amount", "scale"),
        intensity_param="amount",
    ),
    ToolSpec(
        name="background_remover",
        description="Remove the background with a segmentation model.",
        input_schema=_obj(
            {
                "model": {
                    "type": "string",
                    "enum": ["bria", "codeplugtech", "fallback"],
                    "default": "bria",
                },
                "outputFormat": {"type": "string", "enum": ["png", "webp"], "default": "png"},
                "backgroundColor": _HEX,
            }
        ),
        expected_operation=ExpectedOperation.TRANSPARENCY_CHANGE,
        transparency_modes={"backgroundColor": None},
    ),
    ToolSpec(
        name="upscaler",
        description="Increase resolution with a super-resolution model.",
        input_schema=_obj(
            {
                "model": {
                    "type": "string",
                    "enum": ["standard", "creative", "anime"],
                    "default": "standard",
                },
                "scaleFactor": {"type": "number", "minimum": 1, "maximum": 10, "default": 2},
                "faceEnhance": {"type": "boolean", "default": False},
                "outputFormat": {
                    "type": "string",
                    "enum": ["png", "jpg", "webp"],
                    "default": "png",
                },
            },
            ["scaleFactor"],
        ),
        expected_operation=ExpectedOperation.QUALITY_ENHANCEMENT,
        tunable=("scaleFactor",),
    ),
    ToolSpec(
        name="pick_color_at_position",
        description="Read the color of one pixel.",
        input_schema=_obj({"x": {"type": "number"}, "y": {"type": "number"}}, ["x", "y"]),
        expected_operation=ExpectedOperation.INFO_ONLY,
    ),
    ToolSpec(
        name="auto_crop",
        description="Trim uniform background around the design.",
        input_schema=_obj(
            {
                "tolerance": {"type": "number", "minimum": 0, "maximum": 255, "default": 30},
                "minPadding": {"type": "number", "minimum": 0, "maximum": 100, "default": 0},
                "backgroundColor": {"type": "string", "default": "white"},
            }
        ),
        expected_operation=ExpectedOperation.STRUCTURAL_CHANGE,
        tunable=("tolerance", "minPadding"),
    ),
    ToolSpec(
        name="crop_with_spacing",
        description="Crop to content leaving a fixed margin (px or inches).",
        input_schema=_obj(
            {
                "spacing": {"type": "number", "minimum": 0},
                "unit": {"type": "string", "enum": ["px", "inches"], "default": "px"},
                "dpi": {"type": "number", "exclusiveMinimum": 0, "default": 300},
            },
            ["spacing"],
        ),
        expected_operation=ExpectedOperation.STRUCTURAL_CHANGE,
        tunable=("spacing",),
    ),
    ToolSpec(
        name="rotate_flip",
        description="Rotate by a right angle or mirror the image.",
        input_schema=_obj(
            {
                "operation": {
                    "type": "object",
                    "oneOf": [
                        _obj(
                            {
                                "type": {"const": "rotate"},
                                "angle": {"enum": [90, 180, 270, -90, -180, -270]},
                            },
                            ["type", "angle"],
                        ),
                        _obj(
                            {
                                "type": {"const": "flip"},
                                "direction": {"enum": ["horizontal", "vertical"]},
                            },
                            ["type", "direction"],
                        ),
                    ],
                }
            },
            ["operation"],
        ),
        expected_operation=ExpectedOperation.STRUCTURAL_CHANGE,
    ),
    ToolSpec(
        name="smart_resize",
        description="Resize with quality warnings when upscaling.",
        input_schema={
            **_obj(
                {
                    "width": {"type": "number", "exclusiveMinimum": 0},
                    "height": {"type": "number", "exclusiveMinimum": 0},
                    "unit": {"type": "string", "enum": ["px", "percent"], "default": "px"},
                    "maintainAspectRatio": {"type": "boolean", "default": True},
                }
            ),
            "anyOf": [{"required": ["width"]}, {"required": ["height"]}],
        },
        expected_operation=ExpectedOperation.STRUCTURAL_CHANGE,
    ),
    ToolSpec(
        name="edit_image",
        description="Free-form generative edit from a natural-language prompt.",
        input_schema=_obj(
            {
                "prompt": {"type": "string", "minLength": 1},
                "strength": {"type": "number", "minimum": 0, "maximum": 1, "default": 0.75},
            },
            ["prompt"],
        ),
        expected_operation=ExpectedOperation.GENERATIVE,
        tunable=("strength",),
        intensity_param="strength",
    ),
    ToolSpec(
        name="generate_mockup",
        description="Place the design on a product mockup.",
        input_schema=_obj(
            {
                "product": {
                    "type": "string",
                    "enum": ["tshirt", "hoodie", "mug", "poster", "phone-case", "tote-bag"],
                },
                "color": {
                    "type": "string",
                    "enum": ["white", "black", "gray", "red", "blue", "green", "yellow", "custom"],
                    "default": "white",
                },
                "customColor": _HEX,
                "placement": {
                    "type": "string",
                    "enum": ["center", "left-chest", "full-front", "full-back"],
                    "default": "center",
                },
                "size": {"type": "string", "enum": ["small", "medium", "large", "xl"]},
                "style": {"type": "string", "enum": ["product-only", "lifestyle-model"]},
            },
            ["product", "style"],
        ),
        expected_operation=ExpectedOperation.GENERATIVE,
    ),
)

TOOL_CATALOG: MappingProxyType[str, ToolSpec] = MappingProxyType({t.name: t for t in _TOOLS})


def get_tool(name: str) -> ToolSpec:
    """Look up a tool by name.

    Raises:
        UnknownToolError: if the name is not in the catalogue.
    """
    spec = TOOL_CATALOG.get(name)
    if spec is None:
        raise UnknownToolError(name)
    return spec


def list_tools() -> list[ToolSpec]:
    return list(TOOL_CATALOG.values())
