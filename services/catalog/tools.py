from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ToolSpec:
    id: str
    name: str
    category: str
    requires_image: bool
    requires_multiple_images: bool = False
    parameters: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    # quality assessment expectations
    expected_keywords: Tuple[str, ...] = ()
    requires_detailed_prompt: bool = False
    prefers_concise_prompt: bool = False
    baseline_quality: float = 70.0
    base_generation_seconds: int = 35
    aesthetics: float = 0.6
    high_bandwidth: bool = False
    night_friendly: bool = False
    creative: bool = False
    preset_prompts: Tuple[str, ...] = field(default_factory=tuple)


TOOLS: List[ToolSpec] = [
    ToolSpec(
        id="text_to_image",
        name="Text to Image",
        category="creative",
        requires_image=False,
        parameters=("style", "size", "quality"),
        keywords=("scene", "landscape", "illustration", "poster", "painting", "concept"),
        baseline_quality=75.0,
        base_generation_seconds=30,
        aesthetics=0.6,
        preset_prompts=(
            "a beautiful landscape with mountains and a lake on a sunny day",
            "cute small animals playing in a colorful garden",
            "a futuristic city with tall towers and glowing neon lights",
        ),
    ),
    ToolSpec(
        id="photo_to_figure",
        name="Photo to Figure",
        category="creative",
        requires_image=True,
        parameters=("style", "base"),
        keywords=("figure", "figurine", "model", "3d", "character", "toy", "collectible"),
        expected_keywords=("figure", "model", "3d", "character"),
        requires_detailed_prompt=True,
        baseline_quality=80.0,
        base_generation_seconds=45,
        aesthetics=0.7,
        preset_prompts=(
            "turn the photo into a detailed 3d collectible figure on a clear acrylic base",
            "make a chibi cartoon figure that keeps the original features",
            "create a limited edition figure shown next to its retail box",
        ),
    ),
    ToolSpec(
        id="image_editor",
        name="Image Editor",
        category="editor",
        requires_image=True,
        parameters=("instruction",),
        keywords=("edit", "modify", "adjust", "change", "fix", "retouch"),
        baseline_quality=70.0,
        base_generation_seconds=25,
    ),
    ToolSpec(
        id="sketch_pose",
        name="Sketch Pose",
        category="style",
        requires_image=True,
        requires_multiple_images=True,
        parameters=("pose_strength", "style"),
        keywords=("pose", "sketch", "posture", "stance"),
    ),
    ToolSpec(
        id="product_display",
        name="Product Display",
        category="professional",
        requires_image=True,
        requires_multiple_images=True,
        parameters=("background", "lighting", "angle"),
        keywords=("product", "display", "showcase", "commercial", "catalog"),
    ),
    ToolSpec(
        id="change_view_angle",
        name="Change View Angle",
        category="editor",
        requires_image=True,
        parameters=("angle",),
        keywords=("angle", "view", "perspective", "rotate"),
    ),
    ToolSpec(
        id="background_replace",
        name="Background Replace",
        category="editor",
        requires_image=True,
        parameters=("background",),
        keywords=("background", "replace", "backdrop", "scene"),
        base_generation_seconds=25,
    ),
    ToolSpec(
        id="wireframe_mesh",
        name="Wireframe Mesh",
        category="style",
        requires_image=True,
        parameters=("density",),
        keywords=("wireframe", "mesh", "3d", "polygon"),
    ),
    ToolSpec(
        id="group_photo",
        name="Group Photo",
        category="professional",
        requires_image=True,
        requires_multiple_images=True,
        parameters=("layout", "background"),
        keywords=("group", "team", "family", "together", "people"),
        high_bandwidth=True,
    ),
    ToolSpec(
        id="emoticons",
        name="Emoticons",
        category="creative",
        requires_image=True,
        parameters=("expression", "count"),
        keywords=("emoji", "emoticon", "sticker", "expression", "cute"),
        creative=True,
    ),
    ToolSpec(
        id="line_to_render",
        name="Line Art to Render",
        category="style",
        requires_image=True,
        parameters=("material", "lighting", "style"),
        keywords=("line", "lineart", "render", "drawing", "outline"),
    ),
    ToolSpec(
        id="photo_restore",
        name="Photo Restore",
        category="editor",
        requires_image=True,
        parameters=("colorize",),
        keywords=("restore", "old", "repair", "damaged", "colorize", "vintage"),
    ),
    ToolSpec(
        id="character_story",
        name="Character Story",
        category="creative",
        requires_image=False,
        parameters=("panels", "style"),
        keywords=("story", "character", "comic", "narrative", "hero"),
        aesthetics=0.7,
        night_friendly=True,
        creative=True,
    ),
    ToolSpec(
        id="multi_image_fusion",
        name="Multi Image Fusion",
        category="editor",
        requires_image=True,
        requires_multiple_images=True,
        parameters=("blend", "layout", "style"),
        keywords=("fusion", "merge", "combine", "blend", "collage"),
        base_generation_seconds=60,
        high_bandwidth=True,
    ),
    ToolSpec(
        id="fashion_ecommerce",
        name="Fashion E-commerce",
        category="professional",
        requires_image=True,
        requires_multiple_images=True,
        parameters=("model", "pose", "background", "lighting"),
        keywords=("fashion", "clothing", "outfit", "model", "ecommerce", "apparel"),
        base_generation_seconds=50,
        aesthetics=0.8,
        high_bandwidth=True,
    ),
    ToolSpec(
        id="interior_design",
        name="Interior Design",
        category="professional",
        requires_image=True,
        parameters=("style", "palette", "materials"),
        keywords=("interior", "design", "room", "furniture", "space", "decor"),
        baseline_quality=82.0,
        aesthetics=0.8,
    ),
    ToolSpec(
        id="product_mockup",
        name="Product Mockup",
        category="professional",
        requires_image=True,
        parameters=("surface", "background"),
        keywords=("mockup", "packaging", "product", "brand", "label"),
    ),
    ToolSpec(
        id="natural_edit",
        name="Natural Language Edit",
        category="editor",
        requires_image=True,
        parameters=("instruction",),
        keywords=("edit", "make", "add", "remove", "change"),
    ),
    ToolSpec(
        id="film_noir",
        name="Film Noir",
        category="style",
        requires_image=False,
        parameters=("grain", "contrast"),
        keywords=("noir", "black", "white", "film", "movie", "vintage", "drama", "shadow"),
        expected_keywords=("black", "white", "film", "drama", "noir"),
        requires_detailed_prompt=True,
        baseline_quality=85.0,
        aesthetics=0.9,
        night_friendly=True,
        creative=True,
    ),
]

TOOLS_BY_ID: Dict[str, ToolSpec] = {tool.id: tool for tool in TOOLS}

DEFAULT_TOOL_ID = "text_to_image"
NEW_USER_TOOLS = ["text_to_image", "image_editor", "photo_restore"]
SLOW_NETWORK_TOOLS = {"text_to_image", "image_editor", "background_replace"}


def get_tool(tool_id: str) -> Optional[ToolSpec]:
    return TOOLS_BY_ID.get(tool_id)


def tool_category(tool_id: str) -> str:
    tool = TOOLS_BY_ID.get(tool_id)
    return tool.category if tool else "creative"
