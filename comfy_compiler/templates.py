"""
Comfy Compiler - Template Keys and Workflow Categories
=======================================================

Registry of the semantic fields a workflow template exposes, how template
placeholders map to node input keys, and how a workflow's category is
recognized from the node types it contains.

Usage:
    from comfy_compiler.templates import WorkflowCategory, required_keys, detect_category

    category = detect_category(graph.class_types())
    for key in required_keys(category):
        print(key, display_name(key))
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

__all__ = [
    "WorkflowCategory",
    "PLACEHOLDER_TO_KEY",
    "KEY_TO_PLACEHOLDER",
    "GRAPH_TRACED_KEYS",
    "PROMPT_FIELD_KEYS",
    "key_for_placeholder",
    "placeholder_for_key",
    "required_keys",
    "optional_keys",
    "RequiredField",
    "display_name",
    "field_description",
    "create_required_field",
    "detect_category",
]


# =============================================================================
# ENUMS
# =============================================================================


class WorkflowCategory(str, Enum):
    TEXT_TO_IMAGE = "tti"
    IMAGE_INPAINTING = "iti_inpainting"
    IMAGE_EDITING = "iti_editing"
    TEXT_TO_VIDEO = "ttv"
    IMAGE_TO_VIDEO = "itv"

    @property
    def is_video(self) -> bool:
        return self in (WorkflowCategory.TEXT_TO_VIDEO, WorkflowCategory.IMAGE_TO_VIDEO)

    @property
    def needs_input_image(self) -> bool:
        return self in (
            WorkflowCategory.IMAGE_INPAINTING,
            WorkflowCategory.IMAGE_EDITING,
            WorkflowCategory.IMAGE_TO_VIDEO,
        )


# =============================================================================
# PLACEHOLDER <-> KEY MAPPING
# =============================================================================

# Template placeholder name -> node input key it lands on
PLACEHOLDER_TO_KEY = {
    "positive_prompt": "positive_text",
    "negative_prompt": "negative_text",
    "highnoise_unet_name": "unet_name",
    "lownoise_unet_name": "unet_name",
    "highnoise_lora_name": "lora_name",
    "lownoise_lora_name": "lora_name",
    "frame_rate": "fps",
    "image_filename": "image",
}

# Field key -> placeholder written into a mapped template
KEY_TO_PLACEHOLDER = {
    "positive_text": "positive_prompt",
    "negative_text": "negative_prompt",
    "fps": "frame_rate",
    "image": "image_filename",
}

# Fields resolved by tracing conditioning edges instead of input names
GRAPH_TRACED_KEYS = frozenset({"positive_text", "negative_text"})
PROMPT_FIELD_KEYS = GRAPH_TRACED_KEYS


def key_for_placeholder(placeholder: str) -> str:
    return PLACEHOLDER_TO_KEY.get(placeholder, placeholder)


def placeholder_for_key(field_key: str) -> str:
    return KEY_TO_PLACEHOLDER.get(field_key, field_key)


# =============================================================================
# FIELD SETS PER CATEGORY
# =============================================================================

_REQUIRED_KEYS = {
    WorkflowCategory.TEXT_TO_IMAGE: ["positive_text"],
    WorkflowCategory.IMAGE_INPAINTING: ["positive_text", "image"],
    WorkflowCategory.IMAGE_EDITING: ["positive_text", "image"],
    WorkflowCategory.TEXT_TO_VIDEO: ["positive_text"],
    WorkflowCategory.IMAGE_TO_VIDEO: ["positive_text", "image"],
}

_IMAGE_OPTIONAL_KEYS = [
    "negative_text",
    "ckpt_name",
    "unet_name",
    "vae_name",
    "clip_name",
    "width",
    "height",
    "steps",
    "cfg",
    "sampler_name",
    "scheduler",
    "lora_name",
]

_IMAGE_INPUT_OPTIONAL_KEYS = [
    "negative_text",
    "ckpt_name",
    "unet_name",
    "vae_name",
    "clip_name",
    "megapixels",
    "steps",
    "cfg",
    "sampler_name",
    "scheduler",
    "lora_name",
]

_VIDEO_OPTIONAL_KEYS = [
    "negative_text",
    "highnoise_unet_name",
    "lownoise_unet_name",
    "highnoise_lora_name",
    "lownoise_lora_name",
    "vae_name",
    "clip_name",
    "width",
    "height",
    "length",
    "fps",
]

_OPTIONAL_KEYS = {
    WorkflowCategory.TEXT_TO_IMAGE: _IMAGE_OPTIONAL_KEYS,
    WorkflowCategory.IMAGE_INPAINTING: _IMAGE_INPUT_OPTIONAL_KEYS,
    WorkflowCategory.IMAGE_EDITING: _IMAGE_INPUT_OPTIONAL_KEYS,
    WorkflowCategory.TEXT_TO_VIDEO: _VIDEO_OPTIONAL_KEYS,
    WorkflowCategory.IMAGE_TO_VIDEO: _VIDEO_OPTIONAL_KEYS,
}


def required_keys(category: WorkflowCategory) -> list[str]:
    return list(_REQUIRED_KEYS[category])


def optional_keys(
    category: WorkflowCategory, class_types: Iterable[str] | None = None
) -> list[str]:
    """
    Optional field keys, adjusted for structural variants present in the graph.

    A BasicGuider takes a single conditioning (no CFG, no negative prompt);
    a DualCLIPLoader exposes two CLIP names instead of one.
    """
    keys = list(_OPTIONAL_KEYS[category])
    present = set(class_types or ())

    if "BasicGuider" in present:
        keys = [k for k in keys if k not in ("cfg", "negative_text")]

    if "DualCLIPLoader" in present and not category.is_video and "clip_name" in keys:
        index = keys.index("clip_name")
        keys[index : index + 1] = ["clip_name1", "clip_name2"]

    return keys


# =============================================================================
# FIELD DISPLAY INFO
# =============================================================================


@dataclass(frozen=True)
class RequiredField:
    """A semantic field that needs a node input behind it."""

    field_key: str
    display_name: str
    description: str


_FIELD_INFO = {
    "positive_text": ("Positive Prompt", "The text prompt for generation"),
    "negative_text": ("Negative Prompt", "Text describing what to avoid in generation"),
    "ckpt_name": ("Checkpoint", "The checkpoint model to use"),
    "unet_name": ("UNET Model", "The diffusion model to use"),
    "highnoise_unet_name": ("High Noise UNET", "Diffusion model for the high-noise pass"),
    "lownoise_unet_name": ("Low Noise UNET", "Diffusion model for the low-noise pass"),
    "highnoise_lora_name": ("High Noise LoRA", "LoRA applied on the high-noise pass"),
    "lownoise_lora_name": ("Low Noise LoRA", "LoRA applied on the low-noise pass"),
    "vae_name": ("VAE", "The VAE encoder/decoder"),
    "clip_name": ("CLIP", "The CLIP text encoder"),
    "clip_name1": ("CLIP 1 (T5)", "First CLIP text encoder (T5-XXL for Flux)"),
    "clip_name2": ("CLIP 2 (L)", "Second CLIP text encoder (L for Flux)"),
    "width": ("Width", "Output image width"),
    "height": ("Height", "Output image height"),
    "steps": ("Steps", "Number of sampling steps"),
    "cfg": ("CFG Scale", "Classifier-free guidance scale"),
    "sampler_name": ("Sampler", "Sampling algorithm"),
    "scheduler": ("Scheduler", "Noise scheduling method"),
    "megapixels": ("Megapixels", "Target size in megapixels"),
    "lora_name": ("LoRA", "LoRA adapter model"),
    "length": ("Length", "Video length in frames"),
    "fps": ("Frame Rate", "Video frames per second"),
    "image": ("Input Image", "Source image for generation"),
}


def display_name(field_key: str) -> str:
    info = _FIELD_INFO.get(field_key)
    return info[0] if info else field_key[:1].upper() + field_key[1:]


def field_description(field_key: str) -> str:
    info = _FIELD_INFO.get(field_key)
    return info[1] if info else f"Required field: {field_key}"


def create_required_field(field_key: str) -> RequiredField:
    return RequiredField(field_key, display_name(field_key), field_description(field_key))


# =============================================================================
# CATEGORY DETECTION
# =============================================================================

_VIDEO_MARKERS = ("createvideo", "vhs_videocombine", "videolinearcfgguidance")
_EDITING_MARKERS = ("textencodeqwenimageeditplus", "qwenimageedit")
_INPAINT_MARKERS = ("setlatentnoisemask", "inpaintmodel", "inpaint")


def detect_category(class_types: Iterable[str]) -> WorkflowCategory | None:
    """
    Guess the workflow category from the node class types it uses.

    Most specific first: video beats image editing beats inpainting beats
    plain text-to-image. Returns None if no model loader is recognized.
    """
    lowered = {c.lower() for c in class_types if c}

    def contains_any(markers: tuple[str, ...]) -> bool:
        return any(marker in c for c in lowered for marker in markers)

    has_video = contains_any(_VIDEO_MARKERS)
    has_load_image = "loadimage" in lowered

    if has_video and has_load_image:
        return WorkflowCategory.IMAGE_TO_VIDEO
    if has_video:
        return WorkflowCategory.TEXT_TO_VIDEO
    if contains_any(_EDITING_MARKERS):
        return WorkflowCategory.IMAGE_EDITING
    if contains_any(_INPAINT_MARKERS) or has_load_image:
        return WorkflowCategory.IMAGE_INPAINTING
    if "checkpointloadersimple" in lowered or "unetloader" in lowered:
        return WorkflowCategory.TEXT_TO_IMAGE
    return None
