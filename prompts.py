"""
Instruction builders for the image model.

Every builder here is a pure function of its arguments: the same configuration
and image count always give back the same payload, so the two variant requests
of a generation differ only by the alternate-take preamble.
"""

from dataclasses import dataclass

from config import ASPECT_RATIOS, BACKGROUND_HEX, OUTPUT_SIZES
from models import BackgroundMode, GenerationConfig, LightingStyle, ProductView


@dataclass(frozen=True)
class RequestPayload:
    instructions: str
    aspect_ratio: str
    image_size: str


LIGHTING_DESCRIPTIONS = {
    LightingStyle.SHARP: (
        "Simulate hard, directional light coming from an INVISIBLE source placed OUT OF FRAME. "
        "The light hits the product directly. Goal: defined shadows, high micro-contrast, emphasized textures."
    ),
    LightingStyle.SOFT: (
        "Simulate soft, wrapping light coming from large INVISIBLE diffusion panels placed OUT OF FRAME. "
        "The light hugs the product. Goal: very soft shadows, gradual tonal transitions, a premium look."
    ),
}

LIGHTING_SHORT = {
    LightingStyle.SHARP: "hard / crisp",
    LightingStyle.SOFT: "soft / diffused",
}

VARIANT_PREAMBLE = (
    "**ALTERNATE CREATIVE TAKE REQUESTED**\n"
    "A sibling request is producing the primary version of this image. Keeping EVERY golden rule "
    "(especially Product Integrity and Set Cleanliness), produce an alternate version with a slightly "
    "different composition, camera angle or light angle.\n"
    "---\n"
)

NEGATIVE_BLOCK = (
    "NEGATIVE PROMPT (STRICT VISUAL EXCLUSIONS):\n"
    "The final image must NEVER contain:\n"
    "- Visible lighting equipment (softboxes, umbrellas, reflectors, ring lights).\n"
    "- Studio structures (tripods, C-stands, clamps, cables).\n"
    "- Cameras, lenses or photographers in reflections.\n"
    "- Edges of the tabletop set or the end of the paper backdrop roll.\n"
    "Light must come from INVISIBLE sources."
)


def separation_description(level):
    if level < 20:
        return "with minimal space between them, almost touching"
    if level < 40:
        return "with a slight gap between them"
    if level < 60:
        return "with a moderate, balanced separation"
    if level < 80:
        return "with wide separation, leaving plenty of space between them"
    return "as far apart as possible, maximizing the distance between them within the canvas"


def blur_description(level):
    if level <= 0:
        return "The background must be completely sharp (f/16)."
    if level < 20:
        return "Apply a very subtle background blur (f/8)."
    if level < 40:
        return "Apply a gentle background blur (f/5.6)."
    if level < 60:
        return "Apply a moderate background blur that separates subject and background (f/4)."
    if level < 80:
        return "Apply a strong, creamy background blur (f/2.8)."
    return "Apply maximum background blur (artistic bokeh f/1.4), abstracting the surroundings."


def background_instruction(config):
    mode = config.background_mode
    if mode == BackgroundMode.PURE_WHITE:
        return (
            f"an infinite PURE WHITE background ({BACKGROUND_HEX['pure_white']}). "
            "No vignetting, no odd shadows in the corners. Clean commercial studio."
        )
    if mode == BackgroundMode.NEUTRAL_GRAY:
        return (
            f"an infinite NEUTRAL GRAY background ({BACKGROUND_HEX['neutral_gray']}). "
            "Professional and understated."
        )
    if mode == BackgroundMode.THEMED:
        return (
            f'a high-end photorealistic environment: "{config.background_keywords.strip()}". '
            "Integration must be physical (contact shadows) and match the light."
        )
    return (
        "a scene you choose yourself (auto art director) that maximizes the commercial value of the "
        "detected product. Analyze its materials and colors to propose the best contrast and premium context."
    )


def role_instructions(config):
    lighting = LIGHTING_DESCRIPTIONS[config.lighting_style]
    light_name = "hard" if config.lighting_style == LightingStyle.SHARP else "soft"
    return (
        "# STUDIO CONSTITUTION (INVIOLABLE GOLDEN RULES)\n\n"
        "### ARTICLE 1: PRODUCT INTEGRITY\n"
        "The product is sacred and must be represented with absolute fidelity. It is FORBIDDEN to alter "
        "logos, typography, seams, patterns, textures, colors or geometric proportions of the original product. "
        "You are a documentary photographer of the product, NOT an industrial designer.\n\n"
        "### ARTICLE 2: PROTECTION OF HUMAN MODELS\n"
        "If the image contains a person (adult or child) they are UNTOUCHABLE. Your only task is to cut them out "
        "and integrate them into the new background. Do NOT change their facial features, skin tone, pose, "
        "expression or the clothes they wear.\n\n"
        "### ARTICLE 3: SET CLEANLINESS (INVISIBLE LIGHT SOURCES)\n"
        "The final image is a marketing asset, NOT a behind-the-scenes photo. NEVER show the light source. "
        "Do not draw tripods, stand legs, black softboxes, reflector cloths, silver umbrellas, cables or studio "
        "structure.\n\n"
        "### ARTICLE 4: VISUAL QUALITY\n"
        "Avoid the plastic, washed-out 'AI look'. Render crisp textures with realistic micro-contrast. "
        f"Shadows and reflections must strictly follow the requested {light_name} light direction.\n\n"
        "### ARTICLE 5: FRAMING\n"
        "The product must NEVER be cropped by the canvas edges. Leave enough padding around the subject so it "
        "reads as complete within the requested format.\n\n"
        "### ARTICLE 6: COLOR FIDELITY\n"
        "Product colors must be identical to the input. If the background casts color onto the product, "
        "correct it locally to keep the SKU faithful.\n\n"
        "---\n\n"
        "### ACTIVE ROLES\n"
        "1. Art Director: atmospheric coherence and emotional integration of the background.\n"
        f"2. Lighting Technician: {lighting}\n"
        "3. Senior Retoucher: perfect masking and absolute cleanliness of the scene."
    )


def _fidelity_step(config):
    if config.product_view == ProductView.ENHANCED:
        return (
            "STEP 3 (ENHANCEMENT): Keep geometry, logos and identity intact, but you may subtly improve local "
            "contrast and material vividness for a more commercial look. No shape or identity changes."
        )
    return (
        "STEP 3 (INTEGRITY): RED ALERT. Keep the subject 100% identical to the original, pixel for pixel. "
        "Do NOT modify colors, patterns or logos."
    )


def _layout_step(config):
    step = "STEP 4 (MULTIPLE COMPOSITION): Arrange every subject on the canvas."
    if config.separate_products and config.background_mode.is_solid:
        step += (
            f" GRID MODE: Place the products {separation_description(config.product_separation)}. "
            "Make sure they NEVER overlap."
        )
    else:
        step += " Create a natural, cohesive group composition."
    return step


def _framing_step(config):
    spec = ASPECT_RATIOS[config.aspect_ratio.value]
    return (
        f"CRITICAL STEP (FRAMING): Set up the camera for the {spec['label']} format. IMPORTANT: reserve "
        f"{spec['padding']} so the product keeps breathing room. NEVER crop the product at the edges."
    )


def generation_steps(config, image_count):
    steps = [
        "STEP 1 (ANALYSIS): Identify the main subject (product or model).",
        "STEP 2 (EXTRACTION): Cut out the subject with surgical precision. Take extreme care with hair and "
        "translucent edges.",
        _fidelity_step(config),
    ]
    if image_count > 1:
        steps.append(_layout_step(config))
    steps.append(f"STEP 5 (BACKGROUND): Place the result on {background_instruction(config)}")
    if not config.background_mode.is_solid and config.background_blur > 0:
        steps.append(f"STEP 6 (OPTICS): {blur_description(config.background_blur)}")
    if config.add_reflection and config.background_mode.is_solid:
        steps.append("EXTRA STEP: Add a subtle, elegant floor reflection (polished mirror effect).")
    steps.append(_framing_step(config))
    return steps


def build_generation_payload(config: GenerationConfig, image_count: int, variant: bool = False) -> RequestPayload:
    steps = "\n".join(generation_steps(config, image_count))
    instructions = (
        f"{role_instructions(config)}\n\n"
        "---\n"
        "**MISSION EXECUTION (PRIORITY: COMMERCIAL QUALITY)**\n"
        "Follow this strict sequence:\n"
        f"{steps}\n\n"
        "---\n"
        f"{NEGATIVE_BLOCK}"
    )
    if variant:
        instructions = VARIANT_PREAMBLE + instructions
    return RequestPayload(
        instructions=instructions,
        aspect_ratio=config.aspect_ratio.value,
        image_size=OUTPUT_SIZES[config.output_size.value],
    )


def build_refinement_payload(command: str, config: GenerationConfig) -> RequestPayload:
    instructions = (
        "You are a senior studio editor. Refine the existing image strictly following the golden rules.\n\n"
        "**YOUR GOAL:**\n"
        f'Apply exactly this user command and nothing else: "{command.strip()}"\n\n'
        "**YOUR CONSTRAINTS:**\n"
        "1. INTEGRITY: The product and any model are SACRED. Never change their colors, shapes, identity or "
        "textures. Only edit light, atmosphere or background.\n"
        "2. CLEANLINESS (CRITICAL): The image must stay clean. Do NOT add tripods, lamps, softboxes or "
        "reflectors even when editing the lighting. The light source is invisible.\n"
        "3. QUALITY: Keep the visual resolution and the realism of textures.\n\n"
        "**TECHNICAL CONTEXT:**\n"
        f"Current lighting style: {LIGHTING_SHORT[config.lighting_style]}.\n"
        f"Format: {config.aspect_ratio.value}.\n\n"
        "Proceed with the edit while keeping the essence of the original image."
    )
    return RequestPayload(
        instructions=instructions,
        aspect_ratio=config.aspect_ratio.value,
        image_size=OUTPUT_SIZES[config.output_size.value],
    )


def build_enhancement_instruction(text, kind="background"):
    if kind == "background":
        return (
            "Act as an e-commerce art director. Turn the following short background concept into a detailed, "
            f'premium prompt.\nINPUT: "{text}"\n'
            "RULES:\n"
            "- Describe materials, lighting and atmosphere.\n"
            "- Keep it photorealistic.\n"
            "- Do NOT describe the product, only the environment.\n"
            "- Reply ONLY with the improved prompt."
        )
    if kind == "refinement":
        return (
            "Act as a digital imaging technician. Translate the user's request into precise photographic "
            f'language.\nINPUT: "{text}"\n'
            "EXAMPLES:\n"
            '"more light" -> "Raise global exposure by +0.5 stops and open up the shadows."\n'
            '"blurrier background" -> "Reduce depth of field to f/2.8 for stronger bokeh."\n'
            "Reply ONLY with the technical instruction."
        )
    raise ValueError(f"Unknown enhancement kind: {kind}")
