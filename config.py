"""
Configuration file for the Product Photo Studio app.
Contains background palette, aspect ratio specs, remote model settings and limits.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Solid background palette (hex codes sent to the image model)
BACKGROUND_HEX = {
    "pure_white": "#FFFFFF",
    "neutral_gray": "#F7F7F7",
}

# Aspect ratio specifications
ASPECT_RATIOS = {
    "1:1": {"label": "Square (1:1)", "orientation": "square", "padding": "even padding on all four sides"},
    "4:5": {"label": "Vertical (4:5)", "orientation": "portrait", "padding": "extra headroom above and below the subject"},
    "16:9": {"label": "Horizontal (16:9)", "orientation": "landscape", "padding": "generous side margins left and right of the subject"},
}

# Output size -> image_size understood by the image model
OUTPUT_SIZES = {
    "2k": "2K",
    "4k": "4K",
}

# Admission control for remote calls
MAX_CONCURRENT_REQUESTS = 3

# Number of variant requests per generate action
VARIANTS_PER_GENERATION = 2

# Remote model settings
API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
IMAGE_MODEL = os.getenv("STUDIO_IMAGE_MODEL", "gemini-2.5-flash-image")
TEXT_MODEL = os.getenv("STUDIO_TEXT_MODEL", "gemini-2.5-flash")
# Only these image models take an output size; the rest render at their native resolution
IMAGE_SIZE_MODELS = ("gemini-3-pro-image-preview",)

# Catalog hosts tried in order when importing images by SKU
SKU_BASE_URLS = [
    "https://media.falabella.com/falabellaCL",
    "https://media.falabella.com/sodimacCL",
]
SKU_FETCH_TIMEOUT = float(os.getenv("STUDIO_SKU_TIMEOUT", "15"))

# Formats the image model accepts as-is; anything else is re-encoded to PNG
ACCEPTED_UPLOAD_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}
UPLOAD_TYPES = ["png", "jpg", "jpeg", "webp", "gif", "bmp", "tiff", "heic", "heif"]

# Quick refinement vocabulary
QUICK_REFINEMENTS = [
    {
        "label": "Brighten",
        "command": "increase brightness slightly",
        "description": "Raises global exposure for a lighter image.",
    },
    {
        "label": "Contrast",
        "command": "increase contrast subtly",
        "description": "Increases the difference between highlights and shadows.",
    },
    {
        "label": "Shadow",
        "command": "add a soft, realistic shadow under the product",
        "description": "Adds a realistic contact shadow under the product.",
    },
    {
        "label": "Sharpen",
        "command": "increase sharpness slightly",
        "description": "Improves focus and edge detail.",
    },
]

# Preset persistence
PRESETS_STORAGE_KEY = "product_studio_presets"
PRESETS_DIR = os.getenv("STUDIO_PRESETS_DIR", os.path.join(os.path.expanduser("~"), ".product_studio"))

# Logging
LOG_LEVEL = os.getenv("STUDIO_LOG_LEVEL", "INFO")
