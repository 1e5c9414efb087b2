import asyncio
import io
import logging
import time
from datetime import datetime
from urllib.parse import quote

import httpx
from PIL import Image, ImageOps

from config import ACCEPTED_UPLOAD_FORMATS, SKU_BASE_URLS, SKU_FETCH_TIMEOUT
from errors import DuplicateSkuError
from models import SourceImage

logger = logging.getLogger(__name__)

# register HEIC/HEIF support if available
try:
    import pillow_heif
    pillow_heif.register_heif_opener()
except ImportError:
    pass


def _normalize_image_bytes(raw, name):
    """Validate ``raw`` with Pillow and return (bytes, mime_type, name) ready for the image model."""
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except Exception as e:
        raise ValueError(f"Could not open image '{name}'. Error: {e}")

    original_format = (img.format or "").upper()
    animated = getattr(img, "is_animated", False)
    orientation = img.getexif().get(0x0112, 1)

    if original_format in ACCEPTED_UPLOAD_FORMATS and not animated and orientation == 1:
        return raw, ACCEPTED_UPLOAD_FORMATS[original_format], name

    # if animated gif or webp, grab first frame
    if animated:
        img.seek(0)

    # fix EXIF orientation
    transposed = ImageOps.exif_transpose(img)

    # re-encode anything the model cannot take as-is (HEIC, TIFF, BMP, GIF, rotated) as PNG
    if transposed.mode not in ("RGB", "RGBA"):
        transposed = transposed.convert("RGBA" if "A" in transposed.getbands() or transposed.mode == "P" else "RGB")
    buf = io.BytesIO()
    transposed.save(buf, format="PNG")
    base = name.rsplit(".", 1)[0] if "." in name else name
    logger.info("Re-encoded %s (%s) as PNG", name, original_format or "unknown")
    return buf.getvalue(), "image/png", f"{base}.png"


# open any uploaded image and normalize it to a SourceImage
def load_uploaded_image(file_obj):
    # Streamlit uploads give a file-like object
    raw = file_obj.read()
    name = getattr(file_obj, "name", None) or "upload.png"
    data, mime_type, name = _normalize_image_bytes(raw, name)
    return SourceImage(data=data, mime_type=mime_type, name=name)


def image_from_paste(raw, mime_type="image/png"):
    ext = mime_type.split("/")[-1] if "/" in mime_type else "png"
    name = f"pasted-image-{int(time.time() * 1000)}.{ext}"
    data, mime_type, name = _normalize_image_bytes(raw, name)
    return SourceImage(data=data, mime_type=mime_type, name=name)


def parse_sku_input(text):
    return [sku.strip() for sku in (text or "").split(",") if sku.strip()]


def check_duplicate_skus(skus, existing_images):
    """Raise DuplicateSkuError listing repeated SKUs and SKUs already uploaded."""
    existing = {img.key for img in existing_images}
    seen = []
    repeated = []
    for sku in skus:
        normalized = sku.split(".")[0]
        if normalized in seen and normalized not in repeated:
            repeated.append(normalized)
        if normalized not in seen:
            seen.append(normalized)
    already_uploaded = [sku for sku in seen if sku in existing]
    if repeated or already_uploaded:
        raise DuplicateSkuError(repeated, already_uploaded)


async def _fetch_single_sku(client, sku, base_urls):
    image_path = sku if sku.startswith("/") else f"/{sku}"
    response = None
    final_url = ""
    for base_url in base_urls:
        target_url = f"{base_url}{quote(image_path)}"
        try:
            res = await client.get(target_url, follow_redirects=True)
        except httpx.RequestError as e:
            logger.warning("Could not fetch %s for SKU %s, trying next: %s", target_url, sku, e)
            continue
        if res.is_success:
            response = res
            final_url = target_url
            break

    if response is None:
        return f"SKU '{sku}' not found."

    content_type = response.headers.get("content-type", "")
    if not content_type.startswith("image/"):
        return f"The URL for '{sku}' is not an image."

    name = final_url.rsplit("/", 1)[-1] or f"image-{sku}.jpg"
    try:
        data, mime_type, name = _normalize_image_bytes(response.content, name)
    except ValueError:
        return f"Error processing the image for '{sku}'."
    return SourceImage(data=data, mime_type=mime_type, name=name)


async def fetch_sku_images(skus, existing_images=(), base_urls=None, client=None):
    """Fetch catalog images for ``skus``.

    Duplicates are rejected before any request goes out. Each SKU is looked up
    on every base host in order until one answers with an image.
    Returns (images, errors).
    """
    check_duplicate_skus(skus, existing_images)
    base_urls = base_urls or SKU_BASE_URLS
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=SKU_FETCH_TIMEOUT)
    try:
        results = await asyncio.gather(*(_fetch_single_sku(client, sku, base_urls) for sku in skus))
    finally:
        if own_client:
            await client.aclose()

    images = [r for r in results if isinstance(r, SourceImage)]
    errors = [r for r in results if isinstance(r, str)]
    logger.info("Fetched %d/%d SKU image(s)", len(images), len(skus))
    return images, errors


def suggest_filename(prefix="ai-product-photo", when=None):
    stamp = (when or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return f"{prefix}-{stamp}.png"


def export_file(image):
    """Return PNG bytes for a generated or source image."""
    if image.mime_type == "image/png":
        return image.data
    img = Image.open(io.BytesIO(image.data))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
