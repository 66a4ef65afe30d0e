import base64
import io
import os
import logging

from PIL import Image

logger = logging.getLogger(__name__)


def write_bytes(path: str, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def decode_data_uri(uri: str) -> bytes:
    """Decode a base64 data URI (or a bare base64 string) to raw bytes."""
    payload = uri.split(",", 1)[1] if uri.startswith("data:") and "," in uri else uri
    return base64.b64decode(payload)


def to_png(image_data: bytes) -> bytes:
    """Re-encode any Pillow-readable image as PNG, flattening alpha onto white."""
    with Image.open(io.BytesIO(image_data)) as pil_img:
        if pil_img.format == "PNG":
            return image_data
        if pil_img.mode in ("RGBA", "LA"):
            if pil_img.mode == "LA":
                pil_img = pil_img.convert("RGBA")
            background = Image.new("RGB", pil_img.size, (255, 255, 255))
            background.paste(pil_img, mask=pil_img.split()[-1])  # alpha channel as mask
            pil_img = background
        elif pil_img.mode != "RGB":
            pil_img = pil_img.convert("RGB")
        png_buffer = io.BytesIO()
        pil_img.save(png_buffer, format="PNG")
        return png_buffer.getvalue()


def save_data_uri_as_png(uri: str, path: str) -> str:
    image_data = decode_data_uri(uri)
    try:
        image_data = to_png(image_data)
    except Exception as e:
        logger.warning(f"Image conversion failed: {e}, saving as-is")
    write_bytes(path, image_data)
    logger.info(f"Saved image to {path}")
    return path
