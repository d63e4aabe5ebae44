"""
Canvas capture - turn the drawing surface into the single still image sent
with an initial generation request.
"""
import base64
import io
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from PIL import Image

from config import settings

MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "webp": "image/webp",
}


@dataclass
class CaptureOptions:
    """Export settings for a capture"""
    format: str = settings.CAPTURE_FORMAT
    scale: float = settings.CAPTURE_SCALE
    padding: int = settings.CAPTURE_PADDING
    background: Tuple[int, int, int] = (255, 255, 255)


class ImageSource:
    """Something that can yield the current drawing, or None when empty"""

    def snapshot(self) -> Optional[Image.Image]:
        raise NotImplementedError


class BytesImageSource(ImageSource):
    """Encoded image bytes, e.g. an upload or a canvas export"""

    def __init__(self, data: Optional[bytes]):
        self.data = data

    def snapshot(self) -> Optional[Image.Image]:
        if not self.data:
            return None
        image = Image.open(io.BytesIO(self.data))
        image.load()
        return image


class FileImageSource(ImageSource):
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def snapshot(self) -> Optional[Image.Image]:
        if not self.path.is_file():
            return None
        with Image.open(self.path) as image:
            image.load()
            return image.copy()


def _flatten(image: Image.Image, background: Tuple[int, int, int]) -> Image.Image:
    """Composite transparency onto the background colour"""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        flat = Image.new("RGB", rgba.size, background)
        flat.paste(rgba, mask=rgba.split()[-1])
        return flat
    return image.convert("RGB")


def render_capture(image: Image.Image, options: CaptureOptions) -> Image.Image:
    """Scale, then pad the image on the background colour"""
    image = _flatten(image, options.background)

    if options.scale and options.scale != 1:
        size = (
            max(1, round(image.width * options.scale)),
            max(1, round(image.height * options.scale))
        )
        image = image.resize(size, Image.LANCZOS)

    pad = max(0, int(options.padding * (options.scale or 1)))
    if pad:
        canvas = Image.new("RGB", (image.width + 2 * pad, image.height + 2 * pad), options.background)
        canvas.paste(image, (pad, pad))
        image = canvas

    return image


def encode_data_uri(image: Image.Image, fmt: str = "png") -> str:
    fmt = fmt.lower()
    if fmt not in MIME_TYPES:
        raise ValueError(f"Unsupported capture format: {fmt}")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG" if fmt == "jpg" else fmt.upper())
    encoded = base64.b64encode(buffer.getvalue()).decode("utf-8")
    return f"data:{MIME_TYPES[fmt]};base64,{encoded}"


def capture_image(source: ImageSource, options: Optional[CaptureOptions] = None) -> Optional[str]:
    """
    Capture the source as a data URI.

    Returns:
        The encoded image, or None when the source has nothing to capture
    """
    options = options or CaptureOptions()
    image = source.snapshot()
    if image is None:
        return None
    return encode_data_uri(render_capture(image, options), options.format)
