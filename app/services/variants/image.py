from __future__ import annotations

"""Still-image renditions with Pillow (blocking; call through `asyncio.to_thread`)."""

import io
from typing import Tuple

from PIL import Image, ImageOps

RenderedImage = Tuple[bytes, int, int]


def image_size(path: str) -> Tuple[int, int]:
    """(width, height) after EXIF orientation is applied."""
    with Image.open(path) as img:
        img = ImageOps.exif_transpose(img)
        return img.size


def _for_encoding(img: Image.Image, fmt: str) -> Image.Image:
    if fmt == "WEBP" and img.mode in ("RGBA", "LA", "P"):
        return img.convert("RGBA")
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def render_width(path: str, width: int, *, quality: int = 85) -> RenderedImage:
    """WebP at `width` px wide, aspect preserved. Never enlarges."""
    with Image.open(path) as src:
        img = ImageOps.exif_transpose(src)  # first frame only for animated input
        if width > img.width:
            raise ValueError(f"rendition width {width} exceeds source width {img.width}")
        height = max(1, round(img.height * width / img.width))
        if (width, height) != img.size:
            img = img.resize((width, height), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        _for_encoding(img, "WEBP").save(out, format="WEBP", quality=quality, method=4)
        return out.getvalue(), width, height


def render_fit(path: str, width: int, height: int, *, quality: int = 85) -> RenderedImage:
    """JPEG cropped to exactly `width`x`height` (center crop). Never enlarges."""
    with Image.open(path) as src:
        img = ImageOps.exif_transpose(src)
        if height > img.height or width > img.width:
            raise ValueError(f"thumbnail {width}x{height} exceeds source {img.width}x{img.height}")
        img = ImageOps.fit(img, (width, height), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        _for_encoding(img, "JPEG").save(out, format="JPEG", quality=quality, optimize=True)
        return out.getvalue(), width, height


__all__ = ["image_size", "render_width", "render_fit"]
