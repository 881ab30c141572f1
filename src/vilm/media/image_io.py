from __future__ import annotations

from io import BytesIO
import math
import os
from pathlib import Path
import tempfile

from PIL import Image

# Pillow's JPEG encoder degrades without benefit above 95.
MAX_JPEG_QUALITY = 95


def jpeg_quality(quality: float) -> int:
    """Map a 0..1 compression quality onto Pillow's 1..95 scale."""
    q = min(1.0, max(0.0, float(quality)))
    return max(1, min(MAX_JPEG_QUALITY, int(round(q * 100))))


def gray_level(gray: float) -> int:
    return int(round(min(1.0, max(0.0, float(gray))) * 255))


def fit_within(image: Image.Image, max_size: tuple[int, int]) -> Image.Image:
    """Downscale to fit inside ``max_size`` keeping aspect ratio; never upscales."""
    max_w, max_h = max_size
    w, h = image.size
    if w <= 0 or h <= 0 or max_w <= 0 or max_h <= 0:
        return image
    scale = min(max_w / w, max_h / h)
    if scale >= 1.0:
        return image
    target = (max(1, int(round(w * scale))), max(1, int(round(h * scale))))
    return image.resize(target, Image.Resampling.LANCZOS)


def aspect_fill(image: Image.Image, size: tuple[int, int]) -> Image.Image:
    """Scale ``image`` to cover ``size`` and center-crop the overflow."""
    cell_w, cell_h = size
    w, h = image.size
    if w <= 0 or h <= 0:
        return Image.new("RGB", size)
    scale = max(cell_w / w, cell_h / h)
    scaled_w = max(cell_w, int(math.ceil(w * scale)))
    scaled_h = max(cell_h, int(math.ceil(h * scale)))
    scaled = image.convert("RGB").resize((scaled_w, scaled_h), Image.Resampling.LANCZOS)
    left = (scaled_w - cell_w) // 2
    top = (scaled_h - cell_h) // 2
    return scaled.crop((left, top, left + cell_w, top + cell_h))


def encode_jpeg(image: Image.Image, quality: float) -> bytes:
    buf = BytesIO()
    image.convert("RGB").save(buf, format="JPEG", quality=jpeg_quality(quality))
    return buf.getvalue()


def write_atomic(path: Path, data: bytes) -> None:
    """Write ``data`` next to ``path`` and rename it into place."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}-", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
