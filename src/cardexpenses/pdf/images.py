from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image

from src.cardexpenses.errors import AttachmentPreviewFailure
from src.cardexpenses.runtime import IMAGE_CODECS


ROTATION_MARGIN = 1.08
MAX_IMAGE_SIDE = 1800
JPEG_QUALITY = 85


def fit_scale(img_w: float, img_h: float, box_w: float, box_h: float) -> float:
    if img_w <= 0 or img_h <= 0:
        return 0.0
    return min(box_w / img_w, box_h / img_h)


def should_rotate(img_w: float, img_h: float, box_w: float, box_h: float, *, margin: float = ROTATION_MARGIN) -> bool:
    """Rotate only when the quarter-turned image fits the box clearly better; ties keep it upright."""
    normal = fit_scale(img_w, img_h, box_w, box_h)
    rotated = fit_scale(img_h, img_w, box_w, box_h)
    return rotated > normal * margin


@dataclass(frozen=True)
class PreparedImage:
    jpeg: bytes
    width: int
    height: int
    rotated: bool

    def placement(self, box_w: float, box_h: float) -> tuple[float, float, float, float]:
        """(dx, dy, w, h) centering the scaled image inside the box."""
        s = fit_scale(self.width, self.height, box_w, box_h)
        w, h = self.width * s, self.height * s
        return (box_w - w) / 2.0, (box_h - h) / 2.0, w, h


def _flatten(img: Image.Image) -> Image.Image:
    if img.mode == "P" and "transparency" in img.info:
        img = img.convert("RGBA")
    if img.mode in ("RGBA", "LA"):
        rgba = img.convert("RGBA")
        bg = Image.new("RGB", rgba.size, (255, 255, 255))
        bg.paste(rgba, mask=rgba.split()[-1])
        return bg
    return img.convert("RGB")


def prepare_image(content: bytes, box_w: float, box_h: float, *, allow_rotation: bool = True) -> PreparedImage:
    """
    Decode an attachment image into a JPEG sized for a slot.

    Transparency is flattened on white, the long side is capped, and the image is turned
    clockwise when `should_rotate` says so. Decode failures raise AttachmentPreviewFailure.
    """
    IMAGE_CODECS.initialize()
    try:
        with Image.open(io.BytesIO(content)) as src:
            src.load()
            img = _flatten(src)
        img.thumbnail((MAX_IMAGE_SIDE, MAX_IMAGE_SIDE))
        rotated = allow_rotation and should_rotate(img.width, img.height, box_w, box_h)
        if rotated:
            img = img.transpose(Image.Transpose.ROTATE_270)
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=JPEG_QUALITY)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise AttachmentPreviewFailure(f"Cannot decode attachment image: {e}") from e
    return PreparedImage(jpeg=buf.getvalue(), width=img.width, height=img.height, rotated=rotated)
