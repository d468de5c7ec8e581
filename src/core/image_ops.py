"""
Image Ops - QImage <-> numpy conversion and the pixel filter pass.
"""
import numpy as np
from PIL import Image, ImageFilter
from PyQt6.QtGui import QImage


def qimage_to_array(image: QImage) -> np.ndarray:
    """Copy a 32-bit QImage into an (h, w, 4) uint8 array (memory byte order)."""
    width, height = image.width(), image.height()
    ptr = image.constBits()
    ptr.setsize(image.sizeInBytes())
    rows = np.frombuffer(ptr, dtype=np.uint8).reshape(height, image.bytesPerLine())
    return rows[:, : width * 4].reshape(height, width, 4).copy()


def array_to_qimage(array: np.ndarray, fmt: QImage.Format) -> QImage:
    height, width = array.shape[:2]
    data = np.ascontiguousarray(array, dtype=np.uint8).tobytes()
    return QImage(data, width, height, width * 4, fmt).copy()


def frame_bytes(surface: QImage) -> bytes:
    """Raw RGBA bytes of a rendered surface, for the encoder pipe."""
    rgba = surface.convertToFormat(QImage.Format.Format_RGBA8888)
    return qimage_to_array(rgba).tobytes()


def apply_filters(layer: QImage, grayscale: bool, blur_px: float) -> QImage:
    """Grayscale then gaussian-blur a premultiplied ARGB32 layer.

    Both operations are linear so they are applied to premultiplied data.
    """
    layer = layer.convertToFormat(QImage.Format.Format_ARGB32_Premultiplied)
    pixels = qimage_to_array(layer)

    if grayscale:
        # Little-endian ARGB32 is laid out B, G, R, A in memory
        b = pixels[..., 0].astype(np.float32)
        g = pixels[..., 1].astype(np.float32)
        r = pixels[..., 2].astype(np.float32)
        luma = np.clip(np.rint(0.299 * r + 0.587 * g + 0.114 * b), 0, 255).astype(np.uint8)
        pixels[..., 0] = luma
        pixels[..., 1] = luma
        pixels[..., 2] = luma

    if blur_px > 0:
        # RGBA here is only a 4-band container; bands are blurred independently
        blurred = Image.fromarray(pixels).filter(ImageFilter.GaussianBlur(radius=blur_px))
        pixels = np.asarray(blurred, dtype=np.uint8)

    return array_to_qimage(pixels, QImage.Format.Format_ARGB32_Premultiplied)
