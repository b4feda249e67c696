"""Image I/O -- decode heightmaps to uint8 arrays and encode normal maps as PNG."""

import logging
import os
import threading
from pathlib import Path
from typing import Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..errors import ImageDecodeError, ImageEncodeError

# Pixel-count validation happens per call in _check_pixel_budget() instead of
# through Pillow's global decompression bomb check.
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger("gray_normal")

_16BIT_MODES = ("I;16", "I;16B", "I;16L", "I;16N")


def _check_pixel_budget(path: str, img, max_pixels: int):
    if max_pixels > 0 and img.width * img.height > max_pixels:
        logger.warning(
            "Image %s exceeds max_pixels: %d > %d",
            path, img.width * img.height, max_pixels,
        )
        raise ImageDecodeError(
            path,
            f"image too large: {img.width}x{img.height} = "
            f"{img.width * img.height:,} pixels (max {max_pixels:,})",
        )


def read_heightmap_size(path: str, max_pixels: int = 0) -> Tuple[int, int]:
    """Return the ``(H, W)`` a heightmap would decode to, reading only its header."""
    try:
        with Image.open(path) as img:
            _check_pixel_budget(path, img, max_pixels)
            height, width = img.height, img.width
    except ImageDecodeError:
        raise
    except FileNotFoundError as e:
        logger.error("Heightmap not found: %s", path)
        raise ImageDecodeError(path, "file not found") from e
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.error("Failed to read image header '%s': %s", path, e)
        raise ImageDecodeError(path, str(e)) from e
    if width == 0 or height == 0:
        raise ImageDecodeError(path, f"empty image {width}x{height}")
    return height, width


def load_heightmap(path: str, max_pixels: int = 0) -> np.ndarray:
    """Load an image as a single-channel uint8 heightmap of shape (H, W).

    Colour images are reduced to luminance by Pillow's ``L`` conversion and
    16-bit grayscale keeps its high byte. The returned array is read-only.
    """
    ext = Path(path).suffix.lower()
    try:
        with Image.open(path) as img:
            _check_pixel_budget(path, img, max_pixels)

            if img.mode == "L":
                arr = np.array(img, dtype=np.uint8)
            elif img.mode in _16BIT_MODES or img.mode == "I":
                logger.debug("Reducing %s from mode %s to 8 bits", path, img.mode)
                wide = np.asarray(img).astype(np.int64)
                arr = (np.clip(wide, 0, 65535) >> 8).astype(np.uint8)
            else:
                logger.debug("Converting '%s' from %s->L", path, img.mode)
                with img.convert("L") as converted:
                    arr = np.array(converted, dtype=np.uint8)
    except ImageDecodeError:
        raise
    except FileNotFoundError as e:
        logger.error("Heightmap not found: %s", path)
        raise ImageDecodeError(path, "file not found") from e
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.error("Failed to open image '%s' (ext=%s): %s", path, ext, e)
        raise ImageDecodeError(path, str(e)) from e

    if arr.ndim != 2 or arr.size == 0:
        raise ImageDecodeError(path, f"unexpected decoded shape {arr.shape}")
    arr.setflags(write=False)
    logger.debug("Loaded heightmap %s (%dx%d)", path, arr.shape[1], arr.shape[0])
    return arr


def save_normal_map(arr: np.ndarray, path: str):
    """Save an (H, W, 3) uint8 normal map as PNG.

    Uses an atomic write (temp file + ``os.replace``) so a crash never
    leaves a truncated output behind.
    """
    if arr.dtype != np.uint8 or arr.ndim != 3 or arr.shape[-1] != 3 or arr.size == 0:
        raise ValueError(
            f"Normal map must be a non-empty HxWx3 uint8 array, "
            f"got shape={arr.shape} dtype={arr.dtype}"
        )

    parent_dir = os.path.dirname(path) or "."
    tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}.png"
    try:
        os.makedirs(parent_dir, exist_ok=True)
        with Image.fromarray(np.ascontiguousarray(arr)) as img:
            img.save(tmp_path, format="PNG")
        os.replace(tmp_path, path)
        logger.debug("Saved: %s (%dx%d)", path, arr.shape[1], arr.shape[0])
    except OSError as e:
        logger.error("Failed to write normal map '%s': %s", path, e)
        raise ImageEncodeError(path, str(e)) from e
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
