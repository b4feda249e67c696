"""Generate tangent-space normal maps from 8-bit grayscale heightmaps.

The transform is a central difference over the four direct neighbours with
replicate (clamp-to-edge) boundaries::

    dx = (h[x+1, y] - h[x-1, y]) * scale
    dy = (h[x, y+1] - h[x, y-1]) * scale
    n  = normalize(-dx, -dy, 1)

Each unit component is mapped from [-1, 1] to [0, 255] and truncated.
"""

import logging
import os
import time

import numpy as np
from scipy.ndimage import correlate1d

from ..config import PipelineConfig
from ..core import load_heightmap, save_normal_map
from ..core.records import FileResult

logger = logging.getLogger("gray_normal.normal_gen")

_CENTRAL_DIFF = np.array([-1.0, 0.0, 1.0], dtype=np.float32)


def _as_heightmap(heightmap, width=None, height=None) -> np.ndarray:
    """Return ``heightmap`` as a 2-D uint8 array, reshaping flat buffers."""
    if isinstance(heightmap, (bytes, bytearray, memoryview)):
        heightmap = np.frombuffer(heightmap, dtype=np.uint8)
    arr = np.asarray(heightmap)
    if arr.dtype != np.uint8:
        raise TypeError(f"heightmap must be uint8, got {arr.dtype}")

    if width is not None or height is not None:
        if width is None or height is None:
            raise ValueError("width and height must be given together")
        if width < 1 or height < 1:
            raise ValueError(f"width and height must be positive, got {width}x{height}")
        if arr.size != width * height:
            raise ValueError(
                f"heightmap has {arr.size} samples, expected {width}x{height} = "
                f"{width * height}"
            )
        arr = arr.reshape(height, width)

    if arr.ndim != 2:
        raise ValueError(f"heightmap must be 2-D (H, W), got shape {arr.shape}")
    if arr.size == 0:
        raise ValueError(f"heightmap must not be empty, got shape {arr.shape}")
    return arr


def generate_normal_map(heightmap, scale: float = 20.0,
                        width: int = None, height: int = None) -> np.ndarray:
    """Convert a heightmap into an (H, W, 3) uint8 normal map.

    Args:
        heightmap: 2-D uint8 array, or a flat uint8 buffer with ``width``
            and ``height``.
        scale: Gradient strength; 0 gives a flat ``(127, 127, 255)`` map.
        width: Samples per row when ``heightmap`` is flat.
        height: Number of rows when ``heightmap`` is flat.
    """
    h = _as_heightmap(heightmap, width, height).astype(np.float32) / np.float32(255.0)
    s = np.float32(scale)

    # mode="nearest" replicates edge samples for out-of-range neighbours.
    dx = correlate1d(h, _CENTRAL_DIFF, axis=1, mode="nearest") * s
    dy = correlate1d(h, _CENTRAL_DIFF, axis=0, mode="nearest") * s

    nx, ny, nz = -dx, -dy, np.ones_like(dx)
    inv_len = np.float32(1.0) / np.sqrt(nx * nx + ny * ny + nz * nz)

    normal = np.stack([nx * inv_len, ny * inv_len, nz * inv_len], axis=-1)
    encoded = np.clip(normal.astype(np.float64) * 0.5 + 0.5, 0.0, 1.0) * 255.0
    # astype truncates toward zero, matching integer conversion of the byte.
    return np.ascontiguousarray(encoded.astype(np.uint8))


class NormalMapGenerator:
    """Generate normal maps for heightmap files using pipeline settings."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.cfg = config.normal

    def generate(self, heightmap, scale: float = None) -> np.ndarray:
        """Generate a normal map with ``scale`` or the configured default."""
        return generate_normal_map(heightmap, self.cfg.scale if scale is None else scale)

    def process(self, input_path: str, output_path: str) -> FileResult:
        """Decode one heightmap, generate its normal map, and write it.

        Decode and encode errors propagate to the caller.
        """
        start = time.perf_counter()
        heightmap = load_heightmap(input_path, max_pixels=self.config.max_image_pixels)
        normal_map = self.generate(heightmap)
        save_normal_map(normal_map, output_path)
        elapsed = time.perf_counter() - start
        logger.info(
            "Normal map generated for %s -> %s",
            os.path.basename(input_path), output_path,
        )
        return FileResult(
            input_path=input_path,
            output_path=output_path,
            width=int(heightmap.shape[1]),
            height=int(heightmap.shape[0]),
            elapsed=elapsed,
        )
