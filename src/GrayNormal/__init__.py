"""Provide package metadata and the public API for `GrayNormal`."""

__version__ = "1.0.0"

from .config import PipelineConfig  # noqa: E402
from .errors import (  # noqa: E402
    GrayNormalError,
    UsageError,
    MissingExtensionError,
    ImageDecodeError,
    ImageEncodeError,
    DimensionMismatchError,
    BatchAbortedError,
)
from .phases.normal import NormalMapGenerator, generate_normal_map  # noqa: E402
from .pipeline import BatchExecutor, HeightmapAccumulator, average_heightmaps  # noqa: E402

__all__ = [
    "__version__",
    "PipelineConfig",
    "GrayNormalError", "UsageError", "MissingExtensionError",
    "ImageDecodeError", "ImageEncodeError",
    "DimensionMismatchError", "BatchAbortedError",
    "NormalMapGenerator", "generate_normal_map",
    "BatchExecutor", "HeightmapAccumulator", "average_heightmaps",
]
