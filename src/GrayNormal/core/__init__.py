"""Core utilities -- re-exports all public symbols for convenience."""

from .records import FileResult, BatchResult
from .io import load_heightmap, read_heightmap_size, save_normal_map
from .paths import split_extension, get_output_path, get_merge_output_path
from .worker_pool import WorkerPool, TaskOutcome
from .logging import setup_logging

__all__ = [
    "FileResult", "BatchResult",
    "load_heightmap", "read_heightmap_size", "save_normal_map",
    "split_extension", "get_output_path", "get_merge_output_path",
    "WorkerPool", "TaskOutcome",
    "setup_logging",
]
