"""Output path helpers."""

import os

from ..errors import MissingExtensionError


def split_extension(input_path: str) -> str:
    """Return the file name of ``input_path`` without directory or final extension.

    Raises MissingExtensionError when the file name has no ``.extension``.
    A leading dot alone (``.hidden``) does not count as an extension.
    """
    name = os.path.basename(str(input_path).replace("\\", "/").rstrip("/"))
    dot = name.rfind(".")
    if dot <= 0:
        raise MissingExtensionError(str(input_path))
    return name[:dot]


def get_output_path(input_path: str, output_dir: str,
                    suffix: str = "_normals", ext: str = ".png") -> str:
    """Return the normal-map path for one input heightmap."""
    return os.path.join(output_dir, split_extension(input_path) + suffix + ext)


def get_merge_output_path(output_name: str, output_dir: str) -> str:
    """Return the single output path written by merge mode."""
    return os.path.join(output_dir, output_name)
