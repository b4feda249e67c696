"""Shared test fixtures."""

import os
import shutil
import tempfile

import numpy as np
import pytest
from PIL import Image

from GrayNormal.config import PipelineConfig


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config():
    config = PipelineConfig()
    config.show_progress = False
    return config


def save_test_heightmap(path, arr=None, width=32, height=24, seed=0):
    """Write a uint8 grayscale PNG and return the array that was written."""
    if arr is None:
        rng = np.random.default_rng(seed)
        arr = rng.integers(0, 256, size=(height, width), dtype=np.uint8)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    Image.fromarray(np.asarray(arr, dtype=np.uint8)).save(path)
    return arr


def read_png(path):
    with Image.open(path) as img:
        return np.array(img)
