"""
Shared fixtures for unit tests.
"""

import pytest
import numpy as np
import subprocess
import tempfile
from pathlib import Path
import rasterio
from rasterio.transform import from_bounds
from PIL import Image


class FakeRunner:
    """
    Stands in for subprocess.run and records every command.

    Args:
        returncodes: Map of argv token -> exit status for commands containing it
        effects: Map of argv token -> callable(argv) simulating what the command writes
    """

    def __init__(self, returncodes=None, effects=None):
        self.returncodes = returncodes or {}
        self.effects = effects or {}
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        for token, effect in self.effects.items():
            if token in argv:
                effect(argv)
        returncode = 0
        for token, code in self.returncodes.items():
            if token in argv:
                returncode = code
                break
        return subprocess.CompletedProcess(argv, returncode)

    def commands_with(self, token):
        return [argv for argv in self.calls if token in argv]


def make_which(*available):
    """Program lookup that only finds the given names."""
    def which(name):
        return f"/usr/bin/{name}" if name in available else None
    return which


def write_png(path, size=(32, 24)):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new('RGB', size, color=(90, 120, 60)).save(path, format='PNG')
    return path


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_image_file(temp_dir):
    """A small drone capture in high altitude mode."""
    output_path = temp_dir / "drone.jpg"
    Image.new('RGB', (64, 48), color=(128, 128, 128)).save(output_path, format='JPEG')
    return output_path


@pytest.fixture
def odm_project(temp_dir):
    """ODM project directory with a single raw capture in images/."""
    project = temp_dir / "proj"
    images = project / "images"
    images.mkdir(parents=True)
    Image.new('RGB', (64, 48)).save(images / "a.JPG", format='JPEG')
    return project


@pytest.fixture
def sample_geotiff(temp_dir):
    """Create a georeferenced orthophoto covering the default example region."""
    output_path = temp_dir / "ortho.tif"

    height, width = 100, 100
    transform = from_bounds(
        -3.690, 37.290, -3.670, 37.305,  # Bounds in WGS84
        width, height
    )

    data = np.random.randint(0, 255, (3, height, width), dtype=np.uint8)

    with rasterio.open(
        output_path,
        'w',
        driver='GTiff',
        height=height,
        width=width,
        count=3,
        dtype=data.dtype,
        crs='EPSG:4326',
        transform=transform,
    ) as dst:
        dst.write(data)

    return output_path


@pytest.fixture
def ungeoreferenced_tiff(temp_dir):
    """A plain TIFF with no CRS."""
    output_path = temp_dir / "plain.tif"
    data = np.zeros((1, 20, 30), dtype=np.uint8)
    with rasterio.open(
        output_path,
        'w',
        driver='GTiff',
        height=20,
        width=30,
        count=1,
        dtype=data.dtype,
    ) as dst:
        dst.write(data)
    return output_path


@pytest.fixture
def fake_runner():
    """Runner where every command succeeds."""
    return FakeRunner()
