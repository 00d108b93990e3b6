"""
ODM project handling and orthophoto inspection.

The ODM project is supplied by the operator: an images/ folder of raw drone
captures which the orthophoto stage turns into
odm_orthophoto/odm_orthophoto.tif.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import rasterio
from rasterio.errors import RasterioIOError
from rasterio.warp import transform_bounds
from PIL import Image

from defaults import (
    ACCEPTED_INPUT_EXTENSIONS,
    ODM_IMAGES_SUBDIRECTORY,
    ODM_ORTHOPHOTO_RELATIVE_PATH,
)
from errors import MissingArtifactError, MissingDirectoryError, NoInputImagesError
from run_config import BoundingBox
from utils import format_bytes


class OdmProject:
    """An ODM project directory. Read-only apart from what ODM writes into it."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def name(self) -> str:
        """Project name passed to ODM (the directory's basename)."""
        return self.root.resolve().name

    @property
    def images_dir(self) -> Path:
        return self.root / ODM_IMAGES_SUBDIRECTORY

    @property
    def orthophoto_path(self) -> Path:
        return self.root.joinpath(*ODM_ORTHOPHOTO_RELATIVE_PATH)

    def find_input_images(self) -> List[Path]:
        """List images and videos in images/ with an accepted extension."""
        if not self.images_dir.is_dir():
            return []
        accepted = set(ACCEPTED_INPUT_EXTENSIONS)
        return sorted(
            path for path in self.images_dir.iterdir()
            if path.is_file() and path.suffix[1:] in accepted
        )

    def validate(self) -> int:
        """
        Check the project layout.

        Returns:
            Number of input files found

        Raises:
            MissingDirectoryError: Project or images/ directory missing
            NoInputImagesError: images/ holds no accepted file
        """
        if not self.root.is_dir():
            raise MissingDirectoryError(f"ODM directory '{self.root}' not found or is not a directory")
        if not self.images_dir.is_dir():
            raise MissingDirectoryError(f"Images directory '{self.images_dir}' not found")

        images = self.find_input_images()
        if not images:
            raise NoInputImagesError(self.images_dir, ACCEPTED_INPUT_EXTENSIONS)

        logging.info(f"ODM directory validated: {self.root} ({len(images)} input file(s))")
        return len(images)

    def locate_orthophoto(self) -> Path:
        """
        Return the orthophoto produced by the ODM stage.

        Raises:
            MissingArtifactError: ODM finished but the GeoTIFF is absent
        """
        if not self.orthophoto_path.is_file():
            raise MissingArtifactError(self.orthophoto_path, "ODM processing")
        return self.orthophoto_path


@dataclass
class OrthophotoInfo:
    """Raster metadata of a generated orthophoto."""
    path: Path
    width: int
    height: int
    band_count: int
    crs: Optional[str]
    resolution: Tuple[float, float]
    # (west, south, east, north) in WGS84; None when the raster is not georeferenced
    wgs84_bounds: Optional[Tuple[float, float, float, float]] = None

    def intersects(self, bbox: BoundingBox) -> Optional[bool]:
        """Whether a satellite bounding box overlaps the orthophoto (None if unknown)."""
        if self.wgs84_bounds is None:
            return None
        west, south, east, north = self.wgs84_bounds
        b_west, b_south, b_east, b_north = bbox.to_wgs84_bounds()
        return b_west <= east and b_east >= west and b_south <= north and b_north >= south


def inspect_orthophoto(path: Path) -> OrthophotoInfo:
    """Read size, CRS and geographic extent of a GeoTIFF."""
    path = Path(path)
    try:
        with rasterio.open(path) as src:
            crs = src.crs
            wgs84_bounds = None
            if crs is not None:
                wgs84_bounds = tuple(transform_bounds(crs, 'EPSG:4326', *src.bounds))
            info = OrthophotoInfo(
                path=path,
                width=src.width,
                height=src.height,
                band_count=src.count,
                crs=crs.to_string() if crs is not None else None,
                resolution=(abs(src.res[0]), abs(src.res[1])),
                wgs84_bounds=wgs84_bounds,
            )
    except RasterioIOError as e:
        raise MissingArtifactError(f"{path} (unreadable: {e})", "ODM processing")

    logging.info(f"Orthophoto: {info.width}x{info.height}, {info.band_count} band(s), "
                 f"{format_bytes(path.stat().st_size)}")
    logging.info(f"  CRS: {info.crs or 'none'}")
    if wgs84_bounds is not None:
        west, south, east, north = wgs84_bounds
        logging.info(f"  Extent (WGS84): lat {south:.6f} to {north:.6f}, lon {west:.6f} to {east:.6f}")
    else:
        logging.warning("Orthophoto is not georeferenced")
    return info


def verify_raster(path: Path, stage: str) -> Tuple[int, int]:
    """
    Confirm a converted image exists and is readable.

    Returns:
        Image size as (width, height)

    Raises:
        MissingArtifactError: File absent or unreadable
    """
    path = Path(path)
    if not path.is_file():
        raise MissingArtifactError(path, stage)

    # Orthophotos routinely exceed Pillow's decompression bomb limit; verify() never decodes pixels
    max_pixels = Image.MAX_IMAGE_PIXELS
    Image.MAX_IMAGE_PIXELS = None
    try:
        with Image.open(path) as img:
            img.verify()
            size = img.size
    except (OSError, SyntaxError, Image.DecompressionBombError) as e:
        raise MissingArtifactError(f"{path} (unreadable: {e})", stage)
    finally:
        Image.MAX_IMAGE_PIXELS = max_pixels
    return size
