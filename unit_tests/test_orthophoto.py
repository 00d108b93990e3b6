"""
Unit tests for orthophoto module.
"""

import pytest
import sys
from pathlib import Path
from PIL import Image

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import write_png
from errors import MissingArtifactError, MissingDirectoryError, NoInputImagesError
from orthophoto import OdmProject, inspect_orthophoto, verify_raster
from run_config import BoundingBox


class TestOdmProject:
    """Test ODM project validation."""

    def test_valid_project(self, odm_project):
        project = OdmProject(odm_project)
        assert project.name == 'proj'
        assert project.validate() == 1

    def test_uppercase_and_video_accepted(self, odm_project):
        (odm_project / 'images' / 'clip.MP4').write_bytes(b'')
        (odm_project / 'images' / 'b.jpeg').write_bytes(b'')
        assert OdmProject(odm_project).validate() == 3

    def test_missing_directory(self, temp_dir):
        with pytest.raises(MissingDirectoryError):
            OdmProject(temp_dir / 'missing').validate()

    def test_missing_images_directory(self, temp_dir):
        (temp_dir / 'proj').mkdir()
        with pytest.raises(MissingDirectoryError, match="Images directory"):
            OdmProject(temp_dir / 'proj').validate()

    def test_no_accepted_images(self, temp_dir):
        images = temp_dir / 'proj' / 'images'
        images.mkdir(parents=True)
        (images / 'notes.txt').write_text('x')
        (images / 'raw.tif').write_bytes(b'')
        with pytest.raises(NoInputImagesError) as excinfo:
            OdmProject(temp_dir / 'proj').validate()
        assert '*.jpg' in str(excinfo.value)
        assert '*.MP4' in str(excinfo.value)

    def test_locate_orthophoto(self, odm_project):
        project = OdmProject(odm_project)
        with pytest.raises(MissingArtifactError):
            project.locate_orthophoto()

        project.orthophoto_path.parent.mkdir()
        project.orthophoto_path.write_bytes(b'tif')
        assert project.locate_orthophoto() == odm_project / 'odm_orthophoto' / 'odm_orthophoto.tif'


class TestInspectOrthophoto:
    """Test GeoTIFF metadata extraction."""

    def test_georeferenced(self, sample_geotiff):
        info = inspect_orthophoto(sample_geotiff)
        assert (info.width, info.height) == (100, 100)
        assert info.band_count == 3
        assert info.crs == 'EPSG:4326'
        west, south, east, north = info.wgs84_bounds
        assert west == pytest.approx(-3.690)
        assert north == pytest.approx(37.305)

    def test_intersects(self, sample_geotiff):
        info = inspect_orthophoto(sample_geotiff)
        assert info.intersects(BoundingBox(37.300264, -3.688755, 37.294684, -3.676445)) is True
        assert info.intersects(BoundingBox(10.0, 10.0, 9.0, 11.0)) is False

    def test_not_georeferenced(self, ungeoreferenced_tiff):
        info = inspect_orthophoto(ungeoreferenced_tiff)
        assert info.crs is None
        assert info.wgs84_bounds is None
        assert info.intersects(BoundingBox(10.0, 10.0, 9.0, 11.0)) is None

    def test_unreadable(self, temp_dir):
        broken = temp_dir / 'broken.tif'
        broken.write_bytes(b'not a tiff')
        with pytest.raises(MissingArtifactError, match="unreadable"):
            inspect_orthophoto(broken)


class TestVerifyRaster:
    """Test converted image verification."""

    def test_readable_png(self, temp_dir):
        path = write_png(temp_dir / 'orthophoto.png', size=(40, 30))
        assert verify_raster(path, "Orthophoto conversion") == (40, 30)

    def test_large_orthophoto(self, temp_dir):
        """Images above Pillow's decompression bomb limit are still accepted."""
        path = temp_dir / 'orthophoto.png'
        Image.new('1', (14000, 14000)).save(path, format='PNG')
        limit = Image.MAX_IMAGE_PIXELS
        assert verify_raster(path, "Orthophoto conversion") == (14000, 14000)
        assert Image.MAX_IMAGE_PIXELS == limit

    def test_missing(self, temp_dir):
        with pytest.raises(MissingArtifactError, match="Orthophoto conversion"):
            verify_raster(temp_dir / 'orthophoto.png', "Orthophoto conversion")

    def test_corrupt(self, temp_dir):
        path = temp_dir / 'orthophoto.png'
        path.write_bytes(b'garbage')
        with pytest.raises(MissingArtifactError, match="unreadable"):
            verify_raster(path, "Orthophoto conversion")
