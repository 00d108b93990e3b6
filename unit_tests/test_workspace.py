"""
Unit tests for workspace module.
"""

import pytest
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import write_png
from errors import WorkspaceError
from stages import StageExecutor
from workspace import VglWorkspace


class TestVglWorkspace:
    """Test workspace creation and population."""

    def test_setup_creates_layout(self, temp_dir):
        workspace = VglWorkspace(temp_dir / 'vgl')
        workspace.setup()
        assert sorted(p.name for p in (temp_dir / 'vgl').iterdir()) == ['map', 'output', 'query']
        assert workspace.is_ready()

    def test_setup_idempotent(self, temp_dir):
        workspace = VglWorkspace(temp_dir / 'vgl')
        (temp_dir / 'vgl' / 'query').mkdir(parents=True)
        (temp_dir / 'vgl' / 'query' / 'keep.jpg').write_bytes(b'x')
        workspace.setup()
        workspace.setup()
        assert sorted(p.name for p in (temp_dir / 'vgl').iterdir()) == ['map', 'output', 'query']
        assert (temp_dir / 'vgl' / 'query' / 'keep.jpg').exists()

    def test_setup_fails_on_file(self, temp_dir):
        (temp_dir / 'vgl').write_text('not a directory')
        with pytest.raises(WorkspaceError):
            VglWorkspace(temp_dir / 'vgl').setup()

    def test_dry_run_creates_nothing(self, temp_dir):
        executor = StageExecutor(dry_run=True)
        workspace = VglWorkspace(temp_dir / 'vgl', executor)
        workspace.setup()
        assert not (temp_dir / 'vgl').exists()
        assert executor.journal == [f"mkdir -p {temp_dir / 'vgl'}/{{query,map,output}}"]

    def test_add_query_image(self, temp_dir, sample_image_file):
        workspace = VglWorkspace(temp_dir / 'vgl')
        workspace.setup()
        destination = workspace.add_query_image(sample_image_file)
        assert destination == workspace.query_dir / 'drone.jpg'
        assert destination.read_bytes() == sample_image_file.read_bytes()

    def test_add_missing_image(self, temp_dir):
        workspace = VglWorkspace(temp_dir / 'vgl')
        workspace.setup()
        with pytest.raises(WorkspaceError):
            workspace.add_query_image(temp_dir / 'missing.jpg')


class TestStitchedTiles:
    """Stitched tile import with and without output/stitched/."""

    def test_tiles_copied(self, temp_dir):
        workspace = VglWorkspace(temp_dir / 'vgl')
        workspace.setup()
        write_png(workspace.stitched_dir / 'tile_0.png')
        write_png(workspace.stitched_dir / 'tile_1.png')

        copied = workspace.import_stitched_tiles()
        assert [p.name for p in copied] == ['tile_0.png', 'tile_1.png']
        assert (workspace.map_dir / 'tile_1.png').exists()

    def test_missing_stitched_directory_tolerated(self, temp_dir):
        workspace = VglWorkspace(temp_dir / 'vgl')
        workspace.setup()
        assert workspace.import_stitched_tiles() == []
        assert list(workspace.map_dir.iterdir()) == []

    def test_subdirectories_skipped(self, temp_dir):
        workspace = VglWorkspace(temp_dir / 'vgl')
        workspace.setup()
        (workspace.stitched_dir / 'nested').mkdir(parents=True)
        write_png(workspace.stitched_dir / 'tile.png')
        assert [p.name for p in workspace.import_stitched_tiles()] == ['tile.png']
