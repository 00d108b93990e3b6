"""
VGL workspace: the on-disk area shared with the geolocalization containers.

Layout (stable contract, mounted at /app/data):
    query/            input imagery awaiting matching
    map/              reference satellite imagery
    output/           results
    output/stitched/  tiles produced by the satellite download stage
"""

import logging
import shutil
from pathlib import Path
from typing import List, Optional

from defaults import LOGS_SUBDIRECTORY, STITCHED_SUBDIRECTORY, WORKSPACE_SUBDIRECTORIES
from errors import WorkspaceError
from stages import StageExecutor
from utils import get_file_info


class VglWorkspace:
    """Creates and populates the workspace. Never deletes anything."""

    def __init__(self, root: Path, executor: Optional[StageExecutor] = None):
        """
        Args:
            root: Workspace directory
            executor: Used to journal filesystem steps in dry-run mode
        """
        self.root = Path(root)
        self.executor = executor or StageExecutor()

    @property
    def query_dir(self) -> Path:
        return self.root / 'query'

    @property
    def map_dir(self) -> Path:
        return self.root / 'map'

    @property
    def output_dir(self) -> Path:
        return self.root / 'output'

    @property
    def stitched_dir(self) -> Path:
        return self.output_dir / STITCHED_SUBDIRECTORY

    @property
    def logs_dir(self) -> Path:
        return self.output_dir / LOGS_SUBDIRECTORY

    def subdirectories(self) -> List[Path]:
        return [self.root / name for name in WORKSPACE_SUBDIRECTORIES]

    def is_ready(self) -> bool:
        return all(path.is_dir() for path in self.subdirectories())

    def setup(self):
        """Create query/, map/ and output/ (idempotent)."""
        logging.info(f"Setting up VGL directory: {self.root}")
        names = ','.join(WORKSPACE_SUBDIRECTORIES)
        if not self.executor.announce(f"mkdir -p {self.root}/{{{names}}}"):
            return

        try:
            for path in self.subdirectories():
                path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(f"Failed to create VGL directory {self.root}: {e}")

        if not self.is_ready():
            raise WorkspaceError(f"Failed to create VGL directory: {self.root}")

    def add_query_image(self, image_path: Path) -> Path:
        """
        Copy an image into query/.

        Returns:
            Destination path inside the workspace
        """
        image_path = Path(image_path)
        destination = self.query_dir / image_path.name
        logging.info("Copying input image to query directory")
        if not self.executor.announce(f"cp {image_path} {self.query_dir}/"):
            return destination

        try:
            shutil.copy2(image_path, destination)
        except OSError as e:
            raise WorkspaceError(f"Failed to copy input image {image_path}: {e}")
        logging.debug(f"Query image: {destination} ({get_file_info(destination)['size_formatted']})")
        return destination

    def import_stitched_tiles(self) -> List[Path]:
        """
        Copy tiles from output/stitched/ into map/.

        A missing stitched directory means there is nothing new to copy;
        reference imagery may already be present in map/.

        Returns:
            Paths of the copied tiles
        """
        if not self.executor.announce(f"cp {self.stitched_dir}/* {self.map_dir}/"):
            return []

        if not self.stitched_dir.is_dir():
            logging.info(f"No stitched tiles found in {self.stitched_dir}; nothing to copy")
            return []

        copied = []
        for tile in sorted(self.stitched_dir.iterdir()):
            if not tile.is_file():
                continue
            destination = self.map_dir / tile.name
            try:
                shutil.copy2(tile, destination)
            except OSError as e:
                raise WorkspaceError(f"Failed to copy stitched tile {tile}: {e}")
            copied.append(destination)

        logging.info(f"Copied {len(copied)} stitched tile(s) into {self.map_dir}")
        return copied
