"""
Pipeline orchestrator.

Given a resolved RunConfiguration, decides which external stages run and in
what order, and hands artifacts from one stage to the next:

    INIT -> WORKSPACE_READY
         -> (low altitude) ORTHOPHOTO_GENERATED -> ORTHOPHOTO_CONVERTED
         -> SATELLITE_RESOLVED -> MATCHING_COMPLETE -> DONE

REVIEW_EXIT ends the run successfully at the orthophoto checkpoint; FAILED
is entered from any state when an error propagates.
"""

import logging
import os
import shutil
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Mapping, Optional

from defaults import API_KEY_ENV, LOCAL_CONVERTER
from errors import (
    InvalidCoordinateError,
    MissingSecretError,
    StageExecutionError,
    VglError,
    WorkspaceError,
)
from orthophoto import OdmProject, OrthophotoInfo, inspect_orthophoto, verify_raster
from prompts import Prompter
from run_config import BoundingBox, Choice, RunConfiguration, save_config
from stages import (
    StageExecutor,
    container_convert_invocation,
    local_convert_invocation,
    matching_invocation,
    missing_environment,
    odm_invocation,
    satellite_invocation,
)
from utils import attach_log_file, detach_log_file
from workspace import VglWorkspace


class PipelineState(Enum):
    INIT = "init"
    WORKSPACE_READY = "workspace_ready"
    ORTHOPHOTO_GENERATED = "orthophoto_generated"
    ORTHOPHOTO_CONVERTED = "orthophoto_converted"
    SATELLITE_RESOLVED = "satellite_resolved"
    MATCHING_COMPLETE = "matching_complete"
    DONE = "done"
    REVIEW_EXIT = "review_exit"
    FAILED = "failed"


TERMINAL_SUCCESS = (PipelineState.DONE, PipelineState.REVIEW_EXIT)


@dataclass
class PipelineResult:
    """Outcome of one run."""
    state: PipelineState
    history: List[PipelineState]
    query_image: Optional[Path] = None
    orthophoto: Optional[OrthophotoInfo] = None
    copied_tiles: List[Path] = field(default_factory=list)
    journal: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state in TERMINAL_SUCCESS


class PipelineOrchestrator:
    """Runs the stages for one configuration, strictly in sequence."""

    def __init__(self, config: RunConfiguration,
                 executor: Optional[StageExecutor] = None,
                 prompter: Optional[Prompter] = None,
                 environ: Optional[Mapping[str, str]] = None,
                 which: Callable[[str], Optional[str]] = shutil.which,
                 record_run: bool = False):
        """
        Args:
            config: Resolved configuration (no Choice.ASK left)
            executor: Stage executor (default: one honoring config.dry_run)
            prompter: Used for the orthophoto review checkpoint
            environ: Process environment (default: os.environ)
            which: Program lookup, used to find the local converter
            record_run: Save run_config.json and a log file in live runs
        """
        self.config = config
        self.executor = executor or StageExecutor(dry_run=config.dry_run, timeout=config.stage_timeout)
        self.prompter = prompter or Prompter(config.interactive)
        self.environ = os.environ if environ is None else environ
        self.which = which
        self.record_run = record_run
        self.workspace = VglWorkspace(config.vgl_dir, self.executor)

        self.state = PipelineState.INIT
        self.history = [PipelineState.INIT]
        self.error: Optional[VglError] = None
        self.query_image: Optional[Path] = None
        self.orthophoto_info: Optional[OrthophotoInfo] = None
        self.copied_tiles: List[Path] = []

    def _transition(self, state: PipelineState):
        logging.debug(f"Pipeline state: {self.state.name} -> {state.name}")
        self.state = state
        self.history.append(state)

    def result(self) -> PipelineResult:
        return PipelineResult(
            state=self.state,
            history=list(self.history),
            query_image=self.query_image,
            orthophoto=self.orthophoto_info,
            copied_tiles=list(self.copied_tiles),
            journal=list(self.executor.journal),
        )

    def run(self) -> PipelineResult:
        """
        Execute the pipeline.

        Returns:
            Result in state DONE or REVIEW_EXIT

        Raises:
            VglError: Any failure; the orchestrator is left in state FAILED
        """
        if self.state is not PipelineState.INIT:
            raise RuntimeError("A pipeline orchestrator can only run once")

        log_handler = None
        try:
            self.prepare_workspace()
            if self.record_run and not self.config.dry_run:
                log_handler = attach_log_file(self.workspace.logs_dir)
                config_path = save_config(self.config, self.workspace.output_dir)
                logging.info(f"Configuration saved to: {config_path}")

            if self.config.is_low_altitude:
                logging.info(f"Low altitude mode: GSD={self.config.gsd:g} cm/pixel, "
                             f"ODM directory='{self.config.odm_dir}'")
                query_source = self.generate_orthophoto()
                if self.state is PipelineState.REVIEW_EXIT:
                    return self.result()
                logging.info("Running visual geolocalization on generated orthophoto")
            else:
                logging.info(f"High altitude mode: processing image '{self.config.input_image}'")
                query_source = self.config.input_image

            self.query_image = self.workspace.add_query_image(query_source)
            self.resolve_satellite_imagery()
            self.run_matching()
            self._transition(PipelineState.DONE)
        except VglError as e:
            self.error = e
            self._transition(PipelineState.FAILED)
            raise
        finally:
            detach_log_file(log_handler)

        return self.result()

    def prepare_workspace(self):
        self.workspace.setup()
        self._transition(PipelineState.WORKSPACE_READY)

    def generate_orthophoto(self) -> Optional[Path]:
        """
        Run ODM, check its artifact, convert it and offer the review checkpoint.

        Returns:
            Converted orthophoto to use as query image, or None after a review exit
        """
        project = OdmProject(self.config.odm_dir)
        use_gpu = self.config.use_gpu is Choice.YES
        logging.info(f"Running ODM with {'GPU acceleration' if use_gpu else 'CPU'}...")
        self.executor.run(odm_invocation(
            project.root, self.config.gsd, use_gpu,
            platform=self.config.platform, tty=self.config.interactive and sys.stdin.isatty(),
        ))
        self._transition(PipelineState.ORTHOPHOTO_GENERATED)

        orthophoto = project.orthophoto_path
        if self.executor.announce(f"check artifact {orthophoto}"):
            orthophoto = project.locate_orthophoto()
            self.orthophoto_info = inspect_orthophoto(orthophoto)

        converted = self.convert_orthophoto(orthophoto)
        self._transition(PipelineState.ORTHOPHOTO_CONVERTED)
        logging.info(f"Orthophoto saved to {converted}")

        if self.config.interactive and not self.config.skip_orthophoto_review:
            if self.prompter.ask_yes_no("Exit to process or review orthophoto?", False):
                logging.info("Exiting for orthophoto review...")
                self._transition(PipelineState.REVIEW_EXIT)
                return None
        return converted

    def convert_orthophoto(self, orthophoto: Path) -> Path:
        """
        Convert the GeoTIFF to PNG, preferring the local ImageMagick.

        Raises:
            StageExecutionError: Both the local and the Docker converter failed
            MissingArtifactError: Conversion reported success without a readable PNG
        """
        output = Path(self.config.orthophoto_output)
        logging.info("Converting orthophoto to PNG...")
        if self.executor.announce(f"mkdir -p {output.parent}"):
            output.parent.mkdir(parents=True, exist_ok=True)

        converted = False
        if self.which(LOCAL_CONVERTER) is not None:
            try:
                self.executor.run(local_convert_invocation(orthophoto, output))
                converted = True
            except StageExecutionError as e:
                logging.warning(f"{e}. Retrying with the Docker alternative...")
        else:
            logging.debug(f"ImageMagick '{LOCAL_CONVERTER}' not found. Using Docker alternative...")

        if not converted:
            try:
                self.executor.run(container_convert_invocation(orthophoto, output))
            except StageExecutionError as e:
                raise StageExecutionError("Orthophoto conversion", reason=f"no converter succeeded ({e})")

        if self.executor.announce(f"check artifact {output}"):
            width, height = verify_raster(output, "Orthophoto conversion")
            logging.debug(f"Converted orthophoto: {width}x{height}")
        return output

    def resolve_satellite_imagery(self):
        """Download satellite tiles into map/ when requested."""
        if self.config.download_satellite is not Choice.YES:
            logging.info(f"Assuming satellite images are already present in {self.workspace.map_dir}/")
            self._transition(PipelineState.SATELLITE_RESOLVED)
            return

        logging.info("Downloading satellite images...")
        if missing_environment(self.environ, [API_KEY_ENV]):
            raise MissingSecretError(API_KEY_ENV)
        if self.config.bounding_box is None:
            raise InvalidCoordinateError("Satellite download requires a bounding box")
        bbox = BoundingBox(*self.config.bounding_box.as_tuple())

        if self.orthophoto_info is not None and self.orthophoto_info.intersects(bbox) is False:
            logging.warning("Satellite bounding box does not overlap the orthophoto extent; "
                            "matching is unlikely to succeed")

        self.executor.run(satellite_invocation(
            self.config.vgl_dir, bbox, self.config.stitch_size,
            self.config.vgl_image, platform=self.config.platform,
        ))
        self.copied_tiles = self.workspace.import_stitched_tiles()
        self._transition(PipelineState.SATELLITE_RESOLVED)

    def run_matching(self):
        logging.info("Running visual geolocalization...")
        if not self.config.dry_run and not self.workspace.is_ready():
            raise WorkspaceError(f"VGL directory {self.workspace.root} is missing query/, map/ or output/")
        self.executor.run(matching_invocation(
            self.config.vgl_dir, self.config.vgl_image, platform=self.config.platform,
        ))
        self._transition(PipelineState.MATCHING_COMPLETE)
