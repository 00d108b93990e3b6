"""
Stage invocations and the stage executor.

A StageInvocation describes one external command (usually a container run) as
structured data. It is validated when built and rendered to an argument list
only when the executor runs it or records it in dry-run mode.
"""

import logging
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from defaults import (
    API_KEY_ENV,
    CONTAINER_DATA_DIR,
    CONTAINER_LAUNCHERS,
    DEFAULT_IMAGE_TAG,
    DEFAULT_JETSON_IMAGE_TAG,
    DEFAULT_REGISTRY,
    IMAGE_TAG_ENV,
    IMAGEMAGICK_IMAGE,
    LOCAL_CONVERTER,
    ODM_CPU_IMAGE,
    ODM_DATASETS_DIR,
    ODM_GPU_IMAGE,
    ODM_JETSON_FEATURE_LIMITS,
    ODM_JETSON_IMAGE,
    ODM_JETSON_SCRIPT,
    ODM_QUALITY_FLAGS,
    REGISTRY_ENV,
)
from errors import StageExecutionError
from run_config import BoundingBox, Platform

ENV_NAME = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


@dataclass(frozen=True)
class Volume:
    """Host directory mounted into a container."""
    host: Path
    container: str

    def render(self) -> str:
        return f"{self.host}:{self.container}"


@dataclass(frozen=True)
class StageInvocation:
    """
    One external command to run.

    Attributes:
        name: Human readable stage name, used in logs and errors
        program: Launcher, e.g. ('docker', 'run') or ('convert',)
        arguments: Arguments after the image (or after the program when local)
        image: Container image; None for a local program
        run_options: Launcher options such as '--rm' or '--gpus all'
        env_passthrough: Environment variable names forwarded to the container
        volumes: Host directories mounted into the container
        workdir: Working directory inside the container
    """
    name: str
    program: Tuple[str, ...]
    arguments: Tuple[str, ...] = ()
    image: Optional[str] = None
    run_options: Tuple[str, ...] = ()
    env_passthrough: Tuple[str, ...] = ()
    volumes: Tuple[Volume, ...] = ()
    workdir: Optional[str] = None

    def __post_init__(self):
        if not self.program:
            raise ValueError(f"Stage '{self.name}' has no program")
        if self.image is None and (self.volumes or self.env_passthrough or self.workdir or self.run_options):
            raise ValueError(f"Stage '{self.name}' uses container options without an image")
        for variable in self.env_passthrough:
            if not ENV_NAME.match(variable):
                raise ValueError(f"Invalid environment variable name: {variable!r}")

    @property
    def containerized(self) -> bool:
        return self.image is not None

    def render(self) -> List[str]:
        """Render the full argument list."""
        argv = list(self.program)
        if self.containerized:
            argv.extend(self.run_options)
            for variable in self.env_passthrough:
                argv.extend(['-e', variable])
            for volume in self.volumes:
                argv.extend(['-v', volume.render()])
            if self.workdir:
                argv.extend(['-w', self.workdir])
            argv.append(self.image)
        argv.extend(self.arguments)
        return argv

    def describe(self) -> str:
        return shlex.join(self.render())


class StageExecutor:
    """
    Runs stage invocations one at a time, blocking until each exits.

    In dry-run mode nothing is executed: every invocation (and every
    filesystem step announced by the orchestrator) is logged and appended
    to the journal instead.
    """

    def __init__(self, dry_run: bool = False, timeout: Optional[float] = None,
                 runner: Callable = subprocess.run):
        self.dry_run = dry_run
        self.timeout = timeout
        self.runner = runner
        self.journal: List[str] = []

    def announce(self, description: str) -> bool:
        """
        Record a step that only happens in live mode.

        Returns:
            True if the caller should perform the step (live mode)
        """
        if self.dry_run:
            logging.info(f"DRY RUN: {description}")
            self.journal.append(description)
            return False
        logging.debug(description)
        return True

    def run(self, invocation: StageInvocation):
        """
        Execute one stage.

        Raises:
            StageExecutionError: Non-zero exit, launch failure or timeout
        """
        command = invocation.describe()
        if self.dry_run:
            logging.info(f"DRY RUN: {command}")
            self.journal.append(command)
            return

        logging.debug(f"Executing: {command}")
        try:
            completed = self.runner(invocation.render(), check=False, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise StageExecutionError(invocation.name, reason=f"timed out after {self.timeout:g}s")
        except OSError as e:
            raise StageExecutionError(invocation.name, reason=f"could not be launched: {e}")

        if completed.returncode != 0:
            raise StageExecutionError(invocation.name, returncode=completed.returncode)
        logging.debug(f"{invocation.name} finished")


def vgl_image_reference(environ: Mapping[str, str], platform: Platform = Platform.X86) -> str:
    """Container image of the geolocalization engine, with environment overrides."""
    default_tag = DEFAULT_JETSON_IMAGE_TAG if platform is Platform.JETSON else DEFAULT_IMAGE_TAG
    registry = environ.get(REGISTRY_ENV) or DEFAULT_REGISTRY
    tag = environ.get(IMAGE_TAG_ENV) or default_tag
    return f"{registry}/{tag}"


def format_gsd(gsd: float) -> str:
    return f"{gsd:g}"


def odm_invocation(odm_dir: Path, gsd: float, use_gpu: bool,
                   platform: Platform = Platform.X86, tty: bool = False) -> StageInvocation:
    """
    Orthophoto generation stage.

    The project parent is mounted at /datasets and the project is addressed
    by its directory name.
    """
    odm_dir = Path(odm_dir).resolve()
    parent = odm_dir.parent
    run_options = (('-ti',) if tty else ()) + ('--rm',)
    volumes = (Volume(parent, ODM_DATASETS_DIR),)

    if platform is Platform.JETSON:
        # The Orin image always extracts features on the GPU
        min_features, max_features = ODM_JETSON_FEATURE_LIMITS
        return StageInvocation(
            name="ODM processing",
            program=CONTAINER_LAUNCHERS[platform.value],
            image=ODM_JETSON_IMAGE,
            run_options=run_options,
            volumes=volumes,
            arguments=('bash', ODM_JETSON_SCRIPT, str(parent), format_gsd(gsd),
                       str(min_features), str(max_features)),
        )

    if use_gpu:
        run_options += ('--gpus', 'all')
    return StageInvocation(
        name="ODM processing",
        program=CONTAINER_LAUNCHERS[platform.value],
        image=ODM_GPU_IMAGE if use_gpu else ODM_CPU_IMAGE,
        run_options=run_options,
        volumes=volumes,
        arguments=(
            '--project-path', ODM_DATASETS_DIR,
            odm_dir.name,
            f'--orthophoto-resolution={format_gsd(gsd)}',
        ) + ODM_QUALITY_FLAGS,
    )


def satellite_invocation(vgl_dir: Path, bbox: BoundingBox, stitch_size: int, image: str,
                         platform: Platform = Platform.X86) -> StageInvocation:
    """Satellite download stage; leaves stitched tiles under output/stitched/."""
    return StageInvocation(
        name="Satellite image download",
        program=CONTAINER_LAUNCHERS[platform.value],
        image=image,
        run_options=('--rm',),
        env_passthrough=(API_KEY_ENV,),
        volumes=(Volume(Path(vgl_dir).resolve(), CONTAINER_DATA_DIR),),
        arguments=(
            'poetry', 'run', 'python', '/app/scripts/createMap.py',
            '--top-left-lat', f"{bbox.top_left_lat}",
            '--top-left-lon', f"{bbox.top_left_lon}",
            '--bottom-right-lat', f"{bbox.bottom_right_lat}",
            '--bottom-right-lon', f"{bbox.bottom_right_lon}",
            f'--stitch-size={stitch_size}',
        ),
    )


def matching_invocation(vgl_dir: Path, image: str,
                        platform: Platform = Platform.X86) -> StageInvocation:
    """Visual geolocalization stage; reads query/ and map/, writes output/."""
    return StageInvocation(
        name="Visual geolocalization",
        program=CONTAINER_LAUNCHERS[platform.value],
        image=image,
        run_options=('--rm',),
        volumes=(Volume(Path(vgl_dir).resolve(), CONTAINER_DATA_DIR),),
        arguments=('poetry', 'run', 'python', '/app/scripts/main.py'),
    )


def local_convert_invocation(source: Path, destination: Path,
                             converter: str = LOCAL_CONVERTER) -> StageInvocation:
    return StageInvocation(
        name="Orthophoto conversion",
        program=(converter,),
        arguments=(str(source), str(destination)),
    )


def container_convert_invocation(source: Path, destination: Path) -> StageInvocation:
    """ImageMagick in a container; source and destination directories are mounted separately."""
    source = Path(source).resolve()
    destination = Path(destination).resolve()
    return StageInvocation(
        name="Orthophoto conversion (container)",
        program=CONTAINER_LAUNCHERS['x86'],
        image=IMAGEMAGICK_IMAGE,
        run_options=('--rm',),
        volumes=(Volume(source.parent, '/input'), Volume(destination.parent, '/work')),
        workdir='/work',
        arguments=('convert', f'/input/{source.name}', destination.name),
    )


def missing_environment(environ: Mapping[str, str], names: Sequence[str]) -> List[str]:
    """Return the names that are missing or empty in the environment."""
    return [name for name in names if not environ.get(name)]
