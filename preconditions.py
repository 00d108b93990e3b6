"""
Dependency and precondition checks, run before any stage.
"""

import logging
import os
import shutil
import subprocess
from typing import Callable, List, Mapping, Optional

from defaults import (
    API_KEY_ENV,
    CONTAINER_LAUNCHERS,
    LOCAL_CONVERTER,
    RUNTIME_PROBE_TIMEOUT,
)
from errors import (
    ContainerRuntimeError,
    MissingDependencyError,
    MissingDirectoryError,
    MissingSecretError,
    PreconditionError,
)
from orthophoto import OdmProject
from run_config import Choice, Mode, Platform, RunConfiguration
from stages import missing_environment


class PreconditionChecker:
    """Verifies the environment can execute the pipeline for a given configuration."""

    def __init__(self, config: RunConfiguration,
                 environ: Optional[Mapping[str, str]] = None,
                 which: Callable[[str], Optional[str]] = shutil.which,
                 runner: Callable = subprocess.run):
        self.config = config
        self.environ = os.environ if environ is None else environ
        self.which = which
        self.runner = runner
        self.warnings: List[str] = []

    def required_programs(self) -> List[str]:
        programs = ['docker']
        if self.config.platform is Platform.JETSON:
            programs.append(CONTAINER_LAUNCHERS[Platform.JETSON.value][0])
        return programs

    def _check_programs(self) -> List[PreconditionError]:
        missing = [program for program in self.required_programs() if self.which(program) is None]
        if missing:
            return [MissingDependencyError(missing)]
        return []

    def _check_container_runtime(self) -> List[PreconditionError]:
        try:
            completed = self.runner(
                ['docker', 'info'],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=RUNTIME_PROBE_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return [ContainerRuntimeError(f"Docker daemon is not running or accessible: {e}")]
        if completed.returncode != 0:
            return [ContainerRuntimeError("Docker daemon is not running or accessible")]
        return []

    def _check_inputs(self) -> List[PreconditionError]:
        if self.config.mode is Mode.HIGH_ALTITUDE:
            if not self.config.input_image.is_file():
                return [MissingDirectoryError(f"Image file '{self.config.input_image}' not found")]
            return []

        try:
            OdmProject(self.config.odm_dir).validate()
        except PreconditionError as e:
            return [e]
        return []

    def _check_secrets(self) -> List[PreconditionError]:
        if self.config.download_satellite is not Choice.YES:
            return []
        return [MissingSecretError(name) for name in missing_environment(self.environ, [API_KEY_ENV])]

    def _check_optional_tools(self):
        if self.config.is_low_altitude and self.which(LOCAL_CONVERTER) is None:
            self.warnings.append(
                f"ImageMagick '{LOCAL_CONVERTER}' not found. "
                "Orthophoto conversion will use the Docker alternative."
            )

    def check(self) -> List[PreconditionError]:
        """
        Collect unmet preconditions.

        Returns:
            Unmet preconditions, empty on success. Non-fatal findings are
            stored in self.warnings.
        """
        self.warnings = []
        problems = self._check_programs()
        problems += self._check_inputs()
        problems += self._check_secrets()
        self._check_optional_tools()
        # The runtime probe talks to the daemon, so it only runs once everything local passed
        if not problems:
            problems += self._check_container_runtime()
        return problems

    def verify(self):
        """
        Log every finding and raise the first unmet precondition.

        Raises:
            PreconditionError: The environment cannot run the pipeline
        """
        problems = self.check()
        for warning in self.warnings:
            logging.warning(warning)
        if problems:
            # The first problem is reported by the caller
            for problem in problems[1:]:
                logging.error(str(problem))
            raise problems[0]
        logging.debug("All preconditions met")
