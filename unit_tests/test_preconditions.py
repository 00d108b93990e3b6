"""
Unit tests for preconditions module.
"""

import pytest
import subprocess
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from conftest import FakeRunner, make_which
from errors import (
    ContainerRuntimeError,
    MissingDependencyError,
    MissingDirectoryError,
    MissingSecretError,
    NoInputImagesError,
    PreconditionError,
)
from preconditions import PreconditionChecker
from run_config import Choice, Mode, Platform, RunConfiguration


def checker(config, environ=None, available=('docker', 'convert'), runner=None):
    return PreconditionChecker(
        config,
        environ=environ or {},
        which=make_which(*available),
        runner=runner or FakeRunner(),
    )


class TestPreconditionChecker:
    """Test environment verification before any stage runs."""

    def test_high_altitude_ok(self, sample_image_file):
        runner = FakeRunner()
        config = RunConfiguration(mode=Mode.HIGH_ALTITUDE, input_image=sample_image_file,
                                  download_satellite=Choice.NO)
        assert checker(config, runner=runner).check() == []
        assert runner.calls == [['docker', 'info']]

    def test_low_altitude_ok(self, odm_project):
        config = RunConfiguration(mode=Mode.LOW_ALTITUDE, gsd=15.5, odm_dir=odm_project)
        assert checker(config).check() == []

    def test_missing_api_key(self, sample_image_file):
        """Scenario D: fails before any container call."""
        runner = FakeRunner()
        config = RunConfiguration(mode=Mode.HIGH_ALTITUDE, input_image=sample_image_file,
                                  download_satellite=Choice.YES)
        with pytest.raises(MissingSecretError, match="MAPTILER_API_KEY"):
            checker(config, runner=runner).verify()
        assert runner.calls == []

    def test_empty_api_key(self, sample_image_file):
        config = RunConfiguration(mode=Mode.HIGH_ALTITUDE, input_image=sample_image_file,
                                  download_satellite=Choice.YES)
        problems = checker(config, environ={'MAPTILER_API_KEY': ''}).check()
        assert [type(p) for p in problems] == [MissingSecretError]

    def test_api_key_present(self, sample_image_file):
        config = RunConfiguration(mode=Mode.HIGH_ALTITUDE, input_image=sample_image_file,
                                  download_satellite=Choice.YES)
        assert checker(config, environ={'MAPTILER_API_KEY': 'secret'}).check() == []

    def test_docker_missing(self, sample_image_file):
        config = RunConfiguration(mode=Mode.HIGH_ALTITUDE, input_image=sample_image_file)
        with pytest.raises(MissingDependencyError, match="docker"):
            checker(config, available=()).verify()

    def test_jetson_launcher_required(self, sample_image_file):
        config = RunConfiguration(mode=Mode.HIGH_ALTITUDE, input_image=sample_image_file,
                                  platform=Platform.JETSON)
        problems = checker(config).check()
        assert isinstance(problems[0], MissingDependencyError)
        assert problems[0].programs == ['jetson-containers']

    def test_daemon_not_running(self, sample_image_file):
        config = RunConfiguration(mode=Mode.HIGH_ALTITUDE, input_image=sample_image_file)
        runner = FakeRunner(returncodes={'info': 1})
        with pytest.raises(ContainerRuntimeError):
            checker(config, runner=runner).verify()

    def test_daemon_probe_timeout(self, sample_image_file):
        def runner(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs['timeout'])

        config = RunConfiguration(mode=Mode.HIGH_ALTITUDE, input_image=sample_image_file)
        problems = checker(config, runner=runner).check()
        assert isinstance(problems[0], ContainerRuntimeError)

    def test_image_removed(self, temp_dir):
        config = RunConfiguration(mode=Mode.HIGH_ALTITUDE, input_image=temp_dir / 'gone.jpg')
        with pytest.raises(MissingDirectoryError):
            checker(config).verify()

    def test_odm_without_images(self, temp_dir):
        (temp_dir / 'proj' / 'images').mkdir(parents=True)
        config = RunConfiguration(mode=Mode.LOW_ALTITUDE, gsd=15.5, odm_dir=temp_dir / 'proj')
        with pytest.raises(NoInputImagesError):
            checker(config).verify()

    def test_odm_missing(self, temp_dir):
        config = RunConfiguration(mode=Mode.LOW_ALTITUDE, gsd=15.5, odm_dir=temp_dir / 'proj')
        with pytest.raises(MissingDirectoryError):
            checker(config).verify()

    def test_all_problems_collected(self, temp_dir):
        config = RunConfiguration(mode=Mode.LOW_ALTITUDE, gsd=15.5, odm_dir=temp_dir / 'proj',
                                  download_satellite=Choice.YES)
        problems = checker(config, available=()).check()
        assert [type(p) for p in problems] == [
            MissingDependencyError, MissingDirectoryError, MissingSecretError,
        ]
        assert all(isinstance(p, PreconditionError) for p in problems)

    def test_missing_converter_is_warning(self, odm_project):
        config = RunConfiguration(mode=Mode.LOW_ALTITUDE, gsd=15.5, odm_dir=odm_project)
        check = checker(config, available=('docker',))
        assert check.check() == []
        assert len(check.warnings) == 1
        assert 'convert' in check.warnings[0]

    def test_converter_not_needed_in_high_altitude(self, sample_image_file):
        config = RunConfiguration(mode=Mode.HIGH_ALTITUDE, input_image=sample_image_file)
        check = checker(config, available=('docker',))
        check.check()
        assert check.warnings == []
