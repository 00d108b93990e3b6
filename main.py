#!/usr/bin/env python3
"""
Main entry point for the visual geolocalization runner.

Resolves the run configuration from the command line (and an optional JSON
config file), asks for anything left open, checks the environment and then
drives the containerized stages:

    high altitude:  image -> satellite imagery -> geolocalization
    low altitude:   ODM project -> orthophoto -> satellite imagery -> geolocalization
"""

import logging
import sys
from typing import Optional, Sequence

from arguments import resolve_arguments
from defaults import SCRIPT_NAME, SCRIPT_VERSION
from errors import VglError
from pipeline import PipelineOrchestrator, PipelineState
from preconditions import PreconditionChecker
from prompts import Prompter, resolve_prompts
from utils import setup_logging


def log_configuration(config):
    logging.debug("=" * 80)
    logging.debug(f"Mode: {config.mode.value}")
    if config.is_low_altitude:
        logging.debug(f"GSD: {config.gsd:g} cm/pixel")
        logging.debug(f"ODM directory: {config.odm_dir}")
    else:
        logging.debug(f"Image: {config.input_image}")
    logging.debug(f"VGL directory: {config.vgl_dir}")
    logging.debug(f"Platform: {config.platform.value}")
    logging.debug(f"VGL image: {config.vgl_image}")
    logging.debug(f"Use GPU: {config.use_gpu.value}")
    logging.debug(f"Download satellite: {config.download_satellite.value}")
    if config.bounding_box is not None:
        logging.debug(f"Bounding box: {config.bounding_box.as_tuple()}")
    logging.debug(f"Stitch size: {config.stitch_size}")
    logging.debug("=" * 80)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Run the tool.

    Args:
        argv: Arguments without the program name (default: sys.argv[1:])

    Returns:
        Process exit status: 0 on success or review exit, 1 on any failure
    """
    setup_logging(verbose=True)

    try:
        config = resolve_arguments(argv)
        setup_logging(verbose=config.verbose)
        logging.info(f"Starting {SCRIPT_NAME} v{SCRIPT_VERSION}")

        prompter = Prompter(config.interactive)
        config = resolve_prompts(config, prompter)
        log_configuration(config)

        PreconditionChecker(config).verify()

        if config.dry_run:
            logging.warning("DRY RUN MODE - No commands will be executed")

        orchestrator = PipelineOrchestrator(config, prompter=prompter, record_run=True)
        result = orchestrator.run()
    except VglError as e:
        logging.error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        logging.error("Interrupted")
        return 1

    if result.state is PipelineState.REVIEW_EXIT:
        logging.info("Orthophoto ready for review. Re-run with --skip-orthophoto-review to continue.")
    else:
        logging.info("Processing completed successfully!")
    return 0


if __name__ == '__main__':
    sys.exit(main())
