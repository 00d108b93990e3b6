"""
Interactive prompt resolution.

Fills every configuration field the argument resolver left open, either by
asking the operator or, in non-interactive mode, from a fixed default so that
batch runs never block.
"""

import logging
import sys
from pathlib import Path
from typing import Callable, Optional

from defaults import API_KEY_ENV, DEFAULT_BOUNDING_BOX, DEFAULT_STITCH_SIZE, DEFAULT_VGL_DIR
from run_config import BoundingBox, Choice, Platform, RunConfiguration, parse_stitch_size

YES_ANSWERS = ('y', 'yes')
NO_ANSWERS = ('n', 'no')


class Prompter:
    """Asks questions on the control channel (stderr) and reads the answers."""

    def __init__(self, interactive: bool = True, input_fn: Callable[[], str] = input,
                 stream=None):
        """
        Args:
            interactive: When False every question returns its default
            input_fn: Reads one answer line
            stream: Where questions are written (default: stderr)
        """
        self.interactive = interactive
        self.input_fn = input_fn
        self.stream = stream

    def _read(self, prompt: str) -> str:
        stream = self.stream or sys.stderr
        stream.write(prompt)
        stream.flush()
        try:
            return self.input_fn().strip()
        except EOFError:
            # Closed input behaves like an empty answer
            stream.write('\n')
            return ''

    def ask(self, question: str, default: str) -> str:
        """Free-text question; an empty answer selects the default."""
        if not self.interactive:
            return default
        suffix = f" (default: {default})" if default != '' else ''
        answer = self._read(f"{question}{suffix}: ")
        return answer or default

    def ask_yes_no(self, question: str, default: bool) -> bool:
        """
        Yes/no question, repeated until the answer is y, yes, n or no.

        There is no retry limit: the operator is expected to answer.
        """
        if not self.interactive:
            return default
        default_text = 'y' if default else 'n'
        while True:
            answer = self._read(f"{question} [y/n] (default: {default_text}): ").lower()
            if not answer:
                return default
            if answer in YES_ANSWERS:
                return True
            if answer in NO_ANSWERS:
                return False
            (self.stream or sys.stderr).write("Please answer 'y' or 'n'.\n")


def ask_bounding_box(prompter: Prompter) -> BoundingBox:
    top_left_lat, top_left_lon, bottom_right_lat, bottom_right_lon = DEFAULT_BOUNDING_BOX
    if not prompter.interactive:
        logging.warning("No bounding box supplied; using the default example region "
                        f"({top_left_lat}, {top_left_lon}) - ({bottom_right_lat}, {bottom_right_lon})")
    return BoundingBox.from_parts(
        prompter.ask("Top-Left Latitude", str(top_left_lat)),
        prompter.ask("Top-Left Longitude", str(top_left_lon)),
        prompter.ask("Bottom-Right Latitude", str(bottom_right_lat)),
        prompter.ask("Bottom-Right Longitude", str(bottom_right_lon)),
    )


def resolve_prompts(config: RunConfiguration, prompter: Optional[Prompter] = None) -> RunConfiguration:
    """
    Resolve the fields still open after argument parsing.

    Order: working directory, GPU (low altitude only, not asked on Jetson),
    satellite download, then bounding box and stitch size only if the download was accepted.

    Returns:
        Configuration with no Choice.ASK left
    """
    prompter = prompter or Prompter(config.interactive)
    changes = {}

    if 'vgl_dir' in config.defaulted and prompter.interactive:
        changes['vgl_dir'] = Path(prompter.ask("VGL directory path", str(config.vgl_dir or DEFAULT_VGL_DIR)))

    if config.use_gpu is Choice.ASK:
        if config.platform is Platform.JETSON:
            # The Jetson ODM script always runs on the GPU
            use_gpu = config.is_low_altitude
        else:
            use_gpu = config.is_low_altitude and prompter.ask_yes_no("Use GPU for SIFT extraction?", False)
        changes['use_gpu'] = Choice.from_bool(use_gpu)

    download = config.download_satellite
    if download is Choice.ASK:
        download = Choice.from_bool(prompter.ask_yes_no(
            f"Download satellite images? ({API_KEY_ENV} must be set)", False
        ))
        changes['download_satellite'] = download

    if download is Choice.YES:
        if config.bounding_box is None:
            changes['bounding_box'] = ask_bounding_box(prompter)
        if 'stitch_size' in config.defaulted and prompter.interactive:
            answer = prompter.ask("Stitch Size", str(config.stitch_size or DEFAULT_STITCH_SIZE))
            changes['stitch_size'] = parse_stitch_size(answer)

    if not prompter.interactive and not config.skip_orthophoto_review:
        # Nobody to review the orthophoto
        changes['skip_orthophoto_review'] = True

    return config.evolve(**changes) if changes else config
