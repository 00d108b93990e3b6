"""
Command-line argument and configuration resolution.

Turns the raw argument list (plus an optional JSON config file and the
process environment) into a validated RunConfiguration. Priority, highest
first: flags, config file, environment, defaults.
"""

import argparse
import os
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

from defaults import (
    API_KEY_ENV,
    DEFAULT_IMAGE_TAG,
    DEFAULT_ORTHOPHOTO_OUTPUT,
    DEFAULT_PLATFORM,
    DEFAULT_REGISTRY,
    DEFAULT_STITCH_SIZE,
    DEFAULT_VGL_DIR,
    GSD_HIGH_ALTITUDE_THRESHOLD,
    IMAGE_TAG_ENV,
    REGISTRY_ENV,
    SCRIPT_NAME,
    SCRIPT_VERSION,
)
from errors import (
    ConfigurationError,
    GsdModeMismatchError,
    InvalidArgumentError,
    MissingArgumentError,
    TooManyArgumentsError,
    UnknownOptionError,
)
from run_config import (
    BoundingBox,
    Choice,
    Mode,
    Platform,
    RunConfiguration,
    is_number,
    load_config,
    parse_number,
    parse_stitch_size,
)
from stages import vgl_image_reference

EPILOG = f"""
ENVIRONMENT VARIABLES:
    {API_KEY_ENV:<20} Required for satellite image download
    {REGISTRY_ENV:<20} Docker registry (default: {DEFAULT_REGISTRY})
    {IMAGE_TAG_ENV:<20} Docker image tag (default: {DEFAULT_IMAGE_TAG})

EXAMPLES:
    # High altitude mode with defaults
    {SCRIPT_NAME} drone_image.jpg

    # Low altitude mode with GPU
    {SCRIPT_NAME} --use-gpu 15.5 /path/to/odm_project

    # Non-interactive mode with satellite download
    {SCRIPT_NAME} --non-interactive --download-satellite \\
        --top-left-lat 37.300264 --top-left-lon -3.688755 \\
        --bottom-right-lat 37.294684 --bottom-right-lon -3.676445 \\
        drone_image.jpg
"""

USAGE = (
    f"\n    High altitude (GSD >= {GSD_HIGH_ALTITUDE_THRESHOLD:g}cm): %(prog)s [OPTIONS] <image_file>"
    f"\n    Low altitude (GSD < {GSD_HIGH_ALTITUDE_THRESHOLD:g}cm):  %(prog)s [OPTIONS] <gsd_value> <odm_directory>"
)

# Option names accepted in a JSON config file, mapped to their argparse dest
CONFIG_FILE_KEYS = (
    'vgl_dir', 'use_gpu', 'download_satellite', 'skip_orthophoto_review',
    'stitch_size', 'top_left_lat', 'top_left_lon', 'bottom_right_lat',
    'bottom_right_lon', 'interactive', 'dry_run', 'verbose', 'platform',
    'orthophoto_output', 'stage_timeout',
)


class ArgumentParser(argparse.ArgumentParser):
    """argparse parser that raises instead of exiting with status 2."""

    def error(self, message):
        raise ConfigurationError(f"{message}. Use --help for usage information.")


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog=SCRIPT_NAME,
        description=f'{SCRIPT_NAME} v{SCRIPT_VERSION} - Visual Geolocalization Tool',
        usage=USAGE,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
    )

    parser.add_argument('inputs', nargs='*', metavar='INPUT',
                        help='<image_file> or <gsd_value> <odm_directory>')

    parser.add_argument('-v', '--verbose', dest='verbose', action='store_true', default=None,
                        help='Enable verbose output (default)')
    parser.add_argument('-q', '--quiet', dest='verbose', action='store_false',
                        help='Disable debug output')
    parser.add_argument('-n', '--non-interactive', dest='interactive', action='store_false',
                        default=None, help='Run in non-interactive mode')
    parser.add_argument('-d', '--dry-run', dest='dry_run', action='store_true', default=None,
                        help='Show commands without executing')
    parser.add_argument('--config', type=str,
                        help='JSON file with option values (flags take precedence)')
    parser.add_argument('--vgl-dir', type=str,
                        help=f'VGL data directory (default: {DEFAULT_VGL_DIR})')

    parser.add_argument('--use-gpu', dest='use_gpu', action='store_const', const=Choice.YES,
                        help='Use GPU for ODM processing')
    parser.add_argument('--no-gpu', dest='use_gpu', action='store_const', const=Choice.NO,
                        help='Force CPU-only processing')
    parser.add_argument('--download-satellite', dest='download_satellite', action='store_const',
                        const=Choice.YES, help='Enable satellite image download')
    parser.add_argument('--skip-satellite', dest='download_satellite', action='store_const',
                        const=Choice.NO, help='Skip satellite image download')
    parser.add_argument('--skip-orthophoto-review', dest='skip_orthophoto_review',
                        action='store_true', default=None, help='Skip orthophoto review step')
    parser.add_argument('--stitch-size', type=str, metavar='SIZE',
                        help=f'Satellite stitch size (default: {DEFAULT_STITCH_SIZE})')

    bbox = parser.add_argument_group('satellite download options (require --download-satellite)')
    bbox.add_argument('--top-left-lat', type=str, metavar='LAT', help='Top-left latitude')
    bbox.add_argument('--top-left-lon', type=str, metavar='LON', help='Top-left longitude')
    bbox.add_argument('--bottom-right-lat', type=str, metavar='LAT', help='Bottom-right latitude')
    bbox.add_argument('--bottom-right-lon', type=str, metavar='LON', help='Bottom-right longitude')

    parser.add_argument('--platform', type=str, choices=[p.value for p in Platform],
                        help=f'Container platform (default: {DEFAULT_PLATFORM})')
    parser.add_argument('--orthophoto-output', type=str, metavar='PATH',
                        help=f'Converted orthophoto path (default: {DEFAULT_ORTHOPHOTO_OUTPUT})')
    parser.add_argument('--stage-timeout', type=str, metavar='SECONDS',
                        help='Wall-clock limit per external stage (default: none)')
    parser.add_argument('--version', action='version',
                        version=f'{SCRIPT_NAME} version {SCRIPT_VERSION}')
    return parser


def _choice_from_config(value, key: str) -> Choice:
    if isinstance(value, bool):
        return Choice.from_bool(value)
    try:
        return Choice(str(value).lower())
    except ValueError:
        raise ConfigurationError(f"Invalid value for '{key}' in config file: {value!r}")


def _bool_from_config(value, key: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(f"'{key}' in config file must be true or false, got {value!r}")
    return value


def apply_config_file(parser: ArgumentParser, config_path: str):
    """Use values from a JSON config file as parser defaults, so flags still win."""
    values = load_config(config_path)
    for key in values:
        if key not in CONFIG_FILE_KEYS:
            raise UnknownOptionError(f"{key} (in {config_path})")

    converted = {}
    for key, value in values.items():
        if value is None:
            continue
        if key in ('use_gpu', 'download_satellite'):
            converted[key] = _choice_from_config(value, key)
        elif key in ('skip_orthophoto_review', 'interactive', 'dry_run', 'verbose'):
            converted[key] = _bool_from_config(value, key)
        else:
            converted[key] = str(value)
    parser.set_defaults(**converted)


def split_extras(extras: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Separate unrecognized options from positionals argparse left over."""
    options, positionals = [], []
    for token in extras:
        if token.startswith('-') and len(token) > 1 and not is_number(token, allow_sign=True):
            options.append(token)
        else:
            positionals.append(token)
    return options, positionals


def classify_positionals(tokens: Sequence[str]) -> dict:
    """
    Decide the processing mode from the positional arguments.

    The first token is tested in order: an existing readable file selects high
    altitude mode; otherwise an unsigned number is a GSD value selecting low
    altitude mode, and the second token is the ODM directory. File existence
    is checked first, so a file named like a number is treated as an image.

    Returns:
        Keyword arguments for RunConfiguration (mode, input_image or gsd/odm_dir)
    """
    if not tokens:
        raise MissingArgumentError("No input provided. Use --help for usage information.")

    first, rest = tokens[0], list(tokens[1:])
    if os.path.isfile(first) and os.access(first, os.R_OK):
        if rest:
            raise TooManyArgumentsError(rest[0])
        return {'mode': Mode.HIGH_ALTITUDE, 'input_image': Path(first)}

    if is_number(first, allow_sign=False):
        gsd = parse_number(first, 'GSD')
        # Checked before the directory so a wrong mode is reported first
        if gsd >= GSD_HIGH_ALTITUDE_THRESHOLD:
            raise GsdModeMismatchError(gsd, GSD_HIGH_ALTITUDE_THRESHOLD)
        if not rest:
            raise MissingArgumentError("ODM directory required when GSD is specified")
        if len(rest) > 1:
            raise TooManyArgumentsError(rest[1])
        return {'mode': Mode.LOW_ALTITUDE, 'gsd': gsd, 'odm_dir': Path(rest[0])}

    raise InvalidArgumentError(
        f"First argument must be either an existing image file or a GSD value (got '{first}')"
    )


def resolve_arguments(argv: Optional[Sequence[str]] = None,
                      environ: Optional[Mapping[str, str]] = None) -> RunConfiguration:
    """
    Parse flags and positionals into a RunConfiguration.

    Args:
        argv: Arguments without the program name (default: sys.argv[1:])
        environ: Process environment (default: os.environ)

    Raises:
        ConfigurationError: Any invalid, missing, unknown or conflicting argument
    """
    environ = os.environ if environ is None else environ
    parser = build_parser()

    # The config file only provides defaults, so it is read before the full parse
    pre_parser = ArgumentParser(add_help=False, allow_abbrev=False)
    pre_parser.add_argument('--config', type=str)
    pre_args, _ = pre_parser.parse_known_args(argv)
    if pre_args.config:
        apply_config_file(parser, pre_args.config)

    args, extras = parser.parse_known_args(argv)
    unknown, leftover = split_extras(extras)
    if unknown:
        raise UnknownOptionError(unknown[0])

    fields = classify_positionals(list(args.inputs) + leftover)

    defaulted = set()
    if args.vgl_dir:
        vgl_dir = Path(args.vgl_dir)
    else:
        vgl_dir = Path(DEFAULT_VGL_DIR)
        defaulted.add('vgl_dir')

    if args.stitch_size is not None:
        stitch_size = parse_stitch_size(args.stitch_size)
    else:
        stitch_size = DEFAULT_STITCH_SIZE
        defaulted.add('stitch_size')

    bounding_box = BoundingBox.from_parts(
        args.top_left_lat, args.top_left_lon,
        args.bottom_right_lat, args.bottom_right_lon,
    )

    stage_timeout = None
    if args.stage_timeout is not None:
        stage_timeout = parse_number(args.stage_timeout, 'stage timeout')

    try:
        platform = Platform(args.platform or DEFAULT_PLATFORM)
    except ValueError:
        raise ConfigurationError(f"Invalid platform: '{args.platform}'")

    return RunConfiguration(
        vgl_dir=vgl_dir,
        use_gpu=args.use_gpu or Choice.ASK,
        download_satellite=args.download_satellite or Choice.ASK,
        skip_orthophoto_review=bool(args.skip_orthophoto_review),
        stitch_size=stitch_size,
        bounding_box=bounding_box,
        interactive=True if args.interactive is None else args.interactive,
        dry_run=bool(args.dry_run),
        verbose=True if args.verbose is None else args.verbose,
        platform=platform,
        vgl_image=vgl_image_reference(environ, platform),
        orthophoto_output=Path(args.orthophoto_output or DEFAULT_ORTHOPHOTO_OUTPUT),
        stage_timeout=stage_timeout,
        defaulted=frozenset(defaulted),
        **fields,
    )
