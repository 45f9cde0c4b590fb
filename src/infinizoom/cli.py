"""
Command line interface for Infinizoom.

    infinizoom view [IMAGE] [--lat LAT --lon LON]
    infinizoom snapshot IMAGE OUT [--zoom Z --pan-x X --pan-y Y --enhance]
    infinizoom decide BASE NEW [--base-lat .. --base-lon .. --new-lat .. --new-lon ..] [--placeholder]

Every configuration field can also be overridden from the command line, e.g.
``--enhancer-strategy gemini`` or ``--enhancement-debounce-seconds 0.5``.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Type, Union, get_args, get_origin

from pydantic import BaseModel

from infinizoom.config import ConfigError, InfinizoomConfig
from infinizoom.constants import DEFAULT_CONFIG_PATH
from infinizoom.logger import setup_logging
from infinizoom.schemas import Capture, GPSCoordinates

logger = logging.getLogger(__name__)


class TrackedAction(argparse.Action):
    """Store the value and remember that the option was given on the command line."""

    def __call__(self, parser, namespace, values, option_string=None):
        if not hasattr(namespace, '_explicitly_set'):
            namespace._explicitly_set = set()
        namespace._explicitly_set.add(self.dest)
        setattr(namespace, self.dest, values)


class TrackedStoreTrueAction(argparse._StoreTrueAction):
    """``store_true`` that records the flag as explicitly set."""

    def __call__(self, parser, namespace, values, option_string=None):
        if not hasattr(namespace, '_explicitly_set'):
            namespace._explicitly_set = set()
        namespace._explicitly_set.add(self.dest)
        super().__call__(parser, namespace, values, option_string)


class TrackedStoreFalseAction(argparse._StoreFalseAction):
    """``store_false`` that records the flag as explicitly set."""

    def __call__(self, parser, namespace, values, option_string=None):
        if not hasattr(namespace, '_explicitly_set'):
            namespace._explicitly_set = set()
        namespace._explicitly_set.add(self.dest)
        super().__call__(parser, namespace, values, option_string)


def extract_cli_args_from_config(config_class: Type[BaseModel], prefix: str = "") -> Dict[str, Dict[str, Any]]:
    """Build argparse arguments for the basic-typed fields of a pydantic config class.

    Nested models are walked recursively. The argparse ``dest`` keeps dots
    (``enhancement.debounce_seconds``) so ``namespace_to_dict`` can rebuild the
    nested structure.
    """
    cli_args = {}

    for field_name, field_info in config_class.model_fields.items():
        field_type = field_info.annotation
        if get_origin(field_type) is Union:
            args = [arg for arg in get_args(field_type) if arg is not type(None)]
            if len(args) == 1:
                field_type = args[0]

        full_field_name = f"{prefix}.{field_name}" if prefix else field_name

        if isinstance(field_type, type) and issubclass(field_type, BaseModel):
            cli_args.update(extract_cli_args_from_config(field_type, full_field_name))
            continue

        choices = None
        if get_origin(field_type) is Literal:
            choices = list(get_args(field_type))
            field_type = str

        if field_type not in (bool, int, float, str):
            continue

        flag = full_field_name.replace('_', '-').replace('.', '-')
        arg_name = f"--{flag}"
        arg_config: Dict[str, Any] = {'dest': full_field_name, 'default': None}

        if field_type == bool:
            if field_info.default is True:
                arg_config['action'] = TrackedStoreFalseAction
                arg_name = f"--no-{flag}"
            else:
                arg_config['action'] = TrackedStoreTrueAction
        else:
            arg_config['type'] = field_type
            arg_config['action'] = TrackedAction
            arg_config['metavar'] = {int: 'N', float: 'VALUE'}.get(field_type, 'TEXT')
            if choices:
                arg_config['choices'] = choices

        help_text = field_info.description or field_name
        if prefix:
            help_text = f"[{prefix.replace('_', ' ').title()}] {help_text}"
        arg_config['help'] = help_text

        cli_args[arg_name] = arg_config

    return cli_args


def add_gps_args(parser: argparse.ArgumentParser, prefix: str = "") -> None:
    flag = f"--{prefix}-" if prefix else "--"
    dest = f"{prefix}_" if prefix else ""
    parser.add_argument(f"{flag}lat", type=float, dest=f"{dest}lat", help="Latitude in degrees")
    parser.add_argument(f"{flag}lon", type=float, dest=f"{dest}lon", help="Longitude in degrees")


def gps_from(lat: Optional[float], lon: Optional[float]) -> Optional[GPSCoordinates]:
    if lat is None or lon is None:
        return None
    return GPSCoordinates(latitude=lat, longitude=lon)


def create_parser() -> argparse.ArgumentParser:
    # config options live on every subcommand so they parse into one namespace
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        '--log-level', '-l',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        dest='log_level',
        default=None,
        action=TrackedAction,
        help='Set the logging level (default: from config, INFO)'
    )
    common.add_argument(
        '--config', '-c',
        default=str(DEFAULT_CONFIG_PATH),
        help=f'Path to configuration file (default: {DEFAULT_CONFIG_PATH})'
    )
    common.add_argument('--log-file', default=None, help='Also log to this file in the log directory')
    for arg_name, arg_config in extract_cli_args_from_config(InfinizoomConfig).items():
        if arg_config['dest'] == 'log_level':
            continue
        common.add_argument(arg_name, **arg_config)

    parser = argparse.ArgumentParser(
        prog='infinizoom',
        description='Infinizoom - infinite wrapping panorama viewer with on-demand region enhancement'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    view = subparsers.add_parser('view', parents=[common], help='Open the interactive window')
    view.add_argument('image', nargs='?', help='Capture to start the world from (default: placeholder world)')
    add_gps_args(view)

    snapshot = subparsers.add_parser('snapshot', parents=[common], help='Render one view to a PNG')
    snapshot.add_argument('image', help='Capture to build the world from')
    snapshot.add_argument('output', help='Output PNG path')
    snapshot.add_argument('--zoom', type=float, default=1.0)
    snapshot.add_argument('--pan-x', type=float, default=0.0, help='Horizontal pan in screen pixels')
    snapshot.add_argument('--pan-y', type=float, default=0.0, help='Vertical pan in screen pixels')
    snapshot.add_argument('--enhance', action='store_true', help='Enhance the visible region first')

    decide = subparsers.add_parser('decide', parents=[common],
                                   help='Decide whether NEW belongs to the world started by BASE')
    decide.add_argument('base', help='Baseline capture')
    decide.add_argument('new', help='New capture')
    add_gps_args(decide, 'base')
    add_gps_args(decide, 'new')
    decide.add_argument('--placeholder', action='store_true', help='Treat BASE as a placeholder world')

    return parser


# =============================================================================
# COMMANDS
# =============================================================================

async def run_view(args: argparse.Namespace, config: InfinizoomConfig) -> int:
    from infinizoom.display import InfinizoomDisplay
    from infinizoom.location import ManualLocationSource, ZmqLocationSource
    from infinizoom.world import WorldSession

    if config.location.source == "zmq":
        source = ZmqLocationSource(config.location.zmq_address, config.location.zmq_topic)
    else:
        source = ManualLocationSource()

    session = WorldSession(config, location_source=source)
    try:
        await session.start()
        if args.image:
            await session.handle_new_capture(Path(args.image), gps=gps_from(args.lat, args.lon))
        if not session.has_world:
            logger.error("No image given and no placeholder world configured")
            return 1
        await InfinizoomDisplay(session).run()
    finally:
        await session.dispose()
    return 0


async def run_snapshot(args: argparse.Namespace, config: InfinizoomConfig) -> int:
    from infinizoom.world import WorldSession

    session = WorldSession(config)
    try:
        await session.handle_new_capture(Path(args.image))
        if not session.has_world:
            logger.error(f"{args.image} has no pixels")
            return 1
        session.viewport.set_view((args.pan_x, args.pan_y), args.zoom)
        if args.enhance:
            job = await session.enhance_now()
            if job is None:
                logger.warning("View is not eligible for enhancement (zoom must exceed "
                               f"{config.viewport.enhance_min_zoom})")
        path = session.snapshot(args.output)
    finally:
        await session.dispose()
    print(path)
    return 0


async def run_decide(args: argparse.Namespace, config: InfinizoomConfig) -> int:
    from infinizoom.continuity import WorldContinuityResolver
    from infinizoom.enhancers import create_comparator
    from infinizoom.image_utils import load_image

    base_image, new_image = await asyncio.gather(
        asyncio.to_thread(load_image, Path(args.base)),
        asyncio.to_thread(load_image, Path(args.new)),
    )
    resolver = WorldContinuityResolver(create_comparator(config.comparator),
                                       config.continuity.gps_threshold_meters)
    decision = await resolver.decide(
        Capture(image=new_image, gps=gps_from(args.new_lat, args.new_lon)),
        Capture(image=base_image, gps=gps_from(args.base_lat, args.base_lon)),
        is_placeholder_world=args.placeholder,
    )
    print(decision.value)
    return 0


COMMANDS = {
    'view': run_view,
    'snapshot': run_snapshot,
    'decide': run_decide,
}


def main(argv: Optional[List[str]] = None) -> None:
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(name="", level=args.log_level or "INFO", log_filename=args.log_file)

    try:
        config = InfinizoomConfig.from_overrides(config_file=args.config, args=args)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)

    if config.log_level.upper() != (args.log_level or "INFO"):
        setup_logging(name="", level=config.log_level, log_filename=args.log_file)
    logger.debug(str(config))

    try:
        exit_code = asyncio.run(COMMANDS[args.command](args, config))
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
        exit_code = 0
    except ValueError as e:
        logger.error(f"{args.command} failed: {e}")
        exit_code = 1
    sys.exit(exit_code)
