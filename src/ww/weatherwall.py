import signal
import sys
import threading

# Argument parsing
from argparse import ArgumentParser, Namespace
from typing import List, Optional

from dotenv import load_dotenv

# Configuration
from iconfig.iconfig import iConfig

from loguru import logger

from ww.core.orchestrator import GenerationOrchestrator
from ww.model.models import REGIONS, MapStyle, Settings, find_region
from ww.utils.utils import ConfigLookup, config_value, setup_logging


def get_args(argv: Optional[List[str]] = None) -> Namespace:
    """Reads command line arguments and returns a Namespace object with them

    Returns:
        Namespace: Namespace object with the command line arguments
    """
    parser = ArgumentParser(
        prog='weatherwall',
        description='Builds a desktop wallpaper from a base map overlaid with live weather radar and satellite imagery'
    )

    parser.add_argument(
        "--once",
        action="store_true",
        dest="once",
        help="Generate and apply one wallpaper, then exit"
    )

    parser.add_argument(
        "-s", "--style",
        action="store",
        dest="style",
        choices=[s.value for s in MapStyle],
        default=None,
        help="Base map style"
    )

    parser.add_argument(
        "-r", "--region",
        action="store",
        dest="region",
        default=None,
        help="Region preset, by index or name (see --list-regions)"
    )

    parser.add_argument(
        "-i", "--interval",
        action="store",
        dest="interval",
        type=float,
        default=None,
        help="Auto refresh interval in seconds"
    )

    parser.add_argument(
        "--radar",
        action="store_true",
        dest="radar",
        default=None,
        help="Overlay the radar layer"
    )
    parser.add_argument(
        "--no-radar",
        action="store_false",
        dest="radar",
        help="Do not overlay the radar layer"
    )

    parser.add_argument(
        "--satellite",
        action="store_true",
        dest="satellite",
        default=None,
        help="Overlay the infrared satellite layer"
    )
    parser.add_argument(
        "--no-satellite",
        action="store_false",
        dest="satellite",
        help="Do not overlay the infrared satellite layer"
    )

    parser.add_argument(
        "--no-auto-refresh",
        action="store_false",
        dest="auto_refresh",
        default=None,
        help="Keep running but ignore refresh timer ticks"
    )

    parser.add_argument(
        "--list-regions",
        action="store_true",
        dest="list_regions",
        help="Print the region presets and exit"
    )

    args = parser.parse_args(argv)

    if args.interval is not None and args.interval <= 0:
        parser.error("Interval must be positive")

    if args.region is not None:
        index = find_region(args.region)
        if index is None:
            parser.error(f"Unknown region '{args.region}'. Use --list-regions to see the presets.")
        args.region = index

    return args


def initial_settings(config: ConfigLookup, args: Namespace) -> Settings:
    """Settings from configuration, overridden by command line arguments."""
    values = {
        "style": config_value(config, "wallpaper.style", MapStyle.SATELLITE.value),
        "region_index": config_value(config, "wallpaper.region", 0),
        "auto_refresh_enabled": config_value(config, "wallpaper.auto_refresh", True),
        "refresh_interval_seconds": config_value(config, "wallpaper.interval", 600),
        "radar_layer_enabled": config_value(config, "wallpaper.radar", True),
        "satellite_layer_enabled": config_value(config, "wallpaper.satellite", False),
    }
    overrides = {
        "style": args.style,
        "region_index": args.region,
        "auto_refresh_enabled": args.auto_refresh,
        "refresh_interval_seconds": args.interval,
        "radar_layer_enabled": args.radar,
        "satellite_layer_enabled": args.satellite,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings.model_validate(values)


def list_regions() -> None:
    for idx, preset in enumerate(REGIONS):
        print(f"{idx:>2}  {preset.name:<20} lat={preset.lat:>6.1f} lon={preset.lon:>7.1f} span={preset.span:.0f}")


def run(config: ConfigLookup, args: Namespace) -> int:
    settings = initial_settings(config, args)
    orchestrator = GenerationOrchestrator(settings, config=config)
    logger.info(
        f"Weatherwall starting up: style={settings.style.value}, region={settings.region.name}, "
        f"radar={settings.radar_layer_enabled}, satellite={settings.satellite_layer_enabled}"
    )

    if args.once:
        orchestrator.request_refresh()
        orchestrator.wait_until_idle()
        orchestrator.shutdown()
        return 0 if orchestrator.current_wallpaper_path else 1

    stop = threading.Event()

    def _handle_signal(signum, _frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    orchestrator.start(refresh=True)
    try:
        while not stop.wait(timeout=1.0):
            pass
    finally:
        orchestrator.shutdown(wait=False)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    # Load environment variables
    load_dotenv('.env')
    config = iConfig()
    setup_logging(config)

    # Get the command line arguments
    args = get_args(argv)

    if args.list_regions:
        list_regions()
        return 0

    return run(config, args)


# Main
if __name__ == '__main__':
    sys.exit(main())
