import argparse
from pathlib import Path

from loguru import logger

from rpi_ab_updater import __version__
from rpi_ab_updater.config import settings
from rpi_ab_updater.logging import LoggerFactory, setup_logging
from rpi_ab_updater.preflight import require_commands, require_root, validate_image
from rpi_ab_updater.storage.exceptions import UpdateError
from rpi_ab_updater.updater import UpdateOptions, update_inactive_partitions


def build_parser():
    parser = argparse.ArgumentParser(
        prog="rpi-ab-updater",
        description="Update the inactive A/B partition set from a compressed OS image",
    )
    parser.add_argument("image", type=Path, help="Compressed OS image (.img.gz)")
    parser.add_argument(
        "-d", "--debug", action="store_true", help="Enable verbose debug output"
    )
    parser.add_argument(
        "--trace", action="store_true", help="Also log every dd progress line"
    )
    parser.add_argument("--log-dir", type=Path, help="Directory for log files")
    parser.add_argument("--settings", type=Path, help="Settings JSON file")
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


@logger.catch(reraise=True)
def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    if args.settings:
        settings.load_settings(args.settings)

    try:
        require_root()
        require_commands(settings.get_setting("required_commands", []))
        validate_image(args.image, allow_raw=settings.get_bool("allow_raw_images"))
        options = UpdateOptions.from_settings()
        update_inactive_partitions(args.image, options)
    except UpdateError as error:
        log.error(f"Error: {error}")
        return 1
    except (KeyError, ValueError) as error:
        log.error(f"Error: invalid settings: {error}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
