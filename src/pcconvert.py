"""pcconvert - packages.config to PackageReference converter

    Returns:
        int: Exit code
"""
import logging
import os
import signal
import sys
import threading

import yaml

from constants import ExitCodes, _load_yaml_config, apply_config
from common.logging_utils import add_file_handler, configure_logging, extra_context, is_debug_enabled
from args import parse_args
from converter import ConverterSettings, ProjectConverter

logger = logging.getLogger(__name__)


def confirm(repository_root, stream=None):
    """Ask before modifying files in place.

    Returns:
        bool: True when the user answered yes.
    """
    stream = stream or sys.stdin
    print(f"You are about to convert every packages.config project under \"{repository_root}\".")
    print("Files are modified in place; make sure they are under source control.")
    print("Continue? (Y/N) ", end="", flush=True)
    answer = stream.readline().strip().lower()
    return answer in ("y", "yes")


def load_config(args):
    """Load the config file and apply it onto Constants.

    Returns:
        bool: False when an explicitly requested config could not be loaded.
    """
    try:
        apply_config(_load_yaml_config(getattr(args, "CONFIG", None)))
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Unable to load config: %s", e)
        return False
    return True


def run(args, cancel_event=None):
    """Convert the repository described by parsed arguments.

    Returns:
        ExitCodes: Outcome of the run.
    """
    if not os.path.isdir(args.REPOSITORY):
        logger.error("Repository root \"%s\" does not exist", args.REPOSITORY)
        return ExitCodes.FILE_ERROR
    if not load_config(args):
        return ExitCodes.FILE_ERROR

    settings = ConverterSettings.from_args(args)
    if not args.YES and not confirm(settings.repository_root):
        logger.info("Conversion cancelled")
        return ExitCodes.CANCELLED

    converter = ProjectConverter(settings)
    succeeded = converter.convert_repository(cancel_event)
    if cancel_event is not None and cancel_event.is_set():
        return ExitCodes.CANCELLED
    return ExitCodes.SUCCESS if succeeded else ExitCodes.CONVERSION_ERROR


def main():
    """Main function of the program."""
    args = parse_args()
    configure_logging(args.LOG_LEVEL)
    if getattr(args, "LOG_FILE", None):
        add_file_handler(args.LOG_FILE)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action="main")
        )

    cancel_event = threading.Event()

    def _on_interrupt(signum, frame):  # pylint: disable=unused-argument
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logger.warning("Cancelling; projects already started will finish (press Ctrl+C again to abort)")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        code = run(args, cancel_event)
    except KeyboardInterrupt:
        logger.error("Aborted")
        code = ExitCodes.CANCELLED
    finally:
        signal.signal(signal.SIGINT, previous)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI finished",
            extra=extra_context(event="function_exit", component="cli", action="main", outcome=code.name)
        )
    sys.exit(code.value)


if __name__ == "__main__":
    main()
