"""Argument parsing functionality for pcconvert."""

import argparse


def build_parser():
    """Builds the argument parser for the program."""
    parser = argparse.ArgumentParser(
        prog="pcconvert",
        description=(
            "pcconvert - Convert packages.config projects to PackageReference"
        ),
        add_help=True,
    )

    parser.add_argument("-r", "--repository",
                        dest="REPOSITORY",
                        help="Full path to the repository root to convert",
                        action="store",
                        type=str,
                        required=True)
    parser.add_argument("-i", "--include",
                        dest="INCLUDE",
                        help="Regex for project files to include",
                        action="store",
                        type=str)
    parser.add_argument("-e", "--exclude",
                        dest="EXCLUDE",
                        help="Regex for project files to exclude",
                        action="store",
                        type=str)
    parser.add_argument("-t", "--trim",
                        dest="TRIM",
                        help="Trim packages to only top-level dependencies",
                        action="store_true")
    parser.add_argument("-f", "--default-target-framework",
                        dest="DEFAULT_TARGET_FRAMEWORK",
                        help="Target framework used when packages.config does not declare one",
                        action="store",
                        type=str)
    parser.add_argument("-y", "--yes",
                        dest="YES",
                        help="Suppress the confirmation prompt",
                        action="store_true")
    parser.add_argument("-j", "--jobs",
                        dest="JOBS",
                        help="Number of projects converted in parallel",
                        action="store",
                        type=int)
    parser.add_argument("--offline",
                        dest="OFFLINE",
                        help="Do not query nuget.org for package metadata missing on disk",
                        action="store_true")
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to configuration file (YAML, YML, or JSON)",
                        action="store",
                        type=str)
    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    args = build_parser().parse_args(argv)
    if args.JOBS is not None and args.JOBS < 1:
        build_parser().error("--jobs must be at least 1")
    return args
