#!/usr/bin/python3 -B
import argparse
from typing import List, Optional, Sequence

from dhscripts.commands.context import (
    DhCommandContext,
    new_dh_argument_parser,
    parse_dh_args,
    run_dh_command,
)
from dhscripts.dh.debhelper_emulation import dhe_filedoublearray, log_installed_files
from dhscripts.installations import (
    DEFAULT_SOURCE_DIR,
    InstallRequest,
    install_into_package,
)
from dhscripts.packages import BinaryPackage

TOOL_NAME = "dh_install"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = new_dh_argument_parser(
        """\
    Install files and directories into package build directories.

    Each line of debian/<package>.install lists one or more sources and
    (optionally) a destination directory as the last item. Without a
    destination, a source is installed at the directory it has relative to
    the source directory.
    """
    )
    parser.add_argument(
        "--sourcedir",
        dest="sourcedir",
        default=None,
        help=f"Look for sources in this directory (default: the current directory"
        f" with {DEFAULT_SOURCE_DIR} as fallback)",
    )
    parser.add_argument(
        "--autodest",
        dest="autodest",
        action="store_true",
        default=False,
        help="Treat the last item of each line as a source rather than the destination",
    )
    parser.add_argument(
        "items",
        nargs="*",
        metavar="file-or-dir",
        help="Sources (followed by a destination) to install into the first package acted on",
    )
    return parse_dh_args(parser, argv)


def _requests_for_package(
    context: DhCommandContext,
    binary_package: BinaryPackage,
    compat_level: int,
) -> List[InstallRequest]:
    autodest = context.parsed_args.autodest
    requests = []
    install_file = context.package_file(binary_package, "install")
    if install_file is not None:
        requests.extend(
            InstallRequest.from_config_line(line, autodest=autodest)
            for line in dhe_filedoublearray(
                install_file, compat_level=compat_level
            )
        )
    items = context.parsed_args.items
    if items and context.is_first_package(binary_package):
        requests.append(
            InstallRequest.from_tokens(items, "command line", autodest=autodest)
        )
    return requests


def install_files(context: DhCommandContext) -> None:
    # Resolved up front as it applies to all packages
    compat_level = context.compat_level
    is_excluded = context.is_excluded if context.has_exclusions else None

    def _worker(binary_package: BinaryPackage) -> List[str]:
        requests = _requests_for_package(context, binary_package, compat_level)
        installed = install_into_package(
            requests,
            context.package_root(binary_package),
            source_dir=context.parsed_args.sourcedir,
            is_excluded=is_excluded,
        )
        log_installed_files(context.debian_dir, binary_package, TOOL_NAME, installed)
        return installed

    context.for_each_package(_worker)


def main(argv: Optional[Sequence[str]] = None) -> None:
    run_dh_command(parse_args, install_files, argv)


if __name__ == "__main__":
    main()
