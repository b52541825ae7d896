#!/usr/bin/python3 -B
import argparse
from typing import Optional, Sequence

from dhscripts.commands.context import (
    DhCommandContext,
    new_dh_argument_parser,
    parse_dh_args,
    run_dh_command,
)
from dhscripts.fixperms import fix_permissions
from dhscripts.packages import BinaryPackage
from dhscripts.util import _info


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = new_dh_argument_parser(
        """\
    Normalize ownership and permissions in package build directories.

    Everything becomes owned by root (when run as root), loses setuid/setgid
    bits and gets the permissions policy expects for its location (such as
    0644 for documentation and 0755 for programs in bin directories).
    """
    )
    return parse_dh_args(parser, argv)


def fixperms(context: DhCommandContext) -> None:
    is_excluded = context.is_excluded if context.has_exclusions else None

    def _worker(binary_package: BinaryPackage) -> int:
        package_root = context.package_root(binary_package)
        changed = fix_permissions(
            package_root,
            binary_package.name,
            is_excluded=is_excluded,
        )
        if changed:
            _info(f"Normalized the permissions of {changed} path(s) in {package_root}")
        return changed

    context.for_each_package(_worker)


def main(argv: Optional[Sequence[str]] = None) -> None:
    run_dh_command(parse_args, fixperms, argv)


if __name__ == "__main__":
    main()
