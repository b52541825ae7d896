#!/usr/bin/python3 -B
import argparse
from typing import List, Optional, Sequence

from dhscripts.commands.context import (
    DhCommandContext,
    new_dh_argument_parser,
    parse_dh_args,
    run_dh_command,
)
from dhscripts.dh.debhelper_emulation import (
    dhe_filearray,
    dhe_glob_expand,
    log_installed_files,
)
from dhscripts.exceptions import ManPageReadError
from dhscripts.installations import DEFAULT_SOURCE_DIR
from dhscripts.manpages import ManPageInstaller, has_man_recode
from dhscripts.packages import BinaryPackage
from dhscripts.util import _info

TOOL_NAME = "dh_installman"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = new_dh_argument_parser(
        """\
    Install man pages into package build directories.

    The section is read from the .TH/.Dt line of the page (falling back to the
    file name) and translated pages are placed in the directory for their
    language. Pages consisting of only a ".so" redirect are turned into
    symlinks and all pages are re-encoded as UTF-8 when man-recode is available.
    """
    )
    parser.add_argument(
        "--language",
        dest="language",
        default=None,
        help='Install all pages as being in this language ("C" means untranslated)',
    )
    parser.add_argument(
        "--sourcedir",
        dest="sourcedir",
        default=None,
        help=f"Look for pages in this directory when not found relative to the current"
        f" directory (default: {DEFAULT_SOURCE_DIR})",
    )
    parser.add_argument(
        "manpages",
        nargs="*",
        metavar="manpage",
        help="Additional pages to install into the first package acted on",
    )
    return parse_dh_args(parser, argv)


def _manpages_for_package(
    context: DhCommandContext,
    binary_package: BinaryPackage,
) -> List[str]:
    patterns = []
    manpages_file = context.package_file(binary_package, "manpages")
    if manpages_file is not None:
        patterns.extend(
            dhe_filearray(manpages_file, compat_level=context.compat_level)
        )
    if context.is_first_package(binary_package):
        patterns.extend(context.parsed_args.manpages)
    sourcedir = context.parsed_args.sourcedir or DEFAULT_SOURCE_DIR
    pages, missing = dhe_glob_expand(patterns, (".", sourcedir))
    if missing:
        raise ManPageReadError(
            f"Cannot find (any matches for) {', '.join(missing)} (tried in ., {sourcedir})"
            f" for {binary_package.name}",
            missing[0],
        )
    return [p for p in pages if not context.is_excluded(p)]


def install_manpages(context: DhCommandContext) -> None:
    if context.build_env.nodoc:
        _info("Not installing man pages as requested by nodoc")
        return
    # Resolved up front as they apply to all packages
    compat_level = context.compat_level
    recode = has_man_recode()

    def _worker(binary_package: BinaryPackage) -> List[str]:
        if binary_package.is_udeb:
            return []
        pages = _manpages_for_package(context, binary_package)
        installer = ManPageInstaller(
            context.package_root(binary_package),
            compat_level=compat_level,
            language_override=context.parsed_args.language,
            recode=recode,
        )
        considered = installer.run(pages)
        log_installed_files(context.debian_dir, binary_package, TOOL_NAME, considered)
        return considered

    context.for_each_package(_worker)


def main(argv: Optional[Sequence[str]] = None) -> None:
    run_dh_command(parse_args, install_manpages, argv)


if __name__ == "__main__":
    main()
