import argparse
import functools
import logging
import os
import subprocess
import textwrap
from typing import (
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from argcomplete import autocomplete

from dhscripts.architecture_support import (
    DpkgArchitectureBuildProcessValuesTable,
    dpkg_architecture_table,
)
from dhscripts.dh.debhelper_emulation import (
    ExcludePredicate,
    dhe_pkgfile,
    exclude_predicate,
)
from dhscripts.dh.dh_assistant import resolve_compat_level
from dhscripts.environment import DhBuildEnvironment
from dhscripts.exceptions import DhRuntimeError, PackageSelectionError
from dhscripts.packages import (
    BinaryPackage,
    DctrlParser,
    SourcePackage,
    packages_to_act_on,
)
from dhscripts.util import (
    ColorizedArgumentParser,
    _error,
    change_log_level,
    enable_command_echo,
    escape_shell,
    on_items_in_parallel,
    program_name,
    setup_logging,
)
from dhscripts.version import __version__

R = TypeVar("R")


def new_dh_argument_parser(description: str) -> ColorizedArgumentParser:
    parser = ColorizedArgumentParser(
        description=textwrap.dedent(description),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        prog=program_name(),
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-p",
        "--package",
        dest="packages",
        action="append",
        default=[],
        metavar="PACKAGE",
        help="Act on the named package (can be repeated)",
    )
    parser.add_argument(
        "-N",
        "--no-package",
        dest="excluded_packages",
        action="append",
        default=[],
        metavar="PACKAGE",
        help="Do not act on the named package (can be repeated)",
    )
    parser.add_argument(
        "-a",
        "--arch",
        "-s",
        "--same-arch",
        dest="select_arch_any",
        action="store_true",
        default=False,
        help="Act on all architecture dependent packages",
    )
    parser.add_argument(
        "-i",
        "--indep",
        dest="select_arch_all",
        action="store_true",
        default=False,
        help="Act on all architecture independent packages",
    )
    parser.add_argument(
        "-P",
        "--tmpdir",
        dest="tmpdir",
        default=None,
        metavar="TMPDIR",
        help="Use TMPDIR as package build directory (only valid with a single package)",
    )
    parser.add_argument(
        "-X",
        "--exclude",
        dest="exclude",
        action="append",
        default=[],
        metavar="ITEM",
        help="Exclude any path containing ITEM from processing",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        dest="verbose",
        action="store_true",
        default=False,
        help="Show the commands that modify the package build directory",
    )
    return parser


def parse_dh_args(
    parser: argparse.ArgumentParser,
    argv: Optional[Sequence[str]],
) -> argparse.Namespace:
    autocomplete(parser)
    return parser.parse_args(argv)


class DhCommandContext:
    def __init__(
        self,
        parsed_args: argparse.Namespace,
        *,
        debian_dir: str = "debian",
        build_env: Optional[DhBuildEnvironment] = None,
        dpkg_architecture_variables: Optional[
            DpkgArchitectureBuildProcessValuesTable
        ] = None,
    ) -> None:
        self.parsed_args = parsed_args
        self.debian_dir = debian_dir
        self.build_env = (
            build_env if build_env is not None else DhBuildEnvironment.instance()
        )
        self.dpkg_architecture_variables = (
            dpkg_architecture_variables
            if dpkg_architecture_variables is not None
            else dpkg_architecture_table()
        )

    @functools.cached_property
    def _parsed_control(self) -> Tuple[SourcePackage, Dict[str, BinaryPackage]]:
        parser = DctrlParser(
            frozenset(self.parsed_args.packages),
            frozenset(self.parsed_args.excluded_packages),
            self.parsed_args.select_arch_all,
            self.parsed_args.select_arch_any,
            dpkg_architecture_variables=self.dpkg_architecture_variables,
            build_env=self.build_env,
        )
        control_file = os.path.join(self.debian_dir, "control")
        try:
            with open(control_file, "rt", encoding="utf-8") as fd:
                return parser.parse_source_debian_control(fd)
        except FileNotFoundError:
            raise PackageSelectionError(
                f"Cannot find {control_file}. Are you in the correct directory?"
            ) from None

    @property
    def source_package(self) -> SourcePackage:
        return self._parsed_control[0]

    @property
    def binary_packages(self) -> Dict[str, BinaryPackage]:
        return self._parsed_control[1]

    @functools.cached_property
    def compat_level(self) -> int:
        return resolve_compat_level(
            self.source_package.fields,
            debian_dir=self.debian_dir,
            compat_override=self.build_env.compat_override,
        )

    @functools.cached_property
    def packages(self) -> List[BinaryPackage]:
        acted_on = packages_to_act_on(self.binary_packages)
        if self.parsed_args.tmpdir is not None and len(acted_on) > 1:
            names = ", ".join(p.name for p in acted_on)
            raise PackageSelectionError(
                f"-P/--tmpdir can only be used when acting on a single package (would act on: {names})"
            )
        return acted_on

    @functools.cached_property
    def is_excluded(self) -> ExcludePredicate:
        return exclude_predicate(self.parsed_args.exclude)

    @property
    def has_exclusions(self) -> bool:
        return bool(self.parsed_args.exclude)

    def package_root(self, binary_package: BinaryPackage) -> str:
        tmpdir = self.parsed_args.tmpdir
        if tmpdir is not None:
            return tmpdir
        return binary_package.default_tmpdir

    def package_file(
        self, binary_package: BinaryPackage, basename: str
    ) -> Optional[str]:
        return dhe_pkgfile(self.debian_dir, binary_package, basename)

    def is_first_package(self, binary_package: BinaryPackage) -> bool:
        return bool(self.packages) and self.packages[0] is binary_package

    def for_each_package(self, worker: Callable[[BinaryPackage], R]) -> List[R]:
        return on_items_in_parallel(
            self.packages,
            worker,
            max_workers=self.build_env.max_parallel_workers(),
        )


def run_dh_command(
    parse_args: Callable[[Optional[Sequence[str]]], argparse.Namespace],
    command: Callable[[DhCommandContext], None],
    argv: Optional[Sequence[str]] = None,
    *,
    context_factory: Callable[[argparse.Namespace], DhCommandContext] = DhCommandContext,
) -> None:
    is_arg_completing = "_ARGCOMPLETE" in os.environ
    if not is_arg_completing:
        setup_logging()
    parsed_args = parse_args(argv)
    if is_arg_completing:
        setup_logging()
    context = context_factory(parsed_args)
    if parsed_args.verbose or context.build_env.verbose:
        enable_command_echo()
    elif context.build_env.quiet:
        change_log_level(logging.WARNING)
    try:
        command(context)
    except DhRuntimeError as e:
        _error(e.message)
    except subprocess.CalledProcessError as e:
        cmd = escape_shell(*e.cmd) if isinstance(e.cmd, list) else str(e.cmd)
        _error(f"The command << {cmd} >> failed with exit code {e.returncode}")
