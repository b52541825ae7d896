import os
import re
from functools import lru_cache
from typing import (
    Dict,
    Union,
    Tuple,
    Optional,
    Set,
    cast,
    Mapping,
    FrozenSet,
    Iterable,
    List,
)

from debian.deb822 import Deb822
from debian.debian_support import DpkgArchTable

from .architecture_support import (
    DpkgArchitectureBuildProcessValuesTable,
    dpkg_architecture_table,
)
from .environment import DhBuildEnvironment
from .exceptions import PackageSelectionError

DEFAULT_PACKAGE_TYPE = "deb"
UDEB_PACKAGE_TYPE = "udeb"

_MANDATORY_BINARY_PACKAGE_FIELD = [
    "Package",
    "Architecture",
]
_PROFILE_GROUP_SPLIT = re.compile(r">\s+<")


@lru_cache(1)
def _load_arch_query_table() -> DpkgArchTable:
    return DpkgArchTable.load_arch_table()


def active_profiles_match(
    profiles_raw: str,
    active_build_profiles: Union[Set[str], FrozenSet[str]],
) -> bool:
    profiles_raw = profiles_raw.strip()
    if profiles_raw[0] != "<" or profiles_raw[-1] != ">" or profiles_raw == "<>":
        raise ValueError(
            'Invalid Build-Profiles: Must start start and end with "<" + ">" but cannot be a literal "<>"'
        )
    profile_groups = _PROFILE_GROUP_SPLIT.split(profiles_raw[1:-1])
    for profile_group_raw in profile_groups:
        should_process_package = True
        for profile_name in profile_group_raw.split():
            negation = False
            if profile_name[0] == "!":
                negation = True
                profile_name = profile_name[1:]

            matched_profile = profile_name in active_build_profiles
            if matched_profile == negation:
                should_process_package = False
                break

        if should_process_package:
            return True

    return False


def _check_binary_arch(
    host_arch: str,
    declared_arch: str,
    arch_table: Optional[DpkgArchTable] = None,
) -> bool:
    arch_wildcards = declared_arch.split()
    if "all" in arch_wildcards or "any" in arch_wildcards:
        return True
    if host_arch in arch_wildcards:
        return True
    if not any("any" in w for w in arch_wildcards):
        # Only concrete architecture names, which match by equality
        return False
    if arch_table is None:
        arch_table = _load_arch_query_table()
    return any(
        arch_table.matches_architecture(host_arch, arch_wildcard)
        for arch_wildcard in arch_wildcards
    )


class BinaryPackage:
    __slots__ = [
        "_package_fields",
        "_should_be_acted_on",
        "_dpkg_architecture_variables",
        "_is_main_package",
    ]

    def __init__(
        self,
        fields: Mapping[str, str],
        dpkg_architecture_variables: DpkgArchitectureBuildProcessValuesTable,
        *,
        is_main_package: bool = False,
        should_be_acted_on: bool = True,
    ) -> None:
        self._package_fields = fields
        self._should_be_acted_on = should_be_acted_on
        self._dpkg_architecture_variables = dpkg_architecture_variables
        self._is_main_package = is_main_package

    def __repr__(self) -> str:
        return f"<BinaryPackage {self.name} ({self.declared_architecture})>"

    @property
    def name(self) -> str:
        return self.fields["Package"]

    @property
    def fields(self) -> Mapping[str, str]:
        return self._package_fields

    @property
    def should_be_acted_on(self) -> bool:
        return self._should_be_acted_on

    @property
    def declared_architecture(self) -> str:
        return self.fields["Architecture"]

    @property
    def is_arch_all(self) -> bool:
        return self.declared_architecture == "all"

    @property
    def resolved_architecture(self) -> str:
        if self.is_arch_all:
            return "all"
        return self._dpkg_architecture_variables.current_host_arch

    @property
    def package_type(self) -> str:
        """Short for Package-Type (with proper default if absent)"""
        v = self.fields.get("Package-Type")
        if v is None:
            return DEFAULT_PACKAGE_TYPE
        return v

    @property
    def is_udeb(self) -> bool:
        return self.package_type == UDEB_PACKAGE_TYPE

    @property
    def is_main_package(self) -> bool:
        return self._is_main_package

    @property
    def default_tmpdir(self) -> str:
        return os.path.join("debian", self.name)


class SourcePackage:
    __slots__ = ("_package_fields",)

    def __init__(self, fields: Mapping[str, str]) -> None:
        self._package_fields = fields

    @property
    def fields(self) -> Mapping[str, str]:
        return self._package_fields

    @property
    def name(self) -> str:
        return self._package_fields["Source"]


class DctrlParser:
    def __init__(
        self,
        selected_packages: Union[Set[str], FrozenSet[str]],
        excluded_packages: Union[Set[str], FrozenSet[str]],
        select_arch_all: bool,
        select_arch_any: bool,
        dpkg_architecture_variables: Optional[
            DpkgArchitectureBuildProcessValuesTable
        ] = None,
        build_env: Optional[DhBuildEnvironment] = None,
        dpkg_arch_query_table: Optional[DpkgArchTable] = None,
    ) -> None:
        if dpkg_architecture_variables is None:
            dpkg_architecture_variables = dpkg_architecture_table()
        if build_env is None:
            build_env = DhBuildEnvironment.instance()

        # If no selection option is set, then all packages are acted on (except the
        # excluded ones)
        if not selected_packages and not select_arch_all and not select_arch_any:
            select_arch_all = True
            select_arch_any = True

        self.selected_packages = frozenset(selected_packages)
        self.excluded_packages = frozenset(excluded_packages)
        self.select_arch_all = select_arch_all
        self.select_arch_any = select_arch_any
        self.dpkg_architecture_variables = dpkg_architecture_variables
        self.build_env = build_env
        self.dpkg_arch_query_table = dpkg_arch_query_table

    def parse_source_debian_control(
        self,
        debian_control_lines: Iterable[str],
    ) -> Tuple[SourcePackage, Dict[str, BinaryPackage]]:
        paragraphs = list(Deb822.iter_paragraphs(debian_control_lines))
        if len(paragraphs) < 2:
            raise PackageSelectionError(
                "debian/control must contain at least two stanza (1 Source + 1-N Package stanza)"
            )
        source_package = SourcePackage(paragraphs[0])
        bin_pkgs = [
            self._create_binary_package(p, i)
            for i, p in enumerate(paragraphs[1:], 1)
        ]
        bin_pkgs_table = {p.name: p for p in bin_pkgs}

        for option_name, names in (
            ("-p", self.selected_packages),
            ("-N", self.excluded_packages),
        ):
            unknown = names - bin_pkgs_table.keys()
            if unknown:
                raise PackageSelectionError(
                    f"The following packages passed via {option_name} are not listed in debian/control:"
                    f" {', '.join(sorted(unknown))}"
                )

        return source_package, bin_pkgs_table

    def _create_binary_package(
        self,
        paragraph: Mapping[str, str],
        paragraph_index: int,
    ) -> BinaryPackage:
        for mandatory_field in _MANDATORY_BINARY_PACKAGE_FIELD:
            if mandatory_field not in paragraph:
                raise PackageSelectionError(
                    f'Missing mandatory field "{mandatory_field}" in stanza number {paragraph_index}'
                    " of debian/control"
                )
        package_name = paragraph["Package"]
        architecture = paragraph["Architecture"]

        if package_name in self.excluded_packages:
            should_act_on = False
        elif package_name in self.selected_packages:
            should_act_on = True
        elif architecture == "all":
            should_act_on = self.select_arch_all
        else:
            should_act_on = self.select_arch_any

        if should_act_on and architecture != "all":
            should_act_on = _check_binary_arch(
                self.dpkg_architecture_variables.current_host_arch,
                architecture,
                self.dpkg_arch_query_table,
            )

        profiles_raw = paragraph.get("Build-Profiles", "").strip()
        if should_act_on and profiles_raw:
            try:
                should_act_on = active_profiles_match(
                    profiles_raw, self.build_env.deb_build_profiles
                )
            except ValueError as e:
                raise PackageSelectionError(
                    f"Invalid Build-Profiles field for {package_name}: {e.args[0]}"
                ) from e

        return BinaryPackage(
            cast("Mapping[str, str]", paragraph),
            self.dpkg_architecture_variables,
            should_be_acted_on=should_act_on,
            is_main_package=paragraph_index == 1,
        )


def packages_to_act_on(
    binary_packages: Mapping[str, BinaryPackage],
) -> List[BinaryPackage]:
    return [p for p in binary_packages.values() if p.should_be_acted_on]
