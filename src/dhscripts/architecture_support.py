import os
import subprocess
from typing import Dict, Optional, Iterator, Tuple


class DpkgArchitectureBuildProcessValuesTable:
    """Dict-like interface to dpkg-architecture values"""

    def __init__(self, *, mocked_answers: Optional[Dict[str, str]] = None) -> None:
        """Create a new dpkg-architecture table; NO INSTANTIATION

        Use dpkg_architecture_table() for the production instance and
        mocked_arch_table(...) in tests.
        """
        if mocked_answers is None:
            self._architecture_cache: Dict[str, str] = {}
            self._respect_environ = True
            self._has_run_dpkg_architecture = False
        else:
            self._architecture_cache = mocked_answers
            self._respect_environ = False
            self._has_run_dpkg_architecture = True

    def __contains__(self, item: str) -> bool:
        try:
            self[item]
        except KeyError:
            return False
        else:
            return True

    def __getitem__(self, item: str) -> str:
        if item not in self._architecture_cache:
            if self._respect_environ:
                value = os.environ.get(item)
                if value is not None:
                    self._architecture_cache[item] = value
                    return value
            if not self._has_run_dpkg_architecture:
                self._load_dpkg_architecture_values()
        return self._architecture_cache[item]

    @property
    def current_host_arch(self) -> str:
        """The architecture we are building for"""
        return self["DEB_HOST_ARCH"]

    def _load_dpkg_architecture_values(self) -> None:
        env = dict(os.environ)
        env["DPKG_NLS"] = "0"
        kw_pairs = _parse_dpkg_arch_output(
            subprocess.check_output(
                ["dpkg-architecture"],
                env=env,
            )
        )
        for k, v in kw_pairs:
            self._architecture_cache[k] = os.environ.get(k, v)
        self._has_run_dpkg_architecture = True


def _parse_dpkg_arch_output(output: bytes) -> Iterator[Tuple[str, str]]:
    text = output.decode("utf-8")
    for line in text.splitlines():
        k, v = line.strip().split("=", 1)
        yield k, v


def mocked_arch_table(
    host_arch: str,
    *,
    build_arch: Optional[str] = None,
) -> DpkgArchitectureBuildProcessValuesTable:
    """Creates a mocked table that only knows the architecture names

    :param host_arch: The value of DEB_HOST_ARCH
    :param build_arch: The value of DEB_BUILD_ARCH (defaults to host_arch)
    """
    if build_arch is None:
        build_arch = host_arch
    return DpkgArchitectureBuildProcessValuesTable(
        mocked_answers={
            "DEB_HOST_ARCH": host_arch,
            "DEB_BUILD_ARCH": build_arch,
        }
    )


_ARCH_TABLE = DpkgArchitectureBuildProcessValuesTable()


def dpkg_architecture_table() -> DpkgArchitectureBuildProcessValuesTable:
    return _ARCH_TABLE
