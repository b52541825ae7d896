import os
from functools import lru_cache

from typing import FrozenSet, Optional, Mapping, Dict


def _parse_deb_build_options(value: str) -> Mapping[str, Optional[str]]:
    res: Dict[str, Optional[str]] = {}
    for kvish in value.split():
        if "=" in kvish:
            key, value = kvish.split("=", 1)
            res[key] = value
        else:
            res[kvish] = None
    return res


def _is_enabled(value: Optional[str]) -> bool:
    return value is not None and value not in ("", "0")


class DhBuildEnvironment:
    """Accessor to the environment variables the helpers react to

    >>> env = DhBuildEnvironment(environ={'DEB_BUILD_PROFILES': 'noudeb nodoc'})
    >>> sorted(env.deb_build_profiles)
    ['nodoc', 'noudeb']
    >>> env.verbose
    False
    >>> DhBuildEnvironment(environ={'DH_VERBOSE': '1'}).verbose
    True
    """

    def __init__(self, *, environ: Optional[Mapping[str, str]] = None) -> None:
        """Provide a view of the environment

        :param environ: Alternative to os.environ. Mostly useful for testing purposes
        """
        if environ is None:
            environ = os.environ
        self._environ = environ
        self._deb_build_profiles = frozenset(
            environ.get("DEB_BUILD_PROFILES", "").split()
        )
        self._deb_build_options = _parse_deb_build_options(
            environ.get("DEB_BUILD_OPTIONS", "")
        )

    @staticmethod
    @lru_cache(1)
    def instance() -> "DhBuildEnvironment":
        return DhBuildEnvironment()

    @property
    def deb_build_profiles(self) -> FrozenSet[str]:
        return self._deb_build_profiles

    @property
    def deb_build_options(self) -> Mapping[str, Optional[str]]:
        """Parsed DEB_BUILD_OPTIONS

        >>> env = DhBuildEnvironment(environ={'DEB_BUILD_OPTIONS': 'nostrip parallel=4'})
        >>> env.deb_build_options['nostrip'] is None
        True
        >>> env.deb_build_options['parallel']
        '4'
        """
        return self._deb_build_options

    @property
    def verbose(self) -> bool:
        return _is_enabled(self._environ.get("DH_VERBOSE"))

    @property
    def quiet(self) -> bool:
        return _is_enabled(self._environ.get("DH_QUIET"))

    @property
    def compat_override(self) -> Optional[str]:
        value = self._environ.get("DH_COMPAT")
        return value if value else None

    @property
    def nodoc(self) -> bool:
        return (
            "nodoc" in self._deb_build_options or "nodoc" in self._deb_build_profiles
        )

    @property
    def parallel(self) -> Optional[int]:
        """The requested degree of parallelism (None if not requested)

        >>> DhBuildEnvironment(environ={'DEB_BUILD_OPTIONS': 'parallel=3'}).parallel
        3
        >>> DhBuildEnvironment(environ={'DEB_BUILD_OPTIONS': 'parallel=bogus'}).parallel is None
        True
        >>> DhBuildEnvironment(environ={}).parallel is None
        True
        """
        raw = self._deb_build_options.get("parallel")
        if raw is None:
            return None
        try:
            value = int(raw)
        except ValueError:
            return None
        return value if value > 0 else None

    def max_parallel_workers(self) -> int:
        cpu_count = os.cpu_count() or 1
        requested = self.parallel
        if requested is None:
            return cpu_count
        return max(1, min(requested, cpu_count))
