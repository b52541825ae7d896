import dataclasses
import os.path
import subprocess
from typing import (
    Optional,
    Callable,
    Iterable,
    Tuple,
    Sequence,
    List,
)

from dhscripts.exceptions import DhConfigFileError
from dhscripts.packages import BinaryPackage
from dhscripts.util import ensure_dir, expand_glob, escape_shell

ExcludePredicate = Callable[[str], bool]

# Executable config files are run rather than read from this compat level onwards
_EXECUTABLE_CONFIG_COMPAT_LEVEL = 9


@dataclasses.dataclass(slots=True, frozen=True)
class DHConfigFileLine:
    config_file: str
    line_no: int
    executable_config: bool
    original_line: str
    tokens: Sequence[str]


def _config_file_content(config_file: str, compat_level: int) -> Tuple[bool, str]:
    is_executable = os.access(config_file, os.X_OK)
    if is_executable and compat_level >= _EXECUTABLE_CONFIG_COMPAT_LEVEL:
        try:
            output = subprocess.check_output(
                [os.path.abspath(config_file)],
                stdin=subprocess.DEVNULL,
            )
        except (subprocess.CalledProcessError, OSError) as e:
            raise DhConfigFileError(
                f"Execution of {escape_shell(config_file)} failed: {e}",
                config_file,
            ) from e
        return True, output.decode("utf-8")
    try:
        with open(config_file, "rt", encoding="utf-8") as fd:
            return False, fd.read()
    except (OSError, UnicodeDecodeError) as e:
        raise DhConfigFileError(
            f"Cannot read {config_file}: {e}",
            config_file,
        ) from e


def dhe_filedoublearray(
    config_file: str,
    *,
    compat_level: int,
) -> Iterable[DHConfigFileLine]:
    is_executable, content = _config_file_content(config_file, compat_level)
    for line_no, orig_line in enumerate(content.splitlines(), start=1):
        line = orig_line.strip()
        if not line or line.startswith("#"):
            continue
        yield DHConfigFileLine(
            config_file,
            line_no,
            is_executable,
            orig_line,
            tuple(line.split()),
        )


def dhe_filearray(config_file: str, *, compat_level: int) -> List[str]:
    return [
        token
        for line in dhe_filedoublearray(config_file, compat_level=compat_level)
        for token in line.tokens
    ]


def dhe_pkgfile(
    debian_dir: str,
    binary_package: BinaryPackage,
    basename: str,
) -> Optional[str]:
    arch = binary_package.resolved_architecture
    possible_names = [
        f"{binary_package.name}.{basename}.{arch}",
        f"{binary_package.name}.{basename}",
    ]
    if binary_package.is_main_package:
        possible_names.append(f"{basename}.{arch}")
        possible_names.append(basename)

    for name in possible_names:
        candidate = os.path.join(debian_dir, name)
        if os.path.isfile(candidate):
            return candidate
    return None


def exclude_predicate(patterns: Sequence[str]) -> ExcludePredicate:
    """Build the -X/--exclude filter

    A path is excluded if any of the patterns occurs anywhere in it.

    >>> is_excluded = exclude_predicate([".orig", "CVS"])
    >>> is_excluded("usr/share/doc/foo/README.orig")
    True
    >>> is_excluded("usr/share/doc/foo/README")
    False
    >>> exclude_predicate([])("anything")
    False
    """
    exclusions = tuple(p for p in patterns if p)
    if not exclusions:
        return lambda _path: False

    def _is_excluded(path: str) -> bool:
        return any(e in path for e in exclusions)

    return _is_excluded


def dhe_glob_expand(
    patterns: Iterable[str],
    search_dirs: Sequence[str] = (".",),
) -> Tuple[List[str], List[str]]:
    """Expand patterns in the first search directory that has a match

    The search directory "." denotes the current directory (patterns are used as-is).
    Absolute patterns are never looked up in the search directories.

    :return: A tuple of all matches (in pattern order) and the patterns that did not
      match anything.
    """
    matches: List[str] = []
    missing: List[str] = []
    for pattern in patterns:
        if os.path.isabs(pattern):
            found = expand_glob(pattern)
        else:
            found = []
            for search_dir in search_dirs:
                if search_dir == ".":
                    found = expand_glob(pattern)
                else:
                    found = expand_glob(os.path.join(search_dir, pattern))
                if found:
                    break
        if found:
            matches.extend(found)
        else:
            missing.append(pattern)
    return matches, missing


def installed_files_log(
    debian_dir: str,
    binary_package: BinaryPackage,
    tool: str,
) -> str:
    return os.path.join(
        debian_dir,
        ".debhelper",
        "generated",
        binary_package.name,
        f"installed-by-{tool}",
    )


def log_installed_files(
    debian_dir: str,
    binary_package: BinaryPackage,
    tool: str,
    paths: Iterable[str],
) -> None:
    log_file = installed_files_log(debian_dir, binary_package, tool)
    ensure_dir(os.path.dirname(log_file))
    with open(log_file, "wt", encoding="utf-8") as fd:
        for path in paths:
            fd.write(f"{path}\n")
