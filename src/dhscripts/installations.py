import dataclasses
import os
import shutil
from typing import Iterable, List, Optional, Sequence, Tuple

from dhscripts.dh.debhelper_emulation import (
    DHConfigFileLine,
    ExcludePredicate,
    dhe_glob_expand,
)
from dhscripts.exceptions import MissingInstallSourcesError
from dhscripts.util import ensure_dir, run_command

DEFAULT_SOURCE_DIR = "debian/tmp"


@dataclasses.dataclass(slots=True, frozen=True)
class InstallRequest:
    """One `src... [dest]` request from debian/<pkg>.install or the command line

    A request without dest_dir installs each match at the directory it has
    relative to the search directory it was found in.
    """

    sources: Sequence[str]
    dest_dir: Optional[str]
    definition_source: str

    @classmethod
    def from_config_line(
        cls,
        line: DHConfigFileLine,
        *,
        autodest: bool = False,
    ) -> "InstallRequest":
        return cls.from_tokens(
            line.tokens,
            f"{line.config_file}:{line.line_no}",
            autodest=autodest,
        )

    @classmethod
    def from_tokens(
        cls,
        tokens: Sequence[str],
        definition_source: str,
        *,
        autodest: bool = False,
    ) -> "InstallRequest":
        if autodest or len(tokens) == 1:
            return cls(tuple(tokens), None, definition_source)
        return cls(tuple(tokens[:-1]), tokens[-1], definition_source)


@dataclasses.dataclass(slots=True, frozen=True)
class InstallMatch:
    source: str
    dest_dir: str
    request: InstallRequest


def search_dirs_for(source_dir: Optional[str]) -> Tuple[str, ...]:
    """The directories patterns are resolved against (in order)

    >>> search_dirs_for(None)
    ('.', 'debian/tmp')
    >>> search_dirs_for("build/staging")
    ('build/staging', 'debian/tmp')
    >>> search_dirs_for("debian/tmp")
    ('debian/tmp',)
    """
    primary = source_dir.rstrip("/") if source_dir else "."
    if primary == DEFAULT_SOURCE_DIR:
        return (primary,)
    return primary, DEFAULT_SOURCE_DIR


def _auto_dest_dir(source: str, search_dirs: Sequence[str]) -> str:
    source = os.path.normpath(source)
    for search_dir in search_dirs:
        if search_dir == ".":
            continue
        prefix = os.path.normpath(search_dir) + "/"
        if source.startswith(prefix):
            source = source[len(prefix) :]
            break
    return os.path.dirname(source)


def resolve_install_requests(
    requests: Iterable[InstallRequest],
    search_dirs: Sequence[str],
) -> List[InstallMatch]:
    """Expand the patterns of all requests

    Every pattern is checked before anything is reported, so all missing
    sources are listed in one go.
    """
    matches = []
    all_missing = []
    for request in requests:
        for pattern in request.sources:
            found, missing = dhe_glob_expand([pattern], search_dirs)
            if missing:
                all_missing.append(f"{pattern} ({request.definition_source})")
                continue
            for source in found:
                if request.dest_dir is None:
                    dest_dir = _auto_dest_dir(source, search_dirs)
                else:
                    dest_dir = request.dest_dir.strip("/")
                matches.append(InstallMatch(source, dest_dir, request))
    if all_missing:
        searched = ", ".join(search_dirs)
        raise MissingInstallSourcesError(
            f"Missing files for installation (searched in: {searched}): "
            + "; ".join(all_missing),
            all_missing,
        )
    return matches


def _copy_entry(source: str, dest: str) -> None:
    # Replace an existing file or link like `cp -a` does
    if os.path.islink(dest) or (os.path.lexists(dest) and not os.path.isdir(dest)):
        os.unlink(dest)
    shutil.copy2(source, dest, follow_symlinks=False)


def _copy_excluding(
    source: str,
    dest: str,
    is_excluded: ExcludePredicate,
) -> None:
    if os.path.islink(source) or not os.path.isdir(source):
        _copy_entry(source, dest)
        return
    ensure_dir(dest)
    for dirpath, dirnames, filenames in os.walk(source):
        rel_dir = os.path.relpath(dirpath, source)
        dest_dir = dest if rel_dir == "." else os.path.join(dest, rel_dir)
        kept_dirs = []
        for name in sorted(dirnames):
            path = os.path.join(dirpath, name)
            if is_excluded(path):
                continue
            if os.path.islink(path):
                # os.walk will not descend into it, so copy the link itself
                _copy_entry(path, os.path.join(dest_dir, name))
                continue
            ensure_dir(os.path.join(dest_dir, name))
            kept_dirs.append(name)
        dirnames[:] = kept_dirs
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            if is_excluded(path):
                continue
            _copy_entry(path, os.path.join(dest_dir, name))
        shutil.copystat(dirpath, dest_dir)


def install_match(
    match: InstallMatch,
    package_root: str,
    *,
    is_excluded: Optional[ExcludePredicate] = None,
) -> Optional[str]:
    """Copy one match into the package

    :return: The installed path or None if the match was excluded.
    """
    if is_excluded is not None and is_excluded(match.source):
        return None
    dest_dir = os.path.join(package_root, match.dest_dir)
    dest = os.path.join(dest_dir, os.path.basename(os.path.normpath(match.source)))
    ensure_dir(dest_dir)
    if is_excluded is None:
        run_command(["cp", "--reflink=auto", "-a", match.source, dest_dir + "/"])
    else:
        _copy_excluding(match.source, dest, is_excluded)
    return dest


def install_into_package(
    requests: Sequence[InstallRequest],
    package_root: str,
    *,
    source_dir: Optional[str] = None,
    is_excluded: Optional[ExcludePredicate] = None,
) -> List[str]:
    """Resolve and install all requests into package_root

    :return: The sources that were installed (for the installed-by-dh_install log)
    """
    matches = resolve_install_requests(requests, search_dirs_for(source_dir))
    installed = []
    for match in matches:
        if install_match(match, package_root, is_excluded=is_excluded) is not None:
            installed.append(match.source)
    return installed
