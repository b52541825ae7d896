import contextlib
import dataclasses
import functools
import gzip
import os
import re
import shutil
import subprocess
from typing import (
    IO,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from dhscripts.exceptions import (
    ManPageReadError,
    ManPageSectionError,
    ManRecodeError,
)
from dhscripts.util import (
    _info,
    _warn,
    ensure_dir,
    escape_shell,
    print_command,
    run_command,
    xargs,
)

_MAN_TH_LINE = re.compile(rb'^[.]TH\s+\S+\s+"?(\d+[^"\s]*)"?')
_MAN_DT_LINE = re.compile(rb"^[.]Dt\s+\S+\s+(\d+\S*)")
_MAN_SECTION_BASENAME = re.compile(r"^.*[.]([1-9]\S*)")
_MAN_REAL_SECTION = re.compile(r"^(\d+)")
_MAN_INST_BASENAME = re.compile(r"^(.*)[.]")
MAN_GUESS_LANG_FROM_PATH = re.compile(
    r"(?:^|/)man/([a-z][a-z](?:_[A-Z][A-Z])?)(?:\.[^/]+)?/man[1-9]/"
)
MAN_GUESS_LANG_FROM_BASENAME = re.compile(
    r"^.*[.]([a-z][a-z](?:_[A-Z][A-Z])?)[.](?:[1-9]|man)"
)
_SO_LINK_RE = re.compile(rb"^[.]so\s+(.*?)\s*$")

# Passing this as language pins the pages as untranslated
NO_TRANSLATION = "C"
COMPRESSED_SUFFIX = ".gz"
MAN_ROOT = "usr/share/man"
# ".so" redirects tend to be small, so larger files are not considered.
SO_LINK_SIZE_LIMIT = 1024
# Up to (and including) this compat level, existing pages are never overwritten
LEGACY_NO_OVERWRITE_COMPAT_LEVEL = 5
# From this compat level onwards, the language can be derived from the path
PATH_LANGUAGE_COMPAT_LEVEL = 11
_RECODE_SUFFIX = ".dh-new"


@dataclasses.dataclass(slots=True, frozen=True)
class SourcePage:
    path: str

    @property
    def is_compressed(self) -> bool:
        return self.path.endswith(COMPRESSED_SUFFIX)

    @property
    def basename(self) -> str:
        """The file name without any compression suffix"""
        name = os.path.basename(self.path)
        if self.is_compressed:
            return name[: -len(COMPRESSED_SUFFIX)]
        return name


@dataclasses.dataclass(slots=True, frozen=True)
class ResolvedDestination:
    source: SourcePage
    section: str
    real_section: int
    language: Optional[str]
    base_name: str

    @property
    def installed_name(self) -> str:
        return f"{self.base_name}.{self.section}"

    @property
    def relative_path(self) -> str:
        maybe_language = f"{self.language}/" if self.language is not None else ""
        return f"{MAN_ROOT}/{maybe_language}man{self.real_section}/{self.installed_name}"

    def dest_path(self, package_root: str) -> str:
        return os.path.join(package_root, self.relative_path)


@dataclasses.dataclass(slots=True, frozen=True)
class SoRedirect:
    path: str
    link_target: str


@contextlib.contextmanager
def _open_maybe_gzip(page: SourcePage) -> Iterator[Union[IO[bytes], gzip.GzipFile]]:
    if page.is_compressed:
        with gzip.GzipFile(page.path, "rb") as fd:
            yield fd
    else:
        with open(page.path, "rb") as fd:
            yield fd


def detect_section_from_content(page: SourcePage) -> Optional[str]:
    try:
        with _open_maybe_gzip(page) as fd:
            for line in fd:
                if not line.startswith((b".TH", b".Dt")):
                    continue
                m = _MAN_TH_LINE.match(line) or _MAN_DT_LINE.match(line)
                if m:
                    return m.group(1).decode("utf-8", errors="surrogateescape")
    except (OSError, EOFError) as e:
        raise ManPageReadError(f"Cannot read {page.path}: {e}", page.path) from e
    return None


def detect_section_from_filename(page: SourcePage) -> Optional[str]:
    m = _MAN_SECTION_BASENAME.match(page.basename)
    if m:
        return m.group(1)
    return None


def detect_section(page: SourcePage) -> Tuple[str, int]:
    """Determine the full section and the numeric section of a man page

    The header line (.TH or .Dt) wins over the file name.
    """
    section = detect_section_from_content(page)
    if section is None:
        section = detect_section_from_filename(page)
    real_section = None
    if section is not None:
        m = _MAN_REAL_SECTION.match(section)
        if m:
            real_section = int(m.group(1))
    if real_section is None or not 1 <= real_section <= 9:
        if real_section is not None:
            _warn(
                f"Computed section for {page.path} was {real_section} (section: {section}),"
                " which is not a valid section (must be between 1 and 9 incl.)"
            )
        raise ManPageSectionError(
            f"Could not determine section for {page.path}",
            page.path,
        )
    assert section is not None
    return section, real_section


def detect_language(
    page: SourcePage,
    language_override: Optional[str],
    *,
    path_aware: bool,
) -> Optional[str]:
    if language_override is not None:
        if language_override == NO_TRANSLATION:
            return None
        return language_override
    if path_aware:
        m = MAN_GUESS_LANG_FROM_PATH.search(page.path)
        if m:
            return m.group(1)
    m = MAN_GUESS_LANG_FROM_BASENAME.match(page.basename)
    if m:
        return m.group(1)
    return None


def resolve_destination(
    page: SourcePage,
    *,
    compat_level: int,
    language_override: Optional[str] = None,
) -> ResolvedDestination:
    section, real_section = detect_section(page)
    m = _MAN_INST_BASENAME.match(page.basename)
    base_name = m.group(1) if m else page.basename
    language = detect_language(
        page,
        language_override,
        path_aware=compat_level >= PATH_LANGUAGE_COMPAT_LEVEL,
    )
    if language is not None:
        lang_suffix = f".{language}"
        if base_name.endswith(lang_suffix):
            base_name = base_name[: -len(lang_suffix)]
    return ResolvedDestination(
        page,
        section,
        real_section,
        language,
        base_name,
    )


def _detect_so_link(path: str) -> Optional[str]:
    with open(path, "rb") as fd:
        first_line = fd.readline()
    m = _SO_LINK_RE.match(first_line)
    if m and m.group(1):
        return m.group(1).decode("utf-8", errors="surrogateescape")
    return None


def _adjust_so_link_target(directory: str, so_link_target: str) -> str:
    if os.path.basename(directory) == os.path.dirname(so_link_target):
        # Avoid man8/../man8/foo links
        return os.path.basename(so_link_target)
    if "/" in so_link_target:
        # .so targets with a "/" are relative to the root of the man hierarchy
        return "../" + so_link_target
    return so_link_target


def find_so_redirects(man_dir: str) -> List[SoRedirect]:
    redirects = []
    for dirpath, dirnames, filenames in os.walk(man_dir):
        dirnames.sort()
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            if os.path.islink(path) or not os.path.isfile(path):
                continue
            size = os.path.getsize(path)
            if size == 0 or size > SO_LINK_SIZE_LIMIT:
                continue
            so_link_target = _detect_so_link(path)
            if so_link_target is None:
                continue
            link_target = _adjust_so_link_target(dirpath, so_link_target)
            resolved = os.path.join(dirpath, link_target)
            if os.path.exists(resolved) or os.path.exists(
                resolved + COMPRESSED_SUFFIX
            ):
                redirects.append(SoRedirect(path, link_target))
    return redirects


def convert_so_redirects(redirects: Iterable[SoRedirect]) -> None:
    for redirect in redirects:
        print_command("ln", "-sf", redirect.link_target, redirect.path)
        os.unlink(redirect.path)
        os.symlink(redirect.link_target, redirect.path)


@functools.lru_cache(1)
def has_man_recode() -> bool:
    # Run the tool rather than just looking it up in PATH; a man-db tool can be
    # present and still fail to run.
    try:
        subprocess.check_call(
            ["man-recode", "--help"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            restore_signals=True,
        )
    except (subprocess.CalledProcessError, OSError):
        return False
    return True


def _regular_files_beneath(directory: str) -> List[str]:
    result = []
    for dirpath, dirnames, filenames in os.walk(directory):
        dirnames.sort()
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            if not os.path.islink(path) and os.path.isfile(path):
                result.append(path)
    return result


def recode_manpages(man_dir: str) -> List[str]:
    """Re-encode all regular files beneath man_dir to UTF-8 with man-recode

    :return: The paths of the re-encoded pages (compressed pages lose their suffix)
    """
    manpages = _regular_files_beneath(man_dir)
    if not manpages:
        return []
    static_cmd = ["man-recode", "--to-code", "UTF-8", "--suffix", _RECODE_SUFFIX]
    for cmd in xargs(static_cmd, manpages):
        try:
            run_command(cmd)
        except subprocess.CalledProcessError as e:
            raise ManRecodeError(
                f"The man-recode process failed ({escape_shell(*cmd)}). Please review the output"
                " of man-recode to understand what went wrong."
            ) from e
    recoded = []
    for manpage in manpages:
        dest_name = manpage
        if dest_name.endswith(COMPRESSED_SUFFIX):
            # man-recode decompresses and drops the compression suffix
            dest_name = dest_name[: -len(COMPRESSED_SUFFIX)]
        try:
            os.rename(f"{dest_name}{_RECODE_SUFFIX}", dest_name)
            if dest_name != manpage:
                os.unlink(manpage)
        except OSError as e:
            raise ManRecodeError(
                f"Could not replace {manpage} with its re-encoded version: {e}"
            ) from e
        recoded.append(dest_name)
    for cmd in xargs(["chmod", "0644", "--"], recoded):
        run_command(cmd)
    return recoded


class ManPageInstaller:
    """Installs man pages into one package build directory

    Instances are not shared between packages; each one owns the tree below
    package_root for the duration of an invocation.
    """

    def __init__(
        self,
        package_root: str,
        *,
        compat_level: int,
        language_override: Optional[str] = None,
        recode: Optional[bool] = None,
    ) -> None:
        self.package_root = package_root
        self.compat_level = compat_level
        self.language_override = language_override
        self._recode = recode

    @property
    def man_dir(self) -> str:
        return os.path.join(self.package_root, MAN_ROOT)

    @property
    def legacy_no_overwrite(self) -> bool:
        return self.compat_level <= LEGACY_NO_OVERWRITE_COMPAT_LEVEL

    def resolve(self, page_path: str) -> ResolvedDestination:
        return resolve_destination(
            SourcePage(page_path),
            compat_level=self.compat_level,
            language_override=self.language_override,
        )

    def place(self, resolved: ResolvedDestination) -> Optional[str]:
        """Copy the page into place unless the destination must be left alone

        :return: The destination path, or None if the page was skipped.
        """
        dest = resolved.dest_path(self.package_root)
        # An existing symlink is never replaced (regardless of compat level)
        if os.path.islink(dest):
            return None
        if self.legacy_no_overwrite and os.path.lexists(dest):
            return None
        ensure_dir(os.path.dirname(dest))
        source = resolved.source
        try:
            if source.is_compressed:
                print_command("zcat", source.path, ">", dest)
                with _open_maybe_gzip(source) as in_fd, open(dest, "wb") as out_fd:
                    shutil.copyfileobj(in_fd, out_fd)
            else:
                print_command("install", "-p", "-m0644", source.path, dest)
                shutil.copy2(source.path, dest)
            os.chmod(dest, 0o644)
        except (OSError, EOFError) as e:
            raise ManPageReadError(
                f"Could not install {source.path} as {dest}: {e}", source.path
            ) from e
        return dest

    def install(self, pages: Sequence[str]) -> List[str]:
        """Resolve and place all pages

        :return: The source pages that were considered (installed or not)
        """
        considered = []
        for page in pages:
            considered.append(page)
            resolved = self.resolve(page)
            self.place(resolved)
        return considered

    def should_recode(self) -> bool:
        if self._recode is not None:
            return self._recode
        return has_man_recode()

    def normalize(self) -> None:
        man_dir = self.man_dir
        if not os.path.isdir(man_dir):
            return
        # Must happen after all pages are placed as targets can be installed in the same run
        convert_so_redirects(find_so_redirects(man_dir))
        if self.should_recode():
            recode_manpages(man_dir)

    def run(self, pages: Sequence[str]) -> List[str]:
        considered = self.install(pages)
        self.normalize()
        if considered:
            _info(f"Installed {len(considered)} man page(s) into {self.package_root}")
        return considered
