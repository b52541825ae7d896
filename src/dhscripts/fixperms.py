import dataclasses
import fnmatch
import os
import stat
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from dhscripts.dh.debhelper_emulation import ExcludePredicate
from dhscripts.exceptions import InvalidSymbolicModeError
from dhscripts.util import run_command, xargs

_STD_FILE_MODE = 0o644
_PATH_FILE_MODE = 0o755
_SUDOERS_FILE_MODE = 0o440


@dataclasses.dataclass(slots=True, frozen=True)
class _SymbolicModeSegment:
    base_mode: int
    base_mask: int
    cap_x_mode: int
    cap_x_mask: int

    def apply(self, current_mode: int, is_dir: bool) -> int:
        if current_mode & 0o111 or is_dir:
            chosen_mode = self.cap_x_mode
            mode_mask = self.cap_x_mask
        else:
            chosen_mode = self.base_mode
            mode_mask = self.base_mask
        # set ("="): mode mask clears relevant segment and current_mode are the desired bits
        # add ("+"): mode mask keeps everything and current_mode are the desired bits
        # remove ("-"): mode mask clears relevant bits and current_mode are 0
        return (current_mode & mode_mask) | chosen_mode


def _symbolic_mode_bit_inverse(v: int) -> int:
    # Without the "&", python narrows the inversion to the minimum number of bits
    return ~v & 0o7777


def parse_symbolic_mode(symbolic_mode: str) -> Iterator[_SymbolicModeSegment]:
    sticky_bit = 0o01000
    setuid_bit = 0o04000
    setgid_bit = 0o02000
    mode_group_flag = 0o7
    subject_mask_and_shift = {
        "u": (mode_group_flag << 6, 6),
        "g": (mode_group_flag << 3, 3),
        "o": (mode_group_flag << 0, 0),
    }
    bits = {
        "r": (0o4, 0o4),
        "w": (0o2, 0o2),
        "x": (0o1, 0o1),
        "X": (0o0, 0o1),
    }
    modifiers = {
        "+",
        "-",
        "=",
    }
    for orig_part in symbolic_mode.split(","):
        base_mode = 0
        cap_x_mode = 0
        part = orig_part
        subjects = set()
        while part and part[0] in ("u", "g", "o", "a"):
            subject = part[0]
            if subject == "a":
                subjects = {"u", "g", "o"}
            else:
                subjects.add(subject)
            part = part[1:]
        if not subjects:
            subjects = {"u", "g", "o"}

        if part and part[0] in modifiers:
            modifier = part[0]
        elif not part:
            raise InvalidSymbolicModeError(
                f'Invalid symbolic mode: expected [+-=] to be present (from "{orig_part}")'
            )
        else:
            raise InvalidSymbolicModeError(
                f'Invalid symbolic mode: Expected "{part[0]}" to be one of [+-=]'
                f' (from "{orig_part}")'
            )
        part = part[1:]
        s_bit_seen = False
        t_bit_seen = False
        for letter in part:
            if letter == "s":
                s_bit_seen = True
            elif letter == "t":
                t_bit_seen = True
            elif letter in ("u", "g", "o"):
                raise InvalidSymbolicModeError(
                    "Invalid symbolic mode: Referencing the permissions of an existing subject"
                    f' (a=u) is not supported (from "{orig_part}")'
                )
            else:
                matched_bits = bits.get(letter)
                if matched_bits is None:
                    raise InvalidSymbolicModeError(
                        f'Invalid symbolic mode: Expected "{letter}" to be one of the letters'
                        f' in "rwxXst" (from "{orig_part}")'
                    )
                base_mode_bits, cap_x_mode_bits = matched_bits
                base_mode |= base_mode_bits
                cap_x_mode |= cap_x_mode_bits

        final_base_mode = 0
        final_cap_x_mode = 0
        segment_mask = 0
        for subject in subjects:
            mask, shift = subject_mask_and_shift[subject]
            segment_mask |= mask
            final_base_mode |= base_mode << shift
            final_cap_x_mode |= cap_x_mode << shift
        if modifier == "=":
            segment_mask |= setuid_bit if "u" in subjects else 0
            segment_mask |= setgid_bit if "g" in subjects else 0
            segment_mask |= sticky_bit if "o" in subjects else 0
        if s_bit_seen:
            if "u" in subjects:
                final_base_mode |= setuid_bit
                final_cap_x_mode |= setuid_bit
            if "g" in subjects:
                final_base_mode |= setgid_bit
                final_cap_x_mode |= setgid_bit
        if t_bit_seen:
            final_base_mode |= sticky_bit
            final_cap_x_mode |= sticky_bit
        if modifier == "+":
            final_base_mask = ~0
            final_cap_x_mask = ~0
        elif modifier == "-":
            final_base_mask = _symbolic_mode_bit_inverse(final_base_mode)
            final_cap_x_mask = _symbolic_mode_bit_inverse(final_cap_x_mode)
            final_base_mode = 0
            final_cap_x_mode = 0
        else:
            inverted_mask = _symbolic_mode_bit_inverse(segment_mask)
            final_base_mask = inverted_mask
            final_cap_x_mask = inverted_mask
        yield _SymbolicModeSegment(
            base_mode=final_base_mode,
            base_mask=final_base_mask,
            cap_x_mode=final_cap_x_mode,
            cap_x_mask=final_cap_x_mask,
        )


class FileSystemMode:
    def compute_mode(self, current_mode: int, is_dir: bool) -> int:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


@dataclasses.dataclass(slots=True, frozen=True)
class OctalMode(FileSystemMode):
    octal_mode: int

    def compute_mode(self, current_mode: int, is_dir: bool) -> int:
        return self.octal_mode

    def describe(self) -> str:
        return f"0{oct(self.octal_mode)[2:]}"


@dataclasses.dataclass(slots=True, frozen=True)
class SymbolicMode(FileSystemMode):
    provided_mode: str
    segments: Sequence[_SymbolicModeSegment]

    @classmethod
    def parse(cls, symbolic_mode: str) -> "SymbolicMode":
        """Parse a chmod style symbolic mode

        >>> mode = SymbolicMode.parse("go=rX,u+rw,a-s")
        >>> oct(mode.compute_mode(0o4777, False))
        '0o755'
        >>> oct(mode.compute_mode(0o600, False))
        '0o644'
        >>> oct(mode.compute_mode(0o700, True))
        '0o755'
        """
        return cls(symbolic_mode, tuple(parse_symbolic_mode(symbolic_mode)))

    def compute_mode(self, current_mode: int, is_dir: bool) -> int:
        final_mode = current_mode
        for segment in self.segments:
            final_mode = segment.apply(final_mode, is_dir)
        return final_mode

    def describe(self) -> str:
        return self.provided_mode


@dataclasses.dataclass(slots=True, frozen=True)
class FsEntry:
    path: str
    rel_path: str
    is_dir: bool
    is_symlink: bool

    @property
    def basename(self) -> str:
        return os.path.basename(self.rel_path)

    @property
    def parent_dir(self) -> str:
        return os.path.dirname(self.rel_path)

    @property
    def is_file(self) -> bool:
        return not self.is_dir and not self.is_symlink


PathMatcher = Callable[[FsEntry], bool]


def _is_beneath(rel_path: str, directory: str) -> bool:
    return rel_path.startswith(directory + "/")


def _files_beneath(*directories: str) -> PathMatcher:
    def _matcher(entry: FsEntry) -> bool:
        return entry.is_file and any(_is_beneath(entry.rel_path, d) for d in directories)

    return _matcher


def _files_directly_in(*directories: str) -> PathMatcher:
    def _matcher(entry: FsEntry) -> bool:
        return entry.is_file and entry.parent_dir in directories

    return _matcher


def _executable_files_named(*patterns: str) -> PathMatcher:
    def _matcher(entry: FsEntry) -> bool:
        if not entry.is_file:
            return False
        if not os.stat(entry.path).st_mode & 0o111:
            return False
        return any(fnmatch.fnmatchcase(entry.basename, p) for p in patterns)

    return _matcher


def _is_perl_module_dir(directory: str) -> bool:
    if directory == "usr/share/perl5" or _is_beneath(directory, "usr/share/perl5"):
        return True
    parts = directory.split("/")
    # usr/lib/<multiarch>/perl5/<version>/...
    return len(parts) >= 4 and parts[:2] == ["usr", "lib"] and parts[3] == "perl5"


def _perl_modules(entry: FsEntry) -> bool:
    return (
        entry.is_file
        and entry.basename.endswith(".pm")
        and _is_perl_module_dir(entry.parent_dir)
    )


def _ada_library_info(entry: FsEntry) -> bool:
    return (
        entry.is_file
        and entry.basename.endswith(".ali")
        and _is_beneath(entry.rel_path, "usr/lib")
    )


def _non_symlinks(entry: FsEntry) -> bool:
    return not entry.is_symlink


def _usr_share_doc(package_name: str) -> Tuple[PathMatcher, PathMatcher]:
    examples_dir = f"usr/share/doc/{package_name}/examples"

    def _doc_files(entry: FsEntry) -> bool:
        return (
            entry.is_file
            and _is_beneath(entry.rel_path, "usr/share/doc")
            and not _is_beneath(entry.rel_path, examples_dir)
        )

    def _doc_dirs(entry: FsEntry) -> bool:
        return entry.is_dir and _is_beneath(entry.rel_path, "usr/share/doc")

    return _doc_files, _doc_dirs


def _reportbug_rules(package_name: str) -> List[Tuple[PathMatcher, FileSystemMode]]:
    bug_path = f"usr/share/bug/{package_name}"

    def _bug_file(entry: FsEntry) -> bool:
        return entry.is_file and entry.rel_path == bug_path

    def _bug_dirs(entry: FsEntry) -> bool:
        return entry.is_dir and (
            entry.rel_path == bug_path or _is_beneath(entry.rel_path, bug_path)
        )

    def _bug_dir_files(entry: FsEntry) -> bool:
        return entry.is_file and _is_beneath(entry.rel_path, bug_path)

    def _bug_script(entry: FsEntry) -> bool:
        return entry.is_file and entry.rel_path == f"{bug_path}/script"

    return [
        (_bug_file, OctalMode(_PATH_FILE_MODE)),
        (_bug_dirs, OctalMode(_PATH_FILE_MODE)),
        (_bug_dir_files, OctalMode(_STD_FILE_MODE)),
        (_bug_script, OctalMode(_PATH_FILE_MODE)),
    ]


def mode_normalization_rules(
    package_name: str,
) -> List[Tuple[PathMatcher, FileSystemMode]]:
    """The permission rules in the order they are applied

    Later rules see the result of earlier rules (relevant for symbolic modes).
    """
    doc_files, doc_dirs = _usr_share_doc(package_name)
    rules: List[Tuple[PathMatcher, FileSystemMode]] = [
        (_non_symlinks, SymbolicMode.parse("go=rX,u+rw,a-s")),
        (doc_files, OctalMode(_STD_FILE_MODE)),
        (doc_dirs, OctalMode(_PATH_FILE_MODE)),
        (
            _files_beneath(
                "usr/share/man",
                "usr/include",
                "usr/share/applications",
                "usr/share/lintian/overrides",
            ),
            OctalMode(_STD_FILE_MODE),
        ),
        (
            _executable_files_named(
                "*.so.*",
                "*.so",
                "*.la",
                "*.a",
                "*.js",
                "*.css",
                "*.scss",
                "*.sass",
                "*.jpeg",
                "*.jpg",
                "*.png",
                "*.gif",
                "*.cmxs",
                "*.node",
            ),
            OctalMode(_STD_FILE_MODE),
        ),
        (_perl_modules, SymbolicMode.parse("a-X")),
        (
            _files_directly_in(
                "usr/bin",
                "bin",
                "usr/sbin",
                "sbin",
                "usr/games",
                "usr/libexec",
                "etc/init.d",
            ),
            SymbolicMode.parse("a+x"),
        ),
        (_ada_library_info, SymbolicMode.parse("a-w")),
        (_files_beneath("etc/sudoers.d"), OctalMode(_SUDOERS_FILE_MODE)),
    ]
    rules.extend(_reportbug_rules(package_name))
    return rules


def _walk_package_root(
    package_root: str,
    is_excluded: Optional[ExcludePredicate],
) -> List[FsEntry]:
    entries = [FsEntry(package_root, ".", True, False)]
    for dirpath, dirnames, filenames in os.walk(package_root):
        dirnames.sort()
        rel_dir = os.path.relpath(dirpath, package_root)
        for name in list(dirnames) + sorted(filenames):
            path = os.path.join(dirpath, name)
            rel_path = name if rel_dir == "." else f"{rel_dir}/{name}"
            if is_excluded is not None and is_excluded(rel_path):
                continue
            is_symlink = os.path.islink(path)
            entries.append(
                FsEntry(
                    path,
                    rel_path,
                    not is_symlink and os.path.isdir(path),
                    is_symlink,
                )
            )
    return entries


def _chown_to_root(entries: Sequence[FsEntry]) -> None:
    paths = [e.path for e in entries]
    for cmd in xargs(["chown", "--no-dereference", "0:0", "--"], paths):
        run_command(cmd)


def apply_mode_rules(
    entries: Iterable[FsEntry],
    rules: Sequence[Tuple[PathMatcher, FileSystemMode]],
) -> int:
    changed = 0
    for entry in entries:
        if entry.is_symlink:
            continue
        current_mode = stat.S_IMODE(os.lstat(entry.path).st_mode)
        new_mode = current_mode
        for matcher, mode in rules:
            if matcher(entry):
                new_mode = mode.compute_mode(new_mode, entry.is_dir)
        if new_mode != current_mode:
            os.chmod(entry.path, new_mode)
            changed += 1
    return changed


def fix_permissions(
    package_root: str,
    package_name: str,
    *,
    is_excluded: Optional[ExcludePredicate] = None,
    chown: Optional[bool] = None,
) -> int:
    """Normalize ownership and permissions of everything beneath package_root

    :return: The number of paths whose mode was changed
    """
    if not os.path.isdir(package_root):
        return 0
    entries = _walk_package_root(package_root, is_excluded)
    if chown is None:
        chown = os.getuid() == 0
    if chown:
        _chown_to_root(entries)
    return apply_mode_rules(entries, mode_normalization_rules(package_name))
