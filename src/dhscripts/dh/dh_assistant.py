import os
import re
from typing import Iterable, Optional, Set, Mapping, Tuple

from debian.deb822 import Deb822

from dhscripts.exceptions import CompatLevelError

_FIND_DH_WITH = re.compile(r"--with(?:\s+|=)(\S+)")
_FIND_DH_WITHOUT = re.compile(r"--without(?:\s+|=)(\S+)")
_DEP_REGEX = re.compile("^([a-z0-9][-+.a-z0-9]+)", re.ASCII)
_DH_COMPAT_DEP = re.compile(
    r"^debhelper-compat\s*[(]\s*=\s*(\d+)\s*[)]\s*$",
    re.ASCII,
)

LOWEST_SUPPORTED_COMPAT_LEVEL = 5
MAX_COMPAT_LEVEL = 14


def normalize_addon_name(name: str) -> str:
    """Add-on names are compared with "_" and "-" considered equal

    >>> normalize_addon_name("build_stamp")
    'build-stamp'
    """
    return name.replace("_", "-")


def split_addon_names(value: str) -> Iterable[str]:
    return (normalize_addon_name(a) for a in value.split(",") if a)


def parse_drules_for_addons(
    lines: Iterable[str],
    sequences: Set[str],
    disabled_sequences: Optional[Set[str]] = None,
) -> bool:
    saw_dh = False
    for line in lines:
        if not line.startswith("\tdh "):
            continue
        saw_dh = True
        for match in _FIND_DH_WITH.finditer(line):
            sequences.update(split_addon_names(match.group(1)))
        if disabled_sequences is not None:
            for match in _FIND_DH_WITHOUT.finditer(line):
                disabled_sequences.update(split_addon_names(match.group(1)))
    return saw_dh


def _dependency_clauses(source_paragraph: Mapping[str, str]) -> Iterable[str]:
    for f in ("Build-Depends", "Build-Depends-Indep", "Build-Depends-Arch"):
        field = source_paragraph.get(f)
        if not field:
            continue
        for dep_clause in field.split(","):
            dep_clause = dep_clause.strip()
            if dep_clause:
                yield dep_clause


def extract_dh_addons_from_control(
    source_paragraph: Mapping[str, str],
    sequences: Set[str],
) -> None:
    for dep_clause in _dependency_clauses(source_paragraph):
        match = _DEP_REGEX.match(dep_clause)
        if not match:
            continue
        dep = match.group(1)
        if not dep.startswith("dh-sequence-"):
            continue
        sequences.add(normalize_addon_name(dep[12:]))


def read_dh_addon_sequences(
    debian_dir: str,
) -> Optional[Tuple[Set[str], Set[str], Set[str]]]:
    """Determine the add-ons requested by debian/control and debian/rules

    :return: None if there is no debian/control. Otherwise, a tuple with the add-ons
      from Build-Depends, the add-ons from `dh --with` in debian/rules and the add-ons
      disabled via `dh --without`.
    """
    ctrl_file = os.path.join(debian_dir, "control")
    if not os.path.isfile(ctrl_file):
        return None
    dr_sequences: Set[str] = set()
    bd_sequences: Set[str] = set()
    disabled: Set[str] = set()

    drules = os.path.join(debian_dir, "rules")
    if os.path.isfile(drules):
        with open(drules, "rt", encoding="utf-8") as fd:
            parse_drules_for_addons(fd, dr_sequences, disabled)

    with open(ctrl_file, "rt", encoding="utf-8") as fd:
        ctrl = list(Deb822.iter_paragraphs(fd))
    source_paragraph = ctrl[0] if ctrl else {}

    extract_dh_addons_from_control(source_paragraph, bd_sequences)
    return bd_sequences, dr_sequences, disabled


def _compat_from_control(source_paragraph: Mapping[str, str]) -> Optional[int]:
    found = None
    for dep_clause in _dependency_clauses(source_paragraph):
        if not dep_clause.startswith("debhelper-compat"):
            continue
        m = _DH_COMPAT_DEP.match(dep_clause)
        if not m:
            raise CompatLevelError(
                f'Invalid "{dep_clause}" relation in debian/control: It must be exactly'
                ' "debhelper-compat (= N)" with N being the compat level'
            )
        if found is not None:
            raise CompatLevelError(
                "The debhelper-compat relation is listed more than once in debian/control"
            )
        found = int(m.group(1))
    return found


def _compat_from_file(compat_file: str) -> Optional[int]:
    try:
        with open(compat_file, "rt", encoding="utf-8") as fd:
            raw = fd.readline().strip()
    except FileNotFoundError:
        return None
    if not raw.isdigit():
        raise CompatLevelError(
            f'{compat_file} must contain a positive number (found: "{raw}")'
        )
    return int(raw)


def _check_compat_range(level: int, origin: str) -> int:
    if level < LOWEST_SUPPORTED_COMPAT_LEVEL:
        raise CompatLevelError(
            f"Compatibility levels before {LOWEST_SUPPORTED_COMPAT_LEVEL} are no longer supported"
            f" (level {level} requested via {origin})"
        )
    if level > MAX_COMPAT_LEVEL:
        raise CompatLevelError(
            f"Sorry, but {MAX_COMPAT_LEVEL} is the highest compatibility level supported"
            f" (level {level} requested via {origin})"
        )
    return level


def resolve_compat_level(
    source_paragraph: Mapping[str, str],
    *,
    debian_dir: str = "debian",
    compat_override: Optional[str] = None,
) -> int:
    if compat_override is not None:
        if not compat_override.isdigit():
            raise CompatLevelError(
                f'DH_COMPAT must be a positive number (found: "{compat_override}")'
            )
        return _check_compat_range(int(compat_override), "DH_COMPAT")

    compat_file = os.path.join(debian_dir, "compat")
    from_control = _compat_from_control(source_paragraph)
    from_file = _compat_from_file(compat_file)
    if from_control is not None and from_file is not None:
        raise CompatLevelError(
            f"The compat level is set via both {compat_file} and the debhelper-compat relation"
            " in debian/control. Please remove one of them."
        )
    if from_control is not None:
        return _check_compat_range(from_control, "debian/control")
    if from_file is not None:
        return _check_compat_range(from_file, compat_file)
    raise CompatLevelError(
        'Please specify the compatibility level via "Build-Depends: debhelper-compat (= N)"'
        " in debian/control"
    )
