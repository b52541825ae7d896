import os
from typing import (
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
)

from dhscripts.dh.dh_assistant import (
    normalize_addon_name,
    read_dh_addon_sequences,
    split_addon_names,
)
from dhscripts.exceptions import UnknownSequenceError

BUILD_STAMP_FILE = "debian/debhelper-build-stamp"
CREATE_STAMP_COMMAND = "create-stamp"

_BUILD_COMMANDS = (
    "dh_testdir",
    "dh_update_autotools_config",
    "dh_autoreconf",
    "dh_auto_configure",
    "dh_auto_build",
    "dh_auto_test",
)
_INSTALL_COMMANDS = (
    "dh_testroot",
    "dh_prep",
    "dh_installdirs",
    "dh_auto_install",
    "dh_install",
    "dh_installdocs",
    "dh_installchangelogs",
    "dh_installman",
    "dh_lintian",
    "dh_perl",
    "dh_link",
    "dh_strip_nondeterminism",
    "dh_compress",
    "dh_fixperms",
    "dh_missing",
)
_BINARY_COMMANDS = (
    "dh_strip",
    "dh_makeshlibs",
    "dh_shlibdeps",
    "dh_installdeb",
    "dh_gencontrol",
    "dh_md5sums",
    "dh_builddeb",
)

# Add-ons loaded unless explicitly disabled (dh --without <addon>)
DEFAULT_ADDONS = frozenset({"build-stamp"})


def _rules_target(target: str) -> str:
    return f"debian/rules {target}"


def standard_sequences() -> Dict[str, List[str]]:
    sequences: Dict[str, List[str]] = {}
    for suffix in ("", "-arch", "-indep"):
        sequences[f"build{suffix}"] = list(_BUILD_COMMANDS)
        sequences[f"install{suffix}"] = [
            _rules_target(f"build{suffix}"),
            *_INSTALL_COMMANDS,
        ]
        sequences[f"binary{suffix}"] = [
            _rules_target(f"install{suffix}"),
            *_BINARY_COMMANDS,
        ]
    sequences["clean"] = ["dh_testdir", "dh_auto_clean", "dh_clean"]
    return sequences


class SequenceEditor:
    """Named, ordered command lists that add-ons can modify"""

    def __init__(self, sequences: Optional[Mapping[str, Sequence[str]]] = None) -> None:
        if sequences is None:
            sequences = standard_sequences()
        self._sequences = {name: list(cmds) for name, cmds in sequences.items()}

    @property
    def sequence_names(self) -> List[str]:
        return sorted(self._sequences)

    def commands(self, sequence: str) -> List[str]:
        try:
            return list(self._sequences[sequence])
        except KeyError:
            raise UnknownSequenceError(
                f'Unknown sequence "{sequence}" (choose from: {", ".join(self.sequence_names)})'
            ) from None

    def add_command_at_end(self, command: str, sequence: str) -> None:
        if sequence not in self._sequences:
            raise UnknownSequenceError(
                f'Cannot add "{command}" to the unknown sequence "{sequence}"'
            )
        self._sequences[sequence].append(command)

    def insert_before(self, existing_command: str, new_command: str) -> None:
        for commands in self._sequences.values():
            updated = []
            for command in commands:
                if command == existing_command:
                    updated.append(new_command)
                updated.append(command)
            commands[:] = updated

    def insert_after(self, existing_command: str, new_command: str) -> None:
        for commands in self._sequences.values():
            updated = []
            for command in commands:
                updated.append(command)
                if command == existing_command:
                    updated.append(new_command)
            commands[:] = updated

    def remove_command(self, command: str) -> None:
        for commands in self._sequences.values():
            commands[:] = [c for c in commands if c != command]


SequenceAddon = Callable[[SequenceEditor], None]
_ADDONS: Dict[str, SequenceAddon] = {}


def dh_addon(name: str) -> Callable[[SequenceAddon], SequenceAddon]:
    def _decorator(func: SequenceAddon) -> SequenceAddon:
        if name in _ADDONS:
            raise ValueError(f'The add-on "{name}" is already registered')
        _ADDONS[name] = func
        return func

    return _decorator


def known_addons() -> List[str]:
    return sorted(_ADDONS)


@dh_addon("build-stamp")
def _build_stamp_addon(editor: SequenceEditor) -> None:
    stamp_command = f"{CREATE_STAMP_COMMAND} {BUILD_STAMP_FILE}"
    for sequence in ("build", "build-arch", "build-indep"):
        editor.add_command_at_end(stamp_command, sequence)


def requested_addons(
    *,
    debian_dir: str = "debian",
    with_addons: Iterable[str] = tuple(),
    without_addons: Iterable[str] = tuple(),
) -> List[str]:
    """Determine which add-ons apply

    Add-ons come from the defaults, `--with`, `dh --with` in debian/rules and
    dh-sequence-* build-dependencies. Anything named by `--without` (or
    `dh --without` in debian/rules) is removed.
    """
    enabled: Set[str] = set(DEFAULT_ADDONS)
    disabled: Set[str] = set()
    for value in with_addons:
        enabled.update(split_addon_names(value))
    for value in without_addons:
        disabled.update(split_addon_names(value))
    detected = read_dh_addon_sequences(debian_dir)
    if detected is not None:
        bd_sequences, dr_sequences, dr_disabled = detected
        enabled |= bd_sequences
        enabled |= dr_sequences
        disabled |= dr_disabled
    return sorted(enabled - disabled)


def load_addons(editor: SequenceEditor, addons: Iterable[str]) -> None:
    loaded: Set[str] = set()
    for addon in addons:
        name = normalize_addon_name(addon)
        if name in loaded:
            continue
        loaded.add(name)
        try:
            addon_impl = _ADDONS[name]
        except KeyError:
            raise UnknownSequenceError(
                f'Unable to load add-on "{addon}" (known add-ons: {", ".join(known_addons())})'
            ) from None
        addon_impl(editor)


def create_stamp(stamp_file: str, package_names: Sequence[str]) -> None:
    """Record the packages a sequence has been completed for

    Names already in the stamp file are kept.
    """
    existing: List[str] = []
    if os.path.isfile(stamp_file):
        with open(stamp_file, "rt", encoding="utf-8") as fd:
            existing = [line.strip() for line in fd if line.strip()]
    seen = set(existing)
    combined = list(existing)
    for name in package_names:
        if name not in seen:
            seen.add(name)
            combined.append(name)
    stamp_dir = os.path.dirname(stamp_file)
    if stamp_dir:
        os.makedirs(stamp_dir, exist_ok=True)
    with open(stamp_file, "wt", encoding="utf-8") as fd:
        for name in combined:
            fd.write(f"{name}\n")
