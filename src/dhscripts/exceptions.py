from typing import cast, Sequence


class DhRuntimeError(RuntimeError):
    @property
    def message(self) -> str:
        return cast("str", self.args[0])


class CompatLevelError(DhRuntimeError):
    pass


class DhConfigFileError(DhRuntimeError):
    @property
    def config_file(self) -> str:
        return cast("str", self.args[1])


class PackageSelectionError(DhRuntimeError):
    pass


class ManPageError(DhRuntimeError):
    @property
    def page(self) -> str:
        return cast("str", self.args[1])


class ManPageSectionError(ManPageError):
    pass


class ManPageReadError(ManPageError):
    pass


class ManRecodeError(DhRuntimeError):
    pass


class MissingInstallSourcesError(DhRuntimeError):
    @property
    def missing_patterns(self) -> Sequence[str]:
        return cast("Sequence[str]", self.args[1])


class InvalidSymbolicModeError(ValueError):
    @property
    def message(self) -> str:
        return cast("str", self.args[0])


class UnknownSequenceError(DhRuntimeError):
    pass
