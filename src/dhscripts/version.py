import subprocess
from importlib.metadata import PackageNotFoundError, version


def _initialize_version() -> str:
    try:
        return version("dhscripts")
    except PackageNotFoundError:
        pass
    try:
        v = (
            subprocess.check_output(
                ["git", "describe", "--tags"],
                stderr=subprocess.DEVNULL,
            )
            .strip()
            .decode("utf-8")
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return "N/A"
    if v.startswith("debian/"):
        v = v[7:]
    return v


__version__ = _initialize_version()
