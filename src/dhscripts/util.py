import argparse
import concurrent.futures
import functools
import glob
import logging
import os
import re
import subprocess
import sys
from typing import (
    NoReturn,
    Optional,
    TypeVar,
    Iterator,
    Iterable,
    Tuple,
    Sequence,
    List,
    Mapping,
    Any,
    Callable,
)

import colorlog


T = TypeVar("T")
R = TypeVar("R")


_SPACE_RE = re.compile(r"\s")
_DOUBLE_ESCAPEES = re.compile(r'([\n`$"\\])')
_REGULAR_ESCAPEES = re.compile(r'([\s!"$()*+#;<>?@\[\]\\`|~])')
_DEFAULT_LOGGER: Optional[logging.Logger] = None
_STDOUT_HANDLER: Optional[logging.StreamHandler] = None
_STDERR_HANDLER: Optional[logging.StreamHandler] = None
_ECHO_COMMANDS = False


def _info(msg: str) -> None:
    global _DEFAULT_LOGGER
    logger = _DEFAULT_LOGGER
    if logger:
        logger.info(msg)
    # No fallback print for info


def _error(msg: str, *, prog: Optional[str] = None) -> "NoReturn":
    global _DEFAULT_LOGGER
    logger = _DEFAULT_LOGGER
    if logger:
        logger.error(msg)
    else:
        me = program_name() if prog is None else prog
        print(
            f"{me}: error: {msg}",
            file=sys.stderr,
        )
    sys.exit(1)


def _warn(msg: str, *, prog: Optional[str] = None) -> None:
    global _DEFAULT_LOGGER
    logger = _DEFAULT_LOGGER
    if logger:
        logger.warning(msg)
    else:
        me = program_name() if prog is None else prog

        print(
            f"{me}: warning: {msg}",
            file=sys.stderr,
        )


class ColorizedArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        _error(message, prog=self.prog)


def ensure_dir(path: str) -> None:
    if not os.path.isdir(path):
        os.makedirs(path, mode=0o755, exist_ok=True)


def _backslash_escape(m: re.Match[str]) -> str:
    return "\\" + m.group(0)


def _escape_shell_word(w: str) -> str:
    if _SPACE_RE.match(w):
        w = _DOUBLE_ESCAPEES.sub(_backslash_escape, w)
        return f'"{w}"'
    return _REGULAR_ESCAPEES.sub(_backslash_escape, w)


def escape_shell(*args: str) -> str:
    return " ".join(_escape_shell_word(w) for w in args)


def enable_command_echo(enabled: bool = True) -> None:
    global _ECHO_COMMANDS
    _ECHO_COMMANDS = enabled


def print_command(*args: str) -> None:
    if _ECHO_COMMANDS:
        print(f"\t{escape_shell(*args)}", flush=True)


def run_command(cmd: Sequence[str], **kwargs: Any) -> None:
    print_command(*cmd)
    subprocess.check_call(
        cmd,
        stdin=subprocess.DEVNULL,
        restore_signals=True,
        **kwargs,
    )


def _expand_braces(pattern: str) -> Iterator[str]:
    start = pattern.find("{")
    if start < 0:
        yield pattern
        return
    depth = 0
    options_start = start + 1
    options = []
    for idx in range(start, len(pattern)):
        c = pattern[idx]
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                options.append(pattern[options_start:idx])
                prefix = pattern[:start]
                suffix = pattern[idx + 1 :]
                for option in options:
                    yield from _expand_braces(prefix + option + suffix)
                return
        elif c == "," and depth == 1:
            options.append(pattern[options_start:idx])
            options_start = idx + 1
    # Unbalanced braces are taken literally (like bash does)
    yield pattern


def expand_glob(pattern: str) -> List[str]:
    """Expand a shell style glob (including {a,b} alternatives)

    Results are sorted per alternative. A pattern without glob magic is returned
    as-is when it exists (and not at all otherwise).
    """
    result = []
    for alternative in _expand_braces(pattern):
        if glob.has_magic(alternative):
            result.extend(sorted(glob.glob(alternative)))
        elif os.path.lexists(alternative):
            result.append(alternative)
    return result


@functools.lru_cache(1)
def _sc_arg_max() -> Optional[int]:
    try:
        return os.sysconf("SC_ARG_MAX")
    except (RuntimeError, ValueError, OSError):
        _warn("Could not resolve SC_ARG_MAX, falling back to a hard-coded limit")
        return None


def _split_xargs_args(
    static_cmd: Sequence[str],
    max_args_byte_len: int,
    varargs: Iterable[str],
) -> Iterator[List[str]]:
    static_cmd_len = len(static_cmd)
    remaining_len = max_args_byte_len
    pending_args = list(static_cmd)
    for arg in varargs:
        arg_len = len(arg.encode("utf-8")) + 1  # +1 for leading space
        remaining_len -= arg_len
        if remaining_len <= 0:
            if len(pending_args) <= static_cmd_len:
                raise ValueError(
                    f"Could not fit a single argument into the command line !?"
                    f" {max_args_byte_len} (variable argument limit) < {arg_len} (argument length)"
                )
            yield pending_args
            remaining_len = max_args_byte_len - arg_len
            pending_args = list(static_cmd)
        pending_args.append(arg)

    if len(pending_args) > static_cmd_len:
        yield pending_args


def xargs(
    static_cmd: Sequence[str],
    varargs: Iterable[str],
    *,
    env: Optional[Mapping[str, str]] = None,
) -> Iterator[List[str]]:
    max_args_bytes = _sc_arg_max()
    # len overshoots with one space explaining the -1.  The _split_xargs_args
    # will account for the space for the first argument
    static_byte_len = (
        len(static_cmd) - 1 + sum(len(a.encode("utf-8")) for a in static_cmd)
    )
    if max_args_bytes is not None:
        if env is None:
            # +2 for nul bytes after key and value
            static_byte_len += sum(len(k) + len(v) + 2 for k, v in os.environb.items())
        else:
            static_byte_len += sum(
                len(k.encode("utf-8")) + len(v.encode("utf-8")) + 2
                for k, v in env.items()
            )
        # Fixed buffer for OS overhead (env and cmd might both be page-aligned)
        static_byte_len += 2 * 4096
    else:
        max_args_bytes = 20_000
    remain_len = max_args_bytes - static_byte_len
    yield from _split_xargs_args(static_cmd, remain_len, varargs)


def _check_color() -> Tuple[bool, bool, Optional[str]]:
    dpkg_or_default = os.environ.get(
        "DPKG_COLORS", "never" if "NO_COLOR" in os.environ else "auto"
    )
    requested_color = os.environ.get("DH_COLORS", dpkg_or_default)
    bad_request = None
    if requested_color not in {"auto", "always", "never"}:
        bad_request = requested_color
        requested_color = "auto"

    if requested_color == "auto":
        stdout_color = sys.stdout.isatty()
        stderr_color = sys.stderr.isatty()
    else:
        enable = requested_color == "always"
        stdout_color = enable
        stderr_color = enable
    return stdout_color, stderr_color, bad_request


def program_name() -> str:
    name = os.path.basename(sys.argv[0])
    if name.endswith(".py"):
        name = name[:-3]
    if name == "__main__":
        name = os.path.basename(os.path.dirname(sys.argv[0]))
    return name


class _LogLevelFilter(logging.Filter):
    def __init__(self, threshold: int, above: bool):
        super().__init__()
        self.threshold = threshold
        self.above = above

    def filter(self, record: logging.LogRecord) -> bool:
        if self.above:
            return record.levelno >= self.threshold
        return record.levelno < self.threshold


def _make_handler(stream: Any, use_color: bool) -> logging.StreamHandler:
    color_format = (
        "{bold}{name}{reset}: {bold}{log_color}{levelnamelower}{reset}: {message}"
    )
    colorless_format = "{name}: {levelnamelower}: {message}"
    if use_color:
        handler = colorlog.StreamHandler(stream)
        handler.setFormatter(
            colorlog.ColoredFormatter(color_format, style="{", force_color=True)
        )
    else:
        handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter(colorless_format, style="{"))
    return handler


def setup_logging(
    *, log_only_to_stderr: bool = False, reconfigure_logging: bool = False
) -> None:
    global _DEFAULT_LOGGER, _STDOUT_HANDLER, _STDERR_HANDLER
    if _DEFAULT_LOGGER is not None and not reconfigure_logging:
        return
    stdout_color, stderr_color, bad_request = _check_color()

    if log_only_to_stderr:
        stdout = sys.stderr
        stdout_color = stderr_color
    else:
        stdout = sys.stdout

    root_logger = logging.getLogger()
    for existing in (_STDOUT_HANDLER, _STDERR_HANDLER):
        if existing is not None:
            root_logger.removeHandler(existing)

    stdout_handler = _make_handler(stdout, stdout_color)
    stderr_handler = _make_handler(sys.stderr, stderr_color)
    stdout_handler.addFilter(_LogLevelFilter(logging.WARN, False))
    stderr_handler.addFilter(_LogLevelFilter(logging.WARN, True))
    root_logger.addHandler(stdout_handler)
    root_logger.addHandler(stderr_handler)
    _STDOUT_HANDLER = stdout_handler
    _STDERR_HANDLER = stderr_handler

    old_factory = logging.getLogRecordFactory()

    def record_factory(
        *args: Any, **kwargs: Any
    ) -> logging.LogRecord:  # pragma: no cover
        record = old_factory(*args, **kwargs)
        record.levelnamelower = record.levelname.lower()
        return record

    if not getattr(old_factory, "_dh_level_lower", False):
        record_factory._dh_level_lower = True  # type: ignore[attr-defined]
        logging.setLogRecordFactory(record_factory)

    root_logger.setLevel(logging.INFO)
    _DEFAULT_LOGGER = logging.getLogger(program_name())

    if bad_request:
        _DEFAULT_LOGGER.warning(
            f'Invalid color request for "{bad_request}" in either DH_COLORS or DPKG_COLORS.'
            ' Resetting to "auto".'
        )


def change_log_level(log_level: int) -> None:
    if _DEFAULT_LOGGER is not None:
        _DEFAULT_LOGGER.setLevel(log_level)
    logging.getLogger().setLevel(log_level)


def on_items_in_parallel(
    items: Sequence[T],
    worker: Callable[[T], R],
    *,
    max_workers: int,
) -> List[R]:
    """Run worker on every item with at most max_workers running at the same time

    Results are returned in the order of the items. The first failure (including a
    SystemExit from _error) is re-raised after pending work has been cancelled.
    """
    if max_workers <= 1 or len(items) <= 1:
        return [worker(item) for item in items]
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=min(max_workers, len(items))
    ) as executor:
        futures = [executor.submit(worker, item) for item in items]
        try:
            return [f.result() for f in futures]
        except BaseException:
            for f in futures:
                f.cancel()
            raise
