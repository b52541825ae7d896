import functools
import os
import textwrap

import pytest

from dhscripts.architecture_support import (
    DpkgArchitectureBuildProcessValuesTable,
    mocked_arch_table,
)
from dhscripts.commands.context import DhCommandContext
from dhscripts.environment import DhBuildEnvironment
from dhscripts.manpages import has_man_recode

# Disable dpkg's translation layer.  It is very slow and disabling it makes it easier to debug
# test-failure reports from systems with translations active.
os.environ["DPKG_NLS"] = "0"

_FAKE_MAN_RECODE = """\
#!/bin/sh
set -e
if [ "$1" = "--help" ]; then
    exit 0
fi
suffix=""
while [ $# -gt 0 ]; do
    case "$1" in
        --to-code) shift 2 ;;
        --suffix) suffix="$2"; shift 2 ;;
        *) break ;;
    esac
done
for page in "$@"; do
    echo "$page" >> "$(dirname "$0")/recoded.log"
    case "$page" in
        *.gz) gzip -dc "$page" > "${page%.gz}$suffix" ;;
        *) cp "$page" "$page$suffix" ;;
    esac
done
"""


@pytest.fixture(scope="session")
def amd64_dpkg_architecture_variables() -> DpkgArchitectureBuildProcessValuesTable:
    return mocked_arch_table("amd64")


@pytest.fixture()
def no_build_options() -> DhBuildEnvironment:
    return DhBuildEnvironment(environ={})


@pytest.fixture()
def source_tree(tmp_path, monkeypatch):
    """An unpacked source package (as the current directory) with foo and foo-doc"""
    monkeypatch.chdir(tmp_path)
    debian_dir = tmp_path / "debian"
    debian_dir.mkdir()
    (debian_dir / "control").write_text(
        textwrap.dedent(
            """\
            Source: foo
            Build-Depends: debhelper-compat (= 13)

            Package: foo
            Architecture: any

            Package: foo-doc
            Architecture: all
            """
        )
    )
    return tmp_path


@pytest.fixture()
def context_factory(amd64_dpkg_architecture_variables, no_build_options):
    return functools.partial(
        DhCommandContext,
        build_env=no_build_options,
        dpkg_architecture_variables=amd64_dpkg_architecture_variables,
    )


@pytest.fixture()
def fake_man_recode(tmp_path, monkeypatch):
    """Put a man-recode on PATH that copies (and decompresses) pages

    Every page it is given is appended to the recoded.log next to the script.
    """
    bin_dir = tmp_path / "fake-bin"
    bin_dir.mkdir()
    script = bin_dir / "man-recode"
    script.write_text(_FAKE_MAN_RECODE)
    script.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    has_man_recode.cache_clear()
    yield bin_dir
    has_man_recode.cache_clear()
