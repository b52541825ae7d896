import os
import textwrap

import pytest

from dhscripts.dh.debhelper_emulation import (
    dhe_filearray,
    dhe_filedoublearray,
    dhe_glob_expand,
    dhe_pkgfile,
    exclude_predicate,
    installed_files_log,
    log_installed_files,
)
from dhscripts.exceptions import DhConfigFileError
from tutil import faked_binary_package, write_file


@pytest.fixture()
def debian_dir(tmp_path, monkeypatch) -> str:
    monkeypatch.chdir(tmp_path)
    os.mkdir("debian")
    return "debian"


def test_filedoublearray(debian_dir):
    config_file = write_file(
        os.path.join(debian_dir, "foo.install"),
        textwrap.dedent(
            """\
            # A comment
            usr/bin/foo

              usr/share/foo/*   usr/share/bar
            """
        ),
    )
    lines = list(dhe_filedoublearray(config_file, compat_level=13))
    assert [(line.line_no, line.tokens) for line in lines] == [
        (2, ("usr/bin/foo",)),
        (4, ("usr/share/foo/*", "usr/share/bar")),
    ]
    assert not any(line.executable_config for line in lines)
    assert dhe_filearray(config_file, compat_level=13) == [
        "usr/bin/foo",
        "usr/share/foo/*",
        "usr/share/bar",
    ]


def test_executable_config_file(debian_dir):
    config_file = write_file(
        os.path.join(debian_dir, "foo.manpages"),
        "#!/bin/sh\necho generated.1\n",
        mode=0o755,
    )
    lines = list(dhe_filedoublearray(config_file, compat_level=13))
    assert [line.tokens for line in lines] == [("generated.1",)]
    assert lines[0].executable_config


def test_executable_config_file_before_compat_9_is_read(debian_dir):
    config_file = write_file(
        os.path.join(debian_dir, "foo.manpages"),
        "#!/bin/sh\necho generated.1\n",
        mode=0o755,
    )
    assert dhe_filearray(config_file, compat_level=8) == ["echo", "generated.1"]


def test_failing_executable_config_file(debian_dir):
    config_file = write_file(
        os.path.join(debian_dir, "foo.manpages"),
        "#!/bin/sh\nexit 1\n",
        mode=0o755,
    )
    with pytest.raises(DhConfigFileError) as e_info:
        list(dhe_filedoublearray(config_file, compat_level=13))
    assert e_info.value.config_file == config_file


@pytest.mark.parametrize(
    "existing_files,is_main_package,expected",
    [
        (["foo.manpages", "manpages"], True, "foo.manpages"),
        (["manpages"], True, "manpages"),
        (["manpages"], False, None),
        (["foo.manpages.amd64", "foo.manpages"], False, "foo.manpages.amd64"),
        (["foo.manpages.i386"], False, None),
        (["manpages.amd64", "manpages"], True, "manpages.amd64"),
        ([], True, None),
    ],
)
def test_pkgfile(debian_dir, existing_files, is_main_package, expected):
    for name in existing_files:
        write_file(os.path.join(debian_dir, name))
    package = faked_binary_package("foo", is_main_package=is_main_package)
    actual = dhe_pkgfile(debian_dir, package, "manpages")
    if expected is None:
        assert actual is None
    else:
        assert actual == os.path.join(debian_dir, expected)


def test_pkgfile_arch_all_package(debian_dir):
    write_file(os.path.join(debian_dir, "foo-doc.manpages.amd64"))
    write_file(os.path.join(debian_dir, "foo-doc.manpages"))
    package = faked_binary_package("foo-doc", architecture="all")
    assert dhe_pkgfile(debian_dir, package, "manpages") == "debian/foo-doc.manpages"


def test_exclude_predicate():
    is_excluded = exclude_predicate(["CVS", ".orig"])
    assert is_excluded("src/CVS/Entries")
    assert is_excluded("README.orig")
    assert not is_excluded("README")


def test_glob_expand(debian_dir):
    write_file("doc/foo.1")
    write_file("doc/bar.1")
    write_file("debian/tmp/usr/share/man/man1/baz.1")
    matches, missing = dhe_glob_expand(
        ["doc/*.1", "usr/share/man/man1/baz.1", "nowhere/*.8", "doc/{foo,bar}.1"],
        (".", "debian/tmp"),
    )
    assert matches == [
        "doc/bar.1",
        "doc/foo.1",
        "debian/tmp/usr/share/man/man1/baz.1",
        "doc/foo.1",
        "doc/bar.1",
    ]
    assert missing == ["nowhere/*.8"]


def test_log_installed_files(debian_dir):
    package = faked_binary_package("foo")
    log_installed_files(debian_dir, package, "dh_installman", ["foo.1", "bar.8"])
    log_file = installed_files_log(debian_dir, package, "dh_installman")
    assert log_file == "debian/.debhelper/generated/foo/installed-by-dh_installman"
    with open(log_file) as fd:
        assert fd.read() == "foo.1\nbar.8\n"


def test_log_installed_files_in_other_debian_dir(tmp_path):
    debian_dir = str(tmp_path / "pkg" / "debian")
    package = faked_binary_package("foo")
    log_installed_files(debian_dir, package, "dh_install", ["usr/bin/foo"])
    log_file = os.path.join(
        debian_dir, ".debhelper", "generated", "foo", "installed-by-dh_install"
    )
    assert installed_files_log(debian_dir, package, "dh_install") == log_file
    with open(log_file) as fd:
        assert fd.read() == "usr/bin/foo\n"
