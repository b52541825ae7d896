import os

import pytest

from dhscripts.dh.debhelper_emulation import DHConfigFileLine, exclude_predicate
from dhscripts.exceptions import MissingInstallSourcesError
from dhscripts.installations import (
    InstallRequest,
    install_into_package,
    resolve_install_requests,
    search_dirs_for,
)
from tutil import write_file


@pytest.fixture()
def staged_tree(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    write_file("debian/tmp/usr/bin/foo", "#!/bin/sh\n", mode=0o755)
    write_file("debian/tmp/usr/bin/bar", "#!/bin/sh\n", mode=0o755)
    write_file("debian/tmp/usr/share/foo/data.txt", "data\n")
    write_file("debian/tmp/usr/share/foo/nested/more.txt", "more\n")
    os.symlink("data.txt", "debian/tmp/usr/share/foo/link.txt")
    write_file("debian/foo.conf", "setting=1\n")
    return tmp_path


@pytest.mark.parametrize(
    "tokens,autodest,expected_sources,expected_dest",
    [
        (["usr/bin/foo"], False, ("usr/bin/foo",), None),
        (["usr/bin/foo", "usr/lib/foo"], False, ("usr/bin/foo",), "usr/lib/foo"),
        (["a", "b", "usr/share/foo"], False, ("a", "b"), "usr/share/foo"),
        (["a", "b"], True, ("a", "b"), None),
    ],
)
def test_install_request_tokens(tokens, autodest, expected_sources, expected_dest):
    request = InstallRequest.from_tokens(tokens, "test", autodest=autodest)
    assert request.sources == expected_sources
    assert request.dest_dir == expected_dest


def test_install_request_from_config_line():
    line = DHConfigFileLine(
        "debian/foo.install",
        3,
        False,
        "usr/bin/foo usr/lib/foo",
        ("usr/bin/foo", "usr/lib/foo"),
    )
    request = InstallRequest.from_config_line(line)
    assert request.definition_source == "debian/foo.install:3"
    assert request.dest_dir == "usr/lib/foo"


def test_autodest_from_fallback_dir(staged_tree):
    requests = [InstallRequest.from_tokens(["usr/bin/*"], "test")]
    matches = resolve_install_requests(requests, search_dirs_for(None))
    assert [(m.source, m.dest_dir) for m in matches] == [
        ("debian/tmp/usr/bin/bar", "usr/bin"),
        ("debian/tmp/usr/bin/foo", "usr/bin"),
    ]


def test_current_dir_wins_over_fallback(staged_tree):
    requests = [InstallRequest.from_tokens(["debian/foo.conf", "etc/foo"], "test")]
    matches = resolve_install_requests(requests, search_dirs_for(None))
    assert [(m.source, m.dest_dir) for m in matches] == [
        ("debian/foo.conf", "etc/foo"),
    ]


def test_explicit_sourcedir(staged_tree):
    write_file("build/staging/usr/lib/foo/plugin.so", mode=0o644)
    requests = [InstallRequest.from_tokens(["usr/lib/foo/plugin.so"], "test")]
    matches = resolve_install_requests(requests, search_dirs_for("build/staging/"))
    assert [(m.source, m.dest_dir) for m in matches] == [
        ("build/staging/usr/lib/foo/plugin.so", "usr/lib/foo"),
    ]


def test_missing_sources_are_reported_together(staged_tree):
    requests = [
        InstallRequest.from_tokens(["usr/bin/foo"], "debian/foo.install:1"),
        InstallRequest.from_tokens(["usr/bin/missing"], "debian/foo.install:2"),
        InstallRequest.from_tokens(["usr/lib/*.so", "usr/lib"], "debian/foo.install:3"),
    ]
    with pytest.raises(MissingInstallSourcesError) as e_info:
        resolve_install_requests(requests, search_dirs_for(None))
    assert e_info.value.missing_patterns == [
        "usr/bin/missing (debian/foo.install:2)",
        "usr/lib/*.so (debian/foo.install:3)",
    ]
    assert "usr/bin/missing" in e_info.value.message


def test_install_files_and_directories(staged_tree):
    requests = [
        InstallRequest.from_tokens(["usr/bin/foo"], "test"),
        InstallRequest.from_tokens(["usr/share/foo"], "test"),
        InstallRequest.from_tokens(["debian/foo.conf", "etc/foo"], "test"),
    ]
    installed = install_into_package(requests, "debian/foo")
    assert installed == [
        "debian/tmp/usr/bin/foo",
        "debian/tmp/usr/share/foo",
        "debian/foo.conf",
    ]
    assert os.access("debian/foo/usr/bin/foo", os.X_OK)
    assert open("debian/foo/usr/share/foo/nested/more.txt").read() == "more\n"
    assert os.readlink("debian/foo/usr/share/foo/link.txt") == "data.txt"
    assert open("debian/foo/etc/foo/foo.conf").read() == "setting=1\n"


def test_install_with_exclusions(staged_tree):
    requests = [
        InstallRequest.from_tokens(["usr/share/foo"], "test"),
        InstallRequest.from_tokens(["usr/bin/*"], "test"),
    ]
    installed = install_into_package(
        requests,
        "debian/foo",
        is_excluded=exclude_predicate(["nested", "bin/bar"]),
    )
    assert installed == ["debian/tmp/usr/share/foo", "debian/tmp/usr/bin/foo"]
    assert os.path.isfile("debian/foo/usr/share/foo/data.txt")
    assert os.readlink("debian/foo/usr/share/foo/link.txt") == "data.txt"
    assert not os.path.exists("debian/foo/usr/share/foo/nested")
    assert os.path.isfile("debian/foo/usr/bin/foo")
    assert not os.path.exists("debian/foo/usr/bin/bar")


def test_install_with_exclusions_twice_replaces_links(staged_tree):
    write_file("debian/tmp/usr/lib/libfoo.so.1", "ELF\n")
    os.symlink("libfoo.so.1", "debian/tmp/usr/lib/libfoo.so")
    os.symlink("foo", "debian/tmp/usr/share/foo-alias")
    requests = [
        InstallRequest.from_tokens(["usr/lib/libfoo.so"], "test"),
        InstallRequest.from_tokens(["usr/share/foo-alias"], "test"),
        InstallRequest.from_tokens(["usr/share/foo"], "test"),
    ]
    is_excluded = exclude_predicate(["nested"])
    for _ in range(2):
        install_into_package(requests, "debian/foo", is_excluded=is_excluded)
    assert os.readlink("debian/foo/usr/lib/libfoo.so") == "libfoo.so.1"
    assert os.readlink("debian/foo/usr/share/foo-alias") == "foo"
    assert os.readlink("debian/foo/usr/share/foo/link.txt") == "data.txt"
    assert open("debian/foo/usr/share/foo/data.txt").read() == "data\n"
