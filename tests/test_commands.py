import functools
import os

import pytest

from dhscripts.commands import context as context_module
from dhscripts.commands import dh_fixperms, dh_install, dh_installman, dh_sequence
from dhscripts.commands.context import DhCommandContext, run_dh_command
from dhscripts.environment import DhBuildEnvironment
from tutil import file_mode, write_file, write_manpage


@pytest.fixture()
def run_tool(monkeypatch, context_factory):
    monkeypatch.setattr(context_module, "setup_logging", lambda **kwargs: None)
    monkeypatch.setattr(dh_installman, "has_man_recode", lambda: False)

    def _run(module, command, *argv, factory=None):
        run_dh_command(
            module.parse_args,
            command,
            list(argv),
            context_factory=factory if factory is not None else context_factory,
        )

    return _run


def _factory_with_environ(amd64_dpkg_architecture_variables, environ):
    return functools.partial(
        DhCommandContext,
        build_env=DhBuildEnvironment(environ=environ),
        dpkg_architecture_variables=amd64_dpkg_architecture_variables,
    )


def _read_lines(path):
    with open(path) as fd:
        return fd.read().splitlines()


def test_dh_installman(source_tree, run_tool):
    write_manpage("doc/foo.1", section="1")
    write_manpage("doc/foo.pl.1", section="1")
    write_manpage("doc/extra.8", section="8")
    write_file("doc/foo-alias.1", ".so man1/foo.1\n")
    write_manpage("debian/tmp/usr/share/man/man3/foo.3", section="3")
    write_file("debian/foo.manpages", "doc/foo.1 doc/foo.pl.1\ndoc/foo-alias.1\n")
    write_file("debian/foo-doc.manpages", "usr/share/man/man3/foo.3\n")

    run_tool(dh_installman, dh_installman.install_manpages, "doc/extra.8")

    man_dir = "debian/foo/usr/share/man"
    assert os.path.isfile(f"{man_dir}/man1/foo.1")
    assert os.path.isfile(f"{man_dir}/pl/man1/foo.1")
    assert os.path.isfile(f"{man_dir}/man8/extra.8")
    assert os.readlink(f"{man_dir}/man1/foo-alias.1") == "foo.1"
    assert os.path.isfile("debian/foo-doc/usr/share/man/man3/foo.3")
    assert not os.path.exists("debian/foo-doc/usr/share/man/man8")

    assert _read_lines(
        "debian/.debhelper/generated/foo/installed-by-dh_installman"
    ) == ["doc/foo.1", "doc/foo.pl.1", "doc/foo-alias.1", "doc/extra.8"]
    assert _read_lines(
        "debian/.debhelper/generated/foo-doc/installed-by-dh_installman"
    ) == ["debian/tmp/usr/share/man/man3/foo.3"]


def test_dh_installman_language_and_package_selection(source_tree, run_tool):
    write_manpage("doc/foo.de.1", section="1")
    run_tool(
        dh_installman,
        dh_installman.install_manpages,
        "-p",
        "foo-doc",
        "--language",
        "C",
        "doc/foo.de.1",
    )
    assert os.path.isfile("debian/foo-doc/usr/share/man/man1/foo.de.1")
    assert not os.path.exists("debian/foo")


def test_dh_installman_tmpdir(source_tree, run_tool):
    write_manpage("doc/foo.1", section="1")
    run_tool(
        dh_installman,
        dh_installman.install_manpages,
        "-p",
        "foo",
        "-P",
        "debian/custom",
        "doc/foo.1",
    )
    assert os.path.isfile("debian/custom/usr/share/man/man1/foo.1")


def test_dh_installman_tmpdir_requires_single_package(source_tree, run_tool, capsys):
    write_manpage("doc/foo.1", section="1")
    with pytest.raises(SystemExit) as e_info:
        run_tool(
            dh_installman,
            dh_installman.install_manpages,
            "-P",
            "debian/custom",
            "doc/foo.1",
        )
    assert e_info.value.code == 1
    assert "-P/--tmpdir" in capsys.readouterr().err


def test_dh_installman_unresolvable_section(source_tree, run_tool, capsys):
    write_file("doc/README", "No man page\n")
    write_file("debian/foo-doc.manpages", "doc/README\n")
    with pytest.raises(SystemExit) as e_info:
        run_tool(dh_installman, dh_installman.install_manpages)
    assert e_info.value.code == 1
    assert "doc/README" in capsys.readouterr().err


def test_dh_installman_missing_page(source_tree, run_tool, capsys):
    write_file("debian/foo.manpages", "doc/missing.1\n")
    with pytest.raises(SystemExit):
        run_tool(dh_installman, dh_installman.install_manpages)
    assert "doc/missing.1" in capsys.readouterr().err


def test_dh_installman_nodoc(source_tree, run_tool, amd64_dpkg_architecture_variables):
    write_manpage("doc/foo.1", section="1")
    factory = _factory_with_environ(
        amd64_dpkg_architecture_variables, {"DEB_BUILD_OPTIONS": "nodoc"}
    )
    run_tool(
        dh_installman, dh_installman.install_manpages, "doc/foo.1", factory=factory
    )
    assert not os.path.exists("debian/foo")


def test_dh_installman_parallel(source_tree, run_tool, amd64_dpkg_architecture_variables):
    write_manpage("doc/foo.1", section="1")
    write_manpage("doc/foo-doc.7", section="7")
    write_file("debian/foo.manpages", "doc/foo.1\n")
    write_file("debian/foo-doc.manpages", "doc/foo-doc.7\n")
    factory = _factory_with_environ(
        amd64_dpkg_architecture_variables, {"DEB_BUILD_OPTIONS": "parallel=2"}
    )
    run_tool(dh_installman, dh_installman.install_manpages, factory=factory)
    assert os.path.isfile("debian/foo/usr/share/man/man1/foo.1")
    assert os.path.isfile("debian/foo-doc/usr/share/man/man7/foo-doc.7")


def test_dh_installman_legacy_compat(source_tree, run_tool, amd64_dpkg_architecture_variables):
    write_manpage("doc/foo.1", section="1", body="new\n")
    write_file("debian/foo/usr/share/man/man1/foo.1", "old\n")
    factory = _factory_with_environ(
        amd64_dpkg_architecture_variables, {"DH_COMPAT": "5"}
    )
    run_tool(
        dh_installman,
        dh_installman.install_manpages,
        "-p",
        "foo",
        "doc/foo.1",
        factory=factory,
    )
    with open("debian/foo/usr/share/man/man1/foo.1") as fd:
        assert fd.read() == "old\n"


def test_dh_install(source_tree, run_tool):
    write_file("debian/tmp/usr/bin/foo", "#!/bin/sh\n", mode=0o755)
    write_file("debian/tmp/usr/share/doc/foo/guide.html", "<html/>\n")
    write_file("debian/foo.install", "usr/bin/foo\n")
    write_file("debian/foo-doc.install", "usr/share/doc/foo/*.html usr/share/doc/foo-doc\n")
    write_file("debian/foo.default", "ENABLED=1\n")

    run_tool(dh_install, dh_install.install_files, "debian/foo.default", "etc/default")

    assert os.access("debian/foo/usr/bin/foo", os.X_OK)
    assert os.path.isfile("debian/foo/etc/default/foo.default")
    assert os.path.isfile("debian/foo-doc/usr/share/doc/foo-doc/guide.html")
    assert _read_lines("debian/.debhelper/generated/foo/installed-by-dh_install") == [
        "debian/tmp/usr/bin/foo",
        "debian/foo.default",
    ]


def test_dh_install_missing_sources(source_tree, run_tool, capsys):
    write_file("debian/foo.install", "usr/bin/foo\nusr/bin/bar\n")
    with pytest.raises(SystemExit) as e_info:
        run_tool(dh_install, dh_install.install_files, "-p", "foo")
    assert e_info.value.code == 1
    err = capsys.readouterr().err
    assert "usr/bin/foo" in err
    assert "usr/bin/bar" in err


def test_dh_install_autodest(source_tree, run_tool):
    write_file("debian/tmp/usr/lib/foo/a.so", mode=0o644)
    write_file("debian/tmp/usr/share/foo/b.txt")
    write_file("debian/foo.install", "usr/lib/foo/a.so usr/share/foo/b.txt\n")
    run_tool(dh_install, dh_install.install_files, "-p", "foo", "--autodest")
    assert os.path.isfile("debian/foo/usr/lib/foo/a.so")
    assert os.path.isfile("debian/foo/usr/share/foo/b.txt")


def test_dh_fixperms(source_tree, run_tool, monkeypatch):
    monkeypatch.setattr(os, "getuid", lambda: 1000)
    binary = write_file("debian/foo/usr/bin/foo", mode=0o4750)
    doc = write_file("debian/foo/usr/share/doc/foo/README", mode=0o600)
    excluded = write_file("debian/foo/usr/lib/foo/keep-me", mode=0o4755)
    run_tool(dh_fixperms, dh_fixperms.fixperms, "-p", "foo", "-X", "keep-me")
    assert file_mode(binary) == 0o755
    assert file_mode(doc) == 0o644
    assert file_mode(excluded) == 0o4755


def test_dh_sequence_show(source_tree, run_tool, capsys):
    run_tool(dh_sequence, dh_sequence.dh_sequence, "show", "build")
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "dh_testdir"
    assert lines[-1] == "create-stamp debian/debhelper-build-stamp"


def test_dh_sequence_without_build_stamp(source_tree, run_tool, capsys):
    run_tool(
        dh_sequence,
        dh_sequence.dh_sequence,
        "--without",
        "build-stamp",
        "show",
        "build-arch",
    )
    lines = capsys.readouterr().out.splitlines()
    assert "create-stamp debian/debhelper-build-stamp" not in lines


def test_dh_sequence_unknown_sequence(source_tree, run_tool, capsys):
    with pytest.raises(SystemExit):
        run_tool(dh_sequence, dh_sequence.dh_sequence, "show", "bogus")
    assert "bogus" in capsys.readouterr().err


def test_dh_sequence_create_stamp(source_tree, run_tool):
    run_tool(dh_sequence, dh_sequence.dh_sequence, "-i", "create-stamp")
    assert _read_lines("debian/debhelper-build-stamp") == ["foo-doc"]


def test_dh_installman_skips_udebs(source_tree, run_tool):
    with open("debian/control", "a") as fd:
        fd.write("\nPackage: foo-udeb\nArchitecture: any\nPackage-Type: udeb\n")
    write_manpage("doc/foo.1", section="1")
    write_file("debian/foo-udeb.manpages", "doc/foo.1\n")
    run_tool(dh_installman, dh_installman.install_manpages, "-p", "foo-udeb")
    assert not os.path.exists("debian/foo-udeb")
