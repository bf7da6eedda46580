"""Unit tests for manual page retrieval."""

import subprocess

import pytest

from askman import manpage
from askman.errors import ManPageError


@pytest.mark.parametrize(
    "args, expected",
    [
        ([], ("", "", [])),
        (["lsof", "which", "ports"], ("lsof", "", ["which", "ports"])),
        (["3", "printf", "format", "a", "float"], ("printf", "3", ["format", "a", "float"])),
        (["-s", "3", "printf", "padding"], ("printf", "3", ["padding"])),
        (["5"], ("5", "", [])),
        (["ls"], ("ls", "", [])),
    ],
)
def test_parse_command(args, expected):
    assert manpage.parse_command(args) == expected


def test_clean_removes_formatting():
    raw = "N\x08NA\x08AM\x08ME\x08E\n\n\n\n  \x1b[1mls\x1b[0m - list _\x08d_\x08i_\x08r\n"
    assert manpage.clean(raw) == "NAME\n\n  ls - list dir"


def test_fetch(mocker):
    mocker.patch.object(manpage, "which", return_value="/usr/bin/man")
    run = mocker.patch.object(
        subprocess, "run", return_value=subprocess.CompletedProcess([], 0, stdout="L\x08LS\x08S(1)\n")
    )
    assert manpage.fetch("ls") == "LS(1)"
    env = run.call_args.kwargs["env"]
    assert env["MANPAGER"] == "cat"
    assert run.call_args.args[0] == ["man", "ls"]


def test_fetch_section_tries_both_syntaxes(mocker):
    mocker.patch.object(manpage, "which", return_value="/usr/bin/man")
    run = mocker.patch.object(
        subprocess,
        "run",
        side_effect=[
            subprocess.CalledProcessError(1, ["man"]),
            subprocess.CompletedProcess([], 0, stdout="PRINTF(3)"),
        ],
    )
    assert manpage.fetch("printf", "3") == "PRINTF(3)"
    assert run.call_args_list[0].args[0] == ["man", "3", "printf"]
    assert run.call_args_list[1].args[0] == ["man", "-s", "3", "printf"]


def test_fetch_missing_page(mocker):
    mocker.patch.object(manpage, "which", return_value="/usr/bin/man")
    mocker.patch.object(subprocess, "run", side_effect=subprocess.CalledProcessError(16, ["man"]))
    with pytest.raises(ManPageError) as excinfo:
        manpage.fetch("nosuchtool")
    assert "man -k nosuchtool" in str(excinfo.value)


def test_fetch_without_man(mocker):
    mocker.patch.object(manpage, "which", return_value=None)
    with pytest.raises(ManPageError):
        manpage.fetch("ls")
